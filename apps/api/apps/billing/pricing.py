"""
Discount calculator.

Turns an ordered list of priced lines, the patient's age category and an
optional manual discount into subtotal / discount / total. Pure: no I/O,
no model access, inputs are never mutated.

Order of application:
1. line subtotal = unit price x quantity (historical records: 0)
2. age discount per line (senior 25%, elder 35%), skipped for promotional
   lines that disable it
3. manual discount on the remaining balance (fixed amount capped at the
   balance, or a percentage of it)
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Sequence, Tuple, Union

from apps.billing.currency import quantize_money, to_decimal, format_currency
from apps.billing.historical import PricingContext, HISTORICAL_NO_CHARGE_REASON
from apps.billing.models import DiscountType

ZERO = Decimal('0.00')


class AgeCategory(str, Enum):
    MINOR = 'minor'
    ADULT = 'adult'
    SENIOR = 'senior'
    ELDER = 'elder'


AGE_DISCOUNT_RATES = {
    AgeCategory.SENIOR: Decimal('0.25'),
    AgeCategory.ELDER: Decimal('0.35'),
}

AGE_DISCOUNT_LABELS = {
    AgeCategory.SENIOR: 'Senior discount (25%)',
    AgeCategory.ELDER: 'Elder discount (35%)',
}

SENIOR_AGE = 60
ELDER_AGE = 80
ADULT_AGE = 18


def age_category_for_age(age: Optional[int]) -> AgeCategory:
    if age is None:
        return AgeCategory.ADULT
    if age >= ELDER_AGE:
        return AgeCategory.ELDER
    if age >= SENIOR_AGE:
        return AgeCategory.SENIOR
    if age < ADULT_AGE:
        return AgeCategory.MINOR
    return AgeCategory.ADULT


def age_category_for(patient, on_date: date) -> AgeCategory:
    """Age category of ``patient`` as of ``on_date`` (the visit date)."""
    return age_category_for_age(patient.age_on(on_date))


@dataclass(frozen=True)
class TreatmentLineInput:
    """A catalog procedure."""
    name: str
    unit_price: Decimal
    quantity: int = 1
    code: str = ''
    currency: str = 'HNL'
    catalog_id: Optional[int] = None
    clinician_id: Optional[str] = None
    note: str = ''

    is_promotional = False

    @property
    def applies_age_discount(self) -> bool:
        return True


@dataclass(frozen=True)
class PromotionLineInput:
    """
    A promotion snapshot. ``unit_price`` already is the promotional price;
    the promotion's own percentage is never applied again here.
    """
    name: str
    unit_price: Decimal
    promotion_id: int
    quantity: int = 1
    code: str = ''
    currency: str = 'HNL'
    disable_age_discount: bool = False
    clinician_id: Optional[str] = None
    note: str = ''

    is_promotional = True

    @property
    def applies_age_discount(self) -> bool:
        return not self.disable_age_discount


LineInput = Union[TreatmentLineInput, PromotionLineInput]


@dataclass(frozen=True)
class ManualDiscount:
    type: str = DiscountType.NONE
    value: Decimal = ZERO

    @classmethod
    def none(cls) -> 'ManualDiscount':
        return cls()


@dataclass(frozen=True)
class LineResult:
    line: LineInput
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    discount: Decimal

    @property
    def total(self) -> Decimal:
        return self.subtotal - self.discount

    @property
    def unit_price_final(self) -> Decimal:
        return quantize_money(self.total / self.quantity)


@dataclass(frozen=True)
class PricingResult:
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    reasons: Tuple[str, ...] = ()
    line_results: Tuple[LineResult, ...] = field(default=())

    @property
    def discount_reason(self) -> str:
        return ' + '.join(self.reasons)


def clamp_quantity(quantity) -> int:
    try:
        quantity = int(quantity)
    except (TypeError, ValueError):
        return 1
    return max(1, quantity)


def clamp_price(price) -> Decimal:
    return max(ZERO, quantize_money(price))


def clamp_percentage(value) -> Decimal:
    return min(Decimal('100'), max(ZERO, to_decimal(value)))


def _price_line(line: LineInput, age_category: AgeCategory, charges_apply: bool):
    quantity = clamp_quantity(line.quantity)
    unit_price = clamp_price(line.unit_price)

    if not charges_apply:
        return LineResult(line, quantity, unit_price, ZERO, ZERO), None

    subtotal = quantize_money(unit_price * quantity)
    rate = AGE_DISCOUNT_RATES.get(age_category)
    if rate is None or not line.applies_age_discount:
        return LineResult(line, quantity, unit_price, subtotal, ZERO), None

    discount = quantize_money(subtotal * rate)
    reason = f'{AGE_DISCOUNT_LABELS[age_category]} - {line.name}' if discount > 0 else None
    return LineResult(line, quantity, unit_price, subtotal, discount), reason


def _apply_manual_discount(manual_discount: ManualDiscount, balance: Decimal, currency: str):
    if manual_discount.type == DiscountType.FIXED_AMOUNT:
        amount = min(clamp_price(manual_discount.value), balance)
        if amount > 0:
            return amount, f'Manual discount ({format_currency(amount, currency)})'
        return ZERO, None

    if manual_discount.type == DiscountType.PERCENTAGE:
        percentage = clamp_percentage(manual_discount.value)
        amount = quantize_money(balance * percentage / Decimal('100'))
        if amount > 0:
            return amount, f'Manual discount ({percentage.normalize():f}%)'
        return ZERO, None

    return ZERO, None


def calculate_totals(
    lines: Sequence[LineInput],
    age_category: AgeCategory,
    manual_discount: Optional[ManualDiscount],
    context: PricingContext,
) -> PricingResult:
    """
    Price ``lines`` for a patient of ``age_category`` under ``context``.

    Historical records without bypass price every line at 0 and skip all
    discounts. The total never goes negative.
    """
    manual_discount = manual_discount or ManualDiscount.none()
    charges_apply = context.charges_apply

    line_results: List[LineResult] = []
    reasons: List[str] = []
    subtotal = ZERO
    discount = ZERO

    for line in lines:
        result, reason = _price_line(line, age_category, charges_apply)
        line_results.append(result)
        subtotal += result.subtotal
        discount += result.discount
        if reason:
            reasons.append(reason)

    if charges_apply:
        currency = lines[0].currency if lines else 'HNL'
        manual_amount, reason = _apply_manual_discount(manual_discount, subtotal - discount, currency)
        discount += manual_amount
        if reason:
            reasons.append(reason)
    else:
        reasons = [HISTORICAL_NO_CHARGE_REASON]

    return PricingResult(
        subtotal=subtotal,
        discount=discount,
        total=max(ZERO, subtotal - discount),
        reasons=tuple(reasons),
        line_results=tuple(line_results),
    )
