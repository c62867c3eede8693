"""
Tests for the discount calculator.

Business Rules:
- line subtotal = unit price x quantity (quantity >= 1, price >= 0)
- senior (60-79) 25%, elder (80+) 35% on every non-promotional line and on
  promotional lines that keep the age discount
- manual discount applies to the remaining balance, fixed amounts capped
- historical records without bypass are priced at 0
"""
from datetime import date
from decimal import Decimal

import pytest

from apps.billing.historical import PricingContext
from apps.billing.models import DiscountType
from apps.billing.pricing import (
    AgeCategory,
    ManualDiscount,
    PromotionLineInput,
    TreatmentLineInput,
    age_category_for,
    age_category_for_age,
    calculate_totals,
)

VISIT = date(2026, 3, 10)
ACTIVE = PricingContext(as_of_date=VISIT)
HISTORICAL = PricingContext(as_of_date=date(2025, 6, 1), is_historical=True, bypass=False)
HISTORICAL_BYPASSED = PricingContext(as_of_date=date(2025, 6, 1), is_historical=True, bypass=True)


def treatment_line(price='1000.00', quantity=1, name='Limpieza'):
    return TreatmentLineInput(name=name, unit_price=Decimal(price), quantity=quantity)


def promotion_line(price='700.00', quantity=1, disable_age_discount=False):
    return PromotionLineInput(
        name='Blanqueamiento 30%',
        unit_price=Decimal(price),
        quantity=quantity,
        promotion_id=1,
        disable_age_discount=disable_age_discount,
    )


class TestAgeCategory:

    @pytest.mark.parametrize('age,expected', [
        (5, AgeCategory.MINOR),
        (17, AgeCategory.MINOR),
        (18, AgeCategory.ADULT),
        (59, AgeCategory.ADULT),
        (60, AgeCategory.SENIOR),
        (79, AgeCategory.SENIOR),
        (80, AgeCategory.ELDER),
        (95, AgeCategory.ELDER),
        (None, AgeCategory.ADULT),
    ])
    def test_bands(self, age, expected):
        assert age_category_for_age(age) == expected

    def test_category_is_computed_on_visit_date(self):
        """A patient turning 60 after the visit is still an adult for that visit."""
        class FakePatient:
            birth_date = date(1966, 6, 1)

            def age_on(self, on_date):
                had_birthday = (on_date.month, on_date.day) >= (6, 1)
                return on_date.year - 1966 - (0 if had_birthday else 1)

        assert age_category_for(FakePatient(), date(2026, 5, 31)) == AgeCategory.ADULT
        assert age_category_for(FakePatient(), date(2026, 6, 1)) == AgeCategory.SENIOR


class TestAgeDiscount:

    def test_elder_patient_scenario(self):
        """1000 HNL x 2 for an elder patient: 2000 - 700 = 1300."""
        result = calculate_totals([treatment_line(quantity=2)], AgeCategory.ELDER, None, ACTIVE)

        assert result.subtotal == Decimal('2000.00')
        assert result.discount == Decimal('700.00')
        assert result.total == Decimal('1300.00')
        assert result.reasons == ('Elder discount (35%) - Limpieza',)

    def test_senior_gets_exactly_25_percent(self):
        result = calculate_totals([treatment_line('333.33', 3)], AgeCategory.SENIOR, None, ACTIVE)

        assert result.subtotal == Decimal('999.99')
        assert result.discount == Decimal('250.00')  # 249.9975 rounded half-up
        assert result.total == Decimal('749.99')

    @pytest.mark.parametrize('category', [AgeCategory.MINOR, AgeCategory.ADULT])
    def test_no_age_discount_below_sixty(self, category):
        result = calculate_totals([treatment_line()], category, None, ACTIVE)

        assert result.discount == Decimal('0.00')
        assert result.total == Decimal('1000.00')
        assert result.reasons == ()

    def test_each_line_gets_its_own_reason(self):
        lines = [treatment_line(name='Limpieza'), treatment_line('500.00', name='Extraccion')]
        result = calculate_totals(lines, AgeCategory.SENIOR, None, ACTIVE)

        assert result.discount == Decimal('375.00')
        assert result.reasons == (
            'Senior discount (25%) - Limpieza',
            'Senior discount (25%) - Extraccion',
        )

    def test_promotional_line_keeps_age_discount_when_enabled(self):
        result = calculate_totals([promotion_line()], AgeCategory.ELDER, None, ACTIVE)

        assert result.subtotal == Decimal('700.00')
        assert result.discount == Decimal('245.00')

    def test_promotional_line_can_disable_age_discount(self):
        lines = [promotion_line(disable_age_discount=True), treatment_line()]
        result = calculate_totals(lines, AgeCategory.ELDER, None, ACTIVE)

        assert result.subtotal == Decimal('1700.00')
        assert result.discount == Decimal('350.00')
        assert result.line_results[0].discount == Decimal('0.00')
        assert result.line_results[1].discount == Decimal('350.00')


class TestManualDiscount:

    def test_fixed_amount_applies_to_remaining_balance(self):
        manual = ManualDiscount(DiscountType.FIXED_AMOUNT, Decimal('200'))
        result = calculate_totals([treatment_line(quantity=2)], AgeCategory.ELDER, manual, ACTIVE)

        assert result.discount == Decimal('900.00')
        assert result.total == Decimal('1100.00')
        assert result.reasons[-1] == 'Manual discount (L. 200.00)'

    def test_fixed_amount_is_capped_at_balance(self):
        manual = ManualDiscount(DiscountType.FIXED_AMOUNT, Decimal('5000'))
        result = calculate_totals([treatment_line()], AgeCategory.SENIOR, manual, ACTIVE)

        assert result.discount == Decimal('1000.00')
        assert result.total == Decimal('0.00')

    def test_percentage_applies_after_age_discount(self):
        manual = ManualDiscount(DiscountType.PERCENTAGE, Decimal('10'))
        result = calculate_totals([treatment_line()], AgeCategory.SENIOR, manual, ACTIVE)

        # 1000 - 250 = 750, 10% of 750 = 75
        assert result.discount == Decimal('325.00')
        assert result.total == Decimal('675.00')
        assert result.reasons[-1] == 'Manual discount (10%)'

    def test_percentage_is_clamped_to_100(self):
        manual = ManualDiscount(DiscountType.PERCENTAGE, Decimal('150'))
        result = calculate_totals([treatment_line()], AgeCategory.ADULT, manual, ACTIVE)

        assert result.total == Decimal('0.00')

    def test_zero_manual_discount_adds_no_reason(self):
        manual = ManualDiscount(DiscountType.FIXED_AMOUNT, Decimal('0'))
        result = calculate_totals([treatment_line()], AgeCategory.ADULT, manual, ACTIVE)

        assert result.reasons == ()
        assert result.discount_reason == ''


class TestClamping:

    def test_quantity_below_one_counts_as_one(self):
        result = calculate_totals([treatment_line(quantity=0)], AgeCategory.ADULT, None, ACTIVE)

        assert result.subtotal == Decimal('1000.00')
        assert result.line_results[0].quantity == 1

    def test_negative_price_counts_as_zero(self):
        result = calculate_totals([treatment_line('-50')], AgeCategory.ADULT, None, ACTIVE)

        assert result.subtotal == Decimal('0.00')
        assert result.total == Decimal('0.00')

    def test_inputs_are_not_mutated(self):
        lines = [treatment_line(quantity=0)]
        calculate_totals(lines, AgeCategory.ELDER, None, ACTIVE)

        assert lines[0].quantity == 0


class TestHistoricalPricing:

    def test_historical_without_bypass_is_free(self):
        manual = ManualDiscount(DiscountType.FIXED_AMOUNT, Decimal('100'))
        lines = [treatment_line(quantity=3), promotion_line()]
        result = calculate_totals(lines, AgeCategory.ELDER, manual, HISTORICAL)

        assert result.subtotal == Decimal('0.00')
        assert result.discount == Decimal('0.00')
        assert result.total == Decimal('0.00')
        assert result.reasons == ('Historical record - no charge',)
        assert all(r.unit_price_final == Decimal('0.00') for r in result.line_results)

    def test_historical_with_bypass_is_priced_normally(self):
        result = calculate_totals([treatment_line(quantity=2)], AgeCategory.ELDER, None, HISTORICAL_BYPASSED)

        assert result.subtotal == Decimal('2000.00')
        assert result.total == Decimal('1300.00')

    def test_line_results_carry_final_unit_price(self):
        result = calculate_totals([treatment_line(quantity=2)], AgeCategory.ELDER, None, ACTIVE)

        assert result.line_results[0].unit_price == Decimal('1000.00')
        assert result.line_results[0].unit_price_final == Decimal('650.00')
