"""
Group promotion / beneficiary expander.

A group promotion is paid once by the payer and shared at no cost with up
to ``max_beneficiaries`` other patients. Expansion only builds plans;
persisting them (in one transaction) is done by services.save_completed_treatment.
"""
import re
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Sequence, Tuple

from apps.billing.exceptions import BeneficiaryCapacityError
from apps.billing.models import ParticipationRole
from apps.billing.pricing import (
    LineInput,
    LineResult,
    ManualDiscount,
    PricingResult,
)

ZERO = Decimal('0.00')

# Names used for group promotions before Promotion.is_group existed.
_LEGACY_GROUP_PATTERNS = (
    (re.compile(r'\b2\s*x\s*1\b', re.IGNORECASE), 1),
    (re.compile(r'dos\s+por\s+uno', re.IGNORECASE), 1),
)


@dataclass(frozen=True)
class TreatmentPlan:
    """
    Everything needed to persist one CompletedTreatment row and its lines.
    """
    patient: Any
    visit_date: date
    currency: str
    role: str
    lines: Tuple[LineInput, ...]
    pricing: PricingResult
    is_historical: bool
    requires_signature: bool
    manual_discount: ManualDiscount = ManualDiscount()
    signature_ref: str = ''
    promotion: Any = None
    doctor_notes: str = ''


def is_group_promotion(promotion) -> bool:
    """True when the promotion was created as a group promotion."""
    return bool(promotion is not None and promotion.is_group)


def legacy_group_hint(name: Optional[str]) -> int:
    """
    Beneficiary capacity implied by a legacy promotion name, 0 if none.

    Only used to backfill ``Promotion.is_group`` for old rows.
    """
    if not name:
        return 0
    for pattern, capacity in _LEGACY_GROUP_PATTERNS:
        if pattern.search(name):
            return capacity
    return 0


def check_beneficiary_capacity(promotion, beneficiaries: Sequence, payer=None):
    """
    Reject a beneficiary list before anything is written.

    Raises:
        BeneficiaryCapacityError: promotion is not a group promotion, the
            list is longer than ``max_beneficiaries``, or it repeats a
            patient or includes the payer.
    """
    if not beneficiaries:
        return

    if not is_group_promotion(promotion):
        raise BeneficiaryCapacityError(
            'Beneficiaries can only be added to a group promotion',
            code='not_group_promotion',
        )

    if len(beneficiaries) > promotion.max_beneficiaries:
        raise BeneficiaryCapacityError(
            f'Promotion {promotion.code} allows at most {promotion.max_beneficiaries} '
            f'beneficiaries, got {len(beneficiaries)}',
            code='capacity_exceeded',
        )

    seen = set()
    for beneficiary in beneficiaries:
        if payer is not None and beneficiary.pk == payer.pk:
            raise BeneficiaryCapacityError(
                'The paying patient cannot also be a beneficiary',
                code='payer_is_beneficiary',
            )
        if beneficiary.pk in seen:
            raise BeneficiaryCapacityError(
                'The same patient is listed twice as beneficiary',
                code='duplicate_beneficiary',
            )
        seen.add(beneficiary.pk)


def _beneficiary_plan(payer_plan: TreatmentPlan, beneficiary) -> TreatmentPlan:
    lines = tuple(replace(line, unit_price=ZERO, quantity=1) for line in payer_plan.lines)
    line_results = tuple(LineResult(line, 1, ZERO, ZERO, ZERO) for line in lines)
    promotion = payer_plan.promotion
    return TreatmentPlan(
        patient=beneficiary,
        visit_date=payer_plan.visit_date,
        currency=payer_plan.currency,
        role=ParticipationRole.BENEFICIARY,
        lines=lines,
        pricing=PricingResult(
            subtotal=ZERO,
            discount=ZERO,
            total=ZERO,
            reasons=(f'Group promotion {promotion.code} - beneficiary',),
            line_results=line_results,
        ),
        is_historical=payer_plan.is_historical,
        requires_signature=False,
        promotion=promotion,
        doctor_notes=f'Group promotion: {promotion.discount_percent}% off - beneficiary',
    )


def expand_group_promotion(payer_plan: TreatmentPlan, beneficiaries: Sequence) -> Tuple[TreatmentPlan, ...]:
    """
    Split a group promotion into the payer plan plus one free plan per
    beneficiary. The payer plan comes first and keeps its pricing.
    """
    check_beneficiary_capacity(payer_plan.promotion, beneficiaries, payer=payer_plan.patient)
    payer = replace(payer_plan, role=ParticipationRole.PAYER)
    return (payer,) + tuple(_beneficiary_plan(payer, b) for b in beneficiaries)
