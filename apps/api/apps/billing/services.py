"""
Billing service layer - saving completed treatments.

A save prices the selected lines under the record's pricing context,
expands group promotions into payer + beneficiary plans and writes every
row, every line and the catalog usage counters in ONE transaction.

IDEMPOTENT: a save carrying a client-generated ``request_id`` that was
already committed returns the committed record instead of writing again.
TRANSACTION: all-or-nothing; a database failure surfaces as a single
PersistenceError and leaves no header without its lines.
"""
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence
import time

from django.core.exceptions import ValidationError
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F

from apps.billing.currency import get_default_currency, quantize_money
from apps.billing.exceptions import BeneficiaryCapacityError, PersistenceError
from apps.billing.historical import (
    PricingContext,
    build_pricing_context,
    evaluate_gate,
)
from apps.billing.ledger import derive_payment_status
from apps.billing.models import (
    CompletedTreatment,
    ParticipationRole,
    TreatmentLine,
)
from apps.billing.pricing import (
    LineInput,
    ManualDiscount,
    PricingResult,
    PromotionLineInput,
    TreatmentLineInput,
    age_category_for,
    calculate_totals,
)
from apps.billing.promotions import (
    TreatmentPlan,
    expand_group_promotion,
    is_group_promotion,
)
from apps.catalog.models import Promotion, Treatment
from apps.clinical.models import Clinician
from apps.core.observability import metrics, get_sanitized_logger
from apps.core.observability.events import log_treatment_saved, log_consistency_checkpoint
from apps.core.observability.tracing import trace_span

logger = get_sanitized_logger(__name__)


def line_from_catalog(treatment: Treatment, quantity: int = 1, clinician_id=None, note: str = '') -> TreatmentLineInput:
    return TreatmentLineInput(
        name=treatment.name,
        code=treatment.code,
        unit_price=treatment.price,
        currency=treatment.currency,
        quantity=quantity,
        catalog_id=treatment.pk,
        clinician_id=clinician_id,
        note=note,
    )


def line_from_promotion(promotion: Promotion, quantity: int = 1, disable_age_discount: Optional[bool] = None,
                        clinician_id=None, note: str = '') -> PromotionLineInput:
    """
    Line for a catalog promotion.

    Individual promotions skip the age discount unless asked otherwise;
    group promotions keep it.
    """
    if disable_age_discount is None:
        disable_age_discount = not is_group_promotion(promotion)
    return PromotionLineInput(
        name=promotion.name,
        code=promotion.code,
        unit_price=promotion.promotional_price,
        currency=promotion.currency,
        quantity=quantity,
        promotion_id=promotion.pk,
        disable_age_discount=disable_age_discount,
        clinician_id=clinician_id,
        note=note,
    )


def _load_promotions(lines: Sequence[LineInput]) -> dict:
    ids = {line.promotion_id for line in lines if isinstance(line, PromotionLineInput)}
    return Promotion.objects.in_bulk(ids) if ids else {}


def _validate_lines(lines: Sequence[LineInput], currency: str, promotions: dict,
                    visit_date: date, context: PricingContext):
    if not lines:
        raise ValidationError({'lines': 'At least one treatment line is required'})

    for line in lines:
        if line.currency != currency:
            raise ValidationError({
                'lines': f'Line {line.name} is priced in {line.currency}, record currency is {currency}'
            })
        if isinstance(line, PromotionLineInput):
            promotion = promotions.get(line.promotion_id)
            if promotion is None:
                raise ValidationError({'lines': f'Unknown promotion {line.promotion_id}'})
            # Historical records are not charged, so old visits may use any promotion.
            if context.charges_apply and not promotion.is_active_on(visit_date):
                raise ValidationError({
                    'lines': f'Promotion {promotion.code} is not active on {visit_date.isoformat()}'
                })


def _header_promotion(lines: Sequence[LineInput], promotions: dict) -> Optional[Promotion]:
    """The group promotion of the record if any, else its first promotion."""
    selected = [promotions[line.promotion_id] for line in lines if isinstance(line, PromotionLineInput)]
    for promotion in selected:
        if is_group_promotion(promotion):
            return promotion
    return selected[0] if selected else None


def price_completed_treatment(patient, visit_date: date, lines: Sequence[LineInput],
                              manual_discount: Optional[ManualDiscount] = None,
                              context: Optional[PricingContext] = None):
    """
    Price a selection without persisting it (on-screen preview).

    Returns:
        (PricingContext, GateDecision, PricingResult)
    """
    context = context or build_pricing_context(patient, visit_date)
    gate = evaluate_gate(context)
    pricing = calculate_totals(lines, age_category_for(patient, visit_date), manual_discount, context)
    return context, gate, pricing


def plan_completed_treatment(patient, visit_date: date, lines: Sequence[LineInput],
                             manual_discount: Optional[ManualDiscount] = None,
                             signature_ref: str = '', beneficiaries: Sequence = (),
                             doctor_notes: str = '', currency: Optional[str] = None,
                             context: Optional[PricingContext] = None):
    """
    Validate and price a save request, returning the plans to persist.

    Raises:
        ValidationError: empty or mixed-currency lines, inactive promotion,
            missing signature
        BeneficiaryCapacityError: invalid beneficiary list
    """
    currency = currency or (lines[0].currency if lines else get_default_currency())
    manual_discount = manual_discount or ManualDiscount.none()

    context, gate, pricing = price_completed_treatment(patient, visit_date, lines, manual_discount, context)

    promotions = _load_promotions(lines)
    _validate_lines(lines, currency, promotions, visit_date, context)

    if gate.requires_signature and not signature_ref:
        raise ValidationError({'signature_ref': 'Patient signature is required'})

    promotion = _header_promotion(lines, promotions)
    role = ParticipationRole.PAYER if is_group_promotion(promotion) else ParticipationRole.INDIVIDUAL

    plan = TreatmentPlan(
        patient=patient,
        visit_date=visit_date,
        currency=currency,
        role=role,
        lines=tuple(lines),
        pricing=pricing,
        is_historical=context.is_historical,
        requires_signature=gate.requires_signature,
        manual_discount=manual_discount,
        signature_ref=signature_ref or '',
        promotion=promotion,
        doctor_notes=doctor_notes,
    )

    if not beneficiaries:
        return (plan,)

    try:
        return expand_group_promotion(plan, beneficiaries)
    except BeneficiaryCapacityError as e:
        metrics.beneficiary_capacity_rejections_total.inc()
        logger.warning(
            'Group promotion rejected - beneficiary capacity',
            extra={
                'patient_id': str(patient.pk),
                'promotion_id': str(promotion.pk) if promotion else None,
                'beneficiaries_count': len(beneficiaries),
                'error_code': e.code,
            }
        )
        raise


def _persist_plan(plan: TreatmentPlan, clinicians: dict, parent=None, request_id=None, created_by=None):
    pricing: PricingResult = plan.pricing
    treatment = CompletedTreatment(
        patient=plan.patient,
        visit_date=plan.visit_date,
        currency=plan.currency,
        subtotal=pricing.subtotal,
        discount_total=pricing.discount,
        final_total=pricing.total,
        discount_type=plan.manual_discount.type,
        discount_value=quantize_money(plan.manual_discount.value),
        discount_reason=pricing.discount_reason,
        role=plan.role,
        parent=parent,
        promotion=plan.promotion,
        signature_ref=plan.signature_ref,
        requires_signature=plan.requires_signature,
        is_historical=plan.is_historical,
        paid_amount=Decimal('0.00'),
        status=derive_payment_status(pricing.total, Decimal('0.00')),
        request_id=request_id,
        doctor_notes=plan.doctor_notes,
        created_by=created_by,
    )
    # The request_id unique index is left to the database so a concurrent
    # duplicate surfaces as IntegrityError inside the transaction.
    treatment.full_clean(validate_constraints=False)
    treatment.save(skip_validation=True)

    for result in pricing.line_results:
        line = result.line
        clinician = clinicians.get(str(line.clinician_id)) if line.clinician_id else None
        TreatmentLine(
            treatment=treatment,
            catalog_ref_id=line.catalog_id if isinstance(line, TreatmentLineInput) else None,
            promotion_id=line.promotion_id if isinstance(line, PromotionLineInput) else None,
            name=line.name,
            code=line.code,
            unit_price_original=result.unit_price,
            unit_price_final=result.unit_price_final,
            currency=line.currency,
            quantity=result.quantity,
            note=line.note,
            clinician=clinician,
            clinician_name=clinician.display_name if clinician else '',
            disable_age_discount=getattr(line, 'disable_age_discount', False),
        ).save()

    return treatment


def _increment_usage_counters(lines: Sequence[LineInput]):
    """Counters only ever go up, once per saved transaction."""
    for line in lines:
        if isinstance(line, TreatmentLineInput) and line.catalog_id is not None:
            Treatment.objects.filter(pk=line.catalog_id).update(
                times_performed=F('times_performed') + max(1, int(line.quantity))
            )
    promotion_ids = {line.promotion_id for line in lines if isinstance(line, PromotionLineInput)}
    for promotion_id in promotion_ids:
        Promotion.objects.filter(pk=promotion_id).update(times_used=F('times_used') + 1)


def _existing_for_request(request_id: Optional[str]) -> Optional[CompletedTreatment]:
    if not request_id:
        return None
    return CompletedTreatment.objects.filter(request_id=request_id).first()


def save_completed_treatment(
    patient,
    visit_date: date,
    lines: Sequence[LineInput],
    manual_discount: Optional[ManualDiscount] = None,
    signature_ref: str = '',
    beneficiaries: Sequence = (),
    doctor_notes: str = '',
    currency: Optional[str] = None,
    request_id: Optional[str] = None,
    created_by=None,
    context: Optional[PricingContext] = None,
) -> CompletedTreatment:
    """
    Save a completed treatment (and its beneficiaries) atomically.

    Returns:
        The individual or payer CompletedTreatment; beneficiary rows are
        reachable through ``treatment.beneficiaries``.

    Raises:
        ValidationError / BeneficiaryCapacityError: before any write
        PersistenceError: the database rejected the write; nothing was kept
    """
    start_time = time.time()

    existing = _existing_for_request(request_id)
    if existing is not None:
        metrics.completed_treatments_saved_total.labels(role=existing.role, result='idempotent').inc()
        logger.info(
            'Completed treatment save idempotent - already committed',
            extra={'treatment_id': str(existing.id), 'request_id': request_id}
        )
        return existing

    plans = plan_completed_treatment(
        patient, visit_date, lines,
        manual_discount=manual_discount,
        signature_ref=signature_ref,
        beneficiaries=beneficiaries,
        doctor_notes=doctor_notes,
        currency=currency,
        context=context,
    )
    head_plan = plans[0]

    clinician_ids = {str(line.clinician_id) for line in lines if line.clinician_id}
    clinicians = {
        str(pk): clinician
        for pk, clinician in Clinician.objects.in_bulk(clinician_ids).items()
    } if clinician_ids else {}
    missing = clinician_ids - set(clinicians)
    if missing:
        raise ValidationError({'lines': f'Unknown clinician(s): {", ".join(sorted(missing))}'})

    with trace_span('save_completed_treatment', attributes={
        'patient_id': str(patient.pk),
        'role': head_plan.role,
        'beneficiaries_count': len(plans) - 1,
    }):
        try:
            with transaction.atomic():
                head = _persist_plan(head_plan, clinicians, request_id=request_id, created_by=created_by)
                for plan in plans[1:]:
                    _persist_plan(plan, clinicians, parent=head, created_by=created_by)
                _increment_usage_counters(head_plan.lines)
        except IntegrityError as e:
            # A concurrent retry with the same request id committed first.
            existing = _existing_for_request(request_id)
            if existing is not None:
                metrics.completed_treatments_saved_total.labels(role=existing.role, result='idempotent').inc()
                return existing
            metrics.completed_treatments_saved_total.labels(role=head_plan.role, result='failure').inc()
            raise PersistenceError(f'Could not save completed treatment: {e}') from e
        except DatabaseError as e:
            metrics.completed_treatments_saved_total.labels(role=head_plan.role, result='failure').inc()
            metrics.exceptions_total.labels(
                exception_type=e.__class__.__name__,
                location='save_completed_treatment'
            ).inc()
            logger.error(
                'Completed treatment save failed - rolled back',
                extra={'patient_id': str(patient.pk), 'error': str(e)}
            )
            raise PersistenceError(f'Could not save completed treatment: {e}') from e

    duration = time.time() - start_time
    metrics.completed_treatment_save_duration_seconds.observe(duration)
    for plan in plans:
        metrics.completed_treatments_saved_total.labels(role=plan.role, result='success').inc()

    log_treatment_saved(head, beneficiaries_count=len(plans) - 1, duration_ms=int(duration * 1000))
    log_consistency_checkpoint(
        'completed_treatment_saved',
        entity_ids={'treatment_id': str(head.id)},
        checks_passed={
            'lines_written': head.lines.count() == len(head_plan.pricing.line_results),
            'beneficiaries_written': head.beneficiaries.count() == len(plans) - 1,
            'total_matches': head.final_total == head.subtotal - head.discount_total,
        },
    )
    return head
