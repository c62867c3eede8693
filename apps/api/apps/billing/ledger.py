"""
Payment ledger and status engine.

Payments are appended or deleted, never edited. After every mutation the
paid aggregate is recomputed from the full payment list (never incremented)
and the cached ``paid_amount``/``status`` columns of the treatment are
rewritten in the same transaction, under a row lock on the treatment so
concurrent inserts cannot lose updates.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional
import time

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction

from apps.billing.currency import quantize_money
from apps.billing.exceptions import ConsistencyError
from apps.billing.models import (
    CompletedTreatment,
    Payment,
    PaymentMethodChoices,
    PaymentStatusChoices,
)
from apps.core.observability import metrics, get_sanitized_logger
from apps.core.observability.events import (
    log_consistency_checkpoint,
    log_payment_deleted,
    log_payment_recorded,
)
from apps.core.observability.tracing import trace_span
from apps.integrations.exchange_rates import convert

logger = get_sanitized_logger(__name__)

ZERO = Decimal('0.00')


@dataclass(frozen=True)
class PaymentSummary:
    treatment_id: str
    currency: str
    final_total: Decimal
    paid: Decimal
    pending: Decimal
    status: str
    payments_count: int


def derive_payment_status(final_total: Decimal, paid: Decimal) -> str:
    """
    Status as a pure function of the two amounts.

    pagado when nothing is owed or everything is paid, pendiente when
    nothing is paid yet, parcialmente_pagado otherwise.
    """
    if final_total <= 0 or paid >= final_total:
        return PaymentStatusChoices.PAID
    if paid <= 0:
        return PaymentStatusChoices.PENDING
    return PaymentStatusChoices.PARTIALLY_PAID


def compute_paid(payments: Iterable[Payment]) -> Decimal:
    """Sum of the payments expressed in the treatment currency."""
    return quantize_money(sum((p.amount_in_treatment_currency for p in payments), ZERO))


def _build_summary(treatment: CompletedTreatment, paid: Decimal, payments_count: int) -> PaymentSummary:
    return PaymentSummary(
        treatment_id=str(treatment.id),
        currency=treatment.currency,
        final_total=treatment.final_total,
        paid=paid,
        pending=max(ZERO, treatment.final_total - paid),
        status=derive_payment_status(treatment.final_total, paid),
        payments_count=payments_count,
    )


def _recompute_and_store(treatment: CompletedTreatment) -> PaymentSummary:
    """
    Recompute the aggregate from the ledger and rewrite the cached columns.

    Must run inside the transaction holding the treatment row lock.
    """
    payments = list(treatment.payments.all())
    summary = _build_summary(treatment, compute_paid(payments), len(payments))

    if treatment.status != summary.status:
        metrics.payment_status_transitions_total.labels(
            from_status=treatment.status,
            to_status=summary.status
        ).inc()

    if treatment.paid_amount != summary.paid or treatment.status != summary.status:
        treatment.paid_amount = summary.paid
        treatment.status = summary.status
        treatment.save(update_fields=['paid_amount', 'status', 'updated_at'], skip_validation=True)

    return summary


def _validate_payment_input(amount, currency: str, method: str) -> Decimal:
    errors = {}

    try:
        amount = quantize_money(amount)
    except (ValueError, InvalidOperation):
        errors['amount'] = f'Invalid amount: {amount!r}'
    else:
        if amount <= 0:
            errors['amount'] = 'Payment amount must be greater than 0'

    if method not in PaymentMethodChoices.values:
        errors['method'] = f'Unknown payment method: {method!r}'

    if not currency or currency.upper() not in settings.SUPPORTED_CURRENCIES:
        errors['currency'] = (
            f'Unsupported currency: {currency!r}. '
            f'Supported: {", ".join(settings.SUPPORTED_CURRENCIES)}'
        )

    if errors:
        raise ValidationError(errors)
    return amount


def add_payment(
    treatment_id,
    amount,
    currency: str,
    method: str,
    note: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    created_by=None,
) -> PaymentSummary:
    """
    Append a payment and return the recomputed summary.

    IDEMPOTENT: a repeated ``idempotency_key`` on the same treatment returns
    the current summary without writing a second row.

    Raises:
        CompletedTreatment.DoesNotExist: unknown treatment
        ValidationError: non-positive amount, unknown method, unsupported currency
        NoRateAvailable: currency differs and no rate can be resolved
    """
    start_time = time.time()

    try:
        amount = _validate_payment_input(amount, currency, method)
    except ValidationError:
        metrics.payments_recorded_total.labels(result='rejected').inc()
        raise
    currency = currency.upper()

    with trace_span('add_payment', attributes={'treatment_id': str(treatment_id), 'currency': currency}):
        # Currency of a saved treatment never changes, so the (possibly slow)
        # rate lookup happens before the row lock is taken.
        treatment_currency = CompletedTreatment.objects.values_list('currency', flat=True).get(pk=treatment_id)
        conversion = convert(amount, currency, treatment_currency)
        if conversion.converted_amount <= 0:
            metrics.payments_recorded_total.labels(result='rejected').inc()
            raise ValidationError({
                'amount': (
                    f'{amount} {currency} is worth less than 0.01 {treatment_currency} '
                    f'at rate {conversion.rate}'
                )
            })

        with transaction.atomic():
            treatment = CompletedTreatment.objects.select_for_update().get(pk=treatment_id)

            if idempotency_key:
                existing = treatment.payments.filter(idempotency_key=idempotency_key).first()
                if existing is not None:
                    metrics.payments_recorded_total.labels(result='idempotent').inc()
                    logger.info(
                        'Payment idempotent - already recorded',
                        extra={'treatment_id': str(treatment.id), 'payment_id': str(existing.id)}
                    )
                    return _recompute_and_store(treatment)

            payment = Payment(
                treatment=treatment,
                amount=amount,
                currency=currency,
                original_amount=conversion.original_amount,
                original_currency=conversion.original_currency,
                converted_amount=conversion.converted_amount,
                converted_currency=conversion.target_currency,
                rate=conversion.rate,
                rate_source=conversion.source,
                method=method,
                note=note or '',
                idempotency_key=idempotency_key,
                created_by=created_by,
            )
            payment.save()

            summary = _recompute_and_store(treatment)

    metrics.payments_recorded_total.labels(result='success').inc()
    log_payment_recorded(payment, summary)
    logger.info(
        'Payment recorded',
        extra={
            'treatment_id': summary.treatment_id,
            'payment_id': str(payment.id),
            'status': summary.status,
            'duration_ms': int((time.time() - start_time) * 1000),
        }
    )
    return summary


def delete_payment(payment_id) -> PaymentSummary:
    """
    Remove a payment from the ledger and return the recomputed summary.

    Raises:
        Payment.DoesNotExist: unknown payment
    """
    with trace_span('delete_payment', attributes={'payment_id': str(payment_id)}):
        with transaction.atomic():
            treatment_id = Payment.objects.values_list('treatment_id', flat=True).get(pk=payment_id)
            treatment = CompletedTreatment.objects.select_for_update().get(pk=treatment_id)
            # Re-read under the lock; a concurrent delete raises DoesNotExist here.
            payment = treatment.payments.get(pk=payment_id)
            payment.delete()
            summary = _recompute_and_store(treatment)

    metrics.payments_deleted_total.inc()
    log_payment_deleted(payment_id, treatment_id, summary)
    return summary


def _check_cached_aggregate(treatment: CompletedTreatment, summary: PaymentSummary, location: str) -> bool:
    checks = {
        'paid_amount_matches': treatment.paid_amount == summary.paid,
        'status_matches': treatment.status == summary.status,
    }
    log_consistency_checkpoint(
        'payment_ledger_aggregate',
        entity_ids={'treatment_id': str(treatment.id)},
        checks_passed=checks,
        location=location,
    )
    consistent = all(checks.values())
    if not consistent:
        metrics.ledger_inconsistencies_total.labels(location=location).inc()
    return consistent


def get_summary(treatment_id) -> PaymentSummary:
    """
    Payment summary, always recomputed from the ledger.

    A cached aggregate that disagrees with the ledger is reported and
    rewritten from the full payment list.
    """
    treatment = CompletedTreatment.objects.get(pk=treatment_id)
    payments = list(treatment.payments.all())
    summary = _build_summary(treatment, compute_paid(payments), len(payments))

    if not _check_cached_aggregate(treatment, summary, location='get_summary'):
        summary = reconcile_treatment(treatment_id)
    return summary


def assert_ledger_consistent(treatment: CompletedTreatment) -> PaymentSummary:
    """
    Raises:
        ConsistencyError: cached paid_amount or status disagrees with the ledger
    """
    payments = list(treatment.payments.all())
    summary = _build_summary(treatment, compute_paid(payments), len(payments))
    if not _check_cached_aggregate(treatment, summary, location='assert_ledger_consistent'):
        raise ConsistencyError(
            f'Treatment {treatment.id}: cached {treatment.paid_amount}/{treatment.status} '
            f'but ledger says {summary.paid}/{summary.status}',
            treatment_id=str(treatment.id),
            expected=(summary.paid, summary.status),
            actual=(treatment.paid_amount, treatment.status),
        )
    return summary


def reconcile_treatment(treatment_id) -> PaymentSummary:
    """Full recompute of one treatment's cached aggregate under the row lock."""
    with transaction.atomic():
        treatment = CompletedTreatment.objects.select_for_update().get(pk=treatment_id)
        summary = _recompute_and_store(treatment)

    logger.warning(
        'Ledger aggregate rewritten from payments',
        extra={'treatment_id': summary.treatment_id, 'paid': str(summary.paid), 'status': summary.status}
    )
    return summary
