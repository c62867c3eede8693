"""
Domain events logging helpers.

Provides structured event logging for billing operations.
"""
from typing import Dict, Optional

from .logging import get_sanitized_logger, sanitize_dict

logger = get_sanitized_logger(__name__)


def log_domain_event(
    event_name: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_ids: Optional[Dict[str, str]] = None,
    result: str = 'success',
    **extra_fields
):
    """
    Log a domain event with structured data.

    Args:
        event_name: Name of the event (e.g., 'payment_recorded')
        entity_type: Type of entity (e.g., 'CompletedTreatment', 'Payment')
        entity_id: ID of primary entity
        entity_ids: Dictionary of related entity IDs
        result: Result of operation (success, failure, blocked, ...)
        **extra_fields: Additional fields to log (will be sanitized)
    """
    event_data = {
        'event': event_name,
        'result': result,
    }

    if entity_type:
        event_data['entity_type'] = entity_type

    if entity_id:
        event_data['entity_id'] = entity_id

    if entity_ids:
        event_data.update(entity_ids)

    event_data.update(sanitize_dict(extra_fields))

    if result in ['failure', 'error']:
        logger.error(f'Domain event: {event_name}', extra=event_data)
    elif result in ['warning', 'blocked', 'fallback']:
        logger.warning(f'Domain event: {event_name}', extra=event_data)
    else:
        logger.info(f'Domain event: {event_name}', extra=event_data)


def log_consistency_checkpoint(
    checkpoint_name: str,
    entity_ids: Dict[str, str],
    checks_passed: Dict[str, bool],
    **extra_fields
):
    """
    Log a consistency checkpoint event.

    Example:
        log_consistency_checkpoint(
            'payment_ledger_aggregate',
            entity_ids={'treatment_id': str(treatment.id)},
            checks_passed={'paid_amount_matches': True, 'status_matches': True},
        )
    """
    all_passed = all(checks_passed.values())

    event_data = {
        'event': 'consistency_checkpoint',
        'checkpoint': checkpoint_name,
        'status': 'passed' if all_passed else 'failed',
        'checks': checks_passed,
    }
    event_data.update(entity_ids)
    event_data.update(sanitize_dict(extra_fields))

    if all_passed:
        logger.info(f'Checkpoint passed: {checkpoint_name}', extra=event_data)
    else:
        logger.error(f'Checkpoint FAILED: {checkpoint_name}', extra=event_data)


def log_treatment_saved(treatment, beneficiaries_count=0, duration_ms=None):
    """Log persistence of a completed treatment (and its group, if any)."""
    extra = {
        'role': treatment.role,
        'is_historical': treatment.is_historical,
        'lines_count': treatment.lines.count(),
        'beneficiaries_count': beneficiaries_count,
    }
    if duration_ms is not None:
        extra['duration_ms'] = duration_ms

    log_domain_event(
        'completed_treatment_saved',
        entity_type='CompletedTreatment',
        entity_id=str(treatment.id),
        entity_ids={'patient_id': str(treatment.patient_id)},
        **extra
    )


def log_payment_recorded(payment, summary):
    """Log a payment appended to the ledger."""
    log_domain_event(
        'payment_recorded',
        entity_type='Payment',
        entity_id=str(payment.id),
        entity_ids={'treatment_id': str(payment.treatment_id)},
        currency=payment.currency,
        converted_currency=payment.converted_currency,
        rate_source=payment.rate_source,
        status=summary.status,
    )


def log_payment_deleted(payment_id, treatment_id, summary):
    """Log a payment removed from the ledger."""
    log_domain_event(
        'payment_deleted',
        entity_type='Payment',
        entity_id=str(payment_id),
        entity_ids={'treatment_id': str(treatment_id)},
        status=summary.status,
    )


def log_rate_fallback(from_currency, to_currency, rate, reason):
    """Log that a conversion used the fixed fallback rate."""
    log_domain_event(
        'exchange_rate_fallback',
        entity_type='ExchangeRate',
        result='fallback',
        from_currency=from_currency,
        to_currency=to_currency,
        rate=str(rate),
        reason=reason,
    )


def log_historical_bypass_changed(setting, changed_by=None):
    """Log a per-patient historical bypass toggle."""
    log_domain_event(
        'historical_bypass_changed',
        entity_type='Patient',
        entity_id=str(setting.patient_id),
        bypass_historical_mode=setting.bypass_historical_mode,
        changed_by=str(changed_by.pk) if changed_by is not None else None,
    )
