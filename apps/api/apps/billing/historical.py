"""
Historical-mode gate.

Visits dated before the clinic's go-live cutoff are historical records:
they are kept for the clinical history but carry no charge and need no
signature, unless the patient has the historical bypass switched on.

The gate works on an explicit PricingContext value. Nothing here reads or
writes ambient state; the per-patient bypass is looked up once, by key,
when the context is built.
"""
from dataclasses import dataclass
from datetime import date
from typing import Optional

from django.conf import settings
from django.utils.dateparse import parse_date

from apps.billing.models import ParticipationRole

HISTORICAL_NO_CHARGE_REASON = 'Historical record - no charge'


@dataclass(frozen=True)
class HistoricalPolicy:
    cutoff_date: Optional[date]
    enabled: bool = True

    def is_historical(self, visit_date: date) -> bool:
        if not self.enabled or self.cutoff_date is None:
            return False
        return visit_date < self.cutoff_date


@dataclass(frozen=True)
class PricingContext:
    """
    Pricing regime for one record.

    ``bypass`` only matters when ``is_historical`` is set: it forces the
    record to be priced and signed as if it were a current visit.
    """
    as_of_date: date
    is_historical: bool = False
    bypass: bool = False

    @property
    def charges_apply(self) -> bool:
        return not self.is_historical or self.bypass


@dataclass(frozen=True)
class GateDecision:
    is_historical: bool
    requires_pricing: bool
    requires_signature: bool
    reason: str = ''


def evaluate_gate(context: PricingContext, role: str = ParticipationRole.INDIVIDUAL) -> GateDecision:
    """
    Decide whether a record must be priced and signed.

    Beneficiary rows of a group promotion are never signed; everything else
    is signed exactly when it is priced.
    """
    requires_pricing = context.charges_apply
    requires_signature = requires_pricing and role != ParticipationRole.BENEFICIARY
    return GateDecision(
        is_historical=context.is_historical,
        requires_pricing=requires_pricing,
        requires_signature=requires_signature,
        reason='' if requires_pricing else HISTORICAL_NO_CHARGE_REASON,
    )


def _settings_cutoff() -> Optional[date]:
    raw = getattr(settings, 'HISTORICAL_CUTOFF_DATE', None)
    if not raw:
        return None
    if isinstance(raw, date):
        return raw
    return parse_date(raw)


def get_historical_policy() -> HistoricalPolicy:
    """
    Current historical-window policy.

    The core.AppSettings row wins when it sets a cutoff; otherwise the
    HISTORICAL_* Django settings apply.
    """
    from apps.core.models import AppSettings

    app_settings = AppSettings.load()
    if app_settings is not None and app_settings.historical_cutoff_date is not None:
        return HistoricalPolicy(
            cutoff_date=app_settings.historical_cutoff_date,
            enabled=app_settings.historical_records_enabled,
        )
    return HistoricalPolicy(
        cutoff_date=_settings_cutoff(),
        enabled=getattr(settings, 'HISTORICAL_RECORDS_ENABLED', True),
    )


def build_pricing_context(patient, visit_date: date, policy: Optional[HistoricalPolicy] = None) -> PricingContext:
    """Build the pricing context for ``patient`` visiting on ``visit_date``."""
    from apps.clinical.models import get_patient_bypass

    policy = policy or get_historical_policy()
    is_historical = policy.is_historical(visit_date)
    return PricingContext(
        as_of_date=visit_date,
        is_historical=is_historical,
        bypass=get_patient_bypass(patient) if is_historical else False,
    )
