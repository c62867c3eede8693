"""
Prometheus metrics for the billing engine.
"""
from prometheus_client import Counter, Histogram


class MetricsRegistry:
    """
    Central metrics registry.

    Provides typed access to all application metrics.
    """

    def __init__(self):
        self._setup_metrics()

    def _create_counter(self, name, description, labels=None):
        return Counter(name, description, labels or [])

    def _create_histogram(self, name, description, labels=None, buckets=None):
        if buckets:
            return Histogram(name, description, labels or [], buckets=buckets)
        return Histogram(name, description, labels or [])

    def _setup_metrics(self):
        """Setup all application metrics."""

        # ===================================================================
        # HTTP Metrics
        # ===================================================================
        self.http_requests_total = self._create_counter(
            'http_requests_total',
            'Total HTTP requests',
            ['path', 'method', 'status']
        )

        self.exceptions_total = self._create_counter(
            'exceptions_total',
            'Total exceptions',
            ['exception_type', 'location']
        )

        # ===================================================================
        # Treatment Metrics
        # ===================================================================
        self.completed_treatments_saved_total = self._create_counter(
            'completed_treatments_saved_total',
            'Completed treatment records persisted',
            ['role', 'result']  # role: individual|payer|beneficiary
        )

        self.completed_treatment_save_duration_seconds = self._create_histogram(
            'completed_treatment_save_duration_seconds',
            'Duration of the atomic completed-treatment save',
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
        )

        self.beneficiary_capacity_rejections_total = self._create_counter(
            'beneficiary_capacity_rejections_total',
            'Group promotion saves rejected for exceeding max beneficiaries'
        )

        # ===================================================================
        # Payment Metrics
        # ===================================================================
        self.payments_recorded_total = self._create_counter(
            'payments_recorded_total',
            'Payments appended to the ledger',
            ['result']  # success|idempotent|rejected
        )

        self.payments_deleted_total = self._create_counter(
            'payments_deleted_total',
            'Payments deleted from the ledger'
        )

        self.payment_status_transitions_total = self._create_counter(
            'payment_status_transitions_total',
            'Payment status changes after a ledger mutation',
            ['from_status', 'to_status']
        )

        self.ledger_inconsistencies_total = self._create_counter(
            'ledger_inconsistencies_total',
            'Cached paid amount or status disagreed with the ledger',
            ['location']
        )

        # ===================================================================
        # Currency Metrics
        # ===================================================================
        self.currency_conversions_total = self._create_counter(
            'currency_conversions_total',
            'Currency conversions by rate source',
            ['source']  # identity|api|fallback
        )

        self.exchange_rate_lookup_duration_seconds = self._create_histogram(
            'exchange_rate_lookup_duration_seconds',
            'Duration of the external exchange-rate lookup',
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 3.0, 5.0]
        )


# Global metrics instance
metrics = MetricsRegistry()
