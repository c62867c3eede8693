"""
Billing error taxonomy.

Validation errors subclass Django's ValidationError so views and forms treat
them uniformly; they are always raised before any write.
"""
from django.core.exceptions import ValidationError


class BeneficiaryCapacityError(ValidationError):
    """Raised when a group promotion lists more beneficiaries than it allows."""
    pass


class ExternalServiceError(Exception):
    """Raised when the exchange-rate service times out or answers garbage."""
    pass


class PersistenceError(Exception):
    """Raised when the atomic save of a completed treatment fails."""
    pass


class ConsistencyError(Exception):
    """Raised when a cached ledger aggregate disagrees with the payments."""

    def __init__(self, message, treatment_id=None, expected=None, actual=None):
        super().__init__(message)
        self.treatment_id = treatment_id
        self.expected = expected
        self.actual = actual
