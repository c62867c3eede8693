"""
DRF Permission classes for billing RBAC.

Payment ledger permissions:
- Reception: CAN record and delete payments
- Billing: CAN record and delete payments
- Clinicians: read-only (treatments, summaries)
- Superuser: Full access
"""
from rest_framework import permissions


class CanManagePayments(permissions.BasePermission):
    """
    Allow access to users in Reception or Billing groups, or superusers.

    Used for the payment ledger endpoints.
    """

    message = 'Access to payment operations requires Reception or Billing role, or admin privileges.'

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        if request.user.is_superuser:
            return True

        allowed_groups = ['Reception', 'Billing']
        return request.user.groups.filter(name__in=allowed_groups).exists()
