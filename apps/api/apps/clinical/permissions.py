"""
DRF Permission classes for the clinical endpoints billing exposes.

Historical bypass:
- any authenticated user reads it
- Reception, Billing and superusers change it
"""
from rest_framework import permissions


class HistoricalBypassPermission(permissions.BasePermission):

    message = 'Changing the historical bypass requires Reception or Billing role, or admin privileges.'

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        if request.method in permissions.SAFE_METHODS:
            return True

        if request.user.is_superuser:
            return True

        return request.user.groups.filter(name__in=['Reception', 'Billing']).exists()
