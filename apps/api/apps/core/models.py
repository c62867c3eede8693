"""
Core models: app_settings (clinic-wide billing configuration).
"""
import uuid
from django.db import models
from django.utils.translation import gettext_lazy as _


class AppSettings(models.Model):
    """
    Global application settings (single row).

    Overrides the HISTORICAL_* and CLINIC_DEFAULT_CURRENCY settings at
    runtime; a missing row means the Django settings apply.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    default_currency = models.CharField(_('Default currency'), max_length=3, default='HNL')
    historical_cutoff_date = models.DateField(
        _('Historical cutoff date'),
        null=True,
        blank=True,
        help_text=_('Visits dated before this day are historical records (no charge, no signature)')
    )
    historical_records_enabled = models.BooleanField(_('Historical records enabled'), default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'app_settings'
        verbose_name = 'App Settings'
        verbose_name_plural = 'App Settings'

    def __str__(self):
        return f"App Settings ({self.default_currency}, cutoff {self.historical_cutoff_date or '-'})"

    @classmethod
    def load(cls):
        """Return the settings row, or None when not configured."""
        return cls.objects.order_by('created_at').first()
