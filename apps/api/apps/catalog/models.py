"""
Catalog models - dental treatments and promotions.

Read-only to the billing engine except for the usage counters, which are
incremented once per saved completed treatment and never decremented.
"""
from datetime import date
from decimal import Decimal

from django.db import models
from django.utils.translation import gettext_lazy as _


class Treatment(models.Model):
    """
    Treatment catalog entry (procedure with a list price).
    """
    code = models.CharField(_('Code'), max_length=50, unique=True)
    name = models.CharField(_('Name'), max_length=255)
    specialty = models.CharField(_('Specialty'), max_length=100, blank=True)
    notes = models.TextField(_('Notes'), blank=True)

    # Pricing
    price = models.DecimalField(_('Price'), max_digits=10, decimal_places=2)
    currency = models.CharField(_('Currency'), max_length=3, default='HNL')

    times_performed = models.PositiveIntegerField(_('Times performed'), default=0)
    is_active = models.BooleanField(_('Active'), default=True)

    created_at = models.DateTimeField(_('Created At'), auto_now_add=True)
    updated_at = models.DateTimeField(_('Updated At'), auto_now=True)

    class Meta:
        db_table = 'catalog_treatment'
        ordering = ['name']
        indexes = [
            models.Index(fields=['code'], name='idx_treatment_code'),
            models.Index(fields=['specialty'], name='idx_treatment_specialty'),
        ]
        verbose_name = _('Treatment')
        verbose_name_plural = _('Treatments')

    def __str__(self):
        return f"{self.name} ({self.code})"


class Promotion(models.Model):
    """
    Promotional offer. ``promotional_price`` is the price charged; a group
    promotion is paid by one patient and shared free with up to
    ``max_beneficiaries`` other patients.
    """
    code = models.CharField(_('Code'), max_length=50, unique=True)
    name = models.CharField(_('Name'), max_length=255)
    notes = models.TextField(_('Notes'), blank=True)

    discount_percent = models.DecimalField(
        _('Discount %'),
        max_digits=5,
        decimal_places=2,
        default=Decimal('0.00')
    )
    original_price = models.DecimalField(_('Original price'), max_digits=10, decimal_places=2)
    promotional_price = models.DecimalField(_('Promotional price'), max_digits=10, decimal_places=2)
    currency = models.CharField(_('Currency'), max_length=3, default='HNL')

    starts_on = models.DateField(_('Starts on'))
    ends_on = models.DateField(_('Ends on'))
    is_active = models.BooleanField(_('Active'), default=True)

    is_group = models.BooleanField(
        _('Group promotion'),
        default=False,
        help_text=_('Set at creation time; one payer plus beneficiaries at no cost')
    )
    max_beneficiaries = models.PositiveIntegerField(_('Max beneficiaries'), default=0)

    times_used = models.PositiveIntegerField(_('Times used'), default=0)

    created_at = models.DateTimeField(_('Created At'), auto_now_add=True)
    updated_at = models.DateTimeField(_('Updated At'), auto_now=True)

    class Meta:
        db_table = 'catalog_promotion'
        ordering = ['-starts_on', 'name']
        verbose_name = _('Promotion')
        verbose_name_plural = _('Promotions')
        constraints = [
            models.CheckConstraint(
                condition=models.Q(promotional_price__gte=0),
                name='promotion_price_non_negative'
            ),
            models.CheckConstraint(
                condition=models.Q(ends_on__gte=models.F('starts_on')),
                name='promotion_window_ordered'
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.code})"

    def is_active_on(self, on_date: date) -> bool:
        return self.is_active and self.starts_on <= on_date <= self.ends_on
