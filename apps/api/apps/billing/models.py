"""Billing models - completed treatments, their lines and the payment ledger."""
from django.conf import settings
from django.db import models
from django.utils.translation import gettext_lazy as _
from django.core.exceptions import ValidationError
from decimal import Decimal
import uuid


class ParticipationRole(models.TextChoices):
    """
    Role of a record in a (possibly group) promotion transaction.

    A group transaction has exactly one PAYER and up to
    ``Promotion.max_beneficiaries`` BENEFICIARY rows pointing at it.
    """
    INDIVIDUAL = 'individual', _('Individual')
    PAYER = 'payer', _('Payer')
    BENEFICIARY = 'beneficiary', _('Beneficiary')


class DiscountType(models.TextChoices):
    NONE = 'none', _('None')
    FIXED_AMOUNT = 'fixed_amount', _('Fixed amount')
    PERCENTAGE = 'percentage', _('Percentage')


class PaymentStatusChoices(models.TextChoices):
    """
    Derived payment status. Never set directly; recomputed from the ledger
    after every payment mutation.
    """
    PENDING = 'pendiente', _('Pending')
    PARTIALLY_PAID = 'parcialmente_pagado', _('Partially paid')
    PAID = 'pagado', _('Paid')


class PaymentMethodChoices(models.TextChoices):
    CASH = 'efectivo', _('Cash')
    CREDIT_CARD = 'tarjeta_credito', _('Credit card')
    DEBIT_CARD = 'tarjeta_debito', _('Debit card')
    TRANSFER = 'transferencia', _('Bank transfer')
    CHECK = 'cheque', _('Check')
    BANK_DEPOSIT = 'deposito_bancario', _('Bank deposit')
    PAYPAL = 'paypal', _('PayPal')
    OTHER = 'otro', _('Other')


class RateSource(models.TextChoices):
    IDENTITY = 'identity', _('Same currency')
    API = 'api', _('Exchange-rate service')
    FALLBACK = 'fallback', _('Fixed fallback rate')


class CompletedTreatment(models.Model):
    """
    Authoritative priced record of one patient visit.

    Business Rules:
    - final_total = subtotal - discount_total >= 0
    - beneficiary rows carry zero totals and never require a signature
    - paid_amount/status mirror the payment ledger (recomputed, never edited)
    - header and lines are written together and never line-edited afterwards
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    patient = models.ForeignKey(
        'clinical.Patient',
        on_delete=models.PROTECT,
        related_name='completed_treatments',
        verbose_name=_('Patient')
    )
    visit_date = models.DateField(_('Visit date'))
    currency = models.CharField(
        _('Currency'),
        max_length=3,
        default='HNL',
        help_text=_('ISO 4217 currency code')
    )

    # Financial fields
    subtotal = models.DecimalField(
        _('Subtotal'),
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text=_('Sum of unit price x quantity over all lines')
    )
    discount_total = models.DecimalField(
        _('Discount total'),
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00')
    )
    final_total = models.DecimalField(
        _('Final total'),
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text=_('subtotal - discount_total')
    )
    discount_type = models.CharField(
        _('Manual discount type'),
        max_length=20,
        choices=DiscountType.choices,
        default=DiscountType.NONE
    )
    discount_value = models.DecimalField(
        _('Manual discount value'),
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00')
    )
    discount_reason = models.TextField(_('Discount reason'), blank=True)

    # Group promotion
    role = models.CharField(
        _('Role'),
        max_length=20,
        choices=ParticipationRole.choices,
        default=ParticipationRole.INDIVIDUAL
    )
    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='beneficiaries',
        verbose_name=_('Payer record'),
        help_text=_('Payer record this beneficiary row belongs to')
    )
    promotion = models.ForeignKey(
        'catalog.Promotion',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='completed_treatments',
        verbose_name=_('Promotion')
    )

    # Signature / historical regime
    signature_ref = models.CharField(_('Signature reference'), max_length=255, blank=True)
    requires_signature = models.BooleanField(_('Requires signature'), default=True)
    is_historical = models.BooleanField(_('Historical record'), default=False)

    # Ledger aggregate (cache of the payment ledger)
    paid_amount = models.DecimalField(
        _('Paid amount'),
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00')
    )
    status = models.CharField(
        _('Payment status'),
        max_length=20,
        choices=PaymentStatusChoices.choices,
        default=PaymentStatusChoices.PENDING
    )

    request_id = models.CharField(
        _('Request ID'),
        max_length=128,
        null=True,
        blank=True,
        help_text=_('Client-generated key; a retried save returns the committed record')
    )
    doctor_notes = models.TextField(_('Doctor notes'), blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
        verbose_name=_('Created By')
    )
    created_at = models.DateTimeField(_('Created At'), auto_now_add=True)
    updated_at = models.DateTimeField(_('Updated At'), auto_now=True)

    class Meta:
        db_table = 'completed_treatment'
        ordering = ['-visit_date', '-created_at']
        verbose_name = _('Completed treatment')
        verbose_name_plural = _('Completed treatments')
        indexes = [
            models.Index(fields=['patient', '-visit_date'], name='idx_ct_patient_visit'),
            models.Index(fields=['status'], name='idx_ct_status'),
            models.Index(fields=['parent'], name='idx_ct_parent'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(subtotal__gte=0),
                name='ct_subtotal_non_negative'
            ),
            models.CheckConstraint(
                condition=models.Q(discount_total__gte=0),
                name='ct_discount_non_negative'
            ),
            models.CheckConstraint(
                condition=models.Q(final_total__gte=0),
                name='ct_final_total_non_negative'
            ),
            models.CheckConstraint(
                condition=models.Q(paid_amount__gte=0),
                name='ct_paid_amount_non_negative'
            ),
            models.UniqueConstraint(
                fields=['request_id'],
                condition=models.Q(request_id__isnull=False),
                name='uniq_ct_request_id',
                violation_error_message='A treatment with this request id was already saved'
            ),
        ]

    def __str__(self):
        return f"Treatment {self.id} - {self.get_role_display()} - {self.currency} {self.final_total}"

    def clean(self):
        """
        Validate record business rules.

        1. final_total must equal subtotal - discount_total
        2. beneficiary rows are free, linked to a payer and unsigned
        3. a signature is present whenever one is required
        """
        super().clean()

        expected_total = self.subtotal - self.discount_total
        if abs(self.final_total - expected_total) > Decimal('0.01'):
            raise ValidationError({
                'final_total': (
                    f'Total mismatch: expected {expected_total} '
                    f'(subtotal {self.subtotal} - discount {self.discount_total}), '
                    f'but got {self.final_total}'
                )
            })

        if self.role == ParticipationRole.BENEFICIARY:
            if self.final_total != 0:
                raise ValidationError({'final_total': 'Beneficiary records must have a zero total'})
            if self.requires_signature:
                raise ValidationError({'requires_signature': 'Beneficiary records never require a signature'})
            if not self.parent_id:
                raise ValidationError({'parent': 'Beneficiary records must reference the payer record'})
        elif self.parent_id:
            raise ValidationError({'parent': 'Only beneficiary records reference a payer record'})

        if self.requires_signature and not self.signature_ref:
            raise ValidationError({'signature_ref': 'Patient signature is required'})

    def save(self, *args, **kwargs):
        """
        Override save to enforce full_clean() validation.
        """
        if not kwargs.pop('skip_validation', False):
            self.full_clean()
        super().save(*args, **kwargs)

    @property
    def pending_amount(self):
        return max(Decimal('0.00'), self.final_total - self.paid_amount)


class TreatmentLine(models.Model):
    """
    Priced line of a completed treatment (snapshot of the catalog entry).

    Business Rules:
    - quantity >= 1
    - unit prices >= 0
    - unit_price_final is the price after the line's age/promo pricing
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    treatment = models.ForeignKey(
        CompletedTreatment,
        on_delete=models.CASCADE,
        related_name='lines',
        verbose_name=_('Completed treatment')
    )
    catalog_ref = models.ForeignKey(
        'catalog.Treatment',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='treatment_lines',
        verbose_name=_('Catalog treatment')
    )
    promotion = models.ForeignKey(
        'catalog.Promotion',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='treatment_lines',
        verbose_name=_('Promotion')
    )
    name = models.CharField(_('Name'), max_length=255)
    code = models.CharField(_('Code'), max_length=50, blank=True)

    unit_price_original = models.DecimalField(_('Unit price (list)'), max_digits=12, decimal_places=2)
    unit_price_final = models.DecimalField(_('Unit price (charged)'), max_digits=12, decimal_places=2)
    currency = models.CharField(_('Currency'), max_length=3, default='HNL')
    quantity = models.PositiveIntegerField(_('Quantity'), default=1)
    note = models.TextField(_('Note'), blank=True)

    clinician = models.ForeignKey(
        'clinical.Clinician',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='treatment_lines',
        verbose_name=_('Clinician')
    )
    clinician_name = models.CharField(_('Clinician name'), max_length=255, blank=True)
    disable_age_discount = models.BooleanField(_('Age discount disabled'), default=False)

    created_at = models.DateTimeField(_('Created At'), auto_now_add=True)

    class Meta:
        db_table = 'treatment_line'
        ordering = ['created_at']
        verbose_name = _('Treatment line')
        verbose_name_plural = _('Treatment lines')
        indexes = [
            models.Index(fields=['treatment'], name='idx_tl_treatment'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=1),
                name='tl_quantity_positive'
            ),
            models.CheckConstraint(
                condition=models.Q(unit_price_original__gte=0),
                name='tl_unit_price_original_non_negative'
            ),
            models.CheckConstraint(
                condition=models.Q(unit_price_final__gte=0),
                name='tl_unit_price_final_non_negative'
            ),
        ]

    def __str__(self):
        return f"{self.name} x {self.quantity} = {self.line_total}"

    @property
    def line_total(self):
        return self.unit_price_final * self.quantity

    def clean(self):
        super().clean()
        if self.quantity is not None and self.quantity < 1:
            raise ValidationError({'quantity': 'Quantity must be at least 1'})

    def save(self, *args, **kwargs):
        if not kwargs.pop('skip_validation', False):
            self.full_clean()
        super().save(*args, **kwargs)


class Payment(models.Model):
    """
    Ledger entry against a completed treatment.

    Append/delete only: an existing payment is never updated. The amount is
    stored as entered together with its conversion into the treatment
    currency, so later rate changes never alter the paid aggregate.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    treatment = models.ForeignKey(
        CompletedTreatment,
        on_delete=models.CASCADE,
        related_name='payments',
        verbose_name=_('Completed treatment')
    )

    amount = models.DecimalField(_('Amount'), max_digits=12, decimal_places=2)
    currency = models.CharField(_('Currency'), max_length=3)

    original_amount = models.DecimalField(_('Original amount'), max_digits=12, decimal_places=2)
    original_currency = models.CharField(_('Original currency'), max_length=3)
    converted_amount = models.DecimalField(
        _('Converted amount'),
        max_digits=12,
        decimal_places=2,
        help_text=_('Amount in the treatment currency')
    )
    converted_currency = models.CharField(_('Converted currency'), max_length=3)
    rate = models.DecimalField(_('Exchange rate'), max_digits=14, decimal_places=6, default=Decimal('1'))
    rate_source = models.CharField(
        _('Rate source'),
        max_length=20,
        choices=RateSource.choices,
        default=RateSource.IDENTITY
    )

    method = models.CharField(_('Method'), max_length=30, choices=PaymentMethodChoices.choices)
    note = models.TextField(_('Note'), blank=True)
    paid_at = models.DateTimeField(_('Paid At'), auto_now_add=True)

    idempotency_key = models.CharField(
        _('Idempotency Key'),
        max_length=128,
        null=True,
        blank=True,
        db_index=True
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
        verbose_name=_('Created By')
    )

    class Meta:
        db_table = 'payment'
        ordering = ['paid_at']
        verbose_name = _('Payment')
        verbose_name_plural = _('Payments')
        indexes = [
            models.Index(fields=['treatment', 'paid_at'], name='idx_payment_treatment'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name='payment_amount_positive'
            ),
            models.CheckConstraint(
                condition=models.Q(converted_amount__gt=0),
                name='payment_converted_positive'
            ),
            models.UniqueConstraint(
                fields=['treatment', 'idempotency_key'],
                condition=models.Q(idempotency_key__isnull=False),
                name='uniq_payment_idempotency_key',
                violation_error_message='Payment with this idempotency key already exists for this treatment'
            ),
        ]

    def __str__(self):
        return f"Payment {self.id} - {self.currency} {self.amount} ({self.get_method_display()})"

    @property
    def amount_in_treatment_currency(self):
        if self.original_currency == self.converted_currency:
            return self.original_amount
        return self.converted_amount

    def clean(self):
        super().clean()
        if self.amount is not None and self.amount <= 0:
            raise ValidationError({'amount': 'Payment amount must be greater than 0'})

    def save(self, *args, **kwargs):
        """
        Insert-only save; payments are deleted and re-entered, never edited.
        """
        if not self._state.adding:
            raise ValidationError('Payments cannot be modified once recorded')
        if not kwargs.pop('skip_validation', False):
            self.full_clean()
        super().save(*args, **kwargs)
