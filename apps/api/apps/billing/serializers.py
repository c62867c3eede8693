"""Billing serializers."""
from decimal import Decimal

from django.conf import settings
from rest_framework import serializers

from apps.catalog.models import Promotion, Treatment
from apps.clinical.models import Patient

from .models import (
    CompletedTreatment,
    DiscountType,
    Payment,
    PaymentMethodChoices,
    TreatmentLine,
)
from .pricing import ManualDiscount
from .services import line_from_catalog, line_from_promotion


# ============================================================================
# Output serializers
# ============================================================================

class TreatmentLineSerializer(serializers.ModelSerializer):
    line_total = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = TreatmentLine
        fields = [
            'id', 'catalog_ref', 'promotion', 'name', 'code',
            'unit_price_original', 'unit_price_final', 'currency', 'quantity', 'line_total',
            'note', 'clinician', 'clinician_name', 'disable_age_discount', 'created_at',
        ]
        read_only_fields = fields


class CompletedTreatmentSerializer(serializers.ModelSerializer):
    """
    Read-only representation. ``status`` and ``paid_amount`` mirror the
    payment ledger and can never be written through the API.
    """
    lines = TreatmentLineSerializer(many=True, read_only=True)
    beneficiaries = serializers.PrimaryKeyRelatedField(many=True, read_only=True)
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    pending_amount = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = CompletedTreatment
        fields = [
            'id', 'patient', 'visit_date', 'currency',
            'subtotal', 'discount_total', 'final_total',
            'discount_type', 'discount_value', 'discount_reason',
            'role', 'parent', 'beneficiaries', 'promotion',
            'signature_ref', 'requires_signature', 'is_historical',
            'paid_amount', 'pending_amount', 'status', 'status_display',
            'request_id', 'doctor_notes', 'lines',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    method_display = serializers.CharField(source='get_method_display', read_only=True)

    class Meta:
        model = Payment
        fields = [
            'id', 'treatment', 'amount', 'currency',
            'original_amount', 'original_currency',
            'converted_amount', 'converted_currency', 'rate', 'rate_source',
            'method', 'method_display', 'note', 'paid_at', 'idempotency_key',
        ]
        read_only_fields = fields


class PaymentSummarySerializer(serializers.Serializer):
    treatment_id = serializers.CharField()
    currency = serializers.CharField()
    final_total = serializers.DecimalField(max_digits=12, decimal_places=2)
    paid = serializers.DecimalField(max_digits=12, decimal_places=2)
    pending = serializers.DecimalField(max_digits=12, decimal_places=2)
    status = serializers.CharField()
    payments_count = serializers.IntegerField()


class PricingPreviewSerializer(serializers.Serializer):
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2)
    discount = serializers.DecimalField(max_digits=12, decimal_places=2)
    total = serializers.DecimalField(max_digits=12, decimal_places=2)
    reasons = serializers.ListField(child=serializers.CharField())
    discount_reason = serializers.CharField()
    is_historical = serializers.BooleanField()
    bypass = serializers.BooleanField()
    requires_signature = serializers.BooleanField()


# ============================================================================
# Input serializers
# ============================================================================

class TreatmentLineRequestSerializer(serializers.Serializer):
    """
    One selected line: either a catalog treatment or a promotion.
    """
    treatment_id = serializers.PrimaryKeyRelatedField(
        queryset=Treatment.objects.filter(is_active=True),
        required=False,
        allow_null=True,
    )
    promotion_id = serializers.PrimaryKeyRelatedField(
        queryset=Promotion.objects.all(),
        required=False,
        allow_null=True,
    )
    quantity = serializers.IntegerField(
        min_value=1,
        default=1,
        help_text='Quantity must be a positive integer (no decimals)'
    )
    clinician_id = serializers.UUIDField(required=False, allow_null=True)
    note = serializers.CharField(required=False, allow_blank=True, default='')
    # Unset means the promotion default (off for individual promotions)
    disable_age_discount = serializers.BooleanField(required=False, allow_null=True, default=None)

    def validate(self, attrs):
        treatment = attrs.get('treatment_id')
        promotion = attrs.get('promotion_id')
        if bool(treatment) == bool(promotion):
            raise serializers.ValidationError('Each line needs exactly one of treatment_id or promotion_id')
        if treatment and attrs.get('disable_age_discount'):
            raise serializers.ValidationError({
                'disable_age_discount': 'Only promotional lines can disable the age discount'
            })
        return attrs

    @staticmethod
    def to_line_input(attrs):
        if attrs.get('treatment_id'):
            return line_from_catalog(
                attrs['treatment_id'],
                quantity=attrs['quantity'],
                clinician_id=attrs.get('clinician_id'),
                note=attrs.get('note', ''),
            )
        return line_from_promotion(
            attrs['promotion_id'],
            quantity=attrs['quantity'],
            disable_age_discount=attrs.get('disable_age_discount'),
            clinician_id=attrs.get('clinician_id'),
            note=attrs.get('note', ''),
        )


class CompletedTreatmentPreviewSerializer(serializers.Serializer):
    patient = serializers.PrimaryKeyRelatedField(queryset=Patient.objects.all())
    visit_date = serializers.DateField()
    lines = TreatmentLineRequestSerializer(many=True, allow_empty=False)
    discount_type = serializers.ChoiceField(choices=DiscountType.choices, default=DiscountType.NONE)
    discount_value = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        min_value=Decimal('0.00'),
        default=Decimal('0.00'),
    )

    def validate(self, attrs):
        if attrs['discount_type'] == DiscountType.PERCENTAGE and attrs['discount_value'] > 100:
            raise serializers.ValidationError({'discount_value': 'Percentage cannot exceed 100'})
        return attrs

    def get_line_inputs(self):
        return [TreatmentLineRequestSerializer.to_line_input(line) for line in self.validated_data['lines']]

    def get_manual_discount(self):
        return ManualDiscount(
            type=self.validated_data['discount_type'],
            value=self.validated_data['discount_value'],
        )


class CompletedTreatmentCreateSerializer(CompletedTreatmentPreviewSerializer):
    currency = serializers.CharField(max_length=3, required=False)
    signature_ref = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    beneficiaries = serializers.PrimaryKeyRelatedField(
        queryset=Patient.objects.all(),
        many=True,
        required=False,
        default=list,
    )
    doctor_notes = serializers.CharField(required=False, allow_blank=True, default='')
    request_id = serializers.CharField(max_length=128, required=False, allow_null=True)

    def validate_currency(self, value):
        value = value.upper()
        if value not in settings.SUPPORTED_CURRENCIES:
            raise serializers.ValidationError(f'Unsupported currency: {value}')
        return value


class PaymentCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    currency = serializers.CharField(max_length=3)
    method = serializers.ChoiceField(choices=PaymentMethodChoices.choices)
    note = serializers.CharField(required=False, allow_blank=True, default='')
    idempotency_key = serializers.CharField(max_length=128, required=False, allow_null=True)
