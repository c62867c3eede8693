from django.contrib import admin
from .models import CompletedTreatment, TreatmentLine, Payment


class TreatmentLineInline(admin.TabularInline):
    """
    Lines are written together with their treatment and never edited.
    """
    model = TreatmentLine
    extra = 0
    fields = ['name', 'code', 'quantity', 'unit_price_original', 'unit_price_final', 'clinician_name']
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    fields = ['paid_at', 'amount', 'currency', 'converted_amount', 'converted_currency', 'rate_source', 'method']
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(CompletedTreatment)
class CompletedTreatmentAdmin(admin.ModelAdmin):
    list_display = ['id', 'patient', 'visit_date', 'role', 'final_total', 'currency', 'paid_amount', 'status']
    list_filter = ['status', 'role', 'is_historical', 'currency']
    search_fields = ['id', 'request_id']
    inlines = [TreatmentLineInline, PaymentInline]

    fieldsets = (
        ('Basic Information', {
            'fields': ('id', 'patient', 'visit_date', 'role', 'parent', 'promotion', 'request_id')
        }),
        ('Financial', {
            'fields': (
                'currency', 'subtotal', 'discount_type', 'discount_value',
                'discount_total', 'final_total', 'discount_reason',
            )
        }),
        ('Ledger', {
            'fields': ('paid_amount', 'status')
        }),
        ('Signature', {
            'fields': ('is_historical', 'requires_signature', 'signature_ref'),
            'classes': ('collapse',)
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    def get_readonly_fields(self, request, obj=None):
        """
        SECURITY: Financial fields and the ledger aggregate are never edited
        by hand; fix data through the services or reconcile_payment_ledger.
        """
        return [f.name for f in self.model._meta.fields]

    def has_add_permission(self, request):
        return False


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """Read-only ledger view."""
    list_display = ['id', 'treatment', 'amount', 'currency', 'converted_amount', 'rate', 'rate_source', 'method', 'paid_at']
    list_filter = ['method', 'currency', 'rate_source']
    search_fields = ['id', 'treatment__id', 'idempotency_key']

    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
