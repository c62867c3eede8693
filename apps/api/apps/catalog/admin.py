from django.contrib import admin
from .models import Treatment, Promotion


@admin.register(Treatment)
class TreatmentAdmin(admin.ModelAdmin):
    list_display = ['code', 'name', 'specialty', 'price', 'currency', 'times_performed', 'is_active']
    list_filter = ['is_active', 'specialty', 'currency']
    search_fields = ['code', 'name']
    readonly_fields = ['times_performed', 'created_at', 'updated_at']


@admin.register(Promotion)
class PromotionAdmin(admin.ModelAdmin):
    list_display = [
        'code', 'name', 'promotional_price', 'currency', 'starts_on', 'ends_on',
        'is_group', 'max_beneficiaries', 'times_used', 'is_active',
    ]
    list_filter = ['is_active', 'is_group', 'currency']
    search_fields = ['code', 'name']
    readonly_fields = ['times_used', 'created_at', 'updated_at']
