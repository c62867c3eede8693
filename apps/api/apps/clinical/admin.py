from django.contrib import admin
from .models import Patient, Clinician, HistoricalModeSetting


class HistoricalModeSettingInline(admin.StackedInline):
    model = HistoricalModeSetting
    can_delete = True
    extra = 0
    readonly_fields = ['created_at', 'updated_at']


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ['full_name', 'identity_number', 'birth_date', 'sex', 'is_pregnant']
    list_filter = ['sex', 'is_pregnant']
    search_fields = ['full_name', 'identity_number']
    readonly_fields = ['id', 'created_at', 'updated_at']
    inlines = [HistoricalModeSettingInline]


@admin.register(Clinician)
class ClinicianAdmin(admin.ModelAdmin):
    list_display = ['display_name', 'specialty', 'is_active']
    list_filter = ['is_active', 'specialty']
    search_fields = ['display_name']
