from django.contrib import admin
from .models import AppSettings


@admin.register(AppSettings)
class AppSettingsAdmin(admin.ModelAdmin):
    list_display = ['id', 'default_currency', 'historical_cutoff_date', 'historical_records_enabled']
    readonly_fields = ['id', 'created_at', 'updated_at']
