"""
Clinical models used by billing: patient, clinician, historical_mode_setting.

Patient CRUD lives in the front-office application; these tables hold the
fields the billing engine reads (age category, pregnancy flag) plus the
per-patient historical bypass.
"""
import uuid
from datetime import date

from django.db import models
from django.utils.translation import gettext_lazy as _


class SexChoices(models.TextChoices):
    """Patient sex"""
    FEMALE = 'female', _('Female')
    MALE = 'male', _('Male')


class Patient(models.Model):
    """
    Patient demographics needed for pricing.

    Billing only reads birth_date (age-based discount), sex and the
    pregnancy flag.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    full_name = models.CharField(max_length=255)
    identity_number = models.CharField(max_length=50, blank=True, null=True)
    phone = models.CharField(max_length=50, blank=True, null=True)

    # Demographics
    birth_date = models.DateField(blank=True, null=True)
    sex = models.CharField(
        max_length=20,
        choices=SexChoices.choices,
        blank=True,
        null=True
    )
    is_pregnant = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'patient'
        ordering = ['full_name']
        indexes = [
            models.Index(fields=['full_name'], name='idx_patient_full_name'),
            models.Index(fields=['identity_number'], name='idx_patient_identity'),
        ]

    def __str__(self):
        return self.full_name

    def age_on(self, on_date: date):
        """Age in whole years on ``on_date``; None without a birth date."""
        if not self.birth_date:
            return None
        had_birthday = (on_date.month, on_date.day) >= (self.birth_date.month, self.birth_date.day)
        return on_date.year - self.birth_date.year - (0 if had_birthday else 1)


class Clinician(models.Model):
    """Dentist performing treatment lines."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    display_name = models.CharField(max_length=255)
    specialty = models.CharField(max_length=100, blank=True, default='')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'clinician'
        ordering = ['display_name']

    def __str__(self):
        return self.display_name


class HistoricalModeSetting(models.Model):
    """
    Per-patient override forcing historical records to be priced and signed
    as if they were active. Shared by all users.
    """
    patient = models.OneToOneField(
        Patient,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name='historical_mode_setting'
    )
    bypass_historical_mode = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'historical_mode_setting'
        ordering = ['-updated_at']

    def __str__(self):
        return f"{self.patient_id}: bypass={self.bypass_historical_mode}"


def get_patient_bypass(patient) -> bool:
    """Keyed lookup of the historical bypass flag; False when never set."""
    return HistoricalModeSetting.objects.filter(
        patient=patient,
        bypass_historical_mode=True,
    ).exists()


def set_patient_bypass(patient, bypass: bool) -> HistoricalModeSetting:
    setting, _created = HistoricalModeSetting.objects.update_or_create(
        patient=patient,
        defaults={'bypass_historical_mode': bypass},
    )
    return setting
