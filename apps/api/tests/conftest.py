"""
Global test fixtures for pytest.

Provides reusable fixtures for API testing:
- Authenticated API clients by role
- Model instances (Patient, Clinician, catalog entries, completed treatments)
"""
from datetime import date
from decimal import Decimal

import pytest
from django.contrib.auth.models import Group, User
from django.core.cache import cache
from rest_framework.test import APIClient

from apps.billing.models import CompletedTreatment, PaymentStatusChoices
from apps.catalog.models import Promotion, Treatment
from apps.clinical.models import Clinician, Patient
from apps.core.observability.correlation import clear_request_context

# After the 2026-02-02 go-live cutoff: priced and signed
VISIT_DATE = date(2026, 3, 10)
# Before the cutoff: historical record
HISTORICAL_VISIT_DATE = date(2025, 6, 1)


@pytest.fixture(autouse=True)
def clear_state():
    """Exchange rates are cached and request context is thread-local."""
    cache.clear()
    clear_request_context()
    yield
    cache.clear()
    clear_request_context()


# ============================================================================
# API Clients
# ============================================================================

@pytest.fixture
def api_client():
    """Unauthenticated DRF API client."""
    return APIClient()


@pytest.fixture
def admin_user(db):
    return User.objects.create_user(
        username='admin',
        email='admin@test.com',
        password='testpass123',
        is_staff=True,
        is_superuser=True,
    )


@pytest.fixture
def admin_client(admin_user):
    """Authenticated API client with full access."""
    client = APIClient()
    client.force_authenticate(user=admin_user)
    return client


@pytest.fixture
def reception_user(db):
    user = User.objects.create_user(
        username='reception',
        email='reception@test.com',
        password='testpass123',
    )
    group, _ = Group.objects.get_or_create(name='Reception')
    user.groups.add(group)
    return user


@pytest.fixture
def reception_client(reception_user):
    """
    Authenticated API client with Reception role.
    Reception records and deletes payments.
    """
    client = APIClient()
    client.force_authenticate(user=reception_user)
    return client


@pytest.fixture
def clinician_client(db):
    """
    Authenticated API client without a billing group.
    Can read treatments but has NO access to the payment ledger (403).
    """
    user = User.objects.create_user(
        username='dentist',
        email='dentist@test.com',
        password='testpass123',
    )
    client = APIClient()
    client.force_authenticate(user=user)
    return client


# ============================================================================
# Data Fixtures
# ============================================================================

@pytest.fixture
def patient_factory(db):
    """
    Factory fixture for creating multiple patients.

    Usage:
        elder = patient_factory(birth_date=date(1940, 5, 1))
    """
    created_patients = []

    def _create_patient(**kwargs):
        defaults = {
            'full_name': f'Test Patient {len(created_patients)}',
            'identity_number': f'0801-1990-{len(created_patients):05d}',
            'birth_date': date(1990, 1, 15),
            'sex': 'female',
        }
        defaults.update(kwargs)
        patient = Patient.objects.create(**defaults)
        created_patients.append(patient)
        return patient

    return _create_patient


@pytest.fixture
def adult_patient(patient_factory):
    return patient_factory(full_name='Ana Adult', birth_date=date(1990, 1, 15))


@pytest.fixture
def senior_patient(patient_factory):
    """66 years old on VISIT_DATE."""
    return patient_factory(full_name='Sergio Senior', birth_date=date(1960, 1, 1), sex='male')


@pytest.fixture
def elder_patient(patient_factory):
    """85 years old on VISIT_DATE."""
    return patient_factory(full_name='Elena Elder', birth_date=date(1940, 5, 1))


@pytest.fixture
def clinician(db):
    return Clinician.objects.create(display_name='Dra. Martinez', specialty='Endodoncia')


@pytest.fixture
def cleaning(db):
    """Catalog treatment priced 1000 HNL."""
    return Treatment.objects.create(code='LIMP-01', name='Limpieza', price=Decimal('1000.00'), currency='HNL')


@pytest.fixture
def extraction(db):
    return Treatment.objects.create(code='EXT-01', name='Extraccion', price=Decimal('500.00'), currency='HNL')


@pytest.fixture
def whitening_promotion(db):
    """Individual promotion: 30% off, charged 700 HNL."""
    return Promotion.objects.create(
        code='BLANQ-30',
        name='Blanqueamiento 30%',
        discount_percent=Decimal('30.00'),
        original_price=Decimal('1000.00'),
        promotional_price=Decimal('700.00'),
        currency='HNL',
        starts_on=date(2026, 1, 1),
        ends_on=date(2026, 12, 31),
    )


@pytest.fixture
def group_promotion(db):
    """2x1 group promotion: 500 HNL, one beneficiary."""
    return Promotion.objects.create(
        code='LIMP-2X1',
        name='Limpieza 2x1',
        discount_percent=Decimal('50.00'),
        original_price=Decimal('1000.00'),
        promotional_price=Decimal('500.00'),
        currency='HNL',
        starts_on=date(2026, 1, 1),
        ends_on=date(2026, 12, 31),
        is_group=True,
        max_beneficiaries=1,
    )


@pytest.fixture
def completed_treatment_factory(adult_patient):
    """
    Factory fixture for priced completed treatments (no lines), for ledger tests.

    Usage:
        treatment = completed_treatment_factory(final_total=Decimal('1300.00'))
    """
    def _create(final_total=Decimal('1300.00'), currency='HNL', **kwargs):
        final_total = Decimal(final_total)
        defaults = {
            'patient': adult_patient,
            'visit_date': VISIT_DATE,
            'currency': currency,
            'subtotal': final_total,
            'discount_total': Decimal('0.00'),
            'final_total': final_total,
            'requires_signature': True,
            'signature_ref': 'signatures/test.png',
            'status': PaymentStatusChoices.PENDING if final_total > 0 else PaymentStatusChoices.PAID,
        }
        defaults.update(kwargs)
        return CompletedTreatment.objects.create(**defaults)

    return _create
