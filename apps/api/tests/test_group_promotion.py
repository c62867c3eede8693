"""
Tests for group promotions (2x1 style).

Business Rules:
- one payer row carries the full promotional price and the signature
- one free row per beneficiary, linked to the payer, never signed
- the beneficiary list is validated before anything is written
"""
from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest

from apps.billing import services
from apps.billing.exceptions import BeneficiaryCapacityError
from apps.billing.models import (
    CompletedTreatment,
    ParticipationRole,
    PaymentStatusChoices,
    TreatmentLine,
)
from apps.billing.promotions import check_beneficiary_capacity, legacy_group_hint
from apps.billing.services import line_from_catalog, line_from_promotion, save_completed_treatment

VISIT_DATE = date(2026, 3, 10)
SIGNATURE = 'signatures/payer.png'


@pytest.mark.django_db
class TestGroupPromotionSave:

    def test_payer_and_beneficiary_rows(self, adult_patient, patient_factory, group_promotion):
        """2x1 cleaning: payer pays 500 HNL, beneficiary row is free."""
        friend = patient_factory(full_name='Friend')

        payer = save_completed_treatment(
            adult_patient,
            VISIT_DATE,
            [line_from_promotion(group_promotion)],
            signature_ref=SIGNATURE,
            beneficiaries=[friend],
        )

        assert CompletedTreatment.objects.count() == 2
        assert payer.role == ParticipationRole.PAYER
        assert payer.final_total == Decimal('500.00')
        assert payer.requires_signature is True
        assert payer.signature_ref == SIGNATURE
        assert payer.promotion == group_promotion

        beneficiary = payer.beneficiaries.get()
        assert beneficiary.patient == friend
        assert beneficiary.role == ParticipationRole.BENEFICIARY
        assert beneficiary.parent == payer
        assert beneficiary.subtotal == Decimal('0.00')
        assert beneficiary.final_total == Decimal('0.00')
        assert beneficiary.requires_signature is False
        assert beneficiary.signature_ref == ''
        assert beneficiary.status == PaymentStatusChoices.PAID
        assert beneficiary.discount_reason == 'Group promotion LIMP-2X1 - beneficiary'
        assert beneficiary.doctor_notes == 'Group promotion: 50.00% off - beneficiary'

    def test_beneficiary_lines_are_free_copies(self, adult_patient, patient_factory, group_promotion):
        friend = patient_factory(full_name='Friend')

        payer = save_completed_treatment(
            adult_patient,
            VISIT_DATE,
            [line_from_promotion(group_promotion, quantity=2)],
            signature_ref=SIGNATURE,
            beneficiaries=[friend],
        )

        payer_line = payer.lines.get()
        beneficiary_line = payer.beneficiaries.get().lines.get()
        assert payer_line.quantity == 2
        assert payer_line.unit_price_original == Decimal('500.00')
        assert beneficiary_line.name == payer_line.name
        assert beneficiary_line.promotion == group_promotion
        assert beneficiary_line.quantity == 1
        assert beneficiary_line.unit_price_final == Decimal('0.00')

    def test_group_promotion_without_beneficiaries_is_payer(self, adult_patient, group_promotion):
        payer = save_completed_treatment(
            adult_patient,
            VISIT_DATE,
            [line_from_promotion(group_promotion)],
            signature_ref=SIGNATURE,
        )

        assert payer.role == ParticipationRole.PAYER
        assert payer.beneficiaries.count() == 0

    def test_elder_payer_keeps_age_discount(self, elder_patient, patient_factory, group_promotion):
        friend = patient_factory(full_name='Friend')

        payer = save_completed_treatment(
            elder_patient,
            VISIT_DATE,
            [line_from_promotion(group_promotion)],
            signature_ref=SIGNATURE,
            beneficiaries=[friend],
        )

        assert payer.final_total == Decimal('325.00')
        assert payer.beneficiaries.get().final_total == Decimal('0.00')

    def test_usage_counted_once_per_save(self, adult_patient, patient_factory, group_promotion):
        friend = patient_factory(full_name='Friend')

        save_completed_treatment(
            adult_patient,
            VISIT_DATE,
            [line_from_promotion(group_promotion)],
            signature_ref=SIGNATURE,
            beneficiaries=[friend],
        )

        group_promotion.refresh_from_db()
        assert group_promotion.times_used == 1


@pytest.mark.django_db
class TestBeneficiaryCapacity:

    def test_too_many_beneficiaries_writes_nothing(self, adult_patient, patient_factory, group_promotion):
        friends = [patient_factory(full_name='Friend A'), patient_factory(full_name='Friend B')]

        with pytest.raises(BeneficiaryCapacityError) as exc_info:
            save_completed_treatment(
                adult_patient,
                VISIT_DATE,
                [line_from_promotion(group_promotion)],
                signature_ref=SIGNATURE,
                beneficiaries=friends,
            )

        assert exc_info.value.code == 'capacity_exceeded'
        assert CompletedTreatment.objects.count() == 0
        assert TreatmentLine.objects.count() == 0
        group_promotion.refresh_from_db()
        assert group_promotion.times_used == 0

    def test_beneficiaries_need_group_promotion(self, adult_patient, patient_factory, cleaning):
        friend = patient_factory(full_name='Friend')

        with pytest.raises(BeneficiaryCapacityError) as exc_info:
            save_completed_treatment(
                adult_patient,
                VISIT_DATE,
                [line_from_catalog(cleaning)],
                signature_ref=SIGNATURE,
                beneficiaries=[friend],
            )

        assert exc_info.value.code == 'not_group_promotion'
        assert CompletedTreatment.objects.count() == 0

    def test_payer_cannot_be_beneficiary(self, adult_patient, group_promotion):
        with pytest.raises(BeneficiaryCapacityError) as exc_info:
            save_completed_treatment(
                adult_patient,
                VISIT_DATE,
                [line_from_promotion(group_promotion)],
                signature_ref=SIGNATURE,
                beneficiaries=[adult_patient],
            )

        assert exc_info.value.code == 'payer_is_beneficiary'

    def test_duplicate_beneficiary(self, adult_patient, patient_factory, group_promotion):
        group_promotion.max_beneficiaries = 3
        group_promotion.save()
        friend = patient_factory(full_name='Friend')

        with pytest.raises(BeneficiaryCapacityError) as exc_info:
            save_completed_treatment(
                adult_patient,
                VISIT_DATE,
                [line_from_promotion(group_promotion)],
                signature_ref=SIGNATURE,
                beneficiaries=[friend, friend],
            )

        assert exc_info.value.code == 'duplicate_beneficiary'

    def test_empty_list_always_passes(self):
        check_beneficiary_capacity(None, [])


@pytest.mark.django_db
class TestSaveIdempotency:

    def test_repeated_request_id_returns_committed_record(self, adult_patient, patient_factory, group_promotion):
        friend = patient_factory(full_name='Friend')
        kwargs = dict(
            signature_ref=SIGNATURE,
            beneficiaries=[friend],
            request_id='save-7f3a',
        )

        first = save_completed_treatment(adult_patient, VISIT_DATE, [line_from_promotion(group_promotion)], **kwargs)
        second = save_completed_treatment(adult_patient, VISIT_DATE, [line_from_promotion(group_promotion)], **kwargs)

        assert first.pk == second.pk
        assert CompletedTreatment.objects.count() == 2
        group_promotion.refresh_from_db()
        assert group_promotion.times_used == 1

    def test_beneficiaries_do_not_carry_request_id(self, adult_patient, patient_factory, group_promotion):
        friend = patient_factory(full_name='Friend')

        payer = save_completed_treatment(
            adult_patient,
            VISIT_DATE,
            [line_from_promotion(group_promotion)],
            signature_ref=SIGNATURE,
            beneficiaries=[friend],
            request_id='save-8b21',
        )

        assert payer.request_id == 'save-8b21'
        assert payer.beneficiaries.get().request_id is None

    def test_concurrent_duplicate_resolves_to_committed_record(self, adult_patient, patient_factory, group_promotion):
        """A retry that passed the pre-check while the first save committed."""
        friend = patient_factory(full_name='Friend')
        kwargs = dict(
            signature_ref=SIGNATURE,
            beneficiaries=[friend],
            request_id='save-c41d',
        )
        first = save_completed_treatment(adult_patient, VISIT_DATE, [line_from_promotion(group_promotion)], **kwargs)

        real_lookup = services._existing_for_request
        calls = []

        def lookup_misses_once(request_id):
            calls.append(request_id)
            if len(calls) == 1:
                return None
            return real_lookup(request_id)

        with patch('apps.billing.services._existing_for_request', side_effect=lookup_misses_once):
            second = save_completed_treatment(
                adult_patient, VISIT_DATE, [line_from_promotion(group_promotion)], **kwargs
            )

        assert len(calls) == 2
        assert second.pk == first.pk
        assert CompletedTreatment.objects.count() == 2
        group_promotion.refresh_from_db()
        assert group_promotion.times_used == 1


class TestLegacyGroupHint:

    @pytest.mark.parametrize('name,expected', [
        ('Limpieza 2x1', 1),
        ('Limpieza 2 X 1', 1),
        ('Blanqueamiento dos por uno', 1),
        ('Blanqueamiento 30%', 0),
        ('Promo 12x10', 0),
        ('', 0),
        (None, 0),
    ])
    def test_hint_from_name(self, name, expected):
        assert legacy_group_hint(name) == expected
