"""
Tests for the payment ledger and status engine.

Business Rules:
- paid is always recomputed from the full payment list
- pendiente -> parcialmente_pagado -> pagado, and back when payments are deleted
- payments in another currency are converted at the time they are recorded
- payments are never edited
"""
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

import pytest
import requests
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.db import connection, connections
from django.db.models.query import QuerySet

from apps.billing.exceptions import ConsistencyError
from apps.billing.ledger import (
    add_payment,
    assert_ledger_consistent,
    delete_payment,
    derive_payment_status,
    get_summary,
)
from apps.billing.models import (
    CompletedTreatment,
    Payment,
    PaymentMethodChoices,
    PaymentStatusChoices,
    RateSource,
)
from apps.integrations.exchange_rates import NoRateAvailable

REQUESTS_GET = 'apps.integrations.exchange_rates.requests.get'
CASH = PaymentMethodChoices.CASH


class TestDerivePaymentStatus:

    @pytest.mark.parametrize('final_total,paid,expected', [
        ('1300', '0', PaymentStatusChoices.PENDING),
        ('1300', '800', PaymentStatusChoices.PARTIALLY_PAID),
        ('1300', '1300', PaymentStatusChoices.PAID),
        ('1300', '1500', PaymentStatusChoices.PAID),
        ('0', '0', PaymentStatusChoices.PAID),
    ])
    def test_status_from_amounts(self, final_total, paid, expected):
        assert derive_payment_status(Decimal(final_total), Decimal(paid)) == expected


@pytest.mark.django_db
class TestAddPayment:

    def test_partial_then_full_payment(self, completed_treatment_factory):
        """1300 HNL: 500 + 300 leaves 500 pending; another 500 settles it."""
        treatment = completed_treatment_factory(final_total=Decimal('1300.00'))

        add_payment(treatment.id, Decimal('500'), 'HNL', CASH)
        summary = add_payment(treatment.id, Decimal('300'), 'HNL', PaymentMethodChoices.CREDIT_CARD)

        assert summary.paid == Decimal('800.00')
        assert summary.pending == Decimal('500.00')
        assert summary.status == PaymentStatusChoices.PARTIALLY_PAID
        assert summary.payments_count == 2

        summary = add_payment(treatment.id, Decimal('500'), 'HNL', CASH)

        assert summary.paid == Decimal('1300.00')
        assert summary.pending == Decimal('0.00')
        assert summary.status == PaymentStatusChoices.PAID

        treatment.refresh_from_db()
        assert treatment.paid_amount == Decimal('1300.00')
        assert treatment.status == PaymentStatusChoices.PAID

    def test_usd_payment_converted_with_fallback_rate(self, completed_treatment_factory):
        """100 USD against an HNL treatment while the rate service is down."""
        treatment = completed_treatment_factory(final_total=Decimal('3000.00'))

        with patch(REQUESTS_GET, side_effect=requests.Timeout('timed out')):
            summary = add_payment(treatment.id, Decimal('100'), 'USD', CASH)

        payment = treatment.payments.get()
        assert payment.original_amount == Decimal('100.00')
        assert payment.original_currency == 'USD'
        assert payment.converted_amount == Decimal('2450.00')
        assert payment.converted_currency == 'HNL'
        assert payment.rate == Decimal('24.500000')
        assert payment.rate_source == RateSource.FALLBACK
        assert summary.paid == Decimal('2450.00')
        assert summary.status == PaymentStatusChoices.PARTIALLY_PAID

    def test_same_currency_payment_is_stored_as_identity(self, completed_treatment_factory):
        treatment = completed_treatment_factory()

        add_payment(treatment.id, '250.5', 'hnl', CASH)

        payment = treatment.payments.get()
        assert payment.currency == 'HNL'
        assert payment.converted_amount == Decimal('250.50')
        assert payment.rate_source == RateSource.IDENTITY

    def test_overpayment_keeps_pending_at_zero(self, completed_treatment_factory):
        treatment = completed_treatment_factory(final_total=Decimal('100.00'))

        summary = add_payment(treatment.id, Decimal('150'), 'HNL', CASH)

        assert summary.paid == Decimal('150.00')
        assert summary.pending == Decimal('0.00')
        assert summary.status == PaymentStatusChoices.PAID

    def test_idempotency_key_records_once(self, completed_treatment_factory):
        treatment = completed_treatment_factory()

        first = add_payment(treatment.id, Decimal('500'), 'HNL', CASH, idempotency_key='pay-001')
        second = add_payment(treatment.id, Decimal('500'), 'HNL', CASH, idempotency_key='pay-001')

        assert treatment.payments.count() == 1
        assert first.paid == second.paid == Decimal('500.00')

    def test_same_key_on_another_treatment_is_independent(self, completed_treatment_factory):
        first = completed_treatment_factory()
        second = completed_treatment_factory()

        add_payment(first.id, Decimal('100'), 'HNL', CASH, idempotency_key='pay-001')
        add_payment(second.id, Decimal('100'), 'HNL', CASH, idempotency_key='pay-001')

        assert Payment.objects.count() == 2

    @pytest.mark.parametrize('amount', [Decimal('0'), Decimal('-10'), 'abc'])
    def test_rejects_invalid_amount(self, completed_treatment_factory, amount):
        treatment = completed_treatment_factory()

        with pytest.raises(ValidationError) as exc_info:
            add_payment(treatment.id, amount, 'HNL', CASH)

        assert 'amount' in exc_info.value.message_dict
        assert treatment.payments.count() == 0

    def test_rejects_unknown_method(self, completed_treatment_factory):
        treatment = completed_treatment_factory()

        with pytest.raises(ValidationError) as exc_info:
            add_payment(treatment.id, Decimal('10'), 'HNL', 'bitcoin')

        assert 'method' in exc_info.value.message_dict

    def test_rejects_unsupported_currency(self, completed_treatment_factory):
        treatment = completed_treatment_factory()

        with pytest.raises(ValidationError) as exc_info:
            add_payment(treatment.id, Decimal('10'), 'EUR', CASH)

        assert 'currency' in exc_info.value.message_dict

    def test_rejects_payment_worth_less_than_a_cent(self, completed_treatment_factory):
        """0.01 HNL against a USD treatment converts to 0.00 USD."""
        treatment = completed_treatment_factory(final_total=Decimal('100.00'), currency='USD')

        with patch(REQUESTS_GET, side_effect=requests.Timeout('timed out')):
            with pytest.raises(ValidationError) as exc_info:
                add_payment(treatment.id, Decimal('0.01'), 'HNL', CASH)

        assert 'amount' in exc_info.value.message_dict
        assert treatment.payments.count() == 0
        treatment.refresh_from_db()
        assert treatment.status == PaymentStatusChoices.PENDING

    def test_no_rate_available_writes_nothing(self, completed_treatment_factory):
        treatment = completed_treatment_factory()

        with patch('apps.billing.ledger.convert', side_effect=NoRateAvailable('no rate', code='no_rate_available')):
            with pytest.raises(NoRateAvailable):
                add_payment(treatment.id, Decimal('10'), 'USD', CASH)

        assert treatment.payments.count() == 0

    def test_unknown_treatment(self, db):
        with pytest.raises(CompletedTreatment.DoesNotExist):
            add_payment('00000000-0000-0000-0000-000000000000', Decimal('10'), 'HNL', CASH)

    def test_zero_total_treatment_is_paid_without_payments(self, completed_treatment_factory):
        treatment = completed_treatment_factory(final_total=Decimal('0.00'))

        summary = get_summary(treatment.id)

        assert summary.status == PaymentStatusChoices.PAID
        assert summary.pending == Decimal('0.00')


@pytest.mark.django_db
class TestDeletePayment:

    def test_delete_reverts_status(self, completed_treatment_factory):
        treatment = completed_treatment_factory(final_total=Decimal('1300.00'))
        add_payment(treatment.id, Decimal('800'), 'HNL', CASH)
        add_payment(treatment.id, Decimal('500'), 'HNL', CASH)
        last = treatment.payments.get(amount=Decimal('500.00'))

        summary = delete_payment(last.id)

        assert summary.paid == Decimal('800.00')
        assert summary.status == PaymentStatusChoices.PARTIALLY_PAID
        treatment.refresh_from_db()
        assert treatment.status == PaymentStatusChoices.PARTIALLY_PAID

    def test_delete_last_payment_returns_to_pending(self, completed_treatment_factory):
        treatment = completed_treatment_factory()
        add_payment(treatment.id, Decimal('100'), 'HNL', CASH)

        summary = delete_payment(treatment.payments.get().id)

        assert summary.paid == Decimal('0.00')
        assert summary.status == PaymentStatusChoices.PENDING

    def test_delete_unknown_payment(self, db):
        with pytest.raises(Payment.DoesNotExist):
            delete_payment('00000000-0000-0000-0000-000000000000')


@pytest.mark.django_db
class TestPaymentsAreAppendOnly:

    def test_existing_payment_cannot_be_saved(self, completed_treatment_factory):
        treatment = completed_treatment_factory()
        add_payment(treatment.id, Decimal('100'), 'HNL', CASH)
        payment = treatment.payments.get()

        payment.note = 'edited'
        with pytest.raises(ValidationError):
            payment.save()

        payment.refresh_from_db()
        assert payment.note == ''


@pytest.mark.django_db
class TestTreatmentRowLock:
    """Ledger mutations lock the treatment row before recomputing the aggregate."""

    def _locked_models(self, mock_select_for_update):
        return [call.args[0].model for call in mock_select_for_update.call_args_list]

    def test_add_payment_locks_treatment(self, completed_treatment_factory):
        treatment = completed_treatment_factory()

        with patch.object(QuerySet, 'select_for_update', autospec=True,
                          side_effect=QuerySet.select_for_update) as mock_lock:
            add_payment(treatment.id, Decimal('100'), 'HNL', CASH)

        assert self._locked_models(mock_lock) == [CompletedTreatment]
        assert treatment.payments.count() == 1

    def test_rejected_payment_takes_no_lock(self, completed_treatment_factory):
        treatment = completed_treatment_factory()

        with patch.object(QuerySet, 'select_for_update', autospec=True,
                          side_effect=QuerySet.select_for_update) as mock_lock:
            with pytest.raises(ValidationError):
                add_payment(treatment.id, Decimal('0'), 'HNL', CASH)

        mock_lock.assert_not_called()

    def test_delete_payment_locks_treatment(self, completed_treatment_factory):
        treatment = completed_treatment_factory()
        add_payment(treatment.id, Decimal('100'), 'HNL', CASH)

        with patch.object(QuerySet, 'select_for_update', autospec=True,
                          side_effect=QuerySet.select_for_update) as mock_lock:
            delete_payment(treatment.payments.get().id)

        assert self._locked_models(mock_lock) == [CompletedTreatment]


@pytest.mark.skipif(connection.vendor != 'postgresql', reason='row locks need PostgreSQL')
@pytest.mark.django_db(transaction=True)
class TestConcurrentPayments:

    def test_parallel_payments_are_all_counted(self, completed_treatment_factory):
        treatment = completed_treatment_factory(final_total=Decimal('1000.00'))

        def pay(_):
            try:
                return add_payment(treatment.id, Decimal('100'), 'HNL', CASH)
            finally:
                connections.close_all()

        with ThreadPoolExecutor(max_workers=5) as pool:
            list(pool.map(pay, range(10)))

        treatment.refresh_from_db()
        assert treatment.payments.count() == 10
        assert treatment.paid_amount == Decimal('1000.00')
        assert treatment.status == PaymentStatusChoices.PAID


@pytest.mark.django_db
class TestLedgerConsistency:

    def test_get_summary_repairs_drifted_cache(self, completed_treatment_factory):
        treatment = completed_treatment_factory()
        add_payment(treatment.id, Decimal('500'), 'HNL', CASH)
        CompletedTreatment.objects.filter(pk=treatment.pk).update(
            paid_amount=Decimal('9999.00'),
            status=PaymentStatusChoices.PAID,
        )

        summary = get_summary(treatment.id)

        assert summary.paid == Decimal('500.00')
        assert summary.status == PaymentStatusChoices.PARTIALLY_PAID
        treatment.refresh_from_db()
        assert treatment.paid_amount == Decimal('500.00')
        assert treatment.status == PaymentStatusChoices.PARTIALLY_PAID

    def test_assert_ledger_consistent_raises_on_drift(self, completed_treatment_factory):
        treatment = completed_treatment_factory()
        CompletedTreatment.objects.filter(pk=treatment.pk).update(paid_amount=Decimal('10.00'))
        treatment.refresh_from_db()

        with pytest.raises(ConsistencyError) as exc_info:
            assert_ledger_consistent(treatment)

        assert exc_info.value.treatment_id == str(treatment.id)
        assert exc_info.value.expected[0] == Decimal('0.00')

    def test_assert_ledger_consistent_passes_after_payments(self, completed_treatment_factory):
        treatment = completed_treatment_factory()
        add_payment(treatment.id, Decimal('1300'), 'HNL', CASH)
        treatment.refresh_from_db()

        summary = assert_ledger_consistent(treatment)

        assert summary.status == PaymentStatusChoices.PAID


@pytest.mark.django_db
class TestReconcileCommand:

    def test_reports_without_fixing(self, completed_treatment_factory):
        treatment = completed_treatment_factory()
        completed_treatment_factory()
        CompletedTreatment.objects.filter(pk=treatment.pk).update(paid_amount=Decimal('10.00'))

        out = StringIO()
        call_command('reconcile_payment_ledger', stdout=out)

        assert 'Checked: 2, inconsistent: 1, fixed: 0' in out.getvalue()
        treatment.refresh_from_db()
        assert treatment.paid_amount == Decimal('10.00')

    def test_fix_rewrites_aggregate(self, completed_treatment_factory):
        treatment = completed_treatment_factory()
        CompletedTreatment.objects.filter(pk=treatment.pk).update(paid_amount=Decimal('10.00'))

        out = StringIO()
        call_command('reconcile_payment_ledger', '--fix', stdout=out)

        assert 'inconsistent: 1, fixed: 1' in out.getvalue()
        treatment.refresh_from_db()
        assert treatment.paid_amount == Decimal('0.00')
        assert treatment.status == PaymentStatusChoices.PENDING
