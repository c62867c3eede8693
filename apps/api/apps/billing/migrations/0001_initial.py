# Generated migration for billing app

import uuid
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('catalog', '0001_initial'),
        ('clinical', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='CompletedTreatment',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('visit_date', models.DateField(verbose_name='Visit date')),
                ('currency', models.CharField(default='HNL', help_text='ISO 4217 currency code', max_length=3, verbose_name='Currency')),
                ('subtotal', models.DecimalField(decimal_places=2, default=Decimal('0.00'), help_text='Sum of unit price x quantity over all lines', max_digits=12, verbose_name='Subtotal')),
                ('discount_total', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12, verbose_name='Discount total')),
                ('final_total', models.DecimalField(decimal_places=2, default=Decimal('0.00'), help_text='subtotal - discount_total', max_digits=12, verbose_name='Final total')),
                ('discount_type', models.CharField(choices=[('none', 'None'), ('fixed_amount', 'Fixed amount'), ('percentage', 'Percentage')], default='none', max_length=20, verbose_name='Manual discount type')),
                ('discount_value', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12, verbose_name='Manual discount value')),
                ('discount_reason', models.TextField(blank=True, verbose_name='Discount reason')),
                ('role', models.CharField(choices=[('individual', 'Individual'), ('payer', 'Payer'), ('beneficiary', 'Beneficiary')], default='individual', max_length=20, verbose_name='Role')),
                ('signature_ref', models.CharField(blank=True, max_length=255, verbose_name='Signature reference')),
                ('requires_signature', models.BooleanField(default=True, verbose_name='Requires signature')),
                ('is_historical', models.BooleanField(default=False, verbose_name='Historical record')),
                ('paid_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12, verbose_name='Paid amount')),
                ('status', models.CharField(choices=[('pendiente', 'Pending'), ('parcialmente_pagado', 'Partially paid'), ('pagado', 'Paid')], default='pendiente', max_length=20, verbose_name='Payment status')),
                ('request_id', models.CharField(blank=True, help_text='Client-generated key; a retried save returns the committed record', max_length=128, null=True, verbose_name='Request ID')),
                ('doctor_notes', models.TextField(blank=True, verbose_name='Doctor notes')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Created At')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='Updated At')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL, verbose_name='Created By')),
                ('parent', models.ForeignKey(blank=True, help_text='Payer record this beneficiary row belongs to', null=True, on_delete=django.db.models.deletion.CASCADE, related_name='beneficiaries', to='billing.completedtreatment', verbose_name='Payer record')),
                ('patient', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='completed_treatments', to='clinical.patient', verbose_name='Patient')),
                ('promotion', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='completed_treatments', to='catalog.promotion', verbose_name='Promotion')),
            ],
            options={
                'verbose_name': 'Completed treatment',
                'verbose_name_plural': 'Completed treatments',
                'db_table': 'completed_treatment',
                'ordering': ['-visit_date', '-created_at'],
                'indexes': [
                    models.Index(fields=['patient', '-visit_date'], name='idx_ct_patient_visit'),
                    models.Index(fields=['status'], name='idx_ct_status'),
                    models.Index(fields=['parent'], name='idx_ct_parent'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(subtotal__gte=0), name='ct_subtotal_non_negative'),
                    models.CheckConstraint(condition=models.Q(discount_total__gte=0), name='ct_discount_non_negative'),
                    models.CheckConstraint(condition=models.Q(final_total__gte=0), name='ct_final_total_non_negative'),
                    models.CheckConstraint(condition=models.Q(paid_amount__gte=0), name='ct_paid_amount_non_negative'),
                    models.UniqueConstraint(
                        condition=models.Q(request_id__isnull=False),
                        fields=('request_id',),
                        name='uniq_ct_request_id',
                        violation_error_message='A treatment with this request id was already saved',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='TreatmentLine',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=255, verbose_name='Name')),
                ('code', models.CharField(blank=True, max_length=50, verbose_name='Code')),
                ('unit_price_original', models.DecimalField(decimal_places=2, max_digits=12, verbose_name='Unit price (list)')),
                ('unit_price_final', models.DecimalField(decimal_places=2, max_digits=12, verbose_name='Unit price (charged)')),
                ('currency', models.CharField(default='HNL', max_length=3, verbose_name='Currency')),
                ('quantity', models.PositiveIntegerField(default=1, verbose_name='Quantity')),
                ('note', models.TextField(blank=True, verbose_name='Note')),
                ('clinician_name', models.CharField(blank=True, max_length=255, verbose_name='Clinician name')),
                ('disable_age_discount', models.BooleanField(default=False, verbose_name='Age discount disabled')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Created At')),
                ('catalog_ref', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='treatment_lines', to='catalog.treatment', verbose_name='Catalog treatment')),
                ('clinician', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='treatment_lines', to='clinical.clinician', verbose_name='Clinician')),
                ('promotion', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='treatment_lines', to='catalog.promotion', verbose_name='Promotion')),
                ('treatment', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='lines', to='billing.completedtreatment', verbose_name='Completed treatment')),
            ],
            options={
                'verbose_name': 'Treatment line',
                'verbose_name_plural': 'Treatment lines',
                'db_table': 'treatment_line',
                'ordering': ['created_at'],
                'indexes': [
                    models.Index(fields=['treatment'], name='idx_tl_treatment'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(quantity__gte=1), name='tl_quantity_positive'),
                    models.CheckConstraint(condition=models.Q(unit_price_original__gte=0), name='tl_unit_price_original_non_negative'),
                    models.CheckConstraint(condition=models.Q(unit_price_final__gte=0), name='tl_unit_price_final_non_negative'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Payment',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12, verbose_name='Amount')),
                ('currency', models.CharField(max_length=3, verbose_name='Currency')),
                ('original_amount', models.DecimalField(decimal_places=2, max_digits=12, verbose_name='Original amount')),
                ('original_currency', models.CharField(max_length=3, verbose_name='Original currency')),
                ('converted_amount', models.DecimalField(decimal_places=2, help_text='Amount in the treatment currency', max_digits=12, verbose_name='Converted amount')),
                ('converted_currency', models.CharField(max_length=3, verbose_name='Converted currency')),
                ('rate', models.DecimalField(decimal_places=6, default=Decimal('1'), max_digits=14, verbose_name='Exchange rate')),
                ('rate_source', models.CharField(choices=[('identity', 'Same currency'), ('api', 'Exchange-rate service'), ('fallback', 'Fixed fallback rate')], default='identity', max_length=20, verbose_name='Rate source')),
                ('method', models.CharField(choices=[('efectivo', 'Cash'), ('tarjeta_credito', 'Credit card'), ('tarjeta_debito', 'Debit card'), ('transferencia', 'Bank transfer'), ('cheque', 'Check'), ('deposito_bancario', 'Bank deposit'), ('paypal', 'PayPal'), ('otro', 'Other')], max_length=30, verbose_name='Method')),
                ('note', models.TextField(blank=True, verbose_name='Note')),
                ('paid_at', models.DateTimeField(auto_now_add=True, verbose_name='Paid At')),
                ('idempotency_key', models.CharField(blank=True, db_index=True, max_length=128, null=True, verbose_name='Idempotency Key')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL, verbose_name='Created By')),
                ('treatment', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='payments', to='billing.completedtreatment', verbose_name='Completed treatment')),
            ],
            options={
                'verbose_name': 'Payment',
                'verbose_name_plural': 'Payments',
                'db_table': 'payment',
                'ordering': ['paid_at'],
                'indexes': [
                    models.Index(fields=['treatment', 'paid_at'], name='idx_payment_treatment'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(amount__gt=0), name='payment_amount_positive'),
                    models.CheckConstraint(condition=models.Q(converted_amount__gt=0), name='payment_converted_positive'),
                    models.UniqueConstraint(
                        condition=models.Q(idempotency_key__isnull=False),
                        fields=('treatment', 'idempotency_key'),
                        name='uniq_payment_idempotency_key',
                        violation_error_message='Payment with this idempotency key already exists for this treatment',
                    ),
                ],
            },
        ),
    ]
