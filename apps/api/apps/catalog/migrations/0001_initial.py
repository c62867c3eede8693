# Generated migration for catalog app

from decimal import Decimal
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='Treatment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(max_length=50, unique=True, verbose_name='Code')),
                ('name', models.CharField(max_length=255, verbose_name='Name')),
                ('specialty', models.CharField(blank=True, max_length=100, verbose_name='Specialty')),
                ('notes', models.TextField(blank=True, verbose_name='Notes')),
                ('price', models.DecimalField(decimal_places=2, max_digits=10, verbose_name='Price')),
                ('currency', models.CharField(default='HNL', max_length=3, verbose_name='Currency')),
                ('times_performed', models.PositiveIntegerField(default=0, verbose_name='Times performed')),
                ('is_active', models.BooleanField(default=True, verbose_name='Active')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Created At')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='Updated At')),
            ],
            options={
                'verbose_name': 'Treatment',
                'verbose_name_plural': 'Treatments',
                'db_table': 'catalog_treatment',
                'ordering': ['name'],
                'indexes': [
                    models.Index(fields=['code'], name='idx_treatment_code'),
                    models.Index(fields=['specialty'], name='idx_treatment_specialty'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Promotion',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(max_length=50, unique=True, verbose_name='Code')),
                ('name', models.CharField(max_length=255, verbose_name='Name')),
                ('notes', models.TextField(blank=True, verbose_name='Notes')),
                ('discount_percent', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=5, verbose_name='Discount %')),
                ('original_price', models.DecimalField(decimal_places=2, max_digits=10, verbose_name='Original price')),
                ('promotional_price', models.DecimalField(decimal_places=2, max_digits=10, verbose_name='Promotional price')),
                ('currency', models.CharField(default='HNL', max_length=3, verbose_name='Currency')),
                ('starts_on', models.DateField(verbose_name='Starts on')),
                ('ends_on', models.DateField(verbose_name='Ends on')),
                ('is_active', models.BooleanField(default=True, verbose_name='Active')),
                ('is_group', models.BooleanField(
                    default=False,
                    help_text='Set at creation time; one payer plus beneficiaries at no cost',
                    verbose_name='Group promotion'
                )),
                ('max_beneficiaries', models.PositiveIntegerField(default=0, verbose_name='Max beneficiaries')),
                ('times_used', models.PositiveIntegerField(default=0, verbose_name='Times used')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Created At')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='Updated At')),
            ],
            options={
                'verbose_name': 'Promotion',
                'verbose_name_plural': 'Promotions',
                'db_table': 'catalog_promotion',
                'ordering': ['-starts_on', 'name'],
            },
        ),
        migrations.AddConstraint(
            model_name='promotion',
            constraint=models.CheckConstraint(condition=models.Q(promotional_price__gte=0), name='promotion_price_non_negative'),
        ),
        migrations.AddConstraint(
            model_name='promotion',
            constraint=models.CheckConstraint(condition=models.Q(ends_on__gte=models.F('starts_on')), name='promotion_window_ordered'),
        ),
    ]
