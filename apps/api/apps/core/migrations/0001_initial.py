# Generated migration for core app

import uuid
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='AppSettings',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('default_currency', models.CharField(default='HNL', max_length=3, verbose_name='Default currency')),
                ('historical_cutoff_date', models.DateField(
                    blank=True,
                    help_text='Visits dated before this day are historical records (no charge, no signature)',
                    null=True,
                    verbose_name='Historical cutoff date'
                )),
                ('historical_records_enabled', models.BooleanField(default=True, verbose_name='Historical records enabled')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'App Settings',
                'verbose_name_plural': 'App Settings',
                'db_table': 'app_settings',
            },
        ),
    ]
