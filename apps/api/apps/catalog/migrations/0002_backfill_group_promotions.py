# One-time backfill of Promotion.is_group for promotions created before the
# flag existed, when "group" was inferred from the promotion name.

from django.db import migrations

from apps.billing.promotions import legacy_group_hint


def backfill_group_flag(apps, schema_editor):
    Promotion = apps.get_model('catalog', 'Promotion')
    for promotion in Promotion.objects.filter(is_group=False):
        max_beneficiaries = legacy_group_hint(promotion.name)
        if max_beneficiaries:
            promotion.is_group = True
            promotion.max_beneficiaries = max(promotion.max_beneficiaries, max_beneficiaries)
            promotion.save(update_fields=['is_group', 'max_beneficiaries'])


class Migration(migrations.Migration):

    dependencies = [
        ('catalog', '0001_initial'),
    ]

    operations = [
        migrations.RunPython(backfill_group_flag, migrations.RunPython.noop),
    ]
