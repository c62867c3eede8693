from django.core.management.base import BaseCommand

from apps.billing.exceptions import ConsistencyError
from apps.billing.ledger import assert_ledger_consistent, reconcile_treatment
from apps.billing.models import CompletedTreatment


class Command(BaseCommand):
    help = 'Checks the cached paid amount and status of every completed treatment against its payments.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--fix',
            action='store_true',
            help='Rewrite inconsistent aggregates from the payment list',
        )

    def handle(self, *args, **options):
        self.stdout.write(self.style.NOTICE('Checking payment ledger aggregates...'))
        treatments = CompletedTreatment.objects.all()
        total = treatments.count()
        inconsistent = 0
        fixed = 0
        for treatment in treatments.iterator():
            try:
                assert_ledger_consistent(treatment)
            except ConsistencyError as e:
                inconsistent += 1
                self.stdout.write(self.style.WARNING(str(e)))
                if options['fix']:
                    reconcile_treatment(treatment.pk)
                    fixed += 1
        self.stdout.write(self.style.SUCCESS(
            f'Checked: {total}, inconsistent: {inconsistent}, fixed: {fixed}'
        ))
