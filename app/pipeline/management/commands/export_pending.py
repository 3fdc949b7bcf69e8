from django.core.management.base import BaseCommand, CommandError
from cardledger.errors import CardLedgerError
from ingest.models import InstitutionSource
from pipeline import services


class Command(BaseCommand):
    help = 'Export persisted records that have no registry entry id yet'

    def add_arguments(self, parser):
        parser.add_argument('--institution', type=str, help='Institution code (default: every active institution)')

    def handle(self, *args, **options):
        institutions = InstitutionSource.objects.filter(is_active=True)
        if options['institution']:
            institutions = InstitutionSource.objects.filter(code=options['institution'])
            if not institutions.exists():
                raise CommandError(f'Unknown institution: {options["institution"]}')

        for institution in institutions.order_by('code'):
            try:
                batch = services.export_batch(institution)
            except CardLedgerError as e:
                raise CommandError(f'Export for {institution.code} failed: {e}')

            if batch is None:
                self.stdout.write(f'{institution.code}: nothing to export')
                continue
            self.stdout.write(self.style.SUCCESS(
                f'{institution.code}: {batch.records_count} records, ids '
                f'{batch.first_entry_id}-{batch.last_entry_id} -> {batch.file_path}'
            ))
