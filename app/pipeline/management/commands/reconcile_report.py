import os
from django.core.management.base import BaseCommand, CommandError
from cardledger.errors import CardLedgerError
from ingest.models import InstitutionSource
from pipeline import services


class Command(BaseCommand):
    help = 'Apply a registry status report (cardRegistryRecordProcessingResult entries) to exported records'

    def add_arguments(self, parser):
        parser.add_argument('--file', type=str, required=True, help='Report file path')
        parser.add_argument('--institution', type=str, help='Only update records of this institution code')

    def handle(self, *args, **options):
        file_path = options['file']

        institution = None
        if options['institution']:
            try:
                institution = InstitutionSource.objects.get(code=options['institution'])
            except InstitutionSource.DoesNotExist:
                raise CommandError(f'Unknown institution: {options["institution"]}')

        try:
            with open(file_path, 'rb') as f:
                content = f.read()
        except FileNotFoundError:
            raise CommandError(f'File not found: {file_path}')

        try:
            result = services.reconcile(content, institution=institution, file_name=os.path.basename(file_path))
        except CardLedgerError as e:
            raise CommandError(f'Report rejected: {e}')

        self.stdout.write(self.style.SUCCESS(
            f'{result.total_entries} entries ({result.success_count} ok, {result.error_count} failed), '
            f'{result.updated_records} records updated'
        ))
