import os
from django.core.management.base import BaseCommand, CommandError
from cardledger.errors import CardLedgerError
from ingest.models import InstitutionSource
from pipeline import services


class Command(BaseCommand):
    help = 'Ingest a semicolon-delimited enrollment file for one institution (manual upload)'

    def add_arguments(self, parser):
        parser.add_argument('--institution', type=str, required=True, help='Institution code (e.g. BNK01)')
        parser.add_argument('--file', type=str, required=True, help='CSV file path')
        parser.add_argument('--export', action='store_true', help='Export the persisted records right away')

    def handle(self, *args, **options):
        code = options['institution']
        file_path = options['file']

        try:
            institution = InstitutionSource.objects.get(code=code)
        except InstitutionSource.DoesNotExist:
            raise CommandError(f'Unknown institution: {code}')

        self.stdout.write(f'Ingesting {file_path} for {code}...')

        try:
            with open(file_path, 'rb') as f:
                result = services.ingest_file(
                    institution,
                    f,
                    os.path.basename(file_path),
                    source_path=os.path.abspath(file_path),
                    export=options['export'],
                )
        except FileNotFoundError:
            raise CommandError(f'File not found: {file_path}')
        except CardLedgerError as e:
            raise CommandError(f'Error ingesting CSV: {e}')

        stats = result.stats
        summary = (
            f'{code}: {stats.total_rows} rows, {stats.valid_rows} valid, '
            f'{stats.invalid_rows} invalid, {stats.duplicate_rows} duplicates ({result.status})'
        )
        if result.success:
            self.stdout.write(self.style.SUCCESS(summary))
        else:
            self.stdout.write(self.style.WARNING(summary))

        errors = [issue for issue in result.issues if issue.is_error]
        for issue in errors[:20]:
            self.stdout.write(f'  row {issue.row_number} {issue.field}: {issue.message}')
        if len(errors) > 20:
            self.stdout.write(f'  ... {len(errors) - 20} more')

        if result.error:
            self.stdout.write(self.style.ERROR(f'  {result.error}'))
