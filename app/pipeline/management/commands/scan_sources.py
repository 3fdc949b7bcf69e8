from django.core.management.base import BaseCommand
from pipeline import services


class Command(BaseCommand):
    help = 'Run one scan: list -> ingest -> export -> relocate for every active institution'

    def handle(self, *args, **options):
        self.stdout.write(self.style.WARNING('=== Starting Scan ==='))

        scheduler = services.build_scheduler()
        summary = services.trigger_scan(scheduler)

        if summary.skipped:
            self.stdout.write(self.style.WARNING('Scan already in progress, skipped'))
            return

        for institution in summary.institutions:
            self.stdout.write(
                f'{institution.institution_code}: {institution.files_found} found, '
                f'{institution.files_processed} processed, {institution.files_skipped} skipped, '
                f'{institution.records_persisted} persisted, {institution.records_exported} exported'
            )

        for error in summary.errors:
            target = error.get('file') or error.get('institution')
            self.stdout.write(self.style.ERROR(f'  {target}: {error.get("error")}'))

        self.stdout.write(self.style.SUCCESS(
            f'=== Scan Complete: {summary.institutions_scanned} institutions, '
            f'{summary.files_processed}/{summary.files_found} files, {len(summary.errors)} errors ==='
        ))
