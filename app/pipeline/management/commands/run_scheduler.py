import time
from django.core.management.base import BaseCommand, CommandError
from pipeline import services


class Command(BaseCommand):
    help = 'Run the scan scheduler in the foreground until interrupted'

    def add_arguments(self, parser):
        parser.add_argument('--schedule', type=str, help='Crontab expression to persist before starting')
        parser.add_argument('--scan-now', action='store_true', help='Run one scan immediately after starting')

    def handle(self, *args, **options):
        scheduler = services.build_scheduler()

        if options['schedule']:
            try:
                services.update_schedule(scheduler, options['schedule'])
            except ValueError as e:
                raise CommandError(f'Invalid schedule: {e}')

        scheduler.start()
        status = services.get_scheduler_status(scheduler)
        self.stdout.write(self.style.SUCCESS(
            f'Scheduler running: {status["description"]} ({status["schedule"]}), '
            f'{"enabled" if status["enabled"] else "disabled"}, next run {status["next_run_at"]}'
        ))

        try:
            if options['scan_now']:
                services.trigger_scan(scheduler)
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stdout.write('Stopping scheduler...')
        finally:
            scheduler.stop()
