"""
Scan scheduler.

Runs the full pipeline (list -> ingest -> export -> relocate -> notify) for
every active institution on a crontab schedule, using an APScheduler
BackgroundScheduler. Schedule and enabled flag are persisted through a
settings store so they survive restarts.

The overlap guard is a process-local lock: two processes running a scheduler
against the same database can still process the same file twice.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from django.conf import settings
from django.db import close_old_connections
from django.utils import timezone

from cardledger.errors import TransportError
from ingest.models import CardRecord, FileIngestionLog, InstitutionSource
from ingest.process import IngestionPipeline, relocate_source_file
from ingest.sources import SourceLister
from pipeline.export import XmlExporter, export_records
from pipeline.models import ScanLog
from pipeline.notify import EmailNotifier
from pipeline.settings_store import DatabaseSettingsStore

logger = logging.getLogger(__name__)

JOB_ID = 'institution_scan'
SCHEDULE_KEY = 'scan_schedule'
ENABLED_KEY = 'scan_enabled'

SCHEDULE_DESCRIPTIONS = {
    '*/1 * * * *': 'Every minute',
    '* * * * *': 'Every minute',
    '*/5 * * * *': 'Every 5 minutes',
    '*/10 * * * *': 'Every 10 minutes',
    '*/15 * * * *': 'Every 15 minutes',
    '*/30 * * * *': 'Every 30 minutes',
    '0 * * * *': 'Every hour',
    '0 */2 * * *': 'Every 2 hours',
    '0 */6 * * *': 'Every 6 hours',
    '0 0 * * *': 'Every day at midnight',
}


def describe_schedule(expression):
    return SCHEDULE_DESCRIPTIONS.get(expression, f'Custom schedule ({expression})')


@dataclass
class InstitutionScanSummary:
    institution_code: str
    files_found: int = 0
    files_processed: int = 0
    files_skipped: int = 0
    records_persisted: int = 0
    records_exported: int = 0
    errors: List[dict] = field(default_factory=list)


@dataclass
class ScanSummary:
    skipped: bool = False
    scan_log_id: Optional[object] = None
    institutions_scanned: int = 0
    files_found: int = 0
    files_processed: int = 0
    errors: List[dict] = field(default_factory=list)
    institutions: List[InstitutionScanSummary] = field(default_factory=list)


class ScanScheduler:
    """
    Lifecycle: init_from_config() -> start() -> stop().

    trigger() may be called at any time, with or without the timer running;
    a call made while a scan is in progress returns a skipped summary.
    """

    def __init__(self, settings_store=None, lister=None, pipeline=None, exporter=None,
                 notifier=None, timezone_name=None):
        self.settings_store = settings_store or DatabaseSettingsStore()
        self.lister = lister or SourceLister()
        self.pipeline = pipeline or IngestionPipeline()
        self.exporter = exporter or XmlExporter()
        self.notifier = notifier or EmailNotifier()
        self.timezone = timezone_name or settings.CARDLEDGER_SCAN_TIMEZONE

        self.schedule = settings.CARDLEDGER_SCAN_SCHEDULE
        self.enabled = settings.CARDLEDGER_SCAN_ENABLED
        self.scanning = False
        self.last_scan_at = None

        self._lock = threading.Lock()
        self._scheduler = BackgroundScheduler(timezone=self.timezone)

    # ---- configuration -------------------------------------------------

    def init_from_config(self):
        """Load the persisted schedule and enabled flag; invalid stored schedules are ignored."""
        stored = self.settings_store.get(SCHEDULE_KEY)
        if stored:
            try:
                self._build_trigger(stored)
            except ValueError:
                logger.warning('Ignoring invalid stored scan schedule %r; using %r', stored, self.schedule)
            else:
                self.schedule = stored

        enabled = self.settings_store.get(ENABLED_KEY)
        if enabled is not None:
            self.enabled = bool(enabled)
        return self

    def update_schedule(self, expression):
        """Validate and persist a new crontab expression. ValueError leaves everything unchanged."""
        expression = (expression or '').strip()
        self._build_trigger(expression)

        self.settings_store.set(SCHEDULE_KEY, expression)
        self.schedule = expression
        if self.running and self.enabled:
            self._add_job()
        logger.info('Scan schedule updated to %s', expression)
        return self.status()

    def set_enabled(self, enabled):
        """Persist the enabled flag and add or remove the timer job. A scan in progress runs to completion."""
        self.enabled = bool(enabled)
        self.settings_store.set(ENABLED_KEY, self.enabled)
        if self.running:
            if self.enabled:
                self._add_job()
            else:
                self._remove_job()
        logger.info('Scheduled scans %s', 'enabled' if self.enabled else 'disabled')
        return self.status()

    # ---- lifecycle -----------------------------------------------------

    @property
    def running(self):
        return self._scheduler.running

    def start(self):
        if not self.running:
            self._scheduler.start()
        if self.enabled:
            self._add_job()
        logger.info('Scan scheduler started (%s, %s)', self.schedule, 'enabled' if self.enabled else 'disabled')

    def stop(self, wait=True):
        if self.running:
            self._scheduler.shutdown(wait=wait)
            logger.info('Scan scheduler stopped')

    def status(self):
        job = self._scheduler.get_job(JOB_ID) if self.running else None
        last_scan_at = self.last_scan_at
        if last_scan_at is None:
            last_scan_at = ScanLog.objects.values_list('scan_time', flat=True).first()
        return {
            'scanning': self.scanning,
            'running': self.running,
            'enabled': self.enabled,
            'schedule': self.schedule,
            'description': describe_schedule(self.schedule),
            'timezone': str(self.timezone),
            'last_scan_at': last_scan_at,
            'next_run_at': job.next_run_time if job else None,
        }

    def _build_trigger(self, expression):
        return CronTrigger.from_crontab(expression, timezone=self.timezone)

    def _add_job(self):
        self._scheduler.add_job(
            self._run_job,
            trigger=self._build_trigger(self.schedule),
            id=JOB_ID,
            name='Scan institution sources',
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def _remove_job(self):
        if self._scheduler.get_job(JOB_ID):
            self._scheduler.remove_job(JOB_ID)

    def _run_job(self):
        close_old_connections()
        try:
            self.trigger()
        except Exception as e:
            logger.exception('Scheduled scan failed: %s', e)
            # keep the timer alive
        finally:
            close_old_connections()

    # ---- scanning ------------------------------------------------------

    def trigger(self) -> ScanSummary:
        if not self._lock.acquire(blocking=False):
            logger.info('Scan already in progress; skipping')
            return ScanSummary(skipped=True)

        self.scanning = True
        try:
            return self._scan()
        finally:
            self.scanning = False
            self._lock.release()

    def _scan(self) -> ScanSummary:
        scan_log = ScanLog.objects.create(scan_time=timezone.now())
        summary = ScanSummary(scan_log_id=scan_log.id)
        logger.info('Starting scan of active institutions')

        for institution in InstitutionSource.objects.filter(is_active=True).order_by('code'):
            summary.institutions_scanned += 1
            try:
                result = self.scan_institution(institution)
            except Exception as e:
                logger.exception('Scan of %s failed: %s', institution.code, e)
                summary.errors.append({'institution': institution.code, 'error': str(e)})
                continue
            summary.institutions.append(result)
            summary.files_found += result.files_found
            summary.files_processed += result.files_processed
            summary.errors.extend(
                dict(error, institution=institution.code) for error in result.errors
            )

        scan_log.institutions_scanned = summary.institutions_scanned
        scan_log.files_found = summary.files_found
        scan_log.files_processed = summary.files_processed
        scan_log.errors_count = len(summary.errors)
        scan_log.error_details = summary.errors
        scan_log.finished_at = timezone.now()
        scan_log.save()
        self.last_scan_at = scan_log.scan_time

        logger.info(
            'Scan finished: %s institutions, %s files found, %s processed, %s errors',
            summary.institutions_scanned, summary.files_found, summary.files_processed, len(summary.errors),
        )
        return summary

    def scan_institution(self, institution) -> InstitutionScanSummary:
        result = InstitutionScanSummary(institution.code)
        try:
            files = self.lister.list(institution.source_descriptor)
        except TransportError as e:
            logger.warning('Listing %s failed: %s', institution.code, e)
            result.errors.append({'error': str(e)})
            return result

        result.files_found = len(files)
        for file_name in files:
            try:
                self._process_file(institution, file_name, result)
            except Exception as e:
                logger.exception('Processing %s for %s failed: %s', file_name, institution.code, e)
                result.errors.append({'file': file_name, 'error': str(e)})

        if result.files_processed:
            self.notifier.send(institution, result)
        return result

    def _process_file(self, institution, file_name, result):
        ingestion = self.pipeline.ingest_from_source(institution, self.lister, file_name)
        if ingestion.skipped:
            result.files_skipped += 1
            return

        result.files_processed += 1
        result.records_persisted += len(ingestion.record_ids)
        if not ingestion.success:
            result.errors.append({'file': file_name, 'error': ingestion.error or ingestion.status})

        file_log = FileIngestionLog.objects.get(pk=ingestion.log_id)
        if ingestion.record_ids:
            by_id = CardRecord.objects.in_bulk(ingestion.record_ids)
            records = [by_id[pk] for pk in ingestion.record_ids if pk in by_id]
            batch = export_records(institution, records, file_log=file_log, exporter=self.exporter)
            if batch is not None:
                result.records_exported += batch.records_count

        if file_log.status == FileIngestionLog.STATUS_SUCCESS:
            relocate_source_file(institution, file_log)
