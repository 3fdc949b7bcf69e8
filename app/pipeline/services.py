"""
Operations offered to the outer layers (commands, admin actions, an HTTP API).

The scheduler is passed in explicitly; build_scheduler() wires one with the
default collaborators and the persisted configuration.
"""

import logging

from django.utils import timezone

from cardledger.errors import PersistenceError
from ingest import store
from ingest.models import CardRecord, FileIngestionLog
from ingest.process import IngestionPipeline, IngestionResult, IngestionStats
from ingest.validation import RecordValidator, clean_record, normalize_row
from pipeline.export import export_records, pending_export_records
from pipeline.reconcile import EnrollmentReconciler
from pipeline.scheduler import ScanScheduler

logger = logging.getLogger(__name__)


def build_scheduler(**collaborators):
    return ScanScheduler(**collaborators).init_from_config()


def ingest_file(institution, file_handle, file_name, source_type=FileIngestionLog.SOURCE_UPLOAD,
                source_path='', export=False, pipeline=None):
    """Manual upload: run one file through the ingestion pipeline, optionally exporting what was persisted."""
    pipeline = pipeline or IngestionPipeline()
    result = pipeline.ingest(institution, file_handle, file_name, source_type=source_type, source_path=source_path)
    if export and result.record_ids:
        _export_ids(institution, result.record_ids, result.log_id)
    return result


def export_batch(institution, records=None, file_log=None, exporter=None):
    """Export `records`, or every persisted record of the institution that has no entry id yet."""
    if records is None:
        records = pending_export_records(institution)
    return export_records(institution, records, file_log=file_log, exporter=exporter)


def reconcile(report_content, institution=None, file_name='', reconciler=None):
    reconciler = reconciler or EnrollmentReconciler()
    return reconciler.reconcile(
        report_content,
        institution_id=institution.pk if institution is not None else None,
        file_name=file_name,
    )


def trigger_scan(scheduler):
    return scheduler.trigger()


def get_scheduler_status(scheduler):
    return scheduler.status()


def update_schedule(scheduler, expression):
    return scheduler.update_schedule(expression)


def set_enabled(scheduler, enabled):
    return scheduler.set_enabled(enabled)


def submit_records(institution, cards, export=False, validator=None):
    """
    Programmatic submission of card dicts (same keys as the file columns).

    Valid cards are upserted under an API_<code>_<timestamp>.csv file log;
    invalid ones are reported as issues. Unlike file ingestion, a card whose
    PAN already exists overwrites the stored record.
    """
    validator = validator or RecordValidator()
    file_name = f"API_{institution.code}_{timezone.localtime():%Y%m%d%H%M%S}.csv"
    file_log = store.create_file_log(institution, file_name, FileIngestionLog.SOURCE_API)

    stats = IngestionStats()
    issues = []
    accepted = []
    for row_number, card in enumerate(cards, start=1):
        stats.total_rows += 1
        row = normalize_row({key: "" if value is None else str(value) for key, value in card.items()})
        outcome = validator.validate_row(row, row_number)
        issues.extend(outcome.issues)
        if not outcome.ok:
            stats.invalid_rows += 1
            continue
        accepted.append(clean_record(row))

    stats.duplicate_rows = len(accepted) - len({record['pan'] for record in accepted})
    try:
        record_ids = store.upsert_records(institution, accepted, file_name)
    except PersistenceError as exc:
        store.save_issues(file_log, issues)
        store.finalize_file_log(file_log, FileIngestionLog.STATUS_ERROR, stats, str(exc))
        raise
    stats.valid_rows = len(record_ids)

    status = FileIngestionLog.STATUS_SUCCESS if not stats.invalid_rows else FileIngestionLog.STATUS_VALIDATION_ERROR
    store.save_issues(file_log, issues)
    store.finalize_file_log(file_log, status, stats)
    logger.info('API submission %s for %s: %s/%s cards accepted',
                file_name, institution.code, stats.valid_rows, stats.total_rows)

    if export and record_ids:
        _export_ids(institution, record_ids, file_log.id)

    return IngestionResult(
        success=not stats.invalid_rows,
        status=status,
        log_id=file_log.id,
        stats=stats,
        issues=issues,
        record_ids=record_ids,
    )


def _export_ids(institution, record_ids, log_id):
    by_id = CardRecord.objects.in_bulk(record_ids)
    records = [by_id[pk] for pk in record_ids if pk in by_id]
    file_log = FileIngestionLog.objects.filter(pk=log_id).first()
    return export_records(institution, records, file_log=file_log)
