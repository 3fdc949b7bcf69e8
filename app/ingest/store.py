"""
Keyed persistence of card records and of per-file audit rows.

Card records are upserted on (institution, pan) through the database's own
conflict resolution, so a scan-driven ingestion and a manual or API submission
touching the same card never produce two rows.
"""

from django.db import DatabaseError, transaction
from django.utils import timezone

from cardledger.errors import PersistenceError
from ingest.models import CardRecord, FileIngestionLog, ValidationIssue

UPSERT_FIELDS = [
    'language', 'first_name', 'last_name', 'expiry', 'phone',
    'behaviour', 'action', 'source_file_name', 'processed_at',
]


def is_already_handled(institution, file_name):
    """True if a log for this (institution, file) is in success or processing."""
    return FileIngestionLog.objects.filter(
        institution=institution,
        file_name=file_name,
        status__in=FileIngestionLog.HANDLED_STATUSES,
    ).exists()


def create_file_log(institution, file_name, source_type=FileIngestionLog.SOURCE_UPLOAD, source_path=''):
    return FileIngestionLog.objects.create(
        institution=institution,
        file_name=file_name,
        source_type=source_type,
        source_path=source_path,
        status=FileIngestionLog.STATUS_PROCESSING,
    )


def finalize_file_log(file_log, status, stats=None, error_details=''):
    """Move a log to its terminal status and store the row counts."""
    file_log.status = status
    file_log.error_details = error_details
    update_fields = ['status', 'error_details']
    if stats is not None:
        file_log.total_rows = stats.total_rows
        file_log.valid_rows = stats.valid_rows
        file_log.invalid_rows = stats.invalid_rows
        file_log.duplicate_rows = stats.duplicate_rows
        update_fields += ['total_rows', 'valid_rows', 'invalid_rows', 'duplicate_rows']
    file_log.save(update_fields=update_fields)
    return file_log


def save_issues(file_log, issues):
    ValidationIssue.objects.bulk_create([
        ValidationIssue(
            file_log=file_log,
            row_number=issue.row_number,
            field_name=issue.field,
            field_value=issue.value or '',
            message=issue.message,
            severity=issue.severity,
        )
        for issue in issues
    ])


def upsert_records(institution, records, source_file_name):
    """
    Insert or overwrite card records for one institution.

    `records` are dicts of CardRecord field values (see validation.clean_record).
    Returns the ids of the affected rows, one per distinct PAN.
    """
    if not records:
        return []

    # ON CONFLICT cannot touch the same row twice in one statement: last value per PAN wins
    latest = {}
    for values in records:
        latest[values['pan']] = values

    now = timezone.now()
    objs = [
        CardRecord(
            institution=institution,
            source_file_name=source_file_name,
            processed_at=now,
            **values
        )
        for values in latest.values()
    ]
    try:
        with transaction.atomic():
            CardRecord.objects.bulk_create(
                objs,
                update_conflicts=True,
                unique_fields=['institution', 'pan'],
                update_fields=UPSERT_FIELDS,
            )
            ids_by_pan = dict(
                CardRecord.objects.filter(
                    institution=institution,
                    pan__in=[obj.pan for obj in objs],
                ).values_list('pan', 'id')
            )
    except DatabaseError as exc:
        raise PersistenceError(f'Saving card records failed: {exc}') from exc

    return [ids_by_pan[pan] for pan in latest if pan in ids_by_pan]
