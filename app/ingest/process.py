"""
Ingestion of one enrollment file: header check, row validation, two-tier
duplicate detection, upsert of accepted rows and a terminal file status.

The whole file is read and validated before anything is written, so a
download or parse failure part-way through leaves no card records behind;
only the file log (status=error) records the attempt.
"""

from __future__ import annotations

import csv
import io
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from django.utils import timezone

from cardledger.errors import PersistenceError, StructuralError, TransportError
from ingest import store
from ingest.models import CardRecord, FileIngestionLog, SourceKind
from ingest.validation import (
    REQUIRED_FIELDS,
    SEVERITY_WARNING,
    Issue,
    RecordValidator,
    clean_record,
    is_blank_row,
    normalize_row,
)

logger = logging.getLogger(__name__)

DELIMITER = ';'


@dataclass
class IngestionStats:
    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    duplicate_rows: int = 0


@dataclass
class IngestionResult:
    success: bool
    status: str
    log_id: Optional[object] = None
    stats: IngestionStats = field(default_factory=IngestionStats)
    issues: List[Issue] = field(default_factory=list)
    record_ids: List[object] = field(default_factory=list)
    skipped: bool = False
    error: str = ''


@dataclass
class _ParsedFile:
    stats: IngestionStats = field(default_factory=IngestionStats)
    issues: List[Issue] = field(default_factory=list)
    accepted: List[dict] = field(default_factory=list)


def _text_stream(handle):
    if isinstance(handle, (bytes, bytearray)):
        handle = io.BytesIO(handle)
    if isinstance(handle, str):
        return io.StringIO(handle)
    if isinstance(handle, io.TextIOBase):
        return handle
    return io.TextIOWrapper(handle, encoding='utf-8-sig', newline='')


class IngestionPipeline:

    def __init__(self, validator: Optional[RecordValidator] = None):
        self.validator = validator or RecordValidator()

    def ingest(self, institution, file_handle, file_name,
               source_type=FileIngestionLog.SOURCE_UPLOAD, source_path='') -> IngestionResult:
        """Ingest an already opened file (text or binary handle, bytes or str)."""
        file_log = store.create_file_log(institution, file_name, source_type, source_path)
        return self._run(file_log, institution, lambda: file_handle)

    def ingest_from_source(self, institution, lister, file_name) -> IngestionResult:
        """
        Ingest a file listed at the institution's source location.

        Files already handled (a log in success or processing) are skipped
        without being downloaded or read.
        """
        if store.is_already_handled(institution, file_name):
            logger.info("Skipping %s for %s (already handled)", file_name, institution.code)
            return IngestionResult(success=True, status='skipped', skipped=True)

        descriptor = institution.source_descriptor
        file_log = store.create_file_log(
            institution,
            file_name,
            FileIngestionLog.SOURCE_SCAN,
            lister.path_for(descriptor, file_name),
        )
        return self._run(file_log, institution, lambda: lister.fetch(descriptor, file_name))

    def _run(self, file_log, institution, open_handle) -> IngestionResult:
        try:
            parsed = self._parse(institution, open_handle())
        except StructuralError as exc:
            store.save_issues(file_log, exc.issues)
            store.finalize_file_log(file_log, FileIngestionLog.STATUS_VALIDATION_ERROR,
                                    IngestionStats(), str(exc))
            logger.info("%s rejected: %s", file_log.file_name, exc)
            return IngestionResult(
                success=False,
                status=file_log.status,
                log_id=file_log.id,
                issues=exc.issues,
                error=str(exc),
            )
        except (TransportError, csv.Error, UnicodeDecodeError, OSError) as exc:
            store.finalize_file_log(file_log, FileIngestionLog.STATUS_ERROR, IngestionStats(), str(exc))
            logger.warning("Failed to read %s for %s: %s", file_log.file_name, institution.code, exc)
            return IngestionResult(
                success=False,
                status=file_log.status,
                log_id=file_log.id,
                error=str(exc),
            )
        except Exception as exc:
            store.finalize_file_log(file_log, FileIngestionLog.STATUS_ERROR, IngestionStats(), str(exc))
            raise

        try:
            record_ids = store.upsert_records(institution, parsed.accepted, file_log.file_name)
        except PersistenceError as exc:
            store.save_issues(file_log, parsed.issues)
            store.finalize_file_log(file_log, FileIngestionLog.STATUS_ERROR, parsed.stats, str(exc))
            logger.error("Persisting %s for %s failed: %s", file_log.file_name, institution.code, exc)
            return IngestionResult(
                success=False,
                status=file_log.status,
                log_id=file_log.id,
                stats=parsed.stats,
                issues=parsed.issues,
                error=str(exc),
            )

        parsed.stats.valid_rows = len(record_ids)
        has_errors = any(issue.is_error for issue in parsed.issues)
        status = FileIngestionLog.STATUS_VALIDATION_ERROR if has_errors else FileIngestionLog.STATUS_SUCCESS

        store.save_issues(file_log, parsed.issues)
        store.finalize_file_log(file_log, status, parsed.stats)

        logger.info(
            "%s for %s: %s rows, %s valid, %s invalid, %s duplicates",
            file_log.file_name, institution.code, parsed.stats.total_rows,
            parsed.stats.valid_rows, parsed.stats.invalid_rows, parsed.stats.duplicate_rows,
        )
        return IngestionResult(
            success=not has_errors,
            status=status,
            log_id=file_log.id,
            stats=parsed.stats,
            issues=parsed.issues,
            record_ids=record_ids,
        )

    def _parse(self, institution, handle) -> _ParsedFile:
        parsed = _ParsedFile()
        reader = csv.DictReader(_text_stream(handle), delimiter=DELIMITER)

        header = self.validator.validate_header(reader.fieldnames or [])
        parsed.issues.extend(header.issues)
        if not header.ok:
            raise StructuralError(
                f"Header is missing required columns ({len(header.errors)} error(s))",
                header.issues,
            )

        first_seen = {}
        candidates = []
        for row_number, raw in enumerate(reader, start=1):
            if is_blank_row(raw):
                continue
            parsed.stats.total_rows += 1

            row = normalize_row(raw)
            outcome = self.validator.validate_row(row, row_number)
            parsed.issues.extend(outcome.issues)
            if not outcome.ok:
                parsed.stats.invalid_rows += 1
                continue

            record = clean_record(row)
            pan = record['pan']
            if pan in first_seen:
                parsed.stats.duplicate_rows += 1
                parsed.issues.append(Issue(
                    row_number, 'pan', pan,
                    f"Duplicate PAN within the file (same PAN as row {first_seen[pan]})",
                    SEVERITY_WARNING,
                ))
                continue
            first_seen[pan] = row_number
            candidates.append((row_number, record))

        existing = set(
            CardRecord.objects.filter(
                institution=institution,
                pan__in=[record['pan'] for _, record in candidates],
            ).values_list('pan', flat=True)
        ) if candidates else set()

        for row_number, record in candidates:
            if record['pan'] in existing:
                parsed.stats.duplicate_rows += 1
                parsed.issues.append(Issue(
                    row_number, 'pan', record['pan'],
                    'PAN already exists for this institution',
                    SEVERITY_WARNING,
                ))
                continue
            parsed.accepted.append(record)

        parsed.issues.sort(key=lambda issue: issue.row_number)
        return parsed


def relocate_source_file(institution, file_log):
    """
    Move a processed file out of a local source directory.

    A copy named OLD_<timestamp>_<name> goes to the archive directory and the
    file itself moves to the destination directory. Remote kinds only record
    where the file would go.
    """
    file_name = file_log.file_name
    stamp = timezone.now().strftime('%Y-%m-%dT%H-%M-%S')
    archive_name = f"OLD_{stamp}_{file_name}"

    if institution.source_kind != SourceKind.LOCAL:
        if institution.destination_location:
            file_log.destination_path = f"{institution.destination_location.rstrip('/')}/{file_name}"
        if institution.archive_location:
            file_log.archive_path = f"{institution.archive_location.rstrip('/')}/{archive_name}"
        file_log.save(update_fields=['destination_path', 'archive_path'])
        return file_log

    source = Path(institution.source_location.replace('file://', '', 1)) / file_name
    if not source.is_file():
        return file_log

    if institution.archive_location:
        archive_dir = Path(institution.archive_location)
        archive_dir.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, archive_dir / archive_name)
        file_log.archive_path = str(archive_dir / archive_name)

    if institution.destination_location:
        destination_dir = Path(institution.destination_location)
        destination_dir.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(destination_dir / file_name))
        file_log.destination_path = str(destination_dir / file_name)

    file_log.save(update_fields=['destination_path', 'archive_path'])
    logger.info("Relocated %s for %s", file_name, institution.code)
    return file_log


def corrected_csv(file_log):
    """Render the records persisted from a file back into the canonical semicolon format."""
    output = io.StringIO()
    writer = csv.writer(output, delimiter=DELIMITER, lineterminator='\n')
    writer.writerow(REQUIRED_FIELDS)
    records = CardRecord.objects.filter(
        institution=file_log.institution_id,
        source_file_name=file_log.file_name,
    ).order_by('processed_at', 'pan')
    for record in records:
        writer.writerow([
            record.language, record.first_name, record.last_name, record.pan,
            record.expiry, record.phone, record.behaviour, record.action,
        ])
    return output.getvalue()
