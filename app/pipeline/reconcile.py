"""
Application of registry status reports onto exported card records.

Each `cardRegistryRecordProcessingResult` element names an entry id and a
status token; "OK" means enrolled, any other token is the failure code. A
record moves out of pending at most once, so replaying a report is harmless.
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import List, Optional

from django.db import DatabaseError, transaction
from django.db.models import Count, Q
from django.utils import timezone

from cardledger.errors import PersistenceError, ReconciliationParseError
from ingest.models import CardRecord
from pipeline.models import ReconciliationLog

logger = logging.getLogger(__name__)

RESULT_TAG = 'cardRegistryRecordProcessingResult'
SUCCESS_TOKEN = 'OK'

_DECLARATION_RE = re.compile(r'^\s*<\?xml[^>]*\?>')


@dataclass(frozen=True)
class ReportEntry:
    entry_id: int
    status: str
    description: str = ''

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCESS_TOKEN

    @property
    def enrollment_status(self) -> str:
        return CardRecord.ENROLLMENT_SUCCESS if self.succeeded else CardRecord.ENROLLMENT_ERROR

    @property
    def error_code(self) -> str:
        return '' if self.succeeded else self.status


@dataclass
class ReconciliationResult:
    total_entries: int = 0
    success_count: int = 0
    error_count: int = 0
    updated_records: int = 0
    details: List[dict] = field(default_factory=list)
    log_id: Optional[object] = None


def _local_name(tag) -> str:
    return tag.rsplit('}', 1)[-1] if isinstance(tag, str) else ''


def _decode(content) -> str:
    if isinstance(content, (bytes, bytearray)):
        try:
            return bytes(content).decode('utf-8')
        except UnicodeDecodeError:
            return bytes(content).decode('iso-8859-15')
    return content or ''


def parse_report(content) -> List[ReportEntry]:
    """
    Parse every result element of a report.

    The elements may sit under any root element or be a bare sequence with no
    root at all. Raises ReconciliationParseError on malformed input or when no
    result element is present.
    """
    text = _DECLARATION_RE.sub('', _decode(content), count=1).strip()
    try:
        root = ET.fromstring(text)
    except ET.ParseError:
        try:
            root = ET.fromstring(f'<report>{text}</report>')
        except ET.ParseError as exc:
            raise ReconciliationParseError(f'Malformed report: {exc}') from exc

    entries = []
    for element in root.iter():
        if _local_name(element.tag) != RESULT_TAG:
            continue
        raw_id = (element.get('id') or '').strip()
        status = (element.get('status') or '').strip()
        if not re.fullmatch(r'[0-9]+', raw_id):
            raise ReconciliationParseError(f'Result element has an invalid id: {raw_id!r}')
        if not status:
            raise ReconciliationParseError(f'Result element {raw_id} has no status')
        entries.append(ReportEntry(int(raw_id), status, element.get('description') or ''))

    if not entries:
        raise ReconciliationParseError(f'No {RESULT_TAG} entries found in report')
    return entries


class EnrollmentReconciler:

    def reconcile(self, report_content, institution_id=None, file_name='') -> ReconciliationResult:
        entries = parse_report(report_content)
        result = ReconciliationResult(total_entries=len(entries))
        now = timezone.now()

        try:
            with transaction.atomic():
                for entry in entries:
                    if entry.succeeded:
                        result.success_count += 1
                    else:
                        result.error_count += 1

                    pending = CardRecord.objects.filter(
                        enrollment_entry_id=entry.entry_id,
                        enrollment_status=CardRecord.ENROLLMENT_PENDING,
                    )
                    if institution_id is not None:
                        pending = pending.filter(institution_id=institution_id)
                    updated = pending.update(
                        enrollment_status=entry.enrollment_status,
                        enrollment_error_code=entry.error_code,
                        enrollment_error_description=entry.description,
                        enrolled_at=now,
                    )
                    result.updated_records += updated
                    result.details.append({
                        'entry_id': entry.entry_id,
                        'status': entry.enrollment_status,
                        'error_code': entry.error_code,
                        'description': entry.description,
                        'updated': updated > 0,
                    })

                log = ReconciliationLog.objects.create(
                    institution_id=institution_id,
                    file_name=file_name,
                    total_entries=result.total_entries,
                    success_count=result.success_count,
                    error_count=result.error_count,
                    updated_records=result.updated_records,
                    processed_at=now,
                )
        except DatabaseError as exc:
            raise PersistenceError(f'Applying report {file_name or ""} failed: {exc}') from exc

        result.log_id = log.id
        logger.info(
            'Report %s: %s entries (%s ok, %s failed), %s records updated',
            file_name or '<upload>', result.total_entries, result.success_count,
            result.error_count, result.updated_records,
        )
        return result


def enrollment_stats(institution=None):
    records = CardRecord.objects.all()
    if institution is not None:
        records = records.filter(institution=institution)
    return records.aggregate(
        total=Count('id'),
        success=Count('id', filter=Q(enrollment_status=CardRecord.ENROLLMENT_SUCCESS)),
        error=Count('id', filter=Q(enrollment_status=CardRecord.ENROLLMENT_ERROR)),
        pending=Count('id', filter=Q(enrollment_status=CardRecord.ENROLLMENT_PENDING)),
    )
