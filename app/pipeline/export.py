"""
Registry export: valid card records -> `cardRegistryRecords` XML document.

Each record produces two entries, an `add` followed by a `setAuthMethod`,
with consecutive globally unique ids taken from IDSequenceAllocator. The id of
the `add` entry is stored on the record so registry verdicts can be matched
back to it later.
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import List, Optional

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from cardledger.errors import CardLedgerError
from ingest.models import CardRecord
from pipeline.models import ExportBatchLog
from pipeline.sequence import IDSequenceAllocator

logger = logging.getLogger(__name__)

NAMESPACE = 'http://cardRegistry.acs.bpcbt.com/v2/types'
ENCODING = 'ISO-8859-15'
XML_DECLARATION = f'<?xml version="1.0" encoding="{ENCODING}"?>\n'

ADD = 'add'
SET_AUTH_METHOD = 'setAuthMethod'

_NON_DIGIT_RE = re.compile(r'[^0-9]')


def convert_pan(pan) -> str:
    """
    Card number as a plain digit string.

    Spreadsheet exports sometimes carry the PAN in scientific notation
    ("4,11111E+15"); those are expanded. Returns '' when nothing usable is left.
    """
    if pan is None:
        return ''
    text = str(pan).strip()
    if 'e' in text.lower():
        try:
            return str(int(Decimal(text.replace(',', '.')).to_integral_value()))
        except InvalidOperation:
            return ''
    return _NON_DIGIT_RE.sub('', text)


def format_phone(phone) -> str:
    digits = _NON_DIGIT_RE.sub('', str(phone or ''))
    return f'+{digits}' if digits else ''


def export_file_name(institution_code, now=None) -> str:
    now = timezone.localtime(now or timezone.now())
    return f'ACS_CARDS_{institution_code}_{now:%Y%m%d%H%M%S}{now.microsecond // 1000:03d}.xml'


@dataclass(frozen=True)
class ExportEntry:
    entry_id: int
    kind: str
    record_id: object
    card_number: str
    phone_number: str


@dataclass
class ExportDocument:
    file_name: str
    document: str
    entries: List[ExportEntry] = field(default_factory=list)
    records_count: int = 0

    @property
    def entries_count(self) -> int:
        return len(self.entries)

    @property
    def first_entry_id(self) -> Optional[int]:
        return self.entries[0].entry_id if self.entries else None

    @property
    def last_entry_id(self) -> Optional[int]:
        return self.entries[-1].entry_id if self.entries else None

    def encoded(self) -> bytes:
        return self.document.encode(ENCODING, errors='xmlcharrefreplace')


class XmlExporter:

    def __init__(self, allocator: Optional[IDSequenceAllocator] = None):
        self.allocator = allocator or IDSequenceAllocator()

    def export(self, institution_code, records) -> ExportDocument:
        """
        Build the export document for `records` (CardRecord instances).

        Ids are reserved in one call for all exportable records. If the
        reservation fails, SequenceAllocationError propagates and no record is
        touched.
        """
        prepared = []
        for record in records:
            card_number = convert_pan(record.pan)
            phone_number = format_phone(record.phone)
            if not card_number or not phone_number:
                logger.warning('Skipping record %s for export: missing card number or phone', record.pk)
                continue
            prepared.append((record, card_number, phone_number))

        file_name = export_file_name(institution_code)
        if not prepared:
            return ExportDocument(file_name=file_name, document=self.render(institution_code, []))

        entries = []
        with transaction.atomic():
            start = self.allocator.reserve(2 * len(prepared))
            for k, (record, card_number, phone_number) in enumerate(prepared):
                add_id = start + 2 * k
                entries.append(ExportEntry(add_id, ADD, record.pk, card_number, phone_number))
                entries.append(ExportEntry(add_id + 1, SET_AUTH_METHOD, record.pk, card_number, phone_number))

                CardRecord.objects.filter(pk=record.pk).update(
                    enrollment_entry_id=add_id,
                    enrollment_status=CardRecord.ENROLLMENT_PENDING,
                    enrollment_error_code='',
                    enrollment_error_description='',
                    enrolled_at=None,
                )
                record.enrollment_entry_id = add_id
                record.enrollment_status = CardRecord.ENROLLMENT_PENDING

        return ExportDocument(
            file_name=file_name,
            document=self.render(institution_code, entries),
            entries=entries,
            records_count=len(prepared),
        )

    @staticmethod
    def render(institution_code, entries) -> str:
        root = ET.Element('cardRegistryRecords', {'xmlns': NAMESPACE})
        for entry in entries:
            attrs = {
                'id': str(entry.entry_id),
                'cardNumber': entry.card_number,
                'profileId': institution_code,
            }
            if entry.kind == ADD:
                attrs['cardStatus'] = 'ACTIVE'
            element = ET.SubElement(root, entry.kind, attrs)
            ET.SubElement(element, 'oneTimePasswordSMS', {'phoneNumber': entry.phone_number})
        ET.indent(root, space='  ')
        return XML_DECLARATION + ET.tostring(root, encoding='unicode', short_empty_elements=False) + '\n'


def export_directory(institution) -> Path:
    return Path(institution.export_location or settings.CARDLEDGER_EXPORT_DIR)


def export_records(institution, records, file_log=None, exporter=None) -> Optional[ExportBatchLog]:
    """
    Export records for one institution and write the document to its export location.

    Id reservation, record write-back, the batch log and the file write happen
    together: a failure in any of them rolls back the others, removes the
    document if it was written, stores an error batch log and re-raises.
    The file is written last, once every database write has gone through.
    Returns None when no record was exportable.
    """
    exporter = exporter or XmlExporter()
    records = list(records)
    if not records:
        return None

    written = None
    try:
        with transaction.atomic():
            document = exporter.export(institution.code, records)
            if not document.entries:
                logger.info('Nothing exportable for %s', institution.code)
                return None

            directory = export_directory(institution)
            path = directory / document.file_name

            batch = ExportBatchLog.objects.create(
                institution=institution,
                file_log=file_log,
                file_name=document.file_name,
                file_path=str(path),
                records_count=document.records_count,
                entries_count=document.entries_count,
                first_entry_id=document.first_entry_id,
                last_entry_id=document.last_entry_id,
                status=ExportBatchLog.STATUS_SUCCESS,
                processed_at=timezone.now(),
            )

            if file_log is not None:
                file_log.export_path = str(path)
                file_log.save(update_fields=['export_path'])

            directory.mkdir(parents=True, exist_ok=True)
            written = path
            path.write_bytes(document.encoded())
    except (CardLedgerError, DatabaseError, OSError) as exc:
        if written is not None:
            written.unlink(missing_ok=True)
        ExportBatchLog.objects.create(
            institution=institution,
            file_log=file_log,
            records_count=len(records),
            status=ExportBatchLog.STATUS_ERROR,
            error_details=str(exc),
            processed_at=timezone.now(),
        )
        logger.error('Export for %s failed: %s', institution.code, exc)
        raise

    logger.info(
        'Exported %s records (%s entries, ids %s-%s) for %s to %s',
        document.records_count, document.entries_count,
        document.first_entry_id, document.last_entry_id, institution.code, batch.file_path,
    )
    return batch


def pending_export_records(institution):
    """Persisted records that never received an entry id."""
    return CardRecord.objects.filter(
        institution=institution,
        enrollment_entry_id__isnull=True,
    ).order_by('processed_at', 'pan')
