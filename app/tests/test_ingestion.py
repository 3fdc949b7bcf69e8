import io

import pytest

from cardledger.errors import PersistenceError, TransportError
from conftest import HEADER, card_row, csv_bytes
from ingest import store
from ingest.models import CardRecord, FileIngestionLog, ValidationIssue
from ingest.process import IngestionPipeline, corrected_csv, relocate_source_file
from ingest.sources import SourceLister
from pipeline import services


class RecordingLister:
    """Serves files from memory and counts downloads."""

    def __init__(self, files=None, fail=False):
        self.files = files or {}
        self.fail = fail
        self.fetched = []

    def list(self, descriptor):
        return sorted(self.files)

    def fetch(self, descriptor, file_name):
        self.fetched.append(file_name)
        if self.fail:
            raise TransportError('connection reset', descriptor.location)
        return self.files[file_name]

    def path_for(self, descriptor, file_name):
        return f'{descriptor.location}/{file_name}'


@pytest.mark.django_db
class TestIngestion:
    """One file through header check, row validation, duplicate detection and upsert."""

    def test_valid_file_is_persisted(self, institution):
        content = csv_bytes(
            card_row(),
            card_row(pan='4012888888881881', phone='21698765432', first_name='Sarah'),
        )
        result = IngestionPipeline().ingest(institution, io.BytesIO(content), 'cards.csv')

        assert result.success
        assert result.status == FileIngestionLog.STATUS_SUCCESS
        assert result.stats.total_rows == 2
        assert result.stats.valid_rows == 2
        assert len(result.record_ids) == 2
        assert CardRecord.objects.filter(institution=institution).count() == 2

        log = FileIngestionLog.objects.get(pk=result.log_id)
        assert log.status == FileIngestionLog.STATUS_SUCCESS
        assert log.valid_rows == 2

    def test_duplicate_pan_within_file(self, institution):
        """Two rows with the same PAN: first persisted, second reported as a duplicate warning."""
        content = csv_bytes(card_row(), card_row(first_name='Other'))
        result = IngestionPipeline().ingest(institution, io.BytesIO(content), 'cards.csv')

        assert result.stats.valid_rows == 1
        assert result.stats.duplicate_rows == 1
        assert result.success, "A duplicate is a warning, not an error"

        issue = ValidationIssue.objects.get(file_log_id=result.log_id)
        assert issue.field_name == 'pan'
        assert issue.severity == ValidationIssue.SEVERITY_WARNING
        assert issue.row_number == 2
        assert CardRecord.objects.get(institution=institution).first_name == 'Amine'

    def test_duplicate_pan_across_files(self, institution):
        IngestionPipeline().ingest(institution, io.BytesIO(csv_bytes(card_row())), 'first.csv')
        result = IngestionPipeline().ingest(institution, io.BytesIO(csv_bytes(card_row())), 'second.csv')

        assert result.stats.valid_rows == 0
        assert result.stats.duplicate_rows == 1
        assert result.record_ids == []
        assert CardRecord.objects.filter(institution=institution).count() == 1
        assert CardRecord.objects.get(institution=institution).source_file_name == 'first.csv'

    def test_same_pan_in_another_institution_is_not_a_duplicate(self, institution, other_institution):
        IngestionPipeline().ingest(institution, io.BytesIO(csv_bytes(card_row())), 'cards.csv')
        result = IngestionPipeline().ingest(other_institution, io.BytesIO(csv_bytes(card_row())), 'cards.csv')

        assert result.stats.valid_rows == 1
        assert CardRecord.objects.filter(pan='4111111111111111').count() == 2

    def test_luhn_failure_is_persisted_with_warning(self, institution):
        result = IngestionPipeline().ingest(
            institution, io.BytesIO(csv_bytes(card_row(pan='4111111111111112'))), 'cards.csv'
        )
        assert result.status == FileIngestionLog.STATUS_SUCCESS
        assert result.stats.valid_rows == 1
        assert [i.severity for i in result.issues] == ['warning']

    def test_invalid_rows_block_only_themselves(self, institution):
        content = csv_bytes(
            card_row(),
            card_row(pan='4012888888881881', phone='33612345678'),
            card_row(pan='5555555555554444', expiry='209901', phone='21622334455'),
        )
        result = IngestionPipeline().ingest(institution, io.BytesIO(content), 'cards.csv')

        assert result.status == FileIngestionLog.STATUS_VALIDATION_ERROR
        assert not result.success
        assert result.stats.total_rows == 3
        assert result.stats.valid_rows == 1
        assert result.stats.invalid_rows == 2
        assert CardRecord.objects.filter(institution=institution).count() == 1
        assert ValidationIssue.objects.filter(file_log_id=result.log_id, severity='error').count() == 2

    def test_missing_header_column_rejects_file(self, institution):
        header = 'language;firstName;lastName;pan;expiry;phone'
        content = csv_bytes('fr;Amine;Trabelsi;4111111111111111;202812;21612345678', header=header)
        result = IngestionPipeline().ingest(institution, io.BytesIO(content), 'cards.csv')

        assert result.status == FileIngestionLog.STATUS_VALIDATION_ERROR
        assert CardRecord.objects.count() == 0
        issues = ValidationIssue.objects.filter(file_log_id=result.log_id)
        assert sorted(issues.values_list('field_value', flat=True)) == ['action', 'behaviour']
        assert set(issues.values_list('row_number', flat=True)) == {0}

    def test_blank_rows_and_bom(self, institution):
        content = '\ufeff' + HEADER + '\n' + card_row() + '\n;;;;;;;\n\n'
        result = IngestionPipeline().ingest(institution, io.BytesIO(content.encode('utf-8')), 'cards.csv')

        assert result.success
        assert result.stats.total_rows == 1

    def test_text_handles_are_accepted(self, institution):
        content = csv_bytes(card_row()).decode('utf-8')
        result = IngestionPipeline().ingest(institution, io.StringIO(content), 'cards.csv')
        assert result.stats.valid_rows == 1

    def test_undecodable_file_persists_nothing(self, institution):
        content = csv_bytes(card_row()) + b'fr;\xff\xfe;x\n'
        result = IngestionPipeline().ingest(institution, io.BytesIO(content), 'cards.csv')

        assert result.status == FileIngestionLog.STATUS_ERROR
        assert CardRecord.objects.count() == 0
        assert FileIngestionLog.objects.get(pk=result.log_id).error_details

    def test_persistence_failure_marks_log_error(self, institution, monkeypatch):
        def failing_upsert(institution, records, source_file_name):
            raise PersistenceError('Saving card records failed: disk I/O error')

        monkeypatch.setattr(store, 'upsert_records', failing_upsert)
        content = csv_bytes(card_row(), card_row(pan='411111111111', phone='21698765432'))
        result = IngestionPipeline().ingest(institution, io.BytesIO(content), 'cards.csv')

        assert not result.success
        assert result.status == FileIngestionLog.STATUS_ERROR
        assert result.record_ids == []
        log = FileIngestionLog.objects.get(pk=result.log_id)
        assert log.status == FileIngestionLog.STATUS_ERROR
        assert 'disk I/O error' in log.error_details
        assert log.total_rows == 2
        assert log.issues.filter(field_name='pan').exists(), "Row issues are kept for the failed attempt"
        assert CardRecord.objects.count() == 0


@pytest.mark.django_db
class TestIngestFromSource:

    def test_already_handled_file_is_not_read(self, institution):
        FileIngestionLog.objects.create(
            institution=institution, file_name='cards.csv', status=FileIngestionLog.STATUS_SUCCESS
        )
        lister = RecordingLister({'cards.csv': csv_bytes(card_row())})
        result = IngestionPipeline().ingest_from_source(institution, lister, 'cards.csv')

        assert result.skipped
        assert lister.fetched == [], "An already handled file must not be downloaded"
        assert FileIngestionLog.objects.count() == 1
        assert ValidationIssue.objects.count() == 0

    def test_failed_file_is_retried(self, institution):
        FileIngestionLog.objects.create(
            institution=institution, file_name='cards.csv', status=FileIngestionLog.STATUS_ERROR
        )
        lister = RecordingLister({'cards.csv': csv_bytes(card_row())})
        result = IngestionPipeline().ingest_from_source(institution, lister, 'cards.csv')

        assert not result.skipped
        assert result.stats.valid_rows == 1
        log = FileIngestionLog.objects.get(pk=result.log_id)
        assert log.source_type == FileIngestionLog.SOURCE_SCAN
        assert log.source_path.endswith('/cards.csv')

    def test_download_failure_marks_log_error(self, institution):
        lister = RecordingLister({'cards.csv': b''}, fail=True)
        result = IngestionPipeline().ingest_from_source(institution, lister, 'cards.csv')

        assert result.status == FileIngestionLog.STATUS_ERROR
        assert 'connection reset' in FileIngestionLog.objects.get(pk=result.log_id).error_details

    def test_local_source_file_is_relocated(self, institution, tmp_path):
        (tmp_path / 'incoming' / 'cards.csv').write_bytes(csv_bytes(card_row()))
        result = IngestionPipeline().ingest_from_source(institution, SourceLister(), 'cards.csv')
        log = relocate_source_file(institution, FileIngestionLog.objects.get(pk=result.log_id))

        assert not (tmp_path / 'incoming' / 'cards.csv').exists()
        assert (tmp_path / 'processed' / 'cards.csv').exists()
        archived = list((tmp_path / 'archive').iterdir())
        assert len(archived) == 1
        assert archived[0].name.startswith('OLD_') and archived[0].name.endswith('_cards.csv')
        assert log.destination_path == str(tmp_path / 'processed' / 'cards.csv')


@pytest.mark.django_db
class TestSubmissionAndCorrections:

    def test_submit_records_upserts_existing_pan(self, institution):
        IngestionPipeline().ingest(institution, io.BytesIO(csv_bytes(card_row())), 'cards.csv')
        result = services.submit_records(institution, [
            {'language': 'en', 'firstName': 'Amine', 'lastName': 'Trabelsi', 'pan': '4111111111111111',
             'expiry': 202912, 'phone': '21612345678', 'behaviour': 'sms', 'action': 'update'},
            {'language': 'fr', 'firstName': 'X', 'lastName': 'Y', 'pan': '123'},
        ])

        assert result.stats.total_rows == 2
        assert result.stats.valid_rows == 1
        assert result.stats.invalid_rows == 1
        assert result.status == FileIngestionLog.STATUS_VALIDATION_ERROR

        record = CardRecord.objects.get(institution=institution)
        assert record.expiry == '202912'
        assert record.behaviour == 'sms'
        assert record.source_file_name.startswith('API_BNK01_')

    def test_corrected_csv_lists_persisted_records(self, institution):
        content = csv_bytes(card_row(), card_row(pan='123', first_name='Broken'))
        result = IngestionPipeline().ingest(institution, io.BytesIO(content), 'cards.csv')
        lines = corrected_csv(FileIngestionLog.objects.get(pk=result.log_id)).splitlines()

        assert lines[0] == HEADER
        assert lines[1:] == [card_row()]
