import pytest

from cardledger.errors import ReconciliationParseError
from ingest.models import CardRecord
from pipeline.models import ReconciliationLog
from pipeline.reconcile import EnrollmentReconciler, enrollment_stats, parse_report

REPORT = b"""<?xml version="1.0" encoding="UTF-8"?>
<cardRegistryRecordsProcessingResults xmlns="http://cardRegistry.acs.bpcbt.com/v2/types">
  <cardRegistryRecordProcessingResult id="101" status="OK"/>
  <cardRegistryRecordProcessingResult id="103" status="BAD_DATA" description="Card is already in registry"/>
  <cardRegistryRecordProcessingResult id="999" status="OK"/>
</cardRegistryRecordsProcessingResults>
"""


def exported_record(institution, pan, entry_id):
    return CardRecord.objects.create(
        institution=institution, pan=pan, first_name='Amine', last_name='Trabelsi',
        expiry='202812', phone='21612345678', behaviour='otp', action='create', language='fr',
        enrollment_entry_id=entry_id,
    )


class TestParsing:

    def test_entries_with_and_without_description(self):
        entries = parse_report(REPORT)
        assert [(e.entry_id, e.status, e.description) for e in entries] == [
            (101, 'OK', ''), (103, 'BAD_DATA', 'Card is already in registry'), (999, 'OK', ''),
        ]
        assert entries[1].error_code == 'BAD_DATA'
        assert entries[0].error_code == ''

    def test_bare_sequence_without_root(self):
        content = (
            '<cardRegistryRecordProcessingResult id="1" status="OK"/>\n'
            '<cardRegistryRecordProcessingResult id="3" status="REJECTED"/>\n'
        )
        assert [e.entry_id for e in parse_report(content)] == [1, 3]

    def test_malformed_report(self):
        with pytest.raises(ReconciliationParseError):
            parse_report('<cardRegistryRecordProcessingResult id="1" status="OK"')

    def test_report_without_entries(self):
        with pytest.raises(ReconciliationParseError):
            parse_report('<results></results>')

    def test_entry_without_numeric_id(self):
        with pytest.raises(ReconciliationParseError):
            parse_report('<r><cardRegistryRecordProcessingResult id="x" status="OK"/></r>')

    def test_entry_with_non_ascii_digit_id(self):
        """Superscript and Arabic-Indic digits are rejected as ids, not passed to int()."""
        for raw_id in ['²', '١٠١']:
            with pytest.raises(ReconciliationParseError):
                parse_report(f'<r><cardRegistryRecordProcessingResult id="{raw_id}" status="OK"/></r>')


@pytest.mark.django_db
class TestReconciler:

    def test_applies_verdicts_once(self, institution):
        ok = exported_record(institution, '4111111111111111', 101)
        failed = exported_record(institution, '4012888888881881', 103)

        result = EnrollmentReconciler().reconcile(REPORT, file_name='report.xml')

        assert (result.total_entries, result.success_count, result.error_count) == (3, 2, 1)
        assert result.updated_records == 2, "Unknown id 999 updates nothing"

        ok.refresh_from_db()
        failed.refresh_from_db()
        assert ok.enrollment_status == CardRecord.ENROLLMENT_SUCCESS
        assert ok.enrolled_at is not None
        assert failed.enrollment_status == CardRecord.ENROLLMENT_ERROR
        assert failed.enrollment_error_code == 'BAD_DATA'
        assert failed.enrollment_error_description == 'Card is already in registry'

        log = ReconciliationLog.objects.get(pk=result.log_id)
        assert log.updated_records == 2
        assert log.file_name == 'report.xml'

    def test_replay_updates_nothing(self, institution):
        exported_record(institution, '4111111111111111', 101)
        EnrollmentReconciler().reconcile(REPORT)

        replay = EnrollmentReconciler().reconcile(REPORT)

        assert replay.updated_records == 0
        assert replay.total_entries == 3
        assert ReconciliationLog.objects.count() == 2

    def test_institution_filter(self, institution, other_institution):
        record = exported_record(other_institution, '4111111111111111', 101)

        result = EnrollmentReconciler().reconcile(REPORT, institution_id=institution.pk)

        assert result.updated_records == 0
        record.refresh_from_db()
        assert record.enrollment_status == CardRecord.ENROLLMENT_PENDING

    def test_parse_error_updates_nothing(self, institution):
        exported_record(institution, '4111111111111111', 101)
        broken = REPORT.replace(b'id="103"', b'id=""')

        with pytest.raises(ReconciliationParseError):
            EnrollmentReconciler().reconcile(broken)

        assert CardRecord.objects.get(enrollment_entry_id=101).enrollment_status == CardRecord.ENROLLMENT_PENDING
        assert not ReconciliationLog.objects.exists()

    def test_enrollment_stats(self, institution, other_institution):
        exported_record(institution, '4111111111111111', 101)
        exported_record(institution, '4012888888881881', 103)
        exported_record(other_institution, '5555555555554444', 105)
        EnrollmentReconciler().reconcile(REPORT)

        assert enrollment_stats() == {'total': 3, 'success': 1, 'error': 1, 'pending': 1}
        assert enrollment_stats(other_institution) == {'total': 1, 'success': 0, 'error': 0, 'pending': 1}
