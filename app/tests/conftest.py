import pytest
from ingest.models import InstitutionSource, SourceKind

HEADER = 'language;firstName;lastName;pan;expiry;phone;behaviour;action'


def card_row(pan='4111111111111111', first_name='Amine', last_name='Trabelsi', expiry='202812',
             phone='21612345678', language='fr', behaviour='otp', action='create'):
    return ';'.join([language, first_name, last_name, pan, expiry, phone, behaviour, action])


def csv_bytes(*rows, header=HEADER):
    return ('\n'.join([header, *rows]) + '\n').encode('utf-8')


@pytest.fixture(autouse=True)
def export_dir(settings, tmp_path):
    settings.CARDLEDGER_EXPORT_DIR = str(tmp_path / 'xml_output')
    return tmp_path / 'xml_output'


@pytest.fixture
def institution(db, tmp_path):
    incoming = tmp_path / 'incoming'
    incoming.mkdir()
    return InstitutionSource.objects.create(
        code='BNK01',
        name='Banque Test',
        source_kind=SourceKind.LOCAL,
        source_location=str(incoming),
        destination_location=str(tmp_path / 'processed'),
        archive_location=str(tmp_path / 'archive'),
        export_location=str(tmp_path / 'export'),
        notification_email='ops@bank.test',
    )


@pytest.fixture
def other_institution(db, tmp_path):
    incoming = tmp_path / 'incoming_2'
    incoming.mkdir()
    return InstitutionSource.objects.create(
        code='BNK02',
        name='Autre Banque',
        source_kind=SourceKind.LOCAL,
        source_location=str(incoming),
        export_location=str(tmp_path / 'export_2'),
    )
