from datetime import date

from ingest.validation import (
    SEVERITY_ERROR,
    SEVERITY_WARNING,
    RecordValidator,
    clean_record,
    is_blank_row,
    luhn_check,
    normalize_row,
)

TODAY = date(2026, 10, 19)


def valid_row(**overrides):
    row = {
        'language': 'fr',
        'firstName': 'Amine',
        'lastName': 'Trabelsi',
        'pan': '4111111111111111',
        'expiry': '202812',
        'phone': '21612345678',
        'behaviour': 'otp',
        'action': 'create',
    }
    row.update(overrides)
    return row


class TestLuhn:
    """Luhn checksum on its own."""

    def test_known_valid_numbers(self):
        for pan in ['4111111111111111', '4012888888881881', '5555555555554444', '4242424242424242']:
            assert luhn_check(pan), f"{pan} should pass Luhn"

    def test_altered_digit_fails(self):
        assert not luhn_check('4111111111111112')

    def test_non_digits_fail(self):
        assert not luhn_check('')
        assert not luhn_check('4111-1111')

    def test_non_ascii_digits_fail(self):
        assert not luhn_check('٤١١١' * 4)
        assert not luhn_check('²')


class TestHeader:

    def setup_method(self):
        self.validator = RecordValidator(today=TODAY)

    def test_complete_header_is_ok(self):
        outcome = self.validator.validate_header(
            ['language', 'firstName', 'lastName', 'pan', 'expiry', 'phone', 'behaviour', 'action']
        )
        assert outcome.ok
        assert outcome.issues == []

    def test_aliases_are_accepted(self):
        """Alias spellings map onto the canonical columns."""
        outcome = self.validator.validate_header(
            ['Langue', 'prenom', 'NOM', 'PAN', 'expiration', 'telephone', 'behavior', 'Action']
        )
        assert outcome.ok, outcome.issues

    def test_each_missing_column_is_an_error(self):
        outcome = self.validator.validate_header(['language', 'firstName', 'lastName', 'pan', 'expiry', 'phone'])
        assert not outcome.ok
        missing = sorted(issue.value for issue in outcome.errors)
        assert missing == ['action', 'behaviour']
        assert all(issue.row_number == 0 for issue in outcome.errors)

    def test_extra_columns_give_one_warning(self):
        outcome = self.validator.validate_header(
            ['language', 'firstName', 'lastName', 'pan', 'expiry', 'phone', 'behaviour', 'action', 'branch', 'notes']
        )
        assert outcome.ok
        assert len(outcome.warnings) == 1
        assert 'branch' in outcome.warnings[0].message


class TestRow:

    def setup_method(self):
        self.validator = RecordValidator(today=TODAY)

    def test_valid_row_has_no_issues(self):
        outcome = self.validator.validate_row(valid_row(), 1)
        assert outcome.ok
        assert outcome.issues == []

    def test_luhn_failure_is_a_warning_not_an_error(self):
        outcome = self.validator.validate_row(valid_row(pan='4111111111111112'), 3)
        assert outcome.ok, "Luhn failure must not block the row"
        assert [(i.field, i.severity, i.row_number) for i in outcome.issues] == [('pan', SEVERITY_WARNING, 3)]

    def test_pan_with_spaces_is_cleaned(self):
        assert self.validator.validate_row(valid_row(pan='4012 8888 8888 1881'), 1).ok

    def test_short_pan_is_an_error(self):
        outcome = self.validator.validate_row(valid_row(pan='411111111111'), 1)
        assert [i.field for i in outcome.errors] == ['pan']

    def test_expired_card_is_a_warning(self):
        outcome = self.validator.validate_row(valid_row(expiry='202401'), 1)
        assert outcome.ok
        assert outcome.warnings[0].field == 'expiry'

    def test_expiry_rules(self):
        for expiry in ['2028-12', '202313', '205101', '202300']:
            outcome = self.validator.validate_row(valid_row(expiry=expiry), 1)
            assert [i.field for i in outcome.errors] == ['expiry'], expiry

    def test_phone_must_carry_national_prefix(self):
        assert self.validator.validate_row(valid_row(phone='216 12 345 678'), 1).ok
        for phone in ['33612345678', '2161234567', '+21612345678']:
            outcome = self.validator.validate_row(valid_row(phone=phone), 1)
            assert [i.field for i in outcome.errors] == ['phone'], phone

    def test_phone_prefix_is_configurable(self):
        validator = RecordValidator(phone_prefix='33', today=TODAY)
        assert validator.validate_row(valid_row(phone='3312345678'), 1).ok

    def test_enumerations_are_case_insensitive(self):
        assert self.validator.validate_row(valid_row(language='FR', behaviour='SMS', action='Update'), 1).ok

    def test_unknown_enumeration_values(self):
        outcome = self.validator.validate_row(valid_row(language='de', behaviour='push', action='merge'), 1)
        assert sorted(i.field for i in outcome.errors) == ['action', 'behaviour', 'language']

    def test_names_need_two_characters(self):
        outcome = self.validator.validate_row(valid_row(firstName='A'), 1)
        assert [i.field for i in outcome.errors] == ['firstName']

    def test_one_issue_per_field(self):
        """A missing value reports 'required' only, not every rule."""
        outcome = self.validator.validate_row(valid_row(pan='', expiry=''), 7)
        assert sorted(i.field for i in outcome.issues) == ['expiry', 'pan']
        assert all(i.severity == SEVERITY_ERROR for i in outcome.issues)

    def test_only_ascii_digits_count(self):
        """Arabic-Indic and other Unicode digits are not card digits."""
        outcome = self.validator.validate_row(
            valid_row(pan='٤١١١' * 4, expiry='٢٠٢٨١٢'), 1)
        assert sorted(i.field for i in outcome.errors) == ['expiry', 'pan']

        outcome = self.validator.validate_row(valid_row(phone='216١٢٣٤٥٦٧٨'), 1)
        assert [i.field for i in outcome.errors] == ['phone']


class TestNormalization:

    def test_aliases_and_trimming(self):
        row = normalize_row({'Prenom': ' Amine ', 'nom': 'Trabelsi', 'Telephone': '21612345678', 'unknown': 'x'})
        assert row['firstName'] == 'Amine'
        assert row['lastName'] == 'Trabelsi'
        assert row['phone'] == '21612345678'
        assert row['pan'] == ''
        assert 'unknown' not in row

    def test_first_non_empty_alias_wins(self):
        row = normalize_row({'firstName': '', 'prenom': 'Leila', 'first_name': 'Other'})
        assert row['firstName'] == 'Leila'

    def test_surplus_cells_are_ignored(self):
        row = normalize_row({'language': 'fr', None: ['extra', 'cells']})
        assert row['language'] == 'fr'

    def test_blank_row_detection(self):
        assert is_blank_row({'language': '', 'pan': '  ', None: ['']})
        assert not is_blank_row({'language': 'fr'})

    def test_clean_record_maps_model_fields(self):
        record = clean_record(valid_row(language='FR', pan='4111 1111 1111 1111', phone='216 12 345 678'))
        assert record['language'] == 'fr'
        assert record['pan'] == '4111111111111111'
        assert record['phone'] == '21612345678'
        assert record['first_name'] == 'Amine'
