"""
Header and row validation for card enrollment files.

Validation never raises: every problem becomes an Issue with a severity.
Errors block persistence of the row (or of the whole file, for the header);
warnings are recorded but the row is still persisted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional

from django.conf import settings
from django.utils import timezone

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"

REQUIRED_FIELDS = (
    "language",
    "firstName",
    "lastName",
    "pan",
    "expiry",
    "phone",
    "behaviour",
    "action",
)

VALID_LANGUAGES = ("fr", "en", "ar")
VALID_BEHAVIOURS = ("otp", "sms", "email")
VALID_ACTIONS = ("update", "create", "delete")

EXPIRY_MIN_YEAR = 2024
EXPIRY_MAX_YEAR = 2050

# Lower-cased source column -> canonical field
COLUMN_ALIASES = {
    "language": "language",
    "langue": "language",
    "firstname": "firstName",
    "first_name": "firstName",
    "prenom": "firstName",
    "prénom": "firstName",
    "lastname": "lastName",
    "last_name": "lastName",
    "nom": "lastName",
    "pan": "pan",
    "expiry": "expiry",
    "expiration": "expiry",
    "phone": "phone",
    "telephone": "phone",
    "téléphone": "phone",
    "behaviour": "behaviour",
    "behavior": "behaviour",
    "action": "action",
}

_WS_RE = re.compile(r"\s+")
_PAN_RE = re.compile(r"^[0-9]{16}$")
_EXPIRY_RE = re.compile(r"^[0-9]{6}$")
_DIGITS_RE = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class Issue:
    row_number: int
    field: str
    value: str
    message: str
    severity: str = SEVERITY_ERROR

    @property
    def is_error(self) -> bool:
        return self.severity == SEVERITY_ERROR


@dataclass
class ValidationOutcome:
    issues: List[Issue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(issue.is_error for issue in self.issues)

    @property
    def errors(self) -> List[Issue]:
        return [issue for issue in self.issues if issue.is_error]

    @property
    def warnings(self) -> List[Issue]:
        return [issue for issue in self.issues if not issue.is_error]


def normalize_column(name: Optional[str]) -> str:
    """Map a source column name onto the canonical field set; unknown names are returned trimmed."""
    if name is None:
        return ""
    cleaned = name.strip().lstrip("\ufeff")
    return COLUMN_ALIASES.get(cleaned.lower(), cleaned)


def normalize_row(raw: Mapping[str, Optional[str]]) -> Dict[str, str]:
    """
    Build a canonical row from a raw CSV row.

    Never fails: every canonical field is present (empty string when missing),
    values are trimmed, and the first non-empty alias wins.
    """
    row = {name: "" for name in REQUIRED_FIELDS}
    for column, value in raw.items():
        if column is None:
            # csv.DictReader puts surplus cells under None
            continue
        canonical = normalize_column(column)
        if canonical not in row:
            continue
        if isinstance(value, list):
            value = ";".join(value)
        value = (value or "").strip()
        if value and not row[canonical]:
            row[canonical] = value
    return row


def clean_pan(pan: Optional[str]) -> str:
    return _WS_RE.sub("", pan or "")


def luhn_check(digits: str) -> bool:
    """Luhn checksum over a string of digits."""
    if not digits or not _DIGITS_RE.fullmatch(digits):
        return False
    total = 0
    for position, char in enumerate(reversed(digits)):
        digit = int(char)
        if position % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def is_blank_row(raw: Mapping[str, Optional[str]]) -> bool:
    for value in raw.values():
        if isinstance(value, list):
            value = "".join(value)
        if value and value.strip():
            return False
    return True


def clean_record(row: Mapping[str, str]) -> Dict[str, str]:
    """Canonical row -> CardRecord field values."""
    return {
        "language": row["language"].lower(),
        "first_name": row["firstName"].strip(),
        "last_name": row["lastName"].strip(),
        "pan": clean_pan(row["pan"]),
        "expiry": row["expiry"].strip(),
        "phone": _WS_RE.sub("", row["phone"]),
        "behaviour": row["behaviour"].lower(),
        "action": row["action"].lower(),
    }


class RecordValidator:
    """Stateless validator for the enrollment file schema."""

    def __init__(self, phone_prefix: Optional[str] = None, today: Optional[date] = None):
        self.phone_prefix = phone_prefix or getattr(settings, "CARDLEDGER_PHONE_PREFIX", "216")
        self._phone_re = re.compile(rf"^{re.escape(self.phone_prefix)}[0-9]{{8}}$")
        self._today = today

    @property
    def today(self) -> date:
        return self._today or timezone.localdate()

    def validate_header(self, columns: Iterable[Optional[str]]) -> ValidationOutcome:
        outcome = ValidationOutcome()
        present = [normalize_column(c) for c in columns]
        present = [c for c in present if c]

        for required in REQUIRED_FIELDS:
            if required not in present:
                outcome.issues.append(Issue(
                    row_number=0,
                    field="header",
                    value=required,
                    message=f"Missing required column: {required}",
                ))

        unexpected = [c for c in present if c not in REQUIRED_FIELDS]
        if unexpected:
            outcome.issues.append(Issue(
                row_number=0,
                field="header",
                value=", ".join(unexpected),
                message=f"Unexpected columns found: {', '.join(unexpected)}",
                severity=SEVERITY_WARNING,
            ))
        return outcome

    def validate_row(self, row: Mapping[str, str], row_number: int) -> ValidationOutcome:
        """Validate a canonical row (see normalize_row). At most one issue per field."""
        checks = (
            ("language", self._check_choice(VALID_LANGUAGES)),
            ("firstName", self._check_name),
            ("lastName", self._check_name),
            ("pan", self._check_pan),
            ("expiry", self._check_expiry),
            ("phone", self._check_phone),
            ("behaviour", self._check_choice(VALID_BEHAVIOURS)),
            ("action", self._check_choice(VALID_ACTIONS)),
        )

        outcome = ValidationOutcome()
        for field_name, check in checks:
            value = row.get(field_name) or ""
            if not value.strip():
                outcome.issues.append(Issue(row_number, field_name, value, f"{field_name} is required"))
                continue
            problem = check(field_name, value)
            if problem:
                message, severity = problem
                outcome.issues.append(Issue(row_number, field_name, value, message, severity))
        return outcome

    # Each check returns None or (message, severity)

    @staticmethod
    def _check_choice(allowed):
        def check(field_name, value):
            if value.strip().lower() not in allowed:
                return f"Invalid {field_name}. Accepted values: {', '.join(allowed)}", SEVERITY_ERROR
            return None
        return check

    @staticmethod
    def _check_name(field_name, value):
        if not 2 <= len(value.strip()) <= 255:
            return f"{field_name} must be between 2 and 255 characters", SEVERITY_ERROR
        return None

    @staticmethod
    def _check_pan(field_name, value):
        digits = clean_pan(value)
        if not _PAN_RE.match(digits):
            return "PAN must contain exactly 16 digits", SEVERITY_ERROR
        if not luhn_check(digits):
            return "PAN failed the Luhn checksum", SEVERITY_WARNING
        return None

    def _check_expiry(self, field_name, value):
        value = value.strip()
        if not _EXPIRY_RE.match(value):
            return "Invalid expiry format. Expected YYYYMM (e.g. 202811)", SEVERITY_ERROR
        year, month = int(value[:4]), int(value[4:])
        if not EXPIRY_MIN_YEAR <= year <= EXPIRY_MAX_YEAR:
            return f"Invalid expiry year (must be between {EXPIRY_MIN_YEAR} and {EXPIRY_MAX_YEAR})", SEVERITY_ERROR
        if not 1 <= month <= 12:
            return "Invalid expiry month (must be between 01 and 12)", SEVERITY_ERROR
        today = self.today
        if (year, month) < (today.year, today.month):
            return "Card is expired", SEVERITY_WARNING
        return None

    def _check_phone(self, field_name, value):
        if not self._phone_re.match(_WS_RE.sub("", value)):
            return (
                f"Invalid phone format. Expected {self.phone_prefix} followed by 8 digits",
                SEVERITY_ERROR,
            )
        return None
