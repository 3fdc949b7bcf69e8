"""
Exception taxonomy shared by the ingest and pipeline apps.

Field-level validation problems are not exceptions: they are recorded as
ValidationIssue rows. These classes cover the failures that abort a unit of work
(an institution's scan cycle, a file, an export batch or a whole report).
"""


class CardLedgerError(Exception):
    """Base class for every domain failure."""


class TransportError(CardLedgerError):
    """Listing or downloading from an institution source failed for a reason other than absence."""

    def __init__(self, message, location=None):
        super().__init__(message)
        self.location = location


class StructuralError(CardLedgerError):
    """The file header does not carry the required column set."""

    def __init__(self, message, issues=()):
        super().__init__(message)
        self.issues = list(issues)


class PersistenceError(CardLedgerError):
    """A database write failed outside the expected upsert conflict path."""


class SequenceAllocationError(CardLedgerError):
    """Entry identifiers could not be reserved; the export batch is abandoned."""


class ReconciliationParseError(CardLedgerError):
    """The registry report could not be parsed; nothing from it is applied."""
