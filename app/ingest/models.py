import uuid
from django.db import models
from django.utils import timezone


class SourceKind(models.TextChoices):
    HTTP = 'http', 'Remote listing endpoint'
    LOCAL = 'local', 'Local directory'
    SFTP = 'sftp', 'Remote transfer protocol'


class InstitutionSource(models.Model):
    """
    An institution whose enrollment files are scanned.
    Managed outside the core; read-only to ingestion and export.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=50, unique=True,
                            help_text="Used as the profileId of exported entries")
    name = models.CharField(max_length=255)

    source_kind = models.CharField(max_length=10, choices=SourceKind.choices, default=SourceKind.LOCAL)
    source_location = models.CharField(max_length=500)
    destination_location = models.CharField(max_length=500, blank=True)
    archive_location = models.CharField(max_length=500, blank=True)
    export_location = models.CharField(max_length=500, blank=True)
    report_location = models.CharField(max_length=500, blank=True)
    notification_email = models.EmailField(blank=True)

    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'institution_source'
        ordering = ['code']

    def __str__(self):
        return f"{self.code} ({self.name})"

    @property
    def source_descriptor(self):
        from ingest.sources import SourceDescriptor
        return SourceDescriptor(kind=self.source_kind, location=self.source_location)


class FileIngestionLog(models.Model):
    """
    One processing attempt of one file for one institution.
    pending -> processing -> success | error | validation_error, then terminal.
    """
    STATUS_PENDING = 'pending'
    STATUS_PROCESSING = 'processing'
    STATUS_SUCCESS = 'success'
    STATUS_ERROR = 'error'
    STATUS_VALIDATION_ERROR = 'validation_error'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_PROCESSING, 'Processing'),
        (STATUS_SUCCESS, 'Success'),
        (STATUS_ERROR, 'Error'),
        (STATUS_VALIDATION_ERROR, 'Validation error'),
    ]
    # A (institution, file_name) with a log in one of these is not picked up again
    HANDLED_STATUSES = (STATUS_SUCCESS, STATUS_PROCESSING)

    SOURCE_SCAN = 'scan'
    SOURCE_UPLOAD = 'upload'
    SOURCE_API = 'api'
    SOURCE_CHOICES = [
        (SOURCE_SCAN, 'Scheduled scan'),
        (SOURCE_UPLOAD, 'Manual upload'),
        (SOURCE_API, 'Programmatic submission'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    institution = models.ForeignKey(InstitutionSource, on_delete=models.PROTECT, related_name='file_logs')
    file_name = models.CharField(max_length=255, db_index=True)
    source_type = models.CharField(max_length=10, choices=SOURCE_CHOICES, default=SOURCE_UPLOAD)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)

    total_rows = models.PositiveIntegerField(default=0)
    valid_rows = models.PositiveIntegerField(default=0)
    invalid_rows = models.PositiveIntegerField(default=0)
    duplicate_rows = models.PositiveIntegerField(default=0)
    error_details = models.TextField(blank=True)

    source_path = models.CharField(max_length=1000, blank=True)
    destination_path = models.CharField(max_length=1000, blank=True)
    archive_path = models.CharField(max_length=1000, blank=True)
    export_path = models.CharField(max_length=1000, blank=True)

    processed_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        db_table = 'file_ingestion_log'
        indexes = [
            models.Index(fields=['institution', 'file_name', 'status'], name='file_log_handled_idx'),
        ]
        ordering = ['-processed_at']

    def __str__(self):
        return f"{self.institution.code}:{self.file_name} [{self.status}]"


class ValidationIssue(models.Model):
    """A single header or field problem found while ingesting a file. Row 0 is the header."""
    SEVERITY_ERROR = 'error'
    SEVERITY_WARNING = 'warning'
    SEVERITY_CHOICES = [
        (SEVERITY_ERROR, 'Error'),
        (SEVERITY_WARNING, 'Warning'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    file_log = models.ForeignKey(FileIngestionLog, on_delete=models.CASCADE, related_name='issues')
    row_number = models.PositiveIntegerField(default=0)
    field_name = models.CharField(max_length=50)
    field_value = models.TextField(blank=True)
    message = models.TextField()
    severity = models.CharField(max_length=10, choices=SEVERITY_CHOICES, default=SEVERITY_ERROR)
    is_resolved = models.BooleanField(default=False)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'validation_issue'
        ordering = ['row_number', 'created_at']

    def __str__(self):
        return f"row {self.row_number} {self.field_name}: {self.message} ({self.severity})"


class CardRecord(models.Model):
    """
    A validated card enrollment row.
    Unique per (institution, pan): a newer valid row overwrites the mutable fields.
    """
    ENROLLMENT_PENDING = 'pending'
    ENROLLMENT_SUCCESS = 'success'
    ENROLLMENT_ERROR = 'error'
    ENROLLMENT_CHOICES = [
        (ENROLLMENT_PENDING, 'Pending'),
        (ENROLLMENT_SUCCESS, 'Success'),
        (ENROLLMENT_ERROR, 'Error'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    institution = models.ForeignKey(InstitutionSource, on_delete=models.PROTECT, related_name='card_records')

    pan = models.CharField(max_length=19)
    first_name = models.CharField(max_length=255)
    last_name = models.CharField(max_length=255)
    expiry = models.CharField(max_length=6)
    phone = models.CharField(max_length=20)
    behaviour = models.CharField(max_length=10)
    action = models.CharField(max_length=10)
    language = models.CharField(max_length=5)
    source_file_name = models.CharField(max_length=255, blank=True)

    enrollment_status = models.CharField(max_length=10, choices=ENROLLMENT_CHOICES,
                                         default=ENROLLMENT_PENDING, db_index=True)
    enrollment_error_code = models.CharField(max_length=100, blank=True)
    enrollment_error_description = models.TextField(blank=True)
    enrollment_entry_id = models.BigIntegerField(null=True, blank=True, db_index=True,
                                                 help_text="Id of the exported <add> entry")
    enrolled_at = models.DateTimeField(null=True, blank=True)

    processed_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        db_table = 'card_record'
        constraints = [
            models.UniqueConstraint(
                fields=['institution', 'pan'],
                name='unique_card_per_institution'
            )
        ]
        ordering = ['-processed_at']

    def __str__(self):
        return f"{self.institution_id}:{self.masked_pan}"

    @property
    def masked_pan(self):
        if len(self.pan) < 10:
            return self.pan
        return f"{self.pan[:6]}{'*' * (len(self.pan) - 10)}{self.pan[-4:]}"
