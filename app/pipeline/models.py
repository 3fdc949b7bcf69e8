import uuid
from django.db import models
from django.utils import timezone
from ingest.models import InstitutionSource, FileIngestionLog


# ============================================================
# EXPORT / RECONCILIATION AUDIT
# ============================================================

class ExportBatchLog(models.Model):
    """One registry export document written for an institution"""
    STATUS_SUCCESS = 'success'
    STATUS_ERROR = 'error'
    STATUS_CHOICES = [
        (STATUS_SUCCESS, 'Success'),
        (STATUS_ERROR, 'Error'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    institution = models.ForeignKey(InstitutionSource, on_delete=models.PROTECT, related_name='export_batches')
    file_log = models.ForeignKey(FileIngestionLog, on_delete=models.SET_NULL, null=True, blank=True,
                                 related_name='export_batches')

    file_name = models.CharField(max_length=255, blank=True)
    file_path = models.CharField(max_length=1000, blank=True)
    records_count = models.IntegerField(default=0)
    entries_count = models.IntegerField(default=0, help_text="Two entries (add + setAuthMethod) per record")
    first_entry_id = models.BigIntegerField(null=True, blank=True)
    last_entry_id = models.BigIntegerField(null=True, blank=True)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_SUCCESS)
    error_details = models.TextField(blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'export_batch_log'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.file_name or 'export'} ({self.status})"


class ReconciliationLog(models.Model):
    """Summary of one applied registry status report"""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    institution = models.ForeignKey(InstitutionSource, on_delete=models.PROTECT, null=True, blank=True,
                                    related_name='reconciliations', help_text="Empty when applied to all institutions")
    file_name = models.CharField(max_length=255, blank=True)
    total_entries = models.IntegerField(default=0)
    success_count = models.IntegerField(default=0)
    error_count = models.IntegerField(default=0)
    updated_records = models.IntegerField(default=0)
    processed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'reconciliation_log'
        ordering = ['-processed_at']

    def __str__(self):
        return f"{self.file_name or 'report'}: {self.success_count} ok, {self.error_count} failed"


# ============================================================
# SEQUENCE / SCHEDULER STATE
# ============================================================

class EntryIdCounter(models.Model):
    """Last issued registry entry id; one row per named sequence"""
    name = models.CharField(max_length=50, primary_key=True)
    value = models.BigIntegerField(default=0)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'entry_id_counter'

    def __str__(self):
        return f"{self.name}={self.value}"


class ScanLog(models.Model):
    """Aggregate summary of one scan cycle over all active institutions"""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    scan_time = models.DateTimeField(default=timezone.now, db_index=True)
    institutions_scanned = models.IntegerField(default=0)
    files_found = models.IntegerField(default=0)
    files_processed = models.IntegerField(default=0)
    errors_count = models.IntegerField(default=0)
    error_details = models.JSONField(default=list, blank=True)
    finished_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'scan_log'
        ordering = ['-scan_time']

    def __str__(self):
        return f"Scan {self.scan_time:%Y-%m-%d %H:%M}: {self.files_processed}/{self.files_found} files"


class Setting(models.Model):
    """Key/value configuration persisted across restarts (scan schedule, enabled flag)"""
    key = models.CharField(max_length=100, primary_key=True)
    value = models.TextField(blank=True)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'setting'
        ordering = ['key']

    def __str__(self):
        return self.key
