from django.contrib import admin
from .models import ExportBatchLog, ReconciliationLog, EntryIdCounter, ScanLog, Setting


# Export / reconciliation
@admin.register(ExportBatchLog)
class ExportBatchLogAdmin(admin.ModelAdmin):
    list_display = ['file_name', 'institution', 'status', 'records_count', 'entries_count',
                    'first_entry_id', 'last_entry_id', 'created_at']
    list_filter = ['status', 'institution']
    search_fields = ['file_name', 'error_details']
    readonly_fields = ['id', 'created_at', 'processed_at']
    date_hierarchy = 'created_at'


@admin.register(ReconciliationLog)
class ReconciliationLogAdmin(admin.ModelAdmin):
    list_display = ['file_name', 'institution', 'total_entries', 'success_count',
                    'error_count', 'updated_records', 'processed_at']
    list_filter = ['institution']
    search_fields = ['file_name']
    readonly_fields = ['id', 'processed_at']


# Scheduler state
@admin.register(EntryIdCounter)
class EntryIdCounterAdmin(admin.ModelAdmin):
    list_display = ['name', 'value', 'updated_at']
    readonly_fields = ['name', 'value', 'updated_at']


@admin.register(ScanLog)
class ScanLogAdmin(admin.ModelAdmin):
    list_display = ['scan_time', 'institutions_scanned', 'files_found', 'files_processed',
                    'errors_count', 'finished_at']
    readonly_fields = ['id', 'scan_time', 'finished_at', 'error_details']
    date_hierarchy = 'scan_time'


@admin.register(Setting)
class SettingAdmin(admin.ModelAdmin):
    list_display = ['key', 'value', 'updated_at']
    search_fields = ['key']
    readonly_fields = ['updated_at']
