from django.contrib import admin
from .models import InstitutionSource, FileIngestionLog, ValidationIssue, CardRecord


@admin.register(InstitutionSource)
class InstitutionSourceAdmin(admin.ModelAdmin):
    list_display = ['code', 'name', 'source_kind', 'source_location', 'is_active']
    list_filter = ['source_kind', 'is_active']
    search_fields = ['code', 'name', 'source_location']
    readonly_fields = ['id', 'created_at']


class ValidationIssueInline(admin.TabularInline):
    model = ValidationIssue
    extra = 0
    fields = ['row_number', 'field_name', 'field_value', 'message', 'severity', 'is_resolved']
    readonly_fields = ['row_number', 'field_name', 'field_value', 'message', 'severity']


@admin.register(FileIngestionLog)
class FileIngestionLogAdmin(admin.ModelAdmin):
    list_display = ['file_name', 'institution', 'source_type', 'status',
                    'total_rows', 'valid_rows', 'invalid_rows', 'duplicate_rows', 'processed_at']
    list_filter = ['status', 'source_type', 'institution']
    search_fields = ['file_name', 'error_details']
    readonly_fields = ['id', 'processed_at']
    date_hierarchy = 'processed_at'
    ordering = ['-processed_at']
    inlines = [ValidationIssueInline]


@admin.register(ValidationIssue)
class ValidationIssueAdmin(admin.ModelAdmin):
    list_display = ['file_log', 'row_number', 'field_name', 'severity', 'message', 'is_resolved']
    list_filter = ['severity', 'is_resolved', 'field_name']
    search_fields = ['field_value', 'message', 'file_log__file_name']
    readonly_fields = ['id', 'created_at']


@admin.register(CardRecord)
class CardRecordAdmin(admin.ModelAdmin):
    list_display = ['masked_pan', 'institution', 'last_name', 'first_name',
                    'enrollment_status', 'enrollment_entry_id', 'processed_at']
    list_filter = ['enrollment_status', 'institution', 'language', 'action']
    search_fields = ['pan', 'last_name', 'first_name', 'phone', 'source_file_name']
    readonly_fields = ['id', 'enrollment_entry_id', 'enrolled_at', 'processed_at']
    ordering = ['-processed_at']
