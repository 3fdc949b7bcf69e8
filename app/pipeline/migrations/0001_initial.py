# Generated migration

from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('ingest', '0001_initial'),
    ]

    operations = [
        # Export / reconciliation audit
        migrations.CreateModel(
            name='ExportBatchLog',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('file_name', models.CharField(blank=True, max_length=255)),
                ('file_path', models.CharField(blank=True, max_length=1000)),
                ('records_count', models.IntegerField(default=0)),
                ('entries_count', models.IntegerField(default=0, help_text='Two entries (add + setAuthMethod) per record')),
                ('first_entry_id', models.BigIntegerField(blank=True, null=True)),
                ('last_entry_id', models.BigIntegerField(blank=True, null=True)),
                ('status', models.CharField(choices=[('success', 'Success'), ('error', 'Error')], default='success', max_length=20)),
                ('error_details', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('processed_at', models.DateTimeField(blank=True, null=True)),
                ('file_log', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='export_batches', to='ingest.fileingestionlog')),
                ('institution', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='export_batches', to='ingest.institutionsource')),
            ],
            options={
                'db_table': 'export_batch_log',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='ReconciliationLog',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('file_name', models.CharField(blank=True, max_length=255)),
                ('total_entries', models.IntegerField(default=0)),
                ('success_count', models.IntegerField(default=0)),
                ('error_count', models.IntegerField(default=0)),
                ('updated_records', models.IntegerField(default=0)),
                ('processed_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('institution', models.ForeignKey(blank=True, help_text='Empty when applied to all institutions', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='reconciliations', to='ingest.institutionsource')),
            ],
            options={
                'db_table': 'reconciliation_log',
                'ordering': ['-processed_at'],
            },
        ),
        # Sequence / scheduler state
        migrations.CreateModel(
            name='EntryIdCounter',
            fields=[
                ('name', models.CharField(max_length=50, primary_key=True, serialize=False)),
                ('value', models.BigIntegerField(default=0)),
                ('updated_at', models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                'db_table': 'entry_id_counter',
            },
        ),
        migrations.CreateModel(
            name='ScanLog',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('scan_time', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('institutions_scanned', models.IntegerField(default=0)),
                ('files_found', models.IntegerField(default=0)),
                ('files_processed', models.IntegerField(default=0)),
                ('errors_count', models.IntegerField(default=0)),
                ('error_details', models.JSONField(blank=True, default=list)),
                ('finished_at', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'db_table': 'scan_log',
                'ordering': ['-scan_time'],
            },
        ),
        migrations.CreateModel(
            name='Setting',
            fields=[
                ('key', models.CharField(max_length=100, primary_key=True, serialize=False)),
                ('value', models.TextField(blank=True)),
                ('updated_at', models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                'db_table': 'setting',
                'ordering': ['key'],
            },
        ),
    ]
