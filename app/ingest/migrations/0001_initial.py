# Generated migration

from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='InstitutionSource',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('code', models.CharField(help_text='Used as the profileId of exported entries', max_length=50, unique=True)),
                ('name', models.CharField(max_length=255)),
                ('source_kind', models.CharField(choices=[('http', 'Remote listing endpoint'), ('local', 'Local directory'), ('sftp', 'Remote transfer protocol')], default='local', max_length=10)),
                ('source_location', models.CharField(max_length=500)),
                ('destination_location', models.CharField(blank=True, max_length=500)),
                ('archive_location', models.CharField(blank=True, max_length=500)),
                ('export_location', models.CharField(blank=True, max_length=500)),
                ('report_location', models.CharField(blank=True, max_length=500)),
                ('notification_email', models.EmailField(blank=True, max_length=254)),
                ('is_active', models.BooleanField(db_index=True, default=True)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                'db_table': 'institution_source',
                'ordering': ['code'],
            },
        ),
        migrations.CreateModel(
            name='FileIngestionLog',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('file_name', models.CharField(db_index=True, max_length=255)),
                ('source_type', models.CharField(choices=[('scan', 'Scheduled scan'), ('upload', 'Manual upload'), ('api', 'Programmatic submission')], default='upload', max_length=10)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('processing', 'Processing'), ('success', 'Success'), ('error', 'Error'), ('validation_error', 'Validation error')], default='pending', max_length=20)),
                ('total_rows', models.PositiveIntegerField(default=0)),
                ('valid_rows', models.PositiveIntegerField(default=0)),
                ('invalid_rows', models.PositiveIntegerField(default=0)),
                ('duplicate_rows', models.PositiveIntegerField(default=0)),
                ('error_details', models.TextField(blank=True)),
                ('source_path', models.CharField(blank=True, max_length=1000)),
                ('destination_path', models.CharField(blank=True, max_length=1000)),
                ('archive_path', models.CharField(blank=True, max_length=1000)),
                ('export_path', models.CharField(blank=True, max_length=1000)),
                ('processed_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('institution', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='file_logs', to='ingest.institutionsource')),
            ],
            options={
                'db_table': 'file_ingestion_log',
                'ordering': ['-processed_at'],
            },
        ),
        migrations.AddIndex(
            model_name='fileingestionlog',
            index=models.Index(fields=['institution', 'file_name', 'status'], name='file_log_handled_idx'),
        ),
        migrations.CreateModel(
            name='ValidationIssue',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('row_number', models.PositiveIntegerField(default=0)),
                ('field_name', models.CharField(max_length=50)),
                ('field_value', models.TextField(blank=True)),
                ('message', models.TextField()),
                ('severity', models.CharField(choices=[('error', 'Error'), ('warning', 'Warning')], default='error', max_length=10)),
                ('is_resolved', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('file_log', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='issues', to='ingest.fileingestionlog')),
            ],
            options={
                'db_table': 'validation_issue',
                'ordering': ['row_number', 'created_at'],
            },
        ),
        migrations.CreateModel(
            name='CardRecord',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('pan', models.CharField(max_length=19)),
                ('first_name', models.CharField(max_length=255)),
                ('last_name', models.CharField(max_length=255)),
                ('expiry', models.CharField(max_length=6)),
                ('phone', models.CharField(max_length=20)),
                ('behaviour', models.CharField(max_length=10)),
                ('action', models.CharField(max_length=10)),
                ('language', models.CharField(max_length=5)),
                ('source_file_name', models.CharField(blank=True, max_length=255)),
                ('enrollment_status', models.CharField(choices=[('pending', 'Pending'), ('success', 'Success'), ('error', 'Error')], db_index=True, default='pending', max_length=10)),
                ('enrollment_error_code', models.CharField(blank=True, max_length=100)),
                ('enrollment_error_description', models.TextField(blank=True)),
                ('enrollment_entry_id', models.BigIntegerField(blank=True, db_index=True, help_text='Id of the exported <add> entry', null=True)),
                ('enrolled_at', models.DateTimeField(blank=True, null=True)),
                ('processed_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('institution', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='card_records', to='ingest.institutionsource')),
            ],
            options={
                'db_table': 'card_record',
                'ordering': ['-processed_at'],
            },
        ),
        migrations.AddConstraint(
            model_name='cardrecord',
            constraint=models.UniqueConstraint(fields=('institution', 'pan'), name='unique_card_per_institution'),
        ),
    ]
