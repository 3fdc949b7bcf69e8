import json

from django.utils import timezone

from pipeline.models import Setting


class DatabaseSettingsStore:
    """Key/value settings kept in the `setting` table, values stored as JSON."""

    def get(self, key, default=None):
        raw = Setting.objects.filter(key=key).values_list('value', flat=True).first()
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            return raw

    def set(self, key, value):
        Setting.objects.update_or_create(
            key=key,
            defaults={'value': json.dumps(value), 'updated_at': timezone.now()},
        )
        return value
