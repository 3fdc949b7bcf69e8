"""
Registry entry id allocation.

A single counter row per sequence name. Reservation is one UPDATE that adds
`count` to the stored value, followed by a read of the new value inside the
same transaction; the row lock taken by the UPDATE serializes concurrent
reservations, so every caller gets a disjoint contiguous block.
"""

import logging

from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone

from cardledger.errors import SequenceAllocationError
from pipeline.models import EntryIdCounter

logger = logging.getLogger(__name__)

REGISTRY_SEQUENCE = 'registry_entry'


class IDSequenceAllocator:

    def __init__(self, name=REGISTRY_SEQUENCE):
        self.name = name

    def reserve(self, count):
        """Reserve `count` ids and return the first one; the block is [start, start + count)."""
        if count < 1:
            raise ValueError(f'count must be at least 1, got {count}')

        try:
            with transaction.atomic():
                if not self._increment(count):
                    EntryIdCounter.objects.get_or_create(name=self.name)
                    self._increment(count)
                value = EntryIdCounter.objects.filter(name=self.name).values_list('value', flat=True).get()
        except DatabaseError as exc:
            raise SequenceAllocationError(f'Could not reserve {count} entry ids: {exc}') from exc

        start = value - count + 1
        logger.debug('Reserved entry ids %s-%s', start, value)
        return start

    def current(self):
        """Last issued id (0 when nothing was ever reserved)."""
        return (
            EntryIdCounter.objects.filter(name=self.name).values_list('value', flat=True).first()
            or 0
        )

    def _increment(self, count):
        return EntryIdCounter.objects.filter(name=self.name).update(
            value=F('value') + count,
            updated_at=timezone.now(),
        )
