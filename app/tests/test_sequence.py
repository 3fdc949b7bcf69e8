import random
import threading

import pytest
from django.db import connection

from pipeline.models import EntryIdCounter
from pipeline.sequence import IDSequenceAllocator


@pytest.mark.django_db
class TestReservation:

    def test_first_reservation_starts_at_one(self):
        allocator = IDSequenceAllocator()
        assert allocator.reserve(4) == 1
        assert allocator.reserve(2) == 5
        assert allocator.current() == 6

    def test_continues_from_stored_value(self):
        EntryIdCounter.objects.create(name='registry_entry', value=100)
        assert IDSequenceAllocator().reserve(4) == 101
        assert EntryIdCounter.objects.get(name='registry_entry').value == 104

    def test_count_must_be_positive(self):
        with pytest.raises(ValueError):
            IDSequenceAllocator().reserve(0)
        assert not EntryIdCounter.objects.exists()

    def test_sequences_are_independent(self):
        assert IDSequenceAllocator('a').reserve(10) == 1
        assert IDSequenceAllocator('b').reserve(1) == 1


@pytest.mark.django_db(transaction=True)
class TestConcurrentReservation:

    def test_concurrent_reservations_partition_the_range(self):
        """Concurrent callers receive disjoint contiguous blocks with no gaps."""
        EntryIdCounter.objects.create(name='registry_entry', value=0)
        sizes = [random.randint(1, 10) for _ in range(8)]
        blocks = []
        errors = []
        lock = threading.Lock()

        def worker(size):
            try:
                start = IDSequenceAllocator().reserve(size)
                with lock:
                    blocks.append((start, size))
            except Exception as exc:
                errors.append(exc)
            finally:
                connection.close()

        threads = [threading.Thread(target=worker, args=(size,)) for size in sizes]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        issued = sorted(i for start, size in blocks for i in range(start, start + size))
        assert issued == list(range(1, sum(sizes) + 1)), "Blocks must not overlap or leave gaps"
        assert EntryIdCounter.objects.get(name='registry_entry').value == sum(sizes)
