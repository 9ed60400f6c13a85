import contextlib
import itertools
import random
import threading
import time
from collections import defaultdict
from types import SimpleNamespace
from unittest import mock

from django.db import connection
from django.test import SimpleTestCase, TransactionTestCase, skipUnlessDBFeature
from django.utils import timezone

from editions.application.use_cases import on_order_line_activated, on_order_line_retired
from editions.domain.exceptions import DuplicateEventError, UnknownRecordError
from editions.models import AllocationRecord, AllocationState


def _jitter():
    time.sleep(random.random() / 1000)


def run_concurrently(calls):
    """Start every call at once on its own thread; return the exceptions raised."""
    barrier = threading.Barrier(len(calls))
    errors = []

    def worker(call):
        try:
            barrier.wait()
            _jitter()
            call()
        except Exception as exc:  # collected and asserted on by the caller
            errors.append(exc)
        finally:
            connection.close()

    threads = [threading.Thread(target=worker, args=(call,)) for call in calls]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return errors


class StoredRecord:

    def __init__(self, store, record_id):
        self._store = store
        self.id = record_id
        self.refresh_from_db()

    def refresh_from_db(self):
        for name, value in self._store.rows[self.id].items():
            setattr(self, name, value)

    @property
    def is_active(self):
        return self.state == AllocationState.ACTIVE


class LockingMemoryStore:
    """
    In-memory sequence store with per-product locks.

    A product lock taken by lock_product() is held until the outermost
    atomic() block of the same thread exits, like a row lock held until
    commit. Every read and write sleeps briefly so unserialized callers
    would interleave.
    """

    def __init__(self):
        self.rows = {}
        self.max_concurrent_writers = 0
        self._ids = itertools.count(1)
        self._guard = threading.Lock()
        self._product_locks = defaultdict(threading.Lock)
        self._writers = defaultdict(int)
        self._local = threading.local()

    @contextlib.contextmanager
    def atomic(self):
        depth = getattr(self._local, "depth", 0)
        if depth == 0:
            self._local.held = []
        self._local.depth = depth + 1
        try:
            yield
        finally:
            self._local.depth -= 1
            if self._local.depth == 0:
                for lock in self._local.held:
                    lock.release()
                self._local.held = []

    def lock_product(self, product_id):
        with self._guard:
            lock = self._product_locks[product_id]
        if lock not in self._local.held:
            lock.acquire()
            self._local.held.append(lock)
        return SimpleNamespace(product_id=product_id)

    def find_by_idempotency_key(self, product_id, order_ref, item_ref):
        _jitter()
        for record_id, row in list(self.rows.items()):
            if (row["product_id"], row["order_ref"], row["item_ref"]) == (product_id, order_ref, item_ref):
                return StoredRecord(self, record_id)
        return None

    def count_active(self, product_id):
        return len(self._active_rows(product_id))

    def insert(self, product_id, order_ref, item_ref, capacity=None, created_at=None,
               order_name="", vendor_name=""):
        with self._guard:
            for row in self.rows.values():
                if (row["product_id"], row["order_ref"], row["item_ref"]) == (product_id, order_ref, item_ref):
                    raise DuplicateEventError(product_id, order_ref, item_ref)
            record_id = next(self._ids)
            self.rows[record_id] = {
                "product_id": product_id,
                "order_ref": order_ref,
                "item_ref": item_ref,
                "total_capacity": capacity,
                "state": AllocationState.ACTIVE,
                "position": None,
                "created_at": created_at or timezone.now(),
            }
        return StoredRecord(self, record_id)

    def _active_rows(self, product_id):
        return sorted(
            (
                (row["created_at"], record_id)
                for record_id, row in list(self.rows.items())
                if row["product_id"] == product_id and row["state"] == AllocationState.ACTIVE
            ),
        )

    def list_active_by_product(self, product_id):
        _jitter()
        return [StoredRecord(self, record_id) for _, record_id in self._active_rows(product_id)]

    def update_positions(self, product_id, assignments):
        with self._guard:
            self._writers[product_id] += 1
            self.max_concurrent_writers = max(self.max_concurrent_writers, self._writers[product_id])
        try:
            for _, record_id in self._active_rows(product_id):
                self.rows[record_id]["position"] = None
            for record_id, position in assignments:
                _jitter()
                self.rows[record_id]["position"] = position
        finally:
            with self._guard:
                self._writers[product_id] -= 1

    def mark_retired(self, record_id, reason):
        if record_id not in self.rows:
            raise UnknownRecordError(record_id)
        self.rows[record_id].update(state=AllocationState.RETIRED, position=None)

    def mark_active(self, record_id):
        if record_id not in self.rows:
            raise UnknownRecordError(record_id)
        self.rows[record_id]["state"] = AllocationState.ACTIVE

    def record_renumber(self, sequence, active_count):
        pass

    def list_product_ids(self):
        return sorted({row["product_id"] for row in self.rows.values()})

    def active_positions(self, product_id):
        return sorted(self.rows[record_id]["position"] for _, record_id in self._active_rows(product_id))


class SerializedAllocationTest(SimpleTestCase):
    """
    Races the real allocator against a store whose locking mirrors
    select_for_update(), so these run on every database backend.
    """

    workers = 12
    rounds = 5

    def setUp(self):
        self.store = LockingMemoryStore()
        patches = [
            mock.patch("editions.application.use_cases.store", self.store),
            mock.patch(
                "editions.application.use_cases.transaction",
                SimpleNamespace(atomic=self.store.atomic),
            ),
        ]
        for patcher in patches:
            patcher.start()
            self.addCleanup(patcher.stop)

    def test_concurrent_activations_get_distinct_positions(self):
        for round_number in range(self.rounds):
            product_id = f"P{round_number}"
            calls = [
                lambda n=n, product_id=product_id: on_order_line_activated(product_id, f"O{n}", f"L{n}")
                for n in range(self.workers)
            ]

            errors = run_concurrently(calls)

            self.assertEqual(errors, [])
            self.assertEqual(self.store.active_positions(product_id), list(range(1, self.workers + 1)))
        self.assertEqual(self.store.max_concurrent_writers, 1)

    def test_concurrent_redeliveries_create_one_record(self):
        calls = [lambda: on_order_line_activated("P1", "O1", "L1")] * self.workers

        errors = run_concurrently(calls)

        self.assertEqual(errors, [])
        self.assertEqual(len(self.store.rows), 1)
        self.assertEqual(self.store.active_positions("P1"), [1])

    def test_mixed_activations_and_retirements_stay_dense(self):
        for n in range(self.workers):
            on_order_line_activated("P1", f"O{n}", f"L{n}")

        calls = [
            lambda n=n: on_order_line_retired("P1", f"O{n}", f"L{n}")
            for n in range(0, self.workers, 2)
        ] + [
            lambda n=n: on_order_line_activated("P1", f"O{n}", f"L{n}")
            for n in range(self.workers, self.workers + 4)
        ]

        errors = run_concurrently(calls)

        self.assertEqual(errors, [])
        active = self.store.active_positions("P1")
        self.assertEqual(active, list(range(1, self.workers - self.workers // 2 + 5)))
        self.assertEqual(self.store.max_concurrent_writers, 1)


@skipUnlessDBFeature("has_select_for_update")
class ConcurrentAllocationTest(TransactionTestCase):
    """
    Stress tests against a backend with real row locks (e.g. PostgreSQL).

    Each worker thread opens its own database connection, so activations
    for the same product genuinely race on the product's lock row.
    """

    workers = 12
    rounds = 3

    def _active_positions(self, product_id):
        return sorted(
            AllocationRecord.objects
            .filter(product_id=product_id, state=AllocationState.ACTIVE)
            .values_list("position", flat=True)
        )

    def test_concurrent_activations_get_distinct_positions(self):
        for round_number in range(self.rounds):
            product_id = f"P{round_number}"
            calls = [
                lambda n=n, product_id=product_id: on_order_line_activated(product_id, f"O{n}", f"L{n}")
                for n in range(self.workers)
            ]

            errors = run_concurrently(calls)

            self.assertEqual(errors, [])
            self.assertEqual(self._active_positions(product_id), list(range(1, self.workers + 1)))

    def test_concurrent_redeliveries_create_one_record(self):
        calls = [lambda: on_order_line_activated("P1", "O1", "L1")] * self.workers

        errors = run_concurrently(calls)

        self.assertEqual(errors, [])
        self.assertEqual(AllocationRecord.objects.filter(product_id="P1").count(), 1)
        self.assertEqual(self._active_positions("P1"), [1])

    def test_mixed_activations_and_retirements_stay_dense(self):
        for n in range(self.workers):
            on_order_line_activated("P1", f"O{n}", f"L{n}")

        calls = [
            lambda n=n: on_order_line_retired("P1", f"O{n}", f"L{n}")
            for n in range(0, self.workers, 2)
        ] + [
            lambda n=n: on_order_line_activated("P1", f"O{n}", f"L{n}")
            for n in range(self.workers, self.workers + 4)
        ]

        errors = run_concurrently(calls)

        self.assertEqual(errors, [])
        active = self._active_positions("P1")
        self.assertEqual(active, list(range(1, len(active) + 1)))
        self.assertEqual(len(active), self.workers - self.workers // 2 + 4)
