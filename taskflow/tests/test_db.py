import tempfile
import threading
import time
import unittest
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from taskflow.db import InMemoryDocumentStore, Query, SqlDocumentStore
from taskflow.errors import NotFoundError


class DocumentStoreContract:
    """Behavior every document store must share; mixed into a TestCase below."""

    def make_store(self):
        raise NotImplementedError

    def make_racing_store(self):
        return self.make_store()

    def setUp(self):
        self.store = self.make_store()

    def _race(self, store, func, workers=4):
        barrier = threading.Barrier(workers, timeout=10)

        def run(index):
            barrier.wait()
            return func(store, index)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(run, range(workers)))

    def test_set_get_and_merge(self):
        self.store.set("things", "a", {"name": "A", "count": 1})
        self.store.set("things", "a", {"count": 2}, merge=True)
        self.assertEqual(self.store.get("things", "a"), {"name": "A", "count": 2})

        self.store.set("things", "a", {"count": 3})
        self.assertEqual(self.store.get("things", "a"), {"count": 3})
        self.assertIsNone(self.store.get("things", "missing"))

    def test_get_returns_a_copy(self):
        self.store.set("things", "a", {"tags": ["x"]})
        self.store.get("things", "a")["tags"].append("y")
        self.assertEqual(self.store.get("things", "a"), {"tags": ["x"]})

    def test_update_missing_document_raises(self):
        with self.assertRaises(NotFoundError):
            self.store.update("things", "missing", {"count": 1})

    def test_delete_is_idempotent(self):
        self.store.set("things", "a", {"name": "A"})
        self.store.delete("things", "a")
        self.store.delete("things", "a")
        self.assertIsNone(self.store.get("things", "a"))

    def test_query_filters_orders_and_limits(self):
        self.store.set("things", "a", {"owner": "u1", "rank": 2, "tags": ["red"]})
        self.store.set("things", "b", {"owner": "u1", "rank": 3, "tags": ["blue"]})
        self.store.set("things", "c", {"owner": "u2", "rank": 1, "tags": ["red"]})

        by_owner = self.store.query(
            Query("things", filters=(("owner", "u1"),), order_by="rank", descending=True)
        )
        self.assertEqual([doc.id for doc in by_owner], ["b", "a"])

        red = self.store.query(
            Query("things", array_contains=("tags", "red"), order_by="rank")
        )
        self.assertEqual([doc.id for doc in red], ["c", "a"])

        limited = self.store.query(Query("things", order_by="rank", limit=1))
        self.assertEqual([doc.id for doc in limited], ["c"])

    def test_query_matches_datetime_values(self):
        when = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
        self.store.set("things", "a", {"at": when})
        self.assertEqual(len(self.store.query(Query("things").where("at", when))), 1)

    def test_array_union_skips_existing_values(self):
        self.store.set("things", "a", {"ids": ["x"]})
        self.store.array_union("things", "a", "ids", ["x", "y"])
        self.store.array_union("things", "a", "ids", ["y"])
        self.assertEqual(self.store.get("things", "a")["ids"], ["x", "y"])

    def test_append_unique_by_key(self):
        self.store.set("things", "a", {"members": []})
        self.assertTrue(
            self.store.append_unique("things", "a", "members", {"uid": "u1"}, key="uid")
        )
        self.assertFalse(
            self.store.append_unique(
                "things", "a", "members", {"uid": "u1", "name": "again"}, key="uid"
            )
        )
        self.assertEqual(self.store.get("things", "a")["members"], [{"uid": "u1"}])

    def test_update_if_checks_expected_values(self):
        self.store.set("things", "a", {"status": "pending"})
        self.assertTrue(
            self.store.update_if("things", "a", {"status": "pending"}, {"status": "done"})
        )
        self.assertFalse(
            self.store.update_if("things", "a", {"status": "pending"}, {"status": "x"})
        )
        self.assertFalse(
            self.store.update_if("things", "missing", {"status": "pending"}, {})
        )
        self.assertEqual(self.store.get("things", "a"), {"status": "done"})

    def test_insert_if_absent(self):
        conflict = Query("things", filters=(("key", "k"),))
        self.assertTrue(self.store.insert_if_absent("things", "a", {"key": "k"}, conflict))
        self.assertFalse(self.store.insert_if_absent("things", "b", {"key": "k"}, conflict))
        self.assertFalse(self.store.insert_if_absent("things", "a", {"key": "z"}, conflict))
        self.assertIsNone(self.store.get("things", "b"))

    def test_concurrent_update_if_has_one_winner(self):
        store = self.make_racing_store()
        store.set("things", "a", {"status": "pending"})
        statuses = ["accepted", "rejected", "accepted", "rejected"]

        results = self._race(
            store,
            lambda s, i: s.update_if(
                "things", "a", {"status": "pending"}, {"status": statuses[i]}
            ),
        )

        self.assertEqual(results.count(True), 1)
        winner = statuses[results.index(True)]
        self.assertEqual(store.get("things", "a"), {"status": winner})

    def test_concurrent_insert_if_absent_creates_one_document(self):
        store = self.make_racing_store()
        conflict = Query("things", filters=(("key", "k"),))

        results = self._race(
            store,
            lambda s, i: s.insert_if_absent("things", f"doc-{i}", {"key": "k"}, conflict),
        )

        self.assertEqual(results.count(True), 1)
        self.assertEqual(len(store.query(conflict)), 1)

    def test_concurrent_array_union_keeps_every_value(self):
        store = self.make_racing_store()
        store.set("things", "a", {"ids": []})

        self._race(store, lambda s, i: s.array_union("things", "a", "ids", [f"u{i}"]))

        self.assertEqual(sorted(store.get("things", "a")["ids"]), ["u0", "u1", "u2", "u3"])

    def test_update_many(self):
        self.store.set("things", "a", {"read": False})
        self.store.set("things", "b", {"read": False})
        self.assertEqual(self.store.update_many("things", ["a", "b"], {"read": True}), 2)
        self.assertTrue(self.store.get("things", "b")["read"])
        self.assertEqual(self.store.update_many("things", [], {"read": True}), 0)

    def test_listen_delivers_initial_and_updated_snapshots(self):
        snapshots = []
        subscription = self.store.listen(
            Query("things", filters=(("owner", "u1"),)),
            lambda docs: snapshots.append(sorted(doc.id for doc in docs)),
        )
        self.store.set("things", "a", {"owner": "u1"})
        self.store.set("things", "b", {"owner": "u2"})
        subscription.remove()
        subscription.remove()
        self.store.set("things", "c", {"owner": "u1"})

        self.assertEqual(snapshots, [[], ["a"], ["a"]])
        self.assertEqual(self.store.listener_count, 0)

    def test_listener_errors_go_to_error_callback(self):
        errors = []
        original_query = self.store.query

        def failing_query(query):
            raise RuntimeError("query failed")

        self.store.query = failing_query
        try:
            self.store.listen(Query("things"), lambda docs: None, errors.append)
        finally:
            self.store.query = original_query
        self.assertEqual([str(e) for e in errors], ["query failed"])


class InMemoryDocumentStoreTests(DocumentStoreContract, unittest.TestCase):
    def make_store(self):
        return InMemoryDocumentStore()

    def test_reset(self):
        self.store.set("things", "a", {"name": "A"})
        self.store.reset()
        self.assertIsNone(self.store.get("things", "a"))


class _SlowSqlDocumentStore(SqlDocumentStore):
    """Pauses after every read so concurrent writers overlap inside a transaction."""

    def _row(self, session, collection, doc_id, lock=False):
        row = super()._row(session, collection, doc_id, lock=lock)
        time.sleep(0.05)
        return row

    def _has_match(self, session, query):
        found = super()._has_match(session, query)
        time.sleep(0.05)
        return found


class SqlDocumentStoreTests(DocumentStoreContract, unittest.TestCase):
    """
    Uses a file-backed SQLite database so worker threads share one database.
    """

    def _database_url(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        return f"sqlite+pysqlite:///{tmp.name}/store.db"

    def _open(self, store_class):
        store = store_class(self._database_url())
        self.addCleanup(store.engine.dispose)
        return store

    def make_store(self):
        return self._open(SqlDocumentStore)

    def make_racing_store(self):
        return self._open(_SlowSqlDocumentStore)

    def test_datetimes_are_stored_as_iso_strings(self):
        when = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
        self.store.set("things", "a", {"at": when})
        self.assertEqual(self.store.get("things", "a"), {"at": when.isoformat()})

    def test_requires_database_url(self):
        with self.assertRaises(ValueError):
            SqlDocumentStore("")


if __name__ == "__main__":
    unittest.main()
