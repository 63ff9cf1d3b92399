import json
import tempfile
import threading
import unittest
from pathlib import Path

from marketplace.errors import RecordValidationError, StorageBusy, StorageUnavailable
from marketplace.records import Project, User
from marketplace.storage import (
    FlatFileBackend,
    HierarchicalBackend,
    InMemoryBackend,
    RecordStore,
)

USERS = [
    {"id": 1, "type": "commissioner", "name": "Ada", "avatar": "/a.png"},
    {"id": 2, "type": "freelancer", "name": "Tilly", "skills": ["figma"]},
]


class FlatFileBackendTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.data_dir = Path(self._tmp.name)
        self.store = RecordStore(FlatFileBackend(self.data_dir), lock_timeout_seconds=0.2)

    def tearDown(self):
        self._tmp.cleanup()

    def test_missing_file_is_empty_collection(self):
        self.assertEqual(self.store.read_collection("users"), [])

    def test_round_trip(self):
        self.store.write_collection("users", USERS)
        records = self.store.read_collection("users")
        self.assertEqual([r.to_document() for r in records], USERS)
        on_disk = json.loads((self.data_dir / "users.json").read_text())
        self.assertEqual(on_disk, USERS)

    def test_write_leaves_no_temp_files(self):
        self.store.write_collection("users", USERS)
        self.store.write_collection("users", USERS[:1])
        leftovers = [p.name for p in self.data_dir.iterdir() if p.suffix == ".tmp"]
        self.assertEqual(leftovers, [])

    def test_numeric_strings_parsed_on_write(self):
        self.store.write_collection(
            "projects", [{"projectId": "7", "freelancerId": "3", "title": "Logo"}]
        )
        on_disk = json.loads((self.data_dir / "projects.json").read_text())
        self.assertEqual(on_disk, [{"projectId": 7, "freelancerId": 3, "title": "Logo"}])

    def test_non_numeric_id_rejected(self):
        with self.assertRaises(RecordValidationError):
            self.store.write_collection(
                "users", [{"id": "abc", "type": "freelancer", "name": "X"}]
            )
        self.assertFalse((self.data_dir / "users.json").exists())

    def test_malformed_json_is_unavailable(self):
        (self.data_dir / "users.json").write_text("{not json")
        with self.assertRaises(StorageUnavailable):
            self.store.read_collection("users")

    def test_non_array_document_is_unavailable(self):
        (self.data_dir / "users.json").write_text('{"users": []}')
        with self.assertRaises(StorageUnavailable):
            self.store.read_collection("users")

    def test_malformed_records_are_quarantined(self):
        documents = USERS + [{"id": 3, "type": "admin", "name": "Root"}, "junk"]
        (self.data_dir / "users.json").write_text(json.dumps(documents))
        with self.assertLogs("marketplace.storage", level="WARNING"):
            records = self.store.read_collection("users")
        self.assertEqual([r.id for r in records], [1, 2])

    def test_busy_writer_times_out(self):
        backend = self.store.backend
        with backend.write_lock("users", timeout=1):
            with self.assertRaises(StorageBusy):
                self.store.write_collection("users", USERS)

    def test_concurrent_updates_are_serialized(self):
        store = RecordStore(FlatFileBackend(self.data_dir), lock_timeout_seconds=30)
        errors = []

        def add_user(user_id):
            user = User(id=user_id, type="freelancer", name=f"user-{user_id}")
            try:
                store.update_collection("users", lambda users: users + [user])
            except Exception as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=add_user, args=(i,)) for i in range(1, 21)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        ids = sorted(u.id for u in store.read_collection("users"))
        self.assertEqual(ids, list(range(1, 21)))

    def test_update_keeps_unreadable_records(self):
        documents = [
            {"notificationId": "n-0", "userId": "legacy-x", "action": "accepted"},
            {"notificationId": "n-2", "userId": 5, "action": "viewed"},
        ]
        (self.data_dir / "notification_actions.json").write_text(json.dumps(documents))
        with self.assertLogs("marketplace.storage", level="WARNING"):
            self.store.update_collection("notification_actions", lambda actions: actions)
        on_disk = json.loads((self.data_dir / "notification_actions.json").read_text())
        self.assertEqual([d["notificationId"] for d in on_disk], ["n-2", "n-0"])
        self.assertEqual(on_disk[1], documents[0])

    def test_update_replaces_unreadable_record_with_same_key(self):
        documents = USERS + [{"id": 3, "type": "admin", "name": "Root"}]
        (self.data_dir / "users.json").write_text(json.dumps(documents))
        replacement = User(id=3, type="commissioner", name="Root")
        with self.assertLogs("marketplace.storage", level="WARNING"):
            self.store.update_collection("users", lambda users: users + [replacement])
        on_disk = json.loads((self.data_dir / "users.json").read_text())
        self.assertEqual([(d["id"], d["type"]) for d in on_disk][-1], (3, "commissioner"))
        self.assertEqual(len(on_disk), 3)

    def test_duplicate_keys_rejected(self):
        with self.assertRaises(RecordValidationError):
            self.store.write_collection("users", [USERS[0], {**USERS[1], "id": "1"}])
        self.assertFalse((self.data_dir / "users.json").exists())

    def test_unwritable_data_dir_is_unavailable(self):
        blocker = self.data_dir / "blocker"
        blocker.write_text("")
        store = RecordStore(FlatFileBackend(blocker), lock_timeout_seconds=0.2)
        self.assertEqual(store.read_collection("users"), [])
        with self.assertRaises(StorageUnavailable):
            store.write_collection("users", USERS)
        with self.assertRaises(StorageUnavailable):
            store.update_collection("users", lambda users: users)

    def test_update_returning_none_skips_write(self):
        self.store.write_collection("users", USERS)
        path = self.data_dir / "users.json"
        before = path.stat().st_mtime_ns
        result = self.store.update_collection("users", lambda users: None)
        self.assertEqual(len(result), 2)
        self.assertEqual(path.stat().st_mtime_ns, before)


class HierarchicalBackendTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.data_dir = Path(self._tmp.name)
        self.backend = HierarchicalBackend(self.data_dir)
        self.store = RecordStore(self.backend, lock_timeout_seconds=0.2)

    def tearDown(self):
        self._tmp.cleanup()

    def test_missing_collection_is_empty(self):
        self.assertEqual(self.store.read_collection("projects"), [])

    def test_round_trip_keeps_order(self):
        projects = [
            {"projectId": 9, "freelancerId": 3, "title": "B", "createdAt": "2025-07-02T08:00:00Z"},
            {"projectId": 4, "freelancerId": 3, "title": "A"},
        ]
        self.store.write_collection("projects", projects)
        records = self.store.read_collection("projects")
        self.assertEqual([r.to_document() for r in records], projects)

    def test_records_partitioned_by_creation_date(self):
        self.store.write_collection(
            "projects",
            [{"projectId": 9, "freelancerId": 3, "title": "B", "createdAt": "2025-07-02T08:00:00Z"}],
        )
        path = (
            self.data_dir / "projects" / "g000001" / "2025" / "07" / "02" / "9" / "record.json"
        )
        self.assertTrue(path.exists())
        index = json.loads((self.data_dir / "projects" / "index.json").read_text())
        self.assertEqual(index, ["g000001/2025/07/02/9/record.json"])

    def test_old_generations_removed(self):
        self.store.write_collection("users", USERS)
        self.store.write_collection("users", USERS[1:])
        self.store.write_collection("users", USERS[1:])
        users_dir = self.data_dir / "users"
        self.assertFalse((users_dir / "g000001").exists())
        self.assertEqual(
            list(self.backend.iter_record_files("users")),
            [
                users_dir / "g000002" / "2" / "record.json",
                users_dir / "g000003" / "2" / "record.json",
            ],
        )
        self.assertEqual([u.id for u in self.store.read_collection("users")], [2])

    def test_old_index_still_resolves_after_commit(self):
        self.store.write_collection("users", USERS)
        held_index = self.backend._read_index("users")
        self.store.write_collection("users", USERS[1:])
        base = self.backend.entity_dir("users")
        missing = [p for p in held_index if not (base / p).exists()]
        self.assertEqual(missing, [])

    def test_failed_write_keeps_committed_collection(self):
        self.store.write_collection("users", USERS)
        # A plain file where the next generation directory would go.
        (self.data_dir / "users" / "g000002").write_text("")
        with self.assertRaises(StorageUnavailable):
            self.store.write_collection("users", USERS[1:])
        self.assertEqual([u.id for u in self.store.read_collection("users")], [1, 2])

    def test_dot_keys_stay_inside_collection(self):
        self.store.write_collection("invoices", [{"invoiceNumber": "..", "freelancerId": 1}])
        self.store.write_collection(
            "message_threads", [{"threadId": "..", "participants": [1, 2]}]
        )
        self.assertFalse((self.data_dir / "record.json").exists())
        index = json.loads((self.data_dir / "invoices" / "index.json").read_text())
        self.assertEqual(index, ["g000001/%2E%2E/record.json"])
        self.assertEqual(
            [i.invoiceNumber for i in self.store.read_collection("invoices")], [".."]
        )
        self.assertEqual(
            [t.threadId for t in self.store.read_collection("message_threads")], [".."]
        )

    def test_distinct_keys_get_distinct_directories(self):
        invoices = [
            {"invoiceNumber": "a/b", "freelancerId": 1},
            {"invoiceNumber": "a_b", "freelancerId": 1},
            {"invoiceNumber": "a%2Fb", "freelancerId": 1},
        ]
        self.store.write_collection("invoices", invoices)
        self.assertEqual(
            [i.invoiceNumber for i in self.store.read_collection("invoices")],
            ["a/b", "a_b", "a%2Fb"],
        )

    def test_duplicate_keys_rejected(self):
        with self.assertRaises(RecordValidationError):
            self.store.write_collection("users", [USERS[0], USERS[0]])

    def test_unreadable_records_with_same_key_are_kept(self):
        self.backend.save_documents(
            "users",
            [
                {"id": 3, "type": "admin", "name": "Root"},
                {"id": 3, "type": "owner", "name": "Root"},
            ],
        )
        with self.assertLogs("marketplace.storage", level="WARNING"):
            self.store.update_collection(
                "users", lambda users: users + [User(id=1, type="freelancer", name="Kit")]
            )
        names = [d["type"] for d in self.backend.load_documents("users")]
        self.assertEqual(names, ["freelancer", "admin", "owner"])

    def test_concurrent_updates_are_serialized(self):
        store = RecordStore(self.backend, lock_timeout_seconds=30)
        errors = []

        def add_user(user_id):
            user = User(id=user_id, type="freelancer", name=f"user-{user_id}")
            try:
                store.update_collection("users", lambda users: users + [user])
            except Exception as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=add_user, args=(i,)) for i in range(1, 21)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        ids = sorted(u.id for u in store.read_collection("users"))
        self.assertEqual(ids, list(range(1, 21)))

    def test_reads_during_writes_never_fail(self):
        store = RecordStore(self.backend, lock_timeout_seconds=30)
        store.write_collection("users", USERS)
        done = threading.Event()
        errors = []

        def write_loop():
            try:
                for i in range(3, 33):
                    user = User(id=i, type="freelancer", name=f"user-{i}")
                    # Drop the previous extra user so record paths keep changing.
                    store.update_collection(
                        "users", lambda users: [u for u in users if u.id < 3] + [user]
                    )
            finally:
                done.set()

        def read_loop():
            while not done.is_set():
                try:
                    records = store.read_collection("users")
                except Exception as exc:  # pragma: no cover - surfaced below
                    errors.append(exc)
                    return
                if len(records) < 2:
                    errors.append(AssertionError(f"short read: {records}"))
                    return

        writer = threading.Thread(target=write_loop)
        readers = [threading.Thread(target=read_loop) for _ in range(4)]
        for thread in [writer, *readers]:
            thread.start()
        for thread in [writer, *readers]:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual([u.id for u in store.read_collection("users")], [1, 2, 32])

    def test_unwritable_data_dir_is_unavailable(self):
        blocker = self.data_dir / "blocker"
        blocker.write_text("")
        store = RecordStore(HierarchicalBackend(blocker), lock_timeout_seconds=0.2)
        with self.assertRaises(StorageUnavailable):
            store.write_collection("users", USERS)

    def test_unreadable_index_is_unavailable(self):
        (self.data_dir / "users").mkdir()
        (self.data_dir / "users" / "index.json").write_text('{"oops": 1}')
        with self.assertRaises(StorageUnavailable):
            self.store.read_collection("users")

    def test_model_instances_accepted(self):
        project = Project(projectId=5, freelancerId=2, title="Brand")
        self.store.write_collection("projects", [project])
        self.assertEqual(self.store.read_collection("projects")[0].projectId, 5)


class InMemoryBackendTests(unittest.TestCase):
    def test_returns_copies(self):
        store = RecordStore(InMemoryBackend())
        store.write_collection("users", USERS)
        documents = store.backend.load_documents("users")
        documents[0]["name"] = "changed"
        self.assertEqual(store.read_collection("users")[0].name, "Ada")

    def test_busy_writer_times_out(self):
        store = RecordStore(InMemoryBackend(), lock_timeout_seconds=0.05)
        with store.backend.write_lock("users", timeout=1):
            with self.assertRaises(StorageBusy):
                store.update_collection("users", lambda users: users)


if __name__ == "__main__":
    unittest.main()
