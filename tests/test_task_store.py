"""Tests for the SQLite task store."""

from datetime import timedelta

import pytest

from tasksync.errors import ValidationError
from tasksync.models import OperationKind, ReconciledRecord, SyncState


class TestSchema:
    """Tests for database schema initialization."""

    def test_connect_creates_tables(self, db):
        tables = db._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()
        table_names = [t[0] for t in tables]

        assert "tasks" in table_names
        assert "sync_queue" in table_names

    def test_flags_stored_as_integers(self, store, db):
        """Test booleans become 0/1 only in storage."""
        task = store.create_task("A")
        store.update_task(task.id, completed=True)

        row = db._conn.execute(
            "SELECT completed, is_deleted FROM tasks WHERE id = ?", (task.id,)
        ).fetchone()
        assert (row["completed"], row["is_deleted"]) == (1, 0)

        loaded = store.get_task(task.id)
        assert loaded.completed is True
        assert loaded.is_deleted is False


class TestLocalMutations:
    """Tests for create/update/delete and their queue entries."""

    def test_create_enqueues_snapshot(self, store, queue):
        task = store.create_task("A", "first")

        assert task.sync_status is SyncState.PENDING
        assert task.completed is False
        items = queue.drain()
        assert len(items) == 1
        assert items[0].task_id == task.id
        assert items[0].operation is OperationKind.CREATE
        assert items[0].payload["title"] == "A"
        assert items[0].payload["description"] == "first"

    @pytest.mark.parametrize("title", [None, "", "   ", 42])
    def test_create_rejects_bad_title(self, store, queue, title):
        with pytest.raises(ValidationError):
            store.create_task(title)

        assert queue.size() == 0
        assert store.list_tasks() == []

    def test_create_rejects_bad_description(self, store, queue):
        with pytest.raises(ValidationError):
            store.create_task("A", description=["x"])
        assert queue.size() == 0

    def test_update_changes_only_given_fields(self, store):
        task = store.create_task("A", "desc")

        updated = store.update_task(task.id, completed=True)

        assert updated.title == "A"
        assert updated.description == "desc"
        assert updated.completed is True
        assert updated.updated_at > task.updated_at

    def test_update_can_clear_description(self, store):
        task = store.create_task("A", "desc")

        updated = store.update_task(task.id, description=None)

        assert updated.description is None

    def test_update_resets_sync_state(self, store):
        task = store.create_task("A")
        store.set_sync_state(task.id, SyncState.FAILED)

        updated = store.update_task(task.id, title="B")

        assert updated.sync_status is SyncState.PENDING
        assert store.get(task.id).sync_status is SyncState.PENDING

    def test_update_enqueues_in_order(self, store, queue):
        task = store.create_task("A")
        store.update_task(task.id, title="B")
        store.update_task(task.id, title="C")

        items = queue.items_for_task(task.id)

        assert [i.operation for i in items] == [
            OperationKind.CREATE,
            OperationKind.UPDATE,
            OperationKind.UPDATE,
        ]
        assert [i.payload["title"] for i in items] == ["A", "B", "C"]

    @pytest.mark.parametrize(
        "fields",
        [{"title": 5}, {"title": ""}, {"completed": "yes"}, {"completed": 1}],
    )
    def test_update_validation(self, store, queue, fields):
        task = store.create_task("A")

        with pytest.raises(ValidationError):
            store.update_task(task.id, **fields)

        assert queue.size() == 1

    def test_update_missing_task(self, store, queue):
        assert store.update_task("missing", title="B") is None
        assert queue.size() == 0

    def test_delete_is_soft(self, store, queue):
        task = store.create_task("A")

        assert store.delete_task(task.id) is True

        assert store.get_task(task.id) is None
        assert store.list_tasks() == []
        bookkeeping = store.get(task.id)
        assert bookkeeping.is_deleted is True
        assert bookkeeping.sync_status is SyncState.PENDING

        last = queue.items_for_task(task.id)[-1]
        assert last.operation is OperationKind.DELETE
        assert last.payload["is_deleted"] is True

    def test_delete_twice(self, store):
        task = store.create_task("A")
        store.delete_task(task.id)

        assert store.delete_task(task.id) is False
        assert store.update_task(task.id, title="B") is None


class TestQueries:
    """Tests for read paths."""

    def test_list_tasks_with_deleted(self, store):
        a = store.create_task("A")
        b = store.create_task("B")
        store.delete_task(a.id)

        assert [t.id for t in store.list_tasks()] == [b.id]
        assert {t.id for t in store.list_tasks(exclude_deleted=False)} == {a.id, b.id}

    def test_list_by_sync_state(self, store):
        a = store.create_task("A")
        b = store.create_task("B")
        c = store.create_task("C")
        store.set_sync_state(b.id, SyncState.ERROR)
        store.set_sync_state(c.id, SyncState.SYNCED)

        needing = store.list_by_sync_state([SyncState.PENDING, SyncState.ERROR])

        assert [t.id for t in needing] == [a.id, b.id]
        assert store.list_by_sync_state([]) == []

    def test_count_by_sync_state(self, store):
        store.create_task("A")
        b = store.create_task("B")
        store.set_sync_state(b.id, SyncState.FAILED)

        counts = store.count_by_sync_state()

        assert counts == {"pending": 1, "synced": 0, "error": 0, "failed": 1}

    def test_last_synced_at(self, store, queue, clock):
        assert store.last_synced_at() is None

        a = store.create_task("A")
        b = store.create_task("B")
        for item in queue.drain():
            queue.remove(item.id)
        first = clock()
        second = clock()
        store.mark_synced(a.id, second)
        store.mark_synced(b.id, first)

        assert store.last_synced_at() == second


class TestSyncBookkeeping:
    """Tests for guarded sync writes."""

    def test_mark_synced_when_queue_empty(self, store, queue, clock):
        task = store.create_task("A")
        queue.remove(queue.drain()[0].id)

        assert store.mark_synced(task.id, clock(), server_id="srv-1") is True

        loaded = store.get_task(task.id)
        assert loaded.sync_status is SyncState.SYNCED
        assert loaded.server_id == "srv-1"
        assert loaded.last_synced_at is not None

    def test_mark_synced_keeps_pending_when_items_remain(self, store, queue, clock):
        """Test a re-mutated task is not downgraded by an older confirmation."""
        task = store.create_task("A")
        store.update_task(task.id, title="B")
        queue.remove(queue.drain()[0].id)

        assert store.mark_synced(task.id, clock(), server_id="srv-1") is False

        loaded = store.get_task(task.id)
        assert loaded.sync_status is SyncState.PENDING
        assert loaded.server_id == "srv-1"

    def test_mark_synced_keeps_existing_server_id(self, store, queue, clock):
        task = store.create_task("A")
        queue.remove(queue.drain()[0].id)
        store.mark_synced(task.id, clock(), server_id="srv-1")

        store.mark_synced(task.id, clock(), server_id=None)

        assert store.get_task(task.id).server_id == "srv-1"

    def _reconciled(self, task_id, updated_at, **fields):
        values = {
            "title": "Remote",
            "description": "from authority",
            "completed": True,
            "is_deleted": False,
        }
        values.update(fields)
        return ReconciledRecord(
            task_id=task_id,
            winner="authority",
            updated_at=updated_at,
            server_id="srv-9",
            **values,
        )

    def test_apply_outcome_overwrites_older_record(self, store):
        task = store.create_task("A")
        later = task.updated_at + timedelta(minutes=5)

        assert store.apply_outcome(task.id, self._reconciled(task.id, later)) is True

        loaded = store.get_task(task.id)
        assert loaded.title == "Remote"
        assert loaded.description == "from authority"
        assert loaded.completed is True
        assert loaded.updated_at == later
        assert loaded.server_id == "srv-9"

    def test_apply_outcome_keeps_newer_local_edit(self, store):
        task = store.create_task("A")
        edited = store.update_task(task.id, title="Local edit")
        stale = edited.updated_at - timedelta(microseconds=1)

        assert store.apply_outcome(task.id, self._reconciled(task.id, stale)) is False

        loaded = store.get_task(task.id)
        assert loaded.title == "Local edit"
        assert loaded.server_id == "srv-9"

    def test_apply_outcome_can_delete(self, store):
        task = store.create_task("A")
        later = task.updated_at + timedelta(seconds=1)

        store.apply_outcome(task.id, self._reconciled(task.id, later, is_deleted=True))

        assert store.get_task(task.id) is None
        assert store.get(task.id).is_deleted is True

    def test_apply_outcome_missing_task(self, store, clock):
        assert store.apply_outcome("missing", self._reconciled("missing", clock())) is False
