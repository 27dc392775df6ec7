"""Tests for checkpoint storage backends."""

from __future__ import annotations

import json
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from pipeline_core.checkpoint import (
    CheckpointManager,
    CheckpointStatus,
    DuplicateIdError,
    FileCheckpointStore,
    InMemoryCheckpointStore,
    InvalidTransitionError,
    NotFoundError,
    TransitionRecord,
)
from pipeline_core.exceptions import SerializationError, ValidationError
from pipeline_core.test_utils import ManualClock


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryCheckpointStore()
    return FileCheckpointStore(tmp_path / "checkpoints")


class TestStoreContract:
    """Behaviour shared by every backend."""

    def test_add_and_get(self, store):
        manager = CheckpointManager(store=store, clock=ManualClock())
        created = manager.create("c1", "QC", "extraction", data={"n": 1})

        assert store.get("c1") == created
        assert store.exists("c1") is True
        assert store.exists("c2") is False
        assert store.get("c2") is None

    def test_add_duplicate(self, store):
        manager = CheckpointManager(store=store)
        manager.create("c1", "QC", "extraction")

        with pytest.raises(DuplicateIdError):
            manager.create("c1", "QC", "extraction")

    def test_history_of_unknown_id_is_empty(self, store):
        assert store.get_history("missing") == []

    def test_commit_unknown_raises(self, store):
        manager = CheckpointManager(store=InMemoryCheckpointStore(), clock=ManualClock())
        checkpoint = manager.create("c1", "QC", "extraction")
        record = TransitionRecord(
            from_status=CheckpointStatus.PENDING,
            to_status=CheckpointStatus.IN_PROGRESS,
            timestamp=checkpoint.updated_at,
        )

        with pytest.raises(NotFoundError):
            store.commit_transition(checkpoint, record)

    def test_get_returns_copies(self, store):
        manager = CheckpointManager(store=store)
        manager.create("c1", "QC", "extraction", data={"n": 1})

        copy = store.get("c1")
        copy.data["n"] = 99

        assert store.get("c1").data == {"n": 1}

    @pytest.mark.parametrize("step", [0, 1])
    def test_list_in_creation_order(self, store, step):
        """Order is by creation even when every timestamp is the same."""
        clock = ManualClock(step=step)
        manager = CheckpointManager(store=store, clock=clock)
        for checkpoint_id in ("zeta", "alpha", "mid"):
            manager.create(checkpoint_id, checkpoint_id, "extraction")

        assert [c.id for c in store.list_checkpoints()] == ["zeta", "alpha", "mid"]
        assert [c.id for c in manager.get_stage_checkpoints("extraction")] == ["zeta", "alpha", "mid"]

    def test_restore_replaces(self, store):
        manager = CheckpointManager(store=store, clock=ManualClock(step=1))
        manager.create("c1", "QC", "extraction")
        manager.start("c1")
        snapshot = store.get("c1")
        history = store.get_history("c1")
        manager.submit_for_review("c1")

        store.restore(snapshot, history)

        assert store.get("c1").status == CheckpointStatus.IN_PROGRESS
        assert len(store.get_history("c1")) == 1


class TestConcurrency:
    """Concurrent transitions on one id are serialized."""

    def test_only_one_concurrent_start_wins(self, store):
        manager = CheckpointManager(store=store)
        manager.create("c1", "QC", "extraction")
        barrier = threading.Barrier(8)

        def attempt() -> bool:
            barrier.wait()
            try:
                manager.start("c1")
            except InvalidTransitionError:
                return False
            return True

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: attempt(), range(8)))

        assert results.count(True) == 1
        assert len(manager.get_history("c1")) == 1

    def test_lock_registry_empties_after_unknown_ids(self, store):
        manager = CheckpointManager(store=store)

        for i in range(100):
            with pytest.raises(NotFoundError):
                manager.start(f"missing-{i}")

        assert store._locks == {}

    def test_lock_registry_empties_after_use(self, store):
        manager = CheckpointManager(store=store)
        manager.create("c1", "QC", "extraction")
        manager.start("c1")

        with store.lock("c1"):
            with store.lock("c1"):
                assert store._locks["c1"].users == 2
            assert "c1" in store._locks

        assert store._locks == {}

    def test_independent_ids_progress(self, store):
        manager = CheckpointManager(store=store)
        ids = [f"c{i}" for i in range(10)]
        for checkpoint_id in ids:
            manager.create(checkpoint_id, "QC", "extraction")

        def run(checkpoint_id: str) -> None:
            manager.start(checkpoint_id)
            manager.submit_for_review(checkpoint_id)
            manager.approve(checkpoint_id, "bot")

        with ThreadPoolExecutor(max_workers=5) as pool:
            list(pool.map(run, ids))

        assert manager.is_stage_complete("extraction") is True
        assert all(len(manager.get_history(i)) == 3 for i in ids)


class TestFileCheckpointStore:
    """Tests specific to the JSON file backend."""

    def test_state_survives_new_manager(self, tmp_path):
        """A second manager over the same directory sees earlier work."""
        directory = tmp_path / "checkpoints"
        first = CheckpointManager(store=FileCheckpointStore(directory), clock=ManualClock(step=1))
        first.create("c1", "QC", "extraction")
        first.start("c1")

        second = CheckpointManager(store=FileCheckpointStore(directory), clock=ManualClock(step=1))
        second.submit_for_review("c1")

        assert first.require("c1").status == CheckpointStatus.AWAITING_REVIEW
        assert [r.to_status for r in first.get_history("c1")] == [
            CheckpointStatus.IN_PROGRESS,
            CheckpointStatus.AWAITING_REVIEW,
        ]

    def test_file_layout(self, tmp_path):
        store = FileCheckpointStore(tmp_path)
        manager = CheckpointManager(store=store, clock=ManualClock())
        manager.create("c1", "QC", "extraction")
        manager.skip("c1", "n/a")

        document = json.loads((tmp_path / "c1.json").read_text())

        assert document["checkpoint"]["status"] == "skipped"
        assert document["history"][0]["from"] == "pending"
        assert document["history"][0]["to"] == "skipped"
        assert document["history"][0]["reason"] == "n/a"
        assert document["sequence"] == 1

    def test_creation_order_across_store_instances(self, tmp_path):
        """A new store over the same directory keeps numbering after existing files."""
        CheckpointManager(store=FileCheckpointStore(tmp_path), clock=ManualClock()).create("zeta", "Z", "extraction")
        later = CheckpointManager(store=FileCheckpointStore(tmp_path), clock=ManualClock())
        later.create("alpha", "A", "extraction")
        later.start("zeta")

        assert [c.id for c in later.get_stage_checkpoints("extraction")] == ["zeta", "alpha"]

    def test_restore_keeps_position(self, tmp_path):
        store = FileCheckpointStore(tmp_path)
        manager = CheckpointManager(store=store, clock=ManualClock())
        for checkpoint_id in ("b", "a"):
            manager.create(checkpoint_id, checkpoint_id, "extraction")

        store.restore(store.get("b"), [])

        assert [c.id for c in store.list_checkpoints()] == ["b", "a"]

    def test_no_temp_files_left(self, tmp_path):
        manager = CheckpointManager(store=FileCheckpointStore(tmp_path))
        manager.create("c1", "QC", "extraction")
        manager.start("c1")

        assert sorted(p.name for p in tmp_path.iterdir()) == ["c1.json"]

    def test_missing_directory_lists_nothing(self, tmp_path):
        store = FileCheckpointStore(tmp_path / "does-not-exist")
        assert store.list_checkpoints() == []
        assert store.get("c1") is None

    @pytest.mark.parametrize("bad_id", ["../escape", "a/b", "", ".hidden", "with space", "c1\n", "c1\nc2"])
    def test_unsafe_ids_rejected(self, tmp_path, bad_id):
        manager = CheckpointManager(store=FileCheckpointStore(tmp_path))

        with pytest.raises(ValidationError):
            manager.create(bad_id, "QC", "extraction")

    def test_id_characters_allowed(self, tmp_path):
        manager = CheckpointManager(store=FileCheckpointStore(tmp_path))
        manager.create("extraction.qc-1_v2@batch:3", "QC", "extraction")
        assert manager.get("extraction.qc-1_v2@batch:3") is not None

    def test_corrupt_file(self, tmp_path):
        (tmp_path / "c1.json").write_text("{not json")
        store = FileCheckpointStore(tmp_path)

        with pytest.raises(SerializationError, match="Corrupt checkpoint file"):
            store.get("c1")

    def test_corrupt_file_is_not_retryable(self, tmp_path):
        from pipeline_core.retry import is_retryable

        (tmp_path / "c1.json").write_text('{"checkpoint": {"id": "c1"}}')
        store = FileCheckpointStore(tmp_path)

        with pytest.raises(SerializationError) as exc_info:
            store.list_checkpoints()

        assert is_retryable(exc_info.value) is False
