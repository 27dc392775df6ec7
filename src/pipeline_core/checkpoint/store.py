"""Checkpoint storage backends.

The manager holds no state of its own; it reads and writes through a
CheckpointStore. Two backends are provided:
- InMemoryCheckpointStore: process-local dictionaries
- FileCheckpointStore: one JSON document per checkpoint on disk

Both give per-id exclusive access through ``lock(checkpoint_id)`` so that
concurrent transitions on the same checkpoint are serialized. No ordering is
guaranteed across different ids.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import SerializationError, ValidationError
from .errors import DuplicateIdError, NotFoundError
from .models import Checkpoint, TransitionRecord

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"[A-Za-z0-9][A-Za-z0-9._@:-]*")


class _IdLock:
    """An RLock plus the number of callers currently using it."""

    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class CheckpointStore(ABC):
    """Key-value storage for checkpoints and their transition history."""

    def __init__(self) -> None:
        self._locks: dict[str, _IdLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def lock(self, checkpoint_id: str) -> Iterator[None]:
        """Hold exclusive access to one checkpoint id.

        The per-id lock only lives while someone holds or waits for it.
        """
        with self._locks_guard:
            entry = self._locks.get(checkpoint_id)
            if entry is None:
                entry = self._locks[checkpoint_id] = _IdLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[checkpoint_id]

    @abstractmethod
    def add(self, checkpoint: Checkpoint) -> None:
        """Insert a new checkpoint with empty history.

        Raises:
            DuplicateIdError: If the id is already stored.
        """
        ...

    @abstractmethod
    def get(self, checkpoint_id: str) -> Checkpoint | None:
        """Return a copy of the checkpoint, or None."""
        ...

    @abstractmethod
    def get_history(self, checkpoint_id: str) -> list[TransitionRecord]:
        """Return the transition history, oldest first (empty if unknown)."""
        ...

    @abstractmethod
    def commit_transition(self, checkpoint: Checkpoint, record: TransitionRecord) -> None:
        """Append ``record`` and replace the stored checkpoint as one unit.

        Raises:
            NotFoundError: If the checkpoint was never added.
        """
        ...

    @abstractmethod
    def list_checkpoints(self) -> list[Checkpoint]:
        """Return copies of all checkpoints in creation order."""
        ...

    @abstractmethod
    def restore(self, checkpoint: Checkpoint, history: list[TransitionRecord]) -> None:
        """Store a checkpoint with existing history, replacing any previous entry."""
        ...

    def exists(self, checkpoint_id: str) -> bool:
        return self.get(checkpoint_id) is not None


class InMemoryCheckpointStore(CheckpointStore):
    """Dictionary-backed store. State lives as long as the instance."""

    def __init__(self) -> None:
        super().__init__()
        self._checkpoints: dict[str, Checkpoint] = {}
        self._history: dict[str, list[TransitionRecord]] = {}
        self._data_lock = threading.Lock()

    def add(self, checkpoint: Checkpoint) -> None:
        with self._data_lock:
            if checkpoint.id in self._checkpoints:
                raise DuplicateIdError(checkpoint.id)
            self._checkpoints[checkpoint.id] = checkpoint.model_copy(deep=True)
            self._history[checkpoint.id] = []

    def get(self, checkpoint_id: str) -> Checkpoint | None:
        checkpoint = self._checkpoints.get(checkpoint_id)
        return checkpoint.model_copy(deep=True) if checkpoint else None

    def get_history(self, checkpoint_id: str) -> list[TransitionRecord]:
        return list(self._history.get(checkpoint_id, []))

    def commit_transition(self, checkpoint: Checkpoint, record: TransitionRecord) -> None:
        with self._data_lock:
            if checkpoint.id not in self._checkpoints:
                raise NotFoundError(checkpoint.id)
            self._history[checkpoint.id].append(record)
            self._checkpoints[checkpoint.id] = checkpoint.model_copy(deep=True)

    def list_checkpoints(self) -> list[Checkpoint]:
        with self._data_lock:
            return [c.model_copy(deep=True) for c in self._checkpoints.values()]

    def restore(self, checkpoint: Checkpoint, history: list[TransitionRecord]) -> None:
        with self._data_lock:
            self._checkpoints[checkpoint.id] = checkpoint.model_copy(deep=True)
            self._history[checkpoint.id] = list(history)


class FileCheckpointStore(CheckpointStore):
    """Store each checkpoint and its history as ``<directory>/<id>.json``.

    Writes go to a temporary file that is then renamed over the target, so a
    reader never sees a half-written document. Each document also carries a
    ``sequence`` number assigned on first write; listing sorts by it, so
    creation order survives identical timestamps. Locking is process-local:
    run a single writer process per directory.
    """

    def __init__(self, directory: Path | str):
        super().__init__()
        self.directory = Path(directory)
        self._add_lock = threading.Lock()

    def _path(self, checkpoint_id: str) -> Path:
        if not _SAFE_ID.fullmatch(checkpoint_id):
            raise ValidationError(
                f"Invalid checkpoint id for file storage: {checkpoint_id!r}",
                {"checkpoint_id": checkpoint_id},
            )
        return self.directory / f"{checkpoint_id}.json"

    def _read(self, path: Path) -> tuple[Checkpoint, list[TransitionRecord], int]:
        try:
            document = json.loads(path.read_text())
            checkpoint = Checkpoint.model_validate(document["checkpoint"])
            history = [TransitionRecord.model_validate(r) for r in document.get("history", [])]
            sequence = int(document.get("sequence", 0))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, PydanticValidationError) as e:
            raise SerializationError(f"Corrupt checkpoint file {path}: {e}", {"path": str(path)}) from e
        return checkpoint, history, sequence

    def _next_sequence(self) -> int:
        if not self.directory.exists():
            return 1
        return max((self._read(path)[2] for path in self.directory.glob("*.json")), default=0) + 1

    def _write(self, checkpoint: Checkpoint, history: list[TransitionRecord], sequence: int) -> None:
        document: dict[str, Any] = {
            "sequence": sequence,
            "checkpoint": checkpoint.model_dump(mode="json"),
            "history": [r.model_dump(mode="json", by_alias=True) for r in history],
        }
        path = self._path(checkpoint.id)
        self.directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{checkpoint.id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(document, f, indent=2)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.debug(f"Wrote checkpoint {checkpoint.id} (sequence {sequence}) to {path}")

    def add(self, checkpoint: Checkpoint) -> None:
        with self._add_lock:
            if self._path(checkpoint.id).exists():
                raise DuplicateIdError(checkpoint.id)
            self._write(checkpoint, [], self._next_sequence())

    def get(self, checkpoint_id: str) -> Checkpoint | None:
        path = self._path(checkpoint_id)
        if not path.exists():
            return None
        return self._read(path)[0]

    def get_history(self, checkpoint_id: str) -> list[TransitionRecord]:
        path = self._path(checkpoint_id)
        if not path.exists():
            return []
        return self._read(path)[1]

    def commit_transition(self, checkpoint: Checkpoint, record: TransitionRecord) -> None:
        path = self._path(checkpoint.id)
        if not path.exists():
            raise NotFoundError(checkpoint.id)
        _, history, sequence = self._read(path)
        history.append(record)
        self._write(checkpoint, history, sequence)

    def list_checkpoints(self) -> list[Checkpoint]:
        if not self.directory.exists():
            return []

        entries = [self._read(path) for path in self.directory.glob("*.json")]
        entries.sort(key=lambda e: (e[2], e[0].created_at, e[0].id))
        return [checkpoint for checkpoint, _, _ in entries]

    def restore(self, checkpoint: Checkpoint, history: list[TransitionRecord]) -> None:
        with self._add_lock:
            path = self._path(checkpoint.id)
            sequence = self._read(path)[2] if path.exists() else self._next_sequence()
            self._write(checkpoint, list(history), sequence)
