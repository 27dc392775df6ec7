"""Checkpoint manager: the quality gate external workflow stages call into.

Stage logic creates a checkpoint when it produces reviewable work, moves it
through review with the named wrappers, and asks ``is_stage_complete`` before
advancing the pipeline. Every successful transition appends exactly one
TransitionRecord; rejected attempts leave status and history untouched.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..clock import Clock, utc_now
from ..exceptions import SerializationError, ValidationError
from .errors import NotFoundError
from .models import Checkpoint, CheckpointStatus, TransitionRecord
from .store import CheckpointStore, InMemoryCheckpointStore
from .transitions import ACCEPTED_STATES, validate_transition

logger = logging.getLogger(__name__)

SERIALIZATION_VERSION = 1


class CheckpointManager:
    """State machine over a checkpoint store.

    Args:
        store: Where checkpoints live. Defaults to a fresh in-memory store.
        clock: Source of timestamps. Defaults to UTC wall-clock time.
    """

    def __init__(self, store: CheckpointStore | None = None, clock: Clock | None = None):
        self.store = store if store is not None else InMemoryCheckpointStore()
        self.clock = clock or utc_now

    def create(
        self,
        id: str,
        name: str,
        stage: str,
        data: dict[str, Any] | None = None,
    ) -> Checkpoint:
        """Create a checkpoint in ``pending`` status.

        Raises:
            DuplicateIdError: If a checkpoint with ``id`` already exists.
        """
        now = self.clock()
        checkpoint = Checkpoint(
            id=id,
            name=name,
            stage=stage,
            status=CheckpointStatus.PENDING,
            data=data,
            created_at=now,
            updated_at=now,
        )
        self.store.add(checkpoint)
        logger.info(f"Created checkpoint {id} ({name}) in stage {stage}")
        return checkpoint.model_copy(deep=True)

    def get(self, id: str) -> Checkpoint | None:
        return self.store.get(id)

    def require(self, id: str) -> Checkpoint:
        """Like get(), but raises NotFoundError for unknown ids."""
        checkpoint = self.store.get(id)
        if checkpoint is None:
            raise NotFoundError(id)
        return checkpoint

    def transition(
        self,
        id: str,
        to: CheckpointStatus | str,
        *,
        actor: str | None = None,
        reason: str | None = None,
        feedback: str | None = None,
    ) -> Checkpoint:
        """Move a checkpoint to a new status.

        Args:
            id: Checkpoint id.
            to: Target status.
            actor: Who made the change; also stored as the reviewer.
            reason: Why, recorded in history only.
            feedback: Stored on the checkpoint.

        Returns:
            The updated checkpoint.

        Raises:
            NotFoundError: If ``id`` is unknown.
            InvalidTransitionError: If the edge is not allowed.
            ValidationError: If ``to`` is not a checkpoint status.
        """
        try:
            target = CheckpointStatus(to)
        except ValueError:
            valid = ", ".join(s.value for s in CheckpointStatus)
            raise ValidationError(
                f"Unknown checkpoint status: {to!r}. Valid: {valid}",
                {"checkpoint_id": id, "status": str(to)},
            ) from None

        with self.store.lock(id):
            checkpoint = self.require(id)
            validate_transition(id, checkpoint.status, target)

            now = self.clock()
            # updated_at never goes backwards, even if the clock does
            if now < checkpoint.updated_at:
                now = checkpoint.updated_at

            record = TransitionRecord(
                from_status=checkpoint.status,
                to_status=target,
                timestamp=now,
                actor=actor,
                reason=reason,
            )

            checkpoint.status = target
            checkpoint.updated_at = now
            if actor:
                checkpoint.reviewer = actor
            if feedback:
                checkpoint.feedback = feedback

            self.store.commit_transition(checkpoint, record)

        logger.info(
            f"Checkpoint {id}: {record.from_status.value} -> {target.value}"
            + (f" by {actor}" if actor else "")
        )
        return checkpoint

    def start(self, id: str) -> Checkpoint:
        """pending/rejected -> in_progress"""
        return self.transition(id, CheckpointStatus.IN_PROGRESS)

    def submit_for_review(self, id: str) -> Checkpoint:
        """in_progress -> awaiting_review"""
        return self.transition(id, CheckpointStatus.AWAITING_REVIEW)

    def approve(self, id: str, reviewer: str, feedback: str | None = None) -> Checkpoint:
        """awaiting_review -> approved"""
        return self.transition(id, CheckpointStatus.APPROVED, actor=reviewer, feedback=feedback)

    def reject(self, id: str, reviewer: str, feedback: str) -> Checkpoint:
        """in_progress/awaiting_review -> rejected, with the feedback as reason."""
        return self.transition(
            id,
            CheckpointStatus.REJECTED,
            actor=reviewer,
            reason=feedback,
            feedback=feedback,
        )

    def skip(self, id: str, reason: str) -> Checkpoint:
        """pending/in_progress -> skipped"""
        return self.transition(id, CheckpointStatus.SKIPPED, reason=reason)

    def restart(self, id: str, actor: str | None = None) -> Checkpoint:
        """rejected -> in_progress, to rework after review feedback."""
        return self.transition(id, CheckpointStatus.IN_PROGRESS, actor=actor, reason="restarted after rejection")

    def reset(self, id: str, actor: str | None = None) -> Checkpoint:
        """rejected -> pending, to put the work back in the queue."""
        return self.transition(id, CheckpointStatus.PENDING, actor=actor, reason="reset after rejection")

    def get_history(self, id: str) -> list[TransitionRecord]:
        """Return transition records oldest first.

        Raises:
            NotFoundError: If ``id`` is unknown.
        """
        self.require(id)
        return self.store.get_history(id)

    def get_stage_checkpoints(self, stage: str) -> list[Checkpoint]:
        """All checkpoints of ``stage`` in creation order."""
        return [c for c in self.store.list_checkpoints() if c.stage == stage]

    def is_stage_complete(self, stage: str) -> bool:
        """True iff the stage has checkpoints and all are approved or skipped."""
        checkpoints = self.get_stage_checkpoints(stage)
        if not checkpoints:
            return False
        return all(c.status in ACCEPTED_STATES for c in checkpoints)

    def stage_summary(self, stage: str) -> dict[CheckpointStatus, int]:
        """Count checkpoints of ``stage`` per status."""
        counts = {status: 0 for status in CheckpointStatus}
        for checkpoint in self.get_stage_checkpoints(stage):
            counts[checkpoint.status] += 1
        return counts

    def list_stages(self) -> list[str]:
        """Stage names in order of first appearance."""
        return list(dict.fromkeys(c.stage for c in self.store.list_checkpoints()))

    # =========================================================================
    # Persistence
    # =========================================================================

    def to_dict(self) -> dict[str, Any]:
        """Convert all checkpoints and histories to a JSON-ready dictionary."""
        checkpoints = self.store.list_checkpoints()
        return {
            "version": SERIALIZATION_VERSION,
            "checkpoints": [c.model_dump(mode="json") for c in checkpoints],
            "history": {
                c.id: [r.model_dump(mode="json", by_alias=True) for r in self.store.get_history(c.id)]
                for c in checkpoints
            },
        }

    def serialize(self, indent: int | None = None) -> str:
        """Serialize all state to a JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def deserialize(
        cls,
        data: str | dict[str, Any],
        store: CheckpointStore | None = None,
        clock: Clock | None = None,
    ) -> CheckpointManager:
        """Rebuild a manager from :meth:`serialize` or :meth:`to_dict` output.

        Args:
            data: JSON string or already decoded dictionary.
            store: Store to load into. Defaults to a fresh in-memory store.
            clock: Clock for the new manager.

        Raises:
            SerializationError: If the document is malformed.
        """
        try:
            parsed = json.loads(data) if isinstance(data, str) else data
            version = parsed.get("version", SERIALIZATION_VERSION)
            if version != SERIALIZATION_VERSION:
                raise SerializationError(f"Unsupported checkpoint state version: {version}")

            histories = parsed.get("history", {})
            loaded = [
                (
                    Checkpoint.model_validate(raw),
                    [TransitionRecord.model_validate(r) for r in histories.get(raw["id"], [])],
                )
                for raw in parsed["checkpoints"]
            ]
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError, PydanticValidationError) as e:
            raise SerializationError(f"Invalid checkpoint state: {e}") from e

        manager = cls(store=store, clock=clock)
        for checkpoint, history in loaded:
            manager.store.restore(checkpoint, history)

        logger.debug(f"Restored {len(loaded)} checkpoint(s)")
        return manager
