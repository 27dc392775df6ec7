"""Checkpoint errors.

These signal caller defects rather than transient conditions and are never
retried.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from ..exceptions import PipelineError

if TYPE_CHECKING:
    from .models import CheckpointStatus


class CheckpointError(PipelineError):
    """Base class for checkpoint failures."""

    permanent = True

    def __init__(self, message: str, code: str, checkpoint_id: str):
        super().__init__(message, code, {"checkpoint_id": checkpoint_id})
        self.checkpoint_id = checkpoint_id


class NotFoundError(CheckpointError):
    """The referenced checkpoint id is not registered."""

    def __init__(self, checkpoint_id: str):
        super().__init__(f"Checkpoint not found: {checkpoint_id}", "CHECKPOINT_NOT_FOUND", checkpoint_id)


class DuplicateIdError(CheckpointError):
    """A checkpoint with this id already exists."""

    def __init__(self, checkpoint_id: str):
        super().__init__(f"Checkpoint already exists: {checkpoint_id}", "DUPLICATE_CHECKPOINT", checkpoint_id)


class InvalidTransitionError(CheckpointError):
    """The requested status change is not in the transition table."""

    def __init__(
        self,
        checkpoint_id: str,
        from_status: CheckpointStatus,
        to_status: CheckpointStatus,
        allowed: Iterable[CheckpointStatus] = (),
    ):
        self.from_status = from_status
        self.to_status = to_status
        self.allowed = sorted(allowed, key=lambda s: s.value)
        valid = ", ".join(s.value for s in self.allowed) or "none"
        super().__init__(
            f"Invalid transition for {checkpoint_id}: "
            f"{from_status.value} -> {to_status.value}. Valid: {valid}",
            "INVALID_TRANSITION",
            checkpoint_id,
        )
        self.details.update(
            {
                "from": from_status.value,
                "to": to_status.value,
                "allowed": [s.value for s in self.allowed],
            }
        )
