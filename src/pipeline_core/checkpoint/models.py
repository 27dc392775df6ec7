"""Data models for checkpoints and their transition history."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CheckpointStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    AWAITING_REVIEW = "awaiting_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class Checkpoint(BaseModel):
    """A reviewable unit of pipeline progress within a stage."""

    id: str
    name: str
    stage: str
    status: CheckpointStatus = CheckpointStatus.PENDING
    data: dict[str, Any] | None = None
    reviewer: str | None = None
    feedback: str | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_accepted(self) -> bool:
        """Approved or skipped; counts towards stage completion and is terminal."""
        return self.status in (CheckpointStatus.APPROVED, CheckpointStatus.SKIPPED)


class TransitionRecord(BaseModel):
    """One validated status change, as kept in the audit history.

    Serialized with ``from``/``to`` keys; both the aliases and the field
    names are accepted when loading.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    from_status: CheckpointStatus = Field(alias="from")
    to_status: CheckpointStatus = Field(alias="to")
    timestamp: datetime
    actor: str | None = None
    reason: str | None = None
