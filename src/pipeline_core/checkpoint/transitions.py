"""Allowed checkpoint status transitions.

    pending          -> in_progress, skipped
    in_progress      -> awaiting_review, rejected, skipped
    awaiting_review  -> approved, rejected
    approved         -> (terminal)
    rejected         -> in_progress, pending
    skipped          -> (terminal)
"""

from __future__ import annotations

from .errors import InvalidTransitionError
from .models import CheckpointStatus

VALID_TRANSITIONS: dict[CheckpointStatus, frozenset[CheckpointStatus]] = {
    CheckpointStatus.PENDING: frozenset({CheckpointStatus.IN_PROGRESS, CheckpointStatus.SKIPPED}),
    CheckpointStatus.IN_PROGRESS: frozenset(
        {
            CheckpointStatus.AWAITING_REVIEW,
            CheckpointStatus.REJECTED,
            CheckpointStatus.SKIPPED,
        }
    ),
    CheckpointStatus.AWAITING_REVIEW: frozenset({CheckpointStatus.APPROVED, CheckpointStatus.REJECTED}),
    CheckpointStatus.APPROVED: frozenset(),
    CheckpointStatus.REJECTED: frozenset({CheckpointStatus.IN_PROGRESS, CheckpointStatus.PENDING}),
    CheckpointStatus.SKIPPED: frozenset(),
}

TERMINAL_STATES = frozenset(status for status, targets in VALID_TRANSITIONS.items() if not targets)
ACCEPTED_STATES = frozenset({CheckpointStatus.APPROVED, CheckpointStatus.SKIPPED})


def allowed_targets(status: CheckpointStatus) -> frozenset[CheckpointStatus]:
    return VALID_TRANSITIONS[CheckpointStatus(status)]


def can_transition(from_status: CheckpointStatus, to_status: CheckpointStatus) -> bool:
    return CheckpointStatus(to_status) in allowed_targets(from_status)


def validate_transition(
    checkpoint_id: str,
    from_status: CheckpointStatus,
    to_status: CheckpointStatus,
) -> None:
    """Raise InvalidTransitionError unless ``from_status -> to_status`` is allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(
            checkpoint_id,
            CheckpointStatus(from_status),
            CheckpointStatus(to_status),
            allowed_targets(from_status),
        )
