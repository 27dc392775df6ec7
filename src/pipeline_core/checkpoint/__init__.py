"""Checkpoint / quality-gate state machine.

This module provides:
- Checkpoint and TransitionRecord models
- The allowed transition table and its validator
- Pluggable storage (in-memory, JSON files)
- CheckpointManager, the facade used by workflow stages
"""

from .errors import CheckpointError, DuplicateIdError, InvalidTransitionError, NotFoundError
from .manager import CheckpointManager
from .models import Checkpoint, CheckpointStatus, TransitionRecord
from .store import CheckpointStore, FileCheckpointStore, InMemoryCheckpointStore
from .transitions import (
    ACCEPTED_STATES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    allowed_targets,
    can_transition,
    validate_transition,
)

__all__ = [
    # Models
    "Checkpoint",
    "CheckpointStatus",
    "TransitionRecord",
    # Transitions
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "ACCEPTED_STATES",
    "allowed_targets",
    "can_transition",
    "validate_transition",
    # Errors
    "CheckpointError",
    "NotFoundError",
    "DuplicateIdError",
    "InvalidTransitionError",
    # Storage
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "FileCheckpointStore",
    # Manager
    "CheckpointManager",
]
