"""pipeline-core - reliability layer for research pipeline stages.

Quality-gate checkpoints and resilient external calls shared by every
pipeline stage.
"""

__version__ = "0.1.0"

from .checkpoint import (
    Checkpoint,
    CheckpointManager,
    CheckpointStatus,
    DuplicateIdError,
    FileCheckpointStore,
    InMemoryCheckpointStore,
    InvalidTransitionError,
    NotFoundError,
    TransitionRecord,
)
from .exceptions import PipelineError
from .retry import ErrorKind, RetryContext, calculate_backoff, classify, is_retryable, with_retry, with_retry_async

__all__ = [
    "__version__",
    "Checkpoint",
    "CheckpointManager",
    "CheckpointStatus",
    "TransitionRecord",
    "InMemoryCheckpointStore",
    "FileCheckpointStore",
    "DuplicateIdError",
    "InvalidTransitionError",
    "NotFoundError",
    "PipelineError",
    "ErrorKind",
    "RetryContext",
    "calculate_backoff",
    "classify",
    "is_retryable",
    "with_retry",
    "with_retry_async",
]
