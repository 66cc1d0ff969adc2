"""Task definitions, retry policy and progress presentation."""

from .errors import BackendTransportError, GenerationError, TaskValidationError
from .models import (
    BackendResponse,
    GenerationConfig,
    GenerationRequest,
    GenerationTask,
    Modality,
    StatusEvent,
    TaskStatus,
)
from .policy import Retry, RetryPolicy, Stop
from .registry import ModalityProfile, ModalityRegistry

__all__ = [
    "BackendResponse",
    "BackendTransportError",
    "GenerationConfig",
    "GenerationError",
    "GenerationRequest",
    "GenerationTask",
    "Modality",
    "ModalityProfile",
    "ModalityRegistry",
    "Retry",
    "RetryPolicy",
    "StatusEvent",
    "Stop",
    "TaskStatus",
    "TaskValidationError",
]
