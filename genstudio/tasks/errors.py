"""Exceptions raised by the orchestrator and its adapters."""

from .models import ErrorKind


class GenerationError(RuntimeError):
    kind = ErrorKind.BACKEND


class TaskValidationError(GenerationError, ValueError):
    """Request rejected before any network activity."""

    kind = ErrorKind.VALIDATION


class BackendTransportError(GenerationError):
    """The backend call failed without a structured response."""

    kind = ErrorKind.TRANSPORT


class TaskNotFoundError(GenerationError, LookupError):
    pass


class InvalidTransitionError(GenerationError):
    """A state change that the lifecycle ordering does not permit."""
