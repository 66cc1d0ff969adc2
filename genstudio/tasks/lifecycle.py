"""Task lifecycle manager.

Drives every state transition of a generation task, owns the task's single
pending timer and exposes cancellation. Everything runs on one asyncio loop;
a task only ever waits on its adapter call or on its retry timer.
"""

import asyncio
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, Protocol

import structlog
from pydantic import ValidationError

from ..adapters.base import BaseAdapter
from .errors import (
    BackendTransportError,
    InvalidTransitionError,
    TaskNotFoundError,
    TaskValidationError,
)
from .models import (
    STATUS_ORDER,
    BackendResponse,
    ErrorKind,
    GenerationConfig,
    GenerationRequest,
    GenerationTask,
    Modality,
    StatusEvent,
    TaskError,
    TaskStatus,
)
from .policy import RetryPolicy, Stop
from .progress import present
from .registry import ModalityProfile, ModalityRegistry
from .registry import registry as default_registry

logger = structlog.get_logger("lifecycle")

EventListener = Callable[[StatusEvent], None]

RETRIES_EXHAUSTED_MESSAGE = "Model took too long to load."

# Finished or cancelled handles kept for regenerate by id
RECENT_LIMIT = 128


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Anything that can run a callback later; an asyncio loop qualifies."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


def check_transition(current: TaskStatus, new: TaskStatus) -> None:
    """Raise if moving from current to new breaks the lifecycle ordering."""
    if current.is_terminal:
        raise InvalidTransitionError(f"{current.value} is terminal")
    if new == TaskStatus.ERROR:
        if current == TaskStatus.IDLE:
            raise InvalidTransitionError("idle task cannot fail")
        return
    if STATUS_ORDER.index(new) < STATUS_ORDER.index(current):
        raise InvalidTransitionError(f"{current.value} -> {new.value}")


class TaskHandle:
    """Caller-visible reference used to follow or cancel a task."""

    def __init__(
        self,
        manager: "TaskLifecycleManager",
        task: GenerationTask,
        profile: ModalityProfile,
        config: GenerationConfig | None,
        listener: EventListener | None = None,
    ):
        self.task = task
        self.profile = profile
        self.config = config
        self.policy = RetryPolicy.for_profile(profile)
        self._manager = manager
        self._listeners: list[EventListener] = [listener] if listener else []
        self._timer: TimerHandle | None = None
        self._timer_seq = 0
        self._inflight: asyncio.Task | None = None
        self._cancelled = False
        self._finished = asyncio.Event()

    @property
    def id(self) -> str:
        return self.task.id

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def live(self) -> bool:
        return not self._cancelled and not self.task.is_terminal

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None

    def cancel(self) -> bool:
        return self._manager.cancel(self)

    async def wait(self) -> GenerationTask:
        """Wait until the task is terminal or cancelled."""
        await self._finished.wait()
        return self.task


class TaskLifecycleManager:
    """Run generation tasks against a backend adapter."""

    def __init__(
        self,
        adapter: BaseAdapter,
        *,
        registry: ModalityRegistry = default_registry,
        scheduler: Scheduler | None = None,
        transport_retry_delay_seconds: float = 0.0,
    ):
        self.adapter = adapter
        self.registry = registry
        self.transport_retry_delay_seconds = transport_retry_delay_seconds
        self._scheduler = scheduler
        self._active: dict[str, TaskHandle] = {}
        self._recent: OrderedDict[str, TaskHandle] = OrderedDict()
        self._listeners: list[EventListener] = []
        self._background: set[asyncio.Task] = set()

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler or asyncio.get_running_loop()

    @property
    def active(self) -> list[TaskHandle]:
        return list(self._active.values())

    def get(self, task_id: str) -> TaskHandle | None:
        return self._active.get(task_id)

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Receive events of every task. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # Public operations

    def start(
        self,
        request: GenerationRequest,
        modality: Modality | str,
        config: GenerationConfig | None = None,
        listener: EventListener | None = None,
    ) -> TaskHandle:
        """Create a task and make its first backend call.

        Raises TaskValidationError, before any network activity, when the
        modality is unknown or the request has no primary content.
        """
        profile = self._profile_for(modality)
        self._validate(request, profile)
        profile = profile.with_overrides(config)

        # Fail fast outside a running loop, before any state exists
        asyncio.get_running_loop()

        model_name = config.model_name if config and config.model_name else request.model
        task = GenerationTask(
            modality=profile.modality,
            request=request,
            max_retries=profile.max_retries,
            model_name=model_name,
        )
        handle = TaskHandle(self, task, profile, config, listener)
        self._active[task.id] = handle

        logger.info(
            "task_started",
            task_id=task.id,
            modality=task.modality.value,
            max_retries=task.max_retries,
        )

        # Listeners may cancel from inside either event
        self._transition(handle, TaskStatus.INITIALIZING)
        self._transition(handle, TaskStatus.CONNECTING)
        self._spawn(handle)
        return handle

    def cancel(self, handle: TaskHandle | str) -> bool:
        """Cancel a task. Idempotent; returns False if nothing was cancelled.

        A pending timer is cleared at once. An in-flight call is left to
        finish and its response is discarded. No events follow a cancel.
        """
        if isinstance(handle, str):
            found = self._active.get(handle)
            if found is None:
                return False
            handle = found

        if handle.done or handle.task.is_terminal:
            return False

        handle._cancelled = True
        self._clear_timer(handle)
        self._retire(handle)

        logger.info(
            "task_cancelled",
            task_id=handle.id,
            status=handle.task.status.value,
            attempt=handle.task.attempt,
            call_in_flight=handle._inflight is not None,
        )
        return True

    def regenerate(
        self, handle: TaskHandle | str, listener: EventListener | None = None
    ) -> TaskHandle:
        """Start a brand-new task from an existing task's request.

        A task id is looked up among active tasks and the most recently
        finished or cancelled ones.
        """
        if isinstance(handle, str):
            found = self._active.get(handle) or self._recent.get(handle)
            if found is None:
                raise TaskNotFoundError(f"Task not found: {handle}")
            handle = found
        return self.start(handle.task.request, handle.task.modality, handle.config, listener)

    async def shutdown(self) -> None:
        """Cancel every active task and abandon in-flight calls."""
        for handle in self.active:
            self.cancel(handle)

        pending = [t for t in self._background if not t.done()]
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # Validation

    def _profile_for(self, modality: Modality | str) -> ModalityProfile:
        try:
            modality = Modality(modality)
        except ValueError as e:
            raise TaskValidationError(f"Unsupported modality: {modality}") from e

        profile = self.registry.get(modality)
        if profile is None:
            raise TaskValidationError(f"Unsupported modality: {modality.value}")
        return profile

    @staticmethod
    def _validate(request: GenerationRequest, profile: ModalityProfile) -> None:
        if profile.primary_field == "audio":
            if not request.audio:
                raise TaskValidationError("Please select an audio file")
        elif not request.clean_prompt:
            raise TaskValidationError("Please enter a prompt")

        try:
            request.params_for(profile.modality)
        except ValidationError as e:
            fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
            raise TaskValidationError(f"Invalid parameters: {fields}") from e

    # Backend calls

    def _spawn(self, handle: TaskHandle) -> None:
        if not handle.live:
            return
        if handle._inflight is not None or handle._timer is not None:
            logger.debug("trigger_ignored", task_id=handle.id)
            return

        call = asyncio.get_running_loop().create_task(self._run_attempt(handle))
        handle._inflight = call
        self._background.add(call)
        call.add_done_callback(self._background.discard)

    async def _run_attempt(self, handle: TaskHandle) -> None:
        task = handle.task
        fault: BackendTransportError | None = None
        response: BackendResponse | None = None

        try:
            response = await self.adapter.invoke_with_timing(task.request, handle.profile)
        except BackendTransportError as e:
            fault = e
        except Exception as e:
            logger.error(
                "adapter_error",
                task_id=task.id,
                error=type(e).__name__,
                exc_info=True,
            )
            response = BackendResponse.failed()
        handle._inflight = None

        if not handle.live:
            logger.info("late_response_discarded", task_id=task.id)
            return

        if fault is not None:
            self._on_transport_fault(handle, fault)
        else:
            self._on_response(handle, response)

    def _on_response(self, handle: TaskHandle, response: BackendResponse) -> None:
        task = handle.task

        if response.loading:
            decision = handle.policy.decide(
                task.attempt, task.max_retries, response.estimated_time
            )
            if isinstance(decision, Stop):
                task.estimated_wait_seconds = 0.0
                self._transition(handle, TaskStatus.MODEL_LOADING)
                self._fail(handle, ErrorKind.RETRIES_EXHAUSTED, RETRIES_EXHAUSTED_MESSAGE)
                return

            task.estimated_wait_seconds = decision.delay_seconds
            self._transition(handle, TaskStatus.MODEL_LOADING)
            if handle.cancelled:
                return
            logger.info(
                "model_loading",
                task_id=task.id,
                attempt=task.attempt,
                max_retries=task.max_retries,
                delay_seconds=decision.delay_seconds,
            )
            self._schedule(handle, decision.delay_seconds, self._fire_retry)
            return

        if not response.success:
            self._fail(handle, ErrorKind.BACKEND, response.error or handle.profile.failure_message)
            return

        # Generating and Processing are pacing states, not extra calls
        task.estimated_wait_seconds = 0.0
        self._transition(handle, TaskStatus.GENERATING)
        self._transition(handle, TaskStatus.PROCESSING)
        if handle.cancelled:
            return
        task.result = response.data
        self._transition(handle, TaskStatus.COMPLETE)

        logger.info(
            "task_completed",
            task_id=task.id,
            retries=task.attempt,
            duration_ms=response.elapsed_ms,
        )
        self._finish(handle)

    def _on_transport_fault(self, handle: TaskHandle, fault: BackendTransportError) -> None:
        task = handle.task

        # One automatic retry, and only for the very first call
        if task.attempt == 0 and task.transport_retries == 0:
            task.transport_retries += 1
            logger.warning("transport_retry", task_id=task.id, error=str(fault))
            self._schedule(handle, self.transport_retry_delay_seconds, self._fire_transport_retry)
            return

        logger.warning("transport_failed", task_id=task.id, error=str(fault))
        self._fail(handle, ErrorKind.TRANSPORT, handle.profile.failure_message)

    # Timers

    def _schedule(
        self,
        handle: TaskHandle,
        delay: float,
        callback: Callable[[TaskHandle, int], None],
    ) -> None:
        self._clear_timer(handle)
        if not handle.live:
            return
        handle._timer_seq += 1
        handle._timer = self.scheduler.call_later(delay, callback, handle, handle._timer_seq)

    @staticmethod
    def _clear_timer(handle: TaskHandle) -> None:
        if handle._timer is not None:
            handle._timer.cancel()
            handle._timer = None

    @staticmethod
    def _claim_timer(handle: TaskHandle, seq: int) -> bool:
        # A callback only counts if its timer is still the task's current one
        if handle._timer is None or seq != handle._timer_seq:
            logger.debug("stale_timer_ignored", task_id=handle.id)
            return False
        handle._timer = None
        return handle.live

    def _fire_retry(self, handle: TaskHandle, seq: int) -> None:
        if not self._claim_timer(handle, seq):
            return
        handle.task.attempt += 1
        self._spawn(handle)

    def _fire_transport_retry(self, handle: TaskHandle, seq: int) -> None:
        if not self._claim_timer(handle, seq):
            return
        self._spawn(handle)

    # State

    def _transition(
        self, handle: TaskHandle, status: TaskStatus, message: str | None = None
    ) -> None:
        if handle.cancelled:
            return

        task = handle.task
        check_transition(task.status, status)

        presentation = present(status, task.attempt, task.max_retries, handle.profile.label)
        task.status = status
        # Progress never moves backwards within a task
        task.progress = max(task.progress, presentation.progress)
        task.status_message = message or presentation.message

        self._emit(handle, StatusEvent.from_task(task))

    def _emit(self, handle: TaskHandle, event: StatusEvent) -> None:
        for listener in [*handle._listeners, *self._listeners]:
            try:
                listener(event)
            except Exception:
                logger.error("listener_error", task_id=handle.id, exc_info=True)

    def _fail(self, handle: TaskHandle, kind: ErrorKind, message: str) -> None:
        if handle.cancelled:
            return
        task = handle.task
        task.last_error = TaskError(kind=kind, message=message)
        task.estimated_wait_seconds = 0.0
        self._transition(handle, TaskStatus.ERROR, message=message)

        logger.warning(
            "task_failed",
            task_id=task.id,
            kind=kind.value,
            retries=task.attempt,
        )
        self._finish(handle)

    def _finish(self, handle: TaskHandle) -> None:
        self._clear_timer(handle)
        handle.task.completed_at = int(time.time() * 1000)
        self._retire(handle)

    def _retire(self, handle: TaskHandle) -> None:
        self._active.pop(handle.id, None)
        self._recent[handle.id] = handle
        while len(self._recent) > RECENT_LIMIT:
            self._recent.popitem(last=False)
        handle._finished.set()
