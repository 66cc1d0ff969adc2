"""Progress presenter: status -> (progress, message), plus the wait countdown."""

import asyncio
import math
from collections.abc import Callable
from typing import NamedTuple

from .models import StatusEvent, TaskStatus

# Progress floor of each state
STATUS_PROGRESS: dict[TaskStatus, int] = {
    TaskStatus.IDLE: 0,
    TaskStatus.INITIALIZING: 5,
    TaskStatus.CONNECTING: 10,
    TaskStatus.MODEL_LOADING: 20,
    TaskStatus.GENERATING: 70,
    TaskStatus.PROCESSING: 90,
    TaskStatus.COMPLETE: 100,
    TaskStatus.ERROR: 0,
}

# Nudge per loading retry, capped below the generating floor
LOADING_STEP = 5
LOADING_CEILING = STATUS_PROGRESS[TaskStatus.GENERATING] - 1


class Presentation(NamedTuple):
    progress: int
    message: str


def loading_progress(attempt: int) -> int:
    base = STATUS_PROGRESS[TaskStatus.MODEL_LOADING]
    return min(base + LOADING_STEP * max(attempt, 0), LOADING_CEILING)


def present(
    status: TaskStatus,
    attempt: int = 0,
    max_retries: int = 0,
    label: str = "content",
) -> Presentation:
    """Derive the progress value and status line for a state."""
    if status == TaskStatus.MODEL_LOADING:
        return Presentation(
            loading_progress(attempt),
            f"Model is loading (attempt {attempt + 1}/{max_retries + 1})...",
        )

    messages = {
        TaskStatus.IDLE: "Ready",
        TaskStatus.INITIALIZING: f"Starting {label} generation...",
        TaskStatus.CONNECTING: "Connecting to API...",
        TaskStatus.GENERATING: f"Generating {label}...",
        TaskStatus.PROCESSING: "Processing result...",
        TaskStatus.COMPLETE: f"{label.capitalize()} generated!",
        TaskStatus.ERROR: "Generation failed",
    }
    return Presentation(STATUS_PROGRESS[status], messages[status])


class Countdown:
    """Display-only countdown of the estimated model-loading wait.

    Ticks once per interval down to zero. It is never consulted by the
    lifecycle manager; the retry timer stays authoritative.
    """

    def __init__(self, on_tick: Callable[[int], None], interval_seconds: float = 1.0):
        self._on_tick = on_tick
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None
        self.remaining = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def observe(self, event: StatusEvent) -> None:
        """Follow a task's status events."""
        if event.status == TaskStatus.MODEL_LOADING and event.estimated_wait_seconds > 0:
            self.start(event.estimated_wait_seconds)
        else:
            self.stop()

    def start(self, seconds: float) -> None:
        self.stop()
        self.remaining = math.ceil(seconds)
        self._on_tick(self.remaining)
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def wait(self) -> None:
        """Wait until the current countdown finishes or is stopped."""
        if self._task is not None:
            await asyncio.wait({self._task})

    async def _run(self) -> None:
        while self.remaining > 0:
            await asyncio.sleep(self._interval)
            self.remaining -= 1
            self._on_tick(self.remaining)
