"""Test doubles: a manual scheduler and a scripted backend adapter."""

import asyncio
from collections.abc import Callable
from typing import Any

from genstudio.adapters.base import BaseAdapter
from genstudio.config import Settings
from genstudio.tasks.lifecycle import TaskHandle
from genstudio.tasks.models import BackendResponse, GenerationRequest
from genstudio.tasks.registry import ModalityProfile


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[..., Any], args: tuple) -> None:
        self.delay = delay
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fired = True
        self.callback(*self.args)


class FakeScheduler:
    """Records timers instead of sleeping; tests fire them explicitly."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> FakeTimer:
        timer = FakeTimer(delay, callback, args)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    @property
    def delays(self) -> list[float]:
        return [t.delay for t in self.timers]

    def fire_next(self) -> None:
        self.pending[0].fire()


class ScriptedAdapter(BaseAdapter):
    """Answers calls from a script; the last entry repeats once exhausted.

    Entries are BackendResponse objects or exceptions to raise. When a gate
    is given, every call blocks until the gate is set.
    """

    def __init__(self, script: list[Any], gate: asyncio.Event | None = None) -> None:
        super().__init__(Settings())
        self.script = list(script)
        self.gate = gate
        self.calls: list[tuple[GenerationRequest, ModalityProfile]] = []

    async def invoke(
        self, request: GenerationRequest, profile: ModalityProfile
    ) -> BackendResponse:
        self.calls.append((request, profile))
        item = self.script[min(len(self.calls), len(self.script)) - 1]
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(item, BaseException):
            raise item
        return item.model_copy()


async def settle(rounds: int = 5) -> None:
    """Let spawned backend calls run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def drive(handle: TaskHandle, scheduler: FakeScheduler, max_steps: int = 200) -> None:
    """Alternate between running calls and firing timers until the task ends."""
    for _ in range(max_steps):
        await settle()
        if handle.done:
            return
        if scheduler.pending:
            scheduler.fire_next()
    raise AssertionError("Task did not reach a terminal state")
