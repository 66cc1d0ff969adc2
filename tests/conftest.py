"""Shared fixtures for lifecycle tests."""

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from genstudio.tasks.lifecycle import TaskLifecycleManager
from genstudio.tasks.models import StatusEvent
from helpers import FakeScheduler, ScriptedAdapter


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def events() -> list[StatusEvent]:
    return []


@pytest.fixture
def make_manager(scheduler: FakeScheduler) -> Callable[..., tuple[TaskLifecycleManager, ScriptedAdapter]]:
    def _make(script: list[Any], gate: asyncio.Event | None = None, **kwargs: Any):
        adapter = ScriptedAdapter(script, gate=gate)
        manager = TaskLifecycleManager(adapter, scheduler=scheduler, **kwargs)
        return manager, adapter

    return _make
