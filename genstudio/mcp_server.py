"""MCP server exposing generation tasks as tools.

Runs over stdio with Content-Length framing. Tools:
- start_generation: submit a request, returns the task id
- generation_status: latest status event, plus result or error once terminal
- cancel_generation: cancel a task
- regenerate_generation: start a fresh task from an earlier task's request
- backend_status: whether the configured backend is reachable
"""

import asyncio
import base64
import binascii
import json
import sys
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from pydantic import ValidationError

from . import __version__
from .adapters import create_adapter
from .tasks.errors import GenerationError
from .tasks.lifecycle import TaskHandle, TaskLifecycleManager
from .tasks.models import GenerationConfig, GenerationRequest, Modality, StatusEvent

PROTOCOL_VERSION = "2024-11-05"

METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603

# Finished tasks beyond this many are forgotten, oldest first
MAX_TRACKED_TASKS = 256

logger = structlog.get_logger("mcp")

TASK_ID_SCHEMA = {
    "type": "object",
    "properties": {"task_id": {"type": "string", "description": "Task identifier"}},
    "required": ["task_id"],
}

TOOLS = [
    {
        "name": "start_generation",
        "description": "Submit an image, video, speech, transcription or text generation",
        "inputSchema": {
            "type": "object",
            "properties": {
                "modality": {"type": "string", "enum": [m.value for m in Modality]},
                "model": {"type": "string"},
                "prompt": {"type": "string"},
                "audio_base64": {
                    "type": "string",
                    "description": "Audio to transcribe (audio-stt only)",
                },
                "params": {"type": "object"},
                "max_retries": {"type": "integer", "minimum": 0},
            },
            "required": ["modality", "model"],
        },
    },
    {
        "name": "generation_status",
        "description": "Get the latest status of a generation task",
        "inputSchema": TASK_ID_SCHEMA,
    },
    {
        "name": "cancel_generation",
        "description": "Cancel a generation task",
        "inputSchema": TASK_ID_SCHEMA,
    },
    {
        "name": "regenerate_generation",
        "description": "Start a new task with an earlier task's request",
        "inputSchema": TASK_ID_SCHEMA,
    },
    {
        "name": "backend_status",
        "description": "Check whether the generation backend is reachable",
        "inputSchema": {"type": "object", "properties": {}},
    },
]


def _result(msg_id: Any, result: Any) -> dict:
    return {"jsonrpc": "2.0", "id": msg_id, "result": result}


def _error(msg_id: Any, code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": msg_id, "error": {"code": code, "message": message}}


async def read_message(reader: asyncio.StreamReader) -> bytes | None:
    """Read one Content-Length framed message. Returns None at end of input."""
    length = None
    while True:
        line = await reader.readline()
        if not line:
            return None
        line = line.strip()
        if not line:
            if length is not None:
                break
            continue
        name, _, value = line.decode().partition(":")
        if name.strip().lower() == "content-length":
            length = int(value.strip())
    return await reader.readexactly(length)


def write_message(payload: dict) -> None:
    body = json.dumps(payload).encode()
    sys.stdout.buffer.write(f"Content-Length: {len(body)}\r\n\r\n".encode() + body)
    sys.stdout.buffer.flush()


class MCPServer:
    """Minimal MCP server driving a lifecycle manager."""

    def __init__(
        self,
        manager: TaskLifecycleManager | None = None,
        max_tracked: int = MAX_TRACKED_TASKS,
    ):
        self.manager = manager
        self.max_tracked = max_tracked
        self._handles: OrderedDict[str, TaskHandle] = OrderedDict()
        self._latest: dict[str, StatusEvent] = {}
        self._tools: dict[str, Callable[[dict], Awaitable[dict]]] = {
            "start_generation": self._start_generation,
            "generation_status": self._generation_status,
            "cancel_generation": self._cancel_generation,
            "regenerate_generation": self._regenerate_generation,
            "backend_status": self._backend_status,
        }

    async def _initialize(self, params: dict) -> dict:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": "genstudio", "version": __version__},
        }

    async def _list_tools(self, params: dict) -> dict:
        return {"tools": TOOLS}

    async def _ping(self, params: dict) -> dict:
        return {}

    async def _call_tool(self, params: dict) -> dict:
        name = params.get("name", "")
        tool = self._tools.get(name)
        if self.manager is None:
            outcome = {"error": "Manager not initialized"}
        elif tool is None:
            outcome = {"error": f"Unknown tool: {name}"}
        else:
            outcome = await tool(params.get("arguments") or {})
        return {"content": [{"type": "text", "text": json.dumps(outcome)}]}

    # Tools

    def _record(self, event: StatusEvent) -> None:
        self._latest[event.task_id] = event

    def _track(self, handle: TaskHandle) -> dict:
        self._handles[handle.id] = handle
        self._forget_finished()
        return {"task_id": handle.id, "status": handle.task.status.value}

    async def _start_generation(self, arguments: dict) -> dict:
        audio = None
        if arguments.get("audio_base64"):
            try:
                audio = base64.b64decode(arguments["audio_base64"], validate=True)
            except (binascii.Error, ValueError):
                return {"error": "audio_base64 is not valid base64", "kind": "validation_error"}

        try:
            request = GenerationRequest(
                model=arguments.get("model", ""),
                prompt=arguments.get("prompt"),
                audio=audio,
                params=arguments.get("params") or {},
            )
            config = GenerationConfig(max_retries=arguments.get("max_retries"))
            handle = self.manager.start(
                request,
                arguments.get("modality", ""),
                config,
                listener=self._record,
            )
        except ValidationError as e:
            return {"error": f"Invalid request: {e.error_count()} error(s)", "kind": "validation_error"}
        except GenerationError as e:
            return {"error": str(e), "kind": e.kind.value}

        return self._track(handle)

    async def _generation_status(self, arguments: dict) -> dict:
        handle = self._handles.get(arguments.get("task_id", ""))
        if handle is None:
            return {"error": "Task not found"}

        task = handle.task
        event = self._latest.get(task.id) or StatusEvent.from_task(task)
        status = {
            **event.to_payload(),
            "done": handle.done,
            "cancelled": handle.cancelled,
        }
        if task.result is not None:
            status["result"] = task.result
        if task.last_error is not None:
            status["error"] = task.last_error.message
        return status

    async def _cancel_generation(self, arguments: dict) -> dict:
        handle = self._handles.get(arguments.get("task_id", ""))
        if handle is None:
            return {"error": "Task not found"}
        return {"task_id": handle.id, "cancelled": self.manager.cancel(handle)}

    async def _regenerate_generation(self, arguments: dict) -> dict:
        handle = self._handles.get(arguments.get("task_id", ""))
        if handle is None:
            return {"error": "Task not found"}
        return self._track(self.manager.regenerate(handle, listener=self._record))

    async def _backend_status(self, arguments: dict) -> dict:
        adapter = self.manager.adapter
        available = await adapter.health_check()
        return {
            "status": "running",
            "backend": type(adapter).__name__,
            "backend_available": available,
            "active_tasks": sum(1 for handle in self._handles.values() if not handle.done),
        }

    def _forget_finished(self) -> None:
        excess = len(self._handles) - self.max_tracked
        if excess <= 0:
            return
        stale = [task_id for task_id, handle in self._handles.items() if handle.done][:excess]
        for task_id in stale:
            del self._handles[task_id]
            self._latest.pop(task_id, None)

    # Protocol

    async def handle_message(self, message: dict) -> dict | None:
        """Dispatch one JSON-RPC message; notifications get no reply."""
        msg_id = message.get("id")
        if msg_id is None:
            return None

        method = message.get("method", "")
        handlers = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }
        handler = handlers.get(method)
        if handler is None:
            return _error(msg_id, METHOD_NOT_FOUND, f"Unknown method: {method}")

        try:
            return _result(msg_id, await handler(message.get("params") or {}))
        except Exception as e:
            logger.error("request_failed", method=method, error=type(e).__name__, exc_info=True)
            return _error(msg_id, INTERNAL_ERROR, "Internal error")

    async def run_stdio(self):
        """Serve requests from stdin until it closes."""
        from .config import get_settings
        from .runner import configure_logging

        settings = get_settings()
        configure_logging(settings)

        adapter = create_adapter(settings)
        self.manager = TaskLifecycleManager(
            adapter,
            transport_retry_delay_seconds=settings.transport_retry_delay_seconds,
        )

        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
        logger.info("mcp_ready", backend=settings.backend)

        try:
            while (content := await read_message(reader)) is not None:
                try:
                    message = json.loads(content)
                except json.JSONDecodeError:
                    logger.warning("malformed_message", length=len(content))
                    continue

                response = await self.handle_message(message)
                if response is not None:
                    write_message(response)
        finally:
            await self.manager.shutdown()
            await adapter.close()


def main():
    """Entry point for genstudio-mcp."""
    asyncio.run(MCPServer().run_stdio())


if __name__ == "__main__":
    main()
