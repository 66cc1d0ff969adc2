"""Command-line runner - submits one generation and follows it to the end."""

import argparse
import asyncio
import base64
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from .adapters import create_adapter
from .config import Settings, get_settings
from .tasks.errors import TaskValidationError
from .tasks.lifecycle import TaskLifecycleManager
from .tasks.models import GenerationConfig, GenerationRequest, Modality, StatusEvent, TaskStatus
from .tasks.progress import Countdown

logger = structlog.get_logger("runner")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2
EXIT_CANCELLED = 130


def configure_logging(settings: Settings) -> None:
    """Configure structlog on top of stdlib logging, writing to stderr."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(message)s",
        stream=sys.stderr,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
            if settings.log_format == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def parse_param(raw: str) -> tuple[str, Any]:
    """Parse KEY=VALUE, reading VALUE as JSON when it parses."""
    key, sep, value = raw.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {raw!r}")
    try:
        return key, json.loads(value)
    except json.JSONDecodeError:
        return key, value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="genstudio-run",
        description="Run one generation request against the configured backend.",
    )
    parser.add_argument(
        "--modality",
        required=True,
        choices=[m.value for m in Modality],
    )
    parser.add_argument("--model", required=True, help="Model key or repository id")
    parser.add_argument("--prompt", help="Prompt, or text to synthesize")
    parser.add_argument("--audio-file", type=Path, help="Audio to transcribe")
    parser.add_argument(
        "--param",
        action="append",
        type=parse_param,
        default=[],
        metavar="KEY=VALUE",
        help="Modality parameter, e.g. width=768 (repeatable)",
    )
    parser.add_argument("--max-retries", type=int, help="Override the model-loading retry ceiling")
    parser.add_argument("--output", type=Path, help="Where to write media results")
    return parser


def build_request(args: argparse.Namespace) -> GenerationRequest:
    audio = None
    audio_filename = "audio.wav"
    if args.audio_file is not None:
        audio = args.audio_file.read_bytes()
        audio_filename = args.audio_file.name

    return GenerationRequest(
        model=args.model,
        prompt=args.prompt,
        audio=audio,
        audio_filename=audio_filename,
        params=dict(args.param),
    )


def decode_data_url(value: str) -> bytes:
    """Decode a base64 data: URL."""
    header, _, encoded = value.partition(",")
    if not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError("Not a base64 data URL")
    return base64.b64decode(encoded)


def write_result(result: Any, output: Path | None) -> None:
    """Write media to --output; print text to stdout."""
    if isinstance(result, str) and result.startswith("data:"):
        if output is None:
            logger.warning("media_not_written", reason="pass --output to save media")
            return
        output.write_bytes(decode_data_url(result))
        logger.info("result_written", path=str(output))
        return

    text = result if isinstance(result, str) else json.dumps(result)
    if output is not None:
        output.write_text(text)
        logger.info("result_written", path=str(output))
    else:
        print(text)


async def run(args: argparse.Namespace, settings: Settings) -> int:
    """Submit the request and wait for its outcome."""
    adapter = create_adapter(settings)
    manager = TaskLifecycleManager(
        adapter,
        transport_retry_delay_seconds=settings.transport_retry_delay_seconds,
    )
    countdown = Countdown(
        lambda remaining: logger.info("estimated_wait", remaining_seconds=remaining),
        interval_seconds=settings.countdown_interval_seconds,
    )

    def on_event(event: StatusEvent) -> None:
        countdown.observe(event)
        logger.info(
            "status",
            status=event.status.value,
            progress=event.progress,
            message=event.status_message,
            retry=event.retry_attempt,
            max_retries=event.max_retries,
        )

    loop = asyncio.get_running_loop()
    signals = (signal.SIGTERM, signal.SIGINT)

    try:
        try:
            handle = manager.start(
                build_request(args),
                args.modality,
                GenerationConfig(max_retries=args.max_retries),
                listener=on_event,
            )
        except (TaskValidationError, ValidationError, OSError) as e:
            logger.error("invalid_request", error=type(e).__name__)
            print(str(e), file=sys.stderr)
            return EXIT_INVALID

        for sig in signals:
            loop.add_signal_handler(sig, handle.cancel)

        task = await handle.wait()
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)
        countdown.stop()
        await manager.shutdown()
        await adapter.close()

    if handle.cancelled:
        return EXIT_CANCELLED
    if task.status == TaskStatus.ERROR:
        print(task.last_error.message if task.last_error else "Generation failed", file=sys.stderr)
        return EXIT_FAILED

    write_result(task.result, args.output)
    return EXIT_OK


def main():
    """Entry point for genstudio-run command."""
    args = build_parser().parse_args()
    settings = get_settings()
    configure_logging(settings)
    sys.exit(asyncio.run(run(args, settings)))


if __name__ == "__main__":
    main()
