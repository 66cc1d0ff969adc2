"""Generation task models shared by the orchestrator, adapters and UI."""

import time
import uuid
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Modality(str, Enum):
    """Kind of generation request."""

    IMAGE = "image"
    VIDEO = "video"
    AUDIO_TTS = "audio-tts"
    AUDIO_STT = "audio-stt"
    TEXT = "text"


class TaskStatus(str, Enum):
    """Lifecycle states, in expected forward order."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    CONNECTING = "connecting"
    MODEL_LOADING = "model-loading"
    GENERATING = "generating"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETE, TaskStatus.ERROR)


STATUS_ORDER: tuple[TaskStatus, ...] = (
    TaskStatus.IDLE,
    TaskStatus.INITIALIZING,
    TaskStatus.CONNECTING,
    TaskStatus.MODEL_LOADING,
    TaskStatus.GENERATING,
    TaskStatus.PROCESSING,
    TaskStatus.COMPLETE,
)


class ErrorKind(str, Enum):
    """Internal classification of a terminal error."""

    BACKEND = "backend_error"
    RETRIES_EXHAUSTED = "retries_exhausted"
    TRANSPORT = "transport_error"
    VALIDATION = "validation_error"


class ImageParams(BaseModel):
    """Parameters for image requests."""

    negative_prompt: str | None = Field(default=None)
    width: int = Field(default=1024, ge=64, le=2048)
    height: int = Field(default=1024, ge=64, le=2048)
    num_inference_steps: int = Field(default=30, ge=1, le=150)
    guidance_scale: float = Field(default=7.5, ge=0.0, le=30.0)


class VideoParams(BaseModel):
    """Parameters for video requests."""

    negative_prompt: str | None = Field(default=None)
    num_frames: int = Field(default=16, ge=1, le=256)
    num_inference_steps: int = Field(default=25, ge=1, le=150)


class TextParams(BaseModel):
    """Parameters for text requests."""

    system_prompt: str | None = Field(default=None)
    max_tokens: int = Field(default=512, ge=1, le=8192)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)


class GenerationRequest(BaseModel):
    """Immutable request payload. A regenerate always builds a new task."""

    model_config = ConfigDict(frozen=True)

    model: str = Field(..., min_length=1)
    prompt: str | None = Field(default=None)

    # Speech-to-text input
    audio: bytes | None = Field(default=None)
    audio_filename: str = Field(default="audio.wav")

    # Modality-specific parameters, parsed on demand
    params: dict[str, Any] = Field(default_factory=dict)

    def get_image_params(self) -> ImageParams:
        """Parse params as ImageParams."""
        return ImageParams(**self.params)

    def get_video_params(self) -> VideoParams:
        """Parse params as VideoParams."""
        return VideoParams(**self.params)

    def get_text_params(self) -> TextParams:
        """Parse params as TextParams."""
        return TextParams(**self.params)

    def params_for(self, modality: Modality) -> BaseModel | None:
        """Parse params for a modality; speech modalities take none."""
        parsers = {
            Modality.IMAGE: self.get_image_params,
            Modality.VIDEO: self.get_video_params,
            Modality.TEXT: self.get_text_params,
        }
        parser = parsers.get(modality)
        return parser() if parser else None

    @property
    def clean_prompt(self) -> str:
        return (self.prompt or "").strip()


class GenerationConfig(BaseModel):
    """Per-task overrides of the modality profile."""

    model_config = ConfigDict(protected_namespaces=())

    max_retries: int | None = Field(default=None, ge=0)
    fallback_delay_seconds: float | None = Field(default=None, gt=0)
    model_name: str | None = Field(default=None)


class TaskError(BaseModel):
    """Terminal error attached to a task."""

    kind: ErrorKind
    message: str


MEDIA_KEYS = ("image", "video", "audio", "text")


def as_seconds(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class BackendResponse(BaseModel):
    """Normalized result of one backend invocation."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(default=False)
    loading: bool = Field(default=False)
    error: str | None = Field(default=None)
    data: Any = Field(default=None)
    estimated_time: float | None = Field(
        default=None,
        validation_alias=AliasChoices("estimated_time", "estimatedTime"),
    )
    model: str | None = Field(default=None)

    # Set by the adapter
    elapsed_ms: int = Field(default=0)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "BackendResponse":
        """Build from a backend JSON body, folding media keys into data."""
        data = payload.get("data")
        if data is None:
            for key in MEDIA_KEYS:
                if payload.get(key) is not None:
                    data = payload[key]
                    break

        error = payload.get("error")
        estimated = payload.get("estimatedTime", payload.get("estimated_time"))

        return cls(
            success=payload.get("success") is True,
            loading=payload.get("loading") is True,
            error=str(error) if error else None,
            data=data,
            estimated_time=as_seconds(estimated),
            model=payload.get("model") if isinstance(payload.get("model"), str) else None,
        )

    @classmethod
    def completed(cls, data: Any, model: str | None = None) -> "BackendResponse":
        """Create a success response."""
        return cls(success=True, data=data, model=model)

    @classmethod
    def failed(cls, error: str | None = None) -> "BackendResponse":
        """Create a hard-failure response."""
        return cls(success=False, error=error)

    @classmethod
    def cold_start(cls, estimated_time: float | None = None) -> "BackendResponse":
        """Create a model-loading response."""
        return cls(success=False, loading=True, estimated_time=estimated_time)


class GenerationTask(BaseModel):
    """One in-flight or finished generation request.

    Mutated only by the lifecycle manager.
    """

    model_config = ConfigDict(protected_namespaces=())

    # Identity
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    modality: Modality
    request: GenerationRequest

    # Lifecycle
    status: TaskStatus = Field(default=TaskStatus.IDLE)
    attempt: int = Field(default=0, ge=0)
    max_retries: int = Field(..., ge=0)
    transport_retries: int = Field(default=0, ge=0)
    estimated_wait_seconds: float = Field(default=0.0)

    # Presentation
    progress: int = Field(default=0, ge=0, le=100)
    status_message: str = Field(default="")
    model_name: str = Field(default="")

    # Outcome
    result: Any = Field(default=None)
    last_error: TaskError | None = Field(default=None)

    # Timestamps
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000))
    completed_at: int | None = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class StatusEvent(BaseModel):
    """Emitted to listeners on every transition."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        protected_namespaces=(),
    )

    task_id: str
    status: TaskStatus
    progress: int
    retry_attempt: int
    max_retries: int
    estimated_wait_seconds: float
    model_name: str
    status_message: str

    @classmethod
    def from_task(cls, task: GenerationTask) -> "StatusEvent":
        return cls(
            task_id=task.id,
            status=task.status,
            progress=task.progress,
            retry_attempt=task.attempt,
            max_retries=task.max_retries,
            estimated_wait_seconds=task.estimated_wait_seconds,
            model_name=task.model_name,
            status_message=task.status_message,
        )

    def to_payload(self) -> dict[str, Any]:
        """Serialize with camelCase keys for the UI."""
        return self.model_dump(by_alias=True, mode="json")
