"""Modality registry: one retry/message profile per kind of generation."""

import dataclasses
from dataclasses import dataclass

from .models import GenerationConfig, Modality


@dataclass(frozen=True)
class ModalityProfile:
    """Static per-modality configuration."""

    modality: Modality
    label: str
    max_retries: int
    fallback_delay_seconds: float
    failure_message: str
    endpoint: str
    primary_field: str = "prompt"

    def with_overrides(self, config: GenerationConfig | None) -> "ModalityProfile":
        """Apply per-task overrides, if any."""
        if config is None:
            return self
        changes = {}
        if config.max_retries is not None:
            changes["max_retries"] = config.max_retries
        if config.fallback_delay_seconds is not None:
            changes["fallback_delay_seconds"] = config.fallback_delay_seconds
        return dataclasses.replace(self, **changes) if changes else self


class ModalityRegistry:
    """Registry mapping modalities to their profiles."""

    def __init__(self):
        self._profiles: dict[Modality, ModalityProfile] = {}

    def register(self, profile: ModalityProfile) -> ModalityProfile:
        """Register (or replace) the profile for a modality."""
        self._profiles[profile.modality] = profile
        return profile

    def get(self, modality: Modality) -> ModalityProfile | None:
        """Get the profile for a modality."""
        return self._profiles.get(modality)

    def __contains__(self, modality: object) -> bool:
        return modality in self._profiles

    def __iter__(self):
        return iter(self._profiles.values())


DEFAULT_MAX_RETRIES = 3

# Global registry instance
registry = ModalityRegistry()

registry.register(ModalityProfile(
    modality=Modality.IMAGE,
    label="image",
    max_retries=5,
    fallback_delay_seconds=20.0,
    failure_message="Image generation failed",
    endpoint="huggingface-image",
))
registry.register(ModalityProfile(
    modality=Modality.VIDEO,
    label="video",
    max_retries=8,
    fallback_delay_seconds=60.0,
    failure_message="Video generation failed",
    endpoint="huggingface-video",
))
registry.register(ModalityProfile(
    modality=Modality.AUDIO_TTS,
    label="speech",
    max_retries=3,
    fallback_delay_seconds=5.0,
    failure_message="Speech synthesis failed",
    endpoint="huggingface-audio",
))
registry.register(ModalityProfile(
    modality=Modality.AUDIO_STT,
    label="transcription",
    max_retries=3,
    fallback_delay_seconds=5.0,
    failure_message="Transcription failed",
    endpoint="huggingface-audio",
    primary_field="audio",
))
registry.register(ModalityProfile(
    modality=Modality.TEXT,
    label="text",
    max_retries=DEFAULT_MAX_RETRIES,
    fallback_delay_seconds=5.0,
    failure_message="Text generation failed",
    endpoint="huggingface-text",
))
