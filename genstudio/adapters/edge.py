"""Adapter for the hosted edge-function backend."""

from typing import Any

import httpx

from ..tasks.errors import BackendTransportError
from ..tasks.models import BackendResponse, GenerationRequest, Modality
from ..tasks.registry import ModalityProfile
from .base import BaseAdapter


def _optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def build_body(request: GenerationRequest, profile: ModalityProfile) -> dict[str, Any]:
    """Build the JSON body an edge function expects for a modality."""
    modality = profile.modality

    if modality == Modality.IMAGE:
        params = request.get_image_params()
        body = {
            "prompt": request.clean_prompt,
            "negativePrompt": _optional_text(params.negative_prompt),
            "model": request.model,
            "width": params.width,
            "height": params.height,
            "numInferenceSteps": params.num_inference_steps,
            "guidanceScale": params.guidance_scale,
        }
    elif modality == Modality.VIDEO:
        params = request.get_video_params()
        body = {
            "prompt": request.clean_prompt,
            "negativePrompt": _optional_text(params.negative_prompt),
            "model": request.model,
            "numFrames": params.num_frames,
            "numInferenceSteps": params.num_inference_steps,
        }
    elif modality == Modality.TEXT:
        params = request.get_text_params()
        body = {
            "prompt": request.clean_prompt,
            "systemPrompt": _optional_text(params.system_prompt),
            "model": request.model,
            "maxTokens": params.max_tokens,
            "temperature": params.temperature,
        }
    elif modality == Modality.AUDIO_TTS:
        body = {"text": request.clean_prompt, "model": request.model}
    else:
        raise ValueError(f"No JSON body for modality: {modality.value}")

    # Unset optionals are omitted, not sent as null
    return {key: value for key, value in body.items() if value is not None}


class EdgeFunctionAdapter(BaseAdapter):
    """Invoke generation edge functions over HTTP."""

    def _build_client(self) -> httpx.AsyncClient:
        anon_key = self.settings.functions_anon_key.get_secret_value()
        return httpx.AsyncClient(
            base_url=self.settings.functions_url,
            headers={
                "Authorization": f"Bearer {anon_key}",
                "apikey": anon_key,
            },
            timeout=self.settings.request_timeout_seconds,
            transport=self._transport,
        )

    async def invoke(
        self, request: GenerationRequest, profile: ModalityProfile
    ) -> BackendResponse:
        """Call the modality's edge function once."""
        path = f"/{profile.endpoint}"

        if profile.modality == Modality.AUDIO_STT:
            response = await self._post(
                path,
                files={"audio": (request.audio_filename, request.audio or b"")},
                data={"model": request.model},
            )
        else:
            response = await self._post(path, json=build_body(request, profile))

        # Structured failures arrive with 500/503, so parse regardless of status
        try:
            payload = response.json()
        except ValueError as e:
            raise BackendTransportError(
                f"Unparseable response (HTTP {response.status_code})"
            ) from e

        if not isinstance(payload, dict):
            raise BackendTransportError(
                f"Unexpected response shape (HTTP {response.status_code})"
            )

        return BackendResponse.from_payload(payload)

    async def health_check(self) -> bool:
        """Check if the functions gateway answers a CORS preflight."""
        try:
            client = await self._get_client()
            response = await client.options("/huggingface-text")
            return response.status_code < 400
        except httpx.HTTPError:
            return False
