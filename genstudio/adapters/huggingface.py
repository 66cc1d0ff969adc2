"""Adapter for the HuggingFace inference API, called directly.

The inference API signals a cold model with HTTP 503 and a JSON body such as
``{"error": "Model ... is currently loading", "estimated_time": 20.0}``.
"""

import base64
from typing import Any

import httpx

from ..tasks.errors import BackendTransportError
from ..tasks.models import BackendResponse, GenerationRequest, Modality, as_seconds
from ..tasks.registry import ModalityProfile
from .base import BaseAdapter

# Short model keys used by the studio UI
MODEL_IDS: dict[str, str] = {
    # Image
    "flux-schnell": "black-forest-labs/FLUX.1-schnell",
    "sdxl": "stabilityai/stable-diffusion-xl-base-1.0",
    "sd-3.5-turbo": "stabilityai/stable-diffusion-3.5-large-turbo",
    # Speech-to-text
    "whisper-large": "openai/whisper-large-v3",
    "whisper-turbo": "openai/whisper-large-v3-turbo",
    # Text-to-speech
    "mms-tts": "facebook/mms-tts-eng",
    "parler-tts": "parler-tts/parler-tts-mini-v1",
    "melo-tts": "myshell-ai/MeloTTS-English",
    # Text
    "mistral": "mistralai/Mistral-7B-Instruct-v0.3",
    "phi": "microsoft/Phi-3-mini-4k-instruct",
    "gemma": "google/gemma-2-2b-it",
    "qwen-small": "Qwen/Qwen2.5-1.5B-Instruct",
    "llama-small": "meta-llama/Llama-3.2-1B-Instruct",
    "qwen-coder": "Qwen/Qwen2.5-Coder-1.5B-Instruct",
    "starcoder": "bigcode/starcoder2-3b",
}

MEDIA_PREFIXES = ("image/", "audio/", "video/")


def resolve_model_id(model: str) -> str:
    """Map a short model key to its repository id; full ids pass through."""
    return MODEL_IDS.get(model, model)


def to_data_url(content: bytes, media_type: str) -> str:
    encoded = base64.b64encode(content).decode("ascii")
    return f"data:{media_type};base64,{encoded}"


def build_inputs(request: GenerationRequest, profile: ModalityProfile) -> dict[str, Any]:
    """Build the inference API JSON body for a modality."""
    modality = profile.modality
    parameters: dict[str, Any] = {}
    inputs = request.clean_prompt

    if modality == Modality.IMAGE:
        params = request.get_image_params()
        parameters = {
            "negative_prompt": params.negative_prompt,
            "width": params.width,
            "height": params.height,
            "num_inference_steps": params.num_inference_steps,
            "guidance_scale": params.guidance_scale,
        }
    elif modality == Modality.VIDEO:
        params = request.get_video_params()
        parameters = {
            "negative_prompt": params.negative_prompt,
            "num_frames": params.num_frames,
            "num_inference_steps": params.num_inference_steps,
        }
    elif modality == Modality.TEXT:
        params = request.get_text_params()
        if params.system_prompt:
            inputs = f"{params.system_prompt.strip()}\n\n{inputs}"
        parameters = {
            "max_new_tokens": params.max_tokens,
            "temperature": params.temperature,
            "return_full_text": False,
            "do_sample": params.temperature > 0,
            "top_p": 0.95,
            "repetition_penalty": 1.1,
        }
    elif modality != Modality.AUDIO_TTS:
        raise ValueError(f"No JSON body for modality: {modality.value}")

    body: dict[str, Any] = {"inputs": inputs}
    parameters = {key: value for key, value in parameters.items() if value is not None}
    if parameters:
        body["parameters"] = parameters
    return body


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


class HuggingFaceAdapter(BaseAdapter):
    """Invoke hosted inference models directly."""

    def _build_client(self) -> httpx.AsyncClient:
        headers = {}
        token = self.settings.huggingface_token.get_secret_value()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return httpx.AsyncClient(
            base_url=self.settings.huggingface_url,
            headers=headers,
            timeout=self.settings.request_timeout_seconds,
            transport=self._transport,
        )

    async def invoke(
        self, request: GenerationRequest, profile: ModalityProfile
    ) -> BackendResponse:
        """Call the model once."""
        model_id = resolve_model_id(request.model)
        path = f"/models/{model_id}"

        if profile.modality == Modality.AUDIO_STT:
            response = await self._post(
                path,
                content=request.audio or b"",
                headers={"Content-Type": "application/octet-stream"},
            )
        else:
            response = await self._post(path, json=build_inputs(request, profile))

        return self._normalize(response, profile, model_id)

    def _normalize(
        self, response: httpx.Response, profile: ModalityProfile, model_id: str
    ) -> BackendResponse:
        payload = _json_or_none(response)
        error = payload.get("error") if isinstance(payload, dict) else None

        if response.status_code == 503:
            estimated = payload.get("estimated_time") if isinstance(payload, dict) else None
            if estimated is not None or "loading" in str(error or "").lower():
                return BackendResponse.cold_start(as_seconds(estimated))
            return BackendResponse.failed(str(error) if error else "Service unavailable")

        if not response.is_success:
            return BackendResponse.failed(
                str(error) if error else f"Backend returned HTTP {response.status_code}"
            )

        media_type = response.headers.get("content-type", "").split(";")[0].strip()
        if media_type.startswith(MEDIA_PREFIXES):
            return BackendResponse.completed(
                to_data_url(response.content, media_type), model=model_id
            )

        if payload is None:
            raise BackendTransportError(
                f"Unparseable response (HTTP {response.status_code})"
            )

        # Text generation answers with a list of candidates
        if isinstance(payload, list) and payload and isinstance(payload[0], dict):
            payload = payload[0]

        if isinstance(payload, dict):
            if profile.modality == Modality.TEXT and "generated_text" in payload:
                return BackendResponse.completed(payload["generated_text"], model=model_id)
            if profile.modality == Modality.AUDIO_STT and "text" in payload:
                return BackendResponse.completed(payload["text"], model=model_id)

        return BackendResponse.failed(profile.failure_message)

    async def health_check(self) -> bool:
        """Check if the inference API is reachable."""
        try:
            client = await self._get_client()
            response = await client.get("/status/" + MODEL_IDS["flux-schnell"])
            return response.status_code < 500
        except httpx.HTTPError:
            return False
