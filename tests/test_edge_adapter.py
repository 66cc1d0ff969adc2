import json

import httpx
import pytest

from genstudio.adapters import EdgeFunctionAdapter, HuggingFaceAdapter, create_adapter
from genstudio.adapters.edge import build_body
from genstudio.config import Settings
from genstudio.tasks.errors import BackendTransportError
from genstudio.tasks.models import GenerationRequest, Modality
from genstudio.tasks.registry import registry


def _settings(**overrides) -> Settings:
    values = {
        "functions_url": "https://project.example/functions/v1",
        "functions_anon_key": "anon-key",
    }
    values.update(overrides)
    return Settings(**values)


def _adapter(handler) -> EdgeFunctionAdapter:
    return EdgeFunctionAdapter(_settings(), transport=httpx.MockTransport(handler))


class TestBuildBody:
    def test_image_body_is_camel_case(self) -> None:
        request = GenerationRequest(
            model="flux-schnell",
            prompt="  a red fox  ",
            params={"width": 768, "negative_prompt": "blurry"},
        )

        body = build_body(request, registry.get(Modality.IMAGE))

        assert body == {
            "prompt": "a red fox",
            "negativePrompt": "blurry",
            "model": "flux-schnell",
            "width": 768,
            "height": 1024,
            "numInferenceSteps": 30,
            "guidanceScale": 7.5,
        }

    def test_blank_optionals_are_omitted(self) -> None:
        request = GenerationRequest(model="mistral", prompt="hi", params={"system_prompt": "  "})

        body = build_body(request, registry.get(Modality.TEXT))

        assert "systemPrompt" not in body
        assert body["maxTokens"] == 512

    def test_speech_sends_text(self) -> None:
        request = GenerationRequest(model="mms-tts", prompt="Hello there")

        assert build_body(request, registry.get(Modality.AUDIO_TTS)) == {
            "text": "Hello there",
            "model": "mms-tts",
        }

    def test_transcription_has_no_json_body(self) -> None:
        request = GenerationRequest(model="whisper-large", audio=b"RIFF")

        with pytest.raises(ValueError):
            build_body(request, registry.get(Modality.AUDIO_STT))


class TestEdgeFunctionAdapter:
    @pytest.mark.asyncio
    async def test_success_response(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True, "image": "data:image/png;base64,AAAA"})

        adapter = _adapter(handler)
        request = GenerationRequest(model="sdxl", prompt="cat")
        response = await adapter.invoke_with_timing(request, registry.get(Modality.IMAGE))
        await adapter.close()

        assert response.success
        assert response.data == "data:image/png;base64,AAAA"
        assert response.elapsed_ms >= 0
        assert seen[0].url.path == "/functions/v1/huggingface-image"
        assert seen[0].headers["Authorization"] == "Bearer anon-key"
        assert seen[0].headers["apikey"] == "anon-key"
        assert json.loads(seen[0].content)["prompt"] == "cat"

    @pytest.mark.asyncio
    async def test_loading_response_on_503(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                503,
                json={"success": False, "loading": True, "estimatedTime": 20, "error": "Model loading"},
            )

        adapter = _adapter(handler)
        response = await adapter.invoke(
            GenerationRequest(model="sdxl", prompt="cat"), registry.get(Modality.IMAGE)
        )

        assert response.loading
        assert response.estimated_time == 20.0

    @pytest.mark.asyncio
    async def test_structured_error_on_500(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"success": False, "error": "quota exceeded"})

        adapter = _adapter(handler)
        response = await adapter.invoke(
            GenerationRequest(model="mms-tts", prompt="hi"), registry.get(Modality.AUDIO_TTS)
        )

        assert not response.success
        assert not response.loading
        assert response.error == "quota exceeded"

    @pytest.mark.asyncio
    async def test_non_json_body_is_a_transport_fault(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="<html>Bad Gateway</html>")

        adapter = _adapter(handler)

        with pytest.raises(BackendTransportError):
            await adapter.invoke(
                GenerationRequest(model="sdxl", prompt="cat"), registry.get(Modality.IMAGE)
            )

    @pytest.mark.asyncio
    async def test_connection_failure_is_a_transport_fault(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        adapter = _adapter(handler)

        with pytest.raises(BackendTransportError, match="ConnectError"):
            await adapter.invoke(
                GenerationRequest(model="sdxl", prompt="cat"), registry.get(Modality.IMAGE)
            )

    @pytest.mark.asyncio
    async def test_transcription_uploads_multipart(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True, "text": "hello world"})

        adapter = _adapter(handler)
        request = GenerationRequest(model="whisper-large", audio=b"RIFFDATA", audio_filename="clip.wav")
        response = await adapter.invoke(request, registry.get(Modality.AUDIO_STT))

        assert response.data == "hello world"
        assert seen[0].url.path == "/functions/v1/huggingface-audio"
        assert seen[0].headers["content-type"].startswith("multipart/form-data")
        body = seen[0].content
        assert b'filename="clip.wav"' in body
        assert b"RIFFDATA" in body
        assert b"whisper-large" in body

    @pytest.mark.asyncio
    async def test_health_check(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "OPTIONS"
            return httpx.Response(204)

        assert await _adapter(handler).health_check()


class TestCreateAdapter:
    def test_backend_selection(self) -> None:
        assert isinstance(create_adapter(_settings(backend="edge")), EdgeFunctionAdapter)
        assert isinstance(create_adapter(_settings(backend="huggingface")), HuggingFaceAdapter)
