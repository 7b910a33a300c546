"""Tests for the OpenAI and Gemini judges against a mocked HTTP transport."""

from __future__ import annotations

import json

import httpx
import pytest

from consensus_judge.providers.gemini_judge import GeminiJudge
from consensus_judge.providers.openai_judge import OpenAIJudge


class _Recorder:
    """MockTransport handler replaying queued responses and recording requests."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses[min(len(self.requests), len(self.responses)) - 1]

    @property
    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


def _openai_body(text: str) -> dict:
    return {
        "choices": [{"message": {"role": "assistant", "content": text}}],
        "usage": {"prompt_tokens": 1200, "completion_tokens": 300},
    }


def _gemini_body(text: str) -> dict:
    return {
        "candidates": [{"content": {"parts": [{"text": text}], "role": "model"}}],
        "usageMetadata": {"promptTokenCount": 900, "candidatesTokenCount": 250},
    }


class TestOpenAIJudge:
    @pytest.mark.asyncio
    async def test_request_shape_and_usage(self, make_config, sample_request, payload):
        """Chat Completions payload carries model, JSON mode and bearer auth; usage is read back."""
        recorder = _Recorder(httpx.Response(200, json=_openai_body(payload(4.5))))
        judge = OpenAIJudge(
            make_config("gpt", kind="openai", model="gpt-4o", extra={"seed": 7}),
            api_key="sk-test",
            transport=httpx.MockTransport(recorder),
        )

        result = await judge.evaluate(sample_request)
        await judge.aclose()

        assert result.success is True
        assert result.scores["total_score"] == pytest.approx(4.5)
        assert result.usage["input_tokens"] == 1200
        assert result.usage["output_tokens"] == 300
        request = recorder.requests[0]
        assert str(request.url) == "https://api.openai.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        body = recorder.last_json
        assert body["model"] == "gpt-4o"
        assert body["response_format"] == {"type": "json_object"}
        assert [m["role"] for m in body["messages"]] == ["system", "user"]
        assert body["seed"] == 7

    @pytest.mark.asyncio
    async def test_custom_endpoint(self, make_config, sample_request, payload):
        recorder = _Recorder(httpx.Response(200, json=_openai_body(payload())))
        judge = OpenAIJudge(
            make_config("local", kind="openai", endpoint="http://localhost:8080/v1/chat/completions"),
            api_key="k",
            transport=httpx.MockTransport(recorder),
        )
        await judge.evaluate(sample_request)
        assert recorder.requests[0].url.host == "localhost"

    @pytest.mark.asyncio
    async def test_server_error_then_success(self, make_config, sample_request, payload, telemetry):
        """A 500 is retried and the second response is used."""
        recorder = _Recorder(
            httpx.Response(500, text="upstream overloaded"),
            httpx.Response(200, json=_openai_body(payload())),
        )
        judge = OpenAIJudge(
            make_config("gpt", kind="openai", max_attempts=3),
            api_key="k",
            telemetry=telemetry,
            transport=httpx.MockTransport(recorder),
        )

        result = await judge.evaluate(sample_request)

        assert result.success is True
        assert result.attempts == 2
        assert len(recorder.requests) == 2
        failed = telemetry.named("provider.attempt_failed")[0]
        assert failed["data"]["status_code"] == 500

    @pytest.mark.asyncio
    async def test_bad_request_not_retried(self, make_config, sample_request):
        """A 400 fails on the first call."""
        recorder = _Recorder(httpx.Response(400, json={"error": {"message": "bad model"}}))
        judge = OpenAIJudge(
            make_config("gpt", kind="openai", max_attempts=3),
            api_key="k",
            transport=httpx.MockTransport(recorder),
        )

        result = await judge.evaluate(sample_request)

        assert result.success is False
        assert result.error["status_code"] == 400
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_missing_choices_is_parse_error(self, make_config, sample_request):
        recorder = _Recorder(httpx.Response(200, json={"choices": []}))
        judge = OpenAIJudge(
            make_config("gpt", kind="openai"), api_key="k", transport=httpx.MockTransport(recorder)
        )
        result = await judge.evaluate(sample_request)
        assert result.error["kind"] == "parse"

    @pytest.mark.asyncio
    async def test_non_json_body_is_parse_error(self, make_config, sample_request):
        recorder = _Recorder(httpx.Response(200, text="<html>gateway</html>"))
        judge = OpenAIJudge(
            make_config("gpt", kind="openai"), api_key="k", transport=httpx.MockTransport(recorder)
        )
        result = await judge.evaluate(sample_request)
        assert result.error["kind"] == "parse"

    @pytest.mark.asyncio
    async def test_transport_error_retried(self, make_config, sample_request, payload):
        """httpx transport errors are retried."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json=_openai_body(payload()))

        judge = OpenAIJudge(
            make_config("gpt", kind="openai", max_attempts=2),
            api_key="k",
            transport=httpx.MockTransport(handler),
        )
        result = await judge.evaluate(sample_request)
        assert result.success is True
        assert len(calls) == 2


class TestGeminiJudge:
    @pytest.mark.asyncio
    async def test_request_shape_and_usage(self, make_config, sample_request, payload):
        """generateContent payload asks for JSON; usageMetadata is read back."""
        recorder = _Recorder(httpx.Response(200, json=_gemini_body(payload(3.0))))
        judge = GeminiJudge(
            make_config("gemini", kind="gemini", model="gemini-2.5-flash", temperature=0.2),
            api_key="g-key",
            transport=httpx.MockTransport(recorder),
        )

        result = await judge.evaluate(sample_request)

        assert result.success is True
        assert result.scores["total_score"] == pytest.approx(3.0)
        assert result.usage["input_tokens"] == 900
        assert result.usage["output_tokens"] == 250
        request = recorder.requests[0]
        assert request.url.path == "/v1beta/models/gemini-2.5-flash:generateContent"
        assert request.headers["x-goog-api-key"] == "g-key"
        assert "key" not in request.url.params
        body = recorder.last_json
        assert body["generationConfig"]["temperature"] == 0.2
        assert body["generationConfig"]["responseMimeType"] == "application/json"
        assert "Rubric (version 1.0)" in body["systemInstruction"]["parts"][0]["text"]
        assert body["contents"][0]["role"] == "user"

    @pytest.mark.asyncio
    async def test_joins_text_parts(self, make_config, sample_request, payload):
        text = payload()
        half = len(text) // 2
        body = {"candidates": [{"content": {"parts": [{"text": text[:half]}, {"text": text[half:]}]}}]}
        judge = GeminiJudge(
            make_config("gemini", kind="gemini"),
            api_key="k",
            transport=httpx.MockTransport(_Recorder(httpx.Response(200, json=body))),
        )
        result = await judge.evaluate(sample_request)
        assert result.success is True
        assert result.usage["input_tokens"] == 0

    @pytest.mark.asyncio
    async def test_blocked_prompt_reports_reason(self, make_config, sample_request):
        """A prompt blocked by safety filters surfaces the block reason."""
        body = {"promptFeedback": {"blockReason": "SAFETY"}}
        judge = GeminiJudge(
            make_config("gemini", kind="gemini"),
            api_key="k",
            transport=httpx.MockTransport(_Recorder(httpx.Response(200, json=body))),
        )
        result = await judge.evaluate(sample_request)
        assert result.success is False
        assert result.error["kind"] == "parse"
        assert "blocked: SAFETY" in result.error["message"]

    @pytest.mark.asyncio
    async def test_rate_limit_retried(self, make_config, sample_request, payload):
        """A 429 from Gemini backs off and retries."""
        recorder = _Recorder(
            httpx.Response(429, json={"error": {"status": "RESOURCE_EXHAUSTED"}}),
            httpx.Response(200, json=_gemini_body(payload())),
        )
        judge = GeminiJudge(
            make_config("gemini", kind="gemini", max_attempts=2),
            api_key="k",
            transport=httpx.MockTransport(recorder),
        )
        result = await judge.evaluate(sample_request)
        assert result.success is True
        assert result.attempts == 2
