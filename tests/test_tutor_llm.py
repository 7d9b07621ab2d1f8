"""Tests for the chat-completions client behind AI answers."""

import json

import httpx
import pytest

from lessonhub.service.errors import UpstreamError
from lessonhub.service.llm import FAILED_RESPONSE_MESSAGE, SYSTEM_PROMPT, TutorLLM

LESSON = "Fractions describe parts of a whole, written as a numerator over a denominator."


def _completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _llm(handler, **kwargs):
    return TutorLLM(
        api_key="sk-test",
        base_url="https://llm.example.test/v1",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestPlaceholderMode:
    async def test_answer_without_key(self):
        llm = TutorLLM(api_key=None)

        answer = await llm.answer(LESSON, "What is a numerator?")

        assert not llm.is_configured
        assert answer.startswith("[offline tutor] What is a numerator?")
        assert "Fractions describe parts" in answer


class TestProviderCalls:
    async def test_request_shape(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_completion("  The top number.  "))

        llm = _llm(handler)
        try:
            answer = await llm.answer(LESSON, "What is a numerator?", user_id="u1")
        finally:
            await llm.close()

        assert answer == "The top number."
        assert seen["url"] == "https://llm.example.test/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        body = seen["body"]
        assert body["model"] == "gpt-3.5-turbo"
        assert body["max_tokens"] == 150
        assert body["temperature"] == 0.7
        assert body["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}
        assert LESSON in body["messages"][1]["content"]
        assert "What is a numerator?" in body["messages"][1]["content"]

    async def test_provider_error_status(self):
        def handler(request):
            return httpx.Response(500, json={"error": {"message": "boom"}})

        llm = _llm(handler)
        with pytest.raises(UpstreamError) as excinfo:
            await llm.answer(LESSON, "q")
        await llm.close()

        assert excinfo.value.status_code == 502
        assert excinfo.value.message == FAILED_RESPONSE_MESSAGE

    async def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        llm = _llm(handler)
        with pytest.raises(UpstreamError):
            await llm.answer(LESSON, "q")
        await llm.close()

    async def test_malformed_payload(self):
        def handler(request):
            return httpx.Response(200, json={"unexpected": True})

        llm = _llm(handler)
        with pytest.raises(UpstreamError):
            await llm.answer(LESSON, "q")
        await llm.close()

    async def test_non_json_payload(self):
        def handler(request):
            return httpx.Response(200, text="<html>gateway</html>")

        llm = _llm(handler)
        with pytest.raises(UpstreamError):
            await llm.answer(LESSON, "q")
        await llm.close()
