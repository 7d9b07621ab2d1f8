from __future__ import annotations

from typing import List, Optional

import httpx

from lessonhub.logging import get_logger
from lessonhub.service.errors import UpstreamError

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful teaching assistant. Answer questions about the lesson "
    "content clearly and concisely."
)
FAILED_RESPONSE_MESSAGE = "Failed to get AI response"


class TutorLLM:
    """Answers lesson questions through an OpenAI-compatible chat completions API.

    Without an API key the service runs in placeholder mode and returns a
    deterministic answer so local setups and tests work offline.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-3.5-turbo",
        max_tokens: int = 150,
        temperature: float = 0.7,
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout_seconds, connect=10.0),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def build_messages(self, lesson_content: str, question: str) -> List[dict]:
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": f"Lesson: {lesson_content}\n\nQuestion: {question}"},
        ]

    async def answer(
        self, lesson_content: str, question: str, *, user_id: Optional[str] = None
    ) -> str:
        if not self.is_configured:
            logger.warning("ai_answer_no_api_key", user_id=user_id)
            return self._placeholder_answer(lesson_content, question)

        payload = {
            "model": self.model,
            "messages": self.build_messages(lesson_content, question),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        try:
            client = await self._get_client()
            response = await client.post("/chat/completions", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "ai_answer_failed",
                user_id=user_id,
                status_code=e.response.status_code,
                error_body=e.response.text[:500],
                model=self.model,
            )
            raise UpstreamError(FAILED_RESPONSE_MESSAGE) from e
        except httpx.TimeoutException as e:
            logger.error("ai_answer_timeout", user_id=user_id, model=self.model, error=str(e))
            raise UpstreamError(FAILED_RESPONSE_MESSAGE) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "ai_answer_failed",
                user_id=user_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise UpstreamError(FAILED_RESPONSE_MESSAGE) from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            logger.error("ai_answer_malformed", user_id=user_id, model=self.model)
            raise UpstreamError(FAILED_RESPONSE_MESSAGE) from e
        answer = (content or "").strip()
        logger.info("ai_answer_generated", user_id=user_id, answer_length=len(answer))
        return answer

    def _placeholder_answer(self, lesson_content: str, question: str) -> str:
        excerpt = " ".join(lesson_content.split()[:20])
        return f"[offline tutor] {question.strip()} -- see lesson: {excerpt}"
