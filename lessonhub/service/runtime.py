from __future__ import annotations

import threading

from lessonhub.config import get_settings, reset_settings_cache
from lessonhub.logging import get_logger
from lessonhub.service.auth import AuthService
from lessonhub.service.lessons import LessonService
from lessonhub.service.llm import TutorLLM
from lessonhub.service.tokens import TokenService
from lessonhub.storage.memory import MemoryStore

logger = get_logger(__name__)


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            persistent_store=bool(self.settings.state_root),
            test_mode=self.settings.test_mode,
        )
        try:
            self.store = MemoryStore(fs_root=self.settings.state_root)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.tokens = TokenService.from_settings(self.store, self.settings)
        self.auth = AuthService(self.store, self.tokens, self.settings)
        self.llm = TutorLLM(
            api_key=self.settings.openai_api_key,
            base_url=self.settings.openai_base_url,
            model=self.settings.openai_model,
            max_tokens=self.settings.ai_max_tokens,
            temperature=self.settings.ai_temperature,
            timeout_seconds=self.settings.ai_timeout_seconds,
        )
        self.lessons = LessonService(self.store, self.llm)

        logger.info(
            "runtime_initialized",
            session_ttl_hours=self.settings.session_ttl_hours,
            max_sessions_per_user=self.settings.max_sessions_per_user,
            session_prune_to=self.settings.session_prune_to,
            ai_configured=self.llm.is_configured,
        )

    async def close(self) -> None:
        await self.llm.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
