from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Tuple

from lessonhub.logging import get_logger
from lessonhub.service.errors import NotFoundError, ValidationError
from lessonhub.service.llm import TutorLLM
from lessonhub.service.recommend import recommend
from lessonhub.storage.errors import ConstraintViolation
from lessonhub.storage.models import Lesson, Question, User

logger = get_logger(__name__)

RECENT_QUESTIONS_ON_LESSON = 5


class LessonStore(Protocol):
    def get_user(self, user_id: str) -> Optional[User]: ...

    def create_lesson(self, title: str, content: str) -> Lesson: ...

    def get_lesson(self, lesson_id: str) -> Optional[Lesson]: ...

    def all_lessons(self) -> List[Lesson]: ...

    def list_lessons(
        self, *, search: Optional[str] = None, offset: int = 0, limit: int = 10
    ) -> Tuple[List[Lesson], int]: ...

    def create_question(
        self, lesson_id: str, user_id: str, question: str, answer: str
    ) -> Question: ...

    def list_questions(
        self, lesson_id: str, *, offset: int = 0, limit: int = 10
    ) -> Tuple[List[Question], int]: ...


@dataclass
class Page:
    data: List[Any]
    current_page: int
    per_page: int
    total: int
    last_page: int = field(init=False)

    def __post_init__(self) -> None:
        self.last_page = max(1, math.ceil(self.total / self.per_page))


@dataclass
class LessonDetail:
    lesson: Lesson
    recent_questions: List[Tuple[Question, Optional[User]]]


class LessonService:
    """Lesson catalogue, Q&A history, AI answers and recommendations."""

    def __init__(self, store: LessonStore, llm: TutorLLM) -> None:
        self.store = store
        self.llm = llm

    def create_lesson(self, title: str, content: str, *, created_by: str) -> Lesson:
        try:
            lesson = self.store.create_lesson(title, content)
        except ConstraintViolation as exc:
            logger.info("lesson_validation_failed", admin_id=created_by, detail=exc.detail)
            field_name = exc.detail.get("field", "title")
            raise ValidationError(
                "Validation failed", errors={field_name: [exc.message]}
            ) from exc
        logger.info("lesson_created", lesson_id=lesson.id, admin_id=created_by)
        return lesson

    def list_lessons(
        self, *, search: Optional[str] = None, page: int = 1, per_page: int = 10
    ) -> Page:
        lessons, total = self.store.list_lessons(
            search=search, offset=(page - 1) * per_page, limit=per_page
        )
        return Page(data=lessons, current_page=page, per_page=per_page, total=total)

    def get_lesson(self, lesson_id: str) -> Lesson:
        lesson = self.store.get_lesson(lesson_id)
        if not lesson:
            raise NotFoundError("Lesson not found.")
        return lesson

    def lesson_detail(self, lesson_id: str) -> LessonDetail:
        lesson = self.get_lesson(lesson_id)
        recent, _ = self.store.list_questions(
            lesson_id, limit=RECENT_QUESTIONS_ON_LESSON
        )
        return LessonDetail(
            lesson=lesson,
            recent_questions=[(q, self.store.get_user(q.user_id)) for q in recent],
        )

    def _require_lesson(self, lesson_id: str) -> Lesson:
        lesson = self.store.get_lesson(lesson_id)
        if not lesson:
            raise ValidationError(
                "Validation failed",
                errors={"lesson_id": ["The selected lesson id is invalid."]},
            )
        return lesson

    def save_question(
        self, lesson_id: str, user_id: str, question: str, answer: str
    ) -> Question:
        self._require_lesson(lesson_id)
        record = self.store.create_question(lesson_id, user_id, question, answer)
        logger.info("question_saved", question_id=record.id, lesson_id=lesson_id, user_id=user_id)
        return record

    def question_history(
        self, lesson_id: str, *, page: int = 1, per_page: int = 10
    ) -> Page:
        records, total = self.store.list_questions(
            lesson_id, offset=(page - 1) * per_page, limit=per_page
        )
        data = [(q, self.store.get_user(q.user_id)) for q in records]
        return Page(data=data, current_page=page, per_page=per_page, total=total)

    async def ask(self, lesson_id: str, user_id: str, question: str) -> Question:
        """Answer ``question`` from the lesson content and keep the exchange."""
        lesson = self._require_lesson(lesson_id)
        answer = await self.llm.answer(lesson.content, question, user_id=user_id)
        return self.save_question(lesson.id, user_id, question, answer)

    def recommend(self, question: str) -> List[Lesson]:
        return recommend(question, self.store.all_lessons())
