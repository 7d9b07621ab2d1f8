from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from lessonhub.service.lessons import LessonDetail, Page
from lessonhub.storage.models import Lesson, Question, User


def _normalize_unicode(value: str) -> str:
    """Strip zero-width characters and apply NFKC normalization."""
    zero_width = "\u200b\u200c\u200d\ufeff"
    cleaned = "".join(c for c in value if c not in zero_width)
    return unicodedata.normalize("NFKC", cleaned)


class ErrorBody(BaseModel):
    """Error payload: ``{message, status}`` plus per-field ``errors`` on validation failures."""

    message: str
    errors: Optional[Any] = None
    status: Optional[int] = None


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    normalized = _normalize_unicode(value.strip().lower())
    if len(normalized) > 255:
        raise ValueError("email address too long")
    if len(normalized) < 3:
        raise ValueError("email address too short")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64:
        raise ValueError("email local part too long")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


PASSWORD_RULE_MESSAGE = (
    "Password must contain at least one uppercase letter, one lowercase letter, and one number."
)


def validate_password_strength(value: str) -> str:
    if len(value) < 8:
        raise ValueError("password must be at least 8 characters")
    if len(value) > 128:
        raise ValueError("password must be at most 128 characters")
    if not (
        re.search(r"[a-z]", value)
        and re.search(r"[A-Z]", value)
        and re.search(r"[0-9]", value)
    ):
        raise ValueError(PASSWORD_RULE_MESSAGE)
    return value


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str
    password: str
    role: Optional[Literal["admin", "student"]] = None

    @field_validator("email")
    @classmethod
    def _validate_register_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return validate_password_strength(value)


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: str) -> str:
        return _validate_email(value)


class UserSummary(BaseModel):
    id: str
    name: str
    email: str
    role: str

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(id=user.id, name=user.name, email=user.email, role=user.role)


class UserResponse(UserSummary):
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            created_at=user.created_at,
        )


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    user: UserSummary


class MessageResponse(BaseModel):
    message: str


class LessonCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=50, max_length=65536)

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("title must not be blank")
        return stripped


class LessonResponse(BaseModel):
    id: str
    title: str
    content: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_lesson(cls, lesson: Lesson) -> "LessonResponse":
        return cls(
            id=lesson.id,
            title=lesson.title,
            content=lesson.content,
            created_at=lesson.created_at,
            updated_at=lesson.updated_at,
        )


class LessonCreatedResponse(BaseModel):
    message: str = "Lesson created successfully"
    lesson: LessonResponse


class AskerSummary(BaseModel):
    id: str
    name: str


class QuestionResponse(BaseModel):
    id: str
    lesson_id: str
    user_id: str
    question: str
    answer: str
    created_at: datetime
    user: Optional[AskerSummary] = None

    @classmethod
    def from_question(
        cls, record: Question, user: Optional[User] = None
    ) -> "QuestionResponse":
        return cls(
            id=record.id,
            lesson_id=record.lesson_id,
            user_id=record.user_id,
            question=record.question,
            answer=record.answer,
            created_at=record.created_at,
            user=AskerSummary(id=user.id, name=user.name) if user else None,
        )


class LessonDetailResponse(LessonResponse):
    questions: List[QuestionResponse] = Field(default_factory=list)

    @classmethod
    def from_detail(cls, detail: LessonDetail) -> "LessonDetailResponse":
        lesson = detail.lesson
        return cls(
            id=lesson.id,
            title=lesson.title,
            content=lesson.content,
            created_at=lesson.created_at,
            updated_at=lesson.updated_at,
            questions=[
                QuestionResponse.from_question(q, user)
                for q, user in detail.recent_questions
            ],
        )


class PaginatedResponse(BaseModel):
    data: List[Any]
    current_page: int
    per_page: int
    total: int
    last_page: int

    @classmethod
    def from_page(cls, page: Page, items: List[Any]) -> "PaginatedResponse":
        return cls(
            data=items,
            current_page=page.current_page,
            per_page=page.per_page,
            total=page.total,
            last_page=page.last_page,
        )


class QuestionCreateRequest(BaseModel):
    lesson_id: str = Field(..., min_length=1, max_length=64)
    question: str = Field(..., min_length=1, max_length=65536)
    answer: str = Field(..., min_length=1, max_length=65536)


class QuestionSavedResponse(BaseModel):
    message: str
    data: QuestionResponse


class AskRequest(BaseModel):
    lesson_id: str = Field(..., min_length=1, max_length=64)
    question: str = Field(..., min_length=1, max_length=4000)


class RecommendRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=4000)


class RecommendationResponse(BaseModel):
    recommendations: List[LessonResponse]
