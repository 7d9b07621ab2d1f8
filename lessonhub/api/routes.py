from __future__ import annotations

from typing import Callable, Optional

from fastapi import APIRouter, Depends, Header, Query, Request

from lessonhub.api.schemas import (
    AskRequest,
    LessonCreateRequest,
    LessonCreatedResponse,
    LessonDetailResponse,
    LessonResponse,
    LoginRequest,
    MessageResponse,
    PaginatedResponse,
    QuestionCreateRequest,
    QuestionResponse,
    QuestionSavedResponse,
    RecommendationResponse,
    RecommendRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
    UserSummary,
)
from lessonhub.service.abilities import LESSON_CREATE, LESSON_READ, QUESTION_CREATE
from lessonhub.service.auth import AuthContext
from lessonhub.service.errors import AuthenticationError
from lessonhub.service.lessons import Page
from lessonhub.service.runtime import get_runtime

router = APIRouter(prefix="/api")


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def get_principal(authorization: Optional[str] = Header(None)) -> AuthContext:
    """Resolve the bearer token into an :class:`AuthContext` or fail with 401."""
    runtime = get_runtime()
    return runtime.auth.authenticate(authorization)


def require_ability(ability: str) -> Callable[..., AuthContext]:
    """Dependency factory: authenticate, then check the token grants ``ability``."""

    async def _dependency(principal: AuthContext = Depends(get_principal)) -> AuthContext:
        get_runtime().auth.authorize(principal, ability)
        return principal

    return _dependency


def _question_page(page: Page) -> PaginatedResponse:
    items = [QuestionResponse.from_question(q, user) for q, user in page.data]
    return PaginatedResponse.from_page(page, items)


@router.post("/register", response_model=TokenResponse, status_code=201, tags=["auth"])
async def register(body: RegisterRequest, request: Request):
    """Create an account and sign it in.

    Raises:
        403: If ``role=admin`` is requested while admin signup is disabled
        409: If the email is already registered
    """
    runtime = get_runtime()
    user, plaintext = runtime.auth.register(
        body.name,
        body.email,
        body.password,
        role=body.role,
        ip_addr=_client_ip(request),
    )
    return TokenResponse(access_token=plaintext, user=UserSummary.from_user(user))


@router.post("/login", response_model=TokenResponse, tags=["auth"])
async def login(body: LoginRequest, request: Request):
    """Exchange email and password for a bearer token.

    Issuing a token past the per-account cap evicts the oldest sessions.

    Raises:
        401: If the email is unknown or the password is wrong (same body for both)
    """
    runtime = get_runtime()
    user, plaintext = runtime.auth.login(
        body.email, body.password, ip_addr=_client_ip(request)
    )
    return TokenResponse(access_token=plaintext, user=UserSummary.from_user(user))


@router.post("/logout", response_model=MessageResponse, tags=["auth"])
async def logout(request: Request, principal: AuthContext = Depends(get_principal)):
    """Revoke every token held by the caller, on all devices."""
    runtime = get_runtime()
    runtime.auth.logout(principal, ip_addr=_client_ip(request))
    return MessageResponse(message="Successfully logged out")


@router.get("/me", response_model=UserResponse, tags=["auth"])
async def me(principal: AuthContext = Depends(get_principal)):
    runtime = get_runtime()
    user = runtime.store.get_user(principal.user_id)
    if not user:
        raise AuthenticationError("Invalid token")
    return UserResponse.from_user(user)


@router.post(
    "/lessons", response_model=LessonCreatedResponse, status_code=201, tags=["lessons"]
)
async def create_lesson(
    body: LessonCreateRequest,
    principal: AuthContext = Depends(require_ability(LESSON_CREATE)),
):
    """Add a lesson to the catalogue. Titles are unique."""
    runtime = get_runtime()
    lesson = runtime.lessons.create_lesson(
        body.title, body.content, created_by=principal.user_id
    )
    return LessonCreatedResponse(lesson=LessonResponse.from_lesson(lesson))


@router.get("/lessons", response_model=PaginatedResponse, tags=["lessons"])
async def list_lessons(
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=50),
    principal: AuthContext = Depends(require_ability(LESSON_READ)),
):
    """List lessons newest first, optionally filtered by title or content."""
    runtime = get_runtime()
    result = runtime.lessons.list_lessons(search=search, page=page, per_page=per_page)
    items = [LessonResponse.from_lesson(lesson) for lesson in result.data]
    return PaginatedResponse.from_page(result, items)


@router.get("/lessons/{lesson_id}", response_model=LessonDetailResponse, tags=["lessons"])
async def show_lesson(
    lesson_id: str,
    principal: AuthContext = Depends(require_ability(LESSON_READ)),
):
    """Return a lesson with its five most recent questions.

    Raises:
        404: If the lesson does not exist
    """
    runtime = get_runtime()
    return LessonDetailResponse.from_detail(runtime.lessons.lesson_detail(lesson_id))


@router.get(
    "/lessons/{lesson_id}/questions", response_model=PaginatedResponse, tags=["lessons"]
)
async def lesson_questions(
    lesson_id: str,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=50),
    principal: AuthContext = Depends(require_ability(LESSON_READ)),
):
    runtime = get_runtime()
    return _question_page(
        runtime.lessons.question_history(lesson_id, page=page, per_page=per_page)
    )


@router.post(
    "/questions", response_model=QuestionSavedResponse, status_code=201, tags=["lessons"]
)
async def save_question(
    body: QuestionCreateRequest,
    principal: AuthContext = Depends(require_ability(QUESTION_CREATE)),
):
    """Store a question/answer pair against a lesson."""
    runtime = get_runtime()
    record = runtime.lessons.save_question(
        body.lesson_id, principal.user_id, body.question, body.answer
    )
    user = runtime.store.get_user(principal.user_id)
    return QuestionSavedResponse(
        message="Q&A saved", data=QuestionResponse.from_question(record, user)
    )


@router.post(
    "/ai/answer", response_model=QuestionSavedResponse, status_code=201, tags=["ai"]
)
async def ai_answer(
    body: AskRequest,
    principal: AuthContext = Depends(require_ability(QUESTION_CREATE)),
):
    """Answer a question from the lesson content and record the exchange.

    Raises:
        422: If the lesson does not exist
        502: If the AI provider fails
    """
    runtime = get_runtime()
    record = await runtime.lessons.ask(body.lesson_id, principal.user_id, body.question)
    user = runtime.store.get_user(principal.user_id)
    return QuestionSavedResponse(
        message="AI answer generated and saved",
        data=QuestionResponse.from_question(record, user),
    )


@router.post("/ai/recommend", response_model=RecommendationResponse, tags=["ai"])
async def ai_recommend(
    body: RecommendRequest,
    principal: AuthContext = Depends(require_ability(LESSON_READ)),
):
    """Suggest up to five lessons whose title and content resemble the question."""
    runtime = get_runtime()
    lessons = runtime.lessons.recommend(body.question)
    return RecommendationResponse(
        recommendations=[LessonResponse.from_lesson(lesson) for lesson in lessons]
    )


@router.get("/ai/history/{lesson_id}", response_model=PaginatedResponse, tags=["ai"])
async def ai_history(
    lesson_id: str,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=50),
    principal: AuthContext = Depends(require_ability(LESSON_READ)),
):
    runtime = get_runtime()
    return _question_page(
        runtime.lessons.question_history(lesson_id, page=page, per_page=per_page)
    )
