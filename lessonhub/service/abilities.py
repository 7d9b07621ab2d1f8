from __future__ import annotations

from typing import Iterable, Tuple

from lessonhub.logging import get_logger
from lessonhub.service.errors import ForbiddenError

logger = get_logger(__name__)

WILDCARD = "*"
LESSON_READ = "lesson:read"
LESSON_CREATE = "lesson:create"
QUESTION_CREATE = "question:create"

_ROLE_ABILITIES: dict[str, Tuple[str, ...]] = {
    "admin": (WILDCARD,),
    "student": (LESSON_READ, QUESTION_CREATE),
}

FORBIDDEN_MESSAGE = "You do not have the required permissions for this action."


def capabilities_for(role: str) -> Tuple[str, ...]:
    """Abilities granted to a token issued for ``role``.

    Evaluated once at issuance and frozen on the token, so a later role change
    does not widen or narrow tokens already handed out. Unknown roles get
    nothing.
    """
    return _ROLE_ABILITIES.get(role, ())


def token_can(abilities: Iterable[str], required: str) -> bool:
    """Exact match or wildcard; ``lesson`` does not satisfy ``lesson:read``."""
    granted = set(abilities)
    return WILDCARD in granted or required in granted


def ensure_ability(abilities: Iterable[str], required: str, *, user_id: str | None = None) -> None:
    if not token_can(abilities, required):
        logger.info("ability_denied", user_id=user_id, required=required)
        raise ForbiddenError(FORBIDDEN_MESSAGE)
