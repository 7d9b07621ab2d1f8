from __future__ import annotations

import hashlib
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Tuple

ROLES = ("admin", "student")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def hash_token(plaintext: str) -> str:
    """Digest under which a bearer token is stored and looked up."""
    return hashlib.sha256(plaintext.encode()).hexdigest()


@dataclass
class User:
    id: str
    name: str
    email: str
    role: str = "student"
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class AccessToken:
    id: str
    user_id: str
    token_hash: str
    abilities: Tuple[str, ...]
    created_at: datetime
    last_used_at: Optional[datetime] = None

    @classmethod
    def new(
        cls,
        user_id: str,
        abilities: Tuple[str, ...],
        *,
        created_at: Optional[datetime] = None,
    ) -> tuple["AccessToken", str]:
        """Build a token record plus the plaintext value handed to the client.

        Only the digest is kept on the record; the plaintext cannot be
        recovered from the store.
        """
        plaintext = secrets.token_urlsafe(40)
        token = cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token_hash=hash_token(plaintext),
            abilities=tuple(abilities),
            created_at=created_at or utcnow(),
        )
        return token, plaintext


@dataclass
class Lesson:
    id: str
    title: str
    content: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Question:
    id: str
    lesson_id: str
    user_id: str
    question: str
    answer: str
    created_at: datetime = field(default_factory=utcnow)
