from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, List, Optional, Protocol

from lessonhub.config import Settings
from lessonhub.logging import get_logger
from lessonhub.service.abilities import capabilities_for
from lessonhub.storage.models import AccessToken, User, hash_token

logger = get_logger(__name__)


class TokenStore(Protocol):
    def get_user(self, user_id: str) -> Optional[User]: ...

    def insert_token(self, token: AccessToken) -> AccessToken: ...

    def find_token(self, token_hash: str) -> Optional[AccessToken]: ...

    def list_tokens(self, user_id: str) -> List[AccessToken]: ...

    def count_tokens(self, user_id: str) -> int: ...

    def touch_token(self, token_id: str, used_at: datetime) -> None: ...

    def delete_token(self, token_id: str) -> bool: ...

    def delete_tokens(
        self, user_id: str, token_ids: Optional[Iterable[str]] = None
    ) -> int: ...

    def delete_tokens_created_before(
        self, cutoff: datetime, *, user_id: Optional[str] = None
    ) -> int: ...


class TokenStatus(str, Enum):
    VALID = "valid"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"


@dataclass
class TokenValidation:
    status: TokenStatus
    token: Optional[AccessToken] = None
    user: Optional[User] = None

    @property
    def is_valid(self) -> bool:
        return self.status is TokenStatus.VALID


class TokenService:
    """Issues, validates and revokes bearer tokens.

    Expiry is enforced lazily: a token older than the TTL is deleted the next
    time it is presented. Issuance for one account is serialized so the
    prune-then-insert step cannot overshoot the session cap; issuance for
    different accounts runs in parallel.
    """

    def __init__(
        self,
        store: TokenStore,
        *,
        ttl: timedelta = timedelta(hours=24),
        max_sessions: int = 5,
        prune_to: int = 4,
    ) -> None:
        if not 0 <= prune_to < max_sessions:
            raise ValueError("prune_to must be >= 0 and lower than max_sessions")
        self.store = store
        self.ttl = ttl
        self.max_sessions = max_sessions
        self.prune_to = prune_to
        self.logger = logger
        self._locks_guard = threading.Lock()
        self._user_locks: dict[str, threading.Lock] = {}

    @classmethod
    def from_settings(cls, store: TokenStore, settings: Settings) -> "TokenService":
        return cls(
            store,
            ttl=timedelta(hours=settings.session_ttl_hours),
            max_sessions=settings.max_sessions_per_user,
            prune_to=settings.session_prune_to,
        )

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = self._user_locks[user_id] = threading.Lock()
            return lock

    def is_expired(self, token: AccessToken, now: Optional[datetime] = None) -> bool:
        return (now or self._now()) - token.created_at >= self.ttl

    def issue(self, user: User) -> tuple[AccessToken, str]:
        """Create a token for ``user`` and enforce the session cap.

        The new token is stored before any surplus is deleted, so the account
        keeps a usable session even if the prune step does not complete.
        """
        with self._user_lock(user.id):
            now = self._now()
            expired = self.store.delete_tokens_created_before(now - self.ttl, user_id=user.id)
            if expired:
                self.logger.info("tokens_expired_on_issue", user_id=user.id, count=expired)
            existing = self.store.list_tokens(user.id)
            token, plaintext = AccessToken.new(
                user.id, capabilities_for(user.role), created_at=now
            )
            self.store.insert_token(token)
            if len(existing) >= self.max_sessions:
                surplus = existing[: len(existing) - self.prune_to]
                pruned = self.store.delete_tokens(user.id, [t.id for t in surplus])
                self.logger.info(
                    "tokens_pruned",
                    user_id=user.id,
                    pruned=pruned,
                    cap=self.max_sessions,
                )
        self.logger.info(
            "token_issued",
            user_id=user.id,
            token_id=token.id,
            abilities=list(token.abilities),
        )
        return token, plaintext

    def validate(self, raw_token: Optional[str]) -> TokenValidation:
        if not raw_token:
            return TokenValidation(TokenStatus.NOT_FOUND)
        token = self.store.find_token(hash_token(raw_token))
        if not token:
            return TokenValidation(TokenStatus.NOT_FOUND)
        now = self._now()
        if self.is_expired(token, now):
            self.store.delete_token(token.id)
            self.logger.info(
                "token_expired",
                user_id=token.user_id,
                token_id=token.id,
                created_at=token.created_at.isoformat(),
            )
            return TokenValidation(TokenStatus.EXPIRED, token=token)
        user = self.store.get_user(token.user_id)
        if not user:
            self.logger.warning("token_owner_missing", token_id=token.id, user_id=token.user_id)
            self.store.delete_token(token.id)
            return TokenValidation(TokenStatus.NOT_FOUND)
        self.store.touch_token(token.id, now)
        token.last_used_at = now
        return TokenValidation(TokenStatus.VALID, token=token, user=user)

    def revoke_all(self, user_id: str) -> int:
        with self._user_lock(user_id):
            revoked = self.store.delete_tokens(user_id)
        self.logger.info("tokens_revoked", user_id=user_id, count=revoked)
        return revoked

    def purge_expired(self) -> int:
        """Delete every expired token; optional maintenance outside the request path."""
        purged = self.store.delete_tokens_created_before(self._now() - self.ttl)
        self.logger.info("expired_tokens_purged", count=purged)
        return purged
