from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError

from lessonhub.config import Settings
from lessonhub.logging import get_logger
from lessonhub.service.abilities import ensure_ability, token_can
from lessonhub.service.errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    SessionExpiredError,
    ValidationError,
)
from lessonhub.service.tokens import TokenService, TokenStatus
from lessonhub.storage.errors import ConstraintViolation
from lessonhub.storage.models import ROLES, User

logger = get_logger(__name__)

PASSWORD_ALGO = "argon2id"
INVALID_CREDENTIALS_MESSAGE = "The provided credentials are incorrect."


class AuthStore(Protocol):
    def create_user(self, name: str, email: str, *, role: str = "student") -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None: ...

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]: ...


@dataclass
class AuthContext:
    user_id: str
    role: str
    token_id: str
    abilities: Tuple[str, ...]

    def can(self, ability: str) -> bool:
        return token_can(self.abilities, ability)


class AuthService:
    """Credential checks plus the bearer-token request chain."""

    def __init__(self, store: AuthStore, tokens: TokenService, settings: Settings) -> None:
        self.store: AuthStore = store
        self.tokens = tokens
        self.settings = settings
        self.logger = logger
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        # Verified against when the email is unknown so both failure paths cost the same
        self._dummy_hash = self._pwd_hasher.hash(secrets.token_urlsafe(16))

    def _hash_password(self, password: str) -> Tuple[str, str]:
        return self._pwd_hasher.hash(password), PASSWORD_ALGO

    def _check_hash(self, stored_hash: str, password: str) -> bool:
        try:
            return self._pwd_hasher.verify(stored_hash, password)
        except (InvalidHash, VerificationError):
            return False

    def save_password(self, user_id: str, password: str) -> None:
        pwd_hash, algo = self._hash_password(password)
        self.store.save_password(user_id, pwd_hash, algo)

    def verify_password(self, user_id: str, password: str) -> bool:
        """Verify a user's password against the stored hash."""
        record = self.store.get_password_record(user_id)
        if not record:
            self.logger.warning("password_record_missing", user_id=user_id)
            self._check_hash(self._dummy_hash, password)
            return False
        stored_hash, algo = record
        if algo != PASSWORD_ALGO:
            self.logger.warning("password_algo_mismatch", user_id=user_id, algo=algo)
            self._check_hash(self._dummy_hash, password)
            return False
        return self._check_hash(stored_hash, password)

    def verify_credentials(
        self, email: str, password: str, *, ip_addr: Optional[str] = None
    ) -> User:
        """Return the account for a correct email/password pair.

        Unknown email and wrong password raise the same error so the response
        cannot be used to enumerate accounts.
        """
        user = self.store.get_user_by_email(email)
        if user is None:
            self._check_hash(self._dummy_hash, password)
            verified = False
        else:
            verified = self.verify_password(user.id, password)
        if not verified:
            self.logger.warning("failed_login_attempt", identifier=email, ip=ip_addr)
            raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE)
        return user

    def register(
        self,
        name: str,
        email: str,
        password: str,
        *,
        role: Optional[str] = None,
        ip_addr: Optional[str] = None,
    ) -> tuple[User, str]:
        role = role or "student"
        if role not in ROLES:
            raise ValidationError(
                "The given data was invalid.",
                errors={"role": ["The selected role is invalid."]},
            )
        if role == "admin" and not self.settings.allow_admin_signup:
            self.logger.warning("admin_signup_rejected", identifier=email, ip=ip_addr)
            raise ForbiddenError("Admin accounts cannot be self-registered.")
        try:
            user = self.store.create_user(name, email, role=role)
        except ConstraintViolation as exc:
            raise ConflictError(
                "The email has already been taken.",
                errors={"email": ["The email has already been taken."]},
            ) from exc
        self.save_password(user.id, password)
        _, plaintext = self.tokens.issue(user)
        self.logger.info("user_registered", user_id=user.id, role=user.role, ip=ip_addr)
        return user, plaintext

    def login(
        self, email: str, password: str, *, ip_addr: Optional[str] = None
    ) -> tuple[User, str]:
        user = self.verify_credentials(email, password, ip_addr=ip_addr)
        _, plaintext = self.tokens.issue(user)
        self.logger.info("user_logged_in", user_id=user.id, ip=ip_addr)
        return user, plaintext

    def logout(self, ctx: AuthContext, *, ip_addr: Optional[str] = None) -> int:
        """Revoke every token of the caller (all devices)."""
        revoked = self.tokens.revoke_all(ctx.user_id)
        self.logger.info("user_logged_out", user_id=ctx.user_id, revoked=revoked, ip=ip_addr)
        return revoked

    def authenticate(self, authorization: Optional[str]) -> AuthContext:
        raw = self._extract_bearer(authorization)
        if not raw:
            raise AuthenticationError("No token provided")
        result = self.tokens.validate(raw)
        if result.status is TokenStatus.EXPIRED:
            raise SessionExpiredError("Token has expired")
        if not result.is_valid:
            raise AuthenticationError("Invalid token")
        token, user = result.token, result.user
        return AuthContext(
            user_id=user.id,
            role=user.role,
            token_id=token.id,
            abilities=token.abilities,
        )

    def authorize(self, ctx: AuthContext, ability: str) -> None:
        ensure_ability(ctx.abilities, ability, user_id=ctx.user_id)

    def _extract_bearer(self, header: Optional[str]) -> Optional[str]:
        if not header:
            return None
        lower = header.lower()
        if not lower.startswith("bearer "):
            return None
        token = header.split(" ", 1)[1].strip()
        return token or None
