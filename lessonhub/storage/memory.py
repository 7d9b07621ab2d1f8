from __future__ import annotations

import json
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from lessonhub.logging import get_logger
from lessonhub.storage.errors import ConstraintViolation, StoreError
from lessonhub.storage.models import AccessToken, Lesson, Question, User


class MemoryStore:
    """In-process store for accounts, tokens, lessons and questions.

    Every map is guarded by one re-entrant lock. When ``fs_root`` is given the
    whole state is snapshotted to ``<fs_root>/state/store.json`` after each
    mutation and reloaded on construction. A mutation whose snapshot write
    fails is rolled back, so memory never runs ahead of disk.
    """

    def __init__(self, fs_root: Optional[str] = None) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.credentials: Dict[str, tuple[str, str]] = {}
        # token_hash -> token; the hash is the lookup key for bearer validation
        self.tokens: Dict[str, AccessToken] = {}
        # token_id -> token_hash
        self._token_ids: Dict[str, str] = {}
        self.lessons: Dict[str, Lesson] = {}
        self.questions: Dict[str, List[Question]] = {}
        # RLock so helpers can be called while a public method holds it
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root) if fs_root else None
        if self.fs_root is not None:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "store.json"

    @staticmethod
    def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt else None

    @staticmethod
    def _deserialize_datetime(raw: Optional[str]) -> Optional[datetime]:
        return datetime.fromisoformat(raw) if raw else None

    @contextmanager
    def _mutation(self) -> Iterator[None]:
        """Hold the lock across a change and its snapshot write.

        Records are replaced rather than edited in place, so shallow copies
        of the maps are enough to restore the previous state.
        """
        with self._data_lock:
            if self.fs_root is None:
                yield
                return
            saved = (
                dict(self.users),
                dict(self.credentials),
                dict(self.tokens),
                dict(self._token_ids),
                dict(self.lessons),
                {lesson_id: list(records) for lesson_id, records in self.questions.items()},
            )
            try:
                yield
                self._persist_state()
            except StoreError:
                (
                    self.users,
                    self.credentials,
                    self.tokens,
                    self._token_ids,
                    self.lessons,
                    self.questions,
                ) = saved
                raise

    def verify_connection(self) -> None:
        with self._data_lock:
            if self.fs_root is not None and not self.fs_root.is_dir():
                raise StoreError("state directory missing", {"path": str(self.fs_root)})

    # user / auth
    def create_user(self, name: str, email: str, *, role: str = "student") -> User:
        with self._mutation():
            if any(existing.email == email for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User(id=str(uuid.uuid4()), name=name, email=email, role=role)
            self.users[user.id] = user
            return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == email), None)

    def list_users(self, limit: int = 100) -> List[User]:
        with self._data_lock:
            return sorted(self.users.values(), key=lambda u: u.created_at, reverse=True)[:limit]

    def update_user_role(self, user_id: str, role: str) -> Optional[User]:
        with self._mutation():
            user = self.users.get(user_id)
            if not user:
                return None
            updated = replace(user, role=role)
            self.users[user_id] = updated
            return updated

    def save_password(self, user_id: str, password_hash: str, password_algo: str) -> None:
        with self._mutation():
            if user_id not in self.users:
                raise ConstraintViolation(
                    "user not found for credentials", {"user_id": user_id}
                )
            self.credentials[user_id] = (password_hash, password_algo)

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]:
        with self._data_lock:
            return self.credentials.get(user_id)

    # tokens
    def insert_token(self, token: AccessToken) -> AccessToken:
        with self._mutation():
            if token.user_id not in self.users:
                raise ConstraintViolation("user does not exist", {"user_id": token.user_id})
            if token.token_hash in self.tokens:
                raise ConstraintViolation("token already exists", {"token_id": token.id})
            self.tokens[token.token_hash] = token
            self._token_ids[token.id] = token.token_hash
            return token

    def find_token(self, token_hash: str) -> Optional[AccessToken]:
        with self._data_lock:
            return self.tokens.get(token_hash)

    def list_tokens(self, user_id: str) -> List[AccessToken]:
        """Tokens owned by ``user_id``, oldest first."""
        with self._data_lock:
            owned = [t for t in self.tokens.values() if t.user_id == user_id]
            return sorted(owned, key=lambda t: t.created_at)

    def count_tokens(self, user_id: str) -> int:
        with self._data_lock:
            return sum(1 for t in self.tokens.values() if t.user_id == user_id)

    def touch_token(self, token_id: str, used_at: datetime) -> None:
        with self._mutation():
            token_hash = self._token_ids.get(token_id)
            token = self.tokens.get(token_hash) if token_hash else None
            if not token:
                return
            self.tokens[token_hash] = replace(token, last_used_at=used_at)

    def delete_token(self, token_id: str) -> bool:
        with self._mutation():
            token_hash = self._token_ids.pop(token_id, None)
            if token_hash is None:
                return False
            self.tokens.pop(token_hash, None)
            return True

    def delete_tokens(
        self, user_id: str, token_ids: Optional[Iterable[str]] = None
    ) -> int:
        """Delete tokens owned by ``user_id``; all of them unless ``token_ids`` narrows it."""
        with self._mutation():
            wanted = set(token_ids) if token_ids is not None else None
            stale = [
                t for t in self.tokens.values()
                if t.user_id == user_id and (wanted is None or t.id in wanted)
            ]
            for token in stale:
                self.tokens.pop(token.token_hash, None)
                self._token_ids.pop(token.id, None)
            return len(stale)

    def delete_tokens_created_before(
        self, cutoff: datetime, *, user_id: Optional[str] = None
    ) -> int:
        with self._mutation():
            stale = [
                t for t in self.tokens.values()
                if t.created_at <= cutoff and (user_id is None or t.user_id == user_id)
            ]
            for token in stale:
                self.tokens.pop(token.token_hash, None)
                self._token_ids.pop(token.id, None)
            return len(stale)

    # lessons / questions
    def create_lesson(self, title: str, content: str) -> Lesson:
        with self._mutation():
            if any(existing.title == title for existing in self.lessons.values()):
                raise ConstraintViolation(
                    "A lesson with this title already exists.", {"field": "title"}
                )
            lesson = Lesson(id=str(uuid.uuid4()), title=title, content=content)
            self.lessons[lesson.id] = lesson
            return lesson

    def get_lesson(self, lesson_id: str) -> Optional[Lesson]:
        with self._data_lock:
            return self.lessons.get(lesson_id)

    def all_lessons(self) -> List[Lesson]:
        with self._data_lock:
            return list(self.lessons.values())

    def list_lessons(
        self, *, search: Optional[str] = None, offset: int = 0, limit: int = 10
    ) -> Tuple[List[Lesson], int]:
        with self._data_lock:
            lessons = list(self.lessons.values())
        if search:
            needle = search.lower()
            lessons = [
                l for l in lessons
                if needle in l.title.lower() or needle in l.content.lower()
            ]
        # reversed() first so equal timestamps still come out newest-inserted first
        ordered = sorted(reversed(lessons), key=lambda l: l.created_at, reverse=True)
        return ordered[offset : offset + limit], len(ordered)

    def create_question(
        self, lesson_id: str, user_id: str, question: str, answer: str
    ) -> Question:
        with self._mutation():
            if lesson_id not in self.lessons:
                raise ConstraintViolation("lesson does not exist", {"field": "lesson_id"})
            if user_id not in self.users:
                raise ConstraintViolation("user does not exist", {"user_id": user_id})
            record = Question(
                id=str(uuid.uuid4()),
                lesson_id=lesson_id,
                user_id=user_id,
                question=question,
                answer=answer,
            )
            self.questions.setdefault(lesson_id, []).append(record)
            return record

    def list_questions(
        self, lesson_id: str, *, offset: int = 0, limit: int = 10
    ) -> Tuple[List[Question], int]:
        with self._data_lock:
            records = list(self.questions.get(lesson_id, []))
        ordered = sorted(reversed(records), key=lambda q: q.created_at, reverse=True)
        return ordered[offset : offset + limit], len(ordered)

    # persistence
    def _serialize_user(self, user: User) -> dict:
        return {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "role": user.role,
            "created_at": self._serialize_datetime(user.created_at),
        }

    def _deserialize_user(self, data: dict) -> User:
        return User(
            id=data["id"],
            name=data["name"],
            email=data["email"],
            role=data.get("role", "student"),
            created_at=self._deserialize_datetime(data["created_at"]),
        )

    def _serialize_token(self, token: AccessToken) -> dict:
        return {
            "id": token.id,
            "user_id": token.user_id,
            "token_hash": token.token_hash,
            "abilities": list(token.abilities),
            "created_at": self._serialize_datetime(token.created_at),
            "last_used_at": self._serialize_datetime(token.last_used_at),
        }

    def _deserialize_token(self, data: dict) -> AccessToken:
        return AccessToken(
            id=data["id"],
            user_id=data["user_id"],
            token_hash=data["token_hash"],
            abilities=tuple(data.get("abilities", [])),
            created_at=self._deserialize_datetime(data["created_at"]),
            last_used_at=self._deserialize_datetime(data.get("last_used_at")),
        )

    def _serialize_lesson(self, lesson: Lesson) -> dict:
        return {
            "id": lesson.id,
            "title": lesson.title,
            "content": lesson.content,
            "created_at": self._serialize_datetime(lesson.created_at),
            "updated_at": self._serialize_datetime(lesson.updated_at),
        }

    def _deserialize_lesson(self, data: dict) -> Lesson:
        return Lesson(
            id=data["id"],
            title=data["title"],
            content=data["content"],
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(data["updated_at"]),
        )

    def _serialize_question(self, record: Question) -> dict:
        return {
            "id": record.id,
            "lesson_id": record.lesson_id,
            "user_id": record.user_id,
            "question": record.question,
            "answer": record.answer,
            "created_at": self._serialize_datetime(record.created_at),
        }

    def _deserialize_question(self, data: dict) -> Question:
        return Question(
            id=data["id"],
            lesson_id=data["lesson_id"],
            user_id=data["user_id"],
            question=data["question"],
            answer=data["answer"],
            created_at=self._deserialize_datetime(data["created_at"]),
        )

    def _persist_state(self) -> None:
        if self.fs_root is None:
            return
        state: Dict[str, Any] = {
            "users": [self._serialize_user(u) for u in self.users.values()],
            "credentials": [
                {
                    "user_id": user_id,
                    "password_hash": creds[0],
                    "password_algo": creds[1],
                }
                for user_id, creds in self.credentials.items()
            ],
            "tokens": [self._serialize_token(t) for t in self.tokens.values()],
            "lessons": [self._serialize_lesson(l) for l in self.lessons.values()],
            "questions": [
                self._serialize_question(q)
                for records in self.questions.values()
                for q in records
            ],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            self.logger.error("store_persist_failed", path=str(path), error=str(exc))
            raise StoreError("failed to persist store state") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        except (OSError, ValueError) as exc:
            self.logger.error("store_load_failed", path=str(path), error=str(exc))
            raise StoreError("failed to load store state") from exc
        self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        self.credentials = {
            entry["user_id"]: (entry["password_hash"], entry.get("password_algo", ""))
            for entry in data.get("credentials", [])
        }
        self.tokens = {}
        self._token_ids = {}
        for token_data in data.get("tokens", []):
            token = self._deserialize_token(token_data)
            self.tokens[token.token_hash] = token
            self._token_ids[token.id] = token.token_hash
        self.lessons = {
            l["id"]: self._deserialize_lesson(l) for l in data.get("lessons", [])
        }
        self.questions = {}
        for question_data in data.get("questions", []):
            record = self._deserialize_question(question_data)
            self.questions.setdefault(record.lesson_id, []).append(record)
        return True
