"""Tests for bearer token issuance, expiry, pruning and revocation.

Covers:
- Session cap: at most five live tokens, oldest evicted first
- Lazy expiry at exactly the TTL boundary
- Revocation isolation between accounts
- Concurrent issuance for one account never overshooting the cap
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from lessonhub.service.abilities import LESSON_READ, QUESTION_CREATE, WILDCARD
from lessonhub.service.tokens import TokenService, TokenStatus

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(T0)


@pytest.fixture
def tokens(memory_store, clock, monkeypatch):
    service = TokenService(memory_store)
    monkeypatch.setattr(service, "_now", clock)
    return service


@pytest.fixture
def student(memory_store):
    return memory_store.create_user("Sam Student", "sam@example.com", role="student")


@pytest.fixture
def admin(memory_store):
    return memory_store.create_user("Ada Admin", "ada@example.com", role="admin")


class TestSessionCap:
    """Issuing tokens keeps at most five per account."""

    def test_fewer_than_cap_keeps_all(self, tokens, memory_store, student, clock):
        for _ in range(3):
            tokens.issue(student)
            clock.advance(minutes=1)
        assert memory_store.count_tokens(student.id) == 3

    def test_sixth_login_evicts_oldest(self, tokens, memory_store, student, clock):
        """Six logins leave five tokens: the first is gone, logins 2-6 still work."""
        issued = []
        for _ in range(6):
            issued.append(tokens.issue(student)[1])
            clock.advance(minutes=1)

        assert memory_store.count_tokens(student.id) == 5
        assert tokens.validate(issued[0]).status is TokenStatus.NOT_FOUND
        for plaintext in issued[1:]:
            assert tokens.validate(plaintext).status is TokenStatus.VALID

    def test_cap_holds_over_many_logins(self, tokens, memory_store, student, clock):
        issued = []
        for _ in range(12):
            issued.append(tokens.issue(student)[1])
            clock.advance(seconds=30)

        assert memory_store.count_tokens(student.id) == 5
        live = [p for p in issued if tokens.validate(p).is_valid]
        assert live == issued[-5:]

    def test_same_timestamp_evicts_first_inserted(self, tokens, memory_store, student):
        """With the clock frozen, insertion order decides which token is oldest."""
        issued = [tokens.issue(student)[1] for _ in range(6)]

        assert memory_store.count_tokens(student.id) == 5
        assert tokens.validate(issued[0]).status is TokenStatus.NOT_FOUND
        assert tokens.validate(issued[-1]).is_valid

    def test_custom_window(self, memory_store, student, clock, monkeypatch):
        service = TokenService(memory_store, max_sessions=3, prune_to=1)
        monkeypatch.setattr(service, "_now", clock)
        for _ in range(3):
            service.issue(student)
            clock.advance(minutes=1)

        service.issue(student)

        # one kept from before plus the new token
        assert memory_store.count_tokens(student.id) == 2

    def test_invalid_prune_window_rejected(self, memory_store):
        with pytest.raises(ValueError):
            TokenService(memory_store, max_sessions=5, prune_to=5)
        with pytest.raises(ValueError):
            TokenService(memory_store, max_sessions=5, prune_to=-1)

    def test_pruning_is_logged(self, tokens, student, clock, recording_logger):
        tokens.logger = recording_logger
        for _ in range(6):
            tokens.issue(student)
            clock.advance(minutes=1)

        pruned = recording_logger.events("tokens_pruned")
        assert len(pruned) == 1
        assert pruned[0]["pruned"] == 1
        assert len(recording_logger.events("token_issued")) == 6

    def test_cap_is_per_account(self, tokens, memory_store, student, admin, clock):
        for _ in range(5):
            tokens.issue(student)
            clock.advance(minutes=1)
        tokens.issue(admin)

        assert memory_store.count_tokens(student.id) == 5
        assert memory_store.count_tokens(admin.id) == 1


class TestExpiry:
    """A token is valid while its age is below the TTL."""

    def test_valid_just_before_ttl(self, tokens, student, clock):
        _, plaintext = tokens.issue(student)
        clock.advance(hours=23, minutes=59)

        result = tokens.validate(plaintext)

        assert result.status is TokenStatus.VALID
        assert result.user.id == student.id

    def test_expired_just_after_ttl_then_gone(self, tokens, memory_store, student, clock):
        _, plaintext = tokens.issue(student)
        clock.advance(hours=24, minutes=1)

        assert tokens.validate(plaintext).status is TokenStatus.EXPIRED
        assert memory_store.count_tokens(student.id) == 0
        assert tokens.validate(plaintext).status is TokenStatus.NOT_FOUND

    def test_expired_exactly_at_ttl(self, tokens, student, clock):
        _, plaintext = tokens.issue(student)
        clock.advance(hours=24)

        assert tokens.validate(plaintext).status is TokenStatus.EXPIRED

    def test_use_does_not_extend_lifetime(self, tokens, student, clock):
        """Expiry counts from creation; validating does not slide the window."""
        _, plaintext = tokens.issue(student)
        for _ in range(4):
            clock.advance(hours=5)
            assert tokens.validate(plaintext).is_valid

        clock.advance(hours=4)

        assert tokens.validate(plaintext).status is TokenStatus.EXPIRED

    def test_validation_records_last_use(self, tokens, memory_store, student, clock):
        token, plaintext = tokens.issue(student)
        assert token.last_used_at is None
        clock.advance(minutes=10)

        tokens.validate(plaintext)

        stored = memory_store.find_token(token.token_hash)
        assert stored.last_used_at == T0 + timedelta(minutes=10)

    def test_issue_clears_expired_tokens(self, tokens, memory_store, student, clock, recording_logger):
        tokens.logger = recording_logger
        for _ in range(3):
            tokens.issue(student)
        clock.advance(hours=25)

        tokens.issue(student)

        assert memory_store.count_tokens(student.id) == 1
        assert recording_logger.events("tokens_expired_on_issue")[0]["count"] == 3

    def test_purge_expired(self, tokens, memory_store, student, admin, clock):
        tokens.issue(student)
        tokens.issue(admin)
        clock.advance(hours=20)
        _, fresh = tokens.issue(student)
        clock.advance(hours=5)

        purged = tokens.purge_expired()

        assert purged == 2
        assert memory_store.count_tokens(admin.id) == 0
        assert tokens.validate(fresh).is_valid

    def test_configurable_ttl(self, memory_store, student, clock, monkeypatch):
        service = TokenService(memory_store, ttl=timedelta(minutes=30))
        monkeypatch.setattr(service, "_now", clock)
        _, plaintext = service.issue(student)
        clock.advance(minutes=31)

        assert service.validate(plaintext).status is TokenStatus.EXPIRED


class TestLookupAndRevocation:
    def test_unknown_and_empty_tokens_not_found(self, tokens):
        assert tokens.validate("never-issued").status is TokenStatus.NOT_FOUND
        assert tokens.validate("").status is TokenStatus.NOT_FOUND
        assert tokens.validate(None).status is TokenStatus.NOT_FOUND

    def test_plaintext_is_not_stored(self, tokens, memory_store, student):
        token, plaintext = tokens.issue(student)

        assert token.token_hash != plaintext
        assert plaintext not in memory_store.tokens

    def test_revoke_all_is_isolated(self, tokens, memory_store, student, admin):
        _, s1 = tokens.issue(student)
        _, s2 = tokens.issue(student)
        _, a1 = tokens.issue(admin)

        revoked = tokens.revoke_all(student.id)

        assert revoked == 2
        assert tokens.validate(s1).status is TokenStatus.NOT_FOUND
        assert tokens.validate(s2).status is TokenStatus.NOT_FOUND
        assert tokens.validate(a1).is_valid

    def test_revoke_all_without_tokens(self, tokens, student):
        assert tokens.revoke_all(student.id) == 0

    def test_orphaned_token_rejected(self, tokens, memory_store, student):
        _, plaintext = tokens.issue(student)
        memory_store.users.pop(student.id)

        assert tokens.validate(plaintext).status is TokenStatus.NOT_FOUND
        assert memory_store.count_tokens(student.id) == 0


class TestAbilitiesOnTokens:
    def test_student_token_abilities(self, tokens, student):
        token, _ = tokens.issue(student)
        assert set(token.abilities) == {LESSON_READ, QUESTION_CREATE}

    def test_admin_token_wildcard(self, tokens, admin):
        token, _ = tokens.issue(admin)
        assert token.abilities == (WILDCARD,)

    def test_abilities_frozen_at_issue(self, tokens, memory_store, student):
        """A role change does not rewrite tokens already handed out."""
        _, plaintext = tokens.issue(student)
        memory_store.update_user_role(student.id, "admin")

        result = tokens.validate(plaintext)

        assert result.is_valid
        assert WILDCARD not in result.token.abilities


class TestConcurrentIssue:
    def test_parallel_logins_respect_cap(self, memory_store, student):
        service = TokenService(memory_store)
        barrier = threading.Barrier(12)
        errors = []

        def login():
            try:
                barrier.wait()
                service.issue(student)
            except Exception as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=login) for _ in range(12)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert memory_store.count_tokens(student.id) == 5

    def test_parallel_logins_for_different_accounts(self, memory_store):
        service = TokenService(memory_store)
        users = [
            memory_store.create_user(f"User {i}", f"user{i}@example.com") for i in range(4)
        ]

        def login(user):
            for _ in range(7):
                service.issue(user)

        threads = [threading.Thread(target=login, args=(u,)) for u in users]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        for user in users:
            assert memory_store.count_tokens(user.id) == 5
