"""Tests for log record redaction."""

import json

import structlog

from lessonhub.logging import _redact_pii
from lessonhub.service.tokens import TokenService


def _render(event, fields):
    event_dict = _redact_pii(None, "info", {"event": event, **fields})
    return json.loads(structlog.processors.JSONRenderer()(None, "info", event_dict))


class TestRedaction:
    def test_token_issued_keeps_full_ids(self, memory_store, recording_logger):
        user = memory_store.create_user("Sam Student", "sam@example.com")
        tokens = TokenService(memory_store)
        tokens.logger = recording_logger

        token, _ = tokens.issue(user)

        record = _render("token_issued", recording_logger.events("token_issued")[0])
        assert record["token_id"] == token.id
        assert record["user_id"] == user.id

    def test_credentials_masked(self):
        record = _render(
            "login",
            {
                "password": "StudentPass123",
                "access_token": "abcdefghijkl",
                "raw_token": "mnopqrstuvwx",
                "email": "sam@example.com",
                "Authorization": "Bearer abcdefghijkl",
            },
        )

        assert record["password"] == "St***23"
        assert record["access_token"] == "ab***kl"
        assert record["raw_token"] == "mn***wx"
        assert record["email"] == "sa***om"
        assert record["Authorization"] == "Be***kl"

    def test_unrelated_keys_untouched(self):
        record = _render(
            "failed_login_attempt",
            {"identifier": "sam@example.com", "max_tokens": 500, "token_count": "12345"},
        )

        assert record["identifier"] == "sam@example.com"
        assert record["max_tokens"] == 500
        assert record["token_count"] == "12345"
