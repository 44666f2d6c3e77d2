"""
Tests for request validation.

Tests cover:
- Rule ordering (first failure wins)
- Every rejection kind and its client message
- Boundary values for message count and content length
- Purity / idempotence
"""

import json

import pytest

from errors import ErrorKind
from models import ChatMessage
from validator import validate_chat_body, validate_image_body


def _body(messages) -> bytes:
    return json.dumps({"messages": messages}).encode()


def _user(content="hi"):
    return {"role": "user", "content": content}


class TestValidateChatBody:
    """Chat body rules, in order."""

    def test_accepts_valid_conversation(self):
        msgs = [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": "how are you?"},
        ]
        result = validate_chat_body(_body(msgs))

        assert result.ok is True
        assert result.error is None
        assert result.value.messages == (
            ChatMessage("system", "be brief"),
            ChatMessage("user", "hi"),
            ChatMessage("assistant", "hello"),
            ChatMessage("user", "how are you?"),
        )

    @pytest.mark.parametrize(
        "raw",
        [
            b"{not json",
            b"",
            b"\xff\xfe",
            "[1, 2",
            b"[" * 100_000,
            b'{"messages": ' + b"[" * 100_000 + b"]" * 100_000 + b"}",
        ],
    )
    def test_malformed_body(self, raw):
        result = validate_chat_body(raw)
        assert result.ok is False
        assert result.error.kind is ErrorKind.MALFORMED_BODY
        assert result.error.status_code == 400

    @pytest.mark.parametrize(
        "raw",
        [
            b"{}",
            b'{"messages": []}',
            b'{"messages": null}',
            b'{"messages": "hello"}',
            b'{"messages": {"role": "user"}}',
            b"[]",
            b'"just a string"',
            b"42",
        ],
    )
    def test_missing_messages(self, raw):
        result = validate_chat_body(raw)
        assert result.error.kind is ErrorKind.MISSING_MESSAGES
        assert result.error.message == "Messages array is required"

    def test_message_count_boundary(self):
        assert validate_chat_body(_body([_user()] * 50)).ok is True

        result = validate_chat_body(_body([_user()] * 51))
        assert result.error.kind is ErrorKind.TOO_MANY_MESSAGES

    def test_message_count_custom_limit(self):
        result = validate_chat_body(_body([_user()] * 3), max_messages=2)
        assert result.error.kind is ErrorKind.TOO_MANY_MESSAGES

    def test_too_many_wins_over_bad_messages(self):
        msgs = [{"role": "robot"}] * 51
        assert validate_chat_body(_body(msgs)).error.kind is ErrorKind.TOO_MANY_MESSAGES

    @pytest.mark.parametrize(
        "msg",
        [
            "not an object",
            None,
            {"content": "hi"},
            {"role": "user"},
            {"role": "", "content": "hi"},
            {"role": "user", "content": ""},
            {"role": "user", "content": 42},
            {"role": "user", "content": ["text"]},
            {"role": None, "content": "hi"},
        ],
    )
    def test_invalid_message_format(self, msg):
        result = validate_chat_body(_body([_user(), msg]))
        assert result.error.kind is ErrorKind.INVALID_MESSAGE_FORMAT
        assert result.error.message == "Invalid message format"

    def test_content_length_boundary(self):
        assert validate_chat_body(_body([_user("a" * 10_000)])).ok is True

        result = validate_chat_body(_body([_user("a" * 10_001)]))
        assert result.error.kind is ErrorKind.MESSAGE_TOO_LONG
        assert result.error.message == "Message content too long"

    def test_content_length_counts_characters(self):
        # 10,000 non-ASCII characters are more than 10,000 bytes but still allowed
        assert validate_chat_body(_body([_user("é" * 10_000)])).ok is True

    @pytest.mark.parametrize("role", ["robot", "User", "tool", "function", " user", 5, ["user"], {"name": "user"}])
    def test_invalid_role(self, role):
        result = validate_chat_body(_body([{"role": role, "content": "hi"}]))
        assert result.error.kind is ErrorKind.INVALID_ROLE
        assert result.error.message == "Invalid message role"

    def test_too_long_wins_over_bad_role(self):
        result = validate_chat_body(_body([{"role": "robot", "content": "a" * 10_001}]))
        assert result.error.kind is ErrorKind.MESSAGE_TOO_LONG

    def test_first_bad_message_decides(self):
        msgs = [_user(), {"role": "robot", "content": "hi"}, {"role": "user"}]
        assert validate_chat_body(_body(msgs)).error.kind is ErrorKind.INVALID_ROLE

    def test_preserves_order(self):
        msgs = [_user(str(i)) for i in range(10)]
        result = validate_chat_body(_body(msgs))
        assert [m.content for m in result.value.messages] == [str(i) for i in range(10)]

    def test_ignores_extra_fields(self):
        body = json.dumps({"messages": [{"role": "user", "content": "hi", "id": "x"}], "model": "other"})
        result = validate_chat_body(body)
        assert result.ok is True
        assert result.value.to_payload() == [{"role": "user", "content": "hi"}]

    def test_nested_extra_fields_are_accepted(self):
        meta = "[" * 200 + "]" * 200
        raw = '{"messages": [{"role": "user", "content": "hi", "meta": ' + meta + "}]}"
        result = validate_chat_body(raw)
        assert result.ok is True
        assert result.value.to_payload() == [{"role": "user", "content": "hi"}]

    def test_idempotent(self):
        raw = _body([_user("same")])
        first = validate_chat_body(raw)
        second = validate_chat_body(raw)
        assert first.value == second.value

        bad = _body([{"role": "robot", "content": "x"}])
        assert validate_chat_body(bad).error.kind is validate_chat_body(bad).error.kind


class TestConversationPayload:
    """Upstream payload built from a validated conversation."""

    def test_payload_trims_content(self):
        result = validate_chat_body(_body([_user("  padded  ")]))
        assert result.value.to_payload() == [{"role": "user", "content": "padded"}]

    def test_last_content(self):
        result = validate_chat_body(_body([_user("first"), _user("last")]))
        assert result.value.last_content == "last"


class TestValidateImageBody:
    """Image prompt rules."""

    def test_accepts_and_trims_prompt(self):
        result = validate_image_body(b'{"prompt": "  a red fox  "}')
        assert result.ok is True
        assert result.value.text == "a red fox"

    def test_malformed(self):
        assert validate_image_body(b"{").error.kind is ErrorKind.MALFORMED_BODY
        assert validate_image_body(b"[" * 100_000).error.kind is ErrorKind.MALFORMED_BODY

    @pytest.mark.parametrize("raw", [b"{}", b'{"prompt": ""}', b'{"prompt": "   "}', b'{"prompt": 3}', b"[]"])
    def test_missing_prompt(self, raw):
        result = validate_image_body(raw)
        assert result.error.kind is ErrorKind.INVALID_PROMPT
        assert result.error.status_code == 400

    def test_prompt_too_long(self):
        result = validate_image_body(json.dumps({"prompt": "x" * 1_001}))
        assert result.error.kind is ErrorKind.INVALID_PROMPT
        assert result.error.message == "Prompt too long"

        assert validate_image_body(json.dumps({"prompt": "x" * 1_000})).ok is True
