from __future__ import annotations

import pytest
import requests

from telegram_api import (
    MAX_MESSAGE_LENGTH,
    TelegramAPIError,
    TelegramBotAPI,
    TelegramNetworkError,
    TelegramNotConfigured,
    short_text,
    split_text,
)


class FakeResponse:
    def __init__(self, payload=None, status_code: int = 200, text: str = "") -> None:
        self._payload = payload
        self.status_code = status_code
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload


class FakeSession:
    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.posts: list[tuple[str, dict]] = []

    def post(self, url: str, json=None, timeout=None):
        self.posts.append((url, json))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _ok(result=True) -> FakeResponse:
    return FakeResponse({"ok": True, "result": result})


def test_send_message_posts_expected_payload() -> None:
    session = FakeSession(_ok({"message_id": 1}))
    api = TelegramBotAPI("123:abc", session=session)
    api.send_message(42, "hello", parse_mode="Markdown")

    url, payload = session.posts[0]
    assert url == "https://api.telegram.org/bot123:abc/sendMessage"
    assert payload == {
        "chat_id": 42,
        "text": "hello",
        "disable_web_page_preview": True,
        "parse_mode": "Markdown",
    }


def test_long_messages_are_chunked() -> None:
    text = "a" * (MAX_MESSAGE_LENGTH + 10)
    session = FakeSession(_ok(), _ok())
    TelegramBotAPI("t", session=session).send_message(1, text)
    assert [len(p["text"]) for _, p in session.posts] == [MAX_MESSAGE_LENGTH, 10]
    assert "parse_mode" not in session.posts[0][1]


def test_split_text_keeps_short_text_whole() -> None:
    assert split_text("hi") == ["hi"]


def test_api_error_carries_code_and_description() -> None:
    session = FakeSession(FakeResponse(
        {"ok": False, "error_code": 403, "description": "Forbidden: bot was blocked by the user"},
        status_code=403,
    ))
    with pytest.raises(TelegramAPIError) as info:
        TelegramBotAPI("t", session=session).send_message(1, "x")
    assert info.value.error_code == 403
    assert "blocked" in info.value.description
    assert info.value.method == "sendMessage"


def test_non_json_response_uses_http_status() -> None:
    session = FakeSession(FakeResponse(None, status_code=502, text="<html>Bad Gateway</html>"))
    with pytest.raises(TelegramAPIError) as info:
        TelegramBotAPI("t", session=session).get_me()
    assert info.value.error_code == 502


def test_network_error_does_not_leak_token() -> None:
    session = FakeSession(requests.ConnectionError("https://api.telegram.org/botSECRET/sendMessage"))
    with pytest.raises(TelegramNetworkError) as info:
        TelegramBotAPI("SECRET", session=session).send_message(1, "x")
    assert "SECRET" not in str(info.value)


def test_missing_token_raises_not_configured() -> None:
    api = TelegramBotAPI("", session=FakeSession())
    assert api.configured is False
    with pytest.raises(TelegramNotConfigured):
        api.send_message(1, "x")


def test_set_webhook_passes_secret() -> None:
    session = FakeSession(_ok(True))
    assert TelegramBotAPI("t", session=session).set_webhook("https://example.com/webhook", secret_token="s3")
    assert session.posts[0][1] == {"url": "https://example.com/webhook", "secret_token": "s3"}


def test_api_error_carries_response_parameters() -> None:
    session = FakeSession(FakeResponse(
        {
            "ok": False,
            "error_code": 400,
            "description": "Bad Request: group chat was upgraded to a supergroup chat",
            "parameters": {"migrate_to_chat_id": -1009},
        },
        status_code=400,
    ))
    with pytest.raises(TelegramAPIError) as info:
        TelegramBotAPI("t", session=session).send_message(-5, "x")
    assert info.value.parameters == {"migrate_to_chat_id": -1009}


def test_short_text_truncates_long_values() -> None:
    assert short_text("abc") == "abc"
    assert short_text("a" * 20, 5) == "aaaaa... [truncated 15 chars]"
    assert short_text(None) == "None"
