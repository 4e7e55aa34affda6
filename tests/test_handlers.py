from __future__ import annotations

from handlers import REPORT_TEXT, START_TEXT, WELCOME_TEXT, handle_update, parse_command
from registry import ChatRegistry
from tests.fakes import FakeBot, MemoryStore


def _registry() -> ChatRegistry:
    reg = ChatRegistry(MemoryStore())
    reg.load()
    return reg


def _message(chat_id: int, chat_type: str, **extra) -> dict:
    return {"update_id": 1, "message": {"message_id": 1, "chat": {"id": chat_id, "type": chat_type}, **extra}}


def test_parse_command() -> None:
    assert parse_command("/start") == "start"
    assert parse_command("/start@ReportBot ref42") == "start"
    assert parse_command("/REPORT") == "report"
    assert parse_command("hello /start") is None
    assert parse_command("/") is None
    assert parse_command(None) is None


def test_start_registers_and_replies() -> None:
    reg, bot = _registry(), FakeBot()
    handle_update(_message(5, "private", text="/start"), reg, bot)
    assert reg.list_ids() == ["5"]
    assert bot.calls == [(5, START_TEXT, None)]


def test_members_added_registers_group() -> None:
    reg, bot = _registry(), FakeBot()
    update = _message(-100, "supergroup", new_chat_members=[{"id": 9, "is_bot": True}])
    handle_update(update, reg, bot)
    assert reg.list_ids() == ["-100"]
    assert bot.calls[0][1] == WELCOME_TEXT


def test_channel_is_not_registered() -> None:
    reg, bot = _registry(), FakeBot()
    handle_update(_message(-200, "channel", text="/start"), reg, bot)
    assert reg.list_ids() == []


def test_report_command_does_not_register() -> None:
    reg, bot = _registry(), FakeBot()
    handle_update(_message(7, "group", text="/report"), reg, bot)
    assert reg.list_ids() == []
    assert bot.calls[0][1] == REPORT_TEXT


def test_plain_text_is_ignored() -> None:
    reg, bot = _registry(), FakeBot()
    handle_update(_message(7, "group", text="hi there"), reg, bot)
    assert reg.list_ids() == []
    assert bot.calls == []


def test_reply_failure_still_registers() -> None:
    reg = _registry()
    bot = FakeBot({"5": RuntimeError("Forbidden")})
    handle_update(_message(5, "private", text="/start"), reg, bot)
    assert reg.list_ids() == ["5"]


def test_my_chat_member_added_registers() -> None:
    reg = _registry()
    update = {
        "my_chat_member": {
            "chat": {"id": -300, "type": "group"},
            "new_chat_member": {"status": "member", "user": {"id": 1, "is_bot": True}},
        }
    }
    handle_update(update, reg, FakeBot())
    assert reg.list_ids() == ["-300"]


def test_my_chat_member_left_does_not_register() -> None:
    reg = _registry()
    update = {"my_chat_member": {"chat": {"id": -300, "type": "group"}, "new_chat_member": {"status": "left"}}}
    handle_update(update, reg, FakeBot())
    assert reg.list_ids() == []


def test_malformed_updates_are_ignored() -> None:
    reg, bot = _registry(), FakeBot()
    for update in ({}, {"message": "nope"}, {"message": {"chat": {}}}, []):
        handle_update(update, reg, bot)
    assert reg.list_ids() == []
