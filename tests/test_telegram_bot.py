"""Tests for task_tracker.bot.telegram_bot — Telegram bot handlers.

Handlers run against a real TrackerService on a temp DB; Telegram objects
(Update, context, bot) are mocked.
"""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from task_tracker.bot.telegram_bot import (
    _parse_add_args,
    _parse_reset_time,
    _render_list,
    _resolve_task,
)
from task_tracker.core.errors import NotFoundError
from task_tracker.core.tracker_service import Idle, PendingAction, PendingConfirmation
from task_tracker.data.models import ResetTime, TaskCategory, TaskStatus
from task_tracker.ports.storage_port import PersistenceError


def _make_update(text="", user_id=12345):
    """Create a mock Update with a text message from an authorized user."""
    update = MagicMock()
    update.message.text = text
    update.effective_user.id = user_id
    update.message.reply_text = AsyncMock()
    update.message.reply_document = AsyncMock()
    return update


def _make_context(service, args=()):
    """Create a mock context with the tracker service in bot_data."""
    context = MagicMock()
    context.args = list(args)
    context.bot_data = {"tracker": service}
    return context


def _make_callback(data, user_id=12345):
    update = MagicMock()
    update.callback_query.data = data
    update.callback_query.from_user.id = user_id
    update.callback_query.answer = AsyncMock()
    update.callback_query.edit_message_text = AsyncMock()
    return update


def _reply(update):
    return update.message.reply_text.call_args[0][0]


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


class TestParseAddArgs:
    def test_full(self):
        assert _parse_add_args("daily Mint NFT | claim it | zora.co") == (
            "daily", "Mint NFT", "claim it", "zora.co",
        )

    def test_without_link(self):
        assert _parse_add_args("note Read docs | chapter 2") == (
            "note", "Read docs", "chapter 2", "",
        )

    def test_without_description(self):
        assert _parse_add_args("waitlist Join") == ("waitlist", "Join", "", "")

    def test_missing_title(self):
        assert _parse_add_args("daily") is None
        assert _parse_add_args("daily  | desc") is None
        assert _parse_add_args("") is None


class TestParseResetTime:
    def test_valid(self):
        assert _parse_reset_time("08:30") == (8, 30)
        assert _parse_reset_time(" 0:05 ") == (0, 5)
        assert _parse_reset_time("23:59") == (23, 59)

    def test_invalid(self):
        assert _parse_reset_time("24:00") is None
        assert _parse_reset_time("12:60") is None
        assert _parse_reset_time("noon") is None
        assert _parse_reset_time("8") is None
        assert _parse_reset_time("aa:bb") is None


class TestResolveTask:
    def test_position_and_id(self, service):
        a = service.create("A", "daily", description="d")
        b = service.create("B", "daily", description="d")
        assert _resolve_task(service, "2") is b
        assert _resolve_task(service, a.id) is a

    def test_out_of_range(self, service):
        service.create("A", "daily", description="d")
        with pytest.raises(NotFoundError):
            _resolve_task(service, "5")


class TestRenderList:
    def test_empty_tab(self, service):
        service.set_category("testnet")
        assert "No testnet tasks found." in _render_list(service)

    def test_lists_with_numbers_and_links(self, service):
        service.create("Mint", "daily", link="zora.co", description="claim")
        text = _render_list(service)
        assert "*Daily tasks*" in text
        assert "`1.`" in text and "Mint" in text
        assert "https://zora.co" in text

    def test_user_text_is_escaped(self, service):
        service.create("my_task", "daily", link="x.com/some_user", description="2*3")
        text = _render_list(service)
        assert "my\\_task" in text
        assert "some\\_user" in text
        assert "2\\*3" in text


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_unauthorized_user_is_ignored(self, service):
        from task_tracker.bot.telegram_bot import cmd_start

        update = _make_update(user_id=99999)  # not in ALLOWED_USER_IDS
        await cmd_start(update, _make_context(service))
        update.message.reply_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_authorized_user_gets_response(self, service):
        from task_tracker.bot.telegram_bot import cmd_start

        update = _make_update()
        await cmd_start(update, _make_context(service))
        update.message.reply_text.assert_called_once()

    @pytest.mark.asyncio
    async def test_unauthorized_add_changes_nothing(self, service):
        from task_tracker.bot.telegram_bot import cmd_add

        update = _make_update(user_id=99999)
        await cmd_add(update, _make_context(service, ["daily", "Hack", "|", "x"]))
        assert len(service.store) == 0

    @pytest.mark.asyncio
    async def test_unauthorized_callback_is_ignored(self, service):
        from task_tracker.bot.telegram_bot import _handle_confirm_callback

        task = service.create("A", "daily", description="d")
        service.stage_delete(task.id)
        update = _make_callback("delete:confirm", user_id=99999)
        await _handle_confirm_callback(update, _make_context(service))
        assert task.id in service.store
        update.callback_query.edit_message_text.assert_not_called()


# ---------------------------------------------------------------------------
# Task commands
# ---------------------------------------------------------------------------


class TestAddCommand:
    @pytest.mark.asyncio
    async def test_adds_task(self, service):
        from task_tracker.bot.telegram_bot import cmd_add

        update = _make_update()
        args = "social-links Follow project | on X | x.com/project".split(" ")
        await cmd_add(update, _make_context(service, args))

        (task,) = service.store.all()
        assert task.category is TaskCategory.SOCIAL_LINKS
        assert task.text == "Follow project"
        assert task.link == "x.com/project"
        assert "Added" in _reply(update)

    @pytest.mark.asyncio
    async def test_usage_on_missing_args(self, service):
        from task_tracker.bot.telegram_bot import cmd_add

        update = _make_update()
        await cmd_add(update, _make_context(service, []))
        assert _reply(update).startswith("Usage: /add")

    @pytest.mark.asyncio
    async def test_missing_description_rejected(self, service):
        from task_tracker.bot.telegram_bot import cmd_add

        update = _make_update()
        await cmd_add(update, _make_context(service, ["daily", "Mint"]))
        assert len(service.store) == 0
        assert "Couldn't add task" in _reply(update)

    @pytest.mark.asyncio
    async def test_reply_escapes_title(self, service):
        from task_tracker.bot.telegram_bot import cmd_add

        update = _make_update()
        await cmd_add(update, _make_context(service, ["note", "my_task", "|", "d"]))
        assert "my\\_task" in _reply(update)
        assert update.message.reply_text.call_args[1]["parse_mode"] == "Markdown"

    @pytest.mark.asyncio
    async def test_help_escapes_category_names(self, service):
        from task_tracker.bot.telegram_bot import cmd_help

        update = _make_update()
        await cmd_help(update, _make_context(service))
        assert "social\\_links" in _reply(update)

    @pytest.mark.asyncio
    async def test_storage_failure_warns(self, service):
        from task_tracker.bot.telegram_bot import cmd_add

        service.store.on_persistence_error(PersistenceError("disk full"))
        update = _make_update()
        await cmd_add(update, _make_context(service, ["note", "A", "|", "b"]))
        assert "could not be saved: disk full" in _reply(update)


class TestToggleCommand:
    @pytest.mark.asyncio
    async def test_daily_asks_for_confirmation(self, service):
        from task_tracker.bot.telegram_bot import cmd_toggle

        task = service.create("Claim", "daily", description="d")
        update = _make_update()
        await cmd_toggle(update, _make_context(service, ["1"]))

        assert task.completed is False
        assert service.confirmation == PendingConfirmation(task.id, PendingAction.COMPLETE)
        assert update.message.reply_text.call_args[1]["reply_markup"] is not None

    @pytest.mark.asyncio
    async def test_note_toggles_immediately(self, service):
        from task_tracker.bot.telegram_bot import cmd_toggle

        task = service.create("Read", "note", description="d")
        service.set_category("note")
        update = _make_update()
        await cmd_toggle(update, _make_context(service, ["1"]))
        assert task.completed is True
        assert "marked completed" in _reply(update)

    @pytest.mark.asyncio
    async def test_locked_task_reports_error(self, service):
        from task_tracker.bot.telegram_bot import cmd_toggle

        task = service.create("Claim", "daily", description="d")
        service.toggle(task.id)
        service.confirm_completion()
        update = _make_update()
        await cmd_toggle(update, _make_context(service, ["1"]))
        assert task.completed is True
        assert "locked" in _reply(update)

    @pytest.mark.asyncio
    async def test_unknown_task(self, service):
        from task_tracker.bot.telegram_bot import cmd_toggle

        update = _make_update()
        await cmd_toggle(update, _make_context(service, ["7"]))
        assert "not found" in _reply(update)


class TestConfirmCallback:
    @pytest.mark.asyncio
    async def test_confirm_completion(self, service):
        from task_tracker.bot.telegram_bot import _handle_confirm_callback

        task = service.create("Claim", "daily", description="d")
        service.toggle(task.id)
        update = _make_callback("complete:confirm")
        await _handle_confirm_callback(update, _make_context(service))

        assert task.completed is True
        update.callback_query.answer.assert_awaited_once()
        assert "completed" in update.callback_query.edit_message_text.call_args[0][0]

    @pytest.mark.asyncio
    async def test_cancel_completion(self, service):
        from task_tracker.bot.telegram_bot import _handle_confirm_callback

        task = service.create("Claim", "daily", description="d")
        service.toggle(task.id)
        update = _make_callback("complete:cancel")
        await _handle_confirm_callback(update, _make_context(service))

        assert task.completed is False
        assert isinstance(service.confirmation, Idle)

    @pytest.mark.asyncio
    async def test_confirm_delete(self, service):
        from task_tracker.bot.telegram_bot import _handle_confirm_callback, cmd_delete

        task = service.create("Old", "waitlist", description="d")
        service.set_category("waitlist")
        await cmd_delete(_make_update(), _make_context(service, ["1"]))
        assert task.id in service.store

        update = _make_callback("delete:confirm")
        await _handle_confirm_callback(update, _make_context(service))
        assert task.id not in service.store

    @pytest.mark.asyncio
    async def test_stale_button(self, service):
        from task_tracker.bot.telegram_bot import _handle_confirm_callback

        update = _make_callback("complete:confirm")
        await _handle_confirm_callback(update, _make_context(service))
        assert "awaiting confirmation" in update.callback_query.edit_message_text.call_args[0][0]

    @pytest.mark.asyncio
    async def test_keyboard_carries_task_id(self, service):
        from task_tracker.bot.telegram_bot import cmd_delete

        task = service.create("Old", "waitlist", description="d")
        update = _make_update()
        await cmd_delete(update, _make_context(service, [task.id]))
        keyboard = update.message.reply_text.call_args[1]["reply_markup"].inline_keyboard
        assert keyboard[0][0].callback_data == f"delete:confirm:{task.id}"
        assert keyboard[0][1].callback_data == f"delete:cancel:{task.id}"

    @pytest.mark.asyncio
    async def test_older_prompt_does_not_delete_newer_task(self, service):
        from task_tracker.bot.telegram_bot import _handle_confirm_callback, cmd_delete

        a = service.create("A", "waitlist", description="d")
        b = service.create("B", "waitlist", description="d")
        await cmd_delete(_make_update(), _make_context(service, [a.id]))
        await cmd_delete(_make_update(), _make_context(service, [b.id]))

        update = _make_callback(f"delete:confirm:{a.id}")
        await _handle_confirm_callback(update, _make_context(service))
        assert a.id in service.store
        assert b.id in service.store
        assert "expired" in update.callback_query.edit_message_text.call_args[0][0]

        update = _make_callback(f"delete:confirm:{b.id}")
        await _handle_confirm_callback(update, _make_context(service))
        assert a.id in service.store
        assert b.id not in service.store

    @pytest.mark.asyncio
    async def test_older_cancel_keeps_newer_pending(self, service):
        from task_tracker.bot.telegram_bot import _handle_confirm_callback

        a = service.create("A", "daily", description="d")
        b = service.create("B", "daily", description="d")
        service.toggle(a.id)
        service.toggle(b.id)
        update = _make_callback(f"complete:cancel:{a.id}")
        await _handle_confirm_callback(update, _make_context(service))
        assert "expired" in update.callback_query.edit_message_text.call_args[0][0]
        assert service.confirmation == PendingConfirmation(b.id, PendingAction.COMPLETE)

    @pytest.mark.asyncio
    async def test_long_imported_id_fits_callback_data(self, service):
        from task_tracker.bot.telegram_bot import (
            _callback_ref,
            _handle_confirm_callback,
            cmd_delete,
        )

        long_id = "imported:" + "x" * 60
        service.import_payload([{
            "id": long_id, "text": "Legacy", "completed": False,
            "type": "waitlist", "createdAt": 1,
        }])
        update = _make_update()
        await cmd_delete(update, _make_context(service, [long_id]))
        data = update.message.reply_text.call_args[1]["reply_markup"].inline_keyboard[0][0].callback_data
        assert data == f"delete:confirm:{_callback_ref(long_id)}"
        assert len(data.encode("utf-8")) <= 64

        callback = _make_callback(data)
        await _handle_confirm_callback(callback, _make_context(service))
        assert len(service.store) == 0


class TestEditCommand:
    @pytest.mark.asyncio
    async def test_edit_status(self, service):
        from task_tracker.bot.telegram_bot import cmd_edit

        task = service.create("A", "daily", description="d")
        update = _make_update()
        await cmd_edit(update, _make_context(service, ["1", "status=ended"]))
        assert task.status is TaskStatus.ENDED

    @pytest.mark.asyncio
    async def test_edit_text_with_spaces(self, service):
        from task_tracker.bot.telegram_bot import cmd_edit

        task = service.create("A", "daily", description="d")
        await cmd_edit(_make_update(), _make_context(service, ["1", "text=New", "title"]))
        assert task.text == "New title"

    @pytest.mark.asyncio
    async def test_category_is_not_editable(self, service):
        from task_tracker.bot.telegram_bot import cmd_edit

        task = service.create("A", "daily", description="d")
        update = _make_update()
        await cmd_edit(update, _make_context(service, ["1", "category=note"]))
        assert task.category is TaskCategory.DAILY
        assert "Couldn't edit task" in _reply(update)


# ---------------------------------------------------------------------------
# View commands
# ---------------------------------------------------------------------------


class TestViewCommands:
    @pytest.mark.asyncio
    async def test_tab_switches_category(self, service):
        from task_tracker.bot.telegram_bot import cmd_tab

        update = _make_update()
        await cmd_tab(update, _make_context(service, ["testnet"]))
        assert service.active_category is TaskCategory.TESTNET

    @pytest.mark.asyncio
    async def test_tab_rejects_unknown(self, service):
        from task_tracker.bot.telegram_bot import cmd_tab

        update = _make_update()
        await cmd_tab(update, _make_context(service, ["weekly"]))
        assert service.active_category is TaskCategory.DAILY
        assert "Unknown category" in _reply(update)

    @pytest.mark.asyncio
    async def test_search_and_clear(self, service):
        from task_tracker.bot.telegram_bot import cmd_search

        service.create("Mint NFT", "daily", description="d")
        service.create("Swap", "daily", description="d")
        update = _make_update()
        await cmd_search(update, _make_context(service, ["mint"]))
        assert "Mint NFT" in _reply(update) and "Swap" not in _reply(update)

        await cmd_search(update, _make_context(service, []))
        assert service.search_query == ""

    @pytest.mark.asyncio
    async def test_sort(self, service):
        from task_tracker.bot.telegram_bot import cmd_sort

        await cmd_sort(_make_update(), _make_context(service, ["title-desc"]))
        assert service.sort_option.value == "title-desc"

    @pytest.mark.asyncio
    async def test_stats(self, service):
        from task_tracker.bot.telegram_bot import cmd_stats

        service.create("A", "note", description="d")
        update = _make_update()
        await cmd_stats(update, _make_context(service))
        text = _reply(update)
        assert "Task Only: 0% (0/1 done)" in text
        assert "Next reset in 20:00:00 (at 08:00)" in text


# ---------------------------------------------------------------------------
# Reset time
# ---------------------------------------------------------------------------


class TestResetTimeCommand:
    @pytest.mark.asyncio
    async def test_shows_current(self, service):
        from task_tracker.bot.telegram_bot import cmd_resettime

        update = _make_update()
        await cmd_resettime(update, _make_context(service))
        assert "Daily reset time: 08:00" in _reply(update)

    @pytest.mark.asyncio
    async def test_sets_new_time(self, service):
        from task_tracker.bot.telegram_bot import cmd_resettime

        update = _make_update()
        await cmd_resettime(update, _make_context(service, ["21:30"]))
        assert service.reset_time == ResetTime(21, 30)
        assert "21:30" in _reply(update)

    @pytest.mark.asyncio
    async def test_rejects_malformed(self, service):
        from task_tracker.bot.telegram_bot import cmd_resettime

        update = _make_update()
        await cmd_resettime(update, _make_context(service, ["25:00"]))
        assert service.reset_time == ResetTime(8, 0)
        assert "Invalid time" in _reply(update)


# ---------------------------------------------------------------------------
# Export / import
# ---------------------------------------------------------------------------


class TestExportCommand:
    @pytest.mark.asyncio
    async def test_sends_backup_document(self, service):
        from task_tracker.bot.telegram_bot import cmd_export

        service.create("A", "daily", description="d")
        update = _make_update()
        await cmd_export(update, _make_context(service))

        kwargs = update.message.reply_document.call_args[1]
        assert kwargs["filename"] == "task-tracker-backup-2026-03-10.json"
        assert len(json.loads(kwargs["document"].decode("utf-8"))["tasks"]) == 1


def _make_document_update(file_name="backup.json"):
    update = _make_update()
    update.message.document.file_name = file_name
    update.message.document.file_id = "file-1"
    return update


def _make_bot_file(content):
    tg_file = MagicMock()

    async def download(path):
        Path(path).write_text(content, encoding="utf-8")

    tg_file.download_to_drive = AsyncMock(side_effect=download)
    return tg_file


class TestHandleDocument:
    @pytest.mark.asyncio
    async def test_imports_backup(self, service):
        from task_tracker.bot.telegram_bot import handle_document

        service.create("Old", "daily", description="d")
        content = json.dumps({"tasks": [
            {"id": "n1", "text": "New", "completed": False, "type": "testnet", "createdAt": 1},
        ]})
        update = _make_document_update()
        context = _make_context(service)
        context.bot.get_file = AsyncMock(return_value=_make_bot_file(content))

        await handle_document(update, context)

        assert [t.id for t in service.store.all()] == ["n1"]
        assert "Successfully imported 1 tasks" in _reply(update)
        downloaded = context.bot.get_file.return_value.download_to_drive.call_args[0][0]
        assert not Path(downloaded).exists()

    @pytest.mark.asyncio
    async def test_invalid_backup_keeps_tasks(self, service):
        from task_tracker.bot.telegram_bot import handle_document

        task = service.create("Keep", "daily", description="d")
        update = _make_document_update()
        context = _make_context(service)
        context.bot.get_file = AsyncMock(return_value=_make_bot_file('{"tasks": [{"id": 1}]}'))

        await handle_document(update, context)

        assert service.store.all() == (task,)
        assert _reply(update).startswith("Import failed:")

    @pytest.mark.asyncio
    async def test_rejects_non_json_file(self, service):
        from task_tracker.bot.telegram_bot import handle_document

        update = _make_document_update("photo.png")
        context = _make_context(service)
        context.bot.get_file = AsyncMock()
        await handle_document(update, context)
        context.bot.get_file.assert_not_called()
        assert ".json" in _reply(update)

    @pytest.mark.asyncio
    async def test_download_failure(self, service):
        from task_tracker.bot.telegram_bot import handle_document

        update = _make_document_update()
        context = _make_context(service)
        context.bot.get_file = AsyncMock(side_effect=RuntimeError("network"))
        await handle_document(update, context)
        assert "couldn't import" in _reply(update)


# ---------------------------------------------------------------------------
# App wiring
# ---------------------------------------------------------------------------


class TestBuildApp:
    def test_registers_service_and_ticker(self, service):
        from task_tracker.bot.telegram_bot import build_app
        from task_tracker.core.ticker import ResetTicker

        app = build_app(service=service, notifier=MagicMock())

        assert app.bot_data["tracker"] is service
        assert isinstance(app.bot_data["ticker"], ResetTicker)
        assert len(app.handlers[0]) == 15
