"""
Task Tracker — Telegram Bot.

Telegram is the presentation layer: it renders the tracker service's derived
view (visible tasks, per-category stats, countdown) and turns commands and
button taps into service calls. No task rules live here.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import hashlib
import logging
import sys
import tempfile
from functools import wraps
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)
from telegram.helpers import escape_markdown

from task_tracker.config import settings
from task_tracker.core.errors import NotFoundError, SchemaError, TrackerError
from task_tracker.core.reset_clock import format_remaining
from task_tracker.core.task_store import normalize_link
from task_tracker.data.models import TaskCategory

if TYPE_CHECKING:
    from task_tracker.core.tracker_service import TrackerService
    from task_tracker.data.models import Task
    from task_tracker.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _tracker(context: ContextTypes.DEFAULT_TYPE) -> TrackerService:
    return context.bot_data["tracker"]


def _md(text: str | None) -> str:
    """Escape user-supplied text for a legacy-Markdown reply."""
    return escape_markdown(text or "")


def _with_storage_warning(service: TrackerService, text: str, markdown: bool = True) -> str:
    """Append a warning if the last write to disk failed."""
    exc = service.take_persistence_error()
    if exc is None:
        return text
    detail = _md(str(exc)) if markdown else str(exc)
    return f"{text}\n\n⚠️ Changes are kept in memory but could not be saved: {detail}"


def _parse_add_args(raw: str) -> tuple[str, str, str, str] | None:
    """Parse "<category> <title> | <description> [| <link>]".

    Returns (category, title, description, link) or None if the category or
    title is missing.
    """
    head, _, rest = raw.strip().partition(" ")
    if not head or not rest.strip():
        return None
    parts = [p.strip() for p in rest.split("|")]
    title = parts[0]
    description = parts[1] if len(parts) > 1 else ""
    link = parts[2] if len(parts) > 2 else ""
    if not title:
        return None
    return head, title, description, link


def _parse_reset_time(text: str) -> tuple[int, int] | None:
    """Parse "HH:MM" into (hour, minute), or None when malformed."""
    hour_s, sep, minute_s = text.strip().partition(":")
    if not sep:
        return None
    try:
        hour, minute = int(hour_s), int(minute_s)
    except ValueError:
        return None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return hour, minute


def _resolve_task(service: TrackerService, ref: str) -> Task:
    """A task reference is its 1-based position in /list, or its id."""
    if ref.isdigit():
        visible = service.visible_tasks()
        position = int(ref)
        if 1 <= position <= len(visible):
            return visible[position - 1]
    return service.get(ref)


def _format_task(position: int, task: Task) -> str:
    # User text stays outside entities: legacy Markdown can't escape inside one
    mark = "✅" if task.completed else "⬜"
    lines = [f"`{position}.` {mark} {_md(task.text)} — _{task.status.value}_"]
    if task.description:
        lines.append(f"      {_md(task.description)}")
    if task.link:
        lines.append(f"      🔗 {_md(normalize_link(task.link))}")
    return "\n".join(lines)


def _render_list(service: TrackerService) -> str:
    category = service.active_category
    tasks = service.visible_tasks()
    header = f"*{category.label} tasks*"
    if service.search_query:
        header += f" matching “{_md(service.search_query)}”"
    if not tasks:
        return f"{header}\n\nNo {category.label.lower()} tasks found."
    lines = [header, ""]
    lines.extend(_format_task(i, t) for i, t in enumerate(tasks, start=1))
    return "\n".join(lines)


def _render_stats(service: TrackerService) -> str:
    lines = ["*Progress*\n"]
    for category, stats in service.per_category_stats().items():
        lines.append(
            f"{category.label}: {stats.completion_rate}% "
            f"({stats.completed}/{stats.total} done)"
        )
    remaining = format_remaining(service.time_remaining_to_reset())
    lines.append(f"\nNext reset in {remaining} (at {service.reset_time})")
    return "\n".join(lines)


_MAX_REF_BYTES = 40  # callback_data is capped at 64 bytes


def _callback_ref(task_id: str) -> str:
    """Short reference to a task for callback_data (ids from imports can be long)."""
    if len(task_id.encode("utf-8")) <= _MAX_REF_BYTES and ":" not in task_id:
        return task_id
    return hashlib.sha1(task_id.encode("utf-8")).hexdigest()[:16]


def _task_id_for_ref(service: TrackerService, ref: str) -> str:
    for task in service.store.all():
        if _callback_ref(task.id) == ref:
            return task.id
    return ref


def _confirm_keyboard(action: str, task_id: str) -> InlineKeyboardMarkup:
    ref = _callback_ref(task_id)
    return InlineKeyboardMarkup([[
        InlineKeyboardButton("✅ Confirm", callback_data=f"{action}:confirm:{ref}"),
        InlineKeyboardButton("Cancel", callback_data=f"{action}:cancel:{ref}"),
    ]])


_CATEGORY_NAMES = ", ".join(c.value for c in TaskCategory)

_HELP_TEXT = (
    "/add <category> <title> | <description> [| <link>]\n"
    "/list — Show the current tab\n"
    f"/tab <category> — Switch tab ({_CATEGORY_NAMES})\n"
    "/search [text] — Filter by text (no text clears)\n"
    "/sort <none|title-asc|title-desc|completed|uncompleted>\n"
    "/toggle <n> — Complete / un-complete a task\n"
    "/edit <n> <text|status|link|description>=<value>\n"
    "/delete <n> — Delete a task\n"
    "/stats — Completion rates and reset countdown\n"
    "/resettime [HH:MM] — Show or set the daily reset time\n"
    "/export — Download a backup\n"
    "Send a backup .json file to import it."
)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message."""
    await update.message.reply_text(
        "Welcome to *Task Tracker*!\n\n"
        "I keep your daily tasks, notes, waitlists, testnets and social links:\n"
        "• Daily tasks reset every day at your reset time\n"
        "• Use /add to create a task and /list to see the current tab\n"
        "• Use /toggle to complete a task, /stats for progress\n\n"
        "Type /help for the full command list.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n" + _md(_HELP_TEXT),
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_add(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /add <category> <title> | <description> [| <link>]."""
    service = _tracker(context)
    parsed = _parse_add_args(" ".join(context.args or []))
    if parsed is None:
        await update.message.reply_text(
            "Usage: /add <category> <title> | <description> [| <link>]\n"
            f"Categories: {_CATEGORY_NAMES}"
        )
        return

    category, title, description, link = parsed
    try:
        task = service.create(title, category, link=link or None, description=description)
    except TrackerError as exc:
        await update.message.reply_text(f"Couldn't add task: {exc}")
        return

    await update.message.reply_text(
        _with_storage_warning(service, f"✅ Added {_md(task.text)} to *{task.category.label}*."),
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_list(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /list — show the visible tasks of the active tab."""
    await update.message.reply_text(_render_list(_tracker(context)), parse_mode="Markdown")


@authorized_only
async def cmd_tab(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /tab <category> — switch the active category."""
    service = _tracker(context)
    if not context.args:
        await update.message.reply_text(f"Usage: /tab <category>\nCategories: {_CATEGORY_NAMES}")
        return
    try:
        service.set_category(context.args[0])
    except TrackerError as exc:
        await update.message.reply_text(str(exc))
        return
    await update.message.reply_text(_render_list(service), parse_mode="Markdown")


@authorized_only
async def cmd_search(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /search [text] — set or clear the search filter."""
    service = _tracker(context)
    service.set_search_query(" ".join(context.args or []))
    await update.message.reply_text(_render_list(service), parse_mode="Markdown")


@authorized_only
async def cmd_sort(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /sort <option>."""
    service = _tracker(context)
    if not context.args:
        await update.message.reply_text(
            f"Current sort: {service.sort_option.value}\n"
            "Usage: /sort <none|title-asc|title-desc|completed|uncompleted>"
        )
        return
    try:
        service.set_sort_option(context.args[0])
    except TrackerError as exc:
        await update.message.reply_text(str(exc))
        return
    await update.message.reply_text(_render_list(service), parse_mode="Markdown")


@authorized_only
async def cmd_toggle(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /toggle <n> — daily tasks ask for confirmation first."""
    service = _tracker(context)
    if not context.args:
        await update.message.reply_text("Usage: /toggle <n>\nUse /list to see task numbers.")
        return

    try:
        task = _resolve_task(service, context.args[0])
        result = service.toggle(task.id)
    except TrackerError as exc:
        await update.message.reply_text(str(exc))
        return

    if result.pending:
        await update.message.reply_text(
            f"Complete {_md(task.text)}?\n"
            "Daily tasks stay completed until the next reset.",
            parse_mode="Markdown",
            reply_markup=_confirm_keyboard("complete", task.id),
        )
        return

    state = "completed" if result.task.completed else "not completed"
    await update.message.reply_text(
        _with_storage_warning(service, f"{_md(result.task.text)} marked *{state}*."),
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_edit(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /edit <n> <field>=<value>."""
    service = _tracker(context)
    args = context.args or []
    field_name, sep, value = " ".join(args[1:]).partition("=")
    if len(args) < 2 or not sep:
        await update.message.reply_text(
            "Usage: /edit <n> <text|status|link|description>=<value>"
        )
        return

    try:
        task = _resolve_task(service, args[0])
        task = service.update(task.id, **{field_name.strip(): value.strip()})
    except TrackerError as exc:
        await update.message.reply_text(f"Couldn't edit task: {exc}")
        return

    await update.message.reply_text(
        _with_storage_warning(service, f"✏️ Updated {_md(task.text)}."),
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_delete(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /delete <n> — ask before deleting."""
    service = _tracker(context)
    if not context.args:
        await update.message.reply_text("Usage: /delete <n>\nUse /list to see task numbers.")
        return

    try:
        task = _resolve_task(service, context.args[0])
        service.stage_delete(task.id)
    except TrackerError as exc:
        await update.message.reply_text(str(exc))
        return

    await update.message.reply_text(
        f"Delete {_md(task.text)}? This action cannot be undone.",
        parse_mode="Markdown",
        reply_markup=_confirm_keyboard("delete", task.id),
    )


@authorized_only
async def cmd_stats(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /stats — completion rates per category and the countdown."""
    await update.message.reply_text(_render_stats(_tracker(context)), parse_mode="Markdown")


@authorized_only
async def cmd_resettime(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /resettime [HH:MM] — show or change the daily reset time."""
    service = _tracker(context)
    if not context.args:
        remaining = format_remaining(service.time_remaining_to_reset())
        await update.message.reply_text(
            f"Daily reset time: {service.reset_time} (next reset in {remaining})\n"
            "Usage: /resettime HH:MM"
        )
        return

    parsed = _parse_reset_time(context.args[0])
    if parsed is None:
        await update.message.reply_text("Invalid time. Use HH:MM, e.g. /resettime 08:00")
        return

    try:
        reset_time = service.save_reset_time(*parsed)
    except TrackerError as exc:
        await update.message.reply_text(str(exc))
        return
    await update.message.reply_text(
        _with_storage_warning(
            service, f"⏰ Daily tasks will now reset at {reset_time}.", markdown=False,
        )
    )


@authorized_only
async def cmd_export(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /export — send the backup document."""
    service = _tracker(context)
    export = service.export_now()
    await update.message.reply_document(
        document=export.content.encode("utf-8"),
        filename=export.filename,
        caption=f"Backup of {len(service.store)} tasks",
    )


# ---------------------------------------------------------------------------
# Confirmation callbacks
# ---------------------------------------------------------------------------


async def _handle_confirm_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Handle the Confirm/Cancel buttons for completions and deletions."""
    query = update.callback_query
    await query.answer()

    # Verify the user is authorized
    user = query.from_user
    if user is None or user.id not in settings.ALLOWED_USER_IDS:
        return

    service = _tracker(context)
    action, choice, ref = (query.data.split(":", 2) + [""])[:3]
    # Buttons carry the task they were shown for; an older prompt must not
    # act on whatever task was staged after it.
    task_id = _task_id_for_ref(service, ref) if ref else None

    try:
        if action == "complete":
            if choice == "confirm":
                task = service.confirm_completion(task_id)
                msg = f"✅ {_md(task.text)} completed. It stays done until the next reset."
            elif service.cancel_completion(task_id):
                msg = "Completion cancelled."
            else:
                msg = "Nothing to cancel, this prompt has expired."
        else:
            if choice == "confirm":
                task = service.confirm_delete(task_id)
                msg = f"🗑 {_md(task.text)} deleted."
            elif service.cancel_delete(task_id):
                msg = "Deletion cancelled."
            else:
                msg = "Nothing to cancel, this prompt has expired."
    except NotFoundError:
        await query.edit_message_text("Task not found — it may have been deleted.")
        return
    except TrackerError as exc:
        await query.edit_message_text(str(exc))
        return

    await query.edit_message_text(_with_storage_warning(service, msg), parse_mode="Markdown")


# ---------------------------------------------------------------------------
# Import (document upload)
# ---------------------------------------------------------------------------


@authorized_only
async def handle_document(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle an uploaded backup file — replace all tasks with its contents."""
    service = _tracker(context)
    document = update.message.document
    if not (document.file_name or "").lower().endswith(".json"):
        await update.message.reply_text("Please send a .json backup file to import.")
        return

    tmp_path: str | None = None
    try:
        tg_file = await context.bot.get_file(document.file_id)
        with tempfile.NamedTemporaryFile(suffix=".json", delete=False) as tmp:
            tmp_path = tmp.name
        await tg_file.download_to_drive(tmp_path)

        result = await service.import_from(tmp_path)
        await update.message.reply_text(
            _with_storage_warning(service, f"📥 {result.message}", markdown=False)
        )
    except SchemaError as exc:
        logger.warning("Import rejected: %s", exc)
        await update.message.reply_text(f"Import failed: {exc}")
    except Exception as exc:
        logger.error("Import error: %s", exc)
        await update.message.reply_text("Sorry, I couldn't import that file. Please try again.")
    finally:
        if tmp_path:
            Path(tmp_path).unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


async def _start_ticker(app: Application) -> None:
    app.bot_data["ticker"].start()


async def _stop_ticker(app: Application) -> None:
    await app.bot_data["ticker"].stop()


def build_app(
    service: TrackerService | None = None,
    notifier: NotificationPort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        service: Tracker service. Defaults to one backed by the SQLite store
                 at settings.DATABASE_PATH.
        notifier: Notification port for reset notices. Defaults to
                  TelegramNotifier (created from the bot instance).
    """
    from task_tracker.core.reset_announcer import ResetAnnouncer
    from task_tracker.core.ticker import ResetTicker

    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_start_ticker)
        .post_shutdown(_stop_ticker)
        .build()
    )

    if service is None:
        from task_tracker.core.tracker_service import TrackerService
        from task_tracker.data.db import TrackerDB
        from task_tracker.data.models import ResetTime

        service = TrackerService.open(
            TrackerDB(),
            default_reset_time=ResetTime(settings.RESET_HOUR, settings.RESET_MINUTE),
            timezone=settings.TIMEZONE,
        )

    if notifier is None:
        from task_tracker.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    ticker = ResetTicker(service, interval_seconds=settings.TICK_SECONDS)
    ticker.subscribe(ResetAnnouncer(service, notifier, settings.ALLOWED_USER_IDS))

    # Store the service in bot_data for handler access
    app.bot_data["tracker"] = service
    app.bot_data["ticker"] = ticker

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("add", cmd_add))
    app.add_handler(CommandHandler("list", cmd_list))
    app.add_handler(CommandHandler("tab", cmd_tab))
    app.add_handler(CommandHandler("search", cmd_search))
    app.add_handler(CommandHandler("sort", cmd_sort))
    app.add_handler(CommandHandler("toggle", cmd_toggle))
    app.add_handler(CommandHandler("edit", cmd_edit))
    app.add_handler(CommandHandler("delete", cmd_delete))
    app.add_handler(CommandHandler("stats", cmd_stats))
    app.add_handler(CommandHandler("resettime", cmd_resettime))
    app.add_handler(CommandHandler("export", cmd_export))
    app.add_handler(CallbackQueryHandler(
        _handle_confirm_callback, pattern=r"^(complete|delete):(confirm|cancel)(:.+)?$",
    ))

    # Backup upload
    app.add_handler(MessageHandler(filters.Document.ALL, handle_document))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    token = settings.TELEGRAM_BOT_TOKEN
    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    logger.info("Starting Task Tracker bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
