"""
Taskbot — Telegram Bot.

Telegram is the user interface of the recurring task scheduler: group admins
define recurring tasks here, reminders are posted here, and assignees report
completion with the button on each reminder.

Security-first: management commands from unauthorized users are silently
ignored. The completion button is open to every chat member.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, ReplyKeyboardMarkup, ReplyKeyboardRemove, Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    ConversationHandler,
    MessageHandler,
    filters,
)

from taskbot.adapters.telegram_notifier import COMPLETE_CALLBACK_PREFIX
from taskbot.config import settings
from taskbot.core.formatter import WEEKDAY_NAMES, format_local_datetime, format_schedule
from taskbot.data.models import InvalidRecurrenceRule, rule_from_fields
from taskbot.ports.store_port import StoreUnavailable, TaskNotFound

if TYPE_CHECKING:
    from taskbot.core.completion_tracker import CompletionTracker
    from taskbot.core.dispatcher import RecurringTaskDispatcher
    from taskbot.core.recurring_tasks import RecurringTaskService
    from taskbot.ports.notification_port import NotificationPort
    from taskbot.ports.store_port import RecurringTaskStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, Any]],
) -> Callable[..., Coroutine[Any, Any, Any]]:
    """Decorator that silently ignores messages from unauthorized users."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> Any:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return None  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Input parsing helpers
# ---------------------------------------------------------------------------

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_MENTION_RE = re.compile(r"@(\w+)")
_NO_EXCLUSIONS = {"none", "no", "-", "0 days"}


def _parse_time(text: str) -> tuple[int, int] | None:
    """Parse 'H:MM' / 'HH:MM' into (hour, minute), or None."""
    match = _TIME_RE.match(text.strip())
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return hour, minute


def _parse_weekday(text: str) -> int | None:
    """Parse a weekday name ('mon', 'Monday') or number (0 = Sunday)."""
    text = text.strip().lower()
    if text.isdigit():
        day = int(text)
        return day if 0 <= day <= 6 else None
    if len(text) < 3:
        return None
    for index, name in enumerate(WEEKDAY_NAMES):
        if name.lower().startswith(text):
            return index
    return None


def _parse_excluded_days(text: str) -> frozenset[int] | None:
    """Parse 'none' or a comma list of weekdays ('sat, sun' / '0,6')."""
    text = text.strip().lower()
    if text in _NO_EXCLUSIONS:
        return frozenset()
    days: set[int] = set()
    for part in text.split(","):
        day = _parse_weekday(part)
        if day is None:
            return None
        days.add(day)
    return frozenset(days)


def _parse_complete_callback(data: str) -> tuple[int, datetime] | None:
    """Inverse of build_complete_callback: 'rt_complete:<id>:<epoch ms>'."""
    parts = data.split(":")
    if len(parts) != 3 or parts[0] != COMPLETE_CALLBACK_PREFIX:
        return None
    try:
        task_id = int(parts[1])
        epoch_ms = int(parts[2])
    except ValueError:
        return None
    return task_id, datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)


def _display_name(user: Any) -> str:
    name = user.first_name or ""
    if user.last_name:
        name += f" {user.last_name}"
    return name or str(user.id)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message."""
    await update.message.reply_text(
        "Welcome to *Taskbot*!\n\n"
        "I post reminders for recurring tasks and keep track of who did them:\n"
        "• Use /addrecurring to set up a daily, weekly or monthly task\n"
        "• Use /recurring to list tasks\n"
        "• Tap *Mark done* on a reminder to report completion\n\n"
        "Type /help for the full command list.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/addrecurring — Set up a recurring task\n"
        "/recurring — List recurring tasks\n"
        "/pauserecurring <id> — Pause a task's reminders\n"
        "/resumerecurring <id> — Resume a paused task\n"
        "/deleterecurring — Delete a recurring task\n"
        "/completions [id] — Show recent completions\n"
        "/help — Show this message",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_recurring(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /recurring — list all recurring tasks with their next reminder."""
    service: RecurringTaskService = context.bot_data["service"]

    try:
        tasks = service.list_tasks()
    except StoreUnavailable as exc:
        logger.error("/recurring error: %s", exc)
        await update.message.reply_text("Couldn't load recurring tasks. Please try again.")
        return

    if not tasks:
        await update.message.reply_text("No recurring tasks yet. Use /addrecurring to create one.")
        return

    lines = ["Recurring tasks:\n"]
    for t in tasks:
        status = (
            f"next: {format_local_datetime(t.next_send_at, settings.operational_offset)}"
            if t.is_active else "paused"
        )
        mention = f", {t.assignee_mention}" if t.assignee_mention else ""
        lines.append(f"#{t.id} {t.task_title} ({format_schedule(t.rule)}{mention}; {status})")
    await update.message.reply_text("\n".join(lines))


async def _set_active(
    update: Update, context: ContextTypes.DEFAULT_TYPE, active: bool,
) -> None:
    """Shared body of /pauserecurring and /resumerecurring."""
    service: RecurringTaskService = context.bot_data["service"]
    command = "resumerecurring" if active else "pauserecurring"

    args = context.args
    if not args:
        await update.message.reply_text(f"Usage: /{command} <task_id>\nUse /recurring to see IDs.")
        return
    try:
        task_id = int(args[0])
    except ValueError:
        await update.message.reply_text("Invalid task ID. Use /recurring to see valid IDs.")
        return

    try:
        task = service.reactivate(task_id) if active else service.deactivate(task_id)
    except TaskNotFound:
        await update.message.reply_text(f"No recurring task with ID {task_id}.")
        return
    except StoreUnavailable as exc:
        logger.error("/%s error: %s", command, exc)
        await update.message.reply_text("Something went wrong. Please try again.")
        return

    if active:
        when = format_local_datetime(task.next_send_at, settings.operational_offset)
        await update.message.reply_text(f"▶️ '{task.task_title}' resumed. Next reminder: {when}")
    else:
        await update.message.reply_text(f"⏸ '{task.task_title}' paused.")


@authorized_only
async def cmd_pauserecurring(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /pauserecurring <id>."""
    await _set_active(update, context, active=False)


@authorized_only
async def cmd_resumerecurring(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /resumerecurring <id>."""
    await _set_active(update, context, active=True)


@authorized_only
async def cmd_deleterecurring(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /deleterecurring — show tasks as buttons to pick from."""
    service: RecurringTaskService = context.bot_data["service"]

    try:
        tasks = service.list_tasks()
    except StoreUnavailable as exc:
        logger.error("/deleterecurring error: %s", exc)
        await update.message.reply_text("Couldn't load recurring tasks. Please try again.")
        return

    if not tasks:
        await update.message.reply_text("No recurring tasks to delete.")
        return

    keyboard = [
        [InlineKeyboardButton(t.task_title, callback_data=f"delrt:{t.id}")]
        for t in tasks
    ]
    await update.message.reply_text(
        "Which recurring task do you want to delete?",
        reply_markup=InlineKeyboardMarkup(keyboard),
    )


async def _handle_delete_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Handle the inline button tap to delete a recurring task."""
    service: RecurringTaskService = context.bot_data["service"]

    query = update.callback_query
    await query.answer()

    user = query.from_user
    if user is None or user.id not in settings.ALLOWED_USER_IDS:
        return

    task_id = int(query.data.split(":")[1])
    try:
        task = service.get_task(task_id)
        if task is None or not service.delete_task(task_id):
            await query.edit_message_text("Task not found or already deleted.")
            return
    except StoreUnavailable as exc:
        logger.error("deleterecurring callback error: %s", exc)
        await query.edit_message_text("Something went wrong. Please try again.")
        return

    await query.edit_message_text(
        f"✅ Recurring task '{task.task_title}' deleted. Its completion history is kept.",
    )


@authorized_only
async def cmd_completions(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /completions [id] — recent completions, optionally for one task."""
    tracker: CompletionTracker = context.bot_data["tracker"]
    offset = settings.operational_offset

    try:
        if context.args:
            try:
                task_id = int(context.args[0])
            except ValueError:
                await update.message.reply_text("Invalid task ID. Use /recurring to see valid IDs.")
                return
            rows = [(c, None) for c in tracker.completions_for_task(task_id)[:20]]
        else:
            rows = [(r.completion, r.task_title or "(deleted task)") for r in tracker.recent_completions(20)]
    except StoreUnavailable as exc:
        logger.error("/completions error: %s", exc)
        await update.message.reply_text("Couldn't load completions. Please try again.")
        return

    if not rows:
        await update.message.reply_text("No completions recorded yet.")
        return

    lines = ["Completions:\n"]
    for completion, title in rows:
        who = completion.completed_by_name or completion.completed_by
        prefix = f"{title} — " if title else ""
        lines.append(
            f"• {prefix}{who} at {format_local_datetime(completion.completed_at, offset)} "
            f"(cycle {format_local_datetime(completion.scheduled_at, offset)})"
        )
    await update.message.reply_text("\n".join(lines))


async def _handle_complete_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Handle the 'Mark done' button on a reminder."""
    tracker: CompletionTracker = context.bot_data["tracker"]

    query = update.callback_query
    await query.answer()

    parsed = _parse_complete_callback(query.data)
    if parsed is None:
        logger.warning("Malformed completion callback: %r", query.data)
        return
    task_id, scheduled_at = parsed

    chat = update.effective_chat
    if chat is None:
        logger.warning("Completion callback for task #%d without a chat, ignored", task_id)
        return

    user = query.from_user
    name = _display_name(user)
    reply_to = query.message.message_id if query.message else None
    try:
        if tracker.is_cycle_completed(task_id, scheduled_at):
            await context.bot.send_message(
                chat_id=chat.id,
                text="☑️ This reminder was already reported as done.",
                reply_to_message_id=reply_to,
            )
            return
        tracker.record_completion(
            task_id=task_id,
            scheduled_at=scheduled_at,
            completed_by=str(user.id),
            completed_by_name=name,
            chat_id=str(chat.id),
        )
    except TaskNotFound:
        await context.bot.send_message(
            chat_id=chat.id, text="❗ This recurring task no longer exists.",
        )
        return
    except StoreUnavailable as exc:
        logger.error("Completion callback error: %s", exc)
        await context.bot.send_message(
            chat_id=chat.id, text="❗ Couldn't record the completion. Please try again.",
        )
        return

    now = format_local_datetime(datetime.now(timezone.utc), settings.operational_offset)
    await context.bot.send_message(
        chat_id=chat.id,
        text=f"✅ Completion recorded\n\n👤 By: {name}\n⏰ {now}",
        reply_to_message_id=reply_to,
    )


# ---------------------------------------------------------------------------
# /addrecurring conversation
# ---------------------------------------------------------------------------

# ConversationHandler states for /addrecurring
(
    RT_FREQ,
    RT_DAY,
    RT_TIME,
    RT_TITLE,
    RT_ASSIGNEE,
) = range(5)


@authorized_only
async def cmd_addrecurring(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Handle /addrecurring — start recurring task creation."""
    keyboard = ReplyKeyboardMarkup(
        [["Daily", "Weekly", "Monthly"]],
        one_time_keyboard=True,
        resize_keyboard=True,
    )
    await update.message.reply_text("How often should it repeat?", reply_markup=keyboard)
    return RT_FREQ


async def addrecurring_freq(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Receive frequency, ask for the day part of the schedule."""
    freq = update.message.text.strip().lower()
    if freq not in ("daily", "weekly", "monthly"):
        await update.message.reply_text("Please choose Daily, Weekly or Monthly.")
        return RT_FREQ
    context.user_data["rt_freq"] = freq

    if freq == "daily":
        prompt = (
            "Any days to skip? Send 'none' or a list like 'sat, sun'."
        )
    elif freq == "weekly":
        prompt = "Which day of the week? (e.g., 'Monday')"
    else:
        prompt = "Which day of the month? (1-31; short months use their last day)"
    await update.message.reply_text(prompt, reply_markup=ReplyKeyboardRemove())
    return RT_DAY


async def addrecurring_day(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Receive weekday / day-of-month / excluded days, ask for the time."""
    text = update.message.text
    freq = context.user_data.get("rt_freq")

    if freq == "daily":
        excluded = _parse_excluded_days(text)
        if excluded is None or len(excluded) == 7:
            await update.message.reply_text(
                "Please send 'none' or weekdays like 'sat, sun' (not all seven)."
            )
            return RT_DAY
        context.user_data["rt_exclude_days"] = excluded
    elif freq == "weekly":
        day = _parse_weekday(text)
        if day is None:
            await update.message.reply_text("Please send a weekday name, e.g. 'Monday'.")
            return RT_DAY
        context.user_data["rt_day_of_week"] = day
    else:
        try:
            day = int(text.strip())
            if not 1 <= day <= 31:
                raise ValueError
        except ValueError:
            await update.message.reply_text("Please send a number from 1 to 31.")
            return RT_DAY
        context.user_data["rt_day_of_month"] = day

    await update.message.reply_text("At what time? (e.g., 9:00)")
    return RT_TIME


async def addrecurring_time(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Receive the reminder time, ask for the task title."""
    parsed = _parse_time(update.message.text)
    if parsed is None:
        await update.message.reply_text("Please use H:MM between 0:00 and 23:59.")
        return RT_TIME
    context.user_data["rt_hour"], context.user_data["rt_minute"] = parsed
    await update.message.reply_text("📝 What's the task? (e.g., 'Submit the weekly report')")
    return RT_TITLE


async def addrecurring_title(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Receive the task title, ask for the assignee."""
    title = update.message.text.strip()
    if not title:
        await update.message.reply_text("The task needs a title.")
        return RT_TITLE
    context.user_data["rt_title"] = title
    await update.message.reply_text("👤 Who is responsible? Send an @mention (e.g., @tanaka)")
    return RT_ASSIGNEE


async def addrecurring_assignee(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Receive the assignee mention and create the recurring task."""
    service: RecurringTaskService = context.bot_data["service"]

    match = _MENTION_RE.search(update.message.text)
    if not match:
        await update.message.reply_text("Please send an @mention, e.g. @tanaka")
        return RT_ASSIGNEE

    data = context.user_data
    try:
        rule = rule_from_fields(
            frequency=data["rt_freq"],
            hour=data["rt_hour"],
            minute=data["rt_minute"],
            day_of_week=data.get("rt_day_of_week"),
            day_of_month=data.get("rt_day_of_month"),
            exclude_days=data.get("rt_exclude_days"),
        )
        task = service.create_task(
            chat_id=str(update.effective_chat.id),
            creator_id=str(update.effective_user.id),
            assignee_id=match.group(1),
            assignee_mention=f"@{match.group(1)}",
            task_title=data["rt_title"],
            rule=rule,
        )
    except (InvalidRecurrenceRule, KeyError) as exc:
        logger.warning("Incomplete recurring task setup: %s", exc)
        await update.message.reply_text(
            "❗ The schedule was incomplete. Please start again with /addrecurring."
        )
        _clear_rt_data(context)
        return ConversationHandler.END
    except StoreUnavailable as exc:
        logger.error("Failed to create recurring task: %s", exc)
        await update.message.reply_text("❗ Couldn't save the recurring task. Please try again.")
        _clear_rt_data(context)
        return ConversationHandler.END

    next_send = format_local_datetime(task.next_send_at, settings.operational_offset)
    await update.message.reply_text(
        "✅ Recurring task created\n\n"
        f"📅 Schedule: {format_schedule(task.rule)}\n"
        f"📝 Task: {task.task_title}\n"
        f"👤 Assignee: {task.assignee_mention}\n\n"
        f"Next reminder: {next_send}"
    )
    _clear_rt_data(context)
    return ConversationHandler.END


async def addrecurring_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Cancel recurring task creation."""
    _clear_rt_data(context)
    await update.message.reply_text(
        "Recurring task setup cancelled.", reply_markup=ReplyKeyboardRemove(),
    )
    return ConversationHandler.END


def _clear_rt_data(context: ContextTypes.DEFAULT_TYPE) -> None:
    """Remove all recurring-task setup keys from user_data."""
    keys = [
        "rt_freq", "rt_exclude_days", "rt_day_of_week", "rt_day_of_month",
        "rt_hour", "rt_minute", "rt_title",
    ]
    for k in keys:
        context.user_data.pop(k, None)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    store: RecurringTaskStore | None = None,
    notifier: NotificationPort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        store: Store implementation. Defaults to the SQLite RecurringTaskDB.
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).
    """
    from taskbot.core.completion_tracker import CompletionTracker
    from taskbot.core.dispatcher import RecurringTaskDispatcher
    from taskbot.core.recurring_tasks import RecurringTaskService

    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    # Wire default adapters if not provided
    if store is None:
        from taskbot.data.db import RecurringTaskDB
        store = RecurringTaskDB()

    if notifier is None:
        from taskbot.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    # Store services in bot_data for handler access
    app.bot_data["service"] = RecurringTaskService(store)
    app.bot_data["tracker"] = CompletionTracker(store)
    dispatcher = RecurringTaskDispatcher(store, notifier)
    app.bot_data["dispatcher"] = dispatcher

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("recurring", cmd_recurring))
    app.add_handler(CommandHandler("pauserecurring", cmd_pauserecurring))
    app.add_handler(CommandHandler("resumerecurring", cmd_resumerecurring))
    app.add_handler(CommandHandler("deleterecurring", cmd_deleterecurring))
    app.add_handler(CommandHandler("completions", cmd_completions))
    app.add_handler(CallbackQueryHandler(_handle_delete_callback, pattern=r"^delrt:\d+$"))
    app.add_handler(
        CallbackQueryHandler(_handle_complete_callback, pattern=rf"^{COMPLETE_CALLBACK_PREFIX}:")
    )

    # /addrecurring conversation handler
    _text = filters.TEXT & ~filters.COMMAND
    addrecurring_conv = ConversationHandler(
        entry_points=[CommandHandler("addrecurring", cmd_addrecurring)],
        states={
            RT_FREQ: [MessageHandler(_text, addrecurring_freq)],
            RT_DAY: [MessageHandler(_text, addrecurring_day)],
            RT_TIME: [MessageHandler(_text, addrecurring_time)],
            RT_TITLE: [MessageHandler(_text, addrecurring_title)],
            RT_ASSIGNEE: [MessageHandler(_text, addrecurring_assignee)],
        },
        fallbacks=[CommandHandler("cancel", addrecurring_cancel)],
    )
    app.add_handler(addrecurring_conv)

    _setup_recurring_dispatch(app, dispatcher)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_recurring_dispatch(app: Application, dispatcher: RecurringTaskDispatcher) -> None:
    """Register the repeating dispatch job. Runs once at startup, then every interval.

    Exactly one dispatch job must run per store.
    """

    async def _dispatch_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        result = await dispatcher.run_tick()
        if result.failed:
            logger.warning(
                "Dispatch tick: %d due, %d sent, %d failed",
                result.due, result.dispatched, result.failed,
            )

    app.job_queue.run_repeating(
        _dispatch_job_callback,
        interval=settings.POLL_INTERVAL_SECONDS,
        first=0,
        name="recurring_task_dispatch",
    )

    logger.info(
        "Recurring task dispatch scheduled every %ds (UTC%+d)",
        settings.POLL_INTERVAL_SECONDS,
        settings.OPERATIONAL_UTC_OFFSET_HOURS,
    )


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,
    )
    logger.info("Starting Taskbot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
