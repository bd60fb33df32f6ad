"""
Telegram control bot built with aiogram 3.

Telegram-бот для управления мониторингом:
- /start, кнопки: Запустить, Остановить, Статус, Проверить сейчас
- локации: список, добавление (FSM), включение/выключение, удаление
- настройки мониторинга, тест уведомлений, статистика, журнал
- мидлвара, которая пускает только админа по chat_id
"""

from __future__ import annotations

import asyncio
import html
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from aiogram import BaseMiddleware, Bot, Dispatcher, F, Router
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.filters import Command, CommandObject
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import (
    CallbackQuery,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    Message,
    TelegramObject,
)
from pydantic import ValidationError

from .app import MonitorApp
from .config import get_settings
from .errors import ConfigurationError
from .models import (
    ActivityLog,
    CycleResult,
    Location,
    LocationCreate,
    LocationUpdate,
    MonitoringSettings,
    MonitoringStats,
    MonitorStatus,
)
from .utils import format_timestamp, format_uptime, setup_logging


logger = logging.getLogger(__name__)


class AdminOnlyMiddleware(BaseMiddleware):
    """Allow only admin user to interact with bot."""

    def __init__(self, admin_chat_id: int) -> None:
        super().__init__()
        self.admin_chat_id = admin_chat_id

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        if isinstance(event, CallbackQuery):
            chat = event.message.chat if event.message else None
        else:
            chat = getattr(event, "chat", None)
        if chat is not None and chat.id != self.admin_chat_id:
            if isinstance(event, Message):
                await event.answer("This bot is private.")
            elif isinstance(event, CallbackQuery):
                await event.answer("This bot is private.", show_alert=True)
            return
        return await handler(event, data)


class AddLocation(StatesGroup):
    name = State()
    url = State()
    type = State()


# region formatting
def format_status(status: MonitorStatus, settings: Optional[MonitoringSettings], stats: Optional[MonitoringStats]) -> str:
    lines = [
        "📊 <b>Monitoring status</b>",
        f"State: {'running' if status.is_running else 'stopped'}",
    ]
    if status.is_running:
        lines.append(f"Started: {format_timestamp(status.start_time)}")
        lines.append(f"Uptime: {format_uptime(status.uptime_minutes)}")
    if settings:
        lines.append(
            f"Interval: {settings.check_interval}s, days ahead: {settings.days_ahead}, "
            f"business days only: {'yes' if settings.business_days_only else 'no'}"
        )
    if stats:
        lines.append(f"Last check: {format_timestamp(stats.last_check_time)}")
    return "\n".join(lines)


def format_stats(stats: MonitoringStats) -> str:
    return "\n".join(
        [
            "📈 <b>Statistics</b>",
            f"Total checks: {stats.total_checks}",
            f"Appointments found: {stats.appointments_found}",
            f"Emails sent: {stats.emails_sent}",
            f"SMS sent: {stats.sms_sent}",
            f"Last check: {format_timestamp(stats.last_check_time)}",
            f"Uptime: {format_uptime(stats.uptime)}",
        ]
    )


def format_locations(locations: List[Location]) -> str:
    if not locations:
        return "No locations configured. Use /add_location."
    lines = ["📍 <b>Locations</b>"]
    for idx, loc in enumerate(locations, start=1):
        mark = "✅" if loc.enabled else "⏸"
        lines.append(f"{idx}. {mark} {html.escape(loc.name)} ({html.escape(loc.type)})\n   {html.escape(loc.url)}")
    lines.append("\n/toggle N — enable/disable, /delete N — remove")
    return "\n".join(lines)


def format_activity(entries: List[ActivityLog]) -> str:
    if not entries:
        return "Activity log is empty."
    lines = ["🗒 <b>Recent activity</b>"]
    for entry in entries:
        line = f"{format_timestamp(entry.created_at)} <b>{html.escape(entry.title)}</b>"
        if entry.description:
            line += f"\n{html.escape(entry.description)}"
        if entry.action:
            line += f"\n<i>{html.escape(entry.action)}</i>"
        lines.append(line)
    return "\n\n".join(lines)


def format_cycle(result: CycleResult) -> str:
    if result.error:
        return f"❌ Check failed: <code>{html.escape(result.error)}</code>"
    if not result.slots:
        return "No appointments available right now."
    lines = [f"🎉 Found {len(result.slots)} slot(s):"]
    for slot in result.slots:
        lines.append(f"• {html.escape(slot.location)}: {html.escape(slot.time)}\n  {html.escape(slot.url)}")
    sent = [name for name, ok in result.notified.items() if ok]
    lines.append(f"Notified via: {', '.join(sent)}" if sent else "Notifications failed.")
    return "\n".join(lines)


def format_test_results(results: Dict[str, bool]) -> str:
    if not results:
        return "No such channel."
    return "\n".join(f"{name}: {'✅ sent' if ok else '❌ failed'}" for name, ok in results.items())


def format_validation_error(exc: ValidationError) -> str:
    parts = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
    return "Invalid value: " + "; ".join(parts)


# endregion


async def update_monitoring_settings(app: MonitorApp, **changes: Any) -> MonitoringSettings:
    """
    Validate and save changed settings, then let the scheduler pick them up.

    Raises ValidationError for out-of-range values; nothing is saved then.
    """
    current = await app.storage.get_settings() or MonitoringSettings()
    data = current.model_dump()
    data.update(changes)
    updated = MonitoringSettings.model_validate(data)
    saved = await app.storage.upsert_settings(updated)
    try:
        await app.scheduler.update_settings()
    except ConfigurationError as e:
        # Мониторинг выключен в настройках, перезапуск не нужен
        logger.info("Scheduler not restarted: %s", e)
    return saved


async def location_by_index(app: MonitorApp, raw: Optional[str]) -> Optional[Location]:
    """Resolve a 1-based index from /locations output."""
    try:
        idx = int((raw or "").strip())
    except ValueError:
        return None
    locations = await app.storage.list_locations()
    if 1 <= idx <= len(locations):
        return locations[idx - 1]
    return None


def _parse_switch(raw: Optional[str]) -> Optional[bool]:
    value = (raw or "").strip().lower()
    if value in ("on", "yes", "true", "1"):
        return True
    if value in ("off", "no", "false", "0"):
        return False
    return None


def main_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(text="▶️ Start monitoring", callback_data="start_monitoring"),
                InlineKeyboardButton(text="⏹ Stop", callback_data="stop_monitoring"),
            ],
            [
                InlineKeyboardButton(text="🔍 Check now", callback_data="check_now"),
                InlineKeyboardButton(text="ℹ️ Status", callback_data="status"),
            ],
            [
                InlineKeyboardButton(text="📨 Test notifications", callback_data="test_notifications"),
                InlineKeyboardButton(text="🗒 Activity", callback_data="activity"),
            ],
        ]
    )


def build_router(app: MonitorApp) -> Router:
    router = Router(name="dmv-monitor")

    async def status_text() -> str:
        return format_status(
            app.scheduler.get_status(),
            await app.storage.get_settings(),
            await app.storage.get_stats(),
        )

    # region monitoring
    @router.message(Command("start"))
    async def cmd_start(message: Message, state: FSMContext) -> None:
        await state.clear()
        await message.answer(
            "👋 DMV appointment monitor.\n\n"
            "Use the buttons below to control monitoring.\n"
            "Commands: /locations, /add_location, /settings, /notifications, "
            "/stats, /activity, /clear_activity, /help",
            reply_markup=main_keyboard(),
        )

    @router.message(Command("help"))
    async def cmd_help(message: Message) -> None:
        await message.answer(
            "/status, /check — monitoring\n"
            "/locations, /add_location, /toggle N, /delete N — locations\n"
            "/settings, /set_interval SECONDS, /set_days N, /business_days on|off, "
            "/enable, /disable — settings\n"
            "/notifications, /test_email, /test_sms, /test_notifications — notifications\n"
            "/stats, /activity [N], /clear_activity — history"
        )

    @router.callback_query(F.data == "start_monitoring")
    async def on_start_monitoring(callback: CallbackQuery) -> None:
        await callback.answer()
        try:
            await app.scheduler.start()
        except ConfigurationError as e:
            await callback.message.answer(f"⚠️ {html.escape(str(e))}. Use /enable first.")
            return
        await callback.message.edit_text(await status_text(), reply_markup=main_keyboard())

    @router.callback_query(F.data == "stop_monitoring")
    async def on_stop_monitoring(callback: CallbackQuery) -> None:
        await callback.answer()
        await app.scheduler.stop()
        await callback.message.edit_text(await status_text(), reply_markup=main_keyboard())

    @router.callback_query(F.data == "status")
    async def on_status(callback: CallbackQuery) -> None:
        await callback.answer()
        await callback.message.edit_text(await status_text(), reply_markup=main_keyboard())

    @router.message(Command("status"))
    async def cmd_status(message: Message) -> None:
        await message.answer(await status_text(), reply_markup=main_keyboard())

    async def run_check(message: Message) -> None:
        await message.answer("Checking booking pages, this may take a minute...")
        result = await app.scheduler.check_now()
        await message.answer(format_cycle(result), disable_web_page_preview=True)

    @router.callback_query(F.data == "check_now")
    async def on_check_now(callback: CallbackQuery) -> None:
        await callback.answer()
        await run_check(callback.message)

    @router.message(Command("check"))
    async def cmd_check(message: Message) -> None:
        await run_check(message)

    # endregion

    # region locations
    @router.message(Command("locations"))
    async def cmd_locations(message: Message) -> None:
        await message.answer(format_locations(await app.storage.list_locations()), disable_web_page_preview=True)

    @router.message(Command("toggle"))
    async def cmd_toggle(message: Message, command: CommandObject) -> None:
        location = await location_by_index(app, command.args)
        if location is None:
            await message.answer("Usage: /toggle N (number from /locations)")
            return
        updated = await app.storage.update_location(location.id, LocationUpdate(enabled=not location.enabled))
        if updated:
            await message.answer(
                f"{html.escape(updated.name)}: {'enabled' if updated.enabled else 'disabled'}"
            )

    @router.message(Command("delete"))
    async def cmd_delete(message: Message, command: CommandObject) -> None:
        location = await location_by_index(app, command.args)
        if location is None:
            await message.answer("Usage: /delete N (number from /locations)")
            return
        await app.storage.delete_location(location.id)
        await message.answer(f"Deleted {html.escape(location.name)}")

    @router.message(Command("add_location"))
    async def cmd_add_location(message: Message, state: FSMContext) -> None:
        await state.set_state(AddLocation.name)
        await message.answer("Location name? (e.g. Henderson DMV (DL))\n/cancel to abort")

    @router.message(Command("cancel"))
    async def cmd_cancel(message: Message, state: FSMContext) -> None:
        await state.clear()
        await message.answer("Cancelled.")

    @router.message(AddLocation.name, F.text)
    async def add_location_name(message: Message, state: FSMContext) -> None:
        await state.update_data(name=message.text.strip())
        await state.set_state(AddLocation.url)
        await message.answer("Booking page URL?")

    @router.message(AddLocation.url, F.text)
    async def add_location_url(message: Message, state: FSMContext) -> None:
        await state.update_data(url=message.text.strip())
        await state.set_state(AddLocation.type)
        await message.answer("Service type? (e.g. All Services, Driver's License Only)")

    @router.message(AddLocation.type, F.text)
    async def add_location_type(message: Message, state: FSMContext) -> None:
        data = await state.get_data()
        await state.clear()
        try:
            payload = LocationCreate(name=data.get("name", ""), url=data.get("url", ""), type=message.text.strip())
        except ValidationError as e:
            await message.answer(html.escape(format_validation_error(e)) + "\nStart again with /add_location")
            return
        location = await app.storage.create_location(payload)
        await message.answer(f"Added {html.escape(location.name)} ✅")

    # endregion

    # region settings
    @router.message(Command("settings"))
    async def cmd_settings(message: Message) -> None:
        settings = await app.storage.get_settings() or MonitoringSettings()
        await message.answer(
            "⚙️ <b>Monitoring settings</b>\n"
            f"Check interval: {settings.check_interval}s\n"
            f"Days ahead: {settings.days_ahead}\n"
            f"Business days only: {'yes' if settings.business_days_only else 'no'}\n"
            f"Enabled: {'yes' if settings.is_enabled else 'no'}"
        )

    async def change_settings(message: Message, **changes: Any) -> None:
        try:
            saved = await update_monitoring_settings(app, **changes)
        except ValidationError as e:
            await message.answer(html.escape(format_validation_error(e)))
            return
        await message.answer(
            f"Saved. Interval {saved.check_interval}s, {saved.days_ahead} day(s) ahead, "
            f"business days only: {'yes' if saved.business_days_only else 'no'}, "
            f"enabled: {'yes' if saved.is_enabled else 'no'}"
        )

    @router.message(Command("set_interval"))
    async def cmd_set_interval(message: Message, command: CommandObject) -> None:
        try:
            seconds = int((command.args or "").strip())
        except ValueError:
            await message.answer("Usage: /set_interval SECONDS (60 or more)")
            return
        await change_settings(message, check_interval=seconds)

    @router.message(Command("set_days"))
    async def cmd_set_days(message: Message, command: CommandObject) -> None:
        try:
            days = int((command.args or "").strip())
        except ValueError:
            await message.answer("Usage: /set_days N (1-30)")
            return
        await change_settings(message, days_ahead=days)

    @router.message(Command("business_days"))
    async def cmd_business_days(message: Message, command: CommandObject) -> None:
        value = _parse_switch(command.args)
        if value is None:
            await message.answer("Usage: /business_days on|off")
            return
        await change_settings(message, business_days_only=value)

    @router.message(Command("enable"))
    async def cmd_enable(message: Message) -> None:
        await change_settings(message, is_enabled=True)

    @router.message(Command("disable"))
    async def cmd_disable(message: Message) -> None:
        await change_settings(message, is_enabled=False)

    # endregion

    # region notifications
    @router.message(Command("notifications"))
    async def cmd_notifications(message: Message) -> None:
        config = await app.storage.get_notification_config()
        if config is None:
            await message.answer("Notifications are not configured (see .env).")
            return
        view = config.public_view()
        view.pop("updated_at", None)
        lines = ["✉️ <b>Notification config</b>"]
        lines.extend(f"{key}: {html.escape(str(value))}" for key, value in view.items())
        await message.answer("\n".join(lines))

    async def run_test(message: Message, channel: Optional[str]) -> None:
        results = await app.dispatcher.send_test(channel)
        await message.answer(format_test_results(results))

    @router.message(Command("test_email"))
    async def cmd_test_email(message: Message) -> None:
        await run_test(message, "email")

    @router.message(Command("test_sms"))
    async def cmd_test_sms(message: Message) -> None:
        await run_test(message, "sms")

    @router.message(Command("test_notifications"))
    async def cmd_test_notifications(message: Message) -> None:
        await run_test(message, None)

    @router.callback_query(F.data == "test_notifications")
    async def on_test_notifications(callback: CallbackQuery) -> None:
        await callback.answer()
        await run_test(callback.message, None)

    # endregion

    # region history
    @router.message(Command("stats"))
    async def cmd_stats(message: Message) -> None:
        stats = await app.storage.get_stats() or MonitoringStats()
        await message.answer(format_stats(stats))

    async def send_activity(message: Message, limit: int = 10) -> None:
        entries = await app.storage.list_activity(limit=limit)
        await message.answer(format_activity(entries), disable_web_page_preview=True)

    @router.message(Command("activity"))
    async def cmd_activity(message: Message, command: CommandObject) -> None:
        try:
            limit = int((command.args or "10").strip())
        except ValueError:
            limit = 10
        await send_activity(message, max(1, min(limit, 50)))

    @router.callback_query(F.data == "activity")
    async def on_activity(callback: CallbackQuery) -> None:
        await callback.answer()
        await send_activity(callback.message)

    @router.message(Command("clear_activity"))
    async def cmd_clear_activity(message: Message) -> None:
        await app.storage.clear_activity()
        await message.answer("Activity log cleared.")

    # endregion

    return router


def main() -> None:
    """Entry point for running the bot."""
    settings = get_settings()
    setup_logging()

    bot = Bot(
        settings.bot.token,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )
    dp = Dispatcher()
    app = MonitorApp.from_settings(settings)

    dp.message.middleware(AdminOnlyMiddleware(settings.bot.admin_chat_id))
    dp.callback_query.middleware(AdminOnlyMiddleware(settings.bot.admin_chat_id))
    dp.include_router(build_router(app))

    logger.info("Starting polling")
    asyncio.run(_run_polling(dp, bot, app))


async def _run_polling(dp: Dispatcher, bot: Bot, app: MonitorApp) -> None:
    monitoring = await app.storage.get_settings()
    if monitoring and monitoring.is_enabled:
        await app.scheduler.start()
    try:
        # aiogram сам обрабатывает SIGINT/SIGTERM и завершает polling
        await dp.start_polling(bot)
    finally:
        await app.aclose()
        await bot.session.close()


if __name__ == "__main__":
    main()
