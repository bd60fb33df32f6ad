"""
Notification dispatcher.

Рассылка по всем настроенным каналам; сбой одного канала не мешает другим.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Sequence

from .models import ActivityKind, ActivityLog, AppointmentSlot, NotificationConfig, utcnow
from .notifications import NotificationChannel, build_channels
from .storage import Storage

logger = logging.getLogger(__name__)


ChannelsFactory = Callable[[Optional[NotificationConfig]], List[NotificationChannel]]

CHANNEL_LABELS = {"email": "email", "sms": "SMS"}
STATS_COUNTERS = {"email": "emails_sent", "sms": "sms_sent"}


def _label(name: str) -> str:
    return CHANNEL_LABELS.get(name, name)


class NotificationDispatcher:
    def __init__(self, storage: Storage, channels_factory: ChannelsFactory = build_channels) -> None:
        self._storage = storage
        self._channels_factory = channels_factory

    async def _channels(self) -> List[NotificationChannel]:
        config = await self._storage.get_notification_config()
        return self._channels_factory(config)

    async def notify(self, slots: Sequence[AppointmentSlot]) -> Dict[str, bool]:
        """
        Send found slots through every configured channel.

        Returns ``{channel_name: success}`` for the channels that were
        attempted. Channel failures are logged, never raised.
        """
        if not slots:
            return {}

        outcome: Dict[str, bool] = {}
        for channel in await self._channels():
            if not channel.can_test_now():
                logger.info("%s not configured, skipping notification", _label(channel.name))
                continue
            try:
                await channel.send(channel.format_slots(slots))
            except Exception as e:  # noqa: BLE001
                logger.error("Failed to send %s notification: %s", _label(channel.name), e)
                outcome[channel.name] = False
                continue
            logger.info("%s notification sent successfully", _label(channel.name))
            outcome[channel.name] = True
            await self._bump_counter(channel.name)

        await self._record(slots, outcome)
        return outcome

    async def send_test(self, channel_name: Optional[str] = None) -> Dict[str, bool]:
        """
        Send the canned test message; ``channel_name`` limits it to one channel.

        Не пишет в журнал и не трогает статистику.
        """
        results: Dict[str, bool] = {}
        for channel in await self._channels():
            if channel_name and channel.name != channel_name:
                continue
            if not channel.can_test_now():
                logger.warning("%s test skipped: channel not configured", _label(channel.name))
                results[channel.name] = False
                continue
            try:
                await channel.send_test()
                results[channel.name] = True
            except Exception as e:  # noqa: BLE001
                logger.error("%s test failed: %s", _label(channel.name), e)
                results[channel.name] = False
        return results

    async def _bump_counter(self, channel_name: str) -> None:
        field_name = STATS_COUNTERS.get(channel_name)
        if not field_name:
            return
        stats = await self._storage.get_stats()
        if stats is None:
            return
        await self._storage.upsert_stats(
            stats.model_copy(update={field_name: getattr(stats, field_name) + 1})
        )

    async def _record(self, slots: Sequence[AppointmentSlot], outcome: Dict[str, bool]) -> None:
        succeeded = [name for name, ok in outcome.items() if ok]
        count = len(slots)
        noun = f"appointment{'s' if count != 1 else ''}"

        if succeeded:
            labels = [_label(name) for name in succeeded]
            await self._storage.add_activity(
                ActivityLog(
                    type=ActivityKind.NOTIFICATION_SENT,
                    title="Notifications Sent",
                    description=f"Sent {' and '.join(labels)} notifications for {count} {noun}",
                    action=f"Notified via: {', '.join(labels)}",
                    metadata={
                        "slots": [slot.model_dump() for slot in slots],
                        "methods": succeeded,
                        "timestamp": utcnow().isoformat(),
                    },
                )
            )
            return

        failed = [_label(name) for name in outcome]
        description = (
            f"All notification channels failed ({', '.join(failed)}) for {count} {noun}"
            if failed
            else f"No notification channels configured for {count} {noun}"
        )
        await self._storage.add_activity(
            ActivityLog(
                type=ActivityKind.NOTIFICATION_FAILED,
                title="Notification Failed",
                description=description,
                metadata={"slots": [slot.model_dump() for slot in slots], "failed": list(outcome)},
            )
        )


__all__ = ["NotificationDispatcher"]
