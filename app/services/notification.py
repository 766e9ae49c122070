"""Notification service for return lifecycle events.

Supports webhook, console logging, and pluggable notification channels.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Optional
import asyncio
import inspect
import json
import logging

import httpx

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    """Return lifecycle events."""
    RETURN_CREATED = "return.created"
    RETURN_APPROVED = "return.approved"
    RETURN_REJECTED = "return.rejected"
    RETURN_COMPLETED = "return.completed"
    RETURN_DELETED = "return.deleted"
    INVENTORY_RESTOCKED = "inventory.restocked"


class NotificationChannel(str, Enum):
    """Notification delivery channels."""
    WEBHOOK = "webhook"
    LOG = "log"


class DecimalEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


@dataclass
class Notification:
    """A single notification."""
    event: NotificationEvent
    title: str
    message: str
    data: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    channel: NotificationChannel = NotificationChannel.LOG
    delivered: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "event": self.event.value,
            "title": self.title,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "channel": self.channel.value,
            "delivered": self.delivered,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), cls=DecimalEncoder)


class NotificationService:
    """Manages notification dispatch across channels."""

    def __init__(self):
        self._handlers: dict[NotificationChannel, list[Callable]] = {}
        self._history: list[Notification] = []
        self._subscriptions: dict[NotificationEvent, list[NotificationChannel]] = {}
        self._max_history = 1000
        self._pending: set[asyncio.Task] = set()

    def register_handler(
        self,
        channel: NotificationChannel,
        handler: Callable[[Notification], Any],
    ) -> None:
        """Register a handler for a notification channel."""
        self._handlers.setdefault(channel, []).append(handler)

    def subscribe(
        self,
        event: NotificationEvent,
        channels: list[NotificationChannel],
    ) -> None:
        """Subscribe channels to specific events."""
        self._subscriptions[event] = channels

    def notify(
        self,
        event: NotificationEvent,
        title: str,
        message: str,
        data: Optional[dict] = None,
    ) -> list[Notification]:
        """Send notification to all subscribed channels for an event.

        Handler errors are recorded on the notification and logged; they are
        never raised to the caller. Coroutine handlers run as tasks on the
        running loop and mark the notification delivered when they finish.
        """
        channels = self._subscriptions.get(event, [NotificationChannel.LOG])
        results = []

        for channel in channels:
            notification = Notification(
                event=event,
                title=title,
                message=message,
                data=data or {},
                channel=channel,
            )

            handlers = self._handlers.get(channel, [])
            if not handlers:
                self._default_log_handler(notification)
                notification.delivered = True
            else:
                for handler in handlers:
                    try:
                        result = handler(notification)
                        if inspect.isawaitable(result):
                            self._schedule(notification, result)
                        else:
                            notification.delivered = True
                    except Exception as e:
                        notification.error = str(e)
                        logger.error(f"Notification failed: {channel.value} - {e}")

            self._history.append(notification)
            results.append(notification)

        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        return results

    def _schedule(self, notification: Notification, delivery: Awaitable) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self._deliver(notification, delivery))
            return
        task = loop.create_task(self._deliver(notification, delivery))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @staticmethod
    async def _deliver(notification: Notification, delivery: Awaitable) -> None:
        try:
            await delivery
            notification.delivered = True
        except Exception as e:
            notification.error = str(e)
            logger.error(f"Notification failed: {notification.channel.value} - {e}")

    async def drain(self) -> None:
        """Wait for in-flight async deliveries."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    def notify_return(self, event: NotificationEvent, return_data: dict) -> list[Notification]:
        """Convenience: notify about a return status change."""
        number = return_data.get("return_number", "N/A")
        status = return_data.get("status", "")
        amount = return_data.get("refund_amount", 0)
        actor = return_data.get("actor_id") or return_data.get("user_id", "")
        return self.notify(
            event=event,
            title=f"Return {number}: {status}",
            message=f"Return #{number} is {status} (refund {amount}) by {actor}",
            data=return_data,
        )

    def notify_restocked(self, restock_data: dict) -> list[Notification]:
        product = restock_data.get("product_id", "N/A")
        qty = restock_data.get("quantity", 0)
        ref = restock_data.get("reference", "")
        return self.notify(
            event=NotificationEvent.INVENTORY_RESTOCKED,
            title=f"Restocked: {product}",
            message=f"{qty} unit(s) of {product} back in stock from return {ref}",
            data=restock_data,
        )

    def get_history(
        self,
        event: Optional[NotificationEvent] = None,
        channel: Optional[NotificationChannel] = None,
        limit: int = 50,
    ) -> list[Notification]:
        """Get notification history with optional filters."""
        items = self._history
        if event:
            items = [n for n in items if n.event == event]
        if channel:
            items = [n for n in items if n.channel == channel]
        return items[-limit:]

    def clear_history(self) -> None:
        self._history = []

    def stats(self) -> dict:
        """Get notification statistics."""
        by_event: dict[str, int] = {}
        by_channel: dict[str, int] = {}
        for n in self._history:
            by_event[n.event.value] = by_event.get(n.event.value, 0) + 1
            by_channel[n.channel.value] = by_channel.get(n.channel.value, 0) + 1
        return {
            "total": len(self._history),
            "delivered": sum(1 for n in self._history if n.delivered),
            "failed": sum(1 for n in self._history if n.error),
            "by_event": by_event,
            "by_channel": by_channel,
        }

    @staticmethod
    def _default_log_handler(notification: Notification) -> None:
        logger.info(f"[{notification.event.value}] {notification.title}: {notification.message}")


def create_webhook_handler(url: str, timeout: float = 10, transport: Optional[httpx.AsyncBaseTransport] = None):
    """Create an async webhook notification handler."""

    async def handler(notification: Notification) -> None:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            resp = await client.post(
                url,
                content=notification.to_json(),
                headers={"Content-Type": "application/json"},
            )
            resp.raise_for_status()

    return handler


# Module-level singleton
notification_service = NotificationService()
