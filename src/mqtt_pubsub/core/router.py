"""
Inbound message routing.

Each (topic, payload) pair from the transport is decoded once and fanned
out to every listener whose topic filter matches the topic.
"""

import inspect
from dataclasses import dataclass

import anyio
import structlog

from mqtt_pubsub.core.codec import PayloadCodec
from mqtt_pubsub.core.config import ListenerErrorCallback
from mqtt_pubsub.core.registry import ListenerEntry, SubscriptionRegistry

logger = structlog.get_logger()


@dataclass
class RouterStats:
    """Statistics for inbound routing."""

    total_messages_received: int = 0
    total_messages_unmatched: int = 0
    total_deliveries: int = 0
    total_listener_errors: int = 0
    total_decode_errors: int = 0


class MessageRouter:
    """
    Routes transport messages to registered listeners.

    Features:
    - Wildcard-aware matching against live topic filters
    - Payload decoded once per message
    - Concurrent delivery
    - Error isolation (one listener failure doesn't affect others)
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        codec: PayloadCodec,
        on_listener_error: ListenerErrorCallback | None = None,
    ) -> None:
        self._registry = registry
        self._codec = codec
        self._on_listener_error = on_listener_error
        self._stats = RouterStats()
        self._log = logger.bind(component="message_router")

    @property
    def stats(self) -> RouterStats:
        return self._stats

    async def dispatch(self, topic: str, payload: bytes) -> int:
        """
        Deliver one inbound message.

        Args:
            topic: Concrete topic the message was published on
            payload: Raw transport bytes

        Returns:
            Number of listeners that handled the message without error
        """
        self._stats.total_messages_received += 1

        entries = self._registry.match(topic)
        if not entries:
            self._stats.total_messages_unmatched += 1
            self._log.debug("no_listeners", topic=topic)
            return 0

        try:
            value = self._codec.decode(payload)
        except Exception as exc:
            self._stats.total_decode_errors += 1
            self._log.warning(
                "payload_decode_failed",
                topic=topic,
                encoding=self._codec.encoding,
                error=str(exc),
            )
            return 0

        results: list[bool] = []

        async def deliver(entry: ListenerEntry) -> None:
            try:
                result = entry.listener(value)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                results.append(False)
                self._stats.total_listener_errors += 1
                self._log.exception(
                    "listener_failed",
                    topic=topic,
                    subscription_id=entry.subscription_id,
                )
                self._report(exc, entry)
                return
            results.append(True)

        async with anyio.create_task_group() as tg:
            for entry in entries:
                tg.start_soon(deliver, entry)

        delivered = sum(1 for r in results if r)
        self._stats.total_deliveries += delivered

        self._log.debug(
            "routed",
            topic=topic,
            delivered=delivered,
            total_listeners=len(entries),
        )

        return delivered

    def _report(self, error: Exception, entry: ListenerEntry) -> None:
        if self._on_listener_error is None:
            return
        try:
            self._on_listener_error(error, entry.subscription_id)
        except Exception:
            self._log.exception(
                "listener_error_callback_failed",
                subscription_id=entry.subscription_id,
            )
