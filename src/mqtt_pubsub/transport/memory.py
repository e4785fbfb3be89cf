"""
In-process loopback transport.

Behaves like a single-client broker: published messages come back to
the registered handler when any subscribed filter matches the topic.
Every call is recorded so tests can assert on transport traffic.
"""

from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import anyio
import structlog

from mqtt_pubsub.bus.topics import matches
from mqtt_pubsub.transport.base import Granted, InboundHandler

logger = structlog.get_logger()


@dataclass
class TransportCall:
    """One recorded transport operation."""

    operation: str
    topic: str
    options: dict[str, Any] = field(default_factory=dict)
    payload: bytes | None = None


class MemoryTransport:
    """
    Loopback broker for tests and local wiring.

    Attributes:
        calls: Every subscribe/unsubscribe/publish, in call order
        gate: When set to an unset anyio.Event, subscribe and unsubscribe
            stay in flight until the event is set
    """

    def __init__(self) -> None:
        self.calls: list[TransportCall] = []
        self.gate: anyio.Event | None = None
        self._granted: dict[str, Granted] = {}
        self._failures: dict[str, list[Exception]] = defaultdict(list)
        self._handler: InboundHandler | None = None
        self._log = logger.bind(component="memory_transport")

    @property
    def subscribed(self) -> set[str]:
        """Filters currently subscribed at the broker."""
        return set(self._granted)

    def on_message(self, handler: InboundHandler) -> None:
        self._handler = handler

    def fail_next(self, operation: str, error: Exception) -> None:
        """Make the next call of an operation raise the given error."""
        self._failures[operation].append(error)

    def count(self, operation: str, topic: str | None = None) -> int:
        """Count recorded calls, optionally for one topic."""
        return sum(
            1
            for call in self.calls
            if call.operation == operation and (topic is None or call.topic == topic)
        )

    async def subscribe(
        self, topic_filter: str, options: Mapping[str, Any]
    ) -> Sequence[Granted]:
        self.calls.append(TransportCall("subscribe", topic_filter, dict(options)))
        await self._hold()
        self._raise_injected("subscribe")
        granted = Granted(topic=topic_filter, qos=options.get("qos", 0))
        self._granted[topic_filter] = granted
        self._log.debug("subscribed", topic_filter=topic_filter, qos=granted.qos)
        return [granted]

    async def unsubscribe(self, topic_filter: str) -> None:
        self.calls.append(TransportCall("unsubscribe", topic_filter))
        await self._hold()
        self._raise_injected("unsubscribe")
        self._granted.pop(topic_filter, None)
        self._log.debug("unsubscribed", topic_filter=topic_filter)

    async def publish(self, topic: str, payload: bytes, options: Mapping[str, Any]) -> None:
        self.calls.append(TransportCall("publish", topic, dict(options), payload))
        self._raise_injected("publish")
        if self._handler is None:
            return
        if any(matches(topic_filter, topic) for topic_filter in self._granted):
            await self._handler(topic, payload)

    async def _hold(self) -> None:
        if self.gate is not None:
            await self.gate.wait()

    def _raise_injected(self, operation: str) -> None:
        pending = self._failures[operation]
        if pending:
            raise pending.pop(0)
