"""
Transport interface consumed by the subscription core.

A transport talks to the broker: it subscribes and unsubscribes topic
filters, publishes bytes, and hands inbound (topic, payload) pairs to a
single registered handler.
"""

from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

InboundHandler = Callable[[str, bytes], Awaitable[Any]]


class Granted(BaseModel):
    """Broker acknowledgment for one subscribed filter."""

    model_config = ConfigDict(frozen=True, extra="allow")

    topic: str
    qos: int = 0


@runtime_checkable
class Transport(Protocol):
    """Broker client as seen by the core. Options are opaque mappings."""

    def on_message(self, handler: InboundHandler) -> None: ...

    async def subscribe(
        self, topic_filter: str, options: Mapping[str, Any]
    ) -> Sequence[Granted]: ...

    async def unsubscribe(self, topic_filter: str) -> None: ...

    async def publish(
        self, topic: str, payload: bytes, options: Mapping[str, Any]
    ) -> None: ...
