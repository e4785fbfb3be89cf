"""
Trigger-based publish/subscribe over a shared broker connection.

PubSub is the caller-facing entry point. It wires a transport to the
subscription registry and message router, owns the task group that runs
background transport teardowns, and hands out pull-based sequences.
"""

from collections.abc import Awaitable, Callable, Coroutine, Iterable, Mapping
from enum import Enum, auto
from typing import Any, Self

import anyio
import structlog
from anyio.abc import TaskGroup

from mqtt_pubsub.core.codec import PayloadCodec
from mqtt_pubsub.core.config import PubSubConfig
from mqtt_pubsub.core.registry import SubscriptionRegistry
from mqtt_pubsub.core.router import MessageRouter
from mqtt_pubsub.core.sequence import TriggerSequence
from mqtt_pubsub.transport.base import Transport

logger = structlog.get_logger()

MessageListener = Callable[[Any], Awaitable[None] | None]


class PubSubState(Enum):
    """Lifecycle states for a PubSub instance."""

    CREATED = auto()
    RUNNING = auto()
    STOPPING = auto()
    STOPPED = auto()


class PubSub:
    """
    Publish/subscribe bus keyed by trigger names.

    Usage:
        async with PubSub(transport) as pubsub:
            sub_id = await pubsub.subscribe("Posts", on_post)
            await pubsub.publish("Posts", {"comment": "hello"})
            pubsub.unsubscribe(sub_id)
    """

    def __init__(self, transport: Transport, config: PubSubConfig | None = None) -> None:
        self._config = config or PubSubConfig()
        self._transport = transport
        codec = PayloadCodec(self._config.payload_encoding)
        self._registry = SubscriptionRegistry(transport, self._config, codec, spawn=self._spawn)
        self._router = MessageRouter(
            self._registry,
            codec,
            on_listener_error=self._config.on_listener_error,
        )
        self._sequences: set[TriggerSequence] = set()
        self._task_group: TaskGroup | None = None
        self._state = PubSubState.CREATED
        self._log = logger.bind(component="pubsub")

        transport.on_message(self._router.dispatch)

    # --- Properties ---

    @property
    def state(self) -> PubSubState:
        return self._state

    @property
    def config(self) -> PubSubConfig:
        return self._config

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    @property
    def router(self) -> MessageRouter:
        return self._router

    @property
    def is_running(self) -> bool:
        return self._state == PubSubState.RUNNING

    # --- Lifecycle ---

    async def __aenter__(self) -> Self:
        if self._state != PubSubState.CREATED:
            raise RuntimeError(f"Cannot start PubSub in state {self._state}")

        task_group = anyio.create_task_group()
        await task_group.__aenter__()
        self._task_group = task_group
        self._state = PubSubState.RUNNING
        self._log.info("pubsub_started", encoding=self._config.payload_encoding)
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> bool | None:
        self._state = PubSubState.STOPPING
        for sequence in list(self._sequences):
            sequence.close()

        if exc_type is None:
            await self._registry.settle()

        task_group, self._task_group = self._task_group, None
        self._state = PubSubState.STOPPED
        self._log.info(
            "pubsub_stopped",
            live_subscriptions=len(self._registry),
            messages_received=self._router.stats.total_messages_received,
        )
        return await task_group.__aexit__(exc_type, exc, tb)

    # --- Caller API ---

    async def subscribe(
        self,
        trigger: str,
        on_message: MessageListener,
        options: Mapping[str, Any] | None = None,
    ) -> int:
        """
        Subscribe a listener to a trigger.

        Args:
            trigger: Trigger name
            on_message: Called with each decoded value
            options: Channel options for the trigger transform

        Returns:
            Subscription ID for later unsubscription
        """
        self._ensure_running()
        return await self._registry.subscribe(trigger, on_message, options)

    def unsubscribe(self, subscription_id: int) -> None:
        """
        Remove a subscription.

        Allowed after the bus has stopped; the transport unsubscribe then
        runs on the next settle().

        Raises:
            UnknownSubscriptionError: If the id is not live
        """
        self._registry.unsubscribe(subscription_id)

    async def publish(
        self,
        trigger: str,
        payload: Any,
        options: Mapping[str, Any] | None = None,
    ) -> None:
        """Publish a value to the topic derived from a trigger."""
        self._ensure_running()
        await self._registry.publish(trigger, payload, options)

    def sequence(
        self,
        triggers: str | Iterable[str],
        options: Mapping[str, Any] | None = None,
    ) -> TriggerSequence:
        """
        Create a pull-based sequence over one or more triggers.

        Nothing is subscribed until the first pull.
        """
        self._ensure_running()
        sequence = TriggerSequence(
            self._registry,
            triggers,
            options,
            on_close=self._sequences.discard,
        )
        self._sequences.add(sequence)
        return sequence

    async def settle(self) -> None:
        """Wait for pending transport unsubscribes to complete."""
        await self._registry.settle()

    # --- Internals ---

    def _ensure_running(self) -> None:
        if self._state != PubSubState.RUNNING:
            raise RuntimeError(
                f"PubSub is {self._state.name}; use 'async with PubSub(...)' first"
            )

    def _spawn(self, func: Callable[..., Coroutine[Any, Any, Any]], *args: Any) -> bool:
        """Start a background task, or report that none can run."""
        if self._task_group is None:
            return False
        self._task_group.start_soon(func, *args)
        return True
