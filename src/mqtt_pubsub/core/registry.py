"""
Subscription registry for the publish/subscribe core.

Caller-level subscriptions are multiplexed onto one transport
subscription per distinct topic filter. The registry owns the
id -> listener mapping and the reference-counted filter subscriptions,
and serializes every transport subscribe/unsubscribe for a filter.
"""

import itertools
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import anyio
import structlog

from mqtt_pubsub.bus.topics import has_wildcards, matches
from mqtt_pubsub.core.codec import PayloadCodec
from mqtt_pubsub.core.config import PubSubConfig, resolve_options
from mqtt_pubsub.core.errors import PublishError, SubscribeError, UnknownSubscriptionError
from mqtt_pubsub.transport.base import Granted, Transport

logger = structlog.get_logger()

Listener = Callable[[Any], Any]
# Returns False when no background task can be started
Spawner = Callable[..., bool]

DEFAULT_SUBSCRIBE_OPTIONS: dict[str, Any] = {"qos": 0}
DEFAULT_PUBLISH_OPTIONS: dict[str, Any] = {"qos": 0, "retain": False}


@dataclass
class ListenerEntry:
    """A live caller-level subscription."""

    subscription_id: int
    trigger: str
    topic_filter: str
    listener: Listener


@dataclass
class FilterSubscription:
    """
    Shared transport subscription for one topic filter.

    The lock orders transport calls for the filter. `pending` counts
    subscribe calls still waiting on the transport; they hold the filter
    alive but are not listeners yet.
    """

    topic_filter: str
    listeners: dict[int, ListenerEntry] = field(default_factory=dict)
    pending: int = 0
    subscribed: bool = False
    granted: list[Granted] = field(default_factory=list)
    teardown_scheduled: bool = False
    failures: int = 0
    last_error: Exception | None = None
    lock: anyio.Lock = field(default_factory=anyio.Lock)

    @property
    def ref_count(self) -> int:
        return len(self.listeners)

    @property
    def demand(self) -> int:
        return len(self.listeners) + self.pending


@dataclass
class RegistryStats:
    """Transport traffic issued by the registry."""

    transport_subscribes: int = 0
    transport_unsubscribes: int = 0
    subscribe_failures: int = 0
    suppressed_unsubscribes: int = 0


class SubscriptionRegistry:
    """
    Reference-counted registry of listener subscriptions.

    Features:
    - One transport subscribe per distinct topic filter
    - Concurrent subscribers to a new filter share one transport call
    - Transport unsubscribe only when the last listener leaves
    - Rollback on transport failure so callers can retry
    """

    def __init__(
        self,
        transport: Transport,
        config: PubSubConfig,
        codec: PayloadCodec,
        spawn: Spawner,
    ) -> None:
        self._transport = transport
        self._config = config
        self._codec = codec
        self._spawn = spawn
        self._ids = itertools.count(1)
        self._entries: dict[int, ListenerEntry] = {}
        self._filters: dict[str, FilterSubscription] = {}
        self._teardowns = 0
        self._deferred: dict[str, FilterSubscription] = {}
        self._idle: anyio.Event | None = None
        self._stats = RegistryStats()
        self._log = logger.bind(component="subscription_registry")

    @property
    def stats(self) -> RegistryStats:
        return self._stats

    @property
    def filters(self) -> dict[str, int]:
        """Live filters and their listener counts."""
        return {name: state.ref_count for name, state in self._filters.items()}

    async def subscribe(
        self,
        trigger: str,
        listener: Listener,
        options: Mapping[str, Any] | None = None,
    ) -> int:
        """
        Register a listener for a trigger.

        Args:
            trigger: Trigger name, mapped to a topic filter by the transform
            listener: Called with each decoded value (sync or async)
            options: Channel options passed to the transform and resolvers

        Returns:
            Subscription ID for later unsubscription

        Raises:
            SubscribeError: If the transport subscribe failed
        """
        channel_options = dict(options or {})
        topic_filter = self._config.transform(trigger, channel_options)
        subscription_id = next(self._ids)

        state = self._filters.get(topic_filter)
        if state is None:
            state = self._filters[topic_filter] = FilterSubscription(topic_filter)

        # Reserve before suspending so a scheduled teardown sees the demand
        state.pending += 1
        try:
            granted = await self._acquire(state, trigger, channel_options)
        except BaseException:
            state.pending -= 1
            self._release(state)
            raise
        state.pending -= 1

        entry = ListenerEntry(subscription_id, trigger, topic_filter, listener)
        state.listeners[subscription_id] = entry
        self._entries[subscription_id] = entry

        self._log.debug(
            "subscribed",
            trigger=trigger,
            topic_filter=topic_filter,
            subscription_id=subscription_id,
            ref_count=state.ref_count,
        )

        if granted is not None:
            self._notify_granted(subscription_id, granted)

        return subscription_id

    def unsubscribe(self, subscription_id: int) -> None:
        """
        Remove a subscription.

        The transport unsubscribe, when the last listener of a filter
        leaves, runs in the background.

        Raises:
            UnknownSubscriptionError: If the id is not live
        """
        entry = self._entries.pop(subscription_id, None)
        if entry is None:
            raise UnknownSubscriptionError(subscription_id)

        state = self._filters[entry.topic_filter]
        del state.listeners[subscription_id]

        self._log.debug(
            "unsubscribed",
            topic_filter=entry.topic_filter,
            subscription_id=subscription_id,
            ref_count=state.ref_count,
        )
        self._release(state)

    async def publish(
        self,
        trigger: str,
        payload: Any,
        options: Mapping[str, Any] | None = None,
    ) -> None:
        """
        Publish a value for a trigger.

        Raises:
            PublishError: If the payload cannot be encoded or the transport
                publish failed
        """
        topic =self._config.transform(trigger, dict(options or {}))
        publish_options = {
            **DEFAULT_PUBLISH_OPTIONS,
            **await resolve_options(self._config.publish_options, trigger, payload),
        }
        try:
            data = self._codec.encode(payload)
        except ValueError as exc:
            self._log.warning("payload_encode_failed", topic=topic, error=str(exc))
            raise PublishError(topic, f"Cannot encode payload for {topic!r}") from exc

        try:
            await self._transport.publish(topic, data, publish_options)
        except Exception as exc:
            self._log.warning("transport_publish_failed", topic=topic, error=str(exc))
            raise PublishError(topic) from exc

        self._log.debug("published", topic=topic, size=len(data))

    def match(self, topic: str) -> list[ListenerEntry]:
        """Get the listeners whose filter matches a published topic."""
        return [
            entry
            for state in list(self._filters.values())
            if state.listeners and matches(state.topic_filter, topic)
            for entry in list(state.listeners.values())
        ]

    def get(self, subscription_id: int) -> ListenerEntry | None:
        return self._entries.get(subscription_id)

    async def settle(self) -> None:
        """
        Wait until every scheduled transport unsubscribe has finished.

        Teardowns released while no background task could be started
        are run here, in the caller's task.
        """
        while self._deferred:
            _, state = self._deferred.popitem()
            state.teardown_scheduled = True
            self._teardowns += 1
            await self._teardown(state)

        while self._teardowns:
            if self._idle is None:
                self._idle = anyio.Event()
            await self._idle.wait()

    # --- Filter lifecycle ---

    async def _acquire(
        self,
        state: FilterSubscription,
        trigger: str,
        channel_options: dict[str, Any],
    ) -> list[Granted] | None:
        """
        Make sure the filter is subscribed at the transport.

        Returns the granted list when this call issued the transport
        subscribe, None when an existing subscription was shared.
        """
        failures_seen = state.failures
        async with state.lock:
            if state.subscribed:
                return None
            if state.failures != failures_seen:
                raise SubscribeError(state.topic_filter, shared=True) from state.last_error

            try:
                subscribe_options = {
                    **DEFAULT_SUBSCRIBE_OPTIONS,
                    **await resolve_options(
                        self._config.subscribe_options, trigger, channel_options
                    ),
                }
            except Exception as exc:
                self._record_failure(state, exc)
                self._log.warning(
                    "subscribe_options_failed",
                    topic_filter=state.topic_filter,
                    trigger=trigger,
                    error=str(exc),
                )
                raise SubscribeError(
                    state.topic_filter,
                    message=f"Resolving subscribe options failed for {state.topic_filter!r}",
                ) from exc

            self._stats.transport_subscribes += 1
            try:
                granted = await self._transport.subscribe(state.topic_filter, subscribe_options)
            except Exception as exc:
                self._record_failure(state, exc)
                self._log.warning(
                    "transport_subscribe_failed",
                    topic_filter=state.topic_filter,
                    error=str(exc),
                )
                raise SubscribeError(state.topic_filter) from exc

            state.subscribed = True
            state.granted = list(granted)
            self._log.debug(
                "transport_subscribed",
                topic_filter=state.topic_filter,
                wildcard=has_wildcards(state.topic_filter),
                granted=[g.model_dump() for g in state.granted],
            )
            return state.granted

    def _record_failure(self, state: FilterSubscription, exc: Exception) -> None:
        state.failures += 1
        state.last_error = exc
        self._stats.subscribe_failures += 1

    def _release(self, state: FilterSubscription) -> None:
        """Tear down the filter once nothing references it."""
        if state.demand > 0:
            return
        if state.subscribed:
            if state.teardown_scheduled or state.topic_filter in self._deferred:
                return
            if self._spawn(self._teardown, state):
                state.teardown_scheduled = True
                self._teardowns += 1
            else:
                self._deferred[state.topic_filter] = state
                self._log.debug("teardown_deferred", topic_filter=state.topic_filter)
        elif not state.lock.locked():
            self._forget(state)

    async def _teardown(self, state: FilterSubscription) -> None:
        try:
            async with state.lock:
                state.teardown_scheduled = False
                if state.demand > 0:
                    if state.subscribed:
                        self._stats.suppressed_unsubscribes += 1
                        self._log.debug(
                            "unsubscribe_suppressed", topic_filter=state.topic_filter
                        )
                    return

                if state.subscribed:
                    self._stats.transport_unsubscribes += 1
                    try:
                        await self._transport.unsubscribe(state.topic_filter)
                    except Exception:
                        self._log.exception(
                            "transport_unsubscribe_failed", topic_filter=state.topic_filter
                        )
                    state.subscribed = False
                    state.granted = []
                    self._log.debug("transport_unsubscribed", topic_filter=state.topic_filter)

                if state.demand == 0:
                    self._forget(state)
        finally:
            self._teardowns -= 1
            if not self._teardowns and self._idle is not None:
                self._idle.set()
                self._idle = None

    def _forget(self, state: FilterSubscription) -> None:
        if self._filters.get(state.topic_filter) is state:
            del self._filters[state.topic_filter]

    def _notify_granted(self, subscription_id: int, granted: Sequence[Granted]) -> None:
        callback = self._config.on_subscribe_granted
        if callback is None:
            return
        try:
            callback(subscription_id, granted)
        except Exception:
            self._log.exception("granted_callback_failed", subscription_id=subscription_id)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, subscription_id: object) -> bool:
        return subscription_id in self._entries

    def __iter__(self) -> Iterator[ListenerEntry]:
        return iter(list(self._entries.values()))
