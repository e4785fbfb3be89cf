"""
Pull-based sequences of trigger values.

A TriggerSequence subscribes to one or more triggers on its first pull
and hands each delivered value to exactly one pull, in FIFO order.
Values that arrive with no pull waiting are queued; closing completes
every waiting pull and unregisters the underlying listeners.
"""

from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Self

import anyio
import structlog
from ulid import ULID

from mqtt_pubsub.core.registry import SubscriptionRegistry

logger = structlog.get_logger()


@dataclass(frozen=True)
class SequenceItem:
    """Result of one pull."""

    value: Any = None
    done: bool = False


COMPLETE = SequenceItem(done=True)


class _Pull:
    """A parked consumer waiting for its value."""

    __slots__ = ("event", "item")

    def __init__(self) -> None:
        self.event = anyio.Event()
        self.item = COMPLETE

    def resolve(self, item: SequenceItem) -> None:
        self.item = item
        self.event.set()


class TriggerSequence:
    """
    Cancellable, pull-based sequence over one or more triggers.

    Usable as an async iterator and as an async context manager that
    closes the sequence on exit. A closed sequence cannot be reopened.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        triggers: str | Iterable[str],
        options: Mapping[str, Any] | None = None,
        on_close: Callable[["TriggerSequence"], None] | None = None,
    ) -> None:
        self.id = str(ULID())
        self._registry = registry
        self._triggers = (triggers,) if isinstance(triggers, str) else tuple(triggers)
        self._options = dict(options or {})
        self._on_close = on_close

        self._values: deque[Any] = deque()
        self._pulls: deque[_Pull] = deque()
        self._subscription_ids: list[int] = []
        self._subscribing: anyio.Event | None = None
        self._subscribed = False
        self._failure: Exception | None = None
        self._closed = False
        self._log = logger.bind(component="trigger_sequence", sequence_id=self.id)

    @property
    def triggers(self) -> tuple[str, ...]:
        return self._triggers

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscription_ids(self) -> list[int]:
        return list(self._subscription_ids)

    @property
    def pending_values(self) -> int:
        return len(self._values)

    async def next(self) -> SequenceItem:
        """
        Pull the next value.

        Returns:
            The next delivered value, or a completed item once closed

        Raises:
            SubscribeError: If subscribing the triggers failed
        """
        if self._closed:
            return COMPLETE

        await self._ensure_subscribed()

        if self._closed:
            return COMPLETE
        if self._values:
            return SequenceItem(self._values.popleft())

        pull = _Pull()
        self._pulls.append(pull)
        try:
            await pull.event.wait()
        except BaseException:
            if not pull.event.is_set():
                self._pulls.remove(pull)
            elif not pull.item.done:
                self._requeue(pull.item.value)
            raise
        return pull.item

    def close(self) -> None:
        """Complete waiting pulls and unregister all listeners. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._values.clear()
        while self._pulls:
            self._pulls.popleft().resolve(COMPLETE)
        self._unsubscribe_all()
        if self._on_close is not None:
            self._on_close(self)
        self._log.debug("sequence_closed", triggers=list(self._triggers))

    async def aclose(self) -> None:
        self.close()

    # --- Delivery ---

    def _push(self, value: Any) -> None:
        if self._closed:
            return
        if self._pulls:
            self._pulls.popleft().resolve(SequenceItem(value))
        else:
            self._values.append(value)

    def _requeue(self, value: Any) -> None:
        """Give back a value whose pull was cancelled after it arrived."""
        if self._closed:
            return
        if self._pulls:
            self._pulls.popleft().resolve(SequenceItem(value))
        else:
            self._values.appendleft(value)

    # --- Subscription ---

    async def _ensure_subscribed(self) -> None:
        while not self._subscribed and not self._closed:
            if self._subscribing is not None:
                waiting = self._subscribing
                await waiting.wait()
                if self._failure is not None:
                    raise self._failure
                continue

            self._subscribing = anyio.Event()
            self._failure = None
            try:
                await self._subscribe_all()
            except Exception as exc:
                self._failure = exc
                raise
            finally:
                self._subscribing.set()
                self._subscribing = None

    async def _subscribe_all(self) -> None:
        try:
            for trigger in self._triggers:
                subscription_id = await self._registry.subscribe(
                    trigger, self._push, self._options
                )
                self._subscription_ids.append(subscription_id)
                if self._closed:
                    # Closed while the subscribe was in flight
                    self._unsubscribe_all()
                    return
        except BaseException:
            self._unsubscribe_all()
            raise

        self._subscribed = True
        self._log.debug(
            "sequence_subscribed",
            triggers=list(self._triggers),
            subscription_ids=list(self._subscription_ids),
        )

    def _unsubscribe_all(self) -> None:
        subscription_ids, self._subscription_ids = self._subscription_ids, []
        for subscription_id in subscription_ids:
            self._registry.unsubscribe(subscription_id)

    # --- Protocols ---

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> Any:
        item = await self.next()
        if item.done:
            raise StopAsyncIteration
        return item.value

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"TriggerSequence(id={self.id!r}, triggers={list(self._triggers)!r}, "
            f"closed={self._closed})"
        )
