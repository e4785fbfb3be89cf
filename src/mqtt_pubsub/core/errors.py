"""Exceptions raised by the subscription core."""


class PubSubError(Exception):
    """Base class for all mqtt_pubsub errors."""


class UnknownSubscriptionError(PubSubError, LookupError):
    """Raised when unsubscribing an id that is not live."""

    def __init__(self, subscription_id: int) -> None:
        super().__init__(f'There is no subscription of id "{subscription_id}"')
        self.subscription_id = subscription_id


class TransportError(PubSubError):
    """A transport operation reported a failure."""

    operation = "transport"

    def __init__(self, topic: str, message: str | None = None) -> None:
        super().__init__(message or f"Transport {self.operation} failed for {topic!r}")
        self.topic = topic


class SubscribeError(TransportError):
    """Transport subscribe for a topic filter failed."""

    operation = "subscribe"

    def __init__(self, topic: str, shared: bool = False, message: str | None = None) -> None:
        message = message or f"Transport subscribe failed for {topic!r}"
        if shared:
            message += " (failed while this call was waiting)"
        super().__init__(topic, message)
        self.shared = shared


class PublishError(TransportError):
    """Transport publish failed."""

    operation = "publish"
