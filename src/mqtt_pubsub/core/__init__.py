"""Core subscription multiplexing for the publish/subscribe bus."""

from mqtt_pubsub.core.codec import PayloadCodec
from mqtt_pubsub.core.config import PubSubConfig
from mqtt_pubsub.core.errors import (
    PublishError,
    PubSubError,
    SubscribeError,
    TransportError,
    UnknownSubscriptionError,
)
from mqtt_pubsub.core.registry import (
    FilterSubscription,
    ListenerEntry,
    RegistryStats,
    SubscriptionRegistry,
)
from mqtt_pubsub.core.router import MessageRouter, RouterStats
from mqtt_pubsub.core.sequence import SequenceItem, TriggerSequence

__all__ = [
    "FilterSubscription",
    "ListenerEntry",
    "MessageRouter",
    "PayloadCodec",
    "PubSubConfig",
    "PubSubError",
    "PublishError",
    "RegistryStats",
    "RouterStats",
    "SequenceItem",
    "SubscribeError",
    "SubscriptionRegistry",
    "TransportError",
    "TriggerSequence",
    "UnknownSubscriptionError",
]
