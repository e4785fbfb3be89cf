"""
mqtt-pubsub

Trigger-based publish/subscribe over a topic broker.

Many logical listeners observe named triggers while sharing one broker
subscription per distinct topic filter:

- Topic matching with MQTT wildcards (+, #)
- Reference-counted transport subscriptions
- Callback listeners and pull-based sequences over the same registry
"""

__version__ = "0.1.0"

from mqtt_pubsub.bus.pubsub import PubSub, PubSubState
from mqtt_pubsub.bus.topics import matches
from mqtt_pubsub.core.config import PubSubConfig
from mqtt_pubsub.core.errors import (
    PublishError,
    PubSubError,
    SubscribeError,
    TransportError,
    UnknownSubscriptionError,
)
from mqtt_pubsub.core.sequence import SequenceItem, TriggerSequence
from mqtt_pubsub.transport.base import Granted, Transport
from mqtt_pubsub.transport.memory import MemoryTransport

__all__ = [
    "__version__",
    "Granted",
    "MemoryTransport",
    "PubSub",
    "PubSubConfig",
    "PubSubError",
    "PubSubState",
    "PublishError",
    "SequenceItem",
    "SubscribeError",
    "Transport",
    "TransportError",
    "TriggerSequence",
    "UnknownSubscriptionError",
    "matches",
]
