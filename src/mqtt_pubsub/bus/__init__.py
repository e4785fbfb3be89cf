"""Caller-facing publish/subscribe bus."""

from mqtt_pubsub.bus.pubsub import PubSub, PubSubState
from mqtt_pubsub.bus.topics import has_wildcards, matches, split_topic

__all__ = [
    "PubSub",
    "PubSubState",
    "has_wildcards",
    "matches",
    "split_topic",
]
