"""
Configuration for the publish/subscribe core.

Option resolvers may be plain functions or coroutines; their results
are forwarded to the transport untouched apart from dropping None values.
"""

import codecs
import inspect
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from mqtt_pubsub.core.codec import is_binary_codec, is_text_encoding
from mqtt_pubsub.transport.base import Granted

TriggerTransform = Callable[[str, Mapping[str, Any]], str]
OptionsResolver = Callable[..., Any]
GrantedCallback = Callable[[int, Sequence[Granted]], Any]
ListenerErrorCallback = Callable[[BaseException, int], Any]


class PubSubConfig(BaseModel):
    """Recognized options for a PubSub instance."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    # Trigger -> topic filter (identity when unset)
    trigger_transform: TriggerTransform | None = None

    # Per-topic transport options
    publish_options: OptionsResolver | None = None  # (trigger, payload)
    subscribe_options: OptionsResolver | None = None  # (trigger, channel_options)

    # Observers
    on_subscribe_granted: GrantedCallback | None = None
    on_listener_error: ListenerErrorCallback | None = None

    payload_encoding: str = "utf-8"

    @field_validator("payload_encoding")
    @classmethod
    def validate_payload_encoding(cls, v: str) -> str:
        """Ensure the encoding is a text encoding or a bytes-to-bytes codec."""
        if not (is_text_encoding(v) or is_binary_codec(v)):
            raise ValueError(f"{v!r} is neither a text encoding nor a bytes-to-bytes codec")
        return codecs.lookup(v).name

    def transform(self, trigger: str, channel_options: Mapping[str, Any]) -> str:
        """Derive the topic filter for a trigger."""
        if self.trigger_transform is None:
            return trigger
        return self.trigger_transform(trigger, channel_options)


async def resolve_options(resolver: OptionsResolver | None, *args: Any) -> dict[str, Any]:
    """Call an options resolver, awaiting it if needed."""
    if resolver is None:
        return {}
    result = resolver(*args)
    if inspect.isawaitable(result):
        result = await result
    return {key: value for key, value in dict(result or {}).items() if value is not None}
