"""
MQTT transport built on aiomqtt.

The transport owns the broker connection and a message pump that feeds
every inbound message to the registered handler, in arrival order.
"""

import os
from collections.abc import Mapping, Sequence
from typing import Any, Self
from urllib.parse import urlparse

import aiomqtt
import anyio
import structlog
from anyio.abc import TaskGroup
from pydantic import BaseModel, ConfigDict, Field, field_validator
from ulid import ULID

from mqtt_pubsub.transport.base import Granted, InboundHandler

logger = structlog.get_logger()

DEFAULT_PORT = 1883

# SUBACK return codes at or above this value mean the broker refused
SUBACK_FAILURE = 0x80


class ConnectionParams(BaseModel):
    """Parsed broker connection parameters."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    hostname: str
    port: int = DEFAULT_PORT
    username: str | None = None
    password: str | None = None

    def __repr__(self) -> str:
        password = "***REDACTED***" if self.password else None
        return (
            f"ConnectionParams(hostname={self.hostname!r}, port={self.port}, "
            f"username={self.username!r}, password={password!r})"
        )

    def __str__(self) -> str:
        return self.__repr__()


def parse_mqtt_url(url: str) -> ConnectionParams:
    """
    Parse an MQTT URL of the form mqtt://[user:pass@]host[:port].

    Raises:
        ValueError: If the scheme is not mqtt://
    """
    parsed = urlparse(url)
    if parsed.scheme != "mqtt":
        raise ValueError(f"Invalid MQTT URL scheme: {parsed.scheme!r}. Expected 'mqtt://'.")

    return ConnectionParams(
        hostname=parsed.hostname or "localhost",
        port=parsed.port or DEFAULT_PORT,
        username=parsed.username,
        password=parsed.password,
    )


class MqttConfig(BaseModel):
    """Broker connection settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    mqtt_url: str = f"mqtt://localhost:{DEFAULT_PORT}"
    client_id: str = Field(default_factory=lambda: f"mqtt-pubsub-{ULID()}")
    keepalive: int = Field(default=60, ge=1, le=3600)

    @field_validator("mqtt_url")
    @classmethod
    def validate_mqtt_url(cls, v: str) -> str:
        parse_mqtt_url(v)
        return v

    @property
    def connection(self) -> ConnectionParams:
        return parse_mqtt_url(self.mqtt_url)

    @classmethod
    def from_env(cls) -> "MqttConfig":
        """
        Load settings from the environment.

        Optional environment variables:
            MQTT_URL: Broker URL (default: mqtt://localhost:1883)
            MQTT_CLIENT_ID: Client identifier (default: generated)
            MQTT_KEEPALIVE: Keepalive interval in seconds (default: 60)
        """
        values: dict[str, Any] = {}
        if url := os.getenv("MQTT_URL"):
            values["mqtt_url"] = url
        if client_id := os.getenv("MQTT_CLIENT_ID"):
            values["client_id"] = client_id
        if keepalive := os.getenv("MQTT_KEEPALIVE"):
            values["keepalive"] = int(keepalive)
        return cls(**values)


def _as_bytes(payload: Any) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    return str(payload).encode("utf-8")


class MqttTransport:
    """
    Transport over an aiomqtt client.

    Example:
        async with MqttTransport.from_config(MqttConfig.from_env()) as transport:
            async with PubSub(transport) as pubsub:
                ...
    """

    def __init__(self, client: aiomqtt.Client) -> None:
        self._client = client
        self._handler: InboundHandler | None = None
        self._task_group: TaskGroup | None = None
        self._log = logger.bind(component="mqtt_transport")

    @classmethod
    def from_config(cls, config: MqttConfig) -> "MqttTransport":
        params = config.connection
        client = aiomqtt.Client(
            hostname=params.hostname,
            port=params.port,
            username=params.username,
            password=params.password,
            identifier=config.client_id,
            keepalive=config.keepalive,
        )
        return cls(client)

    async def __aenter__(self) -> Self:
        await self._client.__aenter__()
        task_group = anyio.create_task_group()
        await task_group.__aenter__()
        task_group.start_soon(self._pump)
        self._task_group = task_group
        self._log.info("mqtt_connected")
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        task_group, self._task_group = self._task_group, None
        try:
            if task_group is not None:
                task_group.cancel_scope.cancel()
                await task_group.__aexit__(None, None, None)
        finally:
            await self._client.__aexit__(exc_type, exc, tb)
            self._log.info("mqtt_disconnected")

    def on_message(self, handler: InboundHandler) -> None:
        self._handler = handler

    async def subscribe(
        self, topic_filter: str, options: Mapping[str, Any]
    ) -> Sequence[Granted]:
        # Keys other than qos go to aiomqtt as keyword arguments
        extra = dict(options)
        qos = extra.pop("qos", 0)
        codes = await self._client.subscribe(topic_filter, qos=qos, **extra)

        granted: list[Granted] = []
        for code in codes:
            value = int(getattr(code, "value", code))
            if value >= SUBACK_FAILURE:
                raise ConnectionError(
                    f"Broker refused subscription to {topic_filter!r} (code {value})"
                )
            granted.append(Granted(topic=topic_filter, qos=value))
        return granted

    async def unsubscribe(self, topic_filter: str) -> None:
        await self._client.unsubscribe(topic_filter)

    async def publish(self, topic: str, payload: bytes, options: Mapping[str, Any]) -> None:
        extra = dict(options)
        await self._client.publish(
            topic,
            payload,
            qos=extra.pop("qos", 0),
            retain=extra.pop("retain", False),
            **extra,
        )

    async def _pump(self) -> None:
        async for message in self._client.messages:
            if self._handler is None:
                continue
            topic = message.topic.value
            try:
                await self._handler(topic, _as_bytes(message.payload))
            except Exception:
                self._log.exception("inbound_dispatch_failed", topic=topic)
