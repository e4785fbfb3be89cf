"""Broker transports."""

from mqtt_pubsub.transport.base import Granted, InboundHandler, Transport
from mqtt_pubsub.transport.memory import MemoryTransport, TransportCall
from mqtt_pubsub.transport.mqtt import ConnectionParams, MqttConfig, MqttTransport, parse_mqtt_url

__all__ = [
    "ConnectionParams",
    "Granted",
    "InboundHandler",
    "MemoryTransport",
    "MqttConfig",
    "MqttTransport",
    "Transport",
    "TransportCall",
    "parse_mqtt_url",
]
