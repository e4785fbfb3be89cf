"""
Command-line entry point.

Usage:
    python -m mqtt_pubsub.runtime watch Posts Comments --url mqtt://localhost
    python -m mqtt_pubsub.runtime publish Posts '{"comment": "hello"}'
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from typing import NoReturn

import structlog

from mqtt_pubsub.bus.pubsub import PubSub
from mqtt_pubsub.core.codec import PayloadCodec
from mqtt_pubsub.core.config import PubSubConfig
from mqtt_pubsub.transport.mqtt import MqttConfig, MqttTransport

logger = structlog.get_logger()


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structured console logging."""
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mqtt-pubsub")
    parser.add_argument("--url", help="Broker URL (default: $MQTT_URL or mqtt://localhost:1883)")
    parser.add_argument(
        "--encoding",
        default="utf-8",
        help="Payload encoding: a text encoding, or a bytes codec such as base64",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    watch = commands.add_parser("watch", help="Log values published to triggers")
    watch.add_argument("triggers", nargs="+")
    watch.add_argument("--limit", type=int, default=0, help="Stop after N values (0 = forever)")

    publish = commands.add_parser("publish", help="Publish one value to a trigger")
    publish.add_argument("trigger")
    publish.add_argument("payload", help="JSON document, or plain text")
    publish.add_argument("--qos", type=int, choices=(0, 1, 2), default=0)

    return parser


def load_config(args: argparse.Namespace) -> MqttConfig:
    config = MqttConfig.from_env()
    if args.url:
        config = MqttConfig(
            mqtt_url=args.url,
            client_id=config.client_id,
            keepalive=config.keepalive,
        )
    return config


async def watch(
    config: MqttConfig,
    pubsub_config: PubSubConfig,
    triggers: Sequence[str],
    limit: int,
) -> int:
    """Log every value delivered to the triggers."""
    count = 0
    async with MqttTransport.from_config(config) as transport:
        async with PubSub(transport, pubsub_config) as pubsub:
            async with pubsub.sequence(triggers) as values:
                logger.info("watching", triggers=list(triggers), broker=str(config.connection))
                async for value in values:
                    count += 1
                    logger.info("value_received", value=value, count=count)
                    if limit and count >= limit:
                        break
    return count


async def publish(
    config: MqttConfig,
    pubsub_config: PubSubConfig,
    trigger: str,
    payload: str,
    qos: int,
) -> None:
    """Publish one value, parsed as JSON when possible."""
    value = PayloadCodec().decode(payload.encode("utf-8"))
    config_with_qos = pubsub_config.model_copy(update={"publish_options": lambda *_: {"qos": qos}})
    async with MqttTransport.from_config(config) as transport:
        async with PubSub(transport, config_with_qos) as pubsub:
            await pubsub.publish(trigger, value)
    logger.info("value_published", trigger=trigger, qos=qos)


async def run(args: argparse.Namespace) -> None:
    config = load_config(args)
    pubsub_config = PubSubConfig(payload_encoding=args.encoding)
    if args.command == "watch":
        await watch(config, pubsub_config, args.triggers, args.limit)
    else:
        await publish(config, pubsub_config, args.trigger, args.payload, args.qos)


def main(argv: Sequence[str] | None = None) -> NoReturn:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    configure_logging()
    try:
        asyncio.run(run(args))
        sys.exit(0)
    except KeyboardInterrupt:
        logger.info("interrupted")
        sys.exit(130)
    except Exception:
        logger.exception("fatal_error")
        sys.exit(1)


if __name__ == "__main__":
    main()
