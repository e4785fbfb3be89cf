"""Tests for inbound routing and payload decoding."""

from typing import Any

import anyio
import pytest
from pydantic import ValidationError

from mqtt_pubsub.bus.pubsub import PubSub
from mqtt_pubsub.core.codec import PayloadCodec
from mqtt_pubsub.core.config import PubSubConfig
from mqtt_pubsub.core.errors import PublishError
from mqtt_pubsub.transport.memory import MemoryTransport


class TestFanOut:
    @pytest.mark.asyncio
    async def test_wildcard_and_exact_listeners_all_receive(self) -> None:
        calls: list[tuple[str, Any]] = []

        async with PubSub(MemoryTransport()) as pubsub:
            await pubsub.subscribe("Posts/#", lambda v: calls.append(("all", v)))
            await pubsub.subscribe("Posts/+", lambda v: calls.append(("one", v)))
            await pubsub.subscribe("Posts/CategoryA", lambda v: calls.append(("exact", v)))

            await pubsub.publish("Posts/CategoryA", {"comment": "hi"})

            assert sorted(name for name, _ in calls) == ["all", "exact", "one"]
            assert all(value == {"comment": "hi"} for _, value in calls)
            assert pubsub.router.stats.total_deliveries == 3

    @pytest.mark.asyncio
    async def test_only_matching_filters_receive(self) -> None:
        posts: list[Any] = []
        comments: list[Any] = []

        async with PubSub(MemoryTransport()) as pubsub:
            await pubsub.subscribe("Posts/#", posts.append)
            await pubsub.subscribe("Comments", comments.append)

            await pubsub.publish("Posts/A/B", 1)
            await pubsub.publish("Comments", 2)

            assert posts == [1]
            assert comments == [2]

    @pytest.mark.asyncio
    async def test_unmatched_message_is_counted(self) -> None:
        async with PubSub(MemoryTransport()) as pubsub:
            delivered = await pubsub.router.dispatch("Nobody/Listens", b"1")

            assert delivered == 0
            assert pubsub.router.stats.total_messages_unmatched == 1

    @pytest.mark.asyncio
    async def test_unsubscribed_listener_stops_receiving(self) -> None:
        received: list[Any] = []
        async with PubSub(MemoryTransport()) as pubsub:
            keep = await pubsub.subscribe("Posts", received.append)
            drop = await pubsub.subscribe("Posts", lambda v: received.append(("dropped", v)))
            pubsub.unsubscribe(drop)

            await pubsub.router.dispatch("Posts", b'"x"')
            assert received == ["x"]
            pubsub.unsubscribe(keep)

    @pytest.mark.asyncio
    async def test_async_listeners_run_concurrently(self) -> None:
        started: list[int] = []
        release = anyio.Event()

        async def slow(value: Any) -> None:
            started.append(value)
            await release.wait()

        async with PubSub(MemoryTransport()) as pubsub:
            await pubsub.subscribe("Posts", slow)
            await pubsub.subscribe("Posts", slow)

            async with anyio.create_task_group() as tg:
                tg.start_soon(pubsub.router.dispatch, "Posts", b"7")
                await anyio.wait_all_tasks_blocked()

                # Both listeners entered before either finished
                assert started == [7, 7]
                release.set()


class TestListenerErrors:
    @pytest.mark.asyncio
    async def test_failing_listener_does_not_affect_others(self) -> None:
        received: list[Any] = []
        reported: list[tuple[BaseException, int]] = []

        def broken(value: Any) -> None:
            raise ValueError("listener bug")

        config = PubSubConfig(on_listener_error=lambda exc, sub_id: reported.append((exc, sub_id)))
        async with PubSub(MemoryTransport(), config) as pubsub:
            broken_id = await pubsub.subscribe("Posts", broken)
            await pubsub.subscribe("Posts", received.append)

            delivered = await pubsub.router.dispatch("Posts", b'{"n": 1}')

            assert delivered == 1
            assert received == [{"n": 1}]
            assert len(reported) == 1
            assert isinstance(reported[0][0], ValueError)
            assert reported[0][1] == broken_id
            assert pubsub.router.stats.total_listener_errors == 1

    @pytest.mark.asyncio
    async def test_failing_async_listener_is_isolated(self) -> None:
        received: list[Any] = []

        async def broken(value: Any) -> None:
            raise RuntimeError("async listener bug")

        async with PubSub(MemoryTransport()) as pubsub:
            await pubsub.subscribe("Posts", broken)
            await pubsub.subscribe("Posts", received.append)

            await pubsub.publish("Posts", "still delivered")
            assert received == ["still delivered"]

    @pytest.mark.asyncio
    async def test_error_hook_failure_is_contained(self) -> None:
        def broken(value: Any) -> None:
            raise ValueError("listener bug")

        def broken_hook(exc: BaseException, sub_id: int) -> None:
            raise RuntimeError("hook bug")

        async with PubSub(MemoryTransport(), PubSubConfig(on_listener_error=broken_hook)) as pubsub:
            await pubsub.subscribe("Posts", broken)
            assert await pubsub.router.dispatch("Posts", b"1") == 0


class TestPayloads:
    @pytest.mark.asyncio
    async def test_non_json_payload_delivered_as_text(self) -> None:
        received: list[Any] = []
        async with PubSub(MemoryTransport()) as pubsub:
            await pubsub.subscribe("Posts", received.append)
            await pubsub.router.dispatch("Posts", b"plain text")

            assert received == ["plain text"]

    @pytest.mark.asyncio
    async def test_custom_encoding_round_trips(self) -> None:
        transport = MemoryTransport()
        received: list[Any] = []
        async with PubSub(transport, PubSubConfig(payload_encoding="utf-16")) as pubsub:
            await pubsub.subscribe("Posts", received.append)
            await pubsub.publish("Posts", {"comment": "héllo"})

            assert transport.calls[-1].payload == '{"comment":"héllo"}'.encode("utf-16")
            assert received == [{"comment": "héllo"}]

    @pytest.mark.asyncio
    async def test_undecodable_payload_is_dropped(self) -> None:
        received: list[Any] = []
        async with PubSub(MemoryTransport()) as pubsub:
            await pubsub.subscribe("Posts", received.append)

            assert await pubsub.router.dispatch("Posts", b"\xff\xfe\xfa") == 0
            assert received == []
            assert pubsub.router.stats.total_decode_errors == 1

    @pytest.mark.asyncio
    async def test_base64_round_trips(self) -> None:
        transport = MemoryTransport()
        received: list[Any] = []
        async with PubSub(transport, PubSubConfig(payload_encoding="base64")) as pubsub:
            await pubsub.subscribe("comments", received.append)
            await pubsub.publish("comments", "test")

            assert transport.calls[-1].payload == b"InRlc3Qi\n"
            assert received == ["test"]

    @pytest.mark.asyncio
    async def test_invalid_base64_payload_is_dropped(self) -> None:
        received: list[Any] = []
        async with PubSub(MemoryTransport(), PubSubConfig(payload_encoding="base64")) as pubsub:
            await pubsub.subscribe("comments", received.append)

            assert await pubsub.router.dispatch("comments", b"a") == 0
            assert received == []
            assert pubsub.router.stats.total_decode_errors == 1

    @pytest.mark.asyncio
    async def test_unrepresentable_characters_are_escaped(self) -> None:
        transport = MemoryTransport()
        received: list[Any] = []
        async with PubSub(transport, PubSubConfig(payload_encoding="ascii")) as pubsub:
            await pubsub.subscribe("Posts", received.append)
            await pubsub.publish("Posts", {"comment": "héllo 🎉"})

            assert transport.calls[-1].payload == b'{"comment":"h\\u00e9llo \\ud83c\\udf89"}'
            assert received == [{"comment": "héllo 🎉"}]

    @pytest.mark.asyncio
    async def test_unserializable_payload_raises_publish_error(self) -> None:
        transport = MemoryTransport()
        async with PubSub(transport) as pubsub:
            with pytest.raises(PublishError, match="Cannot encode payload"):
                await pubsub.publish("Posts", object())
            assert transport.count("publish") == 0

    @pytest.mark.parametrize("encoding", ["rot13", "not-an-encoding"])
    def test_unusable_encoding_rejected(self, encoding: str) -> None:
        with pytest.raises(ValidationError):
            PubSubConfig(payload_encoding=encoding)

    def test_encoding_is_normalized(self) -> None:
        assert PubSubConfig(payload_encoding="UTF8").payload_encoding == "utf-8"


class TestPayloadCodec:
    def test_encode_json(self) -> None:
        codec = PayloadCodec()
        assert codec.encode({"a": [1, 2]}) == b'{"a":[1,2]}'
        assert codec.encode("test") == b'"test"'
        assert codec.encode(None) == b"null"

    def test_decode_json(self) -> None:
        codec = PayloadCodec()
        assert codec.decode(b'{"a": [1, 2]}') == {"a": [1, 2]}
        assert codec.decode(b"42") == 42

    def test_decode_falls_back_to_text(self) -> None:
        assert PayloadCodec().decode(b"{not json") == "{not json"

    def test_decode_rejects_invalid_bytes(self) -> None:
        with pytest.raises(UnicodeDecodeError):
            PayloadCodec("ascii").decode("é".encode("utf-8"))
