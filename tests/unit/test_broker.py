"""
Unit tests for the in-process change broker.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from realtime.broker import (
    KNOWN_TOPICS,
    TOPIC_BUS_LOCATIONS,
    TOPIC_BUSES_CHANGES,
    ChangeBroker,
    ChangeEvent,
)


class TestChangeEvent:

    def test_message_shape(self):
        event = ChangeEvent(
            topic=TOPIC_BUS_LOCATIONS,
            event="location_update",
            payload={"bus_id": "bus-1"},
            origin="a",
            timestamp="2024-01-01T00:00:00Z",
        )

        assert event.to_message() == {
            "type": "location_update",
            "topic": TOPIC_BUS_LOCATIONS,
            "data": {"bus_id": "bus-1"},
            "timestamp": "2024-01-01T00:00:00Z",
        }

    def test_json_round_trip(self):
        event = ChangeEvent(topic=TOPIC_BUSES_CHANGES, event="UPDATE", payload={"table": "buses"}, origin="a")

        assert ChangeEvent.from_json(event.to_json()) == event

    def test_from_json_requires_topic(self):
        with pytest.raises(KeyError):
            ChangeEvent.from_json(json.dumps({"event": "UPDATE"}))

    def test_known_topics(self):
        assert KNOWN_TOPICS == {"bus_locations", "buses_changes"}


class TestSubscriptions:

    def test_subscribe_registers_topic(self):
        broker = ChangeBroker()

        broker.subscribe(TOPIC_BUS_LOCATIONS)
        broker.subscribe(TOPIC_BUS_LOCATIONS)

        assert broker.subscriber_count(TOPIC_BUS_LOCATIONS) == 2
        assert broker.topics() == [TOPIC_BUS_LOCATIONS]

    def test_empty_topic_rejected(self):
        with pytest.raises(ValueError):
            ChangeBroker().subscribe("")

    def test_queue_size_must_be_positive(self):
        with pytest.raises(ValueError):
            ChangeBroker(max_queue_size=0)

    def test_unsubscribe_is_idempotent(self):
        broker = ChangeBroker()
        subscription = broker.subscribe(TOPIC_BUS_LOCATIONS)

        broker.unsubscribe(subscription)
        broker.unsubscribe(subscription)

        assert subscription.active is False
        assert broker.subscriber_count() == 0
        assert broker.topics() == []


class TestPublish:

    @pytest.mark.asyncio
    async def test_publish_reaches_every_subscriber_of_topic(self):
        broker = ChangeBroker(instance_id="local")
        first = broker.subscribe(TOPIC_BUS_LOCATIONS)
        second = broker.subscribe(TOPIC_BUS_LOCATIONS)
        other = broker.subscribe(TOPIC_BUSES_CHANGES)

        delivered = await broker.publish(TOPIC_BUS_LOCATIONS, "location_update", {"bus_id": "bus-1"})

        assert delivered == 2
        for subscription in (first, second):
            event = subscription.queue.get_nowait()
            assert event.payload == {"bus_id": "bus-1"}
            assert event.origin == "local"
        assert other.queue.empty()

    @pytest.mark.asyncio
    async def test_publish_without_subscribers(self):
        assert await ChangeBroker().publish(TOPIC_BUS_LOCATIONS, "location_update", {}) == 0

    @pytest.mark.asyncio
    async def test_unsubscribed_handle_gets_nothing(self):
        broker = ChangeBroker()
        subscription = broker.subscribe(TOPIC_BUS_LOCATIONS)
        broker.unsubscribe(subscription)

        await broker.publish(TOPIC_BUS_LOCATIONS, "location_update", {})

        assert subscription.queue.empty()

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self):
        broker = ChangeBroker(max_queue_size=2)
        subscription = broker.subscribe(TOPIC_BUS_LOCATIONS)

        for n in range(3):
            await broker.publish(TOPIC_BUS_LOCATIONS, "location_update", {"n": n})

        assert subscription.dropped == 1
        assert subscription.queue.get_nowait().payload == {"n": 1}
        assert subscription.queue.get_nowait().payload == {"n": 2}

    @pytest.mark.asyncio
    async def test_get_times_out_with_none(self):
        subscription = ChangeBroker().subscribe(TOPIC_BUS_LOCATIONS)

        assert await subscription.get(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_relay_receives_published_events(self):
        broker = ChangeBroker()
        relay = MagicMock()
        relay.forward = AsyncMock()
        broker.attach_relay(relay)

        await broker.publish(TOPIC_BUSES_CHANGES, "UPDATE", {"table": "buses"})

        forwarded = relay.forward.await_args.args[0]
        assert forwarded.event == "UPDATE"
        assert forwarded.origin == broker.instance_id

    @pytest.mark.asyncio
    async def test_relay_failure_does_not_fail_publish(self):
        broker = ChangeBroker()
        subscription = broker.subscribe(TOPIC_BUS_LOCATIONS)
        relay = MagicMock()
        relay.forward = AsyncMock(side_effect=ConnectionError("redis down"))
        broker.attach_relay(relay)

        delivered = await broker.publish(TOPIC_BUS_LOCATIONS, "location_update", {})

        assert delivered == 1
        assert not subscription.queue.empty()

    def test_detach_relay(self):
        broker = ChangeBroker()
        broker.attach_relay(MagicMock())

        broker.detach_relay()

        assert broker.relay is None
