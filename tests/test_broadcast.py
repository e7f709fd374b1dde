"""
Tests for the live-feed hub and WebSocket control frames.
"""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from clawledger.api import create_api_app
from clawledger.api.realtime import handle_control
from clawledger.services.broadcast import BroadcastHub


class TestBroadcastHub:
    """Fan-out with bounded, non-blocking queues."""

    @pytest.mark.asyncio
    async def test_global_and_filtered_subscribers(self):
        hub = BroadcastHub(queue_size=10)
        everyone = hub.subscribe()
        agent_a = hub.subscribe("a")
        agent_b = hub.subscribe("b")

        delivered = hub.publish("trade", "a", {"txSignature": "sig"})

        assert delivered == 2
        assert everyone.queue.qsize() == 1
        assert agent_a.queue.qsize() == 1
        assert agent_b.queue.empty()

        message = agent_a.queue.get_nowait()
        assert message["type"] == "trade"
        assert message["agentId"] == "a"
        assert message["data"] == {"txSignature": "sig"}
        assert "timestamp" in message

    @pytest.mark.asyncio
    async def test_full_queue_drops_for_that_subscriber_only(self):
        hub = BroadcastHub(queue_size=1)
        slow = hub.subscribe()
        fast = hub.subscribe()

        hub.publish("trade", "a", {"n": 1})
        fast.queue.get_nowait()
        delivered = hub.publish("trade", "a", {"n": 2})

        assert delivered == 1
        assert slow.dropped == 1
        assert slow.queue.get_nowait()["data"] == {"n": 1}
        assert fast.queue.get_nowait()["data"] == {"n": 2}

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        hub = BroadcastHub(queue_size=10)
        subscriber = hub.subscribe()
        hub.unsubscribe(subscriber)

        assert hub.publish("trade", None, {}) == 0
        assert hub.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_closed_subscribers_cleaned_lazily(self):
        hub = BroadcastHub(queue_size=10)
        subscriber = hub.subscribe()
        subscriber.closed = True

        assert hub.subscriber_count == 0
        assert hub.publish("trade", None, {}) == 0
        assert subscriber.id not in hub._subscribers


class TestControlFrames:
    """Client frames on the live feed."""

    @pytest.mark.asyncio
    async def test_subscribe_and_unsubscribe(self):
        hub = BroadcastHub(queue_size=10)
        subscriber = hub.subscribe()

        reply = handle_control(hub, subscriber, json.dumps({"type": "subscribe", "agentId": "a"}))
        assert reply == {"type": "subscribed", "agentId": "a"}
        assert hub.publish("trade", "b", {}) == 0
        assert hub.publish("trade", "a", {}) == 1

        reply = handle_control(hub, subscriber, json.dumps({"type": "unsubscribe"}))
        assert reply == {"type": "unsubscribed"}
        assert hub.publish("trade", "b", {}) == 1

    @pytest.mark.asyncio
    async def test_ping(self):
        hub = BroadcastHub(queue_size=10)
        subscriber = hub.subscribe()

        assert handle_control(hub, subscriber, '{"type": "ping"}') == {"type": "pong"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["not json", "[]", '{"type": "dance"}', '{"type": "subscribe"}'])
    async def test_unknown_frames_ignored(self, raw):
        hub = BroadcastHub(queue_size=10)
        subscriber = hub.subscribe("a")

        assert handle_control(hub, subscriber, raw) is None
        assert subscriber.agent_id == "a"


class TestWebSocketFeed:
    """End-to-end frames over the WebSocket route."""

    def test_connect_ping_subscribe(self):
        client = TestClient(create_api_app(run_background_jobs=False))

        with client.websocket_connect("/api/v1/ws/feed") as websocket:
            assert websocket.receive_json() == {"type": "connected", "agentId": None}

            websocket.send_text(json.dumps({"type": "ping"}))
            assert websocket.receive_json() == {"type": "pong"}

            websocket.send_text(json.dumps({"type": "subscribe", "agentId": "agent-1"}))
            assert websocket.receive_json() == {"type": "subscribed", "agentId": "agent-1"}

    def test_agent_feed_connects_filtered(self):
        client = TestClient(create_api_app(run_background_jobs=False))

        with client.websocket_connect("/api/v1/ws/agent/agent-7") as websocket:
            assert websocket.receive_json() == {"type": "connected", "agentId": "agent-7"}


def test_queue_is_bounded():
    hub = BroadcastHub(queue_size=3)

    async def _run():
        subscriber = hub.subscribe()
        for i in range(5):
            hub.publish("trade", None, {"n": i})
        return subscriber

    subscriber = asyncio.run(_run())
    assert subscriber.queue.qsize() == 3
    assert subscriber.dropped == 2
