import json

import pytest
import redis
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from coursegen.main import app


class FakePubSub:
    def __init__(self, messages=()):
        self.queue = list(messages)
        self.subscribed = []
        self.unsubscribed = []
        self.closed = False

    async def subscribe(self, channel):
        self.subscribed.append(channel)

    async def unsubscribe(self, channel):
        self.unsubscribed.append(channel)

    async def get_message(self, ignore_subscribe_messages=False, timeout=None):
        if self.queue:
            return self.queue.pop(0)
        return None

    async def aclose(self):
        self.closed = True


@pytest.fixture
def pubsub(monkeypatch):
    event = {
        "event": "content_generation_progress",
        "payload": {"kind": "progress", "progress_id": 1, "update": {"progress_percentage": 5}},
    }
    ps = FakePubSub([{"type": "message", "channel": "course:7", "data": json.dumps(event)}])
    monkeypatch.setattr(app.state, "pubsub_factory", lambda: ps)
    return ps


def test_course_progress_is_forwarded(pubsub):
    client = TestClient(app)
    with client.websocket_connect("/ws/progress?course_id=7&user_id=u1") as ws:
        assert ws.receive_json() == {"event": "subscribed", "payload": {"channel": "course:7"}}
        assert app.state.connections.is_online("u1")

        msg = ws.receive_json()
        assert msg["event"] == "content_generation_progress"
        assert msg["payload"]["update"]["progress_percentage"] == 5

    assert pubsub.subscribed == ["course:7"]
    assert pubsub.unsubscribed == ["course:7"]
    assert pubsub.closed is True
    assert not app.state.connections.is_online("u1")


def test_session_channel(pubsub):
    with TestClient(app).websocket_connect("/ws/progress?session_id=abc") as ws:
        assert ws.receive_json()["payload"]["channel"] == "session:abc"


def test_missing_scope_is_rejected(pubsub):
    with pytest.raises(WebSocketDisconnect) as ei:
        with TestClient(app).websocket_connect("/ws/progress") as ws:
            ws.receive_json()
    assert ei.value.code == 1008
    assert pubsub.subscribed == []


class BrokenSubscribe(FakePubSub):
    async def subscribe(self, channel):
        raise redis.ConnectionError("redis unavailable")


class DroppingFeed(FakePubSub):
    async def get_message(self, ignore_subscribe_messages=False, timeout=None):
        if self.queue:
            return self.queue.pop(0)
        raise redis.ConnectionError("connection reset")


def test_subscribe_failure_closes_socket_and_unregisters(monkeypatch):
    ps = BrokenSubscribe()
    monkeypatch.setattr(app.state, "pubsub_factory", lambda: ps)

    with TestClient(app).websocket_connect("/ws/progress?course_id=7&user_id=u2") as ws:
        with pytest.raises(WebSocketDisconnect) as ei:
            ws.receive_json()
    assert ei.value.code == 1011
    assert not app.state.connections.is_online("u2")
    assert ps.closed is True


def test_feed_error_closes_socket_and_releases_pubsub(monkeypatch):
    event = {"event": "content_generation_progress", "payload": {"kind": "progress", "progress_id": 1}}
    ps = DroppingFeed([{"type": "message", "channel": "course:7", "data": json.dumps(event)}])
    monkeypatch.setattr(app.state, "pubsub_factory", lambda: ps)

    with TestClient(app).websocket_connect("/ws/progress?course_id=7&user_id=u3") as ws:
        assert ws.receive_json()["event"] == "subscribed"
        assert ws.receive_json()["event"] == "content_generation_progress"
        with pytest.raises(WebSocketDisconnect) as ei:
            ws.receive_json()
    assert ei.value.code == 1011
    assert ps.unsubscribed == ["course:7"]
    assert ps.closed is True
    assert not app.state.connections.is_online("u3")
