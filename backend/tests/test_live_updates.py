"""Tests for the update broker and the live summary streams."""
import asyncio
import json

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient

from connection_manager import UpdateBroker
from main import create_app
from routes.stream import KEEPALIVE_FRAME, summary_events


def decode(frame: str) -> dict:
    assert frame.startswith("data: ")
    return json.loads(frame[len("data: "):])


@pytest.mark.asyncio
async def test_publish_reaches_only_that_rooms_subscribers():
    broker = UpdateBroker()

    async with broker.subscribe("AAAAAA") as first, broker.subscribe("AAAAAA") as second:
        async with broker.subscribe("BBBBBB") as other:
            assert broker.publish("AAAAAA") == 2

            assert first.get_nowait() == {"code": "AAAAAA"}
            assert second.get_nowait() == {"code": "AAAAAA"}
            assert other.empty()


@pytest.mark.asyncio
async def test_subscriber_unregistered_on_error():
    broker = UpdateBroker()

    with pytest.raises(RuntimeError):
        async with broker.subscribe("AAAAAA"):
            assert broker.subscriber_count("AAAAAA") == 1
            raise RuntimeError("connection dropped")

    assert broker.subscriber_count() == 0
    assert broker.subscribers == {}
    assert broker.publish("AAAAAA") == 0


@pytest.mark.asyncio
async def test_publish_to_full_queue_does_not_block():
    broker = UpdateBroker(max_pending=1)

    async with broker.subscribe("AAAAAA") as updates:
        assert broker.publish("AAAAAA") == 1
        assert broker.publish("AAAAAA") == 0
        assert updates.qsize() == 1


@pytest.mark.asyncio
async def test_summary_stream_sends_fresh_tallies(client: AsyncClient, make_room, store, broker):
    code = (await make_room())["code"]

    async def connected():
        return False

    events = summary_events(store, broker, code, 5, connected)
    try:
        assert decode(await events.__anext__()) == {"type": "connected"}
        initial = decode(await events.__anext__())
        assert initial["type"] == "summary"
        assert initial["summary"]["totalVotes"] == 0
        assert broker.subscriber_count(code) == 1

        pending = asyncio.ensure_future(events.__anext__())
        await asyncio.sleep(0)
        resp = await client.post(f"/api/rooms/{code}/votes", json={"candidateName": "Alex"})
        assert resp.status_code == 200

        update = decode(await asyncio.wait_for(pending, timeout=2))
        assert update["type"] == "summary"
        assert update["summary"]["totalVotes"] == 1
        assert update["summary"]["roleTallies"][0]["winner"]["candidate"] == "Alex"
    finally:
        await events.aclose()

    assert broker.subscriber_count(code) == 0


@pytest.mark.asyncio
async def test_summary_stream_keepalive_and_disconnect(make_room, store, broker):
    code = (await make_room())["code"]
    polls = []

    async def disconnected_after_two_polls():
        polls.append(1)
        return len(polls) > 2

    frames = [frame async for frame in summary_events(store, broker, code, 0.01, disconnected_after_two_polls)]

    assert decode(frames[0]) == {"type": "connected"}
    assert frames[2:] == [KEEPALIVE_FRAME, KEEPALIVE_FRAME]
    assert broker.subscriber_count() == 0


@pytest.mark.asyncio
async def test_stream_unknown_room(client: AsyncClient):
    resp = await client.get("/api/rooms/ZZZZZZ/stream")
    assert resp.status_code == 404


def test_websocket_pushes_summary_after_vote(settings):
    app = create_app(settings)
    with TestClient(app) as http:
        code = http.post("/api/rooms", json={"roles": ["Chair"]}).json()["code"]

        with http.websocket_connect(f"/ws/{code.lower()}") as ws:
            assert ws.receive_json() == {"type": "connected"}
            assert ws.receive_json()["summary"]["totalVotes"] == 0

            ws.send_text("ping")
            message = ws.receive()
            while message.get("text") != "pong":
                # keep-alives may arrive before the reply
                assert json.loads(message["text"])["type"] == "keepalive"
                message = ws.receive()

            http.post(f"/api/rooms/{code}/votes", json={"candidateName": "Ann"})
            event = ws.receive_json()
            while event["type"] == "keepalive":
                event = ws.receive_json()
            assert event["type"] == "summary"
            assert event["summary"]["totalVotes"] == 1

        assert app.state.broker.subscriber_count() == 0
