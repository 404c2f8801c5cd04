"""Tests for the race authority HTTP and WebSocket endpoints."""

import json

import pytest
from fastapi.testclient import TestClient

from authority.server import RaceAuthorityServer


@pytest.fixture
def server():
    return RaceAuthorityServer(checkpoints_per_lap=2, total_laps=1)


@pytest.fixture
def client(server):
    return TestClient(server.app)


class TestRestApi:
    def test_health(self, client) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["race_status"] == "idle"
        assert body["racers"] == 0

    def test_register(self, client, server) -> None:
        response = client.post("/api/register", json={"name": "Alice"})
        assert response.status_code == 200
        racer = response.json()
        assert racer["name"] == "Alice"
        assert racer["laps"] == 0
        assert server.race.find_by_name("Alice").id == racer["id"]

    def test_register_requires_name(self, client) -> None:
        assert client.post("/api/register", json={}).status_code == 400
        assert client.post("/api/register", json={"name": ""}).status_code == 400

    def test_register_duplicate(self, client) -> None:
        client.post("/api/register", json={"name": "Alice"})
        assert client.post("/api/register", json={"name": "Alice"}).status_code == 409

    def test_results_put_disqualified_last(self, client, server) -> None:
        server.race.register("Alice")
        server.race.register("Bob")
        server.race.disqualify(server.race.find_by_name("Alice").id)

        names = [racer["name"] for racer in client.get("/api/results").json()["racers"]]
        assert names == ["Bob", "Alice"]


class TestWebSocket:
    def test_init_on_connect(self, client) -> None:
        with client.websocket_connect("/ws") as ws:
            init = ws.receive_json()
        assert init["type"] == "init"
        assert init["status"] == "idle"
        assert init["racers"] == []
        assert init["totalLaps"] == 1

    def test_tracker_session(self, client, server) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()

            ws.send_text(json.dumps({"type": "register", "name": "Alice"}))
            update = ws.receive_json()
            assert update["type"] == "update"
            racer_id = update["racers"][0]["id"]

            ws.send_text(json.dumps({"type": "action", "payload": "start"}))
            started = ws.receive_json()
            assert started["type"] == "init"
            assert started["status"] == "racing"

            ws.send_text(json.dumps({"type": "checkpoint", "racerId": racer_id}))
            update = ws.receive_json()
            assert update["type"] == "update"
            assert update["racers"][0]["lastLapTimestamp"] > 0

        assert server.race.status.value == "racing"

    def test_bad_frames_are_ignored(self, client, server) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("{not json")
            ws.send_text(json.dumps({"type": "teleport"}))
            ws.send_text(json.dumps({"type": "action", "payload": "explode"}))
            ws.send_text(json.dumps({"type": "checkpoint", "racerId": "r-unknown"}))

            ws.send_text(json.dumps({"type": "register", "name": "Bob"}))
            update = ws.receive_json()
            assert [racer["name"] for racer in update["racers"]] == ["Bob"]

    def test_remove_and_disqualify(self, client, server) -> None:
        server.race.register("Alice")
        alice_id = server.race.find_by_name("Alice").id
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text(json.dumps({"type": "disqualify", "racerId": alice_id}))
            assert ws.receive_json()["racers"][0]["disqualified"] is True
            ws.send_text(json.dumps({"type": "remove", "name": "Alice"}))
            assert ws.receive_json()["racers"] == []
