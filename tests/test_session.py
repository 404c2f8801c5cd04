"""Tests for the authority session: connection lifecycle and message handling."""

import json

import pytest

from shared.models import (
    InitMessage, MessageType, OutboundMessage, RaceAction, RaceStatus,
    StatusMessage, UnknownMessage, UpdateMessage, parse_inbound
)
from tracker.exceptions import TransportError
from tracker.session import ConnectionState


class TestParseInbound:
    def test_init(self) -> None:
        message = parse_inbound(
            '{"type":"init","status":"racing","racers":[{"id":"r1","name":"Alice","laps":2}],"totalLaps":3}'
        )
        assert isinstance(message, InitMessage)
        assert message.status is RaceStatus.RACING
        assert [(r.id, r.name) for r in message.racers] == [("r1", "Alice")]

    def test_update_without_status(self) -> None:
        message = parse_inbound('{"type":"update","racers":[]}')
        assert isinstance(message, UpdateMessage)
        assert message.status is None

    def test_status(self) -> None:
        message = parse_inbound('{"type":"status","status":"STOPPED"}')
        assert isinstance(message, StatusMessage)
        assert message.status is RaceStatus.STOPPED

    def test_unknown_type(self) -> None:
        assert parse_inbound('{"type":"podium"}') == UnknownMessage(type="podium")

    def test_incomplete_racers_are_skipped(self) -> None:
        message = parse_inbound('{"type":"update","racers":[{"id":"r1"},{"name":"x"},{"id":7,"name":"n"}]}')
        assert [(r.id, r.name) for r in message.racers] == [("7", "n")]

    def test_unknown_status_keeps_racers(self) -> None:
        message = parse_inbound('{"type":"update","status":"paused","racers":[{"id":"r1","name":"Alice"}]}')
        assert isinstance(message, UpdateMessage)
        assert message.status is None
        assert [(r.id, r.name) for r in message.racers] == [("r1", "Alice")]

    @pytest.mark.parametrize("text", ["not json", "[1, 2]", '{"type":"status","status":"flying"}'])
    def test_malformed(self, text) -> None:
        with pytest.raises(ValueError):
            parse_inbound(text)


class TestOutboundMessage:
    def test_frames_are_compact_single_line(self) -> None:
        assert OutboundMessage.checkpoint("r1").to_json() == '{"type":"checkpoint","racerId":"r1"}'
        assert OutboundMessage.action(RaceAction.START).to_json() == '{"type":"action","payload":"start"}'
        assert "\n" not in OutboundMessage.register("Some Name").to_json()


class TestConnectionLifecycle:
    def test_connect_then_open(self, session, transport) -> None:
        states = []
        session.add_state_listener(lambda old, new: states.append((old, new)))

        future = session.connect()
        assert session.connection_state is ConnectionState.CONNECTING
        assert transport.opened == ["ws://authority.test/ws"]
        assert not future.done()

        transport.accept()
        assert future.result(timeout=0) is True
        assert session.is_connected()
        assert states == [
            (ConnectionState.DISCONNECTED, ConnectionState.CONNECTING),
            (ConnectionState.CONNECTING, ConnectionState.CONNECTED),
        ]

    def test_connect_url_override(self, session, transport) -> None:
        session.connect("ws://elsewhere:3000/ws")
        assert transport.opened == ["ws://elsewhere:3000/ws"]

    def test_connect_while_connecting_returns_pending_attempt(self, session, transport) -> None:
        first = session.connect()
        second = session.connect()
        assert second is first
        assert len(transport.opened) == 1

    def test_connect_while_connected_is_resolved(self, connected_session, transport) -> None:
        future = connected_session.connect()
        assert future.result(timeout=0) is True
        assert len(transport.opened) == 1

    def test_failed_open_resolves_false(self, session, transport) -> None:
        transport.fail_open = TransportError("refused")
        future = session.connect()
        assert future.result(timeout=0) is False
        assert session.connection_state is ConnectionState.DISCONNECTED

    def test_close_during_handshake_resolves_false(self, session, transport) -> None:
        future = session.connect()
        transport.drop()
        assert future.result(timeout=0) is False
        assert session.connection_state is ConnectionState.DISCONNECTED

    def test_remote_close(self, connected_session, transport) -> None:
        transport.drop(1001, "going away")
        assert connected_session.connection_state is ConnectionState.DISCONNECTED

    def test_disconnect(self, connected_session, transport) -> None:
        assert connected_session.disconnect() is True
        assert connected_session.connection_state is ConnectionState.DISCONNECTED
        assert transport.closed == [(1000, "Client disconnecting")]
        assert connected_session.disconnect() is False

    def test_callbacks_from_dropped_connection_are_ignored(self, connected_session, transport) -> None:
        old_link = transport.listener
        connected_session.disconnect()

        old_link.on_text('{"type":"status","status":"racing"}', True)
        old_link.on_open()
        assert connected_session.race_status is RaceStatus.IDLE
        assert connected_session.connection_state is ConnectionState.DISCONNECTED

        connected_session.connect()
        old_link.on_close(1006, "late")
        assert connected_session.connection_state is ConnectionState.CONNECTING


class TestOutbound:
    def test_sends_while_connected(self, connected_session, transport) -> None:
        assert connected_session.send_checkpoint("r1") is True
        assert connected_session.send_action(RaceAction.STOP) is True
        assert connected_session.send_register("Alice") is True
        assert connected_session.send_remove("Alice") is True
        assert connected_session.send_lap("r1") is True
        assert connected_session.send_disqualify("r1") is True
        assert transport.sent_frames() == [
            {"type": "checkpoint", "racerId": "r1"},
            {"type": "action", "payload": "stop"},
            {"type": "register", "name": "Alice"},
            {"type": "remove", "name": "Alice"},
            {"type": "lap", "racerId": "r1"},
            {"type": "disqualify", "racerId": "r1"},
        ]

    def test_dropped_while_disconnected(self, session, transport) -> None:
        assert session.send_checkpoint("r1") is False
        session.connect()
        assert session.send_checkpoint("r1") is False
        assert transport.sent == []

    def test_transport_failure_reported(self, connected_session, transport) -> None:
        def fail(text):
            raise TransportError("No open connection")

        transport.send_text = fail
        assert connected_session.send_lap("r1") is False
        assert connected_session.is_connected()


class TestInbound:
    def test_init_syncs_racers_and_status(self, connected_session, transport, identities) -> None:
        identities.register_local("Alice")
        transport.deliver({
            "type": MessageType.INIT.value,
            "status": "racing",
            "racers": [{"id": "r1", "name": "Alice"}, {"id": "r2", "name": "Bob"}],
        })
        assert connected_session.is_racing()
        assert identities.lookup_id("alice") == "r1"
        assert identities.lookup_id("bob") == "r2"

    def test_update_status_overrides_cached(self, connected_session, transport) -> None:
        transport.deliver({"type": "status", "status": "racing"})
        transport.deliver({"type": "update", "status": "stopped", "racers": []})
        assert connected_session.race_status is RaceStatus.STOPPED

    def test_update_without_status_keeps_cached(self, connected_session, transport, identities) -> None:
        transport.deliver({"type": "status", "status": "racing"})
        transport.deliver({"type": "update", "racers": [{"id": "r5", "name": "Zed"}]})
        assert connected_session.race_status is RaceStatus.RACING
        assert identities.lookup_id("zed") == "r5"

    def test_finishing_is_not_racing(self, connected_session, transport) -> None:
        transport.deliver({"type": "status", "status": "finishing"})
        assert connected_session.race_status is RaceStatus.FINISHING
        assert not connected_session.is_racing()

    def test_fragments_are_assembled(self, connected_session, transport) -> None:
        frame = json.dumps({"type": "status", "status": "racing"})
        transport.listener.on_text(frame[:7], False)
        transport.listener.on_text(frame[7:15], False)
        assert connected_session.race_status is RaceStatus.IDLE
        transport.listener.on_text(frame[15:], True)
        assert connected_session.race_status is RaceStatus.RACING

    def test_byte_fragments_are_decoded(self, connected_session, transport) -> None:
        transport.listener.on_text(b'{"type":"status",', False)
        transport.listener.on_text(b'"status":"stopped"}', True)
        assert connected_session.race_status is RaceStatus.STOPPED

    def test_multibyte_character_split_across_fragments(self, connected_session, transport, identities) -> None:
        frame = {"type": "update", "racers": [{"id": "r1", "name": "Zo\u00e9"}]}
        data = json.dumps(frame, ensure_ascii=False).encode("utf-8")
        split = data.index("\u00e9".encode("utf-8")) + 1
        transport.listener.on_text(data[:split], False)
        transport.listener.on_text(data[split:], False)
        transport.listener.on_text("", True)
        assert identities.lookup_id("zo\u00e9") == "r1"
        assert identities.names() == ["zo\u00e9"]

    def test_unknown_status_still_syncs_racers(self, connected_session, transport, identities) -> None:
        transport.deliver({"type": "status", "status": "racing"})
        transport.deliver({"type": "init", "status": "paused", "racers": [{"id": "r1", "name": "Alice"}]})
        assert identities.lookup_id("alice") == "r1"
        assert connected_session.race_status is RaceStatus.RACING

    def test_malformed_frame_is_survived(self, connected_session, transport) -> None:
        transport.deliver("{not json")
        transport.deliver({"type": "status", "status": "warp"})
        transport.deliver({"type": "leaderboard"})
        assert connected_session.is_connected()
        transport.deliver({"type": "status", "status": "racing"})
        assert connected_session.is_racing()
