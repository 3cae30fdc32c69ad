# tests/test_websocket.py
from __future__ import annotations

import json

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from fastapi.testclient import TestClient

from duet_chat.core.security import message_group
from duet_chat.protocol import Verb, format_frame
from duet_chat.repositories import MessageStore
from duet_chat.schemas import FullUser, IDInfo, MessageRecord
from duet_chat.services.envelope import EnvelopeService, Role


def _create_user(ws, key: RSAPrivateKey, name: str) -> dict:
    ws.send_text(
        format_frame(Verb.CREATE_NEW_USER, FullUser(user_name=name, rsa_public_key=EnvelopeService.public_pem(key)))
    )
    user_id_frame = ws.receive_text()
    profile_frame = ws.receive_text()
    assert user_id_frame.startswith("/update-user-id ")
    assert profile_frame.startswith("/new-user-message ")
    return json.loads(profile_frame.split(" ", 1)[1])


def test_first_frame_is_session_id(client: TestClient) -> None:
    with client.websocket_connect("/ws/") as ws:
        verb, _, tid = ws.receive_text().partition(" ")
        assert verb == "/update-session-id"
        assert int(tid) > 0


def test_create_user_over_the_socket(client: TestClient, alice_key: RSAPrivateKey) -> None:
    with client.websocket_connect("/ws/") as ws:
        ws.receive_text()
        profile = _create_user(ws, alice_key, "Alice")
    assert profile["user_id"] > 0
    assert profile["user_name"] == "Alice"
    assert len(profile["user_token"]) == 64


def test_malformed_frames_get_no_reply(client: TestClient) -> None:
    with client.websocket_connect("/ws/") as ws:
        ws.receive_text()
        ws.send_text("not a command")
        ws.send_text("/update-session-id 3")
        ws.send_bytes(b"/get-user-data 1")
        ws.send_text("/get-user-data 424242")
        reply = ws.receive_text()
    assert reply.startswith("/get-user-data ")
    assert json.loads(reply.split(" ", 1)[1])["user_id"] == 0


def test_message_reaches_both_parties(
    client: TestClient,
    message_store: MessageStore,
    alice_key: RSAPrivateKey,
    bob_key: RSAPrivateKey,
) -> None:
    with client.websocket_connect("/ws/") as ws_a, client.websocket_connect("/ws/") as ws_b:
        ws_a.receive_text()
        ws_b.receive_text()
        alice = _create_user(ws_a, alice_key, "A")
        bob = _create_user(ws_b, bob_key, "B")

        sealed = EnvelopeService.encrypt("over the wire", alice_key.public_key(), bob_key.public_key())
        record = sealed.fill(
            MessageRecord(from_user=alice["user_id"], to_user=bob["user_id"], user_token=alice["user_token"])
        )
        ws_a.send_text(format_frame(Verb.MESSAGE, record))

        echo = ws_a.receive_text()
        delivered = ws_b.receive_text()

        ws_b.send_text(
            format_frame(
                Verb.MESSAGE_NUMBER,
                IDInfo(owner_id=bob["user_id"], user_id=alice["user_id"], user_token=bob["user_token"]),
            )
        )
        number = ws_b.receive_text()

    assert echo == delivered
    received = MessageRecord.model_validate_json(delivered.split(" ", 1)[1])
    assert received.message_number == 1
    assert EnvelopeService.decrypt(received, bob_key, Role.RECEIVER).plaintext == "over the wire"
    assert number == f"/message-number {alice['user_id']} 1"
    assert message_store.last_number(message_group(alice["user_id"], bob["user_id"])) == 1
