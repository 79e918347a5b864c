import json

import pytest

from muxagent.relayws.protocol import (
    ChallengeMessage,
    EncryptedMessage,
    EventHint,
    MessageType,
    RegisterMessage,
    Role,
    RPCPayload,
    SessionAckMessage,
    SessionInitMessage,
    to_wire,
)


def test_register_omits_empty_fields():
    wire = to_wire(RegisterMessage(role=Role.MACHINE, machine_id="machine-1", hostname="host"))
    assert wire == {
        "type": "register",
        "role": "machine",
        "machine_id": "machine-1",
        "hostname": "host",
    }


def test_challenge_defaults_to_its_type():
    assert to_wire(ChallengeMessage(nonce="nonce")) == {"type": "challenge", "nonce": "nonce"}


def test_encrypted_message_round_trip_with_hint():
    original = EncryptedMessage(
        type=MessageType.EVENT,
        machine_id="machine-1",
        msg_id="msg-1",
        nonce="bm9uY2U=",
        ciphertext="Y2lwaGVy",
        hint=EventHint(event="run.finished"),
    )
    wire = json.loads(json.dumps(to_wire(original)))
    assert wire["hint"] == {"event": "run.finished"}
    assert EncryptedMessage.from_dict(wire) == original


def test_encrypted_message_without_hint_omits_it():
    wire = to_wire(EncryptedMessage(type=MessageType.RESPONSE, msg_id="msg-echo"))
    assert "hint" not in wire
    assert wire["type"] == "response"
    assert wire["msg_id"] == "msg-echo"
    assert wire["nonce"] == ""


def test_unknown_type_is_kept_as_text():
    message = EncryptedMessage.from_dict({"type": "weird", "msg_id": "m"})
    assert message.type == "weird"
    assert message.msg_id == "m"


def test_known_type_becomes_enum():
    message = EncryptedMessage.from_dict({"type": "rpc"})
    assert message.type is MessageType.RPC


def test_non_string_field_is_rejected():
    with pytest.raises(ValueError):
        EncryptedMessage.from_dict({"type": "rpc", "nonce": 12})


def test_non_object_is_rejected():
    with pytest.raises(ValueError):
        SessionInitMessage.from_dict(["session-init"])


def test_session_init_ignores_unknown_keys():
    message = SessionInitMessage.from_dict(
        {
            "type": "session-init",
            "machine_id": "machine-1",
            "machine_token": "token",
            "client_ephemeral_pub": "pub",
            "signature": "sig",
            "extra": 1,
        }
    )
    assert message.machine_id == "machine-1"
    assert message.client_ephemeral_pub == "pub"
    assert message.signature == "sig"


def test_session_ack_wire_keys():
    wire = to_wire(
        SessionAckMessage(machine_id="machine-1", machine_ephemeral_pub="pub", signature="sig")
    )
    assert wire == {
        "type": "session-ack",
        "machine_id": "machine-1",
        "machine_ephemeral_pub": "pub",
        "signature": "sig",
    }


def test_rpc_payload_params():
    payload = RPCPayload.from_dict({"method": "echo", "params": {"message": "hello"}})
    assert payload.method == "echo"
    assert payload.params == {"message": "hello"}
    assert to_wire(RPCPayload(method="runtime.list")) == {"method": "runtime.list", "params": None}


def test_rpc_payload_params_must_be_object():
    with pytest.raises(ValueError):
        RPCPayload.from_dict({"method": "echo", "params": [1, 2]})