"""Messages exchanged with the relay over the WebSocket connection."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class MessageType(str, Enum):
    REGISTER = "register"
    CHALLENGE = "challenge"
    CHALLENGE_RESPONSE = "challengeResponse"
    REGISTERED = "registered"
    SESSION_INIT = "session-init"
    SESSION_ACK = "session-ack"
    SESSION_END = "session-end"
    RPC = "rpc"
    RESPONSE = "response"
    EVENT = "event"
    ERROR = "error"


class Role(str, Enum):
    CLIENT = "client"
    MACHINE = "machine"


_STR = "str"
_TYPE = "type"
_ROLE = "role"
_OBJECT = "object"
_HINT = "hint"


def _wire(name: str, kind: str = _STR, omitempty: bool = False, **kwargs: Any) -> Any:
    return field(metadata={"wire": name, "kind": kind, "omitempty": omitempty}, **kwargs)


def _text(name: str, omitempty: bool = False) -> Any:
    return _wire(name, omitempty=omitempty, default="")


def _type_of(message_type: MessageType) -> Any:
    return _wire("type", _TYPE, default=message_type)


def _decode_enum(enum_cls: type[Enum], raw: Any, name: str) -> Any:
    if not isinstance(raw, str):
        raise ValueError(f"field {name}: expected string, got {type(raw).__name__}")
    try:
        return enum_cls(raw)
    except ValueError:
        return raw


def _decode(kind: str, raw: Any, name: str) -> Any:
    if kind == _TYPE:
        return _decode_enum(MessageType, raw, name)
    if kind == _ROLE:
        return _decode_enum(Role, raw, name)
    if kind == _OBJECT:
        if not isinstance(raw, dict):
            raise ValueError(f"field {name}: expected object, got {type(raw).__name__}")
        return raw
    if not isinstance(raw, str):
        raise ValueError(f"field {name}: expected string, got {type(raw).__name__}")
    return raw


class _WireMessage:
    """Shared decoding for relay messages."""

    @classmethod
    def from_dict(cls, data: Any) -> Any:
        """Build a message from decoded JSON; raise ValueError on a shape mismatch."""
        if not isinstance(data, dict):
            raise ValueError(f"cannot decode {type(data).__name__} into {cls.__name__}")
        values = {}
        for f in dataclasses.fields(cls):  # type: ignore[arg-type]
            kind = f.metadata["kind"]
            if kind == _HINT:
                continue
            name = f.metadata["wire"]
            raw = data.get(name)
            if raw is None:
                continue
            values[f.name] = _decode(kind, raw, name)
        return cls(**values)


@dataclass
class RegisterMessage(_WireMessage):
    type: MessageType | str = _type_of(MessageType.REGISTER)
    role: Role | str = _wire("role", _ROLE, default="")
    machine_id: str = _text("machine_id", omitempty=True)
    hostname: str = _text("hostname", omitempty=True)
    connect_token: str = _text("connect_token", omitempty=True)


@dataclass
class ChallengeMessage(_WireMessage):
    type: MessageType | str = _type_of(MessageType.CHALLENGE)
    nonce: str = _text("nonce")


@dataclass
class ChallengeResponseMessage(_WireMessage):
    type: MessageType | str = _type_of(MessageType.CHALLENGE_RESPONSE)
    signature: str = _text("signature")


@dataclass
class RegisteredMessage(_WireMessage):
    type: MessageType | str = _type_of(MessageType.REGISTERED)
    master_id: str = _text("master_id", omitempty=True)
    machine_id: str = _text("machine_id", omitempty=True)


@dataclass
class SessionInitMessage(_WireMessage):
    type: MessageType | str = _type_of(MessageType.SESSION_INIT)
    machine_id: str = _text("machine_id")
    machine_token: str = _text("machine_token")
    client_ephemeral_pub: str = _text("client_ephemeral_pub")
    signature: str = _text("signature")


@dataclass
class SessionAckMessage(_WireMessage):
    type: MessageType | str = _type_of(MessageType.SESSION_ACK)
    machine_id: str = _text("machine_id")
    machine_ephemeral_pub: str = _text("machine_ephemeral_pub")
    signature: str = _text("signature")


@dataclass
class SessionEndMessage(_WireMessage):
    type: MessageType | str = _type_of(MessageType.SESSION_END)
    machine_id: str = _text("machine_id")


@dataclass
class EventHint(_WireMessage):
    """Unencrypted hint telling the relay which kind of event is inside."""

    event: str = _text("event")


@dataclass
class EncryptedMessage(_WireMessage):
    type: MessageType | str = _wire("type", _TYPE, default="")
    machine_id: str = _text("machine_id")
    msg_id: str = _text("msg_id")
    nonce: str = _text("nonce")
    ciphertext: str = _text("ciphertext")
    hint: Optional[EventHint] = _wire("hint", _HINT, omitempty=True, default=None)

    @classmethod
    def from_dict(cls, data: Any) -> "EncryptedMessage":
        """Build an encrypted message, including its optional hint."""
        message = super().from_dict(data)
        raw_hint = data.get("hint")
        if raw_hint is not None:
            message.hint = EventHint.from_dict(raw_hint)
        return message


@dataclass
class ErrorMessage(_WireMessage):
    type: MessageType | str = _type_of(MessageType.ERROR)
    error: str = _text("error")


@dataclass
class RPCPayload(_WireMessage):
    method: str = _text("method")
    params: Optional[dict] = _wire("params", _OBJECT, default=None)


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, _WireMessage):
        return to_wire(value)
    return value


def to_wire(message: Any) -> dict[str, Any]:
    """Convert a relay message to the JSON object sent on the wire."""
    result: dict[str, Any] = {}
    for f in dataclasses.fields(message):
        value = getattr(message, f.name)
        if f.metadata["omitempty"] and (value is None or value == ""):
            continue
        result[f.metadata["wire"]] = _plain(value)
    return result