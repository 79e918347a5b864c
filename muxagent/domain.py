"""Core data types shared by the relay, the runtimes and the event stream."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

MODE_DEFAULT = "default"
MODE_ACCEPT_EDITS = "acceptEdits"
MODE_PLAN = "plan"
MODE_DONT_ASK = "dontAsk"
MODE_BYPASS_PERMISSIONS = "bypassPermissions"

_ZERO_TIME = "0001-01-01T00:00:00Z"

_JSON = "json"
_OMIT = "omit"
_TIME = "time"
_EMPTY = "empty"
_NIL = "nil"


def is_non_default_mode(mode: str) -> bool:
    """Return True when ``mode`` names a permission mode other than the default."""
    return mode != "" and mode != MODE_DEFAULT


def _key(name: str, omit: Optional[str] = None, time: bool = False, **kwargs: Any) -> Any:
    return field(metadata={_JSON: name, _OMIT: omit, _TIME: time}, **kwargs)


def _text(name: str, omit: Optional[str] = None) -> Any:
    return _key(name, omit, default="")


def _optional(name: str, omit: Optional[str] = _EMPTY) -> Any:
    return _key(name, omit, default=None)


def _items(name: str, omit: Optional[str] = None) -> Any:
    return _key(name, omit, default_factory=list)


def _when(name: str) -> Any:
    return _key(name, time=True, default=None)


class SessionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    WAITING_APPROVAL = "waiting_approval"
    ERROR = "error"
    DONE = "done"


class ToolStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class MessageRole(str, Enum):
    USER = "user"
    AGENT = "agent"


class PartType(str, Enum):
    TEXT = "text"
    REASONING = "reasoning"
    FILE = "file"
    TOOL = "tool"
    DATA = "data"


class SessionUpdateType(str, Enum):
    USER_MESSAGE_CHUNK = "user_message_chunk"
    AGENT_MESSAGE_CHUNK = "agent_message_chunk"
    AGENT_THOUGHT_CHUNK = "agent_thought_chunk"
    TOOL_CALL = "tool_call"
    TOOL_CALL_UPDATE = "tool_call_update"
    PLAN = "plan"
    AVAILABLE_COMMANDS = "available_commands_update"
    CURRENT_MODE = "current_mode_update"
    CONFIG_OPTION = "config_option_update"
    SESSION_INFO = "session_info_update"
    USAGE_UPDATE = "usage_update"


class EventType(str, Enum):
    MESSAGE_DELTA = "message.delta"
    MESSAGE_FINAL = "message.final"
    TOOL_STARTED = "tool.started"
    TOOL_UPDATED = "tool.updated"
    TOOL_COMPLETED = "tool.completed"
    TOOL_FAILED = "tool.failed"
    REASONING = "reasoning"
    APPROVAL_REQUESTED = "approval.requested"
    APPROVAL_REPLIED = "approval.replied"
    SESSION_STATUS = "session.status"
    RUN_FAILED = "run.failed"
    RUN_FINISHED = "run.finished"
    CONNECTION_STATE = "connection.state"
    PLAN_UPDATED = "plan.updated"
    MODE_CHANGED = "mode.changed"
    MODEL_CHANGED = "model.changed"
    USAGE_UPDATE = "usage.update"


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"


@dataclass
class CostInfo:
    cost_amount: float = _key("costAmount", _EMPTY, default=0.0)
    cost_currency: str = _text("costCurrency", _EMPTY)
    total_tokens: int = _key("totalTokens", _EMPTY, default=0)


@dataclass
class PromptUsage:
    """Cumulative token usage reported when a prompt finishes."""

    input_tokens: int = _key("inputTokens", default=0)
    output_tokens: int = _key("outputTokens", default=0)
    cached_read_tokens: int = _key("cachedReadTokens", default=0)
    cached_write_tokens: int = _key("cachedWriteTokens", default=0)
    total_tokens: int = _key("totalTokens", default=0)


@dataclass
class Session:
    id: str = _text("id")
    title: str = _text("title")
    status: SessionStatus | str = _text("status")
    model: str = _text("model", _EMPTY)
    cost: Optional[CostInfo] = _optional("cost")
    created_at: Optional[datetime] = _when("createdAt")
    updated_at: Optional[datetime] = _when("updatedAt")
    metadata: Optional[dict] = _optional("metadata")


@dataclass
class SessionSummary:
    """Lightweight session list entry."""

    session_id: str = _text("sessionId")
    cwd: str = _text("cwd")
    title: str = _text("title")
    updated_at: Optional[datetime] = _when("updatedAt")


@dataclass
class ToolActivity:
    id: str = _text("id")
    name: str = _text("name")
    kind: str = _text("kind", _EMPTY)
    status: ToolStatus | str = _text("status")
    title: str = _text("title", _EMPTY)
    input: Optional[dict] = _optional("input")
    output: str = _text("output", _EMPTY)
    error: str = _text("error", _EMPTY)
    metadata: Optional[dict] = _optional("metadata")


@dataclass
class MediaPart:
    url: str = _text("url", _EMPTY)
    base64: str = _text("base64", _EMPTY)
    mime_type: str = _text("mimeType", _EMPTY)
    name: str = _text("name", _EMPTY)
    size: int = _key("size", _EMPTY, default=0)


@dataclass
class MessagePart:
    type: PartType | str = _text("type")
    text: str = _text("text", _EMPTY)
    media: Optional[MediaPart] = _optional("media")
    tool: Optional[ToolActivity] = _optional("tool")
    data: Optional[dict] = _optional("data")


@dataclass
class Message:
    id: str = _text("id")
    session_id: str = _text("sessionId")
    role: MessageRole | str = _text("role")
    parts: list[MessagePart] = _items("parts")
    cost: Optional[CostInfo] = _optional("cost")
    model: str = _text("model", _EMPTY)
    metadata: Optional[dict] = _optional("metadata")
    created_at: Optional[datetime] = _when("createdAt")


@dataclass
class PermOption:
    """An available answer to a permission request."""

    option_id: str = _text("optionId")
    kind: str = _text("kind")
    name: str = _text("name")


@dataclass
class ApprovalRequest:
    id: str = _text("id")
    session_id: str = _text("sessionId")
    tool_call_id: str = _text("toolCallId", _EMPTY)
    tool_name: str = _text("toolName")
    title: str = _text("title")
    kind: str = _text("kind", _EMPTY)
    input: Optional[dict] = _optional("input")
    options: list[PermOption] = _items("options", _EMPTY)
    created_at: Optional[datetime] = _when("createdAt")


@dataclass
class ContentBlock:
    """A prompt input block."""

    type: str = _text("type")
    text: str = _text("text", _EMPTY)
    mime_type: str = _text("mimeType", _EMPTY)
    data: str = _text("data", _EMPTY)
    uri: str = _text("uri", _EMPTY)


@dataclass
class PermToolCall:
    """The tool call a permission request is about."""

    tool_call_id: str = _text("toolCallId")
    title: str = _text("title")
    status: str = _text("status")
    kind: str = _text("kind", _EMPTY)
    raw_input: Optional[dict] = _optional("rawInput")


@dataclass
class PermissionRequest:
    session_id: str = _text("sessionId")
    tool_call: Optional[PermToolCall] = _optional("toolCall")
    options: list[PermOption] = _items("options")


@dataclass
class PermOutcome:
    outcome: str = _text("outcome")
    option_id: str = _text("optionId", _EMPTY)


@dataclass
class PermissionResponse:
    outcome: PermOutcome = _key("outcome", default_factory=PermOutcome)


@dataclass
class MessagePartEvent:
    part_id: str = _text("partId")
    message_id: str = _text("messageId")
    role: MessageRole | str = _text("role", _EMPTY)
    delta: str = _text("delta")
    part_type: str = _text("partType")
    full_text: str = _text("fullText")


@dataclass
class ToolDiff:
    path: str = _text("path")
    old_text: Optional[str] = _optional("oldText", _NIL)
    new_text: str = _text("newText")


@dataclass
class ToolLocation:
    path: str = _text("path")
    line: Optional[int] = _optional("line", _NIL)


@dataclass
class ToolEvent:
    part_id: str = _text("partId")
    message_id: str = _text("messageId")
    call_id: str = _text("callId")
    name: str = _text("name")
    kind: str = _text("kind", _EMPTY)
    title: str = _text("title", _EMPTY)
    status: ToolStatus | str = _text("status")
    input: Optional[dict] = _optional("input")
    output: str = _text("output", _EMPTY)
    error: str = _text("error", _EMPTY)
    diffs: list[ToolDiff] = _items("diffs", _EMPTY)
    metadata: Optional[dict] = _optional("metadata")
    locations: list[ToolLocation] = _items("locations", _EMPTY)


@dataclass
class SessionError:
    code: str = _text("code")
    message: str = _text("message")


@dataclass
class Event:
    type: EventType | str = _text("type")
    session_id: str = _text("sessionId", _EMPTY)
    seq: int = _key("seq", default=0)
    at: Optional[datetime] = _when("at")
    message_part: Optional[MessagePartEvent] = _optional("messagePart")
    message: Optional[Message] = _optional("message")
    tool: Optional[ToolEvent] = _optional("tool")
    approval: Optional[ApprovalRequest] = _optional("approval")
    session: Optional[Session] = _optional("session")
    error: Optional[SessionError] = _optional("error")
    data: Optional[dict] = _optional("data")


@dataclass
class ConfigOptionValue:
    value: str = _text("value")
    name: str = _text("name")
    description: str = _text("description", _EMPTY)


@dataclass
class ConfigOption:
    """A configurable session option such as a model select."""

    id: str = _text("id")
    type: str = _text("type")
    category: str = _text("category", _EMPTY)
    label: str = _text("label", _EMPTY)
    current_value: str = _text("currentValue")
    options: list[ConfigOptionValue] = _items("options", _EMPTY)


def _format_time(value: Optional[datetime]) -> str:
    if value is None:
        return _ZERO_TIME
    if value.tzinfo is None:
        value = value.astimezone()
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset() or timedelta(0)
    if offset == timedelta(0):
        return text + "Z"
    sign = "+" if offset > timedelta(0) else "-"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, list, tuple, dict)):
        return len(value) == 0
    if isinstance(value, (bool, int, float)):
        return not value
    return False


def to_json_value(obj: Any) -> Any:
    """Convert a domain object (or nested containers of them) to JSON-ready data."""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return _format_time(obj)
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        result: dict[str, Any] = {}
        for f in dataclasses.fields(obj):
            value = getattr(obj, f.name)
            omit = f.metadata.get(_OMIT)
            if omit == _EMPTY and _is_empty(value):
                continue
            if omit == _NIL and value is None:
                continue
            name = f.metadata.get(_JSON, f.name)
            if f.metadata.get(_TIME):
                result[name] = _format_time(value)
            else:
                result[name] = to_json_value(value)
        return result
    if isinstance(obj, dict):
        return {str(k): to_json_value(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_json_value(item) for item in obj]
    return obj


def _json_kind(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def content_blocks_from_json(value: Any) -> list[ContentBlock]:
    """Parse decoded JSON into content blocks; raise ValueError on a shape mismatch."""
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"cannot unmarshal {_json_kind(value)} into content blocks")
    blocks = []
    for item in value:
        if item is None:
            blocks.append(ContentBlock())
            continue
        if not isinstance(item, dict):
            raise ValueError(f"cannot unmarshal {_json_kind(item)} into content block")
        values = {}
        for f in dataclasses.fields(ContentBlock):
            name = f.metadata[_JSON]
            raw = item.get(name)
            if raw is None:
                continue
            if not isinstance(raw, str):
                raise ValueError(f"cannot unmarshal {_json_kind(raw)} into field {name}")
            values[f.name] = raw
        blocks.append(ContentBlock(**values))
    return blocks