"""Machine side of the relay connection: RPC routing and encrypted event delivery."""

from __future__ import annotations

import dataclasses
import json
import logging
import threading
import uuid
from typing import Any, Callable, Optional, Protocol

from muxagent.domain import Event, EventType, to_json_value
from muxagent.relayws.eventbuf import EventBuffer
from muxagent.relayws.protocol import (
    EncryptedMessage,
    ErrorMessage,
    EventHint,
    MessageType,
    RPCPayload,
    SessionEndMessage,
    SessionInitMessage,
    to_wire,
)
from muxagent.relayws.rpc import RpcHandler, RuntimeClient, WorktreeStore
from muxagent.relayws.session import DecryptionError, RelaySession
from muxagent.relayws.status import StatusTracker

log = logging.getLogger(__name__)

_HINTED_EVENTS = {
    EventType.APPROVAL_REQUESTED.value,
    EventType.RUN_FAILED.value,
    EventType.RUN_FINISHED.value,
}


class RelayError(Exception):
    """The relay connection failed or cannot carry a message."""


class RelayNotConnectedError(RelayError):
    def __init__(self) -> None:
        super().__init__("relay not connected")


class NoActiveSessionError(RelayError):
    def __init__(self) -> None:
        super().__init__("no active session")


class StaleRelaySessionError(RelayError):
    def __init__(self) -> None:
        super().__init__("stale relay session")


class Connection(Protocol):
    """A message-oriented link to the relay carrying JSON values."""

    def read_json(self) -> Any:
        """Block for the next decoded message; raise once the link is closed."""
        ...

    def write_json(self, value: Any) -> None: ...

    def close(self) -> None: ...


SessionInitializer = Callable[[int, SessionInitMessage], Optional[RelaySession]]


def is_expected_relay_drop(err: BaseException) -> bool:
    """Return True for errors that only mean the relay or session went away."""
    return isinstance(
        err, (RelayNotConnectedError, NoActiveSessionError, StaleRelaySessionError)
    )


def _event_type_name(event: Event) -> str:
    return getattr(event.type, "value", event.type)


class Client:
    """Serves a connected client's RPCs and forwards events over an encrypted session."""

    def __init__(
        self,
        machine_id: str,
        runtime: Optional[RuntimeClient] = None,
        event_buf: Optional[EventBuffer] = None,
        *,
        worktrees: Optional[WorktreeStore] = None,
        session_cwd: Optional[dict[str, str]] = None,
        status: Optional[StatusTracker] = None,
        conn: Optional[Connection] = None,
        conn_epoch: int = 0,
        session: Optional[RelaySession] = None,
        session_initializer: Optional[SessionInitializer] = None,
    ) -> None:
        self.machine_id = machine_id
        self.event_buf = event_buf
        self.status = status if status is not None else StatusTracker()
        self.rpc = RpcHandler(
            runtime=runtime,
            event_buf=event_buf,
            status=self.status,
            send_event=self.send_event,
            worktrees=worktrees,
            session_cwd=session_cwd,
        )
        self._session_initializer = session_initializer
        # Never take _state_lock while holding _write_lock.
        self._state_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._conn = conn
        self._conn_epoch = conn_epoch
        self._session = session

    # --- state ---

    def _snapshot(self) -> tuple[Optional[Connection], int, Optional[RelaySession]]:
        with self._state_lock:
            return self._conn, self._conn_epoch, self._session

    def has_session(self) -> bool:
        """Return True while an encrypted session is installed."""
        with self._state_lock:
            return self._session is not None

    def publish_connection(self, conn: Connection) -> int:
        """Make ``conn`` the active connection and return its new epoch."""
        with self._state_lock:
            self._conn_epoch += 1
            self._conn = conn
            self._session = None
            return self._conn_epoch

    def _detach_connection(self) -> Optional[Connection]:
        with self._state_lock:
            old = self._conn
            self._conn = None
            self._session = None
            self._conn_epoch += 1
            return old

    def install_session(self, session: Optional[RelaySession]) -> None:
        """Install ``session`` if it belongs to the current connection."""
        if session is None:
            raise NoActiveSessionError()
        with self._state_lock:
            if self._conn_epoch != session.conn_epoch:
                raise StaleRelaySessionError()
            if self._conn is None:
                raise RelayNotConnectedError()
            self._session = session

    def close(self) -> None:
        """Drop the active connection and session."""
        old = self._detach_connection()
        if old is None:
            return
        with self._write_lock:
            old.close()

    # --- writing ---

    def _write(self, conn: Connection, message: Any) -> None:
        payload = to_wire(message) if dataclasses.is_dataclass(message) else message
        with self._write_lock:
            conn.write_json(payload)

    def write_protocol_for_epoch(self, epoch: int, message: Any) -> None:
        """Write a handshake message if the connection epoch is still ``epoch``."""
        conn, current_epoch, _ = self._snapshot()
        if current_epoch != epoch:
            raise StaleRelaySessionError()
        if conn is None:
            raise RelayNotConnectedError()
        self._write(conn, message)

    def write_for_session(self, session: Optional[RelaySession], message: Any) -> None:
        """Write ``message`` only if ``session`` is still the active session."""
        if session is None:
            raise NoActiveSessionError()
        conn, current_epoch, current = self._snapshot()
        if current_epoch != session.conn_epoch:
            raise StaleRelaySessionError()
        if conn is None:
            raise RelayNotConnectedError()
        if current is None:
            raise NoActiveSessionError()
        if current is not session:
            raise StaleRelaySessionError()
        self._write(conn, message)

    def _active_session(self) -> RelaySession:
        conn, _, session = self._snapshot()
        if conn is None:
            raise RelayNotConnectedError()
        if session is None:
            raise NoActiveSessionError()
        return session

    # --- reading ---

    def run(self) -> None:
        """Read relay messages until the connection fails; always ends by raising."""
        conn, epoch, _ = self._snapshot()
        if conn is None:
            raise RelayNotConnectedError()
        while True:
            try:
                raw = conn.read_json()
            except Exception as exc:
                raise RelayError(f"read message: {exc}") from exc
            if not isinstance(raw, dict):
                continue
            try:
                msg_type = MessageType(raw.get("type"))
            except ValueError:
                continue
            try:
                self._route(epoch, msg_type, raw)
            except ValueError:
                continue

    def _route(self, epoch: int, msg_type: MessageType, raw: dict) -> None:
        if msg_type == MessageType.SESSION_INIT:
            self._handle_session_init(epoch, SessionInitMessage.from_dict(raw))
        elif msg_type == MessageType.SESSION_END:
            self.handle_session_end(SessionEndMessage.from_dict(raw))
        elif msg_type == MessageType.RPC:
            message = EncryptedMessage.from_dict(raw)
            # Long RPCs such as session.prompt must not stall the read loop.
            threading.Thread(
                target=self.handle_rpc, args=(epoch, message), daemon=True
            ).start()
        elif msg_type == MessageType.RESPONSE:
            self.handle_response(EncryptedMessage.from_dict(raw))
        elif msg_type == MessageType.ERROR:
            log.warning("relay error: %s", ErrorMessage.from_dict(raw).error)

    def _handle_session_init(self, epoch: int, message: SessionInitMessage) -> None:
        if message.machine_id != self.machine_id:
            log.warning("session-init error: machine_id mismatch")
            return
        if self._session_initializer is None:
            log.warning("session-init error: no session initializer configured")
            return
        try:
            self.install_session(self._session_initializer(epoch, message))
        except Exception as exc:
            if not is_expected_relay_drop(exc):
                log.warning("session-init error: %s", exc)

    def handle_rpc(self, conn_epoch: int, message: EncryptedMessage) -> None:
        """Decrypt an RPC, run it and send the encrypted response back."""
        _, _, session = self._snapshot()
        if session is None or session.conn_epoch != conn_epoch:
            return
        try:
            plaintext = session.decrypt(
                message.type, message.msg_id, message.nonce, message.ciphertext
            )
            payload = RPCPayload.from_dict(json.loads(plaintext))
        except (DecryptionError, ValueError):
            return

        response = self.rpc.dispatch(payload.method, payload.params)
        try:
            body = json.dumps(response).encode("utf-8")
        except (TypeError, ValueError) as exc:
            log.warning("rpc marshal response: %s", exc)
            return
        nonce, ciphertext = session.encrypt(MessageType.RESPONSE, message.msg_id, body)
        try:
            self.write_for_session(
                session,
                EncryptedMessage(
                    type=MessageType.RESPONSE,
                    machine_id=self.machine_id,
                    msg_id=message.msg_id,
                    nonce=nonce,
                    ciphertext=ciphertext,
                ),
            )
        except Exception as exc:
            if not is_expected_relay_drop(exc):
                log.warning("rpc write response: %s", exc)

    def handle_response(self, message: EncryptedMessage) -> None:
        """Decrypt and log a response the client sent back."""
        _, _, session = self._snapshot()
        if session is None:
            return
        try:
            plaintext = session.decrypt(
                message.type, message.msg_id, message.nonce, message.ciphertext
            )
            payload = json.loads(plaintext)
        except (DecryptionError, ValueError):
            return
        if isinstance(payload, dict):
            log.info("response from client: %s", payload)

    def handle_session_end(self, message: SessionEndMessage) -> None:
        """Drop the session when the client ends it for this machine."""
        if not message.machine_id or message.machine_id != self.machine_id:
            return
        with self._state_lock:
            self._session = None
        log.info("session ended by client")

    # --- sending ---

    def send_event(self, event: Event) -> None:
        """Record ``event`` locally, then encrypt and send it to the client."""
        self.status.apply_event(event)
        if self.event_buf is not None:
            event = self.event_buf.push(event)

        session = self._active_session()
        msg_id = str(uuid.uuid4())
        body = json.dumps(to_json_value(event)).encode("utf-8")
        nonce, ciphertext = session.encrypt(MessageType.EVENT, msg_id, body)
        message = EncryptedMessage(
            type=MessageType.EVENT,
            machine_id=self.machine_id,
            msg_id=msg_id,
            nonce=nonce,
            ciphertext=ciphertext,
        )
        name = _event_type_name(event)
        if name in _HINTED_EVENTS:
            message.hint = EventHint(event=name)
        self.write_for_session(session, message)

    def send_echo(self, params: Optional[dict]) -> None:
        """Send an encrypted echo RPC to the client."""
        session = self._active_session()
        msg_id = str(uuid.uuid4())
        body = json.dumps(to_wire(RPCPayload(method="echo", params=params))).encode("utf-8")
        nonce, ciphertext = session.encrypt(MessageType.RPC, msg_id, body)
        self.write_for_session(
            session,
            EncryptedMessage(
                type=MessageType.RPC,
                machine_id=self.machine_id,
                msg_id=msg_id,
                nonce=nonce,
                ciphertext=ciphertext,
            ),
        )