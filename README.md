# muxagent

`muxagent` is a library for the machine side of a relay that lets a remote
client drive coding-agent sessions on this computer. Once a connection to the
relay exists and an encrypted session has been agreed, `muxagent` decrypts the
client's RPC requests, runs them against an agent runtime, encrypts the
responses, and forwards encrypted events back to the client. The relay only
ever sees ciphertext and a small hint naming a few event types.

## Modules

- `muxagent.domain` — the shared data model as dataclasses: `Session`,
  `SessionSummary`, `Message`, `MessagePart`, `ToolActivity`, `ToolEvent`,
  `ApprovalRequest`, `ContentBlock`, `Event`, `ConfigOption` and more, with
  string enums such as `SessionStatus`, `EventType` and `ToolStatus`.
  `to_json_value` turns these objects into JSON-ready data using camelCase
  keys and dropping empty optional fields; `content_blocks_from_json` parses
  decoded JSON into `ContentBlock` objects and raises `ValueError` on a bad
  shape; `is_non_default_mode` checks a permission mode.
- `muxagent.privdir` — `ensure(path)` creates a directory with mode `0o700`
  and tightens it if it already exists; `ensure_within(path, root)` also
  tightens every ancestor up to `root`.
- `muxagent.localkey` — `MasterKeyStore` loads a hex-encoded 32-byte master
  key from a backend, or creates and stores a random one if none exists, and
  caches the result until `reset()` or `delete()`. `FileBackend` keeps the key
  in a file written with mode `0o600` inside an owner-only directory;
  `default_backend()` returns a `FileBackend` when `MUXAGENT_LOCALKEY_FILE` is
  set and an `UnsupportedBackend` otherwise. `decode_master_key` validates a
  stored key. Failures raise `LocalKeyError`.
- `muxagent.relayws.url` — `http_url_from_ws` turns a relay WebSocket URL into
  its HTTP base URL.
- `muxagent.relayws.protocol` — the relay wire messages (`RegisterMessage`,
  `ChallengeMessage`, `SessionInitMessage`, `SessionAckMessage`,
  `EncryptedMessage`, `RPCPayload`, ...), each with `from_dict`, and `to_wire`
  to serialise them.
- `muxagent.relayws.session` — `RelaySession` seals and opens payloads with
  XChaCha20-Poly1305, binding each one to its machine, message type and
  message id through `build_aad`; `derive_session_key` runs HKDF-SHA256 over
  an X25519 shared secret, salted with the SHA-256 of the handshake
  transcript.
- `muxagent.relayws.eventbuf` — `EventBuffer`, a fixed-size history that
  numbers pushed events and replays those after a given sequence number,
  reporting whether any were lost.
- `muxagent.relayws.opencode_store` — `lookup_session_summaries` reads
  session directories, titles and update times from an opencode SQLite
  database by running the `sqlite3` command.
- `muxagent.relayws.fsops` — `list_dir` and `search` browse a session's
  project directory (directories first; at most 200 listing entries and 50
  search results); `safe_path` raises `PathOutsideProjectError` or
  `SymlinkEscapeError` for paths that lead outside it.
- `muxagent.relayws.status` — `StatusTracker` keeps each session's status and
  updates it from outgoing events (approval requested, approval replied, run
  finished, run failed, session status).
- `muxagent.relayws.rpc` — `RpcHandler.dispatch(method, params)` answers
  `runtime.list`, `session.create`, `session.load`, `session.resolve`,
  `session.prompt`, `session.cancel`, `session.setMode`,
  `session.setConfigOption`, `approval.reply`, `approvals.pending`,
  `events.resync`, `fs.list`, `fs.search` and `echo`, returning
  `{"result": ..., "error": ...}`. It calls an object that follows the
  `RuntimeClient` protocol. `session.prompt` returns at once and runs the
  prompt in a background thread.
- `muxagent.relayws.client` — `Client` reads messages from a `Connection`,
  routes RPCs (each in its own thread), encrypts responses, and sends events
  with `send_event`. Writes are refused with `RelayNotConnectedError`,
  `NoActiveSessionError` or `StaleRelaySessionError` when the connection or
  session they were meant for is gone.

## Examples

```python
from muxagent.relayws.url import http_url_from_ws

http_url_from_ws("wss://relay.example.com/ws")   # "https://relay.example.com"
http_url_from_ws("ws://localhost:8080/ws")       # "http://localhost:8080"
```

```python
from muxagent.relayws.session import build_aad

build_aad("machine-1", "event", "msg-1")
# "muxagent-aad-v1|machine-1|event|msg-1"
```

Encrypting and decrypting a payload:

```python
import secrets
from muxagent.relayws.session import RelaySession

session = RelaySession("machine-1", secrets.token_bytes(32))
nonce, ciphertext = session.encrypt("rpc", "msg-1", b'{"method": "echo"}')
session.decrypt("rpc", "msg-1", nonce, ciphertext)   # b'{"method": "echo"}'
```

Replaying buffered events:

```python
from muxagent.domain import Event, EventType
from muxagent.relayws.eventbuf import EventBuffer

buf = EventBuffer(3)
for _ in range(4):
    buf.push(Event(type=EventType.MESSAGE_DELTA))
events, complete = buf.since(0)
[e.seq for e in events], complete   # ([2, 3, 4], False)
buf.since(2)[1]                     # True
```

```python
from muxagent.relayws.opencode_store import sqlite_quote
from muxagent.domain import is_non_default_mode

sqlite_quote("it's")            # "'it''s'"
is_non_default_mode("plan")     # True
is_non_default_mode("default")  # False
```

## Wiring a client

```python
from muxagent.relayws.client import Client
from muxagent.relayws.eventbuf import EventBuffer

client = Client(
    "machine-1",
    runtime=my_runtime,               # follows muxagent.relayws.rpc.RuntimeClient
    event_buf=EventBuffer(1024),
    conn=my_connection,               # read_json(), write_json(value), close()
    conn_epoch=1,
    session_initializer=my_initializer,  # (epoch, SessionInitMessage) -> RelaySession
)
client.run()   # blocks; raises RelayError when the connection fails
```

## Configuration

- `MUXAGENT_LOCALKEY_FILE` — file that holds the master key. Without it,
  `default_backend()` has no storage and loading the key fails.
- `MUXAGENT_OPENCODE_DB_PATH` — location of the opencode database. Without
  it the database is looked for under `$XDG_DATA_HOME/opencode/opencode.db`,
  then `~/.local/share/opencode/opencode.db`.

Session lookups in the opencode database need the `sqlite3` command on the
`PATH`.

## What the package does not do

- It does not open the WebSocket to the relay, register the machine or answer
  the relay's signed challenge. The caller supplies a connected `Connection`.
- It does not verify session-init requests or run the X25519 exchange itself;
  the caller's `session_initializer` must check the request and return a
  `RelaySession` (built with `derive_session_key`).
- It does not use the operating system's keychain, and it does not derive
  further keys from the master key.
- It contains no agent runtime and no git worktree support: both are
  protocols (`RuntimeClient`, `WorktreeStore`) that the caller implements.
- It provides no command-line program.