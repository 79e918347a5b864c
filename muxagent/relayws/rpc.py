"""Handlers for the RPC methods a connected client may call on this machine."""

from __future__ import annotations

import logging
import os
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, Sequence

from muxagent.domain import (
    ApprovalRequest,
    ConfigOption,
    ContentBlock,
    Event,
    EventType,
    PromptUsage,
    SessionError,
    SessionStatus,
    SessionSummary,
    content_blocks_from_json,
    to_json_value,
)
from muxagent.relayws import fsops
from muxagent.relayws.eventbuf import EventBuffer
from muxagent.relayws.status import StatusTracker

log = logging.getLogger(__name__)

WORKTREE_BRANCH_PREFIX = "muxagent/"


class RuntimeClient(Protocol):
    """The agent runtime operations the relay forwards requests to."""

    def runtime_list(self) -> list[Any]: ...

    def new_session(
        self, runtime_id: str, cwd: str, permission_mode: str
    ) -> tuple[str, str, Sequence[ConfigOption]]: ...

    def load_session(
        self, runtime_id: str, session_id: str, cwd: str, permission_mode: str, model: str
    ) -> tuple[str, Sequence[ConfigOption]]: ...

    def resolve_sessions(
        self, runtime_id: str, session_ids: list[str]
    ) -> Sequence[SessionSummary]: ...

    def prompt(
        self, session_id: str, content: list[ContentBlock]
    ) -> tuple[str, Optional[PromptUsage]]: ...

    def cancel(self, session_id: str) -> None: ...

    def set_mode(self, session_id: str, mode_id: str) -> None: ...

    def set_config_option(self, session_id: str, config_id: str, value: str) -> None: ...

    def reply_permission(self, session_id: str, request_id: str, option_id: str) -> None: ...

    def pending_approvals(self) -> list[ApprovalRequest]: ...


@dataclass
class WorktreeMapping:
    """Where a session's dedicated git worktree lives."""

    worktree_id: str
    worktree_path: str
    repo_root: str
    branch_name: str


class WorktreeStore(Protocol):
    """Creates git worktrees and remembers which session uses which."""

    def find_repo_root(self, cwd: str) -> str: ...

    def create(self, repo_root: str, worktree_id: str) -> str: ...

    def get(self, session_id: str) -> Optional[WorktreeMapping]: ...

    def set(self, session_id: str, mapping: WorktreeMapping) -> None: ...

    def save(self) -> None: ...


class RpcError(Exception):
    """An RPC request failed; the message is sent back to the caller."""


def string_param(params: Optional[dict], key: str) -> str:
    """Return ``params[key]`` if it is a string, otherwise an empty string."""
    if not params:
        return ""
    value = params.get(key)
    if isinstance(value, str):
        return value
    if value is not None:
        log.warning("[relay] param %r: expected string, got %s", key, type(value).__name__)
    return ""


def _require(params: Optional[dict], key: str) -> str:
    value = string_param(params, key)
    if not value:
        raise RpcError(f"missing {key}")
    return value


def _expand_home(cwd: str) -> str:
    if cwd != "~" and not cwd.startswith("~/"):
        return cwd
    try:
        home = str(Path.home())
    except (RuntimeError, KeyError):
        return cwd
    return os.path.normpath(os.path.join(home, cwd[1:].lstrip("/")))


def _event_name(event: Event) -> str:
    return getattr(event.type, "value", event.type)


class RpcHandler:
    """Executes RPC methods against a runtime and tracks per-session state."""

    def __init__(
        self,
        runtime: Optional[RuntimeClient] = None,
        event_buf: Optional[EventBuffer] = None,
        status: Optional[StatusTracker] = None,
        send_event: Optional[Callable[[Event], Any]] = None,
        worktrees: Optional[WorktreeStore] = None,
        session_cwd: Optional[dict[str, str]] = None,
    ) -> None:
        self.runtime = runtime
        self.event_buf = event_buf
        self.status = status if status is not None else StatusTracker()
        self.worktrees = worktrees
        self._send_event = send_event
        self._cwd_lock = threading.Lock()
        self._session_cwd: dict[str, str] = dict(session_cwd or {})
        self._methods: dict[str, Callable[[Optional[dict]], Any]] = {
            "runtime.list": self.runtime_list,
            "session.create": self.create_session,
            "session.load": self.load_session,
            "session.resolve": self.resolve_sessions,
            "session.prompt": self.prompt,
            "session.cancel": self.cancel,
            "session.setMode": self.set_mode,
            "session.setConfigOption": self.set_config_option,
            "approval.reply": self.reply_permission,
            "events.resync": self.resync_events,
            "approvals.pending": self.pending_approvals,
            "fs.list": self.fs_list,
            "fs.search": self.fs_search,
        }

    # --- plumbing ---

    def dispatch(self, method: str, params: Optional[dict] = None) -> dict[str, Any]:
        """Run ``method`` and return the JSON-ready response payload."""
        result: Any = None
        error = ""
        if method == "echo":
            log.info("echo request from client: %s", params)
            result = params
        else:
            handler = self._methods.get(method)
            if handler is None:
                error = f"unknown method: {method}"
            else:
                try:
                    result = handler(params)
                except RpcError as exc:
                    result, error = None, str(exc)
        return {"result": to_json_value(result), "error": error}

    def _runtime(self) -> RuntimeClient:
        if self.runtime is None:
            raise RpcError("runtime not available")
        return self.runtime

    @staticmethod
    def _call(fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return fn(*args)
        except RpcError:
            raise
        except Exception as exc:
            raise RpcError(str(exc)) from exc

    def _remember_cwd(self, session_id: str, cwd: str) -> None:
        with self._cwd_lock:
            self._session_cwd[session_id] = cwd

    def _cwd_for(self, session_id: str) -> str:
        with self._cwd_lock:
            cwd = self._session_cwd.get(session_id, "")
        if not cwd:
            raise RpcError("unknown session")
        return cwd

    def _emit(self, event: Event) -> None:
        if self._send_event is None:
            self.status.apply_event(event)
            if self.event_buf is not None:
                self.event_buf.push(event)
            return
        try:
            self._send_event(event)
        except Exception as exc:
            log.warning("send %s event: %s", _event_name(event), exc)

    # --- methods ---

    def runtime_list(self, params: Optional[dict] = None) -> dict[str, Any]:
        """List the available agent runtimes."""
        runtime = self._runtime()
        return {"runtimes": runtime.runtime_list()}

    def create_session(self, params: Optional[dict]) -> dict[str, Any]:
        """Start a new session, optionally inside a fresh git worktree."""
        runtime = self._runtime()
        params = params or {}
        cwd = _expand_home(_require(params, "cwd"))
        permission_mode = string_param(params, "permissionMode")
        requested_runtime = string_param(params, "runtime")
        if not requested_runtime:
            raise RpcError("missing runtime")
        use_worktree = False
        if "useWorktree" in params:
            use_worktree = params["useWorktree"]
            if not isinstance(use_worktree, bool):
                raise RpcError("useWorktree must be a boolean")

        actual_cwd = cwd
        mapping: Optional[WorktreeMapping] = None
        if use_worktree:
            actual_cwd, mapping = self._create_worktree(cwd)

        session_id, actual_runtime, config_opts = self._call(
            runtime.new_session, requested_runtime, actual_cwd, permission_mode
        )
        self.status.set(session_id, SessionStatus.IDLE)
        self._remember_cwd(session_id, actual_cwd)

        if mapping is not None and self.worktrees is not None:
            self.worktrees.set(session_id, mapping)
            try:
                self.worktrees.save()
            except Exception as exc:
                log.warning("worktree store save: %s", exc)

        response: dict[str, Any] = {
            "sessionId": session_id,
            "runtime": actual_runtime,
            "cwd": actual_cwd,
        }
        if config_opts:
            response["configOptions"] = list(config_opts)
            log.info("[relay] session.create response includes %d configOptions", len(config_opts))
        else:
            log.info("[relay] session.create response has NO configOptions")
        return response

    def _create_worktree(self, cwd: str) -> tuple[str, WorktreeMapping]:
        if self.worktrees is None:
            raise RpcError("worktree requires a git repository")
        try:
            repo_root = self.worktrees.find_repo_root(cwd)
        except Exception as exc:
            raise RpcError("worktree requires a git repository") from exc
        worktree_id = secrets.token_hex(8)[:8]
        try:
            worktree_path = self.worktrees.create(repo_root, worktree_id)
        except Exception as exc:
            raise RpcError(f"failed to create worktree: {exc}") from exc
        try:
            rel_path = os.path.relpath(cwd, repo_root)
        except ValueError as exc:
            raise RpcError(f"failed to compute relative path: {exc}") from exc
        actual_cwd = os.path.normpath(os.path.join(worktree_path, rel_path))
        mapping = WorktreeMapping(
            worktree_id=worktree_id,
            worktree_path=worktree_path,
            repo_root=repo_root,
            branch_name=WORKTREE_BRANCH_PREFIX + worktree_id,
        )
        return actual_cwd, mapping

    def load_session(self, params: Optional[dict]) -> dict[str, Any]:
        """Load an existing session, preferring its worktree if it still exists."""
        runtime = self._runtime()
        session_id = _require(params, "sessionId")
        cwd = _require(params, "cwd")

        if self.worktrees is not None:
            mapping = self.worktrees.get(session_id)
            if mapping is not None:
                if os.path.exists(mapping.worktree_path):
                    cwd = mapping.worktree_path
                else:
                    log.info("worktree path gone for session %s, using original cwd", session_id)

        permission_mode = string_param(params, "permissionMode")
        model = string_param(params, "model")
        requested_runtime = string_param(params, "runtime")
        if not requested_runtime:
            raise RpcError("missing runtime")
        actual_runtime, config_opts = self._call(
            runtime.load_session, requested_runtime, session_id, cwd, permission_mode, model
        )
        self.status.ensure(session_id, SessionStatus.IDLE)
        self._remember_cwd(session_id, cwd)
        response: dict[str, Any] = {"ok": True, "runtime": actual_runtime}
        if config_opts:
            response["configOptions"] = list(config_opts)
        return response

    def resolve_sessions(self, params: Optional[dict]) -> dict[str, Any]:
        """Look up sessions and attach the daemon-tracked status to each."""
        runtime = self._runtime()
        params = params or {}
        raw_ids = params.get("sessionIds")
        if not isinstance(raw_ids, (list, tuple)):
            if raw_ids is not None:
                log.warning(
                    "[relay] param %r: expected list, got %s", "sessionIds", type(raw_ids).__name__
                )
            raw_ids = []
        wanted = list(dict.fromkeys(item for item in raw_ids if isinstance(item, str) and item))
        runtime_id = string_param(params, "runtime")

        summaries = list(self._call(runtime.resolve_sessions, runtime_id, list(wanted)) or [])
        present = {summary.session_id for summary in summaries}
        if wanted:
            for session_id in wanted:
                if session_id not in present:
                    self.status.clear(session_id)
            wanted_set = set(wanted)
            summaries = [s for s in summaries if s.session_id in wanted_set]
        else:
            self.status.clear_missing(present)

        sessions = [
            {
                "sessionId": summary.session_id,
                "cwd": summary.cwd,
                "title": summary.title,
                "updatedAt": summary.updated_at,
                "status": self.status.resolved(summary.session_id),
            }
            for summary in summaries
        ]
        return {"sessions": sessions}

    def prompt(self, params: Optional[dict]) -> dict[str, Any]:
        """Start a prompt in the background and acknowledge it at once."""
        runtime = self._runtime()
        params = params or {}
        session_id = _require(params, "sessionId")

        content: list[ContentBlock] = []
        if "content" in params:
            try:
                content = content_blocks_from_json(params["content"])
            except ValueError as exc:
                raise RpcError(f"invalid content: {exc}") from exc
        if not content:
            text = params.get("text")
            if isinstance(text, str) and text:
                content = [ContentBlock(type="text", text=text)]

        self.status.set(session_id, SessionStatus.RUNNING)
        worker = threading.Thread(
            target=self._run_prompt,
            args=(runtime, session_id, content),
            name=f"prompt-{session_id}",
            daemon=True,
        )
        worker.start()
        return {"accepted": True}

    def _run_prompt(
        self, runtime: RuntimeClient, session_id: str, content: list[ContentBlock]
    ) -> None:
        try:
            stop_reason, usage = runtime.prompt(session_id, content)
        except Exception as exc:
            self._emit(
                Event(
                    type=EventType.RUN_FAILED,
                    session_id=session_id,
                    at=datetime.now().astimezone(),
                    error=SessionError(code="prompt_error", message=str(exc)),
                )
            )
            return
        data: dict[str, Any] = {"stopReason": stop_reason}
        if usage is not None:
            data["totalTokens"] = usage.total_tokens
            data["inputTokens"] = usage.input_tokens
            data["outputTokens"] = usage.output_tokens
            data["cachedReadTokens"] = usage.cached_read_tokens
            data["cachedWriteTokens"] = usage.cached_write_tokens
        self._emit(
            Event(
                type=EventType.RUN_FINISHED,
                session_id=session_id,
                at=datetime.now().astimezone(),
                data=data,
            )
        )

    def cancel(self, params: Optional[dict]) -> dict[str, bool]:
        """Cancel the session's running prompt."""
        runtime = self._runtime()
        session_id = _require(params, "sessionId")
        self._call(runtime.cancel, session_id)
        return {"ok": True}

    def set_mode(self, params: Optional[dict]) -> dict[str, bool]:
        """Change the session's permission mode."""
        runtime = self._runtime()
        session_id = _require(params, "sessionId")
        mode_id = _require(params, "permissionMode")
        self._call(runtime.set_mode, session_id, mode_id)
        return {"ok": True}

    def set_config_option(self, params: Optional[dict]) -> dict[str, bool]:
        """Set one of the session's config options."""
        runtime = self._runtime()
        session_id = _require(params, "sessionId")
        config_id = _require(params, "configId")
        value = _require(params, "value")
        self._call(runtime.set_config_option, session_id, config_id, value)
        return {"ok": True}

    def reply_permission(self, params: Optional[dict]) -> dict[str, bool]:
        """Answer a pending permission request and announce the reply."""
        runtime = self._runtime()
        session_id = _require(params, "sessionId")
        request_id = _require(params, "requestId")
        option_id = _require(params, "optionId")
        self._call(runtime.reply_permission, session_id, request_id, option_id)
        self._emit(
            Event(
                type=EventType.APPROVAL_REPLIED,
                session_id=session_id,
                at=datetime.now().astimezone(),
                approval=ApprovalRequest(id=request_id, session_id=session_id),
            )
        )
        return {"ok": True}

    def pending_approvals(self, params: Optional[dict] = None) -> dict[str, Any]:
        """Return the permission requests still waiting for an answer."""
        runtime = self._runtime()
        return {"approvals": runtime.pending_approvals()}

    def resync_events(self, params: Optional[dict]) -> dict[str, Any]:
        """Return buffered events after ``lastSeq`` and whether nothing was lost."""
        if self.event_buf is None:
            raise RpcError("event buffer not available")
        last_seq = 0
        raw = (params or {}).get("lastSeq")
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            last_seq = max(0, int(raw))
        events, complete = self.event_buf.since(last_seq)
        return {"events": events, "complete": complete, "seq": self.event_buf.seq()}

    def fs_list(self, params: Optional[dict]) -> dict[str, Any]:
        """List a directory inside the session's project."""
        session_id = _require(params, "sessionId")
        cwd = self._cwd_for(session_id)
        rel_path = string_param(params, "path")
        try:
            entries = fsops.list_dir(cwd, rel_path)
        except (ValueError, OSError) as exc:
            raise RpcError(str(exc)) from exc
        return {"entries": entries}

    def fs_search(self, params: Optional[dict]) -> dict[str, Any]:
        """Search the session's project for entries whose name matches a query."""
        session_id = _require(params, "sessionId")
        query = _require(params, "query")
        cwd = self._cwd_for(session_id)
        return {"results": fsops.search(cwd, query)}