"""Session state and the session registry."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from aider_acp.data_models import Plan, ToolCallEvent, ToolCallState
from aider_acp.process import AiderProcess

logger = logging.getLogger(__name__)

TOOL_CALL_IN_PROGRESS = "in_progress"
TOOL_CALL_COMPLETED = "completed"
TOOL_CALL_FAILED = "failed"

TERMINAL_STATUSES = {TOOL_CALL_COMPLETED, TOOL_CALL_FAILED}


class SessionNotFoundError(LookupError):
    """No session exists with the requested id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class ToolCallLog:
    """Append-only log of tool-call lifecycle events.

    The index of active calls is derived from the log; ``verify()`` replays
    the log and checks that every call started before it finished and
    never changed after reaching a terminal status.
    """

    def __init__(self) -> None:
        self._events: list[ToolCallEvent] = []
        self._active: dict[str, ToolCallState] = {}
        self._counter = 0

    @property
    def events(self) -> tuple[ToolCallEvent, ...]:
        return tuple(self._events)

    @property
    def active(self) -> dict[str, ToolCallState]:
        """Calls started but not yet completed."""
        return dict(self._active)

    def next_id(self, prefix: str = "edit") -> str:
        self._counter += 1
        return f"{prefix}_{self._counter}_{uuid.uuid4().hex[:8]}"

    def start(self, tool_call_id: str, kind: str) -> ToolCallState:
        """Record the start of a tool call."""
        if tool_call_id in self._active or self._was_seen(tool_call_id):
            raise ValueError(f"Tool call already started: {tool_call_id}")

        state = ToolCallState(id=tool_call_id, kind=kind, status=TOOL_CALL_IN_PROGRESS)
        self._active[tool_call_id] = state
        self._events.append(ToolCallEvent(tool_call_id, kind, TOOL_CALL_IN_PROGRESS))
        return state

    def complete(self, tool_call_id: str, status: str = TOOL_CALL_COMPLETED) -> ToolCallState:
        """Record the terminal status of an active tool call."""
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal status: {status}")

        state = self._active.pop(tool_call_id, None)
        if state is None:
            raise KeyError(f"Tool call not active: {tool_call_id}")

        state.status = status
        self._events.append(ToolCallEvent(tool_call_id, state.kind, status))
        return state

    def verify(self) -> bool:
        """Replay the log and check the lifecycle invariant."""
        statuses: dict[str, str] = {}
        for event in self._events:
            previous = statuses.get(event.tool_call_id)
            if event.status == TOOL_CALL_IN_PROGRESS:
                if previous is not None:
                    return False
            elif previous != TOOL_CALL_IN_PROGRESS:
                return False
            statuses[event.tool_call_id] = event.status

        open_calls = {cid for cid, status in statuses.items() if status == TOOL_CALL_IN_PROGRESS}
        return open_calls == set(self._active)

    def _was_seen(self, tool_call_id: str) -> bool:
        return any(e.tool_call_id == tool_call_id for e in self._events)

    def __len__(self) -> int:
        return len(self._events)


@dataclass
class SessionState:
    """Everything the bridge knows about one client session."""

    id: str
    working_dir: str
    model: str
    created: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    process: AiderProcess | None = None
    files: set[str] = field(default_factory=set)
    read_only_files: set[str] = field(default_factory=set)
    current_mode: str = "code"
    current_plan: Plan | None = None
    cancelled: bool = False
    auto_confirm: bool = False
    tool_calls: ToolCallLog = field(default_factory=ToolCallLog)

    @property
    def is_alive(self) -> bool:
        return self.process is not None and self.process.is_running


def generate_session_id() -> str:
    """Generate a session id: sess_YYYYMMDD-HHMMSS-<8 hex chars>."""
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    short_uuid = uuid.uuid4().hex[:8]
    return f"sess_{timestamp}-{short_uuid}"


class SessionRegistry:
    """Owns all sessions, keyed by id.

    Each session exclusively owns its process handle; nothing outside the
    registry holds a session beyond a single call.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, SessionState] = {}

    def create(self, working_dir: str, model: str) -> SessionState:
        session_id = generate_session_id()
        while session_id in self._sessions:
            session_id = generate_session_id()

        session = SessionState(id=session_id, working_dir=working_dir, model=model)
        self._sessions[session_id] = session
        logger.info(f"Created session {session_id} in {working_dir}")
        return session

    def get(self, session_id: str) -> SessionState:
        """Look up a session.

        Raises:
            SessionNotFoundError: No session with this id.
        """
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(session_id) from None

    def remove(self, session_id: str) -> SessionState:
        session = self.get(session_id)
        del self._sessions[session_id]
        return session

    def list(self) -> list[SessionState]:
        """All sessions, oldest first."""
        return sorted(self._sessions.values(), key=lambda s: s.created)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
