"""Data models for aider-acp components."""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Segments
# ============================================================================


@dataclass
class LineSegment:
    """A single plain line of output, terminator included."""

    text: str

    @property
    def raw(self) -> str:
        return self.text


@dataclass
class CodeSegment:
    """A complete fenced block: opening fence, body lines, closing fence."""

    open: str
    lines: list[str] = field(default_factory=list)
    close: str = ""

    @property
    def raw(self) -> str:
        return self.open + "".join(self.lines) + self.close


@dataclass
class IncompleteSegment:
    """An opening fence whose closing fence has not arrived yet."""

    open: str
    lines: list[str] = field(default_factory=list)

    @property
    def raw(self) -> str:
        return self.open + "".join(self.lines)


Segment = LineSegment | CodeSegment | IncompleteSegment


# ============================================================================
# Parsed output
# ============================================================================


class EditFormat(Enum):
    """Edit block notations aider can emit."""

    WHOLE = "whole"
    DIFF = "diff"
    DIFF_FENCED = "diff-fenced"
    UDIFF = "udiff"
    EDITOR_DIFF = "editor-diff"
    EDITOR_WHOLE = "editor-whole"


class MessageType(Enum):
    """Categories a single output line can be classified into."""

    COMMAND_ECHO = "command_echo"
    PROMPT = "prompt"
    ERROR = "error"
    WARNING = "warning"
    FILE_ACTION = "file_action"
    INFO = "info"
    PROGRESS = "progress"
    CONTENT = "content"


@dataclass
class EditBlock:
    """A proposed single-file change extracted from aider output.

    ``old_text`` is None for whole-file replacements.
    """

    format: EditFormat
    path: str
    new_text: str
    old_text: str | None = None


@dataclass
class CodeBlock:
    """A fenced block that is not an edit."""

    path: str
    content: str


@dataclass
class AiderInfo:
    """Metadata aggregated from one chunk of aider output."""

    version: str | None = None
    main_model: str | None = None
    weak_model: str | None = None
    git_repo: str | None = None
    repo_map: str | None = None
    chat_tokens: str | None = None
    cost: str | None = None
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def has_content(self) -> bool:
        """Return True if any field was populated."""
        scalars = (
            self.version,
            self.main_model,
            self.weak_model,
            self.git_repo,
            self.repo_map,
            self.chat_tokens,
            self.cost,
        )
        return any(value is not None for value in scalars) or bool(self.warnings or self.errors)


@dataclass
class ClassifiedMessage:
    """A single output line together with its category."""

    type: MessageType
    text: str
    raw: str


@dataclass
class ParsedOutput:
    """Everything the interpreter extracted from one chunk of output."""

    info: AiderInfo = field(default_factory=AiderInfo)
    user_message: str = ""
    edit_blocks: list[EditBlock] = field(default_factory=list)
    code_blocks: list[CodeBlock] = field(default_factory=list)
    prompts: list[str] = field(default_factory=list)
    classified_messages: list[ClassifiedMessage] = field(default_factory=list)


@dataclass
class DiffPayload:
    """An edit block normalized for an ACP diff tool-call content item."""

    path: str
    new_text: str
    old_text: str | None = None


# ============================================================================
# Subprocess lifecycle
# ============================================================================


class ProcessState(Enum):
    """State of the aider subprocess."""

    STARTING = "starting"  # Spawned, no input prompt seen yet
    READY = "ready"  # Waiting at the input prompt
    PROCESSING = "processing"  # Working on a command
    WAITING_FOR_CONFIRMATION = "waiting_for_confirmation"  # Blocked on a yes/no question
    STOPPED = "stopped"  # Exited or never started


class StderrKind(Enum):
    """Classification of text aider writes to stderr."""

    NOISE = "noise"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class StderrClassification:
    """Result of classifying a piece of stderr output."""

    kind: StderrKind
    text: str


@dataclass
class Ready:
    """The process reached its first input prompt."""


@dataclass
class OutputReceived:
    """A chunk of stdout text made of complete lines."""

    text: str


@dataclass
class ErrorOutput:
    """Text the process wrote to stderr."""

    text: str


@dataclass
class ConfirmationRequired:
    """The process is blocked on a yes/no or multiple-choice question."""

    question: str


@dataclass
class TurnCompleted:
    """The process returned to its input prompt after a command."""

    text: str = ""


@dataclass
class Exited:
    """The process terminated."""

    message: str
    returncode: int | None = None


ProcessEvent = Ready | OutputReceived | ErrorOutput | ConfirmationRequired | TurnCompleted | Exited


# ============================================================================
# Session state
# ============================================================================


class PlanPriority(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PlanStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass
class PlanEntry:
    """A synthesized sub-task of a turn, tracked for progress reporting."""

    content: str
    priority: PlanPriority = PlanPriority.MEDIUM
    status: PlanStatus = PlanStatus.PENDING


@dataclass
class Plan:
    """Task list for the current turn."""

    entries: list[PlanEntry] = field(default_factory=list)

    def find(self, content: str) -> PlanEntry | None:
        """Return the entry with the given content, if any."""
        for entry in self.entries:
            if entry.content == content:
                return entry
        return None


@dataclass
class ToolCallState:
    """Lifecycle state of a tool call reported to the client."""

    id: str
    kind: str
    status: str
    start_time: float = field(default_factory=time.monotonic)


@dataclass
class ToolCallEvent:
    """One entry of the append-only tool-call log."""

    tool_call_id: str
    kind: str
    status: str
    timestamp: datetime = field(default_factory=_utcnow)
