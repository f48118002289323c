"""Slash-command allowlist for prompts forwarded to aider."""

import re
from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class SlashCommandSpec:
    """An aider slash command the bridge is willing to forward."""

    name: str
    requires_args: bool
    description: str


class SlashCommandKind(Enum):
    COMMAND = "command"
    MISSING_ARGS = "missing_args"
    UNKNOWN = "unknown"
    MALFORMED = "malformed"


@dataclass
class SlashCommandResult:
    """Outcome of parsing a slash command."""

    kind: SlashCommandKind
    raw_input: str
    spec: SlashCommandSpec | None = None
    args: str = ""
    command_name: str = ""
    available: list[str] = field(default_factory=list)


SLASH_COMMANDS: dict[str, SlashCommandSpec] = {
    spec.name: spec
    for spec in [
        # File management
        SlashCommandSpec("add", True, "Add file(s) to the chat"),
        SlashCommandSpec("drop", True, "Remove file(s) from the chat"),
        SlashCommandSpec("ls", False, "List tracked files"),
        SlashCommandSpec("read-only", True, "Add file(s) as read-only reference"),
        # Modes
        SlashCommandSpec("ask", False, "Ask questions without editing files"),
        SlashCommandSpec("code", False, "Request code changes (default mode)"),
        SlashCommandSpec("architect", False, "Use architect/editor mode with 2 models"),
        # Execution
        SlashCommandSpec("run", True, "Execute a shell command via Aider"),
        SlashCommandSpec("test", True, "Run a test command, add output on failure"),
        SlashCommandSpec("lint", False, "Lint and fix files in chat"),
        # Git
        SlashCommandSpec("commit", False, "Commit edits made outside the chat"),
        SlashCommandSpec("diff", False, "Display diff of changes since last message"),
        SlashCommandSpec("undo", False, "Undo the last git commit by aider"),
        # Session
        SlashCommandSpec("clear", False, "Clear the chat history"),
        SlashCommandSpec("reset", False, "Drop all files and clear chat history"),
        SlashCommandSpec("tokens", False, "Report token usage for current context"),
        # Models
        SlashCommandSpec("model", True, "Switch to a different LLM model"),
        # Help
        SlashCommandSpec("help", False, "Get help about aider commands"),
    ]
}


def get_allowed_slash_command_names() -> list[str]:
    """Return the allowed command names, sorted."""
    return sorted(SLASH_COMMANDS)


def parse_slash_command(text: str) -> SlashCommandResult | None:
    """Parse prompt text as a slash command.

    Returns None when the text is not a slash command at all.
    """
    normalized = text.strip()
    if not normalized.startswith("/"):
        return None

    if normalized == "/":
        return SlashCommandResult(
            kind=SlashCommandKind.MALFORMED,
            raw_input=normalized,
            available=get_allowed_slash_command_names(),
        )

    first_token, *rest = re.split(r"\s+", normalized)
    command_name = first_token[1:]
    args = " ".join(rest).strip()
    spec = SLASH_COMMANDS.get(command_name)

    if spec is None:
        return SlashCommandResult(
            kind=SlashCommandKind.UNKNOWN,
            raw_input=normalized,
            command_name=command_name,
            available=get_allowed_slash_command_names(),
        )

    if spec.requires_args and not args:
        return SlashCommandResult(
            kind=SlashCommandKind.MISSING_ARGS,
            raw_input=normalized,
            spec=spec,
            command_name=command_name,
        )

    return SlashCommandResult(
        kind=SlashCommandKind.COMMAND,
        raw_input=normalized,
        spec=spec,
        args=args,
        command_name=command_name,
    )


def format_slash_command(result: SlashCommandResult) -> str:
    """Render a parsed command back into the text sent to aider."""
    if result.spec is None:
        raise ValueError(f"Cannot format a {result.kind.value} slash command")
    trailing = f" {result.args}" if result.args else ""
    return f"/{result.spec.name}{trailing}"


def describe_slash_command_problem(result: SlashCommandResult) -> str:
    """Explain why a slash command will not be forwarded."""
    available = ", ".join(f"/{name}" for name in result.available)
    if result.kind is SlashCommandKind.UNKNOWN:
        return f"⚠️ Unknown slash command `/{result.command_name}`. Available commands: {available}"
    if result.kind is SlashCommandKind.MALFORMED:
        return f"⚠️ Malformed slash command. Available commands: {available}"
    if result.kind is SlashCommandKind.MISSING_ARGS and result.spec is not None:
        return (
            f"⚠️ `/{result.spec.name}` requires arguments: {result.spec.description}"
        )
    return ""
