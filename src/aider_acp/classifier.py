"""Per-line heuristics for aider output.

Classification is driven by ordered rule tables so that precedence is
explicit: the first matching rule wins.
"""

import re
from collections.abc import Callable

from aider_acp.data_models import (
    AiderInfo,
    ClassifiedMessage,
    MessageType,
    StderrClassification,
    StderrKind,
)

STATUS_GLYPHS = ("⚠️", "❌", "📁")
PROGRESS_BAR_PATTERN = re.compile(r"^[░█]+\s*")

# Phrasings aider uses for yes/no and multiple-choice questions
PROMPT_PHRASES = (
    "(y)es/(n)o",
    "(y/n)",
    "[y/n]",
    "(y)es/(n)o/(d)on't ask again",
    "open url for more info?",
    "add file to the chat?",
)

# The input prompt aider prints while idle: "> ", "ask> ", "architect> " ...
INPUT_PROMPT_PATTERN = re.compile(r"^(?:[\w-]+ ?)?> ?$")

# (pattern, AiderInfo attribute), checked in order
METADATA_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"^Aider (v[0-9.]+\S*)"), "version"),
    (re.compile(r"^Main model: (.+)"), "main_model"),
    (re.compile(r"^Weak model: (.+)"), "weak_model"),
    (re.compile(r"^Git repo: (.+)"), "git_repo"),
    (re.compile(r"^Repo-map: (.+)"), "repo_map"),
    (re.compile(r"^Tokens?: (.+)"), "chat_tokens"),
    (re.compile(r"^Cost: (.+)"), "cost"),
]

WARNING_WORD_PATTERN = re.compile(r"\bwarning\b", re.IGNORECASE)
ERROR_WORD_PATTERN = re.compile(r"\berror\b", re.IGNORECASE)

# Informational lines that are reported alongside warnings
NOTICE_PATTERNS = [
    re.compile(r"^Cost estimates may be inaccurate"),
    re.compile(r"^Initial repo scan can be slow"),
    re.compile(r"^https?://[\w\-./?#=&%]+$", re.IGNORECASE),
    re.compile(r"^waiting for ", re.IGNORECASE),
]

ERROR_PATTERNS = [
    ERROR_WORD_PATTERN,
    re.compile(r"^(?:can't|cannot|unable to|failed to)\b", re.IGNORECASE),
    re.compile(r"\btraceback\b", re.IGNORECASE),
]

WARNING_PATTERNS = [
    WARNING_WORD_PATTERN,
    re.compile(r"^no suitable\b", re.IGNORECASE),
]

FILE_ACTION_PATTERNS = [
    re.compile(r"^(?:added|removed|dropping|dropped)\s.+\s(?:to|from) the chat", re.IGNORECASE),
    re.compile(r"^add .+ to the chat\?", re.IGNORECASE),
    re.compile(r"^create new file .+\?", re.IGNORECASE),
    re.compile(r"^read-only:", re.IGNORECASE),
    re.compile(r"^applied edit to ", re.IGNORECASE),
    re.compile(r"is already in the chat", re.IGNORECASE),
]

INFO_PATTERNS = [
    re.compile(r"^Aider v\d"),
    re.compile(r"^(?:Main|Weak|Editor) model:", re.IGNORECASE),
    re.compile(r"^Git repo:", re.IGNORECASE),
    re.compile(r"^Repo-map:", re.IGNORECASE),
    re.compile(r"^Use /help\b", re.IGNORECASE),
    re.compile(r"^Models?:", re.IGNORECASE),
]

PROGRESS_PATTERNS = [
    re.compile(r"^Tokens?:", re.IGNORECASE),
    re.compile(r"^Cost:", re.IGNORECASE),
    re.compile(r"\b(?:sent|received)\b.*\btokens?\b", re.IGNORECASE),
]


def strip_status_prefix(line: str) -> str:
    """Remove a leading status glyph and any progress-bar run."""
    result = line.lstrip()
    for glyph in STATUS_GLYPHS:
        if result.startswith(glyph):
            result = result[len(glyph) :].lstrip()
            break
    return PROGRESS_BAR_PATTERN.sub("", result)


def is_prompt_line(line: str) -> bool:
    """Check whether a line is a yes/no or multiple-choice question."""
    if "?" not in line:
        return False
    normalized = line.lower()
    return any(phrase in normalized for phrase in PROMPT_PHRASES)


def is_prompt_indicator(line: str) -> bool:
    """A bare ``>`` input prompt."""
    return line.strip() == ">"


def is_command_echo(line: str) -> bool:
    """Check whether a line echoes a command typed at the aider prompt."""
    if is_prompt_indicator(line):
        return True
    return line.startswith("> ") and "<<<" not in line and ">>>" not in line


def is_input_prompt(tail: str) -> bool:
    """Check whether a partial trailing line is aider waiting for input."""
    return INPUT_PROMPT_PATTERN.match(tail) is not None


def collect_prompt_message(line: str, prompts: list[str]) -> bool:
    """Record a prompt line, skipping consecutive duplicates.

    Returns True if the line is a prompt, whether or not it was recorded.
    """
    trimmed = line.strip()
    if not trimmed or not is_prompt_line(trimmed):
        return False
    if not prompts or prompts[-1] != trimmed:
        prompts.append(trimmed)
    return True


def process_info_line(line: str, info: AiderInfo) -> bool:
    """Fold a metadata line into ``info``.

    Returns True if the line was consumed as metadata.
    """
    if not line:
        return False

    normalized = strip_status_prefix(line)

    for pattern, attribute in METADATA_RULES:
        match = pattern.match(normalized)
        if match:
            setattr(info, attribute, match.group(1))
            return True

    if WARNING_WORD_PATTERN.search(normalized):
        info.warnings.append(normalized)
        return True

    if ERROR_WORD_PATTERN.search(normalized):
        info.errors.append(normalized)
        return True

    if any(pattern.search(normalized) for pattern in NOTICE_PATTERNS):
        info.warnings.append(normalized)
        return True

    return False


def _matches_any(patterns: list[re.Pattern[str]]) -> Callable[[str], bool]:
    def predicate(text: str) -> bool:
        return any(pattern.search(text) for pattern in patterns)

    return predicate


def _is_shell_echo(text: str) -> bool:
    return is_command_echo(text) or text.startswith("$ ")


CLASSIFICATION_RULES: list[tuple[Callable[[str], bool], MessageType]] = [
    (_is_shell_echo, MessageType.COMMAND_ECHO),
    (is_prompt_line, MessageType.PROMPT),
    (_matches_any(ERROR_PATTERNS), MessageType.ERROR),
    (_matches_any(WARNING_PATTERNS), MessageType.WARNING),
    (_matches_any(FILE_ACTION_PATTERNS), MessageType.FILE_ACTION),
    (_matches_any(INFO_PATTERNS), MessageType.INFO),
    (_matches_any(PROGRESS_PATTERNS), MessageType.PROGRESS),
]


def classify_message(line: str) -> ClassifiedMessage:
    """Classify a single output line.

    Rules are tried in order; lines matching none of them (including blank
    lines) are conversational content.
    """
    text = line.strip()
    if not text:
        return ClassifiedMessage(type=MessageType.CONTENT, text=text, raw=line)

    normalized = strip_status_prefix(text)
    for predicate, message_type in CLASSIFICATION_RULES:
        if predicate(normalized):
            return ClassifiedMessage(type=message_type, text=text, raw=line)

    return ClassifiedMessage(type=MessageType.CONTENT, text=text, raw=line)


# Stderr classification, checked in order
STDERR_RULES: list[tuple[re.Pattern[str], StderrKind]] = [
    (re.compile(r"Scanning repo:"), StderrKind.NOISE),
    (re.compile(r"leaked semaphore objects"), StderrKind.WARNING),
]


def classify_stderr(text: str) -> StderrClassification:
    """Classify text written to stderr.

    Progress-bar scan lines are noise, known resource-cleanup notices are
    warnings, and everything else is an error.
    """
    if not text.strip():
        return StderrClassification(kind=StderrKind.NOISE, text=text)

    for pattern, kind in STDERR_RULES:
        if pattern.search(text):
            return StderrClassification(kind=kind, text=text)

    return StderrClassification(kind=StderrKind.ERROR, text=text)
