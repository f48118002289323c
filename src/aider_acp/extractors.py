"""Extractors for the edit-block notations aider emits.

Each extractor either returns a normalized EditBlock or declines with
None. Supported notations:
- whole: a path line followed by a fenced block holding the new file
- diff: a path line followed by a fenced SEARCH/REPLACE block
- diff-fenced: a fenced block whose first line is the path
- udiff: a fenced block labelled ``diff`` or ``udiff``
"""

import re
from dataclasses import dataclass

from aider_acp.data_models import CodeBlock, CodeSegment, EditBlock, EditFormat
from aider_acp.segments import trim_trailing_newline

SEARCH_MARKER = "<<<<<<< SEARCH"
DIVIDER_MARKER = "======="
REPLACE_MARKER = ">>>>>>> REPLACE"

UDIFF_LABELS = ("diff", "udiff")

# Fragments that mark a line as diff/fence syntax rather than a path
PATH_REJECT_FRAGMENTS = ("```", "<<<", ">>>", "===", "diff")

BARE_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]+$")
WHITESPACE_PATTERN = re.compile(r"\s")


@dataclass
class SearchReplace:
    """One SEARCH/REPLACE triplet."""

    search: str
    replace: str


def is_valid_file_path(path: str) -> bool:
    """Check that a value looks like a file path and not diff syntax."""
    if not path:
        return False

    if any(fragment in path for fragment in PATH_REJECT_FRAGMENTS):
        return False
    if path.startswith("-") or path.startswith("+"):
        return False

    return "/" in path or "." in path or BARE_IDENTIFIER_PATTERN.match(path) is not None


def is_potential_file_path(value: str) -> bool:
    """A path candidate is a single whitespace-free token."""
    if not value or WHITESPACE_PATTERN.search(value):
        return False
    return is_valid_file_path(value)


def extract_fence_label(open_line: str) -> str:
    """Return the text following the opening backticks, trimmed."""
    stripped = trim_trailing_newline(open_line).lstrip()
    if stripped.startswith("```"):
        return stripped[3:].strip()
    return stripped.strip()


def lines_to_content(lines: list[str]) -> str:
    return "\n".join(trim_trailing_newline(line) for line in lines)


def extract_search_replace_blocks(content: str) -> list[SearchReplace]:
    """Scan content for every SEARCH/REPLACE triplet."""
    blocks: list[SearchReplace] = []
    lines = content.split("\n")

    index = 0
    while index < len(lines):
        if lines[index].strip() != SEARCH_MARKER:
            index += 1
            continue

        search_lines: list[str] = []
        replace_lines: list[str] = []
        index += 1

        while index < len(lines) and lines[index].strip() != DIVIDER_MARKER:
            search_lines.append(lines[index])
            index += 1

        # Skip the divider
        if index < len(lines):
            index += 1

        while index < len(lines) and lines[index].strip() != REPLACE_MARKER:
            replace_lines.append(lines[index])
            index += 1

        if search_lines or replace_lines:
            blocks.append(
                SearchReplace(search="\n".join(search_lines), replace="\n".join(replace_lines))
            )

        index += 1

    return blocks


def parse_diff_format(path: str, content: str) -> EditBlock | None:
    """Build a diff edit from the first SEARCH/REPLACE triplet in content.

    Later triplets in the same block are ignored.
    """
    blocks = extract_search_replace_blocks(content)
    if not blocks:
        return None

    first = blocks[0]
    return EditBlock(
        format=EditFormat.DIFF,
        path=path,
        old_text=first.search,
        new_text=first.replace,
    )


def parse_diff_fenced_format(path: str, content_lines: list[str]) -> EditBlock | None:
    """Parse a fenced block whose first line carried the path."""
    return parse_diff_format(path, "\n".join(content_lines))


def parse_udiff_format(content: str) -> EditBlock | None:
    """Parse a unified diff body into a single edit.

    ``--- `` sets the candidate path and a non-empty ``+++ `` overrides it.
    Returns None when no path header is present.
    """
    path = ""
    old_lines: list[str] = []
    new_lines: list[str] = []

    for line in content.split("\n"):
        if line.startswith("--- "):
            path = line[4:].strip()
        elif line.startswith("+++ "):
            new_path = line[4:].strip()
            if new_path:
                path = new_path
        elif line.startswith("-") and not line.startswith("---"):
            old_lines.append(line[1:])
        elif line.startswith("+") and not line.startswith("+++"):
            new_lines.append(line[1:])

    if not path:
        return None

    return EditBlock(
        format=EditFormat.UDIFF,
        path=path,
        old_text="\n".join(old_lines).rstrip(),
        new_text="\n".join(new_lines).rstrip(),
    )


def build_edit_block_from_path_and_code(path: str, block: CodeSegment) -> EditBlock | None:
    """Pair a path line with the fenced block that follows it."""
    content = lines_to_content(block.lines)

    if SEARCH_MARKER in content:
        return parse_diff_format(path, content)

    return EditBlock(format=EditFormat.WHOLE, path=path, new_text=content)


def handle_standalone_code_segment(segment: CodeSegment) -> EditBlock | CodeBlock:
    """Classify a fenced block that was not preceded by a path line.

    Tries the unified diff and diff-fenced notations, then falls back to a
    plain code block labelled by the fence (or "unknown").
    """
    label = extract_fence_label(segment.open)
    content_lines = [trim_trailing_newline(line) for line in segment.lines]
    content = "\n".join(content_lines)

    if label.lower() in UDIFF_LABELS:
        edit = parse_udiff_format(content)
        if edit:
            return edit

    if content_lines:
        first_line = content_lines[0].strip()
        if is_potential_file_path(first_line) and SEARCH_MARKER in content:
            edit = parse_diff_fenced_format(first_line, content_lines[1:])
            if edit:
                return edit

    return CodeBlock(path=label or "unknown", content=content)
