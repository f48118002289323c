"""Aggregation of one chunk of aider output into a ParsedOutput.

Drives segmentation, the edit-block extractors and the line classifier over
a chunk and assembles metadata, conversational text, edit blocks, plain code
blocks and pending prompts. The parser holds no state between calls.
"""

import os
import re

from aider_acp.classifier import (
    classify_message,
    collect_prompt_message,
    is_command_echo,
    is_prompt_indicator,
    is_prompt_line,
    process_info_line,
)
from aider_acp.data_models import (
    AiderInfo,
    CodeBlock,
    CodeSegment,
    DiffPayload,
    EditBlock,
    IncompleteSegment,
    LineSegment,
    ParsedOutput,
)
from aider_acp.extractors import (
    build_edit_block_from_path_and_code,
    handle_standalone_code_segment,
    is_potential_file_path,
)
from aider_acp.segments import parse_segments, trim_trailing_newline

# "Label: value" lines never open a conversational message
LABEL_LINE_PATTERN = re.compile(r"^[A-Za-z\s]+:")


def parse_aider_output(output: str) -> ParsedOutput:
    """Interpret one chunk of raw aider output."""
    result = ParsedOutput()
    info = result.info
    user_message_lines: list[str] = []

    segments = parse_segments(output)

    capturing = False
    found_first_message = False

    index = 0
    while index < len(segments):
        segment = segments[index]
        index += 1

        if isinstance(segment, LineSegment):
            line = trim_trailing_newline(segment.text)
            trimmed = line.strip()
            result.classified_messages.append(classify_message(line))

            if is_command_echo(line):
                capturing = False
                continue

            if collect_prompt_message(line, result.prompts):
                capturing = False
                continue

            next_segment = segments[index] if index < len(segments) else None
            if isinstance(next_segment, CodeSegment) and is_potential_file_path(trimmed):
                edit = build_edit_block_from_path_and_code(trimmed, next_segment)
                if edit:
                    result.edit_blocks.append(edit)
                    index += 1
                    capturing = False
                    continue

            if process_info_line(trimmed, info):
                capturing = False
                continue

            if _should_skip_for_user_message(line):
                capturing = False
                continue

            if not found_first_message and _opens_user_message(line):
                found_first_message = True
                capturing = True

            if capturing:
                user_message_lines.append(line)

        elif isinstance(segment, CodeSegment):
            block = handle_standalone_code_segment(segment)
            if isinstance(block, EditBlock):
                result.edit_blocks.append(block)
            else:
                result.code_blocks.append(block)
            capturing = False

        elif isinstance(segment, IncompleteSegment):
            # A block cut off mid-stream is shown as text; a later chunk
            # carries the rest.
            pending = [segment.open, *segment.lines]
            for raw in pending:
                line = trim_trailing_newline(raw)
                if line:
                    user_message_lines.append(line)

    result.user_message = "\n".join(user_message_lines)
    return result


def _should_skip_for_user_message(line: str) -> bool:
    return is_prompt_indicator(line) or is_prompt_line(line.strip()) or is_command_echo(line)


def _opens_user_message(line: str) -> bool:
    trimmed = line.strip()
    return (
        len(trimmed) > 0
        and LABEL_LINE_PATTERN.match(trimmed) is None
        and not trimmed.startswith("Aider v")
        and not line.startswith("```")
    )


def format_aider_info(info: AiderInfo) -> str:
    """Render metadata as a markdown block for display."""
    parts: list[str] = []

    if info.version:
        parts.append(f"🚀 **Aider**: {info.version}")
    if info.main_model:
        parts.append(f"🤖 **Main Model**: {info.main_model}")
    if info.weak_model:
        parts.append(f"🤖 **Weak Model**: {info.weak_model}")
    if info.git_repo:
        parts.append(f"📁 **Repo**: {info.git_repo}")
    if info.repo_map:
        parts.append(f"🗺️ **Repo-map**: {info.repo_map}")
    if info.chat_tokens:
        parts.append(f"💬 **Tokens**: {info.chat_tokens}")
    if info.cost:
        parts.append(f"💰 **Cost**: {info.cost}")

    parts.extend(f"⚠️ {warning}" for warning in info.warnings)
    parts.extend(f"❌ {error}" for error in info.errors)

    if parts:
        return "\n\n".join(parts) + "\n\n"
    return ""


def format_code_block(block: CodeBlock) -> str:
    """Render a non-edit code block back into a fenced markdown block."""
    return f"```{block.path}\n{block.content}\n```"


def edit_blocks_to_acp_diffs(blocks: list[EditBlock], working_dir: str) -> list[DiffPayload]:
    """Convert edit blocks into diff payloads with absolute paths.

    Relative paths are resolved against ``working_dir``, or the current
    directory when it is empty.
    """
    base = working_dir or os.getcwd()
    diffs = []
    for block in blocks:
        path = block.path
        if not os.path.isabs(path):
            path = os.path.abspath(os.path.join(base, path))
        diffs.append(
            DiffPayload(
                path=path,
                new_text=block.new_text,
                old_text=block.old_text or None,
            )
        )
    return diffs
