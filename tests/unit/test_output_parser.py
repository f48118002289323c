"""Unit tests for the output aggregator."""

import os

from aider_acp.data_models import AiderInfo, CodeBlock, EditBlock, EditFormat, MessageType
from aider_acp.output_parser import (
    edit_blocks_to_acp_diffs,
    format_aider_info,
    format_code_block,
    parse_aider_output,
)


class TestParseAiderOutput:
    """Tests for parse_aider_output."""

    def test_startup_banner(self, startup_output: str) -> None:
        """The banner is metadata only."""
        result = parse_aider_output(startup_output)

        assert result.info.version == "v0.86.1"
        assert result.info.git_repo == ".git with 42 files"
        assert result.user_message == ""
        assert result.edit_blocks == []

    def test_diff_reply(self, diff_output: str) -> None:
        """Conversation, edit and usage are separated."""
        result = parse_aider_output(diff_output)

        assert result.user_message.startswith("I'll rename the greeting.")
        assert "<<<<<<<" not in result.user_message
        assert result.edit_blocks == [
            EditBlock(
                format=EditFormat.DIFF,
                path="src/app.py",
                old_text='print("hello")',
                new_text='print("hello, world")',
            )
        ]
        assert result.info.chat_tokens is not None
        assert result.info.chat_tokens.startswith("1.2k sent")

    def test_udiff_reply(self, udiff_output: str) -> None:
        """A standalone diff block is a udiff edit."""
        result = parse_aider_output(udiff_output)

        assert len(result.edit_blocks) == 1
        edit = result.edit_blocks[0]
        assert edit.format is EditFormat.UDIFF
        assert edit.old_text == "x = 1"
        assert edit.new_text == "x = 2"
        assert result.user_message == "Here is the change.\n"

    def test_whole_file_edit(self) -> None:
        """A path line followed by a block replaces the file."""
        result = parse_aider_output("hello.py\n```python\nprint('hi')\n```\n")

        assert result.edit_blocks == [
            EditBlock(format=EditFormat.WHOLE, path="hello.py", new_text="print('hi')")
        ]
        assert result.code_blocks == []

    def test_plain_code_block(self) -> None:
        """A block that is not an edit is reported as code."""
        result = parse_aider_output("Run this command\n```bash\nmake test\n```\n")

        assert result.code_blocks == [CodeBlock(path="bash", content="make test")]
        assert result.user_message == "Run this command"

    def test_prompts_collected(self) -> None:
        """Questions are collected and kept out of the message."""
        result = parse_aider_output(
            "Create new file? (y/n)\nCreate new file? (y/n)\nAdd b.py to the chat? (Y)es/(N)o [Yes]:\n"
        )

        assert result.prompts == ["Create new file? (y/n)", "Add b.py to the chat? (Y)es/(N)o [Yes]:"]
        assert result.user_message == ""

    def test_command_echo_skipped(self) -> None:
        """Echoed input never appears in the message."""
        result = parse_aider_output("> /add app.py\nAdded app.py to the chat\n")

        assert "/add" not in result.user_message
        assert result.classified_messages[0].type is MessageType.COMMAND_ECHO

    def test_label_line_does_not_open_message(self) -> None:
        """A "Label: value" line is not the start of conversation."""
        result = parse_aider_output("Note: nothing\nThe real answer.\n")
        assert result.user_message == "The real answer."

    def test_incomplete_block_shown_as_text(self) -> None:
        """A block cut off mid-stream is kept as message text."""
        result = parse_aider_output("```python\ndef f():\n")

        assert result.user_message == "```python\ndef f():"
        assert result.code_blocks == []

    def test_every_line_classified(self) -> None:
        """One classification per plain line."""
        result = parse_aider_output("a\nb\n```\nc\n```\nd\n")
        assert len(result.classified_messages) == 3

    def test_empty_output(self) -> None:
        """Empty input yields an empty result."""
        result = parse_aider_output("")
        assert result.user_message == ""
        assert not result.info.has_content()

    def test_metadata_independent_of_chunking(self) -> None:
        """Line-by-line chunks yield the same metadata as one chunk."""
        output = "Aider v1.2.3\nMain model: X\nCost: $0.01"
        whole = parse_aider_output(output).info

        merged = AiderInfo()
        for line in output.split("\n"):
            for name, value in vars(parse_aider_output(line).info).items():
                if value:
                    setattr(merged, name, value)

        assert merged == whole
        assert (whole.version, whole.main_model, whole.cost) == ("v1.2.3", "X", "$0.01")


class TestFormatAiderInfo:
    """Tests for format_aider_info."""

    def test_empty(self) -> None:
        """No metadata renders as an empty string."""
        assert format_aider_info(AiderInfo()) == ""

    def test_fields_in_order(self) -> None:
        """Fields render as labelled paragraphs."""
        info = AiderInfo(version="v0.86.1", main_model="gpt-4.1", cost="$0.01")
        info.warnings.append("slow scan")
        info.errors.append("bad key")

        rendered = format_aider_info(info)

        assert rendered == (
            "🚀 **Aider**: v0.86.1\n\n"
            "🤖 **Main Model**: gpt-4.1\n\n"
            "💰 **Cost**: $0.01\n\n"
            "⚠️ slow scan\n\n"
            "❌ bad key\n\n"
        )


class TestFormatCodeBlock:
    """Tests for format_code_block."""

    def test_renders_fence(self) -> None:
        """The block is fenced with its label."""
        assert format_code_block(CodeBlock(path="bash", content="ls")) == "```bash\nls\n```"


class TestEditBlocksToAcpDiffs:
    """Tests for edit_blocks_to_acp_diffs."""

    def test_relative_paths_resolved(self, tmp_path) -> None:
        """Relative paths are joined to the working directory."""
        blocks = [EditBlock(format=EditFormat.WHOLE, path="src/../app.py", new_text="x")]
        diffs = edit_blocks_to_acp_diffs(blocks, str(tmp_path))

        assert diffs[0].path == os.path.join(str(tmp_path), "app.py")
        assert diffs[0].old_text is None

    def test_absolute_paths_kept(self) -> None:
        """Absolute paths pass through."""
        blocks = [EditBlock(format=EditFormat.DIFF, path="/abs/app.py", new_text="b", old_text="a")]
        diffs = edit_blocks_to_acp_diffs(blocks, "/work")

        assert diffs[0].path == "/abs/app.py"
        assert diffs[0].old_text == "a"

    def test_empty_old_text_becomes_none(self) -> None:
        """A new-file diff carries no old text."""
        blocks = [EditBlock(format=EditFormat.DIFF, path="new.py", new_text="x", old_text="")]
        assert edit_blocks_to_acp_diffs(blocks, "/work")[0].old_text is None

    def test_defaults_to_cwd(self) -> None:
        """An empty working directory resolves against the current one."""
        blocks = [EditBlock(format=EditFormat.WHOLE, path="a.py", new_text="")]
        assert edit_blocks_to_acp_diffs(blocks, "")[0].path == os.path.join(os.getcwd(), "a.py")
