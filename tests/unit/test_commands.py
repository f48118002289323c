"""Unit tests for slash-command validation."""

import pytest

from aider_acp.commands import (
    SLASH_COMMANDS,
    SlashCommandKind,
    describe_slash_command_problem,
    format_slash_command,
    get_allowed_slash_command_names,
    parse_slash_command,
)


class TestParseSlashCommand:
    """Tests for parse_slash_command."""

    def test_not_a_command(self) -> None:
        """Ordinary prompts are not parsed."""
        assert parse_slash_command("add a login page") is None

    def test_command_with_args(self) -> None:
        """Arguments are split off and whitespace collapsed."""
        result = parse_slash_command("  /add   src/a.py   src/b.py ")

        assert result is not None
        assert result.kind is SlashCommandKind.COMMAND
        assert result.command_name == "add"
        assert result.args == "src/a.py src/b.py"

    def test_command_without_args(self) -> None:
        """Commands that need no arguments are accepted bare."""
        result = parse_slash_command("/undo")
        assert result is not None
        assert result.kind is SlashCommandKind.COMMAND
        assert result.args == ""

    def test_missing_args(self) -> None:
        """Commands that need arguments are rejected without them."""
        result = parse_slash_command("/run")
        assert result is not None
        assert result.kind is SlashCommandKind.MISSING_ARGS
        assert result.spec is SLASH_COMMANDS["run"]

    def test_unknown(self) -> None:
        """Commands outside the allowlist are unknown."""
        result = parse_slash_command("/exit")
        assert result is not None
        assert result.kind is SlashCommandKind.UNKNOWN
        assert result.command_name == "exit"
        assert "add" in result.available

    def test_bare_slash(self) -> None:
        """A lone slash is malformed."""
        result = parse_slash_command("/")
        assert result is not None
        assert result.kind is SlashCommandKind.MALFORMED


class TestFormatting:
    """Tests for command rendering and problem descriptions."""

    def test_round_trip_text(self) -> None:
        """A valid command renders to canonical text."""
        result = parse_slash_command("/read-only   docs/api.md")
        assert result is not None
        assert format_slash_command(result) == "/read-only docs/api.md"

    def test_format_rejects_unknown(self) -> None:
        """Only commands with a spec can be rendered."""
        result = parse_slash_command("/bogus")
        assert result is not None
        with pytest.raises(ValueError):
            format_slash_command(result)

    def test_unknown_description_lists_commands(self) -> None:
        """The explanation lists the allowed commands."""
        result = parse_slash_command("/bogus")
        assert result is not None

        message = describe_slash_command_problem(result)

        assert "Unknown slash command `/bogus`" in message
        assert "/add" in message
        assert "/tokens" in message

    def test_missing_args_description(self) -> None:
        """The explanation names the command and what it does."""
        result = parse_slash_command("/model")
        assert result is not None
        assert "`/model` requires arguments" in describe_slash_command_problem(result)

    def test_valid_command_has_no_problem(self) -> None:
        """Valid commands produce no explanation."""
        result = parse_slash_command("/diff")
        assert result is not None
        assert describe_slash_command_problem(result) == ""

    def test_allowed_names_sorted(self) -> None:
        """The allowlist is reported in sorted order."""
        names = get_allowed_slash_command_names()
        assert names == sorted(names)
        assert set(names) == set(SLASH_COMMANDS)
