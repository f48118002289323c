"""Unit tests for session state, the registry and the tool-call log."""

import re

import pytest

from aider_acp.session import (
    TOOL_CALL_COMPLETED,
    TOOL_CALL_FAILED,
    TOOL_CALL_IN_PROGRESS,
    SessionNotFoundError,
    SessionRegistry,
    ToolCallLog,
    generate_session_id,
)


class TestSessionId:
    """Tests for session id generation."""

    def test_format(self) -> None:
        """Ids carry a timestamp and random suffix."""
        assert re.match(r"^sess_\d{8}-\d{6}-[0-9a-f]{8}$", generate_session_id())

    def test_unique(self) -> None:
        """Consecutive ids differ."""
        assert generate_session_id() != generate_session_id()


class TestSessionRegistry:
    """Tests for SessionRegistry."""

    def test_create_and_get(self) -> None:
        """Created sessions are retrievable by id."""
        registry = SessionRegistry()
        session = registry.create(working_dir="/work", model="m")

        assert registry.get(session.id) is session
        assert session.id in registry
        assert len(registry) == 1
        assert session.current_mode == "code"
        assert session.process is None
        assert not session.is_alive

    def test_unknown_session(self) -> None:
        """Looking up a missing id raises SessionNotFoundError."""
        registry = SessionRegistry()
        with pytest.raises(SessionNotFoundError) as exc_info:
            registry.get("sess_missing")
        assert exc_info.value.session_id == "sess_missing"

    def test_remove(self) -> None:
        """Removed sessions are gone."""
        registry = SessionRegistry()
        session = registry.create(working_dir="/work", model="m")

        assert registry.remove(session.id) is session
        assert session.id not in registry
        with pytest.raises(SessionNotFoundError):
            registry.remove(session.id)

    def test_list_oldest_first(self) -> None:
        """Sessions are listed in creation order."""
        registry = SessionRegistry()
        first = registry.create(working_dir="/a", model="m")
        second = registry.create(working_dir="/b", model="m")

        assert registry.list() == [first, second]


class TestToolCallLog:
    """Tests for the append-only tool-call log."""

    def test_lifecycle(self) -> None:
        """A call moves from in progress to completed."""
        log = ToolCallLog()
        call_id = log.next_id()

        state = log.start(call_id, "edit")
        assert state.status == TOOL_CALL_IN_PROGRESS
        assert call_id in log.active

        log.complete(call_id)
        assert call_id not in log.active
        assert [e.status for e in log.events] == [TOOL_CALL_IN_PROGRESS, TOOL_CALL_COMPLETED]
        assert log.verify()

    def test_ids_unique(self) -> None:
        """Generated ids never repeat."""
        log = ToolCallLog()
        ids = {log.next_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(i.startswith("edit_") for i in ids)

    def test_cannot_restart(self) -> None:
        """An id can only be started once."""
        log = ToolCallLog()
        log.start("t1", "edit")
        log.complete("t1")
        with pytest.raises(ValueError):
            log.start("t1", "edit")

    def test_cannot_complete_unknown(self) -> None:
        """Completing an inactive call is an error."""
        log = ToolCallLog()
        with pytest.raises(KeyError):
            log.complete("nope")

    def test_terminal_status_required(self) -> None:
        """Completion needs a terminal status."""
        log = ToolCallLog()
        log.start("t1", "edit")
        with pytest.raises(ValueError):
            log.complete("t1", status=TOOL_CALL_IN_PROGRESS)

    def test_failed_is_terminal(self) -> None:
        """Failed calls leave the active index."""
        log = ToolCallLog()
        log.start("t1", "edit")
        log.complete("t1", status=TOOL_CALL_FAILED)
        assert log.active == {}
        assert log.verify()

    def test_verify_with_open_call(self) -> None:
        """An open call is consistent while it is still active."""
        log = ToolCallLog()
        log.start("t1", "edit")
        log.start("t2", "edit")
        log.complete("t1")

        assert log.verify()
        assert set(log.active) == {"t2"}
        assert len(log) == 3
