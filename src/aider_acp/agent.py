"""ACP agent that drives interactive aider sessions."""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable

from acp import (
    PROTOCOL_VERSION,
    InitializeResponse,
    NewSessionResponse,
    PromptResponse,
    RequestError,
    plan_entry,
    start_tool_call,
    text_block,
    tool_diff_content,
    update_agent_message,
    update_plan,
    update_tool_call,
)
from acp.helpers import tool_content, update_agent_thought
from acp.interfaces import Agent, Client
from acp.schema import (
    AgentCapabilities,
    BlobResourceContents,
    ClientCapabilities,
    CurrentModeUpdate,
    EmbeddedResourceContentBlock,
    Implementation,
    ListSessionsResponse,
    PermissionOption,
    PromptCapabilities,
    ResourceContentBlock,
    SessionInfo,
    SessionMode,
    SessionModeState,
    SetSessionModelResponse,
    SetSessionModeResponse,
    TextContentBlock,
    TextResourceContents,
    ToolCallLocation,
    ToolCallUpdate,
)

from aider_acp import __version__
from aider_acp.classifier import classify_stderr
from aider_acp.commands import (
    SlashCommandKind,
    SlashCommandResult,
    describe_slash_command_problem,
    format_slash_command,
    parse_slash_command,
)
from aider_acp.config import AgentConfig
from aider_acp.data_models import (
    ConfirmationRequired,
    DiffPayload,
    ErrorOutput,
    Exited,
    MessageType,
    OutputReceived,
    ParsedOutput,
    Plan,
    PlanEntry,
    PlanPriority,
    PlanStatus,
    ProcessEvent,
    ProcessState,
    Ready,
    StderrKind,
    TurnCompleted,
)
from aider_acp.extractors import is_potential_file_path
from aider_acp.output_parser import (
    edit_blocks_to_acp_diffs,
    format_aider_info,
    format_code_block,
    parse_aider_output,
)
from aider_acp.process import AiderProcess, ProcessError, ProcessStartError
from aider_acp.resources import ResourceWriteError, normalize_resource_uri, write_embedded_resource
from aider_acp.segments import is_fence_line, split_preserving_newlines
from aider_acp.session import SessionNotFoundError, SessionRegistry, SessionState

logger = logging.getLogger(__name__)

SESSION_NOT_FOUND_CODE = -32002
STARTUP_TIMEOUT = 60.0
AFFIRMATIVE_ANSWER = "y"

SESSION_MODES = [
    SessionMode(id="code", name="Code", description="Request code changes"),
    SessionMode(id="ask", name="Ask", description="Ask questions without editing files"),
    SessionMode(id="architect", name="Architect", description="Plan with one model, edit with another"),
]

ALLOW_OPTION_IDS = {"allow_once", "allow_always"}

PROMPT_ENTRY = "Execute prompt text"

ProcessFactory = Callable[[list[str], str], AiderProcess]


class TurnOutcome(Enum):
    """How a command sent to aider finished."""

    COMPLETED = "completed"
    ERROR = "error"
    EXITED = "exited"


def session_not_found(session_id: str) -> RequestError:
    return RequestError(SESSION_NOT_FOUND_CODE, "Session not found", {"sessionId": session_id})


def resource_entry(count: int) -> str:
    return f"Apply {count} resource(s)"


def has_open_fence(text: str) -> bool:
    """Check whether text ends inside an unterminated fenced block."""
    fences = sum(1 for line in split_preserving_newlines(text) if is_fence_line(line))
    return fences % 2 == 1


def ends_with_file_path(text: str) -> bool:
    """Check whether the last non-blank line could head an edit block."""
    lines = text.rstrip().splitlines()
    return bool(lines) and is_potential_file_path(lines[-1].strip())


class AiderAcpAgent(Agent):
    """Bridges ACP clients to aider subprocesses, one per session."""

    def __init__(
        self,
        config: AgentConfig | None = None,
        process_factory: ProcessFactory | None = None,
    ) -> None:
        """Initialize the agent.

        Args:
            config: Agent configuration (default: from environment).
            process_factory: Builds the process for a session from a command
                line and working directory.
        """
        self.config = config or AgentConfig.from_env()
        self._process_factory = process_factory or self._default_process_factory
        self._conn: Client | None = None
        self._sessions = SessionRegistry()
        self._pumps: dict[str, asyncio.Task[None]] = {}
        self._ready: dict[str, asyncio.Event] = {}
        self._turn_waiters: dict[str, asyncio.Future[TurnOutcome]] = {}
        self._pending_output: dict[str, str] = {}

    def _default_process_factory(self, command: list[str], working_dir: str) -> AiderProcess:
        return AiderProcess(command, working_dir, stop_timeout=self.config.stop_timeout)

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    def on_connect(self, conn: Client) -> None:
        self._conn = conn

    # ------------------------------------------------------------------
    # ACP methods
    # ------------------------------------------------------------------

    async def initialize(
        self,
        protocol_version: int,
        client_capabilities: ClientCapabilities | None = None,
        client_info: Implementation | None = None,
        **kwargs: Any,
    ) -> InitializeResponse:
        logger.info(f"Initializing (client protocol version {protocol_version})")
        return InitializeResponse(
            protocol_version=PROTOCOL_VERSION,
            agent_capabilities=AgentCapabilities(
                load_session=False,
                prompt_capabilities=PromptCapabilities(
                    image=False,
                    audio=False,
                    embedded_context=True,
                ),
            ),
            agent_info=Implementation(name="aider-acp", title="Aider", version=__version__),
            auth_methods=[],
        )

    async def new_session(self, cwd: str, mcp_servers: list[Any], **kwargs: Any) -> NewSessionResponse:
        """Create a session and start its aider process."""
        session = self._sessions.create(working_dir=cwd, model=self.config.model)
        process = self._process_factory(self.config.build_command(session.model), cwd)

        try:
            await process.start()
        except ProcessStartError as e:
            self._sessions.remove(session.id)
            logger.error(str(e))
            raise RequestError.internal_error({"message": str(e)}) from e

        session.process = process
        self._ready[session.id] = asyncio.Event()
        self._pumps[session.id] = asyncio.create_task(self._pump_events(session, process))

        return NewSessionResponse(
            session_id=session.id,
            modes=SessionModeState(current_mode_id=session.current_mode, available_modes=SESSION_MODES),
        )

    async def load_session(self, cwd: str, mcp_servers: list[Any], session_id: str, **kwargs: Any) -> None:
        """Sessions are not persisted."""
        return None

    async def list_sessions(
        self, cursor: str | None = None, cwd: str | None = None, **kwargs: Any
    ) -> ListSessionsResponse:
        sessions = [
            SessionInfo(session_id=s.id, cwd=s.working_dir)
            for s in self._sessions.list()
            if cwd is None or s.working_dir == cwd
        ]
        return ListSessionsResponse(sessions=sessions, next_cursor=None)

    async def set_session_mode(self, mode_id: str, session_id: str, **kwargs: Any) -> SetSessionModeResponse:
        """Record the mode and notify the client."""
        session = self._get_session(session_id)
        logger.info(f"Session {session_id} mode -> {mode_id}")
        session.current_mode = mode_id
        await self._send(
            session_id,
            CurrentModeUpdate(session_update="current_mode_update", current_mode_id=mode_id),
        )
        return SetSessionModeResponse()

    async def set_session_model(self, model_id: str, session_id: str, **kwargs: Any) -> SetSessionModelResponse:
        """Switch the session's model, telling a running aider about it."""
        session = self._get_session(session_id)
        if not self.config.has_model(model_id):
            raise RequestError.invalid_params({"message": f"Unknown model: {model_id}"})

        session.model = model_id
        logger.info(f"Session {session_id} model -> {model_id}")

        if session.is_alive and session.id not in self._turn_waiters:
            await self._wait_until_ready(session)
            await self._run_command(session, f"/model {model_id}")
        return SetSessionModelResponse()

    async def authenticate(self, method_id: str, **kwargs: Any) -> None:
        """aider reads provider credentials from its own environment."""
        return None

    async def prompt(self, prompt: list[Any], session_id: str, **kwargs: Any) -> PromptResponse:
        """Run one prompt turn against the session's aider process."""
        session = self._get_session(session_id)
        text_parts, resources = self._split_prompt(prompt)

        if session.process is None or not session.is_alive:
            raise RequestError.internal_error({"message": f"aider is not running for session {session_id}"})

        await self._wait_until_ready(session)
        session.cancelled = False
        session.current_plan = None
        prompt_text = "\n".join(text_parts).strip()

        if session.process.state is ProcessState.WAITING_FOR_CONFIRMATION:
            await self._answer_pending_confirmation(session, prompt_text)
            return self._turn_response(session)

        command = parse_slash_command(prompt_text)
        if command is not None:
            if command.kind is not SlashCommandKind.COMMAND:
                await self._send_message(session_id, describe_slash_command_problem(command))
                return PromptResponse(stop_reason="end_turn")
            prompt_text = format_slash_command(command)

        plan = self._build_plan(len(resources), bool(prompt_text))
        session.current_plan = plan
        if plan.entries:
            await self._send_plan(session_id, plan)

        if resources:
            await self._process_resources(session, resources)

        if prompt_text and not session.cancelled and session.is_alive:
            entry = plan.find(PROMPT_ENTRY)
            await self._advance(session_id, plan, entry, PlanStatus.IN_PROGRESS)
            outcome = await self._run_command(session, prompt_text)
            if command is not None and outcome is TurnOutcome.COMPLETED:
                self._track_files(session, command)
            await self._advance(session_id, plan, entry, PlanStatus.COMPLETED)

        return self._turn_response(session)

    async def cancel(self, session_id: str, **kwargs: Any) -> None:
        """Abort the current turn."""
        session = self._get_session(session_id)
        session.cancelled = True
        logger.info(f"Cancelling session {session_id}")
        if session.is_alive:
            await self._interrupt(session)

    async def ext_method(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def ext_notification(self, method: str, params: dict[str, Any]) -> None:
        pass

    async def shutdown(self) -> None:
        """Stop every aider process and event pump."""
        for session in self._sessions.list():
            if session.process is not None:
                await session.process.stop()
        for task in self._pumps.values():
            task.cancel()
        await asyncio.gather(*self._pumps.values(), return_exceptions=True)
        self._pumps.clear()

    # ------------------------------------------------------------------
    # Turn handling
    # ------------------------------------------------------------------

    def _get_session(self, session_id: str) -> SessionState:
        try:
            return self._sessions.get(session_id)
        except SessionNotFoundError:
            raise session_not_found(session_id) from None

    def _split_prompt(self, prompt: list[Any]) -> tuple[list[str], list[Any]]:
        """Separate text from resource blocks, rejecting anything else."""
        text_parts: list[str] = []
        resources: list[Any] = []

        for block in prompt:
            if isinstance(block, TextContentBlock):
                text_parts.append(block.text)
            elif isinstance(block, ResourceContentBlock):
                if not block.uri:
                    raise RequestError.invalid_params({"message": "Resource link is missing a URI"})
                resources.append(block)
            elif isinstance(block, EmbeddedResourceContentBlock):
                if not block.resource.uri:
                    raise RequestError.invalid_params({"message": "Embedded resource is missing a URI"})
                resources.append(block)
            else:
                kind = getattr(block, "type", type(block).__name__)
                raise RequestError.invalid_params({"message": f"Unsupported content type: {kind}"})

        return text_parts, resources

    def _build_plan(self, resource_count: int, has_text: bool) -> Plan:
        plan = Plan()
        if resource_count:
            plan.entries.append(PlanEntry(resource_entry(resource_count), priority=PlanPriority.HIGH))
        if has_text:
            plan.entries.append(PlanEntry(PROMPT_ENTRY, priority=PlanPriority.MEDIUM))
        return plan

    async def _process_resources(self, session: SessionState, resources: list[Any]) -> None:
        plan = session.current_plan
        entry = plan.find(resource_entry(len(resources))) if plan else None
        await self._advance(session.id, plan, entry, PlanStatus.IN_PROGRESS)

        for block in resources:
            if session.cancelled or not session.is_alive:
                break
            path = await self._resolve_resource(session, block)
            if path is None:
                continue
            outcome = await self._run_command(session, f"/add {path}")
            if outcome is TurnOutcome.COMPLETED:
                session.files.add(path)

        if not session.cancelled:
            await self._advance(session.id, plan, entry, PlanStatus.COMPLETED)

    def _track_files(self, session: SessionState, command: SlashCommandResult) -> None:
        """Mirror aider's chat file sets for file-management commands."""
        assert command.spec is not None
        paths = [
            path
            for path in (normalize_resource_uri(arg, session.working_dir) for arg in command.args.split())
            if path is not None
        ]
        if command.spec.name == "add":
            session.files.update(paths)
        elif command.spec.name == "read-only":
            session.read_only_files.update(paths)
        elif command.spec.name == "drop":
            session.files.difference_update(paths)
            session.read_only_files.difference_update(paths)

    async def _resolve_resource(self, session: SessionState, block: Any) -> str | None:
        """Return the on-disk path for a resource, writing embedded content."""
        if isinstance(block, ResourceContentBlock):
            return normalize_resource_uri(block.uri, session.working_dir)

        resource = block.resource
        path = normalize_resource_uri(resource.uri, session.working_dir)
        if path is None:
            return None

        text = resource.text if isinstance(resource, TextResourceContents) else None
        blob = resource.blob if isinstance(resource, BlobResourceContents) else None
        try:
            write_embedded_resource(path, text=text, blob=blob)
        except ResourceWriteError as e:
            logger.warning(str(e))
            await self._send_message(session.id, f"⚠️ {e}")
            return None
        return path

    async def _run_command(self, session: SessionState, text: str) -> TurnOutcome:
        """Send a command and wait for the first terminal event."""
        return await self._await_turn(session, lambda process: process.send_command(text))

    async def _await_turn(self, session: SessionState, send: Callable[[AiderProcess], Any]) -> TurnOutcome:
        process = session.process
        if process is None:
            return TurnOutcome.EXITED

        waiter: asyncio.Future[TurnOutcome] = asyncio.get_running_loop().create_future()
        self._turn_waiters[session.id] = waiter
        try:
            await send(process)
        except ProcessError as e:
            logger.warning(f"Could not write to aider: {e}")
            self._resolve_turn(session.id, TurnOutcome.EXITED)
        try:
            return await waiter
        finally:
            if self._turn_waiters.get(session.id) is waiter:
                del self._turn_waiters[session.id]

    def _resolve_turn(self, session_id: str, outcome: TurnOutcome) -> None:
        waiter = self._turn_waiters.pop(session_id, None)
        if waiter is not None and not waiter.done():
            waiter.set_result(outcome)

    async def _wait_until_ready(self, session: SessionState) -> None:
        ready = self._ready.get(session.id)
        if ready is None:
            return
        if session.process is not None and session.process.state is ProcessState.WAITING_FOR_CONFIRMATION:
            return
        try:
            await asyncio.wait_for(ready.wait(), timeout=STARTUP_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"aider did not show its prompt within {STARTUP_TIMEOUT}s, sending anyway")

    def _turn_response(self, session: SessionState) -> PromptResponse:
        return PromptResponse(stop_reason="cancelled" if session.cancelled else "end_turn")

    async def _interrupt(self, session: SessionState) -> None:
        process = session.process
        if process is None:
            return
        try:
            process.interrupt()
        except (ProcessError, OSError) as e:
            logger.warning(f"Interrupt failed ({e}), stopping aider")
            await process.stop()

    # ------------------------------------------------------------------
    # Confirmations
    # ------------------------------------------------------------------

    async def _answer_pending_confirmation(self, session: SessionState, prompt_text: str) -> None:
        """Resolve a question aider asked before this turn started."""
        assert session.process is not None
        question = session.process.pending_confirmation or "Aider is waiting for confirmation"
        options = [
            PermissionOption(option_id="allow_once", name="Yes", kind="allow_once"),
            PermissionOption(option_id="reject_once", name="No", kind="reject_once"),
        ]
        selected = await self._request_permission(session, question, options)

        if selected in ALLOW_OPTION_IDS:
            answer = prompt_text or AFFIRMATIVE_ANSWER
            await self._await_turn(session, lambda process: process.answer_confirmation(answer))
        else:
            session.cancelled = True
            await self._interrupt(session)

    async def _handle_confirmation(self, session: SessionState, question: str) -> None:
        """Handle a question aider asks while a command is running."""
        process = session.process
        if process is None or process.pending_confirmation != question:
            # Already answered
            return

        if session.auto_confirm:
            logger.info(f"Auto-confirming: {question}")
            await process.answer_confirmation(AFFIRMATIVE_ANSWER)
            return

        if session.id not in self._turn_waiters:
            # Left pending; the next prompt turn answers it.
            await self._send_message(session.id, f"**Aider requires input:**\n{question}")
            self._mark_ready(session.id)
            return

        options = [
            PermissionOption(option_id="allow_once", name="Allow", kind="allow_once"),
            PermissionOption(option_id="allow_always", name="Always Allow", kind="allow_always"),
            PermissionOption(option_id="reject_once", name="Reject", kind="reject_once"),
            PermissionOption(option_id="reject_always", name="Never Allow", kind="reject_always"),
        ]
        selected = await self._request_permission(session, question, options)

        if selected in ALLOW_OPTION_IDS:
            if selected == "allow_always":
                session.auto_confirm = True
            await process.answer_confirmation(AFFIRMATIVE_ANSWER)
        else:
            session.cancelled = True
            await self._interrupt(session)

    async def _request_permission(
        self, session: SessionState, question: str, options: list[PermissionOption]
    ) -> str | None:
        """Ask the client; returns the selected option id, None if dismissed."""
        assert self._conn is not None
        tool_call = ToolCallUpdate(
            tool_call_id=session.tool_calls.next_id("confirm"),
            title=question,
            kind="other",
            content=[tool_content(text_block(question))],
        )
        response = await self._conn.request_permission(
            options=options,
            session_id=session.id,
            tool_call=tool_call,
        )

        if response.outcome.outcome == "selected":
            logger.debug(f"Permission answer for {session.id}: {response.outcome.option_id}")
            return response.outcome.option_id
        logger.info(f"Permission request dismissed for {session.id}")
        return None

    # ------------------------------------------------------------------
    # Process events
    # ------------------------------------------------------------------

    async def _pump_events(self, session: SessionState, process: AiderProcess) -> None:
        """Translate the process's lifecycle events into client updates."""
        try:
            async for event in process.events():
                await self._handle_event(session, event)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Event pump for session {session.id} failed")
            self._resolve_turn(session.id, TurnOutcome.ERROR)
            raise

    async def _handle_event(self, session: SessionState, event: ProcessEvent) -> None:
        if isinstance(event, Ready):
            logger.debug(f"aider ready for session {session.id}")
            await self._flush_output(session)
            self._mark_ready(session.id)
            # Ends a turn that answered a startup question
            self._resolve_turn(session.id, TurnOutcome.COMPLETED)

        elif isinstance(event, OutputReceived):
            await self._handle_output(session, event.text)

        elif isinstance(event, ErrorOutput):
            await self._handle_stderr(session, event.text)

        elif isinstance(event, ConfirmationRequired):
            await self._flush_output(session)
            await self._handle_confirmation(session, event.question)

        elif isinstance(event, TurnCompleted):
            await self._flush_output(session)
            self._resolve_turn(session.id, TurnOutcome.COMPLETED)

        elif isinstance(event, Exited):
            await self._flush_output(session)
            await self._handle_exit(session, event)

    async def _handle_output(self, session: SessionState, text: str) -> None:
        # Hold output while a fenced block is open or may be about to open
        # under a file path, so edit blocks are parsed whole.
        pending = self._pending_output.get(session.id, "") + text
        if has_open_fence(pending) or ends_with_file_path(pending):
            self._pending_output[session.id] = pending
            return
        self._pending_output.pop(session.id, None)
        await self._emit_parsed(session, parse_aider_output(pending))

    async def _flush_output(self, session: SessionState) -> None:
        pending = self._pending_output.pop(session.id, "")
        if pending:
            await self._emit_parsed(session, parse_aider_output(pending))

    async def _handle_stderr(self, session: SessionState, text: str) -> None:
        classification = classify_stderr(text)
        message = classification.text.strip()

        if classification.kind is StderrKind.NOISE:
            logger.debug(f"aider stderr: {message}")
        elif classification.kind is StderrKind.WARNING:
            logger.warning(f"aider: {message}")
            await self._send_message(session.id, f"⚠️ {message}")
        else:
            logger.error(f"aider: {message}")
            await self._send_message(session.id, f"❌ Aider error: {message}")
            self._resolve_turn(session.id, TurnOutcome.ERROR)

    async def _handle_exit(self, session: SessionState, event: Exited) -> None:
        logger.info(f"aider for session {session.id} exited ({event.message})")
        session.process = None
        self._mark_ready(session.id)
        await self._send_message(session.id, f"Aider process exited ({event.message})")
        self._resolve_turn(session.id, TurnOutcome.EXITED)

    def _mark_ready(self, session_id: str) -> None:
        ready = self._ready.get(session_id)
        if ready is not None:
            ready.set()

    async def _emit_parsed(self, session: SessionState, parsed: ParsedOutput) -> None:
        """Send everything recognized in a chunk of output to the client."""
        if parsed.info.has_content():
            await self._send(session.id, update_agent_thought(text_block(format_aider_info(parsed.info))))

        for message in parsed.classified_messages:
            if message.type is MessageType.FILE_ACTION:
                logger.info(f"aider ({session.id}): {message.text}")

        if parsed.user_message.strip():
            await self._send_message(session.id, parsed.user_message)

        for question in parsed.prompts:
            await self._send_message(session.id, f"**Aider requires input:**\n{question}")

        if parsed.edit_blocks:
            for diff in edit_blocks_to_acp_diffs(parsed.edit_blocks, session.working_dir):
                await self._report_edit(session, diff)

        for block in parsed.code_blocks:
            await self._send_message(session.id, format_code_block(block))

    async def _report_edit(self, session: SessionState, diff: DiffPayload) -> None:
        tool_call_id = session.tool_calls.next_id("edit")
        session.tool_calls.start(tool_call_id, "edit")
        await self._send(
            session.id,
            start_tool_call(
                tool_call_id,
                f"Edit {diff.path}",
                kind="edit",
                status="in_progress",
                locations=[ToolCallLocation(path=diff.path)],
            ),
        )

        session.tool_calls.complete(tool_call_id)
        await self._send(
            session.id,
            update_tool_call(
                tool_call_id,
                status="completed",
                content=[tool_diff_content(diff.path, diff.new_text, diff.old_text)],
            ),
        )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def _send(self, session_id: str, update: Any) -> None:
        assert self._conn is not None
        await self._conn.session_update(session_id=session_id, update=update)

    async def _send_message(self, session_id: str, text: str) -> None:
        await self._send(session_id, update_agent_message(text_block(text)))

    async def _send_plan(self, session_id: str, plan: Plan) -> None:
        entries = [
            plan_entry(e.content, priority=e.priority.value, status=e.status.value)
            for e in plan.entries
        ]
        await self._send(session_id, update_plan(entries))

    async def _advance(
        self, session_id: str, plan: Plan | None, entry: PlanEntry | None, status: PlanStatus
    ) -> None:
        if plan is None or entry is None:
            return
        entry.status = status
        await self._send_plan(session_id, plan)

