"""Management of the interactive aider subprocess.

The process exposes a single inbound channel of lifecycle events
(``events()``) instead of ad hoc callbacks:
- OutputReceived: complete stdout lines
- ErrorOutput: stderr lines
- Ready: the first input prompt after startup
- ConfirmationRequired: aider is blocked on a yes/no question
- TurnCompleted: aider returned to its input prompt after a command
- Exited: the process terminated (always the last event)
"""

import asyncio
import codecs
import logging
import os
import shutil
import signal
from typing import AsyncIterator

from aider_acp.classifier import is_input_prompt, is_prompt_line
from aider_acp.data_models import (
    ConfirmationRequired,
    ErrorOutput,
    Exited,
    OutputReceived,
    ProcessEvent,
    ProcessState,
    Ready,
    TurnCompleted,
)

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096


class ProcessError(Exception):
    """Base error for subprocess management."""


class ProcessStartError(ProcessError):
    """The aider executable could not be launched."""


class ProcessNotRunningError(ProcessError):
    """An operation needed a running process."""


class AiderProcess:
    """An interactive aider session running as a subprocess."""

    def __init__(self, command: list[str], working_dir: str, stop_timeout: float = 5.0) -> None:
        """Initialize the process manager.

        Args:
            command: Full command line, executable first.
            working_dir: Directory aider runs in.
            stop_timeout: Seconds to wait after terminate before killing.
        """
        self.command = command
        self.working_dir = working_dir
        self.stop_timeout = stop_timeout

        self._proc: asyncio.subprocess.Process | None = None
        self._state = ProcessState.STOPPED
        self._events: asyncio.Queue[ProcessEvent] = asyncio.Queue()
        self._buffer = ""
        self._turn_output = ""
        self._pending_confirmation: str | None = None
        self._started = False
        self._supervisor: asyncio.Task[None] | None = None

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def pending_confirmation(self) -> str | None:
        """The question aider is currently blocked on, if any."""
        return self._pending_confirmation

    @property
    def is_running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    def is_available(self) -> bool:
        """Check if the executable is available on PATH."""
        return shutil.which(self.command[0]) is not None

    async def start(self) -> None:
        """Spawn aider and begin reading its output."""
        env = {**os.environ, "TERM": "dumb", "NO_COLOR": "1"}
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=self.working_dir,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
            raise ProcessStartError(f"Failed to start '{self.command[0]}': {e}") from e

        self._state = ProcessState.STARTING
        logger.info(f"Started aider (pid {self._proc.pid}) in {self.working_dir}")
        self._supervisor = asyncio.create_task(self._supervise())

    async def events(self) -> AsyncIterator[ProcessEvent]:
        """Yield lifecycle events until the process exits."""
        while True:
            event = await self._events.get()
            yield event
            if isinstance(event, Exited):
                return

    async def send_command(self, text: str) -> None:
        """Send a line of input at the aider prompt.

        Multi-line text is wrapped in aider's ``{`` ... ``}`` block syntax.
        """
        if "\n" in text:
            text = "{\n" + text + "\n}"
        await self._write(text)
        self._state = ProcessState.PROCESSING

    async def answer_confirmation(self, answer: str) -> None:
        """Answer the pending yes/no question."""
        await self._write(answer)
        self._pending_confirmation = None
        self._state = ProcessState.PROCESSING

    def interrupt(self) -> None:
        """Send Control-C to abort the current operation.

        Raises:
            ProcessNotRunningError: No live process to signal.
            ProcessLookupError: The process vanished before delivery.
        """
        if not self.is_running or self._proc is None:
            raise ProcessNotRunningError("aider is not running")
        self._proc.send_signal(signal.SIGINT)

    async def stop(self) -> None:
        """Terminate aider, killing it if it does not exit in time."""
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return

        try:
            proc.terminate()
            await asyncio.wait_for(proc.wait(), timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"aider (pid {proc.pid}) ignored terminate, killing")
            proc.kill()
            await proc.wait()
        except ProcessLookupError:
            pass

    async def _write(self, text: str) -> None:
        if not self.is_running or self._proc is None or self._proc.stdin is None:
            raise ProcessNotRunningError("aider is not running")
        self._proc.stdin.write((text + "\n").encode())
        await self._proc.stdin.drain()

    async def _supervise(self) -> None:
        assert self._proc is not None
        await asyncio.gather(self._read_stdout(), self._read_stderr())
        returncode = await self._proc.wait()

        self._state = ProcessState.STOPPED
        self._pending_confirmation = None
        logger.info(f"aider exited with code {returncode}")
        self._events.put_nowait(Exited(message=f"exit code {returncode}", returncode=returncode))

    async def _read_stdout(self) -> None:
        assert self._proc is not None and self._proc.stdout is not None
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        while True:
            chunk = await self._proc.stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            self.feed(decoder.decode(chunk))

        remainder = self._buffer + decoder.decode(b"", final=True)
        self._buffer = ""
        if remainder:
            self._events.put_nowait(OutputReceived(text=remainder))

    async def _read_stderr(self) -> None:
        assert self._proc is not None and self._proc.stderr is not None
        async for line in self._proc.stderr:
            self._events.put_nowait(ErrorOutput(text=line.decode(errors="replace")))

    def feed(self, text: str) -> None:
        """Consume decoded stdout text and emit the events it implies.

        Complete lines are emitted as output. The partial trailing line is
        inspected for the input prompt (turn boundary) and for confirmation
        questions, which aider prints without a newline.
        """
        self._buffer += text
        complete, newline, tail = self._buffer.rpartition("\n")

        if newline:
            lines = complete + newline
            self._turn_output += lines
            self._events.put_nowait(OutputReceived(text=lines))
        self._buffer = tail

        if is_input_prompt(tail):
            self._buffer = ""
            if not self._started:
                # First prompt, possibly after a startup question
                self._started = True
                self._state = ProcessState.READY
                self._turn_output = ""
                self._events.put_nowait(Ready())
            else:
                self._state = ProcessState.READY
                self._events.put_nowait(TurnCompleted(text=self._turn_output))
                self._turn_output = ""
        elif is_prompt_line(tail.strip()):
            self._buffer = ""
            self._pending_confirmation = tail.strip()
            self._state = ProcessState.WAITING_FOR_CONFIRMATION
            self._events.put_nowait(ConfirmationRequired(question=self._pending_confirmation))
