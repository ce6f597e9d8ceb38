"""Coding-agent invocation: spawn, stream, decode, detect completion.

The agent is run once per story with the build prompt on stdin and
``--output-format stream-json`` on stdout. A reader thread forwards raw
stdout chunks to the main thread, which decodes newline-delimited JSON
records incrementally, echoes assistant text (with completion markers
removed), and shows a live indicator while the agent is quiet.
"""

import json
import logging
import queue
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from rich.console import Console

from twin.config import GlobalConfig, get_global_config
from twin.errors import AgentNotFoundError
from twin.utils import Colors

logger = logging.getLogger(__name__)

STORY_COMPLETE = "<twin>STORY_COMPLETE</twin>"
ALL_COMPLETE = "<twin>ALL_COMPLETE</twin>"
SENTINELS = (STORY_COMPLETE, ALL_COMPLETE)

MAX_LINE_BYTES = 8 * 1024 * 1024
READ_CHUNK_BYTES = 64 * 1024

TOOL_LABELS = {
    "Bash": "Running a command",
    "Read": "Reading a file",
    "Write": "Writing a file",
    "Edit": "Editing a file",
    "MultiEdit": "Editing a file",
    "NotebookEdit": "Editing a notebook",
    "Glob": "Finding files",
    "Grep": "Searching code",
    "LS": "Listing files",
    "WebFetch": "Fetching a page",
    "WebSearch": "Searching the web",
    "Task": "Delegating to a sub-agent",
    "TodoWrite": "Updating the todo list",
}

EVENT_TEXT = "text"
EVENT_TOOL_START = "tool_start"
EVENT_TOOL_END = "tool_end"


@dataclass
class AgentEvent:
    """A decoded stream record relevant to the build loop."""

    kind: str
    text: str = ""
    tool: str = ""


@dataclass
class AgentResult:
    """Outcome of one agent run.

    Attributes:
        output: Concatenated assistant text, markers included.
        exit_code: Process exit status.
        story_complete: The story-complete marker appeared in the output.
        all_complete: The all-complete marker appeared in the output.
    """

    output: str
    exit_code: int
    story_complete: bool = False
    all_complete: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


def tool_label(name: str) -> str:
    return TOOL_LABELS.get(name, name or "Using a tool")


class StreamDecoder:
    """Incremental decoder for the agent's newline-delimited JSON stream.

    Bytes are fed as they arrive; complete lines are parsed and turned into
    AgentEvents. A partial trailing line is buffered until its newline
    arrives or flush() is called at end of stream. A line that grows past
    ``max_line_bytes`` is discarded. Lines that are not JSON objects, or
    records of an unknown shape, are dropped.
    """

    def __init__(self, max_line_bytes: int = MAX_LINE_BYTES) -> None:
        self.max_line_bytes = max_line_bytes
        self._buffer = bytearray()
        self._discarding = False
        self._partial_messages = False

    def feed(self, chunk: bytes) -> List[AgentEvent]:
        events: List[AgentEvent] = []
        self._buffer.extend(chunk)
        while True:
            newline = self._buffer.find(b"\n")
            if newline == -1:
                break
            line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            if self._discarding:
                self._discarding = False
                continue
            events.extend(self._decode_line(line))
        if len(self._buffer) > self.max_line_bytes:
            logger.warning(
                "Dropping stream record larger than %d bytes", self.max_line_bytes
            )
            self._buffer.clear()
            self._discarding = True
        return events

    def flush(self) -> List[AgentEvent]:
        """Decode whatever is left once the stream has ended."""
        line = bytes(self._buffer)
        self._buffer.clear()
        if self._discarding:
            self._discarding = False
            return []
        return self._decode_line(line)

    def _decode_line(self, raw: bytes) -> List[AgentEvent]:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            return []
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            return []
        if not isinstance(record, dict):
            return []
        return self.events_from_record(record)

    def events_from_record(self, record: Dict[str, Any]) -> List[AgentEvent]:
        record_type = record.get("type")

        if record_type == "stream_event":
            inner = record.get("event")
            return self.events_from_record(inner) if isinstance(inner, dict) else []

        if record_type == "content_block_delta":
            self._partial_messages = True
            delta = record.get("delta") or {}
            if isinstance(delta, dict) and delta.get("type") == "text_delta":
                text = delta.get("text")
                if isinstance(text, str) and text:
                    return [AgentEvent(EVENT_TEXT, text=text)]
            return []

        if record_type == "content_block_start":
            self._partial_messages = True
            block = record.get("content_block") or {}
            if isinstance(block, dict) and block.get("type") == "tool_use":
                return [AgentEvent(EVENT_TOOL_START, tool=str(block.get("name", "")))]
            return []

        if record_type == "assistant":
            # Full messages repeat what partial deltas already delivered.
            if self._partial_messages:
                return []
            events = []
            for block in _content_blocks(record):
                if block.get("type") == "text":
                    text = block.get("text")
                    if isinstance(text, str) and text:
                        events.append(AgentEvent(EVENT_TEXT, text=text))
                elif block.get("type") == "tool_use":
                    events.append(
                        AgentEvent(EVENT_TOOL_START, tool=str(block.get("name", "")))
                    )
            return events

        if record_type == "user":
            return [
                AgentEvent(EVENT_TOOL_END)
                for block in _content_blocks(record)
                if block.get("type") == "tool_result"
            ]

        return []


def _content_blocks(record: Dict[str, Any]) -> List[Dict[str, Any]]:
    message = record.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [b for b in content if isinstance(b, dict)]


class SignalFilter:
    """Removes completion markers from streamed text before it is shown.

    Text that could be the beginning of a marker is held back until the
    next fragment shows whether the marker completes, so a marker split
    across fragments never reaches the terminal.
    """

    def __init__(self, markers: Sequence[str] = SENTINELS) -> None:
        self.markers = tuple(markers)
        self._pending = ""

    def feed(self, text: str) -> str:
        data = self._pending + text
        for marker in self.markers:
            data = data.replace(marker, "")
        hold = 0
        for marker in self.markers:
            for n in range(min(len(marker) - 1, len(data)), 0, -1):
                if data.endswith(marker[:n]):
                    hold = max(hold, n)
                    break
        cut = len(data) - hold
        self._pending = data[cut:]
        return data[:cut]

    def flush(self) -> str:
        rest, self._pending = self._pending, ""
        return rest


class WorkingIndicator:
    """Shows "Working... (Ns)" once the agent has been silent for a while."""

    def __init__(self, console: Console, heartbeat_s: float) -> None:
        self.console = console
        self.heartbeat_s = heartbeat_s
        self._status = None

    def update(self, silent_for: float) -> None:
        if silent_for < self.heartbeat_s:
            return
        label = f"Working... ({int(silent_for)}s)"
        if self._status is None:
            self._status = self.console.status(label)
            self._status.start()
        else:
            self._status.update(label)

    def stop(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None


def spawn_agent(
    prompt: str, cwd: Path, config: Optional[GlobalConfig] = None
) -> subprocess.Popen:
    """Start the agent with the prompt written to its stdin.

    The child gets its own session so a Ctrl-C in the terminal reaches only
    twin, which decides whether the agent is allowed to finish.

    Raises:
        AgentNotFoundError: If the agent executable cannot be launched.
    """
    config = config or get_global_config()
    argv = config.agent_argv
    try:
        proc = subprocess.Popen(
            argv,
            cwd=str(cwd),
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            start_new_session=True,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise AgentNotFoundError(
            f"Cannot run {argv[0]!r}: {e}",
            hint="Install the Claude CLI (https://docs.anthropic.com/claude-code) "
            "or set TWIN_AGENT_COMMAND.",
        ) from e

    if proc.stdin is None:
        return proc
    try:
        proc.stdin.write(prompt.encode("utf-8"))
        proc.stdin.close()
    except BrokenPipeError:
        logger.warning("Agent closed stdin before the prompt was written")
    return proc


def run_agent(
    prompt: str,
    cwd: Path,
    config: Optional[GlobalConfig] = None,
    on_spawn: Optional[Callable[[Optional[subprocess.Popen]], None]] = None,
    echo: bool = True,
    console: Optional[Console] = None,
    clock: Callable[[], float] = time.monotonic,
) -> AgentResult:
    """Run the agent to completion on one prompt.

    Args:
        prompt: Build prompt sent on stdin.
        cwd: Project directory the agent works in.
        config: Agent command and heartbeat settings.
        on_spawn: Called with the process once started and with None when it
            has exited (used by the interrupt handler).
        echo: Print assistant text and tool labels as they stream.
        console: rich Console for the working indicator.
        clock: Monotonic clock, injectable for tests.

    Returns:
        AgentResult. A non-zero exit is reported, not raised.
    """
    config = config or get_global_config()
    proc = spawn_agent(prompt, cwd, config)
    if on_spawn is not None:
        on_spawn(proc)

    chunks: "queue.Queue[Optional[bytes]]" = queue.Queue()

    def read_output():
        if proc.stdout is None:
            chunks.put(None)
            return
        try:
            while True:
                chunk = proc.stdout.read1(READ_CHUNK_BYTES)
                if not chunk:
                    break
                chunks.put(chunk)
        except Exception as exc:
            logger.warning("Reader thread error (output may be truncated): %s", exc)
        finally:
            chunks.put(None)

    reader_thread = threading.Thread(target=read_output, daemon=True)
    reader_thread.start()

    decoder = StreamDecoder()
    signal_filter = SignalFilter()
    indicator = WorkingIndicator(console or Console(), config.heartbeat_s)
    parts: List[str] = []
    line_open = False

    def echo_text(text: str) -> None:
        nonlocal line_open
        if text:
            sys.stdout.write(text)
            sys.stdout.flush()
            line_open = not text.endswith("\n")

    def handle(event: AgentEvent) -> None:
        nonlocal line_open
        if event.kind == EVENT_TEXT:
            parts.append(event.text)
            if echo:
                echo_text(signal_filter.feed(event.text))
        elif event.kind == EVENT_TOOL_START and echo:
            echo_text(signal_filter.flush())
            if line_open:
                print()
                line_open = False
            print(f"{Colors.DIM}[{tool_label(event.tool)}]{Colors.NC}")

    last_record = clock()
    try:
        while True:
            try:
                chunk = chunks.get(timeout=0.5)
            except queue.Empty:
                if echo:
                    indicator.update(clock() - last_record)
                continue
            if chunk is None:
                for event in decoder.flush():
                    handle(event)
                break
            events = decoder.feed(chunk)
            if events:
                indicator.stop()
                last_record = clock()
            for event in events:
                handle(event)
        exit_code = proc.wait()
    finally:
        indicator.stop()
        if proc.poll() is None:
            proc.kill()
            proc.wait()
        if on_spawn is not None:
            on_spawn(None)

    reader_thread.join(timeout=1)
    if echo:
        echo_text(signal_filter.flush())
        if line_open:
            print()

    output = "".join(parts)
    return AgentResult(
        output=output,
        exit_code=exit_code,
        story_complete=STORY_COMPLETE in output,
        all_complete=ALL_COMPLETE in output,
    )


__all__ = [
    "STORY_COMPLETE",
    "ALL_COMPLETE",
    "SENTINELS",
    "TOOL_LABELS",
    "AgentEvent",
    "AgentResult",
    "StreamDecoder",
    "SignalFilter",
    "WorkingIndicator",
    "tool_label",
    "spawn_agent",
    "run_agent",
]
