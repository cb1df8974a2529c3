"""
Coding-agent process orchestration.

``spawn_agent`` launches a provider CLI and returns an ``AgentRun``: a handle
on the child process plus a single-pass async iterator of StreamEvents.

Output is read by a supervisor task that runs independently of the
consumer, so a slow or departed consumer never stalls the child; events wait
in an unbounded queue until pulled. Every run ends with exactly one terminal
event: ``done`` with the exit status, or ``error`` when the process could not
be spawned or the supervisor itself failed.
"""

import asyncio
import codecs
import logging
import os
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, Optional, Set

from .events import StreamEvent, EVENT_DONE, EVENT_ERROR
from .providers import PROVIDERS, ProviderSpec

logger = logging.getLogger(__name__)

_READ_SIZE = 4096

# Strong references to supervisor tasks; the event loop only keeps weak ones
_running_tasks: Set[asyncio.Task] = set()


@dataclass
class ProviderConfig:
    """Per-invocation settings for a coding-agent run"""
    provider: str
    cwd: str = "."
    model: Optional[str] = None


class AgentRun:
    """A spawned coding-agent process and its event stream."""

    def __init__(self, spec: ProviderSpec, prompt: str, config: ProviderConfig):
        self.spec = spec
        self.prompt = prompt
        self.config = config
        self.process: Optional[asyncio.subprocess.Process] = None
        self._queue: "asyncio.Queue[StreamEvent]" = asyncio.Queue()
        self._finished = False
        self._consumed = False
        self._task: Optional[asyncio.Task] = None

    @property
    def provider(self) -> str:
        return self.spec.name

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode if self.process else None

    @property
    def finished(self) -> bool:
        return self._finished

    def start(self) -> "AgentRun":
        self._task = asyncio.get_running_loop().create_task(self._supervise())
        _running_tasks.add(self._task)
        self._task.add_done_callback(_running_tasks.discard)
        return self

    async def wait(self) -> Optional[int]:
        """Wait for the process to exit (or fail to start). Returns the exit code."""
        if self._task is not None:
            await asyncio.shield(self._task)
        return self.returncode

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield events until (and including) the terminal one. Single pass."""
        if self._consumed:
            raise RuntimeError("Agent event stream can only be consumed once")
        self._consumed = True
        while True:
            event = await self._queue.get()
            yield event
            if event.terminal:
                return

    # ------------------------------------------------------------------
    # Supervisor
    # ------------------------------------------------------------------

    def _push(self, event: StreamEvent) -> None:
        if not self._finished:
            self._queue.put_nowait(event)

    def _finish(self, event: StreamEvent) -> None:
        if self._finished:
            return
        event.terminal = True
        self._queue.put_nowait(event)
        self._finished = True

    def _on_stdout_line(self, line: str) -> None:
        line = line.strip()
        if line:
            self._push(self.spec.decode_line(line))

    def _on_stderr_line(self, line: str) -> None:
        line = line.strip()
        if line:
            self._push(StreamEvent(type=EVENT_ERROR, provider=self.provider, content=line))

    async def _supervise(self) -> None:
        args = self.spec.build_args(self.prompt, self.config.model)
        logger.info("Spawning %s in %s (%d arg(s))", self.spec.command, self.config.cwd, len(args))
        try:
            self.process = await asyncio.create_subprocess_exec(
                self.spec.command, *args,
                cwd=self.config.cwd,
                env=os.environ.copy(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            logger.warning("Failed to spawn %s: %s", self.provider, e)
            self._finish(StreamEvent(
                type=EVENT_ERROR, provider=self.provider,
                content=f"Failed to spawn {self.provider}: {e}",
            ))
            return

        try:
            await asyncio.gather(
                _pump_lines(self.process.stdout, self._on_stdout_line),
                _pump_lines(self.process.stderr, self._on_stderr_line),
            )
            code = await self.process.wait()
        except asyncio.CancelledError:
            self._finish(StreamEvent(
                type=EVENT_ERROR, provider=self.provider,
                content=f"{self.provider} run was cancelled",
            ))
            raise
        except Exception as e:
            logger.exception("Agent process supervisor failed")
            self._finish(StreamEvent(
                type=EVENT_ERROR, provider=self.provider,
                content=f"{self.provider} process failed: {e}",
            ))
            return

        logger.info("%s exited with code %s", self.spec.command, code)
        self._finish(StreamEvent(
            type=EVENT_DONE, provider=self.provider,
            content=f"Process exited with code {code}",
            exit_code=code,
        ))


async def _pump_lines(stream: Optional[asyncio.StreamReader], on_line: Callable[[str], None]) -> None:
    """Read a pipe to EOF, calling on_line per line; the trailing partial line is flushed last."""
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    while True:
        chunk = await stream.read(_READ_SIZE)
        if not chunk:
            break
        buffer += decoder.decode(chunk)
        *lines, buffer = buffer.split("\n")
        for line in lines:
            on_line(line)
    buffer += decoder.decode(b"", final=True)
    if buffer:
        on_line(buffer)


def spawn_agent(
    prompt: str,
    config: ProviderConfig,
    providers: Optional[Dict[str, ProviderSpec]] = None,
) -> AgentRun:
    """Launch the configured provider CLI. Must be called from a running event loop."""
    spec = (providers or PROVIDERS).get(config.provider)
    if spec is None:
        raise ValueError(f"Unknown provider: {config.provider}")
    return AgentRun(spec, prompt, config).start()
