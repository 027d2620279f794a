"""Multi-process pipelines without a shell.

``PipedCmd`` wires N prepared commands the way ``a | b | c`` would:

- stage 0 reads the pipeline's stdin
- stage i's stdout is an OS pipe feeding stage i+1's stdin
- the last stage's stdout goes to the pipeline's stdout sink
- every stage's stderr goes to one shared, lock-serialized sink

Starting is all-or-nothing: if stage k cannot be launched, stages 0..k-1
are killed and reaped before the start error surfaces.  Waiting never
stops at the first failure; every stage is reaped and all failures are
reported together in a :class:`~pipexec.errors.PipelineError`.
"""

from __future__ import annotations

import asyncio
import os
from typing import TYPE_CHECKING, Any

from loguru import logger

from pipexec.cmd import Cmd, PreparedCmd, kill_process, supervise
from pipexec.errors import CommandStartError, NoStagesError, PipelineError, PipexecError, StageError
from pipexec.streams import ConcurrentWriter, binary_sink, copy_stream, feed, stdin_argument

if TYPE_CHECKING:
    from types import TracebackType

    from pipexec.streams import Writer


class PipedCmd:
    """Run several commands connected stdout -> stdin.

    Stages may be :class:`PreparedCmd` handles or :class:`Cmd` objects
    (prepared on construction).

    Example::

        pipe = PipedCmd(Cmd("grep", "msg").prepare(), Cmd("grep", "hello").prepare(), stdin=data, stdout=out)
        await pipe.start()
        await pipe.wait()
    """

    def __init__(
        self,
        *stages: PreparedCmd | Cmd,
        stdin: Any = None,
        stdout: Writer | None = None,
        stderr: Writer | None = None,
    ) -> None:
        if not stages:
            raise NoStagesError
        self.stages: list[PreparedCmd] = [s.prepare() if isinstance(s, Cmd) else s for s in stages]
        self.stdin = stdin
        self.stdout = stdout
        self.stderr = stderr
        self._procs: list[asyncio.subprocess.Process] = []
        self._pumps: list[asyncio.Future[None]] = []
        self._started = False

    def __len__(self) -> int:
        return len(self.stages)

    @property
    def processes(self) -> list[asyncio.subprocess.Process]:
        """Processes started so far, in stage order."""
        return list(self._procs)

    # -- Start -----------------------------------------------------------------

    async def start(self) -> None:
        """Start every stage in order.

        Raises ``CommandStartError`` (with ``index`` set) after rolling back
        the stages that had already started.
        """
        if self._started:
            msg = "pipeline already started"
            raise PipexecError(msg)
        self._started = True

        stderr = ConcurrentWriter(binary_sink(self.stderr))
        stdout = binary_sink(self.stdout)
        popen_stdin, stdin_source = stdin_argument(self.stdin)
        last = len(self.stages) - 1

        next_stdin: Any = popen_stdin
        # pipe ends the parent still has to close
        owned: set[int] = set()
        try:
            for i, stage in enumerate(self.stages):
                read_fd: int | None = None
                write_fd: int | None = None
                if i < last:
                    try:
                        read_fd, write_fd = os.pipe()
                    except OSError as e:
                        raise CommandStartError(stage.args, e.strerror or str(e), index=i) from e
                    owned.update((read_fd, write_fd))
                    stage_stdout: Any = write_fd
                else:
                    stage_stdout = asyncio.subprocess.PIPE if stdout is not None else asyncio.subprocess.DEVNULL

                try:
                    proc = await stage.spawn(stdin=next_stdin, stdout=stage_stdout, stderr=asyncio.subprocess.PIPE)
                except CommandStartError as e:
                    raise CommandStartError(stage.args, str(e.__cause__ or e), index=i) from e
                finally:
                    # The child holds its own copies now.
                    if write_fd is not None:
                        owned.discard(write_fd)
                        os.close(write_fd)
                    if i > 0:
                        owned.discard(next_stdin)
                        os.close(next_stdin)

                logger.debug("pipeline: started cmds[{}] pid={}", i, proc.pid)
                self._procs.append(proc)
                self._pumps.append(asyncio.ensure_future(copy_stream(proc.stderr, stderr)))
                if i == 0 and stdin_source is not None and proc.stdin is not None:
                    self._pumps.append(asyncio.ensure_future(feed(proc.stdin, stdin_source)))
                if i == last and stdout is not None:
                    self._pumps.append(asyncio.ensure_future(copy_stream(proc.stdout, stdout)))
                next_stdin = read_fd
        except BaseException:
            logger.debug("pipeline: start failed, rolling back {} started stage(s)", len(self._procs))
            for fd in owned:
                os.close(fd)
            await self._abort()
            raise

    # -- Wait ------------------------------------------------------------------

    async def wait(self, *, timeout: float | None = None, cancel_event: asyncio.Event | None = None) -> None:
        """Wait for every stage and every stream pump.

        Raises :class:`PipelineError` listing all stages that exited
        non-zero, or ``CommandCancelledError`` if ``timeout`` / ``cancel_event``
        fired first (all stages are killed in that case).
        """
        if not self._started:
            msg = "pipeline not started"
            raise PipexecError(msg)
        args = [arg for stage in self.stages for arg in stage.args]
        await supervise(self._wait_all(), args, timeout=timeout, cancel_event=cancel_event)

    async def _wait_all(self) -> None:
        try:
            returncodes = [await proc.wait() for proc in self._procs]
            await asyncio.gather(*self._pumps)
        except BaseException:
            await self._abort()
            raise

        errors = [
            StageError(i, stage.args, rc)
            for i, (stage, rc) in enumerate(zip(self.stages, returncodes, strict=True))
            if rc != 0
        ]
        if errors:
            logger.debug("pipeline: {} stage(s) failed", len(errors))
            raise PipelineError(errors)

    async def run(self, *, timeout: float | None = None, cancel_event: asyncio.Event | None = None) -> None:
        """``start`` then ``wait``."""
        await self.start()
        await self.wait(timeout=timeout, cancel_event=cancel_event)

    # -- Kill ------------------------------------------------------------------

    def kill(self) -> None:
        """Kill every started stage that is still running."""
        for proc in self._procs:
            kill_process(proc)

    async def _abort(self) -> None:
        self.kill()
        for pump in self._pumps:
            pump.cancel()
        await asyncio.gather(*self._pumps, return_exceptions=True)
        for proc in self._procs:
            await proc.wait()

    async def __aenter__(self) -> PipedCmd:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if any(proc.returncode is None for proc in self._procs):
            await self._abort()
