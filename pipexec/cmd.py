"""Single external command: expand, spawn, capture or stream, report.

A :class:`Cmd` is a mutable description (argv template, working directory,
stdin, attached :class:`~pipexec.env.Env`).  Running it goes through three
steps:

1. **prepare** -- expand argv through the Env and resolve the program on
   PATH, producing a :class:`PreparedCmd`.  Nothing has started yet, so
   failures here are :class:`~pipexec.errors.PrepareError`.
2. **spawn** -- launch the process (``CommandStartError`` on failure).
3. **drain** -- either copy stdout/stderr verbatim into the result buffers,
   or, when a consumer is configured, scan both streams concurrently and
   hand each token to the consumer as it arrives.

The expanded argv is always reported back in :attr:`Result.expanded_args`.
"""

from __future__ import annotations

import asyncio
import contextlib
import io
import os
import shutil
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, NoReturn, TypeVar

from loguru import logger

from pipexec.env import Env
from pipexec.errors import (
    CommandCancelledError,
    CommandFailedError,
    CommandStartError,
    PrepareError,
    ProgramNotFoundError,
)
from pipexec.options import RunOptions
from pipexec.scan import TokenScanner
from pipexec.streams import MultiWriter, binary_sink, copy_stream, feed, stdin_argument

if TYPE_CHECKING:
    from pipexec.streams import Writer

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass
class Result:
    """Outcome of one run.  Never reused across runs."""

    expanded_args: list[str]
    """The argv that was actually executed, after expansion."""

    stdout: io.BytesIO = field(default_factory=io.BytesIO)
    stderr: io.BytesIO = field(default_factory=io.BytesIO)
    returncode: int | None = None

    def rewind(self) -> None:
        self.stdout.seek(0)
        self.stderr.seek(0)


# ---------------------------------------------------------------------------
# Prepared command
# ---------------------------------------------------------------------------


def look_path(name: str, env: Env) -> str:
    """Resolve ``name`` the way a shell would, using the Env's ``PATH``.

    Names containing a slash are returned as-is; whether they exist is
    decided when the process is started.
    """
    if os.sep in name:
        return name
    found = shutil.which(name, path=env.get("PATH", os.defpath))
    if found is None:
        raise ProgramNotFoundError(name)
    return found


def kill_process(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()


@dataclass
class PreparedCmd:
    """A fully expanded, not yet started process."""

    args: list[str]
    cwd: str | None = None
    env: dict[str, str] | None = None
    """Exact child environment; ``None`` inherits the current process env."""

    executable: str | None = None

    async def spawn(
        self,
        *,
        stdin: Any = None,
        stdout: Any = None,
        stderr: Any = None,
    ) -> asyncio.subprocess.Process:
        """Start the process with the given Popen-style stream arguments."""
        logger.debug("spawn {} (cwd={})", self.args, self.cwd)
        try:
            return await asyncio.create_subprocess_exec(
                *self.args,
                executable=self.executable,
                stdin=stdin,
                stdout=stdout,
                stderr=stderr,
                cwd=self.cwd,
                env=self.env,
            )
        except OSError as e:
            raise CommandStartError(self.args, e.strerror or str(e)) from e


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


async def supervise(
    work: Awaitable[T],
    args: Sequence[str],
    *,
    timeout: float | None = None,
    cancel_event: asyncio.Event | None = None,
) -> T:
    """Await ``work`` unless the timeout expires or ``cancel_event`` is set.

    On timeout / cancel, ``work`` is cancelled (it is responsible for killing
    and reaping its processes) and :class:`CommandCancelledError` is raised.
    Cancelling the caller's task cancels ``work`` the same way and
    re-raises ``asyncio.CancelledError``.
    """
    task = asyncio.ensure_future(work)
    waiters: set[asyncio.Future[Any]] = {task}
    cancel_waiter = None
    if cancel_event is not None:
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        if task in done:
            return task.result()
    except asyncio.CancelledError:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    if cancel_event is not None and cancel_event.is_set():
        raise CommandCancelledError(args, "context canceled")
    raise CommandCancelledError(args, "context deadline exceeded")


async def _communicate(
    proc: asyncio.subprocess.Process,
    stdin_source: object | None,
    pumps: Sequence[Awaitable[None]],
) -> int:
    """Run stdin feeding and output draining, then reap the process.

    Any failure (or cancellation) kills the process before propagating.
    """
    jobs = [asyncio.ensure_future(p) for p in pumps]
    if stdin_source is not None and proc.stdin is not None:
        jobs.append(asyncio.ensure_future(feed(proc.stdin, stdin_source)))
    try:
        await asyncio.gather(*jobs)
        return await proc.wait()
    except BaseException:
        for job in jobs:
            job.cancel()
        kill_process(proc)
        await asyncio.gather(*jobs, return_exceptions=True)
        await proc.wait()
        raise


# ---------------------------------------------------------------------------
# Cmd
# ---------------------------------------------------------------------------


class Cmd:
    """An external command.

    ``args`` holds the program name and its arguments as templates; they
    are expanded through ``env`` right before execution.  The child process
    receives exactly ``env`` -- merge ``Env.from_environ()`` to inherit the
    host environment.
    """

    def __init__(
        self,
        name: str,
        *args: str,
        cwd: str = ".",
        env: Env | None = None,
        stdin: Any = None,
        stdout: Writer | None = None,
        stderr: Writer | None = None,
    ) -> None:
        self.args: list[str] = [name, *args]
        self.cwd = cwd
        self.env = env if env is not None else Env()
        self.stdin = stdin
        self.stdout = stdout
        self.stderr = stderr

    def __repr__(self) -> str:
        return f"Cmd({self.args!r}, cwd={self.cwd!r})"

    # -- Preparation -----------------------------------------------------------

    def prepare(self) -> PreparedCmd:
        """Expand argv and env values; resolve the program.  Starts nothing."""
        args = self.env.expand_strings(self.args)
        if not args or not args[0]:
            msg = "empty command"
            raise PrepareError(msg)
        return PreparedCmd(
            args=args,
            cwd=self.cwd,
            env={key: self.env.expand(value) for key, value in self.env.items()},
            executable=look_path(args[0], self.env),
        )

    # -- Execution -------------------------------------------------------------

    async def run(self, options: RunOptions | None = None, **kwargs: Any) -> Result:
        """Run to completion and return the :class:`Result`.

        Options may be passed as a :class:`RunOptions` or as keyword
        arguments (``await cmd.run(stdout_consumer=print)``).

        Raises
        ------
        PrepareError:
            Nothing was started.
        CommandStartError:
            The process could not be launched.
        CommandFailedError:
            The process exited non-zero; ``err.result`` holds the output.
        ScanError:
            Reading one of the output streams failed.
        CommandCancelledError:
            ``timeout`` expired or ``cancel_event`` was set.
        """
        opts = options if options is not None else RunOptions(**kwargs)
        prepared = self.prepare()
        result = Result(expanded_args=list(prepared.args))

        if opts.cancel_event is not None and opts.cancel_event.is_set():
            raise CommandCancelledError(prepared.args)

        popen_stdin, stdin_source = stdin_argument(self.stdin)
        proc = await prepared.spawn(
            stdin=popen_stdin,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        stdout_sink = MultiWriter(result.stdout, binary_sink(self.stdout), binary_sink(opts.stdout_writer))
        stderr_sink = MultiWriter(result.stderr, binary_sink(self.stderr), binary_sink(opts.stderr_writer))

        if opts.streaming:
            pumps = [
                TokenScanner(
                    stdout_sink, proc.stdout, opts.split, opts.stdout_consumer, separator=opts.separator
                ).scan(),
                TokenScanner(
                    stderr_sink, proc.stderr, opts.split, opts.stderr_consumer, separator=opts.separator
                ).scan(),
            ]
        else:
            pumps = [copy_stream(proc.stdout, stdout_sink), copy_stream(proc.stderr, stderr_sink)]

        try:
            returncode = await supervise(
                _communicate(proc, stdin_source, pumps),
                prepared.args,
                timeout=opts.timeout,
                cancel_event=opts.cancel_event,
            )
        finally:
            if proc.returncode is None:
                kill_process(proc)
                await proc.wait()

        result.returncode = returncode
        result.rewind()
        logger.debug("{} exited with status {}", prepared.args, returncode)
        if returncode != 0:
            raise CommandFailedError(prepared.args, returncode, result)
        return result

    def exec(self) -> NoReturn:
        """Replace the current process image with this command.

        ``stdin`` is ignored: there is no parent left to relay it.  Only
        returns by raising.
        """
        prepared = self.prepare()
        try:
            os.chdir(self.cwd)
        except OSError as e:
            raise PrepareError(f"exec chdir {self.cwd}: {e.strerror or e}") from e
        logger.debug("exec {}", prepared.args)
        try:
            os.execve(prepared.executable or prepared.args[0], prepared.args, prepared.env or {})
        except OSError as e:
            raise CommandStartError(prepared.args, e.strerror or str(e)) from e
