"""Tests for PipedCmd: wiring, error aggregation, rollback and cancellation."""

from __future__ import annotations

import asyncio
import errno
import io
import os
import sys

import pytest

from pipexec.cmd import Cmd, PreparedCmd
from pipexec.errors import CommandCancelledError, CommandStartError, NoStagesError, PipelineError, PipexecError
from pipexec.pipe import PipedCmd


def _sh(script: str) -> Cmd:
    return Cmd("sh", "-c", script)


async def _run(*scripts: str, stdin: object = None) -> tuple[str, str]:
    stdout = io.BytesIO()
    stderr = io.BytesIO()
    pipe = PipedCmd(*[_sh(s) for s in scripts], stdin=stdin, stdout=stdout, stderr=stderr)
    await pipe.start()
    await pipe.wait()
    return stdout.getvalue().decode(), stderr.getvalue().decode()


def test_no_stages() -> None:
    with pytest.raises(NoStagesError, match="NoCmd"):
        PipedCmd()


def test_stages_are_prepared() -> None:
    pipe = PipedCmd(Cmd("echo", "$X"), Cmd("cat").prepare())
    assert len(pipe) == 2
    assert all(isinstance(s, PreparedCmd) for s in pipe.stages)
    assert pipe.stages[0].args == ["echo", "${X}"]


# ---------------------------------------------------------------------------
# Data flow
# ---------------------------------------------------------------------------


async def test_one_stage() -> None:
    stdout, stderr = await _run("grep msg", stdin=b"first\nmsg\nlast\n")
    assert stdout == "msg\n"
    assert stderr == ""


async def test_two_stages() -> None:
    stdout, _ = await _run("grep msg", "grep hello", stdin=b"first\nmsg\nmsg hello\nlast\n")
    assert stdout == "msg hello\n"


async def test_one_stage_without_stdin() -> None:
    stdout, stderr = await _run("echo first\necho>&2 second")
    assert stdout == "first\n"
    assert stderr == "second\n"


async def test_stderr_is_shared_between_stages() -> None:
    stdout, stderr = await _run("echo first\necho >&2 second\necho last", "echo >&2 third\ngrep last")
    assert stdout == "last\n"
    assert sorted(stderr.splitlines()) == ["second", "third"]


async def test_three_stages() -> None:
    stdout, _ = await _run("echo first\necho second\necho third\necho last", "cat -", "grep first")
    assert stdout == "first\n"


async def test_stdin_reader_and_discarded_stdout() -> None:
    pipe = PipedCmd(_sh("cat -"), _sh("wc -l"), stdin=io.BytesIO(b"a\nb\n"))
    await pipe.run()
    assert [p.returncode for p in pipe.processes] == [0, 0]


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


async def test_first_stage_fails() -> None:
    with pytest.raises(PipelineError, match=r"failed to wait cmds\[0\]") as exc_info:
        await _run("exit 1")
    assert exc_info.value.indexes == [0]
    assert exc_info.value.returncode == 1


async def test_second_stage_fails() -> None:
    with pytest.raises(PipelineError, match=r"failed to wait cmds\[1\]") as exc_info:
        await _run("echo first", "exit 1")
    assert 1 in exc_info.value.indexes
    assert exc_info.value.returncode == 1


async def test_all_failures_are_reported() -> None:
    with pytest.raises(PipelineError) as exc_info:
        await _run("cat >/dev/null; exit 2", "exit 3")
    assert exc_info.value.indexes == [0, 1]
    assert [e.returncode for e in exc_info.value.errors] == [2, 3]
    assert exc_info.value.returncode == 3


async def test_start_failure_rolls_back_started_stages() -> None:
    pipe = PipedCmd(Cmd("sleep", "10"), PreparedCmd(args=["/nonexistent/pipexec-stage"]))
    with pytest.raises(CommandStartError, match=r"failed to start cmds\[1\]") as exc_info:
        await pipe.start()
    assert exc_info.value.index == 1
    assert len(pipe.processes) == 1
    assert pipe.processes[0].returncode is not None


async def test_pipe_exhaustion_closes_parent_fds(monkeypatch: pytest.MonkeyPatch) -> None:
    real_pipe, real_close = os.pipe, os.close
    created: list[int] = []
    closed: set[int] = set()

    def from_pipeline() -> bool:
        return sys._getframe(2).f_globals.get("__name__") == "pipexec.pipe"

    def pipe() -> tuple[int, int]:
        if from_pipeline():
            if created:
                raise OSError(errno.EMFILE, "Too many open files")
            fds = real_pipe()
            created.extend(fds)
            return fds
        return real_pipe()

    def close(fd: int) -> None:
        if from_pipeline():
            closed.add(fd)
        real_close(fd)

    monkeypatch.setattr(os, "pipe", pipe)
    monkeypatch.setattr(os, "close", close)

    pipe_cmd = PipedCmd(Cmd("sleep", "10"), Cmd("cat"), Cmd("cat"))
    with pytest.raises(CommandStartError, match=r"Too many open files: failed to start cmds\[1\]") as exc_info:
        await pipe_cmd.start()
    assert exc_info.value.index == 1
    assert len(created) == 2
    assert set(created) <= closed
    assert pipe_cmd.processes[0].returncode is not None


async def test_wait_before_start() -> None:
    with pytest.raises(PipexecError, match="not started"):
        await PipedCmd(Cmd("true")).wait()


async def test_start_twice() -> None:
    pipe = PipedCmd(Cmd("true"))
    await pipe.start()
    with pytest.raises(PipexecError, match="already started"):
        await pipe.start()
    await pipe.wait()


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


async def test_timeout_kills_every_stage() -> None:
    pipe = PipedCmd(Cmd("sleep", "10"), Cmd("cat"), stdout=io.BytesIO())
    await pipe.start()
    with pytest.raises(CommandCancelledError, match="deadline exceeded"):
        await pipe.wait(timeout=0.2)
    assert all(p.returncode is not None for p in pipe.processes)


async def test_cancel_event_kills_every_stage() -> None:
    event = asyncio.Event()
    asyncio.get_running_loop().call_later(0.2, event.set)
    pipe = PipedCmd(Cmd("sleep", "10"), Cmd("sleep", "10"))
    with pytest.raises(CommandCancelledError, match="context canceled"):
        await pipe.run(cancel_event=event)
    assert all(p.returncode is not None for p in pipe.processes)


async def test_context_manager_reaps_on_exit() -> None:
    async with PipedCmd(Cmd("sleep", "10"), Cmd("cat")) as pipe:
        await pipe.start()
    assert all(p.returncode is not None for p in pipe.processes)


async def test_kill() -> None:
    pipe = PipedCmd(Cmd("sleep", "10"))
    await pipe.start()
    pipe.kill()
    with pytest.raises(PipelineError):
        await pipe.wait()
