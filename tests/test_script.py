"""Tests for Script: materialization, expansion and cleanup."""

from __future__ import annotations

import io
import os
from pathlib import Path

import pytest

from pipexec.cmd import Cmd
from pipexec.env import Env
from pipexec.errors import CommandFailedError
from pipexec.scan import scan_words
from pipexec.script import Script


async def _stdout(script: Script) -> bytes:
    async def run(cmd: Cmd) -> bytes:
        result = await cmd.run()
        return result.stdout.read()

    return await script.runner(run)


def test_materialize_and_cleanup(tmp_path: Path) -> None:
    script = Script("echo hi", script_dir=str(tmp_path))
    path = script.materialize("echo hi\n")
    assert Path(path).parent == tmp_path
    assert Path(path).name.startswith("pipexec")
    assert Path(path).read_text() == "echo hi\n"
    assert os.access(path, os.X_OK)
    script.cleanup(path)
    assert not Path(path).exists()
    script.cleanup(path)


async def test_run_expands_content() -> None:
    script = Script("echo $v", env=Env({"v": "1"}))
    result = await script.run()
    assert result.stdout.read() == b"1\n"
    assert result.expanded_args[0] == "sh"


async def test_runner_removes_script_file(tmp_path: Path) -> None:
    script = Script("echo done", script_dir=str(tmp_path))
    seen: list[str] = []

    def grab(cmd: Cmd) -> None:
        seen.append(cmd.args[-1])
        assert Path(cmd.args[-1]).exists()

    await script.runner(grab)
    assert seen
    assert not Path(seen[0]).exists()


async def test_runner_removes_script_file_on_error(tmp_path: Path) -> None:
    script = Script("exit 4", script_dir=str(tmp_path))
    with pytest.raises(CommandFailedError):
        await script.run()
    assert list(tmp_path.iterdir()) == []


async def test_content_env_and_shell_changes_between_runs() -> None:
    script = Script("", "sh")
    for content, entries, want in [
        ("echo $v", ["v=1"], b"1\n"),
        ("echo $v", ["v=2"], b"2\n"),
        ("echo ${v}!", ["v=2"], b"2!\n"),
    ]:
        script.content = content
        script.env.merge(Env.from_list(entries))
        assert await _stdout(script) == want


async def test_keep_script_file_reuses_first_file(tmp_path: Path) -> None:
    script = Script("echo keep", keep_script_file=True, script_dir=str(tmp_path))
    assert await _stdout(script) == b"keep\n"
    script.content = "echo changed"
    assert await _stdout(script) == b"keep\n"
    assert len(list(tmp_path.iterdir())) == 1
    script.close()
    assert list(tmp_path.iterdir()) == []


async def test_shell_args_precede_script_file() -> None:
    script = Script("echo $0", "sh", "-e")
    result = await script.run()
    assert result.expanded_args[:2] == ["sh", "-e"]


async def test_runner_lets_caller_edit_command() -> None:
    content = "echo line1\necho ${line2}\necho ${append_env}\ncat -\necho line3 >&2\necho line4 >&2"
    script = Script(content, "sh")
    script.env.set("append_env", "append1")
    script.env.set("line2", "LINE2")
    script.env.set("append_env", "added:${append_env}")

    async def run(cmd: Cmd) -> tuple[bytes, bytes]:
        cmd.stdin = b"from stdin\n"
        result = await cmd.run()
        return result.stdout.read(), result.stderr.read()

    stdout, stderr = await script.runner(run)
    assert stdout == b"line1\nLINE2\nadded:append1\nfrom stdin\n"
    assert stderr == b"line3\nline4\n"


async def test_streaming_words_joined_by_space() -> None:
    content = "cat -\necho err1 1 >&2\necho err2 2 >&2"
    script = Script(content, stdin=b"line1 1\nline2 2\n")
    out_lines: list[str] = []
    err_lines: list[str] = []
    out_writer = io.BytesIO()
    result = await script.run(
        split=scan_words,
        separator=b" ",
        stdout_consumer=lambda t: out_lines.append(t.text),
        stderr_consumer=lambda t: err_lines.append(t.text),
        stdout_writer=out_writer,
    )
    assert out_lines == ["line1", "1", "line2", "2"]
    assert err_lines == ["err1", "1", "err2", "2"]
    assert result.stdout.read() == b"line1 1 line2 2"
    assert result.stderr.read() == b"err1 1 err2 2"
    assert out_writer.getvalue() == b"line1 1 line2 2"
