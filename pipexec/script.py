"""Shell scripts run from a temporary file.

A :class:`Script` expands its ``content`` through its :class:`Env`, writes
it to a fresh executable file and runs ``shell *shell_args <file>``.  The
file is removed once the run finishes unless ``keep_script_file`` is set,
in which case the first materialized file is reused by every later run.
"""

from __future__ import annotations

import inspect
import os
import tempfile
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from loguru import logger

from pipexec.cmd import Cmd, Result
from pipexec.env import Env
from pipexec.options import RunOptions

T = TypeVar("T")

SCRIPT_FILE_PREFIX = "pipexec"


class Script:
    """An executable script: a block of shell source plus the shell to run it."""

    def __init__(
        self,
        content: str,
        shell: str = "sh",
        *shell_args: str,
        cwd: str = ".",
        env: Env | None = None,
        stdin: Any = None,
        keep_script_file: bool = False,
        script_dir: str | None = None,
    ) -> None:
        self.content = content
        self.shell: list[str] = [shell, *shell_args]
        self.cwd = cwd
        self.env = env if env is not None else Env()
        self.stdin = stdin
        self.keep_script_file = keep_script_file
        self.script_dir = script_dir
        self._kept_path: str | None = None

    def __repr__(self) -> str:
        return f"Script(shell={self.shell!r}, cwd={self.cwd!r})"

    # -- Script file -----------------------------------------------------------

    def materialize(self, content: str) -> str:
        """Write ``content`` to a new executable temp file and return its path."""
        fd, path = tempfile.mkstemp(prefix=SCRIPT_FILE_PREFIX, dir=self.script_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.chmod(path, 0o755)  # noqa: S103
        except BaseException:
            self.cleanup(path)
            raise
        logger.debug("script written to {}", path)
        return path

    def cleanup(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

    def _script_path(self) -> str:
        if self.keep_script_file:
            if self._kept_path is None:
                self._kept_path = self.materialize(self.env.expand(self.content))
            return self._kept_path
        return self.materialize(self.env.expand(self.content))

    def _command(self, path: str) -> Cmd:
        cmd = Cmd(self.shell[0], *self.shell[1:], path, cwd=self.cwd, stdin=self.stdin)
        cmd.env.merge(self.env)
        return cmd

    # -- Execution -------------------------------------------------------------

    async def runner(self, fn: Callable[[Cmd], Awaitable[T] | T]) -> T:
        """Materialize the script and pass the ready-to-run :class:`Cmd` to ``fn``.

        ``fn`` may be a plain function or a coroutine function; it may still
        edit the command (stdin, env) before running it.  The script file is
        removed afterwards unless it is being kept.
        """
        path = self._script_path()
        try:
            ret = fn(self._command(path))
            if inspect.isawaitable(ret):
                ret = await ret
            return ret  # type: ignore[return-value]
        finally:
            if not self.keep_script_file:
                self.cleanup(path)

    async def run(self, options: RunOptions | None = None, **kwargs: Any) -> Result:
        """Run the script; see :meth:`Cmd.run` for options and errors."""
        return await self.runner(lambda cmd: cmd.run(options, **kwargs))

    def close(self) -> None:
        """Remove a kept script file, if any."""
        if self._kept_path is not None:
            self.cleanup(self._kept_path)
            self._kept_path = None
