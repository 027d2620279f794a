from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable
from typing import TextIO

import click

from pipexec.cmd import Cmd
from pipexec.env import Env
from pipexec.errors import (
    CommandCancelledError,
    CommandFailedError,
    CommandStartError,
    PipelineError,
    PrepareError,
)
from pipexec.log import setup_logging
from pipexec.pipe import PipedCmd
from pipexec.scan import Token
from pipexec.script import Script
from pipexec.settings import get_settings

EXIT_PREPARE = 127
EXIT_START = 126
EXIT_CANCELLED = 130

env_option = click.option(
    "-e",
    "--env",
    "env_entries",
    multiple=True,
    metavar="KEY=VALUE",
    help="Set a variable for the command (repeatable; later values may reference earlier ones).",
)
timeout_option = click.option(
    "--timeout", type=click.FloatRange(min=0, min_open=True), default=None, help="Kill after this many seconds."
)


def _build_env(entries: tuple[str, ...]) -> Env:
    env = Env.from_environ() if get_settings().inherit_environ else Env()
    for entry in entries:
        key, sep, value = entry.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {entry!r}", param_hint="-e")
        env.set(key, value)
    return env


def _status(returncode: int) -> int:
    """Shell-style exit status: signals map to 128+N."""
    return 128 - returncode if returncode < 0 else returncode


def _execute(work: Awaitable[object]) -> None:
    """Run ``work`` and turn pipexec errors into the process exit status."""
    try:
        asyncio.run(work)  # type: ignore[arg-type]
    except CommandFailedError as e:
        raise SystemExit(_status(e.returncode)) from e
    except PipelineError as e:
        click.echo(f"pipexec: {e}", err=True)
        raise SystemExit(_status(e.returncode)) from e
    except PrepareError as e:
        click.echo(f"pipexec: {e}", err=True)
        raise SystemExit(EXIT_PREPARE) from e
    except CommandStartError as e:
        click.echo(f"pipexec: {e}", err=True)
        raise SystemExit(EXIT_START) from e
    except CommandCancelledError as e:
        click.echo(f"pipexec: {e}", err=True)
        raise SystemExit(EXIT_CANCELLED) from e
    except KeyboardInterrupt as e:
        raise SystemExit(EXIT_CANCELLED) from e


@click.group()
def main() -> None:
    """pipexec - run external commands, pipelines and scripts."""
    setup_logging(get_settings().log_level)


@main.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@env_option
@click.option("-C", "--cwd", default=".", type=click.Path(file_okay=False), help="Working directory.")
@click.option("--stream", is_flag=True, default=False, help="Echo output line by line as it arrives.")
@click.option("--exec", "replace", is_flag=True, default=False, help="Replace pipexec with the command.")
@timeout_option
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
def run(
    env_entries: tuple[str, ...],
    cwd: str,
    stream: bool,
    replace: bool,
    timeout: float | None,
    command: tuple[str, ...],
) -> None:
    """Run COMMAND; arguments may reference variables as $NAME or ${NAME}."""
    cmd = Cmd(*command, cwd=cwd, env=_build_env(env_entries), stdin=sys.stdin)

    if replace:
        try:
            cmd.exec()
        except PrepareError as e:
            click.echo(f"pipexec: {e}", err=True)
            raise SystemExit(EXIT_PREPARE) from e
        except CommandStartError as e:
            click.echo(f"pipexec: {e}", err=True)
            raise SystemExit(EXIT_START) from e

    if stream:

        def on_stdout(token: Token) -> None:
            click.echo(token.text)

        def on_stderr(token: Token) -> None:
            click.echo(token.text, err=True)

        _execute(cmd.run(stdout_consumer=on_stdout, stderr_consumer=on_stderr, timeout=timeout))
    else:
        _execute(cmd.run(stdout_writer=sys.stdout, stderr_writer=sys.stderr, timeout=timeout))


@main.command()
@env_option
@click.option("-C", "--cwd", default=".", type=click.Path(file_okay=False), help="Working directory.")
@timeout_option
@click.argument("stages", nargs=-1, required=True)
def pipe(env_entries: tuple[str, ...], cwd: str, timeout: float | None, stages: tuple[str, ...]) -> None:
    """Run STAGES as a pipeline, each one through the configured shell.

    Example: pipexec pipe 'cat log.txt' 'grep ERROR' 'wc -l'
    """
    settings = get_settings()
    env = _build_env(env_entries)
    cmds = [Cmd(settings.shell, "-c", stage, cwd=cwd, env=env) for stage in stages]

    async def _run() -> None:
        # Stage construction prepares the commands, so it belongs inside the
        # error mapping as well.
        piped = PipedCmd(*cmds, stdin=sys.stdin, stdout=sys.stdout, stderr=sys.stderr)
        await piped.run(timeout=timeout)

    _execute(_run())


@main.command()
@env_option
@click.option("-C", "--cwd", default=".", type=click.Path(file_okay=False), help="Working directory.")
@timeout_option
@click.argument("file", type=click.File("r"))
def script(env_entries: tuple[str, ...], cwd: str, timeout: float | None, file: TextIO) -> None:
    """Expand FILE through the environment and run it with the configured shell."""
    settings = get_settings()
    s = Script(
        file.read(),
        settings.shell,
        *settings.shell_args,
        cwd=cwd,
        env=_build_env(env_entries),
        stdin=sys.stdin,
        keep_script_file=settings.keep_script_file,
        script_dir=settings.script_dir,
    )
    _execute(s.run(stdout_writer=sys.stdout, stderr_writer=sys.stderr, timeout=timeout))


@main.command()
@env_option
@click.argument("text", nargs=-1, required=True)
def expand(env_entries: tuple[str, ...], text: tuple[str, ...]) -> None:
    """Print each TEXT with its variable references expanded."""
    env = _build_env(env_entries)
    for t in text:
        click.echo(env.expand(t))


if __name__ == "__main__":
    main()
