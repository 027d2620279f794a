"""Exception hierarchy for pipexec.

Failures are split by the phase in which they happen so callers can branch
on them:

- **prepare**: nothing was started (empty argv, program not on PATH, empty pipeline)
- **start**: the OS refused to launch the process image
- **run**: the process started but exited non-zero, or a stream read failed
- **cancel**: the caller asked to stop (cancel event or timeout)

Variable expansion never raises.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class PipexecError(Exception):
    """Base class for every error raised by pipexec."""


# ---------------------------------------------------------------------------
# Preparation
# ---------------------------------------------------------------------------


class PrepareError(PipexecError):
    """A command could not be prepared; no process was started."""


class NoStagesError(PrepareError):
    """A pipeline was constructed without any stage."""

    def __init__(self) -> None:
        super().__init__("NoCmd: a pipeline needs at least one command")


class ProgramNotFoundError(PrepareError):
    """The program name could not be resolved on PATH."""

    def __init__(self, program: str) -> None:
        self.program = program
        super().__init__(f"exec look path {program}: executable file not found")


# ---------------------------------------------------------------------------
# Start / run
# ---------------------------------------------------------------------------


class CommandStartError(PipexecError):
    """The process image could not be launched."""

    def __init__(self, args: Sequence[str], reason: str, index: int | None = None) -> None:
        self.args_list = list(args)
        self.index = index
        """Stage index when the command was part of a pipeline."""
        if index is not None:
            reason = f"{reason}: failed to start cmds[{index}]"
        super().__init__(f"command start {self.args_list!r}: {reason}")


class CommandFailedError(PipexecError):
    """The process ran and exited with a non-zero status."""

    def __init__(self, args: Sequence[str], returncode: int, result: Any = None) -> None:
        self.args_list = list(args)
        self.returncode = returncode
        self.result = result
        """The partially filled ``Result`` (captured output up to exit)."""
        super().__init__(f"command run {self.args_list!r}: exit status {returncode}")


class ScanError(PipexecError):
    """Reading or splitting a stream failed."""


class CommandCancelledError(PipexecError):
    """The caller cancelled the run (cancel event set or timeout expired)."""

    def __init__(self, args: Sequence[str], reason: str = "context canceled") -> None:
        self.args_list = list(args)
        super().__init__(f"{reason}: {self.args_list!r}")


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------


class StageError(PipexecError):
    """A single pipeline stage failed to start, or exited non-zero."""

    def __init__(self, index: int, args: Sequence[str], returncode: int | None, action: str = "wait") -> None:
        self.index = index
        self.args_list = list(args)
        self.returncode = returncode
        detail = f"exit status {returncode}" if returncode is not None else "no exit status"
        super().__init__(f"{detail}: failed to {action} cmds[{index}]")


class PipelineError(PipexecError):
    """One or more stages of a pipeline failed.

    Every stage is always waited on, so ``errors`` lists all failing stages
    in stage order rather than only the first one.
    """

    def __init__(self, errors: Sequence[StageError]) -> None:
        self.errors = list(errors)
        super().__init__("\n".join(str(e) for e in self.errors))

    @property
    def indexes(self) -> list[int]:
        return [e.index for e in self.errors]

    @property
    def returncode(self) -> int:
        """Exit status of the last failing stage (1 when unknown)."""
        for err in reversed(self.errors):
            if err.returncode:
                return err.returncode
        return 1
