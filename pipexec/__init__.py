"""Run external commands, shell-free pipelines and scripts from asyncio.

Commands expand ``$NAME`` / ``${NAME}`` references through an attached
:class:`Env` and can stream their output token by token to callbacks.
"""

from loguru import logger

from pipexec.cmd import Cmd, PreparedCmd, Result
from pipexec.env import EXPAND_MAX_ATTEMPTS, Env
from pipexec.errors import (
    CommandCancelledError,
    CommandFailedError,
    CommandStartError,
    NoStagesError,
    PipelineError,
    PipexecError,
    PrepareError,
    ProgramNotFoundError,
    ScanError,
    StageError,
)
from pipexec.options import RunOptions
from pipexec.pipe import PipedCmd
from pipexec.scan import (
    DelimiterSplit,
    FinalToken,
    SplitFunc,
    Token,
    TokenScanner,
    scan_delim,
    scan_lines,
    scan_words,
)
from pipexec.script import Script
from pipexec.streams import ConcurrentWriter, NullBuffer
from pipexec.task import ExecutableTasks, Task, Tasks

# Silent by default; the CLI turns logging on via ``setup_logging``.
logger.disable("pipexec")

__all__ = [
    "EXPAND_MAX_ATTEMPTS",
    "Cmd",
    "CommandCancelledError",
    "CommandFailedError",
    "CommandStartError",
    "ConcurrentWriter",
    "DelimiterSplit",
    "Env",
    "ExecutableTasks",
    "FinalToken",
    "NoStagesError",
    "NullBuffer",
    "PipedCmd",
    "PipelineError",
    "PipexecError",
    "PrepareError",
    "PreparedCmd",
    "ProgramNotFoundError",
    "Result",
    "RunOptions",
    "ScanError",
    "Script",
    "SplitFunc",
    "StageError",
    "Task",
    "Tasks",
    "Token",
    "TokenScanner",
    "scan_delim",
    "scan_lines",
    "scan_words",
]
