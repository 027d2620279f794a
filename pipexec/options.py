"""Per-run options for :meth:`pipexec.cmd.Cmd.run`."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RunOptions(BaseModel):
    """Options controlling a single run.

    Setting ``stdout_consumer`` or ``stderr_consumer`` (even to a no-op)
    switches the run to streaming mode: both streams are then scanned
    concurrently and the captured output becomes the tokens joined by
    ``separator``.  Without a consumer the output is captured verbatim.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    stdout_consumer: Callable[..., Any] | None = None
    stderr_consumer: Callable[..., Any] | None = None

    split: Callable[..., Any] | None = None
    """Split function for consumers; line splitting when unset."""

    separator: bytes = b"\n"
    """Joins tokens in the captured output and writers (streaming mode only)."""

    stdout_writer: Any = None
    """Extra sink receiving stdout alongside the captured buffer."""

    stderr_writer: Any = None
    """Extra sink receiving stderr alongside the captured buffer."""

    timeout: float | None = Field(default=None, gt=0)
    """Seconds before the process is killed and the run reported as cancelled."""

    cancel_event: asyncio.Event | None = None
    """Setting this event kills the process and cancels the run."""

    @property
    def streaming(self) -> bool:
        return bool({"stdout_consumer", "stderr_consumer"} & self.model_fields_set)
