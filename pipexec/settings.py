"""CLI configuration loaded from PIPEXEC_* environment variables."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class PipexecSettings(BaseSettings):
    """pipexec settings.

    All fields are read from environment variables with the ``PIPEXEC_``
    prefix; ``PIPEXEC_LOG_LEVEL=DEBUG`` maps to ``log_level``.  Only the CLI
    reads them.  Library objects (``Cmd``, ``Script``) take every value
    explicitly.
    """

    model_config = SettingsConfigDict(
        env_prefix="PIPEXEC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "WARNING"

    # -- Scripts ---------------------------------------------------------------
    shell: str = "sh"
    """Shell used by ``pipexec script`` and for each ``pipexec pipe`` stage."""

    shell_args: list[str] = []
    """Extra arguments placed between the shell and the script file."""

    script_dir: str | None = None
    """Directory for temporary script files (system temp dir when unset)."""

    keep_script_file: bool = False

    # -- Environment -----------------------------------------------------------
    inherit_environ: bool = True
    """Start commands from a copy of the CLI's own environment.

    When false, children see only the ``-e KEY=VALUE`` variables given on
    the command line.
    """


@lru_cache(maxsize=1)
def get_settings() -> PipexecSettings:
    """Return a cached settings instance.

    Call ``get_settings.cache_clear()`` in tests to force a re-read after
    overriding env vars.
    """
    return PipexecSettings()
