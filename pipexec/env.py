"""Environment variables with fixed-point ``$NAME`` / ``${NAME}`` expansion.

An :class:`Env` is a plain name -> value mapping that knows how to expand
references to its own entries.  Values may reference other variables, so
expansion is repeated until the text stops changing, bounded by
``EXPAND_MAX_ATTEMPTS`` passes so that circular references (``A=$B``,
``B=$A``) still terminate with a best-effort result.

Unknown variables are never an error.  They are written back in braced
form, so ``$MISSING`` and ``${MISSING}`` both come out as ``${MISSING}``.

Example::

    env = Env.from_list(["NAME=world"])
    env.set("GREETING", "hello $NAME")
    env.expand("${GREETING}!")   # -> "hello world!"

    env.set("NAME", "big ${NAME}")  # existing key: old value is captured
    env.expand("$NAME")            # -> "big world"
"""

from __future__ import annotations

import os
import re
from collections.abc import Iterable, Iterator, Mapping

EXPAND_MAX_ATTEMPTS = 10
"""Upper bound on substitution passes performed by :meth:`Env.expand`."""

_REFERENCE = re.compile(r"\$(?:\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}|(?P<bare>[A-Za-z_][A-Za-z0-9_]*))")


class Env(Mapping[str, str]):
    """A set of environment variables.

    Reading follows the ``Mapping`` protocol (``env["K"]``, ``env.get("K")``,
    ``"K" in env``).  Writes go through :meth:`set` and :meth:`merge` only,
    because assigning to an existing key expands the new value first.
    """

    def __init__(self, values: Mapping[str, str] | None = None) -> None:
        self._vars: dict[str, str] = {}
        if values:
            for key, value in values.items():
                self.set(key, value)

    # -- Construction ----------------------------------------------------------

    @classmethod
    def from_list(cls, entries: Iterable[str]) -> Env:
        """Build from ``KEY=VALUE`` strings; entries without ``=`` are skipped."""
        env = cls()
        for entry in entries:
            key, sep, value = entry.partition("=")
            if not sep or not key:
                continue
            env.set(key, value)
        return env

    @classmethod
    def from_environ(cls, environ: Mapping[str, str] | None = None) -> Env:
        """Snapshot the hosting process environment (or ``environ``)."""
        source = os.environ if environ is None else environ
        return cls.from_list(f"{k}={v}" for k, v in source.items())

    # -- Mapping protocol ------------------------------------------------------

    def __getitem__(self, key: str) -> str:
        return self._vars[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._vars)

    def __len__(self) -> int:
        return len(self._vars)

    def __repr__(self) -> str:
        return f"Env({self._vars!r})"

    # -- Mutation --------------------------------------------------------------

    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``.

        When ``key`` already exists the value is expanded against the current
        contents first, so ``env.set("PATH", "/opt/bin:$PATH")`` prepends to
        the old value instead of creating a self reference.
        """
        if key in self._vars:
            value = self.expand(value)
        self._vars[key] = value

    def merge(self, other: Mapping[str, str]) -> None:
        """Apply every entry of ``other`` via :meth:`set`; last write wins."""
        for key, value in other.items():
            self.set(key, value)

    def unset(self, key: str) -> None:
        self._vars.pop(key, None)

    def copy(self) -> Env:
        env = Env()
        env._vars = dict(self._vars)
        return env

    # -- Serialization ---------------------------------------------------------

    def into_list(self) -> list[str]:
        """Serialize as ``KEY=VALUE`` strings (order unspecified)."""
        return [f"{k}={v}" for k, v in self._vars.items()]

    def as_dict(self) -> dict[str, str]:
        return dict(self._vars)

    # -- Expansion -------------------------------------------------------------

    def _replace(self, match: re.Match[str]) -> str:
        name = match.group("braced") or match.group("bare")
        value = self._vars.get(name)
        if value is None:
            return f"${{{name}}}"
        return value

    def expand(self, target: str) -> str:
        """Substitute ``$NAME`` and ``${NAME}`` until a fixed point is reached."""
        for _ in range(EXPAND_MAX_ATTEMPTS):
            expanded = _REFERENCE.sub(self._replace, target)
            if expanded == target:
                break
            target = expanded
        return target

    def expand_strings(self, targets: Iterable[str]) -> list[str]:
        """Expand each element, preserving order and length."""
        return [self.expand(t) for t in targets]
