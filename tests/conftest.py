from __future__ import annotations

from collections.abc import Iterator

import pytest

from pipexec.settings import PipexecSettings, get_settings


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep PIPEXEC_* variables from the host out of tests."""
    for name in PipexecSettings.model_fields:
        monkeypatch.delenv(f"PIPEXEC_{name.upper()}", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
