from __future__ import annotations

import os

import pytest

from dualtreex import config as dx_config


@pytest.fixture(autouse=True)
def _isolated_runtime(monkeypatch: pytest.MonkeyPatch):
    for key in list(os.environ):
        if key.startswith("DUALTREEX_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("DUALTREEX_WORKERS", "4")
    dx_config.reset_runtime_context()
    yield
    dx_config.reset_runtime_context()
