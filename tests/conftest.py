"""
Test configuration.

We try to load pytest-asyncio so pytest recognizes asyncio markers. If the plugin
isn't available in the active interpreter, we warn but do not hard-fail.
"""

from __future__ import annotations

import importlib
import warnings

import pytest

try:
    importlib.import_module("pytest_asyncio")
except ImportError:
    warnings.warn(
        "pytest-asyncio is not installed in this interpreter; async tests may be limited.",
        RuntimeWarning,
        stacklevel=1,
    )
    pytest_plugins: list[str] = []
else:
    pytest_plugins = ["pytest_asyncio"]


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    """Keep a developer's .env and exported variables out of settings-based tests."""
    from spamguard.config import get_settings

    monkeypatch.chdir(tmp_path)
    for name in ("DATABASE_URL", "ALLOWED_CHAT_IDS", "CLASSIFIER_PROVIDER", "TELEGRAM_BOT_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
