from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


@pytest.fixture(scope="session")
def app():
    # Must be set before importing modules that read settings at import time.
    os.environ["ELEVENLABS_API_KEY"] = "test-key"
    os.environ["ELEVENLABS_AGENT_ID"] = "agent-123"
    os.environ.pop("PUBLIC_BASE_URL", None)

    import importlib

    for module_name in [
        "config.settings",
        "integrations.elevenlabs_client",
        "api.dependencies",
        "api.twilio_routes",
        "api.routes",
        "main",
    ]:
        sys.modules.pop(module_name, None)

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def settings_env(monkeypatch):
    """Clear the cached settings around a test that changes the environment."""

    from config.settings import get_settings

    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()
