import sys
import os
from pathlib import Path

import pytest

# Ensure project root is on sys.path for `import soulaware.*`
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Default: deterministic offline provider unless a test opts in
os.environ.setdefault("AI_PROVIDER", "mock")


@pytest.fixture
def v2_engine(monkeypatch: pytest.MonkeyPatch):
    """Route every guest to the adaptive engine."""
    monkeypatch.setenv("CHAT_ENGINE", "v2")
    monkeypatch.setenv("CHAT_V2_PERCENT", "100")


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch):
    from fastapi.testclient import TestClient
    from soulaware.main import app

    monkeypatch.setenv("AI_PROVIDER", "mock")
    with TestClient(app) as c:
        yield c
