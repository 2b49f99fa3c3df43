import os
import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from politecrawl.utils.config_loader import ENV_ALIASES, Config


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep crawler settings from the host environment out of every test."""

    for key in [
        *ENV_ALIASES,
        *(name.upper() for name in Config.model_fields),
        "TIMEOUT_MS",
        "POLITECRAWL_CONFIG",
        "POLITECRAWL_ENV_FILE",
    ]:
        monkeypatch.delenv(key, raising=False)

    # no stray .env or config.yaml from the developer's checkout
    monkeypatch.setenv("POLITECRAWL_CONFIG", str(tmp_path / "missing-config.yaml"))
    monkeypatch.chdir(tmp_path)

    yield

    for key in list(os.environ.keys()):
        if key.startswith("TEST_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def anyio_backend():
    return "asyncio"


class MockResponse:
    def __init__(self, status_code: int, text: str = ""):
        self.status_code = status_code
        self.text = text


class MockClient:
    """Returns canned responses in order, repeating the last one."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = 0
        self.requested = []

    async def get(self, url, *_args, **_kwargs):
        self.requested.append(url)
        response = self.responses[min(self.calls, len(self.responses) - 1)]
        self.calls += 1
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def mock_client_factory():
    return MockClient


@pytest.fixture
def mock_response_factory():
    return MockResponse
