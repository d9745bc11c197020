from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from quizguard.core.config import settings

# Override settings for tests
settings.app_env = "development"
settings.log_json = False
settings.sentry_dsn = ""

from quizguard.core.config_store import ConfigStore, InMemoryConfigBackend  # noqa: E402
from quizguard.core.encryption import EncryptionService  # noqa: E402

VALID_QUIZ = (
    "What is 2 + 2?\n"
    "- [ ] 3\n"
    "- [x] 4\n"
    "- [ ] 5\n"
    "- [ ] 22\n"
    "\n"
    "Which are primary colours?\n"
    "- [x] Red\n"
    "- [x] Blue\n"
    "- [ ] Green\n"
    "- [ ] Purple"
)


class FakeClock:
    """Manually advanced clock for time-based behaviour."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def encryption() -> EncryptionService:
    return EncryptionService("test-install", salt_override="test-salt")


@pytest.fixture
def backend() -> InMemoryConfigBackend:
    return InMemoryConfigBackend()


@pytest.fixture
def store(backend, encryption) -> ConfigStore:
    return ConfigStore(backend, encryption)


def make_httpx_response(status_code: int, json_data=None, text: str = "") -> httpx.Response:
    """Create a proper httpx.Response with request set."""
    request = httpx.Request("POST", "https://api.example.test/v1")
    if json_data is not None:
        return httpx.Response(status_code, json=json_data, request=request)
    return httpx.Response(status_code, text=text, request=request)


def patch_async_client(response: httpx.Response | None = None, side_effect=None):
    """Patch httpx.AsyncClient used by the providers; returns (patcher, client mock)."""
    patcher = patch("quizguard.gateway.providers.httpx.AsyncClient")
    mock_client_cls = patcher.start()
    mock_client = AsyncMock()
    if side_effect is not None:
        mock_client.post.side_effect = side_effect
    else:
        mock_client.post.return_value = response
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    mock_client_cls.return_value = mock_client
    return patcher, mock_client


def openai_body(text: str = VALID_QUIZ) -> dict:
    return {
        "output": [
            {"type": "reasoning", "summary": []},
            {"type": "message", "content": [{"type": "output_text", "text": text}]},
        ]
    }


def gemini_body(text: str = VALID_QUIZ) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": "STOP"}]}


def chat_body(text: str = VALID_QUIZ) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}
