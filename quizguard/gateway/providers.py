"""Quiz Providers: protocol-level handling for each AI backend.

Each provider turns a prompt into the backend's HTTP request, sends it and
returns validated quiz markdown. The generation flow is shared:

  breaker check → build prompt → configuration check → sign → POST
  → decode JSON → extract text → content safety → strip fences
  → quiz format validation → record success

Any failure after the breaker check records exactly one breaker failure and
is re-raised; breaker rejections themselves are not counted.

Backend-specific behaviours:
  - OpenAI: Responses API, reasoning effort "low" for reasoning models, store=false
  - Google: Gemini generateContent, x-goog-api-key header, prompt blocks reported
  - GWDG: OpenAI-compatible chat completions (academic cloud)
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from quizguard.core.config import settings
from quizguard.core.config_store import ConfigStore
from quizguard.core.exceptions import (
    ConfigurationError,
    QuizGuardError,
    SchemaError,
    TransportError,
    redact_secret,
)
from quizguard.core.logging import register_secret, request_logger
from quizguard.core.metrics import PROVIDER_LATENCY, PROVIDER_REQUESTS
from quizguard.gateway.circuit_breaker import CircuitBreaker
from quizguard.gateway.prompt_builder import build_prompt
from quizguard.gateway.request_signer import RequestSigner
from quizguard.gateway.response_validator import (
    WireFormat,
    extract_text,
    strip_code_fences,
    validate_content_safety,
    validate_markdown_quiz_format,
)
from quizguard.gateway.types import ServiceName

logger = logging.getLogger(__name__)

RESPONSE_VALIDATION_STAGE = "Response validation failed"
FORMAT_VALIDATION_STAGE = "Quiz format validation failed"


class BaseQuizProvider(ABC):
    """Base class for all quiz providers."""

    service: ServiceName
    wire_format: WireFormat
    label: str

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        circuit_breaker: CircuitBreaker,
        signer: RequestSigner | None = None,
        config_store: ConfigStore | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.circuit_breaker = circuit_breaker
        self.signer = signer or RequestSigner()
        self.config_store = config_store
        register_secret(api_key)

    # -- backend protocol --------------------------------------------------

    @abstractmethod
    def endpoint(self) -> str: ...

    @abstractmethod
    def build_payload(self, prompt: str) -> dict[str, Any]: ...

    @abstractmethod
    def auth_headers(self) -> dict[str, str]: ...

    def check_configuration(self) -> None:
        if not self.api_key:
            raise ConfigurationError(f"{self.label} API key is not configured")

    # -- shared flow -------------------------------------------------------

    async def generate(self, prompt: str, difficulty: str, question_count: int) -> str:
        """Generate and validate quiz markdown."""
        service = self.service.value
        self.circuit_breaker.check_availability(service)

        try:
            markdown = await self._generate(prompt, difficulty, question_count)
        except (Exception, asyncio.CancelledError) as exc:
            self.circuit_breaker.record_failure(service)
            PROVIDER_REQUESTS.labels(service=service, outcome="failure").inc()
            logger.warning("%s generation failed: %s", self.label, self._redact(str(exc)))
            raise

        self.circuit_breaker.record_success(service)
        PROVIDER_REQUESTS.labels(service=service, outcome="success").inc()
        return markdown

    async def _generate(self, prompt: str, difficulty: str, question_count: int) -> str:
        system_prompt = self.config_store.get("system_prompt") if self.config_store else None
        full_prompt = build_prompt(system_prompt, prompt, difficulty, question_count)

        self.check_configuration()

        payload = self.build_payload(full_prompt)
        metadata = self.signer.create_request_metadata(self.service.value)
        metadata.signature = self.signer.sign_request(
            self.service.value, payload, self.api_key, timestamp=metadata.timestamp
        )
        headers = {
            "Content-Type": "application/json",
            **self.auth_headers(),
            **self.signer.build_headers(metadata),
        }

        log = request_logger(logger, metadata.request_id, self.service.value)
        log.debug("Requesting %d question(s) from %s (model=%s)", question_count, self.label, self.model)

        data = await self._post(payload, headers)
        log.debug("%s response received", self.label)
        return self.parse_response(data)

    async def _post(self, payload: dict[str, Any], headers: dict[str, str]) -> Any:
        timeout = httpx.Timeout(settings.http_timeout, connect=settings.http_connect_timeout)
        start = time.monotonic()

        try:
            async with httpx.AsyncClient(timeout=timeout, verify=True) as client:
                resp = await client.post(self.endpoint(), json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise TransportError(f"{self.label} API call timed out after {settings.http_timeout:g}s") from e
        except httpx.HTTPError as e:
            raise TransportError(self._redact(f"{self.label} API call failed: {e}")) from e
        finally:
            PROVIDER_LATENCY.labels(service=self.service.value).observe(time.monotonic() - start)

        if not resp.is_success:
            message = self._redact(_provider_error_message(resp))
            raise TransportError(
                f"{self.label} API error (HTTP {resp.status_code}): {message}",
                status_code=resp.status_code,
            )

        try:
            return resp.json()
        except ValueError as e:
            raise SchemaError(
                f"Invalid JSON response from {self.label} API", stage=RESPONSE_VALIDATION_STAGE
            ) from e

    def parse_response(self, data: Any) -> str:
        """Decoded response → validated quiz markdown."""
        try:
            text = extract_text(self.wire_format, data)
            validate_content_safety(text)
        except QuizGuardError as e:
            e.stage = RESPONSE_VALIDATION_STAGE
            raise

        markdown = strip_code_fences(text)

        try:
            validate_markdown_quiz_format(markdown)
        except QuizGuardError as e:
            e.stage = FORMAT_VALIDATION_STAGE
            raise

        return markdown

    def _redact(self, text: str) -> str:
        return redact_secret(text, self.api_key)


def _provider_error_message(resp: httpx.Response) -> str:
    """error.message from the body, else "Unknown error"."""
    try:
        data = resp.json()
    except ValueError:
        return "Unknown error"
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and isinstance(error.get("message"), str) and error["message"]:
        return error["message"]
    return "Unknown error"


# ---------------------------------------------------------------------------
# OpenAI Provider (Responses API)
# ---------------------------------------------------------------------------

# Reasoning models accept a reasoning effort; others reject the field
_REASONING_MODEL_PREFIXES = ("gpt-5", "o1", "o3", "o4")


def _is_reasoning_model(model: str) -> bool:
    return any(model.startswith(p) for p in _REASONING_MODEL_PREFIXES)


class OpenAIProvider(BaseQuizProvider):
    service = ServiceName.OPENAI
    wire_format = WireFormat.RESPONSES_OUTPUT
    label = "OpenAI"

    def endpoint(self) -> str:
        return settings.openai_api_url

    def build_payload(self, prompt: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "input": [{"role": "user", "content": prompt}],
            "store": False,
        }
        if _is_reasoning_model(self.model):
            payload["reasoning"] = {"effort": "low"}
        return payload

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}


# ---------------------------------------------------------------------------
# Google Provider (Gemini)
# ---------------------------------------------------------------------------


class GoogleProvider(BaseQuizProvider):
    service = ServiceName.GOOGLE
    wire_format = WireFormat.GEMINI_CANDIDATES
    label = "Google AI"

    def endpoint(self) -> str:
        return settings.google_api_url_template.format(model=self.model)

    def build_payload(self, prompt: str) -> dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": 0.7},
        }

    def auth_headers(self) -> dict[str, str]:
        # Key travels in a header, never in the URL
        return {"x-goog-api-key": self.api_key}


# ---------------------------------------------------------------------------
# GWDG Provider (chat completions)
# ---------------------------------------------------------------------------


class GWDGProvider(BaseQuizProvider):
    service = ServiceName.GWDG
    wire_format = WireFormat.CHAT_CHOICES
    label = "GWDG"

    def endpoint(self) -> str:
        return settings.gwdg_api_url

    def check_configuration(self) -> None:
        if not self.api_key or not self.model:
            raise ConfigurationError("GWDG configuration is incomplete")

    def build_payload(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": 0.7,
        }

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

PROVIDER_REGISTRY: dict[ServiceName, type[BaseQuizProvider]] = {
    ServiceName.OPENAI: OpenAIProvider,
    ServiceName.GOOGLE: GoogleProvider,
    ServiceName.GWDG: GWDGProvider,
}


def get_provider(service: ServiceName | str, api_key: str, model: str, **kwargs) -> BaseQuizProvider:
    """Factory: get the appropriate provider for a service."""
    try:
        cls = PROVIDER_REGISTRY[ServiceName(service)]
    except (KeyError, ValueError):
        raise ConfigurationError(f"No provider registered for service: {service}") from None
    return cls(api_key, model, **kwargs)
