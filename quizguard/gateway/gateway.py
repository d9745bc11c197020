"""Quiz Gateway: orchestrator integrating all gateway components.

Main entry point for quiz generation on behalf of a caller session:
  1. Cooldown check (RateLimiter.record_quiz_generation)
  2. Concurrency slot held for the whole request
  3. Input validation (difficulty, question count)
  4. Prompt decoration (question type, additional context)
  5. API call quota (RateLimiter.record_api_call)
  6. Provider resolution from the config store
  7. Provider generation (circuit breaker, signing, validation)

Usage:
    gateway = QuizGateway(config_store)
    markdown = await gateway.generate_quiz(session_id, QuizRequest(prompt="Photosynthesis", model="gpt-5-mini"))
"""

from __future__ import annotations

import logging

from quizguard.core.config_store import ConfigStore
from quizguard.core.exceptions import ConfigurationError
from quizguard.gateway.circuit_breaker import CircuitBreaker
from quizguard.gateway.prompt_builder import (
    validate_difficulty,
    validate_question_count,
    with_context,
    with_question_type,
)
from quizguard.gateway.providers import BaseQuizProvider, get_provider
from quizguard.gateway.rate_limiter import RateLimiter
from quizguard.gateway.request_signer import RequestSigner
from quizguard.gateway.types import MODEL_REGISTRY, BreakerConfig, QuizRequest, RateLimitConfig, ServiceName

logger = logging.getLogger(__name__)

MODEL_NOT_AVAILABLE = "Selected AI model is not available or not configured"


class QuizGateway:
    """Main gateway orchestrator.

    Integrates:
      - CircuitBreaker: per-service failure detection and recovery
      - RateLimiter: per-session quotas, cooldown and concurrency
      - RequestSigner: HMAC signatures on outbound requests
      - Providers: backend-specific HTTP calls and response validation
    """

    def __init__(
        self,
        config_store: ConfigStore,
        circuit_breaker: CircuitBreaker | None = None,
        rate_limiter: RateLimiter | None = None,
        signer: RequestSigner | None = None,
    ):
        self.config_store = config_store
        self.circuit_breaker = circuit_breaker or CircuitBreaker(BreakerConfig.from_settings())
        self.rate_limiter = rate_limiter or RateLimiter(RateLimitConfig.from_settings())
        self.signer = signer or RequestSigner()

    def available_models(self) -> dict[str, str]:
        """Selectable models → service, in MODEL_REGISTRY order.

        A model is selectable when it is enabled, its service is switched on
        and the service has an API key.
        """
        enabled_models = self.config_store.get("enabled_models")
        if not isinstance(enabled_models, dict):
            return {}
        available_services = self.config_store.get("available_services")
        if not isinstance(available_services, dict):
            available_services = {}

        models: dict[str, str] = {}
        for model_id, service in MODEL_REGISTRY.items():
            if model_id not in enabled_models or not available_services.get(service.value):
                continue
            if self.config_store.get(f"{service.value}_api_key"):
                models[model_id] = service.value
        return models

    def resolve_provider(self, model: str) -> BaseQuizProvider:
        """Build the provider serving ``model``, or raise ConfigurationError."""
        enabled_models = self.config_store.get("enabled_models")
        if not model or not isinstance(enabled_models, dict) or model not in enabled_models:
            raise ConfigurationError(MODEL_NOT_AVAILABLE)

        try:
            service = ServiceName(enabled_models[model])
        except ValueError:
            logger.error("Model %s is mapped to unknown service %r", model, enabled_models[model])
            raise ConfigurationError(MODEL_NOT_AVAILABLE) from None

        available_services = self.config_store.get("available_services")
        if isinstance(available_services, dict) and not available_services.get(service.value):
            raise ConfigurationError(MODEL_NOT_AVAILABLE)

        api_key = self.config_store.get(f"{service.value}_api_key")
        if not api_key:
            raise ConfigurationError(MODEL_NOT_AVAILABLE)

        return get_provider(
            service,
            api_key,
            model,
            circuit_breaker=self.circuit_breaker,
            signer=self.signer,
            config_store=self.config_store,
        )

    async def generate_quiz(self, session_id: str, request: QuizRequest) -> str:
        """Generate quiz markdown for one session.

        Raises CooldownActive, ConcurrencyLimitExceeded, InputValidationError,
        QuotaExceeded, ConfigurationError or any provider error.
        """
        self.rate_limiter.record_quiz_generation(session_id)

        with self.rate_limiter.concurrent_slot(session_id):
            difficulty = validate_difficulty(request.difficulty)
            question_count = validate_question_count(request.question_count)

            prompt = with_question_type(request.prompt, request.question_type)
            prompt = with_context(prompt, request.context)

            self.rate_limiter.record_api_call(session_id)
            provider = self.resolve_provider(request.model)

            logger.info(
                "Generating %d %s question(s) via %s (%s)",
                question_count,
                difficulty.value,
                provider.service.value,
                provider.model,
            )
            return await provider.generate(prompt, difficulty.value, question_count)

    def record_file_processing(self, session_id: str) -> int:
        """Count a context-file extraction against the session quota."""
        return self.rate_limiter.record_file_processing(session_id)

    def get_status(self, session_id: str) -> dict:
        """Rate limits for the session plus circuit states for every service."""
        return {
            "rate_limits": self.rate_limiter.get_status(session_id),
            "circuits": self.circuit_breaker.get_status(),
        }
