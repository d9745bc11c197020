import logging

from quizguard.core.config import settings, validate_settings
from quizguard.core.config_store import ConfigStore, JsonFileConfigBackend
from quizguard.core.encryption import get_encryption_service
from quizguard.core.logging import setup_logging
from quizguard.core.sentry import init_sentry
from quizguard.gateway.gateway import QuizGateway
from quizguard.gateway.prompt_builder import DEFAULT_SYSTEM_PROMPT

logger = logging.getLogger(__name__)


def create_gateway(config_path: str | None = None) -> QuizGateway:
    """Wire logging, error tracking, the config store and the gateway.

    Plaintext provider keys found in the store are encrypted on the way up,
    and a store without a system prompt gets the default one.
    """
    setup_logging()
    validate_settings()
    init_sentry()

    encryption = get_encryption_service()
    store = ConfigStore(JsonFileConfigBackend(config_path or settings.config_store_path), encryption)

    migrated = encryption.migrate_api_keys(store)
    if migrated:
        logger.info("Migrated %d provider key(s) to encrypted storage", len(migrated))

    if not store.get("system_prompt"):
        store.set("system_prompt", DEFAULT_SYSTEM_PROMPT)
        store.save()
        logger.info("Stored default system prompt")

    logger.info("Quiz gateway ready (env=%s)", settings.app_env)
    return QuizGateway(store)
