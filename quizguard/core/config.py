from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

_PACKAGE_DIR = str(Path(__file__).resolve().parent.parent)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Installation identity (used for secret key derivation)
    installation_id: str = "default"
    install_path: str = _PACKAGE_DIR
    encryption_salt: str = ""  # explicit override, highest priority
    installation_secret: str = ""  # host-provided secret, e.g. the platform password salt

    # Config store
    config_store_path: str = "quizguard_config.json"

    # Circuit breaker
    breaker_failure_threshold: int = 5
    breaker_recovery_timeout: float = 60.0

    # Per-session rate limits
    api_calls_per_hour: int = 20
    file_processing_per_hour: int = 20
    rate_window_seconds: float = 3600.0
    generation_cooldown_seconds: float = 10.0
    max_concurrent_requests: int = 3

    # Request signing
    replay_window_seconds: float = 300.0

    # Transport
    http_connect_timeout: float = 30.0
    http_timeout: float = 180.0

    # Response validation
    max_response_chars: int = 100_000

    # Provider endpoints
    openai_api_url: str = "https://api.openai.com/v1/responses"
    google_api_url_template: str = "https://generativelanguage.googleapis.com/v1/models/{model}:generateContent"
    gwdg_api_url: str = "https://chat-ai.academiccloud.de/v1/chat/completions"

    # App
    app_env: str = "development"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable


settings = Settings()


def validate_settings() -> None:
    """Validate critical settings. Called from create_gateway() on startup."""
    errors: list[str] = []

    if settings.breaker_failure_threshold < 1:
        errors.append("BREAKER_FAILURE_THRESHOLD must be at least 1")
    if settings.breaker_recovery_timeout <= 0:
        errors.append("BREAKER_RECOVERY_TIMEOUT must be positive")

    for name in ("api_calls_per_hour", "file_processing_per_hour", "max_concurrent_requests"):
        if getattr(settings, name) < 1:
            errors.append(f"{name.upper()} must be at least 1")

    if settings.rate_window_seconds <= 0:
        errors.append("RATE_WINDOW_SECONDS must be positive")
    if settings.generation_cooldown_seconds < 0:
        errors.append("GENERATION_COOLDOWN_SECONDS must not be negative")
    if settings.replay_window_seconds <= 0:
        errors.append("REPLAY_WINDOW_SECONDS must be positive")
    if settings.http_connect_timeout <= 0 or settings.http_timeout <= 0:
        errors.append("HTTP_CONNECT_TIMEOUT and HTTP_TIMEOUT must be positive")

    if settings.app_env == "production":
        if not settings.encryption_salt and not settings.installation_secret:
            errors.append(
                "ENCRYPTION_SALT or INSTALLATION_SECRET must be set in production "
                "(the hostname-derived fallback changes when the host is renamed)"
            )

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
