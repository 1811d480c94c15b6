from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dealdesk.errors import ConfigurationError

_DEFAULT_SIGNING_SECRET = "dev-signing-secret"


class Settings(BaseSettings):
    app_name: str = "DealDesk API"
    app_env: str = "development"
    # The browser client calls the functions from any origin, so credentials stay off.
    cors_origins: str = "*"
    cors_allow_credentials: bool = False
    log_level: str = "INFO"
    request_id_header: str = "X-Request-ID"

    auth_enabled: bool = False
    auth_jwt_secret: str = ""
    auth_jwt_audience: str = "authenticated"
    auth_jwt_issuer: str = ""

    database_url: str = "sqlite:///./dealdesk.db"

    storage_backend: str = "local"  # local|s3
    storage_root: str = "data/storage"
    storage_signing_secret: str = _DEFAULT_SIGNING_SECRET
    public_base_url: str = "http://localhost:8000"
    aws_region: str = "us-east-1"
    s3_bucket_prefix: str = ""
    inputs_bucket: str = "inputs-files"
    artifacts_bucket: str = "artifacts-files"
    artifact_signed_url_ttl_seconds: int = 31_536_000
    input_signed_url_ttl_seconds: int = 60
    max_upload_file_bytes: int = 10 * 1024 * 1024

    ai_gateway_url: str = "https://ai.gateway.lovable.dev/v1/chat/completions"
    ai_gateway_api_key: str = ""
    ai_model: str = "google/gemini-2.5-flash"
    ai_temperature: float = 0.3
    ai_timeout_seconds: float = 180.0

    dsp_output_format: str = "markdown"  # markdown|html
    dsp_min_corpus_chars: int = 100
    dsp_max_attempts: int = 2
    dsp_output_language: str = "Spanish"

    upload_webhook_url: str = ""
    artifact_webhook_url: str = ""
    webhook_timeout_seconds: float = 25.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_static_configuration(self) -> "Settings":
        backend = self.storage_backend.strip().lower()
        if backend not in {"local", "s3"}:
            raise ValueError(f"Unsupported STORAGE_BACKEND '{self.storage_backend}'. Use 'local' or 's3'.")
        output_format = self.dsp_output_format.strip().lower()
        if output_format not in {"markdown", "html"}:
            raise ValueError(f"Unsupported DSP_OUTPUT_FORMAT '{self.dsp_output_format}'. Use 'markdown' or 'html'.")
        if self.auth_enabled and not self.auth_jwt_secret.strip():
            raise ValueError("AUTH_ENABLED requires AUTH_JWT_SECRET.")
        if self.dsp_max_attempts < 1:
            raise ValueError("DSP_MAX_ATTEMPTS must be at least 1.")
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.app_env.strip().lower() in {"prod", "production"}


def validate_runtime_configuration(settings: Settings) -> None:
    """Fail fast on settings that only matter once real traffic is served."""

    if not settings.is_production:
        return

    missing: list[str] = []
    if not settings.ai_gateway_api_key.strip():
        missing.append("AI_GATEWAY_API_KEY")
    if settings.storage_signing_secret == _DEFAULT_SIGNING_SECRET and settings.storage_backend == "local":
        missing.append("STORAGE_SIGNING_SECRET")
    if not settings.auth_enabled:
        missing.append("AUTH_ENABLED")
    if missing:
        raise ConfigurationError(
            "Production configuration is incomplete: " + ", ".join(missing) + "."
        )


settings = Settings()
