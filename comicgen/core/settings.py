from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_url: str = Field(default="sqlite+pysqlite:///./comicgen.db", validation_alias="DATABASE_URL")
    db_auto_create: bool = Field(default=True, validation_alias="DB_AUTO_CREATE")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")
    otel_exporter_endpoint: str | None = Field(default=None, validation_alias="OTEL_EXPORTER_OTLP_ENDPOINT")

    app_name: str = Field(default="agent", validation_alias="APP_NAME")

    google_cloud_project: str | None = Field(default=None, validation_alias="GOOGLE_CLOUD_PROJECT")
    google_cloud_location: str = Field(default="us-central1", validation_alias="GOOGLE_CLOUD_LOCATION")

    gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
    gemini_agent_model: str = Field(default="gemini-flash-latest", validation_alias="GEMINI_AGENT_MODEL")
    gemini_text_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_TEXT_MODEL")
    gemini_image_model: str = Field(default="gemini-2.5-flash-image", validation_alias="GEMINI_IMAGE_MODEL")
    gemini_fallback_text_model: str | None = Field(
        default=None,
        validation_alias="GEMINI_FALLBACK_TEXT_MODEL",
    )
    # One attempt per call: a failed stage fails the turn rather than being retried.
    gemini_max_retries: int = Field(default=1, validation_alias="GEMINI_MAX_RETRIES")
    gemini_initial_backoff_seconds: float = Field(
        default=0.8,
        validation_alias="GEMINI_INITIAL_BACKOFF_SECONDS",
    )
    gemini_timeout_seconds: float = Field(default=60.0, validation_alias="GEMINI_TIMEOUT_SECONDS")
    gemini_circuit_breaker_threshold: int = Field(
        default=5,
        validation_alias="GEMINI_CIRCUIT_BREAKER_THRESHOLD",
    )
    gemini_circuit_breaker_timeout: int = Field(
        default=60,
        validation_alias="GEMINI_CIRCUIT_BREAKER_TIMEOUT",
    )

    sarvam_api_key: str | None = Field(default=None, validation_alias="SARVAM_API_KEY")
    tts_api_url: str = Field(default="https://api.sarvam.ai/text-to-speech", validation_alias="TTS_API_URL")
    tts_model: str = Field(default="bulbul:v2", validation_alias="TTS_MODEL")
    tts_timeout_seconds: float = Field(default=60.0, validation_alias="TTS_TIMEOUT_SECONDS")

    output_dir: str = Field(default="./output", validation_alias="OUTPUT_DIR")
    public_base_url: str = Field(default="http://localhost:8000", validation_alias="PUBLIC_BASE_URL")

    media_root: str = Field(default="./storage/media", validation_alias="MEDIA_ROOT")
    media_url_prefix: str = Field(default="/media", validation_alias="MEDIA_URL_PREFIX")
    gateway_public_url: str = Field(default="http://localhost:3000", validation_alias="GATEWAY_PUBLIC_URL")

    agent_backend_url: str = Field(default="http://localhost:8000", validation_alias="AGENT_BACKEND_URL")
    agent_backend_timeout_seconds: float = Field(
        default=600.0,
        validation_alias="AGENT_BACKEND_TIMEOUT_SECONDS",
    )

    cors_origins: list[str] = Field(
        default=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        validation_alias="CORS_ORIGINS",
    )

    @property
    def output_url_prefix(self) -> str:
        return "/output"


settings = Settings()
