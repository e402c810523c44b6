from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from the project root (one level above server/)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Required API keys
    google_ai_api_key: str = ""

    # Generation
    gemini_model: str = "gemini-2.5-flash"
    max_output_tokens: int = 16384
    generation_timeout_seconds: float = 90.0
    translation_temperature: float = 0.3
    furigana_temperature: float = 0.1
    soramimi_temperature: float = 0.7
    default_soramimi_language: str = "zh-TW"

    # Lyrics catalog
    catalog_timeout_seconds: float = 10.0
    catalog_page_size: int = 20

    # App settings
    cors_origins: str = "http://localhost:5173"

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]


settings = Settings()
