# src/siidaa_admin/config.py

from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# .env is at the project root, two levels up from src/siidaa_admin/
CONFIG_FILE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT_DIR = CONFIG_FILE_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT_DIR / ".env"

if ENV_FILE_PATH.exists():
    load_dotenv(dotenv_path=ENV_FILE_PATH, override=True)
    print(f"SiidaaAdmin: Loaded .env file from: {ENV_FILE_PATH}")
else:
    print(f"SiidaaAdmin: .env file not found at {ENV_FILE_PATH}. Relying on environment variables.")


class Settings(BaseSettings):
    # === Remote backend ===
    API_BASE_URL: str = "http://13.60.30.188:8000"
    REQUEST_TIMEOUT: float = 30.0

    # === Environment ===
    # "production" raises the log store's minimum level to INFO
    APP_ENV: str = "development"

    # === Durable storage ===
    STORAGE_PATH: Path = Path(".siidaa_admin_storage.json")

    # === Diagnostic log store ===
    LOG_MAX_ENTRIES: int = 1000
    LOG_PERSIST_ENTRIES: int = 100
    LOG_STORAGE_KEY: str = "siidaa_admin_logs"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False
    )

    @property
    def IS_PRODUCTION(self) -> bool:
        return self.APP_ENV == "production"

    @field_validator("API_BASE_URL", mode='before')
    @classmethod
    def strip_trailing_slash(cls, v: Any) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("API_BASE_URL must be a non-empty URL string.")
        return v.strip().rstrip("/")

    @field_validator("APP_ENV", mode='before')
    @classmethod
    def normalize_env(cls, v: Any) -> str:
        if v is None:
            return "development"
        return str(v).strip().lower() or "development"

    @field_validator("LOG_MAX_ENTRIES", "LOG_PERSIST_ENTRIES")
    @classmethod
    def positive_capacity(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Log capacities must be positive.")
        return v


try:
    settings = Settings()
except Exception as e:
    print(f"SiidaaAdmin: Error instantiating Settings: {e}")
    raise
