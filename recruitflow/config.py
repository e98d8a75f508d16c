from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service configuration, read from the environment and an optional .env file."""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "RecruitFlow"
    log_level: str = "INFO"
    database_url: str = "sqlite:///recruitflow.db"
    cors_origins: str = "*"

    # Device-local preferences file used by the communication client
    preferences_path: Path = Path("./preferences.json")

    # Relay functions
    functions_base_url: str = "http://127.0.0.1:8000/functions"
    relay_timeout_sec: float = 30.0

    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    twilio_api_base: str = "https://api.twilio.com/2010-04-01"

    google_client_id: str = ""
    google_client_secret: str = ""
    google_refresh_token: str = ""
    google_token_url: str = "https://oauth2.googleapis.com/token"
    gmail_user: str = ""
    gmail_send_url: str = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"
    google_tasks_url: str = "https://tasks.googleapis.com/tasks/v1/lists/@default/tasks"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if value.upper() not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}")
        return value.upper()

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
