# cashpoint/core/config.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Core ---
    DATABASE_URL: str = ""
    SECRET_KEY: str = "change-me"
    LOG_LEVEL: str = "INFO"

    # --- Auth / cookies ---
    ACCESS_TOKEN_MINUTES: int = 60 * 24
    COOKIE_NAME: str = "accessToken"
    COOKIE_SECURE: bool = True

    # --- Transfer OTP ---
    OTP_EXPIRY_SECONDS: int = 300
    OTP_MAX_ATTEMPTS: int = 3
    EXPOSE_DEV_OTP: bool = False  # development only, returns the code in the initiate response

    # --- Push channel (optional) ---
    BOT_TOKEN: str | None = None

    # --- Phone numbers ---
    DEFAULT_COUNTRY_CODE: str = "963"


settings = Settings()
