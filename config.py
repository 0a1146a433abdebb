import os
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

COOKIE_NAME = "token"
MAX_PRODUCT_IMAGES = 3
MIN_PASSWORD_LENGTH = 8
RESET_CODE_LENGTH = 6
RESET_CODE_TTL = timedelta(minutes=10)
RESET_CODE_MAX_ATTEMPTS = 5
TOKEN_TTL = timedelta(days=7)
REMEMBER_ME_TOKEN_TTL = timedelta(days=30)


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    jwt_secret: str = "change-me-in-production"
    database_url: Optional[str] = None
    database_name: str = "unimart"
    frontend_url: str = "http://localhost:5173"
    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None
    cloudinary_folder: str = "unimart"
    resend_api_key: Optional[str] = None
    mail_from: str = "Unimart <noreply@unimart.app>"
    keep_images_when_omitted: bool = True
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            environment=os.getenv("APP_ENV", "development").strip().lower(),
            jwt_secret=os.getenv("JWT_SECRET", "change-me-in-production"),
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME", "unimart"),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:5173"),
            cloudinary_cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
            cloudinary_api_key=os.getenv("CLOUDINARY_API_KEY"),
            cloudinary_api_secret=os.getenv("CLOUDINARY_API_SECRET"),
            cloudinary_folder=os.getenv("CLOUDINARY_FOLDER", "unimart"),
            resend_api_key=os.getenv("RESEND_API_KEY"),
            mail_from=os.getenv("MAIL_FROM", "Unimart <noreply@unimart.app>"),
            keep_images_when_omitted=_flag("KEEP_IMAGES_WHEN_OMITTED", True),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
