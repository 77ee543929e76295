import os
from dataclasses import dataclass
from typing import Mapping


def normalize_database_url(url: str) -> str:
    if url.startswith("postgres://"):
        return "postgresql+psycopg://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://") :]
    return url


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw not in (None, "") else default
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    try:
        return float(raw) if raw not in (None, "") else default
    except (TypeError, ValueError):
        return default


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
    SQLALCHEMY_DATABASE_URI = normalize_database_url(
        os.getenv("DATABASE_URL", "sqlite:///dev.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv("SESSION_COOKIE_SAMESITE", "Lax")
    SESSION_COOKIE_SECURE = _env_flag("SESSION_COOKIE_SECURE")
    SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "mealimport_session")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    AI_PROVIDER = os.getenv("AI_PROVIDER", "gemini").strip().lower()
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    OPENAI_IMPORT_MODEL = os.getenv("OPENAI_IMPORT_MODEL", "gpt-4.1-mini")
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
    GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")

    AI_IMPORT_VIDEO_MAX_BYTES = _env_int("AI_IMPORT_VIDEO_MAX_BYTES", 18 * 1024 * 1024)
    AI_IMPORT_HTML_MAX_BYTES = _env_int("AI_IMPORT_HTML_MAX_BYTES", 800_000)
    AI_IMPORT_FETCH_TIMEOUT = _env_float("AI_IMPORT_FETCH_TIMEOUT", 12.0)
    AI_PROVIDER_TIMEOUT = _env_float("AI_PROVIDER_TIMEOUT", 45.0)
    AI_IMPORT_ALLOW_PRIVATE_URLS = _env_flag("AI_IMPORT_ALLOW_PRIVATE_URLS")

    VIDEO_RESOLVER_URL = os.getenv("VIDEO_RESOLVER_URL")
    VIDEO_RESOLVER_TOKEN = os.getenv("VIDEO_RESOLVER_TOKEN")
    INSTAGRAM_OEMBED_TOKEN = os.getenv("INSTAGRAM_OEMBED_TOKEN")

    AI_IMPORT_VIDEO_MONTHLY_LIMIT = _env_int("AI_IMPORT_VIDEO_MONTHLY_LIMIT", 20)
    AI_IMPORT_RATE_LIMIT_MAX = _env_int("AI_IMPORT_RATE_LIMIT_MAX", 6)
    AI_IMPORT_RATE_LIMIT_WINDOW_SECONDS = _env_int("AI_IMPORT_RATE_LIMIT_WINDOW_SECONDS", 60)


@dataclass(frozen=True)
class ImportSettings:
    """Pipeline knobs, detached from Flask so the importer runs anywhere."""

    ai_provider: str = "gemini"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4.1-mini"
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-1.5-flash"
    video_max_bytes: int = 18 * 1024 * 1024
    html_max_bytes: int = 800_000
    fetch_timeout: float = 12.0
    provider_timeout: float = 45.0
    allow_private_urls: bool = False
    video_resolver_url: str | None = None
    video_resolver_token: str | None = None
    instagram_oembed_token: str | None = None

    @classmethod
    def from_mapping(cls, config: Mapping) -> "ImportSettings":
        return cls(
            ai_provider=str(config.get("AI_PROVIDER") or "gemini").strip().lower(),
            openai_api_key=config.get("OPENAI_API_KEY"),
            openai_model=config.get("OPENAI_IMPORT_MODEL") or "gpt-4.1-mini",
            gemini_api_key=config.get("GEMINI_API_KEY"),
            gemini_model=config.get("GEMINI_MODEL") or "gemini-1.5-flash",
            video_max_bytes=int(config.get("AI_IMPORT_VIDEO_MAX_BYTES") or 18 * 1024 * 1024),
            html_max_bytes=int(config.get("AI_IMPORT_HTML_MAX_BYTES") or 800_000),
            fetch_timeout=float(config.get("AI_IMPORT_FETCH_TIMEOUT") or 12.0),
            provider_timeout=float(config.get("AI_PROVIDER_TIMEOUT") or 45.0),
            allow_private_urls=bool(config.get("AI_IMPORT_ALLOW_PRIVATE_URLS")),
            video_resolver_url=config.get("VIDEO_RESOLVER_URL") or None,
            video_resolver_token=config.get("VIDEO_RESOLVER_TOKEN") or None,
            instagram_oembed_token=config.get("INSTAGRAM_OEMBED_TOKEN") or None,
        )
