# config.py
# Environment-driven settings (.env supported via python-dotenv).
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv()

DEFAULT_SEARCH_ENDPOINT = "https://html.duckduckgo.com/html/"


class ConfigurationError(RuntimeError):
    pass


@dataclass(frozen=True)
class Settings:
    app_env: str = "development"
    fetch_timeout_ms: int = 20_000
    max_candidates: int = 5
    concurrency: int = 3
    search_endpoint: str = DEFAULT_SEARCH_ENDPOINT
    access_password: Optional[str] = None
    session_secret: Optional[str] = None
    session_minutes: int = 15
    recaptcha_secret: Optional[str] = None
    allow_origins: Tuple[str, ...] = ("*",)
    log_level: str = "INFO"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


def _int_env(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def parse_origins(raw: str) -> Tuple[str, ...]:
    # Set ALLOW_ORIGINS to a comma-separated list (e.g., "https://your.site,https://app.site").
    raw = (raw or "*").strip()
    if raw == "*":
        return ("*",)
    return tuple(o.strip() for o in raw.split(",") if o.strip())


def load_settings() -> Settings:
    """Read settings from the environment; raises ConfigurationError on bad or missing values."""
    app_env = (os.getenv("APP_ENV") or "development").strip().lower()
    password = os.getenv("ETF_ACCESS_PASSWORD") or None
    recaptcha = os.getenv("RECAPTCHA_SECRET_KEY") or None

    if app_env != "development":
        if not password:
            raise ConfigurationError("Missing ETF_ACCESS_PASSWORD.")
        if not recaptcha:
            raise ConfigurationError("Missing reCAPTCHA Secret.")

    endpoint = (os.getenv("ETF_SEARCH_ENDPOINT") or DEFAULT_SEARCH_ENDPOINT).strip()
    if not endpoint.startswith(("http://", "https://")):
        raise ConfigurationError(f"ETF_SEARCH_ENDPOINT must be an http(s) URL, got {endpoint!r}")

    return Settings(
        app_env=app_env,
        fetch_timeout_ms=_int_env("FETCH_TIMEOUT_MS", 20_000, minimum=1_000),
        max_candidates=_int_env("ETF_MAX_CANDIDATES", 5, minimum=0),
        concurrency=_int_env("ETF_CONCURRENCY", 3),
        search_endpoint=endpoint,
        access_password=password,
        session_secret=os.getenv("ETF_SESSION_SECRET") or password,
        session_minutes=_int_env("ETF_SESSION_MINUTES", 15),
        recaptcha_secret=recaptcha,
        allow_origins=parse_origins(os.getenv("ALLOW_ORIGINS", "*")),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    )
