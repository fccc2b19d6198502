from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass

from dotenv import load_dotenv


load_dotenv()


def _get_config_value(*keys: str, default: str = "") -> str:
    for key in keys:
        value = os.getenv(key, "").strip()
        if value:
            return value
    return default


def _pick_supabase_key() -> str:
    return (
        _get_config_value("SUPABASE_SERVICE_KEY", "SUPABASE_SERVICE_ROLE_KEY")
        or _get_config_value("SUPABASE_KEY")
        or _get_config_value("SUPABASE_ANON_KEY")
    )


def _to_int(raw: str, fallback: int) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return fallback


def _to_float(raw: str, fallback: float) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return fallback


@dataclass(frozen=True)
class Settings:
    app_env: str
    log_level: str
    persistence_backend: str
    supabase_url: str
    supabase_key: str
    groq_api_key: str
    groq_model: str
    groq_user_agent: str
    oracle_timeout_seconds: float
    body_max_chars: int

    def supabase_url_valid(self) -> bool:
        # Must be project URL, not postgres DSN.
        return bool(re.match(r"^https://[a-z0-9-]+\.supabase\.co$", self.supabase_url))

    def supabase_key_present(self) -> bool:
        return bool(self.supabase_key)

    def oracle_configured(self) -> bool:
        return bool(self.groq_api_key)


def load_settings() -> Settings:
    return Settings(
        app_env=_get_config_value("APP_ENV", default="dev"),
        log_level=_get_config_value("LOG_LEVEL", default="INFO").upper(),
        persistence_backend=_get_config_value("PERSISTENCE_BACKEND", default="auto").lower(),
        supabase_url=_get_config_value("SUPABASE_URL").rstrip("/"),
        supabase_key=_pick_supabase_key(),
        groq_api_key=_get_config_value("GROQ_API_KEY"),
        groq_model=_get_config_value("GROQ_MODEL", default="llama-3.1-70b-versatile"),
        groq_user_agent=_get_config_value("GROQ_USER_AGENT", default="quotecase/0.1"),
        oracle_timeout_seconds=_to_float(_get_config_value("ORACLE_TIMEOUT_SECONDS", default="30"), 30.0),
        body_max_chars=_to_int(_get_config_value("BODY_MAX_CHARS", default="4000"), 4000),
    )


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


settings = load_settings()
