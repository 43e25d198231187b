# forswags/config.py
from __future__ import annotations

import os
from typing import Optional

from dotenv import find_dotenv, load_dotenv


def load_env() -> str:
    """Load .env once (called from main before anything reads settings)."""
    path = find_dotenv(usecwd=True)
    load_dotenv(path, override=False)
    return path


# Loaded on first import so DATABASE_URL and friends see the .env values.
ENV_PATH = load_env()


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return default
    v = v.strip()
    return v or default


def env_int(name: str, default: int) -> int:
    try:
        return int(env_str(name) or default)
    except ValueError:
        return default


def env_bool(name: str, default: bool = False) -> bool:
    v = env_str(name)
    if v is None:
        return default
    return v.lower() in ("1", "true", "yes", "on")


def app_base_url() -> str:
    """
    Used in email links.
    In production set APP_BASE_URL, e.g. https://app.forswags.com
    """
    base = (env_str("APP_BASE_URL") or "").rstrip("/")
    return base or "http://127.0.0.1:8000"


def stale_evaluation_hours() -> int:
    return env_int("STALE_EVALUATION_HOURS", 48)


def email_max_attempts() -> int:
    return max(1, env_int("EMAIL_MAX_ATTEMPTS", 3))


def tier_cache_ttl_seconds() -> int:
    return max(0, env_int("TIER_CACHE_TTL_SECONDS", 300))
