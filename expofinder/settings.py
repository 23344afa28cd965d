"""
Runtime configuration, read from the environment (and a .env file if present)
"""
from dotenv import load_dotenv, find_dotenv

import os
from dataclasses import dataclass
from typing import Optional


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


@dataclass
class Settings:
    db_path: str = "data/expofinder.db"
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    llm_model: str = "gpt-4o"
    google_maps_api_key: Optional[str] = None

    # per-call timeouts (seconds)
    http_timeout: float = 20.0
    llm_timeout: float = 90.0
    places_timeout: float = 15.0

    # minimum seconds between consecutive venue indexing attempts
    index_interval: float = 2.0
    cooldown_hours: float = 24.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "Settings":
        if load_env_file:
            load_dotenv(find_dotenv(usecwd=True))   # find .env anywhere up the tree

        return cls(
            db_path=os.getenv("EXPOFINDER_DB", cls.db_path),
            # CHATITP_API_KEY is the key name used by older deployments
            openai_api_key=os.getenv("OPENAI_API_KEY") or os.getenv("CHATITP_API_KEY") or None,
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            llm_model=os.getenv("LLM_MODEL", cls.llm_model),
            google_maps_api_key=(os.getenv("GOOGLE_MAPS_API_KEY") or "").strip() or None,
            http_timeout=_env_float("HTTP_TIMEOUT", cls.http_timeout),
            llm_timeout=_env_float("LLM_TIMEOUT", cls.llm_timeout),
            places_timeout=_env_float("PLACES_TIMEOUT", cls.places_timeout),
            index_interval=_env_float("INDEX_INTERVAL", cls.index_interval),
            cooldown_hours=_env_float("COOLDOWN_HOURS", cls.cooldown_hours),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )
