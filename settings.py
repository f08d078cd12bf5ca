from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from logger import get_logger

log = get_logger("settings")

ROOT = Path(__file__).resolve().parent


@dataclass
class Settings:
    host: str = "0.0.0.0"
    port: int = 8000
    api_url: str = "http://localhost:8000"
    request_timeout: float = 10.0
    tick_seconds: float = 1.0
    allow_origins: List[str] = field(default_factory=lambda: ["*"])
    # bearer token -> user id, seeded into the in-memory identity store
    dev_tokens: Dict[str, str] = field(default_factory=dict)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        log.warning(f"{name}={raw!r} is not numeric; using {default}")
        return default


def _parse_dev_tokens(raw: str) -> Dict[str, str]:
    tokens: Dict[str, str] = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        token, sep, user_id = entry.partition(":")
        if not sep or not token or not user_id:
            log.warning(f"Ignoring malformed dev token entry '{entry}'")
            continue
        tokens[token.strip()] = user_id.strip()
    return tokens


def load_settings(env_file: Optional[Path] = None) -> Settings:
    load_dotenv(dotenv_path=env_file or ROOT / ".env")

    origins = [
        o.strip()
        for o in os.getenv("SCORETRACKER_ALLOW_ORIGINS", "*").split(",")
        if o.strip()
    ]

    return Settings(
        host=os.getenv("SCORETRACKER_HOST", "0.0.0.0"),
        port=int(_float_env("PORT", 8000)),
        api_url=os.getenv("SCORETRACKER_API_URL", "http://localhost:8000").rstrip("/"),
        request_timeout=_float_env("SCORETRACKER_REQUEST_TIMEOUT", 10.0),
        tick_seconds=_float_env("SCORETRACKER_TICK_SECONDS", 1.0),
        allow_origins=origins or ["*"],
        dev_tokens=_parse_dev_tokens(os.getenv("SCORETRACKER_DEV_TOKENS", "")),
    )
