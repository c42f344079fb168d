from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


ORPHAN_POLICIES = ("exclude", "append")


def _env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    if v is None:
        return default
    v = v.strip()
    return v if v else default


def _env_int(key: str, default: int) -> int:
    v = _env_str(key)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    v = _env_str(key)
    if v is None:
        return default
    return v.lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class Settings:
    # Storage
    db_path: str
    drafts_dir: str
    db_timeout_seconds: int

    # Logging
    log_level: str
    log_json: bool

    # Deployment
    default_window_days: int

    # Scales
    rating_scale_max: int
    linear_scale_default_min: int
    linear_scale_default_max: int

    # Questions whose section no longer exists: "exclude" or "append"
    orphan_policy: str = "exclude"

    @staticmethod
    def from_env(load_env_file: bool = True) -> "Settings":
        # Read configuration from environment variables (optionally from .env).
        if load_env_file:
            load_dotenv()

        db_path = _env_str("FEEDBACK_DB_PATH", "data/feedback.db") or "data/feedback.db"
        drafts_dir = _env_str("FEEDBACK_DRAFTS_DIR", "drafts") or "drafts"

        Path(drafts_dir).mkdir(parents=True, exist_ok=True)
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        orphan_policy = (_env_str("FEEDBACK_ORPHAN_POLICY", "exclude") or "exclude").lower()
        if orphan_policy not in ORPHAN_POLICIES:
            orphan_policy = "exclude"

        return Settings(
            db_path=db_path,
            drafts_dir=drafts_dir,
            db_timeout_seconds=_env_int("FEEDBACK_DB_TIMEOUT_SECONDS", 30),

            log_level=_env_str("FEEDBACK_LOG_LEVEL", "INFO") or "INFO",
            log_json=_env_bool("FEEDBACK_LOG_JSON", True),

            default_window_days=_env_int("FEEDBACK_DEFAULT_WINDOW_DAYS", 30),

            rating_scale_max=_env_int("FEEDBACK_RATING_SCALE_MAX", 5),
            linear_scale_default_min=_env_int("FEEDBACK_LINEAR_SCALE_MIN", 1),
            linear_scale_default_max=_env_int("FEEDBACK_LINEAR_SCALE_MAX", 10),

            orphan_policy=orphan_policy,
        )
