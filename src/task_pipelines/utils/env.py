"""Environment helpers for resolving repository-local .env files and overrides."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_REPO_ROOT = Path(__file__).resolve().parents[3]

ENV_PREFIX = "TASK_PIPELINES_"


@lru_cache(maxsize=1)
def load_repo_dotenv() -> bool:
    """Load the .env file at the repository root once."""

    env_path = _REPO_ROOT / ".env"
    if not env_path.exists():
        return False
    load_dotenv(env_path, override=False)
    return True


def env_setting(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return ``TASK_PIPELINES_<NAME>`` from the environment, or ``default``."""

    load_repo_dotenv()
    value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
    if value is None or not value.strip():
        return default
    return value.strip()


__all__ = ["ENV_PREFIX", "env_setting", "load_repo_dotenv"]
