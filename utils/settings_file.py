"""
Persist operator-changed settings (tracked account, notification destination)
back into the .env file so they survive a restart.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values, set_key

logger = logging.getLogger(__name__)


def read_env_value(key: str, env_path: str = ".env") -> Optional[str]:
    """Current value from the process environment, falling back to the file."""
    value = os.environ.get(key)
    if value:
        return value
    if Path(env_path).exists():
        return dotenv_values(env_path).get(key) or None
    return None


def update_env_value(key: str, value: str, env_path: str = ".env") -> None:
    """Write KEY=value into the .env file (created if missing) and os.environ."""
    path = Path(env_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(exist_ok=True)

    set_key(str(path), key, value, quote_mode="never")
    os.environ[key] = value
    logger.info(f"Updated {key} in {path}")
