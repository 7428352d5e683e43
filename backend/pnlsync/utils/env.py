"""Environment loading for import-time configuration.

`database.py` and `security.py` read DATABASE_URL and TOKEN_ENCRYPTION_KEY
when imported, before pydantic-settings is involved. Exported variables always
win; a `.env` file only fills the gaps.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)

# backend/.env, so the CLI worker finds it when started from the repo root
BACKEND_ENV_FILE = Path(__file__).resolve().parents[2] / ".env"


def require_env(name: str) -> str:
    """Return a mandatory environment variable or raise RuntimeError.

    WHY: A missing database URL or Fernet key should stop the process at
    startup, not on the first request that touches a token.
    """
    value = os.getenv(name)
    if not value:
        load_env_file()
        value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def load_env_file() -> Optional[Path]:
    """Load the first `.env` found (working directory, then backend/).

    Returns the path that was loaded, or None.
    """
    candidates: List[Path] = []
    found = find_dotenv(usecwd=True)
    if found:
        candidates.append(Path(found))
    candidates.append(BACKEND_ENV_FILE)

    for path in candidates:
        if path.is_file() and load_dotenv(path, override=False):
            logger.info("Loaded %s (existing variables were NOT overwritten)", path)
            return path

    logger.debug("No local .env file found or loaded")
    return None
