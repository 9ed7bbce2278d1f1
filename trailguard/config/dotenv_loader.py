"""
Explicit dotenv loader for local runs.

- `ENVIRONMENT=prod` (the default): nothing is loaded, the process
  environment is authoritative.
- Otherwise: `.env` fills in unset variables, then `.env.local`
  overrides anything (BOT_TOKEN, CHAT_ID, SIGNER_URL for a dev bot).

Must not import `trailguard.config.config`; run.py calls this before
the config module reads the environment.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# (file name, override already-set variables)
DOTENV_FILES = ((".env", False), (".env.local", True))


def _is_prod_env() -> bool:
    return (os.getenv("ENVIRONMENT") or "prod").strip().lower() == "prod"


def load_dotenv_files(*, repo_root: Path | None = None) -> list[Path]:
    """Load the dotenv files that exist under repo_root. Returns the ones loaded."""
    if _is_prod_env():
        return []

    root = repo_root or Path(__file__).resolve().parent.parent.parent
    loaded = []
    for name, override in DOTENV_FILES:
        path = root / name
        if path.exists():
            load_dotenv(dotenv_path=path, override=override)
            loaded.append(path)
    return loaded
