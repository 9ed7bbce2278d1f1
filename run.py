#!/usr/bin/env python3
"""
Entry point for trailguard.
Wraps trailguard/cli.py after loading dotenv files for local/dev use.
"""
from trailguard.config.dotenv_loader import load_dotenv_files

# In prod this is a no-op
load_dotenv_files()

from trailguard.cli import app  # noqa: E402

if __name__ == "__main__":
    app()
