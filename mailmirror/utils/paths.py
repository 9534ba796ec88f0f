"""Centralized path definitions for the mailmirror application.

This module provides a single source of truth for all application paths.
The base directory can be relocated with the ``MAILMIRROR_HOME``
environment variable (used by tests and portable installs).
"""

import os
from pathlib import Path

# Base application directory
MAILMIRROR_DIR = Path(
    os.environ.get("MAILMIRROR_HOME", Path.home() / ".mailmirror")
).expanduser()

# Subdirectories
MIRROR_DIR = MAILMIRROR_DIR / "mirror"
LOGS_DIR = MAILMIRROR_DIR / "logs"

# Specific files
CONFIG_PATH = MAILMIRROR_DIR / "config.json"
