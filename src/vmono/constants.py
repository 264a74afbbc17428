import os
from pathlib import Path

"""Global constants and filesystem layout for vmono.

This module defines the names of the files a monorepo root owns, the
application identity, and the per-user state and configuration paths.
"""

# --- Identity ---
APP_NAME = "vmono"
"""str: The application name, also used as the logger name."""

# --- Monorepo Root Layout ---
CONFIG_FILENAME = ".virtual.monorepo.json"
"""str: The configuration document that marks a monorepo root."""

LINKS_DIRNAME = ".mono-links"
"""str: The directory under the root holding every master copy."""

LOCK_FILENAME = ".mono.lockfile"
"""str: The cooperative lock side-file."""

GITIGNORE_FILENAME = ".gitignore"
"""str: The ignore-list at the monorepo root."""

LOCAL_SETTINGS_FILENAME = "vmono.toml"
"""str: Optional per-monorepo tool settings, read from the root."""

MASTER_COPY_SEPARATOR = "__"
"""str: Joins the source module name and the sanitized path of a master copy."""

META_INIT_MESSAGE = "Initialize virtual monorepo"
"""str: Commit message of the meta repository's first commit."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "vmono"
"""Path: The directory for runtime state data (logs)."""

LOG_FILE = STATE_DIR / "vmono.log"
"""Path: The rotating log file."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/vmono"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The global tool settings file."""
