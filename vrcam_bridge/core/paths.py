"""Centralized path constants for the bridge."""

from __future__ import annotations

import os
from pathlib import Path

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
PROJECT_ROOT = PACKAGE_ROOT.parent

# Defaults shipped with the package
CONFIG_PATH = PACKAGE_ROOT / "config.txt"

# Per-user state (logs), overridable for read-only installs
_USER_STATE_ENV = os.environ.get("VRCAM_BRIDGE_STATE_DIR")
USER_STATE_DIR = Path(_USER_STATE_ENV).expanduser() if _USER_STATE_ENV else (Path.home() / ".vrcam_bridge")
LOGS_DIR = USER_STATE_DIR / "logs"
BRIDGE_LOG_FILE = LOGS_DIR / "bridge.log"


__all__ = [
    "BRIDGE_LOG_FILE",
    "CONFIG_PATH",
    "LOGS_DIR",
    "PACKAGE_ROOT",
    "PROJECT_ROOT",
    "USER_STATE_DIR",
]
