"""
Paths, logging setup, config load/save, safe_print.
"""

import os
import json
import sys
import logging
from pathlib import Path

from .constants import (
    DEFAULT_HEARTBEAT_PATH, DEFAULT_METRICS_PATH,
    HEARTBEAT_INTERVAL_SEC, METRICS_INTERVAL_SEC,
)


# ─── Paths ───────────────────────────────────────────────────────
# One config/log/buffer set per machine user.
_FOLDER_NAME = "FieldOpsTelemetry"


def _default_base_dir():
    override = os.environ.get("TELEMETRY_AGENT_HOME")
    if override:
        return Path(override)
    if sys.platform == "win32":
        return Path(os.environ.get("PROGRAMDATA", "C:\\ProgramData")) / _FOLDER_NAME
    return Path.home() / ".fieldops-telemetry"


BASE_DIR = _default_base_dir()

CONFIG_FILE = BASE_DIR / "config.json"
LOG_FILE = BASE_DIR / "telemetry.log"
OFFLINE_BUFFER_FILE = BASE_DIR / "pending_metrics.jsonl"

LOG_MAX_BYTES = 1_000_000
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"

log = logging.getLogger("telemetry")


# ─── Safe print (no crash when --noconsole) ──────────────────────

def safe_print(*args, **kwargs):
    try:
        print(*args, **kwargs)
    except Exception:
        pass


# ─── Logging ─────────────────────────────────────────────────────

def setup_logging(level=logging.INFO, log_file=None):
    """Attach file + console handlers to the agent logger (once)."""
    if log.handlers:
        return log

    log_file = Path(log_file) if log_file else LOG_FILE
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        # Truncate instead of rotating: old field laptops have small disks.
        if log_file.exists() and log_file.stat().st_size > LOG_MAX_BYTES:
            log_file.write_text("")
        file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
        file_handler.setFormatter(formatter)
        log.addHandler(file_handler)
    except OSError as e:
        safe_print(f"Log file unavailable ({e}); logging to console only")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    log.addHandler(console_handler)

    log.setLevel(level)
    log.propagate = False
    return log


# ─── Config Management ──────────────────────────────────────────

DEFAULTS = {
    "heartbeatPath": DEFAULT_HEARTBEAT_PATH,
    "metricsPath": DEFAULT_METRICS_PATH,
    "heartbeatIntervalSec": HEARTBEAT_INTERVAL_SEC,
    "metricsIntervalSec": METRICS_INTERVAL_SEC,
    "privacyExclusions": [],
}


def load_config(path=None):
    """Load config from disk, merged over DEFAULTS. Returns dict or None."""
    path = Path(path) if path else CONFIG_FILE
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, IOError):
        return None
    if not isinstance(data, dict):
        return None
    return {**DEFAULTS, **data}


def save_config(config, path=None):
    """Save config dict to disk."""
    path = Path(path) if path else CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)
    log.info("Config saved to %s", path)


def server_url(config, path_key):
    """Join serverUrl with one of the configured endpoint paths."""
    base = config["serverUrl"].rstrip("/")
    path = config.get(path_key) or DEFAULTS[path_key]
    return base + "/" + path.lstrip("/")
