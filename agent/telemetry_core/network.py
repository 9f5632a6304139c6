"""
Network utilities — local IP discovery and the offline metrics buffer.

Local IP: first non-loopback IPv4 address on an interface that is up.

Offline buffer: JSON-lines file holding metrics documents whose submit failed.
They are replayed oldest-first after the next successful submit.
"""

import json
import socket
import time

import psutil

from .config import log, OFFLINE_BUFFER_FILE
from .constants import UNKNOWN
from . import api

MAX_BUFFERED_REPORTS = 288     # One day of 5-minute snapshots


# ─── Local IP ────────────────────────────────────────────────────

def get_local_ip():
    try:
        stats = psutil.net_if_stats()
        for name, addrs in psutil.net_if_addrs().items():
            if name in stats and not stats[name].isup:
                continue
            for addr in addrs:
                if addr.family != socket.AF_INET:
                    continue
                if addr.address.startswith("127."):
                    continue
                return addr.address
    except (OSError, RuntimeError) as e:
        log.debug("Local IP lookup failed: %s", e)
    return UNKNOWN


# ─── Offline buffer (local persistence) ──────────────────────────

def _read_lines(path):
    try:
        return [l for l in path.read_text(encoding="utf-8").split("\n") if l.strip()]
    except OSError:
        return []


def buffer_report(document, path=None):
    """Save a failed metrics document to disk for later replay."""
    path = path or OFFLINE_BUFFER_FILE
    entry = {"ts": time.time(), "payload": document}
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = _read_lines(path) if path.exists() else []
        lines.append(json.dumps(entry))
        if len(lines) > MAX_BUFFERED_REPORTS:
            dropped = len(lines) - MAX_BUFFERED_REPORTS
            lines = lines[dropped:]
            log.warning("Offline buffer full — dropped %d oldest report(s)", dropped)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        log.info("Buffered metrics report (%d pending)", len(lines))
    except (OSError, TypeError, ValueError) as e:
        log.warning("Failed to buffer report: %s", e)


def has_buffered_reports(path=None):
    path = path or OFFLINE_BUFFER_FILE
    try:
        return path.exists() and path.stat().st_size > 0
    except OSError:
        return False


def flush_buffer(session, url, path=None):
    """
    Replay buffered reports in order. Returns (flushed, remaining).
    Stops at the first failure so order is preserved for the next attempt.
    """
    path = path or OFFLINE_BUFFER_FILE
    if not has_buffered_reports(path):
        return 0, 0

    lines = _read_lines(path)
    flushed = 0
    remaining = []

    for index, line in enumerate(lines):
        try:
            payload = json.loads(line)["payload"]
        except (ValueError, KeyError, TypeError):
            log.warning("Dropping corrupt buffered report")
            continue
        result = api.submit_metrics(session, url, payload)
        if not result.ok:
            remaining = lines[index:]
            break
        flushed += 1

    try:
        if remaining:
            path.write_text("\n".join(remaining) + "\n", encoding="utf-8")
        else:
            path.unlink(missing_ok=True)
    except OSError as e:
        log.warning("Failed to rewrite offline buffer: %s", e)

    if flushed:
        log.info("Flushed %d buffered reports (%d still pending)", flushed, len(remaining))
    return flushed, len(remaining)
