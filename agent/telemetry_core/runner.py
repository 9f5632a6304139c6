"""
Entry point and auto-restart wrapper.
"""

import argparse
import asyncio
import json
import logging
import sys
import time

from .constants import AGENT_VERSION
from .config import DEFAULTS, log, safe_print, setup_logging, load_config, save_config
from . import http_client
from .app import AgentApp


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="telemetry-agent",
        description="Device telemetry and presence agent",
    )
    parser.add_argument("--server", help="Server base URL (saved to config)")
    parser.add_argument("--username", help="Reporting username (saved to config)")
    parser.add_argument("--config", help="Path to config.json")
    parser.add_argument("--once", action="store_true",
                        help="Collect one snapshot, print it as JSON and exit")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def resolve_config(args):
    """Load config and apply CLI overrides. Overrides are persisted."""
    config = load_config(args.config)
    changed = False
    if config is None:
        config = dict(DEFAULTS)
        changed = True

    for key, value in (("serverUrl", args.server), ("username", args.username)):
        if value and config.get(key) != value:
            config[key] = value
            changed = True

    if changed and config.get("serverUrl") and config.get("username"):
        save_config(config, args.config)
    return config


def main(argv=None, session=None):
    """Primary agent entry point."""
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    safe_print("Telemetry & Presence Agent v" + AGENT_VERSION)
    safe_print()

    config = resolve_config(args)
    if not config.get("serverUrl") or not config.get("username"):
        log.error("No server/username configured — run with --server URL --username NAME")
        sys.exit(1)

    log.info("Loaded config for %s (server: %s)", config["username"], config["serverUrl"])
    app = AgentApp(config, session=session)

    if args.once:
        snapshot = asyncio.run(app.snapshot())
        safe_print(json.dumps(snapshot.to_dict(), indent=2))
        return

    asyncio.run(app.run())


# ─── Auto-restart ────────────────────────────────────────────────

CRASH_WINDOW_SEC = 120        # A run this long is not part of a boot-loop
RAPID_CRASH_LIMIT = 10
RAPID_CRASH_PAUSE_SEC = 120


def restart_delay(crash_count):
    """Seconds to wait before restart number *crash_count* (1-based)."""
    if crash_count >= RAPID_CRASH_LIMIT:
        return RAPID_CRASH_PAUSE_SEC
    return min(10 * crash_count, 60)


def run_with_auto_restart(argv=None, sleep=time.sleep):
    """
    Keep the agent alive across crashes, with a growing pause between runs.
    SystemExit (bad configuration, --help) and Ctrl+C end the wrapper.
    """
    session = http_client.create_session()
    crashes = 0

    while True:
        started = time.monotonic()
        try:
            main(argv, session=session)
            return
        except KeyboardInterrupt:
            safe_print("\nAgent stopped by user.")
            return
        except SystemExit as e:
            if e.code not in (0, None):
                log.error("Agent exited with status %s", e.code)
            raise
        except Exception as e:
            uptime = time.monotonic() - started
            log.error("Agent crashed after %.0fs: %s", uptime, e, exc_info=True)
            crashes = 1 if uptime > CRASH_WINDOW_SEC else crashes + 1

        delay = restart_delay(crashes)
        if crashes >= RAPID_CRASH_LIMIT:
            log.warning("%d rapid crashes in a row — backing off %ds", crashes, delay)
        log.info("Restarting in %ds (crash %d)...", delay, crashes)
        sleep(delay)
        session = http_client.reset_session(session)
