"""
Telemetry & Presence Agent — Desktop Agent
==========================================
Reports presence (online / away / offline) every 20 seconds and a device
health snapshot every 5 minutes to the configured server.

PRIVACY: programs listed under "privacyExclusions" in config.json never
appear in process lists, browser details or the foreground window fields.

Usage:
    python agent.py --server https://example.org --username jdoe
    python agent.py --once
"""

from telemetry_core.runner import run_with_auto_restart

if __name__ == "__main__":
    run_with_auto_restart()
