"""
StaticFactCache — host name, OS version and OS user, probed once per agent.

Best-effort, don't thrash: if the first probe fails the placeholders stick for
the rest of the process lifetime.
"""

import platform

from . import probe
from .config import log
from .constants import STATIC_PROBE_TIMEOUT_SEC, UNKNOWN


class StaticFactCache:

    def __init__(self):
        self.computer_name = UNKNOWN
        self.os_version = UNKNOWN
        self.os_user = UNKNOWN
        self.populated = False

    async def ensure_cached(self, executor):
        """Populate once via the static probe. Later calls are no-ops."""
        if self.populated:
            return
        self.populated = True

        raw = {}
        try:
            raw = await executor.run_query(probe.command(static=True), timeout=STATIC_PROBE_TIMEOUT_SEC)
        except Exception as e:
            log.warning("Static fact probe failed: %s", e)

        if not raw:
            log.warning("Static facts unavailable — using placeholders for this session")
            raw = {}

        self.computer_name = str(raw.get("computerName") or UNKNOWN).strip()
        self.os_version = str(raw.get("osVersion") or platform.system() or UNKNOWN).strip()
        self.os_user = str(raw.get("osUser") or UNKNOWN).strip()
        log.info(
            "Static facts: host=%s os=%s user=%s",
            self.computer_name, self.os_version, self.os_user,
        )
