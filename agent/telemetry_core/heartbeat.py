"""
HeartbeatReporter — periodic + edge-triggered presence reports.

Fail-stop, not fail-retry-forever:
  - 401/403           → stop now and call on_auth_error (host forces re-login)
  - 5 failures in a row → stop (circuit breaker)
  - anything less     → wait for the next tick or presence edge
"""

import asyncio
from importlib import metadata

from . import api
from .api import ApiResult
from .config import log
from .constants import HEARTBEAT_INTERVAL_SEC, MAX_CONSECUTIVE_FAILURES, API_TIMEOUT_HEARTBEAT
from .http_client import create_session
from .models import PresenceStatus
from .presence import PresenceStateMachine

DIST_NAME = "fieldops-telemetry-agent"


def resolve_app_version(configured=None):
    """Configured version → installed distribution version → "0.0.0"."""
    if configured:
        return str(configured)
    try:
        return metadata.version(DIST_NAME)
    except metadata.PackageNotFoundError:
        log.warning("App version unavailable — reporting 0.0.0")
        return "0.0.0"


class HeartbeatReporter:

    def __init__(
        self,
        url,
        session=None,
        lifecycle=None,
        interval=HEARTBEAT_INTERVAL_SEC,
        app_version=None,
        on_auth_error=None,
        on_status_changed=None,
        max_failures=MAX_CONSECUTIVE_FAILURES,
        timeout=API_TIMEOUT_HEARTBEAT,
    ):
        self._url = url
        self._session = session or create_session(retry=False)
        self._lifecycle = lifecycle
        self._interval = interval
        self._configured_version = app_version
        self._app_version = None
        self._on_auth_error = on_auth_error
        self._on_status_changed = on_status_changed
        self._max_failures = max_failures
        self._timeout = timeout

        self._presence = PresenceStateMachine(on_change=self._on_presence_changed)
        self._username = ""
        self._loop = None
        self._task = None
        self._subscription = None
        self._pending = set()
        self.consecutive_failures = 0

    # ── Properties ───────────────────────────────────────────

    @property
    def current_status(self) -> PresenceStatus:
        return self._presence.status

    @property
    def is_running(self) -> bool:
        return self._task is not None

    @property
    def app_version(self):
        return self._app_version

    @property
    def username(self):
        return self._username

    # ── Lifecycle ────────────────────────────────────────────

    def start(self, username):
        """Send one heartbeat now, then every interval. Needs a running loop."""
        self._username = username or ""
        if self._task is not None:
            log.debug("Heartbeat already running — identity updated to %s", self._username)
            return

        self._loop = asyncio.get_running_loop()
        if self._app_version is None:
            self._app_version = resolve_app_version(self._configured_version)
        if self._lifecycle is not None and self._subscription is None:
            self._subscription = self._lifecycle.subscribe(self._presence.handle)

        self.consecutive_failures = 0
        self._task = self._loop.create_task(self._run(), name="heartbeat")
        log.info(
            "Heartbeat started for %s (interval=%ss, v%s)",
            self._username, self._interval, self._app_version,
        )

    def stop(self):
        """Cancel the timer and the lifecycle subscription. Safe to call anytime."""
        task, self._task = self._task, None
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if task is not None:
            task.cancel()
            log.info("Heartbeat stopped")

    def set_status(self, status):
        """Manual presence override (online / away / offline)."""
        try:
            status = PresenceStatus(status)
        except ValueError:
            raise ValueError(f"invalid presence status: {status!r}") from None
        return self._presence.set(status)

    async def join_pending(self):
        """Wait for in-flight edge-triggered sends."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Internals ────────────────────────────────────────────

    async def _run(self):
        while True:
            await self._send()
            await asyncio.sleep(self._interval)

    def _on_presence_changed(self, status):
        if self._on_status_changed is not None:
            try:
                self._on_status_changed(status)
            except Exception as e:
                log.error("on_status_changed hook failed: %s", e)

        if not self.is_running:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is self._loop:
            self._spawn_edge(status)
        else:
            # Signal delivered from another thread
            self._loop.call_soon_threadsafe(self._spawn_edge, status)

    def _spawn_edge(self, status):
        task = self._loop.create_task(self._send(status), name="heartbeat-edge")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, status=None):
        """Report *status* (the edge value) or, on ticks, the current one."""
        if not self.is_running or not self._username:
            return
        status = status or self._presence.status
        try:
            result = await asyncio.to_thread(
                api.send_heartbeat,
                self._session, self._url, self._username,
                status.value, self._app_version, self._timeout,
            )
        except Exception as e:
            log.error("Heartbeat send error: %s", e, exc_info=True)
            result = ApiResult(ok=False, message=str(e))
        self._record(result)

    def _record(self, result):
        if not self.is_running:
            # Stopped while the request was in flight.
            return

        if result.ok:
            self.consecutive_failures = 0
            return

        self.consecutive_failures += 1

        if result.is_auth_error:
            log.error(
                "Heartbeat auth failure (HTTP %d) — stopping and requesting re-login",
                result.status_code,
            )
            self.stop()
            if self._on_auth_error is not None:
                try:
                    self._on_auth_error()
                except Exception as e:
                    log.error("on_auth_error hook failed: %s", e, exc_info=True)
            return

        if self.consecutive_failures >= self._max_failures:
            log.error(
                "Too many consecutive heartbeat failures (%d) — stopping",
                self.consecutive_failures,
            )
            self.stop()
            return

        log.info(
            "Heartbeat failure %d/%d — will retry on next tick",
            self.consecutive_failures, self._max_failures,
        )
