"""
AgentApp — the asyncio host for the telemetry agent.

Owns one event loop's worth of work:
  _metrics_loop()    — collect → submit (or buffer) → flush backlog   (every 300s)
  HeartbeatReporter  — presence heartbeats                             (every 20s + edges)
  LifecycleHub       — host window/app signals → presence

Blocking HTTP runs in short-lived worker threads (asyncio.to_thread).
"""

import asyncio
import signal
import sys

from . import api, network
from .collector import MetricsCollector
from .config import log, safe_print, server_url
from .constants import AGENT_VERSION, METRICS_INTERVAL_SEC, HEARTBEAT_INTERVAL_SEC
from .heartbeat import HeartbeatReporter, resolve_app_version
from .http_client import create_session
from .presence import LifecycleHub


class AgentApp:

    def __init__(self, config, session=None, fast_session=None, hub=None, collector=None,
                 reporter=None, on_auth_error=None, buffer_path=None):
        self._config = config
        self._username = config.get("username") or ""
        self._session = session or create_session()
        # Heartbeat and public IP: no urllib3 retry, one server hit per call
        self._fast_session = fast_session or create_session(retry=False)
        self._metrics_url = server_url(config, "metricsPath")
        self._metrics_interval = config.get("metricsIntervalSec") or METRICS_INTERVAL_SEC
        self._buffer_path = buffer_path
        self._on_auth_error_hook = on_auth_error

        app_version = resolve_app_version(config.get("appVersion"))

        self.hub = hub or LifecycleHub()
        self.collector = collector or MetricsCollector(
            session=self._fast_session,
            app_version=app_version,
            privacy_exclusions=config.get("privacyExclusions") or (),
        )
        self.reporter = reporter or HeartbeatReporter(
            server_url(config, "heartbeatPath"),
            session=self._fast_session,
            lifecycle=self.hub,
            interval=config.get("heartbeatIntervalSec") or HEARTBEAT_INTERVAL_SEC,
            app_version=app_version,
            on_auth_error=self._on_auth_error,
        )

        self._stopped = None
        self._metrics_task = None

    # ─── Host passthroughs ───────────────────────────────────

    def set_screen(self, screen):
        self.collector.set_current_screen(screen)

    def set_focused(self, focused):
        self.collector.set_app_focused(focused)

    def emit(self, signal_name):
        self.hub.emit(signal_name)

    # ─── Main loop ───────────────────────────────────────────

    async def run(self):
        """Run until stop() (or cancellation). Cleans up on the way out."""
        self._stopped = asyncio.Event()
        loop = asyncio.get_running_loop()
        if sys.platform != "win32":
            loop.add_signal_handler(signal.SIGTERM, self.stop)

        self.reporter.start(self._username)
        self._metrics_task = loop.create_task(self._metrics_loop(), name="metrics")

        log.info(
            "v%s started (user=%s, hb=%ss, metrics=%ss)",
            AGENT_VERSION, self._username,
            self._config.get("heartbeatIntervalSec"), self._metrics_interval,
        )
        safe_print("Service running.\n")

        try:
            await self._stopped.wait()
        finally:
            await self._shutdown()
            if sys.platform != "win32":
                loop.remove_signal_handler(signal.SIGTERM)
            log.info("AgentApp shut down.")

    def stop(self):
        if self._stopped is not None:
            self._stopped.set()

    async def _shutdown(self):
        self.reporter.stop()
        task, self._metrics_task = self._metrics_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.reporter.join_pending()
        self.collector.cleanup()

    def _on_auth_error(self):
        log.error("Server rejected credentials for %s — stopping agent", self._username)
        if self._on_auth_error_hook is not None:
            self._on_auth_error_hook()
        self.stop()

    # ─── Metrics ─────────────────────────────────────────────

    async def _metrics_loop(self):
        while True:
            try:
                await self.submit_once()
            except Exception as e:
                log.error("_metrics_loop error: %s", e, exc_info=True)
            await asyncio.sleep(self._metrics_interval)

    async def snapshot(self):
        return await self.collector.collect(self._username)

    async def submit_once(self):
        """One collection cycle. Failed submits go to the offline buffer."""
        snapshot = await self.snapshot()
        document = snapshot.to_dict()
        document["action"] = "submit"
        document["username"] = self._username

        result = await asyncio.to_thread(
            api.submit_metrics, self._session, self._metrics_url, document,
        )
        if not result.ok:
            network.buffer_report(document, self._buffer_path)
            return result

        if network.has_buffered_reports(self._buffer_path):
            await asyncio.to_thread(
                network.flush_buffer, self._session, self._metrics_url, self._buffer_path,
            )
        return result
