"""
MetricsCollector — one MetricsSnapshot per call, never raises.

Owns the per-agent state the snapshot depends on: the static fact cache,
the throughput baseline, the active-time accumulator, the current screen and
focus flag, and the "collecting" guard that keeps at most one probe in flight.
"""

import asyncio
import dataclasses
import time
from datetime import datetime, timezone

from . import api, network, probe
from .config import log
from .constants import PROBE_TIMEOUT_SEC, UNKNOWN, DEFAULT_SCREEN
from .derived import ActiveTimeAccumulator, Throughput, ThroughputCalculator
from .executor import BUSY, MetricQueryExecutor
from .facts import StaticFactCache
from .http_client import create_session
from .models import MetricsSnapshot, ProbeDocument


PRIVATE_TITLE = "[Private]"


def _program_key(name):
    key = str(name or "").strip().lower()
    if key.endswith(".exe"):
        key = key[:-4]
    return key


def matches_exclusion(name, exclusions):
    """Substring match either way, so "WhatsApp.exe" hides "whatsapp" and vice versa."""
    key = _program_key(name)
    if not key:
        return False
    return any(key in ex or ex in key for ex in exclusions)


def matches_title(title, exclusions):
    lowered = (title or "").lower()
    return any(ex in lowered for ex in exclusions)


def format_app_uptime(seconds):
    minutes = max(int(seconds), 0) // 60
    days, minutes = divmod(minutes, 1440)
    hours, minutes = divmod(minutes, 60)
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class MetricsCollector:

    def __init__(
        self,
        executor=None,
        session=None,
        app_version=UNKNOWN,
        privacy_exclusions=(),
        probe_command=None,
        monotonic=time.monotonic,
        now=datetime.now,
    ):
        self._executor = executor or MetricQueryExecutor(cwd=probe.IMPORT_ROOT)
        self._session = session or create_session(retry=False)
        self._probe_command = probe_command or probe.command()
        self._monotonic = monotonic
        self._now = now

        self.app_version = app_version
        self.privacy_exclusions = {
            key for key in (_program_key(n) for n in privacy_exclusions) if key
        }

        self.facts = StaticFactCache()
        self._throughput = ThroughputCalculator()
        self._active_time = ActiveTimeAccumulator()
        self._started = monotonic()
        self._collecting = False
        self._current_screen = DEFAULT_SCREEN
        self._app_focused = True

    # ── Host-supplied application state ──────────────────────

    def set_current_screen(self, screen):
        self._current_screen = screen or DEFAULT_SCREEN

    def set_app_focused(self, focused):
        self._app_focused = bool(focused)

    @property
    def collecting(self) -> bool:
        return self._collecting

    def app_uptime(self):
        return format_app_uptime(self._monotonic() - self._started)

    # ── Collection ───────────────────────────────────────────

    async def collect(self, username) -> MetricsSnapshot:
        if self._collecting:
            log.debug("Collection already in progress — returning cached/default values")
            return self._default_snapshot(username)

        self._collecting = True
        try:
            return await self._collect(username)
        except Exception as e:
            log.error("Metrics collection failed: %s", e, exc_info=True)
            return self._default_snapshot(username)
        finally:
            self._collecting = False

    async def _collect(self, username):
        await self.facts.ensure_cached(self._executor)

        local_ip, public_ip = await asyncio.gather(
            asyncio.to_thread(network.get_local_ip),
            asyncio.to_thread(api.fetch_public_ip, self._session),
        )

        raw = await self._executor.run_query(self._probe_command, timeout=PROBE_TIMEOUT_SEC)
        if raw is BUSY:
            log.warning("Probe executor busy — dynamic metrics default this cycle")
            raw = {}
        elif not raw:
            log.warning("Empty probe result — dynamic metrics default this cycle")
        doc = self._apply_privacy(ProbeDocument.from_raw(raw))

        # (0, 0) means the counters were not read; keep the old baseline.
        if doc.bytes_received or doc.bytes_sent:
            rates = self._throughput.update(doc.bytes_received, doc.bytes_sent, self._monotonic())
        else:
            rates = Throughput()

        active_today = self._active_time.update(self._app_focused, self._now())

        return MetricsSnapshot(
            computer_name=self.facts.computer_name,
            username=username,
            os_version=self.facts.os_version,
            os_user=self.facts.os_user,
            cpu_percent=doc.cpu_percent,
            memory_percent=doc.memory_percent,
            disk_percent=doc.disk_percent,
            disk_free_gb=doc.disk_free_gb,
            disk_total_gb=doc.disk_total_gb,
            gpu_percent=doc.gpu_percent,
            process_count=doc.process_count,
            battery_level=doc.battery_level,
            battery_charging=doc.battery_charging,
            computer_uptime=doc.computer_uptime,
            local_ip=local_ip,
            public_ip=public_ip,
            network_upload_mb_s=rates.upload,
            network_download_mb_s=rates.download,
            internet_status=doc.internet_status,
            ping_ms=doc.ping_ms,
            connection_type=doc.connection_type,
            wifi_name=doc.wifi_name,
            vpn_connected=doc.vpn_connected,
            app_version=self.app_version,
            app_uptime=self.app_uptime(),
            current_screen=self._current_screen,
            is_app_focused=self._app_focused,
            idle_seconds=doc.idle_seconds,
            active_window_title=doc.active_window_title,
            foreground_app=doc.foreground_app,
            top_processes=doc.top_processes,
            active_time_today_seconds=active_today,
            browsers=doc.browsers,
            browser_process_count=doc.browser_process_count,
            timestamp=datetime.now(timezone.utc),
        )

    def _apply_privacy(self, doc):
        """Drop excluded programs from every field that names a program."""
        excluded = self.privacy_exclusions
        if not excluded:
            return doc
        changes = {
            "top_processes": tuple(
                p for p in doc.top_processes if not matches_exclusion(p.name, excluded)
            ),
            "browsers": tuple(
                self._redact_browser(b) for b in doc.browsers
                if not matches_exclusion(b.name, excluded)
            ),
            "active_window_title": self._redact_title(doc.active_window_title),
        }
        if matches_exclusion(doc.foreground_app, excluded):
            changes["foreground_app"] = ""
            if doc.active_window_title:
                changes["active_window_title"] = PRIVATE_TITLE
        return dataclasses.replace(doc, **changes)

    def _redact_title(self, title):
        # Web apps show up only in browser titles ("WhatsApp Web - Chrome").
        if title and matches_title(title, self.privacy_exclusions):
            return PRIVATE_TITLE
        return title

    def _redact_browser(self, browser):
        titles = tuple(self._redact_title(t) for t in browser.window_titles)
        current = self._redact_title(browser.current_window)
        if titles == browser.window_titles and current == browser.current_window:
            return browser
        return dataclasses.replace(browser, window_titles=titles, current_window=current)

    def _default_snapshot(self, username):
        return MetricsSnapshot(
            computer_name=self.facts.computer_name,
            username=username,
            os_version=self.facts.os_version,
            os_user=self.facts.os_user,
            app_version=self.app_version,
            app_uptime=self.app_uptime(),
            current_screen=self._current_screen,
            is_app_focused=self._app_focused,
            active_time_today_seconds=self._active_time.seconds,
            timestamp=datetime.now(timezone.utc),
        )

    def cleanup(self):
        """Kill any outstanding probe process (call on shutdown)."""
        self._executor.cleanup()
