"""
Typed records: presence enums, the probe document schema, and MetricsSnapshot.

ProbeDocument is the only place raw probe JSON is interpreted. Every field has
a default and is coerced here, so a missing or malformed value never reaches
the collector as None-where-a-number-was-expected.
"""

import json
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum

from .constants import UNKNOWN, DEFAULT_SCREEN


class PresenceStatus(str, Enum):
    ONLINE = "online"
    AWAY = "away"
    OFFLINE = "offline"


class LifecycleSignal(str, Enum):
    RESUMED = "resumed"
    INACTIVE = "inactive"
    PAUSED = "paused"
    HIDDEN = "hidden"
    DETACHED = "detached"


# ─── Coercion helpers ────────────────────────────────────────────

def _as_float(value, default=0.0):
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_int(value, default=0):
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _as_opt_int(value):
    if value is None or value == "":
        return None
    return _as_int(value, default=None)


def _as_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return default


def _as_opt_bool(value):
    if value is None or value == "":
        return None
    return _as_bool(value)


def _as_str(value, default=""):
    if value is None:
        return default
    return str(value).strip()


def _as_list(value):
    """Accept a list, a single object, or a JSON-encoded list/object."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return []
    if isinstance(value, dict):
        return [value]
    if isinstance(value, list):
        return value
    return []


# ─── Nested records ──────────────────────────────────────────────

@dataclass(frozen=True)
class ProcessUsage:
    name: str
    cpu: float = 0.0
    memory_mb: float = 0.0

    def to_token(self):
        return f"{self.name}:{self.cpu:.1f}:{self.memory_mb:.0f}"

    @classmethod
    def parse_many(cls, raw):
        """Parse either a list of dicts or the legacy "name:cpu:mem,..." string."""
        result = []
        if isinstance(raw, str) and not raw.lstrip().startswith(("[", "{")):
            for token in raw.split(","):
                parts = token.strip().split(":")
                if not parts[0]:
                    continue
                result.append(cls(
                    name=parts[0],
                    cpu=_as_float(parts[1] if len(parts) > 1 else None),
                    memory_mb=_as_float(parts[2] if len(parts) > 2 else None),
                ))
            return result
        for item in _as_list(raw):
            if not isinstance(item, dict):
                continue
            name = _as_str(item.get("name"))
            if not name:
                continue
            result.append(cls(
                name=name,
                cpu=_as_float(item.get("cpu")),
                memory_mb=_as_float(item.get("memoryMb")),
            ))
        return result


@dataclass(frozen=True)
class BrowserInfo:
    name: str
    is_running: bool = False
    process_count: int = 0
    memory_mb: float = 0.0
    current_window: str | None = None
    window_titles: tuple[str, ...] = ()

    @classmethod
    def from_raw(cls, raw):
        titles = raw.get("windowTitles")
        if isinstance(titles, str):
            titles = [t for t in titles.split(";") if t.strip()]
        elif not isinstance(titles, list):
            titles = []
        titles = tuple(_as_str(t) for t in titles if t)
        count = _as_int(raw.get("processCount"))
        current = raw.get("currentWindow")
        return cls(
            name=_as_str(raw.get("name"), UNKNOWN) or UNKNOWN,
            is_running=_as_bool(raw.get("isRunning"), default=count > 0),
            process_count=count,
            memory_mb=_as_float(raw.get("memoryMb")),
            current_window=_as_str(current) if current else (titles[0] if titles else None),
            window_titles=titles,
        )

    def to_dict(self):
        return {
            "name": self.name,
            "isRunning": self.is_running,
            "processCount": self.process_count,
            "memoryMb": self.memory_mb,
            "currentWindow": self.current_window,
            "windowTitles": list(self.window_titles),
        }


# ─── Probe document ──────────────────────────────────────────────

@dataclass(frozen=True)
class ProbeDocument:
    """Dynamic facts from one probe run. See probe.py for the wire schema."""

    cpu_percent: float = 0.0
    memory_percent: float = 0.0
    disk_percent: float = 0.0
    disk_free_gb: float = 0.0
    disk_total_gb: float = 0.0
    computer_uptime: str = UNKNOWN
    bytes_received: int = 0
    bytes_sent: int = 0
    gpu_percent: float = 0.0
    process_count: int = 0
    battery_level: int | None = None
    battery_charging: bool | None = None
    idle_seconds: int = 0
    active_window_title: str = ""
    foreground_app: str = ""
    top_processes: tuple[ProcessUsage, ...] = ()
    browser_process_count: int = 0
    browsers: tuple[BrowserInfo, ...] = ()
    internet_status: str = "unknown"
    ping_ms: int | None = None
    connection_type: str = "unknown"
    wifi_name: str = ""
    vpn_connected: bool = False

    @classmethod
    def from_raw(cls, raw):
        if not isinstance(raw, dict) or not raw:
            return cls()
        battery_level = _as_opt_int(raw.get("batteryLevel"))
        return cls(
            cpu_percent=_as_float(raw.get("cpuUsage")),
            memory_percent=_as_float(raw.get("memoryUsage")),
            disk_percent=_as_float(raw.get("diskUsage")),
            disk_free_gb=_as_float(raw.get("diskFreeGb")),
            disk_total_gb=_as_float(raw.get("diskTotalGb")),
            computer_uptime=_as_str(raw.get("computerUptime"), UNKNOWN) or UNKNOWN,
            bytes_received=max(_as_int(raw.get("bytesReceived")), 0),
            bytes_sent=max(_as_int(raw.get("bytesSent")), 0),
            gpu_percent=_as_float(raw.get("gpuUsage")),
            process_count=_as_int(raw.get("processCount")),
            battery_level=battery_level,
            # No battery → no charging state either
            battery_charging=(
                _as_opt_bool(raw.get("batteryCharging")) if battery_level is not None else None
            ),
            idle_seconds=max(_as_int(raw.get("idleTimeSeconds")), 0),
            active_window_title=_as_str(raw.get("activeWindowTitle")),
            foreground_app=_as_str(raw.get("foregroundApp")),
            top_processes=tuple(ProcessUsage.parse_many(raw.get("topApps"))),
            browser_process_count=_as_int(raw.get("browserTabsCount")),
            browsers=tuple(
                BrowserInfo.from_raw(b) for b in _as_list(raw.get("browserDetails"))
                if isinstance(b, dict)
            ),
            internet_status=_as_str(raw.get("internetStatus"), "unknown") or "unknown",
            ping_ms=_as_opt_int(raw.get("pingMs")),
            connection_type=_as_str(raw.get("connectionType"), "unknown") or "unknown",
            wifi_name=_as_str(raw.get("wifiName")),
            vpn_connected=_as_bool(raw.get("vpnConnected")),
        )


# ─── Snapshot ────────────────────────────────────────────────────

def _utc_now():
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MetricsSnapshot:
    """One complete, self-consistent set of metric values."""

    # Identity
    computer_name: str = UNKNOWN
    username: str = UNKNOWN
    os_version: str = UNKNOWN
    os_user: str = UNKNOWN

    # Gauges
    cpu_percent: float = 0.0
    memory_percent: float = 0.0
    disk_percent: float = 0.0
    disk_free_gb: float = 0.0
    disk_total_gb: float = 0.0
    gpu_percent: float = 0.0
    process_count: int = 0
    battery_level: int | None = None
    battery_charging: bool | None = None
    computer_uptime: str = UNKNOWN

    # Addresses
    local_ip: str = UNKNOWN
    public_ip: str = UNKNOWN

    # Rates (MB/s)
    network_upload_mb_s: float = 0.0
    network_download_mb_s: float = 0.0

    # Connectivity
    internet_status: str = "unknown"
    ping_ms: int | None = None
    connection_type: str = "unknown"
    wifi_name: str = ""
    vpn_connected: bool = False

    # Application
    app_version: str = UNKNOWN
    app_uptime: str = UNKNOWN
    current_screen: str = DEFAULT_SCREEN
    is_app_focused: bool = False
    idle_seconds: int = 0
    active_window_title: str = ""
    foreground_app: str = ""
    top_processes: tuple[ProcessUsage, ...] = ()
    active_time_today_seconds: int = 0
    browsers: tuple[BrowserInfo, ...] = ()
    browser_process_count: int = 0

    timestamp: datetime = field(default_factory=_utc_now)

    @classmethod
    def field_names(cls):
        return [f.name for f in fields(cls)]

    def to_dict(self):
        """Wire document accepted by the metrics endpoint."""
        if self.battery_charging is None:
            charging = None
        else:
            charging = 1 if self.battery_charging else 0
        return {
            "computer_name": self.computer_name,
            "username": self.username,
            "cpu_usage": self.cpu_percent,
            "memory_usage": self.memory_percent,
            "disk_usage": self.disk_percent,
            "os_version": self.os_version,
            "computer_uptime": self.computer_uptime,
            "windows_user": self.os_user,
            "local_ip": self.local_ip,
            "public_ip": self.public_ip,
            "network_upload": self.network_upload_mb_s,
            "network_download": self.network_download_mb_s,
            "gpu_usage": self.gpu_percent,
            "process_count": self.process_count,
            "battery_level": self.battery_level,
            "battery_charging": charging,
            "app_version": self.app_version,
            "app_uptime": self.app_uptime,
            "current_screen": self.current_screen,
            "disk_free_gb": self.disk_free_gb,
            "disk_total_gb": self.disk_total_gb,
            "is_app_focused": 1 if self.is_app_focused else 0,
            "idle_time_seconds": self.idle_seconds,
            "active_window_title": self.active_window_title,
            "foreground_app": self.foreground_app,
            "top_apps": ",".join(p.to_token() for p in self.top_processes),
            "browser_tabs_count": self.browser_process_count,
            "active_time_today_seconds": self.active_time_today_seconds,
            "internet_status": self.internet_status,
            "connection_type": self.connection_type,
            "wifi_name": self.wifi_name,
            "vpn_connected": 1 if self.vpn_connected else 0,
            "ping_ms": self.ping_ms,
            "browser_details": [b.to_dict() for b in self.browsers],
            "timestamp": self.timestamp.isoformat(),
        }
