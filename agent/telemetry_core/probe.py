"""
The metrics probe: one process, one JSON document on stdout.

Run by MetricQueryExecutor as ``python -m telemetry_core.probe`` (dynamic
facts) or ``python -m telemetry_core.probe --static`` (host facts that cannot
change while the agent runs). Every section is independent: a section that
fails emits its defaults and the rest of the document is still produced.

Dynamic document (schema PROBE_SCHEMA_VERSION = 2):

    schema              int      schema version
    cpuUsage            float    0-100
    memoryUsage         float    0-100
    diskUsage           float    0-100, system drive
    diskFreeGb          float
    diskTotalGb         float
    computerUptime      str      "Xd Yh Zm" or "Unknown"
    bytesReceived       int      cumulative, primary counters
    bytesSent           int      cumulative
    gpuUsage            float    0-100, 0 when unavailable
    processCount        int
    batteryLevel        int|null null = no battery
    batteryCharging     bool|null
    idleTimeSeconds     int      seconds since last user input
    activeWindowTitle   str
    foregroundApp       str      process name owning the foreground window
    topApps             list     [{name, cpu, memoryMb}], top 5 by CPU seconds
    browserTabsCount    int      total browser processes
    browserDetails      list     [{name, isRunning, processCount, memoryMb,
                                   currentWindow, windowTitles}]
    internetStatus      str      "online" | "offline"
    pingMs              int|null
    connectionType      str      "wifi" | "ethernet" | "unknown"
    wifiName            str
    vpnConnected        bool

Static document: {schema, computerName, osVersion, osUser}.
"""

import argparse
import getpass
import json
import os
import platform
import socket
import subprocess
import sys
import time

import psutil
import pynvml

from . import platform_win
from .constants import (
    PROBE_SCHEMA_VERSION, UNKNOWN, TOP_PROCESS_COUNT, MAX_BROWSER_TITLES,
    PING_HOST, PING_PORT, BROWSER_PROCESSES, BYTES_PER_MB,
    VPN_INTERFACE_HINTS, WIFI_INTERFACE_HINTS, ETHERNET_INTERFACE_HINTS,
)

_GB = 1024 ** 3

# Directory holding the telemetry_core package; the probe is spawned from here
# so "-m telemetry_core.probe" resolves without an install.
IMPORT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def format_uptime(seconds):
    seconds = max(int(seconds), 0)
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    return f"{days}d {hours}h {rem // 60}m"


def _system_drive():
    if sys.platform == "win32":
        return os.environ.get("SystemDrive", "C:") + "\\"
    return "/"


def _process_label(name):
    name = (name or "").lower()
    if name.endswith(".exe"):
        name = name[:-4]
    return name


# ─── Sections ────────────────────────────────────────────────────

def probe_cpu():
    return {"cpuUsage": round(psutil.cpu_percent(interval=0.5), 2)}


def probe_memory():
    return {"memoryUsage": round(psutil.virtual_memory().percent, 2)}


def probe_disk():
    du = psutil.disk_usage(_system_drive())
    return {
        "diskUsage": round(du.percent, 2),
        "diskFreeGb": round(du.free / _GB, 2),
        "diskTotalGb": round(du.total / _GB, 2),
    }


def probe_uptime():
    return {"computerUptime": format_uptime(time.time() - psutil.boot_time())}


def probe_network_counters():
    net = psutil.net_io_counters()
    if not net:
        return {"bytesReceived": 0, "bytesSent": 0}
    return {"bytesReceived": net.bytes_recv, "bytesSent": net.bytes_sent}


def probe_gpu():
    # nvmlInit raises on machines without an NVIDIA driver; the section default applies.
    pynvml.nvmlInit()
    try:
        if pynvml.nvmlDeviceGetCount() < 1:
            return {"gpuUsage": 0.0}
        handle = pynvml.nvmlDeviceGetHandleByIndex(0)
        util = pynvml.nvmlDeviceGetUtilizationRates(handle)
        return {"gpuUsage": float(util.gpu)}
    finally:
        pynvml.nvmlShutdown()


def probe_battery():
    sensors_battery = getattr(psutil, "sensors_battery", None)
    battery = sensors_battery() if sensors_battery else None
    if battery is None:
        return {"batteryLevel": None, "batteryCharging": None}
    charging = battery.power_plugged
    if charging is None:
        charging = platform_win.get_battery_charging()
    return {"batteryLevel": int(round(battery.percent)), "batteryCharging": charging}


def probe_idle():
    idle = platform_win.get_system_idle_seconds()
    return {"idleTimeSeconds": int(idle) if idle >= 0 else 0}


def probe_foreground():
    title, pid = platform_win.get_foreground_window()
    app = ""
    if pid:
        try:
            app = _process_label(psutil.Process(pid).name())
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            app = UNKNOWN
    return {"activeWindowTitle": title, "foregroundApp": app}


def probe_processes(foreground_app="", active_title=""):
    """Process count, top processes by CPU seconds, and browser aggregation."""
    rows = []
    browsers = {}
    for proc in psutil.process_iter(attrs=["name", "cpu_times", "memory_info"]):
        info = proc.info
        label = _process_label(info.get("name"))
        if not label:
            continue
        times = info.get("cpu_times")
        cpu = (times.user + times.system) if times else 0.0
        mem = info.get("memory_info")
        rss_mb = (mem.rss / BYTES_PER_MB) if mem else 0.0
        rows.append((label, cpu, rss_mb))

        browser = BROWSER_PROCESSES.get(label)
        if browser:
            entry = browsers.setdefault(browser, {"count": 0, "memory": 0.0})
            entry["count"] += 1
            entry["memory"] += rss_mb

    rows.sort(key=lambda r: r[1], reverse=True)
    top = [
        {"name": name, "cpu": round(cpu, 1), "memoryMb": round(mem, 0)}
        for name, cpu, mem in rows[:TOP_PROCESS_COUNT]
    ]

    details = []
    for name, entry in sorted(browsers.items()):
        focused = BROWSER_PROCESSES.get(foreground_app) == name and active_title
        titles = [active_title] if focused else []
        details.append({
            "name": name,
            "isRunning": True,
            "processCount": entry["count"],
            "memoryMb": round(entry["memory"], 1),
            "currentWindow": active_title if focused else None,
            "windowTitles": titles[:MAX_BROWSER_TITLES],
        })

    return {
        "processCount": len(rows),
        "topApps": top,
        "browserTabsCount": sum(e["count"] for e in browsers.values()),
        "browserDetails": details,
    }


def probe_ping():
    started = time.perf_counter()
    try:
        with socket.create_connection((PING_HOST, PING_PORT), timeout=2):
            pass
    except OSError:
        return {"internetStatus": "offline", "pingMs": None}
    return {
        "internetStatus": "online",
        "pingMs": int(round((time.perf_counter() - started) * 1000)),
    }


def _wifi_name():
    if sys.platform == "win32":
        cmd = ["netsh", "wlan", "show", "interfaces"]
    elif sys.platform.startswith("linux"):
        cmd = ["iwgetid", "-r"]
    else:
        return ""
    try:
        out = subprocess.run(cmd, capture_output=True, text=True, timeout=3).stdout
    except (OSError, subprocess.SubprocessError):
        return ""
    if sys.platform != "win32":
        return out.strip()
    for line in out.splitlines():
        key, _, value = line.partition(":")
        if key.strip() == "SSID":
            return value.strip()
    return ""


def classify_interfaces(names):
    """Return (connection_type, vpn_connected) for a list of up interface names."""
    lowered = [n.lower() for n in names]
    vpn = any(any(hint in n for hint in VPN_INTERFACE_HINTS) for n in lowered)
    if any(n.startswith(WIFI_INTERFACE_HINTS) or "wi-fi" in n or "wireless" in n for n in lowered):
        return "wifi", vpn
    if any(n.startswith(ETHERNET_INTERFACE_HINTS) or "ethernet" in n for n in lowered):
        return "ethernet", vpn
    return "unknown", vpn


def probe_interfaces():
    up = [
        name for name, stats in psutil.net_if_stats().items()
        if stats.isup and not name.lower().startswith(("lo", "loopback"))
    ]
    connection_type, vpn = classify_interfaces(up)
    wifi = _wifi_name() if connection_type == "wifi" else ""
    return {"connectionType": connection_type, "wifiName": wifi, "vpnConnected": vpn}


_SECTION_DEFAULTS = [
    (probe_cpu, {"cpuUsage": 0}),
    (probe_memory, {"memoryUsage": 0}),
    (probe_disk, {"diskUsage": 0, "diskFreeGb": 0, "diskTotalGb": 0}),
    (probe_uptime, {"computerUptime": UNKNOWN}),
    (probe_network_counters, {"bytesReceived": 0, "bytesSent": 0}),
    (probe_gpu, {"gpuUsage": 0}),
    (probe_battery, {"batteryLevel": None, "batteryCharging": None}),
    (probe_idle, {"idleTimeSeconds": 0}),
    (probe_foreground, {"activeWindowTitle": "", "foregroundApp": ""}),
    (probe_ping, {"internetStatus": "offline", "pingMs": None}),
    (probe_interfaces, {"connectionType": "unknown", "wifiName": "", "vpnConnected": False}),
]


def _run_section(fn, defaults, *args):
    try:
        return fn(*args)
    except Exception as e:
        sys.stderr.write(f"{fn.__name__}: {e}\n")
        return dict(defaults)


def collect_dynamic():
    results = {"schema": PROBE_SCHEMA_VERSION}
    for fn, defaults in _SECTION_DEFAULTS:
        results.update(_run_section(fn, defaults))
    results.update(_run_section(
        probe_processes,
        {"processCount": 0, "topApps": [], "browserTabsCount": 0, "browserDetails": []},
        results.get("foregroundApp", ""),
        results.get("activeWindowTitle", ""),
    ))
    return results


def collect_static():
    try:
        user = getpass.getuser()
    except Exception:
        user = UNKNOWN
    if sys.platform == "win32":
        os_version = f"Windows {platform.release()} (build {platform.version()})"
    else:
        os_version = f"{platform.system()} {platform.release()}"
    return {
        "schema": PROBE_SCHEMA_VERSION,
        "computerName": socket.gethostname() or platform.node() or UNKNOWN,
        "osVersion": os_version,
        "osUser": user,
    }


def command(static=False):
    """argv that runs this probe with the current interpreter."""
    argv = [sys.executable, "-m", "telemetry_core.probe"]
    if static:
        argv.append("--static")
    return argv


def main(argv=None):
    parser = argparse.ArgumentParser(description="Emit one telemetry probe document as JSON")
    parser.add_argument("--static", action="store_true", help="host facts only")
    args = parser.parse_args(argv)
    document = collect_static() if args.static else collect_dynamic()
    sys.stdout.write(json.dumps(document, separators=(",", ":")))
    sys.stdout.write("\n")
    sys.stdout.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
