"""
Constants, intervals, timeouts, and probe lookup tables.
"""

AGENT_VERSION = "1.4.0"
PROBE_SCHEMA_VERSION = 2

# ─── Intervals ───────────────────────────────────────────────────
HEARTBEAT_INTERVAL_SEC = 20     # Presence heartbeat cadence
METRICS_INTERVAL_SEC = 300      # Full snapshot every 5 minutes
MAX_CONSECUTIVE_FAILURES = 5    # Heartbeat circuit breaker

# ─── Timeouts ────────────────────────────────────────────────────
PROBE_TIMEOUT_SEC = 15          # Dynamic probe (one process, dozens of facts)
STATIC_PROBE_TIMEOUT_SEC = 5    # Host name / OS version / OS user
PROBE_OUTPUT_GRACE_SEC = 2      # Drain stdout/stderr after a kill
API_TIMEOUT_HEARTBEAT = 10
API_TIMEOUT_METRICS = 30
API_TIMEOUT_PUBLIC_IP = 5

# ─── Derived metrics ─────────────────────────────────────────────
BYTES_PER_MB = 1024 * 1024
ACTIVE_TIME_MAX_STEP_SEC = 120  # Longer gaps are suspend/sleep, not work

# ─── Endpoints ───────────────────────────────────────────────────
DEFAULT_HEARTBEAT_PATH = "/api/office_map.php"
DEFAULT_METRICS_PATH = "/api/system_metrics.php"
PUBLIC_IP_URL = "https://api.ipify.org"

UNKNOWN = "Unknown"
DEFAULT_SCREEN = "Home"

# ─── Probe tables ────────────────────────────────────────────────
TOP_PROCESS_COUNT = 5
MAX_BROWSER_TITLES = 3
PING_HOST = "8.8.8.8"
PING_PORT = 53

# Process name (lowercase, without .exe) → browser label
BROWSER_PROCESSES = {
    "chrome": "chrome",
    "google chrome": "chrome",
    "msedge": "msedge",
    "microsoft edge": "msedge",
    "firefox": "firefox",
    "opera": "opera",
    "brave": "brave",
}

# Interface name / description fragments (lowercase)
VPN_INTERFACE_HINTS = (
    "vpn", "tap", "tun", "wg", "wireguard", "cisco", "openvpn",
    "nordvpn", "expressvpn", "fortinet", "utun", "ppp",
)
WIFI_INTERFACE_HINTS = ("wi-fi", "wifi", "wireless", "wlan", "wlp", "wl")
ETHERNET_INTERFACE_HINTS = ("ethernet", "eth", "enp", "eno", "ens", "en", "lan")
