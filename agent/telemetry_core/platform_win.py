"""
Windows-specific probes used by the metrics probe:
  - System-level idle time (GetLastInputInfo)
  - Foreground window title + owning process id
  - Battery charging state (GetSystemPowerStatus)

Every function returns a neutral value on other platforms or on failure.
"""

import sys
import ctypes


# ─── System-level idle time (elevation-aware) ────────────────────

class _LASTINPUTINFO(ctypes.Structure):
    _fields_ = [("cbSize", ctypes.c_uint), ("dwTime", ctypes.c_ulong)]


def get_system_idle_seconds():
    """
    Get OS-level idle time via GetLastInputInfo.
    Works regardless of which process received the input —
    detects activity even in elevated (admin) windows.
    Returns seconds since last input, or -1 on failure.
    """
    if sys.platform != "win32":
        return -1
    try:
        lii = _LASTINPUTINFO()
        lii.cbSize = ctypes.sizeof(_LASTINPUTINFO)
        if ctypes.windll.user32.GetLastInputInfo(ctypes.byref(lii)):
            tick_now = ctypes.windll.kernel32.GetTickCount()
            elapsed_ms = (tick_now - lii.dwTime) & 0xFFFFFFFF
            return elapsed_ms / 1000.0
        return -1
    except Exception:
        return -1


# ─── Foreground window ───────────────────────────────────────────

def get_foreground_window():
    """Return (title, pid) of the foreground window, or ("", 0)."""
    if sys.platform != "win32":
        return "", 0
    try:
        from ctypes import wintypes

        user32 = ctypes.windll.user32
        hwnd = user32.GetForegroundWindow()
        if not hwnd:
            return "", 0
        length = user32.GetWindowTextLengthW(hwnd)
        buf = ctypes.create_unicode_buffer(length + 1)
        user32.GetWindowTextW(hwnd, buf, length + 1)
        pid = wintypes.DWORD()
        user32.GetWindowThreadProcessId(hwnd, ctypes.byref(pid))
        return buf.value, int(pid.value)
    except Exception:
        return "", 0


# ─── Power status ────────────────────────────────────────────────

class _SYSTEM_POWER_STATUS(ctypes.Structure):
    _fields_ = [
        ("ACLineStatus",        ctypes.c_ubyte),
        ("BatteryFlag",         ctypes.c_ubyte),
        ("BatteryLifePercent",  ctypes.c_ubyte),
        ("SystemStatusFlag",    ctypes.c_ubyte),
        ("BatteryLifeTime",     ctypes.c_ulong),
        ("BatteryFullLifeTime", ctypes.c_ulong),
    ]


def get_battery_charging():
    """True/False while a battery is present, None otherwise."""
    if sys.platform != "win32":
        return None
    try:
        status = _SYSTEM_POWER_STATUS()
        if not ctypes.windll.kernel32.GetSystemPowerStatus(ctypes.byref(status)):
            return None
        if status.BatteryFlag == 128 or status.BatteryFlag == 255:  # no battery / unknown
            return None
        return bool(status.BatteryFlag & 8) or status.ACLineStatus == 1
    except Exception:
        return None
