"""
MetricsCollector: one snapshot per call, never raises
"""

import asyncio
from datetime import datetime, timedelta

import pytest

from telemetry_core import network
from telemetry_core.collector import MetricsCollector, format_app_uptime, matches_exclusion
from telemetry_core.executor import BUSY
from tests.conftest import FakeClock, FakeExecutor, FakeSession

MB = 1024 * 1024


class WallClock:
    def __init__(self):
        self.now = datetime(2026, 3, 2, 9, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def fixed_local_ip(monkeypatch):
    monkeypatch.setattr(network, "get_local_ip", lambda: "10.1.2.3")


def _collector(executor, session=None, clock=None, wall=None, **kwargs):
    return MetricsCollector(
        executor=executor,
        session=session or FakeSession(),
        app_version="2.3.1",
        probe_command=["probe"],
        monotonic=clock or FakeClock(),
        now=wall or WallClock(),
        **kwargs,
    )


async def test_snapshot_combines_probe_facts_and_app_state() -> None:
    executor = FakeExecutor(dynamic=[{
        "cpuUsage": 37.5, "memoryUsage": 61, "batteryLevel": 80, "batteryCharging": 1,
        "internetStatus": "online", "pingMs": 18, "connectionType": "wifi",
        "topApps": [{"name": "code", "cpu": 4.0, "memoryMb": 300}],
    }])
    collector = _collector(executor)
    collector.set_current_screen("Timesheets")
    collector.set_app_focused(False)

    snapshot = await collector.collect("jdoe")

    assert snapshot.username == "jdoe"
    assert snapshot.computer_name == "FIELD-LAPTOP-07"
    assert snapshot.cpu_percent == 37.5
    assert snapshot.battery_charging is True
    assert snapshot.local_ip == "10.1.2.3"
    assert snapshot.public_ip == "203.0.113.7"
    assert snapshot.current_screen == "Timesheets"
    assert snapshot.is_app_focused is False
    assert snapshot.app_version == "2.3.1"
    assert snapshot.top_processes[0].name == "code"


async def test_throughput_is_zero_then_measured() -> None:
    clock = FakeClock()
    executor = FakeExecutor(dynamic=[
        {"bytesReceived": 50 * MB, "bytesSent": 20 * MB},
        {"bytesReceived": 60 * MB, "bytesSent": 25 * MB},
    ])
    collector = _collector(executor, clock=clock)

    first = await collector.collect("jdoe")
    clock.advance(10)
    second = await collector.collect("jdoe")

    assert (first.network_download_mb_s, first.network_upload_mb_s) == (0.0, 0.0)
    assert (second.network_download_mb_s, second.network_upload_mb_s) == (1.0, 0.5)


async def test_empty_probe_result_keeps_throughput_baseline() -> None:
    clock = FakeClock()
    executor = FakeExecutor(dynamic=[
        {"bytesReceived": 50 * MB, "bytesSent": 20 * MB},
        {},
        {"bytesReceived": 70 * MB, "bytesSent": 30 * MB},
    ])
    collector = _collector(executor, clock=clock)

    await collector.collect("jdoe")
    clock.advance(10)
    empty = await collector.collect("jdoe")
    clock.advance(10)
    third = await collector.collect("jdoe")

    assert empty.cpu_percent == 0.0
    assert empty.network_download_mb_s == 0.0
    assert third.network_download_mb_s == 1.0
    assert third.network_upload_mb_s == 0.5


async def test_active_time_grows_while_focused() -> None:
    wall = WallClock()
    collector = _collector(FakeExecutor(dynamic=[{}, {}]), wall=wall)

    await collector.collect("jdoe")
    wall.advance(10)
    snapshot = await collector.collect("jdoe")

    assert snapshot.active_time_today_seconds == 10


@pytest.mark.parametrize("failure", [RuntimeError("probe exploded"), asyncio.TimeoutError()])
async def test_collect_never_raises(failure) -> None:
    collector = _collector(FakeExecutor(dynamic=[failure]))
    collector.set_current_screen("Reports")

    snapshot = await collector.collect("jdoe")

    assert snapshot.username == "jdoe"
    assert snapshot.cpu_percent == 0.0
    assert snapshot.current_screen == "Reports"
    assert not collector.collecting


async def test_public_ip_failure_yields_default_snapshot() -> None:
    session = FakeSession(get_response=RuntimeError("resolver bug"))
    collector = _collector(FakeExecutor(dynamic=[{"cpuUsage": 50}]), session=session)

    snapshot = await collector.collect("jdoe")

    assert snapshot.public_ip == "Unknown"
    assert snapshot.cpu_percent == 0.0


class GatedExecutor(FakeExecutor):
    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.dynamic_calls = 0

    async def run_query(self, command, timeout=15):
        if "--static" in command:
            return dict(self.static)
        if self.in_flight:
            return BUSY
        self.in_flight = True
        self.dynamic_calls += 1
        self.entered.set()
        try:
            await self.release.wait()
            return {"cpuUsage": 12}
        finally:
            self.in_flight = False


async def test_overlapping_collect_returns_defaults_without_second_probe() -> None:
    executor = GatedExecutor()
    collector = _collector(executor)

    first = asyncio.ensure_future(collector.collect("jdoe"))
    await executor.entered.wait()
    overlapping = await collector.collect("jdoe")
    executor.release.set()
    completed = await first

    assert overlapping.cpu_percent == 0.0
    assert overlapping.username == "jdoe"
    assert completed.cpu_percent == 12.0
    assert executor.dynamic_calls == 1


async def test_busy_executor_defaults_dynamic_fields() -> None:
    executor = FakeExecutor()
    executor.in_flight = True
    collector = _collector(executor)

    snapshot = await collector.collect("jdoe")

    assert snapshot.cpu_percent == 0.0
    assert snapshot.public_ip == "203.0.113.7"


async def test_privacy_exclusions_filter_program_fields() -> None:
    executor = FakeExecutor(dynamic=[{
        "foregroundApp": "slack",
        "activeWindowTitle": "DM with payroll",
        "topApps": "chrome:10:100,code:2:50,Slack:1:80",
        "browserDetails": [{"name": "chrome", "processCount": 4}, {"name": "firefox", "processCount": 1}],
    }])
    collector = _collector(executor, privacy_exclusions=["Chrome", "slack"])

    snapshot = await collector.collect("jdoe")

    assert [p.name for p in snapshot.top_processes] == ["code"]
    assert [b.name for b in snapshot.browsers] == ["firefox"]
    assert snapshot.foreground_app == ""
    assert snapshot.active_window_title == "[Private]"


async def test_exe_suffixed_exclusion_hides_bare_process_name() -> None:
    executor = FakeExecutor(dynamic=[{
        "topApps": [{"name": "whatsapp", "cpu": 1, "memoryMb": 1}, {"name": "excel", "cpu": 2, "memoryMb": 90}],
        "foregroundApp": "WhatsApp",
        "activeWindowTitle": "Family group",
    }])
    collector = _collector(executor, privacy_exclusions=["WhatsApp.exe"])

    snapshot = await collector.collect("jdoe")

    assert [p.name for p in snapshot.top_processes] == ["excel"]
    assert snapshot.foreground_app == ""
    assert snapshot.active_window_title == "[Private]"


async def test_window_title_naming_excluded_program_is_redacted() -> None:
    """
    A web app open in a browser is hidden from every title, the browser stays listed
    """
    executor = FakeExecutor(dynamic=[{
        "foregroundApp": "chrome",
        "activeWindowTitle": "WhatsApp Web - Google Chrome",
        "browserDetails": [{
            "name": "chrome", "processCount": 6,
            "windowTitles": ["WhatsApp Web - Google Chrome", "Quarterly report - Google Chrome"],
        }],
    }])
    collector = _collector(executor, privacy_exclusions=["whatsapp"])

    snapshot = await collector.collect("jdoe")

    assert snapshot.foreground_app == "chrome"
    assert snapshot.active_window_title == "[Private]"
    browser = snapshot.browsers[0]
    assert browser.window_titles == ("[Private]", "Quarterly report - Google Chrome")
    assert browser.current_window == "[Private]"


def test_exclusion_matching_is_substring_both_ways() -> None:
    exclusions = {"whatsapp", "teams"}

    assert matches_exclusion("WhatsApp.exe", exclusions)
    assert matches_exclusion("ms-teams", exclusions)
    assert matches_exclusion("team", exclusions)
    assert not matches_exclusion("excel", exclusions)
    assert not matches_exclusion("", exclusions)


def test_cleanup_kills_outstanding_probe() -> None:
    executor = FakeExecutor()
    _collector(executor).cleanup()

    assert executor.cleaned_up


def test_format_app_uptime() -> None:
    assert format_app_uptime(90061) == "1d 1h 1m"
    assert format_app_uptime(3660) == "1h 1m"
    assert format_app_uptime(59) == "0m"
