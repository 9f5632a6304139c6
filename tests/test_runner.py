"""
Auto-restart wrapper
"""

import pytest

from telemetry_core import runner


def test_restart_delay_grows_then_caps() -> None:
    assert [runner.restart_delay(n) for n in (1, 2, 6, 9)] == [10, 20, 60, 60]
    assert runner.restart_delay(10) == 120


def test_crashes_restart_with_fresh_session(monkeypatch) -> None:
    calls = []
    sessions = []

    def flaky_main(argv=None, session=None):
        calls.append(argv)
        sessions.append(session)
        if len(calls) < 3:
            raise RuntimeError("probe pipeline wedged")

    monkeypatch.setattr(runner, "main", flaky_main)
    slept = []

    runner.run_with_auto_restart(["--once"], sleep=slept.append)

    assert len(calls) == 3
    assert slept == [10, 20]
    assert len({id(s) for s in sessions}) == 3


def test_configuration_error_is_not_retried(monkeypatch) -> None:
    def unconfigured(argv=None, session=None):
        raise SystemExit(1)

    monkeypatch.setattr(runner, "main", unconfigured)
    slept = []

    with pytest.raises(SystemExit):
        runner.run_with_auto_restart([], sleep=slept.append)

    assert slept == []
