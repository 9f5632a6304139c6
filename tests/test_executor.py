"""
MetricQueryExecutor against real child processes
"""

import asyncio
import sys
import time
from pathlib import Path

import psutil

from telemetry_core.executor import BUSY, MetricQueryExecutor, parse_document


def _script(code):
    return [sys.executable, "-c", code]


async def test_clean_exit_returns_json_document() -> None:
    executor = MetricQueryExecutor()

    result = await executor.run_query(_script("import json; print(json.dumps({'cpuUsage': 12.5}))"))

    assert result == {"cpuUsage": 12.5}
    assert executor.spawn_count == 1
    assert executor.busy is False


async def test_timeout_kills_child_and_returns_empty() -> None:
    executor = MetricQueryExecutor()

    started = time.monotonic()
    result = await executor.run_query(_script("import time; time.sleep(30)"), timeout=0.5)

    assert result == {}
    assert time.monotonic() - started < 5
    assert executor.busy is False


def _gone(pid):
    try:
        return psutil.Process(pid).status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True


async def test_timeout_kills_processes_started_by_the_child(tmp_path: Path) -> None:
    """
    A grandchild in its own session is outside the process group and still dies
    """
    pid_file = tmp_path / "grandchild.pid"
    code = (
        "import subprocess, sys, time\n"
        "p = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)'],"
        " start_new_session=True)\n"
        f"with open({str(pid_file)!r}, 'w') as f:\n"
        "    f.write(str(p.pid))\n"
        "time.sleep(60)\n"
    )
    executor = MetricQueryExecutor()

    result = await executor.run_query(_script(code), timeout=2)

    assert result == {}
    grandchild = int(pid_file.read_text())
    deadline = time.monotonic() + 5
    while not _gone(grandchild) and time.monotonic() < deadline:
        await asyncio.sleep(0.05)
    assert _gone(grandchild)


async def test_non_json_output_returns_empty() -> None:
    executor = MetricQueryExecutor()

    assert await executor.run_query(_script("print('hello')")) == {}
    assert await executor.run_query(_script("print('[1, 2, 3]')")) == {}


async def test_nonzero_exit_returns_empty() -> None:
    executor = MetricQueryExecutor()

    result = await executor.run_query(_script("import sys; print('{}'); sys.exit(3)"))

    assert result == {}


async def test_missing_binary_returns_empty_without_spawning() -> None:
    executor = MetricQueryExecutor()

    result = await executor.run_query(["/nonexistent/telemetry-probe-binary"])

    assert result == {}
    assert executor.spawn_count == 0
    assert executor.busy is False


async def test_concurrent_query_is_busy_and_does_not_spawn() -> None:
    """
    A second query while one is in flight returns BUSY immediately
    """
    executor = MetricQueryExecutor()
    slow = _script("import json, time; time.sleep(0.5); print(json.dumps({'ok': 1}))")

    first, second = await asyncio.gather(
        executor.run_query(slow),
        executor.run_query(slow),
    )

    assert first == {"ok": 1}
    assert second is BUSY
    assert not second
    assert executor.spawn_count == 1


def test_parse_document_takes_last_line_after_banner() -> None:
    output = b"WARNING: something noisy\n{\"schema\": 2, \"cpuUsage\": 3}\n"

    assert parse_document(output) == {"schema": 2, "cpuUsage": 3}
    assert parse_document("") == {}
    assert parse_document(None) == {}
