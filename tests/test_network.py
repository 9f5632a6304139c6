"""
Offline metrics buffer
"""

import json
from pathlib import Path

from telemetry_core import network
from tests.conftest import FakeResponse, FakeSession


def test_buffer_and_flush_in_order(tmp_path: Path) -> None:
    path = tmp_path / "pending_metrics.jsonl"
    network.buffer_report({"seq": 1}, path)
    network.buffer_report({"seq": 2}, path)
    session = FakeSession()

    flushed, remaining = network.flush_buffer(session, "https://hq.example/m", path)

    assert (flushed, remaining) == (2, 0)
    assert [p["json"]["seq"] for p in session.posts] == [1, 2]
    assert not path.exists()
    assert not network.has_buffered_reports(path)


def test_flush_stops_at_first_failure(tmp_path: Path) -> None:
    path = tmp_path / "pending_metrics.jsonl"
    for seq in range(3):
        network.buffer_report({"seq": seq}, path)

    def respond(document):
        return FakeResponse(500) if document["seq"] == 1 else FakeResponse(200)

    flushed, remaining = network.flush_buffer(FakeSession(post_response=respond), "u", path)

    assert (flushed, remaining) == (1, 2)
    kept = [json.loads(l)["payload"]["seq"] for l in path.read_text().splitlines()]
    assert kept == [1, 2]


def test_buffer_drops_oldest_beyond_cap(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "pending_metrics.jsonl"
    monkeypatch.setattr(network, "MAX_BUFFERED_REPORTS", 3)

    for seq in range(5):
        network.buffer_report({"seq": seq}, path)

    kept = [json.loads(l)["payload"]["seq"] for l in path.read_text().splitlines()]
    assert kept == [2, 3, 4]


def test_corrupt_lines_are_dropped(tmp_path: Path) -> None:
    path = tmp_path / "pending_metrics.jsonl"
    path.write_text('not json\n{"ts": 1, "payload": {"seq": 9}}\n')
    session = FakeSession()

    flushed, remaining = network.flush_buffer(session, "u", path)

    assert (flushed, remaining) == (1, 0)
    assert session.posts[0]["json"] == {"seq": 9}


def test_flush_without_buffer_is_noop(tmp_path: Path) -> None:
    assert network.flush_buffer(FakeSession(), "u", tmp_path / "missing.jsonl") == (0, 0)
