"""
Shared fakes: HTTP session, probe executor and a settable clock.
"""

import asyncio
import threading

import pytest

from telemetry_core.executor import BUSY


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("no JSON body")
        return self._body


class FakeSession:
    """Records POSTs; answers with a fixed or per-call response."""

    def __init__(self, post_response=None, get_response=None):
        self.post_response = post_response or FakeResponse(200, {"success": True})
        self.get_response = get_response or FakeResponse(200, text="203.0.113.7\n")
        self.posts = []
        self.gets = []
        self._lock = threading.Lock()

    def post(self, url, json=None, timeout=None):
        with self._lock:
            self.posts.append({"url": url, "json": json, "timeout": timeout})
        response = self.post_response
        if callable(response):
            response = response(json)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, timeout=None):
        self.gets.append(url)
        if isinstance(self.get_response, Exception):
            raise self.get_response
        return self.get_response

    def close(self):
        pass


class FakeExecutor:
    """Answers static and dynamic probe commands from canned documents."""

    def __init__(self, dynamic=None, static=None):
        self.dynamic = list(dynamic or [])
        self.static = static if static is not None else {
            "computerName": "FIELD-LAPTOP-07",
            "osVersion": "Windows 11 Pro 23H2",
            "osUser": "jdoe",
        }
        self.commands = []
        self.in_flight = False
        self.cleaned_up = False

    @property
    def busy(self):
        return self.in_flight

    async def run_query(self, command, timeout=15):
        if self.in_flight:
            return BUSY
        self.commands.append(list(command))
        if "--static" in command:
            return dict(self.static)
        result = self.dynamic.pop(0) if self.dynamic else {}
        if isinstance(result, Exception):
            raise result
        return result

    def cleanup(self):
        self.cleaned_up = True


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


async def wait_until(predicate, timeout=3.0):
    """Poll an async-side condition (work hops through worker threads)."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def clock():
    return FakeClock()
