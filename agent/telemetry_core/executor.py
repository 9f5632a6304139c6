"""
MetricQueryExecutor — runs the single, time-boxed probe process per cycle.

Failure modes (spawn error, timeout, crash, non-zero exit, unparsable output)
are all normalized to an empty dict. The only other result is BUSY, returned
when a query is already in flight; in that case nothing is spawned.
"""

import asyncio
import json
import os
import signal
import subprocess
import sys

import psutil

from .config import log
from .constants import PROBE_TIMEOUT_SEC, PROBE_OUTPUT_GRACE_SEC


class QueryBusy:
    """Sentinel: another query is outstanding on this executor."""

    def __bool__(self):
        return False

    def __repr__(self):
        return "BUSY"


BUSY = QueryBusy()


def parse_document(output):
    """Parse one JSON object from probe stdout. Returns {} on anything else."""
    if isinstance(output, bytes):
        output = output.decode("utf-8", errors="replace")
    text = (output or "").strip()
    if not text:
        return {}
    candidates = [text]
    # Tolerate banner/warning lines printed before the document.
    last_line = text.splitlines()[-1].strip()
    if last_line != text:
        candidates.append(last_line)
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(data, dict):
            return data
    log.debug("Probe output is not a JSON object: %r", text[:200])
    return {}


def _spawn_kwargs():
    # Own process group so a timeout can take down anything the probe started.
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _kill_descendants(pid):
    """
    Kill everything the probe started (netsh, iwgetid, ...). Windows has no
    process-group kill, and on POSIX a child may have left the group. Must run
    while the probe is still alive, before its children are reparented.
    """
    try:
        children = psutil.Process(pid).children(recursive=True)
    except psutil.Error:
        return
    for child in children:
        try:
            child.kill()
        except psutil.Error:
            pass


def _kill(process):
    if process.returncode is not None:
        return
    _kill_descendants(process.pid)
    try:
        if sys.platform != "win32":
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass
    except OSError as e:
        log.warning("killpg failed for pid %d (%s) — killing process only", process.pid, e)
        try:
            process.kill()
        except ProcessLookupError:
            pass


class MetricQueryExecutor:
    """At most one probe process in flight; guaranteed reaped on return."""

    def __init__(self, cwd=None):
        self._cwd = cwd
        self._in_flight = False
        self._process = None
        self.spawn_count = 0

    @property
    def busy(self) -> bool:
        return self._in_flight

    async def run_query(self, command, timeout=PROBE_TIMEOUT_SEC):
        """Run *command* (argv list) and return its JSON document, {} or BUSY."""
        if self._in_flight:
            log.debug("Query already in flight — not spawning another")
            return BUSY

        self._in_flight = True
        try:
            return await self._run(command, timeout)
        finally:
            self._process = None
            self._in_flight = False

    async def _run(self, command, timeout):
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
                **_spawn_kwargs(),
            )
        except (OSError, ValueError) as e:
            log.warning("Probe spawn failed: %s", e)
            return {}

        self._process = process
        self.spawn_count += 1

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            log.warning("Probe timed out after %ss — killing pid %d", timeout, process.pid)
            await self._reap(process)
            return {}
        except asyncio.CancelledError:
            _kill(process)
            raise
        except Exception as e:
            log.warning("Probe I/O error: %s", e)
            await self._reap(process)
            return {}

        if process.returncode != 0:
            log.warning(
                "Probe exited with code %s: %s",
                process.returncode,
                stderr.decode("utf-8", errors="replace").strip()[:200],
            )
            return {}

        return parse_document(stdout)

    async def _reap(self, process):
        _kill(process)
        try:
            await asyncio.wait_for(process.wait(), timeout=PROBE_OUTPUT_GRACE_SEC)
        except asyncio.TimeoutError:
            log.error("Probe pid %d did not exit after SIGKILL", process.pid)

    def cleanup(self):
        """Force-kill an outstanding probe (shutdown path). Safe to call anytime."""
        process = self._process
        if process is not None:
            log.info("Killing outstanding probe pid %d", process.pid)
            _kill(process)
