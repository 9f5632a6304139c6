"""
Server API calls — heartbeat, metrics submit, public-IP lookup.

All functions are blocking (run via asyncio.to_thread, never on the event loop).
None of them raise for network or server errors: the caller gets an ApiResult
and decides what a failure means.
"""

from dataclasses import dataclass, field

import requests

from .config import log
from .constants import (
    API_TIMEOUT_HEARTBEAT, API_TIMEOUT_METRICS, API_TIMEOUT_PUBLIC_IP,
    PUBLIC_IP_URL, UNKNOWN,
)

_DEFAULT_MESSAGES = {
    400: "Bad request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not found",
    500: "Server error",
}


@dataclass(frozen=True)
class ApiResult:
    ok: bool
    status_code: int | None = None      # None → no HTTP response at all
    message: str = ""
    data: dict = field(default_factory=dict)

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)


def _json_body(resp):
    try:
        body = resp.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def is_success(body, status_code):
    """
    2xx is required. When the body is a JSON object:
      1. an explicit 'success' field decides
      2. a non-empty string / true 'error' field means failure
      3. 'status' of success/ok or error/fail/failed decides
      4. otherwise success
    """
    if status_code < 200 or status_code >= 300:
        return False
    if body is None:
        return True
    if "success" in body:
        return body["success"] is True
    if "error" in body:
        error = body["error"]
        if (isinstance(error, str) and error) or error is True:
            return False
        if error is False or error is None:
            return True
    status = body.get("status")
    if status in ("success", "ok"):
        return True
    if status in ("error", "fail", "failed"):
        return False
    return True


def error_message(body, status_code):
    if body:
        if "message" in body:
            return str(body["message"])
        if isinstance(body.get("error"), str):
            return body["error"]
        if isinstance(body.get("errors"), list):
            return ", ".join(str(e) for e in body["errors"])
    return _DEFAULT_MESSAGES.get(status_code, f"Request failed (status {status_code})")


def interpret_response(resp):
    body = _json_body(resp)
    if is_success(body, resp.status_code):
        return ApiResult(ok=True, status_code=resp.status_code, data=body or {})
    return ApiResult(
        ok=False,
        status_code=resp.status_code,
        message=error_message(body, resp.status_code),
        data=body or {},
    )


# ─── Heartbeat ───────────────────────────────────────────────────

def send_heartbeat(session, url, username, status, app_version, timeout=API_TIMEOUT_HEARTBEAT):
    """POST one presence heartbeat. Returns ApiResult."""
    payload = {
        "action": "heartbeat",
        "username": username,
        "status": status,
        "app_version": app_version,
    }
    try:
        resp = session.post(url, json=payload, timeout=timeout)
    except requests.RequestException as e:
        log.warning("Heartbeat network error: %s", e)
        return ApiResult(ok=False, message=str(e))

    result = interpret_response(resp)
    if result.ok:
        log.info("Heartbeat OK | status=%s | v%s", status, app_version)
    elif result.is_auth_error:
        log.error("Heartbeat REJECTED (%d) — %s", result.status_code, result.message)
    else:
        log.warning("Heartbeat failed: HTTP %d — %s", result.status_code, result.message[:200])
    return result


# ─── Metrics ─────────────────────────────────────────────────────

def submit_metrics(session, url, document, timeout=API_TIMEOUT_METRICS):
    """POST one snapshot document (already carrying action/username)."""
    try:
        resp = session.post(url, json=document, timeout=timeout)
    except requests.RequestException as e:
        log.warning("Metrics submit network error: %s", e)
        return ApiResult(ok=False, message=str(e))

    result = interpret_response(resp)
    if result.ok:
        log.info(
            "Metrics submitted | cpu=%s%% mem=%s%%",
            document.get("cpu_usage"), document.get("memory_usage"),
        )
    else:
        log.warning("Metrics submit failed: HTTP %d — %s", result.status_code, result.message[:200])
    return result


# ─── Public IP ───────────────────────────────────────────────────

def fetch_public_ip(session, url=PUBLIC_IP_URL, timeout=API_TIMEOUT_PUBLIC_IP):
    """Plain-text IP from the lookup service, or UNKNOWN."""
    try:
        resp = session.get(url, timeout=timeout)
    except requests.RequestException as e:
        log.debug("Public IP lookup failed: %s", e)
        return UNKNOWN
    if resp.status_code != 200:
        log.debug("Public IP lookup failed: HTTP %d", resp.status_code)
        return UNKNOWN
    ip = resp.text.strip()
    return ip or UNKNOWN
