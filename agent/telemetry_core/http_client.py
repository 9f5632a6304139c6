"""
Pooled requests sessions for the server and public-IP calls.

Two flavours:
  create_session()               metrics submit; small urllib3 retry on 502/503/504
  create_session(retry=False)    heartbeat + public IP; one request per call so
                                 the per-call timeout is the real bound and the
                                 reporter's failure counter counts server hits
"""

import os

import certifi
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import log
from .constants import AGENT_VERSION

_retry_strategy = Retry(
    total=2,
    backoff_factor=0.5,                         # 0.5s, then 1s
    status_forcelist=[502, 503, 504],
    allowed_methods=["HEAD", "GET", "POST"],
    raise_on_status=False,                      # Let api.interpret_response see the 5xx
)

USER_AGENT = f"fieldops-telemetry-agent/{AGENT_VERSION}"


def ca_bundle_path():
    """REQUESTS_CA_BUNDLE / SSL_CERT_FILE when they point at a file, else certifi."""
    for var in ("REQUESTS_CA_BUNDLE", "SSL_CERT_FILE"):
        candidate = os.environ.get(var)
        if candidate and os.path.isfile(candidate):
            return candidate
    return certifi.where()


def create_session(retry=True, pool_size=4):
    """
    Pooled session. Calls can overlap (tick, edge, IP lookup), so the pool
    holds a few connections per host.
    """
    adapter = HTTPAdapter(
        pool_connections=2,
        pool_maxsize=pool_size,
        max_retries=_retry_strategy if retry else 0,
    )
    session = requests.Session()
    for prefix in ("https://", "http://"):
        session.mount(prefix, adapter)
    session.headers["User-Agent"] = USER_AGENT
    session.verify = ca_bundle_path()
    return session


def reset_session(session, retry=True):
    """Drop pooled (possibly half-dead) connections and start over."""
    try:
        session.close()
    except Exception as e:
        log.debug("Closing stale session failed: %s", e)
    return create_session(retry=retry)
