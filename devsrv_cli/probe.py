"""
Health probes for the proxy and served sites.

Read-only and safe to call from several status displays at once. Failures
are classified, never raised to the caller.
"""

import logging

import httpx

from .errors import ProbeFailure
from .sites import SiteStatus
from .subprocess_timeouts import PROBE_ADMIN, PROBE_SITE

logger = logging.getLogger("devsrv.probe")


def admin_alive(host: str = "127.0.0.1", port: int = 2019, timeout: float = PROBE_ADMIN) -> bool:
    """True when the proxy admin endpoint answers at all."""
    url = f"http://{host}:{port}/config/"
    try:
        httpx.get(url, timeout=timeout)
    except httpx.HTTPError as e:
        logger.debug("Admin endpoint %s not reachable: %s", url, e)
        return False
    return True


def head_status(url: str, timeout: float = PROBE_SITE) -> int:
    """
    HEAD ``url`` and return the status code when it is 2xx/3xx.

    Raises ProbeFailure for timeouts, refused connections and other codes.
    Certificates are not verified: sites use the proxy's local CA.
    """
    try:
        response = httpx.head(url, timeout=timeout, verify=False, follow_redirects=False)
    except httpx.TimeoutException as e:
        raise ProbeFailure(f"{url}: timeout") from e
    except httpx.ConnectError as e:
        raise ProbeFailure(f"{url}: connection refused") from e
    except httpx.HTTPError as e:
        raise ProbeFailure(f"{url}: {e}") from e

    if 200 <= response.status_code < 400:
        return response.status_code
    raise ProbeFailure(f"{url}: HTTP {response.status_code}")


def probe_url(url: str, timeout: float = PROBE_SITE) -> SiteStatus:
    """Classify a site URL as On or Error."""
    try:
        code = head_status(url, timeout)
    except ProbeFailure as e:
        logger.debug("Probe failed: %s", e)
        return SiteStatus.ERROR
    logger.debug("Probe %s -> %s", url, code)
    return SiteStatus.ON
