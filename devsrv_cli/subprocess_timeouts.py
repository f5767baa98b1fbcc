"""
Subprocess timeout constants for DevSrv.

Every external command (proxy launch, service-manager queries, escalated
scripts, health probes) runs with a bounded timeout. On expiry the child
is killed rather than waited on.
"""

# Quick operations: version checks, kill, touch, tail
TIMEOUT_QUICK = 3
"""Quick operations: version checks, signals, log tails."""

TIMEOUT_STANDARD = 8
"""Standard operations: generic commands, unprivileged proxy launch."""

TIMEOUT_ESCALATED = 60
"""Escalated scripts: the user has to answer a consent prompt first."""

PROBE_SITE = 2.0
"""HTTPS HEAD against a served site."""

PROBE_ADMIN = 1.0
"""HTTP GET against the proxy admin endpoint."""


TIMEOUTS = {
    # Proxy operations
    "caddy_version": TIMEOUT_QUICK,
    "caddy_launch": 6,
    "caddy_kill": 2,
    # Service manager
    "launchctl_print": 2,
    "systemctl_status": 2,
    # Elevated operations (consent prompt + work)
    "escalated": TIMEOUT_ESCALATED,
    # Files
    "touch": 2,
    "tail": 2,
    # Browser
    "browser_open": 2,
}


def get_timeout(operation: str, default: float = TIMEOUT_STANDARD) -> float:
    """
    Get the timeout for a named operation.

    Examples:
        >>> get_timeout("caddy_version")
        3
        >>> get_timeout("escalated")
        60
        >>> get_timeout("unknown_operation")
        8
    """
    return TIMEOUTS.get(operation, default)
