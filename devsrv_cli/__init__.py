"""
DevSrv CLI - serve local static folders over HTTPS through Caddy
Loopback ports run as a background user process; custom domains run as a
root system service with a hosts alias.
"""

__version__ = "1.0.0"

from .caddy_lifecycle import CaddyLifecycle, find_caddy_executable
from .registry import LoadResult, Registry
from .settings import Settings
from .sites import ProxyState, Site, SiteMode, SiteStatus

__all__ = [
    "CaddyLifecycle",
    "find_caddy_executable",
    "Registry",
    "LoadResult",
    "Settings",
    "Site",
    "SiteMode",
    "SiteStatus",
    "ProxyState",
    "__version__",
]
