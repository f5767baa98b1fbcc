"""Site field validation used before handing a record to the registry"""

import logging
import re
from pathlib import Path

from .sites import Site, SiteMode

logger = logging.getLogger("devsrv.validation")

# RFC 1035/1123 length limits
MAX_HOSTNAME_LENGTH = 253
MAX_LABEL_LENGTH = 63

VALID_LABEL_PATTERN = re.compile(r"^(?!-)(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?)$", re.IGNORECASE)


def validate_hostname(hostname: str) -> tuple[bool, str | None]:
    """Check a custom domain is a bare hostname safe to put in the hosts table."""
    if not hostname:
        return (False, "Domain cannot be empty")

    if any(c in hostname for c in ["\r", "\n", "\x00"]):
        return (False, "Domain contains invalid control characters")

    if "/" in hostname or "://" in hostname:
        return (False, "Domain must be a hostname only (no scheme or path)")

    if not all(c.isalnum() or c in ".-" for c in hostname):
        return (False, "Domain contains invalid characters")

    if len(hostname) > MAX_HOSTNAME_LENGTH:
        return (False, f"Domain too long: {len(hostname)} chars (max {MAX_HOSTNAME_LENGTH})")

    for label in hostname.split("."):
        if not label:
            return (False, "Empty label in domain")
        if len(label) > MAX_LABEL_LENGTH:
            return (False, f"Label '{label}' too long: {len(label)} chars (max {MAX_LABEL_LENGTH})")
        if not VALID_LABEL_PATTERN.match(label):
            return (False, f"Label '{label}' does not meet RFC 1123 requirements")

    return (True, None)


def validate_port(port: int) -> tuple[bool, str | None]:
    """Validate port number"""
    if isinstance(port, bool) or not isinstance(port, int):
        return (False, "Port must be a number")
    if port < 1 or port > 65535:
        return (False, "Port must be between 1 and 65535")
    return (True, None)


def validate_site(site: Site) -> tuple[bool, str]:
    """
    Editor-side checks for a site record.

    Returns (ok, message). ``ok`` is False for blocking problems; a non-empty
    message with ``ok`` True is a warning (e.g. no index.html yet).
    """
    label = site.shortcut_label.strip() or site.name.strip()
    folder = site.folder.strip()

    if not label:
        return (False, "Label is required.")
    if not folder:
        return (False, "Folder is required.")
    if not Path(folder).is_dir():
        return (False, "Folder does not exist.")

    if site.mode == SiteMode.CUSTOM_DOMAIN:
        valid, error = validate_hostname(site.domain.strip().lower())
        if not valid:
            return (False, error or "Invalid domain")
    elif site.port is not None:
        valid, error = validate_port(site.port)
        if not valid:
            return (False, error or "Invalid port")
        if site.port < 1024:
            logger.debug("Port %s below 1024 for site %s", site.port, site.name)
            return (True, f"Warning: port {site.port} requires elevated privileges.")

    if not (Path(folder) / "index.html").is_file():
        return (True, "Warning: index.html not found in folder.")

    return (True, "")
