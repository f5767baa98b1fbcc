"""
Site records for DevSrv.

A site is a local folder exposed through the proxy either on a loopback
port (https://localhost:<port>) or on a custom local domain
(https://<domain>, privileged port + hosts alias).

Decoding comes in two flavours:
- strict: the current schema, every field present with the right type
- lenient: best-effort recovery of older record shapes, one record at a time
"""

import logging
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

logger = logging.getLogger("devsrv.sites")

DEFAULT_PORT = 3000


class SiteMode(str, Enum):
    LOOPBACK_PORT = "localhost"
    CUSTOM_DOMAIN = "domain"


class SiteStatus(str, Enum):
    OFF = "Off"
    ON = "On"
    ERROR = "Error"
    UNKNOWN = "Unknown"


class ProxyState(str, Enum):
    RUNNING = "Running"
    STOPPED = "Stopped"
    UNKNOWN = "Unknown"
    ERROR = "Error"


# Aliases accepted for ``mode`` when recovering older files
_MODE_ALIASES = {
    "localhost": SiteMode.LOOPBACK_PORT,
    "loopback": SiteMode.LOOPBACK_PORT,
    "loopbackport": SiteMode.LOOPBACK_PORT,
    "port": SiteMode.LOOPBACK_PORT,
    "domain": SiteMode.CUSTOM_DOMAIN,
    "customdomain": SiteMode.CUSTOM_DOMAIN,
}


@dataclass(frozen=True)
class Site:
    id: str
    name: str
    shortcut_label: str
    folder: str
    mode: SiteMode = SiteMode.LOOPBACK_PORT
    domain: str = ""
    port: int | None = DEFAULT_PORT
    served: bool = False
    shortcut: bool = True

    @classmethod
    def create(
        cls,
        name: str,
        folder: str,
        mode: SiteMode = SiteMode.LOOPBACK_PORT,
        port: int | None = None,
        domain: str = "",
        shortcut_label: str = "",
        served: bool = False,
        shortcut: bool = True,
    ) -> "Site":
        """Build a new, normalized site with a fresh id."""
        site = cls(
            id=str(uuid.uuid4()).upper(),
            name=name,
            shortcut_label=shortcut_label,
            folder=folder,
            mode=mode,
            domain=domain,
            port=port,
            served=served,
            shortcut=shortcut,
        )
        return normalize(site)

    @property
    def requires_privileges(self) -> bool:
        """Custom domains bind the privileged HTTPS port"""
        return self.mode == SiteMode.CUSTOM_DOMAIN

    @property
    def display_label(self) -> str:
        return self.shortcut_label or self.name

    def host(self) -> str:
        """Proxy site address: ``localhost:<port>`` or ``<domain>``"""
        if self.mode == SiteMode.CUSTOM_DOMAIN:
            return self.domain
        return f"localhost:{self.port or DEFAULT_PORT}"

    def url(self) -> str:
        return f"https://{self.host()}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "shortcutLabel": self.shortcut_label,
            "folder": self.folder,
            "mode": self.mode.value,
            "domain": self.domain,
            "port": self.port,
            "served": self.served,
            "shortcut": self.shortcut,
        }


def normalize(site: Site, default_port: int = DEFAULT_PORT) -> Site:
    """Trim text fields and apply the mode-dependent port rule."""
    name = site.name.strip()
    label = site.shortcut_label.strip()
    if not label:
        label = name
    if not name:
        name = label or "Site"
        label = label or name

    port = site.port
    if site.mode == SiteMode.CUSTOM_DOMAIN:
        port = None
    elif port is None:
        port = default_port

    return replace(
        site,
        name=name,
        shortcut_label=label,
        folder=site.folder.strip(),
        domain=site.domain.strip(),
        port=port,
    )


def sort_key(site: Site) -> str:
    return site.name.lower()


# ─────────────────────────────────────────────────────────────
# Strict decoding
# ─────────────────────────────────────────────────────────────

_STRICT_FIELDS: dict[str, type] = {
    "id": str,
    "name": str,
    "shortcutLabel": str,
    "folder": str,
    "mode": str,
    "domain": str,
    "served": bool,
    "shortcut": bool,
}


def decode_strict(payload: Any) -> list[Site]:
    """
    Decode a list of records in the current schema.

    Raises ValueError on the first record that does not match.
    """
    if not isinstance(payload, list):
        raise ValueError("Expected a JSON array of sites")

    sites = []
    for index, obj in enumerate(payload):
        if not isinstance(obj, dict):
            raise ValueError(f"Record {index} is not an object")
        for key, expected in _STRICT_FIELDS.items():
            if not isinstance(obj.get(key), expected):
                raise ValueError(f"Record {index}: field '{key}' missing or not {expected.__name__}")
        port = obj.get("port")
        if port is not None and (isinstance(port, bool) or not isinstance(port, int)):
            raise ValueError(f"Record {index}: field 'port' is not an integer")
        try:
            mode = SiteMode(obj["mode"])
        except ValueError as e:
            raise ValueError(f"Record {index}: unknown mode '{obj['mode']}'") from e

        sites.append(
            Site(
                id=obj["id"],
                name=obj["name"],
                shortcut_label=obj["shortcutLabel"],
                folder=obj["folder"],
                mode=mode,
                domain=obj["domain"],
                port=port,
                served=obj["served"],
                shortcut=obj["shortcut"],
            )
        )
    return sites


# ─────────────────────────────────────────────────────────────
# Lenient recovery
# ─────────────────────────────────────────────────────────────


def _pick(obj: dict, keys: tuple[str, ...], expected: type, default: Any) -> Any:
    """Return the first key present with the expected type, else the default."""
    for key in keys:
        if key not in obj:
            continue
        value = obj[key]
        if expected is int and isinstance(value, bool):
            continue
        if isinstance(value, expected):
            return value
    return default


def _recover_mode(obj: dict) -> SiteMode:
    raw = _pick(obj, ("mode",), str, "")
    key = raw.strip().lower().replace("_", "").replace("-", "")
    return _MODE_ALIASES.get(key, SiteMode.LOOPBACK_PORT)


def _recover_port(obj: dict) -> int | None:
    value = obj.get("port")
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def recover_record(obj: dict, default_port: int = DEFAULT_PORT) -> Site:
    """
    Rebuild a normalized site from an arbitrary older record.

    Known renames: ``enabled`` -> ``served``, ``label`` -> ``shortcutLabel``.
    Missing or mistyped fields get defaults; a missing id gets a new one.
    """
    name = _pick(obj, ("name",), str, "")
    if "withoutPort" in obj:
        logger.info("Ignoring legacy 'withoutPort' flag on site %r", name or obj.get("id"))

    site = Site(
        id=_pick(obj, ("id",), str, "") or str(uuid.uuid4()).upper(),
        name=name,
        shortcut_label=_pick(obj, ("shortcutLabel", "label"), str, name),
        folder=_pick(obj, ("folder", "root", "path"), str, ""),
        mode=_recover_mode(obj),
        domain=_pick(obj, ("domain",), str, ""),
        port=_recover_port(obj),
        served=_pick(obj, ("served", "enabled"), bool, False),
        shortcut=_pick(obj, ("shortcut",), bool, False),
    )
    return normalize(site, default_port)


def recover_all(payload: Any, default_port: int = DEFAULT_PORT) -> list[Site]:
    """
    Recover every object in a generic record list.

    Raises ValueError when the payload is not a list of objects at all.
    """
    if not isinstance(payload, list):
        raise ValueError("Expected a JSON array of site records")
    records = [obj for obj in payload if isinstance(obj, dict)]
    if len(records) != len(payload):
        raise ValueError("Site list contains entries that are not objects")
    return [recover_record(obj, default_port) for obj in records]
