"""
Site registry for DevSrv.

Manages <data dir>/sites.json:
- Ordered site list (case-insensitive name sort)
- Atomic persistence (temp file + rename)
- Schema recovery for older files
- The single-served-site rule (set_only_served is the only way to serve)

In-memory state changes only once the new list has been written, so a
failed save leaves the registry exactly as it was.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Literal

from . import paths
from .errors import ConfigPersistError, SchemaRecoveryError
from .platform import IS_WINDOWS
from .sites import DEFAULT_PORT, Site, decode_strict, normalize, recover_all, sort_key

logger = logging.getLogger("devsrv.registry")

LoadStatus = Literal["ok", "empty", "recovered", "error"]
Listener = Callable[["Registry"], None]


@dataclass(frozen=True)
class LoadResult:
    status: LoadStatus
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status != "error"


class Registry:
    """
    The set of known sites.

    Callers serialize mutating calls; there is no locking around the file.
    """

    def __init__(self, sites_file: Path | None = None, default_port: int = DEFAULT_PORT, autoload: bool = True):
        self.sites_file = sites_file or paths.sites_file()
        self.default_port = default_port
        self._sites: list[Site] = []
        self._listeners: list[Listener] = []
        self.last_error: str | None = None
        self.last_info: str | None = None
        if autoload:
            self.load()

    # ─────────────────────────────────────────────────────────────
    # Loading
    # ─────────────────────────────────────────────────────────────

    def load(self) -> LoadResult:
        """Reload from disk; an absent file is an empty registry."""
        self.last_error = None
        self.last_info = None

        if not self.sites_file.exists():
            self._sites = []
            return LoadResult("empty")

        try:
            text = self.sites_file.read_text(encoding="utf-8")
        except OSError as e:
            self._sites = []
            self.last_error = f"Cannot read {self.sites_file.name}: {e}"
            logger.error(self.last_error)
            return LoadResult("error", self.last_error)

        try:
            sites, recovered = self._decode(text)
        except SchemaRecoveryError as e:
            self._sites = []
            self.last_error = str(e)
            logger.warning("Registry reset to empty: %s", e)
            return LoadResult("error", self.last_error)

        ordered = _single_served(sorted((normalize(s, self.default_port) for s in sites), key=sort_key))
        self._sites = ordered

        if recovered:
            self.last_info = f"Recovered {self.sites_file.name} schema"
            logger.info("%s (%d sites)", self.last_info, len(ordered))
            self._persist_quietly()
            return LoadResult("recovered", self.last_info)

        if ordered != sites:
            self._persist_quietly()
        return LoadResult("ok")

    def _decode(self, text: str) -> tuple[list[Site], bool]:
        """Return (sites, recovered)."""
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise SchemaRecoveryError(f"Cannot decode {self.sites_file.name} (unknown format): {e}") from e

        try:
            return decode_strict(payload), False
        except ValueError as strict_error:
            logger.debug("Strict decode failed, trying recovery: %s", strict_error)

        try:
            return recover_all(payload, self.default_port), True
        except ValueError as e:
            raise SchemaRecoveryError(f"Cannot decode {self.sites_file.name} (unknown format): {e}") from e

    def _persist_quietly(self):
        try:
            self._write(self._sites)
        except ConfigPersistError as e:
            self.last_error = str(e)
            logger.error(self.last_error)

    # ─────────────────────────────────────────────────────────────
    # Persistence
    # ─────────────────────────────────────────────────────────────

    def _write(self, sites: list[Site]):
        """Write the list atomically"""
        try:
            self.sites_file.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.sites_file.with_suffix(".tmp")
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump([s.to_dict() for s in sites], f, indent=2)
                f.write("\n")
            if not IS_WINDOWS:
                tmp.chmod(0o600)
            tmp.replace(self.sites_file)
        except OSError as e:
            raise ConfigPersistError(f"Cannot save {self.sites_file.name}: {e}") from e

    def _commit(self, sites: list[Site], info: str) -> tuple[bool, str]:
        """Sort, persist, then swap in the new list."""
        ordered = sorted(sites, key=sort_key)
        self.last_error = None
        try:
            self._write(ordered)
        except ConfigPersistError as e:
            self.last_error = str(e)
            logger.error(self.last_error)
            return (False, self.last_error)

        self._sites = ordered
        self.last_info = info
        self._notify()
        return (True, info)

    # ─────────────────────────────────────────────────────────────
    # Change notification
    # ─────────────────────────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(registry)`` after every committed mutation."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self):
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Registry listener %r failed", listener)

    # ─────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────

    @property
    def sites(self) -> list[Site]:
        return list(self._sites)

    def __len__(self) -> int:
        return len(self._sites)

    def get(self, site_id: str) -> Site | None:
        return next((s for s in self._sites if s.id == site_id), None)

    def find(self, ref: str) -> Site | None:
        """Look a site up by id, then by case-insensitive name or label."""
        site = self.get(ref)
        if site:
            return site
        needle = ref.strip().lower()
        for s in self._sites:
            if s.name.lower() == needle or s.shortcut_label.lower() == needle:
                return s
        return None

    def served_sites(self) -> list[Site]:
        return [s for s in self._sites if s.served]

    def index_html_exists(self, site: Site) -> bool:
        return (Path(site.folder) / "index.html").is_file()

    # ─────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────

    def upsert(self, site: Site) -> tuple[bool, str]:
        """Insert or replace a site by id"""
        normalized = normalize(site, self.default_port)
        sites = [s for s in self._sites if s.id != normalized.id]
        replaced = len(sites) != len(self._sites)
        sites.append(normalized)

        if normalized.served:
            sites = _served_transition(sites, normalized.id, True)

        ok, msg = self._commit(sites, "Saved")
        if ok:
            logger.info("%s site %s (%s)", "Updated" if replaced else "Added", normalized.name, normalized.id)
        return (ok, msg)

    def remove(self, site_id: str) -> tuple[bool, str]:
        """Delete by id; unknown ids are a no-op"""
        sites = [s for s in self._sites if s.id != site_id]
        if len(sites) == len(self._sites):
            return (True, "Nothing to remove")
        ok, msg = self._commit(sites, "Removed")
        if ok:
            logger.info("Removed site %s", site_id)
        return (ok, msg)

    def set_only_served(self, site_id: str, served: bool) -> tuple[bool, str]:
        """
        Serve one site exclusively, or stop serving it.

        served=True clears every other site's flag in the same write.
        served=False clears only this site's flag.
        """
        if self.get(site_id) is None:
            return (False, f"Unknown site: {site_id}")

        sites = _served_transition(self._sites, site_id, served)

        ok, msg = self._commit(sites, "Serving" if served else "Not serving")
        if ok:
            logger.info("Site %s served=%s", site_id, served)
        return (ok, msg)

    def clear_served(self) -> tuple[bool, str]:
        """Stop serving every site"""
        if not self.served_sites():
            return (True, "No served sites")
        return self._commit([replace(s, served=False) for s in self._sites], "Cleared served sites")


def _single_served(sites: list[Site]) -> list[Site]:
    """Keep only the first served site when a file on disk has several."""
    seen = False
    result = []
    for site in sites:
        if site.served and seen:
            logger.warning("Site %s was also marked served; clearing it", site.name)
            site = replace(site, served=False)
        seen = seen or site.served
        result.append(site)
    return result


def _served_transition(sites: list[Site], site_id: str, served: bool) -> list[Site]:
    """
    The only place a served flag is set.

    Serving one site unserves all the others; unserving touches one site.
    """
    if served:
        return [replace(s, served=(s.id == site_id)) for s in sites]
    return [replace(s, served=False) if s.id == site_id else s for s in sites]
