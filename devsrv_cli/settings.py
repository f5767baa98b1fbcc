"""
User settings for DevSrv.

Manages <data dir>/settings.yml with:
- Proxy executable override
- Unprivileged and admin listen addresses
- Probe timeouts

A missing or malformed file falls back to defaults.
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from . import paths
from .errors import ConfigPersistError
from .platform import IS_WINDOWS

logger = logging.getLogger("devsrv.settings")

DEFAULT_SETTINGS: dict[str, Any] = {
    "caddy_path": None,
    "user_listen": "localhost:8443",
    "admin_listen": "127.0.0.1:2019",
    "default_port": 3000,
    "probe_timeout": 2.0,
    "admin_timeout": 1.0,
}


def parse_listen(value: str | None, default_host: str, default_port: int) -> tuple[str, int]:
    """Parse a listen address into (host, port)."""
    if not value:
        return (default_host, default_port)
    text = str(value).strip()
    if not text:
        return (default_host, default_port)
    if text.startswith("[") and "]" in text:
        host, _, remainder = text[1:].partition("]")
        if remainder.startswith(":") and remainder[1:].isdigit():
            return (host or default_host, int(remainder[1:]))
        return (host or default_host, default_port)
    if ":" in text:
        host, port_str = text.rsplit(":", 1)
        if port_str.isdigit():
            return (host or default_host, int(port_str))
        return (host or default_host, default_port)
    return (text, default_port)


class Settings:
    """Loads settings.yml and exposes typed accessors."""

    def __init__(self, settings_file: Path | None = None):
        self.settings_file = settings_file or paths.settings_file()
        self._data: dict[str, Any] = dict(DEFAULT_SETTINGS)
        self._load()

    def _load(self):
        if not self.settings_file.exists():
            return
        try:
            with open(self.settings_file, encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Ignoring unreadable settings file %s: %s", self.settings_file, e)
            return
        if isinstance(loaded, dict):
            self._data = {**DEFAULT_SETTINGS, **loaded}
        else:
            logger.warning("Ignoring settings file %s: not a mapping", self.settings_file)

    def save(self):
        """Write settings atomically"""
        try:
            self.settings_file.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.settings_file.with_suffix(".tmp")
            with open(tmp, "w", encoding="utf-8") as f:
                yaml.dump(self._data, f, default_flow_style=False, sort_keys=False)
            if not IS_WINDOWS:
                tmp.chmod(0o600)
            tmp.replace(self.settings_file)
        except OSError as e:
            raise ConfigPersistError(f"Cannot save {self.settings_file.name}: {e}") from e

    def set(self, key: str, value: Any) -> None:
        if key not in DEFAULT_SETTINGS:
            raise ValueError(f"Unknown setting: {key}")
        self._data[key] = value
        self.save()

    @property
    def raw(self) -> dict:
        return self._data.copy()

    @property
    def caddy_path(self) -> str | None:
        env_path = os.getenv("DEVSRV_CADDY", "").strip()
        if env_path:
            return env_path
        value = self._data.get("caddy_path")
        return str(value) if value else None

    @property
    def user_listen(self) -> tuple[str, int]:
        return parse_listen(self._data.get("user_listen"), "localhost", 8443)

    @property
    def admin_listen(self) -> tuple[str, int]:
        return parse_listen(self._data.get("admin_listen"), "127.0.0.1", 2019)

    @property
    def default_port(self) -> int:
        try:
            port = int(self._data.get("default_port") or 3000)
        except (TypeError, ValueError):
            return 3000
        return port if 1 <= port <= 65535 else 3000

    def _float(self, key: str) -> float:
        try:
            value = float(self._data.get(key))
        except (TypeError, ValueError):
            return float(DEFAULT_SETTINGS[key])
        return value if value > 0 else float(DEFAULT_SETTINGS[key])

    # Probes stay short: at most 2s for sites and 1s for the admin endpoint
    @property
    def probe_timeout(self) -> float:
        return min(self._float("probe_timeout"), 2.0)

    @property
    def admin_timeout(self) -> float:
        return min(self._float("admin_timeout"), 1.0)
