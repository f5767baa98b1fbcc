"""Fixed locations used by DevSrv.

All per-user files live in one data directory. ``DEVSRV_HOME`` moves it,
which is how tests isolate themselves from the real installation.
"""

import os
from pathlib import Path

from .platform import IS_MACOS

SERVICE_LABEL = "devsrv.caddy"
HOSTS_FILE = "/etc/hosts"


def get_data_dir(create: bool = True) -> Path:
    """Get the per-user data directory"""
    env_path = os.getenv("DEVSRV_HOME", "").strip()
    if env_path:
        base = Path(env_path).expanduser()
    elif IS_MACOS:
        base = Path.home() / "Library" / "Application Support" / "DevSrv"
    else:
        base = Path.home() / ".devsrv"
    if create:
        base.mkdir(parents=True, exist_ok=True)
    return base


def sites_file() -> Path:
    return get_data_dir() / "sites.json"


def settings_file() -> Path:
    return get_data_dir() / "settings.yml"


def caddyfile_path() -> Path:
    return get_data_dir() / "Caddyfile.generated"


def access_log() -> Path:
    return get_data_dir() / "caddy-access.log"


def error_log() -> Path:
    return get_data_dir() / "caddy-error.log"


def user_pid_file() -> Path:
    """PID record of the unprivileged background proxy"""
    return get_data_dir() / "caddy-user.pid"


def hosts_file() -> Path:
    """System hostname table (``DEVSRV_HOSTS_FILE`` overrides it)"""
    return Path(os.getenv("DEVSRV_HOSTS_FILE", HOSTS_FILE))


def bundled_caddy() -> Path:
    """Proxy executable shipped next to the package, if any"""
    return Path(__file__).parent.resolve() / "bin" / "caddy"
