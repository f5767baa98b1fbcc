"""
Caddyfile generation for DevSrv.

The generated file is disposable: it is rebuilt wholesale from the served
sites on every apply and never edited by hand. Output depends only on the
sites passed in (no timestamps), so equal inputs give byte-identical text.
"""

import logging
from collections.abc import Iterable
from pathlib import Path

from .errors import ConfigPersistError
from .sites import Site

logger = logging.getLogger("devsrv.caddyfile")

PLACEHOLDER_MESSAGE = "DevSrv: no active sites"
HEADER_COMMENT = "# GENERATED by DevSrv, do not edit"


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def site_block(site: Site, access_log: Path) -> list[str]:
    """One stanza: local TLS, static files from the folder, access log."""
    return [
        f"{site.host()} {{",
        "  tls internal",
        f"  root * {_quote(site.folder)}",
        "  file_server",
        "  log {",
        f"    output file {_quote(str(access_log))}",
        "  }",
        "}",
        "",
    ]


def generate_caddyfile(
    served: Iterable[Site],
    access_log: Path,
    admin_listen: str = "127.0.0.1:2019",
    placeholder_host: str = "localhost:8443",
) -> str:
    """
    Build the Caddyfile for the given served sites.

    With nothing served a single placeholder stanza answers on the default
    unprivileged address, so the proxy always has something to bind.
    Sites are emitted in the order given (the registry's sort order).
    """
    lines = [
        "{",
        f"  admin {admin_listen}",
        "}",
        "",
        HEADER_COMMENT,
        "",
    ]

    active = list(served)
    if not active:
        lines.append(f"{placeholder_host} {{ respond {_quote(PLACEHOLDER_MESSAGE)} 200 }}")
        lines.append("")

    for site in active:
        lines.extend(site_block(site, access_log))

    return "\n".join(lines)


def write_caddyfile(content: str, path: Path) -> Path:
    """Replace the generated file atomically"""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(content, encoding="utf-8")
        tmp.replace(path)
    except OSError as e:
        raise ConfigPersistError(f"Cannot write {path.name}: {e}") from e
    logger.info("Wrote %s", path)
    return path
