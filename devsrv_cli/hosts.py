"""
Hosts table alias block for custom-domain sites.

DevSrv owns one block in the system hosts file:

    # DEVSRV-BEGIN
    127.0.0.1 foo.test
    # DEVSRV-END

A sync deletes any previous block and, when a custom-domain site is served,
writes a fresh one. Both steps run as one escalated command. With nothing
to alias the block is removed entirely, markers included.
"""

import logging
import shlex
from collections.abc import Iterable
from pathlib import Path

from . import paths
from .escalation import EscalationGateway
from .platform import IS_MACOS
from .shell import CmdResult
from .sites import Site, SiteMode
from .validation import validate_hostname

logger = logging.getLogger("devsrv.hosts")

MARKER_BEGIN = "# DEVSRV-BEGIN"
MARKER_END = "# DEVSRV-END"
LOOPBACK = "127.0.0.1"


def desired_aliases(sites: Iterable[Site]) -> list[str]:
    """``127.0.0.1 <domain>`` for every served custom-domain site"""
    lines: list[str] = []
    for site in sites:
        if not site.served or site.mode != SiteMode.CUSTOM_DOMAIN or not site.domain:
            continue
        line = f"{LOOPBACK} {site.domain}"
        if line not in lines:
            lines.append(line)
    return lines


def strip_block(text: str) -> str:
    """
    Remove the DevSrv block.

    Matches the sed range used on disk: markers may carry trailing
    whitespace (CRLF included) and an unterminated block runs to the end of
    the file.
    """
    kept = []
    inside = False
    for line in text.splitlines(keepends=True):
        marker = line.rstrip()
        if not inside and marker == MARKER_BEGIN:
            inside = True
            continue
        if inside:
            if marker == MARKER_END:
                inside = False
            continue
        kept.append(line)
    return "".join(kept)


def render_hosts(text: str, aliases: list[str]) -> str:
    """The hosts file contents after a sync"""
    body = strip_block(text)
    if not aliases:
        return body
    if body and not body.endswith("\n"):
        body += "\n"
    return body + "\n".join([MARKER_BEGIN, *aliases, MARKER_END]) + "\n"


def has_block(text: str) -> bool:
    """True when a DevSrv block starts anywhere in the text, even an empty one"""
    return strip_block(text) != text


def current_block(text: str) -> list[str]:
    """Alias lines currently inside the DevSrv block"""
    lines = []
    inside = False
    for line in text.splitlines():
        marker = line.rstrip()
        if marker == MARKER_BEGIN:
            inside = True
        elif marker == MARKER_END:
            inside = False
        elif inside and marker.strip():
            lines.append(marker.strip())
    return lines


def build_sync_script(hosts_path: Path, aliases: list[str]) -> str:
    """One shell command: delete the old block, append the new one."""
    target = shlex.quote(str(hosts_path))
    in_place = "-i ''" if IS_MACOS else "-i"
    delete = f"/usr/bin/sed {in_place} '/^{MARKER_BEGIN}[[:space:]]*$/,/^{MARKER_END}[[:space:]]*$/d' {target}"
    if not aliases:
        return delete
    block = " ".join(shlex.quote(line) for line in [MARKER_BEGIN, *aliases, MARKER_END])
    newline = f'{{ [ -z "$(/usr/bin/tail -c 1 {target})" ] || echo >> {target}; }}'
    return f"{delete} && {newline} && /usr/bin/printf '%s\\n' {block} >> {target}"


class HostsSynchronizer:
    """Keeps the hosts alias block in step with the served sites."""

    def __init__(self, gateway: EscalationGateway | None = None, hosts_path: Path | None = None):
        self.gateway = gateway or EscalationGateway()
        self.hosts_path = hosts_path or paths.hosts_file()

    def read(self) -> str | None:
        try:
            return self.hosts_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug("Cannot read %s: %s", self.hosts_path, e)
            return None

    def in_sync(self, sites: Iterable[Site]) -> bool:
        text = self.read()
        if text is None:
            return False
        return render_hosts(text, desired_aliases(sites)) == text

    def sync(self, sites: Iterable[Site]) -> CmdResult:
        """Rewrite the block for the given sites (escalates only when needed)."""
        sites = list(sites)
        aliases = desired_aliases(sites)

        for line in aliases:
            domain = line.split(" ", 1)[1]
            valid, error = validate_hostname(domain)
            if not valid:
                logger.warning("Refusing hosts alias for %r: %s", domain, error)
                return CmdResult(2, "", f"Invalid domain '{domain}': {error}")

        text = self.read()
        if text is not None and render_hosts(text, aliases) == text:
            logger.debug("Hosts block already in sync")
            return CmdResult(0, "Hosts already in sync", "")

        result = self.gateway.run(build_sync_script(self.hosts_path, aliases))
        if result.ok:
            logger.info("Hosts block synced (%d aliases)", len(aliases))
        return result
