"""
Privilege escalation gateway.

Every operation that needs root goes through ``EscalationGateway.run`` as
one composed shell script, so the user sees one consent prompt per call:
- macOS: osascript "do shell script ... with administrator privileges"
- Linux: pkexec (polkit dialog)
- already root: plain /bin/sh

A declined prompt or failed password is a non-zero result, never an
exception. Nothing is retried.
"""

import logging
import shutil

from . import shell
from .platform import IS_LINUX, IS_MACOS, is_admin
from .shell import CmdResult
from .subprocess_timeouts import get_timeout

logger = logging.getLogger("devsrv.escalation")

# osascript reports a dismissed dialog as error -128
USER_CANCELED_MARKERS = ("-128", "User canceled", "User cancelled")


def applescript_string(script: str) -> str:
    """Escape a shell script for embedding in an AppleScript string literal"""
    return script.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def was_cancelled(result: CmdResult) -> bool:
    return not result.ok and any(marker in result.err for marker in USER_CANCELED_MARKERS)


class EscalationGateway:
    """Runs one shell script with elevated rights per call."""

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout if timeout is not None else get_timeout("escalated")

    def command_for(self, script: str) -> list[str] | None:
        """The argv that runs ``script`` elevated on this machine, if any."""
        if is_admin():
            return ["/bin/sh", "-c", script]
        if IS_MACOS:
            return ["/usr/bin/osascript", "-e", f'do shell script "{applescript_string(script)}" with administrator privileges']
        if IS_LINUX:
            pkexec = shutil.which("pkexec")
            if pkexec:
                return [pkexec, "/bin/sh", "-c", script]
        return None

    def run(self, script: str) -> CmdResult:
        argv = self.command_for(script)
        if argv is None:
            logger.error("No privilege escalation method available on this platform")
            return CmdResult(1, "", "No privilege escalation method available (need osascript or pkexec)")

        logger.info("Running escalated command (%d chars)", len(script))
        result = shell.run(argv, timeout=self.timeout)
        if was_cancelled(result):
            logger.info("Escalation declined by user")
            return CmdResult(result.code, result.out, f"Administrator authorization was cancelled ({result.err.strip()})")
        if not result.ok:
            logger.error("Escalated command failed (%d): %s", result.code, result.message)
        return result
