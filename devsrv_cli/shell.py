"""Bounded command execution.

Every external command runs with a timeout. When it expires the child is
killed (subprocess.run does this before re-raising) and the caller gets a
failed result instead of blocking.
"""

import logging
import subprocess
from dataclasses import dataclass

from .subprocess_timeouts import TIMEOUT_STANDARD

logger = logging.getLogger("devsrv.shell")

EXIT_TIMEOUT = 124
EXIT_CANNOT_RUN = 127


@dataclass(frozen=True)
class CmdResult:
    code: int
    out: str = ""
    err: str = ""

    @property
    def ok(self) -> bool:
        return self.code == 0

    @property
    def message(self) -> str:
        """One-line diagnostic: stderr first, stdout otherwise"""
        text = self.err.strip() or self.out.strip()
        return text.splitlines()[-1] if text else ""


def run(args: list[str], timeout: float = TIMEOUT_STANDARD, env: dict | None = None) -> CmdResult:
    """Run a command, capturing output, never longer than ``timeout`` seconds."""
    logger.debug("run: %s (timeout %ss)", args, timeout)
    try:
        result = subprocess.run(
            args,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
            env=env,
        )
    except subprocess.TimeoutExpired as e:
        out = e.stdout.decode("utf-8", "replace") if isinstance(e.stdout, bytes) else (e.stdout or "")
        logger.warning("%s timed out after %ss", args[0], timeout)
        return CmdResult(EXIT_TIMEOUT, out, f"{args[0]} timed out after {timeout}s")
    except OSError as e:
        logger.warning("Cannot run %s: %s", args[0], e)
        return CmdResult(EXIT_CANNOT_RUN, "", f"Cannot run {args[0]}: {e}")

    return CmdResult(result.returncode, result.stdout or "", result.stderr or "")
