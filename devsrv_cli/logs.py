"""Proxy log access: access log and error log under the data directory."""

import sys
import time
from pathlib import Path

from . import paths
from .output import print_error, print_info, print_success, print_warning

DEFAULT_LINES = 300


def tail_lines(path: Path, lines: int = DEFAULT_LINES) -> list[str]:
    """Last ``lines`` lines of a file (OSError propagates)."""
    content = path.read_text(encoding="utf-8", errors="replace")
    all_lines = content.splitlines()
    if lines > 0 and len(all_lines) > lines:
        return all_lines[-lines:]
    return all_lines


def _section(title: str, path: Path, lines: int, empty_hint: str) -> str:
    text = f"=== {title} ({path}) ===\n"
    if not path.exists():
        return text + "(not created yet)\n"
    try:
        tail = tail_lines(path, lines)
    except OSError as e:
        return text + f"(cannot read) {e}\n"
    if not "".join(tail).strip():
        return text + empty_hint + "\n"
    return text + "\n".join(tail) + "\n"


def read_logs(lines: int = DEFAULT_LINES) -> str:
    """Both proxy logs as one block of text."""
    access = _section("ACCESS", paths.access_log(), lines, "(empty, open the site once and check again)")
    error = _section("ERROR", paths.error_log(), lines, "(empty)")
    return access + "\n" + error


def clear_logs() -> tuple[bool, str]:
    """Truncate both logs"""
    cleared = []
    for path in (paths.access_log(), paths.error_log()):
        if not path.exists():
            continue
        try:
            path.write_text("")
        except PermissionError:
            return (False, f"Permission denied: {path}")
        except OSError as e:
            return (False, f"Failed to clear {path}: {e}")
        cleared.append(path.name)
    if not cleared:
        return (True, "No log files yet")
    return (True, f"Cleared {', '.join(cleared)}")


def cmd_logs(follow: bool = False, lines: int = 50, clear: bool = False) -> bool:
    """Print proxy logs, optionally following the error log (like tail -f)."""
    if clear:
        ok, msg = clear_logs()
        if ok:
            print_success(msg)
        else:
            print_error(msg)
        return ok

    sys.stdout.write(read_logs(lines))
    sys.stdout.flush()
    if not follow:
        return True

    log_path = paths.error_log()
    print_info(f"Following {log_path} (Ctrl+C to stop)...")
    last_size = log_path.stat().st_size if log_path.exists() else 0

    try:
        while True:
            time.sleep(0.5)
            if not log_path.exists():
                continue

            current_size = log_path.stat().st_size
            if current_size > last_size:
                with log_path.open("r", encoding="utf-8", errors="replace") as f:
                    f.seek(last_size)
                    sys.stdout.write(f.read())
                    sys.stdout.flush()
                last_size = current_size
            elif current_size < last_size:
                print_warning("(Log file was cleared)")
                last_size = current_size
    except KeyboardInterrupt:
        print()
        return True
