"""
Caddy lifecycle management for DevSrv.

Two runtime shapes, never both at once:
- background process (loopback-port sites): started as the user, listens on
  unprivileged ports, tracked by a PID record in the data directory
- system service (custom-domain sites): root launchd/systemd service on
  port 443, plus a hosts alias block; installed through one consent prompt

``apply()`` picks the shape from the served sites and tears the other one
down. ``state()`` is derived on demand, nothing about it is stored.
"""

import logging
import os
import select
import shutil
import signal
import subprocess
import time
from pathlib import Path

from . import paths
from . import probe as probes
from .caddyfile import generate_caddyfile, write_caddyfile
from .errors import ConfigPersistError, PrivilegeEscalationError, ProcessLaunchError
from .escalation import EscalationGateway
from .hosts import HostsSynchronizer, build_sync_script, has_block
from .registry import Registry
from .service import ServiceManager, get_service_manager
from .settings import Settings
from .shell import CmdResult, run
from .sites import ProxyState, Site, SiteStatus
from .subprocess_timeouts import get_timeout

logger = logging.getLogger("devsrv.lifecycle")

_DEFAULT = object()


def find_caddy_executable(settings: Settings | None = None) -> str | None:
    """Find the Caddy executable: settings/env, bundled copy, PATH, common locations."""
    configured = settings.caddy_path if settings else None
    if configured:
        return configured if Path(configured).exists() else None

    bundled = paths.bundled_caddy()
    if bundled.exists():
        return str(bundled)

    cmd = shutil.which("caddy")
    if cmd:
        return cmd

    common_paths = [
        Path("/opt/homebrew/bin/caddy"),
        Path("/usr/local/bin/caddy"),
        Path("/usr/bin/caddy"),
        Path.home() / ".local" / "bin" / "caddy",
    ]
    for path in common_paths:
        if path.exists():
            return str(path)

    return None


def _read_pid(pid_file: Path) -> int | None:
    try:
        text = pid_file.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return int(text) if text.isdigit() and int(text) > 1 else None


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _wait_exit(pid: int, timeout: float) -> bool:
    """Wait up to ``timeout`` seconds for ``pid`` to exit. True once it is gone."""
    if hasattr(os, "pidfd_open"):
        try:
            fd = os.pidfd_open(pid)
        except ProcessLookupError:
            return True
        except OSError:
            fd = None
        if fd is not None:
            try:
                readable, _, _ = select.select([fd], [], [], timeout)
                return bool(readable)
            finally:
                os.close(fd)

    # No pidfd (macOS): poll against the same deadline
    deadline = time.monotonic() + timeout
    while _pid_alive(pid):
        if time.monotonic() >= deadline:
            return False
        time.sleep(0.05)
    return True


class CaddyLifecycle:
    """Orchestrates the proxy runtime for the sites in a registry."""

    def __init__(
        self,
        registry: Registry,
        settings: Settings | None = None,
        gateway: EscalationGateway | None = None,
        hosts: HostsSynchronizer | None = None,
        service=_DEFAULT,
    ):
        self.registry = registry
        self.settings = settings if settings is not None else Settings()
        self.gateway = gateway or EscalationGateway()
        self.hosts = hosts or HostsSynchronizer(self.gateway)
        self.service: ServiceManager | None = get_service_manager() if service is _DEFAULT else service
        self.caddyfile = paths.caddyfile_path()
        self.access_log = paths.access_log()
        self.error_log = paths.error_log()
        self.pid_file = paths.user_pid_file()

    # ─────────────────────────────────────────────────────────────
    # Config
    # ─────────────────────────────────────────────────────────────

    def render_config(self) -> str:
        host, port = self.settings.user_listen
        admin_host, admin_port = self.settings.admin_listen
        return generate_caddyfile(
            self.registry.served_sites(),
            self.access_log,
            admin_listen=f"{admin_host}:{admin_port}",
            placeholder_host=f"{host}:{port}",
        )

    def write_config(self) -> Path:
        """Regenerate the Caddyfile (raises ConfigPersistError)."""
        return write_caddyfile(self.render_config(), self.caddyfile)

    def caddy_version(self) -> str:
        caddy = find_caddy_executable(self.settings)
        if not caddy:
            return "(caddy executable not found)"
        result = run([caddy, "version"], timeout=get_timeout("caddy_version"))
        return result.out.strip() or result.err.strip()

    # ─────────────────────────────────────────────────────────────
    # State
    # ─────────────────────────────────────────────────────────────

    def admin_alive(self) -> bool:
        host, port = self.settings.admin_listen
        return probes.admin_alive(host, port, timeout=self.settings.admin_timeout)

    def service_running(self) -> bool:
        if self.service is None:
            return False
        return self.service.query_running()

    def state(self) -> ProxyState:
        """
        Derive the proxy state.

        Admin endpoint answers -> Running; service manager reports the
        service running -> Running; a PID record is left over -> Unknown;
        otherwise Stopped.
        """
        if self.admin_alive():
            return ProxyState.RUNNING
        if self.service_running():
            return ProxyState.RUNNING
        if self.pid_file.exists():
            return ProxyState.UNKNOWN
        return ProxyState.STOPPED

    def site_status(self, site: Site, state: ProxyState | None = None) -> SiteStatus:
        """Off if not served, Error if the proxy is down, else probe the site URL."""
        if not site.served:
            return SiteStatus.OFF
        current = state if state is not None else self.state()
        if current != ProxyState.RUNNING:
            return SiteStatus.ERROR
        return probes.probe_url(site.url(), timeout=self.settings.probe_timeout)

    def site_statuses(self) -> dict[str, SiteStatus]:
        """Status for every site, deriving the proxy state once."""
        sites = self.registry.sites
        if not any(s.served for s in sites):
            return {s.id: SiteStatus.OFF for s in sites}
        current = self.state()
        return {s.id: self.site_status(s, current) for s in sites}

    def status_report(self) -> dict:
        served = self.registry.served_sites()
        site = served[0] if served else None
        hosts_in_sync = self.hosts.in_sync(self.registry.sites) if self.hosts.read() is not None else None
        return {
            "state": self.state().value,
            "executable": find_caddy_executable(self.settings),
            "pid": _read_pid(self.pid_file),
            "service": self.service.name if self.service else None,
            "served": (
                {
                    "id": site.id,
                    "name": site.display_label,
                    "url": site.url(),
                    "privileged": site.requires_privileges,
                }
                if site
                else None
            ),
            "hosts_in_sync": hosts_in_sync,
            "caddyfile": str(self.caddyfile),
        }

    # ─────────────────────────────────────────────────────────────
    # Unprivileged background process
    # ─────────────────────────────────────────────────────────────

    def stop_user_caddy(self, grace: float = 2.0) -> bool:
        """Terminate the recorded background process and drop its PID record."""
        pid = _read_pid(self.pid_file)
        stopped = False
        if pid and _pid_alive(pid):
            try:
                os.kill(pid, signal.SIGTERM)
                if not _wait_exit(pid, grace):
                    os.kill(pid, signal.SIGKILL)
                    logger.warning("Caddy (PID %s) ignored SIGTERM, killed", pid)
                stopped = True
                logger.info("Stopped background Caddy (PID %s)", pid)
            except ProcessLookupError:
                stopped = True
            except PermissionError as e:
                logger.error("Cannot signal PID %s: %s", pid, e)
        self.pid_file.unlink(missing_ok=True)
        return stopped

    def _touch_logs(self):
        for path in (self.access_log, self.error_log):
            path.parent.mkdir(parents=True, exist_ok=True)
            path.touch(exist_ok=True)

    def start_user_caddy(self, settle: float = 0.5) -> CmdResult:
        """Launch Caddy in the background as the current user and record its PID."""
        caddy = find_caddy_executable(self.settings)
        if not caddy:
            return CmdResult(2, "", "Caddy executable not found. Set caddy_path in settings.yml or DEVSRV_CADDY.")

        try:
            pid = self._launch(caddy, settle)
        except ProcessLaunchError as e:
            return CmdResult(1, "", str(e))
        return CmdResult(0, f"Caddy started (PID {pid})", "")

    def _launch(self, caddy: str, settle: float) -> int:
        try:
            self._touch_logs()
        except OSError as e:
            raise ProcessLaunchError(f"Cannot prepare Caddy logs: {e}") from e
        self.stop_user_caddy()

        cmd = [caddy, "run", "--config", str(self.caddyfile), "--adapter", "caddyfile"]
        try:
            with open(self.error_log, "a", encoding="utf-8") as err:
                process = subprocess.Popen(
                    cmd,
                    cwd=str(self.caddyfile.parent),
                    stdin=subprocess.DEVNULL,
                    stdout=err,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
        except OSError as e:
            raise ProcessLaunchError(f"Cannot run {caddy}: {e}") from e

        try:
            self.pid_file.write_text(f"{process.pid}\n", encoding="utf-8")
        except OSError as e:
            process.kill()
            process.wait()
            raise ProcessLaunchError(f"Cannot record Caddy PID in {self.pid_file}: {e}") from e

        # Still running after the settle window means it bound its ports
        try:
            code = process.wait(timeout=settle)
        except subprocess.TimeoutExpired:
            logger.info("Started background Caddy (PID %s)", process.pid)
            return process.pid

        self.pid_file.unlink(missing_ok=True)
        detail = ""
        try:
            detail = self.error_log.read_text(encoding="utf-8", errors="replace").strip().splitlines()[-1]
        except (OSError, IndexError):
            pass
        raise ProcessLaunchError(f"Caddy exited with code {code}" + (f": {detail}" if detail else ""))

    # ─────────────────────────────────────────────────────────────
    # Privileged system service
    # ─────────────────────────────────────────────────────────────

    def _escalate(self, script: str, what: str) -> CmdResult:
        result = self.gateway.run(script)
        if not result.ok:
            raise PrivilegeEscalationError(
                f"{what} failed: {result.message or f'exit code {result.code}'}",
                code=result.code,
                out=result.out,
                err=result.err,
            )
        return result

    def install_or_repair_service(self) -> CmdResult:
        """Write the service descriptor and (re)load it with one escalated command."""
        if self.service is None:
            return CmdResult(2, "", "Custom domains need launchd or systemd; none available on this system.")
        caddy = find_caddy_executable(self.settings)
        if not caddy:
            return CmdResult(2, "", "Caddy executable not found. Set caddy_path in settings.yml or DEVSRV_CADDY.")

        descriptor = self.service.descriptor(caddy, self.caddyfile, self.error_log)
        tmp = self.caddyfile.parent / self.service.tmp_name
        try:
            # Created as the user so a later background Caddy can still append
            self._touch_logs()
            tmp.write_text(self.service.render(descriptor), encoding="utf-8")
        except OSError as e:
            return CmdResult(2, "", f"Cannot prepare service files: {e}")

        script = self.service.install_script(tmp, self.caddyfile.parent, [self.access_log, self.error_log])
        try:
            result = self._escalate(script, "Service install")
        except PrivilegeEscalationError as e:
            logger.error(str(e))
            return CmdResult(e.code, e.out, e.err or str(e))
        logger.info("Installed %s service %s", self.service.name, self.service.label)
        return result

    def _service_present(self) -> bool:
        if self.service is None:
            return False
        return self.service.descriptor_path.exists() or self.service_running()

    def stop_service(self) -> CmdResult:
        """Unload and remove the service; an absent service is success."""
        if not self._service_present():
            return CmdResult(0, "Service not installed", "")
        try:
            return self._escalate(self.service.uninstall_script(), "Service removal")
        except PrivilegeEscalationError as e:
            logger.error(str(e))
            return CmdResult(e.code, e.out, e.err or str(e))

    def _teardown_privileged(self) -> CmdResult:
        """Remove the service and any hosts aliases in one prompt, if either exists."""
        steps = []
        if self._service_present():
            steps.append(self.service.uninstall_script())
        text = self.hosts.read()
        if text is not None and has_block(text):
            steps.append(build_sync_script(self.hosts.hosts_path, []))
        if not steps:
            return CmdResult(0, "", "")
        try:
            return self._escalate(" && ".join(steps), "Switching to background mode")
        except PrivilegeEscalationError as e:
            logger.error(str(e))
            return CmdResult(e.code, e.out, e.err or str(e))

    # ─────────────────────────────────────────────────────────────
    # Entry points
    # ─────────────────────────────────────────────────────────────

    def apply(self) -> CmdResult:
        """
        Regenerate the config and bring the runtime in line with it.

        A custom-domain site needs the hosts alias and the root service;
        anything else runs as a background process. On failure the error is
        returned and nothing is retried.
        """
        try:
            self.write_config()
        except ConfigPersistError as e:
            logger.error(str(e))
            return CmdResult(2, "", str(e))

        served = self.registry.served_sites()
        if any(site.requires_privileges for site in served):
            result = self.hosts.sync(self.registry.sites)
            if not result.ok:
                return result
            result = self.install_or_repair_service()
            if result.ok:
                # The service takes over the admin endpoint once this exits
                self.stop_user_caddy()
            return result

        result = self._teardown_privileged()
        if not result.ok:
            return result
        return self.start_user_caddy()

    def stop_all(self) -> CmdResult:
        """Stop both runtime shapes. Leaves the registry untouched; safe to repeat."""
        self.stop_user_caddy()
        result = self.stop_service()
        if not result.ok:
            return result
        return CmdResult(0, "Stopped.", "")

    def toggle(self, site_id: str) -> CmdResult:
        """Flip one site's served flag (exclusively) and apply."""
        site = self.registry.get(site_id)
        if site is None:
            return CmdResult(1, "", f"Unknown site: {site_id}")
        ok, msg = self.registry.set_only_served(site_id, not site.served)
        if not ok:
            return CmdResult(2, "", msg)
        self.registry.load()
        return self.apply()
