"""
Privileged system service for DevSrv (custom-domain mode).

The proxy runs as an always-on root service so it can bind port 443:
- macOS: launchd daemon /Library/LaunchDaemons/devsrv.caddy.plist
- Linux: systemd unit /etc/systemd/system/devsrv-caddy.service

Each manager renders a descriptor and composes the one-shot shell scripts
that the escalation gateway runs. Nothing here runs commands with elevated
rights itself; status queries run unprivileged.
"""

import plistlib
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from . import shell
from .paths import SERVICE_LABEL
from .platform import IS_LINUX, IS_MACOS
from .shell import CmdResult
from .subprocess_timeouts import get_timeout

ROOT_PATH = "/usr/local/bin:/usr/bin:/bin:/usr/sbin:/sbin"


@dataclass(frozen=True)
class ServiceDescriptor:
    label: str
    program_args: list[str]
    working_dir: str
    env: dict[str, str] = field(default_factory=dict)
    log_path: str = ""
    run_at_load: bool = True
    keep_alive: bool = True


def caddy_run_args(caddy_path: str, caddyfile: Path) -> list[str]:
    return [caddy_path, "run", "--config", str(caddyfile), "--adapter", "caddyfile"]


def _q(value: object) -> str:
    return shlex.quote(str(value))


def _prepare_files_script(data_dir: Path, logs: list[Path]) -> list[str]:
    """Steps shared by every install: directories and world-readable logs."""
    log_args = " ".join(_q(p) for p in logs)
    return [
        f"/bin/mkdir -p {_q(data_dir)}",
        f"/usr/bin/touch {log_args}",
        f"/bin/chmod 644 {log_args}",
    ]


class ServiceManager:
    """Interface shared by the launchd and systemd flavours."""

    name = "service"
    label = SERVICE_LABEL
    descriptor_path: Path
    tmp_name: str

    def descriptor(self, caddy_path: str, caddyfile: Path, log_path: Path) -> ServiceDescriptor:
        raise NotImplementedError

    def render(self, descriptor: ServiceDescriptor) -> str:
        raise NotImplementedError

    def install_script(self, tmp_descriptor: Path, data_dir: Path, logs: list[Path]) -> str:
        raise NotImplementedError

    def uninstall_script(self) -> str:
        raise NotImplementedError

    def status(self) -> CmdResult:
        raise NotImplementedError

    def is_running(self, result: CmdResult) -> bool:
        raise NotImplementedError

    def query_running(self) -> bool:
        return self.is_running(self.status())


class LaunchdService(ServiceManager):
    name = "launchd"
    descriptor_path = Path(f"/Library/LaunchDaemons/{SERVICE_LABEL}.plist")
    tmp_name = f"{SERVICE_LABEL}.plist.tmp"
    root_home = "/var/root"

    def descriptor(self, caddy_path: str, caddyfile: Path, log_path: Path) -> ServiceDescriptor:
        xdg = f"{self.root_home}/Library/Application Support"
        return ServiceDescriptor(
            label=self.label,
            program_args=caddy_run_args(caddy_path, caddyfile),
            working_dir=self.root_home,
            env={
                "HOME": self.root_home,
                "XDG_DATA_HOME": xdg,
                "XDG_CONFIG_HOME": xdg,
                "PATH": ROOT_PATH,
            },
            log_path=str(log_path),
        )

    def render(self, descriptor: ServiceDescriptor) -> str:
        plist = {
            "Label": descriptor.label,
            "ProgramArguments": list(descriptor.program_args),
            "WorkingDirectory": descriptor.working_dir,
            "EnvironmentVariables": dict(descriptor.env),
            "RunAtLoad": descriptor.run_at_load,
            "KeepAlive": descriptor.keep_alive,
            "StandardOutPath": descriptor.log_path,
            "StandardErrorPath": descriptor.log_path,
        }
        return plistlib.dumps(plist, sort_keys=False).decode("utf-8")

    def install_script(self, tmp_descriptor: Path, data_dir: Path, logs: list[Path]) -> str:
        target = _q(self.descriptor_path)
        steps = [
            f"/bin/mkdir -p {_q(self.descriptor_path.parent)}",
            *_prepare_files_script(data_dir, logs),
            f"/bin/cp {_q(tmp_descriptor)} {target}",
            f"/usr/sbin/chown root:wheel {target}",
            f"/bin/chmod 644 {target}",
            f"{{ /bin/launchctl bootout system {target} 2>/dev/null || true; }}",
            f"/bin/launchctl bootstrap system {target}",
            f"/bin/launchctl enable system/{self.label}",
            f"/bin/launchctl kickstart -k system/{self.label}",
        ]
        return " && ".join(steps)

    def uninstall_script(self) -> str:
        target = _q(self.descriptor_path)
        return f"{{ /bin/launchctl bootout system {target} 2>/dev/null || true; }} && /bin/rm -f {target}"

    def status(self) -> CmdResult:
        return shell.run(["/bin/launchctl", "print", f"system/{self.label}"], timeout=get_timeout("launchctl_print"))

    def is_running(self, result: CmdResult) -> bool:
        return result.ok and "state = running" in result.out


class SystemdService(ServiceManager):
    name = "systemd"
    unit = "devsrv-caddy.service"
    descriptor_path = Path("/etc/systemd/system/devsrv-caddy.service")
    tmp_name = "devsrv-caddy.service.tmp"
    root_home = "/root"

    def descriptor(self, caddy_path: str, caddyfile: Path, log_path: Path) -> ServiceDescriptor:
        return ServiceDescriptor(
            label=self.label,
            program_args=caddy_run_args(caddy_path, caddyfile),
            working_dir=self.root_home,
            env={
                "HOME": self.root_home,
                "XDG_DATA_HOME": f"{self.root_home}/.local/share",
                "XDG_CONFIG_HOME": f"{self.root_home}/.config",
                "PATH": ROOT_PATH,
            },
            log_path=str(log_path),
        )

    def render(self, descriptor: ServiceDescriptor) -> str:
        exec_start = " ".join(_q(arg) for arg in descriptor.program_args)
        lines = [
            "[Unit]",
            f"Description=DevSrv proxy ({descriptor.label})",
            "After=network.target",
            # Retry forever while a background Caddy still holds the admin port
            "StartLimitIntervalSec=0",
            "",
            "[Service]",
            f"ExecStart={exec_start}",
            f"WorkingDirectory={descriptor.working_dir}",
        ]
        lines += [f'Environment="{key}={value}"' for key, value in descriptor.env.items()]
        if descriptor.log_path:
            lines += [
                f"StandardOutput=append:{descriptor.log_path}",
                f"StandardError=append:{descriptor.log_path}",
            ]
        if descriptor.keep_alive:
            lines += ["Restart=always", "RestartSec=1"]
        else:
            lines.append("Restart=no")
        if descriptor.run_at_load:
            lines += ["", "[Install]", "WantedBy=multi-user.target"]
        return "\n".join(lines) + "\n"

    def install_script(self, tmp_descriptor: Path, data_dir: Path, logs: list[Path]) -> str:
        target = _q(self.descriptor_path)
        steps = [
            f"/bin/mkdir -p {_q(self.descriptor_path.parent)}",
            *_prepare_files_script(data_dir, logs),
            f"/bin/cp {_q(tmp_descriptor)} {target}",
            f"/bin/chown root:root {target}",
            f"/bin/chmod 644 {target}",
            "systemctl daemon-reload",
            f"systemctl enable {self.unit}",
            f"systemctl restart {self.unit}",
        ]
        return " && ".join(steps)

    def uninstall_script(self) -> str:
        target = _q(self.descriptor_path)
        return (
            f"{{ systemctl disable --now {self.unit} 2>/dev/null || true; }} && "
            f"/bin/rm -f {target} && {{ systemctl daemon-reload 2>/dev/null || true; }}"
        )

    def status(self) -> CmdResult:
        return shell.run(["systemctl", "is-active", self.unit], timeout=get_timeout("systemctl_status"))

    def is_running(self, result: CmdResult) -> bool:
        return result.ok and result.out.strip() == "active"


def get_service_manager() -> ServiceManager | None:
    """The service manager for this OS, or None where DevSrv has none."""
    if IS_MACOS:
        return LaunchdService()
    if IS_LINUX:
        return SystemdService()
    return None
