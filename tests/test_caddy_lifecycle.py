"""
Tests for the proxy lifecycle: apply in both modes, stop, derived state.

Nothing here touches the real system: the escalation gateway records the
scripts it is given, the service manager answers from a canned result and
process launches are faked.
"""

import subprocess
from dataclasses import dataclass, field
from pathlib import Path

import pytest

import devsrv_cli.caddy_lifecycle as lifecycle
from devsrv_cli.caddy_lifecycle import CaddyLifecycle, find_caddy_executable
from devsrv_cli.hosts import MARKER_BEGIN, HostsSynchronizer, render_hosts
from devsrv_cli.registry import Registry
from devsrv_cli.service import SystemdService
from devsrv_cli.settings import Settings
from devsrv_cli.shell import CmdResult
from devsrv_cli.sites import ProxyState, Site, SiteMode, SiteStatus


@dataclass
class RecordingGateway:
    result: CmdResult = field(default_factory=lambda: CmdResult(0))
    scripts: list = field(default_factory=list)

    def run(self, script: str) -> CmdResult:
        self.scripts.append(script)
        return self.result


class FakeService(SystemdService):
    def __init__(self, descriptor_path: Path, running: bool = False):
        self.descriptor_path = descriptor_path
        self.running = running

    def status(self) -> CmdResult:
        return CmdResult(0, "active\n") if self.running else CmdResult(3, "inactive\n")


class FakeProcess:
    def __init__(self, exit_code=None, pid=4242):
        self.pid = pid
        self.exit_code = exit_code
        self.killed = False

    def kill(self):
        self.killed = True
        self.exit_code = -9

    def wait(self, timeout=None):
        if self.exit_code is None:
            raise subprocess.TimeoutExpired(cmd="caddy", timeout=timeout)
        return self.exit_code


@pytest.fixture
def caddy_bin(tmp_path, monkeypatch):
    path = tmp_path / "caddy"
    path.write_text("#!/bin/sh\n")
    monkeypatch.setenv("DEVSRV_CADDY", str(path))
    return path


@pytest.fixture
def env(tmp_path, devsrv_home, caddy_bin, monkeypatch):
    """A lifecycle wired to fakes, with the admin endpoint down."""
    monkeypatch.setattr(lifecycle.probes, "admin_alive", lambda *a, **k: False)
    registry = Registry()
    gateway = RecordingGateway()
    hosts = HostsSynchronizer(gateway, hosts_path=tmp_path / "hosts")
    service = FakeService(tmp_path / "devsrv-caddy.service")
    proxy = CaddyLifecycle(registry, Settings(), gateway=gateway, hosts=hosts, service=service)
    return proxy


def _serve(proxy: CaddyLifecycle, site: Site) -> Site:
    proxy.registry.upsert(site)
    proxy.registry.set_only_served(site.id, True)
    return proxy.registry.get(site.id)


def _fake_popen(monkeypatch, process: FakeProcess, calls: list | None = None):
    def _popen(cmd, **kwargs):
        if calls is not None:
            calls.append((cmd, kwargs))
        return process

    monkeypatch.setattr(lifecycle.subprocess, "Popen", _popen)


# ─────────────────────────────────────────────────────────────
# Executable lookup
# ─────────────────────────────────────────────────────────────


def test_find_caddy_prefers_configured_path(caddy_bin):
    assert find_caddy_executable(Settings()) == str(caddy_bin)


def test_find_caddy_configured_but_missing(monkeypatch, tmp_path):
    monkeypatch.setenv("DEVSRV_CADDY", str(tmp_path / "nope"))
    assert find_caddy_executable(Settings()) is None


def test_caddy_version_without_executable(env, monkeypatch):
    monkeypatch.setattr(lifecycle, "find_caddy_executable", lambda _settings=None: None)
    assert "not found" in env.caddy_version()


# ─────────────────────────────────────────────────────────────
# State
# ─────────────────────────────────────────────────────────────


def test_state_stopped(env):
    assert env.state() == ProxyState.STOPPED


def test_state_running_when_admin_answers(env, monkeypatch):
    monkeypatch.setattr(lifecycle.probes, "admin_alive", lambda *a, **k: True)
    assert env.state() == ProxyState.RUNNING


def test_state_running_when_service_running(env):
    env.service.running = True
    assert env.state() == ProxyState.RUNNING


def test_state_unknown_with_leftover_pid_record(env):
    env.pid_file.write_text("4242\n")
    assert env.state() == ProxyState.UNKNOWN


def test_site_status(env, monkeypatch):
    site = _serve(env, Site.create(name="Blog", folder="/srv/blog", port=4000))
    idle = Site.create(name="Idle", folder="/srv/idle")

    assert env.site_status(idle) == SiteStatus.OFF
    assert env.site_status(site) == SiteStatus.ERROR

    probed = []
    monkeypatch.setattr(lifecycle.probes, "admin_alive", lambda *a, **k: True)
    monkeypatch.setattr(lifecycle.probes, "probe_url", lambda url, timeout: probed.append((url, timeout)) or SiteStatus.ON)

    assert env.site_status(site) == SiteStatus.ON
    assert probed == [("https://localhost:4000", 2.0)]


# ─────────────────────────────────────────────────────────────
# apply: unprivileged
# ─────────────────────────────────────────────────────────────


def test_apply_loopback_starts_background_process(env, monkeypatch):
    site = _serve(env, Site.create(name="Blog", folder="/srv/blog", port=4000))
    calls = []
    _fake_popen(monkeypatch, FakeProcess(), calls)

    result = env.apply()

    assert result.ok, result.message
    assert "4242" in result.message
    assert env.pid_file.read_text().strip() == "4242"
    assert env.gateway.scripts == []
    cmd, kwargs = calls[0]
    assert cmd == [env.settings.caddy_path, "run", "--config", str(env.caddyfile), "--adapter", "caddyfile"]
    assert kwargs["stderr"] == subprocess.STDOUT
    assert kwargs["start_new_session"] is True
    assert f"{site.host()} {{" in env.caddyfile.read_text()


def test_apply_nothing_served_uses_placeholder(env, monkeypatch):
    _fake_popen(monkeypatch, FakeProcess())

    result = env.apply()

    assert result.ok
    assert 'respond "DevSrv: no active sites" 200' in env.caddyfile.read_text()


def test_apply_launch_exits_early(env, monkeypatch):
    _serve(env, Site.create(name="Blog", folder="/srv/blog", port=4000))
    env.error_log.parent.mkdir(parents=True, exist_ok=True)
    env.error_log.write_text("Error: listen tcp :4000: bind: address already in use\n")
    _fake_popen(monkeypatch, FakeProcess(exit_code=1))

    result = env.apply()

    assert not result.ok
    assert "exited with code 1" in result.message
    assert "address already in use" in result.message
    assert not env.pid_file.exists()


def test_apply_launch_cannot_run(env, monkeypatch):
    def _missing(cmd, **kwargs):
        raise FileNotFoundError(2, "No such file or directory")

    monkeypatch.setattr(lifecycle.subprocess, "Popen", _missing)

    result = env.apply()

    assert not result.ok
    assert "Cannot run" in result.message


def test_apply_loopback_log_not_writable(env, monkeypatch):
    _serve(env, Site.create(name="Blog", folder="/srv/blog", port=4000))
    calls = []
    _fake_popen(monkeypatch, FakeProcess(), calls)
    real_touch = Path.touch

    def _touch(self, *args, **kwargs):
        if self == env.error_log:
            raise PermissionError(13, "Permission denied", str(self))
        return real_touch(self, *args, **kwargs)

    monkeypatch.setattr(Path, "touch", _touch)

    result = env.apply()

    assert not result.ok
    assert "Cannot prepare Caddy logs" in result.message
    assert "Permission denied" in result.message
    assert calls == []


def test_apply_loopback_pid_record_not_writable(env, monkeypatch):
    _serve(env, Site.create(name="Blog", folder="/srv/blog", port=4000))
    process = FakeProcess()
    _fake_popen(monkeypatch, process)
    real_write_text = Path.write_text

    def _write_text(self, *args, **kwargs):
        if self == env.pid_file:
            raise PermissionError(13, "Permission denied", str(self))
        return real_write_text(self, *args, **kwargs)

    monkeypatch.setattr(Path, "write_text", _write_text)

    result = env.apply()

    assert not result.ok
    assert "Cannot record Caddy PID" in result.message
    assert process.killed


def test_apply_loopback_tears_down_running_service_first(env, monkeypatch):
    _serve(env, Site.create(name="Blog", folder="/srv/blog", port=4000))
    env.service.running = True
    _fake_popen(monkeypatch, FakeProcess())

    result = env.apply()

    assert result.ok
    assert len(env.gateway.scripts) == 1
    assert "systemctl disable --now devsrv-caddy.service" in env.gateway.scripts[0]


def test_apply_loopback_removes_leftover_hosts_block(env, monkeypatch):
    hosts_path = env.hosts.hosts_path
    hosts_path.write_text(render_hosts(hosts_path.read_text(), ["127.0.0.1 old.test"]))
    _fake_popen(monkeypatch, FakeProcess())

    result = env.apply()

    assert result.ok
    assert len(env.gateway.scripts) == 1
    assert "DEVSRV-BEGIN" in env.gateway.scripts[0]
    assert "printf" not in env.gateway.scripts[0]


def test_apply_loopback_removes_empty_marker_block(env, monkeypatch):
    hosts_path = env.hosts.hosts_path
    hosts_path.write_text("127.0.0.1 localhost\n# DEVSRV-BEGIN\n# DEVSRV-END\n")
    _fake_popen(monkeypatch, FakeProcess())

    result = env.apply()

    assert result.ok
    assert len(env.gateway.scripts) == 1
    assert "/d'" in env.gateway.scripts[0]


def test_apply_loopback_teardown_declined(env, monkeypatch):
    env.service.running = True
    env.gateway.result = CmdResult(1, "", "Administrator authorization was cancelled")
    calls = []
    _fake_popen(monkeypatch, FakeProcess(), calls)

    result = env.apply()

    assert not result.ok
    assert "cancelled" in result.message
    assert calls == []


# ─────────────────────────────────────────────────────────────
# apply: privileged
# ─────────────────────────────────────────────────────────────


def test_apply_custom_domain_installs_service(env, monkeypatch):
    env.registry.upsert(Site.create(name="A", folder="/srv/a", port=3000))
    _serve(env, Site.create(name="Foo", folder="/srv/foo", mode=SiteMode.CUSTOM_DOMAIN, domain="foo.test"))
    calls = []
    _fake_popen(monkeypatch, FakeProcess(), calls)

    result = env.apply()

    assert result.ok, result.message
    assert calls == []
    hosts_script, install_script = env.gateway.scripts
    assert MARKER_BEGIN in hosts_script
    assert "127.0.0.1 foo.test" in hosts_script
    assert "localhost" not in hosts_script
    assert "systemctl enable devsrv-caddy.service" in install_script
    caddyfile = env.caddyfile.read_text()
    assert "foo.test {" in caddyfile
    assert "localhost:3000" not in caddyfile
    assert "/srv/a" not in caddyfile
    # Logs exist before the escalated install, so they stay owned by the user
    assert env.access_log.exists()
    assert env.error_log.exists()

    descriptor = (env.caddyfile.parent / env.service.tmp_name).read_text()
    assert f"--config {env.caddyfile}" in descriptor or str(env.caddyfile) in descriptor


def test_apply_custom_domain_hosts_declined(env):
    _serve(env, Site.create(name="Foo", folder="/srv/foo", mode=SiteMode.CUSTOM_DOMAIN, domain="foo.test"))
    env.gateway.result = CmdResult(1, "", "Administrator authorization was cancelled (User canceled -128)")

    result = env.apply()

    assert not result.ok
    assert len(env.gateway.scripts) == 1
    assert "cancelled" in result.message


def test_apply_custom_domain_stops_user_process(env, monkeypatch):
    _serve(env, Site.create(name="Foo", folder="/srv/foo", mode=SiteMode.CUSTOM_DOMAIN, domain="foo.test"))
    env.pid_file.write_text("4242\n")
    monkeypatch.setattr(lifecycle, "_pid_alive", lambda pid: False)

    result = env.apply()

    assert result.ok
    assert not env.pid_file.exists()


def test_apply_custom_domain_declined_install_keeps_user_process(env, monkeypatch):
    _serve(env, Site.create(name="Foo", folder="/srv/foo", mode=SiteMode.CUSTOM_DOMAIN, domain="foo.test"))
    env.hosts.hosts_path.write_text(render_hosts(env.hosts.hosts_path.read_text(), ["127.0.0.1 foo.test"]))
    env.pid_file.write_text("4242\n")
    env.gateway.result = CmdResult(1, "", "Administrator authorization was cancelled")
    killed = []
    monkeypatch.setattr(lifecycle.os, "kill", lambda pid, sig: killed.append(pid))

    result = env.apply()

    assert not result.ok
    assert len(env.gateway.scripts) == 1
    assert "systemctl enable" in env.gateway.scripts[0]
    assert env.pid_file.read_text().strip() == "4242"
    assert killed == []


def test_apply_custom_domain_without_service_manager(env):
    _serve(env, Site.create(name="Foo", folder="/srv/foo", mode=SiteMode.CUSTOM_DOMAIN, domain="foo.test"))
    env.service = None

    result = env.apply()

    assert not result.ok
    assert "launchd or systemd" in result.message


# ─────────────────────────────────────────────────────────────
# stop_all / toggle / status
# ─────────────────────────────────────────────────────────────


def test_stop_all_is_idempotent(env):
    first = env.stop_all()
    second = env.stop_all()

    assert first.ok and second.ok
    assert first.message == "Stopped."
    assert env.gateway.scripts == []


def test_stop_all_removes_installed_service(env):
    env.service.descriptor_path.write_text("[Unit]\n")

    result = env.stop_all()

    assert result.ok
    assert len(env.gateway.scripts) == 1
    assert "/bin/rm -f" in env.gateway.scripts[0]


def test_stop_all_leaves_registry_untouched(env, monkeypatch):
    site = _serve(env, Site.create(name="Blog", folder="/srv/blog"))
    env.pid_file.write_text("4242\n")
    monkeypatch.setattr(lifecycle, "_pid_alive", lambda pid: False)

    assert env.stop_all().ok
    assert env.registry.get(site.id).served is True
    assert not env.pid_file.exists()


def test_stop_user_caddy_escalates_to_sigkill(env, monkeypatch):
    env.pid_file.write_text("4242\n")
    signals = []
    waits = []

    monkeypatch.setattr(lifecycle, "_pid_alive", lambda pid: True)
    monkeypatch.setattr(lifecycle, "_wait_exit", lambda pid, timeout: waits.append((pid, timeout)) or False)
    monkeypatch.setattr(lifecycle.os, "kill", lambda pid, sig: signals.append((pid, sig)))

    assert env.stop_user_caddy(grace=1.5)
    assert waits == [(4242, 1.5)]
    assert signals[0] == (4242, lifecycle.signal.SIGTERM)
    assert signals[-1] == (4242, lifecycle.signal.SIGKILL)
    assert not env.pid_file.exists()


def test_toggle_serves_then_unserves(env, monkeypatch):
    site = Site.create(name="Blog", folder="/srv/blog", port=4000)
    env.registry.upsert(site)
    _fake_popen(monkeypatch, FakeProcess())

    assert env.toggle(site.id).ok
    assert env.registry.get(site.id).served is True

    monkeypatch.setattr(lifecycle, "_pid_alive", lambda pid: False)
    assert env.toggle(site.id).ok
    assert env.registry.get(site.id).served is False


def test_toggle_unknown_site(env):
    result = env.toggle("missing")
    assert not result.ok
    assert "Unknown site" in result.message


def test_status_report(env):
    _serve(env, Site.create(name="Foo", folder="/srv/foo", mode=SiteMode.CUSTOM_DOMAIN, domain="foo.test"))

    report = env.status_report()

    assert report["state"] == "Stopped"
    assert report["served"]["url"] == "https://foo.test"
    assert report["served"]["privileged"] is True
    assert report["hosts_in_sync"] is False
    assert report["executable"] == env.settings.caddy_path
    assert report["pid"] is None
