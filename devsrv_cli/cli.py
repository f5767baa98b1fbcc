"""CLI command implementations"""

import json
import webbrowser
from dataclasses import replace
from pathlib import Path

import yaml

from . import __version__
from .caddy_lifecycle import CaddyLifecycle, find_caddy_executable
from .errors import ConfigPersistError
from .hosts import current_block, desired_aliases
from .output import console, print_error, print_info, print_sites, print_status, print_success, print_warning
from .registry import Registry
from .settings import Settings
from .shell import CmdResult
from .sites import Site, SiteMode
from .validation import validate_site


class SiteCLI:
    """Main CLI interface"""

    def __init__(self, registry: Registry | None = None, settings: Settings | None = None, lifecycle: CaddyLifecycle | None = None):
        self.settings = settings if settings is not None else Settings()
        self.registry = registry if registry is not None else Registry(default_port=self.settings.default_port, autoload=False)
        if registry is None:
            self._report_load()
        self.lifecycle = lifecycle or CaddyLifecycle(self.registry, self.settings)

    def _report_load(self):
        result = self.registry.load()
        if result.status == "recovered":
            print_warning(result.message)
        elif result.status == "error":
            print_error(result.message)

    def _lookup(self, ref: str) -> Site | None:
        site = self.registry.find(ref)
        if site is None:
            print_error(f"No site matches '{ref}'")
        return site

    def _report(self, result: CmdResult, success: str | None = None) -> bool:
        if result.ok:
            print_success(success or result.message or "Done.")
        else:
            print_error(result.message or f"Failed (exit code {result.code})")
        return result.ok

    def _save(self, site: Site) -> bool:
        ok, warning = validate_site(site)
        if not ok:
            print_error(warning)
            return False
        if warning:
            print_warning(warning)

        ok, msg = self.registry.upsert(site)
        if not ok:
            print_error(msg)
            return False
        print_success(f"{msg}: {site.display_label} ({site.url()})")
        return True

    # ─────────────────────────────────────────────────────────────
    # Registry commands
    # ─────────────────────────────────────────────────────────────

    def list_sites(self, json_output: bool = False, probe: bool = False) -> bool:
        sites = self.registry.sites
        if json_output:
            print(json.dumps([s.to_dict() for s in sites], indent=2))
            return True
        if not sites:
            print_info("No sites yet. Add one with: devsrv add <name> <folder>")
            return True
        statuses = self.lifecycle.site_statuses() if probe else None
        print_sites(sites, statuses)
        return True

    def add(
        self,
        name: str,
        folder: str,
        port: int | None = None,
        domain: str | None = None,
        label: str = "",
        shortcut: bool = True,
    ) -> bool:
        """Register a new site"""
        mode = SiteMode.CUSTOM_DOMAIN if domain else SiteMode.LOOPBACK_PORT
        site = Site.create(
            name=name,
            folder=str(Path(folder).expanduser().resolve()),
            mode=mode,
            port=port if port is not None else self.settings.default_port,
            domain=(domain or "").lower(),
            shortcut_label=label,
            shortcut=shortcut,
        )
        return self._save(site)

    def edit(
        self,
        ref: str,
        name: str | None = None,
        folder: str | None = None,
        port: int | None = None,
        domain: str | None = None,
        label: str | None = None,
        shortcut: bool | None = None,
    ) -> bool:
        """Change fields of an existing site; --port switches to loopback, --domain to a custom domain"""
        site = self._lookup(ref)
        if site is None:
            return False

        changes: dict = {}
        if name is not None:
            changes["name"] = name
        if folder is not None:
            changes["folder"] = str(Path(folder).expanduser().resolve())
        if label is not None:
            changes["shortcut_label"] = label
        if shortcut is not None:
            changes["shortcut"] = shortcut
        if domain is not None:
            changes.update(mode=SiteMode.CUSTOM_DOMAIN, domain=domain.lower(), port=None)
        elif port is not None:
            changes.update(mode=SiteMode.LOOPBACK_PORT, port=port)

        if not changes:
            print_info("Nothing to change")
            return True
        if not self._save(replace(site, **changes)):
            return False
        if site.served:
            print_info("Site is being served; run 'devsrv apply' to pick up the change")
        return True

    def remove(self, ref: str) -> bool:
        site = self._lookup(ref)
        if site is None:
            return False
        ok, msg = self.registry.remove(site.id)
        if not ok:
            print_error(msg)
            return False
        print_success(f"{msg}: {site.display_label}")
        if site.served:
            print_info("It was being served; run 'devsrv apply' or 'devsrv stop'")
        return True

    # ─────────────────────────────────────────────────────────────
    # Proxy commands
    # ─────────────────────────────────────────────────────────────

    def serve(self, ref: str) -> bool:
        """Serve one site (exclusively) and apply"""
        site = self._lookup(ref)
        if site is None:
            return False
        if site.requires_privileges:
            print_info("Custom domains need administrator approval; a system prompt may appear.")
        if site.served:
            result = self.lifecycle.apply()
        else:
            result = self.lifecycle.toggle(site.id)
        return self._report(result, f"Serving {site.display_label} at {site.url()}")

    def unserve(self, ref: str) -> bool:
        site = self._lookup(ref)
        if site is None:
            return False
        if not site.served:
            print_info(f"{site.display_label} is not being served")
            return True
        return self._report(self.lifecycle.toggle(site.id), f"Stopped serving {site.display_label}")

    def apply(self) -> bool:
        return self._report(self.lifecycle.apply(), "Proxy configuration applied")

    def stop(self) -> bool:
        """Stop the proxy in both modes and clear the served flags"""
        result = self.lifecycle.stop_all()
        if not self._report(result):
            return False
        ok, msg = self.registry.clear_served()
        if not ok:
            print_error(msg)
        return ok

    def status(self, json_output: bool = False) -> bool:
        report = self.lifecycle.status_report()
        if json_output:
            print(json.dumps(report, indent=2))
            return True
        print_status(report)
        return True

    def open_site(self, ref: str) -> bool:
        site = self._lookup(ref)
        if site is None:
            return False
        url = site.url()
        print_info(f"Opening {url}")
        return webbrowser.open(url)

    def caddyfile(self, write: bool = False) -> bool:
        if write:
            try:
                path = self.lifecycle.write_config()
            except ConfigPersistError as e:
                print_error(str(e))
                return False
            print_success(f"Wrote {path}")
            return True
        console.print(self.lifecycle.render_config(), markup=False, highlight=False)
        return True

    def hosts(self, sync: bool = False) -> bool:
        """Show (or sync) the hosts alias block"""
        if sync:
            return self._report(self.lifecycle.hosts.sync(self.registry.sites))

        text = self.lifecycle.hosts.read()
        if text is None:
            print_error(f"Cannot read {self.lifecycle.hosts.hosts_path}")
            return False
        block = current_block(text)
        wanted = desired_aliases(self.registry.sites)
        if block:
            for line in block:
                console.print(line, markup=False)
        else:
            print_info("No DevSrv block in the hosts file")
        if block != wanted:
            print_warning("Hosts aliases out of date (run 'devsrv hosts --sync' or 'devsrv apply')")
        return True

    def version(self) -> bool:
        print(f"devsrv {__version__}")
        caddy = find_caddy_executable(self.settings)
        print(f"caddy: {self.lifecycle.caddy_version() if caddy else 'not found'}")
        return True

    def config(self, key: str | None = None, value: str | None = None) -> bool:
        """Show settings, one setting, or set one (value parsed as YAML)"""
        if key is None:
            for name, current in self.settings.raw.items():
                console.print(f"{name}: {current}", markup=False)
            return True
        if value is None:
            if key not in self.settings.raw:
                print_error(f"Unknown setting: {key}")
                return False
            console.print(f"{self.settings.raw[key]}", markup=False)
            return True
        try:
            self.settings.set(key, yaml.safe_load(value))
        except ValueError as e:
            print_error(str(e))
            return False
        except (yaml.YAMLError, ConfigPersistError) as e:
            print_error(f"Cannot set {key}: {e}")
            return False
        print_success(f"{key} updated")
        return True
