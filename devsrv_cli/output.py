"""
Rich-powered console output for DevSrv.

Provides the sites table, the status panel and one-line diagnostics.
"""

import sys

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .sites import ProxyState, Site, SiteMode, SiteStatus

console = Console(force_terminal=None, legacy_windows=True)

# ASCII-safe icons when not attached to a terminal
_USE_ASCII = not sys.stdout.isatty()

STATE_STYLES = {
    ProxyState.RUNNING: ("+" if _USE_ASCII else "●", "green"),
    ProxyState.STOPPED: ("-" if _USE_ASCII else "○", "dim"),
    ProxyState.UNKNOWN: ("?", "yellow"),
    ProxyState.ERROR: ("x" if _USE_ASCII else "✗", "red"),
}

SITE_STYLES = {
    SiteStatus.ON: "green",
    SiteStatus.OFF: "dim",
    SiteStatus.ERROR: "red",
    SiteStatus.UNKNOWN: "yellow",
}


def print_success(message: str):
    """Print a success message"""
    icon = "+" if _USE_ASCII else "✓"
    console.print(f"[green]{icon}[/green] {message}")


def print_error(message: str):
    """Print an error message"""
    icon = "x" if _USE_ASCII else "✗"
    console.print(f"[red]{icon}[/red] {message}", style="red")


def print_warning(message: str):
    """Print a warning message"""
    console.print(f"[yellow]![/yellow] {message}")


def print_info(message: str):
    """Print an info message"""
    icon = "i" if _USE_ASCII else "ℹ"
    console.print(f"[blue]{icon}[/blue] {message}")


def state_badge(state: ProxyState) -> Text:
    icon, style = STATE_STYLES.get(state, ("?", "dim"))
    text = Text()
    text.append(f"{icon} ", style=style)
    text.append(state.value, style=f"bold {style}")
    return text


def sites_table(sites: list[Site], statuses: dict[str, SiteStatus] | None = None) -> Table:
    """
    Create a table of registered sites.

    Args:
        sites: Sites in registry order
        statuses: Optional site id -> probed status
    """
    table = Table(title="Sites", show_header=True, header_style="bold cyan")

    table.add_column("Name", style="bold")
    table.add_column("URL", style="cyan")
    table.add_column("Folder", style="dim")
    table.add_column("Served", justify="center")
    table.add_column("Shortcut", justify="center")
    if statuses is not None:
        table.add_column("Status", justify="center")

    for site in sites:
        url = site.url()
        if site.mode == SiteMode.CUSTOM_DOMAIN:
            url += " [dim](admin)[/dim]"
        row = [
            site.display_label,
            url,
            site.folder,
            "[green]yes[/green]" if site.served else "[dim]no[/dim]",
            "yes" if site.shortcut else "[dim]no[/dim]",
        ]
        if statuses is not None:
            status = statuses.get(site.id, SiteStatus.UNKNOWN)
            row.append(f"[{SITE_STYLES[status]}]{status.value}[/{SITE_STYLES[status]}]")
        table.add_row(*row)

    return table


def status_panel(report: dict) -> Panel:
    """Create the proxy status panel from a lifecycle status report."""
    lines = [Text.assemble("Proxy: ", state_badge(ProxyState(report["state"])))]

    served = report.get("served")
    if served:
        lines.append(Text(f"Serving: {served['name']} at {served['url']}"))
        lines.append(Text(f"Mode: {'privileged service' if served['privileged'] else 'background process'}"))
    else:
        lines.append(Text("Serving: nothing", style="dim"))

    executable = report.get("executable")
    lines.append(Text(f"Caddy: {executable}" if executable else "Caddy: not found", style="dim" if executable else "red"))

    if report.get("pid"):
        lines.append(Text(f"PID record: {report['pid']}", style="dim"))
    if report.get("hosts_in_sync") is False:
        lines.append(Text("! Hosts aliases out of date (run apply)", style="yellow"))

    lines.append(Text(f"Config: {report['caddyfile']}", style="dim"))

    content = Text("\n").join(lines)
    return Panel(content, title="DevSrv Status", border_style="cyan")


def print_sites(sites: list[Site], statuses: dict[str, SiteStatus] | None = None):
    console.print(sites_table(sites, statuses))


def print_status(report: dict):
    console.print(status_panel(report))
