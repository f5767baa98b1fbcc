"""Main entry point for devsrv CLI"""

import argparse
import logging
import sys

from . import __version__
from .cli import SiteCLI
from .output import print_error, print_info
from .structured_logging import setup_logging

logger = logging.getLogger("devsrv")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devsrv",
        description="DevSrv - serve local static folders over HTTPS with Caddy",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--version", action="version", version=f"devsrv {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log diagnostics at INFO level")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # list command
    list_parser = subparsers.add_parser("list", help="List registered sites")
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")
    list_parser.add_argument("--probe", action="store_true", help="Probe each served site")

    # add command
    add_parser = subparsers.add_parser("add", help="Register a folder as a site")
    add_parser.add_argument("name", help="Site name")
    add_parser.add_argument("folder", help="Folder to serve")
    target = add_parser.add_mutually_exclusive_group()
    target.add_argument("--port", type=int, help="Serve at https://localhost:<port> (default from settings)")
    target.add_argument("--domain", help="Serve at https://<domain> (needs administrator approval)")
    add_parser.add_argument("--label", default="", help="Shortcut label (defaults to the name)")
    add_parser.add_argument("--no-shortcut", action="store_true", help="Hide from shortcut menus")

    # edit command
    edit_parser = subparsers.add_parser("edit", help="Change a site")
    edit_parser.add_argument("site", help="Site id, name or label")
    edit_parser.add_argument("--name")
    edit_parser.add_argument("--folder")
    edit_target = edit_parser.add_mutually_exclusive_group()
    edit_target.add_argument("--port", type=int, help="Switch to loopback mode on this port")
    edit_target.add_argument("--domain", help="Switch to custom-domain mode")
    edit_parser.add_argument("--label")
    edit_parser.add_argument("--shortcut", action=argparse.BooleanOptionalAction, default=None)

    # remove command
    remove_parser = subparsers.add_parser("remove", help="Remove a site")
    remove_parser.add_argument("site", help="Site id, name or label")

    # serve / unserve / open
    serve_parser = subparsers.add_parser("serve", help="Serve a site (stops serving any other)")
    serve_parser.add_argument("site", help="Site id, name or label")
    unserve_parser = subparsers.add_parser("unserve", help="Stop serving a site")
    unserve_parser.add_argument("site", help="Site id, name or label")
    open_parser = subparsers.add_parser("open", help="Open a site in the browser")
    open_parser.add_argument("site", help="Site id, name or label")

    subparsers.add_parser("apply", help="Regenerate the Caddyfile and (re)start the proxy")
    subparsers.add_parser("stop", help="Stop the proxy and clear served sites")

    # status command
    status_parser = subparsers.add_parser("status", help="Show proxy status")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # logs command
    logs_parser = subparsers.add_parser("logs", help="Show proxy logs")
    logs_parser.add_argument("--follow", "-f", action="store_true", help="Follow the error log")
    logs_parser.add_argument("--lines", "-n", type=int, default=50, help="Lines per log (default: 50)")
    logs_parser.add_argument("--clear", action="store_true", help="Truncate both logs")

    caddyfile_parser = subparsers.add_parser("caddyfile", help="Print the generated Caddyfile")
    caddyfile_parser.add_argument("--write", action="store_true", help="Write it to the data directory")

    hosts_parser = subparsers.add_parser("hosts", help="Show the hosts alias block")
    hosts_parser.add_argument("--sync", action="store_true", help="Rewrite the block (administrator approval)")

    config_parser = subparsers.add_parser("config", help="Show or change settings")
    config_parser.add_argument("key", nargs="?")
    config_parser.add_argument("value", nargs="?")

    subparsers.add_parser("version", help="Show DevSrv and Caddy versions")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(level="INFO" if args.verbose else None)

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "logs":
        from .logs import cmd_logs

        return 0 if cmd_logs(follow=args.follow, lines=args.lines, clear=args.clear) else 1

    cli = SiteCLI()

    try:
        if args.command == "list":
            success = cli.list_sites(args.json, args.probe)
        elif args.command == "add":
            success = cli.add(
                args.name,
                args.folder,
                port=args.port,
                domain=args.domain,
                label=args.label,
                shortcut=not args.no_shortcut,
            )
        elif args.command == "edit":
            success = cli.edit(
                args.site,
                name=args.name,
                folder=args.folder,
                port=args.port,
                domain=args.domain,
                label=args.label,
                shortcut=args.shortcut,
            )
        elif args.command == "remove":
            success = cli.remove(args.site)
        elif args.command == "serve":
            success = cli.serve(args.site)
        elif args.command == "unserve":
            success = cli.unserve(args.site)
        elif args.command == "open":
            success = cli.open_site(args.site)
        elif args.command == "apply":
            success = cli.apply()
        elif args.command == "stop":
            success = cli.stop()
        elif args.command == "status":
            success = cli.status(args.json)
        elif args.command == "caddyfile":
            success = cli.caddyfile(args.write)
        elif args.command == "hosts":
            success = cli.hosts(args.sync)
        elif args.command == "config":
            success = cli.config(args.key, args.value)
        elif args.command == "version":
            success = cli.version()
        else:
            parser.print_help()
            return 1

        return 0 if success else 1

    except KeyboardInterrupt:
        print_info("Interrupted")
        return 130
    except Exception as e:
        logger.exception("Unexpected error")
        print_error(f"Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
