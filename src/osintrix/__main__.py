"""Entry point for `python -m osintrix`.

Subcommands:
    osintrix run [--user ID]   Read /commands from stdin (default)
    osintrix menu [CATEGORY]   Print the command menu and exit
"""

from __future__ import annotations

import argparse
import asyncio
import getpass


def _run(identity: str) -> None:
    from osintrix.app import OsintrixApp

    asyncio.run(OsintrixApp().run(identity))


def _menu(category: str | None) -> None:
    from osintrix.plugin import build_registry
    from osintrix.plugins.user.menu import render_menu

    registry = build_registry()
    print(render_menu(registry.descriptors(), category))


def main() -> None:
    parser = argparse.ArgumentParser(prog="osintrix", description="Quota-gated lookup bot")
    sub = parser.add_subparsers(dest="command")

    run_p = sub.add_parser("run", help="read commands from stdin")
    run_p.add_argument("--user", default=None, help="caller identity (default: login name)")

    menu_p = sub.add_parser("menu", help="print the command menu")
    menu_p.add_argument("category", nargs="?", default=None)

    args = parser.parse_args()
    if args.command == "menu":
        _menu(args.category)
    else:
        _run(getattr(args, "user", None) or getpass.getuser())


if __name__ == "__main__":
    main()
