# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Obtain and cache an OAuth token from the command line.

    python -m oauther --creds creds.json --token token.json SCOPE [SCOPE ...]

If the browser cannot reach this machine, get an auth code some other way and
rerun with --code.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape as rich_escape

from .config import load_config
from .errors import OAutherError
from .sources import CodeTokenSource, FileCache, LoopbackTokenSource

console = Console()


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="oauther", description=__doc__.strip().splitlines()[0])
    parser.add_argument("--creds", default="creds.json", help="path to credentials file")
    parser.add_argument("--token", default="token.json", help="path to token cache file")
    parser.add_argument("--code", default="", help="auth code")
    parser.add_argument(
        "--timeout", type=float, default=None, help="seconds to wait for the browser"
    )
    parser.add_argument("--verbose", "-v", action="store_true")
    parser.add_argument("scopes", nargs="+", help="OAuth scopes to request")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    config = load_config(args.creds, *args.scopes)
    src = FileCache(
        CodeTokenSource(LoopbackTokenSource(timeout=args.timeout), args.code),
        args.token,
    )
    token = await src.get(config)

    expiry = token.expiry.isoformat() if token.expiry else "never"
    console.print(f"[bold green]Token ready[/bold green] in [bold]{rich_escape(args.token)}[/bold]")
    console.print(f"  type: {token.token_type}")
    console.print(f"  expires: {expiry}")
    console.print(f"  refresh token: {'yes' if token.refresh_token else 'no'}")
    if not token.valid():
        console.print("[yellow]Cached token is expired; delete the file to re-authorize.[/yellow]")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = _parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        return asyncio.run(_run(args))
    except OAutherError as e:
        console.print(f"[bold red]Error:[/bold red] {rich_escape(str(e))}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
