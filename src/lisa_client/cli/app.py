from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.markup import escape

from ..auth import AuthError
from ..config import Settings
from ..context import ClientContext
from ..services.notifications import format_status_text
from ..services.scan_api_client import ScanApiClientError
from ..services.scan_service import ScanSubmissionError, filter_scannable
from .display import render_results_table, render_scan_detail

logger = logging.getLogger(__name__)


class ConsoleNotifier:
    """Tone-coded user messages; actions are not offered on a plain terminal."""

    def __init__(self, console: Optional[Console] = None, err_console: Optional[Console] = None) -> None:
        self._console = console or Console(soft_wrap=True)
        self._err_console = err_console or Console(stderr=True, soft_wrap=True)

    def write(self, message: str = "") -> None:
        self._console.print(message, markup=False, highlight=False)

    async def info(self, message: str, *actions: str) -> Optional[str]:
        self._console.print(f"[bold green]{escape(message)}[/bold green]")
        return None

    async def warning(self, message: str, *actions: str) -> Optional[str]:
        self._err_console.print(f"[bold yellow]{escape(message)}[/bold yellow]")
        return None

    async def error(self, message: str, *actions: str) -> Optional[str]:
        self._err_console.print(f"[bold red]{escape(message)}[/bold red]")
        return None


class ConsoleStatusIndicator:
    def __init__(self, console: Optional[Console] = None) -> None:
        self._console = console or Console(soft_wrap=True)
        self._last = ""

    def update(self, active_scan_count: int) -> None:
        text = format_status_text(active_scan_count)
        if text and text != self._last:
            self._console.print(f"[cyan]{escape(text)}[/cyan]")
        self._last = text

    def set_results_available(self, available: bool) -> None:
        pass


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lisa", description="AgentLISA security scans from the terminal.")
    parser.add_argument("--workspace", type=Path, default=Path.cwd(), help="Workspace root (default: current directory).")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("login", help="Authenticate with AgentLISA in the browser.")
    sub.add_parser("logout", help="Forget stored credentials.")
    sub.add_parser("status", help="Show authentication state and stored scans.")

    scan = sub.add_parser("scan", help="Submit files for a security scan.")
    scan.add_argument("files", nargs="+", type=Path)
    scan.add_argument("--project", help="Project name used in the scan title.")
    scan.add_argument("--all-files", action="store_true", help="Do not restrict to Solidity sources.")
    scan.add_argument("--wait", action="store_true", help="Poll until the scan finishes.")

    sub.add_parser("results", help="List stored scan results.")
    show = sub.add_parser("show", help="Show one scan result.")
    show.add_argument("scan_id")
    remove = sub.add_parser("remove", help="Remove one scan result.")
    remove.add_argument("scan_id")
    sub.add_parser("clear", help="Remove all scan results.")
    sub.add_parser("watch", help="Resume polling unfinished scans until they finish.")
    return parser


async def run(args: argparse.Namespace, settings: Settings) -> int:
    notifier = ConsoleNotifier()
    async with ClientContext(
        settings,
        workspace_root=args.workspace,
        notifier=notifier,
        status_indicator=ConsoleStatusIndicator(),
    ) as ctx:
        if args.cmd == "login":
            return 0 if await ctx.authenticator.authenticate() else 1

        if args.cmd == "logout":
            await ctx.authenticator.logout()
            notifier.write("Signed out.")
            return 0

        if args.cmd == "status":
            state = "authenticated" if ctx.authenticator.is_authenticated() else "not authenticated"
            notifier.write(f"AgentLISA ({settings.base_url}): {state}")
            notifier.write(f"Stored scans: {len(ctx.results)}")
            return 0

        if args.cmd == "scan":
            files = list(args.files) if args.all_files else filter_scannable(args.files)
            if not files:
                await notifier.warning("No Solidity files selected for scanning.")
                return 1
            metadata = {"projectName": args.project} if args.project else None
            try:
                scan_id = await ctx.scans.start_scan(files, metadata)
            except (ScanSubmissionError, ScanApiClientError, AuthError) as exc:
                await notifier.error(f"Failed to start scan: {exc}")
                return 1
            plural = "s" if len(files) > 1 else ""
            await notifier.info(f"Scan started for {len(files)} file{plural}. Scan id: {scan_id}")
            if args.wait:
                await ctx.scheduler.join()
                record = ctx.results.get(scan_id)
                if record is not None:
                    notifier.write("\n".join(render_scan_detail(record, ctx.scans.scan_url(scan_id))))
            return 0

        if args.cmd == "results":
            notifier.write(render_results_table(ctx.results.get_all()))
            return 0

        if args.cmd == "show":
            record = ctx.results.get(args.scan_id)
            if record is None:
                await notifier.error(f"No scan result with id {args.scan_id}")
                return 1
            notifier.write("\n".join(render_scan_detail(record, ctx.scans.scan_url(record.id))))
            return 0

        if args.cmd == "remove":
            if not await ctx.scans.remove_scan_result(args.scan_id):
                await notifier.error(f"No scan result with id {args.scan_id}")
                return 1
            notifier.write("Scan result removed.")
            return 0

        if args.cmd == "clear":
            count = await ctx.scans.remove_all_scan_results()
            notifier.write(f"Removed all {count} scan results." if count else "No scan results to remove.")
            return 0

        if args.cmd == "watch":
            resumed = ctx.scheduler.resume()
            if not resumed:
                notifier.write("No unfinished scans.")
                return 0
            await ctx.scheduler.join()
            notifier.write(render_results_table(ctx.results.get_all()))
            return 0

    return 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        settings = Settings.from_env()
        return asyncio.run(run(args, settings))
    except AuthError as exc:
        Console(stderr=True, soft_wrap=True).print(f"[bold red]{escape(str(exc))}[/bold red]")
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
