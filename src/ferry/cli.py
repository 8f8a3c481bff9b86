"""
Ferry - Command line interface.

Created by orpheus497

    ferry send FILE [FILE ...]
    ferry receive CODE|LINK [--output DIR]
    ferry receive --qr IMAGE
    ferry directory [--host HOST] [--port PORT] [--ttl SECONDS]
"""

import argparse
import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from . import __version__
from .codes import CodeGenerator
from .config import Config
from .constants import (
    APP_NAME,
    DEFAULT_DATA_DIR,
    DOWNLOADS_DIRNAME,
    LOG_BACKUP_COUNT,
    LOG_DATE_FORMAT,
    LOG_FILENAME,
    LOG_FORMAT,
    LOG_MAX_BYTES,
    LOGS_DIR,
)
from .directory import create_directory
from .errors import ConfigError, FerryError, TransferIncompleteError
from .establisher import SessionEstablisher
from .nat_traversal import NATTraversal
from .protocol import UnitStart
from .qr_code import create_share_qr, is_qr_available, scan_qr_code
from .share import ShareReceiver, ShareSender
from .transfer import TransferResult, TransferUnit, build_units
from .transport import TcpTransport
from .utils import format_file_size

logger = logging.getLogger(__name__)

console = Console()


def setup_logging(config: Config, debug: bool = False) -> None:
    """Configure the root logger from the [logging] config section.

    Console output goes through rich; file output, when enabled, goes to a
    rotating log under the data directory.
    """
    level_name = "DEBUG" if debug else str(config.get("logging", "level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if config.get("logging", "console_logging", True):
        console_handler = RichHandler(
            console=Console(stderr=True), show_path=debug, rich_tracebacks=debug
        )
        console_handler.setLevel(level)
        root.addHandler(console_handler)

    if config.get("logging", "file_logging", False):
        log_dir = Path(DEFAULT_DATA_DIR).expanduser() / LOGS_DIR
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / LOG_FILENAME, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
        file_handler.setLevel(level)
        root.addHandler(file_handler)


def build_establisher(config: Config) -> SessionEstablisher:
    nat = NATTraversal() if config.get("network", "nat_traversal") else None
    transport = TcpTransport(
        host=config.get("network", "host"),
        port=config.get("network", "port"),
        advertise_host=config.get("network", "advertise_host"),
        nat_traversal=nat,
    )
    return SessionEstablisher(transport, config.get("network", "connect_timeout"))


def build_code_generator(config: Config) -> CodeGenerator:
    return CodeGenerator(config.get("codes", "alphabet"), config.get("codes", "length"))


def _progress() -> Progress:
    return Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=console,
    )


async def cmd_send(args, config: Config) -> int:
    """Handle send command."""
    units = build_units(
        [Path(p).expanduser() for p in args.files], config.get("transfer", "max_file_size")
    )
    directory = create_directory(config)

    with _progress() as progress:
        tasks: Dict[int, TaskID] = {
            id(unit): progress.add_task(unit.name, total=max(unit.size, 1), start=False)
            for unit in units
        }

        def on_progress(unit: TransferUnit, percent: int) -> None:
            task = tasks[id(unit)]
            progress.start_task(task)
            progress.update(task, completed=max(unit.size, 1) * percent / 100)

        sender = ShareSender(
            units,
            directory,
            build_establisher(config),
            code_generator=build_code_generator(config),
            chunk_size=config.get("transfer", "chunk_size"),
            pace_delay=config.get("transfer", "pace_delay"),
            max_rate=config.get("transfer", "max_rate"),
            linger=config.get("transfer", "linger"),
            progress_callback=on_progress,
        )

        try:
            code = await sender.publish()
            link = sender.share_link(
                config.get("share", "base_url"), config.get("share", "include_peer")
            )

            total = sum(unit.size for unit in units)
            progress.console.print(
                Panel(
                    f"[bold green]{code}[/bold green]\n\n{link}",
                    title=f"{len(units)} file(s), {format_file_size(total)}",
                    subtitle="Waiting for receiver",
                )
            )

            if not args.no_qr and config.get("features", "qr_codes") and is_qr_available():
                png_path = Path(args.qr).expanduser() if args.qr else None
                progress.console.print(create_share_qr(link, png_path))

            await sender.serve(timeout=args.timeout)
        finally:
            await sender.close()
            await directory.close()

    console.print("[green]All files sent.[/green]")
    return 0


def _print_result(result: TransferResult, saved: List[Path]) -> None:
    table = Table(title="Received files")
    table.add_column("#", justify="right")
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("Saved to")

    for received, path in zip(result.files, saved):
        size = format_file_size(received.size)
        if received.size_mismatch:
            size += f" [yellow](declared {format_file_size(received.declared_size)})[/yellow]"
        table.add_row(str(received.index + 1), received.name, size, str(path))

    console.print(table)

    for anomaly in result.anomalies:
        console.print(f"[yellow]warning[/yellow] [{anomaly.code.value}] {anomaly.message}")


async def cmd_receive(args, config: Config) -> int:
    """Handle receive command."""
    if args.qr:
        text = scan_qr_code(Path(args.qr).expanduser())
    elif args.code:
        text = args.code
    else:
        console.print("[red]Error:[/red] give a code, a link, or --qr IMAGE")
        return 2

    if args.output:
        output_dir = Path(args.output).expanduser()
    else:
        output_dir = Path(DEFAULT_DATA_DIR).expanduser() / DOWNLOADS_DIRNAME

    directory = create_directory(config)

    with _progress() as progress:
        tasks: Dict[int, TaskID] = {}

        def on_progress(start: UnitStart, percent: int) -> None:
            if start.index not in tasks:
                tasks[start.index] = progress.add_task(start.name, total=max(start.size, 1))
            progress.update(tasks[start.index], completed=max(start.size, 1) * percent / 100)

        receiver = ShareReceiver(
            directory,
            build_establisher(config),
            code_generator=build_code_generator(config),
            progress_callback=on_progress,
        )

        try:
            result = await receiver.receive_link(text)
        except TransferIncompleteError as e:
            result = e.result
            if result is not None and result.files:
                saved = [f.save(output_dir) for f in result.files]
                _print_result(result, saved)
            raise
        finally:
            await receiver.close()
            await directory.close()

    saved = [f.save(output_dir) for f in result.files]
    _print_result(result, saved)
    console.print(f"[green]{len(saved)} file(s) saved to {output_dir}[/green]")
    return 0


def cmd_directory(args, config: Config) -> int:
    """Handle directory command."""
    from .directory_server import run_server

    run_server(config, args.host, args.port, args.ttl)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ferry",
        description=f"{APP_NAME} - direct file sharing with short codes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ferry send report.pdf photo.jpg     # offer two files, prints a code
  ferry receive 482913                # fetch them with the code
  ferry receive "https://ferry.example.net/?code=482913"
  ferry directory --port 8787         # run a rendezvous directory server

Created by orpheus497
""",
    )

    parser.add_argument("--version", action="version", version=f"{APP_NAME} {__version__}")
    parser.add_argument("--config", type=str, default=None, help="Configuration file path")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    send_parser = subparsers.add_parser("send", help="Offer files under a new code")
    send_parser.add_argument("files", nargs="+", help="Files to send")
    send_parser.add_argument(
        "--timeout", type=float, default=None, help="Seconds to wait for a receiver"
    )
    send_parser.add_argument("--qr", type=str, default=None, help="Also save the QR code as PNG")
    send_parser.add_argument("--no-qr", action="store_true", help="Do not print a QR code")

    receive_parser = subparsers.add_parser("receive", help="Receive files by code or link")
    receive_parser.add_argument("code", nargs="?", help="Rendezvous code or share link")
    receive_parser.add_argument("--qr", type=str, default=None, help="Read the link from a QR image")
    receive_parser.add_argument("--output", "-o", type=str, default=None, help="Download directory")

    directory_parser = subparsers.add_parser("directory", help="Run a rendezvous directory server")
    directory_parser.add_argument("--host", type=str, default=None, help="Interface to bind")
    directory_parser.add_argument("--port", type=int, default=None, help="Port to listen on")
    directory_parser.add_argument("--ttl", type=float, default=None, help="Record lifetime (s)")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = Config(Path(args.config).expanduser() if args.config else None)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        return 2

    setup_logging(config, debug=args.debug)

    try:
        if args.command == "send":
            return asyncio.run(cmd_send(args, config))
        if args.command == "receive":
            return asyncio.run(cmd_receive(args, config))
        if args.command == "directory":
            return cmd_directory(args, config)
    except FerryError as e:
        console.print(f"[red]Error:[/red] {e}")
        return 1
    except KeyboardInterrupt:
        console.print("\nCancelled.")
        return 130

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
