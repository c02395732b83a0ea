"""Command line interface.

Usage:
    stackup run plan.yaml                       # bring up, verify, write status
    stackup run plan.yaml --policy continue     # best effort
    stackup run plan.yaml --skip-if-ready       # no-op if last run was READY
    stackup status                              # show the persisted status
    stackup validate plan.yaml                  # check a plan, print its order
    stackup serve                               # read-only status API

Exit codes: 0 when READY=true, 1 when not ready, 2 on configuration errors.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stackup import __version__
from stackup.config import Settings, get_settings
from stackup.core.loader import load_plan
from stackup.core.orchestrator import FailurePolicy
from stackup.core.report import format_summary, is_environment_ready, read_status_file
from stackup.core.runner import run_plan
from stackup.middleware.logging import configure_logging
from stackup.models.check import CheckStatus
from stackup.models.report import Report
from stackup.utils.errors import ConfigError

logger = logging.getLogger(__name__)

console = Console()

EXIT_READY = 0
EXIT_NOT_READY = 1
EXIT_CONFIG_ERROR = 2

STATUS_STYLES = {
    CheckStatus.PASS: "green",
    CheckStatus.FAIL: "red",
    CheckStatus.WARN: "yellow",
}


def print_header(title: str) -> None:
    console.print()
    console.print(Panel(f"[bold cyan]{title}[/bold cyan]", expand=False))
    console.print()


def print_report(report: Report) -> None:
    """Render a report as colored tables plus a summary."""
    if report.unit_results or report.skipped_units:
        units = Table(title="Services", title_justify="left")
        units.add_column("Service")
        units.add_column("State")
        units.add_column("Attempts", justify="right")
        units.add_column("Detail", overflow="fold")
        for unit in report.unit_results:
            style = "green" if unit.ready else "red"
            units.add_row(
                unit.display_name,
                f"[{style}]{unit.state.value}[/{style}]",
                str(unit.attempt_count),
                unit.final_error or "",
            )
        for unit_id in report.skipped_units:
            units.add_row(unit_id, "[dim]skipped[/dim]", "0", "")
        console.print(units)

    if report.check_results:
        checks = Table(title="Checks", title_justify="left")
        checks.add_column("Check")
        checks.add_column("Status")
        checks.add_column("Detail", overflow="fold")
        for check in report.check_results:
            style = STATUS_STYLES[check.status]
            checks.add_row(
                check.check_name, f"[{style}]{check.status.value}[/{style}]", check.detail or ""
            )
        console.print(checks)

    console.print()
    console.print(format_summary(report), highlight=False, markup=False)
    if report.ready:
        console.print("[bold green]All critical checks passed; environment is ready.[/bold green]")
    else:
        console.print("[bold red]Environment is not ready.[/bold red] Address the failures above and re-run.")


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    settings = settings.model_copy(deep=True)
    status_file = getattr(args, "status_file", None)
    if status_file:
        settings.report = settings.report.model_copy(
            update={"status_file": Path(status_file), "json_file": None}
        )
    if getattr(args, "verbose", False):
        settings.logging = settings.logging.model_copy(update={"level": "DEBUG"})
    if getattr(args, "log_format", None):
        settings.logging = settings.logging.model_copy(update={"format": args.log_format})
    return settings


async def _run_async(args: argparse.Namespace, settings: Settings) -> int:
    loaded = load_plan(args.plan, settings.probes)

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel_event.set)
        except (NotImplementedError, RuntimeError):
            # Signal handlers are unavailable on some platforms
            pass

    report = await run_plan(
        loaded,
        settings,
        policy=args.policy,
        deadline_seconds=args.deadline,
        cancel_event=cancel_event,
    )
    print_report(report)
    console.print(f"[dim]Status written to {settings.report.status_file}[/dim]")
    return EXIT_READY if report.ready else EXIT_NOT_READY


def cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    """Bring up the plan, verify it, and persist the report."""
    if args.skip_if_ready and is_environment_ready(
        settings.report.status_file, settings.report.max_age_seconds
    ):
        entries = read_status_file(settings.report.status_file)
        console.print(
            f"[green]Environment already verified at {entries.get('TIMESTAMP', '?')}; "
            f"skipping.[/green]"
        )
        return EXIT_READY

    print_header(f"stackup {__version__}: {args.plan}")
    return asyncio.run(_run_async(args, settings))


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    """Show the persisted status of the last run."""
    entries = read_status_file(settings.report.status_file)
    if not entries:
        console.print(f"[yellow]No status recorded at {settings.report.status_file}[/yellow]")
        return EXIT_NOT_READY

    table = Table(show_header=False)
    for key, value in entries.items():
        table.add_row(key, value)
    console.print(table)

    ready = is_environment_ready(settings.report.status_file, settings.report.max_age_seconds)
    return EXIT_READY if ready else EXIT_NOT_READY


def cmd_validate(args: argparse.Namespace, settings: Settings) -> int:
    """Validate a plan file and print the resolved start order."""
    loaded = load_plan(args.plan, settings.probes)
    console.print(f"[green]Plan is valid[/green]: {len(loaded.plan)} service(s), "
                  f"{len(loaded.checks)} check(s)")
    for index, unit in enumerate(loaded.plan, 1):
        deps = f" (after {', '.join(sorted(unit.depends_on))})" if unit.depends_on else ""
        probes = ", ".join(p.name for p in unit.probes) or "no probes"
        console.print(f"  {index}. {unit.display_name}{deps}: {probes}")
    return EXIT_READY


def cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    """Serve the read-only status API."""
    from stackup.main import run_server

    if args.host:
        settings.server = settings.server.model_copy(update={"host": args.host})
    if args.port:
        settings.server = settings.server.model_copy(update={"port": args.port})
    run_server(settings)
    return EXIT_READY


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stackup",
        description="Bring up interdependent services, verify them, and report readiness.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Usage:")[1] if __doc__ else None,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config-dir", help="Directory holding config.yaml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--log-format", choices=["json", "text"], help="Log output format")

    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Bring up and verify a plan")
    run.add_argument("plan", help="Plan definition file (YAML)")
    run.add_argument(
        "--policy",
        choices=[p.value for p in FailurePolicy],
        help="Failure policy (default: plan file, then config)",
    )
    run.add_argument("--deadline", type=float, help="Overall deadline in seconds")
    run.add_argument("--status-file", help="Where to write the KEY=VALUE status")
    run.add_argument(
        "--skip-if-ready",
        action="store_true",
        help="Exit 0 without doing anything if the last run was READY",
    )
    run.set_defaults(func=cmd_run)

    status = sub.add_parser("status", help="Show the last run's status")
    status.add_argument("--status-file", help="Status file to read")
    status.set_defaults(func=cmd_status)

    validate = sub.add_parser("validate", help="Validate a plan file")
    validate.add_argument("plan", help="Plan definition file (YAML)")
    validate.set_defaults(func=cmd_validate)

    serve = sub.add_parser("serve", help="Serve the read-only status API")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)
    serve.add_argument("--status-file", help="Status file to expose")
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config_dir = Path(args.config_dir) if args.config_dir else None
    settings = _apply_overrides(get_settings(config_dir), args)
    configure_logging(level=settings.logging.level, format=settings.logging.format)

    try:
        settings.validate_required()
        return args.func(args, settings)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        logger.debug("Configuration error", exc_info=True)
        return EXIT_CONFIG_ERROR
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    sys.exit(main())
