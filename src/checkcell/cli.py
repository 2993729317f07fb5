"""Command-line interface for CheckCell."""

import argparse
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import uvicorn

from .config import Settings, settings
from .errors import CheckCellError
from .progress import LoggingProgress
from .sheets.host import HostSession
from .sheets.memory import InMemoryWorkbook
from .workflow import AuditSession, AuditState, WorkflowResult

logger = logging.getLogger(__name__)


def main(argv: Optional[list[str]] = None):
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="CheckCell - find suspicious input cells in a spreadsheet"
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: from LOG_LEVEL)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Analysis options shared by analyze and audit
    analysis_options = argparse.ArgumentParser(add_help=False)
    analysis_options.add_argument(
        "source", help="Workbook JSON file, or a spreadsheet ID with --google"
    )
    analysis_options.add_argument(
        "--google", action="store_true", help="Treat SOURCE as a Google spreadsheet ID"
    )
    analysis_options.add_argument("--seed", type=int, default=None, help="Random seed")
    analysis_options.add_argument(
        "--bootstraps", type=int, default=None, help="Draws per input range"
    )
    analysis_options.add_argument(
        "--budget-ms", type=int, default=None, help="Wall-clock budget in milliseconds"
    )
    analysis_options.add_argument(
        "--significance", type=float, default=None, help="Tool significance (default: 0.95)"
    )

    # Analyze command
    analyze_parser = subparsers.add_parser(
        "analyze", parents=[analysis_options], help="Score every input cell once"
    )
    analyze_parser.add_argument(
        "--top", type=int, default=10, help="Number of ranked scores to print (default: 10)"
    )

    # Audit command
    audit_parser = subparsers.add_parser(
        "audit", parents=[analysis_options], help="Walk through flagged cells interactively"
    )
    audit_parser.add_argument(
        "--output", "-o", help="Save the corrected workbook to this JSON file"
    )

    # Server command
    server_parser = subparsers.add_parser("serve", help="Start the web server")
    server_parser.add_argument(
        "--host", default=settings.host, help=f"Host to bind to (default: {settings.host})"
    )
    server_parser.add_argument(
        "--port", type=int, default=settings.port, help=f"Port to bind to (default: {settings.port})"
    )
    server_parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload for development"
    )

    # Auth command
    subparsers.add_parser("auth", help="Authenticate with Google Sheets API")

    args = parser.parse_args(argv)
    configure_logging(args.log_level or settings.log_level)

    if args.command == "analyze":
        sys.exit(run_analyze(args))
    elif args.command == "audit":
        sys.exit(run_audit(args))
    elif args.command == "serve":
        run_server(args.host, args.port, args.reload)
    elif args.command == "auth":
        run_auth()
    else:
        parser.print_help()
        sys.exit(1)


def configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_config(args: argparse.Namespace) -> Settings:
    """Settings with command-line overrides applied."""
    overrides = {
        "rng_seed": args.seed,
        "num_bootstraps": args.bootstraps,
        "max_duration_ms": args.budget_ms,
        "tool_significance": args.significance,
    }
    return settings.model_copy(update={k: v for k, v in overrides.items() if v is not None})


def open_host(args: argparse.Namespace) -> HostSession:
    """Open the workbook named on the command line."""
    if args.google:
        from .sheets.client import GoogleSheetsHost

        return GoogleSheetsHost(args.source)
    return InMemoryWorkbook.from_json_file(args.source)


def analyze_interruptibly(session: AuditSession) -> WorkflowResult:
    """
    Run a pass on a worker thread so Ctrl+C cancels it instead of killing it.

    A cancelled pass still returns scores for the draws completed so far.
    """
    progress = LoggingProgress()
    with ThreadPoolExecutor(max_workers=1) as executor:
        future = executor.submit(session.analyze, None, progress)
        try:
            return future.result()
        except KeyboardInterrupt:
            print("Cancelling analysis; scoring the draws collected so far...")
            progress.cancel()
            return future.result()


def run_analyze(args: argparse.Namespace) -> int:
    """Run one pass and print the ranked scores."""
    try:
        host = open_host(args)
    except (OSError, ValueError) as e:
        print(f"Could not load workbook: {e}")
        return 1

    session = AuditSession(host, build_config(args))
    try:
        result = analyze_interruptibly(session)
    except CheckCellError as e:
        print(f"Error: {e}")
        return 1

    print(result.message)
    if not result.applicable:
        return 0

    print()
    print("Ranked scores:")
    for entry in session.scores_view()[: args.top]:
        marker = "*" if entry.flaggable else " "
        print(f" {marker} {entry.cell:<20} {entry.score:>6}  ({entry.normalized:.2f})")

    print()
    if session.flaggable:
        print("Suspicious cells: " + ", ".join(cell.a1 for cell, _ in session.flaggable))
    else:
        print("No suspicious cells.")
    if session.result is not None:
        print(
            f"{session.result.draws_completed}/{session.result.draws_requested} draws, "
            f"cache hit rate {session.result.hit_rate:.1%}"
        )
    return 0


def run_audit(args: argparse.Namespace) -> int:
    """Run the interactive flag / fix loop."""
    try:
        host = open_host(args)
    except (OSError, ValueError) as e:
        print(f"Could not load workbook: {e}")
        return 1

    session = AuditSession(host, build_config(args))

    print("CheckCell Audit Mode")
    print("=" * 40)
    print("y = cell is OK, f VALUE = fix the cell, r = reset, q = quit")
    print()

    try:
        result = analyze_interruptibly(session)
        print(result.message)
        if not result.applicable:
            return 0
        result = session.flag()

        while session.state == AuditState.FLAGGED:
            print(f"\n{result.message}")
            try:
                user_input = input("> ").strip()
            except EOFError:
                break

            if user_input.lower() in ("q", "quit", "exit"):
                break
            elif user_input.lower() == "y":
                result = session.mark_as_ok()
            elif user_input.lower().startswith("f "):
                result = session.fix_error(user_input[2:].strip())
                if result.error:
                    print(f"Re-analysis failed: {result.error}")
            elif user_input.lower() == "r":
                result = session.reset_tool()
            else:
                print("Unknown command.")
                continue

        if session.state != AuditState.FLAGGED:
            print(result.message)
    except CheckCellError as e:
        print(f"Error: {e}")
        return 1
    finally:
        session.restore_display_attributes()

    if args.output:
        if isinstance(host, InMemoryWorkbook):
            host.save_json_file(args.output)
            print(f"Saved workbook to {args.output}")
        else:
            print("Google spreadsheets are saved as you go; --output ignored.")
    return 0


def run_server(host: str, port: int, reload: bool):
    """Run the web server."""
    uvicorn.run(
        "checkcell.api:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


def run_auth():
    """Run the Google authentication flow."""
    from .sheets.client import GoogleSheetsHost

    print("Authenticating with Google Sheets API...")
    try:
        host = GoogleSheetsHost(spreadsheet_id="")
        # Accessing the service property triggers auth
        _ = host.service
        print("Authentication successful!")
        print("Token saved. You can now audit Google spreadsheets with --google.")
    except Exception as e:
        print(f"Authentication failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
