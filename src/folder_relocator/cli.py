"""
Command-line interface for the folder relocator application.

This module is responsible for:
- Parsing command-line arguments using argparse
- Configuring logging based on verbosity level (and an optional log file)
- The interactive folder menu and yes/no prompts
- Orchestrating the overall workflow and writing the CSV report
- Restarting Explorer so it picks up the new folder locations
"""

import argparse
import logging
import subprocess
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from . import __version__, PRODUCT_NAME, PRODUCT_DESCRIPTION
from .errors import ConfigurationError, LocationStoreError, StoreUnavailableError
from .registry import list_bindings, parse_selection
from .relocator import FolderRelocator, ensure_base_path
from .report import ReportWriter
from .store import LocationStore, RegistryLocationStore
from .transfer import (
    DEFAULT_RETRIES,
    DEFAULT_RETRY_WAIT,
    RobocopyTransferEngine,
    ShutilTransferEngine,
    TransferEngine,
    default_transfer_engine,
)
from .types import FolderKind, RelocationStatus, RunSummary

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(
        prog="folder-relocator",
        description=f"""
{PRODUCT_NAME} - {PRODUCT_DESCRIPTION}

Move Windows Known Folders (Documents, Downloads, Pictures, ...) to a new
base directory. Each selected folder is placed at BASE_PATH\\<FolderName>,
its registry location is updated, and its contents are moved across.
        """.strip(),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Pick folders from a menu
  %(prog)s D:\\Users\\Me

  # Preview relocating Documents and Downloads
  %(prog)s D:\\Users\\Me --folders documents,downloads --dry-run

  # Relocate everything without prompts and restart Explorer
  %(prog)s D:\\Users\\Me --folders all --yes --restart-explorer

  # Show where each folder currently lives
  %(prog)s D:\\Users\\Me --list

Notes:
  - Folders can be selected by menu number (1,4) or name (Documents)
  - The registry is updated before contents are moved
  - Re-running after a partial failure is safe; finished folders are skipped
  - Files left behind by a partial transfer are not retried and must be moved by hand
  - Use --dry-run to preview operations without making changes
        """
    )

    parser.add_argument(
        "base_path",
        type=Path,
        help="Directory that will hold the relocated folders"
    )

    parser.add_argument(
        "-f", "--folders",
        type=str,
        default=None,
        metavar="SELECTION",
        help="Comma-separated menu numbers or folder names, or 'all' (default: ask)"
    )
    parser.add_argument(
        "-n", "--dry-run", "--whatif",
        action="store_true",
        dest="dry_run",
        help="Preview operations without changing the registry or moving files"
    )
    parser.add_argument(
        "-y", "--yes",
        action="store_true",
        help="Answer yes to every prompt (use with caution)"
    )
    parser.add_argument(
        "-r", "--report",
        type=Path,
        default=None,
        metavar="CSV_FILE",
        help="Path for CSV report (default: relocation_YYYYMMDD_HHMMSS.csv)"
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        metavar="PATH",
        help="Append a log of the run to this file"
    )

    # Transfer options
    parser.add_argument(
        "--engine",
        type=str,
        choices=["auto", "robocopy", "python"],
        default="auto",
        help="Transfer engine: 'robocopy', 'python' or 'auto' (robocopy when available)"
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=DEFAULT_RETRIES,
        metavar="N",
        help=f"Retries per file before it counts as failed (default: {DEFAULT_RETRIES})"
    )
    parser.add_argument(
        "--retry-wait",
        type=float,
        default=DEFAULT_RETRY_WAIT,
        metavar="SECONDS",
        help=f"Wait between retries (default: {DEFAULT_RETRY_WAIT:g})"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        metavar="N",
        help="Parallel file copies per folder (python engine only, default: 1)"
    )

    parser.add_argument(
        "--restart-explorer",
        action="store_true",
        help="Restart Explorer after a live run without asking"
    )
    parser.add_argument(
        "--list",
        action="store_true",
        dest="list_only",
        help="List the folders and their current locations, then exit"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (-v for INFO, -vv for DEBUG)"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=__version__
    )

    return parser


def setup_logging(verbosity: int, log_file: Optional[Path] = None) -> None:
    """Configure logging based on verbosity level."""
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity >= 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    console = logging.StreamHandler()
    console.setLevel(level)
    handlers: List[logging.Handler] = [console]

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        # The audit trail always records at least INFO
        file_handler.setLevel(min(level, logging.INFO))
        handlers.append(file_handler)

    logging.basicConfig(
        level=min(handler.level for handler in handlers),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers
    )


def ask_yes_no(question: str) -> bool:
    """Ask a yes/no question on the console. EOF counts as no."""
    try:
        response = input(f"{question} [y/N]: ")
    except EOFError:
        return False
    return response.strip().lower() in ("y", "yes")


def prompt_selection() -> Optional[List[FolderKind]]:
    """
    Show the folder menu and read a selection.

    Returns:
        Selected folders, or None if input ended (non-interactive)
    """
    print("Folders:")
    for index, binding in enumerate(list_bindings(), start=1):
        print(f"  {index}. {binding.kind.value}")

    while True:
        try:
            response = input("Select folders (e.g. 1,3 - Enter for all): ")
        except EOFError:
            return None
        try:
            return parse_selection(response)
        except ValueError as e:
            print(f"  {e}")


def create_store() -> LocationStore:
    """Create the OS location store."""
    return RegistryLocationStore()


def create_engine(args: argparse.Namespace) -> TransferEngine:
    """Create the transfer engine selected on the command line."""
    if args.engine == "robocopy":
        return RobocopyTransferEngine(retries=args.retries, retry_wait=args.retry_wait)
    if args.engine == "python":
        return ShutilTransferEngine(
            retries=args.retries,
            retry_wait=args.retry_wait,
            workers=args.workers
        )
    return default_transfer_engine(
        retries=args.retries,
        retry_wait=args.retry_wait,
        workers=args.workers
    )


def get_default_report_path() -> Path:
    """Generate default report path with timestamp."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return Path(f"relocation_{timestamp}.csv")


def get_run_parameters(
    args: argparse.Namespace,
    kinds: List[FolderKind],
    engine: TransferEngine
) -> Dict[str, str]:
    """
    Get run parameters as a dictionary for traceability.

    Args:
        args: Parsed command-line arguments
        kinds: Selected folders
        engine: Transfer engine in use

    Returns:
        Dictionary of parameter names to values
    """
    return {
        "version": __version__,
        "timestamp": datetime.now().isoformat(),
        "base_path": str(args.base_path),
        "folders": ",".join(kind.value for kind in kinds),
        "dry_run": str(args.dry_run),
        "engine": type(engine).__name__,
        "retries": str(args.retries),
        "retry_wait": f"{args.retry_wait:g}",
        "workers": str(args.workers) if args.workers > 1 else "",
        "report": str(args.report) if args.report else "",
    }


def print_folder_list(store: LocationStore) -> None:
    """Print every Known Folder with its current location."""
    print(f"\n{'#':>3}  {'Folder':<10} {'Identifier':<40} Current location")
    for index, binding in enumerate(list_bindings(), start=1):
        try:
            location = store.resolve(binding.identifier)
        except LocationStoreError as e:
            location = f"({e})"
        print(f"{index:>3}  {binding.kind.value:<10} {binding.identifier:<40} {location}")
    print()


def confirm_operation(kinds: List[FolderKind], base_path: Path) -> bool:
    """
    Prompt user to confirm the relocation.

    Args:
        kinds: Folders about to be relocated
        base_path: Destination base directory

    Returns:
        True if user confirms, False otherwise
    """
    print(f"\n{'!'*60}")
    print("CONFIRMATION REQUIRED")
    print(f"{'!'*60}")
    print(f"\nYou are about to RELOCATE {len(kinds)} folder(s) to:")
    print(f"  {base_path}")
    print(f"  ({', '.join(kind.value for kind in kinds)})")
    print("\nThe registry will be updated and files will be moved.")
    print("Use --dry-run to preview changes first.")
    print(f"{'!'*60}\n")

    try:
        response = input("Type 'yes' to proceed, or anything else to cancel: ")
        return response.strip().lower() == "yes"
    except EOFError:
        # Non-interactive environment
        return False


def print_banner(args: argparse.Namespace, kinds: List[FolderKind]) -> None:
    """Print startup banner with configuration."""
    print(f"\n{'='*60}")
    print(f"{PRODUCT_NAME}")
    print(f"Version {__version__}")
    print(f"{PRODUCT_DESCRIPTION}")
    print(f"{'='*60}")
    print(f"Base path:    {args.base_path}")
    print(f"Folders:      {', '.join(kind.value for kind in kinds)}")

    if args.dry_run:
        print("Mode:         DRY RUN (no changes will be made)")
    else:
        print("Mode:         LIVE (registry will be updated, files moved)")

    if args.report:
        print(f"Report:       {args.report}")
    if args.log_file:
        print(f"Log file:     {args.log_file}")

    print(f"{'='*60}\n")


def print_summary(summary: RunSummary) -> None:
    """Print each folder's outcome and the totals."""
    labels = {
        RelocationStatus.MOVED: "MOVED",
        RelocationStatus.DRY_RUN: "WOULD MOVE",
        RelocationStatus.SKIPPED_NOT_FOUND: "NOT FOUND",
        RelocationStatus.SKIPPED_ALREADY_REDIRECTED: "ALREADY THERE",
        RelocationStatus.FAILED: "FAILED",
    }

    print(f"\n{'='*60}")
    print("SUMMARY")
    print(f"{'='*60}")

    for result in summary.results:
        print(f"\n  {result.kind.value:<10} {labels[result.status]}")
        if result.old_path:
            print(f"    from: {result.old_path}")
        if result.new_path:
            print(f"    to:   {result.new_path}")
        if result.message:
            print(f"    {result.message}")
        if result.transfer is not None:
            for failure in result.transfer.failures:
                print(f"    not moved: {failure.path} ({failure.reason})")

    counts: Dict[RelocationStatus, int] = {}
    for result in summary.results:
        counts[result.status] = counts.get(result.status, 0) + 1

    print("\nTotals:")
    for status, label in labels.items():
        if counts.get(status):
            print(f"  {label:<15} {counts[status]}")

    left_behind = sum(
        len(result.transfer.failures)
        for result in summary.results
        if result.transfer is not None
    )
    if left_behind:
        print(f"\n{left_behind} file(s) are still at their old location and must be moved by hand.")
        print("They are listed as FILE_FAILED rows in the report. Re-running only re-binds the folder.")

    print(f"{'='*60}\n")


def restart_explorer() -> bool:
    """
    Restart Windows Explorer so it re-reads the folder locations.

    Returns:
        True if Explorer was restarted
    """
    if sys.platform != "win32":
        logger.warning("Explorer restart is only supported on Windows")
        return False

    logger.info("Restarting Explorer")
    try:
        subprocess.run(
            ["taskkill", "/f", "/im", "explorer.exe"],
            capture_output=True,
            text=True
        )
        subprocess.Popen(["explorer.exe"])
    except OSError as e:
        logger.error(f"Could not restart Explorer: {e}")
        return False
    return True


def main(argv: list = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, 2 if any folder failed, 1 for errors)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.log_file)

    logger.info(f"{PRODUCT_NAME} v{__version__}")
    logger.debug(f"Arguments: {args}")

    confirm: Callable[[str], bool] = (lambda question: True) if args.yes else ask_yes_no

    try:
        store = create_store()

        if args.list_only:
            print_folder_list(store)
            return 0

        # Fatal configuration problems stop the run before any folder is touched
        base_path = ensure_base_path(args.base_path, confirm, dry_run=args.dry_run)

        if args.folders is not None:
            kinds = parse_selection(args.folders)
        elif args.yes:
            kinds = parse_selection(None)
        else:
            kinds = prompt_selection()
            if kinds is None:
                print("\nNo selection made, nothing to do.")
                return 0

        if args.report is None:
            args.report = get_default_report_path()

        engine = create_engine(args)

        run_params = get_run_parameters(args, kinds, engine)
        logger.info("Run parameters:")
        for key, value in run_params.items():
            if value:
                logger.info(f"  {key}: {value}")

        print_banner(args, kinds)

        if not args.dry_run:
            if not args.yes:
                if not confirm_operation(kinds, base_path):
                    print("\nOperation cancelled by user.")
                    logger.info("Operation cancelled by user at confirmation prompt")
                    return 0
            else:
                logger.info("Confirmation skipped (--yes flag)")

        relocator = FolderRelocator(
            base_path=base_path,
            store=store,
            engine=engine,
            dry_run=args.dry_run,
            confirm=confirm
        )

        def show_progress(current: int, total: int, kind: FolderKind) -> None:
            print(f"[{current}/{total}] {kind.value}...")

        summary = relocator.relocate_all(kinds, progress_callback=show_progress)

        print(f"\nWriting report to {args.report}...")
        with ReportWriter(args.report) as writer:
            writer.write_parameters(run_params)
            writer.write_results(summary.results)
            logger.info(writer.get_summary())

        print_summary(summary)
        logger.info(relocator.get_summary())
        print(f"Report saved to: {args.report}")

        if summary.restart_recommended:
            if args.restart_explorer or confirm(
                "Restart Explorer now so the new locations take effect?"
            ):
                restart_explorer()
            else:
                print("Sign out or restart Explorer for the new locations to take effect.")

        if summary.failed:
            return 2

        return 0

    except (ConfigurationError, StoreUnavailableError) as e:
        print(f"\nError: {e}", file=sys.stderr)
        logger.error(f"Configuration error: {e}")
        return 1

    except ValueError as e:
        print(f"\nError: {e}", file=sys.stderr)
        logger.error(f"Value error: {e}")
        return 1

    except KeyboardInterrupt:
        print("\n\nOperation cancelled by user.", file=sys.stderr)
        return 130

    except Exception as e:
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        logger.exception("Unexpected error")
        return 1


if __name__ == "__main__":
    sys.exit(main())
