"""
Relocation orchestrator for moving Known Folders to a new base directory.

This module is responsible for:
- Resolving each selected folder's current location from the store
- Deciding whether a folder needs relocating, is already redirected,
  or has no binding at all
- Executing relocations in a fixed order: create destination, bind the
  new location, then transfer the contents
- Supporting dry-run mode (resolve and decide only, never write)
- Isolating per-folder failures so one folder never aborts the run
- Returning detailed results for reporting
"""

import logging
import os
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from .errors import (
    ConfigurationError,
    LocationStoreError,
    NotFoundError,
    TransferPartialFailure,
    WriteError,
)
from .registry import get_identifier
from .store import LocationStore
from .transfer import TransferEngine
from .types import (
    FolderKind,
    PlanAction,
    RelocationPlan,
    RelocationResult,
    RelocationStatus,
    RunSummary,
    TransferResult,
    TransferStatus,
)
from .utils import is_nested_path, normalize_path, paths_equal

# Decision callback: receives a yes/no question, returns the answer
ConfirmCallback = Callable[[str], bool]

logger = logging.getLogger(__name__)


def decline(question: str) -> bool:
    """Default confirm callback: always answers no."""
    return False


def ensure_base_path(
    base_path: Union[str, Path],
    confirm: ConfirmCallback = decline,
    dry_run: bool = False
) -> Path:
    """
    Validate the base directory, creating it if the caller agrees.

    In dry-run mode a missing base directory is reported, not created.

    Args:
        base_path: Directory that will hold the relocated folders
        confirm: Asked whether a missing base directory should be created
        dry_run: Never create anything

    Returns:
        The base directory as a Path

    Raises:
        ConfigurationError: If the path is relative, is a file, is missing
                            and creation was declined, or cannot be created
    """
    path = Path(normalize_path(base_path))

    if not path.is_absolute():
        raise ConfigurationError(f"Base path must be absolute: {base_path}")

    if path.exists():
        if not path.is_dir():
            raise ConfigurationError(f"Base path is not a directory: {path}")
        return path

    if dry_run:
        logger.info(f"[DRY RUN] Base path {path} does not exist and would be created")
        return path

    if not confirm(f"Base path {path} does not exist. Create it?"):
        raise ConfigurationError(f"Base path not found: {path}")

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(f"Cannot create base path {path}: {e}") from e

    logger.info(f"Created base path: {path}")
    return path


class FolderRelocator:
    """
    Relocates Known Folders to base_path/<FolderName>.

    Folders are processed one at a time. For each one the relocator
    resolves the current location, decides what to do, and either reports
    (dry run) or executes: destination first, then the store write, then
    the content transfer. The store write always precedes the transfer.
    """

    def __init__(
        self,
        base_path: Union[str, Path],
        store: LocationStore,
        engine: TransferEngine,
        dry_run: bool = False,
        confirm: Optional[ConfirmCallback] = None
    ):
        """
        Initialize the relocator.

        Args:
            base_path: Directory that will hold the relocated folders
            store: Location store to resolve and bind folder paths
            engine: Transfer engine used to move folder contents
            dry_run: If True, resolve and report only; never bind or move
            confirm: Yes/no callback used when a folder is already
                     redirected (default: always skip)
        """
        self.base_path = Path(base_path)
        self.store = store
        self.engine = engine
        self.dry_run = dry_run
        self.confirm = confirm or decline

        # Statistics
        self._stats: Dict[RelocationStatus, int] = {
            status: 0 for status in RelocationStatus
        }

    def destination_for(self, kind: FolderKind) -> str:
        """New location for a folder: base_path/<FolderName>."""
        return str(self.base_path / kind.value)

    def plan_folder(self, kind: FolderKind) -> RelocationPlan:
        """
        Resolve and decide for a single folder without changing anything.

        Args:
            kind: The Known Folder to plan

        Returns:
            RelocationPlan with the chosen action
        """
        identifier = get_identifier(kind)
        new_path = self.destination_for(kind)

        try:
            old_path = self.store.resolve(identifier)
        except NotFoundError as e:
            logger.warning(f"{kind.value}: {e}")
            return RelocationPlan(
                kind=kind,
                identifier=identifier,
                old_path=None,
                new_path=new_path,
                action=PlanAction.SKIP_NOT_FOUND,
                message=str(e)
            )

        old_path = normalize_path(old_path)

        if paths_equal(old_path, new_path):
            return RelocationPlan(
                kind=kind,
                identifier=identifier,
                old_path=old_path,
                new_path=new_path,
                action=PlanAction.SKIP_ALREADY_REDIRECTED,
                message=f"Already redirected to {old_path}"
            )

        if is_nested_path(new_path, old_path):
            return RelocationPlan(
                kind=kind,
                identifier=identifier,
                old_path=old_path,
                new_path=new_path,
                action=PlanAction.INVALID,
                message=f"New location {new_path} is inside the current location {old_path}"
            )

        if self.dry_run:
            return RelocationPlan(
                kind=kind,
                identifier=identifier,
                old_path=old_path,
                new_path=new_path,
                action=PlanAction.DRY_RUN_REPORT,
                message=f"Would bind {identifier} to {new_path} and move contents from {old_path}"
            )

        return RelocationPlan(
            kind=kind,
            identifier=identifier,
            old_path=old_path,
            new_path=new_path,
            action=PlanAction.MOVE,
            message=f"Relocate {old_path} -> {new_path}"
        )

    def relocate_folder(self, kind: FolderKind) -> RelocationResult:
        """
        Relocate a single Known Folder.

        Never raises for per-folder problems; they are returned as
        FAILED or SKIPPED results.

        Args:
            kind: The Known Folder to relocate

        Returns:
            RelocationResult describing the outcome
        """
        try:
            plan = self.plan_folder(kind)
            result = self._run_plan(plan)
        except (LocationStoreError, OSError, ValueError) as e:
            logger.error(f"{kind.value}: relocation failed: {e}")
            result = RelocationResult(
                kind=kind,
                identifier=get_identifier(kind),
                old_path=None,
                new_path=self.destination_for(kind),
                status=RelocationStatus.FAILED,
                message=str(e),
                error=type(e).__name__
            )

        self._stats[result.status] += 1
        return result

    def _run_plan(self, plan: RelocationPlan) -> RelocationResult:
        """Carry out a plan: skip, report, or execute."""
        if plan.action == PlanAction.SKIP_NOT_FOUND:
            return self._result(plan, RelocationStatus.SKIPPED_NOT_FOUND, plan.message)

        if plan.action == PlanAction.INVALID:
            logger.error(f"{plan.kind.value}: {plan.message}")
            return self._result(
                plan, RelocationStatus.FAILED, plan.message,
                error=ConfigurationError.__name__
            )

        if plan.action == PlanAction.SKIP_ALREADY_REDIRECTED:
            if self.dry_run or not self.confirm(
                f"{plan.kind.value} is already at {plan.old_path}. Continue anyway?"
            ):
                logger.info(f"{plan.kind.value}: already redirected, skipping")
                return self._result(
                    plan, RelocationStatus.SKIPPED_ALREADY_REDIRECTED, plan.message
                )
            return self._rebind_in_place(plan)

        if plan.action == PlanAction.DRY_RUN_REPORT:
            logger.info(
                f"[DRY RUN] {plan.kind.value} ({plan.identifier}): "
                f"{plan.old_path} -> {plan.new_path}"
            )
            return self._result(plan, RelocationStatus.DRY_RUN, plan.message)

        return self._execute(plan)

    def _execute(self, plan: RelocationPlan) -> RelocationResult:
        """Destination, then store write, then transfer."""
        logger.info(f"Relocating {plan.kind.value}: {plan.old_path} -> {plan.new_path}")

        error = self._ensure_destination(plan)
        if error is not None:
            return error

        error = self._bind_location(plan)
        if error is not None:
            return error

        return self._transfer_contents(plan)

    def _ensure_destination(self, plan: RelocationPlan) -> Optional[RelocationResult]:
        try:
            os.makedirs(plan.new_path, exist_ok=True)
        except OSError as e:
            logger.error(f"{plan.kind.value}: cannot create {plan.new_path}: {e}")
            return self._result(
                plan, RelocationStatus.FAILED,
                f"Cannot create destination directory: {e}",
                error=type(e).__name__
            )
        return None

    def _bind_location(self, plan: RelocationPlan) -> Optional[RelocationResult]:
        try:
            self.store.bind(plan.identifier, plan.new_path)
        except WriteError as e:
            # Never transfer under a stale pointer
            logger.error(f"{plan.kind.value}: {e}; transfer not attempted")
            return self._result(
                plan, RelocationStatus.FAILED,
                f"{e}; contents left at {plan.old_path}",
                error=WriteError.__name__
            )
        logger.info(f"{plan.kind.value}: bound {plan.identifier} -> {plan.new_path}")
        return None

    def _transfer_contents(self, plan: RelocationPlan) -> RelocationResult:
        try:
            transfer: TransferResult = self.engine.move(plan.old_path, plan.new_path)
        except (OSError, ValueError) as e:
            logger.error(f"{plan.kind.value}: transfer failed after binding: {e}")
            return self._result(
                plan, RelocationStatus.FAILED,
                f"Transfer failed: {e}; location already bound to {plan.new_path}",
                error=type(e).__name__,
                bound=True
            )

        try:
            transfer.raise_for_failures()
        except TransferPartialFailure as e:
            for failure in e.failures:
                logger.error(f"{plan.kind.value}: not moved: {failure.path} ({failure.reason})")
            return self._result(
                plan, RelocationStatus.FAILED, str(e),
                error=TransferPartialFailure.__name__,
                bound=True,
                transfer=transfer
            )

        if transfer.status == TransferStatus.NO_SOURCE:
            message = "Relocated (no files to move)"
        else:
            message = f"Relocated, {transfer.message.lower()}"
        logger.info(f"{plan.kind.value}: {message}")
        return self._result(
            plan, RelocationStatus.MOVED, message, bound=True, transfer=transfer
        )

    def _rebind_in_place(self, plan: RelocationPlan) -> RelocationResult:
        """User chose to continue on an already-redirected folder."""
        error = self._ensure_destination(plan)
        if error is not None:
            return error
        error = self._bind_location(plan)
        if error is not None:
            return error
        return self._result(
            plan, RelocationStatus.MOVED,
            "Location re-bound; contents already in place",
            bound=True
        )

    @staticmethod
    def _result(
        plan: RelocationPlan,
        status: RelocationStatus,
        message: str,
        error: str = "",
        bound: bool = False,
        transfer: Optional[TransferResult] = None
    ) -> RelocationResult:
        return RelocationResult(
            kind=plan.kind,
            identifier=plan.identifier,
            old_path=plan.old_path,
            new_path=plan.new_path,
            status=status,
            message=message,
            error=error,
            bound=bound,
            transfer=transfer
        )

    def relocate_all(
        self,
        kinds: Sequence[FolderKind],
        progress_callback=None
    ) -> RunSummary:
        """
        Relocate every selected folder, one after another.

        Args:
            kinds: Folders to process, in order
            progress_callback: Optional callable(current, total, kind)

        Returns:
            RunSummary with one result per folder and the restart signal
        """
        results: List[RelocationResult] = []
        total = len(kinds)
        mode = "DRY RUN" if self.dry_run else "LIVE"
        logger.info(f"Processing {total} folder(s) into {self.base_path} ({mode})")

        for i, kind in enumerate(kinds):
            if progress_callback:
                progress_callback(i + 1, total, kind)
            results.append(self.relocate_folder(kind))

        restart = not self.dry_run and any(r.bound for r in results)
        logger.info(
            f"Completed: {total} folder(s) processed, "
            f"{sum(1 for r in results if r.status == RelocationStatus.FAILED)} failed"
        )
        return RunSummary(results=results, dry_run=self.dry_run, restart_recommended=restart)

    def get_stats(self) -> Dict[str, int]:
        """
        Get statistics about relocations.

        Returns:
            Dictionary mapping status names to counts
        """
        return {status.value: count for status, count in self._stats.items()}

    def get_summary(self) -> str:
        """
        Get a human-readable summary of relocations.

        Returns:
            Formatted summary string
        """
        stats = self.get_stats()
        total = sum(stats.values())

        lines = [f"Relocation Summary ({total} total):"]

        if self.dry_run:
            lines.append(f"  Would relocate: {stats.get('dry_run', 0)}")
        else:
            lines.append(f"  Relocated: {stats.get('moved', 0)}")

        skipped = (
            stats.get("skipped_not_found", 0) +
            stats.get("skipped_already_redirected", 0)
        )
        if skipped:
            lines.append(f"  Skipped: {skipped}")
            if stats.get("skipped_not_found", 0):
                lines.append(f"    (not in registry: {stats.get('skipped_not_found', 0)})")
            if stats.get("skipped_already_redirected", 0):
                lines.append(
                    f"    (already redirected: {stats.get('skipped_already_redirected', 0)})"
                )

        if stats.get("failed", 0):
            lines.append(f"  Failed: {stats.get('failed', 0)}")

        return "\n".join(lines)

    def reset_stats(self) -> None:
        """Reset statistics for a new batch."""
        self._stats = {status: 0 for status in RelocationStatus}
