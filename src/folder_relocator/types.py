"""
Type definitions and data classes for the folder relocator application.

This module defines:
- FolderKind: Enum of the Known Folders this tool can relocate
- FolderBinding: Data class pairing a FolderKind with its registry identifier
- RelocationPlan / PlanAction: The per-folder decision made before executing
- RelocationResult / RelocationStatus: The per-folder outcome of a run
- TransferResult / TransferStatus: The outcome of moving a folder's contents
- RunSummary: Ordered results of a whole run plus the restart signal
- ReportEntry / ReportStatus: Rows and status values for the CSV report
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .errors import TransferPartialFailure


class FolderKind(Enum):
    """Known Folders that can be relocated (value is the folder name)."""
    DOCUMENTS = "Documents"
    MUSIC = "Music"
    PICTURES = "Pictures"
    DOWNLOADS = "Downloads"
    DESKTOP = "Desktop"
    FAVORITES = "Favorites"
    VIDEOS = "Videos"
    CONTACTS = "Contacts"


@dataclass(frozen=True, slots=True)
class FolderBinding:
    """
    Fixed association between a Known Folder and its location-store key.

    Attributes:
        kind: The Known Folder
        identifier: The value name used in the shell folder registry
                    (a well-known name such as "Personal" or a GUID literal)
    """
    kind: FolderKind
    identifier: str


class PlanAction(Enum):
    """Decision taken for a folder before anything is executed."""
    MOVE = "move"                                    # Bind and transfer
    DRY_RUN_REPORT = "dry_run_report"                # Report only
    SKIP_NOT_FOUND = "skip_not_found"                # Identifier not in store
    SKIP_ALREADY_REDIRECTED = "skip_already_redirected"  # Already at new path
    INVALID = "invalid"                              # New path nested in old path


@dataclass
class RelocationPlan:
    """Planned relocation for a single folder. Never persisted."""
    kind: FolderKind
    identifier: str
    old_path: Optional[str]
    new_path: str
    action: PlanAction
    message: str = ""


class RelocationStatus(Enum):
    """Caller-facing outcome of relocating a single folder."""
    MOVED = "moved"                                  # Bound and transferred
    DRY_RUN = "dry_run"                              # Would relocate (dry run)
    SKIPPED_NOT_FOUND = "skipped_not_found"          # No binding in the store
    SKIPPED_ALREADY_REDIRECTED = "skipped_already_redirected"
    FAILED = "failed"                                # See error / message


class TransferStatus(Enum):
    """Outcome of a transfer engine move."""
    COMPLETED = "completed"    # Every file moved, source removed
    NO_SOURCE = "no_source"    # Source missing or empty, nothing to do
    PARTIAL = "partial"        # Some files failed after retries


@dataclass
class FileFailure:
    """A file that could not be moved."""
    path: str
    reason: str


@dataclass
class TransferResult:
    """Result of moving one folder tree to its new location."""
    source: str
    destination: str
    status: TransferStatus
    files_moved: int = 0
    failures: List[FileFailure] = field(default_factory=list)
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status in (TransferStatus.COMPLETED, TransferStatus.NO_SOURCE)

    def raise_for_failures(self) -> None:
        """Raise TransferPartialFailure if any file failed."""
        if self.status == TransferStatus.PARTIAL:
            raise TransferPartialFailure(self.source, self.failures)


@dataclass
class RelocationResult:
    """Result of relocating one Known Folder."""
    kind: FolderKind
    identifier: str
    old_path: Optional[str]
    new_path: Optional[str]
    status: RelocationStatus
    message: str
    error: str = ""
    bound: bool = False
    transfer: Optional[TransferResult] = None


@dataclass
class RunSummary:
    """
    Ordered outcomes of a relocation run.

    Attributes:
        results: One RelocationResult per selected folder, in selection order
        dry_run: Whether the run was a dry run
        restart_recommended: True when the location store was changed, so any
                             process caching the old locations (Explorer)
                             should be restarted
    """
    results: List[RelocationResult]
    dry_run: bool
    restart_recommended: bool = False

    @property
    def failed(self) -> List[RelocationResult]:
        return [r for r in self.results if r.status == RelocationStatus.FAILED]


class ReportStatus(Enum):
    """Status values for CSV report (human-readable)."""
    MOVED = "MOVED"                            # Relocated successfully
    FOUND_DRYRUN = "FOUND_DRYRUN"              # Would relocate (dry run)
    SKIPPED_NOT_FOUND = "SKIPPED_NOT_FOUND"    # Identifier not in store
    SKIPPED_REDIRECTED = "SKIPPED_REDIRECTED"  # Already at destination
    ERROR = "ERROR"                            # Relocation failed
    FILE_FAILED = "FILE_FAILED"                # Single file left behind

    @classmethod
    def from_relocation_status(cls, status: RelocationStatus):
        """Convert RelocationStatus to ReportStatus."""
        mapping = {
            RelocationStatus.MOVED: cls.MOVED,
            RelocationStatus.DRY_RUN: cls.FOUND_DRYRUN,
            RelocationStatus.SKIPPED_NOT_FOUND: cls.SKIPPED_NOT_FOUND,
            RelocationStatus.SKIPPED_ALREADY_REDIRECTED: cls.SKIPPED_REDIRECTED,
            RelocationStatus.FAILED: cls.ERROR,
        }
        return mapping.get(status, cls.ERROR)


@dataclass
class ReportEntry:
    """Entry for the CSV report."""
    timestamp: str
    folder: str
    identifier: str
    status: str
    old_path: str
    new_path: str
    message: str
