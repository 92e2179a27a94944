"""
CSV report generator for documenting relocation runs.

This module is responsible for:
- Creating a CSV audit trail of every folder's outcome
- Recording the run parameters for traceability
- Listing each file left behind by a partial transfer, so a corrective
  re-run can be planned
- Generating summary statistics
"""

import csv
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Optional, TextIO, Union

from .types import RelocationResult, ReportEntry, ReportStatus

logger = logging.getLogger(__name__)

# CSV column headers in order
REPORT_COLUMNS = [
    "timestamp",
    "folder",
    "identifier",
    "status",
    "old_path",
    "new_path",
    "message",
]


class ReportWriter:
    """
    Streaming CSV report writer for relocation results.

    Rows are flushed as they are written so the report survives an
    interrupted run.
    """

    def __init__(
        self,
        report_path: Union[str, Path],
        include_header: bool = True
    ):
        """
        Initialize the report writer.

        Args:
            report_path: Path where the CSV report will be written
            include_header: Whether to write header row (default: True)
        """
        self.report_path = Path(report_path)
        self.include_header = include_header

        self._file: Optional[TextIO] = None
        self._writer = None
        self._row_count = 0
        self._stats: Dict[str, int] = {}

    def __enter__(self):
        """Context manager entry - opens the file."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - closes the file."""
        self.close()
        return False

    def open(self) -> None:
        """Open the report file for writing."""
        if self._file is not None:
            return  # Already open

        self.report_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"Opening report file: {self.report_path}")
        self._file = open(self.report_path, "w", newline="", encoding="utf-8")
        self._writer = csv.writer(self._file, quoting=csv.QUOTE_MINIMAL)

        if self.include_header:
            self._writer.writerow(REPORT_COLUMNS)

    def close(self) -> None:
        """Close the report file."""
        if self._file is not None:
            self._file.close()
            self._file = None
            self._writer = None
            logger.info(
                f"Report closed: {self._row_count} rows written to {self.report_path}"
            )

    def _ensure_open(self) -> None:
        if self._file is None:
            self.open()

    @staticmethod
    def _get_timestamp() -> str:
        return datetime.now().strftime("%Y-%m-%d %H:%M:%S")

    def write_parameters(self, params: Dict[str, str]) -> None:
        """
        Write run parameters as PARAMETER rows at the start of the report.

        Args:
            params: Dictionary of parameter names to values
        """
        self._ensure_open()
        timestamp = self._get_timestamp()

        for key, value in params.items():
            if value:
                self._writer.writerow([timestamp, "", "", "PARAMETER", "", "", f"{key}={value}"])
                self._row_count += 1

        self._writer.writerow([timestamp, "", "", "PARAMETER", "", "", "--- END PARAMETERS ---"])
        self._row_count += 1
        self._file.flush()

    def write_entry(self, entry: ReportEntry) -> None:
        """
        Write a single report entry to the CSV.

        Args:
            entry: The ReportEntry to write
        """
        self._ensure_open()

        self._writer.writerow([
            entry.timestamp,
            entry.folder,
            entry.identifier,
            entry.status,
            entry.old_path,
            entry.new_path,
            entry.message,
        ])
        self._row_count += 1
        self._stats[entry.status] = self._stats.get(entry.status, 0) + 1
        self._file.flush()

    def write_result(
        self,
        result: RelocationResult,
        timestamp: Optional[str] = None
    ) -> None:
        """
        Write a RelocationResult, followed by one row per failed file.

        Args:
            result: The RelocationResult to record
            timestamp: Optional timestamp (defaults to current time)
        """
        timestamp = timestamp or self._get_timestamp()
        message = result.message
        if result.error:
            message = f"{result.error}: {message}"

        self.write_entry(ReportEntry(
            timestamp=timestamp,
            folder=result.kind.value,
            identifier=result.identifier,
            status=ReportStatus.from_relocation_status(result.status).value,
            old_path=result.old_path or "",
            new_path=result.new_path or "",
            message=message,
        ))

        if result.transfer is not None:
            for failure in result.transfer.failures:
                self.write_entry(ReportEntry(
                    timestamp=timestamp,
                    folder=result.kind.value,
                    identifier=result.identifier,
                    status=ReportStatus.FILE_FAILED.value,
                    old_path=failure.path,
                    new_path=result.new_path or "",
                    message=failure.reason,
                ))

    def write_results(self, results: Iterable[RelocationResult]) -> None:
        """Write several results with a shared timestamp."""
        timestamp = self._get_timestamp()
        for result in results:
            self.write_result(result, timestamp)

    def get_stats(self) -> Dict[str, int]:
        """Get statistics about written entries (status -> count)."""
        return dict(self._stats)

    def get_row_count(self) -> int:
        """Get total number of rows written."""
        return self._row_count

    def get_summary(self) -> str:
        """
        Get a human-readable summary of the report.

        Returns:
            Formatted summary string
        """
        lines = [f"Report Summary ({self._row_count} total entries):"]

        labels = [
            (ReportStatus.MOVED, "Relocated"),
            (ReportStatus.FOUND_DRYRUN, "Would relocate (dry run)"),
            (ReportStatus.SKIPPED_REDIRECTED, "Already redirected"),
            (ReportStatus.SKIPPED_NOT_FOUND, "Not in registry"),
            (ReportStatus.ERROR, "Errors"),
            (ReportStatus.FILE_FAILED, "Files left behind"),
        ]
        for status, label in labels:
            count = self._stats.get(status.value, 0)
            if count:
                lines.append(f"  {label}: {count}")

        return "\n".join(lines)
