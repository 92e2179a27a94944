"""
Transfer engines for moving a Known Folder's contents to its new home.

This module is responsible for:
- Moving a directory tree with copy-then-delete-source semantics
- Preserving file timestamps and attributes
- Retrying each file a bounded number of times with a fixed wait
- Treating a missing or empty source as a no-op (NO_SOURCE)
- Reporting per-file failures without raising for the whole run

Two engines share one contract: RobocopyTransferEngine drives robocopy.exe
on Windows, ShutilTransferEngine is a portable pure-Python equivalent.
"""

import logging
import os
import re
import shutil
import stat
import subprocess
import sys
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from .errors import TransferPartialFailure
from .types import FileFailure, TransferResult, TransferStatus
from .utils import (
    is_nested_path,
    normalize_path,
    paths_equal,
    to_extended_length_path,
)
from .winfs import copy_windows_metadata, is_junction

logger = logging.getLogger(__name__)

# Retry policy: one retry after a short fixed wait
DEFAULT_RETRIES = 1
DEFAULT_RETRY_WAIT = 1.0

# robocopy exit codes of 8 and above mean at least one failure
ROBOCOPY_FAILURE_THRESHOLD = 8

# e.g. "2024/05/01 10:00:00 ERROR 32 (0x00000020) Copying File C:\src\a.txt"
ROBOCOPY_ERROR_LINE = re.compile(
    r"ERROR (\d+) \(0x[0-9A-Fa-f]+\) (.+?) ([A-Za-z]:\\.*|\\\\.*)$"
)

__all__ = [
    "DEFAULT_RETRIES",
    "DEFAULT_RETRY_WAIT",
    "RobocopyTransferEngine",
    "ShutilTransferEngine",
    "TransferEngine",
    "TransferPartialFailure",
    "default_transfer_engine",
]


def _fs_path(path: str) -> str:
    """Path form used for filesystem calls."""
    return to_extended_length_path(path) if sys.platform == "win32" else path


def _has_entries(path: str) -> bool:
    with os.scandir(path) as entries:
        return any(True for _ in entries)


def _count_files(path: str) -> int:
    return sum(len(files) for _, _, files in os.walk(path))


def _join(root: str, rel_path: str) -> str:
    # \\?\ paths must not contain "." components
    return root if rel_path == os.curdir else os.path.join(root, rel_path)


class TransferEngine(ABC):
    """
    Moves a directory tree from an old location to a new one.

    Subclasses implement _transfer(); move() handles the shared checks:
    no-op for a missing/empty source, refusing overlapping paths, and
    creating the destination's parent directory.
    """

    def __init__(
        self,
        retries: int = DEFAULT_RETRIES,
        retry_wait: float = DEFAULT_RETRY_WAIT
    ):
        if retries < 0:
            raise ValueError("retries must be >= 0")
        if retry_wait < 0:
            raise ValueError("retry_wait must be >= 0")
        self.retries = retries
        self.retry_wait = retry_wait

    def move(
        self,
        old_path: Union[str, Path],
        new_path: Union[str, Path]
    ) -> TransferResult:
        """
        Move everything under old_path into new_path.

        Args:
            old_path: Current folder location
            new_path: New folder location (created if missing)

        Returns:
            TransferResult with COMPLETED, NO_SOURCE or PARTIAL status

        Raises:
            ValueError: If the paths are the same or new_path is inside old_path
            NotADirectoryError: If old_path exists but is not a directory
            OSError: If the destination parent cannot be created
        """
        src_str = normalize_path(old_path)
        dest_str = normalize_path(new_path)

        if paths_equal(src_str, dest_str):
            raise ValueError(f"Source and destination are the same: {src_str}")
        if is_nested_path(dest_str, src_str):
            raise ValueError(
                f"Destination {dest_str} is inside source {src_str}"
            )

        src_check = _fs_path(src_str)
        if not os.path.exists(src_check) or (
            os.path.isdir(src_check) and not _has_entries(src_check)
        ):
            logger.info(f"Nothing to transfer from {src_str}")
            return TransferResult(
                source=src_str,
                destination=dest_str,
                status=TransferStatus.NO_SOURCE,
                message="Source folder is missing or empty"
            )
        if not os.path.isdir(src_check):
            raise NotADirectoryError(f"Source is not a directory: {src_str}")

        os.makedirs(_fs_path(str(Path(dest_str).parent)), exist_ok=True)

        logger.info(f"Transferring: {src_str} -> {dest_str}")
        result = self._transfer(src_str, dest_str)

        if result.status == TransferStatus.PARTIAL:
            logger.error(
                f"Transfer incomplete: {len(result.failures)} file(s) left in {src_str}"
            )
        else:
            logger.info(f"Transfer complete: {result.files_moved} file(s) moved")
        return result

    @abstractmethod
    def _transfer(self, source: str, destination: str) -> TransferResult:
        """Move a non-empty source tree. Paths are normalized."""


class ShutilTransferEngine(TransferEngine):
    """
    Portable transfer engine built on shutil.copy2.

    Each file is copied (timestamps and mode bits included) and its source
    deleted only after the copy succeeded. On Windows the creation time and
    the Hidden, System and Archive bits are copied too. NTFS junctions are
    left in place, never followed. With workers > 1 files are copied on a
    thread pool; the result is built after all copies finish.
    """

    def __init__(
        self,
        retries: int = DEFAULT_RETRIES,
        retry_wait: float = DEFAULT_RETRY_WAIT,
        workers: int = 1,
        windows_metadata: Optional[bool] = None
    ):
        super().__init__(retries, retry_wait)
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.workers = workers
        if windows_metadata is None:
            windows_metadata = sys.platform == "win32"
        self.windows_metadata = windows_metadata

    def _transfer(self, source: str, destination: str) -> TransferResult:
        src_root = _fs_path(source)
        dest_root = _fs_path(destination)
        failures: List[FileFailure] = []

        def on_walk_error(error: OSError) -> None:
            logger.warning(f"Cannot read directory {error.filename}: {error}")
            failures.append(FileFailure(str(error.filename), str(error)))

        # Snapshot the tree before touching anything.
        # rel dir -> (atime_ns, mtime_ns), taken before deletions change them
        dirs: Dict[str, Tuple[int, int]] = {}
        files: List[str] = []
        for dirpath, dirnames, filenames in os.walk(src_root, onerror=on_walk_error):
            rel_dir = os.path.relpath(dirpath, src_root)
            dir_stat = os.stat(dirpath)
            dirs[rel_dir] = (dir_stat.st_atime_ns, dir_stat.st_mtime_ns)
            for name in list(dirnames):
                entry = os.path.join(dirpath, name)
                # Compatibility junctions (Documents\My Music, ...) stay behind
                if is_junction(entry):
                    dirnames.remove(name)
                    logger.debug(f"Skipping junction {entry}")
                # Directory symlinks are moved as links, not descended into
                elif os.path.islink(entry):
                    dirnames.remove(name)
                    filenames.append(name)
            for name in filenames:
                files.append(os.path.normpath(os.path.join(rel_dir, name)))

        for rel_dir in dirs:
            try:
                os.makedirs(_join(dest_root, rel_dir), exist_ok=True)
            except OSError as e:
                logger.error(f"Cannot create directory {rel_dir} under {destination}: {e}")

        move_one = partial(self._move_file, src_root, dest_root, source)
        if self.workers > 1 and len(files) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                outcomes = list(pool.map(move_one, files))
        else:
            outcomes = [move_one(rel) for rel in files]

        failures.extend(f for f in outcomes if f is not None)
        moved = len(files) - sum(1 for f in outcomes if f is not None)

        self._finish_directories(src_root, dest_root, dirs)

        if failures:
            return TransferResult(
                source=source,
                destination=destination,
                status=TransferStatus.PARTIAL,
                files_moved=moved,
                failures=failures,
                message=f"{len(failures)} file(s) could not be moved after retries"
            )
        return TransferResult(
            source=source,
            destination=destination,
            status=TransferStatus.COMPLETED,
            files_moved=moved,
            message=f"Moved {moved} file(s)"
        )

    def _move_file(
        self,
        src_root: str,
        dest_root: str,
        display_root: str,
        rel_path: str
    ) -> Optional[FileFailure]:
        """Copy one file then delete its source, retrying on OSError."""
        src = os.path.join(src_root, rel_path)
        dst = os.path.join(dest_root, rel_path)
        attempts = self.retries + 1
        last_error: Optional[OSError] = None

        for attempt in range(1, attempts + 1):
            try:
                shutil.copy2(src, dst, follow_symlinks=False)
                self._copy_metadata(src, dst)
                _remove_file(src)
                logger.debug(f"Moved {rel_path}")
                return None
            except OSError as e:
                last_error = e
                if attempt < attempts:
                    logger.debug(
                        f"Retrying {rel_path} in {self.retry_wait}s "
                        f"(attempt {attempt}/{attempts}): {e}"
                    )
                    time.sleep(self.retry_wait)

        logger.warning(f"Failed to move {rel_path} after {attempts} attempt(s): {last_error}")
        return FileFailure(os.path.join(display_root, rel_path), str(last_error))

    def _copy_metadata(self, src: str, dst: str) -> None:
        """Copy Windows creation time and attribute bits (no-op elsewhere)."""
        if self.windows_metadata and not os.path.islink(src):
            copy_windows_metadata(src, dst)

    def _finish_directories(
        self,
        src_root: str,
        dest_root: str,
        dirs: Dict[str, Tuple[int, int]]
    ) -> None:
        """Restore directory attributes and times, then prune emptied source dirs."""
        # Deepest first so parents are empty by the time we reach them
        ordered = sorted(
            dirs,
            key=lambda rel: 0 if rel == os.curdir else len(Path(rel).parts),
            reverse=True
        )
        for rel_dir in ordered:
            src_dir = _join(src_root, rel_dir)
            dest_dir = _join(dest_root, rel_dir)
            try:
                shutil.copystat(src_dir, dest_dir)
                os.utime(dest_dir, ns=dirs[rel_dir])
                self._copy_metadata(src_dir, dest_dir)
            except OSError as e:
                logger.warning(f"Could not copy directory attributes for {rel_dir}: {e}")
            try:
                os.rmdir(src_dir)
            except OSError as e:
                # Still holds files that failed to move, or is in use
                logger.debug(f"Source directory kept: {src_dir} ({e})")


def _remove_file(path: str) -> None:
    """Delete a file, clearing the read-only attribute if needed."""
    try:
        os.remove(path)
    except PermissionError:
        os.chmod(path, stat.S_IWRITE)
        os.remove(path)


class RobocopyTransferEngine(TransferEngine):
    """
    Transfer engine backed by robocopy.exe /MOVE.

    robocopy copies data, attributes and timestamps (/COPY:DAT, /DCOPY:DAT)
    and retries each file /R times waiting /W seconds. It only deletes
    source files it copied successfully. Junctions are excluded (/XJ) and
    stay in the old folder.
    """

    def __init__(
        self,
        retries: int = DEFAULT_RETRIES,
        retry_wait: float = DEFAULT_RETRY_WAIT,
        executable: str = "robocopy"
    ):
        super().__init__(retries, retry_wait)
        self.executable = executable

    def build_command(self, source: str, destination: str) -> List[str]:
        """Build the robocopy argument list."""
        return [
            self.executable,
            source,
            destination,
            "/E",
            "/MOVE",
            "/COPY:DAT",
            "/DCOPY:DAT",
            "/XJ",
            f"/R:{self.retries}",
            f"/W:{int(round(self.retry_wait))}",
            "/NP",
            "/NFL",
            "/NDL",
            "/NJH",
            "/NJS",
        ]

    def _transfer(self, source: str, destination: str) -> TransferResult:
        total = _count_files(_fs_path(source))
        command = self.build_command(source, destination)
        logger.debug(f"Running: {subprocess.list2cmdline(command)}")

        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                errors="replace"
            )
        except OSError as e:
            logger.error(f"Could not start robocopy: {e}")
            return TransferResult(
                source=source,
                destination=destination,
                status=TransferStatus.PARTIAL,
                failures=[FileFailure(source, f"robocopy could not be started: {e}")],
                message="robocopy could not be started"
            )

        code = completed.returncode
        if code >= ROBOCOPY_FAILURE_THRESHOLD:
            failures = parse_robocopy_errors(completed.stdout)
            if not failures:
                detail = (completed.stderr or completed.stdout or "").strip()
                failures = [FileFailure(source, f"robocopy exit code {code}: {detail}")]
            return TransferResult(
                source=source,
                destination=destination,
                status=TransferStatus.PARTIAL,
                files_moved=max(total - len(failures), 0),
                failures=failures,
                message=f"robocopy reported failures (exit code {code})"
            )

        # /MOVE can leave the emptied root behind
        src_check = _fs_path(source)
        if os.path.isdir(src_check) and not _has_entries(src_check):
            try:
                os.rmdir(src_check)
            except OSError as e:
                logger.debug(f"Source root kept: {source} ({e})")

        return TransferResult(
            source=source,
            destination=destination,
            status=TransferStatus.COMPLETED,
            files_moved=total,
            message=f"Moved {total} file(s) (robocopy exit code {code})"
        )


def parse_robocopy_errors(output: str) -> List[FileFailure]:
    """
    Extract per-file failures from robocopy output.

    Each ERROR line is usually followed by the Windows error text. A file
    retried several times is reported once, with its last reason.
    """
    failures: Dict[str, str] = {}
    lines = output.splitlines()
    for i, line in enumerate(lines):
        match = ROBOCOPY_ERROR_LINE.search(line.strip())
        if not match:
            continue
        code, action, path = match.groups()
        reason = f"{action} failed (error {code})"
        if i + 1 < len(lines):
            follow = lines[i + 1].strip()
            if follow and not follow.startswith("ERROR") and not ROBOCOPY_ERROR_LINE.search(follow):
                reason = f"{reason}: {follow}"
        failures[path.strip()] = reason
    return [FileFailure(path, reason) for path, reason in failures.items()]


def default_transfer_engine(
    retries: int = DEFAULT_RETRIES,
    retry_wait: float = DEFAULT_RETRY_WAIT,
    workers: int = 1
) -> TransferEngine:
    """Use robocopy on Windows when available, otherwise the shutil engine."""
    if sys.platform == "win32" and shutil.which("robocopy"):
        return RobocopyTransferEngine(retries=retries, retry_wait=retry_wait)
    return ShutilTransferEngine(retries=retries, retry_wait=retry_wait, workers=workers)
