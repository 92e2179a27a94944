"""
Path helpers shared by the store, transfer engine and relocator.

Windows paths are compared case-insensitively, and the \\\\?\\ prefix is
used for filesystem calls so that deep trees beyond MAX_PATH still work.
"""

import os
import re
import sys
from pathlib import Path
from typing import List, Optional, Union

EXTENDED_PREFIX = "\\\\?\\"
EXTENDED_UNC_PREFIX = "\\\\?\\UNC\\"

_SEPARATORS = re.compile(r"[\\/]+")

# Windows volumes are case-insensitive; POSIX volumes are assumed case-sensitive
IGNORE_CASE = os.path.normcase("A") == os.path.normcase("a")


def normalize_path(path: Union[str, Path]) -> str:
    """
    Normalize a path for display and comparison.

    Collapses redundant separators and up-level references and strips any
    trailing separator. Relative paths stay relative.
    """
    path_str = from_extended_length_path(str(path))
    if not path_str:
        return path_str
    normalized = os.path.normpath(path_str)
    if sys.platform == "win32" and os.path.isabs(normalized):
        normalized = os.path.abspath(normalized)
    return normalized


def to_extended_length_path(path: Union[str, Path]) -> str:
    """
    Convert a path to Windows extended-length form (\\\\?\\C:\\...).

    Returns the path unchanged on other platforms or if already prefixed.
    """
    path_str = str(path)
    if sys.platform != "win32" or path_str.startswith(EXTENDED_PREFIX):
        return path_str

    absolute = os.path.abspath(path_str)
    if absolute.startswith("\\\\"):
        # UNC: \\server\share -> \\?\UNC\server\share
        return EXTENDED_UNC_PREFIX + absolute[2:]
    return EXTENDED_PREFIX + absolute


def from_extended_length_path(path: Union[str, Path]) -> str:
    """Strip the extended-length prefix added by to_extended_length_path."""
    path_str = str(path)
    if path_str.startswith(EXTENDED_UNC_PREFIX):
        return "\\\\" + path_str[len(EXTENDED_UNC_PREFIX):]
    if path_str.startswith(EXTENDED_PREFIX):
        return path_str[len(EXTENDED_PREFIX):]
    return path_str


def split_path(path: Union[str, Path]) -> List[str]:
    """Split a path on both separator styles, dropping empty parts."""
    return [part for part in _SEPARATORS.split(normalize_path(path)) if part]


def _comparable_parts(path: Union[str, Path], ignore_case: Optional[bool]) -> List[str]:
    if ignore_case is None:
        ignore_case = IGNORE_CASE
    parts = split_path(path)
    return [p.casefold() for p in parts] if ignore_case else parts


def paths_equal(
    first: Union[str, Path],
    second: Union[str, Path],
    ignore_case: Optional[bool] = None
) -> bool:
    """
    Compare two paths part by part.

    On Windows the comparison ignores case, so D:\\X\\documents and
    D:\\X\\Documents are the same folder. Elsewhere case matters unless
    ignore_case is given.
    """
    return _comparable_parts(first, ignore_case) == _comparable_parts(second, ignore_case)


def is_nested_path(
    child: Union[str, Path],
    parent: Union[str, Path],
    ignore_case: Optional[bool] = None
) -> bool:
    """Return True if child is strictly inside parent (case rules as paths_equal)."""
    child_parts = _comparable_parts(child, ignore_case)
    parent_parts = _comparable_parts(parent, ignore_case)
    if len(child_parts) <= len(parent_parts):
        return False
    return child_parts[:len(parent_parts)] == parent_parts
