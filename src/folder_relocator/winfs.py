"""
Windows-only file metadata helpers.

shutil.copy2 keeps the read-only bit and access/modify times, but not the
Hidden, System or Archive attributes, and not the creation time. Known
Folders rely on a Hidden+System desktop.ini and a ReadOnly folder root for
their shell customisation, so the portable transfer engine copies these
through kernel32 after each file and directory.

Also detects NTFS junctions, which os.path.islink does not report.
"""

import ctypes
import logging
import os
import stat
from typing import Union

logger = logging.getLogger(__name__)

# kernel32 only exists on Windows
try:
    from ctypes import wintypes
    kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
    HAS_WINAPI = True
except (ImportError, AttributeError, OSError):
    wintypes = None  # type: ignore
    kernel32 = None
    HAS_WINAPI = False

FILE_ATTRIBUTE_READONLY = 0x0001
FILE_ATTRIBUTE_HIDDEN = 0x0002
FILE_ATTRIBUTE_SYSTEM = 0x0004
FILE_ATTRIBUTE_ARCHIVE = 0x0020
FILE_ATTRIBUTE_NOT_CONTENT_INDEXED = 0x2000
FILE_ATTRIBUTE_REPARSE_POINT = 0x0400

# Attributes SetFileAttributesW accepts; the rest are set by the filesystem
COPYABLE_ATTRIBUTES = (
    FILE_ATTRIBUTE_READONLY
    | FILE_ATTRIBUTE_HIDDEN
    | FILE_ATTRIBUTE_SYSTEM
    | FILE_ATTRIBUTE_ARCHIVE
    | FILE_ATTRIBUTE_NOT_CONTENT_INDEXED
)

FILE_WRITE_ATTRIBUTES = 0x0100
FILE_SHARE_ALL = 0x0007
OPEN_EXISTING = 3
FILE_FLAG_BACKUP_SEMANTICS = 0x02000000  # needed to open directories
FILE_FLAG_OPEN_REPARSE_POINT = 0x00200000

# 100ns intervals between 1601-01-01 and 1970-01-01
EPOCH_AS_FILETIME = 116444736000000000


if HAS_WINAPI:
    class FILETIME(ctypes.Structure):
        _fields_ = [
            ("dwLowDateTime", wintypes.DWORD),
            ("dwHighDateTime", wintypes.DWORD),
        ]

    kernel32.CreateFileW.argtypes = [
        wintypes.LPCWSTR, wintypes.DWORD, wintypes.DWORD, wintypes.LPVOID,
        wintypes.DWORD, wintypes.DWORD, wintypes.HANDLE,
    ]
    kernel32.CreateFileW.restype = wintypes.HANDLE
    kernel32.SetFileTime.argtypes = [
        wintypes.HANDLE,
        ctypes.POINTER(FILETIME),
        ctypes.POINTER(FILETIME),
        ctypes.POINTER(FILETIME),
    ]
    kernel32.SetFileTime.restype = wintypes.BOOL
    kernel32.CloseHandle.argtypes = [wintypes.HANDLE]
    kernel32.CloseHandle.restype = wintypes.BOOL
    kernel32.SetFileAttributesW.argtypes = [wintypes.LPCWSTR, wintypes.DWORD]
    kernel32.SetFileAttributesW.restype = wintypes.BOOL

    INVALID_HANDLE_VALUE = wintypes.HANDLE(-1).value


def is_junction(path: Union[str, os.PathLike]) -> bool:
    """True if path is an NTFS junction (or other directory reparse point that is not a symlink)."""
    if hasattr(os.path, "isjunction"):
        return os.path.isjunction(path)
    try:
        st = os.lstat(path)
    except OSError:
        return False
    attributes = getattr(st, "st_file_attributes", 0)
    return (
        stat.S_ISDIR(st.st_mode)
        and bool(attributes & FILE_ATTRIBUTE_REPARSE_POINT)
    )


def set_file_attributes(path: str, attributes: int) -> None:
    """Set the Windows attribute bits on path."""
    if not kernel32.SetFileAttributesW(path, attributes):
        raise ctypes.WinError(ctypes.get_last_error())


def set_creation_time(path: str, creation_ns: int) -> None:
    """Set the creation time of a file or directory (nanoseconds since the epoch)."""
    value = creation_ns // 100 + EPOCH_AS_FILETIME
    filetime = FILETIME(value & 0xFFFFFFFF, (value >> 32) & 0xFFFFFFFF)

    handle = kernel32.CreateFileW(
        path,
        FILE_WRITE_ATTRIBUTES,
        FILE_SHARE_ALL,
        None,
        OPEN_EXISTING,
        FILE_FLAG_BACKUP_SEMANTICS | FILE_FLAG_OPEN_REPARSE_POINT,
        None
    )
    if handle == INVALID_HANDLE_VALUE:
        raise ctypes.WinError(ctypes.get_last_error())
    try:
        if not kernel32.SetFileTime(handle, ctypes.byref(filetime), None, None):
            raise ctypes.WinError(ctypes.get_last_error())
    finally:
        kernel32.CloseHandle(handle)


def copy_windows_metadata(src: str, dst: str) -> None:
    """
    Copy creation time and attribute bits from src to dst.

    The creation time is set before the attribute bits, while dst is not
    yet ReadOnly.

    Raises:
        OSError: If the Windows API is unavailable or a call fails
    """
    if not HAS_WINAPI:
        raise OSError("Windows file APIs are not available on this platform")

    st = os.stat(src, follow_symlinks=False)
    # st_ctime is the creation time on Windows
    creation_ns = getattr(st, "st_birthtime_ns", st.st_ctime_ns)
    set_creation_time(dst, creation_ns)
    set_file_attributes(dst, st.st_file_attributes & COPYABLE_ATTRIBUTES)
    logger.debug(f"Copied attributes 0x{st.st_file_attributes:04x} to {dst}")
