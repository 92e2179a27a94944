"""
Location stores for reading and rebinding Known Folder paths.

This module is responsible for:
- Resolving the current path bound to a folder identifier
- Writing a new path to every store that must stay consistent
- Reporting partial writes across stores as WriteError (no rollback)

On Windows the canonical store is the "User Shell Folders" registry key;
the legacy "Shell Folders" key is still read by older software and is
written alongside it.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import (
    LocationStoreError,
    NotFoundError,
    StoreUnavailableError,
    WriteError,
)

logger = logging.getLogger(__name__)

# winreg only exists on Windows
try:
    import winreg
    HAS_WINREG = True
except ImportError:
    winreg = None  # type: ignore
    HAS_WINREG = False


EXPLORER_KEY = r"Software\Microsoft\Windows\CurrentVersion\Explorer"
USER_SHELL_FOLDERS_KEY = EXPLORER_KEY + r"\User Shell Folders"
SHELL_FOLDERS_KEY = EXPLORER_KEY + r"\Shell Folders"

PRIMARY_STORE = "User Shell Folders"
LEGACY_STORE = "Shell Folders"


class LocationStore(ABC):
    """
    Read/write access to the persistent folder-location store(s).

    resolve() consults the primary store only. bind() must update every
    store in one call and raise WriteError if any of them failed.
    """

    @abstractmethod
    def resolve(self, identifier: str) -> str:
        """
        Return the current path bound to identifier.

        Raises:
            NotFoundError: If the identifier is absent from the primary store
        """

    @abstractmethod
    def bind(self, identifier: str, new_path: str) -> None:
        """
        Bind identifier to new_path in every store.

        Raises:
            WriteError: If any store could not be written
        """


class RegistryLocationStore(LocationStore):
    """Windows shell folder registry (HKEY_CURRENT_USER)."""

    def __init__(self, include_legacy: bool = True):
        """
        Args:
            include_legacy: Also write the legacy "Shell Folders" key
        """
        if not HAS_WINREG:
            raise StoreUnavailableError(
                "The Windows registry is not available on this platform"
            )
        self._stores: List[Tuple[str, str, int]] = [
            (PRIMARY_STORE, USER_SHELL_FOLDERS_KEY, winreg.REG_EXPAND_SZ),
        ]
        if include_legacy:
            self._stores.append((LEGACY_STORE, SHELL_FOLDERS_KEY, winreg.REG_SZ))

    def resolve(self, identifier: str) -> str:
        try:
            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, USER_SHELL_FOLDERS_KEY) as key:
                value, value_type = winreg.QueryValueEx(key, identifier)
        except FileNotFoundError:
            raise NotFoundError(identifier, PRIMARY_STORE)
        except OSError as e:
            raise LocationStoreError(
                f"Cannot read '{identifier}' from {PRIMARY_STORE}: {e}"
            ) from e

        if value_type == winreg.REG_EXPAND_SZ:
            value = winreg.ExpandEnvironmentStrings(value)
        logger.debug(f"Resolved {identifier} -> {value}")
        return value

    def bind(self, identifier: str, new_path: str) -> None:
        written: List[str] = []
        failed: Dict[str, str] = {}

        for name, key_path, value_type in self._stores:
            try:
                with winreg.CreateKeyEx(
                    winreg.HKEY_CURRENT_USER, key_path, 0, winreg.KEY_SET_VALUE
                ) as key:
                    winreg.SetValueEx(key, identifier, 0, value_type, new_path)
                written.append(name)
                logger.debug(f"Wrote {identifier} = {new_path} to {name}")
            except OSError as e:
                logger.error(f"Registry write failed for {identifier} in {name}: {e}")
                failed[name] = str(e)

        if failed:
            raise WriteError(identifier, written, failed)


class MemoryLocationStore(LocationStore):
    """
    In-memory location store with the same contract as the registry.

    Holds one dict per named store; the first name is the primary store.
    Individual stores can be made to fail on write to exercise partial
    write handling. Every successful write is appended to `writes`.
    """

    def __init__(
        self,
        locations: Optional[Mapping[str, str]] = None,
        stores: Iterable[str] = (PRIMARY_STORE, LEGACY_STORE),
        fail_writes: Iterable[str] = ()
    ):
        names = list(stores)
        if not names:
            raise ValueError("At least one store name is required")
        self.primary = names[0]
        self.stores: Dict[str, Dict[str, str]] = {
            name: dict(locations or {}) for name in names
        }
        self.fail_writes = set(fail_writes)
        self.writes: List[Tuple[str, str, str]] = []

    def resolve(self, identifier: str) -> str:
        try:
            return self.stores[self.primary][identifier]
        except KeyError:
            raise NotFoundError(identifier, self.primary)

    def bind(self, identifier: str, new_path: str) -> None:
        written: List[str] = []
        failed: Dict[str, str] = {}

        for name, values in self.stores.items():
            if name in self.fail_writes:
                failed[name] = "Access is denied"
                continue
            values[identifier] = new_path
            written.append(name)
            self.writes.append((name, identifier, new_path))

        if failed:
            raise WriteError(identifier, written, failed)

    def snapshot(self) -> Dict[str, Dict[str, str]]:
        """Return a deep copy of every store's contents."""
        return {name: dict(values) for name, values in self.stores.items()}
