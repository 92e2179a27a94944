"""
Exception types for the folder relocator.

Per-folder errors (NotFoundError, WriteError, TransferPartialFailure) are
recoverable: the relocator records them against the folder and moves on.
ConfigurationError and StoreUnavailableError are fatal and stop the run
before any folder is touched.
"""

from typing import Dict, List, Sequence


class LocationStoreError(Exception):
    """Base class for location store failures."""
    pass


class NotFoundError(LocationStoreError):
    """Raised when an identifier has no binding in the primary store."""

    def __init__(self, identifier: str, store: str = ""):
        self.identifier = identifier
        self.store = store
        where = f" in {store}" if store else ""
        super().__init__(f"No location bound to '{identifier}'{where}")


class WriteError(LocationStoreError):
    """
    Raised when a location could not be written to every store.

    Attributes:
        identifier: The identifier being bound
        written: Names of stores that accepted the new value
        failed: Store name -> error message for stores that did not
    """

    def __init__(
        self,
        identifier: str,
        written: Sequence[str],
        failed: Dict[str, str]
    ):
        self.identifier = identifier
        self.written = list(written)
        self.failed = dict(failed)
        details = "; ".join(f"{name}: {msg}" for name, msg in self.failed.items())
        message = f"Could not bind '{identifier}' ({details})"
        if self.written:
            message += f" [already written: {', '.join(self.written)}]"
        super().__init__(message)


class StoreUnavailableError(LocationStoreError):
    """Raised when the OS location store cannot be used on this platform."""
    pass


class TransferPartialFailure(Exception):
    """Raised when some files could not be moved after retries."""

    def __init__(self, source: str, failures: List):
        self.source = source
        self.failures = list(failures)
        super().__init__(
            f"{len(self.failures)} file(s) could not be moved and remain in {source}"
        )


class ConfigurationError(Exception):
    """Raised for invalid run configuration (fatal for the whole run)."""
    pass
