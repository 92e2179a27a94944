"""
Folder registry: the fixed table of relocatable Known Folders.

Each Known Folder is keyed in the shell folder registry by a value name.
Most are legacy well-known names ("Personal" is Documents, "My Video" is
Videos); Downloads and Contacts only exist as GUID-named values. These
strings are what Windows reads, so they must not be changed.
"""

from typing import Dict, List, Optional

from .types import FolderBinding, FolderKind

FOLDER_BINDINGS = (
    FolderBinding(FolderKind.DOCUMENTS, "Personal"),
    FolderBinding(FolderKind.MUSIC, "My Music"),
    FolderBinding(FolderKind.PICTURES, "My Pictures"),
    FolderBinding(FolderKind.DOWNLOADS, "{374DE290-123F-4565-9164-39C4925E467B}"),
    FolderBinding(FolderKind.DESKTOP, "Desktop"),
    FolderBinding(FolderKind.FAVORITES, "Favorites"),
    FolderBinding(FolderKind.VIDEOS, "My Video"),
    FolderBinding(FolderKind.CONTACTS, "{56784854-C6CB-462B-8169-88E350ACB882}"),
)

_IDENTIFIERS: Dict[FolderKind, str] = {b.kind: b.identifier for b in FOLDER_BINDINGS}

# Selection keyword for every folder
ALL_KEYWORD = "all"


def get_identifier(kind: FolderKind) -> str:
    """Return the location-store identifier for a Known Folder."""
    return _IDENTIFIERS[kind]


def list_bindings() -> List[FolderBinding]:
    """Return all bindings in menu order."""
    return list(FOLDER_BINDINGS)


def _lookup_token(token: str) -> FolderKind:
    """Resolve one selection token (1-based index or folder name)."""
    if token.isdigit():
        index = int(token)
        if not 1 <= index <= len(FOLDER_BINDINGS):
            raise ValueError(
                f"Folder number {index} out of range (1-{len(FOLDER_BINDINGS)})"
            )
        return FOLDER_BINDINGS[index - 1].kind

    wanted = token.casefold()
    for binding in FOLDER_BINDINGS:
        if binding.kind.value.casefold() == wanted:
            return binding.kind
    raise ValueError(f"Unknown folder: '{token}'")


def parse_selection(text: Optional[str]) -> List[FolderKind]:
    """
    Parse a folder selection.

    Accepts a comma-separated list of 1-based menu numbers and/or folder
    names, e.g. "1,4" or "documents, Downloads". Empty input or "all"
    selects every folder. Duplicates are dropped, input order is kept.

    Args:
        text: The raw selection string (may be None)

    Returns:
        Selected FolderKinds in the order given

    Raises:
        ValueError: If a token is not a valid number or folder name
    """
    if text is None or not text.strip() or text.strip().casefold() == ALL_KEYWORD:
        return [binding.kind for binding in FOLDER_BINDINGS]

    selected: List[FolderKind] = []
    for raw in text.split(","):
        token = raw.strip()
        if not token:
            continue
        kind = _lookup_token(token)
        if kind not in selected:
            selected.append(kind)

    if not selected:
        raise ValueError(f"No folders selected from '{text}'")
    return selected
