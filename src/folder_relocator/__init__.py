"""
Folder Relocator - Windows Known Folder Relocation Utility

A Windows-focused CLI tool for moving user-profile special folders
(Documents, Downloads, Pictures, ...) to a new base directory.

This package provides functionality to:
- Map the fixed set of Known Folders to their registry identifiers
- Resolve and rebind folder locations in the user's shell folder registry
- Move existing folder contents while preserving timestamps and attributes
- Preview every change with a dry run before touching anything
- Generate detailed CSV reports of each folder's outcome
"""

# Product identity constants
PRODUCT_NAME = "Folder Relocator"
PRODUCT_VERSION = "1.0.0"
PRODUCT_DESCRIPTION = "Windows Known Folder Relocation Utility"

__version__ = PRODUCT_VERSION
__author__ = "Folder Relocator Team"
