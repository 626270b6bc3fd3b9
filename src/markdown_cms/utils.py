"""
Utility functions for file system operations and filename sanitization.

This module provides helper functions for:
- Sanitizing user-provided filenames into document ids
- Ensuring directory creation with proper error handling
- Recognizing markdown files in the store directory
"""

from __future__ import annotations

import re
from pathlib import Path

MARKDOWN_EXTENSION = ".md"

# Pattern to match characters that are not permitted in a document id
# Allows: lowercase letters, digits and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-z0-9-]")


def sanitize_document_id(filename: str) -> str:
    """
    Derive a document id from a user-provided filename.

    Every character outside ``[a-z0-9-]`` is replaced by a single hyphen after
    lowercasing. A trailing ``.md`` extension is removed first so that
    ``"post.md"`` and ``"post"`` name the same document.

    Args:
        filename: The filename as typed by the caller

    Returns:
        The sanitized id, possibly empty if the input was empty

    Example:
        >>> sanitize_document_id("My Post!")
        "my-post-"
        >>> sanitize_document_id("Release-Notes.md")
        "release-notes"
    """
    stem = filename.strip()
    if stem.lower().endswith(MARKDOWN_EXTENSION):
        stem = stem[: -len(MARKDOWN_EXTENSION)]
    return SANITIZE_PATTERN.sub("-", stem.lower())


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    This is a safe idempotent operation that won't fail if the directory
    already exists.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining

    Raises:
        OSError: If directory creation fails due to permissions or other I/O errors
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def is_markdown_file(name: str) -> bool:
    """
    Check whether a bare file name belongs in the document store.

    Dot-files are excluded even when they carry the markdown extension.
    """
    return name.endswith(MARKDOWN_EXTENSION) and not name.startswith(".")


def document_id_from_name(name: str) -> str:
    """Strip the markdown extension from a file name."""
    return name[: -len(MARKDOWN_EXTENSION)] if name.endswith(MARKDOWN_EXTENSION) else name
