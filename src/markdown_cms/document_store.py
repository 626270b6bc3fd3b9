"""
Markdown document store backed by a flat directory of ``*.md`` files.

The filesystem is the single source of truth: every read re-scans the
directory and every write replaces a whole file. The store keeps no copy of
any document between calls.

Concurrent updates to the same document are not serialized; the last writer
wins.
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .errors import DocumentConflictError, DocumentNotFoundError, StoreIOError, ValidationError
from .frontmatter import RESERVED_KEYS, FrontMatterError, parse_document, render_document
from .utils import MARKDOWN_EXTENSION, document_id_from_name, ensure_directory, is_markdown_file, sanitize_document_id

logger = logging.getLogger(__name__)


@dataclass
class MarkdownDocument:
    """
    A markdown file with its parsed front matter.

    Attributes:
        id: Filename without extension; also used as the slug
        frontmatter: Front-matter fields in file order
        content: Markdown body following the front-matter block
        path: Location of the backing file
    """

    id: str
    content: str
    path: Path
    frontmatter: Dict[str, Any] = field(default_factory=dict)

    @property
    def slug(self) -> str:
        return self.id

    def to_payload(self) -> Dict[str, Any]:
        """
        Flatten into the API document shape ``{id, slug, ...frontmatter, content}``.

        Front-matter keys that collide with ``id``, ``slug`` or ``content`` are
        ignored so the filesystem-derived identity always wins.
        """
        payload: Dict[str, Any] = {"id": self.id, "slug": self.slug}
        payload.update((key, value) for key, value in self.frontmatter.items() if key not in RESERVED_KEYS)
        payload["content"] = self.content
        return payload


def _serialize(frontmatter: Optional[Mapping[str, Any]], content: str) -> bytes:
    """Render and encode a document, rejecting anything that would not read back."""
    text = render_document(frontmatter or {}, content)
    try:
        data = text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ValidationError("Content and front matter must be valid UTF-8 text") from exc
    try:
        parse_document(text)
    except FrontMatterError as exc:
        logger.error("rendered front matter does not parse back: %s", exc)
        raise ValidationError("Front matter cannot be stored") from exc
    return data


class DocumentStore:
    """
    Read and write operations over the markdown directory.

    Writes made here are picked up by the change watcher like any other
    filesystem change; the store does not notify anyone itself.

    Attributes:
        root: Directory holding the markdown files
    """

    def __init__(self, root: Path) -> None:
        self.root = ensure_directory(root)

    def list_documents(self) -> List[MarkdownDocument]:
        """
        Parse every markdown file in the store, ordered by file name.

        Returns:
            One document per ``*.md`` file, dot-files excluded

        Raises:
            StoreIOError: If the directory or any file cannot be read or parsed
        """
        try:
            names = sorted(entry.name for entry in self.root.iterdir() if entry.is_file() and is_markdown_file(entry.name))
        except OSError as exc:
            logger.error("list: failed to read markdown directory %s: %s", self.root, exc)
            raise StoreIOError("Failed to read markdown files") from exc

        documents = []
        for name in names:
            try:
                documents.append(self._read(self.root / name))
            except (OSError, FrontMatterError) as exc:
                logger.error("list: failed to read %s: %s", name, exc)
                raise StoreIOError("Failed to read markdown files") from exc
        return documents

    def get_document(self, document_id: str) -> MarkdownDocument:
        """
        Read a single document by id.

        Raises:
            DocumentNotFoundError: If no ``{id}.md`` file exists
            StoreIOError: If the file exists but cannot be read or parsed
        """
        path = self._path_for(document_id)
        try:
            return self._read(path)
        except FileNotFoundError as exc:
            raise DocumentNotFoundError("Markdown file not found") from exc
        except (OSError, FrontMatterError) as exc:
            logger.error("get: failed to read %s: %s", path.name, exc)
            raise StoreIOError("Failed to read markdown file") from exc

    def create_document(
        self,
        filename: Optional[str],
        content: Optional[str],
        frontmatter: Optional[Mapping[str, Any]] = None,
    ) -> MarkdownDocument:
        """
        Write a new document.

        The id is derived from ``filename`` by ``sanitize_document_id``. The
        front matter is serialized before anything touches the disk, so a
        rejected value leaves the store unchanged.

        Args:
            filename: Requested filename, sanitized to ``[a-z0-9-]``
            content: Markdown body
            frontmatter: Scalar front-matter fields

        Returns:
            The document as read back from disk

        Raises:
            ValidationError: If filename or content is missing, the filename
                sanitizes to nothing, a front-matter value is not a scalar, or
                the text cannot be encoded as UTF-8
            DocumentConflictError: If a file with the sanitized id already exists
            StoreIOError: If the file cannot be written
        """
        if not filename or content is None:
            raise ValidationError("Filename and content are required")

        document_id = sanitize_document_id(filename)
        if not document_id:
            raise ValidationError("Filename must contain at least one usable character")

        data = _serialize(frontmatter, content)
        path = self._path_for(document_id)
        if path.exists():
            raise DocumentConflictError("File already exists")

        try:
            with path.open("xb") as handle:
                handle.write(data)
        except FileExistsError as exc:
            raise DocumentConflictError("File already exists") from exc
        except OSError as exc:
            # Mode "x" means any file now at this path is the partial one written here
            with contextlib.suppress(OSError):
                path.unlink()
            logger.error("create: failed to write %s: %s", path.name, exc)
            raise StoreIOError("Failed to create markdown file") from exc

        logger.info("create: wrote %s", path.name)
        return self._reload(path, "create")

    def update_document(
        self,
        document_id: str,
        content: Optional[str],
        frontmatter: Optional[Mapping[str, Any]] = None,
    ) -> MarkdownDocument:
        """
        Replace an existing document.

        There is no merge: front-matter fields absent from ``frontmatter`` are
        dropped from the file.

        Raises:
            ValidationError: If content is missing, a front-matter value is not a
                scalar, or the text cannot be encoded as UTF-8
            DocumentNotFoundError: If the document does not exist
            StoreIOError: If the file cannot be written
        """
        if content is None:
            raise ValidationError("Content is required")

        path = self._path_for(document_id)
        if not path.is_file():
            raise DocumentNotFoundError("Markdown file not found")

        data = _serialize(frontmatter, content)
        try:
            self._replace(path, data)
        except OSError as exc:
            logger.error("update: failed to write %s: %s", path.name, exc)
            raise StoreIOError("Failed to update markdown file") from exc

        logger.info("update: wrote %s", path.name)
        return self._reload(path, "update")

    def _path_for(self, document_id: str) -> Path:
        # ids never contain separators, so anything else cannot name a store file
        if not document_id or document_id.startswith(".") or any(sep in document_id for sep in ("/", "\\", "\x00")):
            raise DocumentNotFoundError("Markdown file not found")
        return self.root / f"{document_id}{MARKDOWN_EXTENSION}"

    def _replace(self, path: Path, data: bytes) -> None:
        # Dot-prefixed temp file in the same directory; the watcher ignores it
        fd, temp_name = tempfile.mkstemp(dir=self.root, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(temp_name, path)
        except OSError:
            Path(temp_name).unlink(missing_ok=True)
            raise

    def _read(self, path: Path) -> MarkdownDocument:
        with path.open("r", encoding="utf-8", newline="") as handle:
            text = handle.read()
        frontmatter, body = parse_document(text)
        return MarkdownDocument(
            id=document_id_from_name(path.name),
            content=body,
            path=path,
            frontmatter=frontmatter,
        )

    def _reload(self, path: Path, operation: str) -> MarkdownDocument:
        try:
            return self._read(path)
        except (OSError, FrontMatterError) as exc:
            logger.error("%s: failed to read back %s: %s", operation, path.name, exc)
            raise StoreIOError(f"Failed to {operation} markdown file") from exc
