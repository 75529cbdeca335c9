"""
File storage for uploaded PDF textbooks.
Books live as plain files in one directory; the filename is the book id.
"""
from __future__ import annotations

import re
from pathlib import Path

from .observability import get_logger
from .pdf_text import BookNotFoundError

logger = get_logger(__name__)

_UNSAFE_CHARS_RE = re.compile(r"[^a-z0-9.\-_]+", flags=re.IGNORECASE)


class InvalidBookError(ValueError):
    pass


def sanitize_filename(name: str) -> str:
    """Drops directory parts and replaces runs of unsafe characters with "_"."""
    base = Path(str(name or "").replace("\\", "/")).name
    safe = _UNSAFE_CHARS_RE.sub("_", base).lstrip(".")
    return safe


def book_title(filename: str) -> str:
    return re.sub(r"\.pdf$", "", filename, flags=re.IGNORECASE).replace("-", " ").replace("_", " ")


class BookStore:
    def __init__(self, root: str | Path):
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def ensure_ready(self):
        self._root.mkdir(parents=True, exist_ok=True)

    def list_books(self) -> list[dict]:
        if not self._root.is_dir():
            return []
        files = sorted(
            p.name for p in self._root.iterdir()
            if p.is_file() and p.suffix.lower() == ".pdf"
        )
        return [{"id": name, "filename": name, "title": book_title(name)} for name in files]

    def resolve(self, filename: str) -> Path:
        """Returns the stored path for a book id; only files directly inside the store."""
        name = str(filename or "").strip()
        if not name or name != Path(name).name or name in {".", ".."}:
            raise BookNotFoundError(name)
        path = self._root / name
        if not path.is_file():
            raise BookNotFoundError(name)
        return path

    def save(self, original_name: str, data: bytes) -> str:
        safe_name = sanitize_filename(original_name)
        if not safe_name.lower().endswith(".pdf"):
            raise InvalidBookError("Only PDF files can be uploaded.")
        if not data:
            raise InvalidBookError("The uploaded file is empty.")
        self.ensure_ready()
        destination = self._root / safe_name
        destination.write_bytes(data)
        logger.info("book_uploaded", filename=safe_name, bytes=len(data))
        return safe_name
