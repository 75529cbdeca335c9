"""
Page-level text access for PDF textbooks.
Extraction is delegated to PyMuPDF; this module only normalizes the text and
keeps a small cache keyed by file identity.
"""
from __future__ import annotations

import re
import threading
from collections import OrderedDict
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path

import fitz

from .observability import get_logger

logger = get_logger(__name__)

# A word broken across a line end: "multi-\nplication" -> "multiplication".
_HYPHEN_BREAK_RE = re.compile(r"(?<=[^\W\d_])-[ \t]*\r?\n\s*(?=[^\W\d_])")
_WHITESPACE_RE = re.compile(r"\s+")


class BookNotFoundError(FileNotFoundError):
    def __init__(self, filename: str):
        super().__init__(f"PDF file not found: {filename}")
        self.filename = filename


class PageOutOfRangeError(LookupError):
    def __init__(self, page_index: int, num_pages: int):
        super().__init__(f"Page {page_index} is out of range (1..{num_pages})")
        self.page_index = int(page_index)
        self.num_pages = int(num_pages)


@dataclass(frozen=True)
class Page:
    index: int  # 1-based
    text: str


@dataclass(frozen=True)
class Book:
    filename: str
    pages: tuple[Page, ...]

    @property
    def num_pages(self) -> int:
        return len(self.pages)

    def page(self, page_index: int) -> Page:
        if page_index < 1 or page_index > self.num_pages:
            raise PageOutOfRangeError(page_index, self.num_pages)
        return self.pages[page_index - 1]


def normalize_page_text(raw: str) -> str:
    """Joins hyphenated line breaks and collapses whitespace to single spaces."""
    text = _HYPHEN_BREAK_RE.sub("", str(raw or ""))
    return _WHITESPACE_RE.sub(" ", text).strip()


def _extract_pages(path: Path) -> tuple[Page, ...]:
    pages = []
    with closing(fitz.open(str(path))) as pdf_doc:
        for pdf_page in pdf_doc:
            pages.append(
                Page(index=int(pdf_page.number) + 1, text=normalize_page_text(pdf_page.get_text("text")))
            )
    return tuple(pages)


class _PageCache:
    """Thread-safe LRU of extracted pages keyed by (path, mtime_ns, size)."""

    def __init__(self, max_size: int):
        self._max = max(0, int(max_size))
        self._entries: OrderedDict[tuple[str, int, int], tuple[Page, ...]] = OrderedDict()
        self._lock = threading.Lock()

    def resize(self, max_size: int):
        with self._lock:
            self._max = max(0, int(max_size))
            while len(self._entries) > self._max:
                self._entries.popitem(last=False)

    def get(self, key):
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                return self._entries[key]
        return None

    def put(self, key, pages: tuple[Page, ...]):
        if self._max == 0:
            return
        with self._lock:
            self._entries[key] = pages
            self._entries.move_to_end(key)
            while len(self._entries) > self._max:
                self._entries.popitem(last=False)

    def clear(self):
        with self._lock:
            self._entries.clear()


PAGE_CACHE = _PageCache(max_size=8)


def load_book(path: str | Path) -> Book:
    """Loads every page of a PDF. Cached by file identity so edits are always re-read."""
    pdf_path = Path(path)
    if not pdf_path.is_file():
        raise BookNotFoundError(pdf_path.name)

    stat = pdf_path.stat()
    key = (str(pdf_path.resolve()), int(stat.st_mtime_ns), int(stat.st_size))
    pages = PAGE_CACHE.get(key)
    if pages is None:
        pages = _extract_pages(pdf_path)
        PAGE_CACHE.put(key, pages)
        logger.info("book_pages_extracted", book=pdf_path.name, num_pages=len(pages))
    return Book(filename=pdf_path.name, pages=pages)


def read_page(path: str | Path, page_index: int) -> tuple[Page, int]:
    """Returns one page and the page count of the document."""
    book = load_book(path)
    return book.page(int(page_index)), book.num_pages
