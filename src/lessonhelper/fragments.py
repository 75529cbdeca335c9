"""
Locates a numbered exercise inside already-extracted page text.

A task marker is the task number as a whole word followed by "." or ")".
Markers glued to a digit ("12.5") or a letter ("535а.") are not markers, so
sub-lettered items stay inside their parent task's fragment.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable

from .pdf_text import Page


@dataclass(frozen=True)
class TaskFragment:
    page_index: int
    text: str


def _marker(number: int) -> str:
    return rf"\b{number}[.)](?!\d)"


@lru_cache(maxsize=256)
def _task_pattern(task_number: int) -> re.Pattern:
    return re.compile(
        rf"{_marker(task_number)}\s*(.*?)(?={_marker(task_number + 1)}|\Z)",
        flags=re.DOTALL,
    )


def extract_task_fragment(page_text: str, task_number: int) -> str | None:
    """
    Returns "<n>. <task text>" for the first marker of task `n`, ending just before
    the marker of task `n + 1` or at the end of the page. None when absent.
    """
    number = int(task_number)
    if number < 0:
        return None
    match = _task_pattern(number).search(str(page_text or ""))
    if not match:
        return None
    body = match.group(1).strip()
    if not body:
        return None
    return f"{number}. {body}"


def find_task_in_book(pages: Iterable[Page], task_number: int) -> TaskFragment | None:
    """Scans pages in ascending order and stops at the first page containing the task."""
    for page in sorted(pages, key=lambda p: p.index):
        fragment = extract_task_fragment(page.text, task_number)
        if fragment:
            return TaskFragment(page_index=page.index, text=fragment)
    return None
