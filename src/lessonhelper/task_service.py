"""Request orchestration: task lookup -> prompt -> AI gateway -> response payload."""
from __future__ import annotations

import asyncio
from concurrent.futures import Executor
from typing import Any

from .ai_gateway import AIGateway, AIResult
from .books import BookStore
from .config import Settings
from .fragments import extract_task_fragment, find_task_in_book
from .observability import get_logger
from .pdf_text import load_book, read_page
from .prompts import (
    MODE_SMART,
    MODE_STRICT,
    TASK_TYPE_CHAT,
    build_chat_prompt,
    build_system_prompt,
    build_task_prompt,
    classify_subject,
)

logger = get_logger(__name__)


class BadRequestError(ValueError):
    pass


class TaskNotFoundError(LookupError):
    def __init__(self, message: str, page_index: int | None = None, num_pages: int | None = None):
        super().__init__(message)
        self.page_index = page_index
        self.num_pages = num_pages


def _parse_positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise BadRequestError(f"'{name}' must be a positive integer")
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        raise BadRequestError(f"'{name}' must be a positive integer") from None
    if number < 1:
        raise BadRequestError(f"'{name}' must be a positive integer")
    return number


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def _ai_fields(result: AIResult) -> dict[str, Any]:
    payload: dict[str, Any] = {"aiResponse": result.text, "aiOk": result.ok}
    if result.model:
        payload["model"] = result.model
    if not result.ok and result.kind is not None:
        payload["aiError"] = result.kind.value
    return payload


class TaskService:
    def __init__(
        self,
        settings: Settings,
        store: BookStore,
        gateway: AIGateway,
        executor: Executor | None = None,
    ):
        self.settings = settings
        self.store = store
        self.gateway = gateway
        self.executor = executor
        self.system_prompt = build_system_prompt(settings.grade_level, settings.prompt_language)

    async def _run_blocking(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, fn, *args)

    async def _explain(self, prompt: str, task_type: str, model_hint: str | None) -> AIResult:
        return await self.gateway.ask(
            prompt,
            system=self.system_prompt,
            task_type=task_type,
            model_hint=model_hint or None,
        )

    async def strict_lookup(
        self,
        book: str | None,
        page: Any,
        task_number: Any,
        details: str | None = None,
        subject: str | None = None,
        model: str | None = None,
    ) -> dict[str, Any]:
        """Exact page + task lookup; no cross-page search."""
        if _is_blank(book) or _is_blank(page) or _is_blank(task_number):
            raise BadRequestError("Required parameters: book, page, taskNumber")
        page_index = _parse_positive_int(page, "page")
        number = _parse_positive_int(task_number, "taskNumber")

        path = self.store.resolve(str(book))
        page_obj, num_pages = await self._run_blocking(read_page, path, page_index)
        fragment = extract_task_fragment(page_obj.text, number)
        if not fragment:
            logger.info("task_lookup_not_found", mode=MODE_STRICT, book=str(book), page=page_index, task=number)
            raise TaskNotFoundError(
                f"Task {number} not found on page {page_index}",
                page_index=page_index,
                num_pages=num_pages,
            )

        subject = subject or self.settings.default_subject
        prompt = build_task_prompt(fragment, details, MODE_STRICT, subject)
        result = await self._explain(prompt, classify_subject(subject), model)
        logger.info("task_lookup_completed", mode=MODE_STRICT, book=str(book), page=page_index, task=number, ai_ok=result.ok)
        return {
            "ok": True,
            "mode": MODE_STRICT,
            "book": str(book),
            "pageIndex": page_index,
            "fragment": fragment,
            **_ai_fields(result),
        }

    async def smart_lookup(
        self,
        book: str | None,
        task_number: Any,
        details: str | None = None,
        subject: str | None = None,
        model: str | None = None,
    ) -> dict[str, Any]:
        """Scans the whole book for the first page carrying the task."""
        if _is_blank(book) or _is_blank(task_number):
            raise BadRequestError("Required parameters: book, taskNumber")
        number = _parse_positive_int(task_number, "taskNumber")

        path = self.store.resolve(str(book))
        loaded = await self._run_blocking(load_book, path)
        found = find_task_in_book(loaded.pages, number)
        if found is None:
            logger.info("task_lookup_not_found", mode=MODE_SMART, book=str(book), task=number)
            raise TaskNotFoundError(
                f"Task {number} not found in book {book}",
                num_pages=loaded.num_pages,
            )

        subject = subject or self.settings.default_subject
        prompt = build_task_prompt(found.text, details, MODE_SMART, subject)
        result = await self._explain(prompt, classify_subject(subject), model)
        logger.info("task_lookup_completed", mode=MODE_SMART, book=str(book), page=found.page_index, task=number, ai_ok=result.ok)
        return {
            "ok": True,
            "mode": MODE_SMART,
            "book": str(book),
            "pageIndex": found.page_index,
            "fragment": found.text,
            **_ai_fields(result),
        }

    async def find_fragment(self, book: str | None, task_number: Any, page: Any = None) -> dict[str, Any]:
        """Lookup only, without an AI call: strict when `page` is given, otherwise a book scan."""
        if _is_blank(book) or _is_blank(task_number):
            raise BadRequestError("Required parameters: book, taskNumber")
        number = _parse_positive_int(task_number, "taskNumber")
        path = self.store.resolve(str(book))

        if not _is_blank(page):
            page_index = _parse_positive_int(page, "page")
            page_obj, num_pages = await self._run_blocking(read_page, path, page_index)
            fragment = extract_task_fragment(page_obj.text, number)
            return {
                "mode": MODE_STRICT,
                "found": fragment is not None,
                "pageIndex": page_index,
                "numPages": num_pages,
                "fragment": fragment,
            }

        loaded = await self._run_blocking(load_book, path)
        found = find_task_in_book(loaded.pages, number)
        return {
            "mode": MODE_SMART,
            "found": found is not None,
            "pageIndex": found.page_index if found else None,
            "numPages": loaded.num_pages,
            "fragment": found.text if found else None,
        }

    async def chat(self, question: str | None, details: str | None = None, model: str | None = None) -> dict[str, Any]:
        """Free-form question without a textbook lookup."""
        text = str(question or details or "").strip()
        if not text:
            raise BadRequestError("No question text")
        prompt = build_chat_prompt(text, details if question else None)
        result = await self._explain(prompt, TASK_TYPE_CHAT, model)
        return {"ok": True, "mode": "chat", "question": text, **_ai_fields(result)}

    async def smart_or_chat(
        self,
        book: str | None = None,
        task_number: Any = None,
        details: str | None = None,
        question: str | None = None,
        subject: str | None = None,
        model: str | None = None,
    ) -> dict[str, Any]:
        if not _is_blank(book) and not _is_blank(task_number):
            return await self.smart_lookup(book, task_number, details, subject, model)
        return await self.chat(question, details, model)
