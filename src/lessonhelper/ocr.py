"""
Image OCR side-service.

Recognition is delegated to Tesseract through pytesseract. Each recognized image
is appended to a capped rolling JSON log. The log is read, modified and written
back without locking, so concurrent writers may drop entries.
"""
from __future__ import annotations

import io
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytesseract
from PIL import Image, UnidentifiedImageError

from .config import Settings
from .observability import get_logger

logger = get_logger(__name__)

OCR_STUB_TEXT = (
    "Image recognition (OCR) is not available on this server right now. "
    "Use the PDF mode or simply type the task text."
)
_TASK_NUMBER_RE = re.compile(r"\b(\d{3,4})\.")
_DRAWING_RE = re.compile(r"(?:Рис|Fig)\.?\s?(\d+)", flags=re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


class InvalidImageError(ValueError):
    pass


def detect_task_number(text: str) -> str | None:
    match = _TASK_NUMBER_RE.search(str(text or ""))
    return match.group(1) if match else None


def detect_drawings(text: str) -> list[str]:
    return [m.group(1) for m in _DRAWING_RE.finditer(str(text or ""))]


class OcrLog:
    """JSON array file holding the most recent `limit` OCR entries."""

    def __init__(self, path: str | Path, limit: int = 50):
        self.path = Path(path)
        self.limit = max(1, int(limit))

    def read(self) -> list[dict[str, Any]]:
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                entries = json.load(handle)
        except (OSError, ValueError):
            return []
        return entries if isinstance(entries, list) else []

    def _write(self, entries: list[dict[str, Any]]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as handle:
            json.dump(entries[-self.limit:], handle, ensure_ascii=False, indent=2)

    def append(self, entry: dict[str, Any]):
        entries = self.read()
        entries.append(entry)
        self._write(entries)

    def clear(self):
        self._write([])


class OcrService:
    def __init__(self, settings: Settings, log: OcrLog | None = None):
        self.enabled = bool(settings.ocr_enabled)
        self.languages = settings.ocr_languages
        self.log = log or OcrLog(settings.logs_dir / "ocr.json", limit=settings.ocr_log_limit)

    def _image_to_text(self, image: Image.Image) -> str:
        return pytesseract.image_to_string(image, lang=self.languages)

    def recognize(self, image_bytes: bytes, filename: str = "") -> dict[str, Any]:
        """Returns the recognized text plus a detected task number and figure references."""
        if not self.enabled:
            return {"text": OCR_STUB_TEXT, "task": None, "drawings": []}

        try:
            image = Image.open(io.BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise InvalidImageError("The uploaded file is not a supported image.") from exc

        try:
            raw_text = self._image_to_text(image)
        except pytesseract.TesseractNotFoundError:
            logger.warning("ocr_engine_missing", languages=self.languages)
            return {"text": OCR_STUB_TEXT, "task": None, "drawings": []}
        except pytesseract.TesseractError as exc:
            # e.g. a language pack from OCR_LANGUAGES is not installed
            logger.error("ocr_engine_failed", languages=self.languages, error=str(exc.message or exc))
            return {"text": OCR_STUB_TEXT, "task": None, "drawings": []}

        text = _WHITESPACE_RE.sub(" ", raw_text or "").strip()
        task = detect_task_number(text)
        entry = {
            "status": "task recognized" if task else "text recognized, task not detected",
            "task": task,
            "drawings": detect_drawings(text),
            "text": text,
            "file": Path(str(filename or "")).name,
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        }
        self.log.append(entry)
        logger.info("ocr_recognized", file=entry["file"], task=task, chars=len(text))
        return entry
