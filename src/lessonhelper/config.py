# /lessonhelper/config.py
"""
Centralized configuration for the lesson helper service.
Settings are read from the environment once at process start and handed to
the gateway, the book store and the request handlers as a single object.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console

# ==============================================================================
# CONSOLE & ENVIRONMENT
# ==============================================================================
console = Console()


def _env_str(name: str, default: str = "", *aliases: str) -> str:
    for key in (name, *aliases):
        raw = os.getenv(key)
        if raw is not None and raw.strip():
            return raw.strip()
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return bool(default)
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None:
        return int(default)
    try:
        value = int(raw)
    except ValueError:
        return int(default)
    return max(minimum, value)


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None:
        return float(default)
    try:
        value = float(raw)
    except ValueError:
        return float(default)
    return max(float(minimum), value)


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return tuple(default)
    items = tuple(part.strip() for part in raw.split(",") if part.strip())
    return items or tuple(default)


# ==============================================================================
# PROVIDER DEFAULTS
# ==============================================================================
PROVIDER_OPENROUTER = "openrouter"
PROVIDER_GEMINI = "gemini"
SUPPORTED_PROVIDERS = (PROVIDER_OPENROUTER, PROVIDER_GEMINI)

# Hard-coded models the gateway can always fall back to.
FALLBACK_MODELS = {
    PROVIDER_OPENROUTER: "anthropic/claude-3.5-haiku",
    PROVIDER_GEMINI: "gemini-2.0-flash",
}

# --- Path Configuration ---
# Data directory is at ../../data relative to this file (src/lessonhelper/config.py)
_BASE_DIR = Path(__file__).resolve().parent.parent.parent
_DATA_DIR = _BASE_DIR / "data"


# ==============================================================================
# SETTINGS
# ==============================================================================
@dataclass(frozen=True)
class Settings:
    # --- AI provider ---
    ai_provider: str = PROVIDER_OPENROUTER
    openrouter_api_key: str = ""
    gemini_api_key: str = ""
    default_model: str = ""
    model_overrides: dict[str, str] = field(default_factory=dict)
    fallback_model: str = ""
    max_retries: int = 2
    backoff_base_s: float = 0.5
    request_timeout_s: float = 60.0
    max_output_tokens: int = 1024
    app_referer: str = "http://localhost:3000"
    app_title: str = "AI Educational Assistant"

    # --- HTTP server ---
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: tuple[str, ...] = ("*",)

    # --- Storage ---
    books_dir: Path = _DATA_DIR / "books"
    logs_dir: Path = _DATA_DIR / "logs"
    log_path: Path | None = None
    page_cache_size: int = 8

    # --- Prompting ---
    prompt_language: str = "Ukrainian"
    grade_level: str = "5th grade"
    default_subject: str = "math"

    # --- OCR ---
    ocr_enabled: bool = True
    ocr_languages: str = "ukr+eng"
    ocr_log_limit: int = 50

    def __post_init__(self):
        provider = str(self.ai_provider or "").strip().lower()
        if provider not in SUPPORTED_PROVIDERS:
            provider = PROVIDER_OPENROUTER
        object.__setattr__(self, "ai_provider", provider)
        if not self.fallback_model:
            object.__setattr__(self, "fallback_model", FALLBACK_MODELS[provider])
        if not self.default_model:
            object.__setattr__(self, "default_model", self.fallback_model)
        object.__setattr__(self, "books_dir", Path(self.books_dir))
        object.__setattr__(self, "logs_dir", Path(self.logs_dir))
        if self.log_path is not None:
            object.__setattr__(self, "log_path", Path(self.log_path))

    @property
    def api_key(self) -> str:
        if self.ai_provider == PROVIDER_GEMINI:
            return self.gemini_api_key
        return self.openrouter_api_key

    @property
    def api_key_env_name(self) -> str:
        if self.ai_provider == PROVIDER_GEMINI:
            return "GEMINI_API_KEY"
        return "OPENROUTER_API_KEY"

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "Settings":
        """Builds settings from process environment (and a .env file when present)."""
        if dotenv:
            load_dotenv()

        provider = _env_str("AI_PROVIDER", PROVIDER_OPENROUTER).lower()
        model_env = "GEMINI_MODEL" if provider == PROVIDER_GEMINI else "OPENROUTER_MODEL"

        overrides = {}
        for task_type in ("math", "code", "deep"):
            suffix = task_type.upper()
            model = _env_str(f"AI_MODEL_{suffix}", "", f"OPENROUTER_MODEL_{suffix}")
            if model:
                overrides[task_type] = model

        log_path = _env_str("LOG_PATH", "")
        return cls(
            ai_provider=provider,
            openrouter_api_key=_env_str("OPENROUTER_API_KEY"),
            gemini_api_key=_env_str("GEMINI_API_KEY"),
            default_model=_env_str("AI_MODEL", "", model_env),
            model_overrides=overrides,
            fallback_model=_env_str("AI_FALLBACK_MODEL"),
            max_retries=_env_int("AI_MAX_RETRIES", 2, minimum=0),
            backoff_base_s=_env_float("AI_BACKOFF_BASE_S", 0.5, minimum=0.0),
            request_timeout_s=_env_float("AI_REQUEST_TIMEOUT_S", 60.0, minimum=1.0),
            max_output_tokens=_env_int("AI_MAX_OUTPUT_TOKENS", 1024, minimum=16),
            app_referer=_env_str("APP_REFERER", "http://localhost:3000"),
            app_title=_env_str("APP_TITLE", "AI Educational Assistant"),
            host=_env_str("HOST", "0.0.0.0"),
            port=_env_int("PORT", 3000, minimum=1),
            cors_origins=_env_list("CORS_ORIGINS", ("*",)),
            books_dir=Path(_env_str("BOOKS_DIR", str(_DATA_DIR / "books"))),
            logs_dir=Path(_env_str("LOGS_DIR", str(_DATA_DIR / "logs"))),
            log_path=Path(log_path) if log_path else None,
            page_cache_size=_env_int("PAGE_CACHE_SIZE", 8, minimum=0),
            prompt_language=_env_str("PROMPT_LANGUAGE", "Ukrainian"),
            grade_level=_env_str("GRADE_LEVEL", "5th grade"),
            default_subject=_env_str("DEFAULT_SUBJECT", "math"),
            ocr_enabled=_env_bool("OCR_ENABLED", True),
            ocr_languages=_env_str("OCR_LANGUAGES", "ukr+eng"),
            ocr_log_limit=_env_int("OCR_LOG_LIMIT", 50, minimum=1),
        )
