"""
Gateway to remote chat-completion providers.

One call walks a small state machine over attempts 0..max_retries:
  - attempt 0 uses the model hint, a per-task-type override or the default model;
    later attempts always use the fallback model;
  - transport errors, 429 and 5xx back off exponentially and retry;
  - an invalid-model error moves straight to the fallback model;
  - any other failure ends the call.
The gateway never raises for provider failures. It returns an AIResult whose
`text` is either the answer or a human-readable error message.
"""
from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

import httpx

from .config import PROVIDER_GEMINI, Settings
from .metrics import MetricsCollector
from .observability import get_logger
from .prompts import TASK_TYPE_MATH

logger = get_logger(__name__)

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
MATH_TEMPERATURE = 0.4
DEFAULT_TEMPERATURE = 0.7
NO_ANSWER_TEXT = "AI did not return an answer text."
_ERROR_BODY_LIMIT = 500  # chars of a non-JSON error body kept in the message


class AIFailure(str, Enum):
    MISSING_API_KEY = "missing_api_key"
    TRANSPORT = "transport"
    EMPTY_RESPONSE = "empty_response"
    UPSTREAM_STATUS = "upstream_status"
    CLIENT_STATUS = "client_status"
    RETRIES_EXHAUSTED = "retries_exhausted"


@dataclass(frozen=True)
class AIResult:
    ok: bool
    text: str
    kind: AIFailure | None = None
    model: str | None = None
    attempts: int = 0
    status_code: int | None = None


def temperature_for(task_type: str) -> float:
    return MATH_TEMPERATURE if task_type == TASK_TYPE_MATH else DEFAULT_TEMPERATURE


def normalize_content(content: Any) -> str:
    """Plain strings pass through; lists of content parts are joined in order."""
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        pieces = []
        for part in content:
            if isinstance(part, str):
                pieces.append(part)
            elif isinstance(part, dict):
                pieces.append(str(part.get("text") or ""))
        return "\n".join(pieces).strip()
    if isinstance(content, dict):
        return str(content.get("text") or "").strip()
    return ""


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

class OpenRouterProvider:
    """OpenAI-compatible chat completions served by OpenRouter."""

    name = "openrouter"
    label = "OpenRouter"
    api_url = "https://openrouter.ai/api/v1/chat/completions"

    def __init__(self, api_key: str, referer: str = "", title: str = ""):
        self.api_key = api_key
        self.referer = referer
        self.title = title

    def build_request(self, *, model: str, system: str | None, prompt: str, temperature: float, max_tokens: int) -> dict:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        if self.referer:
            headers["HTTP-Referer"] = self.referer
        if self.title:
            headers["X-Title"] = self.title
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return {
            "url": self.api_url,
            "headers": headers,
            "json": {
                "model": model,
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
        }

    @staticmethod
    def extract_content(data: Any) -> Any:
        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return None

    @staticmethod
    def error_message(data: Any) -> str:
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict):
                return str(error.get("message") or "")
            if isinstance(error, str):
                return error
        return ""

    @staticmethod
    def is_invalid_model(status_code: int, message: str) -> bool:
        return status_code == 400 and "not a valid model id" in message.lower()


class GeminiProvider:
    """Google Generative Language `generateContent` endpoint."""

    name = "gemini"
    label = "Gemini"
    base_url = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(self, api_key: str):
        self.api_key = api_key

    def build_request(self, *, model: str, system: str | None, prompt: str, temperature: float, max_tokens: int) -> dict:
        model_path = model if model.startswith("models/") else f"models/{model}"
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
            },
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        return {
            "url": f"{self.base_url}/{model_path}:generateContent",
            "params": {"key": self.api_key},
            "headers": {"Content-Type": "application/json"},
            "json": payload,
        }

    @staticmethod
    def extract_content(data: Any) -> Any:
        try:
            return data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            return None

    @staticmethod
    def error_message(data: Any) -> str:
        return OpenRouterProvider.error_message(data)

    @staticmethod
    def is_invalid_model(status_code: int, message: str) -> bool:
        text = message.lower()
        if status_code not in (400, 404) or "model" not in text:
            return False
        return any(marker in text for marker in ("not found", "not supported", "invalid model", "unknown model"))


def build_provider(settings: Settings):
    if settings.ai_provider == PROVIDER_GEMINI:
        return GeminiProvider(settings.gemini_api_key)
    return OpenRouterProvider(
        settings.openrouter_api_key,
        referer=settings.app_referer,
        title=settings.app_title,
    )


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class AIGateway:
    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        *,
        provider=None,
        metrics: MetricsCollector | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self.client = client
        self.provider = provider or build_provider(settings)
        self.metrics = metrics
        self._sleep = sleep

    @property
    def configured(self) -> bool:
        return bool(self.settings.api_key)

    def resolve_model(self, attempt: int, task_type: str = "general", model_hint: str | None = None) -> str:
        if attempt > 0:
            return self.settings.fallback_model
        if model_hint:
            return model_hint
        override = self.settings.model_overrides.get(task_type)
        if override:
            return override
        return self.settings.default_model

    def _backoff_delay(self, attempt: int) -> float:
        return self.settings.backoff_base_s * (2 ** attempt)

    async def ask(
        self,
        prompt: str,
        *,
        system: str | None = None,
        task_type: str = "general",
        model_hint: str | None = None,
        max_retries: int | None = None,
    ) -> AIResult:
        start = time.perf_counter()
        result = await self._ask(
            prompt,
            system=system,
            task_type=task_type,
            model_hint=model_hint,
            max_retries=self.settings.max_retries if max_retries is None else max(0, int(max_retries)),
        )
        if self.metrics is not None:
            self.metrics.record_request(
                (time.perf_counter() - start) * 1000.0,
                success=result.ok,
                model=result.model or "",
                attempts=result.attempts,
                error_kind=result.kind.value if result.kind else None,
            )
        return result

    async def _ask(self, prompt, *, system, task_type, model_hint, max_retries) -> AIResult:
        label = self.provider.label
        if not self.configured:
            logger.warning("ai_api_key_missing", provider=self.provider.name)
            return AIResult(
                ok=False,
                text=f"AI: {self.settings.api_key_env_name} is not set in the environment.",
                kind=AIFailure.MISSING_API_KEY,
            )

        attempt = 0
        last_error = ""
        model = None
        while attempt <= max_retries:
            model = self.resolve_model(attempt, task_type, model_hint)
            request = self.provider.build_request(
                model=model,
                system=system,
                prompt=prompt,
                temperature=temperature_for(task_type),
                max_tokens=self.settings.max_output_tokens,
            )
            url = request.pop("url")

            try:
                response = await self.client.post(url, timeout=self.settings.request_timeout_s, **request)
            except httpx.RequestError as exc:
                last_error = str(exc) or exc.__class__.__name__
                logger.error("ai_transport_error", provider=self.provider.name, model=model, attempt=attempt, error=last_error)
                if attempt < max_retries:
                    await self._sleep(self._backoff_delay(attempt))
                    attempt += 1
                    continue
                return AIResult(
                    ok=False,
                    text=f"{label} fetch error: {last_error}",
                    kind=AIFailure.TRANSPORT,
                    model=model,
                    attempts=attempt + 1,
                )

            try:
                data = response.json()
            except ValueError:
                data = {}

            status = response.status_code
            if not response.is_success:
                message = self.provider.error_message(data) or response.reason_phrase
                logger.error(
                    "ai_provider_error",
                    provider=self.provider.name,
                    status=status,
                    model=model,
                    attempt=attempt,
                    message=message,
                )

                if self.provider.is_invalid_model(status, message) and model != self.settings.fallback_model:
                    last_error = message
                    attempt += 1
                    continue

                if status in RETRYABLE_STATUSES and attempt < max_retries:
                    delay = self._backoff_delay(attempt)
                    logger.warning("ai_request_retry", provider=self.provider.name, status=status, delay_s=delay)
                    await self._sleep(delay)
                    last_error = message
                    attempt += 1
                    continue

                body = json.dumps(data, ensure_ascii=False) if data else response.text[:_ERROR_BODY_LIMIT]
                return AIResult(
                    ok=False,
                    text=f"{label} error: {status} {body}",
                    kind=AIFailure.UPSTREAM_STATUS if status in RETRYABLE_STATUSES else AIFailure.CLIENT_STATUS,
                    model=model,
                    attempts=attempt + 1,
                    status_code=status,
                )

            text = normalize_content(self.provider.extract_content(data))
            if not text:
                logger.error("ai_empty_response", provider=self.provider.name, model=model, attempt=attempt)
                return AIResult(
                    ok=False,
                    text=NO_ANSWER_TEXT,
                    kind=AIFailure.EMPTY_RESPONSE,
                    model=model,
                    attempts=attempt + 1,
                    status_code=status,
                )

            logger.info("ai_request_completed", provider=self.provider.name, model=model, attempt=attempt)
            return AIResult(ok=True, text=text, model=model, attempts=attempt + 1, status_code=status)

        return AIResult(
            ok=False,
            text=f"{label} error after retries: {last_error or 'unknown error'}",
            kind=AIFailure.RETRIES_EXHAUSTED,
            model=model,
            attempts=attempt,
        )
