"""LLM gateway: HTTP connection to a chat-completion backend.

The orchestrator is handed an LLM callable matching the protocol:

    async def __call__(self, system_prompt: str,
                       history: list[HistoryTurn],
                       user_message: str) -> str: ...

It returns the raw reply text (tagged lines, see storyplay.replies) or
raises LLMError. Retrying is entirely the gateway's job: the orchestrator
never retries, it falls back to an in-character line.

Two implementations are provided:

    HttpLLM    real HTTP client with a bounded retry loop and exponential
               backoff. Supports Gemini and OpenAI-compatible backends,
               selected by provider_format.
    EchoLLM    returns the user message back unchanged. Useful for
               smoke-testing session wiring without network access.

Production code constructs one HttpLLM per process (HttpLLM.from_settings)
and passes it to every GameSession. Tests use StubLLM (conftest.py).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Literal, Protocol

import httpx

from storyplay.config import Settings
from storyplay.models import HistoryTurn

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol: every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(
        self, system_prompt: str, history: list[HistoryTurn], user_message: str
    ) -> str: ...


# ---------------------------------------------------------------------------
# HttpLLM: connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["gemini", "openai"]

DEFAULT_BASE_URLS: dict[str, str] = {
    "gemini": "https://generativelanguage.googleapis.com",
    "openai": "https://api.openai.com",
}


class HttpLLM:
    """Async HTTP client for chat backends.

    Supported formats:
      "gemini"  POST /v1beta/models/{model}:generateContent?key=...
                System prompt and history are folded into one text prompt.
                Response: {"candidates": [{"content": {"parts": [{"text": ...}]}}]}
      "openai"  POST /v1/chat/completions  {"model": ..., "messages": [...]}
                Response: {"choices": [{"message": {"content": "..."}}]}

    Args:
        api_key:         API key; an empty key fails every call immediately.
        provider_format: Wire format to use. Defaults to "gemini".
        model:           Model identifier.
        base_url:        Backend base URL; defaults per format.
        timeout:         HTTP timeout in seconds.
        max_attempts:    Total attempts per call (1 = no retry).
        base_delay:      Backoff before retry n is base_delay * 2**n seconds.
        sleep:           Awaitable used for backoff; injectable for tests.
    """

    def __init__(
        self,
        api_key: str = "",
        provider_format: ProviderFormat = "gemini",
        model: str = "gemini-1.5-flash",
        base_url: str = "",
        timeout: float = 30.0,
        max_attempts: int = 4,
        base_delay: float = 1.0,
        temperature: float = 0.8,
        max_tokens: int = 300,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._base_url = (base_url or DEFAULT_BASE_URLS[provider_format]).rstrip("/")
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._base_delay = base_delay
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._sleep = sleep

        self._connected = False
        self._last_check: datetime | None = None
        self._failures = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> HttpLLM:
        return cls(
            api_key=settings.ai_api_key,
            provider_format=settings.ai_provider,
            model=settings.ai_model,
            base_url=settings.ai_base_url,
            timeout=settings.ai_timeout,
            max_attempts=settings.ai_max_attempts,
            base_delay=settings.ai_base_delay,
        )

    # ------------------------------------------------------------------
    # Wire formats
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._format == "openai" and self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _params(self) -> dict[str, str]:
        if self._format == "gemini":
            return {"key": self._api_key}
        return {}

    def _build_request(
        self, system_prompt: str, history: list[HistoryTurn], user_message: str
    ) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "openai":
            messages = [{"role": "system", "content": system_prompt}]
            messages.extend({"role": t.role, "content": t.content} for t in history)
            messages.append({"role": "user", "content": user_message})
            url = f"{self._base_url}/v1/chat/completions"
            return url, {
                "model": self._model,
                "messages": messages,
                "max_tokens": self._max_tokens,
                "temperature": self._temperature,
            }

        # gemini (default)
        history_text = "\n".join(
            f"{t.role}: {t.content}" for t in history if t.role != "system"
        )
        parts = [system_prompt, ""]
        if history_text:
            parts.append(f"이전 대화:\n{history_text}\n")
        parts.append(f"현재 사용자 입력: {user_message}")
        parts.append("")
        parts.append("위 형식에 맞춰 응답해주세요:")
        url = f"{self._base_url}/v1beta/models/{self._model}:generateContent"
        return url, {
            "contents": [{"parts": [{"text": "\n".join(parts)}]}],
            "generationConfig": {
                "temperature": self._temperature,
                "maxOutputTokens": self._max_tokens,
                "candidateCount": 1,
            },
        }

    def _parse_response(self, data: dict) -> str:
        """Extract the reply text from the response body."""
        try:
            if self._format == "openai":
                text = data["choices"][0]["message"]["content"]
            else:
                text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError(f"Unexpected response format from {self._format} backend") from e
        if not isinstance(text, str) or not text.strip():
            raise LLMError(f"Empty reply from {self._format} backend")
        return text

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def _attempt(self, url: str, body: dict) -> str:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    url, json=body, headers=self._headers(), params=self._params()
                )
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(f"LLM backend returned HTTP {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError("LLM backend returned a non-JSON body") from e
        return self._parse_response(data)

    def _mark(self, connected: bool) -> None:
        self._connected = connected
        self._last_check = datetime.now(timezone.utc)

    async def __call__(
        self, system_prompt: str, history: list[HistoryTurn], user_message: str
    ) -> str:
        if not self._api_key:
            self._mark(False)
            raise LLMError("No API key configured for the LLM backend")

        url, body = self._build_request(system_prompt, history, user_message)
        last_error: LLMError | None = None
        for attempt in range(self._max_attempts):
            logger.debug(
                "llm call attempt=%d/%d format=%s model=%s history=%d",
                attempt + 1, self._max_attempts, self._format, self._model, len(history),
            )
            try:
                text = await self._attempt(url, body)
            except LLMError as e:
                last_error = e
                self._failures += 1
                logger.warning("llm attempt %d/%d failed: %s", attempt + 1, self._max_attempts, e)
                if attempt < self._max_attempts - 1:
                    await self._sleep(self._base_delay * 2 ** attempt)
                continue
            self._failures = 0
            self._mark(True)
            logger.debug("llm response len=%d", len(text))
            return text

        self._mark(False)
        raise LLMError(f"LLM backend failed after {self._max_attempts} attempts: {last_error}")

    async def check_connection(self) -> bool:
        """Send one probe request (no retries) and record the result."""
        if not self._api_key:
            self._mark(False)
            return False
        url, body = self._build_request("", [], "test")
        try:
            await self._attempt(url, body)
        except LLMError as e:
            logger.warning("llm connection check failed: %s", e)
            self._mark(False)
            return False
        self._mark(True)
        return True

    def status(self) -> dict:
        return {
            "connected": self._connected,
            "last_check": self._last_check.isoformat() if self._last_check else None,
            "provider": self._format,
            "model": self._model,
            "consecutive_failures": self._failures,
        }


# ---------------------------------------------------------------------------
# EchoLLM: returns the user message unchanged; useful for wiring smoke tests
# ---------------------------------------------------------------------------

class EchoLLM:
    """Returns the user message as-is. No network calls.

    The reply carries no CHARACTER_ID/CONTENT tags, so the session labels it
    with the story's default speaker.
    """

    async def __call__(
        self, system_prompt: str, history: list[HistoryTurn], user_message: str
    ) -> str:
        logger.debug("EchoLLM history=%d message_len=%d", len(history), len(user_message))
        return user_message


# ---------------------------------------------------------------------------
# LLMError: raised by HttpLLM for all connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""
