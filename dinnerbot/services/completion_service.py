# dinnerbot/services/completion_service.py
"""
Chat-completion access over the OpenAI SDK.

The sync client runs in the default executor and every call is bounded by a
timeout. All failures (no client, API error, empty content, timeout) surface as
`CompletionError` so callers have a single exception to handle.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from openai import OpenAI, OpenAIError

from dinnerbot.config.settings import settings

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """Any failure to obtain usable text from the completion service."""


def _mask_key(k: Optional[str]) -> str:
    if not k:
        return "(none)"
    if len(k) <= 8:
        return k
    return f"{k[:4]}...{k[-4:]}"


def _content_of(resp: Any) -> Optional[str]:
    """Pull message content from SDK objects or dict-shaped responses."""
    if hasattr(resp, "choices"):
        choices = resp.choices or []
        if not choices:
            return None
        message = getattr(choices[0], "message", None)
        return getattr(message, "content", None)
    if isinstance(resp, dict):
        choices = resp.get("choices") or []
        if choices and isinstance(choices[0], dict):
            return (choices[0].get("message") or {}).get("content")
    return None


def parse_json_reply(text: str) -> Any:
    """
    Parse a JSON reply, tolerating ```json fences around it.
    Raises ValueError on anything that is not valid JSON.
    """
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    return json.loads(cleaned.strip())


class CompletionService:

    def __init__(
        self,
        client: Optional[Any] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.model = model or settings.openai_model
        self.timeout = (
            timeout if timeout is not None else settings.completion_timeout_seconds
        )
        self.client = client
        if self.client is None and settings.openai_api_key:
            try:
                self.client = OpenAI(api_key=settings.openai_api_key)
                logger.info("OpenAI client created (model=%s)", self.model)
            except OpenAIError as exc:
                logger.exception(
                    "Failed creating OpenAI client (key=%s): %s",
                    _mask_key(settings.openai_api_key),
                    exc,
                )
                self.client = None

    @property
    def available(self) -> bool:
        return self.client is not None

    async def complete(
        self,
        prompt: str,
        max_tokens: int,
        temperature: float,
        system: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        if self.client is None:
            raise CompletionError("completion client not configured")

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        bound = timeout if timeout is not None else self.timeout
        loop = asyncio.get_running_loop()
        func = lambda: self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        try:
            resp = await asyncio.wait_for(loop.run_in_executor(None, func), timeout=bound)
        except asyncio.TimeoutError as exc:
            logger.warning("Completion timed out after %.1fs", bound)
            raise CompletionError(f"timeout after {bound}s") from exc
        except CompletionError:
            raise
        except Exception as exc:
            logger.warning("Completion request failed: %s", exc)
            raise CompletionError(str(exc)) from exc

        content = _content_of(resp)
        if not content or not content.strip():
            raise CompletionError("empty completion content")
        return content

    async def complete_json(
        self,
        prompt: str,
        max_tokens: int,
        temperature: float = 0.0,
        system: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        text = await self.complete(prompt, max_tokens, temperature, system, timeout)
        try:
            return parse_json_reply(text)
        except ValueError as exc:
            raise CompletionError(f"malformed JSON reply: {exc}") from exc
