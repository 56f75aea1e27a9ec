"""Text completion provider used for general (non-reservation) chat.

There is one provider interface and one implementation.  Which model is used,
how long to wait and how often to retry are configuration, not code paths.
Any failure — quota / rate limit, timeout, transport error, empty or
non-text output — surfaces as ``CompletionError`` so the caller can fall
back to the rule-based replies.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage

from src.config import (
    ANTHROPIC_API_KEY,
    COMPLETION_MAX_RETRIES,
    COMPLETION_MODEL_NAME,
    COMPLETION_TIMEOUT_SECONDS,
)
from src.services.metrics import metrics

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """Raised when the provider could not produce a usable completion."""


class TextCompletionProvider(ABC):
    @abstractmethod
    def complete(self, prompt: str) -> str:
        """Return freeform text for *prompt* or raise ``CompletionError``."""


def _build_llm(
    model: str = COMPLETION_MODEL_NAME,
    timeout: float = COMPLETION_TIMEOUT_SECONDS,
    max_retries: int = COMPLETION_MAX_RETRIES,
) -> ChatAnthropic:
    return ChatAnthropic(
        model=model,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.7,
        max_tokens=1024,
        timeout=timeout,
        max_retries=max_retries,
    )


def _content_text(content) -> str:
    """Flatten a chat model response body to plain text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""


class AnthropicCompletionProvider(TextCompletionProvider):
    """Completion provider backed by Claude through LangChain."""

    def __init__(self, llm: ChatAnthropic | None = None, *, model: str = COMPLETION_MODEL_NAME):
        self.model = model
        self._llm = llm or _build_llm(model=model)

    def complete(self, prompt: str) -> str:
        t0 = time.perf_counter()
        try:
            response = self._llm.invoke([HumanMessage(content=prompt)])
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", "complete",
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise CompletionError(f"{type(exc).__name__}: {exc}") from exc

        elapsed = (time.perf_counter() - t0) * 1000
        text = _content_text(getattr(response, "content", None)).strip()
        if not text:
            metrics.record_failure(
                "anthropic", "complete", error_type="EmptyResponse", latency_ms=elapsed,
            )
            raise CompletionError("Unexpected completion response format")

        metrics.record_success("anthropic", "complete", latency_ms=elapsed)
        logger.debug("Completion (%s) returned %d chars in %.0fms", self.model, len(text), elapsed)
        return text
