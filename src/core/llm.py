"""
MindArsenal Coach — LLM Provider Abstraction.

One public coroutine, `complete()`, routed to the provider named by
LLM_PROVIDER (openai by default; anthropic, gemini and cohere also work).
The provider is resolved on first use and reused afterwards. SDKs are
imported lazily so only the selected one has to be installed and importable.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class LLMNotConfigured(RuntimeError):
    """Raised when complete() is called without an API key."""


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    model: str
    api_key: str
    timeout: float


_ChatFn = Callable[[ProviderConfig, str, str, int], Awaitable[str]]


# ---------------------------------------------------------------------------
# Provider calls
# ---------------------------------------------------------------------------


async def _openai_chat(cfg: ProviderConfig, system: str, user_message: str, max_tokens: int) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=cfg.api_key, timeout=cfg.timeout)
    response = await client.chat.completions.create(
        model=cfg.model,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.choices[0].message.content or ""


async def _anthropic_chat(cfg: ProviderConfig, system: str, user_message: str, max_tokens: int) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=cfg.api_key, timeout=cfg.timeout)
    response = await client.messages.create(
        model=cfg.model,
        max_tokens=max_tokens,
        system=system,
        messages=[{"role": "user", "content": user_message}],
    )
    return "".join(block.text for block in response.content if block.type == "text")


async def _gemini_chat(cfg: ProviderConfig, system: str, user_message: str, max_tokens: int) -> str:
    import google.generativeai as genai

    genai.configure(api_key=cfg.api_key)
    model = genai.GenerativeModel(model_name=cfg.model, system_instruction=system)
    response = await model.generate_content_async(
        user_message,
        generation_config=genai.types.GenerationConfig(max_output_tokens=max_tokens),
        request_options={"timeout": cfg.timeout},
    )
    return response.text


async def _cohere_chat(cfg: ProviderConfig, system: str, user_message: str, max_tokens: int) -> str:
    import cohere

    client = cohere.AsyncClientV2(api_key=cfg.api_key, timeout=cfg.timeout)
    response = await client.chat(
        model=cfg.model,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.message.content[0].text


# name -> (call, default model)
_PROVIDERS: dict[str, tuple[_ChatFn, str]] = {
    "openai":    (_openai_chat,    "gpt-4o-mini"),
    "anthropic": (_anthropic_chat, "claude-haiku-4-5-20251001"),
    "gemini":    (_gemini_chat,    "gemini-2.0-flash"),
    "cohere":    (_cohere_chat,    "command-a-03-2025"),
}


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def is_configured() -> bool:
    """True when an API key is set, i.e. the coach may call out."""
    from src.config import settings

    return settings.llm_enabled


def _select_provider() -> tuple[_ChatFn, ProviderConfig]:
    from src.config import settings

    if not settings.llm_enabled:
        raise LLMNotConfigured("LLM_API_KEY is not set")

    name = settings.LLM_PROVIDER.strip().lower()
    if name not in _PROVIDERS:
        raise ValueError(
            f"Unknown LLM_PROVIDER={name!r}. Supported: {', '.join(_PROVIDERS)}"
        )

    chat, default_model = _PROVIDERS[name]
    cfg = ProviderConfig(
        name=name,
        model=settings.LLM_MODEL or default_model,
        api_key=settings.LLM_API_KEY,
        timeout=settings.LLM_TIMEOUT_SECONDS,
    )
    logger.info("LLM provider: %s, model: %s", cfg.name, cfg.model)
    return chat, cfg


_active: tuple[_ChatFn, ProviderConfig] | None = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def complete(system: str, user_message: str, max_tokens: int = 512) -> str:
    """Send a prompt to the configured provider and return its text.

    Raises LLMNotConfigured without an API key, and lets provider errors
    propagate. Callers own the fallback.
    """
    global _active

    if _active is None:
        _active = _select_provider()
    chat, cfg = _active

    started = time.monotonic()
    try:
        return await chat(cfg, system, user_message, max_tokens)
    finally:
        logger.info(
            "llm_call provider=%s model=%s ms=%d",
            cfg.name, cfg.model, (time.monotonic() - started) * 1000,
        )
