# =============================================================================
# LLM Provider Abstraction — Anthropic, OpenAI & xAI
# =============================================================================
#
# Every chat, classification and agent call goes through an LLMProvider.
# Two implementations cover the three vendors:
#
#   AnthropicProvider        — Claude via the native SDK
#   OpenAICompatibleProvider — OpenAI, and xAI (Grok) through its
#                              OpenAI-compatible endpoint
#
# create_provider(model_id) picks the implementation from the model-ID
# prefix (see services/model_registry.py) and caches one instance per
# model; SDK clients own their connection pools and are safe to share.
#
# KEY API DIFFERENCE: Anthropic takes the system prompt as a top-level
# `system=` kwarg and rejects "system" roles inside `messages`; OpenAI
# expects it as the first message. Providers normalise both directions.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol

from grooshub.config import settings
from grooshub.errors import ConfigurationError
from grooshub.services.model_registry import get_model

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """Standardised response from any LLM provider."""

    content: str           # The generated text
    model: str             # Vendor model name reported by the API
    input_tokens: int
    output_tokens: int


@dataclass
class TokenUsage:
    """Filled in by stream() once the vendor reports usage."""

    input_tokens: int = 0
    output_tokens: int = 0


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """
    Interface shared by all providers.

    `provider` is the vendor key used for quota accounting ("openai",
    "anthropic", "xai"); `model_id` is the GroosHub registry ID.
    """

    provider: str
    model_id: str

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion.

        Args:
            messages: Dicts with "role" and "content". System messages in
                the list are merged into the system prompt.
            system: Extra system prompt, placed before any system messages.
            temperature: Sampling temperature (default from config).
            max_tokens: Max output tokens (default from config).
        """
        ...

    def stream(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        usage: TokenUsage | None = None,
    ) -> AsyncIterator[str]:
        """Yield text deltas; fills `usage` when the stream ends."""
        ...


def _split_system(
    messages: list[dict[str, str]],
    system: str | None,
) -> tuple[str | None, list[dict[str, str]]]:
    """Separate system messages from the conversation."""
    system_parts = [system] if system else []
    conversation: list[dict[str, str]] = []
    for message in messages:
        if message["role"] == "system":
            system_parts.append(message["content"])
        else:
            conversation.append(
                {"role": message["role"], "content": message["content"]}
            )
    merged = "\n\n".join(p for p in system_parts if p) or None
    return merged, conversation


# ---------------------------------------------------------------------------
# Anthropic Provider
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """Anthropic Claude provider using AsyncAnthropic."""

    provider = "anthropic"

    def __init__(
        self,
        model_id: str,
        api_model: str,
        api_key: str | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        resolved_key = api_key or settings.anthropic_api_key
        if not resolved_key:
            raise ConfigurationError(
                "No Anthropic API key configured. Set ANTHROPIC_API_KEY in .env"
            )

        self._client = AsyncAnthropic(api_key=resolved_key)
        self.model_id = model_id
        self._model = api_model
        self._max_tokens = settings.llm_max_tokens

        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    def _request_kwargs(
        self,
        messages: list[dict[str, str]],
        system: str | None,
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict:
        merged_system, conversation = _split_system(messages, system)
        kwargs: dict = {
            "model": self._model,
            "messages": conversation,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": (
                settings.default_chat_temperature
                if temperature is None else temperature
            ),
        }
        if merged_system:
            kwargs["system"] = merged_system
        return kwargs

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using Claude."""
        response = await self._client.messages.create(
            **self._request_kwargs(messages, system, temperature, max_tokens)
        )

        content = ""
        for block in response.content:
            if block.type == "text":
                content = block.text
                break

        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    async def stream(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        usage: TokenUsage | None = None,
    ) -> AsyncIterator[str]:
        """Stream a Claude completion as text deltas."""
        kwargs = self._request_kwargs(messages, system, temperature, max_tokens)
        async with self._client.messages.stream(**kwargs) as stream:
            async for text in stream.text_stream:
                yield text
            final = await stream.get_final_message()

        if usage is not None:
            usage.input_tokens = final.usage.input_tokens
            usage.output_tokens = final.usage.output_tokens


# ---------------------------------------------------------------------------
# OpenAI-Compatible Provider (OpenAI, xAI)
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Provider for any API that follows the OpenAI chat-completions spec.

    xAI is served by pointing the OpenAI SDK at settings.xai_base_url.
    """

    def __init__(
        self,
        model_id: str,
        api_model: str,
        provider: str = "openai",
        api_key: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        if provider == "xai":
            resolved_key = api_key or settings.xai_api_key
            resolved_base_url = base_url or settings.xai_base_url
            key_hint = "XAI_API_KEY"
        else:
            resolved_key = api_key or settings.openai_api_key
            resolved_base_url = base_url
            key_hint = "OPENAI_API_KEY"

        if not resolved_key:
            raise ConfigurationError(
                f"No API key configured for {provider}. Set {key_hint} in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key}
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self.provider = provider
        self.model_id = model_id
        self._model = api_model
        self._max_tokens = settings.llm_max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (provider=%s, model=%s, base_url=%s)",
            provider,
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    def _request_kwargs(
        self,
        messages: list[dict[str, str]],
        system: str | None,
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict:
        merged_system, conversation = _split_system(messages, system)
        all_messages: list[dict[str, str]] = []
        if merged_system:
            all_messages.append({"role": "system", "content": merged_system})
        all_messages.extend(conversation)
        return {
            "model": self._model,
            "messages": all_messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": (
                settings.default_chat_temperature
                if temperature is None else temperature
            ),
        }

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using an OpenAI-compatible API."""
        response = await self._client.chat.completions.create(
            **self._request_kwargs(messages, system, temperature, max_tokens)
        )

        content = response.choices[0].message.content or ""
        usage = response.usage

        return LLMResponse(
            content=content,
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )

    async def stream(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        usage: TokenUsage | None = None,
    ) -> AsyncIterator[str]:
        """Stream a completion as text deltas."""
        response = await self._client.chat.completions.create(
            **self._request_kwargs(messages, system, temperature, max_tokens),
            stream=True,
            stream_options={"include_usage": True},
        )
        async for chunk in response:
            if chunk.choices and chunk.choices[0].delta.content:
                yield chunk.choices[0].delta.content
            if chunk.usage and usage is not None:
                usage.input_tokens = chunk.usage.prompt_tokens
                usage.output_tokens = chunk.usage.completion_tokens


# ---------------------------------------------------------------------------
# Provider Factory
# ---------------------------------------------------------------------------

_providers: dict[str, AnthropicProvider | OpenAICompatibleProvider] = {}


def create_provider(model_id: str) -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Return the (cached) provider for a registry model ID.

    Raises:
        UnknownModelError: The model ID is not registered.
        ConfigurationError: The vendor's API key is not configured.
    """
    provider = _providers.get(model_id)
    if provider is not None:
        return provider

    info = get_model(model_id)
    if info.provider == "anthropic":
        provider = AnthropicProvider(model_id=model_id, api_model=info.api_model)
    else:
        provider = OpenAICompatibleProvider(
            model_id=model_id,
            api_model=info.api_model,
            provider=info.provider,
        )

    _providers[model_id] = provider
    return provider


def truncate_messages(
    messages: list[dict[str, str]],
    max_messages: int | None = None,
) -> list[dict[str, str]]:
    """
    Fit a conversation into the context budget.

    All system messages are kept, in order, at the start; of the remaining
    messages only the most recent `max_messages` survive.
    """
    limit = settings.chat_max_messages if max_messages is None else max_messages
    system_messages = [m for m in messages if m["role"] == "system"]
    conversation = [m for m in messages if m["role"] != "system"]
    recent = conversation[-limit:] if limit > 0 else []
    return system_messages + recent
