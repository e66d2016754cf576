# =============================================================================
# Embedding Service — OpenAI Embeddings, Batched
# =============================================================================
#
# Sync client: the Celery worker is synchronous, and the web process calls
# embed_query_async(), which runs the same client in a worker thread.
#
# No retries here; the Celery task retries the whole file.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from openai import OpenAI

from grooshub.config import settings
from grooshub.errors import ConfigurationError

logger = logging.getLogger(__name__)

_client: OpenAI | None = None


def _get_client() -> OpenAI:
    """Lazily initialize and cache the embedding client."""
    global _client
    if _client is None:
        if not settings.openai_api_key:
            raise ConfigurationError(
                "No API key configured for embeddings. Set OPENAI_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": settings.openai_api_key}
        if settings.embedding_base_url:
            client_kwargs["base_url"] = settings.embedding_base_url
        _client = OpenAI(**client_kwargs)

        logger.info(
            "Initialized embedding client (model=%s, dimensions=%d)",
            settings.embedding_model,
            settings.embedding_dimensions,
        )
    return _client


@dataclass
class EmbeddingResult:
    embeddings: list[list[float]]
    prompt_tokens: int
    api_calls: int


def embed_batch(
    texts: Sequence[str],
    batch_size: int | None = None,
    result: EmbeddingResult | None = None,
) -> EmbeddingResult:
    """
    Embed texts in sub-batches, preserving input order.

    A caller-supplied `result` is filled as batches complete, so calls and
    tokens already spent are known even when a later batch raises.

    Raises:
        ConfigurationError: OPENAI_API_KEY is not configured.
        openai.APIError: The API call failed.
    """
    if result is None:
        result = EmbeddingResult(embeddings=[], prompt_tokens=0, api_calls=0)
    if not texts:
        return result

    client = _get_client()
    size = batch_size or settings.embedding_batch_size
    result.embeddings = [[] for _ in texts]

    for offset in range(0, len(texts), size):
        batch = list(texts[offset:offset + size])
        response = client.embeddings.create(
            model=settings.embedding_model,
            input=batch,
            dimensions=settings.embedding_dimensions,
        )
        result.api_calls += 1
        for item in response.data:
            result.embeddings[offset + item.index] = item.embedding
        if response.usage:
            result.prompt_tokens += response.usage.prompt_tokens

        logger.debug(
            "Embedded texts %d-%d of %d",
            offset + 1, offset + len(batch), len(texts),
        )

    logger.info(
        "Generated %d embeddings in %d calls (%d tokens)",
        len(texts), result.api_calls, result.prompt_tokens,
    )
    return result


def embed_query(text: str) -> list[float]:
    """Embed a single query string."""
    return embed_batch([text], batch_size=1).embeddings[0]


async def embed_query_async(text: str) -> list[float]:
    """embed_query() off the event loop."""
    return await asyncio.to_thread(embed_query, text)
