# =============================================================================
# Embedding Service: Batch Vector Generation (Provider-Agnostic)
# =============================================================================
#
# Generates vector embeddings using any OpenAI-compatible embedding API
# (OpenAI, Alibaba Cloud DashScope, local gateways).
#
# DESIGN DECISION: Sync OpenAI client behind async methods.
# The batching loop is plain synchronous code; `embed()` and `embed_query()`
# run it in a worker thread via asyncio.to_thread() so FastAPI handlers and
# the coordinator stay non-blocking.
#
# DESIGN DECISION: The same model embeds chunks and queries.
# Mixing models silently breaks cosine similarity, so both go through one
# embedder instance configured once.
#
# TOKEN LIMITS:
# - Each text: max 8,191 tokens
# - We batch at 100 texts per API call (configurable via settings)
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol

from openai import OpenAI

if TYPE_CHECKING:
    from consensus_engine.config import Settings

logger = logging.getLogger(__name__)


class EmbeddingEndpoint(Protocol):
    """Anything that can turn texts into vectors, in input order."""

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        ...

    async def embed_query(self, text: str) -> list[float]:
        ...


class OpenAIEmbedder:
    """
    Embeddings through the OpenAI embeddings endpoint.

    The client is created lazily so constructing the embedder never fails
    on a missing key; the first call does.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: int | None = 1536,
        base_url: str | None = None,
        batch_size: int = 100,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self.dimensions = dimensions
        self.base_url = base_url
        self.batch_size = max(batch_size, 1)
        self._client: OpenAI | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> OpenAIEmbedder:
        return cls(
            api_key=settings.openai_api_key,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            base_url=settings.embedding_base_url,
            batch_size=settings.embedding_batch_size,
        )

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not self._api_key:
                raise ValueError(
                    "No API key configured for embeddings. Set OPENAI_API_KEY in .env"
                )
            client_kwargs: dict = {"api_key": self._api_key}
            if self.base_url:
                client_kwargs["base_url"] = self.base_url
            self._client = OpenAI(**client_kwargs)
            logger.info(
                "Initialized embedding client (model=%s, base_url=%s)",
                self.model,
                self.base_url or "https://api.openai.com/v1",
            )
        return self._client

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Embed `texts` synchronously, in sub-batches of `batch_size`.

        Returns embeddings in the SAME ORDER as the input texts.
        """
        if not texts:
            return []

        client = self._get_client()
        all_embeddings: list[list[float]] = [[] for _ in texts]

        for i in range(0, len(texts), self.batch_size):
            batch = list(texts[i : i + self.batch_size])
            logger.info(
                "Embedding batch %d-%d of %d texts (model=%s)",
                i + 1, min(i + self.batch_size, len(texts)), len(texts), self.model,
            )

            create_kwargs: dict = {"model": self.model, "input": batch}
            if self.dimensions:
                create_kwargs["dimensions"] = self.dimensions

            response = client.embeddings.create(**create_kwargs)

            # Items carry their index; place by index, not by arrival order
            for item in response.data:
                all_embeddings[i + item.index] = item.embedding

        return all_embeddings

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        return await asyncio.to_thread(self.embed_batch, list(texts))

    async def embed_query(self, text: str) -> list[float]:
        result = await self.embed([text])
        return result[0]
