"""
Embedding Generation
====================

Turns text into vectors so turns and experiences can be searched by
meaning rather than by exact words.

    "What is 12 * 7?"           → [0.02, -0.15, 0.89, ...]
    "Calculate twelve times 7"  → [0.03, -0.14, 0.87, ...]

Anything with an async `embed(text)` method satisfies the Embedder
protocol; EmbeddingGenerator is the OpenAI-backed implementation.

Caching:
    Embeddings are cached by content hash so a repeated query (the same
    failure text clustered twice, say) costs one API call.
"""

import hashlib
from typing import Protocol, Sequence, runtime_checkable

from openai import AsyncOpenAI

from learnloop.utils.logger import Logger

logger = Logger("Embeddings")


@runtime_checkable
class Embedder(Protocol):
    """Anything that can embed a text."""

    async def embed(self, text: str) -> list[float]: ...


class EmbeddingGenerator:
    """
    Generates text embeddings using OpenAI's API.

    Example:
        generator = EmbeddingGenerator(api_key="sk-...")

        vector = await generator.embed("How do I use this feature?")
        vectors = await generator.embed_batch(["first", "second"])
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "text-embedding-3-small",
        base_url: str | None = None,
        client: AsyncOpenAI | None = None
    ):
        """
        Args:
            api_key: OpenAI API key (not needed when a client is given)
            model: Embedding model to use
            base_url: Optional OpenAI-compatible endpoint
            client: Pre-built client, mostly for tests

        Raises:
            ValueError: If neither a client nor an API key is provided
        """
        if client is None:
            if not api_key:
                raise ValueError(
                    "Missing OpenAI API key for embeddings.\n"
                    "Please set OPENAI_API_KEY in your .env file."
                )
            client = AsyncOpenAI(api_key=api_key, base_url=base_url)

        self.client = client
        self.model = model
        self._cache: dict[str, list[float]] = {}

        logger.info(f"Embedding generator initialized with model: {model}")

    def _hash_text(self, text: str) -> str:
        return hashlib.md5(text.encode()).hexdigest()

    async def embed(self, text: str) -> list[float]:
        """
        Embed a single text.

        Raises:
            ValueError: If the text is empty
        """
        if not text.strip():
            raise ValueError("Cannot embed empty text")

        cache_key = self._hash_text(text)
        if cache_key in self._cache:
            logger.debug("Embedding cache hit")
            return self._cache[cache_key]

        response = await self.client.embeddings.create(
            model=self.model,
            input=text
        )
        embedding = response.data[0].embedding
        self._cache[cache_key] = embedding

        logger.debug(f"Generated embedding (dim={len(embedding)})")
        return embedding

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed several texts with one API call for the uncached ones."""
        if not texts:
            return []

        results: list[list[float] | None] = []
        pending: list[tuple[int, str]] = []

        for i, text in enumerate(texts):
            cached = self._cache.get(self._hash_text(text))
            results.append(cached)
            if cached is None:
                pending.append((i, text))

        if pending:
            logger.debug(f"Generating {len(pending)} embeddings (batch)")
            response = await self.client.embeddings.create(
                model=self.model,
                input=[text for _, text in pending]
            )
            for (index, text), item in zip(pending, response.data):
                results[index] = item.embedding
                self._cache[self._hash_text(text)] = item.embedding

        return [r for r in results if r is not None]

    def clear_cache(self) -> None:
        self._cache.clear()

    def get_cache_size(self) -> int:
        return len(self._cache)
