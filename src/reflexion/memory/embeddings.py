"""Embedding providers for episodic memory."""

from typing import Optional, Protocol
import hashlib
import logging
import re

import httpx
import numpy as np

from ..config import EmbeddingConfig, config

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"\w+", re.UNICODE)


class EmbeddingProvider(Protocol):
    """Anything that can turn text into a vector."""

    async def embed(self, text: str) -> list[float]:
        ...


def cosine_similarity(vec1, vec2) -> float:
    """Cosine similarity in [-1, 1]; 0.0 when either vector is zero."""
    a = np.asarray(vec1, dtype=float)
    b = np.asarray(vec2, dtype=float)
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0
    return float(np.dot(a, b) / norm)


def cosine_distance(vec1, vec2) -> float:
    return 1.0 - cosine_similarity(vec1, vec2)


class HashingEmbeddingProvider:
    """
    Deterministic bag-of-words embedding via feature hashing.

    Needs no model or network, so it is the default and what tests use.
    Texts sharing more words land closer together; identical texts embed
    identically.
    """

    def __init__(self, dimension: int = 256):
        if dimension <= 0:
            raise ValueError(f"Embedding dimension must be positive, got {dimension}")
        self.dimension = dimension

    async def embed(self, text: str) -> list[float]:
        vec = np.zeros(self.dimension, dtype=float)
        for token in _TOKEN.findall(text.lower()):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            index = int.from_bytes(digest[:4], "little") % self.dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vec[index] += sign

        norm = np.linalg.norm(vec)
        if norm > 0:
            vec /= norm
        return vec.tolist()


class HttpEmbeddingProvider:
    """Client for an OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "text-embedding-3-small",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
    ):
        if not api_key:
            raise ValueError(
                "Embedding API key required. Set EMBEDDING_API_KEY environment variable."
            )
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def embed(self, text: str) -> list[float]:
        response = await self.client.post(
            f"{self.base_url}/embeddings",
            headers=self._headers(),
            json={"model": self.model, "input": text},
        )
        response.raise_for_status()
        data = response.json()
        return data["data"][0]["embedding"]

    async def aclose(self) -> None:
        await self.client.aclose()


def create_embedding_provider(settings: Optional[EmbeddingConfig] = None) -> EmbeddingProvider:
    """Build the provider named in config."""
    settings = settings or config.embeddings
    if settings.provider == "http":
        logger.info("Using HTTP embedding provider: %s", settings.model)
        return HttpEmbeddingProvider(
            api_key=settings.api_key,
            model=settings.model,
            base_url=settings.base_url,
        )
    if settings.provider == "hashing":
        return HashingEmbeddingProvider(dimension=settings.dimension)
    raise ValueError(f"Unknown embedding provider: {settings.provider}")
