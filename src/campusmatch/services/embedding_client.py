"""Sentence-embedding client abstractions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

import httpx
import numpy as np

from campusmatch.config.settings import settings
from campusmatch.errors import CollaboratorUnavailable

logger = logging.getLogger(__name__)


class EmbeddingClient(Protocol):
    """Minimal interface for text embeddings."""

    def embed(self, text: str) -> Optional[list[float]]:
        """Return an embedding, or None when the text cannot be embedded."""
        raise NotImplementedError


@dataclass(frozen=True)
class NullEmbeddingClient:
    """No embeddings; text similarity runs on TF-IDF alone."""

    def embed(self, text: str) -> Optional[list[float]]:
        return None


@dataclass(frozen=True)
class StubEmbeddingClient:
    """Deterministic lookup table for tests."""

    vectors: dict = field(default_factory=dict)

    def embed(self, text: str) -> Optional[list[float]]:
        vec = self.vectors.get(text)
        return list(vec) if vec is not None else None


def _mean_pool(payload) -> list[float]:
    # feature-extraction returns [dim], [tokens][dim] or [1][tokens][dim]
    arr = np.asarray(payload, dtype=float)
    if arr.ndim == 3 and arr.shape[0] == 1:
        arr = arr[0]
    if arr.ndim == 2:
        arr = arr.mean(axis=0)
    if arr.ndim != 1 or arr.size == 0:
        raise ValueError(f"unexpected embedding shape {arr.shape}")
    return arr.tolist()


@dataclass
class HuggingFaceEmbeddingClient:
    """
    HuggingFace inference API feature-extraction client.

    `client` is injectable so tests never hit the network.
    """

    api_key: str
    model_name: str
    base_url: str = settings.embedding_base_url
    timeout_s: float = settings.embedding_timeout_s
    client: httpx.Client | None = None

    def embed(self, text: str) -> Optional[list[float]]:
        if not text or not text.strip():
            return None
        close_client = False
        client = self.client
        if client is None:
            client = httpx.Client(timeout=self.timeout_s)
            close_client = True
        try:
            r = client.post(
                f"{self.base_url.rstrip('/')}/{self.model_name}",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"inputs": text, "options": {"wait_for_model": True}},
            )
            r.raise_for_status()
            return _mean_pool(r.json())
        except (httpx.HTTPError, ValueError, TypeError, IndexError) as e:
            raise CollaboratorUnavailable("embeddings", str(e)) from e
        finally:
            if close_client:
                client.close()


def get_embedding_client() -> EmbeddingClient:
    """Factory for embedding clients based on settings."""
    provider = settings.embedding_provider.lower()
    if provider in ("none", ""):
        return NullEmbeddingClient()
    if provider == "huggingface":
        if not settings.huggingface_api_key:
            raise RuntimeError("CAMPUSMATCH_HUGGINGFACE_API_KEY is required for the huggingface provider.")
        return HuggingFaceEmbeddingClient(api_key=settings.huggingface_api_key, model_name=settings.embedding_model)
    raise ValueError(f"Unknown embedding provider: {settings.embedding_provider}")
