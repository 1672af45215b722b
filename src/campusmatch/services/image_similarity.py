"""Image similarity collaborator and its timeout-bounded wrapper."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from campusmatch.config.settings import settings
from campusmatch.errors import CollaboratorUnavailable
from campusmatch.models.domain import ItemView
from campusmatch.services.text_features import jaccard_similarity, vector_cosine

logger = logging.getLogger(__name__)

EMBEDDING_SHARE = 0.6
OBJECT_SHARE = 0.4


class ImageSimilarityClient(Protocol):
    def score_images(self, a: ItemView, b: ItemView) -> Optional[float]:
        """Similarity in [0, 1], or None when either side has nothing to compare."""
        raise NotImplementedError


@dataclass(frozen=True)
class NullImageSimilarity:
    def score_images(self, a: ItemView, b: ItemView) -> Optional[float]:
        return None


@dataclass(frozen=True)
class PrecomputedImageSimilarity:
    """
    Uses the embeddings and object labels the detector already stored on each item.
    """

    def score_images(self, a: ItemView, b: ItemView) -> Optional[float]:
        has_emb = bool(a.image_embedding) and bool(b.image_embedding)
        has_obj = bool(a.detected_objects) and bool(b.detected_objects)
        if not has_emb and not has_obj:
            return None
        score = 0.0
        if has_emb:
            score += EMBEDDING_SHARE * vector_cosine(a.image_embedding, b.image_embedding)
        if has_obj:
            objs_a = [str(o).lower() for o in a.detected_objects]
            objs_b = [str(o).lower() for o in b.detected_objects]
            score += OBJECT_SHARE * jaccard_similarity(objs_a, objs_b)
        return max(0.0, min(1.0, score))


@dataclass
class HttpImageSimilarityClient:
    """Remote image comparison service: POST {a: urls, b: urls} -> {"score": float|null}."""

    base_url: str
    timeout_s: float = settings.image_timeout_s
    client: httpx.Client | None = None

    def score_images(self, a: ItemView, b: ItemView) -> Optional[float]:
        if not a.image_urls or not b.image_urls:
            return None
        close_client = False
        client = self.client
        if client is None:
            client = httpx.Client(timeout=self.timeout_s)
            close_client = True
        try:
            r = client.post(
                f"{self.base_url.rstrip('/')}/compare",
                json={"a": list(a.image_urls), "b": list(b.image_urls)},
            )
            r.raise_for_status()
            value = r.json().get("score")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            raise CollaboratorUnavailable("image similarity", str(e)) from e
        finally:
            if close_client:
                client.close()
        return None if value is None else float(value)


def get_image_client() -> ImageSimilarityClient:
    """Factory for the image collaborator based on settings."""
    provider = settings.image_provider.lower()
    if provider == "precomputed":
        return PrecomputedImageSimilarity()
    if provider == "none":
        return NullImageSimilarity()
    if provider == "http":
        if not settings.image_service_url:
            raise RuntimeError("CAMPUSMATCH_IMAGE_SERVICE_URL is required for the http image provider.")
        return HttpImageSimilarityClient(base_url=settings.image_service_url)
    raise ValueError(f"Unknown image provider: {settings.image_provider}")


class BoundedImageScorer:
    """
    Calls the collaborator on a small executor and gives up after `timeout_s`.

    Returns (score, degraded). Timeouts, failures and None all score 0.
    """

    def __init__(
        self,
        client: ImageSimilarityClient,
        timeout_s: float = settings.image_timeout_s,
        max_workers: int = 4,
    ) -> None:
        self.client = client
        self.timeout_s = timeout_s
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="image-sim")

    def score(self, a: ItemView, b: ItemView) -> tuple[float, bool]:
        future = self._executor.submit(self.client.score_images, a, b)
        try:
            value = future.result(timeout=self.timeout_s)
        except FutureTimeout:
            future.cancel()
            logger.warning("image similarity timed out after %.1fs (%s, %s)", self.timeout_s, a.item_id, b.item_id)
            return 0.0, True
        except Exception as e:
            logger.warning("image similarity failed for (%s, %s): %s", a.item_id, b.item_id, e)
            return 0.0, True
        if value is None:
            return 0.0, True
        return max(0.0, min(1.0, float(value))), False

    def close(self) -> None:
        self._executor.shutdown(wait=False)
