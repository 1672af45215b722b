"""
TF-IDF text similarity between two item reports.

The vectorizer is fitted over the descriptions of active items and refitted only
when that corpus changes. Scoring threads share the fitted model read-only.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from functools import lru_cache
from typing import Iterable, Optional

from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import cosine_similarity

from campusmatch.config.settings import settings
from campusmatch.errors import CollaboratorUnavailable
from campusmatch.models.domain import ItemView
from campusmatch.services.embedding_client import EmbeddingClient, NullEmbeddingClient
from campusmatch.services.text_features import (
    STOP_WORDS,
    categories_related,
    color_family,
    jaccard_similarity,
    keywords,
    normalize,
    vector_cosine,
)

logger = logging.getLogger(__name__)


def corpus_fingerprint(docs: Iterable[str]) -> str:
    h = hashlib.sha1()
    for doc in sorted(docs):
        h.update(doc.encode("utf-8"))
        h.update(b"\x00")
    return h.hexdigest()


def _new_vectorizer() -> TfidfVectorizer:
    return TfidfVectorizer(stop_words=sorted(STOP_WORDS), lowercase=True)


def quick_text_score(a: str, b: str) -> float:
    """Keyword overlap; cheap enough for suggestion lists."""
    return jaccard_similarity(keywords(a), keywords(b))


class TextSimilarityScorer:
    def __init__(
        self,
        embedding_client: Optional[EmbeddingClient] = None,
        category_bonus: float = settings.category_bonus,
        color_bonus: float = settings.color_bonus,
        material_bonus: float = settings.material_bonus,
        embedding_mix: float = settings.embedding_mix,
        embedding_cache_size: int = settings.embedding_cache_size,
    ) -> None:
        self.embedding_client = embedding_client or NullEmbeddingClient()
        self.category_bonus = category_bonus
        self.color_bonus = color_bonus
        self.material_bonus = material_bonus
        self.embedding_mix = embedding_mix
        self._lock = threading.Lock()
        self._fingerprint: Optional[str] = None
        self._vectorizer: Optional[TfidfVectorizer] = None
        # a subject is compared with every candidate; embed each description once
        self._embed = lru_cache(maxsize=embedding_cache_size)(self._embed_uncached)

    @property
    def fingerprint(self) -> Optional[str]:
        return self._fingerprint

    def refresh(self, corpus: Iterable[str]) -> bool:
        """Refit on `corpus` if it differs from the last fit. Returns True when refitted."""
        docs = [d for d in corpus if d and d.strip()]
        fp = corpus_fingerprint(docs)
        with self._lock:
            if fp == self._fingerprint:
                return False
            vectorizer: Optional[TfidfVectorizer] = _new_vectorizer()
            try:
                vectorizer.fit(docs)
            except ValueError:
                # empty corpus or nothing but stop words
                vectorizer = None
            self._vectorizer = vectorizer
            self._fingerprint = fp
        logger.info("text model refitted on %d descriptions", len(docs))
        return True

    def description_similarity(self, a: str, b: str) -> float:
        """Cosine similarity of TF-IDF vectors in [0, 1]; 0 for empty text."""
        if not (a and a.strip()) or not (b and b.strip()):
            return 0.0

        vectorizer = self._vectorizer
        if vectorizer is not None:
            vecs = vectorizer.transform([a, b])
            if vecs[0].nnz and vecs[1].nnz:
                return self._cosine(vecs)

        # terms unseen by the corpus fit: compare the pair on its own vocabulary
        local = _new_vectorizer()
        try:
            vecs = local.fit_transform([a, b])
        except ValueError:
            return 0.0
        if not vecs[0].nnz or not vecs[1].nnz:
            return 0.0
        return self._cosine(vecs)

    @staticmethod
    def _cosine(vecs) -> float:
        value = float(cosine_similarity(vecs[0], vecs[1])[0][0])
        return max(0.0, min(1.0, value))

    def _embed_uncached(self, text: str) -> Optional[tuple]:
        vec = self.embedding_client.embed(text)
        return tuple(vec) if vec else None

    def _embedding_similarity(self, a: str, b: str) -> Optional[float]:
        try:
            ea = self._embed(a)
            eb = self._embed(b)
        except CollaboratorUnavailable as e:
            logger.warning("embedding collaborator degraded: %s", e)
            return None
        if not ea or not eb:
            return None
        return vector_cosine(ea, eb)

    def attribute_bonus(self, lost: ItemView, found: ItemView) -> float:
        bonus = 0.0

        cat_a, cat_b = normalize(lost.category), normalize(found.category)
        if cat_a and cat_a == cat_b:
            bonus += self.category_bonus
        elif categories_related(cat_a, cat_b):
            bonus += self.category_bonus / 2

        col_a, col_b = normalize(lost.color), normalize(found.color)
        if col_a and col_a == col_b:
            bonus += self.color_bonus
        elif col_a and col_b and color_family(col_a) and color_family(col_a) == color_family(col_b):
            bonus += self.color_bonus / 2

        mat_a, mat_b = normalize(lost.material), normalize(found.material)
        if mat_a and mat_a == mat_b:
            bonus += self.material_bonus

        return bonus

    def score(self, lost: ItemView, found: ItemView) -> float:
        if not lost.description.strip() or not found.description.strip():
            return 0.0

        base = self.description_similarity(lost.description, found.description)
        emb = self._embedding_similarity(lost.description, found.description)
        if emb is not None:
            base = (1 - self.embedding_mix) * base + self.embedding_mix * emb

        return max(0.0, min(1.0, base + self.attribute_bonus(lost, found)))
