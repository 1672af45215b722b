"""Ownership-proof scoring strategies."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Protocol

from campusmatch.config.settings import settings
from campusmatch.services.text_features import tokenize

STRONG_PROOF_KEYWORDS = frozenset(
    {
        "serial", "receipt", "photo", "scratch", "sticker", "custom", "engraved",
        "purchase", "bought", "gift", "unique", "marking", "damage", "dent",
        "inscription", "initials", "name", "label", "tag", "case", "cover",
    }
)

_IMAGE_URL_RE = re.compile(r"https?://\S+\.(?:jpe?g|png|gif|webp|heic)\b", re.IGNORECASE)

MAX_SINGLE_PROOF = 0.9


class ProofScorer(Protocol):
    def score(self, proofs: Iterable[str]) -> float:
        """Specificity of a claim's proofs in [0, 1]; monotonic in count and detail."""
        raise NotImplementedError


def _distinct(proofs: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for p in proofs:
        text = " ".join(str(p).split())
        key = text.lower()
        if text and key not in seen:
            seen.add(key)
            out.append(text)
    return out


@dataclass(frozen=True)
class KeywordProofScorer:
    """
    Per proof: length (saturating at good_length), strong-evidence keywords and
    linked photos. Proofs combine as 1 - prod(1 - p), so adding one never lowers
    the score.
    """

    min_length: int = settings.proof_min_length
    good_length: int = settings.proof_good_length
    keyword_step: float = 0.1
    keyword_cap: float = 0.4
    image_bonus: float = 0.1

    def score_one(self, proof: str) -> float:
        length = len(proof)
        length_part = 0.5 * min(length / self.good_length, 1.0)
        if length < self.min_length:
            length_part /= 2

        hits = len(set(tokenize(proof)) & STRONG_PROOF_KEYWORDS)
        keyword_part = min(self.keyword_step * hits, self.keyword_cap)

        image_part = self.image_bonus if _IMAGE_URL_RE.search(proof) else 0.0
        return min(MAX_SINGLE_PROOF, length_part + keyword_part + image_part)

    def score(self, proofs: Iterable[str]) -> float:
        remaining = 1.0
        for proof in _distinct(proofs):
            remaining *= 1.0 - self.score_one(proof)
        return 1.0 - remaining
