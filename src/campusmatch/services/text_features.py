"""Text feature helpers."""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence

import numpy as np
from sklearn.feature_extraction.text import ENGLISH_STOP_WORDS
from sklearn.metrics.pairwise import cosine_similarity

_TOKEN_RE = re.compile(r"[A-Za-z0-9]+")

# words every report contains; they carry no signal about the object itself
DOMAIN_STOP_WORDS = frozenset({"lost", "found", "item", "please", "help", "looking", "find"})

STOP_WORDS = frozenset(ENGLISH_STOP_WORDS) | DOMAIN_STOP_WORDS

COLOR_FAMILIES = {
    "blue": {"blue", "navy", "azure", "cyan", "teal", "turquoise"},
    "red": {"red", "crimson", "scarlet", "maroon", "burgundy"},
    "green": {"green", "olive", "lime", "emerald", "mint"},
    "black": {"black", "charcoal", "ebony"},
    "white": {"white", "ivory", "cream", "beige", "off-white"},
    "brown": {"brown", "tan", "khaki", "chocolate", "bronze"},
    "gray": {"gray", "grey", "silver", "slate"},
    "pink": {"pink", "rose", "magenta", "fuchsia"},
    "purple": {"purple", "violet", "lavender", "lilac"},
    "orange": {"orange", "coral", "peach"},
    "yellow": {"yellow", "gold", "golden", "amber", "mustard"},
}


def normalize(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def tokenize(text: str) -> List[str]:
    return [m.group(0).lower() for m in _TOKEN_RE.finditer(text or "")]


def keywords(text: str) -> List[str]:
    return [t for t in tokenize(text) if t not in STOP_WORDS and len(t) > 2]


def jaccard_similarity(a_tokens: Iterable[str], b_tokens: Iterable[str]) -> float:
    a_set = set(a_tokens)
    b_set = set(b_tokens)
    if not a_set and not b_set:
        return 0.0
    return len(a_set & b_set) / len(a_set | b_set)


def color_family(color: Optional[str]) -> Optional[str]:
    c = normalize(color)
    if not c:
        return None
    for family, members in COLOR_FAMILIES.items():
        if c in members or any(m in c for m in members):
            return family
    return None


def categories_related(a: Optional[str], b: Optional[str]) -> bool:
    a, b = normalize(a), normalize(b)
    return bool(a and b and a != b and (a in b or b in a))


def vector_cosine(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of two dense vectors clamped to [0, 1]; 0 when either is empty, zero or of another length."""
    va = np.asarray(a, dtype=float).ravel()
    vb = np.asarray(b, dtype=float).ravel()
    if va.size == 0 or va.shape != vb.shape or not va.any() or not vb.any():
        return 0.0
    value = float(cosine_similarity(va.reshape(1, -1), vb.reshape(1, -1))[0][0])
    return max(0.0, min(1.0, value))
