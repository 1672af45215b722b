"""Read-only matching and claims analytics."""

from __future__ import annotations

import json
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
from sqlalchemy.orm import Session

from campusmatch.config.settings import settings
from campusmatch.db.schema import AiMatch
from campusmatch.repos.claim_repo import ClaimRepository
from campusmatch.repos.config_repo import ConfigurationRepository
from campusmatch.repos.item_repo import ItemRepository
from campusmatch.repos.match_repo import MatchRepository
from campusmatch.services.matching import effective_decision

MATCH_STATUSES = ("pending", "accepted", "rejected", "overridden")
CLAIM_STATUSES = ("pending", "conflict", "approved", "rejected", "withdrawn")
REPEAT_OFFENDER_REJECTIONS = 3
MIN_DECIDED_FOR_ADVICE = 5


def _safe_div(num: float, denom: float) -> float:
    return num / denom if denom != 0 else 0.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    # stored timestamps are naive UTC
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def resolve_window(
    start: Optional[datetime],
    end: Optional[datetime],
    days: int = settings.analytics_window_days,
) -> Tuple[datetime, datetime]:
    end = _naive_utc(end) or utcnow()
    start = _naive_utc(start) or end - timedelta(days=days)
    return start, end


def latency_stats(latencies: List[float]) -> dict:
    if not latencies:
        return {"count": 0, "mean_ms": None, "p50_ms": None, "p95_ms": None}
    arr = np.asarray(latencies, dtype=float)
    return {
        "count": int(arr.size),
        "mean_ms": float(np.mean(arr)),
        "p50_ms": float(np.percentile(arr, 50)),
        "p95_ms": float(np.percentile(arr, 95)),
    }


def score_histogram(scores: List[float], bins: int = settings.histogram_bins) -> List[dict]:
    counts, edges = np.histogram(np.asarray(scores, dtype=float), bins=bins, range=(0.0, 1.0))
    return [
        {"lower": float(edges[i]), "upper": float(edges[i + 1]), "count": int(counts[i])}
        for i in range(len(counts))
    ]


def _bucket_stats(rows: List[AiMatch]) -> dict:
    decisions = Counter(effective_decision(r) for r in rows)
    decided = decisions["accepted"] + decisions["rejected"]
    return {
        "count": len(rows),
        "accepted": decisions["accepted"],
        "rejected": decisions["rejected"],
        "overridden": sum(1 for r in rows if r.status == "overridden"),
        "acceptance_rate": _safe_div(decisions["accepted"], decided),
        "avg_score": float(np.mean([r.similarity_score for r in rows])) if rows else None,
    }


def threshold_effectiveness(rows: List[AiMatch], auto_approve: float, partial_match: float, band: float) -> dict:
    """How matches near and between the thresholds were judged, with tuning advice."""
    near: Dict[str, dict] = {}
    for name, threshold in (("autoApprove", auto_approve), ("partialMatch", partial_match)):
        close = [r for r in rows if abs(r.similarity_score * 100.0 - threshold) <= band]
        near[name] = {
            "threshold": threshold,
            "within_band": len(close),
            "overridden": sum(1 for r in close if r.status == "overridden"),
        }

    above = [r for r in rows if r.similarity_score * 100.0 >= auto_approve]
    between = [r for r in rows if partial_match <= r.similarity_score * 100.0 < auto_approve]
    below = [r for r in rows if r.similarity_score * 100.0 < partial_match]
    buckets = {"above_auto": _bucket_stats(above), "between": _bucket_stats(between), "below_partial": _bucket_stats(below)}

    recommendations: List[str] = []
    a = buckets["above_auto"]
    if a["accepted"] + a["rejected"] >= MIN_DECIDED_FOR_ADVICE and a["acceptance_rate"] < 0.8:
        recommendations.append("Raise autoApprove: too many automatic matches are being rejected.")
    b = buckets["between"]
    if b["accepted"] + b["rejected"] >= MIN_DECIDED_FOR_ADVICE:
        if b["acceptance_rate"] > 0.8:
            recommendations.append("Lower autoApprove: most partial matches are confirmed on review.")
        elif b["acceptance_rate"] < 0.2:
            recommendations.append("Raise partialMatch: most partial matches are rejected on review.")
    if not recommendations:
        recommendations.append("Thresholds look balanced for the current window.")

    return {"near_thresholds": near, "buckets": buckets, "recommendations": recommendations}


class AnalyticsAggregator:
    """Aggregates over persisted matches and claims. Never writes."""

    def __init__(self, session: Session, band: float = settings.threshold_band, bins: int = settings.histogram_bins):
        self.session = session
        self.band = band
        self.bins = bins
        self.matches = MatchRepository(session)
        self.claims = ClaimRepository(session)
        self.items = ItemRepository(session)
        self.configs = ConfigurationRepository(session)

    def matching_report(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict:
        start, end = resolve_window(start, end)
        rows = self.matches.in_window(start, end)
        config = self.configs.active()

        status_counts = {s: 0 for s in MATCH_STATUSES}
        status_counts.update(Counter(r.status for r in rows))
        accepted, rejected = status_counts["accepted"], status_counts["rejected"]

        return {
            "window": {"start": start.isoformat(), "end": end.isoformat()},
            "config_version": config.version,
            "total_matches": len(rows),
            "status_counts": status_counts,
            "tier_counts": dict(Counter(r.tier for r in rows)),
            "acceptance_rate": _safe_div(accepted, accepted + rejected),
            "override_rate": _safe_div(status_counts["overridden"], len(rows)),
            "average_score": float(np.mean([r.similarity_score for r in rows])) if rows else None,
            "latency": latency_stats([r.scoring_latency_ms for r in rows if r.scoring_latency_ms is not None]),
            "score_histogram": score_histogram([r.similarity_score for r in rows], self.bins),
            "threshold_effectiveness": threshold_effectiveness(
                rows, config.thresholds.auto_approve, config.thresholds.partial_match, self.band
            ),
            "matches_per_day": self._per_day_counts(rows),
            "accuracy_over_time": self._daily_accuracy(rows),
            "category_stats": self._category_stats(rows),
        }

    @staticmethod
    def _per_day_counts(rows: List[AiMatch]) -> List[dict]:
        counts = Counter(r.generated_at.date().isoformat() for r in rows)
        return [{"date": d, "count": counts[d]} for d in sorted(counts)]

    @staticmethod
    def _daily_accuracy(rows: List[AiMatch]) -> List[dict]:
        by_day: Dict[str, Counter] = defaultdict(Counter)
        for r in rows:
            decision = effective_decision(r)
            if decision is not None:
                by_day[r.updated_at.date().isoformat()][decision] += 1
        out = []
        for day in sorted(by_day):
            c = by_day[day]
            decided = c["accepted"] + c["rejected"]
            out.append({"date": day, "decided": decided, "accuracy": _safe_div(c["accepted"], decided)})
        return out

    def _category_stats(self, rows: List[AiMatch]) -> List[dict]:
        groups: Dict[str, List[AiMatch]] = defaultdict(list)
        for r in rows:
            lost = self.items.find(r.lost_item_id)
            groups[(lost.category if lost and lost.category else "uncategorized")].append(r)
        out = []
        for category in sorted(groups):
            stats = _bucket_stats(groups[category])
            stats["category"] = category
            out.append(stats)
        return out

    def claims_report(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict:
        """Fraud-oriented view of claims submitted in the window."""
        start, end = resolve_window(start, end)
        rows = self.claims.in_window(start, end)

        status_counts = {s: 0 for s in CLAIM_STATUSES}
        status_counts.update(Counter(c.status for c in rows))

        reasons: Counter = Counter()
        for c in rows:
            try:
                reasons.update(json.loads(c.suspicion_reasons_json or "[]"))
            except json.JSONDecodeError:
                continue

        rejections = Counter(c.claimant_id for c in rows if c.status == "rejected")
        offenders = [
            {"claimant_id": claimant, "rejected_claims": n}
            for claimant, n in sorted(rejections.items(), key=lambda kv: (-kv[1], kv[0]))
            if n >= REPEAT_OFFENDER_REJECTIONS
        ]
        suspicious = [c for c in rows if c.is_suspicious or c.ever_suspicious]

        return {
            "window": {"start": start.isoformat(), "end": end.isoformat()},
            "total_claims": len(rows),
            "status_counts": status_counts,
            "contested_items": len({c.item_id for c in rows if c.status == "conflict"}),
            "suspicious_claims": len(suspicious),
            "suspicious_rate": _safe_div(len(suspicious), len(rows)),
            "flags_by_type": dict(sorted(reasons.items())),
            "repeat_offenders": offenders,
            "average_proof_score": float(np.mean([c.proof_score for c in rows])) if rows else None,
        }


def plot_score_histogram(histogram: List[dict], out_path: Path) -> None:
    """Bar chart of a `score_histogram` result."""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    lefts = [b["lower"] for b in histogram]
    widths = [b["upper"] - b["lower"] for b in histogram]
    heights = [b["count"] for b in histogram]
    plt.figure(figsize=(5, 3))
    plt.bar(lefts, heights, width=widths, align="edge", edgecolor="black")
    plt.xlabel("Similarity score")
    plt.ylabel("Matches")
    plt.title("Match score distribution")
    plt.xlim(0, 1)
    plt.tight_layout()
    plt.savefig(out_path)
    plt.close()
