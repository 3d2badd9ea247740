"""
Fusion and reranking of keyword + semantic candidate lists.

Pipeline (see :func:`rerank`):
1. Fuse the two lists (weighted score fusion or Reciprocal Rank Fusion)
2. Time decay, bounded to at most 20% of the fused score
3. Additive authority boost keyed by source, channel and author role
4. Optional diversity penalty for near-duplicate titles
5. Stable sort by final score; ties keep first-appearance order
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Literal, Sequence

logger = logging.getLogger("enclave.retrieval.fusion")

RRF_K = 60


@dataclass(frozen=True)
class Candidate:
    """One entry of a ranked candidate list."""
    id: str
    score: float = 0.0
    title: str = ""
    text: str = ""
    ts: datetime | None = None
    source: str | None = None
    channel: str | None = None
    role: str | None = None
    type: str | None = None
    url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RankedResult:
    """A candidate carried through every scoring stage."""
    candidate: Candidate
    original_score: float
    fused_score: float
    ranks: tuple[int, ...] = ()
    rrf_score: float = 0.0
    time_decay: float = 0.0
    boosted_score: float = 0.0
    authority_boost: float = 0.0
    diversity_penalty: float = 0.0
    final_score: float = 0.0
    keyword_score: float | None = None
    vector_score: float | None = None

    @property
    def id(self) -> str:
        return self.candidate.id


@dataclass(frozen=True)
class AuthorityConfig:
    roles: dict[str, float]
    channels: dict[str, float]
    sources: dict[str, float]


DEFAULT_AUTHORITY = AuthorityConfig(
    roles={
        "president": 0.15,
        "vp-professional": 0.12,
        "vp-social": 0.12,
        "vp-finance": 0.12,
        "secretary": 0.10,
        "officer": 0.08,
        "active": 0.05,
        "pledge": 0.02,
    },
    channels={
        "announcements": 0.10,
        "general": 0.05,
        "officers": 0.08,
        "random": 0.0,
    },
    sources={
        "gdoc": 0.10,
        "upload": 0.08,
        "gcal": 0.12,
        "slack": 0.03,
    },
)


@dataclass(frozen=True)
class RerankOptions:
    method: Literal["weighted", "rrf"] = "weighted"
    keyword_weight: float = 0.4
    vector_weight: float = 0.6
    half_life_days: float = 90.0
    authority: AuthorityConfig = DEFAULT_AUTHORITY
    diversity: bool = False
    diversity_threshold: float = 0.9
    now: datetime | None = None


# ── Fusion ───────────────────────────────────────────────

def reciprocal_rank_fusion(
    lists: Sequence[Sequence[Candidate]], k: int = RRF_K
) -> list[RankedResult]:
    """``rrf = sum(1 / (k + rank))`` over the lists a candidate appears in.

    ``fused = 0.6 * original + 0.4 * rrf`` where ``original`` is the
    candidate's score in the first list it appears in.  Output is sorted
    by fused score, ties in first-appearance order.
    """
    order: list[str] = []
    first: dict[str, Candidate] = {}
    rrf: dict[str, float] = {}
    ranks: dict[str, list[int]] = {}

    for ranked in lists:
        for rank, cand in enumerate(ranked, start=1):
            if cand.id not in first:
                order.append(cand.id)
                first[cand.id] = cand
                rrf[cand.id] = 0.0
                ranks[cand.id] = []
            rrf[cand.id] += 1.0 / (k + rank)
            ranks[cand.id].append(rank)

    results = [
        RankedResult(
            candidate=first[cid],
            original_score=first[cid].score,
            fused_score=0.6 * first[cid].score + 0.4 * rrf[cid],
            ranks=tuple(ranks[cid]),
            rrf_score=rrf[cid],
        )
        for cid in order
    ]
    return sorted(results, key=lambda r: r.fused_score, reverse=True)


def _normalized(cands: Sequence[Candidate]) -> dict[str, float]:
    divisor = max([c.score for c in cands] + [1.0])
    return {c.id: c.score / divisor for c in cands}


def weighted_fusion(
    keyword: Sequence[Candidate],
    vector: Sequence[Candidate],
    keyword_weight: float = 0.4,
    vector_weight: float = 0.6,
) -> list[RankedResult]:
    """Normalize each list by its max (divisor floored at 1) and blend.

    A candidate present in only one list gets only that list's term.
    """
    kw_norm = _normalized(keyword)
    vec_norm = _normalized(vector)

    order: list[str] = []
    first: dict[str, Candidate] = {}
    for cand in [*keyword, *vector]:
        if cand.id not in first:
            order.append(cand.id)
            first[cand.id] = cand

    results = []
    for cid in order:
        fused = keyword_weight * kw_norm.get(cid, 0.0) + vector_weight * vec_norm.get(cid, 0.0)
        results.append(
            RankedResult(
                candidate=first[cid],
                original_score=first[cid].score,
                fused_score=fused,
            )
        )
    return sorted(results, key=lambda r: r.fused_score, reverse=True)


# ── Boosts & penalties ───────────────────────────────────

def apply_time_decay(
    results: Sequence[RankedResult],
    now: datetime,
    half_life_days: float = 90.0,
) -> list[RankedResult]:
    """``boosted = fused * (0.8 + 0.2 * exp(-age_days / half_life))``.

    Future timestamps count as age 0; a missing timestamp gets no recency
    credit (decay 0).
    """
    out = []
    for r in results:
        ts = r.candidate.ts
        if ts is None:
            decay = 0.0
        else:
            if ts.tzinfo is None and now.tzinfo is not None:
                ts = ts.replace(tzinfo=now.tzinfo)
            age_days = max(0.0, (now - ts).total_seconds() / 86400.0)
            decay = math.exp(-age_days / half_life_days)
        out.append(
            replace(r, time_decay=decay, boosted_score=r.fused_score * (0.8 + 0.2 * decay))
        )
    return out


def authority_boost(cand: Candidate, config: AuthorityConfig = DEFAULT_AUTHORITY) -> float:
    boost = 0.0
    if cand.source:
        boost += config.sources.get(cand.source, 0.0)
    if cand.channel:
        boost += config.channels.get(cand.channel, 0.0)
    if cand.role:
        boost += config.roles.get(cand.role, 0.0)
    return boost


def apply_authority(
    results: Sequence[RankedResult], config: AuthorityConfig = DEFAULT_AUTHORITY
) -> list[RankedResult]:
    out = []
    for r in results:
        boost = authority_boost(r.candidate, config)
        out.append(replace(r, authority_boost=boost, final_score=r.boosted_score + boost))
    return out


def _title_words(title: str) -> set[str]:
    return set(title.lower().split())


def title_similarity(a: str, b: str) -> float:
    wa, wb = _title_words(a), _title_words(b)
    union = wa | wb
    if not union:
        return 0.0
    return len(wa & wb) / len(union)


def apply_diversity_penalty(
    results: Sequence[RankedResult], threshold: float = 0.9
) -> list[RankedResult]:
    """Subtract 0.1 for every earlier title this one overlaps by more than *threshold*."""
    seen: list[str] = []
    out = []
    for r in results:
        title = r.candidate.title
        penalty = 0.1 * sum(1 for prev in seen if title_similarity(title, prev) > threshold)
        seen.append(title)
        out.append(replace(r, diversity_penalty=penalty, final_score=r.final_score - penalty))
    return out


def attach_list_scores(
    results: Sequence[RankedResult],
    keyword: Sequence[Candidate],
    vector: Sequence[Candidate],
) -> list[RankedResult]:
    """Record each candidate's normalized score in the keyword and vector lists.

    A candidate absent from a list keeps None for that list.
    """
    kw_norm = _normalized(keyword)
    vec_norm = _normalized(vector)
    return [
        replace(r, keyword_score=kw_norm.get(r.id), vector_score=vec_norm.get(r.id))
        for r in results
    ]


# ── Full pipeline ────────────────────────────────────────

def rerank(
    keyword: Sequence[Candidate],
    vector: Sequence[Candidate],
    options: RerankOptions | None = None,
) -> list[RankedResult]:
    opts = options or RerankOptions()
    now = opts.now or datetime.now().astimezone()

    if opts.method == "rrf":
        results = reciprocal_rank_fusion([keyword, vector])
    else:
        results = weighted_fusion(keyword, vector, opts.keyword_weight, opts.vector_weight)
    results = attach_list_scores(results, keyword, vector)

    results = apply_time_decay(results, now, opts.half_life_days)
    results = apply_authority(results, opts.authority)
    if opts.diversity:
        results = apply_diversity_penalty(results, opts.diversity_threshold)

    ranked = sorted(results, key=lambda r: r.final_score, reverse=True)

    if ranked:
        logger.info(
            "Reranked %d keyword + %d vector -> %d (top=%s final=%.3f)",
            len(keyword), len(vector), len(ranked), ranked[0].id, ranked[0].final_score,
        )
    return ranked
