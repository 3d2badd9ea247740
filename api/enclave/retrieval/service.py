"""Resource search — RESOURCE-scope evidence from the organization's documents.

The search service returns two independently ranked candidate lists
(keyword and vector) per workspace.  They are fused with
:mod:`enclave.retrieval.fusion`, de-duplicated across workspaces and
mapped to scored :class:`EvidenceUnit` objects.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence

import httpx

from enclave.core.cache import TTLCache
from enclave.core.config import ENCLAVE_SEARCH_URL, ENCLAVE_WORKSPACE_IDS
from enclave.core.errors import RetrievalError
from enclave.orchestrator.models import EvidenceScores, EvidenceUnit, Scope
from enclave.retrieval.fusion import Candidate, RankedResult, RerankOptions, rerank

logger = logging.getLogger("enclave.retrieval.service")

_SNIPPET_CHARS = 500


@dataclass
class SearchLists:
    keyword: list[Candidate] = field(default_factory=list)
    vector: list[Candidate] = field(default_factory=list)


# ── Scoring helpers ──────────────────────────────────────

def clamp_score(value: Any, fallback: float = 0.6) -> float:
    if not isinstance(value, (int, float)) or value != value:
        return fallback
    return min(1.0, max(0.0, float(value)))


def freshness_score(ts: datetime | None, now: datetime) -> float:
    """Step-wise recency: a day, a week, a month, a quarter, older."""
    if ts is None:
        return 0.6
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    days = (now - ts).total_seconds() / 86400.0
    if days <= 1:
        return 1.0
    if days <= 7:
        return 0.85
    if days <= 30:
        return 0.7
    if days <= 90:
        return 0.5
    return 0.35


def role_match_score(resource_type: str | None) -> float:
    if not resource_type:
        return 0.6
    kind = resource_type.lower()
    if "policy" in kind or "guideline" in kind:
        return 0.9
    if "event" in kind or "calendar" in kind:
        return 0.8
    if "announcement" in kind or "doc" in kind:
        return 0.75
    return 0.6


def _parse_ts(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def candidate_from_json(item: dict[str, Any]) -> Candidate:
    meta = item.get("metadata") or {}
    return Candidate(
        id=str(item.get("id") or meta.get("chunk_id") or item.get("url") or item.get("title", "")),
        score=float(item.get("score") or 0.0),
        title=(item.get("title") or "").strip(),
        text=item.get("body") or item.get("text") or "",
        ts=_parse_ts(item.get("updated_at") or item.get("created_at")),
        source=item.get("source"),
        channel=meta.get("channel_name") or item.get("channel"),
        role=item.get("author_role") or meta.get("author_role"),
        type=item.get("type"),
        url=item.get("url"),
        metadata=meta,
    )


def evidence_text(cand: Candidate) -> str:
    body = re.sub(r"\s+", " ", cand.text).strip()
    snippet = f"{body[:_SNIPPET_CHARS]}..." if len(body) > _SNIPPET_CHARS else body
    headings = [h for h in cand.metadata.get("heading_path", []) if isinstance(h, str)]

    lines = []
    if cand.title:
        lines.append(f"Title: {cand.title}")
    if headings:
        lines.append(f"Section: {' > '.join(headings)}")
    if snippet:
        lines.append(snippet)
    if cand.url:
        lines.append(f"Link: {cand.url}")
    if not lines and cand.type:
        lines.append(f"Resource type: {cand.type}")
    return "\n\n".join(lines)


def to_evidence(result: RankedResult, now: datetime) -> EvidenceUnit:
    """Score a ranked hit from its own list scores.

    Recency is scored only through ``freshness``; the decayed fusion score
    orders results but does not feed ``semantic``.
    """
    cand = result.candidate
    list_score = result.vector_score if result.vector_score is not None else result.keyword_score
    semantic = clamp_score(list_score, 0.65)
    return EvidenceUnit(
        scope=Scope.RESOURCE,
        source_id=cand.id,
        text=evidence_text(cand),
        ts=cand.ts,
        acl_ok=True,
        scores=EvidenceScores(
            semantic=semantic,
            keyword=clamp_score(result.keyword_score, semantic),
            freshness=freshness_score(cand.ts, now),
            role_match=role_match_score(cand.type),
        ),
    )


# ── Search client ────────────────────────────────────────

class HttpResourceSearch:
    """Client for the external hybrid search endpoint."""

    def __init__(
        self,
        base_url: str = ENCLAVE_SEARCH_URL,
        *,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def search(self, query: str, workspace_id: str, limit: int = 10) -> SearchLists:
        if not self.base_url:
            return SearchLists()
        body = {"query": query, "workspace_id": workspace_id, "limit": limit}
        try:
            if self._client is not None:
                r = await self._client.post(f"{self.base_url}/search", json=body)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    r = await client.post(f"{self.base_url}/search", json=body)
            r.raise_for_status()
            data = r.json()
        except httpx.HTTPError as exc:
            raise RetrievalError("RESOURCE", f"search HTTP error: {exc}") from exc
        except ValueError as exc:
            raise RetrievalError("RESOURCE", f"search returned invalid JSON: {exc}") from exc

        return SearchLists(
            keyword=[candidate_from_json(i) for i in data.get("keyword", []) if isinstance(i, dict)],
            vector=[candidate_from_json(i) for i in data.get("vector", []) if isinstance(i, dict)],
        )


class ResourceRetriever:
    """Search every candidate workspace, fuse, de-duplicate and cap to *k*."""

    def __init__(
        self,
        search,
        *,
        cache: TTLCache | None = None,
        workspace_ids: Sequence[str] = tuple(ENCLAVE_WORKSPACE_IDS),
        options: RerankOptions | None = None,
    ) -> None:
        self.search = search
        self.cache = cache
        self.workspace_ids = tuple(workspace_ids)
        self.options = options or RerankOptions()

    async def _ranked(self, query: str, workspace_id: str, limit: int) -> list[RankedResult]:
        key = (workspace_id, query.strip().lower(), limit)
        if self.cache is not None:
            hit = self.cache.get(key)
            if hit is not None:
                return hit
        lists = await self.search.search(query, workspace_id, limit)
        ranked = rerank(lists.keyword, lists.vector, self.options)
        if self.cache is not None:
            self.cache.set(key, ranked)
        return ranked

    async def retrieve(
        self,
        query: str,
        k: int,
        *,
        now: datetime,
        workspace_id: str | None = None,
    ) -> list[EvidenceUnit]:
        if k <= 0:
            return []
        spaces = list(dict.fromkeys([workspace_id] if workspace_id else self.workspace_ids))
        if not spaces:
            return []

        limit = max(k * 2, 5)
        outcomes = await asyncio.gather(
            *(self._ranked(query, space, limit) for space in spaces),
            return_exceptions=True,
        )

        best: dict[str, RankedResult] = {}
        order: list[str] = []
        failures = 0
        for space, outcome in zip(spaces, outcomes):
            if isinstance(outcome, BaseException):
                failures += 1
                logger.warning("Resource search failed for workspace %s: %s", space, outcome)
                continue
            for r in outcome:
                if r.id not in best:
                    order.append(r.id)
                    best[r.id] = r
                elif r.final_score > best[r.id].final_score:
                    best[r.id] = r
        if failures == len(spaces):
            raise RetrievalError("RESOURCE", f"all {failures} workspace searches failed")

        merged = sorted((best[i] for i in order), key=lambda r: r.final_score, reverse=True)
        return [to_evidence(r, now) for r in merged[:k]]
