"""Scope budget table and relevance-based scope selection."""

from __future__ import annotations

from typing import Iterable

from enclave.orchestrator.models import EvidenceUnit, Intent, Scope, ScopeBudget

PRIMARY_THRESHOLD = 0.6
AUXILIARY_THRESHOLD = 0.4

SCOPE_PRIORITY: tuple[Scope, ...] = (
    Scope.ACTION,
    Scope.RESOURCE,
    Scope.ENCLAVE,
    Scope.CONVO,
    Scope.SMALLTALK,
)

# Always kept when they produced any evidence.
CONTINUITY_SCOPES = frozenset({Scope.CONVO, Scope.ACTION})


def _budgets(**k: int) -> dict[Scope, ScopeBudget]:
    # every scope present; SMALLTALK never retrieves
    table = {scope: ScopeBudget(k=0) for scope in Scope}
    for name, value in k.items():
        table[Scope(name)] = ScopeBudget(k=value)
    table[Scope.SMALLTALK] = ScopeBudget(k=0)
    return table


SCOPE_BUDGETS: dict[Intent, dict[Scope, ScopeBudget]] = {
    Intent.small_talk: _budgets(CONVO=5),
    Intent.info_query: _budgets(RESOURCE=10, CONVO=5),
    Intent.encl_query: _budgets(ENCLAVE=8, RESOURCE=5, CONVO=3),
    Intent.draft_create: _budgets(ACTION=5, RESOURCE=8, ENCLAVE=3, CONVO=5),
    Intent.draft_edit: _budgets(ACTION=1, RESOURCE=5, CONVO=10),
    Intent.send_action: _budgets(ACTION=1, CONVO=3),
    Intent.state_query: _budgets(ACTION=10, CONVO=3),
    Intent.mixed: _budgets(RESOURCE=8, ACTION=5, ENCLAVE=5, CONVO=5),
}


def budget_for(intent: Intent, scope: Scope) -> int:
    return SCOPE_BUDGETS[intent][scope].k


def preselect_scopes(intent: Intent) -> list[Scope]:
    """Scopes with a positive budget, in priority order."""
    return [scope for scope in SCOPE_PRIORITY if budget_for(intent, scope) > 0]


def relevance(unit: EvidenceUnit) -> float:
    s = unit.scores
    return 0.4 * s.semantic + 0.3 * s.keyword + 0.2 * s.freshness + 0.1 * s.role_match


def select_scopes(evidence: Iterable[EvidenceUnit], intent: Intent) -> list[Scope]:
    """Keep a scope if its best unit clears 0.6, or (mixed only) its top-3 mean clears 0.4.

    CONVO and ACTION are kept whenever they produced anything.
    """
    by_scope: dict[Scope, list[float]] = {}
    for unit in evidence:
        by_scope.setdefault(unit.scope, []).append(relevance(unit))

    selected: list[Scope] = []
    for scope in SCOPE_PRIORITY:
        scores = by_scope.get(scope)
        if not scores:
            continue
        top3 = sorted(scores, reverse=True)[:3]
        if (
            scope in CONTINUITY_SCOPES
            or top3[0] >= PRIMARY_THRESHOLD
            or (intent == Intent.mixed and sum(top3) / len(top3) >= AUXILIARY_THRESHOLD)
        ):
            selected.append(scope)
    return selected


def order_evidence(
    evidence: Iterable[EvidenceUnit], scopes: Iterable[Scope]
) -> list[EvidenceUnit]:
    """Drop units from unselected scopes; stable-sort the rest by scope priority."""
    keep = set(scopes)
    rank = {scope: i for i, scope in enumerate(SCOPE_PRIORITY)}
    return sorted((u for u in evidence if u.scope in keep), key=lambda u: rank[u.scope])


def cap_to_budget(
    scope: Scope, units: Iterable[EvidenceUnit], intent: Intent
) -> list[EvidenceUnit]:
    return list(units)[: budget_for(intent, scope)]
