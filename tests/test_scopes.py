import pytest

from enclave.orchestrator.models import EvidenceScores, EvidenceUnit, Intent, Scope
from enclave.orchestrator.scopes import (
    SCOPE_BUDGETS,
    budget_for,
    cap_to_budget,
    order_evidence,
    preselect_scopes,
    relevance,
    select_scopes,
)


def unit(scope: Scope, score: float, source_id: str = "x") -> EvidenceUnit:
    return EvidenceUnit(
        scope=scope,
        source_id=source_id,
        text="t",
        scores=EvidenceScores(semantic=score, keyword=score, freshness=score, role_match=score),
    )


def test_every_intent_budgets_every_scope():
    for intent in Intent:
        assert set(SCOPE_BUDGETS[intent]) == set(Scope)
        assert budget_for(intent, Scope.SMALLTALK) == 0


def test_relevance_weights():
    scores = EvidenceScores(semantic=1.0)
    assert relevance(EvidenceUnit(scope=Scope.RESOURCE, source_id="a", text="", scores=scores)) == pytest.approx(0.4)
    assert relevance(unit(Scope.RESOURCE, 1.0)) == pytest.approx(1.0)


def test_preselect_in_priority_order():
    assert preselect_scopes(Intent.info_query) == [Scope.RESOURCE, Scope.CONVO]
    assert preselect_scopes(Intent.mixed) == [Scope.ACTION, Scope.RESOURCE, Scope.ENCLAVE, Scope.CONVO]


def test_primary_threshold():
    assert select_scopes([unit(Scope.RESOURCE, 0.8)], Intent.info_query) == [Scope.RESOURCE]
    assert select_scopes([unit(Scope.RESOURCE, 0.3)], Intent.info_query) == []


def test_auxiliary_threshold_only_for_mixed():
    evidence = [unit(Scope.ENCLAVE, 0.5), unit(Scope.ENCLAVE, 0.45)]
    assert select_scopes(evidence, Intent.mixed) == [Scope.ENCLAVE]
    assert select_scopes(evidence, Intent.encl_query) == []


def test_continuity_scopes_always_kept():
    evidence = [unit(Scope.CONVO, 0.1), unit(Scope.ACTION, 0.1)]
    assert select_scopes(evidence, Intent.info_query) == [Scope.ACTION, Scope.CONVO]


def test_order_and_cap():
    evidence = [unit(Scope.CONVO, 1, "c"), unit(Scope.RESOURCE, 1, "r1"), unit(Scope.RESOURCE, 1, "r2")]
    ordered = order_evidence(evidence, [Scope.RESOURCE, Scope.CONVO])
    assert [u.source_id for u in ordered] == ["r1", "r2", "c"]
    assert order_evidence(evidence, [Scope.CONVO])[0].source_id == "c"

    actions = [unit(Scope.ACTION, 1, str(i)) for i in range(4)]
    assert len(cap_to_budget(Scope.ACTION, actions, Intent.send_action)) == 1
    assert cap_to_budget(Scope.RESOURCE, actions, Intent.send_action) == []
