"""Envelope builder — scoped, budgeted evidence for the planned response mode.

Answer turns fan out over the scopes their intent budgets for; drafting
and action turns read only local action state; ChitChat retrieves
nothing.  Every branch fails independently to empty evidence and the
pending draft from the frame is always carried in ``system_state``.
"""

from __future__ import annotations

import asyncio
import logging

from enclave.core.config import (
    ENCLAVE_BRANCH_TIMEOUT_S,
    ENCLAVE_MAX_BRANCHES,
    ENCLAVE_TURN_DEADLINE_S,
)
from enclave.core.fanout import Branch, fan_out
from enclave.orchestrator import rules
from enclave.orchestrator.models import (
    ContextEnvelope,
    EvidenceUnit,
    Intent,
    ResponseMode,
    Scope,
    SystemState,
    TurnFrame,
)
from enclave.orchestrator.scopes import (
    budget_for,
    cap_to_budget,
    order_evidence,
    preselect_scopes,
    select_scopes,
)
from enclave.retrieval.retrievers import ActionState, retrieve_action_state, retrieve_convo

logger = logging.getLogger("enclave.envelope")

_MODE_INTENT: dict[ResponseMode, Intent] = {
    ResponseMode.ChitChat: Intent.small_talk,
    ResponseMode.DraftCreate: Intent.draft_create,
    ResponseMode.PollCreate: Intent.draft_create,
    ResponseMode.DraftEdit: Intent.draft_edit,
    ResponseMode.PollEdit: Intent.draft_edit,
    ResponseMode.ActionConfirm: Intent.send_action,
    ResponseMode.ActionExecute: Intent.send_action,
}


def classify_answer_intent(text: str) -> Intent:
    about_state = bool(rules.ACTION_QUERY.search(text))
    about_product = bool(rules.PRODUCT_QUERY.search(text))
    if about_state and about_product:
        return Intent.mixed
    if about_state:
        return Intent.state_query
    if about_product:
        return Intent.encl_query
    return Intent.info_query


class EnvelopeBuilder:
    """Builds one :class:`ContextEnvelope` per turn."""

    def __init__(
        self,
        store,
        *,
        resources=None,
        product=None,
        max_concurrency: int = ENCLAVE_MAX_BRANCHES,
        branch_timeout: float = ENCLAVE_BRANCH_TIMEOUT_S,
        deadline: float | None = ENCLAVE_TURN_DEADLINE_S,
    ) -> None:
        self.store = store
        self.resources = resources
        self.product = product
        self.max_concurrency = max_concurrency
        self.branch_timeout = branch_timeout
        self.deadline = deadline

    async def build(self, frame: TurnFrame, mode: ResponseMode) -> ContextEnvelope:
        if mode == ResponseMode.ChitChat:
            return ContextEnvelope(
                intent=Intent.small_talk,
                system_state=SystemState(pending_draft=frame.state.pending),
            )
        if mode == ResponseMode.Answer:
            intent = classify_answer_intent(frame.text)
            scopes = preselect_scopes(intent)
        else:
            # drafting and action turns only look at local state
            intent = _MODE_INTENT[mode]
            scopes = [Scope.ACTION]
        return await self._retrieve(frame, intent, scopes)

    def _branches(self, frame: TurnFrame, intent: Intent, scopes: list[Scope]) -> dict[str, Branch]:
        phone = frame.user.phone
        branches: dict[str, Branch] = {}

        for scope in scopes:
            k = budget_for(intent, scope)
            if k <= 0:
                continue
            if scope == Scope.CONVO:
                async def convo(cancel: asyncio.Event, k=k):
                    return await retrieve_convo(self.store, phone, k)
                branches[scope.value] = convo
            elif scope == Scope.ACTION:
                async def action(cancel: asyncio.Event):
                    return await retrieve_action_state(self.store, phone)
                branches[scope.value] = action
            elif scope == Scope.RESOURCE and self.resources is not None:
                workspace_id = frame.state.pending.workspace_id if frame.state.pending else None

                async def resource(cancel: asyncio.Event, k=k):
                    return await self.resources.retrieve(
                        frame.text, k, now=frame.now, workspace_id=workspace_id
                    )
                branches[scope.value] = resource
            elif scope == Scope.ENCLAVE and self.product is not None:
                async def enclave(cancel: asyncio.Event, k=k):
                    return await asyncio.to_thread(self.product.retrieve, frame.text, k)
                branches[scope.value] = enclave
        return branches

    async def _retrieve(
        self, frame: TurnFrame, intent: Intent, scopes: list[Scope]
    ) -> ContextEnvelope:
        fan = await fan_out(
            self._branches(frame, intent, scopes),
            max_concurrency=self.max_concurrency,
            branch_timeout=self.branch_timeout,
            deadline=self.deadline,
        )

        state = fan.results.get(Scope.ACTION.value)
        action_state = state if isinstance(state, ActionState) else ActionState()

        evidence: list[EvidenceUnit] = []
        for name, value in fan.results.items():
            scope = Scope(name)
            units = action_state.evidence if scope == Scope.ACTION else value
            evidence.extend(cap_to_budget(scope, units or [], intent))

        selected = select_scopes(evidence, intent)
        ordered = order_evidence(evidence, selected)

        logger.info(
            "[ENVELOPE] intent=%s branches=%s failed=%s cancelled=%s kept=%s units=%d in %dms",
            intent.value, list(fan.results), list(fan.failures), fan.cancelled,
            [s.value for s in selected], len(ordered), fan.elapsed_ms,
        )
        return ContextEnvelope(
            intent=intent,
            scopes=tuple(selected),
            evidence=tuple(ordered),
            system_state=SystemState(
                pending_draft=frame.state.pending or action_state.pending_draft,
                pending_poll=action_state.pending_poll,
                recent_actions=tuple(action_state.recent_actions),
            ),
        )
