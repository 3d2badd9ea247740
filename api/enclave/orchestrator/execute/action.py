"""ActionConfirm / ActionExecute: the two-step send."""

from __future__ import annotations

import asyncio
import logging
import uuid

from enclave.core.config import ENCLAVE_SEND_CONCURRENCY
from enclave.core.errors import PersistenceFailure
from enclave.db.repo import call_store
from enclave.orchestrator.execute.common import (
    SEND_FAILED,
    ExecuteDeps,
    draft_preview,
    draft_text,
    pending_draft,
)
from enclave.orchestrator.models import (
    Action,
    AnnouncementDraft,
    ContextEnvelope,
    Draft,
    ExecuteResult,
    Mode,
    PollDraft,
    TurnFrame,
)
from enclave.orchestrator.rules import CONFIRM_SEND_PROMPT
from enclave.sms.sender import SendReceipt

logger = logging.getLogger("enclave.execute.action")

NOTHING_TO_SEND = "nothing to send right now. say \"make an announcement\" or \"make a poll\" to start one."
NO_RECIPIENTS = "no one has opted in yet, so there's no one to send to."
RECIPIENTS_FAILED = "I couldn't load the recipient list. Please try again."


def _noun(draft: Draft) -> str:
    return "poll" if isinstance(draft, PollDraft) else "announcement"


async def execute_action_confirm(
    frame: TurnFrame, envelope: ContextEnvelope, deps: ExecuteDeps
) -> ExecuteResult:
    """Read-only: preview the pending draft and ask for a yes."""
    pending = pending_draft(frame, envelope)
    if pending is None:
        return ExecuteResult(messages=[NOTHING_TO_SEND], new_mode=Mode.IDLE)
    message = f"ready to send this {_noun(pending)}?\n\n{draft_preview(pending)}\n\n{CONFIRM_SEND_PROMPT}"
    return ExecuteResult(messages=[message], new_mode=Mode.CONFIRM_SEND)


async def _deliver(
    deps: ExecuteDeps,
    recipients: list[str],
    body: str,
    max_concurrency: int = ENCLAVE_SEND_CONCURRENCY,
) -> int:
    """Send *body* to every recipient; returns how many were accepted.

    A send that raises counts as a rejected receipt.
    """
    sem = asyncio.Semaphore(max(1, max_concurrency))

    async def one(phone: str) -> SendReceipt:
        async with sem:
            return await deps.sender.send(phone, body)

    outcomes = await asyncio.gather(*(one(p) for p in recipients), return_exceptions=True)
    receipts: list[SendReceipt] = []
    for phone, outcome in zip(recipients, outcomes):
        if isinstance(outcome, BaseException):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            logger.error("[SEND] delivery to %s raised: %r", phone, outcome)
            outcome = SendReceipt(accepted=False, error=str(outcome) or type(outcome).__name__)
        elif not outcome.accepted:
            logger.warning("[SEND] delivery to %s rejected: %s", phone, outcome.error)
        receipts.append(outcome)
    return sum(1 for r in receipts if r.accepted)


def _action_for(draft: Draft, recipients: int) -> Action:
    action_id = str(uuid.uuid4())
    payload: dict = {
        "draft_id": draft.id,
        "code": action_id[:4].upper(),
        "recipients": recipients,
    }
    if isinstance(draft, AnnouncementDraft):
        payload["content"] = draft.body
        return Action(id=action_id, kind="announcement_sent", payload=payload)
    payload.update(poll_id=action_id, question=draft.question, options=list(draft.options))
    return Action(id=action_id, kind="poll_sent", payload=payload)


async def execute_action_execute(
    frame: TurnFrame, envelope: ContextEnvelope, deps: ExecuteDeps
) -> ExecuteResult:
    pending = pending_draft(frame, envelope)
    if pending is None:
        return ExecuteResult(messages=[NOTHING_TO_SEND], new_mode=Mode.IDLE)
    if deps.sender is None:
        logger.error("[SEND] no sender configured")
        return ExecuteResult(messages=[SEND_FAILED])

    try:
        recipients = await call_store(deps.store.opted_in_phones)
    except PersistenceFailure as exc:
        logger.error("[SEND] recipient lookup failed: %s", exc)
        return ExecuteResult(messages=[RECIPIENTS_FAILED])
    if not recipients:
        return ExecuteResult(messages=[NO_RECIPIENTS])

    delivered = await _deliver(deps, recipients, draft_text(pending))
    if delivered == 0:
        return ExecuteResult(messages=[SEND_FAILED])

    # the messages are out; bookkeeping failures below are logged only
    if pending.id:
        try:
            await call_store(deps.store.mark_sent, pending.id)
        except PersistenceFailure as exc:
            logger.error("[SEND] mark_sent failed for draft %s: %s", pending.id, exc)
    action = _action_for(pending, delivered)
    try:
        await call_store(deps.store.record_action, action, frame.user.phone)
    except PersistenceFailure as exc:
        logger.error("[SEND] record_action failed for %s: %s", action.id, exc)

    logger.info("[SEND] %s %s delivered=%d/%d", frame.user.phone, action.kind, delivered, len(recipients))
    if isinstance(pending, PollDraft):
        message = f"sent poll to {delivered} people 📊"
    else:
        message = f"sent to {delivered} people 📢"
    return ExecuteResult(messages=[message], new_mode=Mode.IDLE)
