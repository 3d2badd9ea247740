"""ChitChat handler: deflection, cancel, confirm reminders and small talk."""

from __future__ import annotations

import logging
import re

from enclave.core.errors import PersistenceFailure
from enclave.db.repo import call_store
from enclave.orchestrator.execute.common import ExecuteDeps, pending_draft
from enclave.orchestrator.models import (
    AnnouncementDraft,
    Command,
    ContextEnvelope,
    DraftKind,
    ExecuteResult,
    Mode,
    PollDraft,
    Toxicity,
    TurnFrame,
)
from enclave.orchestrator.rules import CONFIRM_SEND_PROMPT

logger = logging.getLogger("enclave.execute.chitchat")

_NAMED_KIND = re.compile(r"\b(announcement|poll)s?\b", re.IGNORECASE)

DEFLECTION = "✋ Let's keep it respectful. Reply 'help' for what I can do."
DISCARDED = "draft discarded"
NOTHING_TO_CANCEL = "no draft to cancel 👍"
DISCARD_FAILED = "I couldn't discard the draft. Please try again."

SMALLTALK_REPLIES = {
    "thanks": "you're welcome! 😊",
    "thank": "you're welcome! 😊",
    "thank you": "you're welcome! 😊",
    "ty": "np! 😊",
    "thx": "np! 😊",
    "hi": "hey! what's up?",
    "hey": "hey! what's up?",
    "hello": "hey! what's up?",
    "ok": "cool 👍",
    "okay": "cool 👍",
    "sure": "cool 👍",
    "alright": "sounds good 👍",
    "got it": "awesome 👍",
}


def nudge(draft) -> str:
    if isinstance(draft, AnnouncementDraft):
        return 'btw you have an announcement draft ready - reply "send" to send it'
    if isinstance(draft, PollDraft):
        return f'btw you have a poll draft ready: "{draft.question}" - reply "send" to send it'
    return ""


def cancel_target(text: str, pending) -> DraftKind | None:
    """The kind named in the cancel phrase, else the pending draft's kind."""
    match = _NAMED_KIND.search(text)
    if match:
        return match.group(1).lower()
    return pending.kind if pending is not None else None


async def _cancel(frame: TurnFrame, pending, deps: ExecuteDeps) -> ExecuteResult:
    kind = cancel_target(frame.text, pending)
    if kind is None:
        return ExecuteResult(messages=[NOTHING_TO_CANCEL], new_mode=Mode.IDLE)
    try:
        removed = await call_store(deps.store.discard_draft, frame.user.phone, kind)
    except PersistenceFailure as exc:
        logger.error("[EXEC] discard_draft failed for %s: %s", frame.user.phone, exc)
        return ExecuteResult(messages=[DISCARD_FAILED])
    if not removed:
        return ExecuteResult(messages=[NOTHING_TO_CANCEL], new_mode=Mode.IDLE)
    logger.info("[EXEC] %s discarded %s draft", frame.user.phone, kind)
    return ExecuteResult(messages=[DISCARDED], new_mode=Mode.IDLE)


async def execute_chitchat(
    frame: TurnFrame, envelope: ContextEnvelope, deps: ExecuteDeps
) -> ExecuteResult:
    if frame.signals.toxicity == Toxicity.abusive:
        return ExecuteResult(messages=[DEFLECTION])

    pending = pending_draft(frame, envelope)

    if frame.signals.command == Command.CANCEL:
        return await _cancel(frame, pending, deps)

    if frame.state.mode == Mode.CONFIRM_SEND:
        return ExecuteResult(
            messages=[f'still need a yes from you - {CONFIRM_SEND_PROMPT} or reply to edit']
        )

    key = frame.text.lower().strip().rstrip("!.")
    reply = SMALLTALK_REPLIES.get(key, "👍")
    follow_up = nudge(pending) if pending is not None else ""
    return ExecuteResult(messages=[f"{reply}\n\n{follow_up}" if follow_up else reply])
