"""Shared pieces for the execute handlers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import assert_never

from enclave.core.errors import PersistenceFailure
from enclave.db.repo import call_store
from enclave.orchestrator.models import (
    AnnouncementDraft,
    ContextEnvelope,
    Draft,
    DraftKind,
    PollDraft,
    TurnFrame,
)

logger = logging.getLogger("enclave.execute")

SAVE_FAILED = "I couldn't save that draft. Please try again."
SEND_FAILED = "Failed to send. Please try again."


@dataclass
class ExecuteDeps:
    """Collaborators the handlers may call."""
    store: object
    sender: object | None = None
    generator: object | None = None
    workspace_id: str | None = None


def pending_draft(frame: TurnFrame, envelope: ContextEnvelope) -> Draft | None:
    return frame.state.pending or envelope.system_state.pending_draft


def pending_of_kind(
    frame: TurnFrame, envelope: ContextEnvelope, kind: DraftKind
) -> Draft | None:
    for draft in (frame.state.pending, envelope.system_state.pending_draft):
        if draft is not None and draft.kind == kind:
            return draft
    return None


def draft_text(draft: Draft) -> str:
    """What the recipients will see."""
    if isinstance(draft, AnnouncementDraft):
        return draft.body
    if isinstance(draft, PollDraft):
        lines = [draft.question, ""]
        lines += [f"{i}. {opt}" for i, opt in enumerate(draft.options, 1)]
        lines += ["", "reply with the number of your answer"]
        return "\n".join(lines)
    assert_never(draft)


def draft_preview(draft: Draft) -> str:
    """Short form for previews to the sender."""
    if isinstance(draft, AnnouncementDraft):
        return draft.body
    if isinstance(draft, PollDraft):
        return f"{draft.question}\n\noptions: {', '.join(draft.options)}"
    assert_never(draft)


async def save_draft(deps: ExecuteDeps, phone: str, draft: Draft) -> Draft | None:
    """Upsert *draft*; returns it with its stored id, or None if the write failed."""
    try:
        draft_id = await call_store(deps.store.save_draft, phone, draft)
    except PersistenceFailure as exc:
        logger.error("[EXEC] save_draft failed for %s: %s", phone, exc)
        return None
    return draft.model_copy(update={"id": draft_id})


async def discard(deps: ExecuteDeps, phone: str, kind: DraftKind | None) -> bool:
    try:
        await call_store(deps.store.discard_draft, phone, kind)
    except PersistenceFailure as exc:
        logger.error("[EXEC] discard_draft failed for %s: %s", phone, exc)
        return False
    return True
