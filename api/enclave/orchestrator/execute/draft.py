"""Announcement drafting: DraftCreate and DraftEdit."""

from __future__ import annotations

import logging

from enclave.llm.drafting import apply_edit, keeps_facts, polish_announcement
from enclave.orchestrator.execute.common import (
    SAVE_FAILED,
    ExecuteDeps,
    discard,
    pending_of_kind,
    save_draft,
)
from enclave.orchestrator.execute.reducer import (
    is_bare_edit,
    is_instruction,
    normalize_whitespace,
    reduce_body,
    strip_command_phrase,
)
from enclave.orchestrator.models import (
    AnnouncementDraft,
    ContextEnvelope,
    ExecuteResult,
    Mode,
    TurnFrame,
    utcnow,
)
from enclave.orchestrator.rules import ANNOUNCEMENT_CONTENT_PROMPT, PREVIEW_SUFFIX

logger = logging.getLogger("enclave.execute.draft")

WHAT_TO_CHANGE = "okay, what should the announcement say instead?"


async def execute_draft_create(
    frame: TurnFrame, envelope: ContextEnvelope, deps: ExecuteDeps
) -> ExecuteResult:
    phone = frame.user.phone
    quoted = frame.signals.quoted
    content = " ".join(quoted) if quoted else strip_command_phrase(frame.text)

    if not content.strip():
        # fresh request: an older announcement draft must not absorb the reply
        await discard(deps, phone, "announcement")
        return ExecuteResult(messages=[ANNOUNCEMENT_CONTENT_PROMPT], new_mode=Mode.ANNOUNCEMENT_INPUT)

    body = content if quoted else await polish_announcement(deps.generator, content)
    draft = AnnouncementDraft(
        body=body,
        created_by=phone,
        workspace_id=deps.workspace_id,
        last_edit_ts=utcnow(),
    )
    saved = await save_draft(deps, phone, draft)
    if saved is None:
        return ExecuteResult(messages=[SAVE_FAILED])

    return ExecuteResult(
        messages=[f"okay here's what the announcement will say:\n\n{saved.body}\n\n{PREVIEW_SUFFIX}"],
        new_mode=Mode.ANNOUNCEMENT_INPUT,
    )


async def execute_draft_edit(
    frame: TurnFrame, envelope: ContextEnvelope, deps: ExecuteDeps
) -> ExecuteResult:
    phone = frame.user.phone
    pending = pending_of_kind(frame, envelope, "announcement")
    current = pending if isinstance(pending, AnnouncementDraft) else None

    if current is not None and not frame.signals.quoted and is_bare_edit(frame.text):
        return ExecuteResult(messages=[WHAT_TO_CHANGE], new_mode=Mode.ANNOUNCEMENT_INPUT)

    body = current.body if current else ""
    reduction = reduce_body(body, frame.text, frame.signals)
    new_body = reduction.text

    if reduction.rule == "initial":
        # content answering the "what should it say" prompt
        new_body = await polish_announcement(deps.generator, new_body)
    elif reduction.rule == "generic" and is_instruction(frame.text):
        edited = await apply_edit(deps.generator, body, frame.text)
        if edited and keeps_facts(body, edited):
            new_body = normalize_whitespace(edited)

    if not new_body.strip():
        return ExecuteResult(messages=[ANNOUNCEMENT_CONTENT_PROMPT], new_mode=Mode.ANNOUNCEMENT_INPUT)

    if current is not None:
        draft = current.model_copy(update={"body": new_body, "last_edit_ts": utcnow()})
    else:
        draft = AnnouncementDraft(
            body=new_body, created_by=phone, workspace_id=deps.workspace_id, last_edit_ts=utcnow()
        )
    saved = await save_draft(deps, phone, draft)
    if saved is None:
        return ExecuteResult(messages=[SAVE_FAILED])

    logger.info("[DRAFT] %s edit rule=%s len=%d", phone, reduction.rule, len(new_body))
    prefix = "updated" if current is not None else "okay here's what the announcement will say"
    return ExecuteResult(
        messages=[f"{prefix}:\n\n{saved.body}\n\n{PREVIEW_SUFFIX}"],
        new_mode=Mode.ANNOUNCEMENT_INPUT,
    )
