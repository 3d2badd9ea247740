"""Poll drafting: PollCreate and PollEdit."""

from __future__ import annotations

import logging

from enclave.llm.drafting import suggest_poll
from enclave.orchestrator.execute.common import (
    SAVE_FAILED,
    ExecuteDeps,
    discard,
    draft_preview,
    pending_of_kind,
    save_draft,
)
from enclave.orchestrator.execute.reducer import (
    is_bare_edit,
    parse_options,
    reduce_poll,
    strip_command_phrase,
)
from enclave.orchestrator.models import (
    ContextEnvelope,
    ExecuteResult,
    Mode,
    PollDraft,
    TurnFrame,
    utcnow,
)
from enclave.orchestrator.rules import POLL_CONTENT_PROMPT, PREVIEW_SUFFIX

logger = logging.getLogger("enclave.execute.poll")

WHAT_TO_CHANGE = "okay, what should the poll ask instead?"


def _preview(prefix: str, draft: PollDraft) -> str:
    return f"{prefix}:\n\n{draft_preview(draft)}\n\n{PREVIEW_SUFFIX}"


async def execute_poll_create(
    frame: TurnFrame, envelope: ContextEnvelope, deps: ExecuteDeps
) -> ExecuteResult:
    phone = frame.user.phone
    quoted = list(frame.signals.quoted)
    content = strip_command_phrase(frame.text) if not quoted else ""

    if not quoted and not content.strip():
        await discard(deps, phone, "poll")
        return ExecuteResult(messages=[POLL_CONTENT_PROMPT], new_mode=Mode.POLL_INPUT)

    draft = PollDraft(created_by=phone, workspace_id=deps.workspace_id, last_edit_ts=utcnow())
    if quoted:
        options = quoted[1:] if len(quoted) >= 3 else draft.options
        draft = draft.model_copy(update={"question": quoted[0], "options": list(options)})
    else:
        explicit = parse_options(content)
        suggestion = None if explicit else await suggest_poll(deps.generator, content)
        if suggestion is not None:
            draft = draft.model_copy(
                update={"question": suggestion.question, "options": suggestion.options}
            )
        else:
            reduced = reduce_poll("", draft.options, content, frame.signals)
            draft = draft.model_copy(
                update={"question": reduced.question, "options": reduced.options}
            )

    saved = await save_draft(deps, phone, draft)
    if saved is None:
        return ExecuteResult(messages=[SAVE_FAILED])
    return ExecuteResult(
        messages=[_preview("okay here's the poll", saved)], new_mode=Mode.POLL_INPUT
    )


async def execute_poll_edit(
    frame: TurnFrame, envelope: ContextEnvelope, deps: ExecuteDeps
) -> ExecuteResult:
    phone = frame.user.phone
    pending = pending_of_kind(frame, envelope, "poll")
    current = pending if isinstance(pending, PollDraft) else None

    if current is not None and not frame.signals.quoted and is_bare_edit(frame.text):
        return ExecuteResult(messages=[WHAT_TO_CHANGE], new_mode=Mode.POLL_INPUT)

    base = current or PollDraft(
        created_by=phone, workspace_id=deps.workspace_id, last_edit_ts=utcnow()
    )
    reduced = reduce_poll(base.question, base.options, frame.text, frame.signals)
    if not reduced.question.strip():
        return ExecuteResult(messages=[POLL_CONTENT_PROMPT], new_mode=Mode.POLL_INPUT)

    draft = base.model_copy(
        update={"question": reduced.question, "options": reduced.options, "last_edit_ts": utcnow()}
    )
    saved = await save_draft(deps, phone, draft)
    if saved is None:
        return ExecuteResult(messages=[SAVE_FAILED])

    logger.info("[POLL] %s edit rule=%s options=%d", phone, reduced.rule, len(saved.options))
    prefix = "updated" if current is not None else "okay here's the poll"
    return ExecuteResult(messages=[_preview(prefix, saved)], new_mode=Mode.POLL_INPUT)
