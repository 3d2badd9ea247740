"""Answer handler: reply from the envelope's evidence; the mode is left unchanged."""

from __future__ import annotations

import logging

from enclave.llm.drafting import summarize_answer
from enclave.orchestrator.execute.common import ExecuteDeps
from enclave.orchestrator.models import (
    ContextEnvelope,
    ExecuteResult,
    Intent,
    Scope,
    TurnFrame,
)

logger = logging.getLogger("enclave.execute.answer")

NOT_FOUND = "I couldn't find information about that. Try asking about events, policies, or people."
NO_STATE = "no drafts pending and nothing sent recently."

_SNIPPET_CHARS = 320
_STATE_LINES = 3


def _snippet(text: str) -> str:
    text = " ".join(text.split())
    return text if len(text) <= _SNIPPET_CHARS else f"{text[:_SNIPPET_CHARS - 3]}..."


def answer_from_state(envelope: ContextEnvelope) -> str:
    lines = [u.text for u in envelope.evidence if u.scope == Scope.ACTION][:_STATE_LINES]
    return "\n".join(lines) if lines else NO_STATE


async def answer_from_resources(
    frame: TurnFrame, envelope: ContextEnvelope, deps: ExecuteDeps
) -> str:
    units = [u for u in envelope.evidence if u.scope in (Scope.RESOURCE, Scope.ENCLAVE)]
    if not units:
        return NOT_FOUND
    summary = await summarize_answer(deps.generator, frame.text, [u.text for u in units[:3]])
    if summary:
        return summary
    # generation unavailable or found nothing usable: raw top snippet
    return _snippet(units[0].text)


async def execute_answer(
    frame: TurnFrame, envelope: ContextEnvelope, deps: ExecuteDeps
) -> ExecuteResult:
    if envelope.intent == Intent.state_query:
        message = answer_from_state(envelope)
    elif envelope.intent == Intent.mixed:
        state = answer_from_state(envelope)
        resources = await answer_from_resources(frame, envelope, deps)
        message = state if resources == NOT_FOUND else f"{resources}\n\n{state}"
    else:
        message = await answer_from_resources(frame, envelope, deps)

    logger.info(
        "[ANSWER] intent=%s evidence=%d reply_len=%d",
        envelope.intent.value, len(envelope.evidence), len(message),
    )
    return ExecuteResult(messages=[message])
