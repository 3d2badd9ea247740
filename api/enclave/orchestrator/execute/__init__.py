"""Execute router: one handler per ResponseMode."""

from __future__ import annotations

from enclave.core.errors import InvalidModeTransition
from enclave.orchestrator.execute.action import execute_action_confirm, execute_action_execute
from enclave.orchestrator.execute.answer import execute_answer
from enclave.orchestrator.execute.chitchat import execute_chitchat
from enclave.orchestrator.execute.common import ExecuteDeps
from enclave.orchestrator.execute.draft import execute_draft_create, execute_draft_edit
from enclave.orchestrator.execute.poll import execute_poll_create, execute_poll_edit
from enclave.orchestrator.models import ContextEnvelope, ExecuteResult, ResponseMode, TurnFrame

HANDLERS = {
    ResponseMode.ChitChat: execute_chitchat,
    ResponseMode.Answer: execute_answer,
    ResponseMode.DraftCreate: execute_draft_create,
    ResponseMode.DraftEdit: execute_draft_edit,
    ResponseMode.PollCreate: execute_poll_create,
    ResponseMode.PollEdit: execute_poll_edit,
    ResponseMode.ActionConfirm: execute_action_confirm,
    ResponseMode.ActionExecute: execute_action_execute,
}


async def execute(
    mode: ResponseMode, frame: TurnFrame, envelope: ContextEnvelope, deps: ExecuteDeps
) -> ExecuteResult:
    handler = HANDLERS.get(mode)
    if handler is None:
        raise InvalidModeTransition(f"no handler for response mode {mode!r}")
    return await handler(frame, envelope, deps)


__all__ = ["HANDLERS", "ExecuteDeps", "execute"]
