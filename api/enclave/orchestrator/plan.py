"""Deterministic planner: ``TurnFrame -> ResponseMode``.

Pure and total. Per-mode rules are evaluated in the order
CANCEL > SEND (with a pending draft) > explicit question > mode default.
"""

from __future__ import annotations

from enclave.orchestrator import rules
from enclave.orchestrator.models import (
    AnnouncementDraft,
    Command,
    Mode,
    PollDraft,
    ResponseMode,
    Toxicity,
    TurnFrame,
)

_INPUT_DEFAULT = {
    Mode.ANNOUNCEMENT_INPUT: ResponseMode.DraftEdit,
    Mode.POLL_INPUT: ResponseMode.PollEdit,
}


def _plan_input(frame: TurnFrame) -> ResponseMode:
    command = frame.signals.command
    if command == Command.CANCEL:
        return ResponseMode.ChitChat
    if command == Command.SEND and frame.state.pending is not None:
        return ResponseMode.ActionConfirm
    if rules.is_explicit_question(frame.text):
        return ResponseMode.Answer
    return _INPUT_DEFAULT[frame.state.mode]


def _plan_confirm(frame: TurnFrame) -> ResponseMode:
    if frame.signals.command == Command.CANCEL:
        return ResponseMode.ChitChat
    if rules.is_explicit_question(frame.text):
        return ResponseMode.Answer
    if rules.is_affirmative(frame.text):
        return ResponseMode.ActionExecute
    if rules.wants_edit(frame.text):
        pending = frame.state.pending
        if isinstance(pending, AnnouncementDraft):
            return ResponseMode.DraftEdit
        if isinstance(pending, PollDraft):
            return ResponseMode.PollEdit
    # reminder to confirm
    return ResponseMode.ChitChat


def _plan_idle(frame: TurnFrame) -> ResponseMode:
    command = frame.signals.command
    if command == Command.MAKE_ANNOUNCEMENT:
        return ResponseMode.DraftCreate
    if command == Command.MAKE_POLL:
        return ResponseMode.PollCreate
    if rules.looks_like_smalltalk(frame.text):
        return ResponseMode.ChitChat
    return ResponseMode.Answer


def plan(frame: TurnFrame) -> ResponseMode:
    if frame.signals.toxicity == Toxicity.abusive:
        return ResponseMode.ChitChat

    mode = frame.state.mode
    if mode in _INPUT_DEFAULT:
        return _plan_input(frame)
    if mode == Mode.CONFIRM_SEND:
        return _plan_confirm(frame)
    return _plan_idle(frame)
