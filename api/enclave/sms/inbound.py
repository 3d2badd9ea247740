"""Inbound screening ahead of the turn orchestrator.

Carrier keywords (STOP / START / HELP) and answers to the most recent poll
are settled here and never become conversation turns. Every other message
passes through, and a number texting in for the first time is opted in
and greeted.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field

from enclave.core.errors import PersistenceFailure
from enclave.db.repo import call_store
from enclave.orchestrator.frame import normalize_phone
from enclave.orchestrator.models import Action, Mode, PollState

logger = logging.getLogger("enclave.sms.inbound")

STOP_REPLY = "You have been unsubscribed from Enclave notifications. Text START to resubscribe."
START_REPLY = "You have been re-subscribed. Ask me anything, or text HELP for what I can do."
HELP_REPLY = (
    "Enclave SMS help:\n\n"
    "• ask about events, policies or people\n"
    '• text "make an announcement" or "make a poll" to draft a broadcast\n'
    "• text STOP to opt out"
)
WELCOME = (
    "Hey! Welcome to Enclave. Text me questions, or ask me to make an "
    "announcement or a poll."
)
SUBSCRIPTION_FAILED = "I couldn't update your subscription. Please try again."

# "2", or "<code> 2" where code is the 4-character poll code
_POLL_ANSWER = re.compile(r"^\s*(?:([A-Za-z0-9]{4})\s+)?(\d{1,2})\s*[.!]*\s*$")

# a bare number means something else while the sender is mid-draft
_DRAFTING = (Mode.ANNOUNCEMENT_INPUT, Mode.POLL_INPUT, Mode.CONFIRM_SEND)


@dataclass
class Screen:
    """Outcome of screening one inbound message.

    ``reply`` set: answer with it and skip the orchestrator.
    ``reply`` None: run the turn and put ``greeting`` in front of its messages.
    """
    reply: list[str] | None = None
    greeting: list[str] = field(default_factory=list)


def poll_answer_reply(option: str) -> str:
    return f'got it, you answered "{option}" 👍'


def match_poll_answer(text: str, poll: PollState, *, allow_bare: bool) -> str | None:
    """The option picked by *text*, or None when it is not an answer to *poll*."""
    m = _POLL_ANSWER.match(text or "")
    if not m:
        return None
    code, number = m.group(1), int(m.group(2))
    if code is None and not allow_bare:
        return None
    if code is not None and code.upper() != poll.code.upper():
        return None
    if not 1 <= number <= len(poll.options):
        return None
    return poll.options[number - 1]


class InboundScreen:
    """Handles opt-in state and poll answers for inbound SMS."""

    def __init__(self, store) -> None:
        self.store = store

    async def screen(self, phone: str, text: str) -> Screen:
        phone = normalize_phone(phone)
        keyword = (text or "").strip().upper()

        if keyword in ("STOP", "START"):
            opted_in = keyword == "START"
            try:
                await call_store(self.store.set_optin, phone, opted_in)
            except PersistenceFailure as exc:
                logger.error("[SMS] %s for %s failed: %s", keyword, phone, exc)
                return Screen(reply=[SUBSCRIPTION_FAILED])
            logger.info("[SMS] %s opted %s", phone, "in" if opted_in else "out")
            return Screen(reply=[START_REPLY if opted_in else STOP_REPLY])
        if keyword == "HELP":
            return Screen(reply=[HELP_REPLY])

        try:
            answered = await self._poll_answer(phone, text)
        except PersistenceFailure as exc:
            logger.warning("[SMS] poll answer check failed for %s: %s", phone, exc)
            answered = None
        if answered is not None:
            return Screen(reply=[poll_answer_reply(answered)])

        return Screen(greeting=await self._first_contact(phone))

    async def _first_contact(self, phone: str) -> list[str]:
        try:
            known = await call_store(self.store.get_optin, phone)
            if known is not None:
                return []
            await call_store(self.store.set_optin, phone, True)
        except PersistenceFailure as exc:
            logger.warning("[SMS] auto opt-in failed for %s: %s", phone, exc)
            return []
        logger.info("[SMS] new sender %s opted in", phone)
        return [WELCOME]

    async def _poll_answer(self, phone: str, text: str) -> str | None:
        if not _POLL_ANSWER.match(text or ""):
            return None
        poll = await call_store(self.store.pending_poll)
        if poll is None:
            return None
        mode = await call_store(self.store.get_session_mode, phone)
        option = match_poll_answer(text, poll, allow_bare=mode not in _DRAFTING)
        if option is None:
            return None

        await call_store(self.store.record_poll_response, poll.id, phone, option)
        counts = await call_store(self.store.count_poll_responses, poll.id)
        action = Action(
            id=str(uuid.uuid4()),
            kind="poll_responses_agg",
            payload={
                "poll_id": poll.id,
                "question": poll.question,
                "counts": counts,
                "total": sum(counts.values()),
            },
        )
        await call_store(self.store.record_action, action, phone)
        logger.info("[SMS] %s answered poll %s: %s", phone, poll.id, option)
        return option
