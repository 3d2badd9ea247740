"""Ordered pattern rules used by the frame builder and the planner.

Each classifier is a list of :class:`Rule` evaluated top to bottom; the
first matching rule wins.  Rules are plain data so every entry can be
tested on its own.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Generic, Sequence, TypeVar

from enclave.orchestrator.models import Command, Toxicity

T = TypeVar("T")

_I = re.IGNORECASE


@dataclass(frozen=True)
class Rule(Generic[T]):
    """``result`` applies when any of ``patterns`` matches the text."""
    name: str
    result: T
    patterns: tuple[re.Pattern[str], ...]
    requires_draft: bool = False
    max_len: int | None = None

    def matches(self, text: str, *, has_draft: bool = False) -> bool:
        if self.requires_draft and not has_draft:
            return False
        if self.max_len is not None and len(text) >= self.max_len:
            return False
        return any(p.search(text) for p in self.patterns)


def first_match(
    rules: Sequence[Rule[T]], text: str, *, has_draft: bool = False
) -> Rule[T] | None:
    for rule in rules:
        if rule.matches(text, has_draft=has_draft):
            return rule
    return None


# ── Commands ─────────────────────────────────────────────

_NEW_ANNOUNCEMENT = (
    re.compile(
        r"\b(make|create|send|post)\s+(an?\s+|out\s+an?\s+)?(announcement|announce|message|blast)\b", _I
    ),
    re.compile(
        r"\bi\s+(want|wanna)\s+(to\s+)?(make|create|send|post)\s+(an?\s+)?(announcement|announce)\b", _I
    ),
    re.compile(r"^\s*(broadcast|blast)\s*:", _I),
)

_NEW_POLL = (
    re.compile(r"\b(make|create|send)\s+(an?\s+)?(poll|survey)\b", _I),
    re.compile(r"\bi\s+(want|wanna)\s+(to\s+)?(make|create|send)\s+(an?\s+)?(poll|survey)\b", _I),
)

COMMAND_RULES: list[Rule[Command]] = [
    Rule(
        "send",
        Command.SEND,
        (re.compile(r"^\s*(send|send\s+it|send\s+now|broadcast|ship\s+it)\s*[.!]*\s*$", _I),),
    ),
    Rule(
        "cancel",
        Command.CANCEL,
        (
            re.compile(r"\b(cancel|delete|remove|discard)\s+(the\s+|that\s+|my\s+)?(announcement|poll|draft)\b", _I),
            re.compile(r"^\s*(cancel|nevermind|never\s+mind)\s*[.!]*\s*$", _I),
        ),
    ),
    Rule(
        "edit",
        Command.EDIT,
        (re.compile(r"^\s*(edit|change|update|make\s+it|change\s+it)\b", _I),),
        requires_draft=True,
    ),
    Rule("make_announcement", Command.MAKE_ANNOUNCEMENT, _NEW_ANNOUNCEMENT),
    Rule("make_poll", Command.MAKE_POLL, _NEW_POLL),
]

# A fresh top-level request always wins over an in-flight draft.
NEW_REQUEST_RULES: list[Rule[str]] = [
    Rule("new_announcement", "announcement", _NEW_ANNOUNCEMENT),
    Rule("new_poll", "poll", _NEW_POLL),
]


# ── Toxicity ─────────────────────────────────────────────

TOXICITY_RULES: list[Rule[Toxicity]] = [
    Rule(
        "abusive",
        Toxicity.abusive,
        (re.compile(r"\b(retard(ed)?|fuck\s+(you|off)|kill\s+yourself|kys|die)\b", _I),),
    ),
    Rule(
        "rude",
        Toxicity.rude,
        (re.compile(r"\b(damn|hell|shit|ass|crap)\b", _I),),
        max_len=50,
    ),
]


# ── Conversational acts ──────────────────────────────────

QUESTION_WORDS = (
    "what", "when", "where", "who", "how", "why", "is", "are", "was", "were",
    "do", "does", "did", "will", "can", "could", "should",
)

LEADING_INTERROGATIVE = re.compile(r"^\s*(" + "|".join(QUESTION_WORDS) + r")\s", _I)

SMALLTALK_RULES: list[Rule[str]] = [
    Rule("greeting", "greeting", (re.compile(r"^(hi|hey|hello|sup|what'?s\s+up|yo)[!.]*$", _I),)),
    Rule("thanks", "thanks", (re.compile(r"^(thanks?|thank\s+you|ty|thx)[!.]*$", _I),)),
    Rule("ack", "ack", (re.compile(r"^(ok|okay|sure|alright|got\s+it|k)[!.]*$", _I),)),
    Rule("praise", "praise", (re.compile(r"^(cool|nice|sweet|lit|awesome)[!.]*$", _I),)),
]

AFFIRMATIVE = re.compile(
    r"^(yes|yep|yeah|yup|y|send|send\s+it|send\s+now|broadcast|ship\s+it|confirm|do\s+it|go)[!.]*$", _I
)

WANTS_EDIT = re.compile(r"^(no|nope|change|edit|update|make\s+it|actually)\b|change\s+it|make\s+it", _I)

ACTION_QUERY = re.compile(
    r"^(did\s+you|why\s+didn'?t|have\s+you|what\s+did\s+you)\b"
    r"|\b(draft|announcement|poll)s?\b.*\b(sent|pending|status|say|responses?)\b"
    r"|\b(sent|pending|status)\b.*\b(draft|announcement|poll)s?\b",
    _I,
)

PRODUCT_QUERY = re.compile(
    r"\b(enclave|what\s+can\s+you\s+do|how\s+do\s+(i|you)\s+use|help\s+me\s+use|who\s+are\s+you|what\s+are\s+you)\b",
    _I,
)


def is_explicit_question(text: str) -> bool:
    """Leading interrogative word *and* a literal question mark."""
    return bool(LEADING_INTERROGATIVE.match(text)) and "?" in text


def looks_like_smalltalk(text: str) -> bool:
    return first_match(SMALLTALK_RULES, text.strip()) is not None


def is_affirmative(text: str) -> bool:
    return bool(AFFIRMATIVE.match(text.strip()))


def wants_edit(text: str) -> bool:
    return bool(WANTS_EDIT.search(text.strip()))


# ── Bot prompts the frame builder keys off ───────────────

ANNOUNCEMENT_CONTENT_PROMPT = "what would you like the announcement to say?"
POLL_CONTENT_PROMPT = "what would you like to ask in the poll?"
CONFIRM_SEND_PROMPT = 'reply "yes" to confirm'
PREVIEW_SUFFIX = 'reply "send" when it looks good or reply to edit'


def is_new_request(text: str) -> bool:
    return first_match(NEW_REQUEST_RULES, text) is not None
