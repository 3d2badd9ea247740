"""Deterministic draft reducers.

Rule order for an edit:
    1. quoted text replaces the body verbatim
    2. an exact-text request ("make it say ...") replaces the body
    3. structured time/date patches, then any meaningful residue is appended
    4. otherwise a generic patch (the caller may try generation first)
The result is whitespace-normalized.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from enclave.orchestrator.models import ParsedTime, Signals

Rule = Literal["quoted", "exact", "structured", "generic", "initial"]

_TIME_IN_TEXT = re.compile(
    r"\b(?:at\s+)?\d{1,2}(?::\d{2})?\s*(?:am|pm)\b|\bat\s+\d{1,2}(?::\d{2})?\b", re.IGNORECASE
)
_AT_INPUT = re.compile(r"\bat\s+(\d[\d:]*\s*(?:am|pm)?)", re.IGNORECASE)
_DAY_WORD = re.compile(
    r"\b(today|tonight|tomorrow|monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b",
    re.IGNORECASE,
)

_EXACT_TEXT = re.compile(
    r"^\s*(?:make\s+it\s+say|change\s+it\s+to|it\s+should\s+say|have\s+it\s+say|"
    r"replace\s+it\s+with|set\s+it\s+to|reword\s+it\s+to)\s*:?\s*(.+)$",
    re.IGNORECASE | re.DOTALL,
)

_EDIT_LEAD = re.compile(
    r"^\s*(?:no|nope|actually|edit|update|change|make|move|set|switch)\b"
    r"(?:\s+(?:it|the\s+(?:time|date|day|meeting|event)))?(?:\s+(?:to|for))?",
    re.IGNORECASE,
)
_FILLER = {"at", "on", "to", "for", "the", "it", "instead", "pls", "please", "and", "is", "be"}

_INSTRUCTION = re.compile(
    r"^\s*(?:add|remove|delete|replace|change|make|update|edit|mention|include|"
    r"shorten|rewrite|reword|say|tell|drop|fix)\b",
    re.IGNORECASE,
)

_COMMAND_PHRASE = re.compile(
    r"^\s*(?:(?:hey|yo|ok|okay|pls|please)[,!\s]+)?"
    r"(?:i\s+(?:want|wanna|would\s+like|need)\s+(?:to\s+)?)?"
    r"(?:can\s+you\s+)?"
    r"(?:make|create|send|post|draft|start)\s+(?:out\s+)?(?:an?\s+|the\s+)?"
    r"(?:announcement|announce|message|blast|poll|survey)s?\b"
    r"|^\s*(?:broadcast|blast)\s*:",
    re.IGNORECASE,
)
_CONNECTOR = re.compile(
    r"^\s*(?::|-|,)?\s*(?:that\s+says|saying|that|about|to\s+say|to\s+ask|asking|for|:)?\s*[:,-]?\s*",
    re.IGNORECASE,
)

_OPTIONS = re.compile(r"\boptions?\s*(?:are|should\s+be|=|:)\s*(.+)$", re.IGNORECASE)


@dataclass(frozen=True)
class Reduction:
    text: str
    rule: Rule


def normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def is_instruction(text: str) -> bool:
    return bool(_INSTRUCTION.match(text))


_BARE_EDIT = re.compile(
    r"^\s*(?:no|nope|nah|change|change it|edit|edit it|fix it|redo|redo it|not quite|wrong)[.!\s]*$",
    re.IGNORECASE,
)


def is_bare_edit(text: str) -> bool:
    """``no`` / ``change it``: the user wants an edit but hasn't said what."""
    return bool(_BARE_EDIT.match(text))


def exact_text_request(text: str) -> str | None:
    m = _EXACT_TEXT.match(text)
    if not m:
        return None
    return m.group(1).strip() or None


def strip_command_phrase(text: str) -> str:
    """``make an announcement that says X`` -> ``X``; a bare request -> ``""``."""
    m = _COMMAND_PHRASE.search(text)
    if not m:
        return text.strip()
    rest = text[m.end():]
    rest = _CONNECTOR.sub("", rest, count=1)
    return rest.strip()


def patch_time(text: str, time: ParsedTime) -> str:
    stamp = time.render()
    if stamp.lower() in text.lower():
        return text
    if _TIME_IN_TEXT.search(text):
        return _TIME_IN_TEXT.sub(f"at {stamp}", text, count=1)
    return f"{text} at {stamp}"


def patch_date(text: str, phrase: str) -> str:
    if re.search(rf"\b{re.escape(phrase)}\b", text, re.IGNORECASE):
        return text
    if _DAY_WORD.search(text):
        return _DAY_WORD.sub(phrase, text, count=1)
    return f"{text} {phrase}"


def ensure_at_phrase(text: str, input_text: str) -> str:
    m = _AT_INPUT.search(input_text)
    if m and m.group(1).strip().lower() not in text.lower():
        return f"{text} at {m.group(1).strip()}"
    return text


def smart_append(existing: str, input_text: str) -> str:
    if not existing.strip():
        return input_text.strip()
    if len(input_text) < 30 and re.search(r"\d{1,2}(?::\d{2})?\s*(?:am|pm)", input_text, re.IGNORECASE):
        return ensure_at_phrase(existing, input_text)
    if len(input_text) >= 30 and re.match(r"^(?:it'?s|the\s+(?:meeting|event|announcement))", input_text, re.IGNORECASE):
        return input_text
    return f"{existing} {input_text}".strip()


def _residue(input_text: str, signals: Signals) -> str:
    rest = _TIME_IN_TEXT.sub(" ", input_text)
    if signals.entities.date_phrase:
        rest = re.sub(rf"\b{re.escape(signals.entities.date_phrase)}\b", " ", rest, flags=re.IGNORECASE)
    rest = _EDIT_LEAD.sub(" ", rest, count=1)
    rest = re.sub(r"[^\w\s'&@#$%/-]", " ", rest)
    words = rest.split()
    if all(w.lower() in _FILLER for w in words):
        return ""
    return " ".join(words)


def reduce_body(body: str, input_text: str, signals: Signals) -> Reduction:
    """Apply one edit turn to an announcement body."""
    if signals.quoted:
        # verbatim: joined exactly, never normalized
        return Reduction(" ".join(signals.quoted), "quoted")

    exact = exact_text_request(input_text)
    if exact:
        return Reduction(normalize_whitespace(exact), "exact")

    if not body.strip():
        return Reduction(normalize_whitespace(input_text), "initial")

    entities = signals.entities
    patched = body
    if entities.time is not None:
        patched = patch_time(patched, entities.time)
    if entities.date_phrase:
        patched = patch_date(patched, entities.date_phrase)
    if patched != body:
        residue = _residue(input_text, signals)
        if residue and len(residue) < 100:
            patched = smart_append(patched, residue)
        return Reduction(normalize_whitespace(patched), "structured")

    return Reduction(normalize_whitespace(smart_append(body, input_text)), "generic")


@dataclass(frozen=True)
class PollReduction:
    question: str
    options: list[str]
    rule: Rule


def parse_options(text: str) -> list[str] | None:
    m = _OPTIONS.search(text)
    if not m:
        return None
    parts = [p.strip(" .") for p in re.split(r",|/|\bor\b|\|", m.group(1))]
    options = [p for p in parts if p]
    return options if len(options) >= 2 else None


def reduce_poll(
    question: str, options: list[str], input_text: str, signals: Signals
) -> PollReduction:
    """Apply one edit turn to a poll.

    The first quoted segment is the question; two or more further quoted
    segments replace the options.
    """
    if signals.quoted:
        quoted = list(signals.quoted)
        new_options = quoted[1:] if len(quoted) >= 3 else options
        return PollReduction(quoted[0], list(new_options), "quoted")

    parsed = parse_options(input_text)
    if parsed:
        head = _OPTIONS.split(input_text, maxsplit=1)[0].strip(" ,.-")
        if question.strip() or not head:
            return PollReduction(question, parsed, "structured")
        return PollReduction(normalize_whitespace(head), parsed, "initial")

    exact = exact_text_request(input_text)
    if exact:
        return PollReduction(normalize_whitespace(exact), list(options), "exact")

    if not question.strip():
        return PollReduction(normalize_whitespace(input_text), list(options), "initial")

    return PollReduction(
        normalize_whitespace(smart_append(question, input_text)), list(options), "generic"
    )
