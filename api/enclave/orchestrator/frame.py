"""TurnFrame builder — normalizes one inbound SMS into an immutable frame.

Signal extraction is pure; store reads (history, drafts, session mode)
are guarded so a failing or slow store degrades to ``IDLE`` defaults
instead of aborting the turn.
"""

from __future__ import annotations

import logging
import re
import time
from datetime import date, datetime, timedelta

from enclave.core.errors import PersistenceFailure
from enclave.db.repo import call_store
from enclave.orchestrator import rules
from enclave.orchestrator.models import (
    AnnouncementDraft,
    BotAct,
    Command,
    ConvoMessage,
    ConvoState,
    Draft,
    Entities,
    FrameState,
    HistoryTurn,
    Mode,
    ParsedTime,
    PollDraft,
    Signals,
    Toxicity,
    TurnFrame,
    UserRef,
    utcnow,
)

logger = logging.getLogger("enclave.frame")

HISTORY_TURNS = 5

_QUOTED = re.compile(r"[\"“”]([^\"“”]*)[\"“”]")

_TIME_PATTERNS = (
    re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b", re.IGNORECASE),
    re.compile(r"\b(\d{1,2}):(\d{2})\b"),
    re.compile(r"\bat\s+(\d{1,2})(?::(\d{2}))?\s*(am|pm)?\b", re.IGNORECASE),
)

_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
_WEEKDAY_RE = re.compile(r"\b(" + "|".join(_WEEKDAYS) + r")\b", re.IGNORECASE)


# ─────────────────────────────────────────────────────────
#  Pure signal extraction
# ─────────────────────────────────────────────────────────

def normalize_phone(phone: str) -> str:
    """Canonical 10-digit form: drop a leading country-code 1, else keep the last 10 digits."""
    digits = re.sub(r"\D", "", str(phone))
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]
    return digits[-10:]


def extract_quoted_segments(text: str) -> list[str]:
    return [m.group(1).strip() for m in _QUOTED.finditer(text) if m.group(1).strip()]


def detect_command(text: str, has_active_draft: bool) -> Command | None:
    rule = rules.first_match(rules.COMMAND_RULES, text.strip(), has_draft=has_active_draft)
    return rule.result if rule else None


def detect_toxicity(text: str) -> Toxicity:
    rule = rules.first_match(rules.TOXICITY_RULES, text.strip())
    return rule.result if rule else Toxicity.ok


def parse_time(text: str) -> ParsedTime | None:
    """Find the first clock time: ``8pm``, ``8:30 pm``, ``20:00``, ``at 8``."""
    for pattern in _TIME_PATTERNS:
        m = pattern.search(text)
        if not m:
            continue
        hour = int(m.group(1))
        minute = int(m.group(2)) if m.group(2) else 0
        ampm = m.group(3).lower() if m.lastindex and m.lastindex >= 3 and m.group(3) else None
        if hour > 23 or minute > 59 or (ampm and not 1 <= hour <= 12):
            continue
        return ParsedTime(hour=hour, minute=minute, ampm=ampm)
    return None


def parse_date(text: str, now: datetime) -> tuple[date, str] | None:
    """Resolve a relative day reference to a date plus the phrase that matched.

    Weekday names resolve to the next occurrence; naming today's weekday
    means one week out.
    """
    lower = text.lower()
    today = now.date()
    if "tomorrow" in lower:
        return today + timedelta(days=1), "tomorrow"
    if "tonight" in lower:
        return today, "tonight"
    if "today" in lower:
        return today, "today"
    m = _WEEKDAY_RE.search(lower)
    if m:
        target = _WEEKDAYS.index(m.group(1).lower())
        delta = (target - today.weekday()) % 7 or 7
        return today + timedelta(days=delta), m.group(1).lower()
    return None


def extract_people(text: str) -> list[str]:
    people: list[str] = []
    who = re.search(r"\bwho\s+is\s+(\w+)", text, re.IGNORECASE)
    if who:
        people.append(who.group(1))
    people.extend(re.findall(r"@(\w+)", text))
    return people


def pick_pending(
    announcement: AnnouncementDraft | None, poll: PollDraft | None
) -> Draft | None:
    """With both kinds in flight, the most recently edited one is pending."""
    if announcement and poll:
        return poll if poll.last_edit_ts > announcement.last_edit_ts else announcement
    return announcement or poll


def determine_mode(
    text: str,
    last_bot_message: str,
    pending: Draft | None,
    session_mode: Mode | None = None,
) -> Mode:
    if rules.is_new_request(text):
        return Mode.IDLE

    last_bot = last_bot_message.lower()
    if rules.ANNOUNCEMENT_CONTENT_PROMPT in last_bot:
        return Mode.ANNOUNCEMENT_INPUT
    if rules.POLL_CONTENT_PROMPT in last_bot:
        return Mode.POLL_INPUT

    if pending is None:
        return Mode.IDLE
    if rules.is_explicit_question(text):
        return Mode.IDLE
    if rules.CONFIRM_SEND_PROMPT in last_bot or session_mode == Mode.CONFIRM_SEND:
        return Mode.CONFIRM_SEND
    if isinstance(pending, AnnouncementDraft):
        return Mode.ANNOUNCEMENT_INPUT
    return Mode.POLL_INPUT


def build_signals(text: str, now: datetime, has_active_draft: bool) -> Signals:
    parsed_date = parse_date(text, now)
    people = extract_people(text)
    return Signals(
        quoted=tuple(extract_quoted_segments(text)),
        has_question_mark="?" in text,
        command=detect_command(text, has_active_draft),
        entities=Entities(
            time=parse_time(text),
            date=parsed_date[0] if parsed_date else None,
            date_phrase=parsed_date[1] if parsed_date else None,
            people=tuple(people) if people else None,
        ),
        toxicity=detect_toxicity(text),
    )


def convo_from_history(history: list[HistoryTurn]) -> ConvoState:
    last_n: list[ConvoMessage] = []
    for turn in history:
        last_n.append(ConvoMessage(speaker="user", text=turn.user_message, ts=turn.ts))
        if turn.bot_response:
            last_n.append(ConvoMessage(speaker="bot", text=turn.bot_response, ts=turn.ts))
    last_bot = next((m for m in reversed(last_n) if m.speaker == "bot"), None)
    return ConvoState(
        last_n=tuple(last_n),
        last_bot_act=BotAct(text=last_bot.text, ts=last_bot.ts) if last_bot else None,
    )


# ─────────────────────────────────────────────────────────
#  Frame construction (guarded store reads)
# ─────────────────────────────────────────────────────────

async def _guarded(fn, *args, default, what: str, phone: str):
    try:
        return await call_store(fn, *args)
    except PersistenceFailure as exc:
        logger.warning("[FRAME] %s read failed for %s: %s", what, phone, exc)
        return default


async def build_turn_frame(
    store,
    phone: str,
    text: str,
    *,
    user_id: str | None = None,
    prefetched_history: list[HistoryTurn] | None = None,
    now: datetime | None = None,
) -> TurnFrame:
    started = time.perf_counter()
    now = now or utcnow()
    normalized = normalize_phone(phone)
    text = text or ""

    if prefetched_history is not None:
        history = list(prefetched_history)[-HISTORY_TURNS:]
    else:
        history = await _guarded(
            store.recent_turns, normalized, HISTORY_TURNS,
            default=[], what="history", phone=normalized,
        )

    announcement = await _guarded(
        store.get_active_draft, normalized, "announcement",
        default=None, what="announcement draft", phone=normalized,
    )
    poll = await _guarded(
        store.get_active_draft, normalized, "poll",
        default=None, what="poll draft", phone=normalized,
    )
    session_mode = await _guarded(
        store.get_session_mode, normalized,
        default=None, what="session mode", phone=normalized,
    )

    convo = convo_from_history(history)
    last_bot_message = convo.last_bot_act.text if convo.last_bot_act else ""

    mode = determine_mode(text, last_bot_message, pick_pending(announcement, poll), session_mode)
    if mode == Mode.ANNOUNCEMENT_INPUT:
        pending = announcement
    elif mode == Mode.POLL_INPUT:
        pending = poll
    else:
        pending = pick_pending(announcement, poll)

    frame = TurnFrame(
        now=now,
        user=UserRef(id=user_id or normalized, phone=normalized),
        convo=convo,
        state=FrameState(mode=mode, pending=pending),
        text=text,
        signals=build_signals(text, now, has_active_draft=bool(announcement or poll)),
    )
    logger.info(
        "[FRAME] %s mode=%s pending=%s command=%s in %dms",
        normalized, mode.value, pending.kind if pending else None,
        frame.signals.command.value if frame.signals.command else None,
        int((time.perf_counter() - started) * 1000),
    )
    return frame
