"""Local-state retrievers for the CONVO, ACTION and ENCLAVE scopes."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path

from enclave.core.config import ENCLAVE_PRODUCT_REFERENCE
from enclave.db.repo import call_store
from enclave.orchestrator.models import (
    Action,
    AnnouncementDraft,
    Draft,
    EvidenceScores,
    EvidenceUnit,
    HistoryTurn,
    PollState,
    Scope,
)

logger = logging.getLogger("enclave.retrieval.retrievers")

_STATE_SCORES = EvidenceScores(semantic=1.0, keyword=1.0, freshness=1.0, role_match=1.0)
_HISTORY_SCORES = EvidenceScores(semantic=0.8, keyword=0.8, freshness=0.85, role_match=1.0)
_CONVO_SCORES = EvidenceScores(semantic=0.9, keyword=0.8, freshness=1.0, role_match=1.0)

_TIME_RE = re.compile(r"\d{1,2}(?::\d{2})?\s*(?:am|pm)", re.IGNORECASE)
_DAY_RE = re.compile(
    r"\b(?:today|tomorrow|yesterday|monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b",
    re.IGNORECASE,
)


# ── CONVO ────────────────────────────────────────────────

def convo_snapshot(phone: str, turns: list[HistoryTurn]) -> list[EvidenceUnit]:
    """Collapse recent turns into a single CONVO unit with the entities of the last message."""
    if not turns:
        return []
    transcript = "\n\n".join(f"User: {t.user_message}\nBot: {t.bot_response}" for t in turns)

    last = turns[-1]
    entities = re.findall(r"\"([^\"]+)\"", last.user_message)
    entities += _TIME_RE.findall(last.user_message)
    entities += _DAY_RE.findall(last.user_message)
    unresolved = "?" in last.user_message and len(last.bot_response) < 50

    text = f"Conversation context:\n{transcript}\n"
    if entities:
        text += f"\nEntities: {', '.join(entities)}\n"
    if unresolved:
        text += "Unresolved intent detected"

    return [
        EvidenceUnit(
            scope=Scope.CONVO,
            source_id=f"convo_{phone}",
            text=text.strip(),
            ts=last.ts,
            scores=_CONVO_SCORES,
        )
    ]


async def retrieve_convo(store, phone: str, k: int) -> list[EvidenceUnit]:
    if k <= 0:
        return []
    turns = await call_store(store.recent_turns, phone, k)
    return convo_snapshot(phone, turns)


# ── ACTION ───────────────────────────────────────────────

@dataclass
class ActionState:
    pending_draft: Draft | None = None
    pending_poll: PollState | None = None
    recent_actions: list[Action] = field(default_factory=list)
    evidence: list[EvidenceUnit] = field(default_factory=list)


def describe_draft(draft: Draft) -> str:
    if isinstance(draft, AnnouncementDraft):
        return f'Pending announcement draft: "{draft.body}"'
    return f'Pending poll draft: "{draft.question}" (options: {", ".join(draft.options)})'


def describe_action(action: Action) -> str:
    payload = action.payload
    when = action.ts.strftime("%b %d %H:%M")
    if action.kind == "announcement_sent":
        return (
            f'Sent announcement ({when}) to {payload.get("recipients", 0)} people: '
            f'"{payload.get("content", "")}"'
        )
    if action.kind == "poll_sent":
        return (
            f'Sent poll ({when}): "{payload.get("question", "")}" '
            f'- {payload.get("response_count", 0)} responses'
        )
    counts = payload.get("counts") or {}
    tally = ", ".join(f"{option}: {n}" for option, n in counts.items())
    return (
        f'Poll responses ({when}) for "{payload.get("question", "")}": '
        f'{tally or "none yet"} ({payload.get("total", 0)} total)'
    )


def action_evidence(
    drafts: list[Draft], pending_poll: PollState | None, recent: list[Action]
) -> list[EvidenceUnit]:
    units = [
        EvidenceUnit(
            scope=Scope.ACTION,
            source_id=f"{d.kind}_draft_{d.id}",
            text=describe_draft(d),
            ts=d.last_edit_ts,
            scores=_STATE_SCORES,
        )
        for d in drafts
    ]
    if pending_poll is not None:
        units.append(
            EvidenceUnit(
                scope=Scope.ACTION,
                source_id=f"pending_poll_{pending_poll.id}",
                text=(
                    f'Pending poll response: "{pending_poll.question}" '
                    f"(code: {pending_poll.code}, {pending_poll.response_count} responses)"
                ),
                ts=pending_poll.sent_at,
                scores=_STATE_SCORES,
            )
        )
    units.extend(
        EvidenceUnit(
            scope=Scope.ACTION,
            source_id=f"action_{a.id}",
            text=describe_action(a),
            ts=a.ts,
            scores=_HISTORY_SCORES,
        )
        for a in recent
    )
    return units


async def retrieve_action_state(store, phone: str, limit: int = 10) -> ActionState:
    announcement = await call_store(store.get_active_draft, phone, "announcement")
    poll = await call_store(store.get_active_draft, phone, "poll")
    pending_poll = await call_store(store.pending_poll)
    recent = await call_store(store.recent_actions, limit)

    drafts = [d for d in (announcement, poll) if d is not None]
    drafts.sort(key=lambda d: d.last_edit_ts, reverse=True)
    return ActionState(
        pending_draft=drafts[0] if drafts else None,
        pending_poll=pending_poll,
        recent_actions=list(recent),
        evidence=action_evidence(drafts, pending_poll, list(recent)),
    )


# ── ENCLAVE (product reference) ──────────────────────────

def keyword_score(text: str, query: str) -> float:
    terms = [t for t in re.split(r"\W+", query.lower()) if t]
    if not terms:
        return 0.0
    lower = text.lower()
    hits = sum(1 for t in terms if t in lower)
    return min(1.0, hits / max(3, len(terms)))


class ProductReference:
    """Keyword lookup over the sections of the product reference document."""

    def __init__(self, path: str | Path = ENCLAVE_PRODUCT_REFERENCE) -> None:
        self.path = Path(path)

    @cached_property
    def sections(self) -> list[tuple[str, str]]:
        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning("Product reference unavailable at %s: %s", self.path, exc)
            return []
        out = []
        for chunk in re.split(r"(?m)^## ", content):
            chunk = chunk.strip()
            if not chunk:
                continue
            title, _, body = chunk.partition("\n")
            out.append((title.lstrip("# ").strip(), body.strip()))
        return out

    def retrieve(self, query: str, k: int) -> list[EvidenceUnit]:
        scored = []
        for i, (title, body) in enumerate(self.sections):
            score = keyword_score(f"{title}\n{body}", query)
            if score > 0:
                scored.append((score, i, title, body))
        scored.sort(key=lambda s: (-s[0], s[1]))
        return [
            EvidenceUnit(
                scope=Scope.ENCLAVE,
                source_id=f"enclave_ref_{i}",
                text=f"{title}\n\n{body[:1200]}" if title else body[:1200],
                scores=EvidenceScores(semantic=score, keyword=score, freshness=0.2, role_match=0.8),
            )
            for score, i, title, body in scored[:k]
        ]
