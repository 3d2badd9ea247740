"""Turn, evidence and draft models for the SMS orchestrator."""

from __future__ import annotations

import datetime as dt
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enumerations ─────────────────────────────────────────


class Mode(str, Enum):
    """Conversation mode, re-derived at the start of every turn."""
    IDLE = "IDLE"
    ANNOUNCEMENT_INPUT = "ANNOUNCEMENT_INPUT"
    POLL_INPUT = "POLL_INPUT"
    CONFIRM_SEND = "CONFIRM_SEND"


class ResponseMode(str, Enum):
    """Planner output; selects exactly one execute handler."""
    ChitChat = "ChitChat"
    Answer = "Answer"
    DraftCreate = "DraftCreate"
    DraftEdit = "DraftEdit"
    PollCreate = "PollCreate"
    PollEdit = "PollEdit"
    ActionConfirm = "ActionConfirm"
    ActionExecute = "ActionExecute"


class Scope(str, Enum):
    CONVO = "CONVO"
    RESOURCE = "RESOURCE"
    ENCLAVE = "ENCLAVE"
    ACTION = "ACTION"
    SMALLTALK = "SMALLTALK"


class Intent(str, Enum):
    small_talk = "small_talk"
    info_query = "info_query"
    encl_query = "encl_query"
    draft_create = "draft_create"
    draft_edit = "draft_edit"
    send_action = "send_action"
    state_query = "state_query"
    mixed = "mixed"


class Command(str, Enum):
    SEND = "SEND"
    EDIT = "EDIT"
    CANCEL = "CANCEL"
    MAKE_ANNOUNCEMENT = "MAKE_ANNOUNCEMENT"
    MAKE_POLL = "MAKE_POLL"


class Toxicity(str, Enum):
    ok = "ok"
    rude = "rude"
    abusive = "abusive"


class DraftStatus(str, Enum):
    draft = "draft"
    scheduled = "scheduled"
    sent = "sent"


# ── Drafts (tagged by ``kind``) ──────────────────────────


class _DraftBase(BaseModel):
    id: str = ""
    audience: list[str] | Literal["all"] = "all"
    created_by: str = ""
    last_edit_ts: datetime = Field(default_factory=utcnow)
    workspace_id: str | None = None
    tone: str = "casual"
    status: DraftStatus = DraftStatus.draft
    scheduled_for: datetime | None = None


class AnnouncementDraft(_DraftBase):
    kind: Literal["announcement"] = "announcement"
    body: str = ""


class PollDraft(_DraftBase):
    kind: Literal["poll"] = "poll"
    question: str = ""
    options: list[str] = Field(default_factory=lambda: ["Yes", "No", "Maybe"])


Draft = Annotated[Union[AnnouncementDraft, PollDraft], Field(discriminator="kind")]

DraftKind = Literal["announcement", "poll"]


class PollState(BaseModel):
    """A sent poll still collecting responses."""
    id: str
    question: str
    options: list[str] = Field(default_factory=list)
    code: str = ""
    sent_at: datetime = Field(default_factory=utcnow)
    response_count: int = 0


class Action(BaseModel):
    """Append-only record of something the assistant did."""
    id: str
    kind: Literal["announcement_sent", "poll_sent", "poll_responses_agg"]
    ts: datetime = Field(default_factory=utcnow)
    payload: dict[str, Any] = Field(default_factory=dict)


# ── Turn frame ───────────────────────────────────────────


class ParsedTime(BaseModel):
    model_config = ConfigDict(frozen=True)

    hour: int
    minute: int = 0
    ampm: Literal["am", "pm"] | None = None

    def render(self) -> str:
        if self.ampm and self.minute == 0:
            return f"{self.hour}{self.ampm}"
        return f"{self.hour}:{self.minute:02d}{self.ampm or ''}"


class Entities(BaseModel):
    model_config = ConfigDict(frozen=True)

    time: ParsedTime | None = None
    date: dt.date | None = None
    date_phrase: str | None = None
    people: tuple[str, ...] | None = None


class Signals(BaseModel):
    model_config = ConfigDict(frozen=True)

    quoted: tuple[str, ...] = ()
    has_question_mark: bool = False
    command: Command | None = None
    entities: Entities = Field(default_factory=Entities)
    toxicity: Toxicity = Toxicity.ok


class ConvoMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    speaker: Literal["user", "bot"]
    text: str
    ts: datetime | None = None


class BotAct(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str = "prompt"
    text: str
    ts: datetime | None = None


class ConvoState(BaseModel):
    model_config = ConfigDict(frozen=True)

    last_n: tuple[ConvoMessage, ...] = ()
    last_bot_act: BotAct | None = None


class HistoryTurn(BaseModel):
    """One conversation-log row: what the user said and what we replied."""
    model_config = ConfigDict(frozen=True)

    user_message: str
    bot_response: str = ""
    ts: datetime | None = None


class UserRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    phone: str = ""
    role: str | None = None


class FrameState(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: Mode = Mode.IDLE
    pending: Draft | None = None


class TurnFrame(BaseModel):
    """Normalized, immutable view of one inbound message."""
    model_config = ConfigDict(frozen=True)

    now: datetime
    user: UserRef
    convo: ConvoState = Field(default_factory=ConvoState)
    state: FrameState = Field(default_factory=FrameState)
    text: str
    signals: Signals = Field(default_factory=Signals)


# ── Evidence / envelope ──────────────────────────────────


class EvidenceScores(BaseModel):
    model_config = ConfigDict(frozen=True)

    semantic: float = 0.0
    keyword: float = 0.0
    freshness: float = 0.0
    role_match: float = 0.0


class EvidenceUnit(BaseModel):
    model_config = ConfigDict(frozen=True)

    scope: Scope
    source_id: str
    text: str
    ts: datetime | None = None
    acl_ok: bool = True
    scores: EvidenceScores = Field(default_factory=EvidenceScores)


class ScopeBudget(BaseModel):
    model_config = ConfigDict(frozen=True)

    k: int = Field(ge=0)


class SystemState(BaseModel):
    model_config = ConfigDict(frozen=True)

    pending_draft: Draft | None = None
    pending_poll: PollState | None = None
    recent_actions: tuple[Action, ...] = ()


class ContextEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    intent: Intent
    scopes: tuple[Scope, ...] = ()
    evidence: tuple[EvidenceUnit, ...] = ()
    system_state: SystemState = Field(default_factory=SystemState)


# ── Results ──────────────────────────────────────────────


class ExecuteResult(BaseModel):
    messages: list[str] = Field(min_length=1)
    new_mode: Mode | None = None


class TurnResult(BaseModel):
    """What the turn handler hands back to the transport."""
    trace_id: str = ""
    messages: list[str] = Field(default_factory=list)
    new_mode: Mode | None = None
    response_mode: ResponseMode | None = None
    status: str = "ok"
