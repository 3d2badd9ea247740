"""Shared fixtures: a migrated SQLite store per test and in-memory fakes
for the send, generation and resource-search collaborators."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from enclave.core.errors import GenerationFailure
from enclave.db.migrate import run_migration
from enclave.db.repo import SqliteStore
from enclave.orchestrator.execute import ExecuteDeps
from enclave.orchestrator.frame import build_signals
from enclave.orchestrator.models import (
    ContextEnvelope,
    FrameState,
    Intent,
    Mode,
    SystemState,
    TurnFrame,
    UserRef,
)
from enclave.retrieval.service import SearchLists
from enclave.sms.sender import SendReceipt

NOW = datetime(2025, 3, 12, 15, 0, tzinfo=timezone.utc)
PHONE = "5551234567"


class FakeSender:
    def __init__(self, reject: set[str] | None = None) -> None:
        self.sent: list[tuple[str, str]] = []
        self.reject = reject or set()

    async def send(self, phone: str, body: str) -> SendReceipt:
        self.sent.append((phone, body))
        if phone in self.reject:
            return SendReceipt(accepted=False, error="rejected")
        return SendReceipt(accepted=True, sid=f"SM{len(self.sent)}")


class FakeGenerator:
    """Returns canned JSON replies in order; an empty queue means the service is down."""

    def __init__(self, *replies: dict | str) -> None:
        self.replies = list(replies)
        self.prompts: list[str] = []

    async def generate_json(self, prompt: str, *, system: str | None = None, **_) -> str:
        self.prompts.append(prompt)
        if not self.replies:
            raise GenerationFailure("offline")
        reply = self.replies.pop(0)
        return reply if isinstance(reply, str) else json.dumps(reply)


class FakeSearch:
    def __init__(self, lists: SearchLists | None = None, error: Exception | None = None) -> None:
        self.lists = lists or SearchLists()
        self.error = error
        self.calls: list[tuple[str, str, int]] = []

    async def search(self, query: str, workspace_id: str, limit: int = 10) -> SearchLists:
        self.calls.append((query, workspace_id, limit))
        if self.error is not None:
            raise self.error
        return self.lists


@pytest.fixture
def store(tmp_path) -> SqliteStore:
    db_path = str(tmp_path / "enclave.db")
    run_migration(db_path)
    return SqliteStore(db_path)


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def deps(store, sender) -> ExecuteDeps:
    return ExecuteDeps(store=store, sender=sender, generator=None)


def make_frame(
    text: str,
    mode: Mode = Mode.IDLE,
    pending=None,
    *,
    phone: str = PHONE,
    now: datetime = NOW,
) -> TurnFrame:
    return TurnFrame(
        now=now,
        user=UserRef(id=phone, phone=phone),
        state=FrameState(mode=mode, pending=pending),
        text=text,
        signals=build_signals(text, now, has_active_draft=pending is not None),
    )


def make_envelope(intent: Intent = Intent.small_talk, pending=None, evidence=()) -> ContextEnvelope:
    return ContextEnvelope(
        intent=intent,
        evidence=tuple(evidence),
        system_state=SystemState(pending_draft=pending),
    )
