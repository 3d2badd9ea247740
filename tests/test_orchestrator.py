import asyncio
from datetime import timedelta

from conftest import NOW, PHONE, FakeSender

from enclave.orchestrator import orchestrator as orchestrator_module
from enclave.orchestrator.envelope import EnvelopeBuilder
from enclave.orchestrator.execute import ExecuteDeps
from enclave.orchestrator.execute.answer import NOT_FOUND
from enclave.orchestrator.models import AnnouncementDraft, Mode, PollDraft, ResponseMode
from enclave.orchestrator.orchestrator import ERROR_REPLY, Orchestrator
from enclave.orchestrator.rules import ANNOUNCEMENT_CONTENT_PROMPT, CONFIRM_SEND_PROMPT

FROM = "+15551234567"


def make_orchestrator(store, sender):
    deps = ExecuteDeps(store=store, sender=sender)
    return Orchestrator(store, EnvelopeBuilder(store), deps)


def turn(orch, text):
    return asyncio.run(orch.handle_turn(FROM, text))


def test_announcement_end_to_end(store):
    sender = FakeSender()
    store.set_optin("5550000001")
    store.set_optin("5550000002")
    orch = make_orchestrator(store, sender)

    first = turn(orch, "make an announcement")
    assert first.response_mode == ResponseMode.DraftCreate
    assert first.messages == [ANNOUNCEMENT_CONTENT_PROMPT]
    assert store.get_session_mode(PHONE) == Mode.ANNOUNCEMENT_INPUT

    second = turn(orch, "practice moved to 6pm tomorrow")
    assert second.response_mode == ResponseMode.DraftEdit
    assert "practice moved to 6pm tomorrow" in second.messages[0]

    third = turn(orch, "send")
    assert third.response_mode == ResponseMode.ActionConfirm
    assert CONFIRM_SEND_PROMPT in third.messages[0]
    assert sender.sent == []

    fourth = turn(orch, "yes")
    assert fourth.response_mode == ResponseMode.ActionExecute
    assert fourth.messages == ["sent to 2 people 📢"]
    assert store.get_session_mode(PHONE) == Mode.IDLE

    fifth = turn(orch, "yes")
    assert fifth.response_mode != ResponseMode.ActionExecute
    assert len(sender.sent) == 2

    assert len(store.recent_turns(PHONE, limit=10)) == 5


def test_question_keeps_confirm_mode(store):
    orch = make_orchestrator(store, FakeSender())
    turn(orch, "make an announcement")
    turn(orch, "rush kickoff friday")
    turn(orch, "send")

    answer = turn(orch, "who is coming?")
    assert answer.response_mode == ResponseMode.Answer
    assert answer.messages == [NOT_FOUND]
    assert answer.new_mode is None
    assert store.get_session_mode(PHONE) == Mode.CONFIRM_SEND

    assert turn(orch, "yes").response_mode == ResponseMode.ActionExecute


def test_cancel_from_input(store):
    orch = make_orchestrator(store, FakeSender())
    turn(orch, "make an announcement")
    turn(orch, "rush kickoff friday")
    result = turn(orch, "cancel")
    assert result.messages == ["draft discarded"]
    assert store.get_active_draft(PHONE, "announcement") is None


class BrokenStore:
    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise RuntimeError("db gone")
        fail.__name__ = name
        return fail


def test_store_outage_still_replies():
    store = BrokenStore()
    orch = Orchestrator(store, EnvelopeBuilder(store), ExecuteDeps(store=store))
    result = asyncio.run(orch.handle_turn(FROM, "hi"))
    assert result.status == "ok"
    assert result.messages == ["hey! what's up?"]


def test_handler_crash_becomes_apology(store, monkeypatch):
    async def crash(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(orchestrator_module, "execute", crash)
    result = turn(make_orchestrator(store, FakeSender()), "hi")
    assert result.messages == [ERROR_REPLY]
    assert result.status == "error"


def test_cancel_naming_the_older_draft(store):
    earlier = NOW - timedelta(hours=1)
    store.save_draft(PHONE, PollDraft(question="Pizza?", options=["Yes", "No"], last_edit_ts=earlier))
    store.save_draft(PHONE, AnnouncementDraft(body="meeting at 8pm", last_edit_ts=NOW))
    store.set_session_mode(PHONE, Mode.ANNOUNCEMENT_INPUT)

    result = turn(make_orchestrator(store, FakeSender()), "delete the poll")

    assert result.messages == ["draft discarded"]
    assert store.get_active_draft(PHONE, "poll") is None
    assert store.get_active_draft(PHONE, "announcement").body == "meeting at 8pm"


class CrashingEnvelopeBuilder:
    async def build(self, frame, response_mode):
        raise KeyError("scope")


def test_envelope_crash_still_replies(store):
    deps = ExecuteDeps(store=store, sender=FakeSender())
    orch = Orchestrator(store, CrashingEnvelopeBuilder(), deps)
    result = turn(orch, "hi")
    assert result.status == "ok"
    assert result.messages == ["hey! what's up?"]
