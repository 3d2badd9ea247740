import asyncio

import pytest
from conftest import PHONE, FakeGenerator, FakeSender, make_envelope, make_frame

from enclave.core.errors import InvalidModeTransition
from enclave.orchestrator.execute import ExecuteDeps, execute
from enclave.orchestrator.execute.answer import NOT_FOUND
from enclave.orchestrator.execute.action import NO_RECIPIENTS, NOTHING_TO_SEND
from enclave.orchestrator.execute.chitchat import DEFLECTION, DISCARDED, NOTHING_TO_CANCEL
from enclave.orchestrator.execute.common import SEND_FAILED
from enclave.orchestrator.models import (
    AnnouncementDraft,
    EvidenceScores,
    EvidenceUnit,
    Intent,
    Mode,
    PollDraft,
    ResponseMode,
    Scope,
)
from enclave.orchestrator.rules import (
    ANNOUNCEMENT_CONTENT_PROMPT,
    CONFIRM_SEND_PROMPT,
    POLL_CONTENT_PROMPT,
    PREVIEW_SUFFIX,
)

RECIPIENTS = ["5550000001", "5550000002", "5550000003"]


def run(mode, frame, deps, envelope=None):
    return asyncio.run(execute(mode, frame, envelope or make_envelope(), deps))


def saved(store, draft):
    draft_id = store.save_draft(PHONE, draft)
    return store.get_active_draft(PHONE, draft.kind).model_copy(update={"id": draft_id})


# ── Drafting ──────────────────────────────────────────────


def test_scenario_a_prompts_for_content(deps, store):
    store.save_draft(PHONE, AnnouncementDraft(body="stale draft"))
    result = run(ResponseMode.DraftCreate, make_frame("make an announcement"), deps)

    assert len(result.messages) == 1
    assert result.messages[0].endswith(ANNOUNCEMENT_CONTENT_PROMPT)
    assert result.new_mode == Mode.ANNOUNCEMENT_INPUT
    assert store.get_active_draft(PHONE, "announcement") is None


def test_draft_create_with_content_falls_back_to_raw_text(deps, store):
    result = run(
        ResponseMode.DraftCreate,
        make_frame("make an announcement that says chapter at 8pm in the lounge"),
        deps,
    )
    assert store.get_active_draft(PHONE, "announcement").body == "chapter at 8pm in the lounge"
    assert result.messages[0].endswith(PREVIEW_SUFFIX)
    assert result.new_mode == Mode.ANNOUNCEMENT_INPUT


def test_draft_create_uses_validated_generation(store):
    generator = FakeGenerator({"body": "Chapter tonight at 8pm in the lounge!"})
    deps = ExecuteDeps(store=store, generator=generator)
    run(ResponseMode.DraftCreate, make_frame("make an announcement that says chapter tonight 8pm lounge"), deps)
    assert store.get_active_draft(PHONE, "announcement").body == "Chapter tonight at 8pm in the lounge!"


def test_generation_that_drops_facts_is_rejected(store):
    generator = FakeGenerator({"body": "Chapter tonight in the lounge!"})
    deps = ExecuteDeps(store=store, generator=generator)
    run(ResponseMode.DraftCreate, make_frame("make an announcement that says chapter tonight 8pm"), deps)
    assert store.get_active_draft(PHONE, "announcement").body == "chapter tonight 8pm"


def test_quoted_create_is_verbatim_even_with_generator(store):
    generator = FakeGenerator({"body": "rewritten"})
    deps = ExecuteDeps(store=store, generator=generator)
    run(ResponseMode.DraftCreate, make_frame('make an announcement "Dues due  Friday"'), deps)
    assert store.get_active_draft(PHONE, "announcement").body == "Dues due  Friday"
    assert generator.prompts == []


def test_scenario_b_quoted_edit(deps, store):
    pending = saved(store, AnnouncementDraft(body="meeting tonight"))
    frame = make_frame('"active meeting at 8pm sharp"', Mode.ANNOUNCEMENT_INPUT, pending)
    result = run(ResponseMode.DraftEdit, frame, deps)

    assert store.get_active_draft(PHONE, "announcement").body == "active meeting at 8pm sharp"
    assert "active meeting at 8pm sharp" in result.messages[0]
    assert result.new_mode == Mode.ANNOUNCEMENT_INPUT


def test_edit_patches_time(deps, store):
    pending = saved(store, AnnouncementDraft(body="meeting tonight at 7pm"))
    run(ResponseMode.DraftEdit, make_frame("make it 9pm", Mode.ANNOUNCEMENT_INPUT, pending), deps)
    assert store.get_active_draft(PHONE, "announcement").body == "meeting tonight at 9pm"


def test_edit_instruction_goes_through_generation(store):
    pending = saved(store, AnnouncementDraft(body="meeting at 8pm"))
    generator = FakeGenerator({"body": "Meeting at 8pm, snacks provided!"})
    deps = ExecuteDeps(store=store, generator=generator)
    run(ResponseMode.DraftEdit, make_frame("add that snacks are provided", Mode.ANNOUNCEMENT_INPUT, pending), deps)
    assert store.get_active_draft(PHONE, "announcement").body == "Meeting at 8pm, snacks provided!"


def test_edit_falls_back_to_append_when_generation_is_down(deps, store):
    pending = saved(store, AnnouncementDraft(body="meeting at 8pm"))
    run(ResponseMode.DraftEdit, make_frame("add that snacks are provided", Mode.ANNOUNCEMENT_INPUT, pending), deps)
    assert store.get_active_draft(PHONE, "announcement").body == "meeting at 8pm add that snacks are provided"


def test_bare_no_asks_what_to_change(deps, store):
    pending = saved(store, AnnouncementDraft(body="meeting at 8pm"))
    result = run(ResponseMode.DraftEdit, make_frame("no", Mode.CONFIRM_SEND, pending), deps)
    assert "instead" in result.messages[0]
    assert store.get_active_draft(PHONE, "announcement").body == "meeting at 8pm"


def test_poll_create_prompt(deps, store):
    result = run(ResponseMode.PollCreate, make_frame("make a poll"), deps)
    assert result.messages == [POLL_CONTENT_PROMPT]
    assert result.new_mode == Mode.POLL_INPUT


def test_poll_create_from_quotes(deps, store):
    run(ResponseMode.PollCreate, make_frame('make a poll "Where should we eat?" "Pizza" "Tacos"'), deps)
    poll = store.get_active_draft(PHONE, "poll")
    assert poll.question == "Where should we eat?"
    assert poll.options == ["Pizza", "Tacos"]


def test_poll_create_with_suggestion(store):
    generator = FakeGenerator({"question": "Coming to formal?", "options": ["Yes", "No"]})
    deps = ExecuteDeps(store=store, generator=generator)
    run(ResponseMode.PollCreate, make_frame("make a poll about who is coming to formal"), deps)
    assert store.get_active_draft(PHONE, "poll").question == "Coming to formal?"


def test_poll_edit_sets_options(deps, store):
    pending = saved(store, PollDraft(question="Where should we eat?"))
    result = run(ResponseMode.PollEdit, make_frame("options: pizza, tacos", Mode.POLL_INPUT, pending), deps)
    assert store.get_active_draft(PHONE, "poll").options == ["pizza", "tacos"]
    assert "options: pizza, tacos" in result.messages[0]


# ── Confirm / send ────────────────────────────────────────


def test_action_confirm_is_read_only(deps, store, sender):
    pending = saved(store, AnnouncementDraft(body="meeting at 8pm"))
    frame = make_frame("send", Mode.ANNOUNCEMENT_INPUT, pending)
    first = run(ResponseMode.ActionConfirm, frame, deps)
    second = run(ResponseMode.ActionConfirm, frame, deps)

    assert first == second
    assert CONFIRM_SEND_PROMPT in first.messages[0]
    assert "meeting at 8pm" in first.messages[0]
    assert first.new_mode == Mode.CONFIRM_SEND
    assert sender.sent == []
    assert store.get_active_draft(PHONE, "announcement").body == "meeting at 8pm"


def test_scenario_c_send_to_every_recipient(deps, store, sender):
    for phone in RECIPIENTS:
        store.set_optin(phone)
    pending = saved(store, AnnouncementDraft(body="meeting at 8pm"))
    result = run(ResponseMode.ActionExecute, make_frame("yes", Mode.CONFIRM_SEND, pending), deps)

    assert sorted(p for p, _ in sender.sent) == RECIPIENTS
    assert all(body == "meeting at 8pm" for _, body in sender.sent)
    assert "3" in result.messages[0]
    assert result.new_mode == Mode.IDLE
    assert store.get_active_draft(PHONE, "announcement") is None
    action = store.recent_actions()[0]
    assert action.kind == "announcement_sent"
    assert action.payload["recipients"] == 3
    assert action.payload["draft_id"] == pending.id


def test_poll_send_records_pending_poll(deps, store, sender):
    store.set_optin(RECIPIENTS[0])
    pending = saved(store, PollDraft(question="Pizza?", options=["Yes", "No"]))
    result = run(ResponseMode.ActionExecute, make_frame("yes", Mode.CONFIRM_SEND, pending), deps)

    assert result.messages == ["sent poll to 1 people 📊"]
    assert "1. Yes" in sender.sent[0][1]
    poll = store.pending_poll()
    assert poll.question == "Pizza?"
    assert poll.options == ["Yes", "No"]


def test_idempotent_confirm_without_pending(deps, sender):
    for _ in range(3):
        result = run(ResponseMode.ActionExecute, make_frame("yes", Mode.CONFIRM_SEND), deps)
        assert result.messages == [NOTHING_TO_SEND]
    assert sender.sent == []


def test_no_recipients(deps, store):
    pending = saved(store, AnnouncementDraft(body="hi"))
    result = run(ResponseMode.ActionExecute, make_frame("yes", Mode.CONFIRM_SEND, pending), deps)
    assert result.messages == [NO_RECIPIENTS]
    assert store.get_active_draft(PHONE, "announcement") is not None


def test_all_sends_rejected_keeps_draft(store):
    store.set_optin(RECIPIENTS[0])
    deps = ExecuteDeps(store=store, sender=FakeSender(reject={RECIPIENTS[0]}))
    pending = saved(store, AnnouncementDraft(body="hi"))
    result = run(ResponseMode.ActionExecute, make_frame("yes", Mode.CONFIRM_SEND, pending), deps)
    assert result.messages == [SEND_FAILED]
    assert store.get_active_draft(PHONE, "announcement") is not None


# ── ChitChat / Answer ─────────────────────────────────────


def test_abusive_is_deflected(deps):
    result = run(ResponseMode.ChitChat, make_frame("fuck off"), deps)
    assert result.messages == [DEFLECTION]


def test_cancel_discards(deps, store):
    pending = saved(store, AnnouncementDraft(body="hi"))
    result = run(ResponseMode.ChitChat, make_frame("cancel", Mode.ANNOUNCEMENT_INPUT, pending), deps)
    assert result.messages == [DISCARDED]
    assert result.new_mode == Mode.IDLE
    assert store.get_active_draft(PHONE, "announcement") is None


def test_smalltalk_nudges_pending_draft(deps):
    pending = AnnouncementDraft(id="d1", body="hi")
    result = run(ResponseMode.ChitChat, make_frame("thanks", Mode.ANNOUNCEMENT_INPUT, pending), deps)
    assert result.messages[0].startswith("you're welcome")
    assert "send" in result.messages[0]


def resource_unit(text):
    return EvidenceUnit(scope=Scope.RESOURCE, source_id="r1", text=text, scores=EvidenceScores(semantic=0.9))


def test_answer_uses_summary(store):
    deps = ExecuteDeps(store=store, generator=FakeGenerator({"found": True, "answer": "Lot B after 6pm."}))
    envelope = make_envelope(Intent.info_query, evidence=[resource_unit("Title: Parking\n\nPark in lot B after 6pm.")])
    result = run(ResponseMode.Answer, make_frame("where do we park?"), deps, envelope)
    assert result.messages == ["Lot B after 6pm."]
    assert result.new_mode is None


def test_answer_falls_back_to_snippet(deps):
    envelope = make_envelope(Intent.info_query, evidence=[resource_unit("Park in lot B. " * 40)])
    result = run(ResponseMode.Answer, make_frame("where do we park?"), deps, envelope)
    assert result.messages[0].startswith("Park in lot B.")
    assert len(result.messages[0]) <= 320


def test_answer_not_found(deps):
    result = run(ResponseMode.Answer, make_frame("where do we park?"), deps, make_envelope(Intent.info_query))
    assert result.messages == [NOT_FOUND]


def test_answer_state_query(deps):
    unit = EvidenceUnit(scope=Scope.ACTION, source_id="a", text='Pending announcement draft: "hi"')
    envelope = make_envelope(Intent.state_query, evidence=[unit])
    result = run(ResponseMode.Answer, make_frame("is my announcement pending?"), deps, envelope)
    assert result.messages == ['Pending announcement draft: "hi"']


def test_unknown_mode_is_rejected(deps):
    with pytest.raises(InvalidModeTransition):
        run("Bogus", make_frame("hi"), deps)


def test_cancel_discards_the_kind_it_names(deps, store):
    saved(store, PollDraft(question="Pizza?", options=["Yes", "No"]))
    announcement = saved(store, AnnouncementDraft(body="meeting at 8pm"))
    frame = make_frame("delete the poll", Mode.ANNOUNCEMENT_INPUT, announcement)

    result = run(ResponseMode.ChitChat, frame, deps)

    assert result.messages == [DISCARDED]
    assert store.get_active_draft(PHONE, "poll") is None
    assert store.get_active_draft(PHONE, "announcement").body == "meeting at 8pm"


def test_cancel_named_kind_without_that_draft(deps, store):
    announcement = saved(store, AnnouncementDraft(body="meeting at 8pm"))
    frame = make_frame("cancel the poll", Mode.ANNOUNCEMENT_INPUT, announcement)

    result = run(ResponseMode.ChitChat, frame, deps)

    assert result.messages == [NOTHING_TO_CANCEL]
    assert store.get_active_draft(PHONE, "announcement") is not None


class FlakySender(FakeSender):
    """Raises for the numbers in *broken*, like a dropped connection."""

    def __init__(self, broken: set[str]) -> None:
        super().__init__()
        self.broken = broken

    async def send(self, phone, body):
        if phone in self.broken:
            raise RuntimeError("socket reset")
        return await super().send(phone, body)


def test_send_that_raises_does_not_abort_the_batch(store):
    for phone in RECIPIENTS:
        store.set_optin(phone)
    sender = FlakySender(broken={RECIPIENTS[1]})
    deps = ExecuteDeps(store=store, sender=sender)
    pending = saved(store, AnnouncementDraft(body="meeting at 8pm"))

    result = run(ResponseMode.ActionExecute, make_frame("yes", Mode.CONFIRM_SEND, pending), deps)

    assert result.messages == ["sent to 2 people 📢"]
    assert result.new_mode == Mode.IDLE
    assert sorted(p for p, _ in sender.sent) == [RECIPIENTS[0], RECIPIENTS[2]]
    assert store.get_active_draft(PHONE, "announcement") is None
    assert store.recent_actions()[0].payload["recipients"] == 2

    again = run(ResponseMode.ActionExecute, make_frame("yes", Mode.CONFIRM_SEND), deps)
    assert again.messages == [NOTHING_TO_SEND]
    assert len(sender.sent) == 2


def test_every_send_raising_keeps_draft(store):
    store.set_optin(RECIPIENTS[0])
    deps = ExecuteDeps(store=store, sender=FlakySender(broken={RECIPIENTS[0]}))
    pending = saved(store, AnnouncementDraft(body="hi"))

    result = run(ResponseMode.ActionExecute, make_frame("yes", Mode.CONFIRM_SEND, pending), deps)

    assert result.messages == [SEND_FAILED]
    assert store.get_active_draft(PHONE, "announcement") is not None
