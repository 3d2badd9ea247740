import asyncio

from conftest import PHONE

from enclave.orchestrator.models import Action, Mode, PollState
from enclave.sms.inbound import (
    HELP_REPLY,
    START_REPLY,
    STOP_REPLY,
    WELCOME,
    InboundScreen,
    match_poll_answer,
    poll_answer_reply,
)

FROM = "+15551234567"
POLL = PollState(id="p1", question="Pizza friday?", options=["Yes", "No", "Maybe"], code="AB12")


def screen(store, text, phone=FROM):
    return asyncio.run(InboundScreen(store).screen(phone, text))


def send_poll(store):
    store.record_action(
        Action(
            id="p1",
            kind="poll_sent",
            payload={"poll_id": "p1", "code": "AB12", "question": "Pizza friday?", "options": ["Yes", "No"]},
        ),
        "5550000009",
    )


def test_first_contact_opts_in_and_greets(store):
    first = screen(store, "where do we park?")
    assert first.reply is None
    assert first.greeting == [WELCOME]
    assert store.get_optin(PHONE) is True
    assert store.opted_in_phones() == [PHONE]

    assert screen(store, "thanks").greeting == []


def test_stop_and_start(store):
    assert screen(store, "stop").reply == [STOP_REPLY]
    assert store.get_optin(PHONE) is False
    assert store.opted_in_phones() == []

    # a stopped number is not opted back in by texting again
    assert screen(store, "hi").greeting == []
    assert store.opted_in_phones() == []

    assert screen(store, " START ").reply == [START_REPLY]
    assert store.opted_in_phones() == [PHONE]


def test_help_changes_nothing(store):
    assert screen(store, "HELP").reply == [HELP_REPLY]
    assert store.get_optin(PHONE) is None


def test_match_poll_answer():
    assert match_poll_answer("2", POLL, allow_bare=True) == "No"
    assert match_poll_answer("ab12 3", POLL, allow_bare=False) == "Maybe"
    assert match_poll_answer("2", POLL, allow_bare=False) is None
    assert match_poll_answer("ZZ99 1", POLL, allow_bare=True) is None
    assert match_poll_answer("4", POLL, allow_bare=True) is None
    assert match_poll_answer("2 people", POLL, allow_bare=True) is None


def test_poll_answer_is_recorded_and_tallied(store):
    send_poll(store)
    store.set_optin(PHONE)

    result = screen(store, "1")

    assert result.reply == [poll_answer_reply("Yes")]
    assert store.count_poll_responses("p1") == {"Yes": 1}
    agg = store.recent_actions()[0]
    assert agg.kind == "poll_responses_agg"
    assert agg.payload["counts"] == {"Yes": 1}
    assert agg.payload["total"] == 1

    screen(store, "AB12 2")
    assert store.count_poll_responses("p1") == {"No": 1}
    assert store.pending_poll().response_count == 1


def test_bare_number_while_drafting_is_a_turn(store):
    send_poll(store)
    store.set_optin(PHONE)
    store.set_session_mode(PHONE, Mode.POLL_INPUT)

    assert screen(store, "2").reply is None
    assert store.count_poll_responses("p1") == {}

    assert screen(store, "ab12 2").reply == [poll_answer_reply("No")]


def test_number_without_a_poll_is_a_turn(store):
    store.set_optin(PHONE)
    result = screen(store, "1")
    assert result.reply is None
    assert result.greeting == []
