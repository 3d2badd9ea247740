import asyncio
from datetime import date, timedelta

from conftest import NOW, PHONE

from enclave.orchestrator import rules
from enclave.orchestrator.frame import (
    build_turn_frame,
    determine_mode,
    extract_quoted_segments,
    normalize_phone,
    parse_date,
    parse_time,
    pick_pending,
)
from enclave.orchestrator.models import AnnouncementDraft, Mode, ParsedTime, PollDraft


def test_normalize_phone():
    assert normalize_phone("+1 (555) 123-4567") == PHONE
    assert normalize_phone("555.123.4567") == PHONE


def test_quoted_segments():
    assert extract_quoted_segments('say "hi all" and “bye”') == ["hi all", "bye"]
    assert extract_quoted_segments('""') == []


def test_parse_time():
    assert parse_time("meeting at 8pm") == ParsedTime(hour=8, minute=0, ampm="pm")
    assert parse_time("starts 8:30 PM") == ParsedTime(hour=8, minute=30, ampm="pm")
    assert parse_time("at 20:00") == ParsedTime(hour=20, minute=0)
    assert parse_time("at 8") == ParsedTime(hour=8)
    assert parse_time("13pm sharp") is None
    assert parse_time("no time here") is None


def test_render_time():
    assert ParsedTime(hour=8, ampm="pm").render() == "8pm"
    assert ParsedTime(hour=8, minute=30, ampm="pm").render() == "8:30pm"
    assert ParsedTime(hour=20).render() == "20:00"


def test_parse_date():
    # NOW is a Wednesday
    assert parse_date("tomorrow night", NOW) == (NOW.date() + timedelta(days=1), "tomorrow")
    assert parse_date("tonight", NOW) == (NOW.date(), "tonight")
    assert parse_date("see you friday", NOW) == (date(2025, 3, 14), "friday")
    assert parse_date("next Wednesday", NOW) == (date(2025, 3, 19), "wednesday")
    assert parse_date("soon", NOW) is None


def test_pick_pending_prefers_latest_edit():
    a = AnnouncementDraft(body="a", last_edit_ts=NOW)
    p = PollDraft(question="q", last_edit_ts=NOW + timedelta(minutes=1))
    assert pick_pending(a, p) is p
    assert pick_pending(a, None) is a
    assert pick_pending(None, None) is None


def test_determine_mode():
    draft = AnnouncementDraft(body="meeting tonight")
    poll = PollDraft(question="pizza?")
    prompt = rules.ANNOUNCEMENT_CONTENT_PROMPT

    assert determine_mode("meeting at 8", prompt, None) == Mode.ANNOUNCEMENT_INPUT
    assert determine_mode("pizza or tacos", rules.POLL_CONTENT_PROMPT, None) == Mode.POLL_INPUT
    assert determine_mode("make a poll", prompt, draft) == Mode.IDLE
    assert determine_mode("yes", f"ready?\n\n{rules.CONFIRM_SEND_PROMPT}", draft) == Mode.CONFIRM_SEND
    assert determine_mode("yes", "", draft, Mode.CONFIRM_SEND) == Mode.CONFIRM_SEND
    assert determine_mode("what time is it?", "", draft) == Mode.IDLE
    assert determine_mode("hi", "", None) == Mode.IDLE
    assert determine_mode("move it to 9pm", "", draft) == Mode.ANNOUNCEMENT_INPUT
    assert determine_mode("add sushi", "", poll) == Mode.POLL_INPUT


def test_build_turn_frame_reads_store(store):
    store.save_draft(PHONE, AnnouncementDraft(body="meeting tonight at 7pm"))
    store.append_turn(PHONE, "meeting tonight at 7pm", f"okay:\n\nmeeting tonight at 7pm\n\n{rules.PREVIEW_SUFFIX}")

    frame = asyncio.run(build_turn_frame(store, "+15551234567", "move it to 9pm", now=NOW))

    assert frame.user.phone == PHONE
    assert frame.state.mode == Mode.ANNOUNCEMENT_INPUT
    assert frame.state.pending.body == "meeting tonight at 7pm"
    assert frame.signals.entities.time == ParsedTime(hour=9, ampm="pm")
    assert frame.convo.last_bot_act is not None


class BrokenStore:
    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise RuntimeError("disk on fire")
        fail.__name__ = name
        return fail


def test_build_turn_frame_degrades_to_idle():
    frame = asyncio.run(build_turn_frame(BrokenStore(), PHONE, "move it to 9pm", now=NOW))
    assert frame.state.mode == Mode.IDLE
    assert frame.state.pending is None
    assert frame.convo.last_n == ()
