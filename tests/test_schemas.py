from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from fakes import make_item
from spamguard.schemas.classification import Verdict
from spamguard.schemas.messages import InboundMessage, Priority, WebSummary, WorkItem, format_user_display


def test_priority_is_derived_not_trusted():
    item = WorkItem(message_id=1, chat_id=-1, text="hi", is_member=True, priority="High")

    assert item.priority is Priority.NORMAL


@pytest.mark.parametrize(
    "is_member, urls, expected",
    [
        (True, (), Priority.NORMAL),
        (False, (), Priority.HIGH),
        (True, ("https://a.example",), Priority.HIGH),
        (False, ("https://a.example",), Priority.HIGH),
    ],
)
def test_priority_rule(is_member, urls, expected):
    assert make_item(1, is_member=is_member, urls=urls).priority is expected


def test_link_in_text_makes_priority_high_without_extracted_urls():
    item = WorkItem(message_id=1, chat_id=-1, text="join https://t.me/scam now", is_member=True)

    assert item.extracted_urls == ()
    assert item.priority is Priority.HIGH


def test_work_item_is_immutable():
    item = make_item(1)

    with pytest.raises(ValidationError):
        item.text = "changed"


def test_enrichment_copy_keeps_identity_and_priority():
    item = make_item(3, is_member=False)
    enriched = item.model_copy(update={"enrichment": (WebSummary(url="https://a.example", title="A"),)})

    assert enriched.key == item.key == "-100:3"
    assert enriched.priority is Priority.HIGH


def test_from_telegram_uses_caption_and_sender():
    message = {
        "message_id": 10,
        "date": 1735689600,
        "chat": {"id": -100, "title": "Traders", "type": "supergroup"},
        "from": {"id": 7, "first_name": "Kim", "last_name": "Lee"},
        "caption": "  look at this  ",
    }

    inbound = InboundMessage.from_telegram(message, is_member=False)

    assert inbound.text == "look at this"
    assert inbound.sender_display == "Kim Lee"
    assert inbound.chat_title == "Traders"
    assert inbound.sent_at == datetime(2025, 1, 1, tzinfo=timezone.utc)


def test_from_telegram_media_without_caption_gets_placeholder():
    message = {"message_id": 11, "chat": {"id": -100}, "from": {"id": 7, "username": "bob"}, "photo": [{}]}

    inbound = InboundMessage.from_telegram(message, is_member=True)

    assert inbound.text == "[media message]"
    assert inbound.sender_display == "@bob"


def test_format_user_display_unknown():
    assert format_user_display({}) == "Unknown"
    assert format_user_display({"id": 1}) == "Unknown"


def test_verdict_accepts_wire_alias_and_cleans_reason():
    verdict = Verdict.model_validate({"spam": True, "reason": "   ", "confidence": 0.9})

    assert verdict.is_spam is True
    assert verdict.reason is None


def test_verdict_rejects_out_of_range_confidence():
    with pytest.raises(ValidationError):
        Verdict.model_validate({"spam": False, "confidence": 1.5})


def test_web_summary_render_skips_empty_fields():
    summary = WebSummary(url="https://a.example", title="Pump", content="Join now")

    assert summary.render() == "Title: Pump\nContent: Join now"
