"""Tests for the pure mail header helpers."""
from datetime import datetime

import pytest

from utils.mail_headers import (
    FALLBACK_REPLY_SUBJECT,
    MailHeaderError,
    ensure_case_token,
    extract_address,
    find_case_token,
    header_value,
    internal_timestamp,
    is_sent_by_mailbox,
    merge_references,
    normalize_message_id,
    parse_date_header,
    parse_message,
    parse_references,
    reply_subject,
    sort_by_internal_date,
)

CASE_ID = "64f1c2a9b3e4d5f6a7b8c9d0"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Acme Help <Help@Acme.test>", "help@acme.test"),
        ("help@acme.test", "help@acme.test"),
        ("  HELP@ACME.TEST  ", "help@acme.test"),
        ('"Acme, Inc." <help@acme.test>', "help@acme.test"),
        ("first@acme.test, second@acme.test", "first@acme.test"),
        ("", None),
        (None, None),
    ],
)
def test_extract_address(raw, expected):
    assert extract_address(raw) == expected


def test_header_value_is_case_insensitive():
    headers = [{"name": "message-id", "value": "<abc@mail>"}, {"name": "From", "value": "a@b.test"}]
    assert header_value(headers, "Message-ID") == "<abc@mail>"
    assert header_value(headers, "to") is None


def test_find_case_token_ignores_case_and_surrounding_text():
    assert find_case_token(f"Re: Broken blender [case-{CASE_ID.upper()}]") == CASE_ID
    assert find_case_token("CASE-1234") is None
    assert find_case_token(None) is None


def test_ensure_case_token_appends_once():
    subject = ensure_case_token("Broken blender", CASE_ID)
    assert subject == f"Broken blender [CASE-{CASE_ID}]"
    assert ensure_case_token(subject, CASE_ID) == subject
    assert ensure_case_token("", CASE_ID) == f"[CASE-{CASE_ID}]"


@pytest.mark.parametrize(
    "thread_subject, expected",
    [
        ("Broken blender", "Re: Broken blender"),
        ("Re: Broken blender", "Re: Broken blender"),
        ("RE: re:Re :  Broken blender", "Re: Broken blender"),
        ("", FALLBACK_REPLY_SUBJECT),
        ("Re: ", FALLBACK_REPLY_SUBJECT),
        (None, FALLBACK_REPLY_SUBJECT),
    ],
)
def test_reply_subject_collapses_prefixes(thread_subject, expected):
    assert reply_subject(thread_subject) == expected


def test_references_are_merged_without_duplicates():
    refs = parse_references("<a@mail> <b@mail>\n <a@mail>")
    assert refs == ["a@mail", "b@mail", "a@mail"]
    assert merge_references(refs, "c@mail") == ["a@mail", "b@mail", "c@mail"]
    assert merge_references(["a@mail"], "a@mail") == ["a@mail"]
    assert merge_references([], None) == []
    assert normalize_message_id(" <x@mail> ") == "x@mail"


def test_dates_are_naive_utc():
    assert parse_date_header("Tue, 14 Nov 2023 22:13:20 +0100") == datetime(2023, 11, 14, 21, 13, 20)
    assert parse_date_header("not a date") is None
    assert internal_timestamp({"internalDate": "1700000000000"}) == datetime(2023, 11, 14, 22, 13, 20)
    assert internal_timestamp({"internalDate": "garbage"}) is None


def test_sort_by_internal_date():
    ordered = sort_by_internal_date([{"id": "b", "internalDate": "20"}, {"id": "a", "internalDate": "10"}])
    assert [m["id"] for m in ordered] == ["a", "b"]


def test_is_sent_by_mailbox(make_message):
    ours = make_message("m1", "t1", sender="Support <Support@Claimy.test>", to="shop@acme.test")
    labelled = make_message("m2", "t1", sender="other@acme.test", to="shop@acme.test", labels=["SENT"])
    theirs = make_message("m3", "t1", sender="shop@acme.test", to="support@claimy.test")
    assert is_sent_by_mailbox(ours, "support@claimy.test")
    assert is_sent_by_mailbox(labelled, "support@claimy.test")
    assert not is_sent_by_mailbox(theirs, "support@claimy.test")
    assert not is_sent_by_mailbox(theirs, "")


def test_parse_message_extracts_correlation_fields(make_message):
    raw = make_message(
        "m1",
        "t1",
        sender="Shop <shop@acme.test>",
        to="support@claimy.test",
        subject=f"Re: Blender [CASE-{CASE_ID}]",
        message_id_header="<m1@acme.test>",
        references="<root@claimy.test>",
    )
    parsed = parse_message(raw)
    assert parsed.id == "m1"
    assert parsed.thread_id == "t1"
    assert parsed.from_address == "shop@acme.test"
    assert parsed.to_address == "support@claimy.test"
    assert parsed.message_id_header == "m1@acme.test"
    assert parsed.references == ["root@claimy.test"]
    assert parsed.internal_date == datetime(2023, 11, 14, 22, 13, 20)
    assert parsed.date == parsed.internal_date


def test_parse_message_rejects_missing_headers(make_message):
    with pytest.raises(MailHeaderError):
        parse_message(make_message("m1", "t1", sender="shop@acme.test", to=None))
    with pytest.raises(MailHeaderError):
        parse_message({"id": "m2", "threadId": "t1"})
