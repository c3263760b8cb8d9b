"""Tests for the mailbox batch passes."""
from datetime import datetime

from models import Notification
from utils.mail_sync import MailSyncBatchJob, run_mail_sync_cycle, run_reply_check_cycle

MAILBOX = "support@claimy.test"


def test_sync_matches_subject_token_and_adopts_thread(fakes, make_case, make_message):
    case = make_case()
    fakes.transport.inbox = [
        make_message("m1", "t-9", sender="Acme <help@acme.test>", to=MAILBOX,
                     subject=f"Re: Blender [CASE-{case.id}]", internal_ms=1_700_000_000_000),
    ]

    result = fakes.engine.mail_sync.sync_recent(7)

    assert fakes.transport.queries == ["newer_than:7d"]
    assert result == {"scanned": 1, "matched": 1, "updated": 1, "errors": 0}
    assert case.thread_id == "t-9"
    email = case.emails[-1]
    assert (email.direction, email.from_address, email.to_address, email.body) == ("INBOUND", "help@acme.test", MAILBOX, "")
    assert email.sent_at == datetime(2023, 11, 14, 22, 13, 20)
    assert case.status == "IN_REVIEW"
    assert case.status_history[-1].note == "Reply received"


def test_owner_reply_moves_case_once(fakes, make_case, owner, make_message):
    case = make_case()
    fakes.transport.inbox = [
        make_message("m1", "t-1", sender=f"Owner <{owner.email.upper()}>", to=MAILBOX,
                     subject="About my blender", internal_ms=1_700_000_000_000),
    ]

    first = fakes.engine.mail_sync.sync_recent(7)
    second = fakes.engine.mail_sync.sync_recent(7)

    assert first["matched"] == 1 and first["updated"] == 1
    assert second["matched"] == 1 and second["updated"] == 0
    assert case.status == "IN_REVIEW"
    assert case.last_email_message_id == "m1"
    assert case.last_email_reply_at == datetime(2023, 11, 14, 22, 13, 20)
    assert len(case.emails) == 1
    assert Notification.query.filter_by(case_id=case.id).count() == 1


def test_subject_token_beats_sender_match(fakes, make_case, owner, make_message):
    by_sender = make_case(product="Kettle")
    by_token = make_case(product="Toaster")
    fakes.transport.inbox = [
        make_message("m1", "t-1", sender=owner.email, to=MAILBOX, subject=f"[CASE-{by_token.id}]"),
    ]

    fakes.engine.mail_sync.sync_recent(7)

    assert len(by_token.emails) == 1
    assert by_sender.emails == []


def test_thread_is_first_writer_wins(fakes, make_case, make_message):
    case = make_case()
    case.thread_id = "t-original"
    fakes.transport.inbox = [
        make_message("m1", "t-other", sender="help@acme.test", to=MAILBOX, subject=f"[CASE-{case.id}]"),
    ]
    fakes.engine.mail_sync.sync_recent(7)
    assert case.thread_id == "t-original"
    assert case.emails[-1].thread_id == "t-other"


def test_own_sent_copy_is_logged_without_moving_the_case(fakes, make_case, make_message):
    case = make_case()
    fakes.transport.inbox = [
        make_message("m1", "t-1", sender=MAILBOX, to="help@acme.test",
                     subject=f"Blender [CASE-{case.id}]", labels=["SENT"]),
    ]
    result = fakes.engine.mail_sync.sync_recent(7)
    assert result["matched"] == 1 and result["updated"] == 0
    assert case.emails[-1].direction == "OUTBOUND"
    assert case.status == "PENDING"
    assert case.thread_id == "t-1"


def test_already_logged_outbound_message_is_not_duplicated(fakes, make_case, store, make_message):
    case = make_case()
    fakes.engine.correlator.send_case_email(case, subject="Blender", body="Hi")
    fakes.transport.inbox = [
        make_message("sent-1", case.thread_id, sender=MAILBOX, to="help@acme.test",
                     subject=f"Blender [CASE-{case.id}]", labels=["SENT"]),
    ]
    fakes.engine.mail_sync.sync_recent(7)
    assert len(case.emails) == 1


def test_bad_headers_are_counted_not_raised(fakes, make_case, make_message):
    case = make_case()
    inbox = []
    for i in range(500):
        if i in (10, 250, 499):
            inbox.append(make_message(f"bad-{i}", f"t-{i}", sender="x@spam.test", to=None, subject="?"))
        elif i in (3, 4):
            inbox.append(
                make_message(f"m-{i}", "t-case", sender="help@acme.test", to=MAILBOX,
                             subject=f"Re: [CASE-{case.id}]", internal_ms=1_700_000_000_000 + i)
            )
        else:
            inbox.append(make_message(f"m-{i}", f"t-{i}", sender=f"news{i}@list.test", to=MAILBOX, subject="Newsletter"))
    fakes.transport.inbox = inbox

    result = fakes.engine.mail_sync.sync_recent(7)

    assert result["scanned"] == 500
    assert result["errors"] == 3
    assert result["matched"] == 2
    assert len(case.emails) == 2
    assert case.last_email_message_id == "m-4"


def test_batch_limit_is_capped(fakes):
    job = MailSyncBatchJob(fakes.transport, fakes.engine.correlator, batch_limit=10_000)
    assert job.batch_limit == 500


def test_check_replies_advances_on_new_incoming(fakes, make_case, make_message):
    case = make_case()
    case.thread_id = "t-1"
    quiet = make_case(product="Kettle")
    quiet.thread_id = "t-2"
    fakes.transport.threads["t-1"] = [
        make_message("m1", "t-1", sender=MAILBOX, to="help@acme.test", internal_ms=1_000, labels=["SENT"]),
        make_message("m2", "t-1", sender="help@acme.test", to=MAILBOX, internal_ms=2_000),
    ]
    fakes.transport.threads["t-2"] = [
        make_message("m3", "t-2", sender=MAILBOX, to="help@acme.test", internal_ms=1_000, labels=["SENT"]),
    ]

    result = fakes.engine.mail_sync.check_replies()

    assert (result["scanned"], result["matched"], result["updated"], result["errors"]) == (2, 1, 1, 0)
    details = {d["case_id"]: d for d in result["details"]}
    assert details[case.id] == {"case_id": case.id, "thread_id": "t-1", "updated": True, "latest_message_id": "m2"}
    assert details[quiet.id]["updated"] is False
    assert case.status == "IN_REVIEW"
    assert case.last_email_message_id == "m2"

    again = fakes.engine.mail_sync.check_replies()
    assert again["updated"] == 0
    assert Notification.query.filter_by(case_id=case.id).count() == 1


def test_check_replies_isolates_failures(fakes, make_case):
    case = make_case()
    case.thread_id = "gone"
    result = fakes.engine.mail_sync.check_replies()
    assert result["scanned"] == 1
    assert result["errors"] == 1
    assert result["details"] == []


def test_cli_cycles_use_the_app_engine(app, fakes, make_case, make_message):
    case = make_case()
    fakes.transport.inbox = [
        make_message("m1", "t-1", sender="help@acme.test", to=MAILBOX, subject=f"[CASE-{case.id}]"),
    ]
    app.config["MAIL_SYNC_WINDOW_DAYS"] = 3

    assert run_mail_sync_cycle(app)["matched"] == 1
    assert fakes.transport.queries == ["newer_than:3d"]
    assert run_reply_check_cycle(app)["scanned"] == 1


def test_fetch_failure_is_counted_and_the_run_continues(fakes, make_case, make_message):
    case = make_case()
    fakes.transport.inbox = [
        make_message("m1", "t-1", sender="news@list.test", to=MAILBOX, subject="Newsletter"),
        make_message("gone", "t-2", sender="help@acme.test", to=MAILBOX, subject=f"[CASE-{case.id}]"),
        make_message("m3", "t-3", sender="help@acme.test", to=MAILBOX, subject=f"Re: [CASE-{case.id}]"),
    ]
    fakes.transport.missing = {"gone"}

    result = fakes.engine.mail_sync.sync_recent(7)

    assert result == {"scanned": 3, "matched": 1, "updated": 1, "errors": 1}
    assert [e.message_id for e in case.emails] == ["m3"]
