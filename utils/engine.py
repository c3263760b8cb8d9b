"""Builds the case lifecycle components once per app and hands them out per request."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from flask import Flask, current_app

from utils.gmail_client import GmailTransport, MailTransport
from utils.info_exchange import InfoExchangeTracker
from utils.mail_sync import MailSyncBatchJob
from utils.notifications import NotificationFanout
from utils.pubsub import Broadcaster, InProcessBroadcaster
from utils.push import FcmPushSender, PushSender
from utils.status_machine import StatusMachine
from utils.storage import LocalObjectStorage, ObjectStorage
from utils.thread_correlator import ThreadCorrelator

ENGINE_KEY = "case_engine"


@dataclass
class CaseEngine:
    transport: MailTransport
    storage: ObjectStorage
    push_sender: PushSender
    broadcaster: Broadcaster
    fanout: NotificationFanout
    status_machine: StatusMachine
    correlator: ThreadCorrelator
    info_exchange: InfoExchangeTracker
    mail_sync: MailSyncBatchJob


def build_engine(
    config,
    *,
    transport: Optional[MailTransport] = None,
    storage: Optional[ObjectStorage] = None,
    push_sender: Optional[PushSender] = None,
    broadcaster: Optional[Broadcaster] = None,
) -> CaseEngine:
    transport = transport or GmailTransport.from_config(config)
    storage = storage or LocalObjectStorage.from_config(config)
    push_sender = push_sender or FcmPushSender.from_config(config)
    broadcaster = broadcaster or InProcessBroadcaster()

    fanout = NotificationFanout(broadcaster, push_sender)
    status_machine = StatusMachine(fanout)
    correlator = ThreadCorrelator(transport, status_machine, storage=storage)
    return CaseEngine(
        transport=transport,
        storage=storage,
        push_sender=push_sender,
        broadcaster=broadcaster,
        fanout=fanout,
        status_machine=status_machine,
        correlator=correlator,
        info_exchange=InfoExchangeTracker(transport, storage, status_machine),
        mail_sync=MailSyncBatchJob(transport, correlator, batch_limit=config.get("MAIL_SYNC_BATCH_LIMIT", 500)),
    )


def init_engine(app: Flask, **collaborators) -> CaseEngine:
    engine = build_engine(app.config, **collaborators)
    app.extensions[ENGINE_KEY] = engine
    return engine


def get_engine() -> CaseEngine:
    return current_app.extensions[ENGINE_KEY]
