"""Conversation threading: find-or-create, dedupe and the create race."""

import threading
import uuid

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from supportdesk.db.base import Base
from supportdesk.db.enums import ChannelPlatform, SenderType, TicketPriority, TicketStatus
from supportdesk.db.models import ChannelConnection, Organization, Ticket, TicketMessage
from supportdesk.schemas.inbound import CanonicalInboundMessage
from supportdesk.services import channel_connection_service
from supportdesk.services.channels import get_adapter
from supportdesk.services.threading_service import ConversationThreader
from supportdesk.services.ticket_repository import TicketRepository, ticket_repository


def _slack_message(text: str, ts: str, user: str = "U_CUST", channel: str = "C_SUPPORT"):
    return get_adapter(ChannelPlatform.SLACK).normalize(
        {"type": "message", "user": user, "channel": channel, "text": text, "ts": ts}
    )


def test_second_message_in_channel_appends_to_open_ticket(db, test_org, slack_connection):
    threader = ConversationThreader()

    first = threader.route(db, slack_connection, test_org.id, _slack_message("Where is my order?", "100.1"))
    second = threader.route(db, slack_connection, test_org.id, _slack_message("actually nevermind", "100.2"))

    assert first.is_new_ticket is True
    assert second.is_new_ticket is False
    assert second.ticket_id == first.ticket_id

    ticket = db.get(Ticket, first.ticket_id)
    assert ticket.status == TicketStatus.OPEN
    assert ticket.priority == TicketPriority.MEDIUM
    messages = ticket_repository.list_messages(db, ticket.id)
    assert [m.body for m in messages] == ["Where is my order?", "actually nevermind"]
    assert all(m.sender_type == SenderType.CUSTOMER for m in messages)
    assert db.query(Ticket).count() == 1


def test_new_ticket_seeds_thread_keys(db, test_org, slack_connection):
    routed = ConversationThreader().route(
        db, slack_connection, test_org.id, _slack_message("Hello", "200.1")
    )

    ticket = db.get(Ticket, routed.ticket_id)
    assert ticket.ticket_metadata["source"] == "slack"
    assert ticket.ticket_metadata["slackChannelId"] == "C_SUPPORT"
    assert ticket.ticket_metadata["slackMessageTs"] == "200.1"
    assert ticket.thread_key == "C_SUPPORT:U_CUST"


def test_reply_target_follows_newest_message(db, test_org, slack_connection):
    threader = ConversationThreader()
    threader.route(db, slack_connection, test_org.id, _slack_message("One", "300.1"))
    routed = threader.route(db, slack_connection, test_org.id, _slack_message("Two", "300.2"))

    ticket = db.get(Ticket, routed.ticket_id)
    db.refresh(ticket)
    assert ticket.ticket_metadata["slackMessageTs"] == "300.2"


def test_different_customers_get_separate_tickets(db, test_org, slack_connection):
    threader = ConversationThreader()
    a = threader.route(db, slack_connection, test_org.id, _slack_message("Hi", "400.1", user="U_A"))
    b = threader.route(db, slack_connection, test_org.id, _slack_message("Hi", "400.2", user="U_B"))

    assert a.ticket_id != b.ticket_id
    assert b.is_new_ticket is True


def test_redelivered_message_is_not_duplicated(db, test_org, slack_connection):
    threader = ConversationThreader()
    first = threader.route(db, slack_connection, test_org.id, _slack_message("Hi", "500.1"))
    again = threader.route(db, slack_connection, test_org.id, _slack_message("Hi", "500.1"))

    assert again.duplicate is True
    assert again.ticket_id == first.ticket_id
    assert db.query(TicketMessage).count() == 1


def test_closed_ticket_is_not_reopened(db, test_org, slack_connection):
    threader = ConversationThreader()
    first = threader.route(db, slack_connection, test_org.id, _slack_message("Hi", "600.1"))
    ticket = db.get(Ticket, first.ticket_id)
    ticket_repository.close(db, ticket)
    db.commit()

    follow_up = threader.route(db, slack_connection, test_org.id, _slack_message("Back again", "600.2"))

    assert follow_up.is_new_ticket is True
    assert follow_up.ticket_id != first.ticket_id


class _StaleReadRepository(TicketRepository):
    """Misses the open ticket once, as a concurrent process would."""

    def __init__(self):
        self.misses = 1

    def find_open_for_thread(self, db, **kwargs):
        if self.misses:
            self.misses -= 1
            return None
        return super().find_open_for_thread(db, **kwargs)


def test_lost_create_race_appends_to_winner(db, test_org, slack_connection):
    winner = ConversationThreader().route(
        db, slack_connection, test_org.id, _slack_message("First", "700.1")
    )

    loser = ConversationThreader(repository=_StaleReadRepository()).route(
        db, slack_connection, test_org.id, _slack_message("Second", "700.2")
    )

    assert loser.is_new_ticket is False
    assert loser.ticket_id == winner.ticket_id
    assert db.query(Ticket).count() == 1
    assert db.query(TicketMessage).count() == 2


def test_message_without_connection_threads_by_email(db, test_org):
    message = CanonicalInboundMessage(
        platform=ChannelPlatform.WIDGET,
        external_message_id="m-1",
        external_thread_key="session-1",
        sender_external_id="visitor-1",
        sender_email="Visitor@Example.com",
        body="Can I change my plan?",
    )
    routed = ConversationThreader().route(db, None, test_org.id, message)

    ticket = db.get(Ticket, routed.ticket_id)
    assert ticket.customer_email == "visitor@example.com"
    assert ticket.subject == "Can I change my plan?"


class _RecordingRepository(TicketRepository):
    """Remembers the order messages were appended in."""

    def __init__(self):
        self.appended = []

    def append_message(self, db, ticket, **kwargs):
        self.appended.append(kwargs["body"])
        return super().append_message(db, ticket, **kwargs)


def test_simultaneous_messages_share_one_ticket(tmp_path):
    # Each worker gets its own connection, unlike the shared in-memory engine
    engine = create_engine(
        f"sqlite:///{tmp_path / 'threading.db'}", connect_args={"check_same_thread": False, "timeout": 30}
    )
    Base.metadata.create_all(bind=engine)
    make_session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    with make_session() as setup:
        org = Organization(id=uuid.uuid4(), name="Acme Support", slug="acme-race", ai_settings={})
        setup.add(org)
        setup.commit()
        connection = channel_connection_service.upsert_connection(
            setup,
            organization_id=org.id,
            platform=ChannelPlatform.SLACK,
            external_account_id="T_ACME",
            credentials={"bot_token": "xoxb-test"},
        )
        org_id, connection_id = org.id, connection.id

    workers = 8
    repository = _RecordingRepository()
    threader = ConversationThreader(repository=repository)
    barrier = threading.Barrier(workers)
    results = []
    errors = []

    def deliver(index: int) -> None:
        with make_session() as session:
            own_connection = session.get(ChannelConnection, connection_id)
            message = _slack_message(f"message {index}", f"800.{index}")
            barrier.wait()
            try:
                results.append(threader.route(session, own_connection, org_id, message))
            except Exception as exc:  # surfaced below; a thread cannot fail the test itself
                errors.append(exc)

    threads = [threading.Thread(target=deliver, args=(index,)) for index in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    try:
        assert errors == []
        assert len(results) == workers
        assert sum(result.is_new_ticket for result in results) == 1
        assert len({result.ticket_id for result in results}) == 1
        with make_session() as check:
            assert check.query(Ticket).count() == 1
            stored = ticket_repository.list_messages(check, results[0].ticket_id)
            assert [m.body for m in stored] == repository.appended
            assert len(stored) == workers
    finally:
        engine.dispose()
