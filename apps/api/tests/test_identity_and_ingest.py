"""Identity resolution and the synchronous ingest path."""

from supportdesk.db.enums import ChannelPlatform, JobStatus, JobType
from supportdesk.db.models import Job, OrganizationMember, Ticket
from supportdesk.schemas.inbound import CanonicalInboundMessage
from supportdesk.services import identity_service
from supportdesk.services.ingest_service import IngestService, triage_idempotency_key

from conftest import enable_ai


def _message(email: str, hints=None, message_id: str = "m-1") -> CanonicalInboundMessage:
    return CanonicalInboundMessage(
        platform=ChannelPlatform.SLACK,
        external_message_id=message_id,
        external_thread_key="C1:U1",
        sender_external_id="U1",
        sender_email=email,
        body="My invoice is wrong",
        identity_hints=hints or [],
    )


def test_member_email_match_is_case_insensitive(db, test_org, test_member):
    assert identity_service.is_internal(db, test_org.id, "AGENT@acme.test")


def test_linked_platform_identity_marks_sender_internal(db, test_org, test_member):
    assert identity_service.is_internal(
        db, test_org.id, "u_agent@slack.local", identity_hints=["U_AGENT"], platform=ChannelPlatform.SLACK
    )


def test_linked_identity_only_counts_on_its_platform(db, test_org, test_member):
    assert not identity_service.is_internal(
        db, test_org.id, "someone@x.test", identity_hints=["U_AGENT"], platform=ChannelPlatform.DISCORD
    )


def test_inactive_member_is_treated_as_customer(db, test_org, test_member):
    test_member.is_active = False
    db.commit()

    assert not identity_service.is_internal(db, test_org.id, "agent@acme.test")


def test_member_of_another_org_is_a_customer(db, test_org):
    from supportdesk.db.models import Organization

    other = Organization(name="Other", slug="other-org", ai_settings={})
    db.add(other)
    db.flush()
    db.add(OrganizationMember(organization_id=other.id, email="them@other.test"))
    db.commit()

    assert not identity_service.is_internal(db, test_org.id, "them@other.test")


def test_ingest_ignores_team_member(db, test_org, test_member, slack_connection):
    result = IngestService().ingest(db, slack_connection, _message("agent@acme.test"))

    assert result.status == "internal_sender"
    assert db.query(Ticket).count() == 0


def test_ingest_routes_without_triage_when_ai_disabled(db, test_org, slack_connection):
    result = IngestService().ingest(db, slack_connection, _message("customer@example.com"))

    assert result.status == "routed"
    assert result.is_new_ticket is True
    assert result.triage_enqueued is False
    assert db.query(Job).count() == 0


def test_ingest_enqueues_triage_once_per_message(db, test_org, slack_connection):
    enable_ai(db, test_org)
    service = IngestService()

    first = service.ingest(db, slack_connection, _message("customer@example.com"))
    again = service.ingest(db, slack_connection, _message("customer@example.com"))

    assert first.triage_enqueued is True
    assert again.status == "duplicate"
    jobs = db.query(Job).all()
    assert len(jobs) == 1
    assert jobs[0].job_type == JobType.TRIAGE_TICKET.value
    assert jobs[0].status == JobStatus.PENDING.value
    assert jobs[0].payload["ticket_id"] == str(first.ticket_id)
    assert jobs[0].idempotency_key.startswith(triage_idempotency_key(first.ticket_id, ""))
