"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, schema rebuilt for each test
- Organization / team member / agent factories
- HTTPX AsyncClient wired to the app with the test session
- Scripted AI provider
"""
import os
import uuid
from typing import AsyncGenerator, Generator

from cryptography.fernet import Fernet

# Must be set before any supportdesk module reads settings
os.environ["ENV"] = "test"
os.environ["TESTING"] = "1"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ["RESEND_API_KEY"] = ""
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["FERNET_KEY"] = Fernet.generate_key().decode()

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from supportdesk.core.deps import get_db
from supportdesk.core.ttl_cache import InMemoryTTLCache, set_ttl_cache
from supportdesk.db import models  # noqa: F401 - register mappers
from supportdesk.db.base import Base
from supportdesk.db.enums import ChannelPlatform
from supportdesk.db.models import AgentSource, Organization, OrganizationMember, SupportAgent
from supportdesk.db.session import SessionLocal, engine
from supportdesk.main import app
from supportdesk.services import channel_connection_service
from supportdesk.services.ai_provider import AICompletion


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Fresh schema per test.

    SQLite savepoints do not survive the commits app code makes, so the
    tables are simply dropped afterwards.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def ttl_cache() -> Generator[InMemoryTTLCache, None, None]:
    cache = InMemoryTTLCache()
    set_ttl_cache(cache)
    yield cache
    set_ttl_cache(None)


@pytest.fixture(scope="function")
def test_org(db: Session) -> Organization:
    """Create a test organization (AI off)."""
    org = Organization(
        id=uuid.uuid4(),
        name="Acme Support",
        slug=f"acme-{uuid.uuid4().hex[:8]}",
        ai_settings={},
    )
    db.add(org)
    db.commit()
    return org


@pytest.fixture(scope="function")
def test_member(db: Session, test_org: Organization) -> OrganizationMember:
    """Active team member with a linked Slack identity."""
    member = OrganizationMember(
        organization_id=test_org.id,
        email="agent@acme.test",
        display_name="Ada Agent",
        linked_identities={"slack": ["U_AGENT"], "telegram": ["ada_support"]},
    )
    db.add(member)
    db.commit()
    return member


@pytest.fixture(scope="function")
def test_agent(db: Session, test_org: Organization) -> SupportAgent:
    agent = SupportAgent(
        organization_id=test_org.id,
        name="Acme Bot",
        instructions="You are the Acme support assistant.",
    )
    db.add(agent)
    db.flush()
    db.add(
        AgentSource(
            agent_id=agent.id,
            title="Shipping policy",
            content="Orders ship within 2 business days.",
        )
    )
    db.commit()
    return agent


@pytest.fixture(scope="function")
def slack_connection(db: Session, test_org: Organization):
    return channel_connection_service.upsert_connection(
        db,
        organization_id=test_org.id,
        platform=ChannelPlatform.SLACK,
        external_account_id="T_ACME",
        credentials={"bot_token": "xoxb-test", "signing_secret": "slack-secret"},
    )


def enable_ai(db: Session, org: Organization, **overrides) -> None:
    org.ai_settings = {
        "enabled": True,
        "auto_response_enabled": True,
        "confidence_threshold": 0.7,
        **overrides,
    }
    db.add(org)
    db.commit()


# =============================================================================
# AI Provider Stub
# =============================================================================

class ScriptedProvider:
    """Returns queued completions and records every prompt it saw."""

    def __init__(self, *responses: str):
        self.responses = list(responses)
        self.calls: list[list] = []

    async def complete(self, messages, config=None):
        self.calls.append(messages)
        text = self.responses.pop(0) if self.responses else ""
        return AICompletion(text=text, model="stub-model", provider="stub")

    def factory(self, kind):  # noqa: ARG002
        return self


# =============================================================================
# HTTP Client
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated client sharing the test session."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
