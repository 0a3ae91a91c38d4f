from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shrubb_jobs.config.settings import Settings, get_settings
from shrubb_jobs.infra.database import Base, Database, get_session
from shrubb_jobs.main import create_app
from shrubb_jobs.v1.billing.spend_guard import SpendGuard
from shrubb_jobs.v1.billing.usage import UsageTracker
from shrubb_jobs.v1.clients.ai import Completion
from shrubb_jobs.v1.core.exceptions import ProviderError
from shrubb_jobs.v1.infra.jobs.service import JobService
from shrubb_jobs.v1.infra.jobs.store import JobStore

# Import models to ensure they're registered
from shrubb_jobs.v1.billing import models as billing_models  # noqa: F401
from shrubb_jobs.v1.domain import models as domain_models
from shrubb_jobs.v1.infra.jobs import models as job_models


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointed at a throwaway SQLite file."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}",
        worker_id="worker-test",
        job_poll_interval_ms=10,
        job_max_attempts=3,
        job_lock_timeout_s=300,
        nudge_interval_s=60,
        nudge_batch_size=50,
        openai_api_key="sk-test",
        twilio_account_sid="AC00000000000000000000000000000000",
        twilio_auth_token="twilio-token",
        twilio_webhook_secret="hook-secret",
        app_url="https://app.shrubb.test",
    )


@pytest.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    """Create a database with every table the worker touches."""
    database = Database(settings)
    async with database.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield database

    await database.close()


@pytest.fixture
async def db_session(database) -> AsyncGenerator[AsyncSession, None]:
    """Session for arranging and asserting rows."""
    async with database.session() as session:
        yield session


@pytest.fixture
def store() -> JobStore:
    return JobStore()


@pytest.fixture
def job_service(settings, store) -> JobService:
    return JobService(settings, store)


@pytest.fixture
def spend_guard(database) -> SpendGuard:
    return SpendGuard(database.SessionLocal)


@pytest.fixture
def usage_tracker(database) -> UsageTracker:
    return UsageTracker(database.SessionLocal)


class Factory:
    """Inserts rows with sensible defaults, one committed row per call."""

    def __init__(self, database: Database):
        self.database = database
        self._clock = datetime.now(UTC) - timedelta(hours=1)

    def _tick(self) -> datetime:
        # Strictly increasing creation times keep FIFO order deterministic
        self._clock += timedelta(seconds=1)
        return self._clock

    async def add(self, row):
        async with self.database.session() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
        return row

    async def company(self, name: str = "Green Thumb Landscaping"):
        return await self.add(domain_models.Company(name=name))

    async def member(self, company_id: UUID, user_id: UUID | None = None, **kwargs):
        return await self.add(
            domain_models.CompanyMember(
                company_id=company_id,
                user_id=user_id or uuid4(),
                created_at=kwargs.pop("created_at", self._tick()),
                **kwargs,
            )
        )

    async def project(self, company_id: UUID | None, user_id: UUID | None = None, **kwargs):
        kwargs.setdefault("name", "Backyard refresh")
        kwargs.setdefault("address", "12 Elm St, Austin TX")
        kwargs.setdefault("climate_zone", "8b")
        kwargs.setdefault("preferences", {"style": "native", "budget": "$5k"})
        return await self.add(
            domain_models.Project(
                company_id=company_id, user_id=user_id or uuid4(), **kwargs
            )
        )

    async def design_run(self, project_id: UUID, **kwargs):
        return await self.add(
            domain_models.DesignRun(
                project_id=project_id, created_at=self._tick(), **kwargs
            )
        )

    async def message(self, project_id: UUID, content: str, role: str = "user", **kwargs):
        return await self.add(
            domain_models.Message(
                project_id=project_id,
                role=role,
                content=content,
                created_at=self._tick(),
                **kwargs,
            )
        )

    async def entitlement(
        self,
        company_id: UUID | None = None,
        user_id: UUID | None = None,
        cap_cents: int = 1000,
        used_cents: int = 0,
    ):
        return await self.add(
            billing_models.Entitlement(
                company_id=company_id,
                user_id=user_id,
                spending_cap_cents=cap_cents,
                spending_used_cents=used_cents,
            )
        )

    async def phone_number(self, company_id: UUID, phone_e164: str = "+15125550100", **kwargs):
        return await self.add(
            domain_models.PhoneNumber(
                account_id=company_id, phone_e164=phone_e164, area_code="512", **kwargs
            )
        )

    async def client(self, company_id: UUID, phone: str | None = "+15125550199", **kwargs):
        kwargs.setdefault("name", "Dana Whitfield")
        return await self.add(
            domain_models.Client(company_id=company_id, phone=phone, **kwargs)
        )

    async def proposal(self, company_id: UUID, project_id: UUID, client_id: UUID, **kwargs):
        kwargs.setdefault("status", domain_models.ProposalStatus.VIEWED.value)
        return await self.add(
            domain_models.Proposal(
                company_id=company_id,
                project_id=project_id,
                client_id=client_id,
                **kwargs,
            )
        )

    async def nudge(self, proposal_id: UUID, company_id: UUID, **kwargs):
        kwargs.setdefault("scheduled_at", datetime.now(UTC) - timedelta(minutes=5))
        return await self.add(
            domain_models.ProposalNudge(
                proposal_id=proposal_id, company_id=company_id, **kwargs
            )
        )

    async def job(self, type: str = "planner", payload: dict[str, Any] | None = None, **kwargs):
        kwargs.setdefault("owner_id", uuid4())
        kwargs.setdefault("status", job_models.JobStatus.QUEUED.value)
        kwargs.setdefault("attempts", 0)
        created_at = kwargs.pop("created_at", self._tick())
        return await self.add(
            job_models.Job(
                type=type,
                payload=payload or {},
                created_at=created_at,
                updated_at=created_at,
                **kwargs,
            )
        )

    async def reload(self, model, row_id):
        async with self.database.session() as session:
            return await session.get(model, row_id)


@pytest.fixture
def factory(database) -> Factory:
    return Factory(database)


@pytest.fixture
async def company_setup(factory):
    """A company with one member, one project and a funded entitlement."""
    company = await factory.company()
    owner = await factory.member(company.id, role="owner")
    project = await factory.project(company.id, user_id=owner.user_id)
    entitlement = await factory.entitlement(company_id=company.id, cap_cents=1000)
    return {
        "company": company,
        "owner": owner,
        "project": project,
        "entitlement": entitlement,
    }


class FakeAIClient:
    """Records calls and returns queued completions."""

    def __init__(self):
        self.completions: list[Completion | Exception] = []
        self.image_urls: list[str | None] = []
        self.calls: list[dict[str, Any]] = []
        self.image_calls: list[dict[str, Any]] = []

    def queue_completion(self, content: str, tokens_in: int = 1000, tokens_out: int = 500):
        self.completions.append(Completion(content, tokens_in, tokens_out, "queued"))

    def queue_error(self, message: str = "upstream timeout"):
        self.completions.append(ProviderError(message))

    async def complete(self, model, messages, **kwargs) -> Completion:
        self.calls.append({"model": model, "messages": messages, **kwargs})
        queued = self.completions.pop(0) if self.completions else Completion("{}", 0, 0, model)
        if isinstance(queued, Exception):
            raise queued
        return Completion(queued.content, queued.tokens_in, queued.tokens_out, model)

    async def generate_image(self, model, prompt, **kwargs) -> str | None:
        self.image_calls.append({"model": model, "prompt": prompt})
        if self.image_urls:
            return self.image_urls.pop(0)
        return f"https://images.test/render-{len(self.image_calls)}.png"

    async def close(self) -> None:
        pass


class FakeTwilioClient:
    """In-memory stand-in for the Twilio REST API."""

    def __init__(self):
        self.available = [{"phone_number": "+15125550123", "friendly_name": "(512) 555-0123"}]
        self.searches: list[str | None] = []
        self.purchases: list[str] = []
        self.sent: list[dict[str, str]] = []

    async def search_available_numbers(self, area_code=None):
        self.searches.append(area_code)
        return list(self.available)

    async def purchase_number(self, phone_number):
        self.purchases.append(phone_number)
        return {"sid": "PN0123456789", "phone_number": phone_number}

    async def send_sms(self, from_number, to, body):
        self.sent.append({"from": from_number, "to": to, "body": body})
        return f"SM{len(self.sent):04d}"

    async def close(self) -> None:
        pass


@pytest.fixture
def fake_ai() -> FakeAIClient:
    return FakeAIClient()


@pytest.fixture
def fake_twilio() -> FakeTwilioClient:
    return FakeTwilioClient()


@pytest.fixture
def app(database, settings):
    """Create a test FastAPI application bound to the test database."""
    app = create_app(settings)

    async def override_session():
        async with database.session() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_settings] = lambda: settings

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
