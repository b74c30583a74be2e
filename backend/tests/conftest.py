"""Shared pytest fixtures for the notification workflow engine test suite.

Provides:
- In-memory async SQLite database (one per test, shared via StaticPool)
- A controllable clock
- Recording email / SMS providers that can fail or block on demand
- A scheduler, delay sweep and trigger service wired to the test database
- FastAPI test client (httpx.AsyncClient) and bearer-token helpers
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("RUN_ENGINE_IN_PROCESS", "false")

from core.constants import ActorRole  # noqa: E402
from core.security import Actor, create_access_token  # noqa: E402
from db.database import create_session_factory, init_db  # noqa: E402
from db.models.audit_log import AuditLogEntry  # noqa: E402
from db.models.node_execution import NodeExecutionModel  # noqa: E402
from db.models.node_template import NodeTemplateModel  # noqa: E402
from db.models.step_execution_log import StepExecutionLogModel  # noqa: E402
from db.models.workflow_run import WorkflowRunModel  # noqa: E402
from notifications.providers import EmailProvider, RenderedEmail, RenderedSms, SmsProvider  # noqa: E402
from services.audit_service import AuditLogWriter  # noqa: E402
from services.definition_store import DefinitionStore  # noqa: E402
from services.trigger_service import TriggerIngestionService  # noqa: E402
from tasks.registry import build_default_registry  # noqa: E402
from workflow.delay_timer import DelayTimerService  # noqa: E402
from workflow.engine import ExecutionScheduler  # noqa: E402
from workflow.retry_manager import RetryManager  # noqa: E402
from workflow.retry_strategies import RetryStrategy  # noqa: E402

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class _RecordingProvider:
    def __init__(self, prefix: str):
        self.prefix = prefix
        self.sent: list[dict] = []
        self.calls = 0
        self.errors: list[Exception] = []
        self.gate: Optional[asyncio.Event] = None
        self.entered = asyncio.Event()

    async def _deliver(self, idempotency_key: str, to: str, **content) -> str:
        self.calls += 1
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.errors:
            raise self.errors.pop(0)
        self.sent.append({"idempotency_key": idempotency_key, "to": to, **content})
        return f"{self.prefix}-{len(self.sent)}"


class RecordingEmailProvider(_RecordingProvider, EmailProvider):
    def __init__(self):
        super().__init__("em")

    async def send_email(self, idempotency_key: str, to: str, rendered: RenderedEmail) -> str:
        return await self._deliver(idempotency_key, to, subject=rendered.subject, body=rendered.body)


class RecordingSmsProvider(_RecordingProvider, SmsProvider):
    def __init__(self):
        super().__init__("sms")

    async def send_sms(self, idempotency_key: str, to: str, rendered: RenderedSms) -> str:
        return await self._deliver(idempotency_key, to, body=rendered.body)


class RunInspector:
    """Reads engine state through fresh sessions."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def run(self, run_id: str) -> WorkflowRunModel:
        async with self.session_factory() as session:
            return await session.get(WorkflowRunModel, run_id)

    async def runs(self) -> list[WorkflowRunModel]:
        async with self.session_factory() as session:
            result = await session.execute(select(WorkflowRunModel))
            return list(result.scalars().all())

    async def executions(self, run_id: str) -> dict[str, NodeExecutionModel]:
        """Node executions of a run keyed by node code."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(NodeTemplateModel.code, NodeExecutionModel)
                .join(NodeTemplateModel, NodeTemplateModel.id == NodeExecutionModel.node_id)
                .where(NodeExecutionModel.run_id == run_id)
            )
            return {code: execution for code, execution in result.all()}

    async def audit(self, run_id: Optional[str] = None, event_type: Optional[str] = None) -> list[AuditLogEntry]:
        async with self.session_factory() as session:
            return list(await AuditLogWriter().list_entries(
                session, run_id=run_id, event_type=event_type, limit=1000
            ))

    async def step_logs(self, run_id: str) -> list[StepExecutionLogModel]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(StepExecutionLogModel)
                .where(StepExecutionLogModel.run_id == run_id)
                .order_by(StepExecutionLogModel.attempt)
            )
            return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database; StaticPool keeps one connection alive."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def state(session_factory) -> RunInspector:
    return RunInspector(session_factory)


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def email_provider() -> RecordingEmailProvider:
    return RecordingEmailProvider()


@pytest.fixture
def sms_provider() -> RecordingSmsProvider:
    return RecordingSmsProvider()


@pytest.fixture
def audit(clock) -> AuditLogWriter:
    return AuditLogWriter(clock=clock)


@pytest.fixture
def retry_manager(clock) -> RetryManager:
    """Three attempts, 4s then 8s backoff, no jitter."""
    return RetryManager(
        strategy=RetryStrategy.exponential(max_attempts=3, base_delay=2.0, max_delay=60.0, jitter_ratio=0.0),
        timeouts={"email": 5.0, "sms": 5.0},
        clock=clock,
    )


@pytest.fixture
def scheduler(session_factory, email_provider, sms_provider, retry_manager, audit, clock) -> ExecutionScheduler:
    return ExecutionScheduler(
        session_factory=session_factory,
        registry=build_default_registry(email_provider, sms_provider),
        retry_manager=retry_manager,
        audit=audit,
        clock=clock,
        pool_size=2,
        worker_id="test-worker",
    )


@pytest.fixture
def sweep(scheduler) -> DelayTimerService:
    return DelayTimerService(scheduler, interval_seconds=0.01, batch_size=100, stale_after_seconds=600)


@pytest.fixture
def trigger_service(session_factory, scheduler) -> TriggerIngestionService:
    return TriggerIngestionService(session_factory, scheduler)


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------

@pytest.fixture
def manager() -> Actor:
    return Actor(id="manager-1", roles=[ActorRole.WORKFLOW_MANAGER.value])


@pytest.fixture
def operator() -> Actor:
    return Actor(id="operator-1", roles=[ActorRole.TRIGGER_OPERATOR.value])


@pytest.fixture
def publish(session_factory, audit, manager):
    """Publish a definition through the Definition Store and commit it."""

    async def _publish(nodes, edges=(), name="test workflow", **kwargs):
        async with session_factory() as session:
            async with session.begin():
                store = DefinitionStore(session, audit)
                model = await store.publish(
                    manager, name=name, nodes=list(nodes), edges=list(edges), **kwargs
                )
        return model

    return _publish


@pytest.fixture
def start_run(trigger_service, operator):
    """Trigger a workflow as the operator; returns the IngestionResult."""

    async def _start(workflow_id, payload=None, idempotency_key=None):
        return await trigger_service.ingest(
            operator, workflow_id, payload if payload is not None else {}, idempotency_key=idempotency_key
        )

    return _start


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app(session_factory, scheduler, audit, trigger_service):
    """FastAPI app with its dependencies pointed at the test engine."""
    from app.dependencies import get_audit_writer, get_db, get_scheduler, get_trigger_service
    from app.main import create_app

    test_app = create_app()

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    test_app.dependency_overrides[get_db] = _get_db
    test_app.dependency_overrides[get_scheduler] = lambda: scheduler
    test_app.dependency_overrides[get_audit_writer] = lambda: audit
    test_app.dependency_overrides[get_trigger_service] = lambda: trigger_service
    yield test_app
    test_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def auth_header(actor_id: str, *roles: str) -> dict[str, str]:
    token = create_access_token(actor_id, list(roles))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def manager_headers() -> dict[str, str]:
    return auth_header("manager-1", ActorRole.WORKFLOW_MANAGER.value)


@pytest.fixture
def operator_headers() -> dict[str, str]:
    return auth_header("operator-1", ActorRole.TRIGGER_OPERATOR.value)


@pytest.fixture
def worker_headers() -> dict[str, str]:
    return auth_header("worker-1", ActorRole.WORKER_SERVICE.value)
