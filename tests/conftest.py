"""Test configuration."""
import os
from collections.abc import AsyncIterator, Callable, Iterator
from pathlib import Path
from uuid import uuid4

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# --- Default environment
os.environ.setdefault("DATABASE_URL", "sqlite:///./crowdledger_test.db")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DB_RETRY_ATTEMPTS", "10")
os.environ.setdefault("DB_RETRY_BACKOFF_SECONDS", "0.01")

from crowdledger.main import app  # noqa: E402
from crowdledger.db import get_db  # noqa: E402
from crowdledger.models import Campaign, CampaignStatus, Milestone, User, UserRole  # noqa: E402
from crowdledger.schemas.campaign import CampaignCreate  # noqa: E402
from crowdledger.schemas.milestone import MilestoneCreate  # noqa: E402
from crowdledger.schemas.user import UserCreate  # noqa: E402
from crowdledger.services import campaigns as campaigns_service  # noqa: E402
from crowdledger.services import milestones as milestones_service  # noqa: E402
from crowdledger.services import users as users_service  # noqa: E402

ROOT = Path(__file__).resolve().parents[1]
DB_PATH = Path("./crowdledger_test.db")


def _run_migrations() -> None:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


# --- (1) Fresh database file for every session
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False, "timeout": 30},
    future=True,
)
TestingSessionLocal = sessionmaker(
    bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False
)

# --- (2) Schema comes from Alembic only
_run_migrations()


@pytest.fixture
def session_factory() -> sessionmaker[Session]:
    return TestingSessionLocal


@pytest.fixture
def db_session() -> Iterator[Session]:
    # Services commit their own units of work, so tests use unique data instead of rollback.
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(autouse=True)
def override_db_dependency(db_session: Session) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_user(db_session: Session) -> Callable[..., User]:
    def _factory(role: UserRole = UserRole.Donor, prefix: str = "user") -> User:
        tag = uuid4().hex[:10]
        payload = UserCreate(
            username=f"{prefix}-{tag}",
            email=f"{prefix}-{tag}@example.com",
            firstname="Test",
            lastname=prefix.title(),
            contact="+221 77 000 0000",
            address="1 Test Street",
            role=role,
        )
        return users_service.create_user(db_session, payload)

    return _factory


@pytest.fixture
def admin(make_user: Callable[..., User]) -> User:
    return make_user(UserRole.Admin, prefix="admin")


@pytest.fixture
def creator(make_user: Callable[..., User]) -> User:
    return make_user(UserRole.CampaignCreator, prefix="creator")


@pytest.fixture
def make_campaign(db_session: Session, admin: User) -> Callable[..., Campaign]:
    """Factory for campaigns, approved by default, with optional milestone amounts."""

    def _factory(
        owner: User,
        *,
        goal: int = 1000,
        milestones: tuple[int, ...] = (),
        status: CampaignStatus = CampaignStatus.APPROVED,
    ) -> Campaign:
        campaign = campaigns_service.create_campaign(
            db_session,
            owner,
            CampaignCreate(title=f"Campaign {uuid4().hex[:6]}", description="Test campaign", goal_amount=goal),
        )
        for index, amount in enumerate(milestones, start=1):
            milestones_service.create_milestone(
                db_session, owner, campaign.id, MilestoneCreate(title=f"Milestone {index}", amount=amount)
            )
        if status != CampaignStatus.PENDING:
            campaign = campaigns_service.review_campaign(db_session, admin, campaign.id, status)
        return campaign

    return _factory


@pytest.fixture
def first_milestone(db_session: Session) -> Callable[[Campaign], Milestone]:
    def _get(campaign: Campaign) -> Milestone:
        return milestones_service.list_milestones(db_session, campaign.id)[0]

    return _get


@pytest.fixture
def headers_for() -> Callable[..., dict[str, str]]:
    def _headers(user: User, **extra: str) -> dict[str, str]:
        return {"X-User-Id": str(user.id), **extra}

    return _headers
