import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from promptopt.database import init_db
from promptopt.metering.config import MeteringConfig
from promptopt.metering.ledger import QuotaLedger
from promptopt.metering.metrics import MetricsCollector
from promptopt.models.base import Base

# Setup in-memory DB for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def session_factory():
    """Fresh schema per test."""
    init_db(bind=engine)
    yield TestingSessionLocal
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def metering_config():
    return MeteringConfig(
        rate_limit_enabled=True,
        redis_url=None,
        rate_limit_window_sec=60,
        route_limits={"quick": 30, "deep": 10},
        provider_max_attempts=2,
        retry_initial_delay=0.01,
        retry_max_delay=0.02,
    )


@pytest.fixture
def ledger(metering_config, session_factory):
    return QuotaLedger(metering_config, session_factory=session_factory)


@pytest.fixture
def metrics():
    return MetricsCollector()

