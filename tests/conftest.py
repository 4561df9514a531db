import os

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("TOSS_SECRET_KEY", "test_sk_dummy")
os.environ.setdefault("ENABLE_N8N_NOTIFICATION_WEBHOOKS", "false")

from datetime import date, datetime, time, timedelta  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from yamoo.database import Base, get_db  # noqa: E402
from yamoo.main import app  # noqa: E402
from yamoo.models import BillingKey, Payment, Subscription, Tenant  # noqa: E402
from yamoo.services.jwt_service import create_access_token  # noqa: E402

# SQLite in-memory, shared across threads (TestClient runs handlers in a worker thread)
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

OWNER_EMAIL = "owner@example.com"
TENANT_ID = "store001"


@pytest.fixture
def db_session():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict:
    token = create_access_token({"email": OWNER_EMAIL, "role": "user"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_headers() -> dict:
    token = create_access_token({"email": "someone@example.com", "role": "user"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers() -> dict:
    token = create_access_token({"email": "admin@yamoo.kr", "role": "admin"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def cron_headers() -> dict:
    return {"Authorization": "Bearer test-cron-secret"}


@pytest.fixture
def tenant(db_session) -> Tenant:
    tenant = Tenant(tenant_id=TENANT_ID, brand_name="야무 스터디카페", email=OWNER_EMAIL)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture
def billing_key(db_session, tenant) -> BillingKey:
    bk = BillingKey(
        tenant_id=tenant.tenant_id,
        customer_key=f"tenant_{tenant.tenant_id}",
        billing_key="bk_test_123",
        card_company="신한",
        card_number="4330****1234",
        is_active=True,
    )
    db_session.add(bk)
    db_session.commit()
    return bk


def period_around_today(days_used: int = 10, total_days: int = 30) -> tuple[datetime, datetime]:
    """Period that started `days_used` days ago (afternoon, to exercise day truncation)."""
    start = datetime.combine(date.today() - timedelta(days=days_used), time(14, 30))
    return start, start + timedelta(days=total_days)


@pytest.fixture
def active_subscription(db_session, tenant, billing_key) -> Subscription:
    """Basic plan, 10 days into a 30 day period, with its original payment."""
    start, next_billing = period_around_today()
    subscription = Subscription(
        tenant_id=tenant.tenant_id,
        email=tenant.email,
        plan="basic",
        status="active",
        amount=39000,
        base_amount=39000,
        billing_key_id=billing_key.id,
        current_period_start=start,
        current_period_end=next_billing,
        next_billing_date=next_billing,
    )
    db_session.add(subscription)
    db_session.add(Payment(
        id="BASIC_1_store001",
        tenant_id=tenant.tenant_id,
        email=tenant.email,
        order_id="BASIC_1_store001",
        plan="basic",
        type="first",
        amount=39000,
        status="done",
        payment_key="pk_original",
        paid_at=start,
        created_at=start,
    ))
    db_session.commit()
    return subscription


@pytest.fixture
def toss_payment_done() -> dict:
    return {
        "paymentKey": "pk_new_001",
        "status": "DONE",
        "method": "카드",
        "receipt": {"url": "https://dashboard.tosspayments.com/receipt/pk_new_001"},
    }
