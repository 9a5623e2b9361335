"""Shared test infrastructure for the TrustBridge test suite.

Provides:
- db_session: async SQLite in-memory session with all tables created
- make_user / make_membership / make_listing / make_loi / make_escrow /
  make_buyer_profile / make_verification / make_nda: row factories
- auth_header: Bearer header for a user
- client: HTTPX AsyncClient over a fresh app wired to db_session
"""

import uuid
from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import Base first, then models to register all tables
from trustbridge.infra.database import Base

import trustbridge.domain.models  # noqa: F401

from trustbridge.domain.models import (
    BuyerProfile,
    BuyerVerification,
    EscrowTransaction,
    Listing,
    LOIOffer,
    NdaAgreement,
    User,
    UserMembership,
    UserProfile,
)
from trustbridge.services.auth_service import create_access_token
from trustbridge.services.escrow_service import compute_fees
from trustbridge.services.transitions import utcnow


# ---------------------------------------------------------------------------
# Database session fixture
# ---------------------------------------------------------------------------

@pytest.fixture
async def db_session():
    """Async SQLite in-memory session with all tables created.

    Creates a fresh engine + tables for each test, yields a session,
    then rolls back and tears down.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


async def _save(db_session, row):
    db_session.add(row)
    await db_session.commit()
    await db_session.refresh(row)
    return row


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_user(db_session):
    """Factory: create a User (plus empty UserProfile)."""

    async def _make(name="Test User", email=None, role="user", teacher=False):
        user = User(
            id=str(uuid.uuid4()),
            email=email or f"{uuid.uuid4().hex[:10]}@example.com",
            password_hash="not-a-real-hash",
            name=name,
            role=role,
            is_active=True,
        )
        await _save(db_session, user)
        await _save(db_session, UserProfile(user_id=user.id, is_teacher_verified=teacher))
        return user

    return _make


@pytest.fixture
def make_membership(db_session):
    async def _make(user, status="active", plan="pro", max_listings=None):
        return await _save(
            db_session,
            UserMembership(user_id=user.id, plan=plan, status=status, max_listings=max_listings),
        )

    return _make


@pytest.fixture
def make_listing(db_session):
    """Factory: create a Listing with every submit-required field filled."""

    async def _make(seller, status="approved", **overrides):
        fields = {
            "title": "Profitable SaaS Tool",
            "business_model": "subscription",
            "business_type": "SaaS",
            "niche": "Productivity",
            "geography": "United States",
            "ttm_revenue": 500_000,
            "ttm_profit": 200_000,
            "asking_price": 1_000_000,
            "revenue_multiple": 2.0,
            "age_months": 36,
            "business_url": "https://secret-saas.example.com",
            "brand_name": "SecretSaaS",
            "full_description": "A bootstrapped SaaS business with recurring revenue.",
        }
        fields.update(overrides)
        return await _save(db_session, Listing(seller_id=seller.id, status=status, **fields))

    return _make


@pytest.fixture
def make_loi(db_session):
    async def _make(listing, buyer, status="draft", expires_in=timedelta(days=14), **overrides):
        fields = {
            "offer_price": 900_000,
            "cash_amount": 700_000,
            "earnout_amount": 200_000,
            "due_diligence_days": 30,
            "exclusivity_days": 45,
            "conditions": ["Financial review"],
            "expiration_date": utcnow() + expires_in,
        }
        fields.update(overrides)
        if status != "draft":
            fields.setdefault("sent_at", utcnow())
        return await _save(
            db_session,
            LOIOffer(
                listing_id=listing.id,
                buyer_id=buyer.id,
                seller_id=listing.seller_id,
                status=status,
                **fields,
            ),
        )

    return _make


@pytest.fixture
def make_escrow(db_session):
    async def _make(listing, buyer, status="initiated", loi=None, amount=900_000,
                    reference_id=None, webhook_secret="escrow-secret"):
        fee, buyer_total, seller_net = compute_fees(amount, 5.0)
        return await _save(
            db_session,
            EscrowTransaction(
                listing_id=listing.id,
                loi_id=loi.id if loi else None,
                buyer_id=buyer.id,
                seller_id=listing.seller_id,
                status=status,
                escrow_amount=amount,
                escrow_reference_id=reference_id or f"ref-{uuid.uuid4().hex[:8]}",
                webhook_secret=webhook_secret,
                platform_fee_percent=5.0,
                platform_fee_amount=fee,
                buyer_total_amount=buyer_total,
                seller_net_amount=seller_net,
                initiated_at=utcnow(),
            ),
        )

    return _make


@pytest.fixture
def make_buyer_profile(db_session):
    async def _make(user, budget_min=800_000, budget_max=1_200_000, industries=("SaaS",),
                    regions=("United States",), onboarding_completed=True):
        return await _save(
            db_session,
            BuyerProfile(
                user_id=user.id,
                budget_min=budget_min,
                budget_max=budget_max,
                industries=list(industries),
                regions=list(regions),
                onboarding_completed=onboarding_completed,
            ),
        )

    return _make


@pytest.fixture
def make_verification(db_session):
    async def _make(user, status="verified"):
        return await _save(
            db_session,
            BuyerVerification(
                user_id=user.id,
                verification_status=status,
                identity_verified=status == "verified",
                proof_of_funds_verified=status == "verified",
            ),
        )

    return _make


@pytest.fixture
def make_nda(db_session):
    async def _make(user, listing):
        return await _save(
            db_session,
            NdaAgreement(user_id=user.id, listing_id=listing.id, agreed_at=utcnow()),
        )

    return _make


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest.fixture
def auth_header():
    def _header(user):
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}

    return _header


def _build_app_client(db_session: AsyncSession):
    """Build an HTTPX AsyncClient wired to a test FastAPI app.

    Uses a fresh FastAPI app with the API routers and error handlers, and
    get_db overridden to the test session.
    """
    from fastapi import FastAPI

    from trustbridge.app.main import register_exception_handlers
    from trustbridge.app.routes.admin import router as admin_router
    from trustbridge.app.routes.auth import router as auth_router
    from trustbridge.app.routes.buyer import profile_router, verification_router
    from trustbridge.app.routes.escrow import router as escrow_router
    from trustbridge.app.routes.forum import router as forum_router
    from trustbridge.app.routes.listings import router as listings_router
    from trustbridge.app.routes.loi import router as loi_router
    from trustbridge.app.routes.matching import router as matching_router
    from trustbridge.app.routes.messages import router as messages_router
    from trustbridge.app.routes.migration import router as migration_router
    from trustbridge.app.routes.nda import router as nda_router
    from trustbridge.app.routes.notifications import router as notifications_router
    from trustbridge.infra.database import get_db

    test_app = FastAPI()
    register_exception_handlers(test_app)
    for router in (
        auth_router,
        listings_router,
        admin_router,
        nda_router,
        profile_router,
        verification_router,
        loi_router,
        escrow_router,
        migration_router,
        matching_router,
        messages_router,
        notifications_router,
        forum_router,
    ):
        test_app.include_router(router)

    async def _override_get_db():
        yield db_session

    test_app.dependency_overrides[get_db] = _override_get_db

    return AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://testserver",
    )


@pytest.fixture
async def client(db_session):
    async with _build_app_client(db_session) as c:
        yield c
