"""SQLAlchemy ORM models for the TrustBridge marketplace.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- JSON for structured data (no JSONB)
- DateTime for timestamps (stored as naive UTC)
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from trustbridge.infra.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Auth / User
# ---------------------------------------------------------------------------


class User(Base):
    """Platform user for authentication."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="user")  # user, admin
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class UserProfile(Base):
    """Extended account details. Teacher verification lives here."""

    __tablename__ = "user_profiles"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    phone = Column(String(50), nullable=True)
    company_name = Column(String(255), nullable=True)
    is_teacher_verified = Column(Boolean, nullable=False, default=False)
    teacher_verified_at = Column(DateTime, nullable=True)
    teacher_verified_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class UserMembership(Base):
    """Subscription state used to gate listing creation."""

    __tablename__ = "user_memberships"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    plan = Column(String(50), nullable=False, default="free")
    status = Column(String(20), nullable=False, default="active")  # active, trialing, past_due, canceled
    max_listings = Column(Integer, nullable=True)  # None = unlimited
    started_at = Column(DateTime, default=func.now())
    renews_at = Column(DateTime, nullable=True)
    canceled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


# ---------------------------------------------------------------------------
# Buyer Domain
# ---------------------------------------------------------------------------


class BuyerProfile(Base):
    """Acquisition criteria used by the match scorer."""

    __tablename__ = "buyer_profiles"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    budget_min = Column(Integer, nullable=True)
    budget_max = Column(Integer, nullable=True)
    industries = Column(JSON, nullable=True)  # list[str]
    regions = Column(JSON, nullable=True)  # list[str]
    proof_of_funds_document = Column(String(500), nullable=True)
    onboarding_completed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class BuyerVerification(Base):
    """Identity / proof-of-funds review. One per user."""

    __tablename__ = "buyer_verifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    verification_status = Column(String(20), nullable=False, default="pending")
    identity_verified = Column(Boolean, nullable=False, default=False)
    proof_of_funds_verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime, nullable=True)
    verified_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


class Listing(Base):
    """A business for sale.

    business_url and brand_name are confidential: they are only returned to
    viewers who signed an NDA for this listing and are verified buyers.
    """

    __tablename__ = "listings"

    id = Column(String(36), primary_key=True, default=_uuid)
    seller_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="draft", index=True)
    title = Column(String(255), nullable=False)
    business_model = Column(String(100), nullable=True)
    business_type = Column(String(100), nullable=True, index=True)
    niche = Column(String(100), nullable=True)
    geography = Column(String(255), nullable=True)
    ttm_revenue = Column(Integer, nullable=True)
    ttm_profit = Column(Integer, nullable=True)
    profit_margin = Column(Integer, nullable=True)
    team_size = Column(Integer, nullable=True)
    hours_per_week = Column(Integer, nullable=True)
    asking_price = Column(Integer, nullable=True, index=True)
    revenue_multiple = Column(Float, nullable=True)
    age_months = Column(Integer, nullable=True)
    business_url = Column(String(500), nullable=True)
    brand_name = Column(String(255), nullable=True)
    full_description = Column(Text, nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    under_loi = Column(Boolean, nullable=False, default=False)
    rejection_reason = Column(Text, nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class ListingModerationLog(Base):
    """Audit trail for listing submit / approve / reject actions."""

    __tablename__ = "listing_moderation_logs"

    id = Column(String(36), primary_key=True, default=_uuid)
    listing_id = Column(String(36), ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    moderator_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    action = Column(String(20), nullable=False)
    old_status = Column(String(20), nullable=True)
    new_status = Column(String(20), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())


class NdaAgreement(Base):
    """A signed NDA for one listing. One per (user, listing)."""

    __tablename__ = "nda_agreements"
    __table_args__ = (UniqueConstraint("user_id", "listing_id", name="uq_nda_user_listing"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    listing_id = Column(String(36), ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    agreed_at = Column(DateTime, nullable=False)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=func.now())


# ---------------------------------------------------------------------------
# Deal Workflow: LOI -> Escrow -> Migration
# ---------------------------------------------------------------------------


class LOIOffer(Base):
    """Letter of intent from a buyer to a seller for one listing.

    offer_price == cash_amount + earnout_amount at all times.
    """

    __tablename__ = "loi_offers"

    id = Column(String(36), primary_key=True, default=_uuid)
    listing_id = Column(String(36), ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    buyer_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    seller_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="draft", index=True)
    offer_price = Column(Integer, nullable=False)
    cash_amount = Column(Integer, nullable=False)
    earnout_amount = Column(Integer, nullable=False)
    earnout_terms = Column(Text, nullable=True)
    due_diligence_days = Column(Integer, nullable=False)
    exclusivity_days = Column(Integer, nullable=False)
    conditions = Column(JSON, nullable=True)  # list[str]
    expiration_date = Column(DateTime, nullable=False)
    pdf_url = Column(String(500), nullable=True)
    sent_at = Column(DateTime, nullable=True)
    responded_at = Column(DateTime, nullable=True)
    response_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class EscrowTransaction(Base):
    """Fund custody for an accepted deal, with platform fee breakdown."""

    __tablename__ = "escrow_transactions"

    id = Column(String(36), primary_key=True, default=_uuid)
    listing_id = Column(String(36), ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    loi_id = Column(String(36), ForeignKey("loi_offers.id", ondelete="SET NULL"), nullable=True, unique=True)
    buyer_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    seller_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="initiated", index=True)
    escrow_amount = Column(Integer, nullable=False)
    escrow_provider = Column(String(100), nullable=True)
    escrow_reference_id = Column(String(255), nullable=True, index=True)
    webhook_secret = Column(String(128), nullable=True)
    notes = Column(Text, nullable=True)
    platform_fee_percent = Column(Float, nullable=False, default=5.0)
    platform_fee_amount = Column(Integer, nullable=True)
    buyer_total_amount = Column(Integer, nullable=True)
    seller_net_amount = Column(Integer, nullable=True)
    initiated_at = Column(DateTime, nullable=True)
    funded_at = Column(DateTime, nullable=True)
    migration_started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    released_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class MigrationChecklist(Base):
    """Post-funding handover checklist. Exactly one per escrow."""

    __tablename__ = "migration_checklists"

    id = Column(String(36), primary_key=True, default=_uuid)
    escrow_id = Column(
        String(36), ForeignKey("escrow_transactions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    listing_id = Column(String(36), ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    buyer_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    seller_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="in_progress")
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class MigrationChecklistTask(Base):
    """One handover task. completed_at is set only when both parties confirmed."""

    __tablename__ = "migration_checklist_tasks"

    id = Column(String(36), primary_key=True, default=_uuid)
    checklist_id = Column(
        String(36), ForeignKey("migration_checklists.id", ondelete="CASCADE"), nullable=False, index=True
    )
    task_name = Column(String(255), nullable=False)
    task_category = Column(String(20), nullable=False)
    task_description = Column(Text, nullable=True)
    position = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="pending")
    buyer_confirmed = Column(Boolean, nullable=False, default=False)
    seller_confirmed = Column(Boolean, nullable=False, default=False)
    buyer_confirmed_at = Column(DateTime, nullable=True)
    seller_confirmed_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


# ---------------------------------------------------------------------------
# Messaging / Notifications
# ---------------------------------------------------------------------------


class MessageThread(Base):
    """Conversation between a buyer and a seller about one listing."""

    __tablename__ = "message_threads"
    __table_args__ = (
        UniqueConstraint("listing_id", "buyer_id", "seller_id", name="uq_thread_listing_parties"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    listing_id = Column(String(36), ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    buyer_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    seller_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    subject = Column(String(255), nullable=False)
    last_message_at = Column(DateTime, nullable=True)
    buyer_unread_count = Column(Integer, nullable=False, default=0)
    seller_unread_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class ThreadMessage(Base):
    __tablename__ = "thread_messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    thread_id = Column(String(36), ForeignKey("message_threads.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    message_body = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class Notification(Base):
    """In-app notification for a single user."""

    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(30), nullable=False)  # message, loi, escrow, migration, listing_update, verification
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    related_entity_type = Column(String(30), nullable=True)
    related_entity_id = Column(String(36), nullable=True)
    action_url = Column(String(500), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False, index=True)
    read_at = Column(DateTime, nullable=True)
    priority = Column(String(10), nullable=False, default="normal")
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


# ---------------------------------------------------------------------------
# Community forum
# ---------------------------------------------------------------------------


class ForumCategory(Base):
    __tablename__ = "forum_categories"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())


class ForumPost(Base):
    """Community post. Counters are bumped with single UPDATEs, never read-modify-write."""

    __tablename__ = "forum_posts"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(
        String(36), ForeignKey("forum_categories.id", ondelete="SET NULL"), nullable=True, index=True
    )
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    likes_count = Column(Integer, nullable=False, default=0, index=True)
    comments_count = Column(Integer, nullable=False, default=0)
    handshakes_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=func.now(), index=True)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class ForumComment(Base):
    __tablename__ = "forum_comments"

    id = Column(String(36), primary_key=True, default=_uuid)
    post_id = Column(String(36), ForeignKey("forum_posts.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    likes_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class ForumLike(Base):
    """A like on either a post or a comment (exactly one of the two is set)."""

    __tablename__ = "forum_likes"
    __table_args__ = (
        UniqueConstraint("post_id", "user_id", name="uq_forum_like_post_user"),
        UniqueConstraint("comment_id", "user_id", name="uq_forum_like_comment_user"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    post_id = Column(String(36), ForeignKey("forum_posts.id", ondelete="CASCADE"), nullable=True, index=True)
    comment_id = Column(
        String(36), ForeignKey("forum_comments.id", ondelete="CASCADE"), nullable=True, index=True
    )
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=func.now())


class ForumHandshake(Base):
    """A "handshake" endorsement of a post, one per user."""

    __tablename__ = "forum_handshakes"
    __table_args__ = (UniqueConstraint("post_id", "user_id", name="uq_forum_handshake_post_user"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    post_id = Column(String(36), ForeignKey("forum_posts.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=func.now())
