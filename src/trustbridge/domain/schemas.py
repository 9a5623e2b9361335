"""Pydantic v2 schemas for API request/response validation.

JSON uses camelCase keys; Python attributes stay snake_case. Request models
keep every field optional so the services can report the precise
``MISSING_*`` / ``INVALID_*`` code instead of a generic validation failure.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for every wire schema: camelCase aliases, ORM-friendly."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class OpenRequest(CamelModel):
    """Request body that keeps unknown keys so services can reject them by name."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def provided(self) -> set[str]:
        """Snake-case names of the declared fields the client actually sent."""
        return set(self.model_fields_set) - set(self.model_extra or {})

    def extra_keys(self) -> set[str]:
        return set(self.model_extra or {})


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class UserCreate(CamelModel):
    """Schema for creating a new user."""

    email: str
    password: str
    name: str


class UserLogin(CamelModel):
    email: str
    password: str


class UserResponse(CamelModel):
    """Schema for user API responses."""

    id: str
    email: str
    name: str
    role: str
    is_active: bool
    created_at: Optional[datetime] = None


class TokenResponse(CamelModel):
    """Schema for JWT token responses."""

    access_token: str
    token_type: str = "bearer"
    user: UserResponse


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


class ListingWrite(OpenRequest):
    """Body for creating or updating a listing."""

    title: Optional[str] = None
    business_model: Optional[str] = None
    business_type: Optional[str] = None
    niche: Optional[str] = None
    geography: Optional[str] = None
    ttm_revenue: Optional[int] = None
    ttm_profit: Optional[int] = None
    profit_margin: Optional[int] = None
    team_size: Optional[int] = None
    hours_per_week: Optional[int] = None
    asking_price: Optional[int] = None
    age_months: Optional[int] = None
    business_url: Optional[str] = None
    brand_name: Optional[str] = None
    full_description: Optional[str] = None


class ListingResponse(CamelModel):
    id: str
    seller_id: str
    status: str
    title: str
    business_model: Optional[str] = None
    business_type: Optional[str] = None
    niche: Optional[str] = None
    geography: Optional[str] = None
    ttm_revenue: Optional[int] = None
    ttm_profit: Optional[int] = None
    profit_margin: Optional[int] = None
    team_size: Optional[int] = None
    hours_per_week: Optional[int] = None
    asking_price: Optional[int] = None
    revenue_multiple: Optional[float] = None
    age_months: Optional[int] = None
    business_url: Optional[str] = None
    brand_name: Optional[str] = None
    full_description: Optional[str] = None
    is_verified: bool = False
    under_loi: bool = False
    rejection_reason: Optional[str] = None
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ModerationRequest(CamelModel):
    reason: Optional[str] = None
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# NDA / Verification / Buyer profile
# ---------------------------------------------------------------------------


class NdaSignRequest(CamelModel):
    listing_id: Optional[str] = None


class NdaResponse(CamelModel):
    id: str
    user_id: str
    listing_id: str
    agreed_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None


class VerificationRequest(CamelModel):
    notes: Optional[str] = None


class VerificationReview(CamelModel):
    """Admin decision on a buyer verification."""

    status: Optional[str] = None
    identity_verified: Optional[bool] = None
    proof_of_funds_verified: Optional[bool] = None
    notes: Optional[str] = None


class VerificationResponse(CamelModel):
    id: str
    user_id: str
    verification_status: str
    identity_verified: bool
    proof_of_funds_verified: bool
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BuyerProfileWrite(OpenRequest):
    budget_min: Optional[int] = None
    budget_max: Optional[int] = None
    industries: Optional[list[str]] = None
    regions: Optional[list[str]] = None
    proof_of_funds_document: Optional[str] = None
    onboarding_completed: Optional[bool] = None


class BuyerProfileResponse(CamelModel):
    id: str
    user_id: str
    budget_min: Optional[int] = None
    budget_max: Optional[int] = None
    industries: list[str] = []
    regions: list[str] = []
    proof_of_funds_document: Optional[str] = None
    onboarding_completed: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("industries", "regions", mode="before")
    @classmethod
    def _none_as_empty(cls, v):
        return v or []


class MembershipUpdate(CamelModel):
    plan: Optional[str] = None
    status: Optional[str] = None
    max_listings: Optional[int] = None


class MembershipResponse(CamelModel):
    id: str
    user_id: str
    plan: str
    status: str
    max_listings: Optional[int] = None
    started_at: Optional[datetime] = None
    renews_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None


class TeacherVerificationUpdate(CamelModel):
    is_teacher_verified: bool


class ProfileResponse(CamelModel):
    id: str
    user_id: str
    phone: Optional[str] = None
    company_name: Optional[str] = None
    is_teacher_verified: bool = False
    teacher_verified_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# LOI
# ---------------------------------------------------------------------------


class LOICreate(OpenRequest):
    listing_id: Optional[str] = None
    seller_id: Optional[str] = None
    offer_price: Optional[int] = None
    cash_amount: Optional[int] = None
    earnout_amount: Optional[int] = None
    earnout_terms: Optional[str] = None
    due_diligence_days: Optional[int] = None
    exclusivity_days: Optional[int] = None
    conditions: Optional[list[str]] = None
    expiration_date: Optional[datetime] = None
    pdf_url: Optional[str] = None


class LOIUpdate(OpenRequest):
    offer_price: Optional[int] = None
    cash_amount: Optional[int] = None
    earnout_amount: Optional[int] = None
    earnout_terms: Optional[str] = None
    due_diligence_days: Optional[int] = None
    exclusivity_days: Optional[int] = None
    conditions: Optional[list[str]] = None
    expiration_date: Optional[datetime] = None
    pdf_url: Optional[str] = None


class LOIRespond(OpenRequest):
    action: Optional[str] = None
    response_notes: Optional[str] = None


class LOIResponse(CamelModel):
    id: str
    listing_id: str
    buyer_id: str
    seller_id: str
    status: str
    offer_price: int
    cash_amount: int
    earnout_amount: int
    earnout_terms: Optional[str] = None
    due_diligence_days: int
    exclusivity_days: int
    conditions: list[str] = []
    expiration_date: datetime
    pdf_url: Optional[str] = None
    sent_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    response_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("conditions", mode="before")
    @classmethod
    def _none_as_empty(cls, v):
        return v or []


# ---------------------------------------------------------------------------
# Escrow
# ---------------------------------------------------------------------------


class EscrowCreate(OpenRequest):
    listing_id: Optional[str] = None
    loi_id: Optional[str] = None
    seller_id: Optional[str] = None
    escrow_amount: Optional[int] = None
    escrow_provider: Optional[str] = None
    escrow_reference_id: Optional[str] = None
    notes: Optional[str] = None


class EscrowStatusUpdate(CamelModel):
    status: Optional[str] = None
    notes: Optional[str] = None


class EscrowWebhook(CamelModel):
    escrow_reference_id: Optional[str] = None
    status: Optional[str] = None
    webhook_secret: Optional[str] = None


class EscrowResponse(CamelModel):
    """Escrow row as returned to the parties. The webhook secret is never included."""

    id: str
    listing_id: str
    loi_id: Optional[str] = None
    buyer_id: str
    seller_id: str
    status: str
    escrow_amount: int
    escrow_provider: Optional[str] = None
    escrow_reference_id: Optional[str] = None
    notes: Optional[str] = None
    platform_fee_percent: float
    platform_fee_amount: Optional[int] = None
    buyer_total_amount: Optional[int] = None
    seller_net_amount: Optional[int] = None
    initiated_at: Optional[datetime] = None
    funded_at: Optional[datetime] = None
    migration_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    released_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FeeBreakdown(CamelModel):
    escrow_amount: int
    platform_fee_percent: float
    platform_fee_amount: int
    buyer_total_amount: int
    seller_net_amount: int


# ---------------------------------------------------------------------------
# Migration
# ---------------------------------------------------------------------------


class ChecklistCreate(CamelModel):
    escrow_id: Optional[str] = None


class TaskCreate(CamelModel):
    task_name: Optional[str] = None
    task_category: Optional[str] = None
    task_description: Optional[str] = None


class TaskUpdate(OpenRequest):
    task_name: Optional[str] = None
    task_category: Optional[str] = None
    task_description: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None


class TaskResponse(CamelModel):
    id: str
    checklist_id: str
    task_name: str
    task_category: str
    task_description: Optional[str] = None
    status: str
    buyer_confirmed: bool
    seller_confirmed: bool
    buyer_confirmed_at: Optional[datetime] = None
    seller_confirmed_at: Optional[datetime] = None
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ChecklistResponse(CamelModel):
    id: str
    escrow_id: str
    listing_id: str
    buyer_id: str
    seller_id: str
    status: str
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Messaging / Notifications
# ---------------------------------------------------------------------------


class ThreadCreate(CamelModel):
    listing_id: Optional[str] = None
    subject: Optional[str] = None
    message: Optional[str] = None


class MessageCreate(CamelModel):
    message: Optional[str] = None


class ThreadResponse(CamelModel):
    id: str
    listing_id: str
    buyer_id: str
    seller_id: str
    subject: str
    last_message_at: Optional[datetime] = None
    buyer_unread_count: int = 0
    seller_unread_count: int = 0
    created_at: Optional[datetime] = None


class MessageResponse(CamelModel):
    id: str
    thread_id: str
    sender_id: str
    message_body: str
    is_read: bool
    created_at: Optional[datetime] = None


class NotificationResponse(CamelModel):
    id: str
    user_id: str
    type: str
    title: str
    message: str
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[str] = None
    action_url: Optional[str] = None
    is_read: bool
    read_at: Optional[datetime] = None
    priority: str
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Forum
# ---------------------------------------------------------------------------


class ForumCategoryCreate(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None


class ForumCategoryResponse(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None


class ForumPostWrite(OpenRequest):
    """Body for creating or editing a post. ``userId`` is always rejected."""

    title: Optional[str] = None
    content: Optional[str] = None
    category_id: Optional[str] = None


class ForumCommentWrite(OpenRequest):
    content: Optional[str] = None


class ForumPostResponse(CamelModel):
    id: str
    user_id: str
    category_id: Optional[str] = None
    title: str
    content: str
    likes_count: int = 0
    comments_count: int = 0
    handshakes_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ForumCommentResponse(CamelModel):
    id: str
    post_id: str
    user_id: str
    content: str
    likes_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
