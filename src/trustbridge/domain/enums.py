"""Domain enumerations for the TrustBridge marketplace.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from enum import Enum


class UserRole(str, Enum):
    """Account-level role. Buyer and seller are per-record, not account roles."""

    USER = "user"
    ADMIN = "admin"


class ListingStatus(str, Enum):
    """Moderation lifecycle of a business-for-sale listing."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class ModerationAction(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"


class LOIStatus(str, Enum):
    """Lifecycle of a letter of intent.

    EXPIRED is never written by a transition; it is derived at read time
    from a SENT offer whose expiration date has passed.
    """

    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class LOIAction(str, Enum):
    """Seller response to a sent LOI."""

    ACCEPT = "accept"
    REJECT = "reject"


class EscrowStatus(str, Enum):
    """Forward-only escrow custody lifecycle."""

    INITIATED = "initiated"
    FUNDED = "funded"
    IN_MIGRATION = "in_migration"
    COMPLETE = "complete"
    RELEASED = "released"


class ChecklistStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


class TaskStatus(str, Enum):
    """Status of a single migration checklist task."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


class TaskCategory(str, Enum):
    """Handover area a migration task belongs to."""

    DOMAIN = "domain"
    HOSTING = "hosting"
    CODE = "code"
    PAYMENTS = "payments"
    ADS = "ads"
    INVENTORY = "inventory"
    OTHER = "other"


class PartyRole(str, Enum):
    """Who is acting on a transaction record.

    BUYER and SELLER are resolved per request from the record's
    buyer_id/seller_id. SYSTEM covers webhooks and automatic follow-ups.
    """

    BUYER = "buyer"
    SELLER = "seller"
    SYSTEM = "system"


class VerificationStatus(str, Enum):
    """Admin review state of a buyer verification request."""

    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class MembershipStatus(str, Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class NotificationType(str, Enum):
    """Category of an in-app notification."""

    MESSAGE = "message"
    LOI = "loi"
    ESCROW = "escrow"
    MIGRATION = "migration"
    LISTING_UPDATE = "listing_update"
    VERIFICATION = "verification"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"
