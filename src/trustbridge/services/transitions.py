"""Status-transition engine for LOI offers, escrow transactions and migration tasks.

Encodes the three deal-workflow state machines as transition maps keyed by
the acting party, resolves that party once per request, and applies every
status change as a compare-and-swap UPDATE so two concurrent requests can
never both move the same row out of the same state.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.domain.enums import EscrowStatus, LOIStatus, PartyRole, TaskStatus
from trustbridge.services.errors import AuthorizationError, InvalidTransitionError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Transition maps: from_status -> {to_status: set_of_allowed_roles}
# ---------------------------------------------------------------------------

LOI_TRANSITIONS: dict[LOIStatus, dict[LOIStatus, set[PartyRole]]] = {
    LOIStatus.DRAFT: {
        LOIStatus.SENT: {PartyRole.BUYER},
    },
    LOIStatus.SENT: {
        LOIStatus.ACCEPTED: {PartyRole.SELLER},
        LOIStatus.REJECTED: {PartyRole.SELLER},
    },
}

LOI_TERMINAL_STATES: set[LOIStatus] = {LOIStatus.ACCEPTED, LOIStatus.REJECTED, LOIStatus.EXPIRED}

# Forward-only, one step at a time. SYSTEM covers the provider webhook and
# the automatic moves driven by the migration checklist.
ESCROW_TRANSITIONS: dict[EscrowStatus, dict[EscrowStatus, set[PartyRole]]] = {
    EscrowStatus.INITIATED: {
        EscrowStatus.FUNDED: {PartyRole.BUYER, PartyRole.SYSTEM},
    },
    EscrowStatus.FUNDED: {
        EscrowStatus.IN_MIGRATION: {PartyRole.BUYER, PartyRole.SELLER, PartyRole.SYSTEM},
    },
    EscrowStatus.IN_MIGRATION: {
        EscrowStatus.COMPLETE: {PartyRole.BUYER, PartyRole.SELLER, PartyRole.SYSTEM},
    },
    EscrowStatus.COMPLETE: {
        EscrowStatus.RELEASED: {PartyRole.SELLER, PartyRole.SYSTEM},
    },
}

# Timestamp column stamped when an escrow enters each status
ESCROW_TIMESTAMP_FIELDS: dict[EscrowStatus, str] = {
    EscrowStatus.FUNDED: "funded_at",
    EscrowStatus.IN_MIGRATION: "migration_started_at",
    EscrowStatus.COMPLETE: "completed_at",
    EscrowStatus.RELEASED: "released_at",
}

TASK_TRANSITIONS: dict[TaskStatus, dict[TaskStatus, set[PartyRole]]] = {
    TaskStatus.PENDING: {
        TaskStatus.IN_PROGRESS: {PartyRole.BUYER, PartyRole.SELLER},
        TaskStatus.COMPLETE: {PartyRole.BUYER, PartyRole.SELLER, PartyRole.SYSTEM},
    },
    TaskStatus.IN_PROGRESS: {
        TaskStatus.PENDING: {PartyRole.BUYER, PartyRole.SELLER},
        TaskStatus.COMPLETE: {PartyRole.BUYER, PartyRole.SELLER, PartyRole.SYSTEM},
    },
}

TASK_TERMINAL_STATES: set[TaskStatus] = {TaskStatus.COMPLETE}


class TransitionTable:
    """Validates transitions against one of the maps above."""

    def __init__(self, name: str, transitions: dict, terminal_states: Optional[set] = None):
        self.name = name
        self.transitions = transitions
        self.terminal_states = terminal_states or set()

    def validate(self, current, target, role: PartyRole) -> bool:
        """Return True if ``role`` may move ``current`` to ``target``.

        Raises InvalidTransitionError otherwise.
        """
        if current in self.terminal_states:
            raise InvalidTransitionError(current, target, f"{self.name} is in a terminal state")

        allowed = self.transitions.get(current, {})
        if target not in allowed:
            raise InvalidTransitionError(
                current, target, f"{current.value} → {target.value} is not a valid {self.name} transition"
            )

        if role not in allowed[target]:
            raise InvalidTransitionError(
                current, target, f"{role.value} is not allowed to perform this transition"
            )

        return True

    def get_allowed_transitions(self, current, role: PartyRole) -> list:
        """Return the target statuses ``role`` can reach from ``current``."""
        if current in self.terminal_states:
            return []
        return [
            target
            for target, roles in self.transitions.get(current, {}).items()
            if role in roles
        ]


loi_table = TransitionTable("LOI", LOI_TRANSITIONS, LOI_TERMINAL_STATES)
escrow_table = TransitionTable("escrow", ESCROW_TRANSITIONS, {EscrowStatus.RELEASED})
task_table = TransitionTable("task", TASK_TRANSITIONS, TASK_TERMINAL_STATES)


# ---------------------------------------------------------------------------
# Party resolution
# ---------------------------------------------------------------------------


def resolve_party_role(
    actor_id: str,
    buyer_id: str,
    seller_id: str,
    code: str = "FORBIDDEN",
) -> PartyRole:
    """Resolve Buyer | Seller for ``actor_id`` on a record.

    Raises AuthorizationError when the actor is neither party.
    """
    if actor_id == buyer_id:
        return PartyRole.BUYER
    if actor_id == seller_id:
        return PartyRole.SELLER
    raise AuthorizationError("You are not a party to this transaction", code=code)


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as read back from SQLite) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def effective_loi_status(loi, now: Optional[datetime] = None) -> LOIStatus:
    """Return the LOI status as callers should see it.

    A SENT offer whose expiration date has passed reads as EXPIRED. Nothing
    is written back.
    """
    status = LOIStatus(loi.status)
    if status == LOIStatus.SENT and loi.expiration_date is not None:
        now = now or utcnow()
        if as_utc(loi.expiration_date) < now:
            return LOIStatus.EXPIRED
    return status


# ---------------------------------------------------------------------------
# Compare-and-swap writes
# ---------------------------------------------------------------------------


async def compare_and_set_status(
    db: AsyncSession,
    model,
    record_id: str,
    expected,
    target,
    **values,
) -> bool:
    """Move ``record_id`` from ``expected`` to ``target`` in one UPDATE.

    Extra column values are written in the same statement. Returns False when
    the row was not in ``expected`` any more (or does not exist).
    """
    stmt = (
        update(model)
        .where(model.id == record_id, model.status == _raw(expected))
        .values(status=_raw(target), updated_at=utcnow(), **values)
        .execution_options(synchronize_session="fetch")
    )
    result = await db.execute(stmt)
    changed = result.rowcount == 1
    if changed:
        logger.info(
            "%s %s: %s → %s",
            model.__name__,
            record_id,
            _raw(expected),
            _raw(target),
        )
    return changed


async def compare_and_update(
    db: AsyncSession,
    model,
    record_id: str,
    expected,
    **values,
) -> bool:
    """UPDATE ``values`` only while the row is still in ``expected`` status."""
    stmt = (
        update(model)
        .where(model.id == record_id, model.status == _raw(expected))
        .values(updated_at=utcnow(), **values)
        .execution_options(synchronize_session="fetch")
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def delete_if_status(db: AsyncSession, model, record_id: str, expected) -> bool:
    """DELETE ``record_id`` only while it is in ``expected`` status."""
    stmt = (
        delete(model)
        .where(model.id == record_id, model.status == _raw(expected))
        .execution_options(synchronize_session="fetch")
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def delete_unless_status(db: AsyncSession, model, record_id: str, excluded) -> bool:
    """DELETE ``record_id`` unless it has reached ``excluded`` status."""
    stmt = (
        delete(model)
        .where(model.id == record_id, model.status != _raw(excluded))
        .execution_options(synchronize_session="fetch")
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


def _raw(status) -> str:
    return status.value if hasattr(status, "value") else status
