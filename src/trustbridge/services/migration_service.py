"""Migration checklist: the post-funding handover between seller and buyer.

One checklist per escrow, seeded with the default task set in the same
transaction. A task completes when both parties confirm it; the checklist
completes when every task has, and that in turn moves the escrow from
in_migration to complete.
"""

import logging
from collections import defaultdict
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.domain.enums import (
    ChecklistStatus,
    EscrowStatus,
    NotificationType,
    PartyRole,
    TaskCategory,
    TaskStatus,
)
from trustbridge.domain.models import (
    EscrowTransaction,
    MigrationChecklist,
    MigrationChecklistTask,
    User,
)
from trustbridge.domain.schemas import ChecklistResponse, TaskCreate, TaskResponse, TaskUpdate
from trustbridge.services.errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from trustbridge.services.escrow_service import transition_escrow
from trustbridge.services.notification_service import notify
from trustbridge.services.transitions import (
    compare_and_update,
    delete_unless_status,
    resolve_party_role,
    task_table,
    utcnow,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

# (name, category, description)
DEFAULT_MIGRATION_TASKS: list[tuple[str, TaskCategory, str]] = [
    (
        "Transfer domain ownership",
        TaskCategory.DOMAIN,
        "Transfer the domain name registration to the buyer's registrar account.",
    ),
    (
        "Update DNS records",
        TaskCategory.DOMAIN,
        "Point DNS records at the buyer's hosting and email providers.",
    ),
    (
        "Migrate hosting account",
        TaskCategory.HOSTING,
        "Move the website and application hosting to the buyer's account.",
    ),
    (
        "Transfer server access credentials",
        TaskCategory.HOSTING,
        "Hand over server, database and admin credentials, then rotate them.",
    ),
    (
        "Transfer codebase and repositories",
        TaskCategory.CODE,
        "Transfer source code repositories and deployment pipelines.",
    ),
    (
        "Transfer payment processor accounts",
        TaskCategory.PAYMENTS,
        "Move payment gateway and merchant accounts to the buyer.",
    ),
    (
        "Transfer advertising accounts (Google Ads, Facebook)",
        TaskCategory.ADS,
        "Grant the buyer ownership of advertising and analytics accounts.",
    ),
    (
        "Transfer inventory and supplier relationships",
        TaskCategory.INVENTORY,
        "Hand over stock, supplier contracts and fulfilment arrangements.",
    ),
]

CHECKLIST_ESCROW_STATUSES = {EscrowStatus.FUNDED.value, EscrowStatus.IN_MIGRATION.value}

# Fields that only the confirm operation may write
CONFIRMATION_FIELDS = {
    "buyerConfirmed", "buyer_confirmed", "sellerConfirmed", "seller_confirmed",
    "buyerConfirmedAt", "buyer_confirmed_at", "sellerConfirmedAt", "seller_confirmed_at",
    "completedAt", "completed_at",
}


def compute_task_completed_at(task: MigrationChecklistTask, now=None):
    """completed_at is set only for a complete task both parties confirmed."""
    if task.status == TaskStatus.COMPLETE.value and task.buyer_confirmed and task.seller_confirmed:
        return task.completed_at or now or utcnow()
    return None


def serialize_task(task: MigrationChecklistTask) -> dict:
    return TaskResponse.model_validate(task).to_json()


def serialize_checklist(checklist: MigrationChecklist) -> dict:
    return ChecklistResponse.model_validate(checklist).to_json()


def task_statistics(tasks: list[MigrationChecklistTask]) -> dict:
    counts = {status: 0 for status in TaskStatus}
    for task in tasks:
        counts[TaskStatus(task.status)] += 1
    return {
        "total": len(tasks),
        "pending": counts[TaskStatus.PENDING],
        "inProgress": counts[TaskStatus.IN_PROGRESS],
        "complete": counts[TaskStatus.COMPLETE],
    }


def tasks_by_category(tasks: list[MigrationChecklistTask]) -> dict:
    grouped = defaultdict(list)
    for task in tasks:
        grouped[task.task_category].append(serialize_task(task))
    return dict(grouped)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


async def load_tasks(db: AsyncSession, checklist_id: str) -> list[MigrationChecklistTask]:
    result = await db.execute(
        select(MigrationChecklistTask)
        .where(MigrationChecklistTask.checklist_id == checklist_id)
        .order_by(MigrationChecklistTask.position, MigrationChecklistTask.created_at)
    )
    return list(result.scalars().all())


async def get_checklist_for_party(
    db: AsyncSession, user: User, checklist_id: str
) -> tuple[MigrationChecklist, PartyRole]:
    checklist = await db.get(MigrationChecklist, checklist_id)
    if not checklist:
        raise NotFoundError("Migration checklist not found", code="NOT_FOUND")
    role = resolve_party_role(user.id, checklist.buyer_id, checklist.seller_id)
    return checklist, role


async def _get_task_for_party(
    db: AsyncSession, user: User, task_id: str
) -> tuple[MigrationChecklistTask, MigrationChecklist, PartyRole]:
    task = await db.get(MigrationChecklistTask, task_id)
    if not task:
        raise NotFoundError("Task not found", code="TASK_NOT_FOUND")
    checklist = await db.get(MigrationChecklist, task.checklist_id)
    role = resolve_party_role(user.id, checklist.buyer_id, checklist.seller_id)
    return task, checklist, role


# ---------------------------------------------------------------------------
# Checklist
# ---------------------------------------------------------------------------


async def create_checklist(
    db: AsyncSession, user: User, escrow_id: Optional[str]
) -> tuple[MigrationChecklist, list[MigrationChecklistTask]]:
    if not escrow_id:
        raise ValidationError("escrowId is required", code="MISSING_ESCROW_ID")

    escrow = await db.get(EscrowTransaction, escrow_id)
    if not escrow:
        raise NotFoundError("Escrow transaction not found", code="ESCROW_NOT_FOUND")
    resolve_party_role(user.id, escrow.buyer_id, escrow.seller_id)

    if escrow.status not in CHECKLIST_ESCROW_STATUSES:
        raise AuthorizationError(
            f"Escrow must be funded or in migration (current status: {escrow.status})",
            code="INVALID_ESCROW_STATUS",
        )

    existing = await db.scalar(
        select(MigrationChecklist.id).where(MigrationChecklist.escrow_id == escrow.id)
    )
    if existing:
        raise ConflictError(
            "A migration checklist already exists for this escrow", code="CHECKLIST_ALREADY_EXISTS"
        )

    checklist = MigrationChecklist(
        escrow_id=escrow.id,
        listing_id=escrow.listing_id,
        buyer_id=escrow.buyer_id,
        seller_id=escrow.seller_id,
        status=ChecklistStatus.IN_PROGRESS.value,
    )
    db.add(checklist)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(
            "A migration checklist already exists for this escrow", code="CHECKLIST_ALREADY_EXISTS"
        )

    tasks = []
    for position, (name, category, description) in enumerate(DEFAULT_MIGRATION_TASKS):
        task = MigrationChecklistTask(
            checklist_id=checklist.id,
            task_name=name,
            task_category=category.value,
            task_description=description,
            position=position,
            status=TaskStatus.PENDING.value,
            buyer_confirmed=False,
            seller_confirmed=False,
        )
        db.add(task)
        tasks.append(task)

    if escrow.status == EscrowStatus.FUNDED.value:
        await transition_escrow(
            db, escrow, EscrowStatus.IN_MIGRATION, PartyRole.SYSTEM, actor_id=user.id, strict=False
        )

    await db.commit()
    await db.refresh(checklist)
    for task in tasks:
        await db.refresh(task)
    logger.info(
        "Migration checklist %s created for escrow %s with %d tasks", checklist.id, escrow.id, len(tasks)
    )
    return checklist, tasks


async def list_checklists(
    db: AsyncSession,
    user: User,
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> list[tuple[MigrationChecklist, list[MigrationChecklistTask]]]:
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", code="INVALID_LIMIT")
    if offset < 0:
        raise ValidationError("offset must be non-negative", code="INVALID_OFFSET")

    stmt = select(MigrationChecklist).where(
        or_(MigrationChecklist.buyer_id == user.id, MigrationChecklist.seller_id == user.id)
    )
    if status:
        if status not in {s.value for s in ChecklistStatus}:
            raise ValidationError("Invalid status filter", code="INVALID_STATUS")
        stmt = stmt.where(MigrationChecklist.status == status)
    stmt = stmt.order_by(MigrationChecklist.created_at.desc()).limit(limit).offset(offset)

    result = await db.execute(stmt)
    return [(checklist, await load_tasks(db, checklist.id)) for checklist in result.scalars().all()]


async def refresh_checklist_completion(db: AsyncSession, checklist: MigrationChecklist) -> bool:
    """Mark the checklist (and its escrow) complete once every task is.

    Returns True when this call completed the checklist. Does not commit.
    """
    if checklist.status == ChecklistStatus.COMPLETE.value:
        return False

    total = await db.scalar(
        select(func.count(MigrationChecklistTask.id)).where(
            MigrationChecklistTask.checklist_id == checklist.id
        )
    )
    open_tasks = await db.scalar(
        select(func.count(MigrationChecklistTask.id)).where(
            MigrationChecklistTask.checklist_id == checklist.id,
            MigrationChecklistTask.status != TaskStatus.COMPLETE.value,
        )
    )
    if not total or open_tasks:
        return False

    done = await compare_and_update(
        db,
        MigrationChecklist,
        checklist.id,
        ChecklistStatus.IN_PROGRESS,
        status=ChecklistStatus.COMPLETE.value,
        completed_at=utcnow(),
    )
    if not done:
        return False

    escrow = await db.get(EscrowTransaction, checklist.escrow_id)
    if escrow is not None and escrow.status == EscrowStatus.IN_MIGRATION.value:
        await transition_escrow(db, escrow, EscrowStatus.COMPLETE, PartyRole.SYSTEM, strict=False)

    for party in (checklist.buyer_id, checklist.seller_id):
        notify(
            db,
            party,
            NotificationType.MIGRATION,
            "Migration complete",
            "Every handover task has been confirmed by both parties.",
            related_entity_type="migration",
            related_entity_id=checklist.id,
            action_url=f"/migration/{checklist.id}",
        )
    logger.info("Migration checklist %s complete", checklist.id)
    return True


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


def _parse_category(value: Optional[str], code: str) -> TaskCategory:
    try:
        return TaskCategory(value)
    except ValueError:
        raise ValidationError(
            f"taskCategory must be one of: {', '.join(c.value for c in TaskCategory)}",
            code=code,
        )


async def add_task(
    db: AsyncSession, user: User, checklist_id: str, payload: TaskCreate
) -> MigrationChecklistTask:
    checklist, _ = await get_checklist_for_party(db, user, checklist_id)
    if not payload.task_name or not payload.task_name.strip():
        raise ValidationError("taskName is required", code="MISSING_TASK_NAME")
    category = _parse_category(payload.task_category, "INVALID_TASK_CATEGORY_VALUE")
    if checklist.status == ChecklistStatus.COMPLETE.value:
        raise ConflictError("Checklist is already complete", code="CHECKLIST_COMPLETED")

    last = await db.scalar(
        select(func.max(MigrationChecklistTask.position)).where(
            MigrationChecklistTask.checklist_id == checklist.id
        )
    )
    task = MigrationChecklistTask(
        checklist_id=checklist.id,
        task_name=payload.task_name.strip(),
        task_category=category.value,
        task_description=payload.task_description,
        position=(last if last is not None else -1) + 1,
        status=TaskStatus.PENDING.value,
        buyer_confirmed=False,
        seller_confirmed=False,
    )
    db.add(task)
    await db.commit()
    await db.refresh(task)
    return task


async def update_task(
    db: AsyncSession, user: User, task_id: str, payload: TaskUpdate
) -> MigrationChecklistTask:
    extras = payload.extra_keys()
    if extras & {"userId", "user_id", "buyerId", "buyer_id", "sellerId", "seller_id"}:
        raise ValidationError("User ID cannot be provided in the request body", code="USER_ID_NOT_ALLOWED")
    if extras & CONFIRMATION_FIELDS:
        raise ValidationError(
            "Confirmations must go through the confirm endpoint", code="CONFIRMATION_NOT_ALLOWED"
        )

    task, checklist, role = await _get_task_for_party(db, user, task_id)
    current = TaskStatus(task.status)
    if current == TaskStatus.COMPLETE:
        raise ConflictError("Completed tasks cannot be edited", code="TASK_COMPLETED")

    changes = payload.model_dump(include=payload.provided())
    if not changes:
        raise ValidationError("No valid fields to update", code="NO_UPDATES")

    if "task_name" in changes:
        if not changes["task_name"] or not changes["task_name"].strip():
            raise ValidationError("taskName cannot be empty", code="INVALID_TASK_NAME")
        changes["task_name"] = changes["task_name"].strip()
    if "task_category" in changes:
        changes["task_category"] = _parse_category(changes["task_category"], "INVALID_TASK_CATEGORY").value

    if "status" in changes:
        try:
            target = TaskStatus(changes["status"])
        except ValueError:
            raise ValidationError(
                f"status must be one of: {', '.join(s.value for s in TaskStatus)}", code="INVALID_STATUS"
            )
        if target == current:
            del changes["status"]
        else:
            try:
                task_table.validate(current, target, role)
            except InvalidTransitionError as e:
                raise ValidationError(e.message, code="INVALID_STATUS")
            changes["status"] = target.value

    # completed_at follows the confirmation invariant, never the request
    projected_status = changes.get("status", task.status)
    if projected_status == TaskStatus.COMPLETE.value and task.buyer_confirmed and task.seller_confirmed:
        changes["completed_at"] = utcnow()
    else:
        changes["completed_at"] = None

    applied = await compare_and_update(db, MigrationChecklistTask, task.id, current, **changes)
    if not applied:
        raise ConflictError("Task changed concurrently, reload and retry", code="INVALID_STATUS")

    if changes.get("status") == TaskStatus.COMPLETE.value:
        logger.info(
            "Task %s: %s → %s (role=%s, user=%s)",
            task.id, current.value, TaskStatus.COMPLETE.value, role.value, user.id,
        )
        await refresh_checklist_completion(db, checklist)

    await db.commit()
    await db.refresh(task)
    return task


async def confirm_task(db: AsyncSession, user: User, task_id: str) -> MigrationChecklistTask:
    """Record the caller's confirmation; both confirmations complete the task."""
    task, checklist, role = await _get_task_for_party(db, user, task_id)
    current = TaskStatus(task.status)
    now = utcnow()

    values = {}
    if role == PartyRole.BUYER and not task.buyer_confirmed:
        values.update(buyer_confirmed=True, buyer_confirmed_at=now)
    elif role == PartyRole.SELLER and not task.seller_confirmed:
        values.update(seller_confirmed=True, seller_confirmed_at=now)

    buyer_done = task.buyer_confirmed or values.get("buyer_confirmed", False)
    seller_done = task.seller_confirmed or values.get("seller_confirmed", False)

    if buyer_done and seller_done and current != TaskStatus.COMPLETE:
        task_table.validate(current, TaskStatus.COMPLETE, PartyRole.SYSTEM)
        values.update(status=TaskStatus.COMPLETE.value, completed_at=now)
    elif buyer_done and seller_done and task.completed_at is None:
        values["completed_at"] = now

    if not values:
        return task

    applied = await compare_and_update(db, MigrationChecklistTask, task.id, current, **values)
    if not applied:
        raise ConflictError("Task changed concurrently, reload and retry", code="INVALID_STATUS")

    if values.get("status") == TaskStatus.COMPLETE.value:
        logger.info(
            "Task %s: %s → %s (role=%s, user=%s)",
            task.id, current.value, TaskStatus.COMPLETE.value, role.value, user.id,
        )
        await refresh_checklist_completion(db, checklist)
    else:
        other = checklist.seller_id if role == PartyRole.BUYER else checklist.buyer_id
        notify(
            db,
            other,
            NotificationType.MIGRATION,
            "Task awaiting your confirmation",
            f'The other party confirmed "{task.task_name}".',
            related_entity_type="migration_task",
            related_entity_id=task.id,
            action_url=f"/migration/{checklist.id}",
        )

    await db.commit()
    await db.refresh(task)
    return task


async def delete_task(db: AsyncSession, user: User, task_id: str) -> None:
    task, checklist, _ = await _get_task_for_party(db, user, task_id)
    if task.status == TaskStatus.COMPLETE.value:
        raise ValidationError("Completed tasks cannot be deleted", code="TASK_COMPLETED")

    deleted = await delete_unless_status(db, MigrationChecklistTask, task.id, TaskStatus.COMPLETE)
    if not deleted:
        raise ValidationError("Completed tasks cannot be deleted", code="TASK_COMPLETED")

    await refresh_checklist_completion(db, checklist)
    await db.commit()
    logger.info("Task %s deleted from checklist %s by %s", task_id, checklist.id, user.id)
