"""Migration checklist routes: post-funding handover tasks."""

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.app.routes.auth import get_current_user_dep
from trustbridge.domain.models import User
from trustbridge.domain.schemas import ChecklistCreate, TaskCreate, TaskUpdate
from trustbridge.infra.database import get_db
from trustbridge.services.migration_service import (
    add_task,
    confirm_task,
    create_checklist,
    delete_task,
    get_checklist_for_party,
    list_checklists,
    load_tasks,
    serialize_checklist,
    serialize_task,
    task_statistics,
    tasks_by_category,
    update_task,
)

router = APIRouter(prefix="/api/migration", tags=["migration"])


def _progress(tasks) -> dict:
    stats = task_statistics(tasks)
    total, completed = stats["total"], stats["complete"]
    return {
        "total": total,
        "completed": completed,
        "percent": round(completed * 100 / total) if total else 0,
    }


@router.get("")
async def my_checklists(
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    rows = await list_checklists(db, user, status=status, limit=limit, offset=offset)
    items = []
    for checklist, tasks in rows:
        data = serialize_checklist(checklist)
        data["taskStatistics"] = task_statistics(tasks)
        items.append(data)
    return items


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create(
    data: ChecklistCreate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    checklist, tasks = await create_checklist(db, user, data.escrow_id)
    return {
        "checklist": serialize_checklist(checklist),
        "tasks": [serialize_task(t) for t in tasks],
    }


@router.get("/{checklist_id}")
async def get_checklist(
    checklist_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    checklist, role = await get_checklist_for_party(db, user, checklist_id)
    tasks = await load_tasks(db, checklist.id)
    return {
        "checklist": serialize_checklist(checklist),
        "tasks": [serialize_task(t) for t in tasks],
        "tasksByCategory": tasks_by_category(tasks),
        "progress": _progress(tasks),
        "userRole": role.value,
    }


@router.post("/{checklist_id}/tasks", status_code=status.HTTP_201_CREATED)
async def create_task(
    checklist_id: str,
    data: TaskCreate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return serialize_task(await add_task(db, user, checklist_id, data))


@router.patch("/tasks/{task_id}")
async def patch_task(
    task_id: str,
    data: TaskUpdate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return serialize_task(await update_task(db, user, task_id, data))


@router.post("/tasks/{task_id}/confirm")
async def confirm(
    task_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return serialize_task(await confirm_task(db, user, task_id))


@router.delete("/tasks/{task_id}")
async def remove_task(
    task_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    await delete_task(db, user, task_id)
    return {"message": "Task deleted", "id": task_id}
