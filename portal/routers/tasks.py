"""
Tasks API Endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth import get_current_user
from portal.db import get_db
from portal.db.models import Profile
from portal.models import TaskOut, TaskUpsert
from portal.projects import service
from portal.projects.filters import SortConfig

router = APIRouter()


@router.get("", response_model=list[TaskOut])
async def list_tasks(
    project_id: Optional[list[str]] = Query(default=None),
    hide_completed: bool = False,
    sort: str = "due_date",
    dir: str = "asc",
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    """Tasks of the given projects (default: all of the user's projects)"""
    visible = {p.id for p in await service.list_projects_for_user(db, current_user.id)}
    ids = [pid for pid in project_id if pid in visible] if project_id else sorted(visible)
    direction = "descending" if dir in ("desc", "descending") else "ascending"
    return await service.list_tasks(
        db, ids, hide_completed=hide_completed, sort=SortConfig(key=sort, direction=direction)
    )


@router.post("", response_model=TaskOut)
async def upsert_task(
    data: TaskUpsert,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    """Create a task, or update it when ``id`` is given"""
    task = await service.upsert_task(db, current_user.id, data)
    await db.commit()
    return task


@router.post("/{task_id}/toggle", response_model=TaskOut)
async def toggle_task(
    task_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    task = await service.toggle_task_completion(db, task_id, current_user.id)
    await db.commit()
    return task


@router.delete("/{task_id}", status_code=204)
async def delete_task(
    task_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    await service.delete_task(db, task_id, current_user.id)
    await db.commit()
