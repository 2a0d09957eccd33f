"""
Projects API Endpoints
"""

from pathlib import Path

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth import get_current_user
from portal.config import get_config
from portal.db import get_db
from portal.db.models import Profile
from portal.models import ProjectCreate, ProjectSummary, ProjectUpdate
from portal.projects import service
from portal.projects.filters import apply_filters
from portal.projects.state import (
    PreferenceStore,
    from_query_params,
    load_view_state,
    save_view_state,
    to_query_params,
)

router = APIRouter()


def get_preference_store() -> PreferenceStore:
    return PreferenceStore(Path(get_config().storage_dir) / "preferences.json")


@router.get("", response_model=list[ProjectSummary])
async def list_projects(
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    """List the user's projects, filtered and sorted by the query parameters"""
    state = from_query_params(dict(request.query_params))
    projects = await service.list_projects_for_user(db, current_user.id)
    return apply_filters(projects, state.filters, state.sort)


@router.get("/view-state")
async def get_view_state(
    current_user: Profile = Depends(get_current_user),
    store: PreferenceStore = Depends(get_preference_store),
):
    """Last saved filters/sort/view as query parameters"""
    return to_query_params(load_view_state(store, current_user.id))


@router.put("/view-state")
async def put_view_state(
    params: dict[str, str],
    current_user: Profile = Depends(get_current_user),
    store: PreferenceStore = Depends(get_preference_store),
):
    state = from_query_params(params)
    save_view_state(store, current_user.id, state)
    return to_query_params(state)


@router.post("", response_model=ProjectSummary, status_code=201)
async def create_project(
    data: ProjectCreate,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    project = await service.create_project(db, current_user.id, data)
    await db.commit()
    return project


@router.get("/{project_id}", response_model=ProjectSummary)
async def get_project(
    project_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    """Get a project by id or slug"""
    return await service.get_project(db, project_id, current_user.id)


@router.patch("/{project_id}", response_model=ProjectSummary)
async def update_project(
    project_id: str,
    data: ProjectUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    project = await service.update_project(db, project_id, current_user.id, data)
    await db.commit()
    return project


@router.delete("/{project_id}", status_code=204)
async def delete_project(
    project_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    await service.delete_project(db, project_id, current_user.id)
    await db.commit()
