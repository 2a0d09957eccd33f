"""Project and task data access.

Server-side equivalents of the portal's project RPCs. Every function takes
an open ``AsyncSession``; committing is left to the caller
(``portal.db.get_session``).
"""

import logging
import re
import unicodedata
from typing import Iterable, Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from portal.db.models import (
    BillingReminderLog,
    MemberRole,
    Profile,
    Project,
    ProjectMember,
    Task,
    TaskAssignee,
    TaskStatus,
)
from portal.errors import NotFoundError, PermissionDeniedError, ValidationError
from portal.models import (
    ProjectCreate,
    ProjectSummary,
    ProjectUpdate,
    TaskOut,
    TaskUpsert,
    UserRef,
)
from portal.notifications import inbox, queue
from portal.projects.filters import SortConfig, sort_projects

logger = logging.getLogger(__name__)

MANAGER_ROLES = (MemberRole.OWNER.value, MemberRole.ADMIN.value, MemberRole.EDITOR.value)
REQUIRED_PROJECT_FIELDS = ("name", "status", "payment_status", "progress")


def slugify(name: str) -> str:
    """``"Café Opening 2025!"`` -> ``"cafe-opening-2025"``."""
    normalized = unicodedata.normalize("NFKD", name)
    ascii_name = normalized.encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_name.lower()).strip("-")
    return slug or "project"


async def unique_slug(session: AsyncSession, name: str, exclude_id: Optional[str] = None) -> str:
    base = slugify(name)
    stmt = select(Project.slug).where(
        or_(Project.slug == base, Project.slug.like(f"{base}-%"))
    )
    if exclude_id:
        stmt = stmt.where(Project.id != exclude_id)
    taken = set((await session.execute(stmt)).scalars())
    if base not in taken:
        return base
    n = 2
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"


def _project_options():
    return (
        selectinload(Project.creator),
        selectinload(Project.members).selectinload(ProjectMember.user),
        selectinload(Project.tasks),
    )


def to_summary(project: Project) -> ProjectSummary:
    return ProjectSummary(
        id=project.id,
        name=project.name,
        slug=project.slug,
        description=project.description,
        status=project.status,
        payment_status=project.payment_status,
        progress=project.progress or 0.0,
        created_at=project.created_at,
        updated_at=project.updated_at,
        start_date=project.start_date,
        due_date=project.due_date,
        budget=project.budget,
        category=project.category,
        venue=project.venue,
        created_by=UserRef.from_profile(project.creator),
        assigned_to=[UserRef.from_profile(m.user) for m in project.members if m.user],
        client_name=project.client_name,
        client_company_name=project.client_company_name,
        invoice_number=project.invoice_number,
        po_number=project.po_number,
        payment_due_date=project.payment_due_date,
        paid_date=project.paid_date,
        personal_for_user_id=project.personal_for_user_id,
        total_task_count=len(project.tasks),
    )


# --- Access ---


def _member_ids(project: Project) -> set[str]:
    return {m.user_id for m in project.members}


def _can_view(project: Project, user_id: str) -> bool:
    return (
        project.created_by == user_id
        or project.personal_for_user_id == user_id
        or user_id in _member_ids(project)
    )


def _can_manage(project: Project, user_id: str) -> bool:
    if project.created_by == user_id:
        return True
    return any(m.user_id == user_id and m.role in MANAGER_ROLES for m in project.members)


async def _load_project(session: AsyncSession, project_id_or_slug: str) -> Project:
    project = await session.scalar(
        select(Project)
        .where(or_(Project.id == project_id_or_slug, Project.slug == project_id_or_slug))
        .options(*_project_options())
        .execution_options(populate_existing=True)
    )
    if project is None:
        raise NotFoundError(f"Project {project_id_or_slug} not found")
    return project


# --- Projects ---


async def list_projects_for_user(session: AsyncSession, user_id: str) -> list[ProjectSummary]:
    member_of = select(ProjectMember.project_id).where(ProjectMember.user_id == user_id)
    result = await session.execute(
        select(Project)
        .where(
            or_(
                Project.created_by == user_id,
                Project.personal_for_user_id == user_id,
                Project.id.in_(member_of),
            )
        )
        .options(*_project_options())
        .order_by(Project.created_at)
    )
    return [to_summary(p) for p in result.scalars().all()]


async def get_project(session: AsyncSession, project_id_or_slug: str, user_id: str) -> ProjectSummary:
    project = await _load_project(session, project_id_or_slug)
    if not _can_view(project, user_id):
        raise PermissionDeniedError("Not a member of this project")
    return to_summary(project)


async def create_project(session: AsyncSession, user_id: str, data: ProjectCreate) -> ProjectSummary:
    fields = data.model_dump(exclude={"member_ids"})
    project = Project(
        **fields,
        slug=await unique_slug(session, data.name),
        created_by=user_id,
    )
    session.add(project)
    await session.flush()

    session.add(ProjectMember(project_id=project.id, user_id=user_id, role=MemberRole.OWNER.value))
    invited = [uid for uid in dict.fromkeys(data.member_ids) if uid != user_id]
    for member_id in invited:
        session.add(ProjectMember(project_id=project.id, user_id=member_id))
    await session.flush()

    if invited:
        await _notify_invited(session, project, user_id, invited)

    logger.info(f"Project created: {project.slug} ({len(invited) + 1} member(s))")
    return to_summary(await _load_project(session, project.id))


async def _notify_invited(
    session: AsyncSession, project: Project, inviter_id: str, user_ids: list[str]
) -> None:
    inviter = await session.get(Profile, inviter_id)
    inviter_name = inviter.full_name if inviter else "Someone"
    await inbox.create_notification(
        session,
        type="project_invite",
        title=f"{inviter_name} added you to {project.name}",
        recipients=user_ids,
        actor_id=inviter_id,
        resource_type="project",
        resource_id=project.id,
        data={"link": f"/projects/{project.slug}"},
    )
    for user_id in user_ids:
        await queue.enqueue(
            session,
            recipient_id=user_id,
            notification_type="project_invite",
            context={
                "project_name": project.name,
                "project_slug": project.slug,
                "inviter_name": inviter_name,
            },
            debounce_key=f"project_invite:{project.id}",
        )


async def update_project(
    session: AsyncSession, project_id_or_slug: str, user_id: str, data: ProjectUpdate
) -> ProjectSummary:
    project = await _load_project(session, project_id_or_slug)
    if not _can_manage(project, user_id):
        raise PermissionDeniedError("Only project managers can edit this project")

    changes = data.model_dump(exclude_unset=True)
    cleared = [key for key in REQUIRED_PROJECT_FIELDS if key in changes and changes[key] is None]
    if cleared:
        raise ValidationError(f"Cannot clear required field(s): {', '.join(cleared)}")
    old_status = project.status
    if "name" in changes and changes["name"] != project.name:
        project.slug = await unique_slug(session, changes["name"], exclude_id=project.id)
    for key, value in changes.items():
        setattr(project, key, value)
    await session.flush()

    if "status" in changes and changes["status"] != old_status:
        actor = await session.get(Profile, user_id)
        actor_name = actor.full_name if actor else "Someone"
        await inbox.create_notification(
            session,
            type="project_status_updated",
            title=f"{project.name}: {old_status} → {project.status}",
            body=f"Updated by {actor_name}",
            recipients=[project.created_by, *_member_ids(project)],
            actor_id=user_id,
            resource_type="project",
            resource_id=project.id,
            data={
                "link": f"/projects/{project.slug}",
                "old_status": old_status,
                "new_status": project.status,
            },
        )
        logger.info(f"Project {project.slug} status: {old_status} -> {project.status}")

    return to_summary(await _load_project(session, project.id))


async def delete_project(session: AsyncSession, project_id_or_slug: str, user_id: str) -> None:
    project = await _load_project(session, project_id_or_slug)
    if project.created_by != user_id:
        raise PermissionDeniedError("Only the project owner can delete it")
    await session.execute(
        delete(BillingReminderLog).where(BillingReminderLog.project_id == project.id)
    )
    await session.delete(project)
    await session.flush()
    logger.info(f"Project deleted: {project.slug}")


# --- Tasks ---


def to_task_out(task: Task) -> TaskOut:
    return TaskOut(
        id=task.id,
        title=task.title,
        description=task.description,
        completed=task.completed,
        status=task.status,
        priority=task.priority,
        due_date=task.due_date,
        project_id=task.project_id,
        project_name=task.project.name,
        project_slug=task.project.slug,
        assigned_to=[UserRef.from_profile(a.user) for a in task.assignees if a.user],
        created_by=task.created_by,
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def _task_options():
    return (
        selectinload(Task.project),
        selectinload(Task.assignees).selectinload(TaskAssignee.user),
    )


async def _load_task(session: AsyncSession, task_id: str) -> Task:
    task = await session.scalar(
        select(Task)
        .where(Task.id == task_id)
        .options(*_task_options())
        .execution_options(populate_existing=True)
    )
    if task is None:
        raise NotFoundError(f"Task {task_id} not found")
    return task


async def _check_project_access(session: AsyncSession, project_id: str, user_id: str) -> Project:
    project = await _load_project(session, project_id)
    if not _can_view(project, user_id):
        raise PermissionDeniedError("Not a member of this project")
    return project


async def list_tasks(
    session: AsyncSession,
    project_ids: Iterable[str],
    hide_completed: bool = False,
    sort: Optional[SortConfig] = None,
) -> list[TaskOut]:
    ids = list(project_ids)
    if not ids:
        return []
    stmt = (
        select(Task)
        .where(Task.project_id.in_(ids))
        .options(*_task_options())
        .order_by(Task.created_at)
    )
    if hide_completed:
        stmt = stmt.where(Task.completed.is_(False))
    tasks = [to_task_out(t) for t in (await session.execute(stmt)).scalars().all()]
    return sort_projects(tasks, sort or SortConfig(key="due_date"))


async def upsert_task(session: AsyncSession, user_id: str, data: TaskUpsert) -> TaskOut:
    if data.id:
        task = await _load_task(session, data.id)
        project = await _check_project_access(session, task.project_id, user_id)
        if task.project_id != data.project_id:
            raise ValidationError("Task belongs to a different project")
        previous = {a.user_id for a in task.assignees}
    else:
        project = await _check_project_access(session, data.project_id, user_id)
        task = Task(project_id=project.id, created_by=user_id)
        session.add(task)
        previous = set()

    task.title = data.title
    task.description = data.description
    task.due_date = data.due_date
    task.priority = data.priority
    task.completed = data.completed or data.status == TaskStatus.DONE.value
    task.status = TaskStatus.DONE.value if task.completed else data.status
    await session.flush()

    wanted = list(dict.fromkeys(data.assignee_ids))
    await session.execute(
        delete(TaskAssignee).where(
            TaskAssignee.task_id == task.id, TaskAssignee.user_id.not_in(wanted)
        )
    )
    for assignee_id in wanted:
        if assignee_id not in previous:
            session.add(TaskAssignee(task_id=task.id, user_id=assignee_id))
    await session.flush()

    new_assignees = [uid for uid in wanted if uid not in previous and uid != user_id]
    if new_assignees:
        await _notify_assigned(session, task, project, user_id, new_assignees)

    return to_task_out(await _load_task(session, task.id))


async def _notify_assigned(
    session: AsyncSession, task: Task, project: Project, assigner_id: str, user_ids: list[str]
) -> None:
    assigner = await session.get(Profile, assigner_id)
    assigner_name = assigner.full_name if assigner else "Someone"
    await inbox.create_notification(
        session,
        type="task_assignment",
        title=f"{assigner_name} assigned you: {task.title}",
        recipients=user_ids,
        actor_id=assigner_id,
        resource_type="task",
        resource_id=task.id,
        data={"link": f"/projects/{project.slug}"},
    )
    for user_id in user_ids:
        await queue.enqueue(
            session,
            recipient_id=user_id,
            notification_type="task_assignment",
            context={
                "task_id": task.id,
                "task_title": task.title,
                "project_name": project.name,
                "project_slug": project.slug,
                "assigner_name": assigner_name,
            },
            debounce_key=f"task_assignment:{task.id}",
        )
    logger.info(f"Task {task.id} assigned to {len(user_ids)} user(s)")


async def toggle_task_completion(session: AsyncSession, task_id: str, user_id: str) -> TaskOut:
    task = await _load_task(session, task_id)
    await _check_project_access(session, task.project_id, user_id)
    task.completed = not task.completed
    task.status = TaskStatus.DONE.value if task.completed else TaskStatus.TODO.value
    await session.flush()
    return to_task_out(await _load_task(session, task.id))


async def delete_task(session: AsyncSession, task_id: str, user_id: str) -> None:
    task = await _load_task(session, task_id)
    project = await _check_project_access(session, task.project_id, user_id)
    if task.created_by != user_id and not _can_manage(project, user_id):
        raise PermissionDeniedError("Only the task creator or a project manager can delete it")
    await session.delete(task)
    await session.flush()
