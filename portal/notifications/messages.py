"""Text for external (WhatsApp) notifications.

Uses WhatsApp markdown (``*bold*``). Missing context values render as
empty strings rather than failing the whole notification.
"""

import re
from typing import Any, Optional

MENTION_RE = re.compile(r"@\[([^\]]+)\]\(([^)]+)\)")
BODY_LIMIT = 100

FALLBACK_MESSAGE = "You have a new notification from the portal."

TEMPLATES = {
    "discussion_mention": (
        'You were mentioned by *{mentioner_name}* in *{project_name}*:\n\n'
        '"{comment_text}"\n\nView here: {project_link}'
    ),
    "task_assignment": (
        "You have been assigned a new task in *{project_name}*:\n\n"
        "*{task_title}*\n\nAssigned by: {assigner_name}\nView here: {project_link}"
    ),
    "project_invite": (
        "You have been invited to join the project *{project_name}* by "
        "{inviter_name}.\n\nCheck it out: {project_link}"
    ),
    "kb_invite": (
        "You have been invited to collaborate on the Knowledge Base folder "
        "*{folder_name}* by {inviter_name}."
    ),
    "goal_invite": (
        "You have been invited to collaborate on the goal *{goal_title}* by "
        "{inviter_name}."
    ),
    "payment_status_updated": (
        "Payment status updated for *{project_name}*.\n\nNew Status: *{new_status}*\n"
        "Updated by: {updater_name}\n\nView project: {project_link}"
    ),
    "project_status_updated": (
        "Project status updated for *{project_name}*.\n\n*{old_status}* ➔ *{new_status}*\n"
        "Updated by: {updater_name}\n\nView project: {project_link}"
    ),
    "billing_reminder": (
        "Billing Reminder for *{project_name}*.\n\nThe invoice is overdue by "
        "{days_overdue} days. Please follow up."
    ),
    "task_overdue": (
        "Task Overdue: *{task_title}* in *{project_name}*.\n\nPlease check your tasks."
    ),
    "goal_progress_update": (
        "Goal Progress: *{goal_title}*\n\n{updater_name} logged value: {value_logged}.\n\n"
        "View goal: {site_url}/goals/{goal_slug}"
    ),
    "new_chat_message": (
        "You have new messages from *{sender_name}*{group_suffix}.\n\n"
        '"{preview}"\n\nReply here: {site_url}/chat'
    ),
}


class _SafeContext(dict):
    def __missing__(self, key: str) -> str:
        return ""


def format_mentions(text: Optional[str]) -> str:
    """Turn ``@[Name](id)`` mention markup into ``@Name``."""
    if not text:
        return ""
    return MENTION_RE.sub(r"@\1", text)


def truncate_body(text: Optional[str], limit: int = BODY_LIMIT) -> str:
    if not text:
        return ""
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def project_link(site_url: str, project_slug: Optional[str]) -> str:
    site_url = site_url.rstrip("/")
    return f"{site_url}/projects/{project_slug}" if project_slug else site_url


def construct_message(notification_type: str, context: Optional[dict[str, Any]], site_url: str) -> str:
    template = TEMPLATES.get(notification_type)
    if template is None:
        return FALLBACK_MESSAGE

    ctx = _SafeContext(context or {})
    ctx["site_url"] = site_url.rstrip("/")
    ctx["project_link"] = project_link(site_url, ctx.get("project_slug"))
    for key in ("comment_text", "project_name", "preview"):
        if ctx.get(key):
            ctx[key] = format_mentions(str(ctx[key]))
    if notification_type == "new_chat_message":
        group = ctx.get("group_name")
        ctx["group_suffix"] = f" in *{group}*" if group else ""
    return template.format_map(ctx)


EMAIL_SUFFIX = "_email"

EMAIL_SUBJECTS = {
    "task_overdue": "Task overdue: {task_title}",
    "billing_reminder": "Billing reminder: {project_name}",
    "task_assignment": "New task in {project_name}: {task_title}",
    "discussion_mention": "{mentioner_name} mentioned you in {project_name}",
    "new_chat_message": "New messages from {sender_name}",
}


def base_type(notification_type: str) -> str:
    """``task_overdue_email`` -> ``task_overdue``."""
    if notification_type.endswith(EMAIL_SUFFIX):
        return notification_type[: -len(EMAIL_SUFFIX)]
    return notification_type


def email_subject(notification_type: str, context: Optional[dict[str, Any]]) -> str:
    template = EMAIL_SUBJECTS.get(base_type(notification_type))
    if template is None:
        return "Portal notification"
    return template.format_map(_SafeContext(context or {}))
