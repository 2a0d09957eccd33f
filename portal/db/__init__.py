"""Database package for the portal."""

from portal.db.connection import close_db, get_db, get_session, init_db
from portal.db.models import (
    Base,
    Conversation,
    ConversationParticipant,
    Message,
    MessageReaction,
    Notification,
    NotificationRecipient,
    PendingNotification,
    Profile,
    Project,
    ProjectMember,
    Task,
    TaskAssignee,
)

__all__ = [
    "get_db",
    "get_session",
    "init_db",
    "close_db",
    "Base",
    "Profile",
    "Project",
    "ProjectMember",
    "Task",
    "TaskAssignee",
    "Conversation",
    "ConversationParticipant",
    "Message",
    "MessageReaction",
    "Notification",
    "NotificationRecipient",
    "PendingNotification",
]
