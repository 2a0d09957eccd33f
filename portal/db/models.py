"""Database models for the portal.

Uses SQLAlchemy 2.0 with async support.
Backend-agnostic: works with SQLite (dev/tests) and PostgreSQL.
"""

import enum
import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo anyway)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# --- Enums ---


class ProjectStatus(str, enum.Enum):
    ON_TRACK = "On Track"
    AT_RISK = "At Risk"
    OFF_TRACK = "Off Track"
    ON_HOLD = "On Hold"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    PLANNING = "Planning"
    PENDING = "Pending"
    BILLING_PROCESS = "Billing Process"


class PaymentStatus(str, enum.Enum):
    PAID = "Paid"
    UNPAID = "Unpaid"
    OVERDUE = "Overdue"
    PENDING = "Pending"
    IN_PROCESS = "In Process"
    PROPOSED = "Proposed"
    CANCELLED = "Cancelled"
    BID_LOST = "Bid Lost"
    REQUESTED = "Requested"
    QUO_APPROVED = "Quo Approved"
    INV_APPROVED = "Inv Approved"
    PARTIALLY_PAID = "Partially Paid"


class TaskStatus(str, enum.Enum):
    TODO = "To do"
    IN_PROGRESS = "In progress"
    IN_REVIEW = "In review"
    DONE = "Done"


class MemberRole(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    EDITOR = "editor"


class DeliveryStatus(str, enum.Enum):
    """Lifecycle of a queued external notification."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# --- People ---


class Profile(Base):
    """A portal user."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    avatar_url: Mapped[Optional[str]] = mapped_column(String(500))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    role: Mapped[str] = mapped_column(String(50), default="member")
    notification_preferences: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    @property
    def full_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email

    @property
    def initials(self) -> str:
        initials = f"{(self.first_name or '')[:1]}{(self.last_name or '')[:1]}".upper()
        return initials or self.email[:2].upper()

    def __repr__(self) -> str:
        return f"<Profile(id='{self.id}', email='{self.email}')>"


# --- Projects ---


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    slug: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(50), default=ProjectStatus.PLANNING.value)
    payment_status: Mapped[str] = mapped_column(String(50), default=PaymentStatus.PROPOSED.value)
    progress: Mapped[float] = mapped_column(Float, default=0.0)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    venue: Mapped[Optional[str]] = mapped_column(String(300))
    budget: Mapped[Optional[float]] = mapped_column(Float)

    start_date: Mapped[Optional[date]] = mapped_column(Date)
    due_date: Mapped[Optional[date]] = mapped_column(Date)

    # --- Billing ---
    invoice_number: Mapped[Optional[str]] = mapped_column(String(100))
    po_number: Mapped[Optional[str]] = mapped_column(String(100))
    payment_due_date: Mapped[Optional[date]] = mapped_column(Date)
    paid_date: Mapped[Optional[date]] = mapped_column(Date)
    last_billing_reminder_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # --- Client ---
    client_name: Mapped[Optional[str]] = mapped_column(String(200))
    client_company_name: Mapped[Optional[str]] = mapped_column(String(200))

    created_by: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    personal_for_user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("profiles.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    creator: Mapped["Profile"] = relationship(foreign_keys=[created_by])
    members: Mapped[list["ProjectMember"]] = relationship(
        back_populates="project", cascade="all, delete-orphan"
    )
    tasks: Mapped[list["Task"]] = relationship(
        back_populates="project", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Project(slug='{self.slug}', status='{self.status}')>"


class ProjectMember(Base):
    __tablename__ = "project_members"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_member"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default=MemberRole.MEMBER.value)

    project: Mapped["Project"] = relationship(back_populates="members")
    user: Mapped["Profile"] = relationship()


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(50), default=TaskStatus.TODO.value)
    priority: Mapped[str] = mapped_column(String(20), default="Normal")
    completed: Mapped[bool] = mapped_column(Boolean, default=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    created_by: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    project: Mapped["Project"] = relationship(back_populates="tasks")
    assignees: Mapped[list["TaskAssignee"]] = relationship(
        back_populates="task", cascade="all, delete-orphan"
    )


class TaskAssignee(Base):
    __tablename__ = "task_assignees"
    __table_args__ = (UniqueConstraint("task_id", "user_id", name="uq_task_assignee"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)

    task: Mapped["Task"] = relationship(back_populates="assignees")
    user: Mapped["Profile"] = relationship()


# --- Chat ---


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    is_group: Mapped[bool] = mapped_column(Boolean, default=False)
    group_name: Mapped[Optional[str]] = mapped_column(String(200))
    created_by: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    last_message_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    participants: Mapped[list["ConversationParticipant"]] = relationship(
        back_populates="conversation", cascade="all, delete-orphan"
    )


class ConversationParticipant(Base):
    __tablename__ = "conversation_participants"
    __table_args__ = (
        UniqueConstraint("conversation_id", "user_id", name="uq_conversation_participant"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("conversations.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    is_hidden: Mapped[bool] = mapped_column(Boolean, default=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    conversation: Mapped["Conversation"] = relationship(back_populates="participants")
    user: Mapped["Profile"] = relationship()


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    conversation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("conversations.id"), nullable=False, index=True
    )
    sender_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    content: Mapped[Optional[str]] = mapped_column(Text)
    message_type: Mapped[str] = mapped_column(String(50), default="user")
    attachment_url: Mapped[Optional[str]] = mapped_column(String(1000))
    attachment_name: Mapped[Optional[str]] = mapped_column(String(300))
    attachment_type: Mapped[Optional[str]] = mapped_column(String(100))
    reply_to_message_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("messages.id"))
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    is_forwarded: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    sender: Mapped["Profile"] = relationship()
    reactions: Mapped[list["MessageReaction"]] = relationship(cascade="all, delete-orphan")


class MessageReaction(Base):
    __tablename__ = "message_reactions"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", "emoji", name="uq_message_reaction"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[str] = mapped_column(String(36), ForeignKey("messages.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    emoji: Mapped[str] = mapped_column(String(32), nullable=False)

    user: Mapped["Profile"] = relationship()


# --- Notifications ---


class Notification(Base):
    """In-app notification, fanned out through NotificationRecipient."""

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    body: Mapped[Optional[str]] = mapped_column(Text)
    resource_type: Mapped[Optional[str]] = mapped_column(String(50))
    resource_id: Mapped[Optional[str]] = mapped_column(String(36))
    actor_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("profiles.id"))
    data: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    actor: Mapped[Optional["Profile"]] = relationship()


class NotificationRecipient(Base):
    __tablename__ = "notification_recipients"
    __table_args__ = (
        UniqueConstraint("notification_id", "user_id", name="uq_notification_recipient"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    notification_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("notifications.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    notification: Mapped["Notification"] = relationship()


class PendingNotification(Base):
    """External (WhatsApp/email) notification waiting for delivery."""

    __tablename__ = "pending_notifications"
    __table_args__ = (
        UniqueConstraint(
            "recipient_id", "notification_type", "debounce_key",
            name="uq_pending_debounce",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    recipient_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    conversation_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("conversations.id"))
    notification_type: Mapped[str] = mapped_column(String(50), nullable=False)
    context_data: Mapped[Optional[dict]] = mapped_column(JSON)
    debounce_key: Mapped[Optional[str]] = mapped_column(String(200))
    send_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=DeliveryStatus.PENDING.value, nullable=False
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<PendingNotification(id={self.id}, type='{self.notification_type}', "
            f"status='{self.status}')>"
        )


class BillingReminderLog(Base):
    """One row per (project, reminder type, day) already sent."""

    __tablename__ = "billing_reminders_log"
    __table_args__ = (
        UniqueConstraint("project_id", "reminder_type", "sent_on", name="uq_billing_reminder"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False)
    reminder_type: Mapped[str] = mapped_column(String(50), nullable=False)
    sent_on: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
