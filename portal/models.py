"""Pydantic models for the portal API and service layer."""

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


# --- People ---


class UserRef(BaseModel):
    """Compact user reference embedded in projects, tasks and messages."""

    id: str
    name: str
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    initials: str = ""

    @classmethod
    def from_profile(cls, profile) -> "UserRef":
        return cls(
            id=profile.id,
            name=profile.full_name,
            email=profile.email,
            avatar_url=profile.avatar_url,
            initials=profile.initials,
        )


# --- Projects ---


class ProjectSummary(BaseModel):
    """A project row as shown in the project list views."""

    id: str
    name: str
    slug: str
    description: Optional[str] = None
    status: str = "Planning"
    payment_status: str = "Proposed"
    progress: float = 0.0
    created_at: datetime
    updated_at: Optional[datetime] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    budget: Optional[float] = None
    category: Optional[str] = None
    venue: Optional[str] = None
    created_by: UserRef
    assigned_to: list[UserRef] = []
    client_name: Optional[str] = None
    client_company_name: Optional[str] = None
    invoice_number: Optional[str] = None
    po_number: Optional[str] = None
    payment_due_date: Optional[date] = None
    paid_date: Optional[date] = None
    personal_for_user_id: Optional[str] = None
    total_task_count: int = 0


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = None
    status: str = "Planning"
    payment_status: str = "Proposed"
    category: Optional[str] = None
    venue: Optional[str] = None
    budget: Optional[float] = Field(None, ge=0)
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    payment_due_date: Optional[date] = None
    invoice_number: Optional[str] = None
    client_name: Optional[str] = None
    client_company_name: Optional[str] = None
    member_ids: list[str] = []


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=300)
    description: Optional[str] = None
    status: Optional[str] = None
    payment_status: Optional[str] = None
    progress: Optional[float] = Field(None, ge=0, le=100)
    category: Optional[str] = None
    venue: Optional[str] = None
    budget: Optional[float] = Field(None, ge=0)
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    payment_due_date: Optional[date] = None
    paid_date: Optional[date] = None
    invoice_number: Optional[str] = None
    po_number: Optional[str] = None
    client_name: Optional[str] = None
    client_company_name: Optional[str] = None


# --- Tasks ---


class TaskOut(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    completed: bool = False
    status: str
    priority: str
    due_date: Optional[date] = None
    project_id: str
    project_name: str
    project_slug: str
    assigned_to: list[UserRef] = []
    created_by: str
    created_at: datetime
    updated_at: datetime


class TaskUpsert(BaseModel):
    id: Optional[str] = None
    project_id: str
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    due_date: Optional[date] = None
    priority: Literal["Urgent", "High", "Normal", "Low"] = "Normal"
    status: Literal["To do", "In progress", "In review", "Done"] = "To do"
    completed: bool = False
    assignee_ids: list[str] = []


# --- Chat ---


class Attachment(BaseModel):
    name: str
    url: str
    type: str = "application/octet-stream"


class RepliedMessage(BaseModel):
    content: Optional[str] = None
    sender_name: str
    is_deleted: bool = False
    attachment: Optional[Attachment] = None


class ReactionOut(BaseModel):
    emoji: str
    user_id: str
    user_name: str


class MessageOut(BaseModel):
    id: str
    conversation_id: str
    text: Optional[str] = None
    timestamp: datetime
    sender: UserRef
    attachment: Optional[Attachment] = None
    reply_to_message_id: Optional[str] = None
    replied_message: Optional[RepliedMessage] = None
    reactions: list[ReactionOut] = []
    is_deleted: bool = False
    is_forwarded: bool = False


class ConversationOut(BaseModel):
    id: str
    name: str
    avatar_url: Optional[str] = None
    last_message: str = "No messages yet."
    last_message_at: datetime = datetime(1970, 1, 1)
    unread_count: int = 0
    is_group: bool = False
    members: list[UserRef] = []
    created_by: str
    messages: list[MessageOut] = []


class SendMessageRequest(BaseModel):
    text: Optional[str] = None
    attachment: Optional[Attachment] = None
    reply_to_message_id: Optional[str] = None
    message_id: Optional[str] = None  # client-generated id for optimistic updates


class DirectConversationRequest(BaseModel):
    other_user_id: str


class GroupConversationRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    participant_ids: list[str]


class ReactionToggle(BaseModel):
    emoji: str = Field(..., min_length=1, max_length=32)


class MessageSearchHit(BaseModel):
    message_id: str
    conversation_id: str
    conversation_name: str
    text: str
    timestamp: datetime
    sender_name: str


# --- Notifications ---


class NotificationOut(BaseModel):
    id: str
    type: str
    title: str
    body: Optional[str] = None
    link: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    actor: Optional[UserRef] = None
    created_at: datetime
    read: bool = False


# --- Billing ---


class Invoice(BaseModel):
    """Invoice view derived from a project's billing fields."""

    id: str
    project_id: str
    project_name: str
    project_slug: str
    amount: float = 0.0
    status: str
    invoice_number: Optional[str] = None
    po_number: Optional[str] = None
    due_date: Optional[date] = None
    paid_date: Optional[date] = None
    client_name: Optional[str] = None
    client_company_name: Optional[str] = None
    project_owner: Optional[UserRef] = None
    last_billing_reminder_sent_at: Optional[datetime] = None


class BillingStats(BaseModel):
    total_amount: float = 0.0
    paid_amount: float = 0.0
    outstanding_amount: float = 0.0
    overdue_amount: float = 0.0
    invoice_count: int = 0
    paid_count: int = 0
    outstanding_count: int = 0
    overdue_count: int = 0


class PaymentStatusUpdate(BaseModel):
    payment_status: str
    paid_date: Optional[date] = None
