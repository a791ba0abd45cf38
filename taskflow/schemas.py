"""
Pydantic schemas for the HTTP facade.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.constants import (
    MAX_COMMENT_LENGTH,
    MAX_EMAIL_LENGTH,
    MAX_PROJECT_DESCRIPTION_LENGTH,
    MAX_PROJECT_TITLE_LENGTH,
    MAX_REMINDER_DAYS,
    MIN_REMINDER_DAYS,
)
from shared.types import (
    InvitationStatus,
    NotificationType,
    ProjectStatus,
    TaskPriority,
)


class _FromAttributes(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Auth


class SignInRequest(BaseModel):
    email: str = Field(..., max_length=MAX_EMAIL_LENGTH)
    password: str


class SignUpRequest(BaseModel):
    email: str = Field(..., max_length=MAX_EMAIL_LENGTH)
    password: str
    name: str = Field(..., min_length=1)
    confirmation: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    email: str = Field(..., max_length=MAX_EMAIL_LENGTH)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str
    confirmation: Optional[str] = None


class UserResponse(_FromAttributes):
    uid: str
    email: str
    display_name: Optional[str] = None


class UserProfileResponse(_FromAttributes):
    uid: str
    email: str
    display_name: str
    photo_url: str = ""


class UserSearchResponse(BaseModel):
    user: Optional[UserProfileResponse] = None


class StatusResponse(BaseModel):
    status: str = "ok"


# Projects


class MemberResponse(_FromAttributes):
    uid: str
    display_name: str
    email: str
    photo_url: str = ""


class CommentResponse(_FromAttributes):
    id: str
    author: MemberResponse
    content: str
    created_date: datetime


class TaskResponse(_FromAttributes):
    id: str
    title: str
    description: str
    assignee: Optional[MemberResponse] = None
    due_date: Optional[datetime] = None
    is_completed: bool
    priority: TaskPriority
    comments: list[CommentResponse] = []


class ProjectResponse(_FromAttributes):
    id: str
    title: str
    description: str
    icon_name: str
    icon_color: str
    status: ProjectStatus
    due_date: Optional[datetime] = None
    created_at: datetime
    owner_id: str
    team_leader: Optional[MemberResponse] = None
    team_members: list[MemberResponse] = []
    team_member_ids: list[str] = []
    tasks: list[TaskResponse] = []
    tasks_count: int
    completed_tasks_count: int
    progress_percentage: float
    is_completed: bool


class ProjectListResponse(BaseModel):
    projects: list[ProjectResponse]


class ProjectCreateRequest(BaseModel):
    title: str = Field(..., max_length=MAX_PROJECT_TITLE_LENGTH)
    description: str = Field(..., max_length=MAX_PROJECT_DESCRIPTION_LENGTH)
    due_date: Optional[datetime] = None
    icon_name: str = "list.bullet"
    icon_color: str = "blue"


class ProjectUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=MAX_PROJECT_TITLE_LENGTH)
    description: Optional[str] = Field(
        default=None, max_length=MAX_PROJECT_DESCRIPTION_LENGTH
    )
    due_date: Optional[datetime] = None
    status: Optional[ProjectStatus] = None
    icon_name: Optional[str] = None
    icon_color: Optional[str] = None


class TaskCreateRequest(BaseModel):
    title: str = Field(..., max_length=MAX_PROJECT_TITLE_LENGTH)
    description: str = ""
    assignee_uid: Optional[str] = None
    due_date: Optional[datetime] = None
    priority: TaskPriority = TaskPriority.MEDIUM


class TaskUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=MAX_PROJECT_TITLE_LENGTH)
    description: Optional[str] = None
    assignee_uid: Optional[str] = None
    due_date: Optional[datetime] = None
    priority: Optional[TaskPriority] = None


class TaskCompletionRequest(BaseModel):
    completed: bool = True


class CommentRequest(BaseModel):
    content: str = Field(..., max_length=MAX_COMMENT_LENGTH)


class ProjectSummaryResponse(_FromAttributes):
    total_projects: int
    completed_projects: int
    active_projects: int
    total_tasks: int
    completed_tasks: int
    overall_progress: float


# Invitations and notifications


class InvitationResponse(_FromAttributes):
    id: str
    project_id: str
    project_title: str
    sender_id: str
    sender_name: str
    sender_email: str
    receiver_id: str
    receiver_email: str
    status: InvitationStatus
    created_at: datetime
    responded_at: Optional[datetime] = None


class InvitationListResponse(BaseModel):
    invitations: list[InvitationResponse]


class SendInvitationRequest(BaseModel):
    receiver_email: str = Field(..., max_length=MAX_EMAIL_LENGTH)
    project_id: str
    project_title: str


class RespondInvitationRequest(BaseModel):
    accept: bool


class NotificationResponse(_FromAttributes):
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    related_id: Optional[str] = None
    is_read: bool
    created_at: datetime


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    unread_count: int


class MarkAllReadResponse(BaseModel):
    updated: int


# Settings


class NotificationSettingsResponse(_FromAttributes):
    push_notifications: bool
    email_notifications: bool
    task_reminders: bool
    project_updates: bool
    team_activity: bool
    project_deadline_reminder_days: int
    task_deadline_reminder_days: int


class NotificationSettingsUpdate(BaseModel):
    push_notifications: Optional[bool] = None
    email_notifications: Optional[bool] = None
    task_reminders: Optional[bool] = None
    project_updates: Optional[bool] = None
    team_activity: Optional[bool] = None
    project_deadline_reminder_days: Optional[int] = Field(
        default=None, ge=MIN_REMINDER_DAYS, le=MAX_REMINDER_DAYS
    )
    task_deadline_reminder_days: Optional[int] = Field(
        default=None, ge=MIN_REMINDER_DAYS, le=MAX_REMINDER_DAYS
    )
