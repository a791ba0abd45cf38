# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================
"""Document schemas for users, projects, invitations and notifications."""

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Type, TypeVar
import uuid

from dacite import Config, from_dict

from shared.constants import MAX_REMINDER_DAYS, MIN_REMINDER_DAYS
from shared.json_utils import convert_keys
from shared.types import (
    InvitationStatus,
    NotificationType,
    ProjectStatus,
    TaskPriority,
)

T = TypeVar("T")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4()).upper()


def _parse_datetime(value):
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


DACITE_CONFIG = Config(
    check_types=False,
    cast=[Enum],
    type_hooks={datetime: _parse_datetime},
)


@dataclass
class MemberSnapshot:
    """Denormalized copy of a user's display fields stored inside a project."""

    uid: str
    display_name: str = ""
    email: str = ""
    photo_url: str = ""
    created_at: Optional[datetime] = None


@dataclass
class UserProfile:
    """Schema of a document in the `users` collection."""

    uid: str
    email: str = ""
    display_name: str = ""
    photo_url: str = ""
    created_at: Optional[datetime] = None
    fcm_token: Optional[str] = None

    def to_member_snapshot(self) -> MemberSnapshot:
        return MemberSnapshot(
            uid=self.uid,
            display_name=self.display_name or "User",
            email=self.email,
            photo_url=self.photo_url,
            created_at=utc_now(),
        )


@dataclass
class Invitation:
    """A pending-or-resolved request for a user to join a project's team."""

    project_id: str
    project_title: str
    sender_id: str
    sender_name: str
    sender_email: str
    receiver_id: str
    receiver_email: str
    id: str = field(default_factory=new_id)
    status: InvitationStatus = InvitationStatus.PENDING
    created_at: datetime = field(default_factory=utc_now)
    responded_at: Optional[datetime] = None


@dataclass
class AppNotification:
    """A per-user message describing an invitation, task or team event."""

    user_id: str
    type: NotificationType
    title: str
    message: str
    id: str = field(default_factory=new_id)
    # projectId, taskId or invitationId depending on the type.
    related_id: Optional[str] = None
    is_read: bool = False
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class TaskComment:
    author: MemberSnapshot
    content: str
    id: str = field(default_factory=new_id)
    created_date: datetime = field(default_factory=utc_now)


@dataclass
class ProjectTask:
    title: str
    id: str = field(default_factory=new_id)
    description: str = ""
    assignee: Optional[MemberSnapshot] = None
    due_date: Optional[datetime] = None
    is_completed: bool = False
    priority: TaskPriority = TaskPriority.MEDIUM
    comments: List[TaskComment] = field(default_factory=list)


@dataclass
class Project:
    title: str
    id: str = field(default_factory=new_id)
    description: str = ""
    icon_name: str = "list.bullet"
    icon_color: str = "blue"
    status: ProjectStatus = ProjectStatus.TODO
    due_date: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    owner_id: str = ""
    team_leader: Optional[MemberSnapshot] = None
    team_members: List[MemberSnapshot] = field(default_factory=list)
    team_member_ids: List[str] = field(default_factory=list)
    tasks: List[ProjectTask] = field(default_factory=list)

    @property
    def tasks_count(self) -> int:
        return len(self.tasks)

    @property
    def completed_tasks_count(self) -> int:
        return sum(1 for task in self.tasks if task.is_completed)

    @property
    def progress_percentage(self) -> float:
        if not self.tasks:
            return 100.0 if self.status == ProjectStatus.COMPLETED else 0.0
        return round(100.0 * self.completed_tasks_count / self.tasks_count, 2)

    @property
    def is_completed(self) -> bool:
        if self.status == ProjectStatus.COMPLETED:
            return True
        return bool(self.tasks) and self.completed_tasks_count == self.tasks_count

    def find_task(self, task_id: str) -> Optional[ProjectTask]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None


@dataclass
class NotificationSettings:
    """Per-user notification preferences, stored locally and mirrored remotely."""

    push_notifications: bool = True
    email_notifications: bool = False
    task_reminders: bool = True
    project_updates: bool = True
    team_activity: bool = False
    project_deadline_reminder_days: int = 3
    task_deadline_reminder_days: int = 1

    def clamped(self) -> "NotificationSettings":
        def _clamp(days: int) -> int:
            return max(MIN_REMINDER_DAYS, min(MAX_REMINDER_DAYS, int(days)))

        return replace(
            self,
            project_deadline_reminder_days=_clamp(self.project_deadline_reminder_days),
            task_deadline_reminder_days=_clamp(self.task_deadline_reminder_days),
        )

    def allows(self, notification_type: NotificationType) -> bool:
        """Whether a push/local notification of this type may be shown."""
        if not self.push_notifications:
            return False
        if notification_type == NotificationType.TASK_DEADLINE:
            return self.task_reminders
        if notification_type == NotificationType.TEAM_ACTIVITY:
            return self.team_activity
        return self.project_updates


def to_document(obj) -> dict:
    """Converts a schema dataclass into a camelCase document."""
    return convert_keys(asdict(obj), "snake_to_camel")


def from_document(data_class: Type[T], data: dict, doc_id: str | None = None) -> T:
    """
    Builds a schema dataclass from a camelCase document.

    Unknown keys are ignored and missing optional keys take their defaults.
    When `doc_id` is given it fills in the `id` (or `uid`) field if the
    document does not carry one.
    """
    values = convert_keys(dict(data or {}), "camel_to_snake")
    if doc_id is not None:
        id_field = "uid" if data_class is UserProfile else "id"
        if not values.get(id_field):
            values[id_field] = doc_id
    return from_dict(data_class=data_class, data=values, config=DACITE_CONFIG)
