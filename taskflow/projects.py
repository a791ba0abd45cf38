"""
Project store: project CRUD, nested task/comment edits and a live feed of the
signed-in user's projects.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Optional

from shared.api import (
    MemberSnapshot,
    Project,
    ProjectTask,
    TaskComment,
    UserProfile,
    from_document,
    to_document,
)
from shared.constants import (
    MAX_COMMENT_LENGTH,
    MAX_PROJECT_DESCRIPTION_LENGTH,
    MAX_PROJECT_TITLE_LENGTH,
)
from shared.firebase_constants import PROJECTS_COLLECTION, USERS_COLLECTION
from shared.json_utils import snake_to_camel
from shared.types import NotificationType, ProjectStatus, TaskPriority
from taskflow.auth import AuthUser, load_user_profile, normalize_email
from taskflow.channel import EventChannel, error_event, snapshot_event
from taskflow.db import DocumentStore, Query, StoredDocument, Subscription
from taskflow.errors import (
    AuthenticationError,
    AuthorizationError,
    InvalidArgumentError,
    NotFoundError,
)
from taskflow.notifications import (
    DEFAULT_USER_NAME,
    CurrentUserProvider,
    create_notification,
)

logger = logging.getLogger(__name__)

PROJECTS_EVENT = "projects"

_EDITABLE_PROJECT_FIELDS = {
    "title",
    "description",
    "due_date",
    "status",
    "icon_name",
    "icon_color",
}

# Marks an optional argument the caller did not pass.
_UNSET: Any = object()


def _require_text(value: str, label: str, max_length: int) -> str:
    value = (value or "").strip()
    if not value:
        raise InvalidArgumentError(f"{label} is required.")
    if len(value) > max_length:
        raise InvalidArgumentError(f"{label} must be at most {max_length} characters.")
    return value


class ProjectStore:
    def __init__(
        self,
        store: DocumentStore,
        current_user: CurrentUserProvider,
        channel: EventChannel | None = None,
    ):
        self.store = store
        self.current_user = current_user
        self.channel = channel

        self.projects: list[Project] = []
        self.error_message: Optional[str] = None

        self._subscription: Optional[Subscription] = None
        self._listening_uid: Optional[str] = None

    def _require_user(self) -> AuthUser:
        user = self.current_user()
        if user is None:
            raise AuthenticationError("User is not signed in.")
        return user

    def _user_name(self, user: AuthUser) -> str:
        return user.display_name or DEFAULT_USER_NAME

    # Live feed

    def setup_listener(self) -> None:
        user = self._require_user()
        self.remove_listener()
        uid = user.uid
        self._listening_uid = uid
        query = Query(
            PROJECTS_COLLECTION,
            array_contains=("teamMemberIds", uid),
            order_by="createdAt",
            descending=True,
        )
        self._subscription = self.store.listen(
            query,
            functools.partial(self._on_snapshot, uid),
            functools.partial(self._on_listener_error, uid),
        )

    def remove_listener(self) -> None:
        if self._subscription is not None:
            self._subscription.remove()
        self._subscription = None
        self._listening_uid = None

    def clear(self) -> None:
        self.remove_listener()
        self.projects = []
        self.error_message = None

    def _publish(self, event: dict) -> None:
        if self.channel is None:
            self.handle_event(event)
        else:
            self.channel.publish(event)

    def _on_snapshot(self, uid: str, documents: list[StoredDocument]) -> None:
        self._publish(snapshot_event(PROJECTS_EVENT, uid, documents))

    def _on_listener_error(self, uid: str, error: Exception) -> None:
        logger.warning("Project listener for %s failed: %s", uid, error)
        self._publish(error_event(PROJECTS_EVENT, uid, error))

    def handle_event(self, event: dict) -> bool:
        if event.get("kind") != PROJECTS_EVENT:
            return False
        if self._listening_uid is None or event.get("user_id") != self._listening_uid:
            return False
        if "error" in event:
            self.error_message = event["error"]
            return True
        projects = [
            from_document(Project, doc["data"], doc["id"])
            for doc in event.get("documents", [])
        ]
        projects.sort(key=lambda p: p.created_at, reverse=True)
        self.projects = projects
        return True

    # Users

    def search_user_by_email(self, email: str) -> Optional[UserProfile]:
        email = normalize_email(email)
        if not email:
            return None
        matches = self.store.query(
            Query(USERS_COLLECTION, filters=(("email", email),), limit=1)
        )
        if not matches:
            return None
        return from_document(UserProfile, matches[0].data, matches[0].id)

    # Projects

    def _load(self, project_id: str) -> Project:
        data = self.store.get(PROJECTS_COLLECTION, project_id)
        if data is None:
            raise NotFoundError("Project not found.")
        return from_document(Project, data, project_id)

    def _load_for_member(self, project_id: str, user: AuthUser) -> Project:
        project = self._load(project_id)
        if user.uid not in project.team_member_ids:
            raise AuthorizationError("You are not a member of this project.")
        return project

    def _save_tasks(self, project: Project) -> None:
        self.store.update(
            PROJECTS_COLLECTION,
            project.id,
            {"tasks": [to_document(task) for task in project.tasks]},
        )

    def create_project(
        self,
        title: str,
        description: str,
        due_date: datetime | None = None,
        icon_name: str = "list.bullet",
        icon_color: str = "blue",
        tasks: list[ProjectTask] | None = None,
    ) -> Project:
        user = self._require_user()
        title = _require_text(title, "Project title", MAX_PROJECT_TITLE_LENGTH)
        description = _require_text(
            description, "Project description", MAX_PROJECT_DESCRIPTION_LENGTH
        )
        leader = load_user_profile(self.store, user).to_member_snapshot()
        project = Project(
            title=title,
            description=description,
            icon_name=icon_name,
            icon_color=icon_color,
            due_date=due_date,
            owner_id=user.uid,
            team_leader=leader,
            team_members=[leader],
            team_member_ids=[user.uid],
            tasks=list(tasks or []),
        )
        self.store.set(PROJECTS_COLLECTION, project.id, to_document(project))
        logger.info("Project %s created by %s", project.id, user.uid)
        return project

    def get_project(self, project_id: str) -> Project:
        return self._load_for_member(project_id, self._require_user())

    def update_project(self, project_id: str, **changes) -> Project:
        user = self._require_user()
        unknown = set(changes) - _EDITABLE_PROJECT_FIELDS
        if unknown:
            raise InvalidArgumentError(
                f"Cannot update project fields: {', '.join(sorted(unknown))}"
            )
        project = self._load_for_member(project_id, user)
        if "title" in changes:
            changes["title"] = _require_text(
                changes["title"], "Project title", MAX_PROJECT_TITLE_LENGTH
            )
        if "description" in changes:
            changes["description"] = _require_text(
                changes["description"],
                "Project description",
                MAX_PROJECT_DESCRIPTION_LENGTH,
            )
        if "status" in changes:
            changes["status"] = ProjectStatus(changes["status"])
        project = replace(project, **changes)
        updates = {
            key: value
            for key, value in to_document(project).items()
            if key in {snake_to_camel(name) for name in changes}
        }
        if updates:
            self.store.update(PROJECTS_COLLECTION, project_id, updates)
        return project

    def delete_project(self, project_id: str) -> None:
        user = self._require_user()
        project = self._load(project_id)
        leader_id = project.team_leader.uid if project.team_leader else project.owner_id
        if leader_id != user.uid:
            raise AuthorizationError("Only the team leader can delete this project.")
        self.store.delete(PROJECTS_COLLECTION, project_id)
        logger.info("Project %s deleted by %s", project_id, user.uid)

    # Tasks

    def _member_snapshot(self, project: Project, uid: str) -> MemberSnapshot:
        for member in project.team_members:
            if member.uid == uid:
                return member
        raise InvalidArgumentError("The assignee must be a member of the project.")

    def _find_task(self, project: Project, task_id: str) -> ProjectTask:
        task = project.find_task(task_id)
        if task is None:
            raise NotFoundError("Task not found.")
        return task

    def _notify_assignee(self, user: AuthUser, project: Project, task: ProjectTask) -> None:
        if task.assignee is None or task.assignee.uid == user.uid:
            return
        create_notification(
            self.store,
            task.assignee.uid,
            NotificationType.TASK_ASSIGNED,
            "New Task Assigned",
            f"{self._user_name(user)} assigned you the task '{task.title}' "
            f"in '{project.title}'.",
            related_id=task.id,
        )

    def add_task(
        self,
        project_id: str,
        title: str,
        description: str = "",
        assignee_uid: str | None = None,
        due_date: datetime | None = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
    ) -> ProjectTask:
        user = self._require_user()
        project = self._load_for_member(project_id, user)
        task = ProjectTask(
            title=_require_text(title, "Task title", MAX_PROJECT_TITLE_LENGTH),
            description=(description or "").strip(),
            assignee=self._member_snapshot(project, assignee_uid) if assignee_uid else None,
            due_date=due_date,
            priority=TaskPriority(priority),
        )
        project.tasks.append(task)
        self._save_tasks(project)
        self._notify_assignee(user, project, task)
        return task

    def update_task(
        self,
        project_id: str,
        task_id: str,
        title: str = _UNSET,
        description: str = _UNSET,
        assignee_uid: Optional[str] = _UNSET,
        due_date: Optional[datetime] = _UNSET,
        priority: TaskPriority = _UNSET,
    ) -> ProjectTask:
        user = self._require_user()
        project = self._load_for_member(project_id, user)
        task = self._find_task(project, task_id)
        previous_assignee = task.assignee.uid if task.assignee else None

        if title is not _UNSET:
            task.title = _require_text(title, "Task title", MAX_PROJECT_TITLE_LENGTH)
        if description is not _UNSET:
            task.description = (description or "").strip()
        if assignee_uid is not _UNSET:
            task.assignee = (
                self._member_snapshot(project, assignee_uid) if assignee_uid else None
            )
        if due_date is not _UNSET:
            task.due_date = due_date
        if priority is not _UNSET:
            task.priority = TaskPriority(priority)
        self._save_tasks(project)

        if task.assignee is not None and task.assignee.uid != previous_assignee:
            self._notify_assignee(user, project, task)
        return task

    def set_task_completed(
        self, project_id: str, task_id: str, completed: bool = True
    ) -> ProjectTask:
        user = self._require_user()
        project = self._load_for_member(project_id, user)
        task = self._find_task(project, task_id)
        was_completed = task.is_completed
        task.is_completed = completed
        self._save_tasks(project)

        leader = project.team_leader
        if completed and not was_completed and leader and leader.uid != user.uid:
            create_notification(
                self.store,
                leader.uid,
                NotificationType.TASK_COMPLETED,
                "Task Completed",
                f"{self._user_name(user)} completed '{task.title}' "
                f"in '{project.title}'.",
                related_id=task.id,
            )
        return task

    def delete_task(self, project_id: str, task_id: str) -> None:
        user = self._require_user()
        project = self._load_for_member(project_id, user)
        self._find_task(project, task_id)
        project.tasks = [task for task in project.tasks if task.id != task_id]
        self._save_tasks(project)

    def add_comment(self, project_id: str, task_id: str, content: str) -> TaskComment:
        user = self._require_user()
        content = _require_text(content, "Comment", MAX_COMMENT_LENGTH)
        project = self._load_for_member(project_id, user)
        task = self._find_task(project, task_id)
        author = load_user_profile(self.store, user).to_member_snapshot()
        comment = TaskComment(author=author, content=content)
        task.comments.append(comment)
        self._save_tasks(project)

        if task.assignee is not None and task.assignee.uid != user.uid:
            create_notification(
                self.store,
                task.assignee.uid,
                NotificationType.TEAM_ACTIVITY,
                "New Comment",
                f"{self._user_name(user)} commented on '{task.title}'.",
                related_id=task.id,
            )
        return comment

