"""
Deadline reminder worker.

Scans projects and creates `task_deadline` notifications for incomplete tasks
and projects whose due date falls inside the recipient's reminder window. A
reminder is created at most once per (user, related id).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator, Optional

from shared.api import NotificationSettings, Project, from_document, utc_now
from shared.firebase_constants import (
    NOTIFICATION_SETTINGS_COLLECTION,
    NOTIFICATIONS_COLLECTION,
    PROJECTS_COLLECTION,
)
from shared.types import NotificationType
from taskflow.db import DocumentStore, Query
from taskflow.dependencies import get_document_store
from taskflow.device_settings import settings_from_document
from taskflow.notifications import create_notification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reminder:
    user_id: str
    related_id: str
    title: str
    message: str


def _due_phrase(due_date: datetime, now: datetime) -> str:
    days = (due_date.date() - now.date()).days
    if days <= 0:
        return "today"
    if days == 1:
        return "tomorrow"
    return f"in {days} days"


def _within(due_date: Optional[datetime], now: datetime, days: int) -> bool:
    if due_date is None:
        return False
    return now <= due_date <= now + timedelta(days=days)


class _SettingsCache:
    def __init__(self, store: DocumentStore):
        self.store = store
        self._cache: dict[str, NotificationSettings] = {}

    def get(self, uid: str) -> NotificationSettings:
        if uid not in self._cache:
            self._cache[uid] = settings_from_document(
                self.store.get(NOTIFICATION_SETTINGS_COLLECTION, uid)
            )
        return self._cache[uid]


def due_reminders(
    project: Project, settings: _SettingsCache, now: datetime
) -> Iterator[Reminder]:
    if project.is_completed:
        return
    leader_id = project.team_leader.uid if project.team_leader else project.owner_id

    for task in project.tasks:
        if task.is_completed:
            continue
        recipient = task.assignee.uid if task.assignee else leader_id
        if not recipient:
            continue
        preferences = settings.get(recipient)
        if not preferences.task_reminders:
            continue
        if _within(task.due_date, now, preferences.task_deadline_reminder_days):
            yield Reminder(
                user_id=recipient,
                related_id=task.id,
                title="Task Deadline Approaching",
                message=f"'{task.title}' in '{project.title}' is due "
                f"{_due_phrase(task.due_date, now)}.",
            )

    if leader_id:
        preferences = settings.get(leader_id)
        if preferences.project_updates and _within(
            project.due_date, now, preferences.project_deadline_reminder_days
        ):
            yield Reminder(
                user_id=leader_id,
                related_id=project.id,
                title="Project Deadline Approaching",
                message=f"The '{project.title}' project is due "
                f"{_due_phrase(project.due_date, now)}.",
            )


def _already_reminded(store: DocumentStore, reminder: Reminder) -> bool:
    existing = store.query(
        Query(
            NOTIFICATIONS_COLLECTION,
            filters=(
                ("userId", reminder.user_id),
                ("type", NotificationType.TASK_DEADLINE),
                ("relatedId", reminder.related_id),
            ),
            limit=1,
        )
    )
    return bool(existing)


def run_once(
    *, store: Optional[DocumentStore] = None, now: Optional[datetime] = None
) -> int:
    """
    Run one reminder scan. Returns the number of notifications created.
    """
    store = store or get_document_store()
    now = now or utc_now()
    settings = _SettingsCache(store)
    created = 0
    for doc in store.query(Query(PROJECTS_COLLECTION)):
        project = from_document(Project, doc.data, doc.id)
        for reminder in due_reminders(project, settings, now):
            if _already_reminded(store, reminder):
                continue
            create_notification(
                store,
                reminder.user_id,
                NotificationType.TASK_DEADLINE,
                reminder.title,
                reminder.message,
                related_id=reminder.related_id,
            )
            created += 1
    logger.info("Reminder scan created %d notification(s)", created)
    return created


def run_loop(interval_seconds: float = 3600.0) -> None:
    """
    Simple polling loop. Intended to be run under systemd/supervisor.
    """
    store = get_document_store()
    while True:
        try:
            run_once(store=store)
        except Exception:
            logger.exception("Reminder scan failed")
        time.sleep(interval_seconds)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_loop()
