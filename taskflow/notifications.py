"""
Invitation and notification coordinator.

Owns the signed-in user's notification feed and pending invitations, and the
operations that change them: sending and answering project invitations,
read-state flips and deletion. Notification records for task and team events
are created through the same `notify` helper so every feature fans out the
same way.

Store listeners only publish snapshot events onto the event channel; the
owning thread applies them with `handle_event` (see `AppSession`).
"""

from __future__ import annotations

import functools
import logging
from dataclasses import replace
from typing import Callable, Optional

from shared.api import (
    AppNotification,
    Invitation,
    NotificationSettings,
    UserProfile,
    from_document,
    to_document,
    utc_now,
)
from shared.constants import NOTIFICATIONS_PAGE_SIZE
from shared.firebase_constants import (
    INVITATIONS_COLLECTION,
    NOTIFICATIONS_COLLECTION,
    PROJECTS_COLLECTION,
    USERS_COLLECTION,
)
from shared.types import InvitationStatus, NotificationType
from taskflow.auth import AuthUser, load_user_profile, normalize_email
from taskflow.channel import EventChannel, error_event, snapshot_event
from taskflow.db import DocumentStore, Query, StoredDocument, Subscription
from taskflow.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
)
from taskflow.push import LocalNotificationRequest, NotificationDispatcher

logger = logging.getLogger(__name__)

NOTIFICATIONS_EVENT = "notifications"
INVITATIONS_EVENT = "invitations"

DEFAULT_USER_NAME = "User"

CurrentUserProvider = Callable[[], Optional[AuthUser]]
SettingsProvider = Callable[[], NotificationSettings]


def create_notification(
    store: DocumentStore,
    user_id: str,
    notification_type: NotificationType,
    title: str,
    message: str,
    related_id: str | None = None,
) -> AppNotification:
    """Writes a new unread notification record for `user_id`."""
    notification = AppNotification(
        user_id=user_id,
        type=notification_type,
        title=title,
        message=message,
        related_id=related_id,
    )
    store.set(NOTIFICATIONS_COLLECTION, notification.id, to_document(notification))
    logger.info(
        "Created %s notification %s for %s",
        notification_type.value,
        notification.id,
        user_id,
    )
    return notification


def pending_invitation_query(project_id: str, receiver_id: str) -> Query:
    return Query(
        INVITATIONS_COLLECTION,
        filters=(
            ("projectId", project_id),
            ("receiverId", receiver_id),
            ("status", InvitationStatus.PENDING),
        ),
    )


def _reports_errors(method):
    """Stores the message of any error in `error_message` and re-raises it."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        self.error_message = None
        try:
            return method(self, *args, **kwargs)
        except Exception as e:
            self.error_message = getattr(e, "message", None) or str(e)
            raise

    return wrapper


class NotificationCoordinator:
    def __init__(
        self,
        store: DocumentStore,
        current_user: CurrentUserProvider,
        dispatcher: NotificationDispatcher | None = None,
        settings: SettingsProvider | None = None,
        channel: EventChannel | None = None,
        page_size: int = NOTIFICATIONS_PAGE_SIZE,
    ):
        self.store = store
        self.current_user = current_user
        self.dispatcher = dispatcher
        self.settings = settings or NotificationSettings
        self.channel = channel
        self.page_size = page_size

        self.notifications: list[AppNotification] = []
        self.pending_invitations: list[Invitation] = []
        self.unread_count = 0
        self.is_loading = False
        self.error_message: Optional[str] = None
        self.permission_granted = False

        self._subscriptions: list[Subscription] = []
        self._listening_uid: Optional[str] = None
        # None until the first notification snapshot arrives.
        self._seen_notification_ids: Optional[set[str]] = None

    def _require_user(self) -> AuthUser:
        user = self.current_user()
        if user is None:
            raise AuthenticationError("User is not signed in.")
        return user

    # Live subscriptions

    def setup_listeners(self) -> None:
        user = self._require_user()
        self.remove_listeners()
        uid = user.uid
        self._listening_uid = uid
        self._seen_notification_ids = None

        if self.dispatcher is not None:
            self.permission_granted = self.dispatcher.request_permission()

        notifications_query = Query(
            NOTIFICATIONS_COLLECTION,
            filters=(("userId", uid),),
            order_by="createdAt",
            descending=True,
            limit=self.page_size,
        )
        invitations_query = Query(
            INVITATIONS_COLLECTION,
            filters=(("receiverId", uid), ("status", InvitationStatus.PENDING)),
            order_by="createdAt",
            descending=True,
        )
        for kind, query in (
            (NOTIFICATIONS_EVENT, notifications_query),
            (INVITATIONS_EVENT, invitations_query),
        ):
            self._subscriptions.append(
                self.store.listen(
                    query,
                    functools.partial(self._on_snapshot, kind, uid),
                    functools.partial(self._on_listener_error, kind, uid),
                )
            )
        logger.info("Notification listeners installed for %s", uid)

    def remove_listeners(self) -> None:
        for subscription in self._subscriptions:
            subscription.remove()
        self._subscriptions.clear()
        self._listening_uid = None
        self._seen_notification_ids = None

    def clear(self) -> None:
        """Drops all observable state, e.g. after sign-out."""
        self.remove_listeners()
        self.notifications = []
        self.pending_invitations = []
        self.unread_count = 0
        self.is_loading = False
        self.error_message = None
        self.permission_granted = False

    @property
    def is_listening(self) -> bool:
        return bool(self._subscriptions)

    def _publish(self, event: dict) -> None:
        if self.channel is None:
            self.handle_event(event)
        else:
            self.channel.publish(event)

    def _on_snapshot(self, kind: str, uid: str, documents: list[StoredDocument]) -> None:
        self._publish(snapshot_event(kind, uid, documents))

    def _on_listener_error(self, kind: str, uid: str, error: Exception) -> None:
        logger.warning("%s listener for %s failed: %s", kind, uid, error)
        self._publish(error_event(kind, uid, error))

    def handle_event(self, event: dict) -> bool:
        """
        Applies a snapshot event on the owning thread.

        Returns False when the event is not for this coordinator or belongs to
        a user other than the one currently listened for.
        """
        kind = event.get("kind")
        if kind not in (NOTIFICATIONS_EVENT, INVITATIONS_EVENT):
            return False
        if self._listening_uid is None or event.get("user_id") != self._listening_uid:
            logger.debug("Dropping stale %s event for %s", kind, event.get("user_id"))
            return False
        if "error" in event:
            self.error_message = event["error"]
            return True
        documents = [
            StoredDocument(id=doc["id"], data=doc["data"])
            for doc in event.get("documents", [])
        ]
        if kind == NOTIFICATIONS_EVENT:
            self._apply_notifications(documents)
        else:
            self._apply_invitations(documents)
        return True

    def _apply_notifications(self, documents: list[StoredDocument]) -> None:
        notifications = [
            from_document(AppNotification, doc.data, doc.id) for doc in documents
        ]
        notifications.sort(key=lambda n: n.created_at, reverse=True)
        self.notifications = notifications
        self._recount_unread()

        ids = {n.id for n in notifications}
        if self._seen_notification_ids is None:
            # Records that existed before sign-in are not announced.
            self._seen_notification_ids = ids
            return
        fresh = [
            n
            for n in notifications
            if n.id not in self._seen_notification_ids and not n.is_read
        ]
        self._seen_notification_ids |= ids
        for notification in reversed(fresh):
            self._dispatch_local(notification)

    def _apply_invitations(self, documents: list[StoredDocument]) -> None:
        invitations = [from_document(Invitation, doc.data, doc.id) for doc in documents]
        invitations = [i for i in invitations if i.status == InvitationStatus.PENDING]
        invitations.sort(key=lambda i: i.created_at, reverse=True)
        self.pending_invitations = invitations

    def _recount_unread(self) -> None:
        self.unread_count = sum(1 for n in self.notifications if not n.is_read)

    def _dispatch_local(self, notification: AppNotification) -> None:
        if self.dispatcher is None or not self.permission_granted:
            return
        if not self.settings().allows(notification.type):
            logger.debug("Settings suppress %s notification", notification.type.value)
            return
        try:
            self.dispatcher.schedule(
                LocalNotificationRequest(
                    identifier=notification.id,
                    title=notification.title,
                    body=notification.message,
                    category=notification.type.value,
                )
            )
        except Exception:
            logger.exception("Failed to schedule notification %s", notification.id)

    # Operations

    def notify(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        related_id: str | None = None,
    ) -> AppNotification:
        return create_notification(
            self.store, user_id, notification_type, title, message, related_id
        )

    @_reports_errors
    def send_invitation(
        self, receiver_email: str, project_id: str, project_title: str
    ) -> Invitation:
        user = self._require_user()
        email = normalize_email(receiver_email)
        if not email:
            raise InvalidArgumentError("Please enter an email address.")

        self.is_loading = True
        try:
            matches = self.store.query(
                Query(USERS_COLLECTION, filters=(("email", email),), limit=1)
            )
            if not matches:
                raise NotFoundError("No user is registered with this email address.")
            receiver = from_document(UserProfile, matches[0].data, matches[0].id)

            pending = pending_invitation_query(project_id, receiver.uid)
            if self.store.query(replace(pending, limit=1)):
                raise ConflictError("This user has already been invited.")

            project = self.store.get(PROJECTS_COLLECTION, project_id)
            if project is None:
                raise NotFoundError("Project not found.")
            if receiver.uid in (project.get("teamMemberIds") or []):
                raise ConflictError("This user is already a member of the project.")

            sender_name = user.display_name or DEFAULT_USER_NAME
            invitation = Invitation(
                project_id=project_id,
                project_title=project_title,
                sender_id=user.uid,
                sender_name=sender_name,
                sender_email=user.email,
                receiver_id=receiver.uid,
                receiver_email=email,
            )
            # Another sender may have passed the checks above in the meantime.
            if not self.store.insert_if_absent(
                INVITATIONS_COLLECTION,
                invitation.id,
                to_document(invitation),
                conflict=pending,
            ):
                raise ConflictError("This user has already been invited.")

            self.notify(
                receiver.uid,
                NotificationType.PROJECT_INVITATION,
                "Project Invitation",
                f"{sender_name} invited you to the '{project_title}' project.",
                related_id=invitation.id,
            )
            logger.info(
                "Invitation %s sent to %s for project %s",
                invitation.id,
                receiver.uid,
                project_id,
            )
            return invitation
        finally:
            self.is_loading = False

    @_reports_errors
    def respond_to_invitation(self, invitation: Invitation, accept: bool) -> None:
        user = self._require_user()
        if invitation.receiver_id != user.uid:
            raise AuthorizationError(
                "You are not authorized to respond to this invitation."
            )

        self.is_loading = True
        try:
            status = InvitationStatus.ACCEPTED if accept else InvitationStatus.REJECTED
            answered = self.store.update_if(
                INVITATIONS_COLLECTION,
                invitation.id,
                expected={"status": InvitationStatus.PENDING},
                updates={"status": status, "respondedAt": utc_now()},
            )
            if not answered:
                if self.store.get(INVITATIONS_COLLECTION, invitation.id) is None:
                    raise NotFoundError("Invitation not found.")
                raise ConflictError("This invitation has already been answered.")

            name = user.display_name or DEFAULT_USER_NAME
            if accept:
                self._join_project(user, invitation.project_id)
                self.notify(
                    invitation.sender_id,
                    NotificationType.INVITATION_ACCEPTED,
                    "Invitation Accepted",
                    f"{name} joined the '{invitation.project_title}' project.",
                    related_id=invitation.project_id,
                )
                self.store.delete(INVITATIONS_COLLECTION, invitation.id)
            else:
                self.notify(
                    invitation.sender_id,
                    NotificationType.INVITATION_REJECTED,
                    "Invitation Declined",
                    f"{name} declined the invitation to join the "
                    f"'{invitation.project_title}' project.",
                    related_id=invitation.project_id,
                )
            self.pending_invitations = [
                i for i in self.pending_invitations if i.id != invitation.id
            ]
            logger.info("Invitation %s %s by %s", invitation.id, status.value, user.uid)
        finally:
            self.is_loading = False

    def _join_project(self, user: AuthUser, project_id: str) -> None:
        self.store.array_union(PROJECTS_COLLECTION, project_id, "teamMemberIds", [user.uid])
        profile = load_user_profile(self.store, user)
        self.store.append_unique(
            PROJECTS_COLLECTION,
            project_id,
            "teamMembers",
            to_document(profile.to_member_snapshot()),
            key="uid",
        )

    @_reports_errors
    def mark_as_read(self, notification: AppNotification) -> None:
        self.store.update(NOTIFICATIONS_COLLECTION, notification.id, {"isRead": True})
        self.notifications = [
            replace(n, is_read=True) if n.id == notification.id else n
            for n in self.notifications
        ]
        self._recount_unread()

    @_reports_errors
    def mark_all_as_read(self) -> int:
        user = self._require_user()
        unread = self.store.query(
            Query(
                NOTIFICATIONS_COLLECTION,
                filters=(("userId", user.uid), ("isRead", False)),
            )
        )
        count = self.store.update_many(
            NOTIFICATIONS_COLLECTION, [doc.id for doc in unread], {"isRead": True}
        )
        self.notifications = [replace(n, is_read=True) for n in self.notifications]
        self._recount_unread()
        return count

    @_reports_errors
    def delete_notification(self, notification: AppNotification) -> None:
        self.store.delete(NOTIFICATIONS_COLLECTION, notification.id)
        self.notifications = [n for n in self.notifications if n.id != notification.id]
        self._recount_unread()

    @_reports_errors
    def get_invitations_for_project(self, project_id: str) -> list[Invitation]:
        documents = self.store.query(
            Query(
                INVITATIONS_COLLECTION,
                filters=(("projectId", project_id),),
                order_by="createdAt",
                descending=True,
            )
        )
        return [from_document(Invitation, doc.data, doc.id) for doc in documents]

    def find_notification(self, notification_id: str) -> AppNotification:
        for notification in self.notifications:
            if notification.id == notification_id:
                return notification
        user = self._require_user()
        data = self.store.get(NOTIFICATIONS_COLLECTION, notification_id)
        if data is None or data.get("userId") != user.uid:
            raise NotFoundError("Notification not found.")
        return from_document(AppNotification, data, notification_id)

    def find_invitation(self, invitation_id: str) -> Invitation:
        for invitation in self.pending_invitations:
            if invitation.id == invitation_id:
                return invitation
        data = self.store.get(INVITATIONS_COLLECTION, invitation_id)
        if data is None:
            raise NotFoundError("Invitation not found.")
        return from_document(Invitation, data, invitation_id)
