import tempfile
import threading
import unittest
from concurrent.futures import ThreadPoolExecutor

import main_testing_utils
from shared.api import AppNotification, NotificationSettings, from_document
from shared.firebase_constants import (
    INVITATIONS_COLLECTION,
    NOTIFICATIONS_COLLECTION,
    PROJECTS_COLLECTION,
)
from shared.types import InvitationStatus, NotificationType
from taskflow.channel import InMemoryEventChannel, snapshot_event
from taskflow.db import InMemoryDocumentStore, Query, SqlDocumentStore
from taskflow.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
)
from taskflow.notifications import (
    NOTIFICATIONS_EVENT,
    NotificationCoordinator,
    create_notification,
)
from taskflow.push import RecordingDispatcher


def _notifications_for(store, uid):
    return [
        from_document(AppNotification, doc.data, doc.id)
        for doc in store.query(
            Query(NOTIFICATIONS_COLLECTION, filters=(("userId", uid),))
        )
    ]


class _RacingStore(InMemoryDocumentStore):
    """Hides pending invitations from the first lookup, as a concurrent sender would see."""

    def __init__(self):
        super().__init__()
        self.hide_next_invitation_lookup = False

    def query(self, query):
        if query.collection == INVITATIONS_COLLECTION and self.hide_next_invitation_lookup:
            self.hide_next_invitation_lookup = False
            return []
        return super().query(query)


class _FlakyDispatcher(RecordingDispatcher):
    """Fails the first schedule call, then records like `RecordingDispatcher`."""

    def __init__(self):
        super().__init__()
        self.attempts = 0

    def schedule(self, request):
        self.attempts += 1
        if self.attempts == 1:
            raise RuntimeError("notification center unavailable")
        super().schedule(request)


class _DeniedDispatcher(RecordingDispatcher):
    """Refuses permission but would still record anything scheduled."""

    def request_permission(self):
        self.permission_requests += 1
        return False


class NotificationCoordinatorTestBase(unittest.TestCase):
    store_class = InMemoryDocumentStore

    def make_store(self):
        return self.store_class()

    def setUp(self):
        self.store = self.make_store()
        self.channel = InMemoryEventChannel()
        self.dispatcher = RecordingDispatcher()
        self.settings = NotificationSettings()
        self.sender = main_testing_utils.create_mock_user(
            self.store, "sender", "Sender@Example.com", "Sam Sender"
        )
        self.receiver = main_testing_utils.create_mock_user(
            self.store, "receiver", "receiver@example.com", "Riley Receiver"
        )
        self.outsider = main_testing_utils.create_mock_user(
            self.store, "outsider", "outsider@example.com", "Olly Outsider"
        )
        self.project = main_testing_utils.create_mock_project(
            self.store, self.sender, title="Launch"
        )
        self.current = self.sender
        self.coordinator = NotificationCoordinator(
            self.store,
            current_user=lambda: self.current,
            dispatcher=self.dispatcher,
            settings=lambda: self.settings,
            channel=self.channel,
        )

    def drain(self):
        while True:
            event = self.channel.receive()
            if event is None:
                return
            self.coordinator.handle_event(event)

    def invite_receiver(self):
        self.current = self.sender
        return self.coordinator.send_invitation(
            "receiver@example.com", self.project.id, self.project.title
        )

    def project_data(self):
        return self.store.get(PROJECTS_COLLECTION, self.project.id)


class SendInvitationTests(NotificationCoordinatorTestBase):
    def test_creates_pending_invitation_and_notification(self):
        invitation = self.invite_receiver()

        stored = self.store.get(INVITATIONS_COLLECTION, invitation.id)
        self.assertEqual(stored["status"], InvitationStatus.PENDING)
        self.assertEqual(stored["receiverId"], "receiver")
        self.assertEqual(stored["senderName"], "Sam Sender")
        self.assertEqual(stored["projectTitle"], "Launch")

        notifications = _notifications_for(self.store, "receiver")
        self.assertEqual(len(notifications), 1)
        self.assertEqual(notifications[0].type, NotificationType.PROJECT_INVITATION)
        self.assertEqual(notifications[0].related_id, invitation.id)
        self.assertFalse(notifications[0].is_read)
        self.assertIn("'Launch'", notifications[0].message)
        self.assertFalse(self.coordinator.is_loading)

    def test_receiver_email_is_trimmed_and_lower_cased(self):
        invitation = self.coordinator.send_invitation(
            "  RECEIVER@Example.COM ", self.project.id, self.project.title
        )
        self.assertEqual(invitation.receiver_email, "receiver@example.com")
        self.assertEqual(invitation.receiver_id, "receiver")

    def test_unknown_receiver_is_not_found(self):
        with self.assertRaises(NotFoundError):
            self.coordinator.send_invitation(
                "nobody@example.com", self.project.id, self.project.title
            )
        self.assertEqual(self.store.query(Query(INVITATIONS_COLLECTION)), [])
        self.assertIsNotNone(self.coordinator.error_message)
        self.assertFalse(self.coordinator.is_loading)

    def test_duplicate_pending_invitation_is_a_conflict(self):
        self.invite_receiver()
        with self.assertRaises(ConflictError):
            self.invite_receiver()

        self.assertEqual(len(self.store.query(Query(INVITATIONS_COLLECTION))), 1)
        self.assertEqual(len(_notifications_for(self.store, "receiver")), 1)
        self.assertEqual(
            self.coordinator.error_message, "This user has already been invited."
        )

    def test_existing_member_is_a_conflict(self):
        self.store.array_union(
            PROJECTS_COLLECTION, self.project.id, "teamMemberIds", ["receiver"]
        )
        with self.assertRaises(ConflictError):
            self.invite_receiver()
        self.assertEqual(self.store.query(Query(INVITATIONS_COLLECTION)), [])

    def test_missing_project_is_not_found(self):
        with self.assertRaises(NotFoundError):
            self.coordinator.send_invitation(
                "receiver@example.com", "missing-project", "Ghost"
            )

    def test_requires_signed_in_user(self):
        self.current = None
        with self.assertRaises(AuthenticationError):
            self.coordinator.send_invitation(
                "receiver@example.com", self.project.id, self.project.title
            )


class ConcurrentSendInvitationTests(NotificationCoordinatorTestBase):
    store_class = _RacingStore

    def test_insert_rejects_invitation_that_appeared_after_checks(self):
        self.invite_receiver()
        self.store.hide_next_invitation_lookup = True

        with self.assertRaises(ConflictError):
            self.invite_receiver()
        self.assertEqual(len(self.store.query(Query(INVITATIONS_COLLECTION))), 1)
        self.assertEqual(len(_notifications_for(self.store, "receiver")), 1)


class RespondToInvitationTests(NotificationCoordinatorTestBase):
    def test_accept_joins_project_and_deletes_invitation(self):
        invitation = self.invite_receiver()
        self.current = self.receiver

        self.coordinator.respond_to_invitation(invitation, accept=True)

        self.assertIsNone(self.store.get(INVITATIONS_COLLECTION, invitation.id))
        project = self.project_data()
        self.assertEqual(project["teamMemberIds"].count("receiver"), 1)
        member_uids = [member["uid"] for member in project["teamMembers"]]
        self.assertEqual(member_uids.count("receiver"), 1)

        sender_notifications = _notifications_for(self.store, "sender")
        self.assertEqual(len(sender_notifications), 1)
        self.assertEqual(
            sender_notifications[0].type, NotificationType.INVITATION_ACCEPTED
        )
        self.assertEqual(sender_notifications[0].related_id, self.project.id)

    def test_accepting_twice_adds_member_once(self):
        invitation = self.invite_receiver()
        self.current = self.receiver

        self.coordinator.respond_to_invitation(invitation, accept=True)
        with self.assertRaises(NotFoundError):
            self.coordinator.respond_to_invitation(invitation, accept=True)

        self.assertEqual(self.project_data()["teamMemberIds"].count("receiver"), 1)
        self.assertEqual(len(_notifications_for(self.store, "sender")), 1)

    def test_concurrent_accepts_add_member_once(self):
        invitation = self.invite_receiver()
        self.current = self.receiver
        barrier = threading.Barrier(2)

        def accept():
            coordinator = NotificationCoordinator(
                self.store, current_user=lambda: self.receiver
            )
            barrier.wait()
            try:
                coordinator.respond_to_invitation(invitation, accept=True)
                return True
            except (ConflictError, NotFoundError):
                return False

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(lambda _: accept(), range(2)))

        self.assertEqual(results.count(True), 1)
        project = self.project_data()
        self.assertEqual(project["teamMemberIds"].count("receiver"), 1)
        self.assertEqual(
            [m["uid"] for m in project["teamMembers"]].count("receiver"), 1
        )

    def test_reject_retains_record_and_leaves_team_unchanged(self):
        invitation = self.invite_receiver()
        members_before = self.project_data()["teamMemberIds"]
        self.current = self.receiver

        self.coordinator.respond_to_invitation(invitation, accept=False)

        stored = self.store.get(INVITATIONS_COLLECTION, invitation.id)
        self.assertEqual(stored["status"], InvitationStatus.REJECTED)
        self.assertIsNotNone(stored["respondedAt"])
        self.assertEqual(self.project_data()["teamMemberIds"], members_before)
        sender_notifications = _notifications_for(self.store, "sender")
        self.assertEqual(
            [n.type for n in sender_notifications],
            [NotificationType.INVITATION_REJECTED],
        )

    def test_rejected_invitation_cannot_be_accepted(self):
        invitation = self.invite_receiver()
        self.current = self.receiver
        self.coordinator.respond_to_invitation(invitation, accept=False)

        with self.assertRaises(ConflictError):
            self.coordinator.respond_to_invitation(invitation, accept=True)
        stored = self.store.get(INVITATIONS_COLLECTION, invitation.id)
        self.assertEqual(stored["status"], InvitationStatus.REJECTED)
        self.assertNotIn("receiver", self.project_data()["teamMemberIds"])

    def test_only_receiver_may_respond(self):
        invitation = self.invite_receiver()
        self.current = self.outsider

        with self.assertRaises(AuthorizationError):
            self.coordinator.respond_to_invitation(invitation, accept=True)

        stored = self.store.get(INVITATIONS_COLLECTION, invitation.id)
        self.assertEqual(stored["status"], InvitationStatus.PENDING)
        self.assertNotIn("outsider", self.project_data()["teamMemberIds"])
        self.assertEqual(_notifications_for(self.store, "sender"), [])
        self.assertIsNotNone(self.coordinator.error_message)

    def test_get_invitations_for_project(self):
        invitation = self.invite_receiver()
        invitations = self.coordinator.get_invitations_for_project(self.project.id)
        self.assertEqual([i.id for i in invitations], [invitation.id])
        self.assertEqual(self.coordinator.get_invitations_for_project("other"), [])


class ReadStateTests(NotificationCoordinatorTestBase):
    def setUp(self):
        super().setUp()
        self.current = self.receiver
        self.first = create_notification(
            self.store, "receiver", NotificationType.TASK_ASSIGNED, "One", "first"
        )
        self.second = create_notification(
            self.store, "receiver", NotificationType.TASK_COMPLETED, "Two", "second"
        )
        self.already_read = create_notification(
            self.store, "receiver", NotificationType.TEAM_ACTIVITY, "Three", "third"
        )
        self.store.update(NOTIFICATIONS_COLLECTION, self.already_read.id, {"isRead": True})
        self.foreign = create_notification(
            self.store, "sender", NotificationType.TASK_ASSIGNED, "Other", "other"
        )

    def test_mark_all_as_read_flips_only_unread_records_of_user(self):
        read_before = self.store.get(NOTIFICATIONS_COLLECTION, self.already_read.id)

        updated = self.coordinator.mark_all_as_read()

        self.assertEqual(updated, 2)
        for notification in _notifications_for(self.store, "receiver"):
            self.assertTrue(notification.is_read)
        self.assertEqual(
            self.store.get(NOTIFICATIONS_COLLECTION, self.already_read.id), read_before
        )
        self.assertFalse(
            self.store.get(NOTIFICATIONS_COLLECTION, self.foreign.id)["isRead"]
        )

    def test_mark_all_as_read_with_nothing_unread(self):
        self.coordinator.mark_all_as_read()
        self.assertEqual(self.coordinator.mark_all_as_read(), 0)

    def test_mark_as_read_and_delete(self):
        self.coordinator.setup_listeners()
        self.drain()
        self.assertEqual(self.coordinator.unread_count, 2)

        self.coordinator.mark_as_read(self.first)
        self.drain()
        self.assertTrue(self.store.get(NOTIFICATIONS_COLLECTION, self.first.id)["isRead"])
        self.assertEqual(self.coordinator.unread_count, 1)

        self.coordinator.delete_notification(self.second)
        self.drain()
        self.assertIsNone(self.store.get(NOTIFICATIONS_COLLECTION, self.second.id))
        self.assertEqual(self.coordinator.unread_count, 0)
        self.assertEqual(
            {n.id for n in self.coordinator.notifications},
            {self.first.id, self.already_read.id},
        )

    def test_find_notification_hides_other_users_records(self):
        with self.assertRaises(NotFoundError):
            self.coordinator.find_notification(self.foreign.id)
        self.assertEqual(self.coordinator.find_notification(self.first.id).id, self.first.id)


class ListenerTests(NotificationCoordinatorTestBase):
    def test_snapshots_populate_observable_state(self):
        self.invite_receiver()
        self.current = self.receiver

        self.coordinator.setup_listeners()
        self.assertEqual(self.coordinator.pending_invitations, [])
        self.drain()

        self.assertEqual(len(self.coordinator.pending_invitations), 1)
        self.assertEqual(self.coordinator.unread_count, 1)
        self.assertEqual(
            self.coordinator.notifications[0].type, NotificationType.PROJECT_INVITATION
        )

    def test_setup_listeners_replaces_previous_subscriptions(self):
        self.current = self.receiver
        self.coordinator.setup_listeners()
        self.coordinator.setup_listeners()
        self.assertEqual(self.store.listener_count, 2)

        self.coordinator.remove_listeners()
        self.assertEqual(self.store.listener_count, 0)
        self.assertFalse(self.coordinator.is_listening)

    def test_existing_records_do_not_trigger_local_notifications(self):
        create_notification(
            self.store, "receiver", NotificationType.TASK_ASSIGNED, "Old", "old"
        )
        self.current = self.receiver
        self.coordinator.setup_listeners()
        self.drain()

        self.assertEqual(self.dispatcher.scheduled, [])
        self.assertEqual(self.dispatcher.permission_requests, 1)

    def test_new_records_trigger_local_notification(self):
        self.current = self.receiver
        self.coordinator.setup_listeners()
        self.drain()

        fresh = create_notification(
            self.store, "receiver", NotificationType.TASK_ASSIGNED, "New task", "Do it"
        )
        self.drain()

        self.assertEqual(len(self.dispatcher.scheduled), 1)
        request = self.dispatcher.scheduled[0]
        self.assertEqual(request.identifier, fresh.id)
        self.assertEqual(request.title, "New task")
        self.assertEqual(request.body, "Do it")
        self.assertEqual(request.category, "task_assigned")

    def test_settings_suppress_local_notification(self):
        self.current = self.receiver
        self.coordinator.setup_listeners()
        self.drain()

        # Team activity is off by default.
        create_notification(
            self.store, "receiver", NotificationType.TEAM_ACTIVITY, "Comment", "Hi"
        )
        self.drain()
        self.settings = NotificationSettings(push_notifications=False)
        create_notification(
            self.store, "receiver", NotificationType.TASK_ASSIGNED, "Task", "Hi"
        )
        self.drain()

        self.assertEqual(self.dispatcher.scheduled, [])
        self.assertEqual(self.coordinator.unread_count, 2)

    def test_events_for_previous_user_are_dropped(self):
        self.current = self.receiver
        self.coordinator.setup_listeners()
        create_notification(
            self.store, "receiver", NotificationType.TASK_ASSIGNED, "Task", "Hi"
        )
        self.coordinator.remove_listeners()

        self.current = self.sender
        self.coordinator.setup_listeners()
        self.drain()

        self.assertEqual(self.coordinator.notifications, [])

    def test_listener_errors_surface_as_error_message(self):
        self.current = self.receiver
        self.coordinator.setup_listeners()
        self.drain()

        self.coordinator._on_listener_error(
            "notifications", "receiver", RuntimeError("permission denied")
        )
        self.drain()
        self.assertEqual(self.coordinator.error_message, "permission denied")



    def _deliver_unread_together(self, *titles):
        """Creates several records and hands them over in one snapshot."""
        for title in titles:
            create_notification(
                self.store, "receiver", NotificationType.TASK_ASSIGNED, title, "Do it"
            )
        documents = self.store.query(
            Query(NOTIFICATIONS_COLLECTION, filters=(("userId", "receiver"),))
        )
        self.coordinator.handle_event(
            snapshot_event(NOTIFICATIONS_EVENT, "receiver", documents)
        )
        self.drain()

    def test_failed_local_notification_does_not_block_the_rest(self):
        self.dispatcher = _FlakyDispatcher()
        self.coordinator.dispatcher = self.dispatcher
        self.current = self.receiver
        self.coordinator.setup_listeners()
        self.drain()

        with self.assertLogs("taskflow.notifications", level="ERROR"):
            self._deliver_unread_together("First", "Second")

        self.assertEqual(self.dispatcher.attempts, 2)
        self.assertEqual(len(self.dispatcher.scheduled), 1)
        self.assertEqual(self.coordinator.unread_count, 2)
        self.assertIsNone(self.coordinator.error_message)

    def test_denied_permission_schedules_nothing(self):
        self.dispatcher = _DeniedDispatcher()
        self.coordinator.dispatcher = self.dispatcher
        self.current = self.receiver
        self.coordinator.setup_listeners()
        self.drain()

        self._deliver_unread_together("First", "Second")

        self.assertFalse(self.coordinator.permission_granted)
        self.assertEqual(self.dispatcher.permission_requests, 1)
        self.assertEqual(self.dispatcher.scheduled, [])
        self.assertEqual(self.coordinator.unread_count, 2)

    def test_clear_revokes_permission(self):
        self.current = self.receiver
        self.coordinator.setup_listeners()
        self.assertTrue(self.coordinator.permission_granted)

        self.coordinator.clear()
        self.assertFalse(self.coordinator.permission_granted)


class SqlCoordinatorConcurrencyTests(NotificationCoordinatorTestBase):
    """Races two devices against one file-backed SQLite database."""

    def make_store(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        store = SqlDocumentStore(f"sqlite+pysqlite:///{tmp.name}/taskflow.db")
        self.addCleanup(store.engine.dispose)
        return store

    def _race(self, func):
        barrier = threading.Barrier(2, timeout=10)

        def run(_):
            barrier.wait()
            try:
                func()
                return True
            except (ConflictError, NotFoundError):
                return False

        with ThreadPoolExecutor(max_workers=2) as pool:
            return list(pool.map(run, range(2)))

    def test_concurrent_accepts_add_member_once(self):
        invitation = self.invite_receiver()

        def accept():
            coordinator = NotificationCoordinator(
                self.store, current_user=lambda: self.receiver
            )
            coordinator.respond_to_invitation(invitation, accept=True)

        results = self._race(accept)

        self.assertEqual(results.count(True), 1)
        project = self.project_data()
        self.assertEqual(project["teamMemberIds"].count("receiver"), 1)
        self.assertEqual(
            [m["uid"] for m in project["teamMembers"]].count("receiver"), 1
        )
        self.assertIsNone(self.store.get(INVITATIONS_COLLECTION, invitation.id))

    def test_concurrent_sends_create_one_invitation(self):
        def send():
            coordinator = NotificationCoordinator(
                self.store, current_user=lambda: self.sender
            )
            coordinator.send_invitation(
                "receiver@example.com", self.project.id, self.project.title
            )

        results = self._race(send)

        self.assertEqual(results.count(True), 1)
        pending = self.store.query(
            Query(
                INVITATIONS_COLLECTION,
                filters=(("receiverId", "receiver"), ("status", InvitationStatus.PENDING)),
            )
        )
        self.assertEqual(len(pending), 1)
        self.assertEqual(len(_notifications_for(self.store, "receiver")), 1)


class LaunchScenarioTests(NotificationCoordinatorTestBase):
    def test_invite_and_accept(self):
        invitation = self.invite_receiver()
        self.assertEqual(
            self.store.get(INVITATIONS_COLLECTION, invitation.id)["status"], "pending"
        )
        self.assertEqual(
            [n.type for n in _notifications_for(self.store, "receiver")],
            [NotificationType.PROJECT_INVITATION],
        )

        self.current = self.receiver
        self.coordinator.setup_listeners()
        self.drain()
        pending = self.coordinator.pending_invitations[0]

        self.coordinator.respond_to_invitation(pending, accept=True)
        self.drain()

        self.assertIsNone(self.store.get(INVITATIONS_COLLECTION, invitation.id))
        self.assertEqual(self.coordinator.pending_invitations, [])
        self.assertIn("receiver", self.project_data()["teamMemberIds"])
        self.assertIn(
            NotificationType.INVITATION_ACCEPTED,
            [n.type for n in _notifications_for(self.store, "sender")],
        )


if __name__ == "__main__":
    unittest.main()
