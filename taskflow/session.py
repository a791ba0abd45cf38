"""
Application session: ties the coordinator and project store to the signed-in
user.

One `AppSession` owns exactly one `NotificationCoordinator` and one
`ProjectStore`. Listeners are installed on sign-in and torn down on sign-out,
and `process_updates` applies queued snapshot events on the caller's thread.
"""

from __future__ import annotations

import logging
from typing import Optional

from shared.api import NotificationSettings
from shared.constants import NOTIFICATIONS_PAGE_SIZE
from taskflow.auth import AuthClient, AuthUser
from taskflow.channel import EventChannel
from taskflow.db import DocumentStore
from taskflow.device_settings import DeviceSettingsStore
from taskflow.errors import AuthenticationError
from taskflow.notifications import NotificationCoordinator
from taskflow.passwords import validate_new_password
from taskflow.projects import ProjectStore
from taskflow.push import NotificationDispatcher

logger = logging.getLogger(__name__)


class AppSession:
    def __init__(
        self,
        auth: AuthClient,
        store: DocumentStore,
        dispatcher: NotificationDispatcher,
        channel: EventChannel,
        device_settings: DeviceSettingsStore,
        page_size: int = NOTIFICATIONS_PAGE_SIZE,
    ):
        self.auth = auth
        self.store = store
        self.channel = channel
        self.device_settings = device_settings
        self.coordinator = NotificationCoordinator(
            store,
            current_user=lambda: self.auth.current_user,
            dispatcher=dispatcher,
            settings=lambda: self.device_settings.settings,
            channel=channel,
            page_size=page_size,
        )
        self.projects = ProjectStore(
            store, current_user=lambda: self.auth.current_user, channel=channel
        )

    @property
    def current_user(self) -> Optional[AuthUser]:
        return self.auth.current_user

    def require_user(self) -> AuthUser:
        user = self.auth.current_user
        if user is None:
            raise AuthenticationError("User is not signed in.")
        return user

    def sign_in(self, email: str, password: str) -> AuthUser:
        user = self.auth.sign_in(email, password)
        self.start()
        return user

    def sign_up(
        self, email: str, password: str, name: str, confirmation: str | None = None
    ) -> AuthUser:
        validate_new_password(password, confirmation)
        user = self.auth.sign_up(email, password, name)
        self.start()
        return user

    def sign_out(self) -> None:
        self.teardown()
        self.auth.sign_out()
        self.device_settings.reset()

    def reset_password(self, email: str) -> None:
        self.auth.reset_password(email)

    def change_password(
        self, current_password: str, new_password: str, confirmation: str | None = None
    ) -> None:
        validate_new_password(new_password, confirmation)
        self.auth.change_password(current_password, new_password)

    def start(self) -> None:
        user = self.require_user()
        self.device_settings.load(user.uid)
        self.coordinator.setup_listeners()
        self.projects.setup_listener()
        self.process_updates()
        logger.info("Session started for %s", user.uid)

    def teardown(self) -> None:
        self.coordinator.clear()
        self.projects.clear()

    def update_settings(self, **changes) -> NotificationSettings:
        user = self.require_user()
        return self.device_settings.update(user.uid, **changes)

    def process_updates(self, max_events: int | None = None) -> int:
        """Applies queued snapshot events in order; returns how many were applied."""
        applied = 0
        received = 0
        while max_events is None or received < max_events:
            event = self.channel.receive()
            if event is None:
                break
            received += 1
            if self.coordinator.handle_event(event) or self.projects.handle_event(event):
                applied += 1
        return applied
