"""
Device notification delivery.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

from firebase_admin import messaging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalNotificationRequest:
    identifier: str
    title: str
    body: str
    category: str


class NotificationDispatcher(Protocol):
    """Push/local notification service used by the coordinator."""

    def request_permission(self) -> bool:
        ...

    def schedule(self, request: LocalNotificationRequest) -> None:
        ...


@dataclass
class RecordingDispatcher:
    """Test double that records scheduled notifications."""

    granted: bool = True
    scheduled: list[LocalNotificationRequest] = field(default_factory=list)
    permission_requests: int = 0

    def request_permission(self) -> bool:
        self.permission_requests += 1
        return self.granted

    def schedule(self, request: LocalNotificationRequest) -> None:
        if not self.granted:
            return
        self.scheduled.append(request)


def build_message(request: LocalNotificationRequest, token: str) -> messaging.Message:
    return messaging.Message(
        token=token,
        notification=messaging.Notification(title=request.title, body=request.body),
        data={"identifier": request.identifier, "category": request.category},
        apns=messaging.APNSConfig(
            payload=messaging.APNSPayload(aps=messaging.Aps(category=request.category))
        ),
    )


@dataclass
class FcmDispatcher:
    """
    Delivers notifications to this device through Firebase Cloud Messaging.

    Permission is considered granted once the device has a registration token.
    """

    device_token: Optional[str] = None

    def request_permission(self) -> bool:
        return bool(self.device_token)

    def schedule(self, request: LocalNotificationRequest) -> None:
        if not self.device_token:
            logger.info("No device token; dropping notification %s", request.identifier)
            return
        message_id = messaging.send(build_message(request, self.device_token))
        logger.debug("Sent notification %s as %s", request.identifier, message_id)
