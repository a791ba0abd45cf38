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

# Cloud functions for TaskFlow - push delivery and invitation callables.
#
# This file containing Python cloud functions must be named main.py.
# See https://cloud.google.com/run/docs/write-functions#python for more info.

# Standard library imports
from typing import Optional

# Third-party library imports
from firebase_admin import initialize_app, firestore, messaging
from firebase_functions import https_fn, logger, options
from firebase_functions.firestore_fn import (
    on_document_created,
    Event,
    DocumentSnapshot,
)

# Local application imports
from shared.api import AppNotification, from_document, to_document
from shared.constants import MAX_EMAIL_LENGTH
from shared.firebase_constants import (
    NOTIFICATIONS_COLLECTION,
    NOTIFICATION_SETTINGS_COLLECTION,
    USERS_COLLECTION,
)
from shared.json_utils import to_json_safe
from taskflow.auth import AuthUser
from taskflow.db import DocumentStore
from taskflow.device_settings import settings_from_document
from taskflow.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    TaskFlowError,
)
from taskflow.firestore import FirestoreDocumentStore
from taskflow.notifications import NotificationCoordinator
from taskflow.push import LocalNotificationRequest, build_message

initialize_app()

_ERROR_CODES = {
    NotFoundError: https_fn.FunctionsErrorCode.NOT_FOUND,
    ConflictError: https_fn.FunctionsErrorCode.ALREADY_EXISTS,
    AuthorizationError: https_fn.FunctionsErrorCode.PERMISSION_DENIED,
    AuthenticationError: https_fn.FunctionsErrorCode.UNAUTHENTICATED,
    InvalidArgumentError: https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
}


def get_store() -> DocumentStore:
    return FirestoreDocumentStore(firestore.client())


def _to_https_error(
    error: TaskFlowError,
    conflict_code: https_fn.FunctionsErrorCode = https_fn.FunctionsErrorCode.ALREADY_EXISTS,
) -> https_fn.HttpsError:
    if isinstance(error, ConflictError):
        return https_fn.HttpsError(conflict_code, error.message)
    for error_type, code in _ERROR_CODES.items():
        if isinstance(error, error_type):
            return https_fn.HttpsError(code, error.message)
    return https_fn.HttpsError(https_fn.FunctionsErrorCode.INTERNAL, error.message)


def _caller(req: https_fn.CallableRequest) -> AuthUser:
    if req.auth is None:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.UNAUTHENTICATED,
            "You must be signed in.",
        )
    token = req.auth.token or {}
    return AuthUser(
        uid=req.auth.uid,
        email=token.get("email", ""),
        display_name=token.get("name"),
    )


def _push_notification(
    store: DocumentStore, data: dict, notification_id: str
) -> Optional[str]:
    """
    Sends a notification record to its recipient's device.

    Returns the FCM message id, or None when nothing was sent.
    """
    notification = from_document(AppNotification, data, notification_id)
    settings = settings_from_document(
        store.get(NOTIFICATION_SETTINGS_COLLECTION, notification.user_id)
    )
    if not settings.allows(notification.type):
        logger.info(
            f"Settings of {notification.user_id} suppress {notification.type.value}"
        )
        return None

    profile = store.get(USERS_COLLECTION, notification.user_id) or {}
    token = profile.get("fcmToken")
    if not token:
        logger.info(f"No FCM token registered for {notification.user_id}")
        return None

    request = LocalNotificationRequest(
        identifier=notification.id,
        title=notification.title,
        body=notification.message,
        category=notification.type.value,
    )
    try:
        return messaging.send(build_message(request, token))
    except messaging.UnregisteredError:
        logger.warn(f"Dropping stale FCM token of {notification.user_id}")
        store.update(USERS_COLLECTION, notification.user_id, {"fcmToken": None})
        return None


@on_document_created(
    memory=options.MemoryOption.MB_256,
    document=NOTIFICATIONS_COLLECTION + "/{notificationId}",
)
def on_notification_created(event: Event[DocumentSnapshot]) -> None:
    """
    Pushes each newly created notification record to the recipient's device.
    """
    if event.data is None:
        return
    notification_id = event.params["notificationId"]
    message_id = _push_notification(
        get_store(), event.data.to_dict() or {}, notification_id
    )
    if message_id:
        logger.info(f"Sent notification {notification_id} as {message_id}")


def _send_invitation(store: DocumentStore, caller: AuthUser, data: dict) -> dict:
    receiver_email = (data.get("receiverEmail") or "").strip()
    project_id = data.get("projectId")
    project_title = data.get("projectTitle") or ""

    if not receiver_email or not project_id:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
            "Must specify receiverEmail and projectId.",
        )
    if len(receiver_email) > MAX_EMAIL_LENGTH:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
            "Email exceeds max length.",
        )

    coordinator = NotificationCoordinator(store, current_user=lambda: caller)
    try:
        invitation = coordinator.send_invitation(
            receiver_email, project_id, project_title
        )
    except TaskFlowError as e:
        raise _to_https_error(e) from e
    return to_json_safe(to_document(invitation))


def _respond_to_invitation(store: DocumentStore, caller: AuthUser, data: dict) -> dict:
    invitation_id = data.get("invitationId")
    accept = data.get("accept")
    if not invitation_id or not isinstance(accept, bool):
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
            "Must specify invitationId and a boolean accept.",
        )

    coordinator = NotificationCoordinator(store, current_user=lambda: caller)
    try:
        invitation = coordinator.find_invitation(invitation_id)
        coordinator.respond_to_invitation(invitation, accept)
    except TaskFlowError as e:
        raise _to_https_error(
            e, conflict_code=https_fn.FunctionsErrorCode.FAILED_PRECONDITION
        ) from e
    return {"status": "accepted" if accept else "rejected"}


@https_fn.on_call(memory=options.MemoryOption.MB_256)
def send_project_invitation(req: https_fn.CallableRequest) -> dict:
    """
    Invites the user registered under `receiverEmail` to a project.

    Args:
        req (https_fn.CallableRequest): The request, containing receiverEmail,
            projectId and projectTitle.

    Returns:
        The created invitation document.
    """
    caller = _caller(req)
    return _send_invitation(get_store(), caller, req.data or {})


@https_fn.on_call(memory=options.MemoryOption.MB_256)
def respond_to_project_invitation(req: https_fn.CallableRequest) -> dict:
    """
    Accepts or rejects an invitation addressed to the caller.

    Args:
        req (https_fn.CallableRequest): The request, containing invitationId
            and accept.
    """
    caller = _caller(req)
    return _respond_to_invitation(get_store(), caller, req.data or {})
