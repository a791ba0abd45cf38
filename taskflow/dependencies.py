"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import firebase_admin

from taskflow.auth import AuthClient, FirebaseAuthClient, InMemoryAuthClient
from taskflow.channel import EventChannel, InMemoryEventChannel, RedisEventChannel
from taskflow.config import get_settings
from taskflow.db import DocumentStore, InMemoryDocumentStore, SqlDocumentStore
from taskflow.device_settings import DeviceSettingsStore
from taskflow.firestore import FirestoreDocumentStore
from taskflow.push import FcmDispatcher, NotificationDispatcher, RecordingDispatcher
from taskflow.session import AppSession

_document_store: DocumentStore | None = None
_auth_client: AuthClient | None = None
_dispatcher: NotificationDispatcher | None = None
_event_channel: EventChannel | None = None
_session: AppSession | None = None


def _ensure_firebase_app() -> None:
    settings = get_settings()
    try:
        firebase_admin.get_app()
    except ValueError:
        firebase_admin.initialize_app(
            options={"projectId": settings.firebase_project_id}
        )


def get_document_store() -> DocumentStore:
    """
    Return a singleton document store so listeners and data persist across
    requests.
    """
    global _document_store
    if _document_store is not None:
        return _document_store

    settings = get_settings()
    if settings.uses_firebase:
        _ensure_firebase_app()
        _document_store = FirestoreDocumentStore()
    elif settings.database_url and not settings.use_in_memory_backends:
        _document_store = SqlDocumentStore(settings.database_url)
    else:
        _document_store = InMemoryDocumentStore()
    return _document_store


def get_auth_client() -> AuthClient:
    global _auth_client
    if _auth_client is not None:
        return _auth_client

    settings = get_settings()
    if settings.uses_firebase and settings.firebase_web_api_key:
        _auth_client = FirebaseAuthClient(
            api_key=settings.firebase_web_api_key,
            store=get_document_store(),
        )
    else:
        _auth_client = InMemoryAuthClient(get_document_store())
    return _auth_client


def get_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is not None:
        return _dispatcher

    settings = get_settings()
    if settings.uses_firebase:
        _ensure_firebase_app()
        _dispatcher = FcmDispatcher(device_token=settings.fcm_device_token)
    else:
        _dispatcher = RecordingDispatcher()
    return _dispatcher


def get_event_channel() -> EventChannel:
    """
    Return a singleton channel carrying snapshot events to the session.
    """
    global _event_channel
    if _event_channel is not None:
        return _event_channel

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _event_channel = RedisEventChannel(
            url=settings.redis_url,
            channel_key=settings.redis_channel_key,
        )
    else:
        _event_channel = InMemoryEventChannel()
    return _event_channel


def get_session() -> AppSession:
    global _session
    if _session is not None:
        return _session

    settings = get_settings()
    store = get_document_store()
    _session = AppSession(
        auth=get_auth_client(),
        store=store,
        dispatcher=get_dispatcher(),
        channel=get_event_channel(),
        device_settings=DeviceSettingsStore(settings.settings_path, store),
        page_size=settings.notifications_page_size,
    )
    return _session


def reset_dependencies() -> None:
    """Forget every singleton (tests and settings reloads)."""
    global _document_store, _auth_client, _dispatcher, _event_channel, _session
    _document_store = None
    _auth_client = None
    _dispatcher = None
    _event_channel = None
    _session = None
