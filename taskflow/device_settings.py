"""
Per-user notification preferences.

Settings live in a local JSON file and are mirrored to
`notification_settings/{uid}`. When both exist the remote document wins, so a
user's choices follow them across devices.
"""

from __future__ import annotations

import json
import logging
from dataclasses import fields, replace
from pathlib import Path
from typing import Optional

from shared.api import NotificationSettings, from_document, to_document
from shared.firebase_constants import NOTIFICATION_SETTINGS_COLLECTION
from taskflow.db import DocumentStore

logger = logging.getLogger(__name__)

_FIELD_NAMES = {f.name for f in fields(NotificationSettings)}


def settings_from_document(data: Optional[dict]) -> NotificationSettings:
    """Unknown keys are ignored and missing ones take their defaults."""
    return from_document(NotificationSettings, data or {}).clamped()


class DeviceSettingsStore:
    def __init__(self, path: str | Path | None, store: DocumentStore):
        self.path = Path(path) if path else None
        self.store = store
        self.settings = NotificationSettings()

    def _read_local(self) -> Optional[dict]:
        if self.path is None or not self.path.exists():
            return None
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable settings file %s", self.path)
            return None
        return data if isinstance(data, dict) else None

    def _write_local(self, settings: NotificationSettings) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as f:
            json.dump(to_document(settings), f, indent=2, sort_keys=True)

    def load(self, uid: str | None = None) -> NotificationSettings:
        data = self._read_local()
        if uid:
            remote = self.store.get(NOTIFICATION_SETTINGS_COLLECTION, uid)
            if remote is not None:
                data = remote
        self.settings = settings_from_document(data)
        self._write_local(self.settings)
        return self.settings

    def save(
        self, settings: NotificationSettings, uid: str | None = None
    ) -> NotificationSettings:
        self.settings = settings.clamped()
        self._write_local(self.settings)
        if uid:
            self.store.set(
                NOTIFICATION_SETTINGS_COLLECTION,
                uid,
                to_document(self.settings),
                merge=True,
            )
        return self.settings

    def update(self, uid: str | None = None, **changes) -> NotificationSettings:
        unknown = set(changes) - _FIELD_NAMES
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        return self.save(replace(self.settings, **changes), uid)

    def reset(self) -> None:
        self.settings = NotificationSettings()
