"""
Session/auth boundary: sign-in, sign-up, password reset and password change.

`FirebaseAuthClient` talks to the Firebase Authentication (Identity Toolkit)
REST API. Error codes returned by the platform (e.g. `EMAIL_EXISTS`,
`INVALID_LOGIN_CREDENTIALS`) are passed through verbatim.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol

import requests

from shared.api import UserProfile, from_document, to_document, utc_now
from shared.firebase_constants import USERS_COLLECTION
from taskflow.db import DocumentStore
from taskflow.errors import AuthenticationError, InvalidArgumentError
from taskflow.passwords import validate_new_password

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1/accounts:{method}"
REQUEST_TIMEOUT = 30  # seconds

REAUTHENTICATION_FAILED = "Current password is incorrect."


@dataclass
class AuthUser:
    uid: str
    email: str
    display_name: Optional[str] = None
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None


class AuthClient(Protocol):
    """Interface of the hosted authentication service."""

    @property
    def current_user(self) -> Optional[AuthUser]:
        ...

    def sign_in(self, email: str, password: str) -> AuthUser:
        ...

    def sign_up(self, email: str, password: str, name: str) -> AuthUser:
        ...

    def sign_out(self) -> None:
        ...

    def reset_password(self, email: str) -> None:
        ...

    def change_password(self, current_password: str, new_password: str) -> None:
        ...


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _require_email(email: str) -> str:
    email = normalize_email(email)
    if not email or "@" not in email:
        raise InvalidArgumentError("Please enter a valid email address.")
    return email


def _save_user_profile(store: DocumentStore, user: AuthUser) -> None:
    profile = UserProfile(
        uid=user.uid,
        email=user.email,
        display_name=user.display_name or "",
        created_at=utc_now(),
    )
    store.set(USERS_COLLECTION, user.uid, to_document(profile), merge=True)


@dataclass
class _Account:
    uid: str
    email: str
    password_hash: str
    display_name: str


def _hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


class InMemoryAuthClient:
    """Local account registry for development and tests."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.accounts: dict[str, _Account] = {}
        self.password_reset_requests: list[str] = []
        self._current_user: Optional[AuthUser] = None

    @property
    def current_user(self) -> Optional[AuthUser]:
        return self._current_user

    def reset(self) -> None:
        self.accounts.clear()
        self.password_reset_requests.clear()
        self._current_user = None

    def _to_user(self, account: _Account) -> AuthUser:
        return AuthUser(
            uid=account.uid,
            email=account.email,
            display_name=account.display_name,
            id_token=uuid.uuid4().hex,
        )

    def sign_in(self, email: str, password: str) -> AuthUser:
        account = self.accounts.get(normalize_email(email))
        if account is None or account.password_hash != _hash_password(password):
            raise AuthenticationError("INVALID_LOGIN_CREDENTIALS")
        self._current_user = self._to_user(account)
        return self._current_user

    def sign_up(self, email: str, password: str, name: str) -> AuthUser:
        email = _require_email(email)
        validate_new_password(password)
        if email in self.accounts:
            raise AuthenticationError("EMAIL_EXISTS")
        account = _Account(
            uid=uuid.uuid4().hex[:28],
            email=email,
            password_hash=_hash_password(password),
            display_name=name.strip(),
        )
        self.accounts[email] = account
        self._current_user = self._to_user(account)
        _save_user_profile(self.store, self._current_user)
        return self._current_user

    def sign_out(self) -> None:
        self._current_user = None

    def reset_password(self, email: str) -> None:
        email = _require_email(email)
        if email not in self.accounts:
            raise AuthenticationError("EMAIL_NOT_FOUND")
        self.password_reset_requests.append(email)

    def change_password(self, current_password: str, new_password: str) -> None:
        user = self._current_user
        if user is None:
            raise AuthenticationError("No user is signed in.")
        account = self.accounts[user.email]
        if account.password_hash != _hash_password(current_password):
            raise AuthenticationError(REAUTHENTICATION_FAILED)
        validate_new_password(new_password)
        account.password_hash = _hash_password(new_password)


class FirebaseAuthClient:
    """Firebase Authentication over the Identity Toolkit REST API."""

    def __init__(
        self,
        api_key: str,
        store: DocumentStore,
        http: requests.Session | None = None,
    ):
        if not api_key:
            raise ValueError("A Firebase web API key is required")
        self.api_key = api_key
        self.store = store
        self.http = http or requests.Session()
        self._current_user: Optional[AuthUser] = None

    @property
    def current_user(self) -> Optional[AuthUser]:
        return self._current_user

    def _call(self, method: str, payload: dict) -> dict:
        response = self.http.post(
            IDENTITY_TOOLKIT_URL.format(method=method),
            params={"key": self.api_key},
            json=payload,
            timeout=REQUEST_TIMEOUT,
        )
        if response.status_code >= 400:
            try:
                message = response.json()["error"]["message"]
            except (ValueError, KeyError, TypeError):
                message = response.text or f"HTTP {response.status_code}"
            logger.warning("Identity Toolkit %s failed: %s", method, message)
            raise AuthenticationError(message)
        return response.json()

    def _to_user(self, body: dict, fallback_email: str = "") -> AuthUser:
        return AuthUser(
            uid=body["localId"],
            email=body.get("email") or fallback_email,
            display_name=body.get("displayName") or None,
            id_token=body.get("idToken"),
            refresh_token=body.get("refreshToken"),
        )

    def sign_in(self, email: str, password: str) -> AuthUser:
        email = normalize_email(email)
        body = self._call(
            "signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        self._current_user = self._to_user(body, email)
        return self._current_user

    def sign_up(self, email: str, password: str, name: str) -> AuthUser:
        email = _require_email(email)
        validate_new_password(password)
        body = self._call(
            "signUp",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        user = self._to_user(body, email)
        profile = self._call(
            "update",
            {
                "idToken": user.id_token,
                "displayName": name.strip(),
                "returnSecureToken": True,
            },
        )
        user.display_name = profile.get("displayName") or name.strip()
        user.id_token = profile.get("idToken") or user.id_token
        user.refresh_token = profile.get("refreshToken") or user.refresh_token
        self._current_user = user
        _save_user_profile(self.store, user)
        return user

    def sign_out(self) -> None:
        self._current_user = None

    def reset_password(self, email: str) -> None:
        self._call(
            "sendOobCode",
            {"requestType": "PASSWORD_RESET", "email": _require_email(email)},
        )

    def change_password(self, current_password: str, new_password: str) -> None:
        user = self._current_user
        if user is None:
            raise AuthenticationError("No user is signed in.")
        try:
            body = self._call(
                "signInWithPassword",
                {
                    "email": user.email,
                    "password": current_password,
                    "returnSecureToken": True,
                },
            )
        except AuthenticationError as e:
            raise AuthenticationError(REAUTHENTICATION_FAILED) from e
        validate_new_password(new_password)
        body = self._call(
            "update",
            {
                "idToken": body["idToken"],
                "password": new_password,
                "returnSecureToken": True,
            },
        )
        user.id_token = body.get("idToken") or user.id_token
        user.refresh_token = body.get("refreshToken") or user.refresh_token


def load_user_profile(store: DocumentStore, user: AuthUser) -> UserProfile:
    """Reads `users/{uid}`, falling back to the session's own fields."""
    data = store.get(USERS_COLLECTION, user.uid)
    if data is not None:
        return from_document(UserProfile, data, user.uid)
    return UserProfile(uid=user.uid, email=user.email, display_name=user.display_name or "")
