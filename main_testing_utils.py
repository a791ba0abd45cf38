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
"""Factories for users, projects and invitations used across tests."""

from datetime import datetime, timezone
from typing import Optional

from shared.api import (
    Invitation,
    Project,
    ProjectTask,
    UserProfile,
    to_document,
)
from shared.firebase_constants import (
    INVITATIONS_COLLECTION,
    PROJECTS_COLLECTION,
    USERS_COLLECTION,
)
from taskflow.auth import AuthUser

FIXED_TIME = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def create_mock_user(
    store,
    uid: str,
    email: str,
    display_name: str,
    fcm_token: Optional[str] = None,
) -> AuthUser:
    """Registers a profile in `users/{uid}` and returns the matching session user."""
    profile = UserProfile(
        uid=uid,
        email=email.lower(),
        display_name=display_name,
        created_at=FIXED_TIME,
        fcm_token=fcm_token,
    )
    store.set(USERS_COLLECTION, uid, to_document(profile))
    return AuthUser(uid=uid, email=email.lower(), display_name=display_name)


def create_mock_project(
    store,
    leader: AuthUser,
    title: str = "Launch",
    project_id: str = "project-1",
    tasks: Optional[list[ProjectTask]] = None,
    due_date: Optional[datetime] = None,
) -> Project:
    leader_snapshot = UserProfile(
        uid=leader.uid,
        email=leader.email,
        display_name=leader.display_name or "",
    ).to_member_snapshot()
    project = Project(
        title=title,
        id=project_id,
        description=f"{title} project",
        created_at=FIXED_TIME,
        due_date=due_date,
        owner_id=leader.uid,
        team_leader=leader_snapshot,
        team_members=[leader_snapshot],
        team_member_ids=[leader.uid],
        tasks=list(tasks or []),
    )
    store.set(PROJECTS_COLLECTION, project.id, to_document(project))
    return project


def create_mock_invitation(
    store,
    sender: AuthUser,
    receiver: AuthUser,
    project: Project,
    invitation_id: str = "invitation-1",
) -> Invitation:
    invitation = Invitation(
        id=invitation_id,
        project_id=project.id,
        project_title=project.title,
        sender_id=sender.uid,
        sender_name=sender.display_name or "",
        sender_email=sender.email,
        receiver_id=receiver.uid,
        receiver_email=receiver.email,
        created_at=FIXED_TIME,
    )
    store.set(INVITATIONS_COLLECTION, invitation.id, to_document(invitation))
    return invitation
