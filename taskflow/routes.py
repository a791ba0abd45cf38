"""
HTTP routes exposing the session operations to a presentation layer.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from taskflow.analytics import rank_by_progress, summarize
from taskflow.dependencies import get_session
from taskflow.schemas import (
    ChangePasswordRequest,
    CommentRequest,
    CommentResponse,
    InvitationListResponse,
    InvitationResponse,
    MarkAllReadResponse,
    NotificationListResponse,
    NotificationResponse,
    NotificationSettingsResponse,
    NotificationSettingsUpdate,
    ProjectCreateRequest,
    ProjectListResponse,
    ProjectResponse,
    ProjectSummaryResponse,
    ProjectUpdateRequest,
    RespondInvitationRequest,
    ResetPasswordRequest,
    SendInvitationRequest,
    SignInRequest,
    SignUpRequest,
    StatusResponse,
    TaskCompletionRequest,
    TaskCreateRequest,
    TaskResponse,
    TaskUpdateRequest,
    UserProfileResponse,
    UserResponse,
    UserSearchResponse,
)
from taskflow.session import AppSession

logger = logging.getLogger(__name__)

router = APIRouter()


# Auth


@router.post("/auth/sign-in", response_model=UserResponse)
def sign_in(payload: SignInRequest, session: AppSession = Depends(get_session)):
    return UserResponse.model_validate(session.sign_in(payload.email, payload.password))


@router.post("/auth/sign-up", response_model=UserResponse)
def sign_up(payload: SignUpRequest, session: AppSession = Depends(get_session)):
    user = session.sign_up(
        payload.email, payload.password, payload.name, payload.confirmation
    )
    return UserResponse.model_validate(user)


@router.post("/auth/sign-out", response_model=StatusResponse)
def sign_out(session: AppSession = Depends(get_session)):
    session.sign_out()
    return StatusResponse()


@router.post("/auth/reset-password", response_model=StatusResponse)
def reset_password(
    payload: ResetPasswordRequest, session: AppSession = Depends(get_session)
):
    session.reset_password(payload.email)
    return StatusResponse(status="sent")


@router.post("/auth/change-password", response_model=StatusResponse)
def change_password(
    payload: ChangePasswordRequest, session: AppSession = Depends(get_session)
):
    session.change_password(
        payload.current_password, payload.new_password, payload.confirmation
    )
    return StatusResponse()


@router.get("/auth/me", response_model=UserResponse)
def current_user(session: AppSession = Depends(get_session)):
    return UserResponse.model_validate(session.require_user())


@router.get("/users/search", response_model=UserSearchResponse)
def search_user(
    email: str = Query(..., min_length=1),
    session: AppSession = Depends(get_session),
):
    session.require_user()
    profile = session.projects.search_user_by_email(email)
    return UserSearchResponse(
        user=UserProfileResponse.model_validate(profile) if profile else None
    )


# Projects


@router.get("/projects", response_model=ProjectListResponse)
def list_projects(
    sort: str = Query(default="recent", pattern="^(recent|progress)$"),
    session: AppSession = Depends(get_session),
):
    session.require_user()
    session.process_updates()
    projects = session.projects.projects
    if sort == "progress":
        projects = rank_by_progress(projects)
    return ProjectListResponse(
        projects=[ProjectResponse.model_validate(p) for p in projects]
    )


@router.post("/projects", response_model=ProjectResponse)
def create_project(
    payload: ProjectCreateRequest, session: AppSession = Depends(get_session)
):
    project = session.projects.create_project(
        title=payload.title,
        description=payload.description,
        due_date=payload.due_date,
        icon_name=payload.icon_name,
        icon_color=payload.icon_color,
    )
    return ProjectResponse.model_validate(project)


@router.get("/projects/{project_id}", response_model=ProjectResponse)
def get_project(project_id: str, session: AppSession = Depends(get_session)):
    session.require_user()
    return ProjectResponse.model_validate(session.projects.get_project(project_id))


@router.patch("/projects/{project_id}", response_model=ProjectResponse)
def update_project(
    project_id: str,
    payload: ProjectUpdateRequest,
    session: AppSession = Depends(get_session),
):
    project = session.projects.update_project(
        project_id, **payload.model_dump(exclude_unset=True, exclude_none=True)
    )
    return ProjectResponse.model_validate(project)


@router.delete("/projects/{project_id}", response_model=StatusResponse)
def delete_project(project_id: str, session: AppSession = Depends(get_session)):
    session.projects.delete_project(project_id)
    return StatusResponse(status="deleted")


@router.get("/projects/{project_id}/invitations", response_model=InvitationListResponse)
def project_invitations(project_id: str, session: AppSession = Depends(get_session)):
    session.require_user()
    invitations = session.coordinator.get_invitations_for_project(project_id)
    return InvitationListResponse(
        invitations=[InvitationResponse.model_validate(i) for i in invitations]
    )


@router.post("/projects/{project_id}/tasks", response_model=TaskResponse)
def add_task(
    project_id: str,
    payload: TaskCreateRequest,
    session: AppSession = Depends(get_session),
):
    task = session.projects.add_task(project_id, **payload.model_dump())
    return TaskResponse.model_validate(task)


@router.patch("/projects/{project_id}/tasks/{task_id}", response_model=TaskResponse)
def update_task(
    project_id: str,
    task_id: str,
    payload: TaskUpdateRequest,
    session: AppSession = Depends(get_session),
):
    task = session.projects.update_task(
        project_id, task_id, **payload.model_dump(exclude_unset=True)
    )
    return TaskResponse.model_validate(task)


@router.post(
    "/projects/{project_id}/tasks/{task_id}/completion", response_model=TaskResponse
)
def set_task_completed(
    project_id: str,
    task_id: str,
    payload: TaskCompletionRequest,
    session: AppSession = Depends(get_session),
):
    task = session.projects.set_task_completed(project_id, task_id, payload.completed)
    return TaskResponse.model_validate(task)


@router.delete("/projects/{project_id}/tasks/{task_id}", response_model=StatusResponse)
def delete_task(
    project_id: str, task_id: str, session: AppSession = Depends(get_session)
):
    session.projects.delete_task(project_id, task_id)
    return StatusResponse(status="deleted")


@router.post(
    "/projects/{project_id}/tasks/{task_id}/comments", response_model=CommentResponse
)
def add_comment(
    project_id: str,
    task_id: str,
    payload: CommentRequest,
    session: AppSession = Depends(get_session),
):
    comment = session.projects.add_comment(project_id, task_id, payload.content)
    return CommentResponse.model_validate(comment)


@router.get("/analytics/summary", response_model=ProjectSummaryResponse)
def analytics_summary(session: AppSession = Depends(get_session)):
    session.require_user()
    session.process_updates()
    return ProjectSummaryResponse.model_validate(summarize(session.projects.projects))


# Invitations


@router.get("/invitations", response_model=InvitationListResponse)
def pending_invitations(session: AppSession = Depends(get_session)):
    session.require_user()
    session.process_updates()
    return InvitationListResponse(
        invitations=[
            InvitationResponse.model_validate(i)
            for i in session.coordinator.pending_invitations
        ]
    )


@router.post("/invitations", response_model=InvitationResponse)
def send_invitation(
    payload: SendInvitationRequest, session: AppSession = Depends(get_session)
):
    invitation = session.coordinator.send_invitation(
        payload.receiver_email, payload.project_id, payload.project_title
    )
    return InvitationResponse.model_validate(invitation)


@router.post("/invitations/{invitation_id}/respond", response_model=StatusResponse)
def respond_to_invitation(
    invitation_id: str,
    payload: RespondInvitationRequest,
    session: AppSession = Depends(get_session),
):
    session.require_user()
    invitation = session.coordinator.find_invitation(invitation_id)
    session.coordinator.respond_to_invitation(invitation, payload.accept)
    return StatusResponse(status="accepted" if payload.accept else "rejected")


# Notifications


@router.get("/notifications", response_model=NotificationListResponse)
def list_notifications(session: AppSession = Depends(get_session)):
    session.require_user()
    session.process_updates()
    coordinator = session.coordinator
    return NotificationListResponse(
        notifications=[
            NotificationResponse.model_validate(n) for n in coordinator.notifications
        ],
        unread_count=coordinator.unread_count,
    )


@router.post("/notifications/read-all", response_model=MarkAllReadResponse)
def mark_all_read(session: AppSession = Depends(get_session)):
    return MarkAllReadResponse(updated=session.coordinator.mark_all_as_read())


@router.post("/notifications/{notification_id}/read", response_model=StatusResponse)
def mark_read(notification_id: str, session: AppSession = Depends(get_session)):
    notification = session.coordinator.find_notification(notification_id)
    session.coordinator.mark_as_read(notification)
    return StatusResponse()


@router.delete("/notifications/{notification_id}", response_model=StatusResponse)
def delete_notification(
    notification_id: str, session: AppSession = Depends(get_session)
):
    notification = session.coordinator.find_notification(notification_id)
    session.coordinator.delete_notification(notification)
    return StatusResponse(status="deleted")


# Settings


@router.get("/settings/notifications", response_model=NotificationSettingsResponse)
def get_notification_settings(session: AppSession = Depends(get_session)):
    session.require_user()
    return NotificationSettingsResponse.model_validate(session.device_settings.settings)


@router.patch("/settings/notifications", response_model=NotificationSettingsResponse)
def update_notification_settings(
    payload: NotificationSettingsUpdate, session: AppSession = Depends(get_session)
):
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    settings = session.update_settings(**changes)
    logger.info("Notification settings updated: %s", sorted(changes))
    return NotificationSettingsResponse.model_validate(settings)
