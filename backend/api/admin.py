"""
Admin dashboard API.

Every route depends on require_admin, which re-reads the caller's record
before the handler runs; a non-admin gets the generic unauthorized error and
nothing else.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query

from backend.api.deps import get_admin_service
from backend.api.schemas import (
    ActivityLogOut,
    AdminUserOut,
    AnalyticsOut,
    ApiKeysOut,
    ApiKeysUpdateIn,
    ExtendSubscriptionIn,
    ResetPasswordIn,
    SettingsOut,
    SettingsUpdateIn,
    StoryOut,
    SuccessOut,
)
from backend.core.auth import require_admin
from backend.features.admin.service import AdminService
from backend.features.audit.service import DEFAULT_RETENTION
from backend.models.user import User

logger = logging.getLogger("socialstory.api.admin")

router = APIRouter()


# ============================================================================
# Reads
# ============================================================================

@router.get("/analytics", response_model=AnalyticsOut)
def analytics(actor: User = Depends(require_admin), admin: AdminService = Depends(get_admin_service)):
    data = admin.analytics()
    data["recent_stories"] = [StoryOut.from_story(s) for s in data["recent_stories"]]
    return AnalyticsOut(**data)


@router.get("/users", response_model=List[AdminUserOut])
def list_users(actor: User = Depends(require_admin), admin: AdminService = Depends(get_admin_service)):
    return [AdminUserOut.from_user(u) for u in admin.list_users()]


@router.get("/stories", response_model=List[StoryOut])
def list_stories(actor: User = Depends(require_admin), admin: AdminService = Depends(get_admin_service)):
    return [StoryOut.from_story(s) for s in admin.list_stories()]


@router.get("/settings", response_model=SettingsOut)
def get_settings(actor: User = Depends(require_admin), admin: AdminService = Depends(get_admin_service)):
    return SettingsOut.from_settings(admin.get_settings())


@router.get("/activity-logs", response_model=List[ActivityLogOut])
def activity_logs(
    limit: int = Query(DEFAULT_RETENTION, ge=1, le=DEFAULT_RETENTION),
    actor: User = Depends(require_admin),
    admin: AdminService = Depends(get_admin_service),
):
    return [ActivityLogOut.from_row(**row) for row in admin.activity_logs(limit)]


# ============================================================================
# Mutations
# ============================================================================

@router.post("/users/{user_id}/toggle-premium", response_model=SuccessOut)
def toggle_premium(user_id: str, actor: User = Depends(require_admin), admin: AdminService = Depends(get_admin_service)):
    admin.toggle_premium(actor, user_id)
    return SuccessOut()


@router.post("/users/{user_id}/extend-subscription", response_model=SuccessOut)
def extend_subscription(
    user_id: str,
    data: ExtendSubscriptionIn,
    actor: User = Depends(require_admin),
    admin: AdminService = Depends(get_admin_service),
):
    admin.extend_subscription(actor, user_id, data.months)
    return SuccessOut()


@router.post("/users/{user_id}/reset-password", response_model=SuccessOut)
def reset_password(
    user_id: str,
    data: ResetPasswordIn,
    actor: User = Depends(require_admin),
    admin: AdminService = Depends(get_admin_service),
):
    admin.reset_password(actor, user_id, data.new_password)
    return SuccessOut()


@router.post("/users/{user_id}/toggle-admin", response_model=SuccessOut)
def toggle_admin(user_id: str, actor: User = Depends(require_admin), admin: AdminService = Depends(get_admin_service)):
    admin.toggle_admin(actor, user_id)
    return SuccessOut()


@router.delete("/users/{user_id}", response_model=SuccessOut)
def delete_user(user_id: str, actor: User = Depends(require_admin), admin: AdminService = Depends(get_admin_service)):
    admin.delete_user(actor, user_id)
    return SuccessOut()


@router.delete("/stories/{story_id}", response_model=SuccessOut)
def delete_story(story_id: str, actor: User = Depends(require_admin), admin: AdminService = Depends(get_admin_service)):
    admin.delete_story(actor, story_id)
    return SuccessOut()


@router.patch("/settings", response_model=SettingsOut)
def update_settings(
    data: SettingsUpdateIn,
    actor: User = Depends(require_admin),
    admin: AdminService = Depends(get_admin_service),
):
    return SettingsOut.from_settings(admin.update_settings(actor, data.to_update()))


@router.get("/api-keys", response_model=ApiKeysOut)
def get_api_keys(actor: User = Depends(require_admin), admin: AdminService = Depends(get_admin_service)):
    return ApiKeysOut(**admin.get_api_keys())


@router.patch("/api-keys", response_model=ApiKeysOut)
def update_api_keys(
    data: ApiKeysUpdateIn,
    actor: User = Depends(require_admin),
    admin: AdminService = Depends(get_admin_service),
):
    return ApiKeysOut(**admin.update_api_keys(actor, data.to_update()))
