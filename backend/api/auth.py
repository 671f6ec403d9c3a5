"""
Auth API: login, registration, profile and self-service subscription.
"""

import logging

from fastapi import APIRouter, Depends

from backend.api.deps import get_user_service
from backend.api.schemas import (
    AuthOut,
    ChangePasswordIn,
    LoginIn,
    ProfileOut,
    ProfileUpdateIn,
    RegisterIn,
    SuccessOut,
)
from backend.core.auth import Principal, require_authenticated
from backend.features.users.service import UserService

logger = logging.getLogger("socialstory.api.auth")

router = APIRouter()


@router.post("/login", response_model=AuthOut)
def login(data: LoginIn, users: UserService = Depends(get_user_service)):
    result = users.login(data.email, data.password)
    return AuthOut.from_result(result.user, result.token)


@router.post("/register", response_model=AuthOut)
def register(data: RegisterIn, users: UserService = Depends(get_user_service)):
    result = users.register(data.email, data.password, data.name)
    return AuthOut.from_result(result.user, result.token)


@router.get("/me", response_model=ProfileOut)
def me(
    principal: Principal = Depends(require_authenticated),
    users: UserService = Depends(get_user_service),
):
    return ProfileOut.from_user(users.get_profile(principal.user_id))


@router.patch("/profile", response_model=ProfileOut)
def update_profile(
    data: ProfileUpdateIn,
    principal: Principal = Depends(require_authenticated),
    users: UserService = Depends(get_user_service),
):
    user = users.update_profile(principal.user_id, name=data.name, email=data.email)
    return ProfileOut.from_user(user)


@router.post("/change-password", response_model=SuccessOut)
def change_password(
    data: ChangePasswordIn,
    principal: Principal = Depends(require_authenticated),
    users: UserService = Depends(get_user_service),
):
    users.change_password(principal.user_id, data.current_password, data.new_password)
    return SuccessOut()


@router.post("/upgrade", response_model=ProfileOut)
def upgrade(
    principal: Principal = Depends(require_authenticated),
    users: UserService = Depends(get_user_service),
):
    return ProfileOut.from_user(users.upgrade(principal.user_id))


@router.post("/cancel-subscription", response_model=ProfileOut)
def cancel_subscription(
    principal: Principal = Depends(require_authenticated),
    users: UserService = Depends(get_user_service),
):
    return ProfileOut.from_user(users.cancel_subscription(principal.user_id))
