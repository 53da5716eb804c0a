from datetime import datetime
from typing import Literal

from pydantic import BaseModel, EmailStr, Field

# Публичная регистрация: роль admin выдаётся только вручную
PublicRole = Literal["student", "teacher"]


class RegisterReq(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    name: str = Field(default="", max_length=100)
    role: PublicRole = "student"


class LoginReq(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class UserResp(BaseModel):
    id: str
    email: EmailStr
    name: str
    role: str
    has_password: bool = True


class LoginResp(BaseModel):
    user: UserResp
    expires_in: int


class ChangePasswordReq(BaseModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=8, max_length=128)


class SetPasswordReq(BaseModel):
    new_password: str = Field(min_length=8, max_length=128)


class ResetRequestReq(BaseModel):
    email: EmailStr


class ResetRequestResp(BaseModel):
    detail: str = "If the account exists, password reset instructions have been sent"
    # заполняется только при EXPOSE_RESET_TOKEN (dev-окружение)
    reset_token: str | None = None


class ResetPasswordReq(BaseModel):
    reset_token: str = Field(min_length=1)
    new_password: str = Field(min_length=8, max_length=128)


class SessionsResp(BaseModel):
    user_id: str
    active_sessions: int


class RevokedResp(BaseModel):
    user_id: str
    revoked_sessions: int


class LinkedIdentityResp(BaseModel):
    provider: str
    provider_subject_id: str
    created_at: datetime | None = None


class RefreshResp(BaseModel):
    expires_in: int
