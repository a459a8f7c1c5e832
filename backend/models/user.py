import re
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, field_validator
from models.common import UserRole

EMAIL_REGEX = re.compile(r"^[A-Za-z0-9+_.-]+@[A-Za-z0-9.-]+$")
PASSWORD_REGEX = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,}$")

PASSWORD_RULES = (
    "Password must be at least 8 characters long and contain at least one uppercase letter, "
    "one lowercase letter, one digit, and one special character (@$!%*?&)"
)


def normalize_email(v: str) -> str:
    v = v.strip().lower()
    if not EMAIL_REGEX.match(v):
        raise ValueError("Invalid email format")
    return v


def check_password_strength(v: str) -> str:
    if not PASSWORD_REGEX.match(v):
        raise ValueError(PASSWORD_RULES)
    return v


class User(BaseModel):
    user_id:   str
    name:      str
    email:     str
    role:      UserRole = UserRole.USER
    is_active: bool     = True
    # Préférences de notification
    email_order_updates:   bool = False
    email_promotions:      bool = False
    desktop_notifications: bool = False
    # Timestamps
    created_at: datetime
    updated_at: datetime


class SignupRequest(BaseModel):
    name:     str
    email:    str
    password: str

    @field_validator("name")
    @classmethod
    def name_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Name is required")
        return v.strip()

    @field_validator("email")
    @classmethod
    def email_must_be_valid(cls, v: str) -> str:
        return normalize_email(v)

    @field_validator("password")
    @classmethod
    def password_must_be_strong(cls, v: str) -> str:
        return check_password_strength(v)


class OTPVerify(BaseModel):
    email: str
    otp:   str

    @field_validator("email")
    @classmethod
    def email_must_be_valid(cls, v: str) -> str:
        return normalize_email(v)


class LoginRequest(BaseModel):
    email:    str
    password: str

    @field_validator("email")
    @classmethod
    def email_must_be_valid(cls, v: str) -> str:
        return normalize_email(v)


class ForgotPasswordRequest(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def email_must_be_valid(cls, v: str) -> str:
        return normalize_email(v)


class ResetPasswordRequest(BaseModel):
    email:        str
    otp:          str
    new_password: str

    @field_validator("email")
    @classmethod
    def email_must_be_valid(cls, v: str) -> str:
        return normalize_email(v)

    @field_validator("new_password")
    @classmethod
    def password_must_be_strong(cls, v: str) -> str:
        return check_password_strength(v)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password:     str

    @field_validator("new_password")
    @classmethod
    def password_must_be_strong(cls, v: str) -> str:
        return check_password_strength(v)


class TokenResponse(BaseModel):
    access_token: str
    token_type:   str = "bearer"
    user:         User


class NotificationPreferences(BaseModel):
    email_order_updates:   bool = False
    email_promotions:      bool = False
    desktop_notifications: bool = False


class NotificationPreferencesUpdate(BaseModel):
    email_order_updates:   Optional[bool] = None
    email_promotions:      Optional[bool] = None
    desktop_notifications: Optional[bool] = None
