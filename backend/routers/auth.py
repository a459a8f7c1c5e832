"""
Router auth : inscription vérifiée par OTP email, connexion JWT, mot de passe oublié.
"""
from fastapi import APIRouter, Depends, Request

from config import settings
from core.dependencies import get_current_user, get_otp_service
from core.rate_limit import limiter
from core.security import issue_access_token
from database import db
from models.user import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    OTPVerify,
    ResetPasswordRequest,
    SignupRequest,
    TokenResponse,
    User,
)
from services import user_service
from services.otp_service import OtpService

router = APIRouter()


def _token_response(user_doc: dict) -> TokenResponse:
    token = issue_access_token(user_doc["user_id"], user_doc["role"])
    return TokenResponse(access_token=token, user=User(**user_doc))


@router.post("/register", summary="Inscription : envoi OTP")
@limiter.limit(settings.OTP_RATE_LIMIT)
async def register(
    request: Request,
    body: SignupRequest,
    otp_service: OtpService = Depends(get_otp_service),
):
    sent = await otp_service.issue_signup_otp(body.email, body.name, body.password)
    return {"sent": sent, "email": body.email, "message": "OTP sent to your email for verification"}


@router.post("/verify-signup-otp", response_model=TokenResponse, summary="Vérifier OTP → compte + JWT")
async def verify_signup_otp(
    body: OTPVerify,
    otp_service: OtpService = Depends(get_otp_service),
):
    user_doc = await otp_service.verify_signup_otp(body.email, body.otp)
    return _token_response(user_doc)


@router.post("/login", response_model=TokenResponse, summary="Connexion email / mot de passe")
async def login(body: LoginRequest):
    user_doc = await user_service.authenticate(db, body.email, body.password)
    return _token_response(user_doc)


@router.post("/forgot-password", summary="Mot de passe oublié : envoi OTP")
@limiter.limit(settings.OTP_RATE_LIMIT)
async def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    otp_service: OtpService = Depends(get_otp_service),
):
    sent = await otp_service.issue_password_reset_otp(body.email)
    return {"sent": sent, "email": body.email}


@router.post("/reset-password", summary="Réinitialiser le mot de passe avec l'OTP")
async def reset_password(
    body: ResetPasswordRequest,
    otp_service: OtpService = Depends(get_otp_service),
):
    await otp_service.reset_password(body.email, body.otp, body.new_password)
    return {"message": "Password reset successful"}


@router.post("/change-password", summary="Changer le mot de passe")
async def change_password(
    body: ChangePasswordRequest,
    current_user: dict = Depends(get_current_user),
):
    await user_service.change_password(db, current_user, body.current_password, body.new_password)
    return {"message": "Password changed successfully"}


@router.get("/me", response_model=User, summary="Profil courant")
async def me(current_user: dict = Depends(get_current_user)):
    return User(**current_user)
