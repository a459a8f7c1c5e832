"""
Gabarits HTML des emails transactionnels.
"""
from html import escape
from typing import Optional

from config import settings

OTP_SUBJECTS = {
    "signup": f"{settings.APP_NAME} - Your Verification Code",
    "reset":  f"{settings.APP_NAME} - Password Reset Code",
}
WELCOME_SUBJECT = f"{settings.APP_NAME} - Welcome aboard"

_LAYOUT = """<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>{title}</title></head>
<body style="margin:0;padding:0;background:#f9f7f2;font-family:Helvetica,sans-serif;">
  <div style="max-width:640px;margin:40px auto;background:#fff;border-radius:16px;overflow:hidden;">
    <div style="background:#2c3e50;padding:32px;text-align:center;color:#fff;">
      <h1 style="margin:0;">{app_name}</h1>
    </div>
    <div style="padding:40px 32px;color:#4a4a4a;line-height:1.7;">
      {body}
    </div>
    <div style="background:#2c3e50;padding:16px;text-align:center;color:#fff;font-size:12px;">
      {app_name}
    </div>
  </div>
</body>
</html>
"""


def _render(title: str, body: str) -> str:
    return _LAYOUT.format(title=escape(title), app_name=escape(settings.APP_NAME), body=body)


def otp_email(name: str, code: str, purpose: str) -> str:
    if purpose == "signup":
        intro = "Use the code below to verify your email address and finish creating your account."
    elif purpose == "reset":
        intro = "Use the code below to reset your password. If you did not ask for it, ignore this email."
    else:
        raise ValueError(f"Type d'email OTP inconnu : {purpose}")
    body = (
        f"<p>Hello {escape(name)},</p>"
        f"<p>{intro}</p>"
        f'<div style="font-size:2.4rem;letter-spacing:12px;font-weight:900;text-align:center;'
        f'background:#f1c40f;border-radius:12px;padding:16px;margin:24px 0;">{escape(code)}</div>'
        f"<p>This code expires in {settings.OTP_EXPIRE_MINUTES} minutes.</p>"
    )
    return _render(OTP_SUBJECTS[purpose], body)


def welcome_email(name: str) -> str:
    body = (
        f"<p>Warmest welcome, {escape(name)}!</p>"
        "<p>Your account is verified. Your adventure with us begins today.</p>"
    )
    return _render(WELCOME_SUBJECT, body)


def notification_email(title: str, content: str, image_url: Optional[str] = None) -> str:
    body = f"<h2>{escape(title)}</h2><p>{escape(content)}</p>"
    if image_url:
        body += f'<img src="{escape(image_url, quote=True)}" alt="Notification image" style="max-width:100%;">'
    return _render(title, body)
