import pytest
from fastapi import HTTPException

from config import settings
from core.security import verify_password
from services import email_templates

EMAIL = "jane@flavorfleet.test"
PASSWORD = "Str0ng!Pass"


async def test_signup_round_trip_creates_durable_user(otp_service, db, mailer, fixed_codes):
    assert await otp_service.issue_signup_otp(EMAIL, "Jane", PASSWORD) is True
    # Rien en base tant que l'OTP n'est pas vérifié
    assert await db.users.count_documents({}) == 0
    assert mailer.sent[0]["subject"] == email_templates.OTP_SUBJECTS["signup"]
    assert "111111" in mailer.sent[0]["html"]

    user = await otp_service.verify_signup_otp(EMAIL, "111111")

    assert user["email"] == EMAIL
    assert user["role"] == "user"
    assert "password_hash" not in user
    stored = await db.users.find_one({"email": EMAIL})
    assert stored["password_hash"] != PASSWORD
    assert verify_password(PASSWORD, stored["password_hash"])
    assert stored["desktop_notifications"] is False
    assert mailer.sent[-1]["subject"] == email_templates.WELCOME_SUBJECT
    assert EMAIL not in otp_service.registry


async def test_signup_rejects_existing_email(otp_service, make_user, mailer):
    await make_user("usr_jane", email=EMAIL)

    with pytest.raises(HTTPException) as exc:
        await otp_service.issue_signup_otp(EMAIL, "Jane", PASSWORD)

    assert exc.value.status_code == 400
    assert mailer.sent == []
    assert EMAIL not in otp_service.registry


async def test_signup_otp_expired_after_eleven_minutes(otp_service, db, clock, fixed_codes):
    await otp_service.issue_signup_otp(EMAIL, "Jane", PASSWORD)
    clock.advance(minutes=11)

    with pytest.raises(HTTPException) as exc:
        await otp_service.verify_signup_otp(EMAIL, "111111")

    assert exc.value.status_code == 400
    assert await db.users.count_documents({}) == 0


async def test_reissued_signup_otp_invalidates_old_code(otp_service, db, fixed_codes):
    await otp_service.issue_signup_otp(EMAIL, "Jane", PASSWORD)
    await otp_service.issue_signup_otp(EMAIL, "Jane", PASSWORD)

    with pytest.raises(HTTPException):
        await otp_service.verify_signup_otp(EMAIL, "111111")

    user = await otp_service.verify_signup_otp(EMAIL, "222222")
    assert user["email"] == EMAIL
    assert await db.users.count_documents({"email": EMAIL}) == 1


async def test_admin_emails_get_admin_role(otp_service, monkeypatch, fixed_codes):
    monkeypatch.setattr(settings, "ADMIN_EMAILS", [EMAIL])
    await otp_service.issue_signup_otp(EMAIL, "Jane", PASSWORD)

    user = await otp_service.verify_signup_otp(EMAIL, "111111")

    assert user["role"] == "admin"


async def test_signup_mail_failure_returns_false_and_drops_code(otp_service, mailer):
    mailer.fail_for.add(EMAIL)

    assert await otp_service.issue_signup_otp(EMAIL, "Jane", PASSWORD) is False
    assert EMAIL not in otp_service.registry


async def test_password_reset_flow(otp_service, make_user, db, mailer, fixed_codes):
    await make_user("usr_jane", email=EMAIL, password="0ld!Passw")

    assert await otp_service.issue_password_reset_otp(EMAIL) is True
    assert mailer.sent[0]["subject"] == email_templates.OTP_SUBJECTS["reset"]

    await otp_service.reset_password(EMAIL, "111111", PASSWORD)

    stored = await db.users.find_one({"email": EMAIL})
    assert verify_password(PASSWORD, stored["password_hash"])
    assert EMAIL not in otp_service.registry


async def test_password_reset_unknown_email_is_not_found(otp_service, mailer):
    with pytest.raises(HTTPException) as exc:
        await otp_service.issue_password_reset_otp("ghost@flavorfleet.test")

    assert exc.value.status_code == 404
    assert mailer.sent == []


async def test_password_reset_with_wrong_code_keeps_password(otp_service, make_user, db, fixed_codes):
    await make_user("usr_jane", email=EMAIL, password="0ld!Passw")
    await otp_service.issue_password_reset_otp(EMAIL)

    with pytest.raises(HTTPException) as exc:
        await otp_service.reset_password(EMAIL, "999999", PASSWORD)

    assert exc.value.status_code == 400
    stored = await db.users.find_one({"email": EMAIL})
    assert verify_password("0ld!Passw", stored["password_hash"])


async def test_password_reset_expired_code_fails(otp_service, make_user, clock, fixed_codes):
    await make_user("usr_jane", email=EMAIL, password="0ld!Passw")
    await otp_service.issue_password_reset_otp(EMAIL)
    clock.advance(minutes=11)

    with pytest.raises(HTTPException) as exc:
        await otp_service.reset_password(EMAIL, "111111", PASSWORD)

    assert exc.value.status_code == 400
