from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from mongomock_motor import AsyncMongoMockClient

from core.security import hash_password
from services.live_push import LiveConnectionRegistry
from services.mailer import MailDeliveryError
from services.notification_service import NotificationService
from services.otp_service import OtpRegistry, OtpService


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingMailer:
    """Remplace le Mailer SMTP : enregistre les envois, échoue pour `fail_for`."""

    def __init__(self):
        self.sent = []
        self.fail_for = set()

    async def send(self, to: str, subject: str, html_body: str) -> bool:
        if to in self.fail_for:
            raise MailDeliveryError(f"SMTP refusé pour {to}")
        self.sent.append({"to": to, "subject": subject, "html": html_body})
        return True

    def sent_to(self, address: str) -> list:
        return [m for m in self.sent if m["to"] == address]


def pending_events(channel) -> list:
    """Vide la file d'un canal SSE sans passer par stream()."""
    events = []
    while not channel._queue.empty():
        item = channel._queue.get_nowait()
        if item is not None:
            events.append(item)
    return events


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def db():
    return AsyncMongoMockClient()["flavorfleet_test"]


@pytest.fixture
def live():
    return LiveConnectionRegistry()


@pytest.fixture
def notification_service(db, mailer, live, clock):
    return NotificationService(db, mailer, live, clock=clock)


@pytest.fixture
def otp_registry(clock):
    return OtpRegistry(clock=clock)


@pytest.fixture
def otp_service(db, mailer, otp_registry, clock):
    return OtpService(db, mailer, otp_registry, clock=clock)


@pytest.fixture
def fixed_codes(monkeypatch):
    """Codes OTP déterministes, consommés dans l'ordre."""
    codes = ["111111", "222222", "333333", "444444"]
    iterator = iter(codes)
    monkeypatch.setattr("services.otp_service.generate_otp", lambda length=6: next(iterator))
    return codes


@pytest.fixture
def make_user(db, clock):
    async def _make(
        user_id: str,
        email: Optional[str] = None,
        password: Optional[str] = None,
        role: str = "user",
        **prefs,
    ) -> dict:
        doc = {
            "user_id":               user_id,
            "name":                  user_id,
            "email":                 email or f"{user_id}@flavorfleet.test",
            "password_hash":         hash_password(password) if password else "!",
            "role":                  role,
            "is_active":             True,
            "email_order_updates":   False,
            "email_promotions":      False,
            "desktop_notifications": False,
            "created_at":            clock(),
            "updated_at":            clock(),
        }
        doc.update(prefs)
        await db.users.insert_one(doc)
        doc.pop("_id", None)
        return doc
    return _make
