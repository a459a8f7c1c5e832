from datetime import datetime, timezone
from typing import Optional


def mask_email(email: str) -> str:
    """
    Masque une adresse email pour les logs : garde la première lettre
    et le domaine.
    Format type: jane.doe@example.com -> j•••@example.com
    """
    if not email:
        return ""
    local, sep, domain = email.partition("@")
    if not sep:
        return "•••"
    return f"{local[:1]}•••@{domain}"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """MongoDB rend des datetimes naïfs (UTC) : on leur remet le fuseau."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
