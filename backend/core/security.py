"""
Secrets du compte client : hash bcrypt, jeton d'accès JWT, code OTP.
"""
import secrets
import string
from datetime import datetime, timezone, timedelta
from typing import Optional, Tuple

from jose import jwt, JWTError
from passlib.context import CryptContext
from pydantic import BaseModel, ValidationError

from config import settings

TOKEN_ALGORITHM = "HS256"
TOKEN_ISSUER = "flavorfleet"

# ── Mots de passe ─────────────────────────────────────────────────────────────
passwords = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return passwords.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return passwords.verify(plain, hashed)


def check_password(plain: str, hashed: str) -> Tuple[bool, Optional[str]]:
    """
    Vérifie le mot de passe à la connexion. Le second élément est un nouveau
    hash quand celui stocké utilise des paramètres bcrypt dépassés.
    """
    if not hashed or passwords.identify(hashed) is None:
        return False, None
    return passwords.verify_and_update(plain, hashed)


# ── Jeton d'accès ─────────────────────────────────────────────────────────────
class AccessClaims(BaseModel):
    sub: str
    role: str
    exp: datetime


def issue_access_token(user_id: str, role: str, ttl: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub":  user_id,
        "role": role,
        "iss":  TOKEN_ISSUER,
        "iat":  now,
        "exp":  now + (ttl or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=TOKEN_ALGORITHM)


def read_access_token(token: str) -> Optional[AccessClaims]:
    """None si le jeton est mal signé, expiré, d'un autre émetteur ou incomplet."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[TOKEN_ALGORITHM], issuer=TOKEN_ISSUER)
        return AccessClaims(**payload)
    except (JWTError, ValidationError):
        return None


# ── OTP ───────────────────────────────────────────────────────────────────────
def generate_otp(length: int = 6) -> str:
    """Code numérique tiré d'un CSPRNG, premier chiffre non nul (100000-999999)."""
    first = secrets.choice(string.digits[1:])
    return first + "".join(secrets.choice(string.digits) for _ in range(length - 1))
