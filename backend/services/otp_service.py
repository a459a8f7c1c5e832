"""
Service OTP : registre en mémoire des codes (inscription + réinitialisation
du mot de passe), envoi par email et vérification.
"""
import hmac
import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from pydantic import BaseModel

from config import settings
from core.exceptions import bad_request_exception, not_found_exception
from core.security import generate_otp, hash_password
from core.utils import mask_email, utc_now
from models.common import UserRole
from services import email_templates
from services.mailer import Mailer, MailDeliveryError

logger = logging.getLogger(__name__)


class OtpEntry(BaseModel):
    code:         str
    issued_at:    datetime
    attempts:     int = 0
    # Inscription uniquement : {"name", "email", "password", "role"}
    pending_user: Optional[dict] = None


class OtpRegistry:
    """
    Un seul OTP vivant par email ; réémettre écrase (et invalide) le précédent.
    Toutes les séquences lecture-décision-écriture passent par le même verrou,
    jamais tenu pendant une I/O.
    """

    def __init__(
        self,
        ttl_minutes: int = settings.OTP_EXPIRE_MINUTES,
        max_attempts: int = settings.OTP_MAX_ATTEMPTS,
        code_length: int = settings.OTP_LENGTH,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.ttl = timedelta(minutes=ttl_minutes)
        self.max_attempts = max_attempts
        self.code_length = code_length
        self._clock = clock
        self._entries: Dict[str, OtpEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, email: str) -> bool:
        with self._lock:
            return email in self._entries

    def _expired(self, entry: OtpEntry, now: datetime) -> bool:
        return now - entry.issued_at > self.ttl

    def issue(self, email: str, pending_user: Optional[dict] = None) -> OtpEntry:
        entry = OtpEntry(
            code=generate_otp(self.code_length),
            issued_at=self._clock(),
            pending_user=pending_user,
        )
        with self._lock:
            self._entries[email] = entry
        return entry

    def verify(self, email: str, code: str) -> Optional[OtpEntry]:
        """
        Consomme l'OTP si le code correspond et n'a pas expiré.
        Retourne l'entrée consommée, None sinon.
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.get(email)
            if entry is None:
                return None
            if self._expired(entry, now):
                del self._entries[email]
                logger.warning(f"OTP expiré pour {mask_email(email)}")
                return None
            if not hmac.compare_digest(entry.code, code or ""):
                entry.attempts += 1
                if entry.attempts >= self.max_attempts:
                    del self._entries[email]
                    logger.warning(f"OTP révoqué après {entry.attempts} tentatives pour {mask_email(email)}")
                return None
            del self._entries[email]
            return entry

    def discard(self, email: str, code: Optional[str] = None) -> bool:
        """
        Supprime l'OTP de cet email. Avec `code`, ne supprime que si l'entrée
        porte encore ce code (une réémission entre-temps est préservée).
        """
        with self._lock:
            entry = self._entries.get(email)
            if entry is None:
                return False
            if code is not None and entry.code != code:
                return False
            del self._entries[email]
            return True

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [email for email, entry in self._entries.items() if self._expired(entry, now)]
            for email in expired:
                del self._entries[email]
        if expired:
            logger.info(f"Purge OTP : {len(expired)} code(s) expiré(s) supprimé(s)")
        return len(expired)


def _user_id() -> str:
    return f"usr_{uuid.uuid4().hex[:12]}"


class OtpService:
    """Poignée de main OTP : inscription vérifiée par email et mot de passe oublié."""

    def __init__(self, db, mailer: Mailer, registry: OtpRegistry, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.mailer = mailer
        self.registry = registry
        self._clock = clock

    async def issue_signup_otp(self, email: str, name: str, password: str) -> bool:
        """
        Génère un OTP d'inscription et l'envoie par email.
        Le compte n'existe en base qu'après verify_signup_otp.
        """
        if await self.db.users.find_one({"email": email}, {"_id": 1}):
            logger.warning(f"Inscription refusée, email déjà utilisé : {mask_email(email)}")
            raise bad_request_exception("Email already exists")

        role = UserRole.ADMIN if email in settings.ADMIN_EMAILS else UserRole.USER
        pending_user = {"name": name, "email": email, "password": password, "role": role.value}
        entry = self.registry.issue(email, pending_user)
        return await self._send_code(email, name, entry, "signup")

    async def verify_signup_otp(self, email: str, code: str) -> dict:
        entry = self.registry.verify(email, code)
        if entry is None or entry.pending_user is None:
            logger.warning(f"OTP d'inscription invalide pour {mask_email(email)}")
            raise bad_request_exception("Invalid or expired OTP")

        # Inscription concurrente déjà finalisée pour cet email
        if await self.db.users.find_one({"email": email}, {"_id": 1}):
            raise bad_request_exception("Email already exists")

        pending = entry.pending_user
        now = self._clock()
        user_doc = {
            "user_id":               _user_id(),
            "name":                  pending["name"],
            "email":                 email,
            "password_hash":         hash_password(pending["password"]),
            "role":                  pending.get("role", UserRole.USER.value),
            "is_active":             True,
            "email_order_updates":   False,
            "email_promotions":      False,
            "desktop_notifications": False,
            "created_at":            now,
            "updated_at":            now,
        }
        await self.db.users.insert_one(user_doc)
        user_doc.pop("_id", None)
        logger.info(f"Compte créé pour {mask_email(email)} (rôle {user_doc['role']})")

        try:
            await self.mailer.send(email, email_templates.WELCOME_SUBJECT, email_templates.welcome_email(pending["name"]))
        except MailDeliveryError as e:
            logger.error(f"Email de bienvenue non envoyé à {mask_email(email)} : {e}")

        user_doc.pop("password_hash")
        return user_doc

    async def issue_password_reset_otp(self, email: str) -> bool:
        user = await self.db.users.find_one({"email": email}, {"_id": 0, "name": 1})
        if not user:
            logger.warning(f"Mot de passe oublié : compte introuvable pour {mask_email(email)}")
            raise not_found_exception("User")

        entry = self.registry.issue(email)
        return await self._send_code(email, user.get("name", ""), entry, "reset")

    async def reset_password(self, email: str, code: str, new_password: str) -> None:
        user = await self.db.users.find_one({"email": email}, {"_id": 0, "user_id": 1})
        if not user:
            raise bad_request_exception("Invalid OTP or email")

        entry = self.registry.verify(email, code)
        if entry is None or entry.pending_user is not None:
            logger.warning(f"OTP de réinitialisation invalide pour {mask_email(email)}")
            raise bad_request_exception("Invalid OTP or email")

        await self.db.users.update_one(
            {"user_id": user["user_id"]},
            {"$set": {"password_hash": hash_password(new_password), "updated_at": self._clock()}},
        )
        logger.info(f"Mot de passe réinitialisé pour {mask_email(email)}")

    async def _send_code(self, email: str, name: str, entry: OtpEntry, purpose: str) -> bool:
        if settings.DEBUG:
            logger.debug(f"[DEBUG] code OTP ({purpose}) pour {email} : {entry.code}")
        try:
            sent = await self.mailer.send(
                email,
                email_templates.OTP_SUBJECTS[purpose],
                email_templates.otp_email(name, entry.code, purpose),
            )
        except MailDeliveryError as e:
            logger.error(f"Email OTP ({purpose}) non envoyé à {mask_email(email)} : {e}")
            # Pas de code orphelin, sauf si une réémission l'a déjà remplacé
            self.registry.discard(email, entry.code)
            return False
        return sent
