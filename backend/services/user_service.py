"""
Helpers comptes : authentification par mot de passe, changement de mot de passe.
"""
import logging
from datetime import datetime, timezone

from core.exceptions import bad_request_exception, credentials_exception, not_found_exception
from core.security import check_password, hash_password, verify_password
from core.utils import mask_email

logger = logging.getLogger(__name__)

PUBLIC_PROJECTION = {"_id": 0, "password_hash": 0}


async def authenticate(db, email: str, password: str) -> dict:
    """Retourne l'utilisateur (sans hash) si les identifiants sont valides."""
    user = await db.users.find_one({"email": email}, {"_id": 0})
    valid, upgraded_hash = check_password(password, user.get("password_hash", "")) if user else (False, None)
    if not valid:
        logger.warning(f"Échec de connexion pour {mask_email(email)}")
        raise credentials_exception()
    if not user.get("is_active", True):
        raise credentials_exception()
    if upgraded_hash:
        await db.users.update_one({"user_id": user["user_id"]}, {"$set": {"password_hash": upgraded_hash}})
        logger.info(f"Hash bcrypt mis à niveau pour {user['user_id']}")
    user.pop("password_hash", None)
    return user


async def change_password(db, user: dict, current_password: str, new_password: str) -> None:
    stored = await db.users.find_one({"user_id": user["user_id"]}, {"_id": 0, "password_hash": 1})
    if not stored:
        raise not_found_exception("User")
    if not verify_password(current_password, stored.get("password_hash", "")):
        logger.warning(f"Mot de passe actuel incorrect pour {user['user_id']}")
        raise bad_request_exception("Current password is incorrect")

    await db.users.update_one(
        {"user_id": user["user_id"]},
        {"$set": {"password_hash": hash_password(new_password), "updated_at": datetime.now(timezone.utc)}},
    )
    logger.info(f"Mot de passe changé pour {user['user_id']}")
