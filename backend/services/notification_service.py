"""
Service notification : campagnes admin, fan-out par utilisateur, livraison
multi-canal (push SSE + email) selon les préférences, et état lu / non lu.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from config import settings
from core.exceptions import forbidden_exception, not_found_exception
from core.utils import as_utc, mask_email, utc_now
from models.common import CampaignStatus, NotificationType
from models.notification import Campaign, CampaignCreate, Notification, NotificationPage
from models.user import NotificationPreferences, NotificationPreferencesUpdate
from services import email_templates
from services.live_push import LiveConnectionRegistry
from services.mailer import Mailer

logger = logging.getLogger(__name__)

# Type de notification → préférence utilisateur qui autorise l'email
EMAIL_PREFERENCE_BY_TYPE = {
    NotificationType.ORDER.value:     "email_order_updates",
    NotificationType.PROMOTION.value: "email_promotions",
}

ORDER_STATUS_TITLE = "Order Status Update"


def _notif_id() -> str:
    return f"ntf_{uuid.uuid4().hex[:12]}"


def _campaign_id() -> str:
    return f"cmp_{uuid.uuid4().hex[:12]}"


class NotificationService:
    def __init__(
        self,
        db,
        mailer: Mailer,
        live: LiveConnectionRegistry,
        clock: Callable[[], datetime] = utc_now,
        claim_timeout_seconds: float = settings.CAMPAIGN_CLAIM_TIMEOUT_SECONDS,
    ):
        self.db = db
        self.mailer = mailer
        self.live = live
        self.claim_timeout_seconds = claim_timeout_seconds
        self._clock = clock

    # ── Campagnes ─────────────────────────────────────────────────────────────

    async def create_campaign(self, body: CampaignCreate) -> Campaign:
        """
        Enregistre la campagne en PENDING. Sans date programmée (ou date déjà
        passée), elle est dispatchée immédiatement et passe en SENT.
        """
        now = self._clock()
        campaign = {
            "campaign_id":     _campaign_id(),
            "title":           body.title,
            "content":         body.content,
            "image_url":       body.image_url,
            "type":            body.type.value,
            "target_user_ids": list(body.target_user_ids),
            "status":          CampaignStatus.PENDING.value,
            "schedule_at":     body.schedule_at,
            "sent_at":         None,
            "created_at":      now,
            "claimed_at":      None,
        }
        await self.db.sent_notifications.insert_one(campaign)
        campaign.pop("_id", None)

        if body.schedule_at is None or as_utc(body.schedule_at) <= now:
            await self.deliver_campaign(campaign, now)
        else:
            logger.info(f"Campagne {campaign['campaign_id']} programmée pour {body.schedule_at.isoformat()}")
        return Campaign(**campaign)

    def _unclaimed(self, now: datetime) -> dict:
        stale_before = now - timedelta(seconds=self.claim_timeout_seconds)
        return {"$or": [{"claimed_at": None}, {"claimed_at": {"$lt": stale_before}}]}

    async def deliver_campaign(self, campaign: dict, now: datetime) -> Optional[int]:
        """
        Réserve la campagne (PENDING non réservée → claimed_at), dispatch, puis
        bascule PENDING → SENT. Un seul appelant obtient la réservation : le
        chemin de création et le scheduler ne peuvent pas envoyer deux fois.
        Retourne None si la campagne est déjà envoyée ou en cours d'envoi.
        En cas d'échec du dispatch, la réservation est levée et la campagne
        reste PENDING pour un prochain passage.
        """
        campaign_id = campaign["campaign_id"]
        claimed = await self.db.sent_notifications.find_one_and_update(
            {"campaign_id": campaign_id, "status": CampaignStatus.PENDING.value, **self._unclaimed(now)},
            {"$set": {"claimed_at": now}},
        )
        if claimed is None:
            logger.info(f"Campagne {campaign_id} déjà envoyée ou en cours d'envoi, ignorée")
            return None

        try:
            count = await self._dispatch(campaign)
        except Exception:
            await self.db.sent_notifications.update_one(
                {"campaign_id": campaign_id, "status": CampaignStatus.PENDING.value},
                {"$set": {"claimed_at": None}},
            )
            raise

        await self.db.sent_notifications.update_one(
            {"campaign_id": campaign_id, "status": CampaignStatus.PENDING.value},
            {"$set": {"status": CampaignStatus.SENT.value, "sent_at": now, "claimed_at": None}},
        )
        campaign["status"] = CampaignStatus.SENT.value
        campaign["sent_at"] = now
        logger.info(f"Campagne {campaign_id} envoyée à {count} utilisateur(s)")
        return count

    async def find_due_campaigns(self, now: datetime) -> List[dict]:
        """PENDING, échues (schedule_at <= now) et non réservées par un autre envoi."""
        cursor = self.db.sent_notifications.find(
            {
                "status":      CampaignStatus.PENDING.value,
                "schedule_at": {"$lte": now},
                **self._unclaimed(now),
            },
            {"_id": 0, "claimed_at": 0},
        ).sort("schedule_at", 1)
        return await cursor.to_list(length=None)

    async def get_history(self) -> List[Campaign]:
        cursor = self.db.sent_notifications.find({}, {"_id": 0, "claimed_at": 0}).sort(
            [("sent_at", -1), ("created_at", -1)]
        )
        return [Campaign(**c) for c in await cursor.to_list(length=None)]

    async def send_order_status_update(self, order: dict, new_status: str) -> Campaign:
        """Campagne `order` adressée au seul propriétaire de la commande."""
        return await self.create_campaign(CampaignCreate(
            title=ORDER_STATUS_TITLE,
            content=f"Your order #{order['order_id']} is now {new_status}",
            type=NotificationType.ORDER,
            target_user_ids=[order["user_id"]],
        ))

    # ── Fan-out ───────────────────────────────────────────────────────────────

    async def _dispatch(self, campaign: dict) -> int:
        target_ids = campaign.get("target_user_ids") or []
        query = {"user_id": {"$in": target_ids}} if target_ids else {}
        users = await self.db.users.find(query, {"_id": 0, "password_hash": 0}).to_list(length=None)
        if not users:
            logger.warning(f"Campagne {campaign['campaign_id']} : aucun destinataire")
            return 0

        sent_at = self._clock()
        docs = [
            {
                "notif_id":    _notif_id(),
                "user_id":     user["user_id"],
                "title":       campaign["title"],
                "content":     campaign["content"],
                "image_url":   campaign.get("image_url"),
                "type":        campaign["type"],
                "is_read":     False,
                "sent_at":     sent_at,
                "campaign_id": campaign["campaign_id"],
            }
            for user in users
        ]
        # Persisté avant tout push : un client notifié retrouve l'entrée dans son historique
        await self.db.notifications.insert_many(docs)

        for user, doc in zip(users, docs):
            notification = Notification(**doc)
            if user.get("desktop_notifications"):
                self.live.push(user["user_id"], "notification", notification.model_dump(mode="json"))

            preference = EMAIL_PREFERENCE_BY_TYPE.get(notification.type.value)
            if preference and user.get(preference) and user.get("email"):
                await self._send_email(user, notification)
        return len(docs)

    async def _send_email(self, user: dict, notification: Notification) -> None:
        """Best-effort : un échec n'interrompt jamais le fan-out."""
        try:
            await self.mailer.send(
                user["email"],
                notification.title,
                email_templates.notification_email(notification.title, notification.content, notification.image_url),
            )
        except Exception as e:
            logger.error(f"Email de notification non envoyé à {mask_email(user['email'])} : {e}")

    # ── Boîte de réception utilisateur ────────────────────────────────────────

    async def get_notifications(self, user: dict, skip: int = 0, limit: int = 20) -> NotificationPage:
        query = {"user_id": user["user_id"]}
        cursor = self.db.notifications.find(query, {"_id": 0}).sort("sent_at", -1).skip(skip).limit(limit)
        items = await cursor.to_list(length=limit)
        return NotificationPage(
            notifications=[Notification(**n) for n in items],
            total=await self.db.notifications.count_documents(query),
            unread=await self.db.notifications.count_documents({**query, "is_read": False}),
        )

    async def _get_owned(self, notif_id: str, user: dict) -> dict:
        # Recherche par id seul : la propriété est vérifiée explicitement
        notif = await self.db.notifications.find_one({"notif_id": notif_id}, {"_id": 0})
        if not notif:
            raise not_found_exception("Notification")
        if notif["user_id"] != user["user_id"]:
            logger.warning(f"{user['user_id']} a tenté d'accéder à {notif_id} (propriétaire {notif['user_id']})")
            raise forbidden_exception("Unauthorized")
        return notif

    async def mark_as_read(self, notif_id: str, user: dict) -> None:
        await self._get_owned(notif_id, user)
        await self.db.notifications.update_one({"notif_id": notif_id}, {"$set": {"is_read": True}})

    async def mark_all_read(self, user: dict) -> int:
        result = await self.db.notifications.update_many(
            {"user_id": user["user_id"], "is_read": False},
            {"$set": {"is_read": True}},
        )
        return result.modified_count

    async def delete_notification(self, notif_id: str, user: dict) -> None:
        await self._get_owned(notif_id, user)
        await self.db.notifications.delete_one({"notif_id": notif_id})

    async def clear_all(self, user: dict) -> int:
        result = await self.db.notifications.delete_many({"user_id": user["user_id"]})
        return result.deleted_count

    # ── Préférences ───────────────────────────────────────────────────────────

    async def get_preferences(self, user: dict) -> NotificationPreferences:
        doc = await self.db.users.find_one({"user_id": user["user_id"]}, {"_id": 0})
        if not doc:
            raise not_found_exception("User")
        return NotificationPreferences(**doc)

    async def update_preferences(
        self, user: dict, prefs: NotificationPreferencesUpdate
    ) -> NotificationPreferences:
        """Fusionne uniquement les clés fournies."""
        updates = prefs.model_dump(exclude_none=True)
        if updates:
            updates["updated_at"] = self._clock()
            result = await self.db.users.update_one({"user_id": user["user_id"]}, {"$set": updates})
            if result.matched_count == 0:
                raise not_found_exception("User")
        return await self.get_preferences(user)
