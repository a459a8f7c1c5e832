from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, field_validator

from core.utils import as_utc
from models.common import NotificationType, CampaignStatus


class Notification(BaseModel):
    notif_id:    str
    user_id:     str
    title:       str
    content:     str
    image_url:   Optional[str] = None
    type:        NotificationType = NotificationType.SYSTEM
    is_read:     bool = False
    sent_at:     datetime
    # Campagne d'origine
    campaign_id: Optional[str] = None


class NotificationPage(BaseModel):
    notifications: List[Notification]
    total:         int
    unread:        int


class Campaign(BaseModel):
    """Une campagne = un enregistrement `sent_notifications` (historique admin)."""
    campaign_id:     str
    title:           str
    content:         str
    image_url:       Optional[str] = None
    type:            NotificationType = NotificationType.SYSTEM
    target_user_ids: List[str] = []     # vide = tous les utilisateurs
    status:          CampaignStatus = CampaignStatus.PENDING
    schedule_at:     Optional[datetime] = None   # None = envoi immédiat
    sent_at:         Optional[datetime] = None   # None tant que non dispatchée
    created_at:      datetime


class CampaignCreate(BaseModel):
    title:           str
    content:         str
    image_url:       Optional[str] = None
    type:            NotificationType = NotificationType.SYSTEM
    target_user_ids: List[str] = []
    schedule_at:     Optional[datetime] = None

    @field_validator("title", "content")
    @classmethod
    def must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Must not be blank")
        return v

    @field_validator("schedule_at")
    @classmethod
    def schedule_in_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # Une date sans fuseau est interprétée en UTC
        return as_utc(v)
