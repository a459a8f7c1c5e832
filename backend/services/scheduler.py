"""
Boucle de fond : bascule les campagnes programmées arrivées à échéance.
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional

from config import settings
from core.utils import utc_now
from services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class CampaignScheduler:
    def __init__(
        self,
        notifications: NotificationService,
        interval_seconds: float = settings.SCHEDULER_INTERVAL_SECONDS,
    ):
        self.notifications = notifications
        self.interval_seconds = interval_seconds
        # Deux passages ne se chevauchent jamais
        self._run_lock = asyncio.Lock()

    async def run_once(self, now: Optional[datetime] = None) -> int:
        """
        Dispatch toutes les campagnes PENDING échues. Un échec sur une
        campagne n'empêche pas les suivantes. Retourne le nombre envoyé.
        """
        async with self._run_lock:
            now = now or utc_now()
            due = await self.notifications.find_due_campaigns(now)
            sent = 0
            for campaign in due:
                try:
                    if await self.notifications.deliver_campaign(campaign, now) is not None:
                        sent += 1
                except Exception as exc:
                    logger.error(f"Campagne {campaign.get('campaign_id')} non dispatchée : {exc}")
            if sent:
                logger.info(f"Scheduler : {sent}/{len(due)} campagne(s) programmée(s) envoyée(s)")
            return sent

    async def run_forever(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception as exc:
                logger.error(f"Erreur scheduler campagnes : {exc}")
