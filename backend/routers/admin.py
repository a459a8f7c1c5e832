"""
Router admin : campagnes de notifications et historique.
"""
from typing import List

from fastapi import APIRouter, Depends

from core.dependencies import get_notification_service, require_admin
from models.notification import Campaign, CampaignCreate
from services.notification_service import NotificationService

router = APIRouter()


@router.post("/notifications", response_model=Campaign, summary="Créer une campagne (immédiate ou programmée)")
async def create_campaign(
    body: CampaignCreate,
    _admin=Depends(require_admin),
    service: NotificationService = Depends(get_notification_service),
):
    return await service.create_campaign(body)


@router.get("/notifications/history", response_model=List[Campaign], summary="Historique des campagnes")
async def campaign_history(
    _admin=Depends(require_admin),
    service: NotificationService = Depends(get_notification_service),
):
    return await service.get_history()
