"""
Router notifications : boîte de réception, préférences et flux SSE temps réel.
"""
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from core.dependencies import (
    get_current_user,
    get_live_connections,
    get_notification_service,
    get_stream_user,
)
from models.notification import NotificationPage
from models.user import NotificationPreferences, NotificationPreferencesUpdate
from services.live_push import LiveConnectionRegistry
from services.notification_service import NotificationService

router = APIRouter()


@router.get("", response_model=NotificationPage, summary="Mes notifications (récentes d'abord)")
async def list_notifications(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    return await service.get_notifications(current_user, skip=skip, limit=limit)


@router.get("/sse", summary="Flux SSE des notifications")
async def stream(
    current_user: dict = Depends(get_stream_user),
    live: LiveConnectionRegistry = Depends(get_live_connections),
):
    channel = live.subscribe(current_user["user_id"])
    return StreamingResponse(
        channel.stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/mark-all-read", summary="Tout marquer comme lu")
async def mark_all_read(
    current_user: dict = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    updated = await service.mark_all_read(current_user)
    return {"updated": updated}


@router.delete("/clear-all", summary="Supprimer toutes mes notifications")
async def clear_all(
    current_user: dict = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    deleted = await service.clear_all(current_user)
    return {"deleted": deleted}


@router.get("/preferences", response_model=NotificationPreferences, summary="Mes préférences")
async def get_preferences(
    current_user: dict = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    return await service.get_preferences(current_user)


@router.put("/preferences", response_model=NotificationPreferences, summary="Mettre à jour mes préférences")
async def update_preferences(
    body: NotificationPreferencesUpdate,
    current_user: dict = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    return await service.update_preferences(current_user, body)


@router.put("/{notif_id}/read", summary="Marquer comme lue")
async def mark_as_read(
    notif_id: str,
    current_user: dict = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    await service.mark_as_read(notif_id, current_user)
    return {"notif_id": notif_id, "is_read": True}


@router.delete("/{notif_id}", summary="Supprimer une notification")
async def delete_notification(
    notif_id: str,
    current_user: dict = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    await service.delete_notification(notif_id, current_user)
    return {"notif_id": notif_id, "deleted": True}
