"""
Rental Energia - Rotas Notificações
Cada usuário só lê e marca as próprias notificações.
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import Optional

from routes.auth import get_current_user
from services.notifications import count_unread, list_notifications, mark_all_as_read, mark_as_read

router = APIRouter(prefix="/notifications", tags=["Notificações"])


@router.get("")
async def get_notifications(
    include_read: bool = False,
    limit: Optional[int] = None,
    user: dict = Depends(get_current_user)
):
    rows = await list_notifications(user["id"], include_read=include_read, limit=limit)
    return {"notifications": rows, "count": len(rows)}


@router.get("/unread-count")
async def unread_count(user: dict = Depends(get_current_user)):
    return {"unread": await count_unread(user["id"])}


@router.post("/read-all")
async def read_all(user: dict = Depends(get_current_user)):
    return {"success": True, "updated": await mark_all_as_read(user["id"])}


@router.post("/{notification_id}/read")
async def read_one(notification_id: str, user: dict = Depends(get_current_user)):
    if not await mark_as_read(user["id"], notification_id):
        raise HTTPException(status_code=404, detail="Notificação não encontrada")
    return {"success": True}
