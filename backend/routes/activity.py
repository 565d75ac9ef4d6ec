"""
Rental Energia - Trilha de auditoria (somente adm_mestre)
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import Optional

from services.activity_logger import ENTITY_TYPES, ActivityLogError, get_activity_logs, get_entity_history
from services.permissions import require_roles

router = APIRouter(prefix="/activity", tags=["Activity"])

master_only = require_roles("adm_mestre")


@router.get("")
async def list_activity(
    user_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    since: Optional[str] = None,
    limit: int = 100,
    skip: int = 0,
    user: dict = Depends(master_only)
):
    try:
        return await get_activity_logs(user_id, entity_type, action, limit, skip,
                                       entity_id=entity_id, since=since)
    except ActivityLogError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/entity-types")
async def list_entity_types(user: dict = Depends(master_only)):
    return {"entity_types": [{"key": k, "label": v} for k, v in ENTITY_TYPES.items()]}


@router.get("/{entity_type}/{entity_id}")
async def entity_history(entity_type: str, entity_id: str, user: dict = Depends(master_only)):
    try:
        logs = await get_entity_history(entity_type, entity_id)
    except ActivityLogError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"logs": logs, "count": len(logs)}
