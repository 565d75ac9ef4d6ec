"""
Rental Energia - Rotas CRM
Quadro por marca, movimentação de cards e sincronização com indicações.
"""

from fastapi import APIRouter, Depends, HTTPException

from config import db
from models import CardStageUpdate
from services.crm_pipeline import CrmError, get_board, move_card, sync_cards_from_indicacoes
from services.permissions import BRANDS, get_user_brands, require_section

router = APIRouter(prefix="/crm", tags=["CRM"])


def check_brand(user: dict, brand: str) -> str:
    brand = brand.lower()
    if brand not in BRANDS:
        raise HTTPException(status_code=404, detail="Marca não encontrada")
    if brand not in get_user_brands(user):
        raise HTTPException(status_code=403, detail="Marca não permitida")
    return brand


@router.get("/{brand}/board")
async def board(brand: str, user: dict = Depends(require_section("crm"))):
    try:
        return await get_board(check_brand(user, brand))
    except CrmError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/cards/{card_id}/stage")
async def update_card_stage(card_id: str, data: CardStageUpdate, user: dict = Depends(require_section("crm"))):
    if not await db.crm_cards.find_one({"id": card_id}):
        raise HTTPException(status_code=404, detail="Card não encontrado")
    try:
        return await move_card(card_id, data.stage_id, user.get("id"))
    except CrmError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/{brand}/sync")
async def sync_brand(brand: str, user: dict = Depends(require_section("crm"))):
    try:
        return await sync_cards_from_indicacoes(check_brand(user, brand), user.get("id"))
    except CrmError as e:
        raise HTTPException(status_code=400, detail=str(e))
