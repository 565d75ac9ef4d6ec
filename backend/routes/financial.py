"""
Rental Energia - Rotas Financeiro
Lançamentos, resumo por status e percentuais de comissão.
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import Optional

from config import db
from routes.auth import get_current_user
from models import TransactionCreate, CommissionPercentUpdate
from services.activity_logger import log_activity
from services.financial import create_transaction, get_summary, list_transactions
from services.permissions import FINANCIAL_MANAGE_ROLES, require_roles, require_section
from services.pricing_rules import (
    DEFAULT_COMMISSION_KEY,
    MANAGER_OVERRIDE_KEY,
    get_commission_percent,
    get_manager_override_percent,
    seller_commission_key,
    upsert_rule,
)

router = APIRouter(prefix="/financial", tags=["Financeiro"])

manager_user = require_roles(*FINANCIAL_MANAGE_ROLES)


def _own_scope(user: dict, beneficiary_user_id: Optional[str]) -> Optional[str]:
    """Quem não gerencia o financeiro só enxerga os próprios lançamentos."""
    if user.get("role") in FINANCIAL_MANAGE_ROLES:
        return beneficiary_user_id
    return user["id"]


@router.post("/transactions", status_code=201)
async def post_transaction(data: TransactionCreate, user: dict = Depends(manager_user)):
    if not await db.users.find_one({"id": data.beneficiary_user_id}):
        raise HTTPException(status_code=400, detail="Beneficiário não encontrado")
    transaction = await create_transaction(data.model_dump(), user.get("id"))
    await log_activity(user=user, action="create", entity_type="transaction", entity_id=transaction["id"],
                       details={"type": transaction["type"], "amount": transaction["amount"]})
    return {"success": True, "transaction": transaction}


@router.get("/transactions")
async def get_transactions(
    beneficiary_user_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 100,
    user: dict = Depends(get_current_user)
):
    rows = await list_transactions(_own_scope(user, beneficiary_user_id), status, limit)
    return {"transactions": rows, "count": len(rows)}


@router.get("/summary")
async def summary(beneficiary_user_id: Optional[str] = None, user: dict = Depends(get_current_user)):
    return await get_summary(_own_scope(user, beneficiary_user_id))


# ==================== COMISSÕES ====================

@router.get("/commission/{user_id}")
async def commission_for_user(user_id: str, user: dict = Depends(get_current_user)):
    if user_id != user["id"] and user.get("role") not in FINANCIAL_MANAGE_ROLES:
        raise HTTPException(status_code=403, detail="Acesso negado")
    return await get_commission_percent(user_id)


@router.put("/commission/{user_id}")
async def set_seller_commission(user_id: str, data: CommissionPercentUpdate,
                                user: dict = Depends(require_section("financeiro"))):
    rule = await upsert_rule(
        seller_commission_key(user_id),
        {"value": data.percent, "unit": "%", "name": f"Comissão Rental do vendedor {user_id}"},
        updated_by=user.get("id"),
    )
    return {"success": True, "rule": rule}


@router.put("/commission-default")
async def set_default_commission(data: CommissionPercentUpdate, user: dict = Depends(require_section("financeiro"))):
    rule = await upsert_rule(
        DEFAULT_COMMISSION_KEY,
        {"value": data.percent, "unit": "%", "name": "Comissão Rental padrão"},
        updated_by=user.get("id"),
    )
    return {"success": True, "rule": rule}


@router.get("/manager-override")
async def manager_override(user: dict = Depends(require_section("financeiro"))):
    return {"percent": await get_manager_override_percent()}


@router.put("/manager-override")
async def set_manager_override(data: CommissionPercentUpdate, user: dict = Depends(require_section("financeiro"))):
    rule = await upsert_rule(
        MANAGER_OVERRIDE_KEY,
        {"value": data.percent, "unit": "%", "name": "Override do gestor"},
        updated_by=user.get("id"),
    )
    return {"success": True, "rule": rule}
