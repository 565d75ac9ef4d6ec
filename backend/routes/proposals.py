"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Rental Energia - Rotas Orçamentos e Regras de Preço                         ║
║                                                                              ║
║  Calculadora simples (regras de preço) e completa (financiamento)            ║
║  Orçamento aceito conta como venda no estoque                                ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import uuid
import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from typing import Optional

from config import db, now_iso
from models import (
    PricingRuleUpdate,
    SimpleProposalRequest,
    ProposalCalculateRequest,
    ProposalCreate,
    ProposalStatusUpdate,
)
from services.activity_logger import log_activity
from services.permissions import (
    FINANCIAL_MANAGE_ROLES,
    PROPOSAL_VIEW_ROLES,
    build_brand_filter,
    enforce_write_brand,
    get_brand_scope_from_request,
    require_roles,
    require_section,
)
from services.pricing_rules import get_commission_percent, list_rules, upsert_rule, get_rule
from services.proposal_calculator import calculate_proposal, calculate_proposal_value
from services.work_cards import upsert_work_card_from_proposal

logger = logging.getLogger("proposals")

router = APIRouter(tags=["Orçamentos"])

orcamentos_user = require_section("orcamentos")

SELLER_ROLES = ("vendedor_externo", "vendedor_interno")


# ==================== REGRAS DE PREÇO ====================

@router.get("/pricing-rules")
async def get_pricing_rules(active_only: bool = False, user: dict = Depends(require_section("precos"))):
    rules = await list_rules(active_only)
    return {"rules": rules, "count": len(rules)}


@router.put("/pricing-rules/{key}")
async def put_pricing_rule(key: str, data: PricingRuleUpdate, user: dict = Depends(require_section("precos"))):
    rule = await upsert_rule(key, data.model_dump(), updated_by=user.get("id"))
    await log_activity(user=user, action="update", entity_type="pricing_rule",
                       entity_name=key, details={"value": rule.get("value")})
    return {"success": True, "rule": rule}


@router.patch("/pricing-rules/{key}")
async def patch_pricing_rule(key: str, data: PricingRuleUpdate, user: dict = Depends(require_section("precos"))):
    if not await get_rule(key):
        raise HTTPException(status_code=404, detail="Regra não encontrada")
    rule = await upsert_rule(key, data.model_dump(), updated_by=user.get("id"))
    return {"success": True, "rule": rule}


# ==================== CALCULADORAS ====================

@router.post("/proposals/calculate-simple")
async def calculate_simple(data: SimpleProposalRequest, user: dict = Depends(orcamentos_user)):
    rules = await list_rules(active_only=True)
    return calculate_proposal_value(
        data.panels.model_dump(),
        [i.model_dump() for i in data.inverters],
        [i.model_dump() for i in data.structures],
        [i.model_dump() for i in data.others],
        rules,
    )


@router.post("/proposals/calculate")
async def calculate(data: ProposalCalculateRequest, user: dict = Depends(orcamentos_user)):
    seller_id = user.get("id")
    if data.seller_id and user.get("role") in FINANCIAL_MANAGE_ROLES:
        seller_id = data.seller_id
    commission = await get_commission_percent(seller_id)
    payload = data.model_dump(exclude={"seller_id"})
    return calculate_proposal(payload, commission_percent=commission["percent"])


# ==================== ORÇAMENTOS ====================

@router.post("/proposals", status_code=201)
async def create_proposal(data: ProposalCreate, user: dict = Depends(orcamentos_user)):
    brand = enforce_write_brand(user, data.brand)

    if data.indicacao_id and not await db.indicacoes.find_one({"id": data.indicacao_id}):
        raise HTTPException(status_code=400, detail="Indicação não encontrada")

    items_total = sum(i.unit_price * i.quantity for i in data.items)
    now = now_iso()
    proposal_id = str(uuid.uuid4())

    items = []
    for item in data.items:
        product = await db.products.find_one({"id": item.product_id}, {"_id": 0, "name": 1})
        if not product:
            raise HTTPException(status_code=400, detail=f"Produto não encontrado: {item.product_id}")
        items.append({
            "id": str(uuid.uuid4()),
            "proposal_id": proposal_id,
            "product_id": item.product_id,
            "product_name": product.get("name"),
            "quantity": item.quantity,
            "unit_price": item.unit_price,
            "total_price": item.unit_price * item.quantity,
            "created_at": now,
        })

    proposal = {
        "id": proposal_id,
        "client_name": data.client_name.strip(),
        "brand": brand,
        "indicacao_id": data.indicacao_id,
        "seller_id": user.get("id"),
        "status": "draft",
        "total_value": data.total_value if data.total_value is not None else items_total,
        "calculation": data.calculation,
        "observacoes": data.observacoes,
        "accepted_at": None,
        "created_at": now,
        "updated_at": now,
    }
    await db.proposals.insert_one(proposal)
    proposal.pop("_id", None)

    if items:
        await db.proposal_items.insert_many(items)
        for item in items:
            item.pop("_id", None)

    await log_activity(user=user, action="create", entity_type="proposal", entity_id=proposal["id"],
                       entity_name=proposal["client_name"], details={"total_value": proposal["total_value"]})

    proposal["items"] = items
    return {"success": True, "proposal": proposal}


@router.get("/proposals")
async def list_proposals(
    request: Request,
    status: Optional[str] = None,
    user: dict = Depends(orcamentos_user)
):
    query = build_brand_filter(get_brand_scope_from_request(user, request), field="brand")
    if status:
        query["status"] = status
    if user.get("role") in SELLER_ROLES:
        query["seller_id"] = user["id"]
    proposals = await db.proposals.find(query, {"_id": 0}).sort("created_at", -1).to_list(1000)
    return {"proposals": proposals, "count": len(proposals)}


@router.patch("/proposals/{proposal_id}/status")
async def update_proposal_status(
    proposal_id: str,
    data: ProposalStatusUpdate,
    request: Request,
    user: dict = Depends(orcamentos_user)
):
    query = build_brand_filter(get_brand_scope_from_request(user, request), field="brand")
    query["id"] = proposal_id
    if user.get("role") in SELLER_ROLES:
        query["seller_id"] = user["id"]
    proposal = await db.proposals.find_one(query, {"_id": 0})
    if not proposal:
        raise HTTPException(status_code=404, detail="Orçamento não encontrado")

    now = now_iso()
    updates = {"status": data.status, "updated_at": now}
    if data.status == "accepted" and not proposal.get("accepted_at"):
        updates["accepted_at"] = now
    await db.proposals.update_one({"id": proposal_id}, {"$set": updates})

    logger.info(f"[PROPOSAL] {proposal_id} {proposal.get('status')} -> {data.status}")
    await log_activity(user=user, action="status_change", entity_type="proposal", entity_id=proposal_id,
                       details={"old_status": proposal.get("status"), "new_status": data.status})

    if data.status == "accepted":
        try:
            await upsert_work_card_from_proposal(proposal_id, user.get("id"))
        except Exception as e:
            logger.error(f"[WORKS] falha ao gerar obra do orçamento {proposal_id}: {e}")
    return {"success": True, "id": proposal_id, "status": data.status}


@router.get("/proposals/by-indicacao/{indicacao_id}")
async def proposals_by_indicacao(indicacao_id: str, user: dict = Depends(require_roles(*PROPOSAL_VIEW_ROLES))):
    proposals = await db.proposals.find({"indicacao_id": indicacao_id}, {"_id": 0}) \
        .sort("created_at", -1).to_list(200)
    for proposal in proposals:
        proposal["items"] = await db.proposal_items.find(
            {"proposal_id": proposal["id"]}, {"_id": 0}
        ).to_list(500)
    return {"proposals": proposals, "count": len(proposals)}
