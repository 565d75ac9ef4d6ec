"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Rental Energia - Rotas Energia                                              ║
║                                                                              ║
║  Usinas, UCs, produção mensal, alocações de clientes e faturas               ║
║  Seção "energia" em tudo, exceto o portal do investidor                      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import uuid
import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional

from config import db, now_iso
from models import (
    UsinaCreate,
    UsinaUpdate,
    UcCreate,
    UcUpdate,
    ProducaoCreate,
    AlocacaoCreate,
    FaturaCreate,
    FaturaStatusUpdate,
)
from services.activity_logger import log_activity
from services.energy import (
    AllocationError,
    check_percent_allocation,
    get_allocated_percent,
    get_investor_summary,
    get_usina_balance,
    investor_usina_filter,
)
from services.permissions import require_section

logger = logging.getLogger("energy")

router = APIRouter(prefix="/energy", tags=["Energia"])

energia_user = require_section("energia")


async def _get_or_404(collection, doc_id: str, label: str) -> dict:
    doc = await collection.find_one({"id": doc_id}, {"_id": 0})
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} não encontrada")
    return doc


async def _ensure_cliente(cliente_id: str):
    if not await db.indicacoes.find_one({"id": cliente_id}):
        raise HTTPException(status_code=400, detail="Cliente (indicação) não encontrado")


# ==================== USINAS ====================

@router.get("/usinas")
async def list_usinas(status: Optional[str] = None, user: dict = Depends(energia_user)):
    query = {"status": status} if status else {}
    usinas = await db.usinas.find(query, {"_id": 0}).sort("nome", 1).to_list(1000)
    return {"usinas": usinas, "count": len(usinas)}


@router.post("/usinas", status_code=201)
async def create_usina(data: UsinaCreate, user: dict = Depends(energia_user)):
    now = now_iso()
    usina = {"id": str(uuid.uuid4()), **data.model_dump(), "created_at": now, "updated_at": now}
    usina["nome"] = usina["nome"].strip()
    await db.usinas.insert_one(usina)
    usina.pop("_id", None)

    await log_activity(user=user, action="create", entity_type="usina",
                       entity_id=usina["id"], entity_name=usina["nome"])
    return {"success": True, "usina": usina}


@router.get("/usinas/{usina_id}")
async def get_usina(usina_id: str, user: dict = Depends(energia_user)):
    usina = await _get_or_404(db.usinas, usina_id, "Usina")
    usina["percentual_alocado"] = await get_allocated_percent(usina_id)
    return usina


@router.put("/usinas/{usina_id}")
async def update_usina(usina_id: str, data: UsinaUpdate, user: dict = Depends(energia_user)):
    await _get_or_404(db.usinas, usina_id, "Usina")
    updates = data.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="Nenhuma atualização enviada")

    if "percentual_alocavel" in updates:
        allocated = await get_allocated_percent(usina_id)
        if updates["percentual_alocavel"] < allocated:
            raise HTTPException(
                status_code=400,
                detail=f"Percentual alocável menor que o já alocado ({allocated:g}%)"
            )

    updates["updated_at"] = now_iso()
    await db.usinas.update_one({"id": usina_id}, {"$set": updates})
    await log_activity(user=user, action="update", entity_type="usina", entity_id=usina_id,
                       details={k: v for k, v in updates.items() if k != "updated_at"})
    return {"success": True, "usina": await db.usinas.find_one({"id": usina_id}, {"_id": 0})}


@router.delete("/usinas/{usina_id}")
async def delete_usina(usina_id: str, user: dict = Depends(energia_user)):
    usina = await _get_or_404(db.usinas, usina_id, "Usina")
    if await db.alocacoes_clientes.count_documents({"usina_id": usina_id, "status": "ATIVO"}):
        raise HTTPException(status_code=400, detail="Usina possui alocações ativas")
    await db.usinas.delete_one({"id": usina_id})
    await log_activity(user=user, action="delete", entity_type="usina",
                       entity_id=usina_id, entity_name=usina.get("nome"))
    return {"success": True}


@router.get("/usinas/{usina_id}/balance")
async def usina_balance(usina_id: str, mes: str = Query(..., pattern=r"^\d{4}-\d{2}$"),
                        user: dict = Depends(energia_user)):
    await _get_or_404(db.usinas, usina_id, "Usina")
    return await get_usina_balance(usina_id, mes)


# ==================== UNIDADES CONSUMIDORAS ====================

@router.get("/ucs")
async def list_ucs(cliente_id: Optional[str] = None, user: dict = Depends(energia_user)):
    query = {"cliente_id": cliente_id} if cliente_id else {}
    ucs = await db.energia_ucs.find(query, {"_id": 0}).sort("created_at", -1).to_list(5000)
    return {"ucs": ucs, "count": len(ucs)}


@router.post("/ucs", status_code=201)
async def create_uc(data: UcCreate, user: dict = Depends(energia_user)):
    await _ensure_cliente(data.cliente_id)
    now = now_iso()
    uc = {"id": str(uuid.uuid4()), **data.model_dump(), "created_at": now, "updated_at": now}
    await db.energia_ucs.insert_one(uc)
    uc.pop("_id", None)
    await log_activity(user=user, action="create", entity_type="uc",
                       entity_id=uc["id"], entity_name=uc["codigo_uc_fatura"])
    return {"success": True, "uc": uc}


@router.put("/ucs/{uc_id}")
async def update_uc(uc_id: str, data: UcUpdate, user: dict = Depends(energia_user)):
    await _get_or_404(db.energia_ucs, uc_id, "UC")
    updates = data.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="Nenhuma atualização enviada")
    updates["updated_at"] = now_iso()
    await db.energia_ucs.update_one({"id": uc_id}, {"$set": updates})
    return {"success": True, "uc": await db.energia_ucs.find_one({"id": uc_id}, {"_id": 0})}


# ==================== PRODUÇÃO ====================

@router.get("/producao")
async def list_producao(usina_id: Optional[str] = None, user: dict = Depends(energia_user)):
    query = {"usina_id": usina_id} if usina_id else {}
    rows = await db.historico_producao.find(query, {"_id": 0}).sort("mes", -1).to_list(5000)
    return {"producao": rows, "count": len(rows)}


@router.post("/producao")
async def upsert_producao(data: ProducaoCreate, user: dict = Depends(energia_user)):
    """Um registro por usina+mês; reenviar substitui o valor."""
    await _get_or_404(db.usinas, data.usina_id, "Usina")
    now = now_iso()
    await db.historico_producao.update_one(
        {"usina_id": data.usina_id, "mes": data.mes},
        {
            "$set": {"kwh_gerado": data.kwh_gerado, "updated_at": now, "updated_by": user.get("id")},
            "$setOnInsert": {"id": str(uuid.uuid4()), "created_at": now},
        },
        upsert=True,
    )
    producao = await db.historico_producao.find_one(
        {"usina_id": data.usina_id, "mes": data.mes}, {"_id": 0}
    )
    return {"success": True, "producao": producao}


# ==================== ALOCAÇÕES ====================

@router.get("/alocacoes")
async def list_alocacoes(
    usina_id: Optional[str] = None,
    cliente_id: Optional[str] = None,
    status: Optional[str] = None,
    user: dict = Depends(energia_user)
):
    query = {}
    if usina_id:
        query["usina_id"] = usina_id
    if cliente_id:
        query["cliente_id"] = cliente_id
    if status:
        query["status"] = status
    rows = await db.alocacoes_clientes.find(query, {"_id": 0}).sort("created_at", -1).to_list(5000)
    return {"alocacoes": rows, "count": len(rows)}


@router.post("/alocacoes", status_code=201)
async def create_alocacao(data: AlocacaoCreate, user: dict = Depends(energia_user)):
    usina = await _get_or_404(db.usinas, data.usina_id, "Usina")
    await _ensure_cliente(data.cliente_id)

    if data.tipo_alocacao == "percentual":
        try:
            await check_percent_allocation(usina, data.valor)
        except AllocationError as e:
            logger.warning(f"[ALLOCATION] usina={usina['id']} recusada: {e}")
            raise HTTPException(status_code=400, detail=str(e))

    now = now_iso()
    alocacao = {
        "id": str(uuid.uuid4()),
        "usina_id": data.usina_id,
        "cliente_id": data.cliente_id,
        "tipo_alocacao": data.tipo_alocacao,
        "percentual_alocado": data.valor if data.tipo_alocacao == "percentual" else None,
        "quantidade_kwh_alocado": data.valor if data.tipo_alocacao == "fixo" else None,
        "data_inicio": data.data_inicio,
        "data_fim": None,
        "status": "ATIVO",
        "created_by": user.get("id"),
        "created_at": now,
        "updated_at": now,
    }
    await db.alocacoes_clientes.insert_one(alocacao)
    alocacao.pop("_id", None)

    await log_activity(user=user, action="create", entity_type="alocacao", entity_id=alocacao["id"],
                       details={"usina_id": data.usina_id, "tipo": data.tipo_alocacao, "valor": data.valor})
    return {"success": True, "alocacao": alocacao}


@router.patch("/alocacoes/{alocacao_id}/encerrar")
async def close_alocacao(alocacao_id: str, user: dict = Depends(energia_user)):
    await _get_or_404(db.alocacoes_clientes, alocacao_id, "Alocação")
    now = now_iso()
    await db.alocacoes_clientes.update_one(
        {"id": alocacao_id},
        {"$set": {"status": "ENCERRADO", "data_fim": now[:10], "updated_at": now}}
    )
    return {"success": True, "id": alocacao_id, "status": "ENCERRADO"}


# ==================== FATURAS ====================

@router.get("/faturas")
async def list_faturas(
    usina_id: Optional[str] = None,
    cliente_id: Optional[str] = None,
    mes: Optional[str] = None,
    status_pagamento: Optional[str] = None,
    user: dict = Depends(energia_user)
):
    query = {}
    for field, value in (("usina_id", usina_id), ("cliente_id", cliente_id),
                         ("mes", mes), ("status_pagamento", status_pagamento)):
        if value:
            query[field] = value
    rows = await db.faturas_conciliacao.find(query, {"_id": 0}).sort("mes", -1).to_list(5000)
    return {"faturas": rows, "count": len(rows)}


@router.post("/faturas", status_code=201)
async def create_fatura(data: FaturaCreate, user: dict = Depends(energia_user)):
    await _get_or_404(db.usinas, data.usina_id, "Usina")
    await _ensure_cliente(data.cliente_id)
    now = now_iso()
    fatura = {"id": str(uuid.uuid4()), **data.model_dump(), "created_at": now, "updated_at": now}
    await db.faturas_conciliacao.insert_one(fatura)
    fatura.pop("_id", None)
    await log_activity(user=user, action="create", entity_type="fatura", entity_id=fatura["id"],
                       details={"mes": data.mes, "valor_fatura": data.valor_fatura})
    return {"success": True, "fatura": fatura}


@router.patch("/faturas/{fatura_id}/status")
async def update_fatura_status(fatura_id: str, data: FaturaStatusUpdate, user: dict = Depends(energia_user)):
    await _get_or_404(db.faturas_conciliacao, fatura_id, "Fatura")
    await db.faturas_conciliacao.update_one(
        {"id": fatura_id},
        {"$set": {"status_pagamento": data.status_pagamento, "updated_at": now_iso()}}
    )
    return {"success": True, "id": fatura_id, "status_pagamento": data.status_pagamento}


# ==================== PORTAL DO INVESTIDOR ====================

@router.get("/investor/summary")
async def investor_summary(user: dict = Depends(require_section("portal_investidor"))):
    return await get_investor_summary(user)


@router.get("/investor/usinas")
async def investor_usinas(user: dict = Depends(require_section("portal_investidor"))):
    usinas = await db.usinas.find(investor_usina_filter(user), {"_id": 0}).sort("nome", 1).to_list(1000)
    return {"usinas": usinas, "count": len(usinas)}
