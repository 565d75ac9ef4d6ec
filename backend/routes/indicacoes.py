"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Rental Energia - Rotas Indicações                                           ║
║                                                                              ║
║  Multi-marca: toda leitura filtrada pelo escopo de marca da requisição       ║
║  Visibilidade: staff/suporte veem tudo, supervisor vê a equipe,              ║
║  demais papéis veem só as próprias indicações                                ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import uuid
import logging
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from typing import Optional

from config import db, now_iso
from routes.auth import get_current_user
from models import (
    IndicacaoCreate,
    IndicacaoStatusUpdate,
    IndicacaoFlagsUpdate,
    QuickLeadCreate,
)
from services.activity_logger import log_activity
from services.clicksign import ClicksignService
from services.crm_pipeline import create_card_for_indicacao
from services.formatters import format_phone
from services.indicacao_state_machine import (
    INITIAL_STATUS,
    IndicacaoTransitionError,
    record_interaction,
    set_indicacao_status,
)
from services.number_words import NumberTooLargeError, number_to_words_ptbr
from services.permissions import (
    STAFF_ROLES,
    INDICACAO_UPDATE_ROLES,
    INDICACAO_DELETE_ROLES,
    build_brand_filter,
    can_see_all_indicacoes,
    check_supervisor_assignment,
    enforce_write_brand,
    get_brand_scope_from_request,
    get_supervisor_visible_user_ids,
    require_roles,
    require_section,
)
from services.indicacao_assets import AssetPermissionError, get_asset_details, upload_assets
from services.indicacoes import insert_indicacao

logger = logging.getLogger("indicacoes")

router = APIRouter(prefix="/indicacoes", tags=["Indicações"])

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


# ==================== HELPERS ====================

async def build_visibility_query(user: dict, brands) -> dict:
    query = build_brand_filter(brands)
    if can_see_all_indicacoes(user):
        return query
    if user.get("role") == "supervisor":
        query["user_id"] = {"$in": await get_supervisor_visible_user_ids(user["id"])}
    else:
        query["user_id"] = user["id"]
    return query


async def get_visible_indicacao(indicacao_id: str, user: dict, request: Request) -> dict:
    query = await build_visibility_query(user, get_brand_scope_from_request(user, request))
    query["id"] = indicacao_id
    indicacao = await db.indicacoes.find_one(query, {"_id": 0})
    if not indicacao:
        raise HTTPException(status_code=404, detail="Indicação não encontrada")
    return indicacao


async def resolve_owner(user: dict, requested_user_id: Optional[str]) -> dict:
    """
    Dono da nova indicação. Retorna {user_id, created_by_supervisor_id}.
    """
    target_id = (requested_user_id or "").strip() or user["id"]
    if target_id == user["id"]:
        return {"user_id": target_id, "created_by_supervisor_id": None}

    if user.get("role") in STAFF_ROLES:
        target = await db.users.find_one({"id": target_id}, {"_id": 0, "id": 1})
        if not target:
            raise HTTPException(status_code=400, detail="Vendedor selecionado não encontrado.")
        return {"user_id": target_id, "created_by_supervisor_id": None}

    if user.get("role") == "supervisor":
        error = await check_supervisor_assignment(user["id"], target_id)
        if error:
            logger.warning(f"[PERMISSION_DENIED] supervisor={user.get('email')} target={target_id}: {error}")
            raise HTTPException(status_code=403, detail=error)
        return {"user_id": target_id, "created_by_supervisor_id": user["id"]}

    raise HTTPException(status_code=403, detail="Você não pode atribuir indicações a outro usuário.")


def present(indicacao: dict) -> dict:
    indicacao["telefone"] = format_phone(indicacao.get("telefone") or "")
    return indicacao


# ==================== CRIAÇÃO ====================

@router.post("", status_code=201)
async def create_indicacao(
    data: IndicacaoCreate,
    user: dict = Depends(get_current_user)
):
    marca = enforce_write_brand(user, data.marca)
    owner = await resolve_owner(user, data.user_id)

    indicacao = await insert_indicacao(
        data.model_dump(exclude={"user_id"}),
        marca=marca,
        owner_id=owner["user_id"],
        user=user,
        created_by_supervisor_id=owner["created_by_supervisor_id"],
    )
    return {"success": True, "indicacao": indicacao}


@router.post("/quick-lead", status_code=201)
async def create_quick_lead(
    data: QuickLeadCreate,
    user: dict = Depends(require_section("leads_rapidos"))
):
    marca = enforce_write_brand(user, data.marca)
    now = now_iso()
    indicacao = {
        "id": str(uuid.uuid4()),
        "tipo": "PF",
        "nome": data.nome,
        "email": None,
        "telefone": data.telefone,
        "marca": marca,
        "status": INITIAL_STATUS,
        "user_id": user["id"],
        "observacoes": data.observacoes,
        "origem": "lead_rapido",
        "created_at": now,
        "updated_at": now,
    }
    await db.indicacoes.insert_one(indicacao)
    indicacao.pop("_id", None)

    await log_activity(
        user=user,
        action="create",
        entity_type="indicacao",
        entity_id=indicacao["id"],
        entity_name=indicacao["nome"],
        details={"marca": marca, "origem": "lead_rapido"}
    )

    try:
        await create_card_for_indicacao(indicacao, user.get("id"))
    except Exception as e:
        logger.error(f"[CRM] falha ao criar card do lead rápido {indicacao['id']}: {e}")

    return {"success": True, "indicacao": indicacao}


# ==================== LEITURA ====================

@router.get("")
async def list_indicacoes(
    request: Request,
    page: int = Query(1),
    limit: int = Query(DEFAULT_PAGE_SIZE),
    status: Optional[str] = None,
    marca: Optional[str] = None,
    user: dict = Depends(get_current_user)
):
    brands = get_brand_scope_from_request(user, request)
    if marca:
        marca = marca.lower()
        if marca not in brands:
            raise HTTPException(status_code=403, detail="Marca não permitida")
        brands = [marca]

    query = await build_visibility_query(user, brands)
    if status:
        query["status"] = status

    page = max(1, page)
    limit = max(1, min(limit, MAX_PAGE_SIZE))

    total = await db.indicacoes.count_documents(query)
    rows = await db.indicacoes.find(query, {"_id": 0}) \
        .sort("created_at", -1) \
        .skip((page - 1) * limit) \
        .limit(limit) \
        .to_list(limit)

    return {
        "data": [present(r) for r in rows],
        "pagination": {"page": page, "limit": limit, "total": total},
    }


@router.get("/{indicacao_id}")
async def get_indicacao(indicacao_id: str, request: Request, user: dict = Depends(get_current_user)):
    return present(await get_visible_indicacao(indicacao_id, user, request))


@router.get("/{indicacao_id}/interactions")
async def list_interactions(indicacao_id: str, request: Request, user: dict = Depends(get_current_user)):
    await get_visible_indicacao(indicacao_id, user, request)
    interactions = await db.indicacao_interactions.find(
        {"indicacao_id": indicacao_id}, {"_id": 0}
    ).sort("created_at", -1).to_list(500)
    return {"interactions": interactions, "count": len(interactions)}


@router.get("/{indicacao_id}/valor-extenso")
async def get_valor_extenso(indicacao_id: str, request: Request, user: dict = Depends(get_current_user)):
    indicacao = await get_visible_indicacao(indicacao_id, user, request)
    valor = indicacao.get("valor")
    if valor is None:
        raise HTTPException(status_code=400, detail="Indicação sem valor informado")
    try:
        extenso = number_to_words_ptbr(valor)
    except NumberTooLargeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"valor": valor, "extenso": extenso}


# ==================== DOCUMENTOS ====================

@router.get("/{indicacao_id}/assets")
async def get_assets(indicacao_id: str, request: Request, user: dict = Depends(get_current_user)):
    await get_visible_indicacao(indicacao_id, user, request)
    return await get_asset_details(indicacao_id)


@router.post("/{indicacao_id}/assets")
async def post_assets(
    indicacao_id: str,
    request: Request,
    fatura_energia_pf: Optional[UploadFile] = File(None),
    documento_com_foto_pf: Optional[UploadFile] = File(None),
    fatura_energia_pj: Optional[UploadFile] = File(None),
    documento_com_foto_pj: Optional[UploadFile] = File(None),
    contrato_social: Optional[UploadFile] = File(None),
    cartao_cnpj: Optional[UploadFile] = File(None),
    doc_representante: Optional[UploadFile] = File(None),
    metadata: Optional[str] = Form(None),
    user: dict = Depends(get_current_user)
):
    """Envio multipart: um campo por tipo de documento, mais `metadata` em JSON"""
    indicacao = await get_visible_indicacao(indicacao_id, user, request)

    uploads = {
        "fatura_energia_pf": fatura_energia_pf,
        "documento_com_foto_pf": documento_com_foto_pf,
        "fatura_energia_pj": fatura_energia_pj,
        "documento_com_foto_pj": documento_com_foto_pj,
        "contrato_social": contrato_social,
        "cartao_cnpj": cartao_cnpj,
        "doc_representante": doc_representante,
    }
    files = {}
    for key, upload in uploads.items():
        if upload is not None:
            files[key] = (await upload.read(), upload.filename or key, upload.content_type or "application/octet-stream")

    if not files and metadata is None:
        raise HTTPException(status_code=400, detail="Nenhum arquivo ou metadado enviado")

    try:
        result = await upload_assets(indicacao, user, files, metadata)
    except AssetPermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))

    if result["uploaded_files"]:
        await log_activity(
            user=user,
            action="upload",
            entity_type="indicacao_asset",
            entity_id=indicacao_id,
            entity_name=indicacao.get("nome"),
            details={"keys": [a["file_key"] for a in result["uploaded_files"]]}
        )
    return {"success": not result["file_errors"], **result}


# ==================== ATUALIZAÇÃO ====================

@router.patch("/{indicacao_id}/status")
async def update_status(
    indicacao_id: str,
    data: IndicacaoStatusUpdate,
    request: Request,
    user: dict = Depends(require_roles(*INDICACAO_UPDATE_ROLES))
):
    await get_visible_indicacao(indicacao_id, user, request)
    try:
        result = await set_indicacao_status(indicacao_id, data.status, user)
    except IndicacaoTransitionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await log_activity(
        user=user,
        action="status_change",
        entity_type="indicacao",
        entity_id=indicacao_id,
        details={"old_status": result["old_status"], "new_status": result["status"]}
    )
    return {"success": True, **result}


@router.patch("/{indicacao_id}/flags")
async def update_flags(
    indicacao_id: str,
    data: IndicacaoFlagsUpdate,
    request: Request,
    user: dict = Depends(require_roles(*INDICACAO_UPDATE_ROLES))
):
    await get_visible_indicacao(indicacao_id, user, request)

    now = now_iso()
    updates = {}
    if data.assinada is not None:
        updates["assinada_em"] = now if data.assinada else None
    if data.compensada is not None:
        updates["compensada_em"] = now if data.compensada else None

    if not updates:
        raise HTTPException(status_code=400, detail="Nenhuma atualização enviada")

    updates["updated_at"] = now
    await db.indicacoes.update_one({"id": indicacao_id}, {"$set": updates})

    await log_activity(
        user=user,
        action="update",
        entity_type="indicacao",
        entity_id=indicacao_id,
        details={k: v for k, v in updates.items() if k != "updated_at"}
    )

    updated = await db.indicacoes.find_one({"id": indicacao_id}, {"_id": 0})
    return {"success": True, "indicacao": updated}


@router.delete("/{indicacao_id}")
async def delete_indicacao(
    indicacao_id: str,
    user: dict = Depends(require_roles(*INDICACAO_DELETE_ROLES))
):
    indicacao = await db.indicacoes.find_one({"id": indicacao_id}, {"_id": 0})
    if not indicacao:
        raise HTTPException(status_code=404, detail="Indicação não encontrada")

    await db.indicacoes.delete_one({"id": indicacao_id})
    await db.indicacao_interactions.delete_many({"indicacao_id": indicacao_id})
    await db.crm_cards.delete_many({"indicacao_id": indicacao_id})

    await log_activity(
        user=user,
        action="delete",
        entity_type="indicacao",
        entity_id=indicacao_id,
        entity_name=indicacao.get("nome")
    )
    return {"success": True}


# ==================== CONTRATO (Clicksign) ====================

@router.post("/{indicacao_id}/send-contract")
async def send_contract(
    indicacao_id: str,
    request: Request,
    user: dict = Depends(require_roles(*INDICACAO_UPDATE_ROLES))
):
    indicacao = await get_visible_indicacao(indicacao_id, user, request)
    vendedor = None
    if indicacao.get("user_id"):
        vendedor = await db.users.find_one({"id": indicacao["user_id"]}, {"_id": 0, "password": 0})

    result = await ClicksignService().create_contract(indicacao, vendedor)
    if not result.get("success"):
        raise HTTPException(status_code=502, detail=result.get("message") or "Falha ao enviar contrato")

    await record_interaction(
        indicacao_id,
        user.get("id"),
        "CONTRACT_REQUESTED",
        "Contrato enviado para a automação de assinatura.",
        {"source": "clicksign"},
    )
    await log_activity(
        user=user,
        action="send_contract",
        entity_type="indicacao",
        entity_id=indicacao_id,
        entity_name=indicacao.get("nome")
    )
    return result
