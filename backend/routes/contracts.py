"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Rental Energia - Rotas Contratos                                            ║
║                                                                              ║
║  DRAFT -> APPROVED                                                           ║
║  Cálculo da locação, rascunho HTML versionado, aprovação gera DOCX           ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import uuid
import logging
from datetime import datetime, timezone, timedelta
from fastapi import APIRouter, Depends, HTTPException

from config import db, now_iso
from models import (
    ContractCalculateRequest,
    ContractCreate,
    ContractDraftUpdate,
    ContractApprove,
)
from services.activity_logger import log_activity
from services.clicksign import ClicksignService
from services.contracts import (
    APPROVAL_VALIDITY_DAYS,
    build_client_data,
    calculate_contract_values,
    generate_contract_docx,
    render_contract_html,
)
from services.number_words import NumberTooLargeError, number_to_words_ptbr
from services.permissions import ADMIN_ROLES, require_roles, require_section
from services.storage import DOCX_MIME, file_url, save_file

logger = logging.getLogger("contracts")

router = APIRouter(prefix="/contracts", tags=["Contratos"])


def _units_payload(units) -> list:
    return [{"name": u.name, "consumptions": u.consumptions} for u in units]


async def _get_contract_or_404(contract_id: str) -> dict:
    contract = await db.contracts.find_one({"id": contract_id}, {"_id": 0})
    if not contract:
        raise HTTPException(status_code=404, detail="Contrato não encontrado")
    return contract


@router.post("/calculate")
async def calculate(data: ContractCalculateRequest, user: dict = Depends(require_section("contratos"))):
    calculation = calculate_contract_values(
        _units_payload(data.units), data.price_kwh, data.discount_percent / 100
    )
    try:
        calculation["valor_locacao_extenso"] = number_to_words_ptbr(calculation["valor_locacao_total"])
    except NumberTooLargeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return calculation


@router.post("/clicksign/test")
async def clicksign_test(user: dict = Depends(require_roles(*ADMIN_ROLES))):
    return await ClicksignService().test_connection()


@router.post("", status_code=201)
async def create_contract(data: ContractCreate, user: dict = Depends(require_section("contratos"))):
    calculation = calculate_contract_values(
        _units_payload(data.units), data.price_kwh, data.discount_percent / 100
    )
    client_data = build_client_data(data.client_name, data.client_doc, data.client_contact, data.client_address)
    try:
        html_content = render_contract_html(calculation, client_data)
    except NumberTooLargeError as e:
        raise HTTPException(status_code=400, detail=str(e))

    now = now_iso()
    contract = {
        "id": str(uuid.uuid4()),
        "type": data.type,
        "brand": data.brand,
        "status": "DRAFT",
        "indicacao_id": data.indicacao_id,
        "client_data": client_data,
        "calculation_data": calculation,
        "html_content": html_content,
        "version": 1,
        "docx_url": None,
        "approved_by": None,
        "approved_at": None,
        "expires_at": None,
        "created_by": user.get("id"),
        "created_at": now,
        "updated_at": now,
    }
    await db.contracts.insert_one(contract)
    contract.pop("_id", None)

    units = [
        {
            "id": str(uuid.uuid4()),
            "contract_id": contract["id"],
            "unit_name": u["unit_name"],
            "consumptions_kwh": u["consumptions_kwh"],
            "consumption_avg": u["consumption_avg_unit"],
            "created_at": now,
        }
        for u in calculation["units"]
    ]
    if units:
        await db.contract_units.insert_many(units)
        for unit in units:
            unit.pop("_id", None)

    await log_activity(
        user=user,
        action="create",
        entity_type="contract",
        entity_id=contract["id"],
        entity_name=client_data["name"],
        details={"type": data.type, "valor_locacao_total": calculation["valor_locacao_total"]}
    )

    contract["units"] = units
    return {"success": True, "contract": contract}


@router.get("")
async def list_contracts(
    status: str = None,
    brand: str = None,
    user: dict = Depends(require_section("contratos"))
):
    query = {}
    if status:
        query["status"] = status
    if brand:
        query["brand"] = brand.upper()
    contracts = await db.contracts.find(query, {"_id": 0, "html_content": 0}) \
        .sort("created_at", -1).to_list(500)
    return {"contracts": contracts, "count": len(contracts)}


@router.get("/{contract_id}")
async def get_contract(contract_id: str, user: dict = Depends(require_section("contratos"))):
    contract = await _get_contract_or_404(contract_id)
    contract["units"] = await db.contract_units.find(
        {"contract_id": contract_id}, {"_id": 0}
    ).to_list(100)
    return contract


@router.put("/{contract_id}/draft")
async def save_draft(contract_id: str, data: ContractDraftUpdate, user: dict = Depends(require_section("contratos"))):
    contract = await _get_contract_or_404(contract_id)
    if contract.get("status") != "DRAFT":
        raise HTTPException(status_code=400, detail="Apenas contratos em rascunho podem ser editados")

    version = int(contract.get("version") or 1) + 1
    await db.contracts.update_one(
        {"id": contract_id},
        {"$set": {"html_content": data.html_content, "version": version, "updated_at": now_iso()}}
    )
    return {"success": True, "id": contract_id, "version": version}


@router.post("/{contract_id}/approve")
async def approve_contract(contract_id: str, data: ContractApprove, user: dict = Depends(require_section("contratos"))):
    contract = await _get_contract_or_404(contract_id)
    if contract.get("status") != "DRAFT":
        raise HTTPException(status_code=400, detail="Contrato já aprovado")

    html_content = data.html_content or contract.get("html_content") or ""
    content = generate_contract_docx(contract, html_content)
    file_doc = await save_file(
        content,
        f"contrato_{contract['type'].lower()}_{contract_id[:8]}.docx",
        DOCX_MIME,
        folder="contratos",
        owner_id=user.get("id"),
    )

    approved_at = datetime.now(timezone.utc)
    updates = {
        "status": "APPROVED",
        "html_content": html_content,
        "docx_file_id": file_doc["id"],
        "docx_url": file_url(file_doc["id"]),
        "approved_by": user.get("id"),
        "approved_at": approved_at.isoformat(),
        "expires_at": (approved_at + timedelta(days=APPROVAL_VALIDITY_DAYS)).isoformat(),
        "updated_at": approved_at.isoformat(),
    }
    await db.contracts.update_one({"id": contract_id}, {"$set": updates})

    logger.info(f"[CONTRACT] {contract_id} aprovado por {user.get('email')}")
    await log_activity(
        user=user,
        action="approve",
        entity_type="contract",
        entity_id=contract_id,
        entity_name=(contract.get("client_data") or {}).get("name")
    )

    return {"success": True, "id": contract_id, **{k: v for k, v in updates.items() if k != "html_content"}}
