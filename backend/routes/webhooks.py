"""
Rental Energia - Webhooks de entrada
Status de assinatura vindos da automação do Clicksign.

Corpo aceito: {"indicacao_id", "status"} no topo ou dentro de "data".
"""

import json
import logging
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from services.indicacao_state_machine import (
    CLICKSIGN_IGNORED_STATUSES,
    IndicacaoTransitionError,
    apply_clicksign_status,
)

logger = logging.getLogger("webhooks")

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def extract_fields(payload: dict):
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    indicacao_id = payload.get("indicacao_id") or data.get("indicacao_id")
    status = payload.get("status") or data.get("status")
    return indicacao_id, status


@router.post("/clicksign")
async def clicksign_webhook(request: Request):
    try:
        payload = json.loads(await request.body())
    except (ValueError, UnicodeDecodeError):
        logger.warning("[CLICKSIGN] webhook com corpo inválido")
        return JSONResponse(status_code=400, content={"error": "invalid_payload"})

    if not isinstance(payload, dict):
        return JSONResponse(status_code=400, content={"error": "invalid_payload"})

    indicacao_id, status = extract_fields(payload)
    if not indicacao_id or not status:
        return JSONResponse(status_code=400, content={"error": "missing_fields"})

    if str(status).strip().lower() in CLICKSIGN_IGNORED_STATUSES:
        return {"ok": True, "ignored": True, "reason": "manual_contract_signed_control"}

    try:
        result = await apply_clicksign_status(str(indicacao_id), str(status))
    except IndicacaoTransitionError:
        logger.warning(f"[CLICKSIGN] webhook para indicação desconhecida {indicacao_id}")
        return JSONResponse(status_code=404, content={"error": "not_found"})

    return {"ok": True, "indicacao_id": result["id"], "new_status": result["status"]}
