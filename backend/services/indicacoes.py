"""
Rental Energia - Gravação de indicações

Usado pelo cadastro manual e pela geração em lote a partir de modelos:
mesma forma do documento, mesmo histórico, mesmos ganchos (card do CRM e
tarefa de cadastro Rental).
"""

import uuid
import logging
from typing import Optional

from config import db, now_iso
from services.activity_logger import log_activity
from services.crm_pipeline import create_card_for_indicacao
from services.indicacao_state_machine import INITIAL_STATUS
from services.tasks import create_rental_tasks_for_indicacao

logger = logging.getLogger("indicacoes")


async def run_post_create_hooks(indicacao: dict, user: dict):
    """Card do CRM e tarefa de cadastro; falhas não desfazem a indicação."""
    try:
        await create_card_for_indicacao(indicacao, user.get("id"))
    except Exception as e:
        logger.error(f"[CRM] falha ao criar card da indicação {indicacao['id']}: {e}")

    if indicacao.get("marca") == "rental":
        try:
            await create_rental_tasks_for_indicacao(indicacao, user.get("id"))
        except Exception as e:
            logger.error(f"[TASK] falha ao criar tarefa de cadastro da indicação {indicacao['id']}: {e}")


async def insert_indicacao(
    fields: dict,
    marca: str,
    owner_id: str,
    user: dict,
    created_by_supervisor_id: Optional[str] = None,
    origem: Optional[str] = None,
) -> dict:
    now = now_iso()
    indicacao = dict(fields)
    indicacao.update({
        "id": str(uuid.uuid4()),
        "marca": marca,
        "status": INITIAL_STATUS,
        "user_id": owner_id,
        "created_by_supervisor_id": created_by_supervisor_id,
        "doc_validation_status": None,
        "contrato_enviado_em": None,
        "assinada_em": None,
        "compensada_em": None,
        "created_at": now,
        "updated_at": now,
    })
    if origem:
        indicacao["origem"] = origem

    await db.indicacoes.insert_one(indicacao)
    indicacao.pop("_id", None)

    logger.info(f"[INDICACAO] criada {indicacao['id']} marca={marca} dono={owner_id}")

    details = {"marca": marca, "tipo": indicacao.get("tipo")}
    if origem:
        details["origem"] = origem
    await log_activity(
        user=user,
        action="create",
        entity_type="indicacao",
        entity_id=indicacao["id"],
        entity_name=indicacao.get("nome"),
        details=details
    )

    await run_post_create_hooks(indicacao, user)
    return indicacao
