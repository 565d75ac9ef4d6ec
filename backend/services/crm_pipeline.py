"""
Rental Energia - Pipelines de CRM por marca
Cada indicação vira um card na primeira etapa do pipeline ativo da sua marca.
"""

import uuid
import logging
from typing import Optional, Dict, Any, List

from config import db, now_iso

logger = logging.getLogger("crm")

DEFAULT_PIPELINES = {
    "rental": ("Rental", ["Novo lead", "Documentação", "Contrato", "Concluído"]),
    "dorata": ("Dorata", ["Novo lead", "Orçamento", "Negociação", "Fechado"]),
}


class CrmError(Exception):
    pass


async def ensure_default_pipelines() -> int:
    """Cria o pipeline padrão de cada marca que ainda não tem nenhum. Retorna quantos foram criados."""
    created = 0
    for brand, (name, stage_names) in DEFAULT_PIPELINES.items():
        existing = await db.crm_pipelines.find_one({"brand": brand})
        if existing:
            continue

        pipeline_id = str(uuid.uuid4())
        now = now_iso()
        await db.crm_pipelines.insert_one({
            "id": pipeline_id,
            "brand": brand,
            "name": name,
            "is_active": True,
            "sort_order": 1,
            "created_at": now,
        })
        await db.crm_stages.insert_many([
            {
                "id": str(uuid.uuid4()),
                "pipeline_id": pipeline_id,
                "name": stage_name,
                "sort_order": index + 1,
                "created_at": now,
            }
            for index, stage_name in enumerate(stage_names)
        ])
        created += 1
        logger.info(f"[CRM] pipeline padrão criado para {brand}")
    return created


async def get_active_pipeline(brand: str) -> Optional[dict]:
    pipelines = await db.crm_pipelines.find(
        {"brand": brand, "is_active": True}, {"_id": 0}
    ).sort("sort_order", 1).limit(1).to_list(1)
    return pipelines[0] if pipelines else None


async def get_stages(pipeline_id: str) -> List[dict]:
    return await db.crm_stages.find(
        {"pipeline_id": pipeline_id}, {"_id": 0}
    ).sort("sort_order", 1).to_list(100)


async def _first_stage(brand: str):
    pipeline = await get_active_pipeline(brand)
    if not pipeline:
        raise CrmError(f"Pipeline {brand} não encontrado")
    stages = await get_stages(pipeline["id"])
    if not stages:
        raise CrmError("Etapas do pipeline não encontradas")
    return pipeline, stages[0]


def _new_card(pipeline_id: str, stage_id: str, indicacao: dict, created_by: Optional[str]) -> dict:
    now = now_iso()
    return {
        "id": str(uuid.uuid4()),
        "pipeline_id": pipeline_id,
        "stage_id": stage_id,
        "indicacao_id": indicacao["id"],
        "title": indicacao.get("nome"),
        "assignee_id": indicacao.get("user_id"),
        "created_by": created_by,
        "stage_entered_at": now,
        "created_at": now,
    }


async def create_card_for_indicacao(indicacao: dict, created_by: Optional[str] = None) -> Optional[dict]:
    """
    Cria o card da indicação na primeira etapa. Idempotente: se o card já
    existe no pipeline, nada é criado e retorna None.
    """
    pipeline, stage = await _first_stage(indicacao.get("marca") or "rental")

    existing = await db.crm_cards.find_one(
        {"pipeline_id": pipeline["id"], "indicacao_id": indicacao["id"]}
    )
    if existing:
        return None

    card = _new_card(pipeline["id"], stage["id"], indicacao, created_by)
    await db.crm_cards.insert_one(card)
    card.pop("_id", None)
    return card


async def get_board(brand: str) -> Dict[str, Any]:
    pipeline = await get_active_pipeline(brand)
    if not pipeline:
        raise CrmError(f"Pipeline {brand} não encontrado")
    stages = await get_stages(pipeline["id"])
    cards = await db.crm_cards.find(
        {"pipeline_id": pipeline["id"]}, {"_id": 0}
    ).sort("created_at", -1).to_list(5000)
    return {"pipeline": pipeline, "stages": stages, "cards": cards}


async def move_card(card_id: str, stage_id: str, changed_by: Optional[str]) -> Dict[str, Any]:
    card = await db.crm_cards.find_one({"id": card_id}, {"_id": 0})
    if not card:
        raise CrmError("Card não encontrado")

    if card.get("stage_id") == stage_id:
        return {"success": True, "card_id": card_id, "stage_id": stage_id, "changed": False}

    stage = await db.crm_stages.find_one({"id": stage_id, "pipeline_id": card["pipeline_id"]})
    if not stage:
        raise CrmError("Etapa não pertence ao pipeline do card")

    now = now_iso()
    await db.crm_cards.update_one(
        {"id": card_id},
        {"$set": {"stage_id": stage_id, "stage_entered_at": now, "updated_at": now}}
    )
    await db.crm_stage_history.insert_one({
        "id": str(uuid.uuid4()),
        "card_id": card_id,
        "from_stage_id": card.get("stage_id"),
        "to_stage_id": stage_id,
        "changed_by": changed_by,
        "created_at": now,
    })

    logger.info(f"[CRM] card {card_id} {card.get('stage_id')} -> {stage_id}")
    return {"success": True, "card_id": card_id, "stage_id": stage_id, "changed": True}


async def sync_cards_from_indicacoes(brand: str, created_by: Optional[str] = None) -> Dict[str, int]:
    """Cria os cards que faltam para as indicações da marca."""
    pipeline, stage = await _first_stage(brand)

    existing_cards = await db.crm_cards.find(
        {"pipeline_id": pipeline["id"]}, {"_id": 0, "indicacao_id": 1}
    ).to_list(100000)
    existing_ids = {c.get("indicacao_id") for c in existing_cards}

    indicacoes = await db.indicacoes.find(
        {"marca": brand}, {"_id": 0, "id": 1, "nome": 1, "user_id": 1}
    ).to_list(100000)

    new_cards = [
        _new_card(pipeline["id"], stage["id"], ind, created_by)
        for ind in indicacoes
        if ind["id"] not in existing_ids
    ]

    if new_cards:
        await db.crm_cards.insert_many(new_cards)

    logger.info(f"[CRM] sync {brand}: {len(new_cards)} criados")
    return {"created": len(new_cards), "skipped": len(indicacoes) - len(new_cards)}
