"""
Rental Energia - Trilha de auditoria

Cada registro guarda quem fez (snapshot do usuário com papel), o quê
(ação) e sobre qual entidade do sistema. Tipos de entidade fora de
ENTITY_TYPES são recusados para não espalhar nomes soltos pelo histórico.
"""

import uuid
import logging
from typing import Optional, Dict, Any

from config import db, now_iso

logger = logging.getLogger("activity")

ENTITY_TYPES: Dict[str, str] = {
    "user": "Usuário",
    "indicacao": "Indicação",
    "indicacao_template": "Modelo de indicação",
    "indicacao_asset": "Documento da indicação",
    "contract": "Contrato",
    "usina": "Usina",
    "uc": "Unidade consumidora",
    "alocacao": "Alocação",
    "fatura": "Fatura",
    "product": "Produto",
    "proposal": "Orçamento",
    "pricing_rule": "Regra de preço",
    "transaction": "Lançamento financeiro",
    "task": "Tarefa",
    "work_card": "Obra",
    "system": "Sistema",
}

SYSTEM_ACTOR = {"id": "system", "email": "system", "nome": "Sistema", "role": None}

MAX_PAGE = 500


class ActivityLogError(ValueError):
    pass


def normalize_entity_type(entity_type: Optional[str]) -> str:
    value = (entity_type or "").strip().lower()
    if value not in ENTITY_TYPES:
        raise ActivityLogError(f"Tipo de entidade inválido no histórico: {entity_type}")
    return value


def actor_snapshot(user: Optional[dict]) -> Dict[str, Any]:
    if not user:
        return dict(SYSTEM_ACTOR)
    return {
        "id": user.get("id", "system"),
        "email": user.get("email"),
        "nome": user.get("nome"),
        "role": user.get("role"),
    }


async def log_activity(
    user: Optional[dict],
    action: str,
    entity_type: str,
    entity_id: str = None,
    entity_name: str = None,
    details: dict = None,
    ip_address: str = None
) -> Dict[str, Any]:
    entity_type = normalize_entity_type(entity_type)
    actor = actor_snapshot(user)

    entry = {
        "id": str(uuid.uuid4()),
        "user_id": actor["id"],
        "user_email": actor["email"],
        "user_nome": actor["nome"],
        "user_role": actor["role"],
        "action": action,
        "entity_type": entity_type,
        "entity_label": ENTITY_TYPES[entity_type],
        "entity_id": entity_id,
        "entity_name": entity_name,
        "details": details or {},
        "ip_address": ip_address,
        "created_at": now_iso(),
    }
    await db.activity_logs.insert_one(entry)
    entry.pop("_id", None)

    logger.debug(f"[ACTIVITY] {actor['id']} {action} {entity_type}:{entity_id}")
    return entry


async def get_activity_logs(
    user_id: str = None,
    entity_type: str = None,
    action: str = None,
    limit: int = 100,
    skip: int = 0,
    entity_id: str = None,
    since: str = None,
) -> Dict[str, Any]:
    """Histórico mais recente primeiro; `since` é um ISO-8601 inclusivo."""
    query: Dict[str, Any] = {}
    if user_id:
        query["user_id"] = user_id
    if entity_type:
        query["entity_type"] = normalize_entity_type(entity_type)
    if entity_id:
        query["entity_id"] = entity_id
    if action:
        query["action"] = action
    if since:
        query["created_at"] = {"$gte": since}

    limit = max(1, min(limit, MAX_PAGE))
    skip = max(0, skip)

    logs = await db.activity_logs.find(query, {"_id": 0}) \
        .sort("created_at", -1) \
        .skip(skip) \
        .limit(limit) \
        .to_list(limit)
    total = await db.activity_logs.count_documents(query)

    return {"logs": logs, "total": total, "limit": limit, "skip": skip}


async def get_entity_history(entity_type: str, entity_id: str) -> list:
    """Linha do tempo de uma entidade, do mais antigo para o mais novo."""
    return await db.activity_logs.find(
        {"entity_type": normalize_entity_type(entity_type), "entity_id": entity_id}, {"_id": 0}
    ).sort("created_at", 1).to_list(1000)
