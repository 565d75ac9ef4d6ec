"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Rental Energia - Máquina de estados da indicação                            ║
║                                                                              ║
║  Toda mudança de status de indicação passa por este módulo:                  ║
║  - alteração manual (admin/supervisor/funcionário)                           ║
║  - eventos do checklist de tarefas                                           ║
║  - webhook da plataforma de assinatura (Clicksign)                           ║
║                                                                              ║
║  SEM REGRESSÃO:                                                              ║
║  - APROVADA não sobrescreve AGUARDANDO_ASSINATURA/CONCLUIDA nem lead com     ║
║    contrato_enviado_em ou assinada_em                                        ║
║  - AGUARDANDO_ASSINATURA não sobrescreve CONCLUIDA nem lead assinado         ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import uuid
import logging
from typing import Optional, Dict, Any

from config import db, now_iso
from services.notifications import notify_indicacao_owner

logger = logging.getLogger("indicacao_state_machine")


# ════════════════════════════════════════════════════════════════════════════
# STATUS E EVENTOS
# ════════════════════════════════════════════════════════════════════════════

INDICACAO_STATUSES = [
    "EM_ANALISE",
    "FALTANDO_DOCUMENTACAO",
    "APROVADA",
    "AGUARDANDO_ASSINATURA",
    "REJEITADA",
    "CONCLUIDA",
]
INITIAL_STATUS = "EM_ANALISE"

CHECKLIST_EVENTS = [
    "DOCS_APPROVED",
    "DOCS_INCOMPLETE",
    "DOCS_REJECTED",
    "CONTRACT_SENT",
    "CONTRACT_SIGNED",
]
DOC_EVENTS = ["DOCS_APPROVED", "DOCS_INCOMPLETE", "DOCS_REJECTED"]

# evento -> (doc_validation_status, status)
CHECKLIST_EVENT_EFFECTS = {
    "DOCS_APPROVED": ("APPROVED", "APROVADA"),
    "DOCS_INCOMPLETE": ("INCOMPLETE", "FALTANDO_DOCUMENTACAO"),
    "DOCS_REJECTED": ("REJECTED", "REJEITADA"),
    "CONTRACT_SENT": (None, "AGUARDANDO_ASSINATURA"),
    "CONTRACT_SIGNED": (None, "CONCLUIDA"),
}

CHECKLIST_EVENT_INTERACTIONS = {
    "DOCS_APPROVED": ("DOC_APPROVAL", "Documentação marcada como APROVADA via checklist de tarefas."),
    "DOCS_INCOMPLETE": ("DOC_APPROVAL", "Documentação marcada como INCOMPLETA via checklist de tarefas."),
    "DOCS_REJECTED": ("DOC_APPROVAL", "Documentação marcada como REJEITADA via checklist de tarefas."),
    "CONTRACT_SENT": ("STATUS_CHANGE", "Contrato enviado para assinatura via checklist de tarefas."),
    "CONTRACT_SIGNED": ("STATUS_CHANGE", "Contrato marcado como assinado via checklist de tarefas."),
}

# status do Clicksign -> status da indicação
CLICKSIGN_SENT_STATUSES = ("sent", "requested")
CLICKSIGN_REJECTED_STATUSES = ("cancelled", "error")
CLICKSIGN_IGNORED_STATUSES = ("signed", "completed")


class IndicacaoTransitionError(Exception):
    """Transição de status inválida ou indicação inexistente"""
    pass


def infer_event_key(title: Optional[str]) -> Optional[str]:
    """Deduz o evento de um item de checklist pelo título."""
    if not title:
        return None
    normalized = title.lower()

    if "document" in normalized and "aprov" in normalized:
        return "DOCS_APPROVED"
    if "document" in normalized and ("incomplet" in normalized or "penden" in normalized):
        return "DOCS_INCOMPLETE"
    if "document" in normalized and ("rejeit" in normalized or "reprov" in normalized):
        return "DOCS_REJECTED"
    if "enviar contrato" in normalized or "contrato enviado" in normalized:
        return "CONTRACT_SENT"
    if "contrato assinado" in normalized:
        return "CONTRACT_SIGNED"
    return None


def blocks_regression(current: dict, next_status: Optional[str]) -> bool:
    """True quando aplicar `next_status` faria a indicação regredir."""
    status = current.get("status")
    if next_status == "APROVADA":
        return (
            status in ("AGUARDANDO_ASSINATURA", "CONCLUIDA")
            or bool(current.get("contrato_enviado_em"))
            or bool(current.get("assinada_em"))
        )
    if next_status == "AGUARDANDO_ASSINATURA":
        return status == "CONCLUIDA" or bool(current.get("assinada_em"))
    return False


def map_clicksign_status(raw_status: str) -> str:
    status = (raw_status or "").strip().lower()
    if status in CLICKSIGN_SENT_STATUSES:
        return "AGUARDANDO_ASSINATURA"
    if status in CLICKSIGN_REJECTED_STATUSES:
        return "REJEITADA"
    return "EM_ANALISE"


# ════════════════════════════════════════════════════════════════════════════
# INTERAÇÕES
# ════════════════════════════════════════════════════════════════════════════

async def record_interaction(
    indicacao_id: str,
    user_id: Optional[str],
    type: str,
    content: str,
    metadata: Optional[dict] = None,
) -> dict:
    interaction = {
        "id": str(uuid.uuid4()),
        "indicacao_id": indicacao_id,
        "user_id": user_id,
        "type": type,
        "content": content,
        "metadata": metadata or {},
        "created_at": now_iso(),
    }
    await db.indicacao_interactions.insert_one(interaction)
    interaction.pop("_id", None)
    return interaction


async def _load(indicacao_id: str) -> dict:
    indicacao = await db.indicacoes.find_one({"id": indicacao_id}, {"_id": 0})
    if not indicacao:
        raise IndicacaoTransitionError(f"Indicação {indicacao_id} não encontrada")
    return indicacao


async def _notify_status(indicacao: dict, actor: Optional[dict], new_status: str, source: str, dedupe_key: str = None):
    try:
        await notify_indicacao_owner(
            indicacao,
            actor,
            title="Status da indicação alterado",
            message=f"Status da indicação atualizado para {new_status}.",
            metadata={"source": source, "new_status": new_status},
            dedupe_key=dedupe_key,
        )
    except Exception as e:
        logger.error(f"[STATUS_CHANGE] falha ao notificar dono de {indicacao.get('id')}: {e}")


# ════════════════════════════════════════════════════════════════════════════
# TRANSIÇÕES
# ════════════════════════════════════════════════════════════════════════════

async def set_indicacao_status(indicacao_id: str, new_status: str, actor: dict) -> Dict[str, Any]:
    """
    Alteração manual de status. Qualquer status conhecido é aceito.
    """
    if new_status not in INDICACAO_STATUSES:
        raise IndicacaoTransitionError(f"Status inválido: {new_status}")

    current = await _load(indicacao_id)
    old_status = current.get("status")
    now = now_iso()

    await db.indicacoes.update_one(
        {"id": indicacao_id},
        {"$set": {"status": new_status, "updated_at": now}}
    )

    logger.info(
        f"[STATUS_CHANGE] indicacao={indicacao_id} {old_status} -> {new_status} "
        f"by={actor.get('email')}"
    )

    await record_interaction(
        indicacao_id,
        actor.get("id"),
        "STATUS_CHANGE",
        f"Status alterado de {old_status} para {new_status}.",
        {"old_status": old_status, "new_status": new_status, "source": "manual"},
    )

    if old_status != new_status:
        await _notify_status(current, actor, new_status, "manual")

    return {"id": indicacao_id, "old_status": old_status, "status": new_status}


async def apply_checklist_event(
    indicacao_id: str,
    event_key: str,
    actor: Optional[dict] = None,
    checklist_item_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Reflete um evento do checklist na indicação vinculada.
    Campos de data só são gravados quando ainda vazios.
    """
    if event_key not in CHECKLIST_EVENT_EFFECTS:
        raise IndicacaoTransitionError(f"Evento de checklist inválido: {event_key}")

    current = await _load(indicacao_id)
    now = now_iso()
    doc_status, next_status = CHECKLIST_EVENT_EFFECTS[event_key]

    updates: Dict[str, Any] = {}
    if doc_status:
        updates["doc_validation_status"] = doc_status
    if event_key in ("CONTRACT_SENT", "CONTRACT_SIGNED") and not current.get("contrato_enviado_em"):
        updates["contrato_enviado_em"] = now
    if event_key == "CONTRACT_SIGNED" and not current.get("assinada_em"):
        updates["assinada_em"] = now

    if blocks_regression(current, next_status):
        logger.info(
            f"[CHECKLIST_SYNC] indicacao={indicacao_id} event={event_key} "
            f"status {next_status} ignorado (atual={current.get('status')})"
        )
        next_status = None

    status_changed = bool(next_status) and next_status != current.get("status")
    if next_status:
        updates["status"] = next_status

    if updates:
        updates["updated_at"] = now
        await db.indicacoes.update_one({"id": indicacao_id}, {"$set": updates})

        interaction_type, content = CHECKLIST_EVENT_INTERACTIONS[event_key]
        await record_interaction(
            indicacao_id,
            (actor or {}).get("id"),
            interaction_type,
            content,
            {
                "new_status": doc_status or next_status or CHECKLIST_EVENT_EFFECTS[event_key][1],
                "source": "task_checklist",
                "checklist_item_id": checklist_item_id,
            },
        )

    if status_changed:
        await _notify_status(
            current, actor, next_status, "task_checklist",
            dedupe_key=f"task-checklist-status:{checklist_item_id}:{next_status}" if checklist_item_id else None,
        )

    logger.info(
        f"[CHECKLIST_SYNC] indicacao={indicacao_id} event={event_key} "
        f"status={updates.get('status', current.get('status'))}"
    )

    return {
        "id": indicacao_id,
        "event_key": event_key,
        "status": updates.get("status", current.get("status")),
        "status_changed": status_changed,
        "updates": {k: v for k, v in updates.items() if k != "updated_at"},
    }


async def apply_clicksign_status(indicacao_id: str, raw_status: str) -> Optional[Dict[str, Any]]:
    """
    Aplica o status vindo do webhook do Clicksign.
    Retorna None para status ignorados (assinatura controlada manualmente).
    """
    normalized = (raw_status or "").strip().lower()
    if normalized in CLICKSIGN_IGNORED_STATUSES:
        logger.info(f"[CLICKSIGN] indicacao={indicacao_id} status={normalized} ignorado")
        return None

    current = await _load(indicacao_id)
    new_status = map_clicksign_status(normalized)
    now = now_iso()

    updates = {"status": new_status, "updated_at": now}
    if normalized in CLICKSIGN_SENT_STATUSES and not current.get("contrato_enviado_em"):
        updates["contrato_enviado_em"] = now

    await db.indicacoes.update_one({"id": indicacao_id}, {"$set": updates})

    logger.info(
        f"[CLICKSIGN] indicacao={indicacao_id} {current.get('status')} -> {new_status} (raw={normalized})"
    )

    await record_interaction(
        indicacao_id,
        None,
        "STATUS_CHANGE",
        f"Status atualizado pelo Clicksign ({normalized}).",
        {"new_status": new_status, "source": "clicksign", "clicksign_status": normalized},
    )

    if new_status != current.get("status"):
        await _notify_status(current, None, new_status, "clicksign")

    return {"id": indicacao_id, "status": new_status}
