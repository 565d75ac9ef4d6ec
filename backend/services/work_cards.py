"""
Rental Energia - Quadro de obras (Dorata)

Orçamento aceito vira card de obra, um por instalação e marca. O card
guarda só o retrato técnico do orçamento: nenhum valor financeiro entra
no quadro. A obra tem duas fases de processo: PROJETO (checklist de
validação) e EXECUCAO, liberada apenas quando o projeto é concluído.
"""

import uuid
import logging
from typing import Optional, Dict, Any, List

from config import db, now_iso
from services.permissions import get_supervisor_visible_user_ids, get_user_brands
from services.storage import delete_file, file_url, save_file
from services.tasks import create_task

logger = logging.getLogger("works")

WORK_BRAND = "dorata"

WORK_STATUSES = ["FECHADA", "PARA_INICIAR", "EM_ANDAMENTO"]
WORK_PHASES = ["PROJETO", "EXECUCAO"]
PROCESS_STATUSES = ["TODO", "IN_PROGRESS", "DONE", "BLOCKED"]
IMAGE_TYPES = ["CAPA", "PERFIL", "ANTES", "DEPOIS"]
SINGLE_IMAGE_TYPES = ("CAPA", "PERFIL")
COMMENT_TYPES = ["GERAL", "ENERGISA_RESPOSTA"]

PROJECT_TEMPLATE = [
    "Validar dados técnicos do orçamento",
    "Validar documentação técnica",
    "Registrar parecer Energisa",
    "Revisar projeto",
]
EXECUTION_TEMPLATE = [
    "Planejar execução",
    "Execução em campo",
    "Upload foto antes",
    "Upload foto depois",
    "Vistoria e encerramento técnico",
]

FINANCIAL_EXACT_KEYS = {
    "total_value", "total_a_vista", "total_financiado", "total_financing", "total_parcelado",
    "valor_total", "valor_final", "valor_financiado", "valor_entrada", "valor_parcela",
    "commission_value", "commission_percent", "comissao_valor", "comissao_percentual",
    "equipment_cost", "labor_cost", "unit_price", "sale_price", "final_price",
    "subtotal", "total_price",
}
FINANCIAL_KEY_TOKENS = (
    "valor", "price", "cost", "custo", "margin", "margem", "commission", "comissao",
    "finance", "juros", "entrada", "parcela", "balao", "lucro", "discount", "desconto",
    "payback", "roi", "receita", "imposto", "tax", "frete",
)


class WorkCardError(Exception):
    pass


class WorkCardNotFoundError(WorkCardError):
    pass


# ════════════════════════════════════════════════════════════════════════
# RETRATO TÉCNICO
# ════════════════════════════════════════════════════════════════════════

def is_financial_key(key: str) -> bool:
    normalized = (key or "").strip().lower()
    if normalized in FINANCIAL_EXACT_KEYS:
        return True
    return any(token in normalized for token in FINANCIAL_KEY_TOKENS)


def strip_financial_data(value: Any) -> Any:
    """Remove recursivamente as chaves com cara de dinheiro."""
    if isinstance(value, list):
        return [strip_financial_data(v) for v in value]
    if isinstance(value, dict):
        return {
            k: strip_financial_data(v)
            for k, v in value.items()
            if not is_financial_key(k)
        }
    return value


def build_technical_snapshot(proposal: dict, indicacao: Optional[dict]) -> Dict[str, Any]:
    indicacao = indicacao or {}
    calculation = proposal.get("calculation") or {}
    output_dim = (calculation.get("output") or {}).get("dimensioning") or {}
    input_data = calculation.get("input") or {}
    structure = input_data.get("structure") or {}

    snapshot = {
        "meta": {
            "proposal_id": proposal.get("id"),
            "proposal_created_at": proposal.get("created_at"),
            "proposal_updated_at": proposal.get("updated_at"),
        },
        "installation": {
            "codigo_instalacao": indicacao.get("codigo_instalacao"),
            "codigo_cliente": indicacao.get("codigo_cliente_energia"),
            "unidade_consumidora": indicacao.get("unidade_consumidora"),
        },
        "customer": {
            "indicacao_id": proposal.get("indicacao_id"),
            "nome": indicacao.get("nome") or proposal.get("client_name"),
        },
        "dimensioning": {
            "total_power_kwp": output_dim.get("kWp"),
            "output_dimensioning": output_dim,
            "inverter": output_dim.get("inversor"),
            "input_dimensioning": input_data.get("dimensioning"),
            "structure_quantities": {
                "qtd_placas_solo": structure.get("qtd_placas_solo"),
                "qtd_placas_telhado": structure.get("qtd_placas_telhado"),
            },
        },
    }
    return strip_financial_data(snapshot)


def installation_key(indicacao: Optional[dict], proposal: dict) -> str:
    code = ((indicacao or {}).get("codigo_instalacao") or "").strip()
    if code:
        return code
    return f"indicacao:{proposal.get('indicacao_id') or proposal['id']}"


# ════════════════════════════════════════════════════════════════════════
# CARD A PARTIR DO ORÇAMENTO
# ════════════════════════════════════════════════════════════════════════

async def _ensure_template(work_id: str, phase: str, titles: List[str]) -> int:
    """Cria os itens padrão da fase que ainda não existem (por título)."""
    existing = await db.work_process_items.find(
        {"work_id": work_id, "phase": phase}, {"_id": 0, "title": 1, "sort_order": 1}
    ).to_list(1000)
    existing_titles = {i["title"] for i in existing}
    next_order = max([i.get("sort_order", 0) for i in existing] or [0])

    now = now_iso()
    docs = []
    for title in titles:
        if title in existing_titles:
            continue
        next_order += 1
        docs.append(_new_process_item(work_id, phase, title, None, None, next_order, now))
    if docs:
        await db.work_process_items.insert_many(docs)
    return len(docs)


def _new_process_item(work_id, phase, title, description, due_date, sort_order, now) -> dict:
    return {
        "id": str(uuid.uuid4()),
        "work_id": work_id,
        "phase": phase,
        "title": title,
        "description": description,
        "status": "TODO",
        "sort_order": sort_order,
        "due_date": due_date,
        "started_at": None,
        "completed_at": None,
        "completed_by": None,
        "linked_task_id": None,
        "created_at": now,
        "updated_at": now,
    }


async def _link_proposal(work_id: str, proposal_id: str):
    """O orçamento mais recente aceito vira o principal do card."""
    await db.work_card_proposals.update_many(
        {"work_id": work_id, "proposal_id": {"$ne": proposal_id}},
        {"$set": {"is_primary": False}}
    )
    await db.work_card_proposals.update_one(
        {"work_id": work_id, "proposal_id": proposal_id},
        {
            "$set": {"is_primary": True},
            "$setOnInsert": {"id": str(uuid.uuid4()), "created_at": now_iso()},
        },
        upsert=True
    )


async def upsert_work_card_from_proposal(proposal_id: str, actor_id: Optional[str] = None) -> Optional[dict]:
    """
    Cria ou atualiza o card da obra de um orçamento aceito.
    Retorna None quando o orçamento não gera obra (não aceito ou outra marca).
    """
    proposal = await db.proposals.find_one({"id": proposal_id}, {"_id": 0})
    if not proposal or proposal.get("status") != "accepted":
        return None

    indicacao = None
    if proposal.get("indicacao_id"):
        indicacao = await db.indicacoes.find_one({"id": proposal["indicacao_id"]}, {"_id": 0})

    brand = (indicacao or {}).get("marca") or proposal.get("brand") or WORK_BRAND
    if brand != WORK_BRAND:
        return None

    key = installation_key(indicacao, proposal)
    title = ((indicacao or {}).get("nome") or proposal.get("client_name") or "").strip() or "Obra sem nome"
    snapshot = build_technical_snapshot(proposal, indicacao)
    now = now_iso()

    card = await db.work_cards.find_one({"brand": brand, "installation_key": key}, {"_id": 0})
    if card:
        updates = {
            "title": title,
            "indicacao_id": proposal.get("indicacao_id") or card.get("indicacao_id"),
            "primary_proposal_id": proposal_id,
            "technical_snapshot": snapshot,
            "updated_at": now,
        }
        await db.work_cards.update_one({"id": card["id"]}, {"$set": updates})
        card.update(updates)
        logger.info(f"[WORKS] card {card['id']} atualizado pelo orçamento {proposal_id}")
    else:
        card = {
            "id": str(uuid.uuid4()),
            "brand": brand,
            "installation_key": key,
            "codigo_instalacao": (indicacao or {}).get("codigo_instalacao"),
            "indicacao_id": proposal.get("indicacao_id"),
            "title": title,
            "status": "FECHADA",
            "primary_proposal_id": proposal_id,
            "technical_snapshot": snapshot,
            "projeto_liberado_at": None,
            "projeto_liberado_by": None,
            "completed_at": None,
            "tasks_integration_enabled": False,
            "latest_energisa_comment_id": None,
            "created_by": actor_id,
            "created_at": now,
            "updated_at": now,
        }
        await db.work_cards.insert_one(card)
        card.pop("_id", None)
        logger.info(f"[WORKS] card {card['id']} criado pelo orçamento {proposal_id} ({key})")

    await _ensure_template(card["id"], "PROJETO", PROJECT_TEMPLATE)
    await _link_proposal(card["id"], proposal_id)
    return card


async def backfill_from_accepted_proposals(actor_id: Optional[str] = None) -> Dict[str, int]:
    proposals = await db.proposals.find({"status": "accepted"}, {"_id": 0, "id": 1}).to_list(100000)
    processed = 0
    skipped = 0
    for proposal in proposals:
        card = await upsert_work_card_from_proposal(proposal["id"], actor_id)
        if card:
            processed += 1
        else:
            skipped += 1
    logger.info(f"[WORKS] backfill: {processed} processados, {skipped} ignorados")
    return {"processed": processed, "skipped": skipped}


# ════════════════════════════════════════════════════════════════════════
# LEITURA COM ESCOPO
# ════════════════════════════════════════════════════════════════════════

async def _supervisor_indicacao_ids(user: dict) -> Optional[List[str]]:
    """None quando o usuário não é supervisor (sem restrição extra)."""
    if user.get("role") != "supervisor":
        return None
    visible = await get_supervisor_visible_user_ids(user["id"])
    rows = await db.indicacoes.find({"user_id": {"$in": visible}}, {"_id": 0, "id": 1}).to_list(100000)
    return [r["id"] for r in rows]


async def get_card_for_user(work_id: str, user: dict) -> dict:
    card = await db.work_cards.find_one({"id": work_id}, {"_id": 0})
    if not card or card.get("brand") not in get_user_brands(user):
        raise WorkCardNotFoundError("Obra não encontrada")
    scoped = await _supervisor_indicacao_ids(user)
    if scoped is not None and card.get("indicacao_id") not in scoped:
        raise WorkCardNotFoundError("Obra não encontrada")
    return card


async def _progress(work_id: str) -> Dict[str, Dict[str, int]]:
    items = await db.work_process_items.find(
        {"work_id": work_id}, {"_id": 0, "phase": 1, "status": 1}
    ).to_list(1000)
    progress = {phase: {"total": 0, "done": 0} for phase in WORK_PHASES}
    for item in items:
        bucket = progress.setdefault(item["phase"], {"total": 0, "done": 0})
        bucket["total"] += 1
        if item["status"] == "DONE":
            bucket["done"] += 1
    return progress


async def _cover_image_url(work_id: str) -> Optional[str]:
    covers = await db.work_images.find(
        {"work_id": work_id, "image_type": "CAPA"}, {"_id": 0, "file_id": 1}
    ).sort("created_at", -1).limit(1).to_list(1)
    return file_url(covers[0]["file_id"]) if covers else None


async def list_work_cards(
    user: dict,
    brand: str = WORK_BRAND,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> List[dict]:
    if brand not in get_user_brands(user):
        return []

    query: Dict[str, Any] = {"brand": brand}
    if status:
        query["status"] = status

    scoped = await _supervisor_indicacao_ids(user)
    if scoped is not None:
        if not scoped:
            return []
        query["indicacao_id"] = {"$in": scoped}

    cards = await db.work_cards.find(query, {"_id": 0}).sort("updated_at", -1).to_list(1000)

    term = (search or "").strip().lower()
    if term:
        cards = [
            c for c in cards
            if term in (c.get("title") or "").lower()
            or term in (c.get("codigo_instalacao") or "").lower()
            or term in (c.get("installation_key") or "").lower()
        ]

    for card in cards:
        card["progress"] = await _progress(card["id"])
        card["cover_image_url"] = await _cover_image_url(card["id"])
    return cards


async def get_work_card_detail(work_id: str, user: dict) -> dict:
    card = await get_card_for_user(work_id, user)
    card["progress"] = await _progress(work_id)
    card["cover_image_url"] = await _cover_image_url(work_id)
    card["latest_energisa_comment"] = None
    if card.get("latest_energisa_comment_id"):
        card["latest_energisa_comment"] = await db.work_comments.find_one(
            {"id": card["latest_energisa_comment_id"]}, {"_id": 0}
        )
    return card


async def list_card_proposals(work_id: str) -> List[dict]:
    links = await db.work_card_proposals.find({"work_id": work_id}, {"_id": 0}) \
        .sort("created_at", -1).to_list(100)
    for link in links:
        proposal = await db.proposals.find_one(
            {"id": link["proposal_id"]}, {"_id": 0, "status": 1, "created_at": 1, "accepted_at": 1}
        )
        link["proposal"] = proposal
    return links


# ════════════════════════════════════════════════════════════════════════
# PROCESSOS
# ════════════════════════════════════════════════════════════════════════

async def list_process_items(work_id: str) -> List[dict]:
    return await db.work_process_items.find({"work_id": work_id}, {"_id": 0}) \
        .sort([("phase", 1), ("sort_order", 1)]).to_list(1000)


async def get_process_item(item_id: str) -> dict:
    item = await db.work_process_items.find_one({"id": item_id}, {"_id": 0})
    if not item:
        raise WorkCardNotFoundError("Processo não encontrado")
    return item


def _require_release(card: dict, phase: str):
    if phase == "EXECUCAO" and not card.get("projeto_liberado_at"):
        raise WorkCardError("Libere o projeto antes de mexer na execução")


async def add_process_item(card: dict, actor_id: str, phase: str, title: str,
                           description: Optional[str] = None, due_date: Optional[str] = None) -> dict:
    title = (title or "").strip()
    if not title:
        raise WorkCardError("Título do processo é obrigatório")
    _require_release(card, phase)

    last = await db.work_process_items.find(
        {"work_id": card["id"], "phase": phase}, {"_id": 0, "sort_order": 1}
    ).sort("sort_order", -1).limit(1).to_list(1)
    sort_order = (last[0].get("sort_order", 0) if last else 0) + 1

    item = _new_process_item(card["id"], phase, title, description, due_date, sort_order, now_iso())
    await db.work_process_items.insert_one(item)
    item.pop("_id", None)

    if phase == "EXECUCAO":
        await refresh_work_status(card["id"])
        if card.get("tasks_integration_enabled"):
            await ensure_execution_tasks(card["id"], actor_id)
    return item


async def update_process_item(item_id: str, updates: dict) -> dict:
    updates = {k: v for k, v in updates.items() if v is not None}
    if "title" in updates:
        updates["title"] = updates["title"].strip()
        if not updates["title"]:
            raise WorkCardError("Título do processo é obrigatório")
    if not updates:
        raise WorkCardError("Nada para atualizar")

    item = await get_process_item(item_id)
    updates["updated_at"] = now_iso()
    await db.work_process_items.update_one({"id": item_id}, {"$set": updates})
    item.update(updates)
    return item


async def set_process_item_status(card: dict, item_id: str, status: str, actor_id: str) -> dict:
    if status not in PROCESS_STATUSES:
        raise WorkCardError(f"Status de processo inválido: {status}")
    item = await get_process_item(item_id)
    _require_release(card, item["phase"])

    now = now_iso()
    updates: Dict[str, Any] = {"status": status, "updated_at": now}
    if status == "IN_PROGRESS" and not item.get("started_at"):
        updates["started_at"] = now
    if status == "DONE":
        updates["completed_at"] = now
        updates["completed_by"] = actor_id
        if not item.get("started_at"):
            updates["started_at"] = now
    else:
        updates["completed_at"] = None
        updates["completed_by"] = None

    await db.work_process_items.update_one({"id": item_id}, {"$set": updates})
    item.update(updates)

    if item.get("linked_task_id"):
        await db.tasks.update_one(
            {"id": item["linked_task_id"]},
            {"$set": {"status": status, "completed_at": updates["completed_at"], "updated_at": now}}
        )

    await refresh_work_status(card["id"])
    return item


async def delete_process_item(card: dict, item_id: str) -> bool:
    result = await db.work_process_items.delete_one({"id": item_id, "work_id": card["id"]})
    if not result.deleted_count:
        raise WorkCardNotFoundError("Processo não encontrado")
    await refresh_work_status(card["id"])
    return True


async def refresh_work_status(work_id: str) -> Optional[str]:
    """
    Status do card derivado da execução: tudo DONE fecha a obra, algum item
    iniciado deixa em andamento. Sem itens de execução o status não muda.
    """
    items = await db.work_process_items.find(
        {"work_id": work_id, "phase": "EXECUCAO"}, {"_id": 0, "status": 1}
    ).to_list(1000)
    if not items:
        return None

    statuses = [i["status"] for i in items]
    now = now_iso()
    updates: Dict[str, Any] = {"updated_at": now}
    if all(s == "DONE" for s in statuses):
        updates["status"] = "FECHADA"
        updates["completed_at"] = now
    elif any(s in ("IN_PROGRESS", "DONE") for s in statuses):
        updates["status"] = "EM_ANDAMENTO"
        updates["completed_at"] = None
    else:
        updates["status"] = "PARA_INICIAR"
        updates["completed_at"] = None

    await db.work_cards.update_one({"id": work_id}, {"$set": updates})
    return updates["status"]


async def release_project(card: dict, actor_id: str) -> dict:
    items = await db.work_process_items.find(
        {"work_id": card["id"], "phase": "PROJETO"}, {"_id": 0, "status": 1}
    ).to_list(1000)
    if not items:
        raise WorkCardError("A obra não tem processos de projeto")
    pending = [i for i in items if i["status"] != "DONE"]
    if pending:
        raise WorkCardError(f"Conclua os processos de projeto antes de liberar ({len(pending)} pendentes)")

    now = now_iso()
    updates = {
        "status": "PARA_INICIAR",
        "projeto_liberado_at": now,
        "projeto_liberado_by": actor_id,
        "completed_at": None,
        "updated_at": now,
    }
    await db.work_cards.update_one({"id": card["id"]}, {"$set": updates})
    card.update(updates)

    await _ensure_template(card["id"], "EXECUCAO", EXECUTION_TEMPLATE)
    if card.get("tasks_integration_enabled"):
        await ensure_execution_tasks(card["id"], actor_id)

    logger.info(f"[WORKS] projeto da obra {card['id']} liberado por {actor_id}")
    return card


# ════════════════════════════════════════════════════════════════════════
# INTEGRAÇÃO COM TAREFAS
# ════════════════════════════════════════════════════════════════════════

def process_marker(item_id: str) -> str:
    return f"[obra_process:{item_id}]"


async def ensure_execution_tasks(work_id: str, actor_id: Optional[str]) -> int:
    """Uma tarefa por item de execução ainda sem tarefa vinculada."""
    card = await db.work_cards.find_one({"id": work_id}, {"_id": 0})
    items = await db.work_process_items.find(
        {"work_id": work_id, "phase": "EXECUCAO", "linked_task_id": None}, {"_id": 0}
    ).sort("sort_order", 1).to_list(1000)

    created = 0
    for item in items:
        task = await create_task({
            "title": f"[Obra] {card['title']} - {item['title']}",
            "description": f"{item.get('description') or ''}\n{process_marker(item['id'])}".strip(),
            "status": item["status"],
            "brand": card["brand"],
            "department": "obras",
            "indicacao_id": card.get("indicacao_id"),
            "client_name": card["title"],
            "codigo_instalacao": card.get("codigo_instalacao"),
            "due_date": item.get("due_date"),
        }, actor_id or "system")
        await db.work_process_items.update_one({"id": item["id"]}, {"$set": {"linked_task_id": task["id"]}})
        created += 1
    return created


async def set_tasks_integration(card: dict, enabled: bool, actor_id: str) -> Dict[str, Any]:
    await db.work_cards.update_one(
        {"id": card["id"]},
        {"$set": {"tasks_integration_enabled": enabled, "updated_at": now_iso()}}
    )
    created = 0
    if enabled:
        created = await ensure_execution_tasks(card["id"], actor_id)
    return {"enabled": enabled, "tasks_created": created}


# ════════════════════════════════════════════════════════════════════════
# COMENTÁRIOS E IMAGENS
# ════════════════════════════════════════════════════════════════════════

async def add_comment(card: dict, user: dict, content: str,
                      comment_type: str = "GERAL", phase: Optional[str] = None) -> dict:
    content = (content or "").strip()
    if not content:
        raise WorkCardError("Comentário vazio")
    if comment_type not in COMMENT_TYPES:
        raise WorkCardError(f"Tipo de comentário inválido: {comment_type}")

    comment = {
        "id": str(uuid.uuid4()),
        "work_id": card["id"],
        "user_id": user["id"],
        "comment_type": comment_type,
        "phase": phase,
        "content": content,
        "created_at": now_iso(),
    }
    await db.work_comments.insert_one(comment)
    comment.pop("_id", None)

    if comment_type == "ENERGISA_RESPOSTA":
        await db.work_cards.update_one(
            {"id": card["id"]},
            {"$set": {"latest_energisa_comment_id": comment["id"], "updated_at": comment["created_at"]}}
        )
    return comment


async def list_comments(work_id: str) -> List[dict]:
    comments = await db.work_comments.find({"work_id": work_id}, {"_id": 0}) \
        .sort("created_at", -1).to_list(500)
    user_ids = list({c["user_id"] for c in comments})
    users = await db.users.find(
        {"id": {"$in": user_ids}}, {"_id": 0, "id": 1, "nome": 1, "email": 1}
    ).to_list(len(user_ids) or 1)
    by_id = {u["id"]: u for u in users}
    for comment in comments:
        author = by_id.get(comment["user_id"], {})
        comment["user_nome"] = author.get("nome")
        comment["user_email"] = author.get("email")
    return comments


async def _remove_image(image: dict):
    await db.work_images.delete_one({"id": image["id"]})
    await delete_file(image["file_id"])


async def add_image(card: dict, user: dict, image_type: str, content: bytes, filename: str,
                    mime_type: str, caption: Optional[str] = None, sort_order: int = 0) -> dict:
    if image_type not in IMAGE_TYPES:
        raise WorkCardError(f"Tipo de imagem inválido: {image_type}")

    if image_type in SINGLE_IMAGE_TYPES:
        previous = await db.work_images.find(
            {"work_id": card["id"], "image_type": image_type}, {"_id": 0}
        ).to_list(100)
        for image in previous:
            await _remove_image(image)

    stored = await save_file(content, filename, mime_type, folder="obras", owner_id=user["id"])
    image = {
        "id": str(uuid.uuid4()),
        "work_id": card["id"],
        "image_type": image_type,
        "file_id": stored["id"],
        "caption": caption,
        "sort_order": sort_order,
        "uploaded_by": user["id"],
        "created_at": now_iso(),
    }
    await db.work_images.insert_one(image)
    image.pop("_id", None)
    image["url"] = file_url(stored["id"])
    return image


async def list_images(work_id: str) -> List[dict]:
    images = await db.work_images.find({"work_id": work_id}, {"_id": 0}) \
        .sort([("image_type", 1), ("sort_order", 1), ("created_at", 1)]).to_list(500)
    for image in images:
        image["url"] = file_url(image["file_id"])
    return images


async def delete_image(card: dict, image_id: str) -> bool:
    image = await db.work_images.find_one({"id": image_id, "work_id": card["id"]}, {"_id": 0})
    if not image:
        raise WorkCardNotFoundError("Imagem não encontrada")
    await _remove_image(image)
    return True
