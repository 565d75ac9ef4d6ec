"""
Rental Energia - Tarefas e checklists

- tarefa de cadastro criada automaticamente para indicações Rental
- checklist com prazos em dias úteis a partir da criação
- itens com evento (DOCS_*, CONTRACT_*) sincronizam a indicação vinculada
"""

import re
import uuid
import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from config import db, now_iso, today_iso
from services.business_days import add_business_days
from services.indicacao_state_machine import (
    CHECKLIST_EVENTS,
    DOC_EVENTS,
    infer_event_key,
    apply_checklist_event,
)
from services.notifications import create_notification, notify_task_comment, actor_display
from services.permissions import ADMIN_ROLES

logger = logging.getLogger("tasks")

TASK_STATUSES = ["TODO", "IN_PROGRESS", "REVIEW", "DONE", "BLOCKED"]
TASK_PRIORITIES = ["LOW", "MEDIUM", "HIGH", "URGENT"]
VISIBILITY_SCOPES = ["TEAM", "RESTRICTED"]
CHECKLIST_PHASES = ["cadastro", "energisa", "geral"]
DEPARTMENTS = ["vendas", "cadastro", "energia", "juridico", "financeiro", "ti", "diretoria", "obras", "outro"]

CADASTRO_CHECKLIST_TEMPLATE = [
    {"title": "Documentação aprovada", "days": 0, "sort_order": 1, "event_key": "DOCS_APPROVED"},
    {"title": "Concluir contrato", "days": 1, "sort_order": 2, "event_key": None},
    {"title": "Enviar contrato", "days": 1, "sort_order": 3, "event_key": "CONTRACT_SENT"},
    {"title": "Contrato assinado", "days": 4, "sort_order": 4, "event_key": "CONTRACT_SIGNED"},
]

ENERGISA_CHECKLIST_TEMPLATE = [
    {"title": "Pedido de transferência na energia feito", "days": 10, "sort_order": 1, "event_key": None},
    {"title": "Transferido", "days": 10, "sort_order": 2, "event_key": None},
]


class TaskError(Exception):
    pass


# ════════════════════════════════════════════════════════════════════════
# TAREFAS
# ════════════════════════════════════════════════════════════════════════

async def _get_task_or_raise(task_id: str) -> dict:
    task = await db.tasks.find_one({"id": task_id}, {"_id": 0})
    if not task:
        raise TaskError("Tarefa não encontrada")
    return task


async def create_task(data: dict, creator_id: str) -> dict:
    now = now_iso()
    task = {
        "id": str(uuid.uuid4()),
        "title": data["title"].strip(),
        "description": data.get("description"),
        "status": data.get("status") or "TODO",
        "priority": data.get("priority") or "MEDIUM",
        "brand": data.get("brand") or "rental",
        "department": data.get("department"),
        "assignee_id": data.get("assignee_id"),
        "indicacao_id": data.get("indicacao_id"),
        "client_name": data.get("client_name"),
        "codigo_instalacao": data.get("codigo_instalacao"),
        "due_date": data.get("due_date"),
        "visibility_scope": data.get("visibility_scope") or "TEAM",
        "creator_id": creator_id,
        "energisa_activated_at": None,
        "completed_at": None,
        "completed_by": None,
        "created_at": now,
        "updated_at": now,
    }
    await db.tasks.insert_one(task)
    task.pop("_id", None)

    for observer_id in data.get("observer_ids") or []:
        await add_observer(task["id"], observer_id)

    if task["assignee_id"] and task["assignee_id"] != creator_id:
        await create_notification(
            recipient_user_id=task["assignee_id"],
            type="TASK_SYSTEM",
            title="Nova tarefa atribuída a você",
            message=f"Tarefa: {task['title']}",
            actor_user_id=creator_id,
            task_id=task["id"],
        )

    logger.info(f"[TASK] criada {task['id']} '{task['title']}'")
    return task


async def insert_checklist_template(task_id: str, phase: str, base_date: datetime, template: List[dict]) -> List[dict]:
    """Prazos em dias úteis contados a partir de `base_date`."""
    items = []
    now = now_iso()
    for entry in template:
        items.append({
            "id": str(uuid.uuid4()),
            "task_id": task_id,
            "title": entry["title"],
            "event_key": entry.get("event_key"),
            "phase": phase,
            "sort_order": entry["sort_order"],
            "due_date": add_business_days(base_date, entry["days"]).isoformat(),
            "is_done": False,
            "completed_at": None,
            "completed_by": None,
            "created_at": now,
        })
    if items:
        await db.task_checklists.insert_many(items)
        for item in items:
            item.pop("_id", None)
    return items


async def create_rental_tasks_for_indicacao(indicacao: dict, creator_id: str) -> int:
    """
    Uma tarefa de cadastro por código de instalação da indicação
    (ou uma sem código). Não duplica tarefas já existentes.
    """
    codes = []
    if (indicacao.get("codigo_instalacao") or "").strip():
        codes.append(indicacao["codigo_instalacao"].strip())

    ucs = await db.energia_ucs.find(
        {"cliente_id": indicacao["id"]}, {"_id": 0, "codigo_instalacao": 1}
    ).to_list(100)
    for uc in ucs:
        code = (uc.get("codigo_instalacao") or "").strip()
        if code and code not in codes:
            codes.append(code)

    created = 0
    for code in codes or [None]:
        existing = await db.tasks.find_one({
            "indicacao_id": indicacao["id"],
            "brand": "rental",
            "department": "cadastro",
            "codigo_instalacao": code,
        })
        if existing:
            continue

        title = " • ".join(p for p in ["Cadastro", (indicacao.get("nome") or "").strip() or "Cliente", code] if p)
        task = await create_task({
            "title": title,
            "priority": "MEDIUM",
            "department": "cadastro",
            "indicacao_id": indicacao["id"],
            "client_name": indicacao.get("nome"),
            "codigo_instalacao": code,
            "brand": "rental",
        }, creator_id)
        await insert_checklist_template(task["id"], "cadastro", datetime.now(timezone.utc), CADASTRO_CHECKLIST_TEMPLATE)
        created += 1

    return created


def can_view_task(task: dict, user: dict, observer_ids: List[str]) -> bool:
    if task.get("visibility_scope") != "RESTRICTED":
        return True
    if user.get("role") in ADMIN_ROLES:
        return True
    return user.get("id") in ({task.get("creator_id"), task.get("assignee_id")} | set(observer_ids))


async def get_observer_ids(task_id: str) -> List[str]:
    rows = await db.task_observers.find({"task_id": task_id}, {"_id": 0, "user_id": 1}).to_list(500)
    return [r["user_id"] for r in rows]


async def list_tasks(user: dict, brands: List[str], filters: Dict[str, Any]) -> List[dict]:
    query: Dict[str, Any] = {"brand": {"$in": brands}}
    for field in ("status", "assignee_id", "indicacao_id", "department", "priority"):
        if filters.get(field):
            query[field] = filters[field]
    if filters.get("search"):
        query["title"] = {"$regex": re.escape(filters["search"]), "$options": "i"}

    tasks = await db.tasks.find(query, {"_id": 0}).sort("created_at", -1).to_list(1000)

    visible = []
    for task in tasks:
        observers = await get_observer_ids(task["id"]) if task.get("visibility_scope") == "RESTRICTED" else []
        if can_view_task(task, user, observers):
            visible.append(task)
    return visible


async def get_task_detail(task_id: str, user: dict) -> dict:
    task = await _get_task_or_raise(task_id)
    observers = await get_observer_ids(task_id)
    if not can_view_task(task, user, observers):
        raise TaskError("Tarefa não encontrada")
    task["checklists"] = await get_checklists(task_id)
    task["observers"] = observers
    return task


async def update_task(task_id: str, updates: Dict[str, Any]) -> dict:
    await _get_task_or_raise(task_id)
    updates = {k: v for k, v in updates.items() if v is not None}
    updates["updated_at"] = now_iso()
    await db.tasks.update_one({"id": task_id}, {"$set": updates})
    return await db.tasks.find_one({"id": task_id}, {"_id": 0})


async def delete_task(task_id: str):
    await _get_task_or_raise(task_id)
    await db.tasks.delete_one({"id": task_id})
    await db.task_checklists.delete_many({"task_id": task_id})
    await db.task_comments.delete_many({"task_id": task_id})
    await db.task_observers.delete_many({"task_id": task_id})


async def update_task_status(task_id: str, new_status: str, actor: dict) -> dict:
    if new_status not in TASK_STATUSES:
        raise TaskError(f"Status inválido: {new_status}")

    task = await _get_task_or_raise(task_id)
    now = now_iso()
    updates = {"status": new_status, "updated_at": now}
    if new_status == "DONE":
        updates["completed_at"] = now
        updates["completed_by"] = actor.get("id")
    else:
        updates["completed_at"] = None
        updates["completed_by"] = None

    await db.tasks.update_one({"id": task_id}, {"$set": updates})

    if task.get("status") != new_status:
        recipients = set(await get_observer_ids(task_id))
        if task.get("assignee_id"):
            recipients.add(task["assignee_id"])
        recipients.discard(actor.get("id"))

        for recipient_id in recipients:
            try:
                await create_notification(
                    recipient_user_id=recipient_id,
                    type="TASK_SYSTEM",
                    title=f"{actor_display(actor)} alterou o status de uma tarefa",
                    message=f"Tarefa: {task.get('title')} • {task.get('status')} → {new_status}",
                    actor_user_id=actor.get("id"),
                    task_id=task_id,
                    metadata={"old_status": task.get("status"), "new_status": new_status},
                )
            except Exception as e:
                logger.error(f"[TASK] falha ao notificar mudança de status de {task_id}: {e}")

    return await db.tasks.find_one({"id": task_id}, {"_id": 0})


# ════════════════════════════════════════════════════════════════════════
# CHECKLIST
# ════════════════════════════════════════════════════════════════════════

async def get_checklists(task_id: str) -> List[dict]:
    return await db.task_checklists.find({"task_id": task_id}, {"_id": 0}) \
        .sort("sort_order", 1).to_list(500)


async def add_checklist_item(
    task_id: str,
    title: str,
    event_key: Optional[str] = None,
    due_date: Optional[str] = None,
    phase: str = "geral",
) -> dict:
    await _get_task_or_raise(task_id)
    if event_key and event_key not in CHECKLIST_EVENTS:
        raise TaskError(f"Evento inválido: {event_key}")

    last = await db.task_checklists.find({"task_id": task_id}, {"_id": 0, "sort_order": 1}) \
        .sort("sort_order", -1).limit(1).to_list(1)

    item = {
        "id": str(uuid.uuid4()),
        "task_id": task_id,
        "title": title.strip(),
        "event_key": event_key,
        "phase": phase,
        "sort_order": (last[0]["sort_order"] + 1) if last else 1,
        "due_date": due_date,
        "is_done": False,
        "completed_at": None,
        "completed_by": None,
        "created_at": now_iso(),
    }
    await db.task_checklists.insert_one(item)
    item.pop("_id", None)
    return item


async def toggle_checklist_item(item_id: str, is_done: bool, actor: dict) -> Dict[str, Any]:
    """
    Marca/desmarca um item. Itens de documentação são mutuamente exclusivos
    na mesma tarefa; concluir um item com evento sincroniza a indicação.
    """
    item = await db.task_checklists.find_one({"id": item_id}, {"_id": 0})
    if not item:
        raise TaskError("Item de checklist não encontrado")
    task = await _get_task_or_raise(item["task_id"])

    event_key = item.get("event_key") or infer_event_key(item.get("title"))
    indicacao_id = task.get("indicacao_id")

    if is_done and event_key and not indicacao_id:
        raise TaskError("Vincule a tarefa a uma indicação antes de concluir este checklist.")
    if is_done and event_key and not await db.indicacoes.find_one({"id": indicacao_id}, {"_id": 0, "id": 1}):
        raise TaskError(f"Indicação {indicacao_id} não encontrada")

    now = now_iso()
    await db.task_checklists.update_one(
        {"id": item_id},
        {"$set": {
            "is_done": is_done,
            "completed_at": now if is_done else None,
            "completed_by": actor.get("id") if is_done else None,
        }}
    )

    if is_done and event_key in DOC_EVENTS:
        await db.task_checklists.update_many(
            {"task_id": item["task_id"], "event_key": {"$in": DOC_EVENTS}, "id": {"$ne": item_id}},
            {"$set": {"is_done": False, "completed_at": None, "completed_by": None}}
        )

    sync = None
    if is_done and event_key and indicacao_id:
        sync = await apply_checklist_event(indicacao_id, event_key, actor, checklist_item_id=item_id)

    return {"success": True, "item_id": item_id, "is_done": is_done, "event_key": event_key, "sync": sync}


async def delete_checklist_item(item_id: str) -> bool:
    result = await db.task_checklists.delete_one({"id": item_id})
    return result.deleted_count > 0


async def activate_energisa(task_id: str) -> Dict[str, Any]:
    task = await _get_task_or_raise(task_id)
    if task.get("energisa_activated_at"):
        return {"success": True, "already_active": True, "activated_at": task["energisa_activated_at"]}

    activated_at = datetime.now(timezone.utc)
    await db.tasks.update_one(
        {"id": task_id},
        {"$set": {"energisa_activated_at": activated_at.isoformat(), "updated_at": now_iso()}}
    )

    existing = await db.task_checklists.find_one({"task_id": task_id, "phase": "energisa"})
    if not existing:
        await insert_checklist_template(task_id, "energisa", activated_at, ENERGISA_CHECKLIST_TEMPLATE)

    return {"success": True, "already_active": False, "activated_at": activated_at.isoformat()}


# ════════════════════════════════════════════════════════════════════════
# COMENTÁRIOS E OBSERVADORES
# ════════════════════════════════════════════════════════════════════════

async def list_comments(task_id: str) -> List[dict]:
    return await db.task_comments.find({"task_id": task_id}, {"_id": 0}) \
        .sort("created_at", 1).to_list(1000)


async def add_comment(
    task_id: str,
    user: dict,
    content: str,
    parent_id: Optional[str] = None,
    mention_user_ids: Optional[List[str]] = None,
) -> dict:
    await _get_task_or_raise(task_id)
    content = (content or "").strip()
    if not content:
        raise TaskError("Comentário vazio")

    if parent_id:
        parent = await db.task_comments.find_one({"id": parent_id, "task_id": task_id})
        if not parent:
            raise TaskError("Comentário pai não encontrado")

    comment = {
        "id": str(uuid.uuid4()),
        "task_id": task_id,
        "user_id": user.get("id"),
        "parent_id": parent_id,
        "content": content,
        "mentions": mention_user_ids or [],
        "created_at": now_iso(),
    }
    await db.task_comments.insert_one(comment)
    comment.pop("_id", None)

    try:
        await notify_task_comment(
            task_id, comment["id"], user.get("id"), content,
            parent_comment_id=parent_id, mention_user_ids=mention_user_ids,
        )
    except Exception as e:
        logger.error(f"[TASK] falha ao notificar comentário {comment['id']}: {e}")

    return comment


async def add_observer(task_id: str, user_id: str) -> dict:
    await db.task_observers.update_one(
        {"task_id": task_id, "user_id": user_id},
        {"$setOnInsert": {
            "id": str(uuid.uuid4()),
            "task_id": task_id,
            "user_id": user_id,
            "created_at": now_iso(),
        }},
        upsert=True,
    )
    return await db.task_observers.find_one({"task_id": task_id, "user_id": user_id}, {"_id": 0})


async def remove_observer(task_id: str, user_id: str) -> bool:
    result = await db.task_observers.delete_one({"task_id": task_id, "user_id": user_id})
    return result.deleted_count > 0


# ════════════════════════════════════════════════════════════════════════
# LEMBRETES
# ════════════════════════════════════════════════════════════════════════

async def notify_overdue_checklists() -> int:
    """
    Avisa o responsável de cada item aberto com prazo vencido.
    Uma notificação por item por dia (dedupe_key).
    """
    today = today_iso()
    items = await db.task_checklists.find(
        {"is_done": False, "due_date": {"$ne": None, "$lt": today}}, {"_id": 0}
    ).to_list(10000)

    sent = 0
    for item in items:
        task = await db.tasks.find_one({"id": item["task_id"]}, {"_id": 0})
        if not task or not task.get("assignee_id") or task.get("status") == "DONE":
            continue
        await create_notification(
            recipient_user_id=task["assignee_id"],
            type="TASK_SYSTEM",
            title="Item de checklist atrasado",
            message=f"Tarefa: {task.get('title')} • {item['title']} (prazo {item['due_date']})",
            task_id=task["id"],
            metadata={"checklist_item_id": item["id"], "due_date": item["due_date"]},
            dedupe_key=f"checklist-overdue:{item['id']}:{today}",
        )
        sent += 1

    logger.info(f"[TASK_REMINDER] {sent} lembrete(s) de checklist atrasado")
    return sent
