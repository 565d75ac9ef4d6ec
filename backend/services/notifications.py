"""
Rental Energia - Notificações internas
Criação, listagem e leitura de notificações, e o fan-out de comentários de tarefa.
"""

import re
import uuid
import logging
from typing import Optional, List, Dict, Set

from config import db, now_iso

logger = logging.getLogger("notifications")

NOTIFICATION_TYPES = [
    "TASK_COMMENT",
    "TASK_MENTION",
    "TASK_REPLY",
    "TASK_SYSTEM",
    "INTERNAL_CHAT_MESSAGE",
    "INDICATION_STATUS_CHANGED",
]

DEFAULT_LIST_LIMIT = 120
MAX_LIST_LIMIT = 300
PREVIEW_MAX_LENGTH = 180

_WHITESPACE = re.compile(r"\s+")


def sanitize_preview(content: str, max_length: int = PREVIEW_MAX_LENGTH) -> str:
    cleaned = _WHITESPACE.sub(" ", content or "").strip()
    if len(cleaned) <= max_length:
        return cleaned
    return f"{cleaned[:max_length - 3]}..."


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_LIST_LIMIT
    return max(1, min(int(limit), MAX_LIST_LIMIT))


def actor_display(actor: Optional[dict]) -> str:
    if not actor:
        return "Alguém"
    return (actor.get("nome") or "").strip() or actor.get("email") or "Alguém"


async def create_notification(
    recipient_user_id: str,
    type: str,
    title: str,
    message: str,
    actor_user_id: Optional[str] = None,
    task_id: Optional[str] = None,
    task_comment_id: Optional[str] = None,
    indicacao_id: Optional[str] = None,
    conversation_id: Optional[str] = None,
    metadata: Optional[dict] = None,
    dedupe_key: Optional[str] = None,
) -> Optional[dict]:
    """
    Cria uma notificação. Com `dedupe_key`, a mesma chave para o mesmo
    destinatário atualiza a notificação existente em vez de duplicar.
    """
    if not recipient_user_id:
        return None
    if type not in NOTIFICATION_TYPES:
        raise ValueError(f"Tipo de notificação inválido: {type}")

    now = now_iso()
    doc = {
        "recipient_user_id": recipient_user_id,
        "actor_user_id": actor_user_id,
        "task_id": task_id,
        "task_comment_id": task_comment_id,
        "indicacao_id": indicacao_id,
        "conversation_id": conversation_id,
        "type": type,
        "title": title,
        "message": message,
        "metadata": metadata or {},
        "is_read": False,
        "read_at": None,
        "dedupe_key": dedupe_key,
    }

    if dedupe_key:
        await db.notifications.update_one(
            {"recipient_user_id": recipient_user_id, "dedupe_key": dedupe_key},
            {
                "$set": {**doc, "updated_at": now},
                "$setOnInsert": {"id": str(uuid.uuid4()), "created_at": now},
            },
            upsert=True,
        )
        return await db.notifications.find_one(
            {"recipient_user_id": recipient_user_id, "dedupe_key": dedupe_key},
            {"_id": 0},
        )

    doc["id"] = str(uuid.uuid4())
    doc["created_at"] = now
    await db.notifications.insert_one(doc)
    doc.pop("_id", None)
    return doc


async def notify_indicacao_owner(
    indicacao: dict,
    actor: Optional[dict],
    title: str,
    message: str,
    metadata: Optional[dict] = None,
    dedupe_key: Optional[str] = None,
):
    """Avisa o dono da indicação (exceto quando ele mesmo fez a alteração)."""
    owner_id = indicacao.get("user_id")
    if not owner_id or (actor and actor.get("id") == owner_id):
        return None
    return await create_notification(
        recipient_user_id=owner_id,
        type="INDICATION_STATUS_CHANGED",
        title=title,
        message=message,
        actor_user_id=(actor or {}).get("id"),
        indicacao_id=indicacao.get("id"),
        metadata=metadata,
        dedupe_key=dedupe_key,
    )


# ════════════════════════════════════════════════════════════════════════
# LEITURA
# ════════════════════════════════════════════════════════════════════════

async def list_notifications(user_id: str, include_read: bool = False, limit: Optional[int] = None) -> List[dict]:
    query = {"recipient_user_id": user_id}
    if not include_read:
        query["is_read"] = False

    limit = clamp_limit(limit)
    return await db.notifications.find(query, {"_id": 0}) \
        .sort("created_at", -1) \
        .limit(limit) \
        .to_list(limit)


async def count_unread(user_id: str) -> int:
    return await db.notifications.count_documents(
        {"recipient_user_id": user_id, "is_read": False}
    )


async def mark_as_read(user_id: str, notification_id: str) -> bool:
    result = await db.notifications.update_one(
        {"id": notification_id, "recipient_user_id": user_id},
        {"$set": {"is_read": True, "read_at": now_iso()}},
    )
    return result.matched_count > 0


async def mark_all_as_read(user_id: str) -> int:
    result = await db.notifications.update_many(
        {"recipient_user_id": user_id, "is_read": False},
        {"$set": {"is_read": True, "read_at": now_iso()}},
    )
    return result.modified_count


# ════════════════════════════════════════════════════════════════════════
# FAN-OUT DE COMENTÁRIOS DE TAREFA
# ════════════════════════════════════════════════════════════════════════

def _build_comment_title(actor_name: str, reasons: Set[str]) -> str:
    if "MENTION" in reasons:
        return f"{actor_name} mencionou você em uma tarefa"
    if "REPLY" in reasons:
        return f"{actor_name} respondeu seu comentário"
    return f"{actor_name} comentou em uma tarefa que você acompanha"


def _comment_type(reasons: Set[str]) -> str:
    if "MENTION" in reasons:
        return "TASK_MENTION"
    if "REPLY" in reasons:
        return "TASK_REPLY"
    return "TASK_COMMENT"


async def notify_task_comment(
    task_id: str,
    comment_id: str,
    actor_user_id: str,
    content: str,
    parent_comment_id: Optional[str] = None,
    mention_user_ids: Optional[List[str]] = None,
) -> List[dict]:
    """
    Destinatários: responsável, observadores, autor do comentário pai e
    mencionados, menos quem comentou. Uma notificação por destinatário.
    """
    task = await db.tasks.find_one({"id": task_id}, {"_id": 0})
    if not task:
        logger.error(f"[NOTIFICATION] task {task_id} não encontrada para fan-out")
        return []

    mentions = list(dict.fromkeys(m.strip() for m in (mention_user_ids or []) if m and m.strip()))

    # mencionados passam a acompanhar tarefas restritas
    if task.get("visibility_scope") == "RESTRICTED":
        for mentioned_id in mentions:
            await db.task_observers.update_one(
                {"task_id": task_id, "user_id": mentioned_id},
                {"$setOnInsert": {
                    "id": str(uuid.uuid4()),
                    "task_id": task_id,
                    "user_id": mentioned_id,
                    "created_at": now_iso(),
                }},
                upsert=True,
            )

    observers = await db.task_observers.find({"task_id": task_id}, {"_id": 0, "user_id": 1}).to_list(500)

    parent_author_id = None
    if parent_comment_id:
        parent = await db.task_comments.find_one(
            {"id": parent_comment_id, "task_id": task_id}, {"_id": 0, "user_id": 1}
        )
        parent_author_id = parent.get("user_id") if parent else None

    recipients: Dict[str, Set[str]] = {}

    def collect(user_id: Optional[str], reason: str):
        if user_id:
            recipients.setdefault(user_id, set()).add(reason)

    collect(task.get("assignee_id"), "ASSIGNEE")
    for observer in observers:
        collect(observer.get("user_id"), "OBSERVER")
    collect(parent_author_id, "REPLY")
    for mentioned_id in mentions:
        collect(mentioned_id, "MENTION")

    recipients.pop(actor_user_id, None)
    if not recipients:
        return []

    actor = await db.users.find_one({"id": actor_user_id}, {"_id": 0, "nome": 1, "email": 1})
    actor_name = actor_display(actor)
    task_title = (task.get("title") or "").strip() or "Tarefa sem título"
    preview = sanitize_preview(content)
    message = f"Tarefa: {task_title} • {preview}" if preview else f"Tarefa: {task_title}"

    created = []
    for recipient_id, reasons in recipients.items():
        notification = await create_notification(
            recipient_user_id=recipient_id,
            type=_comment_type(reasons),
            title=_build_comment_title(actor_name, reasons),
            message=message,
            actor_user_id=actor_user_id,
            task_id=task_id,
            task_comment_id=comment_id,
            metadata={
                "reasons": sorted(reasons),
                "task_title": task_title,
                "parent_comment_id": parent_comment_id,
            },
            dedupe_key=f"task-comment:{comment_id}",
        )
        created.append(notification)

    logger.info(f"[NOTIFICATION] comentário {comment_id} -> {len(created)} destinatário(s)")
    return created
