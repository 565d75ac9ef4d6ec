"""
Rental Energia - Chat interno (mensagens diretas entre usuários)

Conversa direta é única por par de usuários (par ordenado user_a < user_b).
Cada participante guarda unread_count e last_read_at.
"""

import re
import uuid
import logging
from typing import Optional, List, Dict, Any

from config import db, now_iso
from services.notifications import create_notification, sanitize_preview, actor_display
from services.permissions import has_internal_chat_access, is_user_active

logger = logging.getLogger("internal_chat")

MAX_CONVERSATIONS = 120
MAX_MESSAGE_LENGTH = 2000
DEFAULT_MESSAGES_LIMIT = 60
MAX_MESSAGES_LIMIT = 200
CHAT_PREVIEW_LENGTH = 160
CHAT_USERS_LIMIT = 30


class ChatAccessError(Exception):
    """Usuário sem acesso ao chat ou à conversa"""
    pass


class ChatValidationError(Exception):
    pass


def sanitize_message_body(body: Optional[str]) -> Optional[str]:
    cleaned = (body or "").strip()
    if not cleaned or len(cleaned) > MAX_MESSAGE_LENGTH:
        return None
    return cleaned


def ensure_chat_access(user: dict):
    if not has_internal_chat_access(user):
        logger.warning(f"[PERMISSION_DENIED] user={user.get('email')} chat")
        raise ChatAccessError("Você não tem acesso ao chat interno.")


async def _ensure_participant(conversation_id: str, user_id: str) -> dict:
    participant = await db.chat_participants.find_one(
        {"conversation_id": conversation_id, "user_id": user_id}, {"_id": 0}
    )
    if not participant:
        raise ChatAccessError("Você não tem acesso a esta conversa.")
    return participant


async def get_or_create_direct_conversation(user: dict, other_user_id: str) -> dict:
    ensure_chat_access(user)
    other_user_id = (other_user_id or "").strip()
    if not other_user_id:
        raise ChatValidationError("Selecione um usuário válido.")
    if other_user_id == user["id"]:
        raise ChatValidationError("Não é possível abrir conversa com você mesmo.")

    other = await db.users.find_one({"id": other_user_id}, {"_id": 0, "password": 0})
    if not other:
        raise ChatValidationError("Usuário de destino não encontrado.")
    if not is_user_active(other) or not has_internal_chat_access(other):
        raise ChatValidationError("Usuário de destino sem acesso ao chat interno.")

    user_a, user_b = sorted([user["id"], other_user_id])
    existing = await db.chat_conversations.find_one(
        {"kind": "direct", "direct_user_a_id": user_a, "direct_user_b_id": user_b}, {"_id": 0}
    )
    if existing:
        return existing

    now = now_iso()
    conversation = {
        "id": str(uuid.uuid4()),
        "kind": "direct",
        "direct_user_a_id": user_a,
        "direct_user_b_id": user_b,
        "last_message_at": now,
        "created_at": now,
        "updated_at": now,
    }
    await db.chat_conversations.insert_one(conversation)
    conversation.pop("_id", None)

    await db.chat_participants.insert_many([
        {
            "id": str(uuid.uuid4()),
            "conversation_id": conversation["id"],
            "user_id": participant_id,
            "unread_count": 0,
            "last_read_at": None,
            "joined_at": now,
        }
        for participant_id in (user_a, user_b)
    ])

    logger.info(f"[CHAT] conversa {conversation['id']} criada entre {user_a} e {user_b}")
    return conversation


async def send_message(user: dict, conversation_id: str, body: str) -> dict:
    ensure_chat_access(user)
    sanitized = sanitize_message_body(body)
    if not sanitized:
        raise ChatValidationError(f"A mensagem precisa ter entre 1 e {MAX_MESSAGE_LENGTH} caracteres.")

    await _ensure_participant(conversation_id, user["id"])
    conversation = await db.chat_conversations.find_one({"id": conversation_id}, {"_id": 0})
    if not conversation:
        raise ChatValidationError("Conversa não encontrada.")

    now = now_iso()
    message = {
        "id": str(uuid.uuid4()),
        "conversation_id": conversation_id,
        "sender_user_id": user["id"],
        "body": sanitized,
        "created_at": now,
    }
    await db.chat_messages.insert_one(message)
    message.pop("_id", None)

    await db.chat_conversations.update_one(
        {"id": conversation_id},
        {"$set": {"last_message_at": now, "updated_at": now}}
    )
    await db.chat_participants.update_many(
        {"conversation_id": conversation_id, "user_id": {"$ne": user["id"]}},
        {"$inc": {"unread_count": 1}}
    )

    recipients = await db.chat_participants.find(
        {"conversation_id": conversation_id, "user_id": {"$ne": user["id"]}}, {"_id": 0, "user_id": 1}
    ).to_list(10)

    sender_name = actor_display(user)
    preview = sanitize_preview(sanitized, CHAT_PREVIEW_LENGTH)
    for recipient in recipients:
        try:
            await create_notification(
                recipient_user_id=recipient["user_id"],
                type="INTERNAL_CHAT_MESSAGE",
                title=f"Mensagem interna de {sender_name}",
                message=preview or "Você recebeu uma nova mensagem interna.",
                actor_user_id=user["id"],
                conversation_id=conversation_id,
                metadata={"sender_name": sender_name, "message_id": message["id"]},
                dedupe_key=f"chat-message:{message['id']}",
            )
        except Exception as e:
            logger.error(f"[CHAT] falha ao notificar mensagem {message['id']}: {e}")

    message["sender"] = {"id": user["id"], "nome": user.get("nome"), "email": user.get("email")}
    return message


async def get_messages(user: dict, conversation_id: str, limit: int = DEFAULT_MESSAGES_LIMIT,
                       cursor: Optional[str] = None) -> Dict[str, Any]:
    """Página de mensagens em ordem cronológica; `cursor` = created_at da mais antiga carregada."""
    ensure_chat_access(user)
    await _ensure_participant(conversation_id, user["id"])
    safe_limit = max(1, min(int(limit or DEFAULT_MESSAGES_LIMIT), MAX_MESSAGES_LIMIT))

    query: Dict[str, Any] = {"conversation_id": conversation_id}
    if cursor and cursor.strip():
        query["created_at"] = {"$lt": cursor.strip()}

    rows = await db.chat_messages.find(query, {"_id": 0}) \
        .sort([("created_at", -1), ("id", -1)]) \
        .limit(safe_limit + 1) \
        .to_list(safe_limit + 1)

    has_more = len(rows) > safe_limit
    rows = rows[:safe_limit]
    next_cursor = rows[-1]["created_at"] if has_more and rows else None

    sender_ids = list({r["sender_user_id"] for r in rows})
    senders = await db.users.find(
        {"id": {"$in": sender_ids}}, {"_id": 0, "id": 1, "nome": 1, "email": 1}
    ).to_list(len(sender_ids) or 1)
    senders_by_id = {s["id"]: s for s in senders}

    messages = []
    for row in reversed(rows):
        row["sender"] = senders_by_id.get(row["sender_user_id"])
        messages.append(row)

    return {"messages": messages, "next_cursor": next_cursor}


async def list_conversations(user: dict, search: Optional[str] = None) -> List[dict]:
    ensure_chat_access(user)
    participations = await db.chat_participants.find(
        {"user_id": user["id"]}, {"_id": 0}
    ).to_list(1000)
    by_conversation = {p["conversation_id"]: p for p in participations}
    if not by_conversation:
        return []

    conversations = await db.chat_conversations.find(
        {"id": {"$in": list(by_conversation)}}, {"_id": 0}
    ).sort("last_message_at", -1).limit(MAX_CONVERSATIONS).to_list(MAX_CONVERSATIONS)

    other_ids = [
        c["direct_user_b_id"] if c["direct_user_a_id"] == user["id"] else c["direct_user_a_id"]
        for c in conversations
    ]
    others = await db.users.find(
        {"id": {"$in": other_ids}}, {"_id": 0, "id": 1, "nome": 1, "email": 1}
    ).to_list(len(other_ids) or 1)
    others_by_id = {o["id"]: o for o in others}

    term = (search or "").strip().lower()
    result = []
    for conversation, other_id in zip(conversations, other_ids):
        other = others_by_id.get(other_id) or {"id": other_id}
        if term:
            haystack = f"{other.get('nome') or ''} {other.get('email') or ''}".lower()
            if term not in haystack:
                continue

        last = await db.chat_messages.find(
            {"conversation_id": conversation["id"]}, {"_id": 0}
        ).sort("created_at", -1).limit(1).to_list(1)

        participant = by_conversation[conversation["id"]]
        result.append({
            "id": conversation["id"],
            "kind": conversation["kind"],
            "last_message_at": conversation["last_message_at"],
            "other_user": other,
            "unread_count": participant.get("unread_count") or 0,
            "last_read_at": participant.get("last_read_at"),
            "last_message": last[0] if last else None,
        })
    return result


async def mark_conversation_read(user: dict, conversation_id: str) -> bool:
    ensure_chat_access(user)
    await _ensure_participant(conversation_id, user["id"])
    now = now_iso()
    await db.chat_participants.update_one(
        {"conversation_id": conversation_id, "user_id": user["id"]},
        {"$set": {"unread_count": 0, "last_read_at": now}}
    )
    await db.notifications.update_many(
        {"recipient_user_id": user["id"], "conversation_id": conversation_id, "is_read": False},
        {"$set": {"is_read": True, "read_at": now}}
    )
    return True


async def get_unread_total(user: dict) -> int:
    ensure_chat_access(user)
    rows = await db.chat_participants.find(
        {"user_id": user["id"]}, {"_id": 0, "unread_count": 1}
    ).to_list(1000)
    return sum(int(r.get("unread_count") or 0) for r in rows)


async def list_chat_users(user: dict, search: Optional[str] = None) -> List[dict]:
    ensure_chat_access(user)
    query: Dict[str, Any] = {"id": {"$ne": user["id"]}}
    term = (search or "").strip()
    if term:
        pattern = re.escape(term)
        query["$or"] = [
            {"nome": {"$regex": pattern, "$options": "i"}},
            {"email": {"$regex": pattern, "$options": "i"}},
        ]

    rows = await db.users.find(query, {"_id": 0, "password": 0}).sort("nome", 1).to_list(500)
    eligible = [
        {"id": r["id"], "nome": r.get("nome"), "email": r.get("email")}
        for r in rows
        if is_user_active(r) and has_internal_chat_access(r)
    ]
    return eligible[:CHAT_USERS_LIMIT]
