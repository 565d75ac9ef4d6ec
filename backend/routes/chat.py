"""
Rental Energia - Rotas Chat interno
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import Optional

from routes.auth import get_current_user
from models import DirectConversationCreate, ChatMessageCreate
from services.internal_chat import (
    DEFAULT_MESSAGES_LIMIT,
    ChatAccessError,
    ChatValidationError,
    get_messages,
    get_or_create_direct_conversation,
    get_unread_total,
    list_chat_users,
    list_conversations,
    mark_conversation_read,
    send_message,
)

router = APIRouter(prefix="/chat", tags=["Chat"])


async def _call(coro):
    try:
        return await coro
    except ChatAccessError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ChatValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/conversations")
async def conversations(search: Optional[str] = None, user: dict = Depends(get_current_user)):
    rows = await _call(list_conversations(user, search))
    return {"conversations": rows, "count": len(rows)}


@router.post("/conversations/direct")
async def open_direct(data: DirectConversationCreate, user: dict = Depends(get_current_user)):
    return {"conversation": await _call(get_or_create_direct_conversation(user, data.user_id))}


@router.get("/conversations/{conversation_id}/messages")
async def messages(
    conversation_id: str,
    limit: int = DEFAULT_MESSAGES_LIMIT,
    cursor: Optional[str] = None,
    user: dict = Depends(get_current_user)
):
    return await _call(get_messages(user, conversation_id, limit, cursor))


@router.post("/conversations/{conversation_id}/messages", status_code=201)
async def post_message(conversation_id: str, data: ChatMessageCreate, user: dict = Depends(get_current_user)):
    return {"message": await _call(send_message(user, conversation_id, data.body))}


@router.post("/conversations/{conversation_id}/read")
async def read_conversation(conversation_id: str, user: dict = Depends(get_current_user)):
    return {"success": await _call(mark_conversation_read(user, conversation_id))}


@router.get("/unread-count")
async def unread_count(user: dict = Depends(get_current_user)):
    return {"unread": await _call(get_unread_total(user))}


@router.get("/users")
async def chat_users(search: Optional[str] = None, user: dict = Depends(get_current_user)):
    return {"users": await _call(list_chat_users(user, search))}
