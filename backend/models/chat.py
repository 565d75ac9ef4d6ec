"""
Rental Energia - Modelos Chat interno
"""

from pydantic import BaseModel


class DirectConversationCreate(BaseModel):
    user_id: str


class ChatMessageCreate(BaseModel):
    body: str
