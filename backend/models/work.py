"""
Rental Energia - Modelos Quadro de Obras
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional

from services.work_cards import COMMENT_TYPES, PROCESS_STATUSES, WORK_PHASES


class WorkProcessItemCreate(BaseModel):
    phase: str = "PROJETO"
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    due_date: Optional[str] = None

    @field_validator("phase")
    @classmethod
    def validate_phase(cls, v):
        v = v.strip().upper()
        if v not in WORK_PHASES:
            raise ValueError(f"Fase inválida: {v}. Válidas: {WORK_PHASES}")
        return v


class WorkProcessItemUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[str] = None
    sort_order: Optional[int] = None


class WorkProcessStatusUpdate(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v not in PROCESS_STATUSES:
            raise ValueError(f"Status inválido: {v}. Válidos: {PROCESS_STATUSES}")
        return v


class WorkTasksIntegrationUpdate(BaseModel):
    enabled: bool


class WorkCommentCreate(BaseModel):
    content: str = Field(..., min_length=1)
    comment_type: str = "GERAL"
    phase: Optional[str] = None

    @field_validator("comment_type")
    @classmethod
    def validate_comment_type(cls, v):
        if v not in COMMENT_TYPES:
            raise ValueError(f"Tipo de comentário inválido: {v}")
        return v
