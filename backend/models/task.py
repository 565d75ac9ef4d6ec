"""
Rental Energia - Modelos Tarefas
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List

from services.tasks import TASK_STATUSES, TASK_PRIORITIES, VISIBILITY_SCOPES, CHECKLIST_PHASES
from services.indicacao_state_machine import CHECKLIST_EVENTS
from services.permissions import BRANDS


def _check(value, valid, label):
    if value is not None and value not in valid:
        raise ValueError(f"{label} inválido: {value}. Válidos: {valid}")
    return value


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: str = "TODO"
    priority: str = "MEDIUM"
    brand: str = "rental"
    assignee_id: Optional[str] = None
    indicacao_id: Optional[str] = None
    client_name: Optional[str] = None
    codigo_instalacao: Optional[str] = None
    due_date: Optional[str] = None
    visibility_scope: str = "TEAM"
    department: Optional[str] = None
    observer_ids: List[str] = []

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        return _check(v, TASK_STATUSES, "Status")

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, v):
        return _check(v, TASK_PRIORITIES, "Prioridade")

    @field_validator("visibility_scope")
    @classmethod
    def validate_scope(cls, v):
        return _check(v, VISIBILITY_SCOPES, "Visibilidade")

    @field_validator("brand")
    @classmethod
    def validate_brand(cls, v):
        return _check(v.lower(), BRANDS, "Marca")


class TaskUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    assignee_id: Optional[str] = None
    indicacao_id: Optional[str] = None
    client_name: Optional[str] = None
    codigo_instalacao: Optional[str] = None
    due_date: Optional[str] = None
    visibility_scope: Optional[str] = None
    department: Optional[str] = None

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, v):
        return _check(v, TASK_PRIORITIES, "Prioridade")

    @field_validator("visibility_scope")
    @classmethod
    def validate_scope(cls, v):
        return _check(v, VISIBILITY_SCOPES, "Visibilidade")


class TaskStatusUpdate(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        return _check(v, TASK_STATUSES, "Status")


class ChecklistItemCreate(BaseModel):
    title: str = Field(..., min_length=1)
    event_key: Optional[str] = None
    due_date: Optional[str] = None
    phase: str = "geral"

    @field_validator("event_key")
    @classmethod
    def validate_event(cls, v):
        return _check(v, CHECKLIST_EVENTS, "Evento")

    @field_validator("phase")
    @classmethod
    def validate_phase(cls, v):
        return _check(v, CHECKLIST_PHASES, "Fase")


class ChecklistToggle(BaseModel):
    is_done: bool


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1)
    parent_id: Optional[str] = None
    mention_user_ids: List[str] = []


class ObserverAdd(BaseModel):
    user_id: str
