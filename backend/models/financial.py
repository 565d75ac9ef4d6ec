"""
Rental Energia - Modelos Financeiro
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional

from services.financial import TRANSACTION_TYPES, TRANSACTION_STATUSES


class TransactionCreate(BaseModel):
    beneficiary_user_id: str
    type: str
    amount: float = Field(..., gt=0)
    description: str = Field(..., min_length=3)
    status: str = "pendente"
    due_date: Optional[str] = None
    origin_lead_id: Optional[str] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        if v not in TRANSACTION_TYPES:
            raise ValueError(f"Tipo inválido: {v}. Válidos: {TRANSACTION_TYPES}")
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v not in TRANSACTION_STATUSES:
            raise ValueError(f"Status inválido: {v}")
        return v


class CommissionPercentUpdate(BaseModel):
    percent: float = Field(..., ge=0, le=100)
