"""
Rental Energia - Modelos Orçamento e Regras de Preço
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any

from services.permissions import BRANDS


PROPOSAL_STATUSES = ["draft", "sent", "accepted", "rejected"]


class PricingRuleUpdate(BaseModel):
    name: Optional[str] = None
    value: Optional[float] = None
    unit: Optional[str] = None
    description: Optional[str] = None
    active: Optional[bool] = None


class PricedItem(BaseModel):
    price: float = 0
    quantity: float = 0


class PanelInput(PricedItem):
    power: float = 0


class SimpleProposalRequest(BaseModel):
    panels: PanelInput
    inverters: List[PricedItem] = []
    structures: List[PricedItem] = []
    others: List[PricedItem] = []


class ProposalCalculateRequest(BaseModel):
    """Entrada da calculadora completa (seções livres, valores numéricos)"""
    dimensioning: Dict[str, Any] = {}
    kit: Dict[str, Any] = {}
    structure: Dict[str, Any] = {}
    margin: Dict[str, Any] = {}
    extras: Dict[str, Any] = {}
    finance: Dict[str, Any] = {}
    params: Optional[Dict[str, Any]] = None
    seller_id: Optional[str] = None


class ProposalItemInput(BaseModel):
    product_id: str
    quantity: int = Field(..., gt=0)
    unit_price: float = Field(0, ge=0)


class ProposalCreate(BaseModel):
    client_name: str = Field(..., min_length=1)
    brand: str = "rental"
    indicacao_id: Optional[str] = None
    total_value: Optional[float] = None
    calculation: Optional[Dict[str, Any]] = None
    items: List[ProposalItemInput] = []
    observacoes: Optional[str] = None

    @field_validator("brand")
    @classmethod
    def validate_brand(cls, v):
        v = v.strip().lower()
        if v not in BRANDS:
            raise ValueError(f"Marca inválida: {v}")
        return v


class ProposalStatusUpdate(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v not in PROPOSAL_STATUSES:
            raise ValueError(f"Status inválido: {v}. Válidos: {PROPOSAL_STATUSES}")
        return v
