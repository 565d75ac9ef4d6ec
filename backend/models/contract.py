"""
Rental Energia - Modelos Contrato
O desconto chega em % (0-100) e é convertido em fração no cálculo.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Annotated, Optional, List

from services.contracts import CONTRACT_TYPES, CONTRACT_BRANDS

MAX_CONSUMPTION_KWH = 1_000_000_000
MAX_PRICE_KWH = 1_000_000


class ContractUnitInput(BaseModel):
    name: str = ""
    consumptions: List[Annotated[float, Field(le=MAX_CONSUMPTION_KWH)]] = []


class ContractCalculateRequest(BaseModel):
    units: List[ContractUnitInput] = Field(..., min_length=1)
    price_kwh: float = Field(..., gt=0, le=MAX_PRICE_KWH)
    discount_percent: float = Field(0, ge=0, le=100)


class ContractCreate(BaseModel):
    type: str
    brand: str
    client_name: str
    client_doc: str
    client_contact: Optional[str] = None
    client_address: Optional[str] = None
    price_kwh: float = Field(..., gt=0, le=MAX_PRICE_KWH)
    discount_percent: float = Field(0, ge=0, le=100)
    units: List[ContractUnitInput] = Field(..., min_length=1)
    indicacao_id: Optional[str] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        if v not in CONTRACT_TYPES:
            raise ValueError(f"Tipo de contrato inválido: {v}. Válidos: {CONTRACT_TYPES}")
        return v

    @field_validator("brand")
    @classmethod
    def validate_brand(cls, v):
        v = v.upper()
        if v not in CONTRACT_BRANDS:
            raise ValueError(f"Marca inválida: {v}")
        return v

    @field_validator("client_name", "client_doc")
    @classmethod
    def validate_required(cls, v):
        if not v.strip():
            raise ValueError("Campo obrigatório")
        return v.strip()


class ContractDraftUpdate(BaseModel):
    html_content: str


class ContractApprove(BaseModel):
    html_content: Optional[str] = None
