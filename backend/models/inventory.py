"""
Rental Energia - Modelos Estoque
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional

from services.inventory import PRODUCT_TYPES, MOVEMENT_TYPES


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    type: str
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    power: Optional[float] = None
    price: float = Field(..., ge=0)
    cost: Optional[float] = Field(None, ge=0)
    active: bool = True
    stock_total: int = Field(0, ge=0)

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        if v not in PRODUCT_TYPES:
            raise ValueError(f"Tipo inválido: {v}. Válidos: {PRODUCT_TYPES}")
        return v


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    power: Optional[float] = None
    price: Optional[float] = Field(None, ge=0)
    cost: Optional[float] = Field(None, ge=0)
    active: Optional[bool] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        if v is not None and v not in PRODUCT_TYPES:
            raise ValueError(f"Tipo inválido: {v}")
        return v


class StockMovementCreate(BaseModel):
    product_id: str
    type: str
    quantity: int = Field(..., gt=0)
    reason: Optional[str] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        if v not in MOVEMENT_TYPES:
            raise ValueError(f"Movimentação inválida: {v}. Válidas: {MOVEMENT_TYPES}")
        return v
