"""
Rental Energia - Modelos Energia
Usinas, unidades consumidoras (UC), produção mensal, alocações e faturas.
"""

import re
from pydantic import BaseModel, Field, field_validator
from typing import Optional

from services.energy import USINA_STATUSES, ALOCACAO_TIPOS, FATURA_STATUSES


USINA_TIPOS = ["rental", "parceiro"]
CATEGORIAS_ENERGIA = ["geradora", "acumuladora"]
TIPOS_UC = ["normal", "b_optante"]
MES_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def _validate_mes(v: str) -> str:
    v = (v or "").strip()[:7]
    if not MES_PATTERN.match(v):
        raise ValueError("Mês inválido, use YYYY-MM")
    return v


class UsinaCreate(BaseModel):
    nome: str = Field(..., min_length=3)
    capacidade_total: float = Field(..., ge=0)
    tipo: str = "rental"
    categoria_energia: str = "geradora"
    percentual_alocavel: float = Field(100, ge=1, le=100)
    prazo_expiracao_credito_meses: int = Field(60, ge=1)
    investidor_user_id: Optional[str] = None
    modelo_negocio: Optional[str] = None
    status: str = "ATIVA"

    @field_validator("tipo")
    @classmethod
    def validate_tipo(cls, v):
        if v not in USINA_TIPOS:
            raise ValueError(f"Tipo inválido: {v}")
        return v

    @field_validator("categoria_energia")
    @classmethod
    def validate_categoria(cls, v):
        if v not in CATEGORIAS_ENERGIA:
            raise ValueError(f"Categoria inválida: {v}")
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v not in USINA_STATUSES:
            raise ValueError(f"Status inválido: {v}")
        return v


class UsinaUpdate(BaseModel):
    nome: Optional[str] = Field(None, min_length=3)
    capacidade_total: Optional[float] = Field(None, ge=0)
    percentual_alocavel: Optional[float] = Field(None, ge=1, le=100)
    prazo_expiracao_credito_meses: Optional[int] = Field(None, ge=1)
    investidor_user_id: Optional[str] = None
    modelo_negocio: Optional[str] = None
    status: Optional[str] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v is not None and v not in USINA_STATUSES:
            raise ValueError(f"Status inválido: {v}")
        return v


class UcCreate(BaseModel):
    cliente_id: str
    codigo_uc_fatura: str = Field(..., min_length=1)
    codigo_instalacao: str = Field(..., min_length=1)
    tipo_uc: str = "normal"
    atendido_via_consorcio: bool = False
    transferida_para_consorcio: bool = False
    ativo: bool = True
    observacoes: Optional[str] = None

    @field_validator("tipo_uc")
    @classmethod
    def validate_tipo_uc(cls, v):
        if v not in TIPOS_UC:
            raise ValueError(f"Tipo de UC inválido: {v}")
        return v


class UcUpdate(BaseModel):
    codigo_uc_fatura: Optional[str] = None
    codigo_instalacao: Optional[str] = None
    tipo_uc: Optional[str] = None
    atendido_via_consorcio: Optional[bool] = None
    transferida_para_consorcio: Optional[bool] = None
    ativo: Optional[bool] = None
    observacoes: Optional[str] = None

    @field_validator("tipo_uc")
    @classmethod
    def validate_tipo_uc(cls, v):
        if v is not None and v not in TIPOS_UC:
            raise ValueError(f"Tipo de UC inválido: {v}")
        return v


class ProducaoCreate(BaseModel):
    usina_id: str
    mes: str
    kwh_gerado: float = Field(..., ge=0)

    @field_validator("mes")
    @classmethod
    def validate_mes(cls, v):
        return _validate_mes(v)


class AlocacaoCreate(BaseModel):
    usina_id: str
    cliente_id: str
    tipo_alocacao: str = "percentual"
    valor: float = Field(..., gt=0)
    data_inicio: str

    @field_validator("tipo_alocacao")
    @classmethod
    def validate_tipo(cls, v):
        if v not in ALOCACAO_TIPOS:
            raise ValueError(f"Tipo de alocação inválido: {v}")
        return v


class FaturaCreate(BaseModel):
    cliente_id: str
    usina_id: str
    mes: str
    valor_fatura: float = Field(..., ge=0)
    kwh_compensado: float = Field(0, ge=0)
    status_pagamento: str = "ABERTO"
    observacoes: Optional[str] = None

    @field_validator("mes")
    @classmethod
    def validate_mes(cls, v):
        return _validate_mes(v)

    @field_validator("status_pagamento")
    @classmethod
    def validate_status(cls, v):
        if v not in FATURA_STATUSES:
            raise ValueError(f"Status inválido: {v}")
        return v


class FaturaStatusUpdate(BaseModel):
    status_pagamento: str

    @field_validator("status_pagamento")
    @classmethod
    def validate_status(cls, v):
        if v not in FATURA_STATUSES:
            raise ValueError(f"Status inválido: {v}")
        return v
