"""
Rental Energia - Modelos de indicação em lote (PJ Rental)
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional

from .indicacao import EMAIL_PATTERN


class IndicacaoTemplateCreate(BaseModel):
    name: str = Field(..., min_length=1)
    vendedor_id: str = Field(..., min_length=1)
    cnpj: str = Field(..., min_length=1)
    email: str
    telefone: str = Field(..., min_length=1)
    nome_empresa: Optional[str] = None
    representante_legal: Optional[str] = None
    cpf_representante: Optional[str] = None
    rg_representante: Optional[str] = None

    @field_validator("name", "vendedor_id", "cnpj", "telefone")
    @classmethod
    def strip_required(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Campo obrigatório")
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Email inválido")
        return v


class TemplateItemsImport(BaseModel):
    raw_csv: str = Field(..., min_length=1)
