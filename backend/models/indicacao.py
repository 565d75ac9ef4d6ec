"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Rental Energia - Modelos Indicação                                          ║
║                                                                              ║
║  PF: cpf, rg, endereço completo                                              ║
║  PJ: cnpj, razão social, responsável, endereço completo                      ║
║  Telefone gravado só com dígitos, email em minúsculas                        ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import re
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional

from services.formatters import only_digits
from services.indicacao_state_machine import INDICACAO_STATUSES
from services.number_words import MAX_VALUE
from services.permissions import BRANDS


VALID_TIPOS = ["PF", "PJ"]
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _required(value: Optional[str], message: str, min_length: int = 1, digits: bool = False):
    text = only_digits(value) if digits else (value or "").strip()
    if len(text) < min_length:
        raise ValueError(message)


class IndicacaoCreate(BaseModel):
    tipo: str
    nome: str
    email: str
    telefone: str
    marca: str = "rental"
    user_id: Optional[str] = None

    # PF
    cpf: Optional[str] = None
    rg: Optional[str] = None

    # PJ
    cnpj: Optional[str] = None
    razao_social: Optional[str] = None
    nome_fantasia: Optional[str] = None
    responsavel: Optional[str] = None

    # Endereço
    endereco: Optional[str] = None
    cep: Optional[str] = None
    cidade: Optional[str] = None
    estado: Optional[str] = None

    # Energia
    codigo_cliente_energia: Optional[str] = None
    codigo_instalacao: Optional[str] = None
    unidade_consumidora: Optional[str] = None
    consumo_medio_kwh: Optional[float] = None
    valor_conta_energia: Optional[float] = None
    valor: Optional[float] = Field(None, ge=0, le=MAX_VALUE)
    observacoes: Optional[str] = None

    @field_validator("tipo")
    @classmethod
    def validate_tipo(cls, v):
        v = v.strip().upper()
        if v not in VALID_TIPOS:
            raise ValueError(f"Tipo inválido: {v}. Deve ser PF ou PJ")
        return v

    @field_validator("nome")
    @classmethod
    def validate_nome(cls, v):
        if not v.strip():
            raise ValueError("Nome é obrigatório")
        return v.strip()

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Email inválido")
        return v

    @field_validator("telefone")
    @classmethod
    def validate_telefone(cls, v):
        digits = only_digits(v)
        if len(digits) < 10:
            raise ValueError("Telefone deve ter pelo menos 10 dígitos")
        return digits

    @field_validator("marca")
    @classmethod
    def validate_marca(cls, v):
        v = (v or "rental").strip().lower()
        if v not in BRANDS:
            raise ValueError(f"Marca inválida: {v}")
        return v

    @model_validator(mode="after")
    def validate_documents(self):
        if self.tipo == "PF":
            _required(self.cpf, "CPF deve ter 11 dígitos", 11, digits=True)
            _required(self.rg, "RG é obrigatório")
        else:
            _required(self.cnpj, "CNPJ deve ter 14 dígitos", 14, digits=True)
            _required(self.razao_social, "Razão social é obrigatória")
            _required(self.responsavel, "Responsável é obrigatório")

        _required(self.endereco, "Endereço é obrigatório")
        _required(self.cep, "CEP deve ter 8 dígitos", 8, digits=True)
        _required(self.cidade, "Cidade é obrigatória")
        _required(self.estado, "Estado é obrigatório", 2)
        return self


class IndicacaoStatusUpdate(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v not in INDICACAO_STATUSES:
            raise ValueError(f"Status inválido: {v}. Válidos: {INDICACAO_STATUSES}")
        return v


class IndicacaoFlagsUpdate(BaseModel):
    assinada: Optional[bool] = None
    compensada: Optional[bool] = None


class QuickLeadCreate(BaseModel):
    """Lead rápido: só nome e telefone"""
    nome: str
    telefone: str
    marca: str = "rental"
    observacoes: Optional[str] = None

    @field_validator("nome")
    @classmethod
    def validate_nome(cls, v):
        if not v.strip():
            raise ValueError("Nome é obrigatório")
        return v.strip()

    @field_validator("telefone")
    @classmethod
    def validate_telefone(cls, v):
        digits = only_digits(v)
        if len(digits) < 10:
            raise ValueError("Telefone deve ter pelo menos 10 dígitos")
        return digits

    @field_validator("marca")
    @classmethod
    def validate_marca(cls, v):
        v = (v or "rental").strip().lower()
        if v not in BRANDS:
            raise ValueError(f"Marca inválida: {v}")
        return v
