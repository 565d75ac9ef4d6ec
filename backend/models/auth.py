"""
Rental Energia - Modelos de autenticação e usuários
Papéis são a fonte da verdade; marcas limitam o que cada usuário enxerga.
"""

from pydantic import BaseModel, field_validator
from typing import Optional, List

from services.permissions import VALID_ROLES, BRANDS


VALID_USER_STATUSES = ["active", "inactive"]


def _clean_brands(v):
    if v is None:
        return v
    brands = []
    for brand in v:
        brand = (brand or "").strip().lower()
        if brand not in BRANDS:
            raise ValueError(f"Marca inválida: {brand}. Válidas: {BRANDS}")
        if brand not in brands:
            brands.append(brand)
    return brands


class UserLogin(BaseModel):
    email: str
    password: str


class UserCreate(BaseModel):
    email: str
    password: str
    nome: str
    telefone: Optional[str] = None
    role: str = "vendedor_externo"
    brands: List[str]
    department: Optional[str] = None
    supervisor_id: Optional[str] = None
    company_name: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        v = v.strip().lower()
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("Email inválido")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v):
        if len(v) < 6:
            raise ValueError("A senha deve ter pelo menos 6 caracteres")
        return v

    @field_validator("nome")
    @classmethod
    def validate_nome(cls, v):
        if not v.strip():
            raise ValueError("Nome é obrigatório")
        return v.strip()

    @field_validator("role")
    @classmethod
    def validate_role(cls, v):
        if v not in VALID_ROLES:
            raise ValueError(f"Papel inválido: {v}. Válidos: {VALID_ROLES}")
        return v

    @field_validator("brands")
    @classmethod
    def validate_brands(cls, v):
        brands = _clean_brands(v)
        if not brands:
            raise ValueError("Selecione pelo menos uma marca")
        return brands


class UserUpdate(BaseModel):
    nome: Optional[str] = None
    telefone: Optional[str] = None
    role: Optional[str] = None
    brands: Optional[List[str]] = None
    department: Optional[str] = None
    supervisor_id: Optional[str] = None
    status: Optional[str] = None
    sales_access: Optional[bool] = None
    internal_chat_access: Optional[bool] = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, v):
        if v is not None and v not in VALID_ROLES:
            raise ValueError(f"Papel inválido: {v}")
        return v

    @field_validator("brands")
    @classmethod
    def validate_brands(cls, v):
        brands = _clean_brands(v)
        if brands is not None and not brands:
            raise ValueError("Selecione pelo menos uma marca")
        return brands

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v is not None and v not in VALID_USER_STATUSES:
            raise ValueError(f"Status inválido: {v}")
        return v


class ProfileUpdate(BaseModel):
    """Atualização do próprio perfil"""
    nome: Optional[str] = None
    telefone: Optional[str] = None
    company_name: Optional[str] = None
    password: Optional[str] = None

    @field_validator("password")
    @classmethod
    def validate_password(cls, v):
        if v is not None and len(v) < 6:
            raise ValueError("A senha deve ter pelo menos 6 caracteres")
        return v
