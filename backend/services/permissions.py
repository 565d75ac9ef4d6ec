"""
Rental Energia - Controle de acesso
Papéis, marcas, seções, departamento de obras e escopo de supervisor.
Os papéis são a fonte da verdade: cada seção e ação tem um conjunto fixo de papéis.
"""

import logging
from typing import Optional, Dict, List, Iterable
from fastapi import Depends, HTTPException, Request
from config import db

logger = logging.getLogger("permissions")

# ════════════════════════════════════════════════════════════════════════
# PAPÉIS E MARCAS
# ════════════════════════════════════════════════════════════════════════

VALID_ROLES = [
    "vendedor_externo",
    "vendedor_interno",
    "supervisor",
    "adm_mestre",
    "adm_dorata",
    "investidor",
    "funcionario_n1",
    "funcionario_n2",
    "suporte_tecnico",
    "suporte_limitado",
]

BRANDS = ["rental", "dorata"]
ALL_SCOPE = "ALL"

ADMIN_ROLES = {"adm_mestre", "adm_dorata"}
STAFF_ROLES = {"adm_mestre", "adm_dorata", "funcionario_n1", "funcionario_n2"}
SUPPORT_ROLES = {"suporte_tecnico", "suporte_limitado"}

ROLE_BRANDS: Dict[str, List[str]] = {
    "vendedor_externo": ["rental", "dorata"],
    "vendedor_interno": ["rental"],
    "supervisor": ["rental"],
    "adm_dorata": ["dorata", "rental"],
    "adm_mestre": ["dorata", "rental"],
}
DEFAULT_BRANDS = ["rental"]

# ════════════════════════════════════════════════════════════════════════
# SEÇÕES
# ════════════════════════════════════════════════════════════════════════

SECTION_ROLES: Dict[str, set] = {
    "indicacoes_admin": {"adm_mestre", "funcionario_n1", "funcionario_n2", "adm_dorata", "supervisor"},
    "tarefas": {
        "adm_mestre", "adm_dorata", "supervisor", "suporte_tecnico", "suporte_limitado",
        "vendedor_interno", "vendedor_externo", "funcionario_n1", "funcionario_n2",
    },
    "leads_rapidos": {"adm_mestre", "funcionario_n1", "funcionario_n2"},
    "portal_investidor": {"investidor", "adm_mestre", "funcionario_n1", "funcionario_n2"},
    "energia": {"adm_mestre", "suporte_tecnico", "suporte_limitado", "funcionario_n1", "funcionario_n2"},
    "financeiro": set(STAFF_ROLES),
    "usuarios": {"adm_mestre"},
    "crm": {
        "adm_mestre", "adm_dorata", "supervisor", "suporte_tecnico", "suporte_limitado",
        "funcionario_n1", "funcionario_n2",
    },
    "estoque": set(STAFF_ROLES),
    "precos": set(STAFF_ROLES),
    "orcamentos": set(VALID_ROLES) - {"investidor"},
    "contratos": set(STAFF_ROLES),
    "obras": {
        "adm_mestre", "adm_dorata", "supervisor", "suporte_tecnico", "suporte_limitado",
        "funcionario_n1", "funcionario_n2",
    },
}

# ════════════════════════════════════════════════════════════════════════
# AÇÕES
# ════════════════════════════════════════════════════════════════════════

INDICACAO_UPDATE_ROLES = {"adm_mestre", "adm_dorata", "supervisor", "funcionario_n1", "funcionario_n2"}
INDICACAO_DELETE_ROLES = {"adm_mestre"}
PROPOSAL_VIEW_ROLES = {
    "adm_mestre", "adm_dorata", "supervisor", "suporte_tecnico", "suporte_limitado",
    "funcionario_n1", "funcionario_n2",
}
FINANCIAL_MANAGE_ROLES = set(STAFF_ROLES)

SALES_ROLES = {"vendedor_externo", "vendedor_interno", "supervisor"}
CHAT_DEFAULT_ROLES = {"funcionario_n1", "funcionario_n2", "supervisor"}

# ════════════════════════════════════════════════════════════════════════
# DEPARTAMENTO DE OBRAS
# ════════════════════════════════════════════════════════════════════════

WORKS_DEPARTMENT = "obras"
WORKS_ALLOWED_EXACT = ("/api", "/api/health")
WORKS_ALWAYS_ALLOWED_PREFIXES = ("/api/auth", "/api/webhooks")
WORKS_ALLOWED_PREFIXES = ("/api/chat", "/api/notifications", "/api/tasks", "/api/works", "/api/files")

ACTIVE_USER_STATUSES = ("active", "ATIVO")


# ════════════════════════════════════════════════════════════════════════
# REGRAS
# ════════════════════════════════════════════════════════════════════════

def get_role_brands(role: Optional[str]) -> List[str]:
    return list(ROLE_BRANDS.get(role or "", DEFAULT_BRANDS))


def get_user_brands(user: dict) -> List[str]:
    """Marcas gravadas no usuário; se vazio, o padrão do papel."""
    stored = [b for b in (user.get("allowed_brands") or []) if b in BRANDS]
    if stored:
        return stored
    return get_role_brands(user.get("role"))


def has_section_access(role: Optional[str], section: str) -> bool:
    return (role or "") in SECTION_ROLES.get(section, set())


def get_user_sections(user: dict) -> List[str]:
    return sorted(s for s in SECTION_ROLES if has_section_access(user.get("role"), s))


def has_sales_access(user: dict) -> bool:
    explicit = user.get("sales_access")
    if isinstance(explicit, bool):
        return explicit
    return user.get("role") in SALES_ROLES


def normalize_department(value: Optional[str]) -> str:
    return "".join((value or "").split()).lower()


def is_works_user(user: dict) -> bool:
    return normalize_department(user.get("department")) == WORKS_DEPARTMENT


def has_internal_chat_access(user: dict) -> bool:
    if is_works_user(user):
        return True
    explicit = user.get("internal_chat_access")
    if isinstance(explicit, bool):
        return explicit
    return user.get("role") in CHAT_DEFAULT_ROLES


def _matches_prefix(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def is_works_path_allowed(path: str) -> bool:
    """Caminhos liberados para o departamento de obras."""
    normalized = path.rstrip("/") or "/"
    if normalized in WORKS_ALLOWED_EXACT:
        return True
    for prefix in WORKS_ALWAYS_ALLOWED_PREFIXES + WORKS_ALLOWED_PREFIXES:
        if _matches_prefix(normalized, prefix):
            return True
    return False


def is_user_active(user: Optional[dict]) -> bool:
    if user is None:
        return False
    status = user.get("status")
    return not status or status in ACTIVE_USER_STATUSES


def can_see_all_indicacoes(user: dict) -> bool:
    return user.get("role") in STAFF_ROLES | SUPPORT_ROLES


# ════════════════════════════════════════════════════════════════════════
# ESCOPO DE MARCA
# ════════════════════════════════════════════════════════════════════════

def get_brand_scope_from_request(user: dict, request: Request) -> List[str]:
    """
    Marcas visíveis nesta requisição.
    - várias marcas: lê o header X-Brand-Scope (rental/dorata/ALL), padrão ALL
    - uma marca: sempre forçado à marca do usuário
    """
    brands = get_user_brands(user)
    if len(brands) <= 1:
        return brands

    scope = (request.headers.get("x-brand-scope") or ALL_SCOPE).strip()
    if scope.upper() == ALL_SCOPE:
        return brands

    scope = scope.lower()
    if scope not in brands:
        logger.warning(
            f"[PERMISSION_DENIED] user={user.get('email')} brand_scope={scope}"
        )
        raise HTTPException(status_code=403, detail="Marca não permitida")
    return [scope]


def build_brand_filter(brands: Iterable[str], field: str = "marca") -> dict:
    brands = list(brands)
    if len(brands) == 1:
        return {field: brands[0]}
    return {field: {"$in": brands}}


def enforce_write_brand(user: dict, brand: Optional[str]) -> str:
    """A marca de uma escrita precisa estar entre as marcas do usuário."""
    brand = (brand or "").strip().lower()
    if brand not in get_user_brands(user):
        logger.warning(
            f"[PERMISSION_DENIED] user={user.get('email')} write_brand={brand}"
        )
        raise HTTPException(status_code=403, detail="Marca não permitida")
    return brand


# ════════════════════════════════════════════════════════════════════════
# ESCOPO DE SUPERVISOR
# ════════════════════════════════════════════════════════════════════════

async def get_supervisor_visible_user_ids(supervisor_id: str) -> List[str]:
    """O próprio supervisor mais os vendedores internos ativos subordinados."""
    subordinates = await db.users.find(
        {
            "supervisor_id": supervisor_id,
            "role": "vendedor_interno",
            "status": {"$in": list(ACTIVE_USER_STATUSES)},
        },
        {"_id": 0, "id": 1},
    ).to_list(1000)
    return [supervisor_id] + [u["id"] for u in subordinates if u.get("id") != supervisor_id]


async def check_supervisor_assignment(supervisor_id: str, target_user_id: str) -> Optional[str]:
    """
    Verifica se o supervisor pode atribuir uma indicação a `target_user_id`.
    Retorna None quando permitido, senão a mensagem de erro.
    """
    if target_user_id == supervisor_id:
        return None

    target = await db.users.find_one(
        {"id": target_user_id},
        {"_id": 0, "id": 1, "role": 1, "supervisor_id": 1, "status": 1},
    )
    if not target:
        return "Vendedor selecionado não encontrado."
    if target.get("role") != "vendedor_interno":
        return "Supervisor só pode atribuir para vendedor interno."
    if target.get("supervisor_id") != supervisor_id:
        return "Supervisor só pode atribuir para vendedor interno subordinado."
    if not is_user_active(target):
        return "Vendedor selecionado está inativo."
    return None


# ════════════════════════════════════════════════════════════════════════
# DEPENDÊNCIAS FASTAPI
# ════════════════════════════════════════════════════════════════════════

def require_section(section: str):
    """
    Fábrica de dependência.
    Uso: @router.get("/x", dependencies=[Depends(require_section("energia"))])
    """
    from routes.auth import get_current_user

    async def _check(user: dict = Depends(get_current_user)):
        if not has_section_access(user.get("role"), section):
            logger.warning(
                f"[PERMISSION_DENIED] user={user.get('email')} "
                f"section={section} role={user.get('role')}"
            )
            raise HTTPException(status_code=403, detail=f"Acesso negado: {section}")
        return user

    return _check


def require_roles(*roles: str):
    """Dependência: apenas os papéis informados."""
    from routes.auth import get_current_user
    allowed = set(roles)

    async def _check(user: dict = Depends(get_current_user)):
        if user.get("role") not in allowed:
            logger.warning(
                f"[PERMISSION_DENIED] user={user.get('email')} role={user.get('role')}"
            )
            raise HTTPException(status_code=403, detail="Acesso negado")
        return user

    return _check
