"""
Rental Energia - Permissions Tests
Tests: marcas por papel, seções, departamento de obras, chat, escopo de marca
e escopo de supervisor.
Run: cd backend && pytest tests/test_permissions.py -v
"""

import pytest
from types import SimpleNamespace
from fastapi import HTTPException

from services.permissions import (
    build_brand_filter,
    check_supervisor_assignment,
    enforce_write_brand,
    get_brand_scope_from_request,
    get_supervisor_visible_user_ids,
    get_user_brands,
    get_user_sections,
    has_internal_chat_access,
    has_sales_access,
    has_section_access,
    is_user_active,
    is_works_path_allowed,
    is_works_user,
)
from tests.helpers import create_user, run


def fake_request(scope=None):
    return SimpleNamespace(headers={"x-brand-scope": scope} if scope else {})


# ═══════════════════════════════════════════════════════════════
# 1. MARCAS E SEÇÕES
# ═══════════════════════════════════════════════════════════════

class TestBrandsAndSections:

    def test_role_default_brands(self):
        assert get_user_brands({"role": "adm_mestre"}) == ["dorata", "rental"]
        assert get_user_brands({"role": "vendedor_interno"}) == ["rental"]
        assert get_user_brands({"role": "investidor"}) == ["rental"]

    def test_stored_brands_win(self):
        user = {"role": "vendedor_externo", "allowed_brands": ["dorata", "bogus"]}
        assert get_user_brands(user) == ["dorata"]

    def test_section_access(self):
        assert has_section_access("investidor", "portal_investidor")
        assert not has_section_access("investidor", "orcamentos")
        assert has_section_access("suporte_limitado", "energia")
        assert not has_section_access("vendedor_externo", "energia")
        assert not has_section_access(None, "tarefas")

    def test_user_sections_sorted(self):
        sections = get_user_sections({"role": "adm_mestre"})
        assert sections == sorted(sections)
        assert "usuarios" in sections

    def test_sales_access(self):
        assert has_sales_access({"role": "vendedor_externo"})
        assert not has_sales_access({"role": "funcionario_n1"})
        assert has_sales_access({"role": "funcionario_n1", "sales_access": True})


# ═══════════════════════════════════════════════════════════════
# 2. OBRAS E CHAT
# ═══════════════════════════════════════════════════════════════

class TestWorksDepartment:

    def test_department_normalized(self):
        assert is_works_user({"department": " Obras "})
        assert is_works_user({"department": "OBRAS"})
        assert not is_works_user({"department": "vendas"})
        assert not is_works_user({})

    @pytest.mark.parametrize("path", [
        "/api", "/api/health", "/api/auth/me", "/api/webhooks/clicksign",
        "/api/chat/conversations", "/api/notifications", "/api/tasks/123/comments", "/api/tasks/",
        "/api/works", "/api/works/w1/processes", "/api/files/f1",
    ])
    def test_allowed_paths(self, path):
        assert is_works_path_allowed(path)

    @pytest.mark.parametrize("path", [
        "/api/indicacoes", "/api/energy/usinas", "/api/tasksx", "/api/chatroom", "/api/healthz", "/api/worksx",
    ])
    def test_blocked_paths(self, path):
        assert not is_works_path_allowed(path)

    def test_chat_access(self):
        assert has_internal_chat_access({"role": "supervisor"})
        assert not has_internal_chat_access({"role": "vendedor_externo"})
        assert has_internal_chat_access({"role": "vendedor_externo", "internal_chat_access": True})
        assert not has_internal_chat_access({"role": "supervisor", "internal_chat_access": False})
        assert has_internal_chat_access({"role": "investidor", "department": "obras", "internal_chat_access": False})

    def test_user_active(self):
        assert is_user_active({"status": "active"})
        assert is_user_active({"status": "ATIVO"})
        assert is_user_active({})
        assert not is_user_active({"status": "inactive"})
        assert not is_user_active(None)
        assert is_user_active({"status": None})
        assert not is_user_active({"status": "INATIVO"})


# ═══════════════════════════════════════════════════════════════
# 3. ESCOPO DE MARCA
# ═══════════════════════════════════════════════════════════════

class TestBrandScope:

    def test_multi_brand_defaults_to_all(self):
        user = {"role": "adm_mestre"}
        assert get_brand_scope_from_request(user, fake_request()) == ["dorata", "rental"]
        assert get_brand_scope_from_request(user, fake_request("all")) == ["dorata", "rental"]

    def test_multi_brand_single_scope(self):
        user = {"role": "adm_mestre"}
        assert get_brand_scope_from_request(user, fake_request("Dorata")) == ["dorata"]

    def test_multi_brand_unknown_scope_forbidden(self):
        user = {"role": "vendedor_externo", "allowed_brands": ["rental", "dorata"]}
        with pytest.raises(HTTPException) as exc:
            get_brand_scope_from_request(user, fake_request("outra"))
        assert exc.value.status_code == 403

    def test_single_brand_ignores_header(self):
        user = {"role": "vendedor_interno"}
        assert get_brand_scope_from_request(user, fake_request("dorata")) == ["rental"]

    def test_brand_filter(self):
        assert build_brand_filter(["rental"]) == {"marca": "rental"}
        assert build_brand_filter(["rental", "dorata"], field="brand") == {"brand": {"$in": ["rental", "dorata"]}}

    def test_enforce_write_brand(self):
        assert enforce_write_brand({"role": "vendedor_externo"}, " DORATA ") == "dorata"
        with pytest.raises(HTTPException) as exc:
            enforce_write_brand({"role": "vendedor_interno"}, "dorata")
        assert exc.value.status_code == 403


# ═══════════════════════════════════════════════════════════════
# 4. SUPERVISOR
# ═══════════════════════════════════════════════════════════════

class TestSupervisorScope:

    def test_visible_ids(self):
        sup = create_user("supervisor")
        active = create_user("vendedor_interno", supervisor_id=sup["id"])
        create_user("vendedor_interno", supervisor_id=sup["id"], status="inactive")
        create_user("vendedor_externo", supervisor_id=sup["id"])
        create_user("vendedor_interno", supervisor_id="outro")

        ids = run(get_supervisor_visible_user_ids(sup["id"]))
        assert ids == [sup["id"], active["id"]]

    def test_assignment_rules(self):
        sup = create_user("supervisor")
        own = create_user("vendedor_interno", supervisor_id=sup["id"])
        other_team = create_user("vendedor_interno", supervisor_id="outro")
        external = create_user("vendedor_externo", supervisor_id=sup["id"])
        inactive = create_user("vendedor_interno", supervisor_id=sup["id"], status="inactive")
        no_status = create_user("vendedor_interno", supervisor_id=sup["id"], status=None)

        assert run(check_supervisor_assignment(sup["id"], sup["id"])) is None
        assert run(check_supervisor_assignment(sup["id"], own["id"])) is None
        assert run(check_supervisor_assignment(sup["id"], no_status["id"])) is None
        assert run(check_supervisor_assignment(sup["id"], "nao-existe")) == "Vendedor selecionado não encontrado."
        assert run(check_supervisor_assignment(sup["id"], external["id"])) == \
            "Supervisor só pode atribuir para vendedor interno."
        assert run(check_supervisor_assignment(sup["id"], other_team["id"])) == \
            "Supervisor só pode atribuir para vendedor interno subordinado."
        assert run(check_supervisor_assignment(sup["id"], inactive["id"])) == "Vendedor selecionado está inativo."
