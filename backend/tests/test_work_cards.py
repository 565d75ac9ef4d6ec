"""
Rental Energia - Works Board Tests
Tests: retrato técnico sem valores, card por instalação a partir do orçamento
aceito, fases de projeto e execução, tarefas vinculadas, comentários, fotos
e escopo de acesso.
Run: cd backend && pytest tests/test_work_cards.py -v
"""

import uuid

import pytest

import config
from config import now_iso
from services import work_cards as works
from services.proposal_calculator import calculate_proposal
from services.work_cards import WorkCardError, is_financial_key
from tests.helpers import auth_headers, create_indicacao, create_user, run

CALC_INPUT = {
    "dimensioning": {"qtd_modulos": 10, "potencia_modulo_w": 550, "indice_producao": 120, "tipo_inversor": "MICRO"},
    "kit": {"module_unit_cost": 700, "micro_unit_cost": 1200},
    "structure": {"qtd_placas_solo": 4, "qtd_placas_telhado": 6, "valor_unit_solo": 150, "valor_unit_telhado": 90},
    "margin": {"margem_percentual": 0.2},
    "finance": {"enabled": True, "juros_mensal": 0.02, "num_parcelas": 24, "entrada_valor": 5000},
}


def accepted_proposal(indicacao=None, status="accepted", brand="dorata"):
    now = now_iso()
    proposal = {
        "id": str(uuid.uuid4()),
        "client_name": "Cliente Orçamento",
        "brand": brand,
        "indicacao_id": indicacao["id"] if indicacao else None,
        "seller_id": None,
        "status": status,
        "total_value": 50000.0,
        "calculation": calculate_proposal(CALC_INPUT),
        "accepted_at": now if status == "accepted" else None,
        "created_at": now,
        "updated_at": now,
    }
    run(config.db.proposals.insert_one(proposal))
    proposal.pop("_id", None)
    return proposal


def dorata_indicacao(**fields):
    fields.setdefault("codigo_instalacao", "9001")
    return create_indicacao("seller", marca="dorata", nome="Fazenda Boa Vista", **fields)


def all_keys(value):
    if isinstance(value, dict):
        for key, inner in value.items():
            yield key
            yield from all_keys(inner)
    elif isinstance(value, list):
        for inner in value:
            yield from all_keys(inner)


def items_of(work_id, phase):
    return [i for i in run(works.list_process_items(work_id)) if i["phase"] == phase]


def released_card():
    card = run(works.upsert_work_card_from_proposal(accepted_proposal(dorata_indicacao())["id"], "admin"))
    for item in items_of(card["id"], "PROJETO"):
        run(works.set_process_item_status(card, item["id"], "DONE", "admin"))
    return run(works.release_project(card, "admin"))


def card_status(work_id):
    return run(config.db.work_cards.find_one({"id": work_id}, {"_id": 0}))["status"]


# ═══════════════════════════════════════════════════════════════
# 1. RETRATO TÉCNICO
# ═══════════════════════════════════════════════════════════════

class TestTechnicalSnapshot:

    def test_financial_keys_detected(self):
        for key in ("valor_total", "custo_kit", "margem_valor", "unit_price", "Juros_Pagos", "total_a_vista"):
            assert is_financial_key(key)
        for key in ("kWp", "qtd_modulos", "codigo_instalacao", "inversor"):
            assert not is_financial_key(key)

    def test_strip_is_recursive(self):
        data = {"a": {"valor_parcela": 1, "qtd": 2}, "lista": [{"sale_price": 3, "nome": "x"}]}
        assert works.strip_financial_data(data) == {"a": {"qtd": 2}, "lista": [{"nome": "x"}]}

    def test_snapshot_has_no_money(self):
        ind = dorata_indicacao(codigo_cliente_energia="C-77", unidade_consumidora="Rua A, 1")
        proposal = accepted_proposal(ind)

        snapshot = works.build_technical_snapshot(proposal, ind)

        assert not [k for k in all_keys(snapshot) if is_financial_key(k)]
        assert snapshot["dimensioning"]["total_power_kwp"] == pytest.approx(5.5)
        assert snapshot["dimensioning"]["structure_quantities"] == {"qtd_placas_solo": 4, "qtd_placas_telhado": 6}
        assert snapshot["installation"] == {
            "codigo_instalacao": "9001", "codigo_cliente": "C-77", "unidade_consumidora": "Rua A, 1",
        }
        assert snapshot["customer"]["nome"] == "Fazenda Boa Vista"

    def test_installation_key_fallback(self):
        assert works.installation_key({"codigo_instalacao": " 123 "}, {"id": "p1"}) == "123"
        assert works.installation_key({}, {"id": "p1", "indicacao_id": "i1"}) == "indicacao:i1"
        assert works.installation_key(None, {"id": "p1"}) == "indicacao:p1"


# ═══════════════════════════════════════════════════════════════
# 2. CARD A PARTIR DO ORÇAMENTO
# ═══════════════════════════════════════════════════════════════

class TestCardFromProposal:

    def test_creates_card_with_project_template(self):
        ind = dorata_indicacao()
        proposal = accepted_proposal(ind)

        card = run(works.upsert_work_card_from_proposal(proposal["id"], "admin"))

        assert card["status"] == "FECHADA"
        assert card["title"] == "Fazenda Boa Vista"
        assert card["installation_key"] == "9001"
        assert card["primary_proposal_id"] == proposal["id"]
        assert [i["title"] for i in items_of(card["id"], "PROJETO")] == works.PROJECT_TEMPLATE

    def test_same_installation_reuses_card(self):
        ind = dorata_indicacao()
        first = accepted_proposal(ind)
        second = accepted_proposal(ind)

        card = run(works.upsert_work_card_from_proposal(first["id"]))
        again = run(works.upsert_work_card_from_proposal(second["id"]))

        assert again["id"] == card["id"]
        assert run(config.db.work_cards.count_documents({})) == 1
        assert len(items_of(card["id"], "PROJETO")) == len(works.PROJECT_TEMPLATE)

        links = run(works.list_card_proposals(card["id"]))
        primary = [link["proposal_id"] for link in links if link["is_primary"]]
        assert len(links) == 2
        assert primary == [second["id"]]

    def test_ignores_non_accepted_and_other_brand(self):
        assert run(works.upsert_work_card_from_proposal(accepted_proposal(dorata_indicacao(), status="sent")["id"])) is None
        rental = create_indicacao("seller", marca="rental")
        assert run(works.upsert_work_card_from_proposal(accepted_proposal(rental)["id"])) is None
        assert run(config.db.work_cards.count_documents({})) == 0

    def test_proposal_brand_used_without_indicacao(self):
        proposal = accepted_proposal(None)
        card = run(works.upsert_work_card_from_proposal(proposal["id"]))
        assert card["title"] == "Cliente Orçamento"
        assert card["installation_key"] == f"indicacao:{proposal['id']}"

    def test_backfill(self):
        accepted_proposal(dorata_indicacao(codigo_instalacao="1"))
        accepted_proposal(dorata_indicacao(codigo_instalacao="2"))
        accepted_proposal(dorata_indicacao(codigo_instalacao="3"), status="draft")
        accepted_proposal(create_indicacao("seller", marca="rental"))

        assert run(works.backfill_from_accepted_proposals("admin")) == {"processed": 2, "skipped": 1}
        assert run(config.db.work_cards.count_documents({})) == 2


# ═══════════════════════════════════════════════════════════════
# 3. PROJETO E EXECUÇÃO
# ═══════════════════════════════════════════════════════════════

class TestProcessFlow:

    def test_execution_locked_until_release(self):
        card = run(works.upsert_work_card_from_proposal(accepted_proposal(dorata_indicacao())["id"]))

        with pytest.raises(WorkCardError):
            run(works.add_process_item(card, "admin", "EXECUCAO", "Cavar valas"))
        with pytest.raises(WorkCardError):
            run(works.release_project(card, "admin"))

    def test_release_creates_execution_template(self):
        card = released_card()

        assert card["status"] == "PARA_INICIAR"
        assert card["projeto_liberado_by"] == "admin"
        assert [i["title"] for i in items_of(card["id"], "EXECUCAO")] == works.EXECUTION_TEMPLATE

    def test_execution_progress_drives_status(self):
        card = released_card()
        execution = items_of(card["id"], "EXECUCAO")

        item = run(works.set_process_item_status(card, execution[0]["id"], "IN_PROGRESS", "tec"))
        assert item["started_at"]
        assert card_status(card["id"]) == "EM_ANDAMENTO"

        for entry in execution:
            done = run(works.set_process_item_status(card, entry["id"], "DONE", "tec"))
            assert done["completed_by"] == "tec"
        stored = run(config.db.work_cards.find_one({"id": card["id"]}, {"_id": 0}))
        assert stored["status"] == "FECHADA"
        assert stored["completed_at"]

        reopened = run(works.set_process_item_status(card, execution[1]["id"], "TODO", "tec"))
        assert reopened["completed_at"] is None
        assert card_status(card["id"]) == "EM_ANDAMENTO"

    def test_added_item_goes_last(self):
        card = released_card()
        item = run(works.add_process_item(card, "admin", "EXECUCAO", " Limpeza final "))
        assert item["title"] == "Limpeza final"
        assert item["sort_order"] == len(works.EXECUTION_TEMPLATE) + 1

    def test_update_and_delete(self):
        card = released_card()
        item = items_of(card["id"], "EXECUCAO")[0]

        with pytest.raises(WorkCardError):
            run(works.update_process_item(item["id"], {"title": None}))
        updated = run(works.update_process_item(item["id"], {"title": "Planejar equipe", "due_date": "2026-11-03"}))
        assert updated["title"] == "Planejar equipe"

        run(works.delete_process_item(card, item["id"]))
        assert len(items_of(card["id"], "EXECUCAO")) == len(works.EXECUTION_TEMPLATE) - 1


# ═══════════════════════════════════════════════════════════════
# 4. TAREFAS, COMENTÁRIOS E FOTOS
# ═══════════════════════════════════════════════════════════════

class TestWorkExtras:

    def test_tasks_integration(self):
        card = released_card()

        result = run(works.set_tasks_integration(card, True, "admin"))
        assert result["tasks_created"] == len(works.EXECUTION_TEMPLATE)
        assert run(works.set_tasks_integration(card, True, "admin"))["tasks_created"] == 0

        item = items_of(card["id"], "EXECUCAO")[0]
        task = run(config.db.tasks.find_one({"id": item["linked_task_id"]}, {"_id": 0}))
        assert task["title"] == "[Obra] Fazenda Boa Vista - Planejar execução"
        assert task["department"] == "obras"
        assert works.process_marker(item["id"]) in task["description"]

        run(works.set_process_item_status(card, item["id"], "DONE", "tec"))
        task = run(config.db.tasks.find_one({"id": item["linked_task_id"]}, {"_id": 0}))
        assert task["status"] == "DONE"

    def test_energisa_comment_is_highlighted(self):
        card = released_card()
        author = create_user("suporte_tecnico", nome="Ana Técnica")

        run(works.add_comment(card, author, "Vistoria marcada"))
        answer = run(works.add_comment(card, author, "Parecer aprovado", "ENERGISA_RESPOSTA", "PROJETO"))
        with pytest.raises(WorkCardError):
            run(works.add_comment(card, author, "   "))

        detail = run(works.get_work_card_detail(card["id"], create_user("adm_mestre")))
        assert detail["latest_energisa_comment"]["id"] == answer["id"]
        comments = run(works.list_comments(card["id"]))
        assert comments[0]["user_nome"] == "Ana Técnica"
        assert len(comments) == 2

    def test_cover_image_is_replaced(self):
        card = released_card()
        user = create_user("adm_mestre")

        first = run(works.add_image(card, user, "CAPA", b"img-1", "capa.jpg", "image/jpeg"))
        second = run(works.add_image(card, user, "CAPA", b"img-2", "capa2.jpg", "image/jpeg"))
        run(works.add_image(card, user, "ANTES", b"img-3", "antes.jpg", "image/jpeg"))

        images = run(works.list_images(card["id"]))
        assert [i["image_type"] for i in images] == ["ANTES", "CAPA"]
        assert run(config.db.files.find_one({"id": first["file_id"]})) is None
        assert run(works.get_work_card_detail(card["id"], user))["cover_image_url"] == second["url"]
        with pytest.raises(WorkCardError):
            run(works.add_image(card, user, "FACHADA", b"x", "x.jpg", "image/jpeg"))


# ═══════════════════════════════════════════════════════════════
# 5. API
# ═══════════════════════════════════════════════════════════════

class TestWorksApi:

    def test_accepting_proposal_opens_work(self, api):
        admin = create_user("adm_mestre")
        headers = auth_headers(admin)
        proposal = accepted_proposal(dorata_indicacao(), status="sent")

        r = api.patch(f"/api/proposals/{proposal['id']}/status", json={"status": "accepted"}, headers=headers)
        assert r.status_code == 200

        listing = api.get("/api/works", headers=headers).json()
        assert listing["count"] == 1
        work = listing["works"][0]
        assert work["progress"]["PROJETO"] == {"total": 4, "done": 0}
        assert "total_value" not in str(work["technical_snapshot"])

        assert api.get("/api/works?search=boa vista", headers=headers).json()["count"] == 1
        assert api.get("/api/works?search=outra", headers=headers).json()["count"] == 0

        r = api.post(f"/api/works/{work['id']}/release", headers=headers)
        assert r.status_code == 400

    def test_sellers_have_no_access(self, api):
        headers = auth_headers(create_user("vendedor_externo"))
        assert api.get("/api/works", headers=headers).status_code == 403

    def test_supervisor_scope(self, api):
        supervisor = create_user("supervisor", allowed_brands=["rental", "dorata"])
        own = create_indicacao(supervisor["id"], marca="dorata", codigo_instalacao="A1", nome="Equipe")
        other = create_indicacao("someone-else", marca="dorata", codigo_instalacao="B2", nome="Fora")
        own_card = run(works.upsert_work_card_from_proposal(accepted_proposal(own)["id"]))
        other_card = run(works.upsert_work_card_from_proposal(accepted_proposal(other)["id"]))
        headers = auth_headers(supervisor)

        listing = api.get("/api/works", headers=headers).json()
        assert [w["id"] for w in listing["works"]] == [own_card["id"]]
        assert api.get(f"/api/works/{other_card['id']}", headers=headers).status_code == 404
        assert api.get(f"/api/works/{own_card['id']}", headers=headers).status_code == 200

    def test_process_and_image_endpoints(self, api):
        headers = auth_headers(create_user("funcionario_n1", department="obras"))
        card = run(works.upsert_work_card_from_proposal(accepted_proposal(dorata_indicacao())["id"]))

        processes = api.get(f"/api/works/{card['id']}/processes", headers=headers).json()["items"]
        r = api.patch(f"/api/works/processes/{processes[0]['id']}/status", json={"status": "DONE"}, headers=headers)
        assert r.status_code == 200
        r = api.patch(f"/api/works/processes/{processes[0]['id']}/status", json={"status": "PRONTO"}, headers=headers)
        assert r.status_code == 422
        r = api.post(f"/api/works/{card['id']}/processes", json={"phase": "execucao", "title": "Cerca"},
                     headers=headers)
        assert r.status_code == 400

        r = api.post(f"/api/works/{card['id']}/images", headers=headers,
                     files={"file": ("capa.jpg", b"jpeg-bytes", "image/jpeg")}, data={"image_type": "capa"})
        assert r.status_code == 201
        image = r.json()["image"]
        assert image["image_type"] == "CAPA"
        assert api.get(image["url"], headers=headers).content == b"jpeg-bytes"

        r = api.post(f"/api/works/{card['id']}/images", headers=headers,
                     files={"file": ("script.exe", b"x", "application/octet-stream")}, data={"image_type": "ANTES"})
        assert r.status_code == 400

        r = api.delete(f"/api/works/images/{image['id']}?work_id={card['id']}", headers=headers)
        assert r.status_code == 200
        assert api.get(f"/api/works/{card['id']}/images", headers=headers).json()["count"] == 0
