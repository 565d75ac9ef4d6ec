"""
Rental Energia - Inventory & Energy Accounting Tests
Tests: movimentações de estoque, estatísticas por produto, limite de alocação
das usinas, saldo mensal e resumo do investidor.
Run: cd backend && pytest tests/test_inventory_energy.py -v
"""

import pytest

import config
from services.energy import (
    AllocationError,
    check_percent_allocation,
    get_allocated_percent,
    get_investor_summary,
    get_usina_balance,
)
from services import inventory
from services.inventory import StockError, apply_movement, get_stock_stats, register_movement
from tests.helpers import run

PRODUCT = {"stock_total": 10, "stock_reserved": 3}


def insert(collection, *docs):
    run(config.db[collection].insert_many([dict(d) for d in docs]))


# ═══════════════════════════════════════════════════════════════
# 1. ESTOQUE
# ═══════════════════════════════════════════════════════════════

class TestApplyMovement:

    def test_in(self):
        assert apply_movement(PRODUCT, "IN", 5) == {"stock_total": 15, "stock_reserved": 3, "stock_available": 12}

    def test_out_limited_to_available(self):
        assert apply_movement(PRODUCT, "OUT", 7)["stock_total"] == 3
        with pytest.raises(StockError):
            apply_movement(PRODUCT, "OUT", 8)

    def test_reserve_limited_to_available(self):
        assert apply_movement(PRODUCT, "RESERVE", 7)["stock_available"] == 0
        with pytest.raises(StockError):
            apply_movement(PRODUCT, "RESERVE", 8)

    def test_release_limited_to_reserved(self):
        assert apply_movement(PRODUCT, "RELEASE", 3)["stock_reserved"] == 0
        with pytest.raises(StockError):
            apply_movement(PRODUCT, "RELEASE", 4)

    @pytest.mark.parametrize("movement_type,quantity", [("IN", 0), ("IN", -2), ("MOVE", 1)])
    def test_invalid(self, movement_type, quantity):
        with pytest.raises(StockError):
            apply_movement(PRODUCT, movement_type, quantity)

    def test_missing_fields_default_to_zero(self):
        assert apply_movement({}, "IN", 1) == {"stock_total": 1, "stock_reserved": 0, "stock_available": 1}


class TestStockPersistence:

    def test_register_movement_updates_product(self):
        insert("products", {"id": "p1", "name": "Módulo 550W", "stock_total": 10, "stock_reserved": 0})

        result = run(register_movement("p1", "RESERVE", 4, reason="Obra X", user_id="u1"))

        assert result["stock"] == {"stock_total": 10, "stock_reserved": 4, "stock_available": 6}
        product = run(config.db.products.find_one({"id": "p1"}, {"_id": 0}))
        assert product["stock_reserved"] == 4
        assert run(config.db.stock_movements.count_documents({"product_id": "p1"})) == 1

    def test_rejected_movement_writes_nothing(self):
        insert("products", {"id": "p1", "name": "Inversor", "stock_total": 1, "stock_reserved": 0})
        with pytest.raises(StockError):
            run(register_movement("p1", "OUT", 2))
        assert run(config.db.stock_movements.count_documents({})) == 0

    def test_unknown_product(self):
        with pytest.raises(StockError):
            run(register_movement("nope", "IN", 1))

    def test_concurrent_change_is_rechecked(self, monkeypatch):
        insert("products", {"id": "p1", "name": "Módulo", "stock_total": 5, "stock_reserved": 0})
        real_load = inventory._load_product
        reads = []

        async def load_then_competing_out(product_id):
            product = await real_load(product_id)
            if not reads:
                # outra saída de 5 grava entre a leitura e a escrita
                await config.db.products.update_one({"id": product_id}, {"$set": {"stock_total": 0}})
            reads.append(product)
            return product

        monkeypatch.setattr(inventory, "_load_product", load_then_competing_out)

        with pytest.raises(StockError):
            run(register_movement("p1", "OUT", 5))

        assert len(reads) == 2
        assert run(config.db.products.find_one({"id": "p1"}, {"_id": 0}))["stock_total"] == 0
        assert run(config.db.stock_movements.count_documents({})) == 0

    def test_stale_read_retries_with_fresh_stock(self, monkeypatch):
        insert("products", {"id": "p1", "name": "Módulo", "stock_total": 5, "stock_reserved": 0})
        real_load = inventory._load_product
        reads = []

        async def load_then_competing_in(product_id):
            product = await real_load(product_id)
            if not reads:
                await config.db.products.update_one({"id": product_id}, {"$set": {"stock_total": 8}})
            reads.append(product)
            return product

        monkeypatch.setattr(inventory, "_load_product", load_then_competing_in)

        result = run(register_movement("p1", "OUT", 6))

        assert result["stock"]["stock_total"] == 2
        assert run(config.db.products.find_one({"id": "p1"}, {"_id": 0}))["stock_total"] == 2
        assert run(config.db.stock_movements.count_documents({})) == 1

    def test_products_without_stock_fields(self):
        insert("products", {"id": "p1", "name": "Cabo"})
        result = run(register_movement("p1", "IN", 3))
        assert result["stock"]["stock_total"] == 3
        assert run(config.db.products.find_one({"id": "p1"}, {"_id": 0}))["stock_total"] == 3

    def test_stats(self):
        insert("stock_movements",
               {"id": "m1", "product_id": "p1", "type": "IN", "quantity": 20},
               {"id": "m2", "product_id": "p1", "type": "OUT", "quantity": 2},
               {"id": "m3", "product_id": "p1", "type": "RESERVE", "quantity": 5},
               {"id": "m4", "product_id": "p2", "type": "IN", "quantity": 1})
        insert("proposals",
               {"id": "o1", "client_name": "Ana", "status": "accepted", "accepted_at": "2026-10-01T00:00:00+00:00"},
               {"id": "o2", "client_name": "Bia", "status": "accepted", "accepted_at": "2026-10-10T00:00:00+00:00"},
               {"id": "o3", "client_name": "Caio", "status": "draft"})
        insert("proposal_items",
               {"id": "i1", "proposal_id": "o1", "product_id": "p1", "quantity": 3},
               {"id": "i2", "proposal_id": "o2", "product_id": "p1", "quantity": 4},
               {"id": "i3", "proposal_id": "o3", "product_id": "p1", "quantity": 100})

        stats = run(get_stock_stats(["p1", "p2", "p3"]))

        assert stats["p1"]["manual_in"] == 20
        assert stats["p1"]["manual_out"] == 2
        assert stats["p1"]["manual_reserved"] == 5
        assert stats["p1"]["sold_from_proposals"] == 7
        assert stats["p1"]["last_sale_to"] == "Bia"
        assert stats["p2"]["manual_in"] == 1
        assert stats["p3"]["sold_from_proposals"] == 0
        assert run(get_stock_stats([])) == {}


# ═══════════════════════════════════════════════════════════════
# 2. ENERGIA
# ═══════════════════════════════════════════════════════════════

class TestAllocation:

    USINA = {"id": "us1", "nome": "Usina Norte", "percentual_alocavel": 80}

    def setup_allocations(self):
        insert("alocacoes_clientes",
               {"id": "a1", "usina_id": "us1", "status": "ATIVO", "percentual_alocado": 50},
               {"id": "a2", "usina_id": "us1", "status": "ENCERRADO", "percentual_alocado": 30},
               {"id": "a3", "usina_id": "us1", "status": "ATIVO", "percentual_alocado": None,
                "quantidade_kwh_alocado": 100})

    def test_allocated_percent_counts_only_active(self):
        self.setup_allocations()
        assert run(get_allocated_percent("us1")) == 50
        assert run(get_allocated_percent("us1", exclude_id="a1")) == 0

    def test_fills_up_to_limit(self):
        self.setup_allocations()
        assert run(check_percent_allocation(self.USINA, 30)) == pytest.approx(0)

    def test_over_limit_rejected(self):
        self.setup_allocations()
        with pytest.raises(AllocationError):
            run(check_percent_allocation(self.USINA, 31))

    def test_balance(self):
        self.setup_allocations()
        insert("historico_producao", {"id": "h1", "usina_id": "us1", "mes": "2026-09", "kwh_gerado": 1000})

        balance = run(get_usina_balance("us1", "2026-09"))

        assert balance["kwh_gerado"] == 1000
        assert balance["kwh_alocado_percentual"] == 500
        assert balance["kwh_alocado_fixo"] == 100
        assert balance["kwh_restante"] == 400
        assert balance["alocacoes_ativas"] == 2

    def test_balance_without_production(self):
        balance = run(get_usina_balance("us1", "2026-01"))
        assert balance["kwh_gerado"] == 0
        assert balance["kwh_restante"] == 0


class TestInvestorSummary:

    def test_investor_sees_only_own_usinas(self):
        insert("usinas",
               {"id": "us1", "investidor_user_id": "inv1", "status": "ATIVA"},
               {"id": "us2", "investidor_user_id": "inv1", "status": "MANUTENCAO"},
               {"id": "us3", "investidor_user_id": "inv2", "status": "ATIVA"})
        insert("alocacoes_clientes",
               {"id": "a1", "usina_id": "us1", "status": "ATIVO"},
               {"id": "a2", "usina_id": "us3", "status": "ATIVO"})
        insert("historico_producao",
               {"id": "h1", "usina_id": "us1", "mes": "2026-08", "kwh_gerado": 700},
               {"id": "h2", "usina_id": "us2", "mes": "2026-08", "kwh_gerado": 300},
               {"id": "h3", "usina_id": "us3", "mes": "2026-08", "kwh_gerado": 9999})
        insert("faturas_conciliacao",
               {"id": "f1", "usina_id": "us1", "status_pagamento": "PAGO", "valor_fatura": 100.5},
               {"id": "f2", "usina_id": "us1", "status_pagamento": "ABERTO", "valor_fatura": 50})

        summary = run(get_investor_summary({"id": "inv1", "role": "investidor"}))

        assert summary == {
            "usinas": 2,
            "usinas_ativas": 1,
            "alocacoes_ativas": 1,
            "producao_total_kwh": 1000,
            "faturas_pagas_total": 100.5,
        }

    def test_staff_sees_everything(self):
        insert("usinas", {"id": "us1", "investidor_user_id": "inv1", "status": "ATIVA"},
               {"id": "us2", "investidor_user_id": "inv2", "status": "ATIVA"})
        summary = run(get_investor_summary({"id": "adm", "role": "adm_mestre"}))
        assert summary["usinas"] == 2
