"""
Rental Energia - Proposal Calculator, Pricing Rules & Financial Tests
Tests: orçamento simples, calculadora completa com financiamento, comissões
e saldo de lançamentos.
Run: cd backend && pytest tests/test_proposals_financial.py -v
"""

import math
import pytest

from services.financial import create_transaction, get_summary, list_transactions, signed_amount
from services.pricing_rules import (
    DEFAULT_COMMISSION_KEY,
    get_commission_percent,
    get_manager_override_percent,
    get_rule,
    seller_commission_key,
    upsert_rule,
)
from services.proposal_calculator import calculate_proposal, calculate_proposal_value, pmt, round_mode
from tests.helpers import run

FULL_INPUT = {
    "dimensioning": {"qtd_modulos": 8, "potencia_modulo_w": 500, "indice_producao": 120, "tipo_inversor": "MICRO"},
    "kit": {"module_unit_cost": 600, "cabling_unit_cost": 50, "micro_unit_cost": 1000},
    "structure": {"qtd_placas_solo": 4, "valor_unit_solo": 100, "qtd_placas_telhado": 4, "valor_unit_telhado": 50},
    "margin": {"margem_percentual": 0.1},
    "extras": {"valor_baterias": 1000, "valor_adequacao_padrao": 500, "outros_extras": [{"value": 60}]},
    "finance": {"enabled": False},
}


def with_finance(**finance):
    return {**FULL_INPUT, "finance": {"enabled": True, **finance}}


# ═══════════════════════════════════════════════════════════════
# 1. FUNÇÕES BASE
# ═══════════════════════════════════════════════════════════════

class TestMath:

    def test_round_mode(self):
        assert round_mode(2.1, "CEIL") == 3
        assert round_mode(2.9, "FLOOR") == 2
        assert round_mode(2.5, "ROUND") == 3
        assert round_mode(2.4, "ROUND") == 2
        assert round_mode(math.inf, "CEIL") == 0

    def test_pmt(self):
        assert pmt(0.01, 12, 1000) == pytest.approx(88.8488, abs=1e-3)
        assert pmt(0, 10, 1000) == 100
        assert pmt(0.01, 0, 1000) == 0

    def test_pmt_extreme_rates_stay_finite(self):
        assert pmt(-1, 12, 1000) == pytest.approx(-1000)
        assert pmt(1e308, 2, 1e308) == 0


# ═══════════════════════════════════════════════════════════════
# 2. ORÇAMENTO SIMPLES
# ═══════════════════════════════════════════════════════════════

class TestSimpleProposal:

    PANELS = {"quantity": 10, "price": 500, "power": 550}
    INVERTERS = [{"price": 3000, "quantity": 1}]
    STRUCTURES = [{"price": 100, "quantity": 10}]

    def test_labor_per_panel_and_margin(self):
        rules = [{"key": "labor_per_panel", "value": 150}, {"key": "default_margin", "value": 10}]
        result = calculate_proposal_value(self.PANELS, self.INVERTERS, self.STRUCTURES, [], rules)

        assert result["equipment_cost"] == 9000
        assert result["labor_cost"] == 1500
        assert result["profit_margin"] == 1050
        assert result["total_value"] == 11550
        assert result["total_power"] == 5500
        assert result["breakdown"] == {"panels": 5000, "inverters": 3000, "structures": 1000, "others": 0}

    def test_labor_per_watt(self):
        rules = [{"key": "labor_per_watt", "value": 0.5}]
        result = calculate_proposal_value(self.PANELS, [], [], [], rules)
        assert result["labor_cost"] == 2750
        assert result["total_value"] == 7750

    def test_inactive_rules_ignored(self):
        rules = [{"key": "labor_per_panel", "value": 150, "active": False}]
        result = calculate_proposal_value(self.PANELS, [], [], [], rules)
        assert result["labor_cost"] == 0
        assert result["total_value"] == 5000


# ═══════════════════════════════════════════════════════════════
# 3. CALCULADORA COMPLETA
# ═══════════════════════════════════════════════════════════════

class TestFullCalculator:

    def test_cash_totals(self):
        out = calculate_proposal(FULL_INPUT)["output"]

        assert out["dimensioning"]["kWp"] == 4.0
        assert out["dimensioning"]["kWh_estimado"] == 480
        assert out["dimensioning"]["inversor"]["pot_string_kw"] == pytest.approx(3.2)
        assert out["dimensioning"]["inversor"]["qtd_micro"] == 2
        assert out["kit"]["custo_kit"] == 7200
        assert out["structure"]["valor_estrutura_total"] == 600
        assert out["totals"]["soma_com_estrutura"] == 15400
        assert out["margin"]["margem_valor"] == pytest.approx(1540)
        assert out["extras"]["extras_total"] == 1560
        assert out["totals"]["total_a_vista"] == pytest.approx(18500)
        assert out["finance"]["parcela_mensal"] == 0
        assert out["finance"]["total_pago"] == pytest.approx(18500)

    def test_string_inverter(self):
        data = {**FULL_INPUT, "dimensioning": {**FULL_INPUT["dimensioning"], "tipo_inversor": "STRING"},
                "kit": {**FULL_INPUT["kit"], "string_inverter_total_cost": 5000}}
        assert calculate_proposal(data)["output"]["kit"]["custo_inversor_total"] == 5000

    def test_finance_without_interest(self):
        fin = calculate_proposal(with_finance(entrada_valor=2500, num_parcelas=10))["output"]["finance"]
        assert fin["valor_financiado"] == pytest.approx(16000)
        assert fin["parcela_mensal"] == pytest.approx(1600)
        assert fin["juros_pagos"] == pytest.approx(0)
        assert fin["entrada_percentual"] == pytest.approx(2500 / 18500)

    def test_grace_period_compound_and_simple(self):
        data = with_finance(entrada_valor=2500, num_parcelas=10, juros_mensal=0.01, carencia_meses=2)
        compound = calculate_proposal(data)["output"]["finance"]
        simple = calculate_proposal({**data, "params": {"grace_interest_mode": "SIMPLE"}})["output"]["finance"]

        assert compound["saldo_pos_carencia"] == pytest.approx(16321.6)
        assert simple["saldo_pos_carencia"] == pytest.approx(16320)
        assert compound["juros_pagos"] > 0

    def test_balloons_reduce_financed_value(self):
        fin = calculate_proposal(with_finance(num_parcelas=10, baloes=[{"balao_valor": 500}]))["output"]["finance"]
        assert fin["valor_financiado"] == pytest.approx(18000)
        assert fin["total_pago"] == pytest.approx(18500)

    def test_commission(self):
        result = calculate_proposal(FULL_INPUT, commission_percent=5)
        assert result["commission"] == {"percent": 5, "value": 925.0, "base_value": pytest.approx(18500)}

    def test_missing_sections_do_not_crash(self):
        result = calculate_proposal({})
        assert result["output"]["totals"]["total_a_vista"] == 0
        assert "commission" not in result

    def test_extreme_finance_inputs_do_not_crash(self):
        for finance in ({"juros_mensal": 1, "carencia_meses": 2000, "num_parcelas": 12},
                        {"juros_mensal": -1, "carencia_meses": 2, "num_parcelas": 12},
                        {"juros_mensal": 1e308, "num_parcelas": 1e308}):
            fin = calculate_proposal(with_finance(**finance), commission_percent=5)["output"]["finance"]
            assert all(math.isfinite(v) for v in fin.values())

        overflow = calculate_proposal(with_finance(juros_mensal=1, carencia_meses=2000, num_parcelas=12))
        assert overflow["output"]["finance"]["saldo_pos_carencia"] == 0

    def test_huge_simple_values_are_json_safe(self):
        result = calculate_proposal_value({"quantity": 1e308, "price": 1e308}, [], [], [], [])
        assert result["total_value"] == 0
        assert result["breakdown"]["panels"] == 0


# ═══════════════════════════════════════════════════════════════
# 4. REGRAS DE PREÇO E COMISSÃO
# ═══════════════════════════════════════════════════════════════

class TestPricingRules:

    def test_upsert_keeps_identity(self):
        created = run(upsert_rule("labor_per_panel", {"value": 150, "name": "Mão de obra"}, updated_by="u1"))
        updated = run(upsert_rule("labor_per_panel", {"value": 180, "name": None}, updated_by="u2"))

        assert updated["id"] == created["id"]
        assert updated["value"] == 180
        assert updated["name"] == "Mão de obra"
        assert updated["updated_by"] == "u2"
        assert created["active"] is True

    def test_commission_precedence(self):
        assert run(get_commission_percent("v1")) == {"user_id": "v1", "percent": 0.0, "source": "none"}

        run(upsert_rule(DEFAULT_COMMISSION_KEY, {"value": 5}))
        assert run(get_commission_percent("v1"))["source"] == "default"

        run(upsert_rule(seller_commission_key("v1"), {"value": 7}))
        assert run(get_commission_percent("v1")) == {"user_id": "v1", "percent": 7.0, "source": "seller"}

        run(upsert_rule(seller_commission_key("v1"), {"active": False}))
        assert run(get_commission_percent("v1"))["percent"] == 5.0

    def test_manager_override_default(self):
        assert run(get_manager_override_percent()) == 0.0
        assert run(get_rule("rental_manager_override_percent")) is None


# ═══════════════════════════════════════════════════════════════
# 5. FINANCEIRO
# ═══════════════════════════════════════════════════════════════

class TestFinancial:

    def test_signed_amount(self):
        assert signed_amount("adiantamento", 100) == -100
        assert signed_amount("despesa", -30) == -30
        assert signed_amount("comissao_venda", -5) == 5

    def test_summary_excludes_cancelled(self):
        run(create_transaction({"beneficiary_user_id": "v1", "type": "comissao_venda", "amount": 300,
                                "description": "Venda"}, "adm"))
        run(create_transaction({"beneficiary_user_id": "v1", "type": "adiantamento", "amount": 100,
                                "description": "Adiant.", "status": "pago"}, "adm"))
        run(create_transaction({"beneficiary_user_id": "v1", "type": "despesa", "amount": 50,
                                "description": "Desp.", "status": "cancelado"}, "adm"))
        run(create_transaction({"beneficiary_user_id": "v2", "type": "bonus_recrutamento", "amount": 80,
                                "description": "Bônus"}, "adm"))

        summary = run(get_summary("v1"))
        assert summary["by_status"] == {"pendente": 300, "liberado": 0, "pago": -100, "cancelado": -50}
        assert summary["balance"] == 200
        assert summary["count"] == 3

        assert run(get_summary())["balance"] == 280
        assert len(run(list_transactions("v2"))) == 1
        assert len(run(list_transactions(status="pago"))) == 1
