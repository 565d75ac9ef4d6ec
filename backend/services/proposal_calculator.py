"""
Rental Energia - Calculadoras de orçamento solar

- calculate_proposal_value: orçamento simples a partir dos itens e das regras de preço
- calculate_proposal: calculadora completa (dimensionamento, kit, estrutura,
  margem, extras e financiamento com carência e parcela PMT)
"""

import math
from typing import Optional, List, Dict, Any

DEFAULT_PARAMS = {
    "default_oversizing_factor": 1.25,
    "micro_per_modules_divisor": 4,
    "micro_unit_power_kw": 2,
    "micro_rounding_mode": "CEIL",
    "grace_interest_mode": "COMPOUND",
    "duplication_rule": "DUPLICATE_KIT_AND_SOLO_STRUCTURE",
}

ROUND_MODES = ("CEIL", "FLOOR", "ROUND")
GRACE_INTEREST_MODES = ("COMPOUND", "SIMPLE")


def _num(value) -> float:
    try:
        result = float(value or 0)
    except (TypeError, ValueError):
        return 0.0
    return result if math.isfinite(result) else 0.0


def _pow(base: float, exp: float) -> float:
    try:
        result = math.pow(base, exp)
    except (OverflowError, ValueError, ZeroDivisionError):
        return 0.0
    return result if math.isfinite(result) else 0.0


def _finite(obj):
    """Troca inf/NaN por 0 em toda a estrutura (JSON não aceita)."""
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else 0.0
    if isinstance(obj, dict):
        return {k: _finite(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_finite(v) for v in obj]
    return obj


def round_mode(value: float, mode: str) -> int:
    if not math.isfinite(value):
        return 0
    if mode == "CEIL":
        return math.ceil(value)
    if mode == "FLOOR":
        return math.floor(value)
    # meio arredonda para cima
    return math.floor(value + 0.5)


def pmt(rate: float, nper: float, pv: float) -> float:
    """Parcela fixa (Price)."""
    if not all(math.isfinite(x) for x in (rate, nper, pv)):
        return 0.0
    if nper <= 0:
        return 0.0
    if rate == 0:
        return pv / nper
    denominator = 1 - _pow(1 + rate, -nper)
    if denominator == 0:
        return 0.0
    result = (rate * pv) / denominator
    return result if math.isfinite(result) else 0.0


# ════════════════════════════════════════════════════════════════════════
# CALCULADORA SIMPLES
# ════════════════════════════════════════════════════════════════════════

def build_rule_map(rules: List[dict]) -> Dict[str, float]:
    return {r["key"]: _num(r.get("value")) for r in rules if r.get("active", True)}


def calculate_proposal_value(
    panels: dict,
    inverters: List[dict],
    structures: List[dict],
    others: List[dict],
    rules: List[dict],
) -> Dict[str, Any]:
    """
    Mão de obra: `labor_per_panel` por placa, senão `labor_per_watt` por watt.
    Margem: `default_margin` % sobre equipamento + mão de obra.
    """
    rule_map = build_rule_map(rules)

    def _subtotal(items):
        return sum(_num(i.get("price")) * _num(i.get("quantity")) for i in items)

    total_panels = _num(panels.get("quantity"))
    panels_cost = _num(panels.get("price")) * total_panels
    total_power = _num(panels.get("power")) * total_panels

    breakdown = {
        "panels": panels_cost,
        "inverters": _subtotal(inverters),
        "structures": _subtotal(structures),
        "others": _subtotal(others),
    }
    equipment_cost = sum(breakdown.values())

    labor_cost = 0.0
    if "labor_per_panel" in rule_map:
        labor_cost = total_panels * rule_map["labor_per_panel"]
    elif "labor_per_watt" in rule_map:
        labor_cost = total_power * rule_map["labor_per_watt"]

    additional_cost = 0.0
    margin_value = 0.0
    if rule_map.get("default_margin"):
        margin_value = (equipment_cost + labor_cost + additional_cost) * rule_map["default_margin"] / 100

    return _finite({
        "total_value": equipment_cost + labor_cost + additional_cost + margin_value,
        "equipment_cost": equipment_cost,
        "labor_cost": labor_cost,
        "additional_cost": additional_cost,
        "profit_margin": margin_value,
        "total_power": total_power,
        "breakdown": breakdown,
    })


# ════════════════════════════════════════════════════════════════════════
# CALCULADORA COMPLETA
# ════════════════════════════════════════════════════════════════════════

def calculate_proposal(data: dict, commission_percent: Optional[float] = None) -> Dict[str, Any]:
    """
    `data` tem as seções dimensioning, kit, structure, margin, extras, finance
    e params (opcional). `margem_percentual` e `juros_mensal` são frações.
    """
    params = {**DEFAULT_PARAMS, **{k: v for k, v in (data.get("params") or {}).items() if v is not None}}

    dim = data.get("dimensioning") or {}
    kit = data.get("kit") or {}
    structure = data.get("structure") or {}
    margin = data.get("margin") or {}
    extras = data.get("extras") or {}
    finance = data.get("finance") or {}

    # dimensionamento
    qtd_modulos = _num(dim.get("qtd_modulos"))
    potencia_modulo_w = _num(dim.get("potencia_modulo_w"))
    indice_producao = _num(dim.get("indice_producao"))
    fator_oversizing = _num(dim.get("fator_oversizing")) or _num(params["default_oversizing_factor"])

    kwp = qtd_modulos * potencia_modulo_w / 1000
    kwh_estimado = qtd_modulos * potencia_modulo_w * indice_producao / 1000
    pot_string_kw = kwp / fator_oversizing if fator_oversizing else 0.0
    qtd_micro = round_mode(qtd_modulos / _num(params["micro_per_modules_divisor"]), params["micro_rounding_mode"]) \
        if _num(params["micro_per_modules_divisor"]) else 0
    pot_micro_total_kw = qtd_micro * _num(params["micro_unit_power_kw"])

    # kit
    custo_modulos_total = qtd_modulos * (_num(kit.get("module_unit_cost")) + _num(kit.get("cabling_unit_cost")))
    if dim.get("tipo_inversor") == "STRING":
        custo_inversor_total = _num(kit.get("string_inverter_total_cost"))
    else:
        custo_inversor_total = qtd_micro * _num(kit.get("micro_unit_cost"))
    custo_kit = custo_modulos_total + custo_inversor_total

    # estrutura
    valor_estrutura_solo = _num(structure.get("qtd_placas_solo")) * _num(structure.get("valor_unit_solo"))
    valor_estrutura_telhado = _num(structure.get("qtd_placas_telhado")) * _num(structure.get("valor_unit_telhado"))
    valor_estrutura_total = valor_estrutura_solo + valor_estrutura_telhado

    # kit e estrutura de solo entram em dobro
    soma_com_estrutura = (custo_kit + valor_estrutura_solo) * 2 + valor_estrutura_telhado
    margem_valor = soma_com_estrutura * _num(margin.get("margem_percentual"))

    extras_total = (
        _num(extras.get("valor_baterias"))
        + _num(extras.get("valor_adequacao_padrao"))
        + sum(_num(e.get("value")) for e in (extras.get("outros_extras") or []))
    )

    total_a_vista = soma_com_estrutura + margem_valor + extras_total

    # financiamento
    enabled = bool(finance.get("enabled"))
    entrada_valor = _num(finance.get("entrada_valor"))
    carencia_meses = _num(finance.get("carencia_meses"))
    juros_mensal = _num(finance.get("juros_mensal"))
    num_parcelas = _num(finance.get("num_parcelas"))
    total_baloes = sum(_num(b.get("balao_valor")) for b in (finance.get("baloes") or []))

    entrada_percentual = entrada_valor / total_a_vista if total_a_vista > 0 else 0.0
    valor_financiado = total_a_vista - entrada_valor - total_baloes
    if params["grace_interest_mode"] == "COMPOUND":
        saldo_pos_carencia = valor_financiado * _pow(1 + juros_mensal, carencia_meses)
    else:
        saldo_pos_carencia = valor_financiado * (1 + juros_mensal * carencia_meses)
    parcela_mensal = pmt(juros_mensal, num_parcelas, saldo_pos_carencia) if enabled else 0.0
    total_pago = entrada_valor + parcela_mensal * num_parcelas + total_baloes if enabled else total_a_vista
    juros_pagos = total_pago - total_a_vista

    result = {
        "params": params,
        "input": data,
        "output": {
            "dimensioning": {
                "kWp": kwp,
                "kWh_estimado": kwh_estimado,
                "inversor": {
                    "pot_string_kw": pot_string_kw,
                    "qtd_micro": qtd_micro,
                    "pot_micro_total_kw": pot_micro_total_kw,
                },
            },
            "kit": {
                "custo_modulos_total": custo_modulos_total,
                "custo_inversor_total": custo_inversor_total,
                "custo_kit": custo_kit,
            },
            "structure": {
                "valor_estrutura_solo": valor_estrutura_solo,
                "valor_estrutura_telhado": valor_estrutura_telhado,
                "valor_estrutura_total": valor_estrutura_total,
            },
            "margin": {"margem_valor": margem_valor},
            "extras": {"extras_total": extras_total},
            "totals": {
                "soma_com_estrutura": soma_com_estrutura,
                "total_a_vista": total_a_vista,
                "views": {
                    "view_valor_kit": custo_kit,
                    "view_material": custo_modulos_total + valor_estrutura_total,
                },
            },
            "finance": {
                "entrada_percentual": entrada_percentual,
                "valor_financiado": valor_financiado,
                "saldo_pos_carencia": saldo_pos_carencia,
                "parcela_mensal": parcela_mensal,
                "total_pago": total_pago,
                "juros_pagos": juros_pagos,
            },
        },
    }

    if commission_percent is not None:
        result["commission"] = {
            "percent": commission_percent,
            "value": round(total_a_vista * commission_percent / 100, 2),
            "base_value": total_a_vista,
        }

    return _finite(result)
