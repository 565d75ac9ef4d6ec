"""
Rental Energia - Contabilidade de energia
Usinas, alocações de clientes, saldo mensal e resumo do portal do investidor.
"""

import logging
from typing import Optional, List, Dict, Any

from config import db

logger = logging.getLogger("energy")

USINA_STATUSES = ["ATIVA", "MANUTENCAO", "INATIVA"]
ALOCACAO_TIPOS = ["percentual", "fixo"]
FATURA_STATUSES = ["ABERTO", "PAGO", "ATRASADO", "CANCELADO"]


class AllocationError(Exception):
    """Alocação acima do percentual alocável da usina"""
    pass


async def get_allocated_percent(usina_id: str, exclude_id: Optional[str] = None) -> float:
    query = {"usina_id": usina_id, "status": "ATIVO", "percentual_alocado": {"$ne": None}}
    if exclude_id:
        query["id"] = {"$ne": exclude_id}
    rows = await db.alocacoes_clientes.find(query, {"_id": 0, "percentual_alocado": 1}).to_list(10000)
    return sum(float(r.get("percentual_alocado") or 0) for r in rows)


async def check_percent_allocation(usina: dict, new_percent: float) -> float:
    """
    A soma das alocações percentuais ativas não pode passar do
    percentual_alocavel da usina. Retorna o percentual que sobra.
    """
    allocated = await get_allocated_percent(usina["id"])
    limit = float(usina.get("percentual_alocavel") or 100)
    if allocated + new_percent > limit + 1e-9:
        raise AllocationError(
            f"Alocação excede o limite da usina: {allocated:g}% já alocado, "
            f"limite {limit:g}%, pedido {new_percent:g}%"
        )
    return limit - allocated - new_percent


async def get_usina_balance(usina_id: str, mes: str) -> Dict[str, Any]:
    """
    Saldo do mês: gerado, alocado (percentual * gerado + kWh fixos) e restante.
    """
    producao = await db.historico_producao.find_one(
        {"usina_id": usina_id, "mes": mes}, {"_id": 0}
    )
    gerado = float((producao or {}).get("kwh_gerado") or 0)

    alocacoes = await db.alocacoes_clientes.find(
        {"usina_id": usina_id, "status": "ATIVO"}, {"_id": 0}
    ).to_list(10000)

    percent_kwh = 0.0
    fixed_kwh = 0.0
    for a in alocacoes:
        if a.get("percentual_alocado") is not None:
            percent_kwh += gerado * float(a["percentual_alocado"]) / 100
        elif a.get("quantidade_kwh_alocado") is not None:
            fixed_kwh += float(a["quantidade_kwh_alocado"])

    alocado = percent_kwh + fixed_kwh
    return {
        "usina_id": usina_id,
        "mes": mes,
        "kwh_gerado": gerado,
        "kwh_alocado_percentual": round(percent_kwh, 4),
        "kwh_alocado_fixo": round(fixed_kwh, 4),
        "kwh_alocado": round(alocado, 4),
        "kwh_restante": round(gerado - alocado, 4),
        "alocacoes_ativas": len(alocacoes),
    }


def investor_usina_filter(user: dict) -> dict:
    """Investidor só enxerga as próprias usinas."""
    if user.get("role") == "investidor":
        return {"investidor_user_id": user.get("id")}
    return {}


async def get_investor_summary(user: dict) -> Dict[str, Any]:
    usinas: List[dict] = await db.usinas.find(
        investor_usina_filter(user), {"_id": 0}
    ).to_list(10000)
    usina_ids = [u["id"] for u in usinas]

    alocacoes_ativas = await db.alocacoes_clientes.count_documents(
        {"usina_id": {"$in": usina_ids}, "status": "ATIVO"}
    )

    producoes = await db.historico_producao.find(
        {"usina_id": {"$in": usina_ids}}, {"_id": 0, "kwh_gerado": 1}
    ).to_list(100000)

    faturas_pagas = await db.faturas_conciliacao.find(
        {"usina_id": {"$in": usina_ids}, "status_pagamento": "PAGO"},
        {"_id": 0, "valor_fatura": 1},
    ).to_list(100000)

    return {
        "usinas": len(usinas),
        "usinas_ativas": sum(1 for u in usinas if u.get("status") == "ATIVA"),
        "alocacoes_ativas": alocacoes_ativas,
        "producao_total_kwh": sum(float(p.get("kwh_gerado") or 0) for p in producoes),
        "faturas_pagas_total": round(sum(float(f.get("valor_fatura") or 0) for f in faturas_pagas), 2),
    }
