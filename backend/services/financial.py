"""
Rental Energia - Lançamentos financeiros
Créditos (comissões, bônus) ficam positivos; débitos (adiantamento, despesa) negativos.
"""

import uuid
import logging
from typing import Optional, Dict, Any, List

from config import db, now_iso

logger = logging.getLogger("financial")

TRANSACTION_TYPES = [
    "comissao_venda",
    "bonus_recrutamento",
    "override_gestao",
    "comissao_dorata",
    "adiantamento",
    "despesa",
]
DEBIT_TYPES = ("adiantamento", "despesa")
TRANSACTION_STATUSES = ["pendente", "liberado", "pago", "cancelado"]


def signed_amount(transaction_type: str, amount: float) -> float:
    amount = abs(float(amount))
    return -amount if transaction_type in DEBIT_TYPES else amount


async def create_transaction(data: dict, created_by: str) -> Dict[str, Any]:
    transaction = {
        "id": str(uuid.uuid4()),
        "beneficiary_user_id": data["beneficiary_user_id"],
        "type": data["type"],
        "amount": signed_amount(data["type"], data["amount"]),
        "description": data["description"].strip(),
        "status": data.get("status") or "pendente",
        "due_date": data.get("due_date"),
        "origin_lead_id": data.get("origin_lead_id"),
        "created_by": created_by,
        "created_at": now_iso(),
    }
    await db.financeiro_transacoes.insert_one(transaction)
    transaction.pop("_id", None)

    logger.info(
        f"[FINANCIAL] {transaction['type']} {transaction['amount']} -> {transaction['beneficiary_user_id']}"
    )
    return transaction


async def list_transactions(
    beneficiary_user_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 100,
) -> List[dict]:
    query = {}
    if beneficiary_user_id:
        query["beneficiary_user_id"] = beneficiary_user_id
    if status:
        query["status"] = status
    limit = max(1, min(limit, 500))
    return await db.financeiro_transacoes.find(query, {"_id": 0}) \
        .sort("created_at", -1) \
        .limit(limit) \
        .to_list(limit)


async def get_summary(beneficiary_user_id: Optional[str] = None) -> Dict[str, Any]:
    """Totais por status e saldo (cancelados fora do saldo)."""
    query = {"beneficiary_user_id": beneficiary_user_id} if beneficiary_user_id else {}
    rows = await db.financeiro_transacoes.find(query, {"_id": 0, "amount": 1, "status": 1}).to_list(100000)

    by_status = {s: 0.0 for s in TRANSACTION_STATUSES}
    for r in rows:
        status = r.get("status") or "pendente"
        by_status[status] = round(by_status.get(status, 0.0) + float(r.get("amount") or 0), 2)

    balance = round(sum(v for k, v in by_status.items() if k != "cancelado"), 2)
    return {
        "beneficiary_user_id": beneficiary_user_id,
        "by_status": by_status,
        "balance": balance,
        "count": len(rows),
    }
