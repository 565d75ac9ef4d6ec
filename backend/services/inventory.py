"""
Rental Energia - Estoque de produtos
Movimentações manuais (IN/OUT/RESERVE/RELEASE) e estatísticas por produto.
"""

import uuid
import logging
from typing import Optional, List, Dict, Any

from config import db, now_iso

logger = logging.getLogger("inventory")

PRODUCT_TYPES = ["module", "inverter", "structure", "cable", "battery", "other"]
MOVEMENT_TYPES = ["IN", "OUT", "RESERVE", "RELEASE"]
MAX_STOCK_ATTEMPTS = 5


class StockError(Exception):
    """Movimentação recusada (produto inexistente ou saldo insuficiente)"""
    pass


def stock_snapshot(product: dict) -> Dict[str, int]:
    total = int(product.get("stock_total") or 0)
    reserved = int(product.get("stock_reserved") or 0)
    return {
        "stock_total": total,
        "stock_reserved": reserved,
        "stock_available": total - reserved,
    }


def apply_movement(product: dict, movement_type: str, quantity: int) -> Dict[str, int]:
    """
    Calcula o novo saldo sem gravar.
    OUT e RESERVE não podem passar do disponível; RELEASE não pode passar do reservado.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise StockError(f"Tipo de movimentação inválido: {movement_type}")
    if quantity <= 0:
        raise StockError("Quantidade deve ser maior que zero")

    snap = stock_snapshot(product)
    total, reserved, available = snap["stock_total"], snap["stock_reserved"], snap["stock_available"]

    if movement_type == "IN":
        total += quantity
    elif movement_type == "OUT":
        if quantity > available:
            raise StockError(f"Estoque disponível insuficiente ({available})")
        total -= quantity
    elif movement_type == "RESERVE":
        if quantity > available:
            raise StockError(f"Estoque disponível insuficiente para reserva ({available})")
        reserved += quantity
    else:
        if quantity > reserved:
            raise StockError(f"Quantidade reservada insuficiente ({reserved})")
        reserved -= quantity

    return {"stock_total": total, "stock_reserved": reserved, "stock_available": total - reserved}


async def _load_product(product_id: str) -> Optional[dict]:
    return await db.products.find_one({"id": product_id}, {"_id": 0})


async def register_movement(
    product_id: str,
    movement_type: str,
    quantity: int,
    reason: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Grava o novo saldo só se o produto ainda tiver o saldo lido
    (compare-and-set); se outra movimentação chegou antes, relê e recalcula.
    """
    for attempt in range(MAX_STOCK_ATTEMPTS):
        product = await _load_product(product_id)
        if not product:
            raise StockError("Produto não encontrado")

        new_stock = apply_movement(product, movement_type, quantity)
        now = now_iso()

        result = await db.products.update_one(
            {
                "id": product_id,
                "stock_total": product.get("stock_total"),
                "stock_reserved": product.get("stock_reserved"),
            },
            {"$set": {
                "stock_total": new_stock["stock_total"],
                "stock_reserved": new_stock["stock_reserved"],
                "updated_at": now,
            }}
        )
        if result.matched_count:
            break
        logger.warning(f"[STOCK] product={product_id} saldo alterado durante {movement_type}, tentativa {attempt + 1}")
    else:
        raise StockError("Estoque alterado por outra operação, tente novamente")

    movement = {
        "id": str(uuid.uuid4()),
        "product_id": product_id,
        "type": movement_type,
        "quantity": quantity,
        "reason": reason,
        "created_by": user_id,
        "created_at": now,
    }
    await db.stock_movements.insert_one(movement)
    movement.pop("_id", None)

    logger.info(
        f"[STOCK] product={product_id} {movement_type} {quantity} -> "
        f"total={new_stock['stock_total']} reserved={new_stock['stock_reserved']}"
    )
    return {"movement": movement, "stock": new_stock}


def _empty_stats() -> Dict[str, Any]:
    return {
        "manual_in": 0,
        "manual_out": 0,
        "manual_reserved": 0,
        "manual_released": 0,
        "sold_from_proposals": 0,
        "last_sale_at": None,
        "last_sale_to": None,
    }


async def get_stock_stats(product_ids: List[str]) -> Dict[str, Dict[str, Any]]:
    stats = {pid: _empty_stats() for pid in product_ids}
    if not product_ids:
        return stats

    movements = await db.stock_movements.find(
        {"product_id": {"$in": product_ids}}, {"_id": 0}
    ).to_list(100000)

    counters = {"IN": "manual_in", "OUT": "manual_out", "RESERVE": "manual_reserved", "RELEASE": "manual_released"}
    for m in movements:
        key = counters.get(m.get("type"))
        if key:
            stats[m["product_id"]][key] += int(m.get("quantity") or 0)

    accepted = await db.proposals.find(
        {"status": "accepted"}, {"_id": 0, "id": 1, "client_name": 1, "accepted_at": 1, "updated_at": 1}
    ).to_list(100000)
    proposals_by_id = {p["id"]: p for p in accepted}

    if proposals_by_id:
        items = await db.proposal_items.find(
            {"proposal_id": {"$in": list(proposals_by_id)}, "product_id": {"$in": product_ids}},
            {"_id": 0},
        ).to_list(100000)

        for item in items:
            stat = stats[item["product_id"]]
            proposal = proposals_by_id[item["proposal_id"]]
            stat["sold_from_proposals"] += int(item.get("quantity") or 0)
            sold_at = proposal.get("accepted_at") or proposal.get("updated_at")
            if sold_at and (stat["last_sale_at"] is None or sold_at > stat["last_sale_at"]):
                stat["last_sale_at"] = sold_at
                stat["last_sale_to"] = proposal.get("client_name")

    return stats
