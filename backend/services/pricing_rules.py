"""
Rental Energia - Regras de preço

Parâmetros dinâmicos de precificação e comissão.
Collection: pricing_rules (cada doc identificado por key)

Regras conhecidas:
- labor_per_panel / labor_per_watt: mão de obra do orçamento simples
- default_margin: margem % do orçamento simples
- rental_default_commission_percent: comissão Rental padrão
- rental_commission_percent_user_<id>: comissão Rental do vendedor
- rental_manager_override_percent: override do gestor
"""

import uuid
import logging
from typing import Optional, Dict, Any, List

from config import db, now_iso

logger = logging.getLogger("pricing_rules")

DEFAULT_COMMISSION_KEY = "rental_default_commission_percent"
MANAGER_OVERRIDE_KEY = "rental_manager_override_percent"
SELLER_COMMISSION_PREFIX = "rental_commission_percent_user_"


def seller_commission_key(user_id: str) -> str:
    return f"{SELLER_COMMISSION_PREFIX}{user_id}"


async def list_rules(active_only: bool = False) -> List[Dict]:
    query = {"active": True} if active_only else {}
    return await db.pricing_rules.find(query, {"_id": 0}).sort("key", 1).to_list(1000)


async def get_rule(key: str) -> Optional[Dict]:
    return await db.pricing_rules.find_one({"key": key}, {"_id": 0})


async def upsert_rule(key: str, data: Dict[str, Any], updated_by: str = "system") -> Dict:
    """Cria ou atualiza uma regra pela chave"""
    data = {k: v for k, v in data.items() if v is not None}
    data["key"] = key
    data["updated_at"] = now_iso()
    data["updated_by"] = updated_by

    existing = await db.pricing_rules.find_one({"key": key})
    if existing:
        await db.pricing_rules.update_one({"key": key}, {"$set": data})
    else:
        data.setdefault("id", str(uuid.uuid4()))
        data.setdefault("active", True)
        data.setdefault("unit", "")
        data.setdefault("name", key)
        data["created_at"] = now_iso()
        await db.pricing_rules.insert_one(data)

    logger.info(f"[PRICING_RULE] {key}={data.get('value')} by={updated_by}")
    return await db.pricing_rules.find_one({"key": key}, {"_id": 0})


async def _active_value(key: str) -> Optional[float]:
    rule = await get_rule(key)
    if not rule or not rule.get("active", True) or rule.get("value") is None:
        return None
    return float(rule["value"])


async def get_commission_percent(user_id: str) -> Dict[str, Any]:
    """Regra do vendedor, senão a padrão, senão 0."""
    seller = await _active_value(seller_commission_key(user_id))
    if seller is not None:
        return {"user_id": user_id, "percent": seller, "source": "seller"}

    default = await _active_value(DEFAULT_COMMISSION_KEY)
    if default is not None:
        return {"user_id": user_id, "percent": default, "source": "default"}

    return {"user_id": user_id, "percent": 0.0, "source": "none"}


async def get_manager_override_percent() -> float:
    return await _active_value(MANAGER_OVERRIDE_KEY) or 0.0
