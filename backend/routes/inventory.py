"""
Rental Energia - Rotas Estoque
Leitura para qualquer usuário autenticado; escrita exige a seção "estoque".
"""

import uuid
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional

from config import db, now_iso
from routes.auth import get_current_user
from models import ProductCreate, ProductUpdate, StockMovementCreate
from services.activity_logger import log_activity
from services.inventory import StockError, get_stock_stats, register_movement, stock_snapshot
from services.permissions import require_section

router = APIRouter(prefix="/inventory", tags=["Estoque"])

estoque_user = require_section("estoque")


@router.get("/products")
async def list_products(
    active: Optional[bool] = None,
    type: Optional[str] = None,
    user: dict = Depends(get_current_user)
):
    query = {}
    if active is not None:
        query["active"] = active
    if type:
        query["type"] = type
    products = await db.products.find(query, {"_id": 0}).sort("name", 1).to_list(2000)
    return {"products": products, "count": len(products)}


@router.post("/products", status_code=201)
async def create_product(data: ProductCreate, user: dict = Depends(estoque_user)):
    now = now_iso()
    product = {
        "id": str(uuid.uuid4()),
        **data.model_dump(),
        "stock_reserved": 0,
        "created_at": now,
        "updated_at": now,
    }
    await db.products.insert_one(product)
    product.pop("_id", None)
    await log_activity(user=user, action="create", entity_type="product",
                       entity_id=product["id"], entity_name=product["name"])
    return {"success": True, "product": product}


@router.get("/stats")
async def stock_stats(product_ids: str = Query(""), user: dict = Depends(get_current_user)):
    """product_ids separados por vírgula"""
    ids = [p.strip() for p in product_ids.split(",") if p.strip()]
    return {"stats": await get_stock_stats(ids)}


@router.get("/products/{product_id}")
async def get_product(product_id: str, user: dict = Depends(get_current_user)):
    product = await db.products.find_one({"id": product_id}, {"_id": 0})
    if not product:
        raise HTTPException(status_code=404, detail="Produto não encontrado")
    return product


@router.put("/products/{product_id}")
async def update_product(product_id: str, data: ProductUpdate, user: dict = Depends(estoque_user)):
    if not await db.products.find_one({"id": product_id}):
        raise HTTPException(status_code=404, detail="Produto não encontrado")
    updates = data.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="Nenhuma atualização enviada")
    updates["updated_at"] = now_iso()
    await db.products.update_one({"id": product_id}, {"$set": updates})
    return {"success": True, "product": await db.products.find_one({"id": product_id}, {"_id": 0})}


@router.delete("/products/{product_id}")
async def delete_product(product_id: str, user: dict = Depends(estoque_user)):
    product = await db.products.find_one({"id": product_id}, {"_id": 0})
    if not product:
        raise HTTPException(status_code=404, detail="Produto não encontrado")
    await db.products.delete_one({"id": product_id})
    await log_activity(user=user, action="delete", entity_type="product",
                       entity_id=product_id, entity_name=product.get("name"))
    return {"success": True}


@router.get("/products/{product_id}/realtime")
async def product_realtime(product_id: str, user: dict = Depends(get_current_user)):
    product = await db.products.find_one({"id": product_id}, {"_id": 0})
    if not product:
        raise HTTPException(status_code=404, detail="Produto não encontrado")
    return stock_snapshot(product)


@router.get("/movements")
async def list_movements(product_id: Optional[str] = None, limit: int = 100,
                         user: dict = Depends(get_current_user)):
    query = {"product_id": product_id} if product_id else {}
    limit = max(1, min(limit, 500))
    rows = await db.stock_movements.find(query, {"_id": 0}).sort("created_at", -1).to_list(limit)
    return {"movements": rows, "count": len(rows)}


@router.post("/movements", status_code=201)
async def create_movement(data: StockMovementCreate, user: dict = Depends(estoque_user)):
    try:
        result = await register_movement(data.product_id, data.type, data.quantity, data.reason, user.get("id"))
    except StockError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, **result}
