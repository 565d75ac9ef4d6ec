"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Rental Energia - Rotas Quadro de Obras                                      ║
║                                                                              ║
║  Cards vindos de orçamentos aceitos (Dorata), processos de projeto e         ║
║  execução, comentários, fotos e tarefas vinculadas                           ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from typing import Optional

from models import (
    WorkProcessItemCreate,
    WorkProcessItemUpdate,
    WorkProcessStatusUpdate,
    WorkTasksIntegrationUpdate,
    WorkCommentCreate,
)
from services.activity_logger import log_activity
from services.permissions import require_roles, require_section
from services.work_cards import (
    WORK_BRAND,
    WorkCardError,
    WorkCardNotFoundError,
    add_comment,
    add_image,
    add_process_item,
    backfill_from_accepted_proposals,
    delete_image,
    delete_process_item,
    get_card_for_user,
    get_process_item,
    get_work_card_detail,
    list_card_proposals,
    list_comments,
    list_images,
    list_process_items,
    list_work_cards,
    release_project,
    set_process_item_status,
    set_tasks_integration,
    update_process_item,
)

logger = logging.getLogger("works")

router = APIRouter(prefix="/works", tags=["Obras"])

works_user = require_section("obras")

ALLOWED_IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".heic"}
MAX_IMAGE_SIZE = 10 * 1024 * 1024


def to_http(e: WorkCardError) -> HTTPException:
    if isinstance(e, WorkCardNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


async def _card(work_id: str, user: dict) -> dict:
    try:
        return await get_card_for_user(work_id, user)
    except WorkCardError as e:
        raise to_http(e)


async def _item_and_card(item_id: str, user: dict):
    try:
        item = await get_process_item(item_id)
        card = await get_card_for_user(item["work_id"], user)
    except WorkCardError as e:
        raise to_http(e)
    return item, card


# ==================== CARDS ====================

@router.get("")
async def get_works(
    brand: str = WORK_BRAND,
    status: Optional[str] = None,
    search: Optional[str] = None,
    user: dict = Depends(works_user)
):
    cards = await list_work_cards(user, brand=brand, status=status, search=search)
    return {"works": cards, "count": len(cards)}


@router.post("/backfill")
async def backfill(user: dict = Depends(require_roles("adm_mestre", "adm_dorata"))):
    """Gera cards para todos os orçamentos já aceitos"""
    result = await backfill_from_accepted_proposals(user["id"])
    await log_activity(user=user, action="backfill", entity_type="work_card", details=result)
    return {"success": True, **result}


# ==================== PROCESSOS (por id do item) ====================

@router.patch("/processes/{item_id}")
async def patch_process(item_id: str, data: WorkProcessItemUpdate, user: dict = Depends(works_user)):
    await _item_and_card(item_id, user)
    try:
        item = await update_process_item(item_id, data.model_dump())
    except WorkCardError as e:
        raise to_http(e)
    return {"success": True, "item": item}


@router.patch("/processes/{item_id}/status")
async def patch_process_status(item_id: str, data: WorkProcessStatusUpdate, user: dict = Depends(works_user)):
    _, card = await _item_and_card(item_id, user)
    try:
        item = await set_process_item_status(card, item_id, data.status, user["id"])
    except WorkCardError as e:
        raise to_http(e)
    await log_activity(user=user, action="status_change", entity_type="work_card", entity_id=card["id"],
                       entity_name=card["title"], details={"item_id": item_id, "status": data.status})
    return {"success": True, "item": item}


@router.delete("/processes/{item_id}")
async def remove_process(item_id: str, user: dict = Depends(works_user)):
    _, card = await _item_and_card(item_id, user)
    try:
        await delete_process_item(card, item_id)
    except WorkCardError as e:
        raise to_http(e)
    return {"success": True}


@router.delete("/images/{image_id}")
async def remove_image(image_id: str, work_id: str, user: dict = Depends(works_user)):
    card = await _card(work_id, user)
    try:
        await delete_image(card, image_id)
    except WorkCardError as e:
        raise to_http(e)
    return {"success": True}


# ==================== DETALHE DA OBRA ====================

@router.get("/{work_id}")
async def get_work(work_id: str, user: dict = Depends(works_user)):
    try:
        return await get_work_card_detail(work_id, user)
    except WorkCardError as e:
        raise to_http(e)


@router.get("/{work_id}/proposals")
async def get_work_proposals(work_id: str, user: dict = Depends(works_user)):
    await _card(work_id, user)
    links = await list_card_proposals(work_id)
    return {"proposals": links, "count": len(links)}


@router.get("/{work_id}/processes")
async def get_processes(work_id: str, user: dict = Depends(works_user)):
    await _card(work_id, user)
    items = await list_process_items(work_id)
    return {"items": items, "count": len(items)}


@router.post("/{work_id}/processes", status_code=201)
async def post_process(work_id: str, data: WorkProcessItemCreate, user: dict = Depends(works_user)):
    card = await _card(work_id, user)
    try:
        item = await add_process_item(card, user["id"], data.phase, data.title, data.description, data.due_date)
    except WorkCardError as e:
        raise to_http(e)
    return {"success": True, "item": item}


@router.post("/{work_id}/release")
async def post_release(work_id: str, user: dict = Depends(works_user)):
    """Libera a execução: exige todos os processos de projeto concluídos"""
    card = await _card(work_id, user)
    try:
        card = await release_project(card, user["id"])
    except WorkCardError as e:
        raise to_http(e)
    await log_activity(user=user, action="release", entity_type="work_card",
                       entity_id=work_id, entity_name=card["title"])
    return {"success": True, "work": card}


@router.patch("/{work_id}/tasks-integration")
async def patch_tasks_integration(work_id: str, data: WorkTasksIntegrationUpdate, user: dict = Depends(works_user)):
    card = await _card(work_id, user)
    result = await set_tasks_integration(card, data.enabled, user["id"])
    return {"success": True, **result}


@router.get("/{work_id}/comments")
async def get_comments(work_id: str, user: dict = Depends(works_user)):
    await _card(work_id, user)
    comments = await list_comments(work_id)
    return {"comments": comments, "count": len(comments)}


@router.post("/{work_id}/comments", status_code=201)
async def post_comment(work_id: str, data: WorkCommentCreate, user: dict = Depends(works_user)):
    card = await _card(work_id, user)
    try:
        comment = await add_comment(card, user, data.content, data.comment_type, data.phase)
    except WorkCardError as e:
        raise to_http(e)
    return {"success": True, "comment": comment}


@router.get("/{work_id}/images")
async def get_images(work_id: str, user: dict = Depends(works_user)):
    await _card(work_id, user)
    images = await list_images(work_id)
    return {"images": images, "count": len(images)}


@router.post("/{work_id}/images", status_code=201)
async def post_image(
    work_id: str,
    file: UploadFile = File(...),
    image_type: str = Form(...),
    caption: Optional[str] = Form(None),
    sort_order: int = Form(0),
    user: dict = Depends(works_user)
):
    card = await _card(work_id, user)

    filename = file.filename or "imagem"
    extension = ("." + filename.rsplit(".", 1)[-1].lower()) if "." in filename else ""
    if extension not in ALLOWED_IMAGE_EXTENSIONS:
        raise HTTPException(status_code=400, detail=f"Extensão não permitida: {extension or 'sem extensão'}")

    content = await file.read()
    if len(content) > MAX_IMAGE_SIZE:
        raise HTTPException(status_code=400, detail="Imagem maior que 10MB")

    try:
        image = await add_image(card, user, image_type.strip().upper(), content, filename,
                                file.content_type or "image/jpeg", caption=caption, sort_order=sort_order)
    except WorkCardError as e:
        raise to_http(e)
    return {"success": True, "image": image}
