"""
Rental Energia - Rotas de indicações PJ em lote (modelos + CSV)
"""

import logging
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from routes.auth import get_current_user
from models import IndicacaoTemplateCreate, TemplateItemsImport
from services.activity_logger import log_activity
from services.indicacao_templates import (
    TemplateError,
    TemplateImportError,
    TemplateNotFoundError,
    TemplatePermissionError,
    create_template,
    generate_indicacoes,
    get_template,
    import_template_items,
    list_template_items,
    list_templates,
)

logger = logging.getLogger("indicacao_templates")

router = APIRouter(prefix="/indicacao-templates", tags=["Indicações em lote"])

MAX_CSV_SIZE = 2 * 1024 * 1024


def to_http(e: TemplateError) -> HTTPException:
    if isinstance(e, TemplateNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, TemplatePermissionError):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, TemplateImportError):
        return HTTPException(status_code=400, detail={"message": str(e), "errors": e.errors})
    return HTTPException(status_code=400, detail=str(e))


@router.post("", status_code=201)
async def post_template(data: IndicacaoTemplateCreate, user: dict = Depends(get_current_user)):
    try:
        template = await create_template(data.model_dump(), user)
    except TemplateError as e:
        raise to_http(e)
    await log_activity(user=user, action="create", entity_type="indicacao_template",
                       entity_id=template["id"], entity_name=template["name"])
    return {"success": True, "template": template}


@router.get("")
async def get_templates(user: dict = Depends(get_current_user)):
    templates = await list_templates(user)
    return {"templates": templates, "count": len(templates)}


@router.get("/{template_id}")
async def get_template_detail(template_id: str, user: dict = Depends(get_current_user)):
    try:
        template = await get_template(template_id, user)
    except TemplateError as e:
        raise to_http(e)
    template["items"] = await list_template_items(template_id)
    return template


async def _import(template_id: str, raw_csv: str, user: dict) -> dict:
    try:
        template = await get_template(template_id, user)
        result = await import_template_items(template, raw_csv)
    except TemplateError as e:
        raise to_http(e)
    await log_activity(user=user, action="import", entity_type="indicacao_template",
                       entity_id=template_id, entity_name=template["name"],
                       details={"inserted": result["inserted"], "skipped": result["skipped"]})
    return {"success": True, **result}


@router.post("/{template_id}/items")
async def import_items(template_id: str, data: TemplateItemsImport, user: dict = Depends(get_current_user)):
    return await _import(template_id, data.raw_csv, user)


@router.post("/{template_id}/items/upload")
async def upload_items(template_id: str, file: UploadFile = File(...), user: dict = Depends(get_current_user)):
    content = await file.read()
    if len(content) > MAX_CSV_SIZE:
        raise HTTPException(status_code=400, detail="CSV maior que 2MB")
    try:
        raw_csv = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raw_csv = content.decode("latin-1")
    return await _import(template_id, raw_csv, user)


@router.post("/{template_id}/generate")
async def generate(template_id: str, user: dict = Depends(get_current_user)):
    try:
        template = await get_template(template_id, user)
        result = await generate_indicacoes(template, user)
    except TemplateError as e:
        raise to_http(e)
    await log_activity(user=user, action="generate", entity_type="indicacao_template",
                       entity_id=template_id, entity_name=template["name"], details=result)
    return {"success": True, **result}
