"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Rental Energia - Rotas Tarefas                                              ║
║                                                                              ║
║  Tarefas com checklist, comentários (menções/respostas) e observadores       ║
║  Checklist com evento sincroniza o status da indicação vinculada             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from typing import Optional

from config import db
from models import (
    TaskCreate,
    TaskUpdate,
    TaskStatusUpdate,
    ChecklistItemCreate,
    ChecklistToggle,
    CommentCreate,
    ObserverAdd,
)
from services.activity_logger import log_activity
from services.indicacao_state_machine import IndicacaoTransitionError
from services.permissions import (
    enforce_write_brand,
    get_brand_scope_from_request,
    require_section,
)
from services import tasks as task_service
from services.tasks import TaskError

router = APIRouter(prefix="/tasks", tags=["Tarefas"])

tarefas_user = require_section("tarefas")


async def _visible_task(task_id: str, user: dict) -> dict:
    try:
        return await task_service.get_task_detail(task_id, user)
    except TaskError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("")
async def list_tasks(
    request: Request,
    status: Optional[str] = None,
    assignee_id: Optional[str] = None,
    indicacao_id: Optional[str] = None,
    department: Optional[str] = None,
    priority: Optional[str] = None,
    search: Optional[str] = None,
    user: dict = Depends(tarefas_user)
):
    brands = get_brand_scope_from_request(user, request)
    tasks = await task_service.list_tasks(user, brands, {
        "status": status,
        "assignee_id": assignee_id,
        "indicacao_id": indicacao_id,
        "department": department,
        "priority": priority,
        "search": search,
    })
    return {"tasks": tasks, "count": len(tasks)}


@router.post("", status_code=201)
async def create_task(data: TaskCreate, user: dict = Depends(tarefas_user)):
    payload = data.model_dump()
    payload["brand"] = enforce_write_brand(user, data.brand)
    task = await task_service.create_task(payload, user["id"])
    await log_activity(user=user, action="create", entity_type="task",
                       entity_id=task["id"], entity_name=task["title"])
    return {"success": True, "task": task}


@router.get("/{task_id}")
async def get_task(task_id: str, user: dict = Depends(tarefas_user)):
    return await _visible_task(task_id, user)


@router.put("/{task_id}")
async def update_task(task_id: str, data: TaskUpdate, user: dict = Depends(tarefas_user)):
    await _visible_task(task_id, user)
    updates = data.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="Nenhuma atualização enviada")
    task = await task_service.update_task(task_id, updates)
    return {"success": True, "task": task}


@router.delete("/{task_id}")
async def delete_task(task_id: str, user: dict = Depends(tarefas_user)):
    task = await _visible_task(task_id, user)
    if user.get("role") != "adm_mestre" and task.get("creator_id") != user["id"]:
        raise HTTPException(status_code=403, detail="Apenas o criador ou adm_mestre pode excluir a tarefa")
    await task_service.delete_task(task_id)
    await log_activity(user=user, action="delete", entity_type="task",
                       entity_id=task_id, entity_name=task.get("title"))
    return {"success": True}


@router.patch("/{task_id}/status")
async def update_task_status(task_id: str, data: TaskStatusUpdate, user: dict = Depends(tarefas_user)):
    await _visible_task(task_id, user)
    try:
        task = await task_service.update_task_status(task_id, data.status, user)
    except TaskError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "task": task}


# ==================== CHECKLIST ====================

@router.get("/{task_id}/checklists")
async def get_checklists(task_id: str, user: dict = Depends(tarefas_user)):
    await _visible_task(task_id, user)
    return {"items": await task_service.get_checklists(task_id)}


@router.post("/{task_id}/checklists", status_code=201)
async def add_checklist_item(task_id: str, data: ChecklistItemCreate, user: dict = Depends(tarefas_user)):
    await _visible_task(task_id, user)
    try:
        item = await task_service.add_checklist_item(
            task_id, data.title, event_key=data.event_key, due_date=data.due_date, phase=data.phase
        )
    except TaskError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "item": item}


@router.patch("/checklists/{item_id}")
async def toggle_checklist_item(item_id: str, data: ChecklistToggle, user: dict = Depends(tarefas_user)):
    item = await db.task_checklists.find_one({"id": item_id}, {"_id": 0, "task_id": 1})
    if not item:
        raise HTTPException(status_code=404, detail="Item de checklist não encontrado")
    await _visible_task(item["task_id"], user)
    try:
        return await task_service.toggle_checklist_item(item_id, data.is_done, user)
    except (TaskError, IndicacaoTransitionError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/checklists/{item_id}")
async def delete_checklist_item(item_id: str, user: dict = Depends(tarefas_user)):
    item = await db.task_checklists.find_one({"id": item_id}, {"_id": 0, "task_id": 1})
    if not item:
        raise HTTPException(status_code=404, detail="Item de checklist não encontrado")
    await _visible_task(item["task_id"], user)
    await task_service.delete_checklist_item(item_id)
    return {"success": True}


@router.post("/{task_id}/energisa")
async def activate_energisa(task_id: str, user: dict = Depends(tarefas_user)):
    await _visible_task(task_id, user)
    return await task_service.activate_energisa(task_id)


# ==================== COMENTÁRIOS ====================

@router.get("/{task_id}/comments")
async def list_comments(task_id: str, user: dict = Depends(tarefas_user)):
    await _visible_task(task_id, user)
    return {"comments": await task_service.list_comments(task_id)}


@router.post("/{task_id}/comments", status_code=201)
async def add_comment(task_id: str, data: CommentCreate, user: dict = Depends(tarefas_user)):
    await _visible_task(task_id, user)
    try:
        comment = await task_service.add_comment(
            task_id, user, data.content, parent_id=data.parent_id, mention_user_ids=data.mention_user_ids
        )
    except TaskError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "comment": comment}


# ==================== OBSERVADORES ====================

@router.post("/{task_id}/observers", status_code=201)
async def add_observer(task_id: str, data: ObserverAdd, user: dict = Depends(tarefas_user)):
    await _visible_task(task_id, user)
    if not await db.users.find_one({"id": data.user_id}):
        raise HTTPException(status_code=400, detail="Usuário não encontrado")
    return {"success": True, "observer": await task_service.add_observer(task_id, data.user_id)}


@router.delete("/{task_id}/observers/{user_id}")
async def remove_observer(task_id: str, user_id: str, user: dict = Depends(tarefas_user)):
    await _visible_task(task_id, user)
    removed = await task_service.remove_observer(task_id, user_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Observador não encontrado")
    return {"success": True}
