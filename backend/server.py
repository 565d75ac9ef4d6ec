"""
Rental Energia - API Backend

Inicia com:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
import logging

from config import client, db, CORS_ORIGINS, SCHEDULER_ENABLED, now_iso
from services.permissions import is_works_path_allowed, is_works_user

# Configuração de logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("rental_energia")

app = FastAPI(
    title="Rental Energia",
    description="Indicações, contratos, energia, estoque, tarefas e chat interno",
    version="1.0.0"
)

# ==================== IMPORT DAS ROTAS ====================

from routes import (  # noqa: E402
    auth, indicacoes, webhooks, crm, contracts, files, energy,
    inventory, proposals, financial, tasks, notifications, chat, activity,
    indicacao_templates, works,
)

for module in (auth, indicacoes, webhooks, crm, contracts, files, energy,
               inventory, proposals, financial, tasks, notifications, chat, activity,
               indicacao_templates, works):
    app.include_router(module.router, prefix="/api")


# ==================== DEPARTAMENTO DE OBRAS ====================

@app.middleware("http")
async def works_department_gate(request: Request, call_next):
    """Usuários de obras só acessam chat, notificações e tarefas."""
    path = request.url.path
    if path.startswith("/api") and not is_works_path_allowed(path):
        auth_header = request.headers.get("authorization") or ""
        if auth_header.lower().startswith("bearer "):
            user = await auth.get_user_from_token(auth_header[7:].strip())
            if user and is_works_user(user):
                logger.warning(f"[PERMISSION_DENIED] obras user={user.get('email')} path={path}")
                return JSONResponse(
                    status_code=403,
                    content={"detail": "Acesso restrito ao departamento de obras"}
                )
    return await call_next(request)


app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== ROTAS RAIZ ====================

@app.get("/api")
async def root():
    return {
        "name": "Rental Energia API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


@app.get("/api/health")
async def health():
    return {"status": "ok", "timestamp": now_iso()}


# ==================== STARTUP / SHUTDOWN ====================

@app.on_event("startup")
async def startup():
    logger.info("Rental Energia API iniciada")

    await db.users.create_index("email", unique=True)
    await db.sessions.create_index("token")
    await db.indicacoes.create_index("user_id")
    await db.indicacoes.create_index("created_at")
    await db.notifications.create_index("recipient_user_id")
    await db.chat_participants.create_index([("conversation_id", 1), ("user_id", 1)], unique=True)
    await db.work_cards.create_index([("brand", 1), ("installation_key", 1)], unique=True)
    await db.work_process_items.create_index([("work_id", 1), ("phase", 1)])
    await db.indicacao_assets.create_index([("indicacao_id", 1), ("file_key", 1)], unique=True)
    await db.indicacao_template_items.create_index("codigo_instalacao")

    from services.crm_pipeline import ensure_default_pipelines
    created = await ensure_default_pipelines()
    if created:
        logger.info(f"[CRM] {created} pipeline(s) padrão criado(s)")

    if SCHEDULER_ENABLED:
        from scheduler_service import task_scheduler
        task_scheduler.start()


@app.on_event("shutdown")
async def shutdown():
    if SCHEDULER_ENABLED:
        from scheduler_service import task_scheduler
        task_scheduler.stop()
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
