"""
Rental Energia - Rotas Auth
Login / Logout / Sessão / Perfil / CRUD de usuários (administradores).
"""

from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import uuid

from models.auth import UserLogin, UserCreate, UserUpdate, ProfileUpdate
from config import db, hash_password, generate_token, now_iso, session_expiry_iso
from services.activity_logger import log_activity
from services.permissions import (
    ADMIN_ROLES,
    get_user_brands,
    get_user_sections,
    has_sales_access,
    has_internal_chat_access,
    is_works_user,
    is_user_active,
)

router = APIRouter(prefix="/auth", tags=["Auth"])
security = HTTPBearer(auto_error=False)


# ==================== HELPERS ====================

async def get_user_from_token(token: str):
    """Sessão válida -> usuário (sem senha). None se a sessão não existir ou expirou."""
    session = await db.sessions.find_one({
        "token": token,
        "expires_at": {"$gt": now_iso()}
    })
    if not session:
        return None
    return await db.users.find_one(
        {"id": session["user_id"]},
        {"_id": 0, "password": 0}
    )


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Recupera o usuário logado a partir do token."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Não autenticado")

    session = await db.sessions.find_one({
        "token": credentials.credentials,
        "expires_at": {"$gt": now_iso()}
    })

    if not session:
        raise HTTPException(status_code=401, detail="Sessão expirada")

    user = await db.users.find_one(
        {"id": session["user_id"]},
        {"_id": 0, "password": 0}
    )

    if not user:
        raise HTTPException(status_code=401, detail="Usuário não encontrado")

    if not is_user_active(user):
        raise HTTPException(status_code=403, detail="Conta desativada")

    return user


async def require_admin(user: dict = Depends(get_current_user)):
    """adm_mestre ou adm_dorata."""
    if user.get("role") not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="Acesso de administrador necessário")
    return user


def build_profile(user: dict) -> dict:
    profile = {k: v for k, v in user.items() if k not in ("password", "_id")}
    profile["allowed_brands"] = get_user_brands(user)
    profile["sections"] = get_user_sections(user)
    profile["sales_access"] = has_sales_access(user)
    profile["internal_chat_access"] = has_internal_chat_access(user)
    profile["works_only"] = is_works_user(user)
    return profile


# ==================== LOGIN / LOGOUT ====================

@router.post("/login")
async def login(data: UserLogin, request: Request):
    """Login do usuário."""
    user = await db.users.find_one(
        {"email": data.email.lower().strip()},
        {"_id": 0}
    )

    if not user:
        raise HTTPException(status_code=401, detail="Email ou senha incorretos")

    if user.get("password") != hash_password(data.password):
        raise HTTPException(status_code=401, detail="Email ou senha incorretos")

    if not is_user_active(user):
        raise HTTPException(status_code=403, detail="Conta desativada")

    token = generate_token()
    await db.sessions.insert_one({
        "token": token,
        "user_id": user["id"],
        "created_at": now_iso(),
        "expires_at": session_expiry_iso()
    })

    await log_activity(
        user=user,
        action="login",
        entity_type="user",
        entity_id=user["id"],
        ip_address=request.client.host if request.client else None
    )

    return {"token": token, "user": build_profile(user)}


@router.post("/logout")
async def logout(
    user: dict = Depends(get_current_user),
    credentials: HTTPAuthorizationCredentials = Depends(security)
):
    if credentials:
        await db.sessions.delete_one({"token": credentials.credentials})
    return {"success": True}


@router.get("/me")
async def get_me(user: dict = Depends(get_current_user)):
    """Usuário + marcas, seções e acessos calculados."""
    return build_profile(user)


@router.put("/me")
async def update_me(data: ProfileUpdate, user: dict = Depends(get_current_user)):
    update_data = {}
    if data.nome is not None:
        update_data["nome"] = data.nome.strip()
    if data.telefone is not None:
        update_data["telefone"] = data.telefone
    if data.company_name is not None:
        update_data["company_name"] = data.company_name
    if data.password is not None:
        update_data["password"] = hash_password(data.password)

    if not update_data:
        raise HTTPException(status_code=400, detail="Nenhuma atualização enviada")

    update_data["updated_at"] = now_iso()
    await db.users.update_one({"id": user["id"]}, {"$set": update_data})

    updated = await db.users.find_one({"id": user["id"]}, {"_id": 0, "password": 0})
    return {"success": True, "user": build_profile(updated)}


# ==================== CRUD DE USUÁRIOS (administradores) ====================

@router.get("/users")
async def list_users(user: dict = Depends(require_admin)):
    users = await db.users.find({}, {"_id": 0, "password": 0}).sort("nome", 1).to_list(1000)
    return {"users": users}


@router.post("/users", status_code=201)
async def create_user(data: UserCreate, user: dict = Depends(require_admin)):
    existing = await db.users.find_one({"email": data.email})
    if existing:
        raise HTTPException(status_code=400, detail="Este email já está cadastrado")

    if data.role == "adm_mestre" and user.get("role") != "adm_mestre":
        raise HTTPException(status_code=403, detail="Apenas adm_mestre pode criar adm_mestre")

    new_user = {
        "id": str(uuid.uuid4()),
        "email": data.email,
        "password": hash_password(data.password),
        "nome": data.nome,
        "telefone": data.telefone,
        "role": data.role,
        "allowed_brands": data.brands,
        "department": data.department,
        "supervisor_id": data.supervisor_id,
        "company_name": data.company_name,
        "status": "active",
        "created_at": now_iso(),
        "created_by": user.get("id")
    }

    await db.users.insert_one(new_user)

    await log_activity(
        user=user,
        action="create_user",
        entity_type="user",
        entity_id=new_user["id"],
        entity_name=new_user["email"],
        details={"role": data.role, "brands": data.brands}
    )

    new_user.pop("password", None)
    new_user.pop("_id", None)
    return {"success": True, "user": new_user}


@router.put("/users/{user_id}")
async def update_user(user_id: str, data: UserUpdate, user: dict = Depends(require_admin)):
    target = await db.users.find_one({"id": user_id})
    if not target:
        raise HTTPException(status_code=404, detail="Usuário não encontrado")

    if target.get("role") == "adm_mestre" and user.get("role") != "adm_mestre":
        raise HTTPException(status_code=403, detail="Não é possível alterar um adm_mestre")

    update_data = data.model_dump(exclude_none=True)
    if "brands" in update_data:
        update_data["allowed_brands"] = update_data.pop("brands")
    if update_data.get("role") == "adm_mestre" and user.get("role") != "adm_mestre":
        raise HTTPException(status_code=403, detail="Não é possível atribuir o papel adm_mestre")

    if not update_data:
        raise HTTPException(status_code=400, detail="Nenhuma atualização enviada")

    update_data["updated_at"] = now_iso()
    await db.users.update_one({"id": user_id}, {"$set": update_data})

    if update_data.get("status") == "inactive":
        await db.sessions.delete_many({"user_id": user_id})

    await log_activity(
        user=user,
        action="update_user",
        entity_type="user",
        entity_id=user_id,
        entity_name=target.get("email"),
        details={k: v for k, v in update_data.items() if k != "updated_at"}
    )

    updated = await db.users.find_one({"id": user_id}, {"_id": 0, "password": 0})
    return {"success": True, "user": updated}


@router.delete("/users/{user_id}")
async def delete_user(user_id: str, user: dict = Depends(require_admin)):
    target = await db.users.find_one({"id": user_id})
    if not target:
        raise HTTPException(status_code=404, detail="Usuário não encontrado")

    if user_id == user.get("id"):
        raise HTTPException(status_code=400, detail="Não é possível excluir a própria conta")

    if target.get("role") == "adm_mestre" and user.get("role") != "adm_mestre":
        raise HTTPException(status_code=403, detail="Não é possível excluir um adm_mestre")

    await db.users.delete_one({"id": user_id})
    await db.sessions.delete_many({"user_id": user_id})

    await log_activity(
        user=user,
        action="delete_user",
        entity_type="user",
        entity_id=user_id,
        entity_name=target.get("email")
    )

    return {"success": True}
