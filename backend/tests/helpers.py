"""
Rental Energia - Helpers de teste
Usuários, sessões e indicações gravados direto no banco em memória.
"""

import asyncio
import uuid

import config
from config import generate_token, hash_password, now_iso, session_expiry_iso

PASSWORD = "RentalTeste2026!"

COLLECTIONS = [
    "users", "sessions", "activity_logs",
    "indicacoes", "indicacao_interactions",
    "crm_pipelines", "crm_stages", "crm_cards", "crm_stage_history",
    "contracts", "contract_units", "files",
    "usinas", "energia_ucs", "historico_producao", "alocacoes_clientes", "faturas_conciliacao",
    "products", "stock_movements", "proposals", "proposal_items", "pricing_rules",
    "financeiro_transacoes",
    "tasks", "task_checklists", "task_comments", "task_observers",
    "notifications", "chat_conversations", "chat_participants", "chat_messages",
    "indicacao_templates", "indicacao_template_items", "indicacao_assets", "indicacao_metadata",
    "work_cards", "work_card_proposals", "work_process_items", "work_comments", "work_images",
]

PF_PAYLOAD = {
    "tipo": "PF",
    "nome": "Maria Souza",
    "email": "Maria.Souza@Example.com",
    "telefone": "(65) 99988-7766",
    "cpf": "123.456.789-01",
    "rg": "1234567",
    "endereco": "Rua das Flores, 100",
    "cep": "78000-000",
    "cidade": "Cuiabá",
    "estado": "MT",
}

PJ_PAYLOAD = {
    "tipo": "PJ",
    "nome": "Solar Comércio",
    "email": "contato@solarcomercio.com.br",
    "telefone": "6533221100",
    "cnpj": "12.345.678/0001-90",
    "razao_social": "Solar Comércio LTDA",
    "responsavel": "João Lima",
    "endereco": "Av. Brasil, 2000",
    "cep": "78010000",
    "cidade": "Cuiabá",
    "estado": "MT",
}


def run(coro):
    """Run async DB operation in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def clear_db():
    async def _clear():
        for name in COLLECTIONS:
            await config.db[name].delete_many({})
    run(_clear())


def create_user(role: str = "adm_mestre", **fields) -> dict:
    user = {
        "id": str(uuid.uuid4()),
        "email": f"{role}.{uuid.uuid4().hex[:8]}@rental.test",
        "password": hash_password(PASSWORD),
        "nome": f"Teste {role}",
        "role": role,
        "status": "active",
        "created_at": now_iso(),
    }
    user.update(fields)
    run(config.db.users.insert_one(user))
    user.pop("_id", None)
    return user


def auth_headers(user: dict, scope: str = None) -> dict:
    token = generate_token()
    run(config.db.sessions.insert_one({
        "token": token,
        "user_id": user["id"],
        "created_at": now_iso(),
        "expires_at": session_expiry_iso(),
    }))
    headers = {"Authorization": f"Bearer {token}"}
    if scope:
        headers["X-Brand-Scope"] = scope
    return headers


def create_indicacao(user_id: str, **fields) -> dict:
    now = now_iso()
    indicacao = {
        "id": str(uuid.uuid4()),
        "tipo": "PF",
        "nome": "Cliente Teste",
        "email": "cliente@example.com",
        "telefone": "65999887766",
        "marca": "rental",
        "status": "EM_ANALISE",
        "user_id": user_id,
        "contrato_enviado_em": None,
        "assinada_em": None,
        "created_at": now,
        "updated_at": now,
    }
    indicacao.update(fields)
    run(config.db.indicacoes.insert_one(indicacao))
    indicacao.pop("_id", None)
    return indicacao
