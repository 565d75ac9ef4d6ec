"""
Rental Energia - Seed de usuários de teste (dev/staging apenas)
Cria uma conta por papel com credenciais previsíveis.
Rodar: python scripts/seed_test_users.py
Reset: python scripts/seed_test_users.py --reset
"""

import asyncio
import sys
import uuid
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import client, db, hash_password, now_iso  # noqa: E402
from services.crm_pipeline import ensure_default_pipelines  # noqa: E402

# Mesma senha para todas as contas de teste
TEST_PASSWORD = "RentalTeste2026!"

TEST_USERS = [
    {"email": "mestre@test.local",      "nome": "Adm Mestre",        "role": "adm_mestre",       "brands": ["rental", "dorata"]},
    {"email": "dorata@test.local",      "nome": "Adm Dorata",        "role": "adm_dorata",       "brands": ["dorata", "rental"]},
    {"email": "supervisor@test.local",  "nome": "Supervisor Rental", "role": "supervisor",       "brands": ["rental"]},
    {"email": "interno@test.local",     "nome": "Vendedor Interno",  "role": "vendedor_interno", "brands": ["rental"],
     "supervisor_email": "supervisor@test.local"},
    {"email": "externo@test.local",     "nome": "Vendedor Externo",  "role": "vendedor_externo", "brands": ["rental", "dorata"]},
    {"email": "n1@test.local",          "nome": "Funcionário N1",    "role": "funcionario_n1",   "brands": ["rental"]},
    {"email": "suporte@test.local",     "nome": "Suporte Técnico",   "role": "suporte_tecnico",  "brands": ["rental"]},
    {"email": "investidor@test.local",  "nome": "Investidor",        "role": "investidor",       "brands": ["rental"]},
    {"email": "obras@test.local",       "nome": "Equipe de Obras",   "role": "funcionario_n1",   "brands": ["rental"],
     "department": "obras"},
]


async def reset():
    """Remove os usuários @test.local e suas sessões"""
    users = await db.users.find({"email": {"$regex": "@test\\.local$"}}, {"_id": 0, "id": 1}).to_list(100)
    await db.sessions.delete_many({"user_id": {"$in": [u["id"] for u in users]}})
    result = await db.users.delete_many({"email": {"$regex": "@test\\.local$"}})
    print(f"{result.deleted_count} usuários de teste removidos")


async def seed():
    """Cria os usuários de teste"""
    ids_by_email = {}
    for u in TEST_USERS:
        doc = {
            "id": str(uuid.uuid4()),
            "email": u["email"],
            "password": hash_password(TEST_PASSWORD),
            "nome": u["nome"],
            "role": u["role"],
            "allowed_brands": u["brands"],
            "department": u.get("department"),
            "supervisor_id": ids_by_email.get(u.get("supervisor_email")),
            "status": "active",
            "created_at": now_iso(),
        }
        await db.users.insert_one(doc)
        ids_by_email[u["email"]] = doc["id"]
        print(f"  Criado: {u['email']} ({u['role']})")

    created = await ensure_default_pipelines()
    print(f"  Pipelines CRM criados: {created}")


async def main():
    await reset()
    if "--reset" in sys.argv:
        print("Reset concluído. Rode sem --reset para recriar.")
    else:
        await seed()
        print(f"\n{len(TEST_USERS)} usuários de teste criados. Senha: {TEST_PASSWORD}")

    client.close()


if __name__ == "__main__":
    asyncio.run(main())
