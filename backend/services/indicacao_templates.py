"""
Rental Energia - Indicações PJ em lote

Um modelo guarda os dados da empresa (CNPJ, contatos, representante) e o
vendedor dono. Os códigos de instalação chegam por CSV
(codigo_instalacao;codigo_cliente;unidade_consumidora) e cada linha
pendente vira uma indicação PJ Rental com os dados do modelo.
"""

import csv
import io
import uuid
import logging
import unicodedata
from typing import Optional, Dict, Any, List, Tuple

from config import db, now_iso
from services.formatters import only_digits
from services.indicacao_assets import save_metadata
from services.indicacoes import insert_indicacao
from services.permissions import (
    STAFF_ROLES,
    SUPPORT_ROLES,
    check_supervisor_assignment,
    get_supervisor_visible_user_ids,
    has_sales_access,
    is_user_active,
)

logger = logging.getLogger("indicacao_templates")

TEMPLATE_BRAND = "rental"
ITEM_STATUSES = ["PENDING", "CREATED", "ERROR"]

INSTALL_HEADERS = {"codigoinstalacao", "instalacao", "codinstalacao"}
CLIENT_HEADERS = {"codigocliente", "uc", "unidade", "codigouc"}
ADDRESS_HEADERS = {"unidadeconsumidora", "localizacaouc", "endereco", "localizacao"}

INVALID_HEADER_MESSAGE = "Cabeçalho inválido. Use: codigo_instalacao;codigo_cliente;unidade_consumidora"


class TemplateError(Exception):
    pass


class TemplateNotFoundError(TemplateError):
    pass


class TemplatePermissionError(TemplateError):
    pass


class TemplateImportError(TemplateError):
    def __init__(self, message: str, errors: List[dict]):
        super().__init__(message)
        self.errors = errors


# ════════════════════════════════════════════════════════════════════════
# CSV
# ════════════════════════════════════════════════════════════════════════

def normalize_header(value: str) -> str:
    """'Código de Instalação' -> 'codigodeinstalacao' (sem acento, espaço, _ ou -)"""
    decomposed = unicodedata.normalize("NFD", value or "")
    plain = "".join(c for c in decomposed if unicodedata.category(c) != "Mn")
    return "".join(c for c in plain.lower() if c not in " _-\t")


def _find_column(headers: List[str], accepted: set) -> Optional[int]:
    for index, header in enumerate(headers):
        if header in accepted:
            return index
    return None


def _detect_delimiter(header_line: str) -> str:
    """Planilhas brasileiras exportam com ponto e vírgula; vírgula também é aceita."""
    return "," if header_line.count(",") > header_line.count(";") else ";"


def parse_items_csv(raw_csv: str) -> Tuple[List[dict], List[dict]]:
    """
    Retorna (itens, erros). Cada erro traz a linha do arquivo (cabeçalho = 1).
    Cabeçalho sem as colunas de instalação ou endereço levanta TemplateImportError.
    """
    text = (raw_csv or "").lstrip("\ufeff").strip()
    if not text:
        raise TemplateImportError("CSV vazio", [])

    first_line = text.splitlines()[0]
    reader = csv.reader(io.StringIO(text), delimiter=_detect_delimiter(first_line))
    rows = [row for row in reader]

    headers = [normalize_header(h) for h in rows[0]]
    install_col = _find_column(headers, INSTALL_HEADERS)
    client_col = _find_column(headers, CLIENT_HEADERS)
    address_col = _find_column(headers, ADDRESS_HEADERS)
    if install_col is None or address_col is None:
        raise TemplateImportError(INVALID_HEADER_MESSAGE, [])

    def cell(row: List[str], col: Optional[int]) -> str:
        if col is None or col >= len(row):
            return ""
        return row[col].strip()

    items: List[dict] = []
    errors: List[dict] = []
    seen = set()
    for index, row in enumerate(rows[1:]):
        line = index + 2
        if not any(c.strip() for c in row):
            continue

        codigo = cell(row, install_col)
        if not codigo:
            errors.append({"line": line, "error": "Código de instalação ausente."})
            continue
        if codigo in seen:
            errors.append({"line": line, "codigo_instalacao": codigo,
                           "error": "Código de instalação duplicado no CSV."})
            continue
        unidade = cell(row, address_col)
        if not unidade:
            errors.append({"line": line, "codigo_instalacao": codigo, "error": "Endereço da UC ausente."})
            continue

        seen.add(codigo)
        items.append({
            "line": line,
            "codigo_instalacao": codigo,
            "codigo_cliente": cell(row, client_col) or None,
            "unidade_consumidora": unidade,
        })
    return items, errors


# ════════════════════════════════════════════════════════════════════════
# MODELOS
# ════════════════════════════════════════════════════════════════════════

def _can_see_all(user: dict) -> bool:
    return user.get("role") in STAFF_ROLES | SUPPORT_ROLES


async def _check_vendor(user: dict, vendedor_id: str):
    vendor = await db.users.find_one({"id": vendedor_id}, {"_id": 0})
    if not vendor or not is_user_active(vendor):
        raise TemplateError("Vendedor não encontrado ou inativo.")
    if not has_sales_access(vendor):
        raise TemplateError("Usuário selecionado não tem acesso de vendas.")

    if vendedor_id == user["id"]:
        return
    if user.get("role") == "supervisor":
        error = await check_supervisor_assignment(user["id"], vendedor_id)
        if error:
            raise TemplatePermissionError(error)
        return
    if user.get("role") not in STAFF_ROLES:
        raise TemplatePermissionError("Você não pode criar modelos para outro vendedor.")


def build_base_payload(data: dict) -> Dict[str, Any]:
    """Dados da empresa copiados para cada indicação gerada."""
    return {
        "marca": TEMPLATE_BRAND,
        "tipoPessoa": "PJ",
        "nomeEmpresa": data.get("nome_empresa"),
        "cnpj": only_digits(data["cnpj"]),
        "emailSignatario": data["email"],
        "emailFatura": data["email"],
        "telefoneCobranca": only_digits(data["telefone"]),
        "whatsappSignatario": only_digits(data["telefone"]),
        "representanteLegal": data.get("representante_legal"),
        "cpfRepresentante": only_digits(data.get("cpf_representante") or "") or None,
        "rgRepresentante": data.get("rg_representante"),
    }


async def create_template(data: dict, user: dict) -> dict:
    await _check_vendor(user, data["vendedor_id"])

    now = now_iso()
    template = {
        "id": str(uuid.uuid4()),
        "name": data["name"],
        "user_id": user["id"],
        "vendedor_id": data["vendedor_id"],
        "marca": TEMPLATE_BRAND,
        "tipo": "PJ",
        "base_payload": build_base_payload(data),
        "created_at": now,
        "updated_at": now,
    }
    await db.indicacao_templates.insert_one(template)
    template.pop("_id", None)

    logger.info(f"[TEMPLATE] criado {template['id']} vendedor={data['vendedor_id']}")
    return template


async def _visibility_query(user: dict) -> dict:
    if _can_see_all(user):
        return {}
    owners = [user["id"]]
    if user.get("role") == "supervisor":
        owners = await get_supervisor_visible_user_ids(user["id"])
    return {"$or": [{"user_id": {"$in": owners}}, {"vendedor_id": {"$in": owners}}]}


async def _item_counts(template_id: str) -> Dict[str, int]:
    counts = {status: 0 for status in ITEM_STATUSES}
    items = await db.indicacao_template_items.find(
        {"template_id": template_id}, {"_id": 0, "status": 1}
    ).to_list(100000)
    for item in items:
        counts[item["status"]] = counts.get(item["status"], 0) + 1
    return counts


async def list_templates(user: dict) -> List[dict]:
    templates = await db.indicacao_templates.find(await _visibility_query(user), {"_id": 0}) \
        .sort("created_at", -1).to_list(500)
    for template in templates:
        template["item_counts"] = await _item_counts(template["id"])
    return templates


async def get_template(template_id: str, user: dict) -> dict:
    query = await _visibility_query(user)
    query["id"] = template_id
    template = await db.indicacao_templates.find_one(query, {"_id": 0})
    if not template:
        raise TemplateNotFoundError("Modelo não encontrado")
    return template


async def list_template_items(template_id: str) -> List[dict]:
    return await db.indicacao_template_items.find({"template_id": template_id}, {"_id": 0}) \
        .sort("created_at", 1).to_list(100000)


async def _codes_in_indicacoes(codes: List[str]) -> set:
    rows = await db.indicacoes.find(
        {"codigo_instalacao": {"$in": codes}}, {"_id": 0, "codigo_instalacao": 1}
    ).to_list(len(codes) or 1)
    return {r["codigo_instalacao"] for r in rows}


async def import_template_items(template: dict, raw_csv: str) -> Dict[str, Any]:
    items, errors = parse_items_csv(raw_csv)
    codes = [i["codigo_instalacao"] for i in items]

    in_indicacoes = await _codes_in_indicacoes(codes)
    in_templates = await db.indicacao_template_items.find(
        {"codigo_instalacao": {"$in": codes}}, {"_id": 0, "codigo_instalacao": 1}
    ).to_list(len(codes) or 1)
    in_templates = {r["codigo_instalacao"] for r in in_templates}

    now = now_iso()
    docs = []
    for item in items:
        codigo = item["codigo_instalacao"]
        if codigo in in_indicacoes:
            errors.append({"line": item["line"], "codigo_instalacao": codigo,
                           "error": "Código de instalação já existe nas indicações."})
            continue
        if codigo in in_templates:
            errors.append({"line": item["line"], "codigo_instalacao": codigo,
                           "error": "Código de instalação já existe em outro template."})
            continue
        docs.append({
            "id": str(uuid.uuid4()),
            "template_id": template["id"],
            "codigo_instalacao": codigo,
            "codigo_cliente": item["codigo_cliente"],
            "unidade_consumidora": item["unidade_consumidora"],
            "status": "PENDING",
            "indicacao_id": None,
            "error_message": None,
            "created_at": now,
            "updated_at": now,
        })

    if docs:
        await db.indicacao_template_items.insert_many(docs)

    errors.sort(key=lambda e: e["line"])
    logger.info(f"[TEMPLATE] {template['id']}: {len(docs)} itens importados, {len(errors)} recusados")
    return {"inserted": len(docs), "skipped": len(errors), "errors": errors}


async def _mark_item(item_id: str, status: str, indicacao_id: Optional[str] = None,
                     error_message: Optional[str] = None):
    await db.indicacao_template_items.update_one(
        {"id": item_id},
        {"$set": {"status": status, "indicacao_id": indicacao_id,
                  "error_message": error_message, "updated_at": now_iso()}}
    )


async def generate_indicacoes(template: dict, user: dict) -> Dict[str, int]:
    """Cria uma indicação PJ para cada item pendente, na ordem de importação."""
    base = template.get("base_payload") or {}
    email = base.get("emailSignatario")
    telefone = base.get("telefoneCobranca")
    if not email or not telefone:
        raise TemplateError("Modelo sem email ou telefone")

    items = await db.indicacao_template_items.find(
        {"template_id": template["id"], "status": "PENDING"}, {"_id": 0}
    ).sort("created_at", 1).to_list(100000)

    existing = await _codes_in_indicacoes([i["codigo_instalacao"] for i in items])

    created = skipped = failed = 0
    for item in items:
        codigo = item["codigo_instalacao"]
        if codigo in existing:
            await _mark_item(item["id"], "ERROR", error_message="Código de instalação já existe nas indicações.")
            skipped += 1
            continue

        fields = {
            "tipo": "PJ",
            "nome": codigo,
            "email": email,
            "telefone": telefone,
            "cnpj": base.get("cnpj"),
            "razao_social": base.get("nomeEmpresa"),
            "responsavel": base.get("representanteLegal"),
            "codigo_instalacao": codigo,
            "codigo_cliente_energia": item.get("codigo_cliente"),
            "unidade_consumidora": item.get("unidade_consumidora"),
            "template_id": template["id"],
        }
        try:
            indicacao = await insert_indicacao(
                fields, marca=TEMPLATE_BRAND, owner_id=template["vendedor_id"], user=user, origem="template"
            )
            await save_metadata(indicacao["id"], template["vendedor_id"], {
                **base,
                "codigoInstalacao": codigo,
                "codigoCliente": item.get("codigo_cliente"),
                "unidadeConsumidora": item.get("unidade_consumidora"),
            })
        except Exception as e:
            logger.error(f"[TEMPLATE] falha ao gerar indicação de {codigo}: {e}")
            await _mark_item(item["id"], "ERROR", error_message=str(e))
            failed += 1
            continue

        await _mark_item(item["id"], "CREATED", indicacao_id=indicacao["id"])
        existing.add(codigo)
        created += 1

    logger.info(f"[TEMPLATE] {template['id']}: {created} criadas, {skipped} ignoradas, {failed} falhas")
    return {"created": created, "skipped": skipped, "failed": failed}
