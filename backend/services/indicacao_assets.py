"""
Rental Energia - Documentos da indicação

Cada indicação tem um conjunto fixo de slots de documento (fatura, documento
com foto, contrato social...). Reenviar um slot substitui o arquivo anterior.
Os metadados livres do cadastro ficam em um objeto JSON por indicação.
"""

import json
import uuid
import logging
from typing import Optional, Dict, Any, List, Tuple

from config import db, now_iso
from services.storage import delete_file, file_url, save_file

logger = logging.getLogger("indicacao_assets")

ALLOWED_FILE_KEYS = [
    "fatura_energia_pf",
    "documento_com_foto_pf",
    "fatura_energia_pj",
    "documento_com_foto_pj",
    "contrato_social",
    "cartao_cnpj",
    "doc_representante",
]

MAX_ASSET_SIZE = 10 * 1024 * 1024

# papéis que enviam documentos em nome do dono da indicação
MANAGE_OTHERS_ROLES = {
    "adm_mestre", "adm_dorata", "supervisor", "funcionario_n1", "funcionario_n2",
    "suporte_tecnico", "suporte_limitado",
}


class AssetError(Exception):
    pass


class AssetPermissionError(AssetError):
    pass


def can_manage_assets(user: dict, owner_id: str) -> bool:
    return owner_id == user.get("id") or user.get("role") in MANAGE_OTHERS_ROLES


def parse_metadata(raw: Optional[str]) -> Tuple[Optional[dict], Optional[str]]:
    """Retorna (metadados, erro). Vazio não é erro."""
    if raw is None or not raw.strip():
        return None, None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return None, "Metadados não são um JSON válido"
    if not isinstance(value, dict):
        return None, "Metadados devem ser um objeto JSON"
    return value, None


async def save_metadata(indicacao_id: str, owner_id: str, metadata: Dict[str, Any]) -> dict:
    now = now_iso()
    await db.indicacao_metadata.update_one(
        {"indicacao_id": indicacao_id},
        {
            "$set": {"owner_id": owner_id, "metadata": metadata, "updated_at": now},
            "$setOnInsert": {"id": str(uuid.uuid4()), "created_at": now},
        },
        upsert=True
    )
    return await db.indicacao_metadata.find_one({"indicacao_id": indicacao_id}, {"_id": 0})


async def save_asset(indicacao: dict, file_key: str, content: bytes, filename: str,
                     mime_type: str, uploaded_by: str) -> dict:
    if file_key not in ALLOWED_FILE_KEYS:
        raise AssetError(f"Tipo de documento inválido: {file_key}")
    if not content:
        raise AssetError("Arquivo vazio")
    if len(content) > MAX_ASSET_SIZE:
        raise AssetError(f"Arquivo maior que {MAX_ASSET_SIZE // (1024 * 1024)}MB")

    previous = await db.indicacao_assets.find_one(
        {"indicacao_id": indicacao["id"], "file_key": file_key}, {"_id": 0}
    )

    stored = await save_file(content, filename, mime_type, folder="indicacoes", owner_id=indicacao.get("user_id"))
    asset = {
        "id": previous["id"] if previous else str(uuid.uuid4()),
        "indicacao_id": indicacao["id"],
        "owner_id": indicacao.get("user_id"),
        "file_key": file_key,
        "file_id": stored["id"],
        "original_name": filename,
        "mime_type": mime_type,
        "size": len(content),
        "uploaded_by": uploaded_by,
        "created_at": previous["created_at"] if previous else stored["created_at"],
        "updated_at": stored["created_at"],
    }
    await db.indicacao_assets.replace_one(
        {"indicacao_id": indicacao["id"], "file_key": file_key}, asset, upsert=True
    )
    asset.pop("_id", None)

    if previous:
        await delete_file(previous["file_id"])

    logger.info(f"[ASSETS] {file_key} da indicação {indicacao['id']} salvo ({len(content)} bytes)")
    asset["url"] = file_url(stored["id"])
    return asset


async def upload_assets(
    indicacao: dict,
    user: dict,
    files: Dict[str, Tuple[bytes, str, str]],
    raw_metadata: Optional[str] = None,
) -> Dict[str, Any]:
    """
    `files` mapeia file_key -> (conteúdo, nome, mime). Erros por arquivo não
    impedem os demais; o resultado lista o que subiu e o que falhou.
    """
    owner_id = indicacao.get("user_id")
    if not can_manage_assets(user, owner_id):
        raise AssetPermissionError("Você não pode enviar documentos desta indicação")

    metadata, metadata_error = parse_metadata(raw_metadata)
    if metadata is not None:
        await save_metadata(indicacao["id"], owner_id, metadata)

    uploaded: List[dict] = []
    errors: List[dict] = []
    for file_key, (content, filename, mime_type) in files.items():
        try:
            uploaded.append(await save_asset(indicacao, file_key, content, filename, mime_type, user["id"]))
        except AssetError as e:
            errors.append({"key": file_key, "error": str(e)})

    return {
        "uploaded_files": uploaded,
        "file_errors": errors,
        "metadata_saved": metadata is not None,
        "metadata_error": metadata_error,
    }


async def get_asset_details(indicacao_id: str) -> Dict[str, Any]:
    meta = await db.indicacao_metadata.find_one({"indicacao_id": indicacao_id}, {"_id": 0})
    assets = await db.indicacao_assets.find({"indicacao_id": indicacao_id}, {"_id": 0}) \
        .sort("file_key", 1).to_list(len(ALLOWED_FILE_KEYS))
    for asset in assets:
        asset["url"] = file_url(asset["file_id"])
    return {
        "indicacao_id": indicacao_id,
        "metadata": meta.get("metadata") if meta else None,
        "files": assets,
    }
