"""
Armazenamento de arquivos em disco local
Os metadados ficam em db.files; o conteúdo em STORAGE_DIR/<pasta>/<id>_<nome>.
"""

import re
import uuid
import logging
from pathlib import Path
from typing import Optional

import config
from config import db, now_iso

logger = logging.getLogger("storage")

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\s]+')


def sanitize_filename(name: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", (name or "").strip()).strip("._")
    return cleaned or "arquivo"


async def save_file(
    content: bytes,
    filename: str,
    mime_type: str,
    folder: str = "geral",
    owner_id: Optional[str] = None,
) -> dict:
    file_id = str(uuid.uuid4())
    stored_name = f"{file_id}_{sanitize_filename(filename)}"
    target_dir = Path(config.STORAGE_DIR) / sanitize_filename(folder)
    target_dir.mkdir(parents=True, exist_ok=True)
    (target_dir / stored_name).write_bytes(content)

    doc = {
        "id": file_id,
        "folder": sanitize_filename(folder),
        "filename": stored_name,
        "original_name": filename,
        "mime_type": mime_type,
        "size": len(content),
        "owner_id": owner_id,
        "created_at": now_iso(),
    }
    await db.files.insert_one(doc)
    doc.pop("_id", None)

    logger.info(f"[STORAGE] arquivo {file_id} salvo ({len(content)} bytes) em {doc['folder']}")
    return doc


def file_url(file_id: str) -> str:
    return f"/api/files/{file_id}"


async def get_file(file_id: str) -> Optional[dict]:
    return await db.files.find_one({"id": file_id}, {"_id": 0})


def resolve_path(file_doc: dict) -> Path:
    return Path(config.STORAGE_DIR) / file_doc["folder"] / file_doc["filename"]


async def delete_file(file_id: str) -> bool:
    """Remove metadados e conteúdo; arquivo já ausente no disco não é erro."""
    file_doc = await get_file(file_id)
    if not file_doc:
        return False
    resolve_path(file_doc).unlink(missing_ok=True)
    await db.files.delete_one({"id": file_id})
    logger.info(f"[STORAGE] arquivo {file_id} removido")
    return True
