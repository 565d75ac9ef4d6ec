"""
Rotas de arquivos armazenados (contratos gerados)
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from routes.auth import get_current_user
from services.storage import get_file, resolve_path

router = APIRouter(prefix="/files", tags=["Files"])


@router.get("/{file_id}")
async def download_file(file_id: str, user: dict = Depends(get_current_user)):
    """Retorna o arquivo armazenado"""
    file_doc = await get_file(file_id)
    if not file_doc:
        raise HTTPException(status_code=404, detail="Arquivo não encontrado")

    file_path = resolve_path(file_doc)
    if not file_path.exists():
        raise HTTPException(status_code=404, detail="Arquivo não encontrado no armazenamento")

    return FileResponse(
        file_path,
        media_type=file_doc.get("mime_type", "application/octet-stream"),
        filename=file_doc.get("original_name")
    )
