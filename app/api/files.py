"""Serves attachments stored by the local filesystem backend.

``LocalFileStorage.download`` hands out ``/v1/files/{key}``; object
storage hands out presigned URLs instead, so with S3 configured this
route always answers 404.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from app.api.dependencies import CurrentUser, get_storage
from app.core.errors import NotFoundError
from app.services.storage import LocalFileStorage, StorageBackend

router = APIRouter(prefix="/v1/files", tags=["files"])


@router.get("/{key:path}")
async def get_file(
    key: str,
    principal: CurrentUser,
    backend: Annotated[StorageBackend, Depends(get_storage)],
) -> FileResponse:
    # Keys are prefixed with the owning organization's id.
    if not isinstance(backend, LocalFileStorage) or not key.startswith(
        f"{principal.organization_id}/"
    ):
        raise NotFoundError("File not found")
    path = backend.path_for(key)
    if not path.is_file():
        raise NotFoundError("File not found")
    return FileResponse(path, filename=path.name)
