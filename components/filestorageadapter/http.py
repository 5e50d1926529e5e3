from __future__ import annotations

import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .contracts import ByteRange, DownloadOptions, ListOptions, SignedUrlOptions, UploadOptions, UWFResponse
from .service import FileStorageService

_STATUS_BY_TYPE = {
    "VALIDATION": 400,
    "NOT_FOUND": 404,
    "UNSUPPORTED": 501,
    "CONFIGURATION": 500,
    "CONFLICT": 409,
    "UPSTREAM": 502,
    "INTERNAL": 500,
}


# ---- Dependency shims (replace with real DI container in app wiring) ----
_service_singleton: Optional[FileStorageService] = None


def set_service_for_storage(service: FileStorageService) -> None:
    global _service_singleton
    _service_singleton = service


def get_service() -> FileStorageService:
    if _service_singleton is None:
        raise HTTPException(status_code=503, detail="storage service not configured")
    return _service_singleton


def _respond(res: UWFResponse, status_code: int = 200) -> JSONResponse:
    if not res.ok:
        status_code = _STATUS_BY_TYPE.get(res.error.type, 500)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(res))


class KeyPair(BaseModel):
    source: str = Field(min_length=1)
    destination: str = Field(min_length=1)


# ---- Router ----
router = APIRouter(prefix="/storage", tags=["storage"])


@router.put("/files/{key:path}", status_code=201)
async def upload_file(
    key: str,
    request: Request,
    public: bool = Query(default=False),
    svc: FileStorageService = Depends(get_service),
):
    raw_meta = request.headers.get("x-file-metadata")
    try:
        custom = json.loads(raw_meta) if raw_meta else None
    except ValueError:
        raise HTTPException(status_code=400, detail="x-file-metadata must be a JSON object")
    if custom is not None and not isinstance(custom, dict):
        raise HTTPException(status_code=400, detail="x-file-metadata must be a JSON object")

    opts = UploadOptions(
        content_type=request.headers.get("content-type"),
        cache_control=request.headers.get("cache-control"),
        metadata=custom,
        is_publicly_accessible=public,
    )
    res = await svc.upload(key, request.stream(), opts)
    return _respond(res, status_code=201)


@router.get("/files")
async def list_files(
    prefix: str = "",
    limit: int = Query(default=100, ge=1),
    cursor: Optional[str] = None,
    svc: FileStorageService = Depends(get_service),
):
    res = await svc.list(ListOptions(prefix=prefix, limit=limit, cursor=cursor))
    return _respond(res)


@router.get("/files/{key:path}")
async def download_file(
    key: str,
    start: Optional[int] = Query(default=None, ge=0),
    end: Optional[int] = Query(default=None, ge=0),
    svc: FileStorageService = Depends(get_service),
):
    opts = None
    if start is not None or end is not None:
        if start is None or end is None or end < start:
            raise HTTPException(status_code=400, detail="start and end must both be given with end >= start")
        opts = DownloadOptions(range=ByteRange(start_byte=start, end_byte=end))

    res = await svc.download(key, opts)
    if not res.ok:
        return _respond(res)
    obj = res.result
    return Response(
        content=obj["content"],
        status_code=206 if opts else 200,
        media_type=obj["mimeType"],
        headers={"x-file-size": str(obj["sizeInBytes"])},
    )


@router.delete("/files/{key:path}")
async def delete_file(key: str, svc: FileStorageService = Depends(get_service)):
    res = await svc.delete(key)
    if res.ok and res.result is False:
        raise HTTPException(status_code=404, detail="File not found")
    return _respond(res)


@router.get("/metadata/{key:path}")
async def file_metadata(key: str, svc: FileStorageService = Depends(get_service)):
    res = await svc.metadata(key)
    if res.ok and res.result is None:
        raise HTTPException(status_code=404, detail="File not found")
    return _respond(res)


@router.post("/copy")
async def copy_file(req: KeyPair, svc: FileStorageService = Depends(get_service)):
    return _respond(await svc.copy(req.source, req.destination))


@router.post("/move")
async def move_file(req: KeyPair, svc: FileStorageService = Depends(get_service)):
    return _respond(await svc.move(req.source, req.destination))


@router.get("/signed-url")
async def signed_url(
    key: str = Query(min_length=1),
    expires_in: int = Query(default=60, alias="expiresIn", gt=0, le=7 * 24 * 3600),
    content_type: Optional[str] = Query(default=None, alias="contentType"),
    svc: FileStorageService = Depends(get_service),
):
    res = await svc.signed_url(key, SignedUrlOptions(expires_in=expires_in, content_type=content_type))
    return _respond(res)


@router.get("/signed-url-upload")
async def signed_url_upload(
    key: str = Query(min_length=1),
    expires_in: int = Query(default=60, alias="expiresIn", gt=0, le=7 * 24 * 3600),
    content_type: Optional[str] = Query(default=None, alias="contentType"),
    svc: FileStorageService = Depends(get_service),
):
    res = await svc.signed_url_upload(key, SignedUrlOptions(expires_in=expires_in, content_type=content_type))
    return _respond(res)
