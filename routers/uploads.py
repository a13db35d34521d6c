import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse
from pymongo.database import Database

import storage
from database import create_document, get_db, serialize_doc
from errors import (
    AuthenticationException,
    PermissionDeniedException,
    ResourceNotFoundException,
    ValidationException,
)
from schemas import DownloadUrlRequest, Upload as UploadSchema
from security import TokenClaims, get_current_claims

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/upload", tags=["uploads"])


def _image_folder(folder: Optional[str]) -> str:
    folder = storage.sanitize_folder(folder, "images")
    return folder if folder in storage.PUBLIC_FOLDERS else "images"


def _record_upload(db: Database, stored: storage.StoredFile, owner_id: str, folder: str) -> None:
    create_document(db, "upload", UploadSchema(owner_id=owner_id, folder=folder, **stored.as_dict()))


async def _store_one(db: Database, upload_file: UploadFile, folder: str, owner_id: str, is_image: bool) -> dict:
    try:
        stored = await storage.save_upload(upload_file, folder, is_image=is_image)
    except storage.StorageError as exc:
        raise ValidationException(str(exc))
    await run_in_threadpool(_record_upload, db, stored, owner_id, folder)
    return stored.as_dict()


async def _store_many(db: Database, files: List[UploadFile], folder: str, owner_id: str, is_image: bool) -> dict:
    if not files:
        raise ValidationException("No files provided")
    if len(files) > storage.MAX_FILES:
        raise ValidationException(f"Maximum {storage.MAX_FILES} files allowed")

    uploaded, errors = [], []
    for upload_file in files:
        try:
            stored = await storage.save_upload(upload_file, folder, is_image=is_image)
        except storage.StorageError as exc:
            errors.append({"name": upload_file.filename, "error": str(exc)})
            continue
        await run_in_threadpool(_record_upload, db, stored, owner_id, folder)
        uploaded.append(stored.as_dict())

    if not uploaded:
        raise ValidationException("All uploads failed", errors)
    return {"message": f"{len(uploaded)} file(s) uploaded successfully", "files": uploaded, "errors": errors}


def _load_owned_upload(db: Database, key: str, claims: TokenClaims) -> dict:
    upload = db["upload"].find_one({"key": key})
    if upload is None:
        raise ResourceNotFoundException("File", key)
    if upload["owner_id"] != claims.user_id and claims.role != "admin":
        raise PermissionDeniedException("You do not have access to this file")
    return upload


@router.post("/file", status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile = File(...),
    folder: Optional[str] = Form(None),
    claims: TokenClaims = Depends(get_current_claims),
    db: Database = Depends(get_db),
):
    folder = storage.sanitize_folder(folder, "products")
    stored = await _store_one(db, file, folder, claims.user_id, is_image=False)
    return {"message": "File uploaded successfully", "file": stored}


@router.post("/files", status_code=status.HTTP_201_CREATED)
async def upload_files(
    files: List[UploadFile] = File(...),
    folder: Optional[str] = Form(None),
    claims: TokenClaims = Depends(get_current_claims),
    db: Database = Depends(get_db),
):
    folder = storage.sanitize_folder(folder, "products")
    return await _store_many(db, files, folder, claims.user_id, is_image=False)


@router.post("/image", status_code=status.HTTP_201_CREATED)
async def upload_image(
    file: UploadFile = File(...),
    folder: Optional[str] = Form(None),
    claims: TokenClaims = Depends(get_current_claims),
    db: Database = Depends(get_db),
):
    stored = await _store_one(db, file, _image_folder(folder), claims.user_id, is_image=True)
    return {"message": "Image uploaded successfully", "file": stored}


@router.post("/images", status_code=status.HTTP_201_CREATED)
async def upload_images(
    files: List[UploadFile] = File(...),
    folder: Optional[str] = Form(None),
    claims: TokenClaims = Depends(get_current_claims),
    db: Database = Depends(get_db),
):
    return await _store_many(db, files, _image_folder(folder), claims.user_id, is_image=True)


@router.delete("/file/{key:path}")
def delete_file(key: str, claims: TokenClaims = Depends(get_current_claims), db: Database = Depends(get_db)):
    upload = _load_owned_upload(db, key, claims)
    try:
        storage.delete_file(key)
    except storage.StorageError as exc:
        raise ValidationException(str(exc))
    db["upload"].delete_one({"_id": upload["_id"]})
    logger.info("Upload %s deleted by %s", key, claims.user_id)
    return {"message": "File deleted successfully"}


@router.get("/metadata/{key:path}")
def get_metadata(key: str, claims: TokenClaims = Depends(get_current_claims), db: Database = Depends(get_db)):
    upload = _load_owned_upload(db, key, claims)
    try:
        stats = storage.file_metadata(key)
    except storage.StorageError as exc:
        raise ValidationException(str(exc))
    if stats is None:
        raise ResourceNotFoundException("File", key)
    metadata = serialize_doc(upload)
    metadata.update(stats)
    return {"metadata": metadata}


@router.post("/download-url")
def create_download_url(
    payload: DownloadUrlRequest,
    claims: TokenClaims = Depends(get_current_claims),
    db: Database = Depends(get_db),
):
    _load_owned_upload(db, payload.key, claims)
    return storage.sign_download(payload.key, payload.expires_in)


def _file_response(key: str) -> FileResponse:
    try:
        path = storage.resolve_key(key)
    except storage.StorageError:
        raise ResourceNotFoundException("File", key)
    if not path.is_file():
        raise ResourceNotFoundException("File", key)
    return FileResponse(path, filename=path.name)


@router.get("/public/{key:path}")
def serve_public(key: str):
    if not storage.is_public_key(key):
        raise ResourceNotFoundException("File", key)
    return _file_response(key)


@router.get("/signed/{token}")
def serve_signed(token: str):
    key = storage.verify_download(token)
    if key is None:
        raise AuthenticationException(error_code="invalid_download_link", message="Download link is invalid or has expired")
    return _file_response(key)
