"""
File upload endpoints. Files land in UPLOAD_DIR and are referenced by chats
through the metadata returned here.
"""

from typing import List

from fastapi import APIRouter, File, HTTPException, UploadFile
from fastapi.responses import FileResponse

from services.file_service import (
    UploadRejected,
    check_upload,
    delete_upload,
    list_uploads,
    resolve_upload_path,
    save_upload,
)

router = APIRouter(prefix="/api/upload", tags=["upload"])

MAX_FILES_PER_REQUEST = 10
MAX_FILES_MULTIPLE = 5


async def _store(files: List[UploadFile], limit: int) -> List[dict]:
    if not files:
        raise HTTPException(status_code=400, detail="没有选择文件")
    if len(files) > limit:
        raise HTTPException(status_code=400, detail=f"文件数量超过限制（最多{limit}个）")

    # validate the whole batch before anything is written
    payloads = []
    for upload in files:
        data = await upload.read()
        try:
            check_upload(upload.content_type, len(data))
        except UploadRejected as e:
            raise HTTPException(status_code=400, detail=str(e))
        payloads.append((upload.filename or "file", upload.content_type, data))

    return [save_upload(name, content_type, data) for name, content_type, data in payloads]


@router.post("")
async def upload_files(files: List[UploadFile] = File(...)):
    stored = await _store(files, MAX_FILES_PER_REQUEST)
    return {"success": True, "message": f"成功上传 {len(stored)} 个文件", "files": stored}


@router.post("/single")
async def upload_single(file: UploadFile = File(...)):
    stored = await _store([file], 1)
    return {"success": True, "message": "文件上传成功", "file": stored[0]}


@router.post("/multiple")
async def upload_multiple(files: List[UploadFile] = File(...)):
    stored = await _store(files, MAX_FILES_MULTIPLE)
    return {"success": True, "message": f"成功上传 {len(stored)} 个文件", "files": stored}


@router.get("/file/{filename}")
async def get_file(filename: str):
    path = resolve_upload_path(filename)
    if path is None or not path.is_file():
        raise HTTPException(status_code=404, detail="文件不存在")
    return FileResponse(path)


@router.get("/list")
async def list_files():
    files = list_uploads()
    return {"success": True, "files": files, "total": len(files)}


@router.delete("/file/{filename}")
async def remove_file(filename: str):
    if not delete_upload(filename):
        raise HTTPException(status_code=404, detail="文件不存在")
    return {"success": True, "message": "文件删除成功"}
