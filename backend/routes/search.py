"""
Web search diagnostics.
"""

from fastapi import APIRouter, HTTPException

from config import settings
from models.schemas import SearchTestRequest
from services.search_service import is_enabled, web_search

router = APIRouter(prefix="/api/search", tags=["search"])


@router.post("/test")
async def search_test(req: SearchTestRequest):
    query = req.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="搜索关键词不能为空")

    results = await web_search(query)
    if not results:
        return {"success": False, "error": "搜索服务暂时不可用"}
    return {"success": True, "data": results}


@router.get("/status")
async def search_status():
    key = settings.SEARCH_API_KEY
    return {
        "success": True,
        "data": {
            "enabled": is_enabled(),
            "has_api_key": bool(key),
            "api_key_length": len(key),
        },
    }
