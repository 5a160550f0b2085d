"""
Weather lookups for the weather card in the chat UI.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException
from loguru import logger

from config import settings
from models.schemas import BatchWeatherRequest
from services.weather_service import get_batch_weather, get_weather_by_city

router = APIRouter(prefix="/api/weather", tags=["weather"])

MAX_BATCH_CITIES = 10


@router.get("")
async def weather(city: Optional[str] = None):
    city = (city or "").strip() or settings.WEATHER_DEFAULT_CITY
    logger.info(f"Weather requested: {city}")
    return {"success": True, "data": await get_weather_by_city(city)}


@router.post("/batch")
async def batch_weather(req: BatchWeatherRequest):
    cities = [c.strip() for c in req.cities if c and c.strip()]
    if not cities:
        raise HTTPException(status_code=400, detail="请提供城市列表")
    if len(cities) > MAX_BATCH_CITIES:
        raise HTTPException(status_code=400, detail=f"一次最多查询{MAX_BATCH_CITIES}个城市")

    logger.info(f"Batch weather requested: {cities}")
    return {"success": True, "data": await get_batch_weather(cities)}


@router.get("/{city}")
async def weather_for_city(city: str):
    logger.info(f"Weather requested: {city}")
    return {"success": True, "data": await get_weather_by_city(city.strip() or settings.WEATHER_DEFAULT_CITY)}
