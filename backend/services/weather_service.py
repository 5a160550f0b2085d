"""
Weather resolver: city detection in chat text, web-search scraping, static fallback table.

Results are cached per city per clock hour for WEATHER_CACHE_TTL seconds.
"""

import asyncio
import random
import re
import time
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from loguru import logger

from config import settings
from services.search_service import web_search

WEATHER_KEYWORDS = [
    "天气", "气温", "温度", "下雨", "下雪", "刮风", "雾霾", "空气质量",
    "冷不冷", "热不热", "带伞", "weather", "forecast",
]

KNOWN_CITIES = [
    "北京", "上海", "天津", "重庆", "广州", "深圳", "杭州", "南京", "苏州", "武汉",
    "成都", "西安", "长沙", "郑州", "济南", "青岛", "大连", "沈阳", "长春", "哈尔滨",
    "石家庄", "太原", "呼和浩特", "合肥", "福州", "厦门", "南昌", "南宁", "海口", "三亚",
    "贵阳", "昆明", "拉萨", "兰州", "西宁", "银川", "乌鲁木齐", "宁波", "无锡", "佛山",
    "东莞", "珠海", "温州", "烟台", "桂林", "香港", "澳门", "台北",
]

_CITY_FILLERS = re.compile(
    r"^(请问|请|帮我|帮忙|查一下|查查|查询|查|看看|问一下|说说|告诉我|我想知道|想知道|你知道|知道|"
    r"你们那里|你们那边|你们那|我们这里|我们这边|我们这|今天|明天|现在|那|在)+"
)
_ZH_CITY_RE = re.compile(r"([一-龥]{2,10}?)市?(?:今天|明天|后天|现在|最近|这几天)?的?(?:天气|气温|温度)")
_EN_CITY_RE = re.compile(r"weather\s+(?:in|for|at)\s+([A-Za-z][A-Za-z .'-]{0,40})", re.IGNORECASE)
_EN_STOP_WORDS = {
    "today", "tomorrow", "tonight", "now", "this", "next", "right", "like",
    "please", "these", "on", "at", "in", "for", "and", "or", "will", "is",
}
_NOT_A_CITY = {"今天", "明天", "后天", "现在", "最近", "这里", "那里", "外面", "我们", "你们", "什么", "怎么样"}

MOCK_CITY_DATA: Dict[str, dict] = {
    "北京": {
        "temperature": 23, "description": "晴朗", "humidity": 65, "wind_speed": 12,
        "visibility": 10, "feel_like": 25, "uv_index": 6,
        "air_quality": {"aqi": 35, "level": "优", "description": "空气质量令人满意"},
    },
    "上海": {
        "temperature": 26, "description": "多云", "humidity": 78, "wind_speed": 8,
        "visibility": 8, "feel_like": 28, "uv_index": 5,
        "air_quality": {"aqi": 68, "level": "良", "description": "空气质量可接受"},
    },
    "广州": {
        "temperature": 29, "description": "小雨", "humidity": 85, "wind_speed": 6,
        "visibility": 6, "feel_like": 32, "uv_index": 3,
        "air_quality": {"aqi": 45, "level": "优", "description": "空气质量良好"},
    },
    "深圳": {
        "temperature": 28, "description": "阴天", "humidity": 80, "wind_speed": 10,
        "visibility": 7, "feel_like": 30, "uv_index": 4,
        "air_quality": {"aqi": 52, "level": "良", "description": "空气质量尚可"},
    },
    "杭州": {
        "temperature": 24, "description": "晴朗", "humidity": 70, "wind_speed": 9,
        "visibility": 9, "feel_like": 26, "uv_index": 7,
        "air_quality": {"aqi": 38, "level": "优", "description": "空气质量优秀"},
    },
}

# (keyword, normalised description); first hit in the text wins, so "晴转小雨" reads as 晴朗
DESCRIPTION_KEYWORDS: List[Tuple[str, str]] = [
    ("晴", "晴朗"), ("阳光", "晴朗"),
    ("多云", "多云"), ("云", "多云"),
    ("阴", "阴天"),
    ("暴雨", "大雨"), ("大雨", "大雨"), ("雷雨", "中雨"), ("阵雨", "中雨"),
    ("中雨", "中雨"), ("小雨", "小雨"), ("雨", "中雨"),
    ("暴雪", "大雪"), ("大雪", "大雪"), ("中雪", "大雪"), ("小雪", "雪"), ("雪", "雪"),
    ("雾霾", "雾霾"), ("霾", "雾霾"), ("雾", "雾霾"), ("沙尘", "雾霾"),
    ("大风", "大风"),
]

_TEMP_PATTERNS = [
    re.compile(r"(?<!\d)(-?\d{1,2})\s*°\s*[Cc]?(?![0-9])"),
    re.compile(r"(?<!\d)(-?\d{1,2})\s*[Cc](?![0-9a-zA-Z])"),
    re.compile(r"气温[：:]?\s*(-?\d{1,2})\s*°?"),
    re.compile(r"温度[：:]?\s*(-?\d{1,2})\s*°?"),
    re.compile(r"(?<!\d)(-?\d{1,2})\s*度(?![0-9])"),
]
_HUMIDITY_RE = re.compile(r"湿度[：:]?\s*(\d{1,3})\s*%?")
_WIND_RE = re.compile(r"风速[：:]?\s*(\d{1,2})\s*(?:级|km|m)")
_AQI_RE = re.compile(r"(?:AQI|空气质量指数)[：:]?\s*(\d{1,3})", re.IGNORECASE)

_EMOJI_MAP = [
    ("晴", "☀️"), ("多云", "⛅"), ("阴", "☁️"),
    ("小雨", "🌦️"), ("大雨", "⛈️"), ("雨", "🌧️"),
    ("小雪", "❄️"), ("雪", "🌨️"),
    ("雾", "🌫️"), ("霾", "😷"),
]

_ICON_MAP = {
    "晴": "ri-sun-line", "晴朗": "ri-sun-line",
    "多云": "ri-cloudy-line",
    "阴": "ri-cloudy-2-line", "阴天": "ri-cloudy-2-line",
    "雨": "ri-rainy-line", "小雨": "ri-drizzle-line", "中雨": "ri-rainy-line",
    "大雨": "ri-heavy-showers-line", "暴雨": "ri-thunderstorms-line",
    "雪": "ri-snowy-line", "小雪": "ri-snowy-line", "大雪": "ri-blizzard-line",
    "雾": "ri-mist-line", "霾": "ri-haze-2-line", "沙尘": "ri-haze-line",
}

# cache key -> (data, stored_at)
_cache: Dict[str, Tuple[dict, float]] = {}


# ─────────────────────────────────────────────────────────
#  CITY / INTENT DETECTION
# ─────────────────────────────────────────────────────────

def is_weather_query(text: str) -> bool:
    lowered = (text or "").lower()
    return any(k in lowered for k in WEATHER_KEYWORDS)


def extract_city(text: str) -> Optional[str]:
    """Find the city a weather question is about, or None."""
    if not text:
        return None

    for city in sorted(KNOWN_CITIES, key=len, reverse=True):
        if city in text:
            return city

    match = _ZH_CITY_RE.search(text)
    if match:
        candidate = _CITY_FILLERS.sub("", match.group(1).strip()).rstrip("市的 ").strip()
        if len(candidate) >= 2 and candidate not in _NOT_A_CITY:
            return candidate

    match = _EN_CITY_RE.search(text)
    if match:
        words = []
        for word in match.group(1).split():
            if word.lower() in _EN_STOP_WORDS or len(words) == 3:
                break
            words.append(word.strip(".'-"))
        candidate = " ".join(w for w in words if w)
        if len(candidate) >= 2:
            return candidate
    return None


# ─────────────────────────────────────────────────────────
#  CACHE
# ─────────────────────────────────────────────────────────

def _cache_key(city: str) -> str:
    return f"weather_{city}_{datetime.now().strftime('%Y%m%d%H')}"


def get_from_cache(city: str) -> Optional[dict]:
    entry = _cache.get(_cache_key(city))
    if entry and time.time() - entry[1] < settings.WEATHER_CACHE_TTL:
        logger.debug(f"Weather cache hit: {city}")
        return entry[0]
    return None


def set_cache(city: str, data: dict) -> None:
    _cache[_cache_key(city)] = (data, time.time())
    clean_expired_cache()


def clean_expired_cache() -> None:
    now = time.time()
    for key in [k for k, (_, stored_at) in _cache.items() if now - stored_at >= settings.WEATHER_CACHE_TTL]:
        del _cache[key]


def clear_cache() -> None:
    _cache.clear()


# ─────────────────────────────────────────────────────────
#  SEARCH SCRAPING
# ─────────────────────────────────────────────────────────

def _air_quality(aqi: int) -> dict:
    if aqi <= 50:
        return {"aqi": aqi, "level": "优", "description": "空气质量令人满意"}
    if aqi <= 100:
        return {"aqi": aqi, "level": "良", "description": "空气质量可接受"}
    if aqi <= 150:
        return {"aqi": aqi, "level": "轻度污染", "description": "敏感人群需注意"}
    return {"aqi": aqi, "level": "中度污染", "description": "建议减少户外活动"}


def parse_weather_text(text: str) -> Optional[dict]:
    """Scrape temperature, conditions, humidity, wind and AQI out of free text."""
    temperature = None
    for pattern in _TEMP_PATTERNS:
        temps = [int(m) for m in pattern.findall(text)]
        temps = [t for t in temps if -10 <= t <= 50]
        if temps:
            temperature = round(sum(temps) / len(temps))
            break

    if temperature is None:
        return None

    description = "未知"
    for keyword, label in DESCRIPTION_KEYWORDS:
        if keyword in text:
            description = label
            break

    humidity = None
    match = _HUMIDITY_RE.search(text)
    if match:
        humidity = int(match.group(1))
        if humidity > 100:
            humidity = None

    wind_speed = None
    match = _WIND_RE.search(text)
    if match:
        wind_speed = int(match.group(1))

    air_quality = None
    match = _AQI_RE.search(text)
    if match:
        air_quality = _air_quality(int(match.group(1)))

    return {
        "temperature": temperature,
        "description": description,
        "humidity": humidity,
        "wind_speed": wind_speed,
        "air_quality": air_quality,
    }


def parse_weather_from_search_results(search_result: dict) -> Optional[dict]:
    parts = [search_result.get("summary") or ""]
    for r in search_result.get("results", []):
        parts.append(f"{r.get('title', '')} {r.get('snippet', '')} {r.get('summary') or ''}")
    return parse_weather_text(" ".join(parts))


async def get_weather_from_search(city: str) -> Optional[dict]:
    query = f"{city}天气 今天 温度 实时"
    result = await web_search(query, count=3, freshness="oneDay", summary=True)
    if not result or not result.get("success") or not result.get("results"):
        logger.info(f"No weather search results for {city}")
        return None

    parsed = parse_weather_from_search_results(result)
    if not parsed:
        logger.info(f"Could not scrape weather for {city} from search results")
        return None

    temperature = parsed["temperature"]
    return {
        "city": city,
        "temperature": temperature,
        "description": parsed["description"],
        "humidity": parsed["humidity"] or 60,
        "wind_speed": parsed["wind_speed"] or 10,
        "visibility": 10,
        "feel_like": temperature + 2,
        "uv_index": 5,
        "air_quality": parsed["air_quality"] or {"aqi": 50, "level": "良", "description": "空气质量监测中"},
        "forecast": generate_forecast(),
        "timestamp": datetime.now().isoformat(),
        "source": "web_search",
        "search_query": query,
        "search_summary": result.get("summary", ""),
    }


# ─────────────────────────────────────────────────────────
#  FALLBACK DATA
# ─────────────────────────────────────────────────────────

def generate_random_weather_data() -> dict:
    return {
        "temperature": random.randint(5, 34),
        "description": random.choice(["晴朗", "多云", "阴天", "小雨", "中雨"]),
        "humidity": random.randint(40, 89),
        "wind_speed": random.randint(3, 17),
        "visibility": random.randint(5, 14),
        "feel_like": random.randint(8, 37),
        "uv_index": random.randint(2, 9),
        "air_quality": {
            "aqi": random.randint(20, 119),
            "level": random.choice(["优", "良"]),
            "description": "空气质量监测中",
        },
    }


WEEKDAYS = ["周一", "周二", "周三", "周四", "周五", "周六", "周日"]


def generate_forecast() -> List[dict]:
    fifth = datetime.now() + timedelta(days=4)
    days = ["今天", "明天", "后天", "大后天", WEEKDAYS[fifth.weekday()]]
    icons = ["sun", "cloudy", "rainy", "snowy", "partly-cloudy"]
    descriptions = ["晴朗", "多云", "小雨", "阴天", "晴转多云"]
    forecast = []
    for index, day in enumerate(days):
        low = random.randint(5, 14) + index
        forecast.append({
            "day": day,
            "icon": random.choice(icons),
            "high": low + random.randint(4, 12),
            "low": low,
            "desc": random.choice(descriptions),
        })
    return forecast


def _mock_weather(city: str) -> dict:
    base = MOCK_CITY_DATA.get(city) or generate_random_weather_data()
    return {
        "city": city,
        "temperature": base["temperature"] + random.randint(-3, 2),
        "description": base["description"],
        "humidity": max(30, min(95, base["humidity"] + random.randint(-10, 9))),
        "wind_speed": max(1, base["wind_speed"] + random.randint(-4, 3)),
        "visibility": max(1, min(15, base["visibility"] + random.randint(-2, 1))),
        "feel_like": base["feel_like"] + random.randint(-2, 1),
        "uv_index": max(1, min(11, base["uv_index"] + random.randint(-1, 1))),
        "air_quality": base["air_quality"],
        "forecast": generate_forecast(),
        "timestamp": datetime.now().isoformat(),
        "source": "mock_api",
    }


def get_default_weather_data(city: str) -> dict:
    return {
        "city": city,
        "temperature": 20,
        "description": "天气信息暂时无法获取",
        "humidity": 60,
        "wind_speed": 10,
        "visibility": 8,
        "feel_like": 22,
        "uv_index": 5,
        "air_quality": {"aqi": 50, "level": "良", "description": "空气质量监测中"},
        "forecast": [],
        "timestamp": datetime.now().isoformat(),
        "source": "default",
    }


async def get_weather_data(city: Optional[str] = None) -> dict:
    """Cache, then web search, then the static table."""
    city = city or settings.WEATHER_DEFAULT_CITY
    cached = get_from_cache(city)
    if cached:
        return cached

    try:
        data = await get_weather_from_search(city)
        if data is None:
            logger.info(f"Falling back to static weather data for {city}")
            data = _mock_weather(city)
        set_cache(city, data)
        return data
    except Exception as e:
        logger.error(f"Weather lookup for {city} failed: {e}")
        return get_default_weather_data(city)


# ─────────────────────────────────────────────────────────
#  PRESENTATION
# ─────────────────────────────────────────────────────────

def get_weather_emoji(description: str) -> str:
    for key, emoji in _EMOJI_MAP:
        if key in description:
            return emoji
    return "🌤️"


def get_aqi_color(aqi: int) -> str:
    if aqi <= 50:
        return "text-green-600"
    if aqi <= 100:
        return "text-yellow-600"
    if aqi <= 150:
        return "text-orange-600"
    return "text-red-600"


def get_weather_icon(description: str) -> str:
    if description in _ICON_MAP:
        return _ICON_MAP[description]
    for key, icon in _ICON_MAP.items():
        if key in description:
            return icon
    return "ri-sun-line"


def get_weather_suggestions(data: dict) -> List[str]:
    temperature = data["temperature"]
    description = data["description"]
    suggestions = []

    if temperature > 30:
        suggestions.append("🌡️ 天气炎热，记得多喝水，避免长时间户外活动")
    elif temperature > 25:
        suggestions.append("☀️ 天气温暖，适合户外活动，注意防晒")
    elif temperature < 0:
        suggestions.append("❄️ 天气严寒，注意防寒保暖，小心路滑")
    elif temperature < 10:
        suggestions.append("🧥 天气较冷，出门记得添衣保暖")

    if "雨" in description:
        suggestions.append("🌂 今天有雨，记得带伞，注意交通安全")
    elif "雪" in description:
        suggestions.append("⛄ 下雪天气，注意保暖和路面安全")
    elif "雾" in description:
        suggestions.append("🌫️ 有雾天气，出门要注意安全")

    if data["humidity"] > 80:
        suggestions.append("💧 湿度较高，可能感觉闷热，注意通风")
    elif data["humidity"] < 40:
        suggestions.append("🏺 空气干燥，注意补水和皮肤保湿")

    if data.get("uv_index", 0) > 7:
        suggestions.append("🕶️ 紫外线强烈，外出请做好防晒措施")

    aqi = data["air_quality"]["aqi"]
    if aqi > 100:
        suggestions.append("😷 空气质量不佳，建议减少户外活动，外出戴口罩")
    elif aqi < 50:
        suggestions.append("🌱 空气质量优秀，非常适合户外运动和开窗通风")

    return suggestions or ["今天天气不错，享受美好的一天吧！🌈"]


def format_weather_for_chat(data: dict, fmt: str = "card") -> dict:
    city = data["city"]
    description = data["description"]
    air_quality = data["air_quality"]
    emoji = get_weather_emoji(description)

    if fmt == "simple":
        return {
            "type": "weather_simple",
            "content": (
                f"{emoji} {city}现在{description}，气温{data['temperature']}°C"
                f"（体感{data['feel_like']}°C），湿度{data['humidity']}%，{air_quality['level']}空气质量。"
            ),
            "data": data,
        }

    if fmt == "detailed":
        return {
            "type": "weather_detailed",
            "content": f"{emoji} {city}详细天气报告：",
            "data": {**data, "suggestions": get_weather_suggestions(data)},
        }

    return {
        "type": "weather_card",
        "content": f"{emoji} 为您查询到{city}的实时天气：",
        "data": {
            "city": city,
            "temperature": data["temperature"],
            "description": description,
            "icon": get_weather_icon(description),
            "details": [
                {"label": "体感温度", "value": f"{data['feel_like']}°C", "icon": "temperature"},
                {"label": "湿度", "value": f"{data['humidity']}%", "icon": "water"},
                {"label": "风速", "value": f"{data['wind_speed']}km/h", "icon": "wind"},
                {
                    "label": "空气质量",
                    "value": f"{air_quality['level']} ({air_quality['aqi']})",
                    "icon": "leaf",
                    "color": get_aqi_color(air_quality["aqi"]),
                },
            ],
            "forecast": data.get("forecast", []),
            "meta": {"source": data.get("source"), "update_time": datetime.now().strftime("%H:%M:%S")},
        },
    }


def weather_context(data: dict) -> str:
    """Plain-text summary of weather data for the reply prompt."""
    aq = data["air_quality"]
    lines = [
        f"[天气信息] 城市: {data['city']}",
        f"天气: {data['description']}，气温 {data['temperature']}°C，体感 {data['feel_like']}°C",
        f"湿度 {data['humidity']}%，风速 {data['wind_speed']}km/h，空气质量 {aq['level']} (AQI {aq['aqi']})",
        "生活建议: " + "；".join(get_weather_suggestions(data)),
    ]
    if data.get("source") != "web_search":
        lines.append("注意：这是参考数据，不一定是实时天气，请提醒小朋友以当地天气预报为准。")
    return "\n".join(lines)


async def get_weather_by_city(city: str) -> dict:
    try:
        data = await get_weather_data(city)
        return format_weather_for_chat(data, "card")
    except Exception as e:
        logger.error(f"Weather card for {city} failed: {e}")
        return {
            "type": "weather_error",
            "content": f"抱歉，暂时无法获取{city}的天气信息。请稍后再试。🌤️",
        }


async def get_batch_weather(cities: List[str]) -> List[dict]:
    results = await asyncio.gather(*(get_weather_by_city(c) for c in cities), return_exceptions=True)
    return [
        {
            "city": city,
            "success": not isinstance(result, Exception),
            "data": None if isinstance(result, Exception) else result,
            "error": str(result) if isinstance(result, Exception) else None,
        }
        for city, result in zip(cities, results)
    ]
