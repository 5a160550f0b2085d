"""
Web search adapter for the Bocha web-search API.
"""

import re
from typing import List, Optional

import httpx
from loguru import logger

from config import is_configured_key, settings

MAX_RESULTS = 5

SEARCH_TRIGGERS = [
    "搜索", "查找", "最新", "今天", "现在", "最近",
    "什么是", "如何", "怎么", "为什么", "哪里",
    "新闻", "资讯", "信息", "情况", "状况",
]

TIME_KEYWORDS = [
    "今天", "昨天", "最近", "现在", "刚刚", "最新",
    "今年", "去年", "这个月",
]

STOP_WORDS = {
    "的", "了", "是", "在", "有", "和", "与", "或", "但", "因为", "所以",
    "这", "那", "什么", "如何", "怎么", "为什么", "哪里",
}

_PUNCTUATION_RE = re.compile(r"[，。！？、；：“”‘’\"'()（）,.!?;:]")
_YEAR_RE = re.compile(r"\b20\d{2}\b")


def is_enabled() -> bool:
    return settings.SEARCH_ENABLED and is_configured_key(settings.SEARCH_API_KEY)


async def _post_search(payload: dict) -> dict:
    headers = {
        "Authorization": f"Bearer {settings.SEARCH_API_KEY}",
        "Content-Type": "application/json",
    }
    async with httpx.AsyncClient(timeout=settings.SEARCH_TIMEOUT) as client:
        response = await client.post(f"{settings.SEARCH_BASE_URL}/web-search", headers=headers, json=payload)
        response.raise_for_status()
        return response.json()


async def web_search(
    query: str,
    count: int = MAX_RESULTS,
    freshness: str = "oneWeek",
    summary: bool = True,
) -> Optional[dict]:
    """
    Run a web search and return formatted results.
    Returns None when search is disabled or the API call fails.
    """
    if not is_enabled():
        logger.info("Web search disabled, skipping")
        return None

    payload = {"query": query, "count": count, "freshness": freshness, "summary": summary}
    try:
        logger.info(f"Web search: '{query}'")
        raw = await _post_search(payload)
    except httpx.HTTPStatusError as e:
        logger.error(f"Web search HTTP {e.response.status_code}: {e.response.text[:200]}")
        return None
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Web search failed: {e}")
        return None

    return format_search_results(raw, query)


def format_search_results(raw: dict, query: str = "") -> dict:
    data = raw.get("data") or raw
    pages = (data.get("webPages") or {}).get("value") or []
    if not pages:
        logger.info("Web search returned no results")
        return {"success": False, "message": "没有找到相关结果", "results": []}

    results = [
        {
            "title": item.get("name", ""),
            "url": item.get("url", ""),
            "snippet": item.get("snippet", ""),
            "summary": item.get("summary"),
            "site_name": item.get("siteName", ""),
            "date_published": item.get("datePublished"),
        }
        for item in pages
    ]

    query_context = data.get("queryContext") or {}
    total = (data.get("webPages") or {}).get("totalEstimatedMatches") or len(results)
    logger.info(f"Web search found {len(results)} results")
    return {
        "success": True,
        "query": query_context.get("originalQuery") or query,
        "total_results": total,
        "results": results[:MAX_RESULTS],
        "summary": generate_summary(results),
    }


def generate_summary(results: List[dict]) -> str:
    if not results:
        return "没有找到相关信息。"

    summaries = [r["summary"] for r in results if r.get("summary")][:3]
    if not summaries:
        return "找到了一些相关结果，但无法生成摘要。"
    return "\n\n".join(summaries)


def should_search(message: str) -> bool:
    text = message.lower()
    if any(t in text for t in SEARCH_TRIGGERS):
        return True
    if any(k in text for k in TIME_KEYWORDS) or _YEAR_RE.search(text):
        return True
    return "?" in text or "？" in text


def extract_search_keywords(message: str) -> str:
    words = [
        w for w in _PUNCTUATION_RE.sub(" ", message).split()
        if len(w) > 1 and w not in STOP_WORDS
    ]
    return " ".join(words[:5]) or message.strip()
