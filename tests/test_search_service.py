import httpx

from conftest import page, search_payload
from services import search_service


async def test_web_search_disabled_returns_none():
    assert await search_service.web_search("恐龙") is None


async def test_web_search_formats_results(enable_search):
    calls = enable_search(search_payload(
        page("恐龙百科", "恐龙生活在中生代", summary="恐龙是一类古老的爬行动物。", site="baike.com"),
        page("恐龙新闻", "新发现的化石"),
    ))

    result = await search_service.web_search("恐龙", count=3, freshness="oneDay")

    assert calls == [{"query": "恐龙", "count": 3, "freshness": "oneDay", "summary": True}]
    assert result["success"] is True
    assert result["total_results"] == 2
    assert result["results"][0] == {
        "title": "恐龙百科",
        "url": "https://baike.com/4",
        "snippet": "恐龙生活在中生代",
        "summary": "恐龙是一类古老的爬行动物。",
        "site_name": "baike.com",
        "date_published": "2024-06-01T08:00:00+08:00",
    }
    assert result["summary"] == "恐龙是一类古老的爬行动物。"


async def test_web_search_http_error_returns_none(enable_search):
    enable_search(httpx.ConnectError("boom"))
    assert await search_service.web_search("恐龙") is None


def test_format_search_results_empty():
    result = search_service.format_search_results({"data": {"webPages": {"value": []}}}, "x")
    assert result["success"] is False
    assert result["results"] == []


def test_generate_summary_without_page_summaries():
    assert search_service.generate_summary([]) == "没有找到相关信息。"
    assert search_service.generate_summary([{"summary": None}]) == "找到了一些相关结果，但无法生成摘要。"


def test_summary_uses_at_most_three_pages():
    results = [{"summary": f"s{i}"} for i in range(5)]
    assert search_service.generate_summary(results) == "s0\n\ns1\n\ns2"


def test_should_search():
    assert search_service.should_search("最新的火星新闻")
    assert search_service.should_search("2024年奥运会在哪里举办")
    assert search_service.should_search("what is this?")
    assert not search_service.should_search("讲个故事")


def test_extract_search_keywords():
    assert search_service.extract_search_keywords("恐龙 化石，在 哪里？") == "恐龙 化石"
    assert search_service.extract_search_keywords("的") == "的"


def test_is_enabled_requires_real_key(monkeypatch):
    from config import settings

    monkeypatch.setattr(settings, "SEARCH_ENABLED", True)
    monkeypatch.setattr(settings, "SEARCH_API_KEY", "your-api-key")
    assert not search_service.is_enabled()
    monkeypatch.setattr(settings, "SEARCH_API_KEY", "sk-real-search-key")
    assert search_service.is_enabled()
