import httpx
import openai
import pytest

from conftest import fake_client, page, search_payload
from config import settings
from services import ai_service
from services.file_service import save_upload

THREAD = [{"role": "user", "content": "你好呀"}]

@pytest.fixture
def chat_model(monkeypatch):
    def _install(*script):
        client = fake_client(script)
        monkeypatch.setattr(ai_service, "client", client)
        return client.chat.completions

    return _install

async def test_reply_without_client_is_fallback():
    reply = await ai_service.generate_reply(THREAD)
    assert reply["role"] == "assistant"
    assert reply["error"] is True
    assert reply["content"] in ai_service.FALLBACK_REPLIES

async def test_reply_from_chat_model(chat_model):
    completions = chat_model("你好！我是AI小子 😊")

    reply = await ai_service.generate_reply(THREAD)

    assert reply["content"] == "你好！我是AI小子 😊"
    assert reply["model"] == settings.OPENAI_MODEL
    assert "error" not in reply
    assert "thinking" not in reply
    call = completions.calls[0]
    assert call["messages"][0] == {"role": "system", "content": ai_service.SYSTEM_PROMPT}
    assert call["messages"][-1] == {"role": "user", "content": "你好呀"}
    assert call["temperature"] == settings.AI_TEMPERATURE
    assert call["max_tokens"] == settings.AI_MAX_TOKENS

async def test_history_is_trimmed(chat_model, monkeypatch):
    monkeypatch.setattr(settings, "AI_MAX_HISTORY_MESSAGES", 3)
    completions = chat_model("ok")
    thread = [{"role": "user" if i % 2 == 0 else "assistant", "content": str(i)} for i in range(9)]

    await ai_service.generate_reply(thread)

    sent = completions.calls[0]["messages"]
    assert [m["content"] for m in sent[1:]] == ["6", "7", "8"]

async def test_retries_then_succeeds(chat_model):
    completions = chat_model(openai.OpenAIError("boom"), "", "终于好了")
    reply = await ai_service.generate_reply(THREAD)
    assert reply["content"] == "终于好了"
    assert len(completions.calls) == 3

async def test_retries_exhausted_gives_fallback(chat_model):
    completions = chat_model(openai.OpenAIError("down"))
    reply = await ai_service.generate_reply(THREAD)
    assert reply["error"] is True
    assert reply["content"] in ai_service.FALLBACK_REPLIES
    assert len(completions.calls) == settings.AI_MAX_RETRIES

async def test_thinking_uses_reasoning_model(chat_model, monkeypatch):
    primary = chat_model("不该用到我")
    reasoning = fake_client([("答案是42", "先想一想……")])
    monkeypatch.setattr(ai_service, "reasoning_client", reasoning)

    reply = await ai_service.generate_reply(THREAD, use_thinking=True)

    assert primary.calls == []
    call = reasoning.chat.completions.calls[0]
    assert call["model"] == settings.DEEPSEEK_MODEL
    assert call["max_tokens"] >= settings.DEEPSEEK_MAX_TOKENS
    assert reply["content"] == "答案是42"
    assert reply["model"] == settings.DEEPSEEK_MODEL
    assert reply["thinking"]["content"] == "先想一想……"
    assert reply["thinking"]["thinking_time"] >= 0
    assert reply["thinking"]["search_used"] is False

async def test_thinking_falls_back_to_chat_model(chat_model):
    primary = chat_model("普通回答")
    reply = await ai_service.generate_reply(THREAD, use_thinking=True)
    assert reply["content"] == "普通回答"
    assert primary.calls[0]["model"] == settings.OPENAI_MODEL

def test_split_reasoning_handles_think_prefix():
    content, reasoning = ai_service.split_reasoning("<think>\n想一想\n</think>\n\n答案", None)
    assert content == "答案"
    assert reasoning == "想一想"
    assert ai_service.split_reasoning("答案", "r") == ("答案", "r")

async def test_search_context_is_inserted_before_last_message(chat_model, enable_search):
    completions = chat_model("根据搜索结果……")
    enable_search(search_payload(page("火星新闻", "火星上发现了水", summary="科学家在火星发现了水。")))
    thread = [
        {"role": "user", "content": "你好"},
        {"role": "assistant", "content": "你好呀"},
        {"role": "user", "content": "最新的火星新闻"},
    ]

    reply = await ai_service.generate_reply(thread, use_search=True)

    sent = completions.calls[0]["messages"]
    assert sent[-1] == {"role": "user", "content": "最新的火星新闻"}
    assert sent[-2]["role"] == "system"
    assert "[联网搜索结果]" in sent[-2]["content"]
    assert "火星上发现了水" in sent[-2]["content"]
    assert reply["search_used"] is True
    assert reply["search_results_count"] == 1
    assert reply["search_query"]

async def test_failed_search_is_not_reported(chat_model):
    chat_model("ok")
    reply = await ai_service.generate_reply(THREAD, use_search=True)
    assert "search_used" not in reply

async def test_weather_question_attaches_card(chat_model):
    completions = chat_model("上海今天多云哦")
    reply = await ai_service.generate_reply([{"role": "user", "content": "上海天气怎么样"}])

    assert reply["weather"]["type"] == "weather_card"
    assert reply["weather"]["data"]["city"] == "上海"
    context = completions.calls[0]["messages"][-2]
    assert context["role"] == "system"
    assert context["content"].startswith("[天气信息] 城市: 上海")

async def test_images_are_analysed_with_vision_model(chat_model):
    completions = chat_model("图里有一只小猫", "这是一只可爱的小猫哦")
    stored = save_upload("cat.png", "image/png", b"\x89PNG fake")

    reply = await ai_service.generate_reply(THREAD, files=[stored])

    vision_call, chat_call = completions.calls
    assert vision_call["model"] == settings.VISION_MODEL
    image_part = vision_call["messages"][0]["content"][0]
    assert image_part["image_url"]["url"].startswith("data:image/png;base64,")
    assert "图里有一只小猫" in chat_call["messages"][-2]["content"]
    assert reply["files_analyzed"] == 1
    assert reply["content"] == "这是一只可爱的小猫哦"

async def test_text_files_are_excerpted(chat_model):
    completions = chat_model("好的")
    stored = save_upload("story.txt", "text/plain", "从前有座山".encode("utf-8"))

    reply = await ai_service.generate_reply(THREAD, files=[stored])

    assert "从前有座山" in completions.calls[0]["messages"][-2]["content"]
    assert reply["files_analyzed"] == 1

async def test_missing_file_is_noted(chat_model):
    completions = chat_model("好的")
    reply = await ai_service.generate_reply(THREAD, files=[{"filename": "nope.png", "mimetype": "image/png"}])
    assert "找不到这个文件" in completions.calls[0]["messages"][-2]["content"]
    assert "files_analyzed" not in reply

async def test_stream_reply_yields_chunks_then_reply(monkeypatch):
    client = fake_client([[("想", None), (None, "你好"), (None, "呀")]])
    monkeypatch.setattr(ai_service, "client", client)

    events = [e async for e in ai_service.stream_reply(THREAD)]

    assert events[:-1] == [
        {"type": "thinking", "content": "想"},
        {"type": "content", "content": "你好"},
        {"type": "content", "content": "呀"},
    ]
    final = events[-1]
    assert final["type"] == "reply"
    assert final["reply"]["content"] == "你好呀"
    assert final["reply"]["thinking"]["content"] == "想"
    assert client.chat.completions.calls[0]["stream"] is True

async def test_stream_failure_after_output_appends_fallback(monkeypatch):
    client = fake_client([[(None, "你好"), (None, openai.OpenAIError("cut"))]])
    monkeypatch.setattr(ai_service, "client", client)

    events = [e async for e in ai_service.stream_reply(THREAD)]

    reply = events[-1]["reply"]
    assert reply["error"] is True
    assert reply["content"].startswith("你好")
    assert len(client.chat.completions.calls) == 1

async def test_stream_without_client_sends_fallback():
    events = [e async for e in ai_service.stream_reply(THREAD)]
    assert events[0]["type"] == "content"
    assert events[0]["content"] in ai_service.FALLBACK_REPLIES
    assert events[-1]["reply"]["error"] is True

async def test_stream_splits_think_prefix_from_content(monkeypatch):
    client = fake_client([[(None, "<think>先想想"), (None, "光的散射</think>"), (None, "因为散射呀")]])
    monkeypatch.setattr(ai_service, "client", client)

    events = [e async for e in ai_service.stream_reply(THREAD)]

    assert events[:-1] == [
        {"type": "thinking", "content": "先想想光的散射"},
        {"type": "content", "content": "因为散射呀"},
    ]
    reply = events[-1]["reply"]
    assert reply["content"] == "因为散射呀"
    assert reply["thinking"]["content"] == "先想想光的散射"
    assert "error" not in reply

async def test_stream_matches_generate_reply_on_think_prefix(chat_model, monkeypatch):
    chat_model("<think>先想想光的散射</think>因为散射呀")
    full = await ai_service.generate_reply(THREAD)

    monkeypatch.setattr(ai_service, "client", fake_client([[(None, "<think>先想想光的散射</think>因为散射呀")]]))
    streamed = [e async for e in ai_service.stream_reply(THREAD)][-1]["reply"]

    assert streamed["content"] == full["content"] == "因为散射呀"
    assert streamed["thinking"]["content"] == full["thinking"]["content"]

async def test_stream_keeps_text_that_only_looks_like_a_tag(monkeypatch):
    client = fake_client([[(None, "<thi"), (None, "s is fine>")]])
    monkeypatch.setattr(ai_service, "client", client)

    events = [e async for e in ai_service.stream_reply(THREAD)]

    assert events[-1]["reply"]["content"] == "<this is fine>"
    assert "thinking" not in events[-1]["reply"]

async def test_stream_retries_when_failing_before_first_chunk(monkeypatch):
    client = fake_client([openai.OpenAIError("busy"), [(None, "你好"), (None, "呀")]])
    monkeypatch.setattr(ai_service, "client", client)

    events = [e async for e in ai_service.stream_reply(THREAD)]

    assert len(client.chat.completions.calls) == 2
    assert [e["content"] for e in events[:-1]] == ["你好", "呀"]
    reply = events[-1]["reply"]
    assert reply["content"] == "你好呀"
    assert "error" not in reply

async def test_stream_transport_error_gives_fallback(monkeypatch):
    client = fake_client([[(None, httpx.ReadError("connection reset"))]])
    monkeypatch.setattr(ai_service, "client", client)

    events = [e async for e in ai_service.stream_reply(THREAD)]

    reply = events[-1]["reply"]
    assert reply["error"] is True
    assert reply["content"] in ai_service.FALLBACK_REPLIES
    assert len(client.chat.completions.calls) == settings.AI_MAX_RETRIES

async def test_extra_images_are_skipped(chat_model, monkeypatch):
    monkeypatch.setattr(settings, "MAX_IMAGES_PER_MESSAGE", 1)
    completions = chat_model("第一张是小猫", "好的")
    first = save_upload("cat.png", "image/png", b"\x89PNG one")
    second = save_upload("dog.png", "image/png", b"\x89PNG two")

    reply = await ai_service.generate_reply(THREAD, files=[first, second])

    vision_calls = [c for c in completions.calls if c["model"] == settings.VISION_MODEL]
    assert len(vision_calls) == 1
    assert len(completions.calls) == 2
    context = completions.calls[-1]["messages"][-2]["content"]
    assert "第一张是小猫" in context
    assert "这张先跳过" in context
    assert reply["files_analyzed"] == 1

@pytest.mark.parametrize(
    "raw, expected",
    [
        ("“恐龙的秘密”", "恐龙的秘密"),
        ("标题：天空为什么是蓝色", "天空为什么是蓝色"),
        ("<think>嗯</think>小猫咪。\n多余的行", "小猫咪"),
    ],
)
def test_clean_title(raw, expected):
    assert ai_service.clean_title(raw) == expected

async def test_generate_chat_title(chat_model):
    completions = chat_model("恐龙故事")
    title = await ai_service.generate_chat_title([
        {"role": "user", "content": "给我讲个恐龙的故事"},
        {"role": "assistant", "content": "从前……"},
    ])
    assert title == "恐龙故事"
    assert completions.calls[0]["max_tokens"] == 30

async def test_generate_chat_title_fallback():
    title = await ai_service.generate_chat_title([{"role": "user", "content": "给我讲一个关于勇敢小兔子的长长的故事"}])
    assert title == "给我讲一个关于勇敢小兔子"
    assert await ai_service.generate_chat_title([]) == "新对话"
