"""
Reply orchestration for AI Xiaozi.

Builds one assistant reply from a message thread plus optional web-search,
weather and uploaded-file context, and routes the completion to either the
chat model or the deep-thinking (reasoning) model. Failed completions are
retried a fixed number of times before a friendly canned reply is returned.
"""

import asyncio
import mimetypes
import random
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Tuple

import httpx
import openai
from loguru import logger

from config import is_configured_key, settings
from models.entities import utcnow_iso
from services.file_service import image_data_url, is_image, read_text_excerpt, resolve_upload_path
from services.search_service import extract_search_keywords, web_search
from services.weather_service import (
    extract_city,
    format_weather_for_chat,
    get_weather_data,
    is_weather_query,
    weather_context,
)

client = None
reasoning_client = None


def _get_client():
    global client
    if client is None:
        if not is_configured_key(settings.OPENAI_API_KEY):
            return None
        client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY, base_url=settings.OPENAI_BASE_URL)
    return client


def _get_reasoning_client():
    global reasoning_client
    if reasoning_client is None:
        if not is_configured_key(settings.DEEPSEEK_API_KEY):
            return None
        reasoning_client = openai.AsyncOpenAI(api_key=settings.DEEPSEEK_API_KEY, base_url=settings.DEEPSEEK_BASE_URL)
    return reasoning_client


SYSTEM_PROMPT = """你是AI小子，一个专门陪伴儿童成长的AI助手。你的特点：

🎯 核心特质：
- 温暖友善、充满耐心
- 语言简单易懂，适合儿童
- 喜欢用表情符号和比喻
- 善于鼓励和赞美孩子

🎨 互动风格：
- 用轻松活泼的语气交流
- 经常问孩子的想法和感受
- 把复杂的概念用简单的话解释
- 通过故事和游戏来教育

🌟 主要功能：
- 回答孩子的各种问题
- 陪伴聊天，缓解孤独
- 协助学习，激发兴趣
- 培养好习惯，正向引导

记住：你在和孩子对话，要保持童真、积极向上，避免复杂或负面的内容。"""

FALLBACK_REPLIES = [
    "哎呀，我刚才开小差了！😅 能再说一遍吗？我一定会认真听的！",
    "嗯……我的小脑袋刚刚卡住了一下 🤔 我们再试一次好不好？",
    "哎呀，网络小精灵好像在捣乱 🧚 等一下再问我吧！",
    "对不起呀，我刚才没想明白 🙈 你可以换个说法再告诉我吗？",
]

IMAGE_PROMPT = "请仔细看看这张图片，用简单的中文描述图片里有什么，方便给小朋友讲解。"

TITLE_PROMPT = "请用不超过10个字概括下面这段对话的主题。只输出标题本身，不要标点符号和引号。"

_THINK_RE = re.compile(r"^\s*<think>(.*?)</think>\s*", re.DOTALL)
_TITLE_STRIP = "\"'“”‘’《》「」【】。.!！?？:：,， "


class EmptyCompletion(Exception):
    """The model answered without any reply text."""


@dataclass
class _Plan:
    chat_messages: List[Dict[str, str]]
    client: Optional[object]
    model: str
    temperature: float
    max_tokens: int
    extras: dict = field(default_factory=dict)
    search_used: bool = False


# ─────────────────────────────────────────────────────────
#  CONTEXT BLOCKS
# ─────────────────────────────────────────────────────────

def _last_user_text(messages: List[Dict[str, str]]) -> str:
    for m in reversed(messages):
        if m.get("role") == "user":
            return m.get("content", "")
    return ""


def search_context(results: dict) -> str:
    items = "\n\n".join(
        f"{i}. {r['title']}\n   来源: {r['site_name']}\n   摘要: {r['snippet']}\n   链接: {r['url']}"
        for i, r in enumerate(results["results"], start=1)
    )
    return f"""[联网搜索结果]
搜索关键词: {results['query']}
找到 {results['total_results']} 个相关结果

主要信息摘要:
{results['summary']}

详细结果:
{items}

请基于以上搜索到的最新信息来回答用户的问题。记住要：
1. 引用具体的搜索结果
2. 提供准确的信息
3. 如果信息不够全面，可以告诉用户
4. 保持你作为AI小子的友善语调"""


async def analyze_image(path: Path, mimetype: str, question: str = "") -> Optional[str]:
    """Describe one image with the vision model; None if it cannot be analysed."""
    ai_client = _get_client()
    if ai_client is None:
        return None

    prompt = IMAGE_PROMPT
    if question:
        prompt += f"\n小朋友的问题是：{question}"

    try:
        response = await ai_client.chat.completions.create(
            model=settings.VISION_MODEL,
            messages=[{
                "role": "user",
                "content": [
                    {"type": "image_url", "image_url": {"url": image_data_url(path, mimetype)}},
                    {"type": "text", "text": prompt},
                ],
            }],
            temperature=0.3,
            max_tokens=500,
        )
        text = (response.choices[0].message.content or "").strip()
        logger.info(f"Image analysed: {path.name} -> '{text[:60]}'")
        return text or None
    except (openai.OpenAIError, OSError) as e:
        logger.error(f"Image analysis failed for {path.name}: {e}")
        return None


async def file_context(files: List[dict], question: str = "") -> Tuple[Optional[str], int]:
    """Turn attached uploads into one context block; returns (block, files analysed)."""
    notes = []
    analysed = 0
    images = 0

    for f in files:
        filename = f.get("filename", "")
        name = f.get("originalname") or filename
        path = resolve_upload_path(filename) if filename else None
        if path is None or not path.is_file():
            notes.append(f"- 文件《{name}》：找不到这个文件，可能已经被删除了")
            continue

        mimetype = f.get("mimetype") or mimetypes.guess_type(path.name)[0] or ""
        if is_image(mimetype):
            if images >= settings.MAX_IMAGES_PER_MESSAGE:
                notes.append(f"- 图片《{name}》：一次看的图片太多啦，这张先跳过")
                continue
            images += 1
            description = await analyze_image(path, mimetype, question)
            if description:
                analysed += 1
                notes.append(f"- 图片《{name}》的内容：{description}")
            else:
                notes.append(f"- 图片《{name}》：暂时没能看清这张图片")
        elif mimetype == "text/plain":
            analysed += 1
            notes.append(f"- 文本文件《{name}》的内容：\n{read_text_excerpt(path)}")
        else:
            notes.append(f"- 文件《{name}》（{mimetype or '未知类型'}）：目前只能读取图片和文本文件的内容")

    if not notes:
        return None, 0

    block = "[用户上传的文件]\n" + "\n".join(notes) + "\n\n请结合这些文件内容，用小朋友能听懂的话来回答。"
    return block, analysed


def build_chat_messages(messages: List[Dict[str, str]], context_blocks: List[str]) -> List[Dict[str, str]]:
    """System prompt + recent history, context blocks placed right before the last message."""
    history = [
        {"role": m["role"], "content": m.get("content", "")}
        for m in messages[-settings.AI_MAX_HISTORY_MESSAGES:]
    ]
    context = [{"role": "system", "content": block} for block in context_blocks]
    return [{"role": "system", "content": SYSTEM_PROMPT}] + history[:-1] + context + history[-1:]


async def _prepare(
    messages: List[Dict[str, str]],
    use_thinking: bool,
    use_search: bool,
    files: Optional[List[dict]],
    temperature: Optional[float],
    max_tokens: Optional[int],
) -> _Plan:
    text = _last_user_text(messages)
    blocks: List[str] = []
    extras: dict = {}
    search_used = False

    if use_search:
        query = extract_search_keywords(text)
        logger.info(f"Search enabled for reply, query='{query}'")
        results = await web_search(query)
        if results and results.get("success"):
            blocks.append(search_context(results))
            search_used = True
            extras.update(
                search_used=True,
                search_query=results["query"],
                search_results_count=len(results["results"]),
            )

    if is_weather_query(text):
        city = extract_city(text) or settings.WEATHER_DEFAULT_CITY
        weather = await get_weather_data(city)
        blocks.append(weather_context(weather))
        extras["weather"] = format_weather_for_chat(weather)

    if files:
        block, analysed = await file_context(files, text)
        if block:
            blocks.append(block)
        if analysed:
            extras["files_analyzed"] = analysed

    ai_client, model = None, settings.OPENAI_MODEL
    limit = max_tokens or settings.AI_MAX_TOKENS
    if use_thinking:
        ai_client = _get_reasoning_client()
        if ai_client is not None:
            model = settings.DEEPSEEK_MODEL
            limit = max(limit, settings.DEEPSEEK_MAX_TOKENS)
        else:
            logger.warning("Deep thinking requested but reasoning model is not configured, using chat model")
    if ai_client is None:
        ai_client = _get_client()

    return _Plan(
        chat_messages=build_chat_messages(messages, blocks),
        client=ai_client,
        model=model,
        temperature=settings.AI_TEMPERATURE if temperature is None else temperature,
        max_tokens=limit,
        extras=extras,
        search_used=search_used,
    )


# ─────────────────────────────────────────────────────────
#  COMPLETION
# ─────────────────────────────────────────────────────────

def split_reasoning(content: str, reasoning: Optional[str]) -> Tuple[str, str]:
    """Separate reasoning text from the answer; handles a leading <think> block."""
    content = content or ""
    reasoning = (reasoning or "").strip()
    match = _THINK_RE.match(content)
    if match:
        reasoning = reasoning or match.group(1).strip()
        content = content[match.end():]
    return content.strip(), reasoning


class _ThinkSplitter:
    """
    Incremental counterpart of split_reasoning for streamed content: text
    inside a leading <think> block comes out as "thinking", the rest as
    "content". Partial tags are held back until the next delta decides them.
    """

    OPEN = "<think>"
    CLOSE = "</think>"

    def __init__(self):
        self.mode = "start"
        self.buffer = ""

    def feed(self, text: str) -> List[Tuple[str, str]]:
        self.buffer += text
        out: List[Tuple[str, str]] = []

        if self.mode == "start":
            head = self.buffer.lstrip()
            if head.startswith(self.OPEN):
                self.mode = "think"
                self.buffer = head[len(self.OPEN):]
            elif head and not self.OPEN.startswith(head):
                self.mode = "content"
            else:
                return out

        if self.mode == "think":
            end = self.buffer.find(self.CLOSE)
            if end == -1:
                keep = len(self.CLOSE) - 1
                ready, self.buffer = self.buffer[:-keep], self.buffer[-keep:]
                if ready:
                    out.append(("thinking", ready))
                return out
            if end:
                out.append(("thinking", self.buffer[:end]))
            self.mode = "content"
            self.buffer = self.buffer[end + len(self.CLOSE):].lstrip()

        if self.buffer:
            out.append(("content", self.buffer))
            self.buffer = ""
        return out

    def flush(self) -> List[Tuple[str, str]]:
        rest, self.buffer = self.buffer, ""
        if not rest:
            return []
        return [("thinking" if self.mode == "think" else "content", rest)]


async def _complete_with_retry(plan: _Plan) -> Tuple[str, str]:
    attempts = max(1, settings.AI_MAX_RETRIES)
    for attempt in range(1, attempts + 1):
        try:
            response = await plan.client.chat.completions.create(
                model=plan.model,
                messages=plan.chat_messages,
                temperature=plan.temperature,
                max_tokens=plan.max_tokens,
                stream=False,
            )
            message = response.choices[0].message
            content, reasoning = split_reasoning(message.content, getattr(message, "reasoning_content", None))
            if not content:
                raise EmptyCompletion(f"{plan.model} returned an empty reply")
            return content, reasoning
        except (openai.OpenAIError, httpx.HTTPError, EmptyCompletion) as e:
            logger.warning(f"Completion attempt {attempt}/{attempts} failed: {e}")
            if attempt == attempts:
                raise
            await asyncio.sleep(settings.AI_RETRY_DELAY * attempt)


def _build_reply(plan: _Plan, content: str, reasoning: str, elapsed: float, error: bool) -> dict:
    reply = {
        "role": "assistant",
        "content": content,
        "timestamp": utcnow_iso(),
        "model": plan.model,
    }
    if error:
        reply["error"] = True
    reply.update(plan.extras)
    if reasoning:
        reply["thinking"] = {
            "content": reasoning,
            "thinking_time": round(elapsed, 1),
            "search_used": plan.search_used,
            "timestamp": utcnow_iso(),
        }
    return reply


async def generate_reply(
    messages: List[Dict[str, str]],
    use_thinking: bool = False,
    use_search: bool = False,
    files: Optional[List[dict]] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> dict:
    plan = await _prepare(messages, use_thinking, use_search, files, temperature, max_tokens)

    if plan.client is None:
        logger.warning("No chat model configured, returning fallback reply")
        return _build_reply(plan, random.choice(FALLBACK_REPLIES), "", 0.0, error=True)

    started = time.perf_counter()
    try:
        content, reasoning = await _complete_with_retry(plan)
    except (openai.OpenAIError, httpx.HTTPError, EmptyCompletion) as e:
        logger.error(f"AI error after retries: {e}")
        return _build_reply(plan, random.choice(FALLBACK_REPLIES), "", 0.0, error=True)

    elapsed = time.perf_counter() - started
    logger.info(f"[{plan.model}] '{_last_user_text(messages)[:40]}' -> '{content[:60]}' ({elapsed:.1f}s)")
    return _build_reply(plan, content, reasoning, elapsed, error=False)


async def stream_reply(
    messages: List[Dict[str, str]],
    use_thinking: bool = False,
    use_search: bool = False,
    files: Optional[List[dict]] = None,
) -> AsyncIterator[dict]:
    """
    Yield {"type": "thinking"|"content", "content": str} chunks, then
    {"type": "reply", "reply": <reply object>} once the stream is complete.
    Retries only happen before anything has been sent to the client.
    """
    plan = await _prepare(messages, use_thinking, use_search, files, None, None)
    content_parts: List[str] = []
    reasoning_parts: List[str] = []
    think_parts: List[str] = []
    error = plan.client is None
    started = time.perf_counter()

    attempts = max(1, settings.AI_MAX_RETRIES)
    attempt = 0
    while not error and attempt < attempts:
        attempt += 1
        emitted = False
        splitter = _ThinkSplitter()
        try:
            stream = await plan.client.chat.completions.create(
                model=plan.model,
                messages=plan.chat_messages,
                temperature=plan.temperature,
                max_tokens=plan.max_tokens,
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                reasoning = getattr(delta, "reasoning_content", None)
                if reasoning:
                    emitted = True
                    reasoning_parts.append(reasoning)
                    yield {"type": "thinking", "content": reasoning}
                if delta.content:
                    emitted = True
                    for kind, text in splitter.feed(delta.content):
                        (think_parts if kind == "thinking" else content_parts).append(text)
                        yield {"type": kind, "content": text}
            for kind, text in splitter.flush():
                (think_parts if kind == "thinking" else content_parts).append(text)
                yield {"type": kind, "content": text}
            if not "".join(content_parts).strip():
                raise EmptyCompletion(f"{plan.model} streamed an empty reply")
            break
        except (openai.OpenAIError, httpx.HTTPError, EmptyCompletion) as e:
            logger.warning(f"Stream attempt {attempt}/{attempts} failed: {e}")
            if emitted or attempt == attempts:
                error = True
            else:
                await asyncio.sleep(settings.AI_RETRY_DELAY * attempt)

    if error:
        fallback = random.choice(FALLBACK_REPLIES)
        if "".join(content_parts).strip():
            fallback = "\n\n" + fallback
        content_parts.append(fallback)
        yield {"type": "content", "content": fallback}

    elapsed = time.perf_counter() - started
    reasoning = "".join(reasoning_parts).strip() or "".join(think_parts).strip()
    reply = _build_reply(plan, "".join(content_parts).strip(), reasoning, elapsed, error)
    yield {"type": "reply", "reply": reply}


# ─────────────────────────────────────────────────────────
#  CHAT TITLES
# ─────────────────────────────────────────────────────────

def _fallback_title(messages: List[Dict[str, str]]) -> str:
    first = next((m.get("content", "") for m in messages if m.get("role") == "user"), "").strip()
    first = first.splitlines()[0] if first else ""
    return first[:12] or "新对话"


def clean_title(raw: str) -> str:
    text, _ = split_reasoning(raw or "", None)
    lines = [line for line in text.splitlines() if line.strip()]
    title = lines[0] if lines else ""
    for prefix in ("标题：", "标题:", "主题：", "主题:"):
        if title.startswith(prefix):
            title = title[len(prefix):]
    return title.strip(_TITLE_STRIP)[:20]


async def generate_chat_title(messages: List[Dict[str, str]]) -> str:
    fallback = _fallback_title(messages)
    ai_client = _get_client()
    if ai_client is None:
        return fallback

    conversation = "\n".join(
        f"{'小朋友' if m['role'] == 'user' else 'AI小子'}：{m.get('content', '')[:200]}"
        for m in messages[:4]
    )
    try:
        response = await ai_client.chat.completions.create(
            model=settings.OPENAI_MODEL,
            messages=[
                {"role": "system", "content": TITLE_PROMPT},
                {"role": "user", "content": conversation},
            ],
            temperature=0.3,
            max_tokens=30,
        )
        return clean_title(response.choices[0].message.content) or fallback
    except openai.OpenAIError as e:
        logger.error(f"Title generation failed: {e}")
        return fallback
