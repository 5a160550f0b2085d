"""
Per-user chat history, one JSON file per owner under DATA_DIR/chats.
"""

import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from loguru import logger

from models.database import chats_dir, read_json, write_json
from models.entities import (
    DEFAULT_CHAT_TITLE,
    PROVISIONAL_CHAT_TITLE,
    new_chat,
    new_message,
    parse_iso,
    utcnow_iso,
)

GUEST_OWNER = "guest"

_OWNER_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def _chat_file(owner: str) -> Path:
    if not _OWNER_RE.match(owner or ""):
        raise ValueError(f"Invalid chat owner: {owner!r}")
    return chats_dir() / f"{owner}.json"


def get_all_chats(owner: str) -> Dict[str, dict]:
    return read_json(_chat_file(owner), {})


def _save(owner: str, chats: Dict[str, dict]) -> None:
    write_json(_chat_file(owner), chats)


def get_chat(owner: str, chat_id: str) -> Optional[dict]:
    return get_all_chats(owner).get(chat_id)


def create_chat(owner: str, title: str = DEFAULT_CHAT_TITLE) -> dict:
    chats = get_all_chats(owner)
    chat = new_chat(title)
    chats[chat["id"]] = chat
    _save(owner, chats)
    logger.info(f"Chat created [{owner}]: {chat['id']}")
    return chat


def add_message(owner: str, chat_id: str, message: dict) -> dict:
    """Append a message; an unknown chat id starts a fresh chat under that id."""
    chats = get_all_chats(owner)
    chat = chats.get(chat_id)
    if chat is None:
        chat = new_chat(chat_id=chat_id)
        chats[chat_id] = chat

    record = new_message(message)
    chat["messages"].append(record)
    chat["updated_at"] = utcnow_iso()

    if message.get("role") == "user" and len(chat["messages"]) == 1:
        chat["title"] = PROVISIONAL_CHAT_TITLE

    _save(owner, chats)
    return record


def update_chat_title(owner: str, chat_id: str, title: str) -> bool:
    chats = get_all_chats(owner)
    chat = chats.get(chat_id)
    if chat is None:
        return False
    chat["title"] = title
    chat["updated_at"] = utcnow_iso()
    _save(owner, chats)
    logger.info(f"Chat title updated [{owner}]: {chat_id} -> {title}")
    return True


def needs_title(chat: dict) -> bool:
    if len(chat.get("messages", [])) < 2:
        return False
    title = chat.get("title") or ""
    if title in (DEFAULT_CHAT_TITLE, PROVISIONAL_CHAT_TITLE):
        return True
    return title.endswith("...") and len(title) <= 20


def get_chat_history(owner: str, now: Optional[datetime] = None) -> dict:
    """Chats newest first, bucketed into today / last 7 days / last 30 days / by month."""
    now = (now or datetime.now().astimezone()).astimezone()
    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_ago = now - timedelta(days=7)
    month_ago = now - timedelta(days=30)

    groups = {"today": [], "last_7_days": [], "last_30_days": [], "earlier": {}}
    chats = sorted(
        get_all_chats(owner).values(),
        key=lambda c: parse_iso(c["updated_at"]),
        reverse=True,
    )
    for chat in chats:
        updated = parse_iso(chat["updated_at"]).astimezone(now.tzinfo)
        if updated >= today_start:
            groups["today"].append(chat)
        elif updated > week_ago:
            groups["last_7_days"].append(chat)
        elif updated > month_ago:
            groups["last_30_days"].append(chat)
        else:
            month_key = updated.strftime("%Y-%m")
            groups["earlier"].setdefault(month_key, []).append(chat)
    return groups


def delete_chat(owner: str, chat_id: str) -> bool:
    chats = get_all_chats(owner)
    if chat_id not in chats:
        return False
    del chats[chat_id]
    _save(owner, chats)
    return True


def delete_chats(owner: str, chat_ids: Iterable[str]) -> int:
    chats = get_all_chats(owner)
    deleted = 0
    for chat_id in chat_ids:
        if chats.pop(chat_id, None) is not None:
            deleted += 1
    if deleted:
        _save(owner, chats)
    return deleted


def thread_for_model(chat: dict) -> List[dict]:
    """Strip stored messages down to what the completion API accepts."""
    return [
        {"role": m["role"], "content": m.get("content", "")}
        for m in chat.get("messages", [])
        if m.get("role") in ("user", "assistant", "system")
    ]
