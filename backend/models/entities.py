"""
Record builders for the JSON stores: users, chats, messages.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

DEFAULT_CHAT_TITLE = "新对话"
PROVISIONAL_CHAT_TITLE = "新对话..."


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_iso(value: str) -> datetime:
    """Parse a stored timestamp; naive values are treated as UTC."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def new_user(email: str, hashed_password: str, is_verified: bool = True) -> dict:
    now = utcnow_iso()
    return {
        "id": _uuid(),
        "email": email.lower(),
        "password": hashed_password,
        "is_verified": is_verified,
        "created_at": now,
        "updated_at": now,
        "last_login_at": None,
    }


def public_user(user: dict) -> dict:
    """User fields safe to hand back to clients (never the password hash)."""
    return {
        "id": user["id"],
        "email": user["email"],
        "is_verified": user.get("is_verified", False),
        "created_at": user.get("created_at"),
        "last_login_at": user.get("last_login_at"),
    }


def new_chat(title: str = DEFAULT_CHAT_TITLE, chat_id: Optional[str] = None) -> dict:
    now = utcnow_iso()
    return {
        "id": chat_id or _uuid(),
        "title": title or DEFAULT_CHAT_TITLE,
        "messages": [],
        "created_at": now,
        "updated_at": now,
    }


def new_message(message: dict) -> dict:
    record = {"id": _uuid(), "timestamp": utcnow_iso()}
    record.update(message)
    return record
