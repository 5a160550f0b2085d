"""
Pydantic request schemas for the API.

Required text fields default to "" so routes can answer with a friendly
400 message instead of a bare validation error.
"""

from pydantic import BaseModel, Field
from typing import Optional, List


# ── Chat ─────────────────────────────────────────────────
class AttachedFile(BaseModel):
    filename: str
    originalname: Optional[str] = None
    mimetype: Optional[str] = None
    size: Optional[int] = None


class ChatSendRequest(BaseModel):
    message: str = ""
    chat_id: Optional[str] = None
    use_thinking: bool = False
    use_search: bool = False
    files: List[AttachedFile] = []


class NewChatRequest(BaseModel):
    title: Optional[str] = None


class BatchDeleteRequest(BaseModel):
    chat_ids: List[str] = []


# ── Auth ─────────────────────────────────────────────────
class EmailRequest(BaseModel):
    email: str = ""


class VerifyCodeRequest(BaseModel):
    email: str = ""
    code: str = ""


class RegisterRequest(BaseModel):
    email: str = ""
    password: str = ""
    verification_code: str = ""


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class ResetPasswordRequest(BaseModel):
    token: str = ""
    new_password: str = ""


# ── Weather ──────────────────────────────────────────────
class BatchWeatherRequest(BaseModel):
    cities: List[str] = Field(default_factory=list)


# ── Search ───────────────────────────────────────────────
class SearchTestRequest(BaseModel):
    query: str = ""


# ── Voice ────────────────────────────────────────────────
class TranslateRequest(BaseModel):
    text: str = ""
