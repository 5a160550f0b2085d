"""
Shared slowapi limiter, keyed on the caller's remote address.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from config import settings

limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)


def chat_limit() -> str:
    return f"{settings.RATE_LIMIT_PER_MINUTE}/minute"


def verification_limit() -> str:
    return settings.VERIFICATION_RATE_LIMIT
