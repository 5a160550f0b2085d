"""
User accounts and e-mail verification codes, persisted as flat JSON files.

users.json is keyed by lower-cased e-mail; verification_codes.json is keyed by
the e-mail the code was sent to. Every mutation rewrites the whole file.
"""

import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from loguru import logger

from config import settings
from models.database import data_path, read_json, write_json
from models.entities import new_user, parse_iso, public_user, utcnow_iso
from services.auth_service import create_access_token, hash_password, verify_password

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MSG_BAD_EMAIL = "小朋友，邮箱地址好像写得不太对呢，记得要有@符号哦！"
MSG_CODE_MISSING = "小朋友，验证码好像不对或者过期了呢，重新获取一个试试吧！"
MSG_CODE_USED = "小朋友，这个验证码已经用过了呢，重新获取一个新的吧！"
MSG_CODE_EXPIRED = "小朋友，验证码超时了呢，重新获取一个新的试试吧！"
MSG_CODE_WRONG = "小朋友，验证码好像不太对呢，仔细检查一下邮箱里的数字吧！"
MSG_CODE_OK = "太棒了！验证码正确！"
MSG_EMAIL_TAKEN = "小朋友，这个邮箱已经有其他小朋友在用了呢，换一个试试吧！"
MSG_REGISTERED = "哇！注册成功啦！欢迎小朋友加入AI小子大家庭！"
MSG_UNKNOWN_EMAIL = "小朋友，这个邮箱还没有注册过呢，先去注册一个账户吧！"
MSG_BAD_PASSWORD = "小朋友，密码好像不太对呢，仔细想想看哦！"
MSG_LOGGED_IN = "耶！登录成功啦！欢迎回来~"


def _users_file():
    return data_path("users.json")


def _codes_file():
    return data_path("verification_codes.json")


def _normalize(email: str) -> str:
    return (email or "").strip().lower()


# ── Users ────────────────────────────────────────────────

def get_all_users() -> dict:
    return read_json(_users_file(), {})


def get_user_by_email(email: str) -> Optional[dict]:
    return get_all_users().get(_normalize(email))


def get_user_by_id(user_id: str) -> Optional[dict]:
    for user in get_all_users().values():
        if user.get("id") == user_id:
            return user
    return None


def _save_user(user: dict) -> None:
    users = get_all_users()
    users[user["email"]] = user
    write_json(_users_file(), users)


def is_valid_email(email: str) -> bool:
    return bool(email) and bool(_EMAIL_RE.match(email.strip()))


# ── Verification codes ───────────────────────────────────

def generate_verification_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def get_verification_codes() -> dict:
    return read_json(_codes_file(), {})


def save_verification_code(email: str, code: str) -> bool:
    try:
        codes = get_verification_codes()
        now = datetime.now(timezone.utc)
        codes[_normalize(email)] = {
            "code": code,
            "created_at": now.isoformat(),
            "expires_at": (now + timedelta(minutes=settings.VERIFICATION_CODE_EXPIRE_MINUTES)).isoformat(),
            "used": False,
        }
        write_json(_codes_file(), codes)
        logger.info(f"Verification code stored for {email}")
        return True
    except OSError as e:
        logger.error(f"Failed to store verification code: {e}")
        return False


def verify_code(email: str, code: str) -> dict:
    codes = get_verification_codes()
    entry = codes.get(_normalize(email))

    if not entry:
        return {"success": False, "message": MSG_CODE_MISSING}
    if entry.get("used"):
        return {"success": False, "message": MSG_CODE_USED}
    if datetime.now(timezone.utc) > parse_iso(entry["expires_at"]):
        return {"success": False, "message": MSG_CODE_EXPIRED}
    if entry.get("code") != str(code).strip():
        return {"success": False, "message": MSG_CODE_WRONG}

    entry["used"] = True
    write_json(_codes_file(), codes)
    return {"success": True, "message": MSG_CODE_OK}


def cleanup_expired_codes() -> int:
    codes = get_verification_codes()
    now = datetime.now(timezone.utc)
    expired = [email for email, entry in codes.items() if parse_iso(entry["expires_at"]) < now]
    for email in expired:
        del codes[email]
    if expired:
        write_json(_codes_file(), codes)
        logger.info(f"Removed {len(expired)} expired verification codes")
    return len(expired)


# ── Registration / login ─────────────────────────────────

def register_user(email: str, password: str, verification_code: str) -> dict:
    if not is_valid_email(email):
        return {"success": False, "message": MSG_BAD_EMAIL}

    check = verify_code(email, verification_code)
    if not check["success"]:
        return check

    if get_user_by_email(email):
        return {"success": False, "message": MSG_EMAIL_TAKEN}

    user = new_user(_normalize(email), hash_password(password))
    _save_user(user)
    logger.info(f"User registered: {user['email']}")

    return {
        "success": True,
        "message": MSG_REGISTERED,
        "user": public_user(user),
        "token": create_access_token(user),
    }


def login_user(email: str, password: str) -> dict:
    if not is_valid_email(email):
        return {"success": False, "message": MSG_BAD_EMAIL}

    user = get_user_by_email(email)
    if not user:
        return {"success": False, "message": MSG_UNKNOWN_EMAIL}

    if not verify_password(password, user["password"]):
        return {"success": False, "message": MSG_BAD_PASSWORD}

    user["last_login_at"] = utcnow_iso()
    _save_user(user)
    logger.info(f"User logged in: {user['email']}")

    return {
        "success": True,
        "message": MSG_LOGGED_IN,
        "user": public_user(user),
        "token": create_access_token(user),
    }


def update_password(user_id: str, new_password: str) -> bool:
    user = get_user_by_id(user_id)
    if user is None:
        return False
    user["password"] = hash_password(new_password)
    user["updated_at"] = utcnow_iso()
    _save_user(user)
    logger.info(f"Password updated for {user['email']}")
    return True


def get_user_stats() -> dict:
    users = get_all_users()
    total = len(users)
    verified = sum(1 for u in users.values() if u.get("is_verified"))
    return {
        "total_users": total,
        "verified_users": verified,
        "unverified_users": total - verified,
    }
