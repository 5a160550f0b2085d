"""
Authentication routes: e-mail verification, register, login, password reset.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from loguru import logger

from config import settings
from middleware.rate_limit import limiter, verification_limit
from models.entities import public_user, utcnow_iso
from models.schemas import EmailRequest, LoginRequest, RegisterRequest, ResetPasswordRequest, VerifyCodeRequest
from services import user_service
from services.auth_service import (
    RESET_PURPOSE,
    create_reset_token,
    decode_token,
    get_current_user,
    get_optional_user,
    token_matches_user,
)
from services.email_service import (
    get_service_status,
    send_password_reset_email,
    send_verification_code,
    send_welcome_email,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])

MSG_EMAIL_REQUIRED = "小朋友，记得要填写邮箱地址哦！"


def _require_valid_email(email: str) -> str:
    email = (email or "").strip()
    if not email:
        raise HTTPException(status_code=400, detail=MSG_EMAIL_REQUIRED)
    if not user_service.is_valid_email(email):
        raise HTTPException(status_code=400, detail=user_service.MSG_BAD_EMAIL)
    return email


def _require_password_length(password: str) -> None:
    if len(password) < settings.PASSWORD_MIN_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"小朋友，密码要至少{settings.PASSWORD_MIN_LENGTH}位数哦！这样更安全呢~",
        )


@router.post("/check-email")
async def check_email(req: EmailRequest):
    email = _require_valid_email(req.email)
    return {
        "success": True,
        "data": {"exists": user_service.get_user_by_email(email) is not None, "email": email},
    }


@router.post("/send-verification-code")
@limiter.limit(verification_limit)
async def send_code(request: Request, req: EmailRequest):
    email = _require_valid_email(req.email)

    code = user_service.generate_verification_code()
    if not user_service.save_verification_code(email, code):
        raise HTTPException(status_code=500, detail="哎呀，验证码保存时遇到了小问题，我们再试一次吧！")

    result = await send_verification_code(email, code)
    if not result["success"]:
        raise HTTPException(status_code=500, detail=result["message"])

    logger.info(f"Verification code sent to {email}")
    return {
        "success": True,
        "message": "太棒了！验证码已经飞到你的邮箱里啦！快去看看吧~",
        "data": {"email": email, "expires_in": f"{settings.VERIFICATION_CODE_EXPIRE_MINUTES}分钟"},
    }


@router.post("/verify-code")
async def verify_code(req: VerifyCodeRequest):
    if not req.email.strip() or not req.code.strip():
        raise HTTPException(status_code=400, detail="小朋友，记得要填写邮箱和验证码哦！")

    result = user_service.verify_code(req.email, req.code)
    if not result["success"]:
        raise HTTPException(status_code=400, detail=result["message"])
    return {"success": True, "message": "太棒了！验证码验证成功啦！"}


@router.post("/register", status_code=201)
async def register(req: RegisterRequest, background_tasks: BackgroundTasks):
    if not req.email.strip() or not req.password or not req.verification_code.strip():
        raise HTTPException(status_code=400, detail="小朋友，邮箱、密码和验证码都要填写哦！缺一不可呢~")
    _require_password_length(req.password)

    result = user_service.register_user(req.email.strip(), req.password, req.verification_code)
    if not result["success"]:
        raise HTTPException(status_code=400, detail=result["message"])

    background_tasks.add_task(send_welcome_email, result["user"]["email"])
    return {
        "success": True,
        "message": result["message"],
        "data": {"user": result["user"], "token": result["token"]},
    }


@router.post("/login")
async def login(req: LoginRequest):
    if not req.email.strip() or not req.password:
        raise HTTPException(status_code=400, detail="小朋友，邮箱和密码都要填写哦！")

    result = user_service.login_user(req.email.strip(), req.password)
    if not result["success"]:
        raise HTTPException(status_code=401, detail=result["message"])

    return {
        "success": True,
        "message": "耶！登录成功啦！",
        "data": {"user": result["user"], "token": result["token"]},
    }


@router.get("/me")
async def get_me(user: dict = Depends(get_current_user)):
    return {"success": True, "data": {"user": public_user(user)}}


@router.post("/logout")
async def logout(user: dict = Depends(get_current_user)):
    # stateless tokens, nothing to revoke server-side
    logger.info(f"User logged out: {user['email']}")
    return {"success": True, "message": "再见啦小朋友！期待下次再见哦~"}


@router.get("/stats")
async def stats(user=Depends(get_optional_user)):
    return {
        "success": True,
        "data": {
            "user_stats": user_service.get_user_stats(),
            "email_service": get_service_status(),
            "current_time": utcnow_iso(),
        },
    }


@router.post("/cleanup-codes")
async def cleanup_codes():
    removed = user_service.cleanup_expired_codes()
    return {
        "success": True,
        "message": "系统清理完成啦！环境更干净了呢~",
        "data": {"removed": removed},
    }


@router.post("/forgot-password")
@limiter.limit(verification_limit)
async def forgot_password(request: Request, req: EmailRequest):
    email = _require_valid_email(req.email)

    user = user_service.get_user_by_email(email)
    if user is None:
        logger.info(f"Password reset requested for unknown email {email}")
    else:
        result = await send_password_reset_email(user["email"], create_reset_token(user))
        if not result["success"]:
            logger.error(f"Password reset mail to {email} failed: {result['message']}")

    # same answer for unknown emails
    return {"success": True, "message": "如果这个邮箱注册过，重置密码的链接已经发送啦，快去邮箱看看吧~"}


@router.post("/reset-password")
async def reset_password(req: ResetPasswordRequest):
    if not req.token or not req.new_password:
        raise HTTPException(status_code=400, detail="小朋友，重置链接和新密码都要有哦！")
    _require_password_length(req.new_password)

    claims = decode_token(req.token)
    if not claims or claims.get("purpose") != RESET_PURPOSE:
        raise HTTPException(status_code=400, detail="重置链接无效或已过期，请重新申请一次吧！")

    user = user_service.get_user_by_id(claims["sub"])
    if user is None:
        raise HTTPException(status_code=404, detail="用户不存在")
    if not token_matches_user(claims, user):
        raise HTTPException(status_code=400, detail="这个重置链接已经用过啦，请重新申请一次吧！")

    user_service.update_password(user["id"], req.new_password)
    return {"success": True, "message": "密码重置成功啦！用新密码登录吧~"}
