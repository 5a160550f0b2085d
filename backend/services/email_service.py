"""
SMTP mail adapter: verification codes, welcome mail, password reset links.
"""

import asyncio
import smtplib
import socket
from email.message import EmailMessage
from email.utils import make_msgid

from loguru import logger

from config import settings

VERIFICATION_SUBJECT = "AI小子 - 邮箱验证码"
WELCOME_SUBJECT = "欢迎使用AI小子！"
RESET_SUBJECT = "AI小子 - 密码重置"

_FOOTER = """
  <div style="text-align: center; margin-top: 30px; color: #6b7280; font-size: 12px;">
    <p>此邮件由AI小子系统自动发送，请勿回复。</p>
  </div>"""


def verification_html(code: str) -> str:
    return f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2 style="color: #2563eb; text-align: center;">AI小子邮箱验证</h2>
  <div style="background: #f3f4f6; padding: 20px; border-radius: 10px; margin: 20px 0;">
    <p style="font-size: 16px; margin-bottom: 10px;">您的验证码是：</p>
    <div style="font-size: 32px; font-weight: bold; color: #2563eb; text-align: center; letter-spacing: 5px; margin: 20px 0;">
      {code}
    </div>
    <p style="color: #6b7280; font-size: 14px; margin-top: 20px;">
      验证码有效期为{settings.VERIFICATION_CODE_EXPIRE_MINUTES}分钟，请及时使用。如果您没有请求此验证码，请忽略此邮件。
    </p>
  </div>{_FOOTER}
</div>"""


def welcome_html(user_name: str = "") -> str:
    greeting = f"亲爱的 {user_name}，" if user_name else "您好！"
    return f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2 style="color: #2563eb; text-align: center;">🎉 欢迎加入AI小子大家庭！</h2>
  <div style="background: #f3f4f6; padding: 20px; border-radius: 10px; margin: 20px 0;">
    <p style="font-size: 16px;">{greeting}</p>
    <p style="font-size: 16px;">感谢您注册AI小子！现在您可以：</p>
    <ul style="font-size: 14px; line-height: 1.6;">
      <li>🤖 与AI小子进行智能对话</li>
      <li>🔍 使用联网搜索功能获取最新信息</li>
      <li>📁 上传文件进行分析和讨论</li>
      <li>🌤️ 查询天气信息</li>
      <li>🎵 享受语音交互功能</li>
    </ul>
  </div>
  <div style="text-align: center; margin-top: 30px;">
    <a href="{settings.FRONTEND_URL}"
       style="background: #2563eb; color: white; padding: 12px 24px; border-radius: 8px; text-decoration: none; display: inline-block;">
      开始使用AI小子
    </a>
  </div>{_FOOTER}
</div>"""


def reset_html(reset_url: str) -> str:
    return f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2 style="color: #2563eb; text-align: center;">🔒 密码重置请求</h2>
  <div style="background: #f3f4f6; padding: 20px; border-radius: 10px; margin: 20px 0;">
    <p style="font-size: 16px;">您请求重置AI小子账户的密码。点击下面的按钮来重置您的密码：</p>
    <div style="text-align: center; margin: 30px 0;">
      <a href="{reset_url}"
         style="background: #2563eb; color: white; padding: 12px 24px; border-radius: 8px; text-decoration: none; display: inline-block;">
        重置密码
      </a>
    </div>
    <p style="color: #6b7280; font-size: 14px;">
      如果您没有请求密码重置，请忽略此邮件。此链接将在{settings.RESET_TOKEN_EXPIRE_HOURS}小时后失效。
    </p>
    <p style="color: #6b7280; font-size: 12px; margin-top: 20px;">
      如果上面的按钮无法点击，请复制以下链接到浏览器：<br/>{reset_url}
    </p>
  </div>{_FOOTER}
</div>"""


def is_configured() -> bool:
    return bool(settings.SMTP_USER and settings.SMTP_PASS)


def get_service_status() -> dict:
    return {
        "initialized": is_configured(),
        "configured": is_configured(),
        "host": settings.SMTP_HOST,
        "from": settings.EMAIL_FROM or settings.SMTP_USER,
    }


def _connect() -> smtplib.SMTP:
    if settings.SMTP_USE_SSL:
        server = smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=15)
    else:
        server = smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=15)
        server.starttls()
    server.login(settings.SMTP_USER, settings.SMTP_PASS)
    return server


def _send_sync(to: str, subject: str, html: str) -> str:
    msg = EmailMessage()
    msg["From"] = settings.EMAIL_FROM or settings.SMTP_USER
    msg["To"] = to
    msg["Subject"] = subject
    msg["Message-ID"] = make_msgid(domain=settings.SMTP_HOST)
    msg.set_content("请使用支持HTML的邮件客户端查看此邮件。")
    msg.add_alternative(html, subtype="html")

    with _connect() as server:
        server.send_message(msg)
    return msg["Message-ID"]


def _error_message(exc: Exception, default: str) -> str:
    if isinstance(exc, smtplib.SMTPAuthenticationError):
        return "邮件服务认证失败，请联系管理员"
    if isinstance(exc, smtplib.SMTPRecipientsRefused):
        codes = {code for code, _ in exc.recipients.values()}
        if 554 in codes:
            return "邮件被拒绝，请检查邮箱地址"
        return "邮箱地址无效或不存在"
    if isinstance(exc, socket.gaierror):
        return "邮件服务器连接失败"
    if isinstance(exc, (smtplib.SMTPConnectError, smtplib.SMTPServerDisconnected, ConnectionError, TimeoutError)):
        return "网络连接失败，请检查网络"
    return default


async def _send(to: str, subject: str, html: str, ok_message: str, fail_message: str) -> dict:
    if not is_configured():
        logger.warning("SMTP not configured, mail not sent")
        return {"success": False, "message": "邮件服务未配置"}

    try:
        message_id = await asyncio.to_thread(_send_sync, to, subject, html)
        logger.info(f"Mail sent [{subject}] -> {to} ({message_id})")
        return {"success": True, "message": ok_message, "message_id": message_id}
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Mail to {to} failed: {e}")
        return {"success": False, "message": _error_message(e, fail_message), "error": str(e)}


async def verify_connection() -> bool:
    if not is_configured():
        return False

    def _check():
        with _connect() as server:
            server.noop()

    try:
        await asyncio.to_thread(_check)
        logger.info("SMTP connection verified")
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"SMTP connection check failed: {e}")
        return False


async def send_verification_code(email: str, code: str) -> dict:
    return await _send(
        email, VERIFICATION_SUBJECT, verification_html(code),
        "验证码已发送到您的邮箱", "邮件发送失败，请稍后重试",
    )


async def send_welcome_email(email: str, user_name: str = "") -> dict:
    return await _send(
        email, WELCOME_SUBJECT, welcome_html(user_name),
        "欢迎邮件发送成功", "欢迎邮件发送失败",
    )


async def send_password_reset_email(email: str, reset_token: str) -> dict:
    reset_url = f"{settings.FRONTEND_URL}/reset-password?token={reset_token}"
    return await _send(
        email, RESET_SUBJECT, reset_html(reset_url),
        "密码重置邮件发送成功", "密码重置邮件发送失败",
    )
