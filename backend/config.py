"""
Application configuration, read from environment variables and an optional .env file.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── App ──────────────────────────────────────────────
    APP_NAME: str = "AI Xiaozi"
    APP_VERSION: str = "2.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 3002
    CORS_ORIGINS: str = "*"
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # ── Storage ──────────────────────────────────────────
    DATA_DIR: str = "./data"
    UPLOAD_DIR: str = "./uploads"

    # ── Chat model (SiliconFlow, OpenAI-compatible) ──────
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.siliconflow.cn/v1"
    OPENAI_MODEL: str = "Qwen/Qwen2.5-7B-Instruct"
    VISION_MODEL: str = "Qwen/Qwen2.5-VL-72B-Instruct"
    STT_MODEL: str = "FunAudioLLM/SenseVoiceSmall"

    # ── Deep thinking model ──────────────────────────────
    DEEPSEEK_API_KEY: str = ""
    DEEPSEEK_BASE_URL: str = "https://api.siliconflow.cn/v1"
    DEEPSEEK_MODEL: str = "deepseek-ai/DeepSeek-R1"
    DEEPSEEK_MAX_TOKENS: int = 4096

    # ── Reply tuning ─────────────────────────────────────
    AI_MAX_TOKENS: int = 1000
    AI_TEMPERATURE: float = 0.7
    AI_MAX_HISTORY_MESSAGES: int = 20
    AI_MAX_RETRIES: int = 3
    AI_RETRY_DELAY: float = 1.0
    MAX_IMAGES_PER_MESSAGE: int = 4

    # ── Web search (Bocha) ───────────────────────────────
    SEARCH_API_KEY: str = ""
    SEARCH_BASE_URL: str = "https://api.bochaai.com/v1"
    SEARCH_ENABLED: bool = False
    SEARCH_TIMEOUT: float = 10.0

    # ── Weather ──────────────────────────────────────────
    WEATHER_DEFAULT_CITY: str = "北京"
    WEATHER_CACHE_TTL: int = 600

    # ── Auth ─────────────────────────────────────────────
    JWT_SECRET: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_DAYS: int = 7
    RESET_TOKEN_EXPIRE_HOURS: int = 24
    VERIFICATION_CODE_EXPIRE_MINUTES: int = 10
    PASSWORD_MIN_LENGTH: int = 6

    # ── SMTP ─────────────────────────────────────────────
    SMTP_HOST: str = "smtp.qq.com"
    SMTP_PORT: int = 587
    SMTP_USE_SSL: bool = False
    SMTP_USER: str = ""
    SMTP_PASS: str = ""
    EMAIL_FROM: str = ""
    FRONTEND_URL: str = "http://localhost:3002"

    # ── Uploads ──────────────────────────────────────────
    MAX_UPLOAD_MB: int = 100
    MAX_VOICE_MB: int = 25

    # ── Rate Limiting ────────────────────────────────────
    RATE_LIMIT_PER_MINUTE: int = 60
    RATE_LIMIT_ENABLED: bool = True
    VERIFICATION_RATE_LIMIT: str = "5/minute"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()


def is_configured_key(key: str) -> bool:
    """Return True only if the key looks like a real credential, not a placeholder."""
    if not key:
        return False
    lowered = key.lower()
    if "your" in lowered or "change-me" in lowered:
        return False
    return len(key.strip()) >= 10
