from typing import Optional

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # Default to a local sqlite file, override with env var DATABASE_URL
    DATABASE_URL: str = "sqlite:///./crm.db"
    SQL_ECHO: bool = False
    SECRET_KEY: str = "change-me-in-production"

    # JWT
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    APP_TITLE: str = "CRM Backend"
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    FRONTEND_URL: str = "http://localhost:3000"
    BACKEND_URL: str = "http://localhost:8000"

    # Uploads
    UPLOAD_DIR: str = "uploads"
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    # Outbound mail
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM_EMAIL: Optional[str] = None
    SMTP_USE_TLS: bool = True
    MAIL_BRAND: str = "CRM"

    # Password reset
    RESET_CODE_EXPIRE_MINUTES: int = 15

    # Federated login
    GOOGLE_USERINFO_URL: str = "https://www.googleapis.com/oauth2/v3/userinfo"

    # AI assistant (any OpenAI-compatible chat completion endpoint)
    AI_CHAT_URL: str = "https://api.groq.com/openai/v1/chat/completions"
    AI_API_KEY: Optional[str] = None
    AI_MODEL: str = "llama-3.3-70b-versatile"
    AI_SYSTEM_PROMPT: str = (
        "You are a professional CRM assistant. Answer briefly, clearly and politely in English."
    )
    AI_TIMEOUT_SECONDS: float = 30.0

    class Config:
        env_file = ".env"

settings = Settings()
