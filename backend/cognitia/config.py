import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    jwt_secret: str = os.getenv("COGNITIA_JWT_SECRET", os.getenv("JWT_SECRET", "change-me-in-production"))
    jwt_algorithm: str = os.getenv("COGNITIA_JWT_ALGORITHM", "HS256")
    jwt_exp_minutes: int = int(os.getenv("COGNITIA_JWT_EXP_MINUTES", "60"))
    seed_admin_email: str = os.getenv("COGNITIA_SEED_ADMIN_EMAIL", "admin@cognitia.local")
    seed_password: str = os.getenv("COGNITIA_SEED_PASSWORD", "ChangeMe@123")
    groq_api_key: str = os.getenv("GROQ_API_KEY", "")
    ai_model: str = os.getenv("COGNITIA_AI_MODEL", "llama-3.1-8b-instant")
    ai_temperature: float = float(os.getenv("COGNITIA_AI_TEMPERATURE", "0.7"))
    default_quiz_minutes: int = int(os.getenv("COGNITIA_DEFAULT_QUIZ_MINUTES", "15"))
    tick_seconds: float = float(os.getenv("COGNITIA_TICK_SECONDS", "1.0"))
    reference_text_limit: int = int(os.getenv("COGNITIA_REFERENCE_TEXT_LIMIT", "5000"))


settings = Settings()
