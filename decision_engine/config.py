from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # الإعدادات الأساسية
    PROJECT_NAME: str = "Decision Engine"
    VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"

    DEBUG: bool = False
    CORS_ORIGINS: list = ["http://localhost:3000"]

    # التخزين
    STORE_BACKEND: str = "sql"  # sql | memory
    DATABASE_URL: str = "sqlite+aiosqlite:///./decision_engine.db"
    REDIS_URL: Optional[str] = None
    EXPLANATION_CACHE_TTL: int = 0  # 0 = بدون Redis

    # خدمة توليد النصوص
    LLM_API_URL: str = "https://api.openai.com/v1"
    LLM_API_KEY: Optional[str] = None
    LLM_MODEL: str = "gpt-4o-mini"
    TEXT_GENERATION_TIMEOUT: float = 30.0

    # التحكيم والسياسة
    POLICY_CONFIDENCE_THRESHOLD: float = 0.8
    RECOMMENDATION_TIMEOUT_SECONDS: float = 20.0
    REWARD_TYPE: str = "balanced"
    POLICY_LEARNING_RATE: float = 0.1
    POLICY_EXPLORATION_RATE: float = 0.1

    # حدود الأمان
    BOUNDARY_EVALUATION_TIMEOUT_SECONDS: float = 5.0
    VIOLATION_HISTORY_SIZE: int = 100
    BOUNDARIES_SEED_FILE: Optional[str] = None

    # إعادة المحاولة
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY: float = 0.5
    RETRY_MAX_DELAY: float = 8.0

    # السجلات
    LOG_DIR: str = "logs"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "allow"

settings = Settings()
