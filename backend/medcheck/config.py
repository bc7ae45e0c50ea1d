from typing import Literal, Optional
from pydantic_settings import BaseSettings
from pydantic import Field
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # Database (optional: without it everything lives in process memory)
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")
    storage_fallback: bool = Field(default=True, env="STORAGE_FALLBACK")

    # Sessions
    session_secret: str = Field(default="medicine-ai-secret", env="SESSION_SECRET")
    session_ttl_seconds: int = Field(default=86400, env="SESSION_TTL_SECONDS")
    session_check_period_seconds: int = Field(default=3600, env="SESSION_CHECK_PERIOD_SECONDS")
    session_cookie_name: str = Field(default="medcheck_session", env="SESSION_COOKIE_NAME")
    session_cookie_secure: bool = Field(default=False, env="SESSION_COOKIE_SECURE")

    # Password hashing cost (bcrypt log2 rounds)
    bcrypt_rounds: int = Field(default=12, ge=4, le=31, env="BCRYPT_ROUNDS")

    # Clinical analyzer
    clinical_analyzer: Literal["mock", "bedrock"] = Field(default="mock", env="CLINICAL_ANALYZER")

    # AWS Bedrock
    aws_access_key_id: str = Field(default="", env="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: str = Field(default="", env="AWS_SECRET_ACCESS_KEY")
    aws_region: str = Field(default="us-east-1", env="AWS_REGION")
    aws_bedrock_model_id: str = Field(
        default="us.anthropic.claude-sonnet-4-5-20250929-v1:0",
        env="AWS_BEDROCK_MODEL_ID",
    )
    llm_timeout_seconds: float = Field(default=60.0, gt=0, env="LLM_TIMEOUT_SECONDS")
    llm_max_retries: int = Field(default=0, ge=0, le=1, env="LLM_MAX_RETRIES")

    # Demo data
    seed_demo_data: bool = Field(default=True, env="SEED_DEMO_DATA")
    demo_patient_count: int = Field(default=50, ge=0, env="DEMO_PATIENT_COUNT")

    log_level: str = Field(default="INFO", env="LOG_LEVEL")

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
