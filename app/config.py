from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List, Optional

class Settings(BaseSettings):
    # Basic environment settings
    ENVIRONMENT: str = Field("development")
    HOST: str = Field("0.0.0.0")
    PORT: int = Field(8000)
    PUBLIC_BASE_URL: str = Field("http://localhost:8000")

    # CORS settings: Allowed origins should be provided as a comma-separated list in the env var.
    ALLOWED_ORIGINS: str = Field("*")

    # Logging configuration
    LOG_LEVEL: str = Field("INFO")
    LOG_FILE_PATH: Optional[str] = Field(None)

    # Authentication
    JWT_SECRET: str = Field("change-me")

    # Inference providers
    REPLICATE_API_TOKEN: Optional[str] = Field(None)
    OPENAI_API_KEY: Optional[str] = Field(None)
    INLINE_MODEL: str = Field("gpt-4o-mini")
    DETECTION_MODEL: str = Field(
        "schananas/grounded_sam:ee871c19efb1941f55f66a3d7d960428c8a5afcb77449547fe8e5a3ab9ebc21c"
    )
    DESCRIPTION_MODEL: str = Field(
        "yorickvp/llava-13b:80537f9eead1a5bfa72d5ac6ea6414379be41d4d4f6679fd776e9535d1eb58bb"
    )
    INLINE_MAX_TOKENS: int = Field(512)
    INLINE_TIMEOUT: int = Field(30)

    # Job record lifetimes (seconds)
    PROCESSING_TTL: int = Field(10 * 60)
    COMPLETED_TTL: int = Field(60 * 60 - 1)

    # Webhook verification
    WEBHOOK_SECRET_TTL: int = Field(24 * 60 * 60)
    WEBHOOK_TOLERANCE: int = Field(5 * 60)

    # Storage backends
    KV_BACKEND: str = Field("memory")
    REDIS_URL: str = Field("redis://localhost:6379/0")
    KV_MAX_ENTRIES: int = Field(10_000)
    STORAGE_DIR: str = Field("data/images")
    RESPONSE_CACHE_TTL: int = Field(60 * 60)

    # Credits and uploads
    DETECTION_COST: int = Field(1)
    STARTING_CREDITS: int = Field(0)
    MAX_UPLOAD_BYTES: int = Field(2 * 1024 * 1024)
    MAX_UPLOAD_FILES: int = Field(4)

    @property
    def allowed_origins(self) -> List[str]:
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @field_validator("KV_BACKEND")
    def check_kv_backend(cls, v):
        if v not in ("memory", "redis"):
            raise ValueError("KV_BACKEND must be 'memory' or 'redis'")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

# Create a single instance of the settings that can be imported anywhere in the project.
settings = Settings()
