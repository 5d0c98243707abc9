from pydantic_settings import BaseSettings
from typing import List, Optional, Union
from pydantic import field_validator
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # API Settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "LifeVault Auth API"

    # Database Settings
    POSTGRES_USER: str = "user"
    POSTGRES_PASSWORD: str = "password"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "lifevault_db"

    # Full URL override (e.g. sqlite for local development)
    DATABASE_URL_OVERRIDE: Optional[str] = None

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Redis Settings (rate limiting and Celery broker)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    @property
    def REDIS_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # JWT Settings
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    LOGIN_FLOW_EXPIRE_MINUTES: int = 15
    VAULT_UNLOCK_EXPIRE_MINUTES: int = 30

    # Password / PIN hashing
    BCRYPT_ROUNDS: int = 12

    # Verification codes
    VERIFICATION_CODE_LENGTH: int = 6
    VERIFICATION_CODE_EXPIRATION_MINUTES: int = 10
    MAX_VERIFICATION_ATTEMPTS: int = 5
    VERIFICATION_RESEND_COOLDOWN_SECONDS: int = 60
    VERIFICATION_CODE_PEPPER: str = "change-me"

    # Device trust
    TRUSTED_DEVICE_LIMIT: int = 10

    # Push login
    PUSH_LOGIN_TIMEOUT_SECONDS: int = 120
    PUSH_GATEWAY_URL: str = "https://exp.host/--/api/v2/push/send"
    PUSH_GATEWAY_TIMEOUT_SECONDS: float = 4.0
    DISABLE_PUSH: bool = False

    # Vault PIN
    MAX_PIN_ATTEMPTS: int = 5
    PIN_LOCKOUT_MINUTES: int = 15

    # Secret vault (tokenized TOTP secrets)
    SECRET_VAULT_URL: str = "http://localhost:8200"
    SECRET_VAULT_API_KEY: str = ""
    SECRET_VAULT_TIMEOUT_SECONDS: float = 5.0
    TOTP_REVEAL_SCOPE: str = "totp:reveal"

    # AWS SES Settings (verification emails)
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_SES_FROM_EMAIL: str = "no-reply@lifevault.app"
    AWS_SES_FROM_NAME: str = "LifeVault"

    # Logging
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = True

    # CORS Settings - can be set as JSON string in .env
    BACKEND_CORS_ORIGINS: Union[List[str], str] = ["http://localhost:3000", "http://localhost:8000"]

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Union[List[str], str]) -> List[str]:
        """Parse CORS origins from JSON string or list"""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                # If not valid JSON, split by comma
                return [origin.strip() for origin in v.split(",")]
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
