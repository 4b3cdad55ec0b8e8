from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
from urllib.parse import quote_plus

from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="ahub/.env",
        env_file_encoding="utf-8",
        extra="allow",
    )
    # Application
    APP_NAME: str = "A-hub API"
    PROJECT_NAME: str = "A-hub Portal API"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "simple"  # simple | json
    ALLOWED_ORIGINS: List[str] = Field(default_factory=lambda: ["*"])

    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USERNAME: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DATABASE: str = "ahub"

    # 설정 시 POSTGRES_* 조합 대신 사용 (테스트/로컬 SQLite 등)
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    @property
    def database_url(self) -> str:
        """Construct database URL from individual components"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        # URL encode the password to handle special characters
        encoded_password = quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql+psycopg2://{self.POSTGRES_USERNAME}:{encoded_password}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}"

    # Security (access token 검증용, 발급은 인증 서비스 담당)
    SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"

    # QR Token
    QR_SECRET_KEY: Optional[str] = None
    QR_ALGORITHM: str = "HS256"
    QR_ROTATION_MIN_SECONDS: int = 10
    QR_ROTATION_MAX_SECONDS: int = 300
    DEFAULT_QR_ROTATION_SECONDS: int = 30
    KYOSK_ORDER_EXPIRATION_MINUTES: int = 5
    MEMBER_CARD_QR_TTL_SECONDS: int = 60

    @property
    def qr_secret(self) -> str:
        return self.QR_SECRET_KEY or self.SECRET_KEY

    # Business Rules
    REDEMPTION_MAX_ATTEMPTS: int = 2  # 충돌 시 1회 재시도
    CHECKIN_MAX_ATTEMPTS: int = 2
    MAX_CART_QUANTITY: int = 99
    LEDGER_PAGE_MAX: int = 100


settings = Settings()
