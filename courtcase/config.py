"""
Configuration for Courtcase Service
===================================

Environment variables:
- LOG_LEVEL: Logging level (default: INFO)
- JWT_SECRET_KEY: Secret used to sign access/refresh tokens
- JWT_ACCESS_TOKEN_EXPIRE_MINUTES: Access token lifetime (default: 60)
- JWT_REFRESH_TOKEN_EXPIRE_DAYS: Refresh token lifetime (default: 7)
- CORS_ALLOW_ORIGINS: Comma-separated list of allowed browser origins
- REDIS_URL: Redis for the token blacklist (optional, database fallback)
- CASE_NUMBER_PREFIX: Prefix for generated case numbers (default: CASE)
- DEFAULT_PAGE_SIZE: Rows per page in case lists (default: 10)
- ENFORCE_HTTPS: Redirect plain HTTP requests to HTTPS (default: false)

DATABASE_URL is read directly by db.session so tests can swap it at runtime.
"""

from typing import Optional, List
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables"""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"

    # JWT
    jwt_secret_key: str = "dev-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60
    jwt_refresh_token_expire_days: int = 7

    # CORS
    cors_allow_origins: str = (
        "http://localhost:3000,http://127.0.0.1:3000,"
        "http://localhost:8000,http://127.0.0.1:8000"
    )

    # Token blacklist
    redis_url: Optional[str] = None

    # Cases
    case_number_prefix: str = "CASE"
    default_page_size: int = 10

    # Security headers
    enforce_https: bool = False
    hsts_max_age: int = 31536000  # 1 year

    # Service info
    service_version: str = "1.0.0"

    def parsed_cors_origins(self) -> List[str]:
        """Split CORS_ALLOW_ORIGINS, dropping quotes and trailing slashes"""
        origins: List[str] = []
        for item in self.cors_allow_origins.split(","):
            origin = item.strip().strip('"').strip("'").rstrip("/")
            if origin:
                origins.append(origin)
        return origins

    def validate_security_config(self) -> List[str]:
        """Validate security configuration, return list of warnings"""
        warnings = []

        if self.jwt_secret_key == "dev-secret-key-change-in-production":
            warnings.append("JWT_SECRET_KEY is the development default")

        if "*" in self.parsed_cors_origins():
            warnings.append("CORS_ALLOW_ORIGINS contains '*' (credentials will be rejected by browsers)")

        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
