from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./dev.db"
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 8000
    APP_ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    FRONTEND_ORIGINS: List[str] = ["http://localhost:3000"]
    RESET_DB: bool = False

    # payment mirror: "memory" keeps products/prices in-process, "stripe" talks to Stripe
    PAYMENT_MIRROR_BACKEND: str = "memory"
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_CURRENCY: str = "usd"

    # admin bearer tokens
    AUTH_SECRET_KEY: str = "change-this-secret"
    AUTH_ALGORITHM: str = "HS256"
    AUTH_AUDIENCE: Optional[str] = None
    AUTH_ISSUER: Optional[str] = None
    AUTH_ROLES_CLAIM: str = "https://statuary/roles"
    ADMIN_ROLE: str = "admin"

    # identity provider management API (role lookup when the token carries no roles)
    AUTH0_DOMAIN: Optional[str] = None
    AUTH0_MANAGEMENT_CLIENT_ID: Optional[str] = None
    AUTH0_MANAGEMENT_CLIENT_SECRET: Optional[str] = None
    MANAGEMENT_TOKEN_LEEWAY_SECONDS: int = 60

    # 0 disables the periodic mirror drift report
    RECONCILE_INTERVAL_SECONDS: int = 0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

settings = Settings()
