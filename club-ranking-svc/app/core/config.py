from __future__ import annotations
from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    # DB
    database_url: str = Field(..., alias="DATABASE_URL")

    # Auth (tokens are issued elsewhere; we only verify them)
    auth_jwks_url: str = Field(..., alias="AUTH_JWKS_URL")
    token_issuer: str = Field("authentication-svc", alias="TOKEN_ISSUER")

    # Ranking
    ranking_default_limit: int = Field(50, alias="RANKING_DEFAULT_LIMIT")
    ranking_max_limit: int = Field(500, alias="RANKING_MAX_LIMIT")
    # whole-request budget for loading members + aggregating facts
    ranking_timeout_sec: float = Field(10.0, alias="RANKING_TIMEOUT_SEC")
    # month/year boundaries are computed in this zone
    ranking_timezone: str = Field("UTC", alias="RANKING_TIMEZONE")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_origins: str = Field(
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000",
        alias="CORS_ORIGINS",
    )

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
