# app/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore")

    JWT_SECRET: str = Field(...)
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "agenda"
    DB_PASSWORD: str = ""
    DB_NAME: str = "agenda"
    # si está seteada pisa DB_* (tests usan sqlite+aiosqlite)
    DATABASE_URL: str | None = None

    DEFAULT_TIMEZONE: str = "America/Sao_Paulo"

    # jobs externos (cron) -> Authorization: Bearer <CRON_SECRET>
    CRON_SECRET: str = Field(...)

    # links públicos de confirmar/cancelar
    LINK_SECRET: str | None = None
    LINK_EXPIRY_HOURS: int = 24
    APP_BASE_URL: str = "http://localhost:5173"

    # notificaciones
    RESEND_API_KEY: str | None = None
    RESEND_API_URL: str = "https://api.resend.com/emails"
    EMAIL_FROM: str = "Agenda <no-reply@agenda.local>"

    # operaciones masivas (mutación de series) -> lock wait más largo
    BULK_LOCK_TIMEOUT_SECONDS: int = 30

    REMINDER_WINDOW_MINUTES: int = 60
    REMINDER_LOOKBACK_MINUTES: int = 90

    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    @property
    def async_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}"
                f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?charset=utf8mb4")

    @property
    def link_secret(self) -> str:
        return self.LINK_SECRET or self.JWT_SECRET


settings = Settings()  # type: ignore[call-arg]
