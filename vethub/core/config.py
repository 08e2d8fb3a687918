# vethub/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore")

    APP_NAME: str = "VetHub API"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    JWT_SECRET: str = Field(...)
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    DB_HOST: str
    DB_PORT: int
    DB_USER: str
    DB_PASSWORD: str
    DB_NAME: str
    # si viene seteada pisa la URL armada con DB_* (p.ej. sqlite en tests)
    DATABASE_URL: str | None = None

    CLOUDINARY_CLOUD_NAME: str
    CLOUDINARY_API_KEY: str
    CLOUDINARY_API_SECRET: str

    CHAT_MAX_UPLOAD_MB: int = 50
    MEDIA_FOLDER_CHATS: str = "vethub/chats"

    # --- turnos ---
    LOCAL_TIMEZONE: str = "Africa/Tunis"
    APPOINTMENT_CREATE_WINDOW_MINUTES: int = 29
    APPOINTMENT_UPDATE_WINDOW_MINUTES: int = 20
    APPOINTMENTS_PAGE_SIZE: int = 10
    ALLOW_ANY_VETERINARIAN_FALLBACK: bool = False
    CHECK_CONFLICTS_ON_ACCEPT: bool = False

    # --- chat ---
    CONVERSATIONS_PAGE_SIZE: int = 10
    MESSAGES_PAGE_SIZE: int = 20
    TEXT_MESSAGE_MAX_LENGTH: int = 2000

    # --- recordatorios ---
    REMINDERS_ENABLED: bool = True
    REMINDER_INTERVAL_SECONDS: int = 3600
    REMINDER_LEAD_HOURS: int = 24
    REMINDER_WINDOW_HOURS: int = 1

    @property
    def async_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}"
                f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?charset=utf8mb4")


settings = Settings()  # type: ignore[call-arg]
