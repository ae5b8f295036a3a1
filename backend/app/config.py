"""Application configuration from environment variables."""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All config comes from env vars or .env file."""

    UPLOAD_DIR: str = "./uploads"
    UPLOAD_FIELD_NAME: str = "image"
    MAX_UPLOAD_SIZE_BYTES: int = 10 * 1024 * 1024
    MAX_FILES: int = 1
    MAX_FIELD_SIZE_BYTES: int = 1024 * 1024
    ALLOWED_MIME_TYPES: str = "image/jpeg,image/png,image/gif,image/webp,image/bmp"
    ALLOWED_EXTENSIONS: str = "jpg,jpeg,png,gif,webp,bmp"

    # Front-end assets, served at "/" only when the directory exists
    STATIC_DIR: str = "./public"

    API_PORT: int = 3000
    CORS_ORIGINS: str = "*"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


def split_csv(value: str) -> list[str]:
    """Split a comma separated setting, dropping blanks."""
    return [item.strip() for item in value.split(",") if item.strip()]


settings = Settings()
