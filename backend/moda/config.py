# moda/config.py
from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    """Application configuration using Pydantic settings"""

    # App Info
    APP_NAME: str = "MODA Drawings Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True

    # Logging
    LOG_DIR: str = "./logs"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./moda_drawings.db"

    # File Upload
    UPLOAD_DIR: str = "./uploads"
    MAX_UPLOAD_SIZE: int = 250 * 1024 * 1024  # 250 MB
    ALLOWED_EXTENSIONS: List[str] = [".pdf", ".dwg", ".dxf", ".png", ".jpg", ".jpeg", ".xlsx", ".zip"]

    # CORS
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",  # Vite default
    ]

    # Remote storage: "sharepoint" or "local"
    STORAGE_BACKEND: str = "sharepoint"
    SHAREPOINT_TENANT_ID: Optional[str] = None
    SHAREPOINT_CLIENT_ID: Optional[str] = None
    SHAREPOINT_CLIENT_SECRET: Optional[str] = None
    SHAREPOINT_SITE_ID: Optional[str] = None
    SHAREPOINT_TIMEOUT: float = 120.0
    SHAREPOINT_SIMPLE_UPLOAD_LIMIT: int = 4 * 1024 * 1024  # larger files use an upload session
    SHAREPOINT_CHUNK_SIZE: int = 10 * 1024 * 1024  # must be a multiple of 320 KiB

    # Drawing folders
    DRAWINGS_ROOT_FOLDER: str = "MODA Drawings"
    MODULE_PACKAGES_DISCIPLINE: str = "Module Packages"

    # Upload queue: seconds a finished task stays visible
    COMPLETED_TASK_TTL: float = 3.0
    FAILED_TASK_TTL: float = 10.0

    class Config:
        env_file = ".env"
        case_sensitive = True

# Singleton instance
settings = Settings()
