import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Database settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")
    db_busy_timeout: float = float(os.getenv("DB_BUSY_TIMEOUT", "30"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Lending API")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")
    environment: str = os.getenv("ENVIRONMENT", "development")


settings = Settings()
