"""
Configuration settings for Messenger Backend
"""

from pydantic_settings import BaseSettings
from typing import List, Literal


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Server Configuration
    APP_NAME: str = "Messenger Backend"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8001
    LOG_LEVEL: str = "INFO"

    # Firebase Configuration
    FIREBASE_CREDENTIALS_PATH: str = "./firebase-credentials.json"
    # Support for raw JSON credentials (env var)
    FIREBASE_CREDENTIALS_JSON: str = ""
    FIREBASE_DATABASE_URL: str = ""
    FIREBASE_STORAGE_BUCKET: str = ""
    FIREBASE_EMULATOR_HOST: str = ""
    DEV_MODE: bool = False

    # Document store backend: "firebase" (Realtime Database) or "memory"
    STORE_BACKEND: Literal["firebase", "memory"] = "firebase"

    # Write retries on transient backend failures (exponential backoff)
    WRITE_RETRY_ATTEMPTS: int = 3
    WRITE_RETRY_BACKOFF_SECONDS: float = 0.5
    # Optimistic read-modify-write attempts before giving up with a conflict
    CONFLICT_RETRY_ATTEMPTS: int = 5

    # Repair lagging conversation summaries when a user lists conversations
    RECONCILE_ON_READ: bool = True

    # Server-Sent Events
    SSE_HEARTBEAT_SECONDS: int = 30

    # CORS Configuration - Allow all localhost ports in development
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:3001,http://localhost:5173"

    @property
    def allowed_origins_list(self) -> List[str]:
        """Convert comma-separated origins to list"""
        origins = [origin.strip()
                   for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]
        # In development, explicitly add common localhost ports
        if self.DEBUG:
            for port in [3000, 3001, 5173, 5000, 4200]:
                for host in ("localhost", "127.0.0.1"):
                    origin = f"http://{host}:{port}"
                    if origin not in origins:
                        origins.append(origin)
        return origins

    model_config = {"env_file": ".env",
                    "case_sensitive": True, "extra": "allow"}


# Global settings instance
settings = Settings()
