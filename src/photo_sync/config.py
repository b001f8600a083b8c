from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="PHOTO_SYNC_", extra="ignore")

    APP_NAME: str = "photo-sync"
    VERSION: str = "0.1.0"
    ENV: str = "dev"
    # SQLite file holding the upload queue, the run checkpoint and the photo cache.
    DB_PATH: Path = Path(".photo_sync") / "sync.db"
    API_BASE_URL: str = "http://127.0.0.1:5000"
    API_TOKEN: str = ""
    HTTP_TIMEOUT_SECONDS: Optional[float] = 60.0
    LIBRARY_ROOT: Path = Path("photos")

    # Sync settings
    BATCH_SIZE: int = 6
    MAX_RETRIES: int = 3
    BACKOFF_BASE_SECONDS: float = 2.0
    MAX_PHOTOS_TO_SYNC: int = 1000

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"


settings = Settings()
