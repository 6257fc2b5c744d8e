from pydantic_settings import BaseSettings
from functools import lru_cache
from pathlib import Path
import os

class Settings(BaseSettings):
    APP_NAME: str = "Fleetdeck"
    VERSION: str = "1.0.0"
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATABASE_URL: str = os.getenv("FLEETDECK_DATABASE_URL", "sqlite:///./fleetdeck.db")
    SECRET_KEY: str = "fleetdeck-secret-key-change-me"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Remote execution
    SSH_CONNECT_TIMEOUT: float = 10.0
    REACHABILITY_TIMEOUT: float = 5.0
    COMMAND_TIMEOUT: float = 300.0
    COMPOSE_COMMAND: str = "docker-compose"
    HEALTH_CHECK_COMMAND: str = "echo 'connection test'"
    WORKLOAD_COUNT_COMMAND: str = "docker ps -q | wc -l"

    # Background driver
    SCHEDULER_ENABLED: bool = True
    AUTO_STOP_INTERVAL_SECONDS: int = 60
    HOST_REFRESH_INTERVAL_MINUTES: int = 5

    class Config:
        env_file = ".env"
        env_prefix = "FLEETDECK_"

@lru_cache()
def get_settings():
    return Settings()
