"""
Application configuration settings
"""

from pydantic_settings import BaseSettings
from pydantic import Field, computed_field
from functools import lru_cache
from typing import List, Optional
from urllib.parse import quote_plus


class Settings(BaseSettings):
    # Database Configuration (Individual Parameters)
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "auction_marketplace"
    db_user: str = "postgres"
    db_password: str = ""
    db_driver: str = "postgresql"
    # Full URL, e.g. "sqlite:///./auctions.db"; takes precedence over the db_* parts
    database_url_override: Optional[str] = None

    @computed_field
    @property
    def database_url(self) -> str:
        """Compile database URL from individual parameters"""
        if self.database_url_override:
            return self.database_url_override

        # For Cloud SQL Unix sockets, don't include the socket path in the URL
        # It will be passed via connect_args in database.py
        encoded_user = quote_plus(self.db_user)
        encoded_password = quote_plus(self.db_password)

        if self.db_host.startswith('/cloudsql/'):
            return f"{self.db_driver}://{encoded_user}:{encoded_password}@/{self.db_name}"
        return f"{self.db_driver}://{encoded_user}:{encoded_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Security (secret key required from environment)
    secret_key: str = Field(min_length=32)
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    # Application
    app_name: str = "Auction Marketplace"
    debug: bool = False

    # CORS - comma-separated origins
    allowed_origins: str = "*"

    # Auction lifecycle
    auction_check_interval_seconds: int = 60
    expiration_sweeper_enabled: bool = True

    # Realtime chat
    typing_timeout_seconds: float = 3.0
    auction_chat_max_length: int = 500
    sale_chat_max_length: int = 1000
    # Recently closed auction rooms remembered in memory; older ones are checked against the database
    closed_room_cache_size: int = 1024

    # Logging Configuration
    log_level: str = "INFO"
    log_format: str = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
    log_to_file: bool = False
    log_file_path: str = "logs/marketplace.log"
    log_max_size_mb: int = 10
    log_backup_count: int = 5
    log_to_console: bool = True
    log_verbosity: str = "minimal"  # "minimal" or "full" - minimal only logs errors and important calls

    def get_allowed_origins(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return [origin.strip() for origin in self.allowed_origins.split(',') if origin.strip()]

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()
