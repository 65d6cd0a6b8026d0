from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Env(Enum):
    local = "local"
    dev = "dev"
    prod = "prod"


class StoreBackend(Enum):
    http = "http"
    sql = "sql"


class Config(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="COOKBOX_")

    env: Env = Env.local
    store: StoreBackend = StoreBackend.sql
    api_url: str = "https://localhost:8443/api.php"
    api_token: str | None = None
    timeout: float = 30
    db_url: str = "sqlite+aiosqlite:///cookbox.db"
    source_name: str = "My Recipes"
    default_icon: str = "🍽️"
    max_open_imports: int = Field(default=20, ge=1)
    log_level: str = "INFO"
