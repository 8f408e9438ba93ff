"""
Configuration for the prebuilt component service.

Values come from environment variables with the PREBUILT_ prefix or a local .env file.
"""
from functools import lru_cache
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="PREBUILT_", env_file=".env", extra="ignore")

    app_name: str = "Prebuilt Components API"
    debug: bool = False
    log_level: str = "INFO"

    # Storage: "file" schreibt JSON nach storage_dir, "memory" nur für Tests/Demos
    storage_backend: Literal["file", "memory"] = "file"
    storage_dir: str = "./data"
    storage_namespace: str = "prebuilt-components-storage"

    cors_allow_origins: List[str] = ["*"]

    # tiefere Bäume lehnt die HTTP-Schicht mit 413 ab (JSON-Parser und Validierung sind rekursiv)
    max_instance_depth: int = 100


@lru_cache()
def get_settings() -> Settings:
    return Settings()
