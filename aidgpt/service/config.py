"""Configuration for the command service."""

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommandServiceConfig(BaseSettings):
    """Configuration for the HTTP command service."""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )
    
    # Service
    service_name: str = "command_service"
    service_port: int = 5000
    host: str = "127.0.0.1"
    
    # Browser UI runs on another origin
    cors_origins: List[str] = ["*"]
