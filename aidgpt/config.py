"""Configuration management for aidgpt."""

import os
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AidConfig(BaseSettings):
    """Core configuration shared by the orchestrator, executor and CLI."""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )
    
    # Filesystem containment
    file_op_base: Path = Field(default_factory=Path.home)
    read_max_bytes: int = 5_000_000
    auto_resolve_bare_names: bool = True
    max_actions: int = 60
    allow_shell: bool = False  # shell actions bypass containment
    shell_timeout: Optional[float] = None
    
    # Local model (Ollama)
    ollama_host: str = "http://localhost:11434"
    ollama_model: str = "llama3.2:latest"
    llm_timeout: Optional[float] = None
    
    # Prompt assembly
    max_attachment_chars: int = 20_000
    reply_fallback_chars: int = 1200
    
    # Operation log (optional)
    oplog_enabled: bool = False
    redis_url: str = "redis://localhost:6379"
    redis_db: int = 0
    oplog_key: str = "aidgpt:oplog"
    oplog_max_entries: int = 1000
    
    # Logging
    log_level: str = "INFO"
    log_json: Optional[bool] = None  # None: JSON only at DEBUG
    
    @property
    def base_dir(self) -> Path:
        """Absolute containment base, with ~ expanded.

        Normalized lexically like target paths; symlinks are not followed.
        """
        return Path(os.path.normpath(os.path.abspath(self.file_op_base.expanduser())))
    
    @property
    def full_access(self) -> bool:
        """True when the base is the filesystem root."""
        base = self.base_dir
        return base == Path(base.anchor)


def get_config() -> AidConfig:
    """Get the configuration instance."""
    return AidConfig()
