"""Exceptions raised by the aidgpt pipeline."""

from pathlib import Path
from typing import Optional, Union


class AidError(Exception):
    """Base class for aidgpt errors."""


class PromptValidationError(AidError):
    """The incoming prompt is missing or not text."""
    
    def __init__(self, message: str = "Prompt required"):
        super().__init__(message)


class ContainmentError(AidError):
    """A path resolved outside the configured base directory."""
    
    def __init__(self, code: str, path: Union[str, Path], base: Union[str, Path]):
        self.code = code
        self.path = str(path)
        self.base = str(base)
        super().__init__(f"{path} is outside {base}")


class ActionLimitError(AidError):
    """The extracted action batch exceeds the configured ceiling."""
    
    def __init__(self, count: int, limit: int, raw: Optional[str] = None):
        self.count = count
        self.limit = limit
        self.raw = raw
        super().__init__(f"Too many actions ({count}). Limit {limit}.")


class LLMError(AidError):
    """Talking to the local model failed."""
