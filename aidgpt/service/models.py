"""Request and response models for the command service."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AttachedFileModel(BaseModel):
    """A text file attached to the prompt."""
    name: str
    content: str = ""


class CommandRequest(BaseModel):
    """Body of POST /api/ai/command."""
    prompt: Optional[str] = None
    files: List[AttachedFileModel] = Field(default_factory=list)


class ActionResultEntry(BaseModel):
    """One executed action with its outcome."""
    action: Dict[str, Any]
    result: Dict[str, Any]


class CommandResponse(BaseModel):
    """Non-streaming response body."""
    ok: bool = True
    reply: Optional[str] = None
    results: List[ActionResultEntry] = Field(default_factory=list)
    raw: str = ""


class ErrorResponse(BaseModel):
    """Error body."""
    error: str
    raw: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check body."""
    ok: bool
    now: str
