"""
aidgpt - Local AI file assistant

Turns natural-language prompts into file-system actions carried out inside a
configured base directory, with the model's reply streamed back as it arrives.
"""

__version__ = "0.1.0"
__author__ = "aidgpt Team"

# Core components
from .config import AidConfig, get_config
from .errors import (
    AidError,
    ActionLimitError,
    ContainmentError,
    LLMError,
    PromptValidationError,
)

# Actions and execution
from .actions import (
    Action,
    ActionKind,
    ActionResult,
    ErrorCode,
    normalize_action,
)
from .paths import PathResolver
from .file_ops import ActionExecutor
from .action_parser import parse_actions_from_text, quick_shell_to_actions

# Pipeline
from .llm_client import OllamaClient
from .orchestrator import CommandOrchestrator, CommandOutcome, StreamEvent
from .oplog import NullOperationLog, OperationLog, RedisOperationLog

__all__ = [
    "AidConfig",
    "get_config",
    "AidError",
    "ActionLimitError",
    "ContainmentError",
    "LLMError",
    "PromptValidationError",
    "Action",
    "ActionKind",
    "ActionResult",
    "ErrorCode",
    "normalize_action",
    "PathResolver",
    "ActionExecutor",
    "parse_actions_from_text",
    "quick_shell_to_actions",
    "OllamaClient",
    "CommandOrchestrator",
    "CommandOutcome",
    "StreamEvent",
    "NullOperationLog",
    "OperationLog",
    "RedisOperationLog",
]
