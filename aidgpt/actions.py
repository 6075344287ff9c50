"""Canonical file actions, their results, and the normalizer for model output."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from .paths import expand_tilde, looks_like_file

logger = structlog.get_logger(__name__)


class ActionKind(str, Enum):
    """Closed set of operations the executor understands."""
    LIST = "list"
    READ = "read"
    WRITE = "write"
    APPEND = "append"
    TOUCH = "touch"
    DELETE = "delete"
    MKDIR = "mkdir"
    RENAME = "rename"
    MOVE = "move"
    SHELL = "shell"
    NONE = "none"

    # Not executable: unrecognized name, or not an object at all
    UNKNOWN = "unknown"
    INVALID = "invalid"


class ErrorCode(str, Enum):
    """Failure codes reported in action results."""
    NO_ACTION = "NO_ACTION"
    MISSING_PATH = "MISSING_PATH"
    MISSING_COMMAND = "MISSING_COMMAND"
    MISSING_ARGS = "MISSING_ARGS"
    OUTSIDE_BASE = "OUTSIDE_BASE"
    DEST_OUTSIDE_BASE = "DEST_OUTSIDE_BASE"
    PATH_VALIDATION_FAILED = "PATH_VALIDATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    IS_DIR = "IS_DIR"
    TOO_LARGE = "TOO_LARGE"
    UNKNOWN_ACTION = "UNKNOWN_ACTION"
    INVALID_ACTION = "INVALID_ACTION"
    SHELL_DISABLED = "SHELL_DISABLED"


TOUCH_SYNONYMS = {"touch", "create_file", "createfile"}
MKDIR_SYNONYMS = {"mkdir", "create_folder", "create_dir", "makedir"}
DELETE_SYNONYMS = {
    "rm",
    "rm -rf",
    "rmdir",
    "remove",
    "delete",
    "delete_folder",
    "delete_dir",
    "del",
}

_DEST_KEYS = ("dest", "destination", "to", "new_path")


@dataclass
class Action:
    """A single canonical file-system operation."""
    kind: ActionKind
    path: Optional[str] = None
    content: Optional[str] = None
    destination: Optional[str] = None
    command: Optional[str] = None
    reason: Optional[str] = None
    raw_name: Optional[str] = None

    @property
    def name(self) -> str:
        if self.kind == ActionKind.UNKNOWN and self.raw_name:
            return self.raw_name
        return self.kind.value

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire shape the model produces."""
        data: Dict[str, Any] = {"action": self.name, "path": self.path}
        if self.content is not None:
            data["content"] = self.content
        if self.destination is not None:
            data["dest"] = self.destination
        if self.command is not None:
            data["command"] = self.command
        if self.reason is not None:
            data["reason"] = self.reason
        return data


@dataclass
class ActionResult:
    """Outcome of executing one action."""
    success: bool
    code: Optional[str] = None
    error: Optional[str] = None
    path: Optional[str] = None
    dest: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    skipped: bool = False

    @classmethod
    def ok(cls, path: Optional[Path] = None, **details: Any) -> ActionResult:
        return cls(success=True, path=str(path) if path else None, details=details)

    @classmethod
    def fail(
        cls,
        code: str,
        error: str,
        path: Optional[Path] = None,
        dest: Optional[Path] = None,
        **details: Any,
    ) -> ActionResult:
        return cls(
            success=False,
            code=code.value if isinstance(code, ErrorCode) else code,
            error=error,
            path=str(path) if path else None,
            dest=str(dest) if dest else None,
            details=details,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        if self.success:
            data: Dict[str, Any] = {"ok": True}
            if self.skipped:
                data["skipped"] = True
        else:
            data = {"ok": False, "error": self.error, "code": self.code}
        if self.path is not None:
            data["path"] = self.path
        if self.dest is not None:
            data["dest"] = self.dest
        data.update(self.details)
        return data


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def normalize_action(raw: Any, home: Optional[Path] = None) -> Action:
    """
    Map a loosely-typed action descriptor onto a canonical Action.

    Accepts whatever the model emitted: synonyms for the action name,
    missing names, ``mkdir`` on a filename, ``write`` on a folder name.
    No filesystem access happens here.

    Args:
        raw: Descriptor parsed from model output (normally a dict)
        home: Home directory used to expand ``~`` in the destination

    Returns:
        Canonical Action
    """
    if isinstance(raw, Action):
        return raw

    if not isinstance(raw, dict):
        return Action(kind=ActionKind.INVALID, reason="invalid action object")

    name = raw.get("action", raw.get("type", raw.get("kind")))
    name = _text(name).strip().lower() if name is not None else ""
    path = _text(raw.get("path"))
    content = _text(raw.get("content"))
    command = _text(raw.get("command", raw.get("cmd")))
    reason = _text(raw.get("reason"))
    dest = None
    for key in _DEST_KEYS:
        if raw.get(key) is not None:
            dest = _text(raw[key])
            break

    if not name:
        name = "write" if path and looks_like_file(path) else "none"

    if name in TOUCH_SYNONYMS:
        name = "write"
    elif name in MKDIR_SYNONYMS:
        name = "mkdir"
    elif name in DELETE_SYNONYMS:
        name = "delete"

    if name == "mkdir" and looks_like_file(path):
        name = "write"
        if content is None:
            content = ""

    if name == "write" and path and not looks_like_file(path) and content is None:
        name = "mkdir"

    if name == "write" and content is None:
        content = ""

    dest = expand_tilde(dest, home)

    try:
        kind = ActionKind(name)
    except ValueError:
        logger.debug("unknown_action_name", action=name)
        return Action(
            kind=ActionKind.UNKNOWN,
            path=path,
            content=content,
            destination=dest,
            command=command,
            reason=reason,
            raw_name=name,
        )

    if kind in (ActionKind.UNKNOWN, ActionKind.INVALID):
        return Action(kind=ActionKind.UNKNOWN, path=path, raw_name=name)

    return Action(
        kind=kind,
        path=path,
        content=content,
        destination=dest,
        command=command,
        reason=reason,
    )
