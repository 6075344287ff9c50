"""Extract file actions from free-form model output."""

from __future__ import annotations

import json
import re
import shlex
from typing import Any, Iterable, List, NamedTuple, Optional, Tuple

import structlog

from .paths import looks_like_file

logger = structlog.get_logger(__name__)

_FENCE_RE = re.compile(r"```(?:json|bash|sh|shell)?", re.IGNORECASE)
_SHELL_LIKE_RE = re.compile(r"mkdir|touch|echo|rm\s+-rf|mv\s+", re.IGNORECASE)

FILE_EXTENSIONS = ("py", "js", "ts", "java", "cpp", "c", "go", "rb", "sh", "txt", "md", "json", "html", "css")
_FILENAME_RE = re.compile(
    r"\b[\w\-.]+\.(?:%s)\b" % "|".join(FILE_EXTENSIONS)
)
_FOLDER_RE = re.compile(
    r"\b(?:in|inside|under|at)\s+(?:the\s+|my\s+)?"
    r"(?:\"([^\"]+)\"|'([^']+)'|`([^`]+)`|([A-Za-z0-9_\-/~.]+))",
    re.IGNORECASE,
)
_FOLDER_STOPWORDS = {
    "a", "an", "the", "my", "it", "this", "that", "these", "those", "there", "here",
    "them", "once", "least", "all", "order", "which", "one", "same",
}


class ParsedActions(NamedTuple):
    """Action descriptors found in a model reply, plus the prose around them."""
    actions: List[Any]
    reply_prefix: str


def strip_fences(text: Optional[str]) -> str:
    """Remove Markdown code fences, keeping their contents."""
    if not text or not isinstance(text, str):
        return ""
    return _FENCE_RE.sub("", text).strip()


def _balanced_end(text: str, start: int, open_ch: str, close_ch: str) -> int:
    """Index just past the bracket closing ``text[start]``, or -1.

    Brackets inside JSON string literals are not counted.
    """
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                return i + 1
    return -1


def _as_action_list(parsed: Any) -> Optional[List[Any]]:
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        return [parsed]
    return None


def _salvage_objects(text: str) -> Tuple[List[Any], List[Tuple[int, int]]]:
    """Parse every balanced ``{...}`` block independently."""
    objects: List[Any] = []
    spans: List[Tuple[int, int]] = []
    i = text.find("{")
    while i != -1:
        end = _balanced_end(text, i, "{", "}")
        if end == -1:
            i = text.find("{", i + 1)
            continue
        try:
            objects.append(json.loads(text[i:end]))
            spans.append((i, end))
            i = text.find("{", end)
        except ValueError:
            i = text.find("{", i + 1)
    return objects, spans


def parse_actions_from_text(text: Optional[str]) -> ParsedActions:
    """
    Pull a JSON action array out of model output.

    Tried in order: the first balanced ``[...]`` span (prose before it becomes
    the reply prefix), the whole text as JSON, then every balanced ``{...}``
    object on its own. Never raises; unparseable input yields no actions.

    Args:
        text: Raw model output

    Returns:
        ParsedActions(actions, reply_prefix)
    """
    cleaned = strip_fences(text)
    if not cleaned:
        return ParsedActions([], "")

    start = cleaned.find("[")
    if start != -1:
        end = _balanced_end(cleaned, start, "[", "]")
        if end != -1:
            try:
                actions = _as_action_list(json.loads(cleaned[start:end]))
            except ValueError:
                actions = None
            if actions is not None:
                return ParsedActions(actions, cleaned[:start].strip())

    try:
        actions = _as_action_list(json.loads(cleaned))
    except ValueError:
        actions = None
    if actions is not None:
        return ParsedActions(actions, "")

    objects, spans = _salvage_objects(cleaned)
    if not spans:
        return ParsedActions([], cleaned)

    remaining = []
    last = 0
    for begin, end in spans:
        remaining.append(cleaned[last:begin])
        last = end
    remaining.append(cleaned[last:])
    logger.debug("salvaged_action_objects", count=len(objects))
    return ParsedActions(objects, "".join(remaining).strip())


def flatten_actions(actions: Iterable[Any]) -> List[Any]:
    """Flatten nested lists of action descriptors."""
    flat: List[Any] = []
    for item in actions or []:
        if isinstance(item, list):
            flat.extend(flatten_actions(item))
        else:
            flat.append(item)
    return flat


def _split_args(args: str) -> List[str]:
    try:
        return shlex.split(args)
    except ValueError:
        return args.split()


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def quick_shell_to_actions(text: Optional[str]) -> List[dict]:
    """
    Translate common shell one-liners into action descriptors without a model call.

    Recognized: ``mkdir [-p]``, ``touch``, ``echo "x" > f``, ``echo "x" >> f``,
    ``rm -rf`` and ``mv src dst``. Other lines are ignored.
    """
    actions: List[dict] = []
    for line in strip_fences(text).splitlines():
        line = line.strip().lstrip("$ ").strip()
        if not line:
            continue

        m = re.match(r"^mkdir\s+(?:-p\s+)?(.+)$", line, re.IGNORECASE)
        if m:
            actions.extend({"action": "mkdir", "path": p} for p in _split_args(m.group(1)))
            continue

        m = re.match(r"^touch\s+(.+)$", line, re.IGNORECASE)
        if m:
            actions.extend(
                {"action": "write", "path": p, "content": ""} for p in _split_args(m.group(1))
            )
            continue

        m = re.match(r"^echo\s+(.*?)\s*>>\s*(\S.*)$", line, re.IGNORECASE)
        if m:
            actions.append({"action": "append", "path": _unquote(m.group(2)), "content": _unquote(m.group(1))})
            continue

        m = re.match(r"^echo\s+(.*?)\s*>\s*(\S.*)$", line, re.IGNORECASE)
        if m:
            actions.append({"action": "write", "path": _unquote(m.group(2)), "content": _unquote(m.group(1))})
            continue

        m = re.match(r"^rm\s+-rf\s+(.+)$", line, re.IGNORECASE)
        if m:
            actions.extend({"action": "delete", "path": p} for p in _split_args(m.group(1)))
            continue

        m = re.match(r"^mv\s+(.+)$", line, re.IGNORECASE)
        if m:
            args = _split_args(m.group(1))
            if len(args) == 2:
                actions.append({"action": "move", "path": args[0], "dest": args[1]})
            continue

    return actions


def looks_shell_like(text: Optional[str]) -> bool:
    """True when the text mentions a command the quick parser knows about."""
    return bool(text) and bool(_SHELL_LIKE_RE.search(text))


def extract_filenames(text: Optional[str]) -> List[str]:
    """Filenames with a recognized extension, in order of first mention."""
    if not text:
        return []
    seen: List[str] = []
    for name in _FILENAME_RE.findall(text):
        if name not in seen:
            seen.append(name)
    return seen


def find_mentioned_folder(text: Optional[str]) -> Optional[str]:
    """Folder named after "in", "inside", "under" or "at", if any."""
    if not text:
        return None
    for m in _FOLDER_RE.finditer(text):
        quoted = m.group(1) or m.group(2) or m.group(3)
        name = (quoted or m.group(4) or "").strip().rstrip(".,;:!?")
        if not name:
            continue
        if not quoted and name.lower() in _FOLDER_STOPWORDS:
            continue
        if looks_like_file(name):
            continue
        return name
    return None
