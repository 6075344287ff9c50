"""Prompt-to-filesystem pipeline: model reply, action extraction, execution."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Tuple

import structlog

from .action_parser import (
    extract_filenames,
    find_mentioned_folder,
    flatten_actions,
    looks_shell_like,
    parse_actions_from_text,
    quick_shell_to_actions,
    strip_fences,
)
from .actions import Action, ActionKind, ActionResult, normalize_action
from .config import AidConfig
from .errors import ActionLimitError, LLMError, PromptValidationError
from .file_ops import ActionExecutor
from .llm_client import OllamaClient
from .oplog import NullOperationLog, OperationLog
from .paths import is_bare_name, looks_like_file

logger = structlog.get_logger(__name__)


REPLY_SYSTEM_PROMPT = """You are a professional local file system assistant.
Reply to the user in concise natural language: say what you are going to do with their files and folders.
Do NOT output JSON, code fences or shell commands; the file operations are carried out separately."""

ACTIONS_SYSTEM_PROMPT = """You are a professional local file system assistant.
Return ONLY a JSON array describing the file operations needed for the user's request, nothing else.
Example:
[
  {"action":"mkdir","path":"~/Desktop/MyApp"},
  {"action":"write","path":"~/Desktop/MyApp/main.py","content":"print('hi')"}
]
Allowed actions: list, read, write, append, delete, mkdir, rename, move, none.
Use "dest" for the target of rename and move.
Paths may be absolute or relative; "~" is allowed.
If no file operation is needed or the request is unclear, return [{"action":"none","reason":"unclear request"}].
Do NOT include shell commands."""

CONVERT_SYSTEM_PROMPT = """You are a converter. Given the following instructions, return ONLY a JSON array of actions:
- Map mkdir -> {"action":"mkdir","path":...}
- Map touch -> {"action":"write","path":...,"content":""}
- Map echo "X" > f -> {"action":"write","path":"f","content":"X"}
- Map echo "X" >> f -> {"action":"append","path":"f","content":"X"}
- Map rm -rf p -> {"action":"delete","path":"p"}
- Map mv a b -> {"action":"move","path":"a","dest":"b"}
Return only JSON. If unsure return [{"action":"none","reason":"unclear request"}]."""


class PipelineState(str, Enum):
    """Lifecycle of a single prompt."""
    RECEIVED = "received"
    MODEL_REPLY_STREAMING = "model_reply_streaming"
    ACTIONS_EXTRACTED = "actions_extracted"
    ACTIONS_EXECUTING = "actions_executing"
    COMPLETE = "complete"
    ERRORED = "errored"


TERMINAL_STATES = {PipelineState.COMPLETE, PipelineState.ERRORED}

_CREATING_KINDS = {ActionKind.WRITE, ActionKind.APPEND, ActionKind.TOUCH}


@dataclass
class AttachedFile:
    """A text file sent along with the prompt."""
    name: str
    content: str


@dataclass
class PromptSession:
    """Everything known about one prompt while it is being processed."""
    prompt: Any
    files: List[AttachedFile] = field(default_factory=list)
    state: PipelineState = PipelineState.RECEIVED
    reply: str = ""
    raw: str = ""
    pairs: List[Tuple[Action, ActionResult]] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)

    def transition(self, state: PipelineState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Session already {self.state.value}")
        logger.debug("pipeline_transition", from_state=self.state.value, to_state=state.value)
        self.state = state


@dataclass
class CommandOutcome:
    """Final result of a prompt."""
    ok: bool
    reply: Optional[str]
    results: List[Dict[str, Any]]
    raw: str

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "reply": self.reply, "results": self.results, "raw": self.raw}


@dataclass
class StreamEvent:
    """One frame of the streamed response."""
    type: str
    data: Any

    @classmethod
    def delta(cls, text: str) -> StreamEvent:
        return cls(type="delta", data=text)

    @classmethod
    def complete(cls, data: Dict[str, Any]) -> StreamEvent:
        return cls(type="complete", data=data)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "data": self.data}


def _coerce_files(files: Optional[Iterable[Any]]) -> List[AttachedFile]:
    out: List[AttachedFile] = []
    for f in files or []:
        if isinstance(f, AttachedFile):
            out.append(f)
        elif isinstance(f, dict):
            out.append(AttachedFile(name=str(f.get("name", "")), content=str(f.get("content") or "")))
        else:
            out.append(AttachedFile(name=str(getattr(f, "name", "")), content=str(getattr(f, "content", "") or "")))
    return out


class CommandOrchestrator:
    """Turns a prompt into a streamed reply plus executed file actions."""

    def __init__(
        self,
        config: AidConfig,
        llm: Optional[OllamaClient] = None,
        executor: Optional[ActionExecutor] = None,
        oplog: Optional[OperationLog] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Core configuration
            llm: Chat model client; anything with ``chat`` and ``chat_stream``
            executor: Action executor; built from ``config`` when omitted
            oplog: Optional sink for executed actions
        """
        self.config = config
        self.llm = llm or OllamaClient(config)
        self.executor = executor or ActionExecutor(config)
        self.resolver = self.executor.resolver
        self.oplog = oplog or NullOperationLog()

    async def run(
        self,
        prompt: Any,
        files: Optional[Iterable[Any]] = None,
        on_delta: Optional[Callable[[str], None]] = None,
    ) -> CommandOutcome:
        """
        Process a prompt end to end.

        Raises:
            PromptValidationError: empty or non-text prompt
            ActionLimitError: more actions than ``config.max_actions``
            LLMError: the model could not be reached
        """
        session = PromptSession(prompt=prompt, files=_coerce_files(files))
        self._validate(session)
        try:
            async for delta in self._reply_deltas(session):
                if on_delta:
                    on_delta(delta)
            return await self._finish(session)
        except LLMError as e:
            self._fail(session, e)
            raise

    async def stream(
        self,
        prompt: Any,
        files: Optional[Iterable[Any]] = None,
    ) -> AsyncIterator[StreamEvent]:
        """Process a prompt, yielding reply deltas then one ``complete`` event."""
        session = PromptSession(prompt=prompt, files=_coerce_files(files))
        try:
            self._validate(session)
            async for delta in self._reply_deltas(session):
                yield StreamEvent.delta(delta)
            outcome = await self._finish(session)
        except PromptValidationError as e:
            yield StreamEvent.complete({"error": str(e)})
            return
        except ActionLimitError as e:
            yield StreamEvent.complete({"error": str(e), "raw": e.raw})
            return
        except LLMError as e:
            self._fail(session, e)
            yield StreamEvent.complete({"error": str(e), "raw": session.raw or None})
            return
        yield StreamEvent.complete(outcome.to_dict())

    def _fail(self, session: PromptSession, error: Exception) -> None:
        if session.state not in TERMINAL_STATES:
            session.transition(PipelineState.ERRORED)
        logger.error("pipeline_failed", error=str(error), state=session.state.value)

    def _validate(self, session: PromptSession) -> None:
        if not isinstance(session.prompt, str) or not session.prompt.strip():
            session.transition(PipelineState.ERRORED)
            logger.warning("prompt_rejected")
            raise PromptValidationError("Prompt required")
        logger.info("prompt_received", length=len(session.prompt), files=len(session.files))

    def build_user_message(self, prompt: str, files: List[AttachedFile]) -> str:
        """Prompt text with attached files appended."""
        parts = [prompt]
        limit = self.config.max_attachment_chars
        for f in files:
            content = f.content
            if len(content) > limit:
                content = content[:limit] + "\n... [truncated]"
            parts.append(f"Attached file: {f.name}\n```\n{content}\n```")
        return "\n\n".join(parts)

    async def _reply_deltas(self, session: PromptSession) -> AsyncIterator[str]:
        session.transition(PipelineState.MODEL_REPLY_STREAMING)
        messages = [
            {"role": "system", "content": REPLY_SYSTEM_PROMPT},
            {"role": "user", "content": self.build_user_message(session.prompt, session.files)},
        ]
        async for delta in self.llm.chat_stream(messages):
            session.reply += delta
            yield delta

    async def _finish(self, session: PromptSession) -> CommandOutcome:
        messages = [
            {"role": "system", "content": ACTIONS_SYSTEM_PROMPT},
            {"role": "user", "content": self.build_user_message(session.prompt, session.files)},
        ]
        session.raw = await self.llm.chat(messages)
        logger.debug("actions_raw", raw=session.raw[:1000])

        raw_actions, reply_prefix = await self.extract_actions(session.raw)
        session.transition(PipelineState.ACTIONS_EXTRACTED)

        actions = [
            normalize_action(a, home=self.resolver.home) for a in flatten_actions(raw_actions)
        ]
        actions = self.place_bare_files(session.prompt, actions)
        actions.extend(self.infer_file_actions(session.prompt, actions))

        limit = self.config.max_actions
        if len(actions) > limit:
            session.transition(PipelineState.ERRORED)
            logger.warning("too_many_actions", count=len(actions), limit=limit)
            raise ActionLimitError(len(actions), limit, raw=session.raw)

        session.transition(PipelineState.ACTIONS_EXECUTING)
        session.pairs = await self.execute_actions(actions)
        self._record(session)

        reply = session.reply.strip() or reply_prefix.strip()
        if not actions and not reply:
            reply = strip_fences(session.raw)[: self.config.reply_fallback_chars]

        session.transition(PipelineState.COMPLETE)
        logger.info(
            "prompt_completed",
            actions=len(session.pairs),
            failed=sum(1 for _, r in session.pairs if not r.success),
            duration=time.time() - session.started_at,
        )
        return CommandOutcome(
            ok=True,
            reply=reply or None,
            results=[{"action": a.to_dict(), "result": r.to_dict()} for a, r in session.pairs],
            raw=session.raw,
        )

    async def extract_actions(self, raw: str) -> Tuple[List[Any], str]:
        """
        Find actions in model output, trying each fallback in turn.

        JSON parsing first, then the local shell recognizer, then (only when
        the text still looks like shell) a model call that converts it to
        JSON. Stops at the first stage that yields anything.
        """
        actions, reply_prefix = parse_actions_from_text(raw)
        if actions:
            return actions, reply_prefix

        quick = quick_shell_to_actions(raw)
        if quick:
            logger.info("quick_shell_actions", count=len(quick))
            return quick, reply_prefix

        if looks_shell_like(raw):
            try:
                converted = await self.llm.chat([
                    {"role": "system", "content": CONVERT_SYSTEM_PROMPT},
                    {"role": "user", "content": raw},
                ])
            except LLMError as e:
                logger.warning("conversion_fallback_failed", error=str(e))
                return [], reply_prefix
            parsed = parse_actions_from_text(converted)
            if parsed.actions:
                logger.info("converted_actions", count=len(parsed.actions))
                return parsed.actions, reply_prefix

        return [], reply_prefix

    def preferred_folder(self, prompt: str, actions: List[Action]) -> Optional[Path]:
        """The last ``mkdir`` target, else a folder named in the prompt ("in docs")."""
        mkdir_targets = [a.path for a in actions if a.kind == ActionKind.MKDIR and a.path]
        if mkdir_targets:
            return self.resolver.resolve(mkdir_targets[-1])
        mentioned = find_mentioned_folder(prompt)
        if mentioned:
            return self.resolver.anchor(mentioned)
        return None

    def place_bare_files(self, prompt: str, actions: List[Action]) -> List[Action]:
        """
        Route bare filenames of creating actions into the preferred folder.

        "create a folder demo and a file hello.py inside it" often comes back
        as ``mkdir demo`` plus ``write hello.py``; the write belongs in ``demo``.
        """
        preferred = self.preferred_folder(prompt, actions)
        if preferred is None:
            return list(actions)

        placed: List[Action] = []
        for action in actions:
            if (
                action.kind in _CREATING_KINDS
                and is_bare_name(action.path)
                and looks_like_file(action.path)
            ):
                path = self.resolver.resolve(action.path, preferred_folder=preferred)
                logger.debug("bare_file_placed", filename=action.path, path=str(path))
                action = replace(action, path=str(path))
            placed.append(action)
        return placed

    def infer_file_actions(self, prompt: str, actions: List[Action]) -> List[Action]:
        """
        Empty ``write`` actions for filenames the prompt mentions but no action creates.

        The file goes into the preferred folder, else the bare-name default
        (Desktop or cwd).
        """
        filenames = extract_filenames(prompt)
        if not filenames:
            return []

        preferred = self.preferred_folder(prompt, actions)

        inferred: List[Action] = []
        for fname in filenames:
            covered = any(
                a.kind in (ActionKind.WRITE, ActionKind.APPEND)
                and a.path
                and a.path.endswith(fname)
                for a in actions
            )
            if covered:
                continue
            path = self.resolver.resolve(fname, preferred_folder=preferred)
            logger.info("inferred_file_action", filename=fname, path=str(path))
            inferred.append(Action(kind=ActionKind.WRITE, path=str(path), content=""))
        return inferred

    async def execute_actions(self, actions: List[Action]) -> List[Tuple[Action, ActionResult]]:
        """
        Run directory creations concurrently, then everything else in order.

        Returns:
            (action, result) pairs: mkdirs first, then the rest, each in input order
        """
        mkdirs = [a for a in actions if a.kind == ActionKind.MKDIR]
        others = [a for a in actions if a.kind != ActionKind.MKDIR]

        pairs: List[Tuple[Action, ActionResult]] = []
        if mkdirs:
            results = await asyncio.gather(
                *(asyncio.to_thread(self.executor.execute, a) for a in mkdirs)
            )
            pairs.extend(zip(mkdirs, results))

        for action in others:
            result = await asyncio.to_thread(self.executor.execute, action)
            pairs.append((action, result))
        return pairs

    def _record(self, session: PromptSession) -> None:
        now = time.time()
        for action, result in session.pairs:
            try:
                self.oplog.record(session.prompt, action, result, now)
            except Exception as e:
                logger.warning("oplog_record_failed", error=str(e))
