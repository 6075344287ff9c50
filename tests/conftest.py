"""Shared fixtures: an isolated home, base directory and fake model."""

import json
from pathlib import Path
from typing import List, Optional

import pytest
import structlog

from aidgpt.config import AidConfig
from aidgpt.file_ops import ActionExecutor
from aidgpt.orchestrator import CONVERT_SYSTEM_PROMPT, CommandOrchestrator
from aidgpt.paths import PathResolver


class FakeModel:
    """Stands in for OllamaClient: scripted reply stream and action output."""

    def __init__(
        self,
        reply: str = "",
        actions="[]",
        convert: str = "[]",
        error: Optional[Exception] = None,
    ):
        self.reply = reply
        self.actions = actions if isinstance(actions, str) else json.dumps(actions)
        self.convert = convert
        self.error = error
        self.calls: List[tuple] = []

    async def chat_stream(self, messages):
        self.calls.append(("stream", messages))
        if self.error:
            raise self.error
        for i in range(0, len(self.reply), 4):
            yield self.reply[i:i + 4]

    async def chat(self, messages):
        self.calls.append(("chat", messages))
        if self.error:
            raise self.error
        if messages[0]["content"] == CONVERT_SYSTEM_PROMPT:
            return self.convert
        return self.actions

    @property
    def converted(self) -> bool:
        return any(
            kind == "chat" and messages[0]["content"] == CONVERT_SYSTEM_PROMPT
            for kind, messages in self.calls
        )


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo logging configuration done by the CLI or the service lifespan."""
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def home(tmp_path) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def base(tmp_path) -> Path:
    path = tmp_path / "base"
    path.mkdir()
    return path


@pytest.fixture
def config(base) -> AidConfig:
    return AidConfig(file_op_base=base, oplog_enabled=False, allow_shell=False)


@pytest.fixture
def resolver(config, home, base) -> PathResolver:
    """Resolver whose home has no Desktop and whose cwd is the base."""
    return PathResolver(config.base_dir, home=home, cwd=lambda: base)


@pytest.fixture
def executor(config, resolver) -> ActionExecutor:
    return ActionExecutor(config, resolver=resolver)


@pytest.fixture
def make_orchestrator(config, executor):
    """Build an orchestrator around a FakeModel; returns (orchestrator, model)."""

    def _make(oplog=None, **model_kwargs):
        model = FakeModel(**model_kwargs)
        return CommandOrchestrator(config, llm=model, executor=executor, oplog=oplog), model

    return _make


@pytest.fixture
def fake_model_cls():
    return FakeModel
