"""Tests for the prompt pipeline."""

from unittest.mock import MagicMock

import pytest

from aidgpt.actions import Action, ActionKind
from aidgpt.config import AidConfig
from aidgpt.errors import ActionLimitError, LLMError, PromptValidationError
from aidgpt.file_ops import ActionExecutor
from aidgpt.orchestrator import (
    AttachedFile,
    CommandOrchestrator,
    PipelineState,
    PromptSession,
)
from aidgpt.paths import PathResolver


@pytest.mark.asyncio
async def test_creates_folder_and_file(make_orchestrator, base):
    orchestrator, _ = make_orchestrator(
        reply="Creating demo with hello.py.",
        actions=[
            {"action": "mkdir", "path": "demo"},
            {"action": "write", "path": "demo/hello.py", "content": "print('hi')"},
        ],
    )

    outcome = await orchestrator.run("Create folder demo and a file demo/hello.py that prints hi")

    assert outcome.ok
    assert outcome.reply == "Creating demo with hello.py."
    assert (base / "demo").is_dir()
    assert (base / "demo" / "hello.py").read_text() == "print('hi')"
    assert [r["action"]["action"] for r in outcome.results] == ["mkdir", "write"]
    assert all(r["result"]["ok"] for r in outcome.results)


@pytest.mark.asyncio
async def test_stream_emits_deltas_then_complete(make_orchestrator):
    orchestrator, _ = make_orchestrator(
        reply="Making a folder for you.",
        actions=[{"action": "mkdir", "path": "things"}],
    )

    events = [e async for e in orchestrator.stream("make a folder called things")]

    assert [e.type for e in events[:-1]] == ["delta"] * (len(events) - 1)
    assert "".join(e.data for e in events[:-1]) == "Making a folder for you."
    final = events[-1]
    assert final.type == "complete"
    assert final.data["ok"] is True
    assert final.data["results"][0]["result"]["ok"] is True


@pytest.mark.asyncio
@pytest.mark.parametrize("prompt", ["", "   ", None, 42])
async def test_invalid_prompt(make_orchestrator, prompt):
    orchestrator, model = make_orchestrator()

    with pytest.raises(PromptValidationError, match="Prompt required"):
        await orchestrator.run(prompt)

    events = [e async for e in orchestrator.stream(prompt)]
    assert [e.to_dict() for e in events] == [{"type": "complete", "data": {"error": "Prompt required"}}]
    assert model.calls == []


@pytest.mark.asyncio
async def test_action_limit_rejects_whole_batch(make_orchestrator, base):
    orchestrator, _ = make_orchestrator(
        actions=[{"action": "mkdir", "path": f"dirs/d{i}"} for i in range(61)],
    )

    with pytest.raises(ActionLimitError) as exc:
        await orchestrator.run("make lots of folders")

    assert str(exc.value) == "Too many actions (61). Limit 60."
    assert exc.value.raw
    assert not (base / "dirs").exists()


@pytest.mark.asyncio
async def test_action_limit_allows_exactly_the_limit(make_orchestrator, base):
    orchestrator, _ = make_orchestrator(
        actions=[{"action": "mkdir", "path": f"dirs/d{i}"} for i in range(60)],
    )

    outcome = await orchestrator.run("make lots of folders")

    assert len(outcome.results) == 60
    assert len(list((base / "dirs").iterdir())) == 60


@pytest.mark.asyncio
async def test_stream_reports_action_limit(make_orchestrator):
    orchestrator, _ = make_orchestrator(
        actions=[{"action": "none"} for _ in range(61)],
    )

    events = [e async for e in orchestrator.stream("do nothing many times")]

    assert events[-1].data["error"] == "Too many actions (61). Limit 60."
    assert "raw" in events[-1].data


@pytest.mark.asyncio
async def test_mkdirs_run_before_other_actions(make_orchestrator, base):
    orchestrator, _ = make_orchestrator(
        actions=[
            {"action": "write", "path": "pkg/a.txt", "content": "one"},
            {"action": "mkdir", "path": "pkg"},
            {"action": "append", "path": "pkg/a.txt", "content": "two"},
            {"action": "mkdir", "path": "other"},
        ],
    )

    outcome = await orchestrator.run("set up pkg")

    assert [(r["action"]["action"], r["action"]["path"]) for r in outcome.results] == [
        ("mkdir", "pkg"),
        ("mkdir", "other"),
        ("write", "pkg/a.txt"),
        ("append", "pkg/a.txt"),
    ]
    assert (base / "pkg" / "a.txt").read_text() == "onetwo"


@pytest.mark.asyncio
async def test_failed_action_does_not_stop_batch(make_orchestrator, base, tmp_path):
    orchestrator, _ = make_orchestrator(
        actions=[
            {"action": "write", "path": str(tmp_path / "outside.txt"), "content": "x"},
            {"action": "read", "path": "missing/file.txt"},
            {"action": "write", "path": "kept/ok.txt", "content": "fine"},
        ],
    )

    outcome = await orchestrator.run("do three things")

    codes = [r["result"].get("code") for r in outcome.results]
    assert codes == ["OUTSIDE_BASE", "NOT_FOUND", None]
    assert outcome.ok
    assert (base / "kept" / "ok.txt").read_text() == "fine"
    assert not (tmp_path / "outside.txt").exists()


@pytest.mark.asyncio
async def test_quick_shell_fallback(make_orchestrator, base):
    orchestrator, model = make_orchestrator(actions="mkdir -p proj\ntouch proj/main.py")

    outcome = await orchestrator.run("set up proj with main.py")

    assert (base / "proj" / "main.py").exists()
    assert len(outcome.results) == 2
    assert not model.converted


@pytest.mark.asyncio
async def test_model_conversion_fallback(make_orchestrator, base):
    orchestrator, model = make_orchestrator(
        actions="You should run: mkdir stuff",
        convert='[{"action":"mkdir","path":"stuff"}]',
    )

    outcome = await orchestrator.run("make a folder named stuff")

    assert model.converted
    assert (base / "stuff").is_dir()
    assert outcome.results[0]["action"] == {"action": "mkdir", "path": "stuff"}


@pytest.mark.asyncio
async def test_conversion_failure_is_not_fatal(make_orchestrator):
    orchestrator, model = make_orchestrator(actions="You should run: mkdir stuff")

    async def broken_chat(messages):
        if "converter" in messages[0]["content"]:
            raise LLMError("down")
        return "You should run: mkdir stuff"

    model.chat = broken_chat
    outcome = await orchestrator.run("make a folder named stuff")

    assert outcome.ok
    assert outcome.results == []


@pytest.mark.asyncio
async def test_prose_only_reply_falls_back_to_raw(make_orchestrator):
    orchestrator, _ = make_orchestrator(reply="", actions="I am not sure what you would like me to do.")

    outcome = await orchestrator.run("hmm")

    assert outcome.results == []
    assert outcome.reply == "I am not sure what you would like me to do."


@pytest.mark.asyncio
async def test_empty_output_falls_back_to_truncated_raw(make_orchestrator, config):
    config.reply_fallback_chars = 1
    orchestrator, _ = make_orchestrator(reply="", actions="```json\n[]\n```")

    outcome = await orchestrator.run("hmm")

    assert outcome.results == []
    assert outcome.reply == "["


@pytest.mark.asyncio
async def test_reply_prefix_used_when_stream_is_empty(make_orchestrator):
    orchestrator, _ = make_orchestrator(reply="", actions='Here you go:\n[{"action":"none"}]')

    outcome = await orchestrator.run("nothing really")

    assert outcome.reply == "Here you go:"
    assert outcome.results[0]["result"] == {"ok": True, "skipped": True, "reason": "no-op"}


@pytest.mark.asyncio
async def test_infers_file_into_mentioned_folder(make_orchestrator, base):
    orchestrator, _ = make_orchestrator(actions="[]")

    outcome = await orchestrator.run("make notes.txt in docs")

    assert (base / "docs" / "notes.txt").read_text() == ""
    assert outcome.results[0]["action"]["path"] == str(base / "docs" / "notes.txt")


@pytest.mark.asyncio
async def test_infers_file_into_last_mkdir(make_orchestrator, base):
    orchestrator, _ = make_orchestrator(actions=[{"action": "mkdir", "path": "app"}])

    await orchestrator.run("create app with main.py")

    assert (base / "app" / "main.py").exists()


@pytest.mark.asyncio
async def test_no_inference_when_file_is_covered(make_orchestrator):
    orchestrator, _ = make_orchestrator(
        actions=[{"action": "write", "path": "src/main.py", "content": "x = 1"}],
    )

    outcome = await orchestrator.run("write main.py")

    assert len(outcome.results) == 1


@pytest.mark.asyncio
async def test_normalizes_model_output(make_orchestrator, base):
    orchestrator, _ = make_orchestrator(
        actions=[
            {"action": "create_folder", "path": "n"},
            {"action": "mkdir", "path": "n/readme.txt"},
            "not an object",
            {"action": "frobnicate", "path": "n"},
        ],
    )

    outcome = await orchestrator.run("tidy up n")

    results = [(r["action"]["action"], r["result"].get("code")) for r in outcome.results]
    assert results == [
        ("mkdir", None),
        ("write", None),
        ("invalid", "INVALID_ACTION"),
        ("frobnicate", "UNKNOWN_ACTION"),
    ]
    assert (base / "n" / "readme.txt").exists()


@pytest.mark.asyncio
async def test_model_failure(make_orchestrator):
    orchestrator, _ = make_orchestrator(error=LLMError("Model request failed: refused"))

    with pytest.raises(LLMError):
        await orchestrator.run("make a folder")

    events = [e async for e in orchestrator.stream("make a folder")]
    assert events[-1].type == "complete"
    assert "refused" in events[-1].data["error"]


@pytest.mark.asyncio
async def test_records_operations(make_orchestrator):
    oplog = MagicMock()
    orchestrator, _ = make_orchestrator(oplog=oplog, actions=[{"action": "mkdir", "path": "x"}])

    await orchestrator.run("make x")

    prompt, action, result, _ = oplog.record.call_args.args
    assert prompt == "make x"
    assert action.path == "x"
    assert result.success


@pytest.mark.asyncio
async def test_oplog_failure_is_not_fatal(make_orchestrator):
    oplog = MagicMock()
    oplog.record.side_effect = ConnectionError("redis down")
    orchestrator, _ = make_orchestrator(oplog=oplog, actions=[{"action": "mkdir", "path": "x"}])

    outcome = await orchestrator.run("make x")

    assert outcome.ok


def test_user_message_includes_truncated_attachments(make_orchestrator, config):
    config.max_attachment_chars = 5
    orchestrator, _ = make_orchestrator()

    message = orchestrator.build_user_message(
        "summarize", [AttachedFile(name="a.txt", content="0123456789")]
    )

    assert message.startswith("summarize\n\nAttached file: a.txt\n```\n01234")
    assert "[truncated]" in message


@pytest.mark.asyncio
async def test_attachments_reach_the_model(make_orchestrator):
    orchestrator, model = make_orchestrator()

    await orchestrator.run("look at this", files=[{"name": "b.md", "content": "# Title"}])

    user_messages = [messages[1]["content"] for _, messages in model.calls]
    assert all("Attached file: b.md" in m and "# Title" in m for m in user_messages)


def test_session_cannot_leave_terminal_state():
    session = PromptSession(prompt="x")
    session.transition(PipelineState.COMPLETE)

    with pytest.raises(RuntimeError):
        session.transition(PipelineState.ACTIONS_EXECUTING)


DEMO_PROMPT = "create a folder called demo and a file hello.py inside it that prints hi"


@pytest.mark.asyncio
async def test_bare_file_lands_in_created_folder(make_orchestrator, base):
    orchestrator, _ = make_orchestrator(
        actions=[
            {"action": "mkdir", "path": "demo"},
            {"action": "write", "path": "hello.py", "content": "print('hi')"},
        ],
    )

    outcome = await orchestrator.run(DEMO_PROMPT)

    assert outcome.ok
    assert all(r["result"]["ok"] for r in outcome.results), outcome.results
    assert (base / "demo" / "hello.py").read_text() == "print('hi')"
    assert not (base / "hello.py").exists()
    assert len(outcome.results) == 2


@pytest.mark.asyncio
async def test_missing_file_is_inferred_into_created_folder(make_orchestrator, base):
    orchestrator, _ = make_orchestrator(actions=[{"action": "mkdir", "path": "demo"}])

    outcome = await orchestrator.run(DEMO_PROMPT)

    assert all(r["result"]["ok"] for r in outcome.results), outcome.results
    assert (base / "demo" / "hello.py").is_file()
    assert outcome.results[-1]["action"]["path"] == str(base / "demo" / "hello.py")


@pytest.mark.asyncio
async def test_demo_prompt_under_symlinked_base(tmp_path, home, fake_model_cls):
    real = tmp_path / "real"
    real.mkdir()
    link = tmp_path / "link"
    link.symlink_to(real, target_is_directory=True)
    config = AidConfig(file_op_base=link, oplog_enabled=False, _env_file=None)
    resolver = PathResolver(config.base_dir, home=home, cwd=lambda: link)
    executor = ActionExecutor(config, resolver=resolver)
    model = fake_model_cls(actions=[
        {"action": "mkdir", "path": "demo"},
        {"action": "write", "path": "hello.py", "content": "print('hi')"},
    ])
    orchestrator = CommandOrchestrator(config, llm=model, executor=executor)

    outcome = await orchestrator.run(DEMO_PROMPT)

    assert [r["result"]["ok"] for r in outcome.results] == [True, True], outcome.results
    assert (real / "demo" / "hello.py").is_file()


def test_place_bare_files_leaves_other_paths_alone(make_orchestrator, base):
    orchestrator, _ = make_orchestrator()
    actions = [
        Action(kind=ActionKind.MKDIR, path="demo"),
        Action(kind=ActionKind.WRITE, path="src/app.py"),
        Action(kind=ActionKind.READ, path="notes.txt"),
        Action(kind=ActionKind.TOUCH, path="README"),
        Action(kind=ActionKind.APPEND, path="log.txt", content="x"),
    ]

    placed = orchestrator.place_bare_files("set up demo", actions)

    assert [a.path for a in placed] == [
        "demo",
        "src/app.py",
        "notes.txt",
        "README",
        str(base / "demo" / "log.txt"),
    ]
    assert placed[-1].content == "x"


def test_place_bare_files_without_folder_hint(make_orchestrator):
    orchestrator, _ = make_orchestrator()
    actions = [Action(kind=ActionKind.WRITE, path="todo.txt")]

    assert orchestrator.place_bare_files("write a todo list", actions) == actions
