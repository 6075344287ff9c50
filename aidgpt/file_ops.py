"""File operations executed on behalf of the model."""

import errno
import os
import shutil
import subprocess
import time
from pathlib import Path
from typing import Callable, Dict, Optional

import structlog

from .actions import Action, ActionKind, ActionResult, ErrorCode
from .config import AidConfig
from .errors import ContainmentError
from .paths import PathResolver

logger = structlog.get_logger(__name__)

Handler = Callable[[Action, Optional[Path], Optional[Path]], ActionResult]

_PATH_KINDS = {
    ActionKind.LIST,
    ActionKind.READ,
    ActionKind.WRITE,
    ActionKind.APPEND,
    ActionKind.TOUCH,
    ActionKind.DELETE,
    ActionKind.MKDIR,
}


def os_error_code(exc: OSError) -> str:
    """Symbolic errno name for an OSError (``ENOENT``), or ``ERR``."""
    if exc.errno is not None:
        return errno.errorcode.get(exc.errno, "ERR")
    return "ERR"


def atomic_write_text(path: Path, content: str) -> None:
    """Write through a temporary sibling and rename it into place.

    The target is either its previous content or the full new content,
    never a partial write.
    """
    tmp = path.with_name(f"{path.name}.tmp-{os.getpid()}-{int(time.time() * 1000)}")
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            tmp.unlink()
        except OSError:
            pass
        raise


class ActionExecutor:
    """Executes canonical actions inside the configured base directory."""

    def __init__(self, config: AidConfig, resolver: Optional[PathResolver] = None):
        """
        Initialize the executor.

        Args:
            config: Core configuration (base, read ceiling, shell toggle)
            resolver: Path resolver; built from ``config`` when omitted
        """
        self.config = config
        self.resolver = resolver or PathResolver(
            config.base_dir,
            auto_resolve_bare_names=config.auto_resolve_bare_names,
        )
        self._handlers: Dict[ActionKind, Handler] = {
            ActionKind.LIST: self._list,
            ActionKind.READ: self._read,
            ActionKind.WRITE: self._write,
            ActionKind.APPEND: self._append,
            ActionKind.TOUCH: self._touch,
            ActionKind.DELETE: self._delete,
            ActionKind.MKDIR: self._mkdir,
            ActionKind.RENAME: self._move,
            ActionKind.MOVE: self._move,
            ActionKind.SHELL: self._shell,
            ActionKind.NONE: self._none,
        }

    def execute(self, action: Optional[Action]) -> ActionResult:
        """
        Execute a single action. Never raises.

        Returns:
            ActionResult; failures carry an ErrorCode or the OS errno name
        """
        if action is None or not action.kind:
            return ActionResult.fail(ErrorCode.NO_ACTION, "No action specified")

        if action.kind == ActionKind.INVALID:
            return ActionResult.fail(ErrorCode.INVALID_ACTION, "invalid action object")

        try:
            full_path = self.resolver.check(action.path) if action.path else None
            full_dest = (
                self.resolver.check(action.destination, destination=True)
                if action.destination else None
            )
        except ContainmentError as e:
            if e.code == ErrorCode.DEST_OUTSIDE_BASE.value:
                return ActionResult.fail(
                    e.code, "Destination outside allowed base", dest=Path(e.path), base=e.base
                )
            return ActionResult.fail(e.code, "Path outside allowed base", path=Path(e.path), base=e.base)
        except Exception as e:
            logger.error("path_validation_failed", path=action.path, error=str(e))
            return ActionResult.fail(
                ErrorCode.PATH_VALIDATION_FAILED, "Path validation failed", message=str(e)
            )

        handler = self._handlers.get(action.kind)
        if handler is None:
            return ActionResult.fail(ErrorCode.UNKNOWN_ACTION, f"Unknown action: {action.name}")

        if action.kind in _PATH_KINDS and full_path is None:
            return ActionResult.fail(
                ErrorCode.MISSING_PATH, f"path required for {action.kind.value}"
            )

        try:
            result = handler(action, full_path, full_dest)
        except OSError as e:
            logger.error(
                "action_failed",
                action=action.name,
                path=str(full_path) if full_path else None,
                error=str(e),
            )
            return ActionResult.fail(
                os_error_code(e), e.strerror or str(e), path=full_path, dest=full_dest
            )
        except Exception as e:
            logger.error("action_failed", action=action.name, error=str(e))
            return ActionResult.fail("ERR", str(e), path=full_path, dest=full_dest)

        logger.info(
            "action_executed",
            action=action.name,
            path=result.path,
            success=result.success,
            code=result.code,
        )
        return result

    def _list(self, action: Action, path: Path, dest: Optional[Path]) -> ActionResult:
        if not os.path.lexists(path):
            return ActionResult.fail(ErrorCode.NOT_FOUND, "Directory not found", path=path)
        with os.scandir(path) as it:
            entries = [
                {"name": entry.name, "type": "dir" if entry.is_dir() else "file"}
                for entry in it
            ]
        entries.sort(key=lambda e: e["name"])
        return ActionResult.ok(path, entries=entries)

    def _read(self, action: Action, path: Path, dest: Optional[Path]) -> ActionResult:
        try:
            stat = path.stat()
        except FileNotFoundError:
            return ActionResult.fail(ErrorCode.NOT_FOUND, "File not found", path=path)
        if path.is_dir():
            return ActionResult.fail(ErrorCode.IS_DIR, "Path is a directory", path=path)
        if stat.st_size > self.config.read_max_bytes:
            return ActionResult.fail(
                ErrorCode.TOO_LARGE, "File too large", path=path, size=stat.st_size
            )
        content = path.read_text(encoding="utf-8", errors="replace")
        return ActionResult.ok(path, content=content)

    def _write(self, action: Action, path: Path, dest: Optional[Path]) -> ActionResult:
        path.parent.mkdir(parents=True, exist_ok=True)
        content = action.content or ""
        atomic_write_text(path, content)
        return ActionResult.ok(path, size=len(content))

    def _append(self, action: Action, path: Path, dest: Optional[Path]) -> ActionResult:
        path.parent.mkdir(parents=True, exist_ok=True)
        content = action.content or ""
        with path.open("a", encoding="utf-8") as f:
            f.write(content)
        return ActionResult.ok(path, size=len(content))

    def _touch(self, action: Action, path: Path, dest: Optional[Path]) -> ActionResult:
        path.parent.mkdir(parents=True, exist_ok=True)
        if not path.exists():
            path.write_text("", encoding="utf-8")
        else:
            try:
                os.utime(path, None)
            except OSError as e:
                # mtime bump is best-effort
                logger.debug("touch_utime_failed", path=str(path), error=str(e))
        return ActionResult.ok(path)

    def _delete(self, action: Action, path: Path, dest: Optional[Path]) -> ActionResult:
        if not os.path.lexists(path):
            return ActionResult.fail(ErrorCode.NOT_FOUND, "Path not found", path=path)
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return ActionResult.ok(path)

    def _mkdir(self, action: Action, path: Path, dest: Optional[Path]) -> ActionResult:
        path.mkdir(parents=True, exist_ok=True)
        return ActionResult.ok(path)

    def _move(self, action: Action, path: Optional[Path], dest: Optional[Path]) -> ActionResult:
        if path is None or dest is None:
            return ActionResult.fail(
                ErrorCode.MISSING_ARGS, "path and dest required for rename/move"
            )
        dest.parent.mkdir(parents=True, exist_ok=True)
        os.rename(path, dest)
        result = ActionResult.ok(path)
        result.dest = str(dest)
        return result

    def _shell(self, action: Action, path: Optional[Path], dest: Optional[Path]) -> ActionResult:
        if not action.command:
            return ActionResult.fail(ErrorCode.MISSING_COMMAND, "command required for shell")
        if not self.config.allow_shell:
            return ActionResult.fail(
                ErrorCode.SHELL_DISABLED,
                "Shell actions are disabled (set ALLOW_SHELL=true to enable)",
                command=action.command,
            )

        # No containment applies to shell commands.
        logger.warning("shell_action_running", command=action.command, cwd=str(self.resolver.base))
        try:
            proc = subprocess.run(
                action.command,
                shell=True,
                capture_output=True,
                text=True,
                cwd=str(self.resolver.base),
                timeout=self.config.shell_timeout,
            )
        except subprocess.TimeoutExpired:
            return ActionResult.fail(
                "ETIMEDOUT", f"Command timed out after {self.config.shell_timeout}s",
                command=action.command,
            )

        details = {
            "command": action.command,
            "stdout": proc.stdout,
            "stderr": proc.stderr,
            "returncode": proc.returncode,
        }
        if proc.returncode != 0:
            return ActionResult.fail(
                "ERR", f"Command exited with status {proc.returncode}", **details
            )
        return ActionResult(success=True, details=details)

    def _none(self, action: Action, path: Optional[Path], dest: Optional[Path]) -> ActionResult:
        return ActionResult(
            success=True,
            skipped=True,
            details={"reason": action.reason or "no-op"},
        )
