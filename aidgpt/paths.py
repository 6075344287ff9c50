"""Path resolution and containment for file actions."""

import os
from pathlib import Path
from typing import Callable, Optional, Union

import structlog

from .errors import ContainmentError

logger = structlog.get_logger(__name__)

PathLike = Union[str, Path]


def looks_like_file(path: Optional[PathLike]) -> bool:
    """Guess whether a target names a file rather than a folder.

    ``notes.txt`` and dotfiles such as ``.env`` count as files; ``src`` and
    ``archive/`` do not.
    """
    if not path:
        return False
    last = os.path.basename(str(path).rstrip("/\\"))
    if not last:
        return False
    if last.startswith(".") and "." not in last[1:]:
        return True
    return "." in last


def expand_tilde(path: Optional[str], home: Optional[Path] = None) -> Optional[str]:
    """Expand a leading ``~`` or ``~/``; other strings pass through untouched."""
    if not path or not isinstance(path, str):
        return path
    home = home or Path.home()
    if path == "~":
        return str(home)
    if path.startswith("~/"):
        return str(home / path[2:])
    return path


def is_bare_name(path: Optional[str]) -> bool:
    """No directory part and no leading ``~``."""
    if not path:
        return False
    return "/" not in path and os.sep not in path and not path.startswith("~")


def _descends(path: Path, base: Path) -> bool:
    try:
        path.relative_to(base)
    except ValueError:
        return False
    return True


class PathResolver:
    """Resolve model-supplied targets against a containment base.

    Bare names (no separator) are guessed: a filename with a known preferred
    folder lands there, otherwise ``~/Desktop`` when it exists, then the
    current working directory, then the base. The guess depends on which
    directories exist at call time.
    """
    
    def __init__(
        self,
        base: PathLike,
        auto_resolve_bare_names: bool = True,
        home: Optional[PathLike] = None,
        cwd: Optional[Callable[[], Path]] = None,
    ):
        self.home = Path(home) if home else Path.home()
        self.base = Path(os.path.normpath(os.path.abspath(expand_tilde(str(base), self.home))))
        self.auto_resolve_bare_names = auto_resolve_bare_names
        self._cwd = cwd or Path.cwd
        self._real_base = Path(os.path.realpath(self.base))

    @property
    def full_access(self) -> bool:
        return self.base == Path(self.base.anchor)
    
    @property
    def desktop(self) -> Path:
        return self.home / "Desktop"
    
    def default_folder(self) -> Path:
        """Desktop if it exists, else the working directory, else the base."""
        if self.desktop.is_dir():
            return self.desktop
        try:
            cwd = Path(self._cwd())
        except OSError:
            return self.base
        return cwd if cwd.is_dir() else self.base
    
    def resolve(self, raw_path: str, preferred_folder: Optional[PathLike] = None) -> Path:
        """Turn a raw target into a normalized absolute path (no containment check)."""
        expanded = expand_tilde(raw_path.strip(), self.home)
        
        if os.path.isabs(expanded):
            return Path(os.path.normpath(expanded))
        
        if "/" in expanded or os.sep in expanded:
            return Path(os.path.normpath(os.path.join(self.base, expanded)))
        
        if not self.auto_resolve_bare_names:
            return Path(os.path.normpath(os.path.join(self.base, expanded)))
        
        if preferred_folder and looks_like_file(expanded):
            folder = self.resolve(str(preferred_folder))
            return Path(os.path.normpath(os.path.join(folder, expanded)))
        
        return Path(os.path.normpath(os.path.join(self.default_folder(), expanded)))
    
    def anchor(self, folder: str) -> Path:
        """Resolve a folder named in a prompt: ``~`` and absolute as given, else under the base."""
        expanded = expand_tilde(folder.strip(), self.home)
        if os.path.isabs(expanded):
            return Path(os.path.normpath(expanded))
        return Path(os.path.normpath(os.path.join(self.base, expanded)))

    def is_inside_base(self, path: PathLike) -> bool:
        """Inside the base either as written or with symlinks followed.

        A base reached through a symlink (``/tmp`` on macOS, a linked home)
        accepts targets spelled through the link as well as through its target.
        """
        if self.full_access:
            return True
        if _descends(Path(path), self.base):
            return True
        return _descends(Path(os.path.realpath(path)), self._real_base)
    
    def check(
        self,
        raw_path: str,
        preferred_folder: Optional[PathLike] = None,
        destination: bool = False,
    ) -> Path:
        """Resolve a target and enforce containment.

        Raises:
            ContainmentError: with code ``OUTSIDE_BASE`` (or
                ``DEST_OUTSIDE_BASE`` when ``destination`` is set).
        """
        resolved = self.resolve(raw_path, preferred_folder)
        if not self.is_inside_base(resolved):
            code = "DEST_OUTSIDE_BASE" if destination else "OUTSIDE_BASE"
            logger.warning("path_outside_base", path=str(resolved), base=str(self.base), code=code)
            raise ContainmentError(code, resolved, self.base)
        return resolved
