"""Tests for path resolution and base-directory containment."""

from pathlib import Path

import pytest

from aidgpt.errors import ContainmentError
from aidgpt.paths import PathResolver, expand_tilde, looks_like_file


@pytest.mark.parametrize(
    "path,expected",
    [
        ("notes.txt", True),
        ("src/main.py", True),
        (".env", True),
        ("archive.tar.gz", True),
        ("src", False),
        ("archive/", False),
        ("", False),
        (None, False),
    ],
)
def test_looks_like_file(path, expected):
    assert looks_like_file(path) is expected


def test_expand_tilde(home):
    assert expand_tilde("~", home) == str(home)
    assert expand_tilde("~/notes.txt", home) == str(home / "notes.txt")
    assert expand_tilde("~other/x", home) == "~other/x"
    assert expand_tilde("plain", home) == "plain"
    assert expand_tilde(None, home) is None


def test_absolute_path_is_normalized(resolver, base):
    raw = f"{base}/a/../b/./c.txt"
    assert resolver.resolve(raw) == base / "b" / "c.txt"


def test_relative_path_with_separator_joins_base(resolver, base):
    assert resolver.resolve("docs/readme.md") == base / "docs" / "readme.md"


def test_bare_name_uses_desktop_when_present(home, base):
    (home / "Desktop").mkdir()
    resolver = PathResolver(base, home=home, cwd=lambda: base)

    assert resolver.resolve("todo.txt") == home / "Desktop" / "todo.txt"


def test_bare_name_falls_back_to_cwd(home, base, tmp_path):
    cwd = tmp_path / "work"
    cwd.mkdir()
    resolver = PathResolver(base, home=home, cwd=lambda: cwd)

    assert resolver.resolve("todo.txt") == cwd / "todo.txt"


def test_bare_name_falls_back_to_base_when_cwd_missing(home, base, tmp_path):
    resolver = PathResolver(base, home=home, cwd=lambda: tmp_path / "gone")

    assert resolver.resolve("todo.txt") == base / "todo.txt"


def test_strict_policy_joins_bare_names_to_base(home, base):
    (home / "Desktop").mkdir()
    resolver = PathResolver(base, auto_resolve_bare_names=False, home=home)

    assert resolver.resolve("todo.txt") == base / "todo.txt"


def test_preferred_folder_applies_to_files_only(resolver, base):
    preferred = base / "app"

    assert resolver.resolve("main.py", preferred_folder=preferred) == preferred / "main.py"
    assert resolver.resolve("assets", preferred_folder=preferred) == base / "assets"


def test_anchor(resolver, base, home):
    assert resolver.anchor("docs") == base / "docs"
    assert resolver.anchor("~/notes") == home / "notes"
    assert resolver.anchor("/srv/data") == Path("/srv/data")


def test_check_accepts_paths_inside_base(resolver, base):
    assert resolver.check(str(base)) == base
    assert resolver.check("a/b.txt") == base / "a" / "b.txt"


@pytest.mark.parametrize("raw", ["/etc/passwd", "../escape.txt", "a/../../escape.txt"])
def test_check_rejects_paths_outside_base(resolver, raw):
    with pytest.raises(ContainmentError) as exc:
        resolver.check(raw)

    assert exc.value.code == "OUTSIDE_BASE"
    assert exc.value.base == str(resolver.base)


def test_check_destination_code(resolver):
    with pytest.raises(ContainmentError) as exc:
        resolver.check("/tmp/elsewhere.txt", destination=True)

    assert exc.value.code == "DEST_OUTSIDE_BASE"


def test_sibling_with_common_prefix_is_outside(resolver, base):
    with pytest.raises(ContainmentError):
        resolver.check(f"{base}-other/file.txt")


def test_bare_name_on_desktop_outside_base_is_rejected(home, base):
    (home / "Desktop").mkdir()
    resolver = PathResolver(base, home=home, cwd=lambda: base)

    with pytest.raises(ContainmentError):
        resolver.check("todo.txt")


def test_root_base_grants_full_access(home):
    resolver = PathResolver("/", home=home)

    assert resolver.full_access is True
    assert resolver.check("/etc/hostname") == Path("/etc/hostname")
