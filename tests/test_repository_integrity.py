"""Repository-level integrity checks."""

from __future__ import annotations

import importlib
import pkgutil
import re
from pathlib import Path

import mediamirror

CONFLICT_PATTERN = re.compile(r"^(<<<<<<<|=======|>>>>>>>)", re.MULTILINE)
IGNORED_PARTS = {".git", "__pycache__", ".mypy_cache", ".pytest_cache", ".venv"}


def test_repository_has_no_merge_conflict_markers() -> None:
    """Ensure no files in the repo still contain git conflict markers."""

    repo_root = Path(__file__).resolve().parents[1]
    offending_files: list[Path] = []

    for path in repo_root.rglob("*"):
        if not path.is_file():
            continue
        if any(part in IGNORED_PARTS for part in path.parts):
            continue

        contents = path.read_text(encoding="utf-8", errors="ignore")
        if CONFLICT_PATTERN.search(contents):
            offending_files.append(path.relative_to(repo_root))

    assert not offending_files, (
        "The following files still contain git conflict markers: "
        + ", ".join(str(path) for path in offending_files)
    )


def test_every_module_imports() -> None:
    """Each mirror module should import cleanly on its own."""

    names = [
        module.name
        for module in pkgutil.walk_packages(mediamirror.__path__, "mediamirror.")
    ]

    assert "mediamirror.services.item_sync" in names
    for name in names:
        importlib.import_module(name)


def test_lazy_package_exports_resolve() -> None:
    for name in mediamirror.__all__:
        assert getattr(mediamirror, name) is not None
