"""Tests for adaptive_tests.scanner."""

from __future__ import annotations

from hashlib import sha256
from pathlib import Path

import pytest

from adaptive_tests.concurrency import CancellationToken
from adaptive_tests.errors import DiscoveryCancelled
from adaptive_tests.scanner import (
    build_ignore_rule,
    file_stem,
    fingerprint_file,
    iter_source_files,
    load_ignore_rules,
    relative_posix,
    should_ignore,
)
from tests._fixtures.repo_builder import RepoBuilder


def _relative(root: Path, paths) -> list:
    return [relative_posix(path, root) for path in paths]


def test_walk_is_sorted_and_honours_skip_directories(repo_builder: RepoBuilder) -> None:
    repo_builder.write(
        {
            "src/b.py": "",
            "src/a.py": "",
            "node_modules/lib/index.js": "",
            "docs/.DS_Store": "",
            "main.py": "",
        }
    )
    root = repo_builder.path()

    files = _relative(root, iter_source_files(root, skip_directories=["node_modules"]))

    assert files == ["main.py", "src/a.py", "src/b.py"]


def test_gitignore_and_exclude_paths_are_combined(repo_builder: RepoBuilder) -> None:
    repo_builder.write(
        {
            ".gitignore": "# generated\nbuild/\n*.log\n!keep.log\n/local.py\n",
            "build/out.py": "",
            "src/app.py": "",
            "src/local.py": "",
            "local.py": "",
            "debug.log": "",
            "keep.log": "",
            "generated/models.py": "",
        }
    )
    root = repo_builder.path()
    rules = load_ignore_rules(root, ["generated/"])

    files = _relative(root, iter_source_files(root, rules=rules))

    assert files == [".gitignore", "keep.log", "src/app.py", "src/local.py"]


def test_max_depth_limits_descent(repo_builder: RepoBuilder) -> None:
    repo_builder.write({"top.py": "", "a/one.py": "", "a/b/two.py": "", "a/b/c/three.py": ""})
    root = repo_builder.path()

    files = _relative(root, iter_source_files(root, max_depth=2))

    assert files == ["top.py", "a/one.py", "a/b/two.py"]


def test_cancelled_token_stops_the_walk(repo_builder: RepoBuilder) -> None:
    repo_builder.write({"src/app.py": ""})
    token = CancellationToken()
    token.cancel()

    with pytest.raises(DiscoveryCancelled):
        list(iter_source_files(repo_builder.path(), cancel=token))


def test_ignore_rules_match_directory_only_and_anchored_patterns() -> None:
    directory_rule = build_ignore_rule("cache/")
    anchored_rule = build_ignore_rule("/dist")

    assert directory_rule is not None and anchored_rule is not None
    assert directory_rule.matches("pkg/cache", True)
    assert not directory_rule.matches("pkg/cache", False)
    assert anchored_rule.matches("dist", True)
    assert not anchored_rule.matches("pkg/dist", True)
    assert build_ignore_rule("   ") is None
    assert should_ignore("debug.log", False, [build_ignore_rule("*.log"), build_ignore_rule("debug.log", negate=True)]) is False


def test_fingerprint_hashes_content(tmp_path: Path) -> None:
    path = tmp_path / "module.py"
    path.write_bytes(b"VALUE = 1\n")

    fingerprint = fingerprint_file(path)

    assert fingerprint.hash == sha256(b"VALUE = 1\n").hexdigest()
    assert fingerprint.size == len(b"VALUE = 1\n")
    assert fingerprint.matches(fingerprint_file(path, b"VALUE = 1\n"))


def test_file_stem_treats_declaration_files_as_one_extension() -> None:
    assert file_stem(Path("types/shapes.d.ts")) == "shapes"
    assert file_stem(Path("src/calculator.py")) == "calculator"
