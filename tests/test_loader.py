"""Tests for adaptive_tests.loader."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest

from adaptive_tests.errors import LoadError
from adaptive_tests.loader import ModuleLoader, module_name_for, package_root
from tests._fixtures.repo_builder import RepoBuilder


@pytest.fixture
def loader() -> Iterator[ModuleLoader]:
    instance = ModuleLoader()
    yield instance
    instance.clear()


def _load(loader: ModuleLoader, path: Path):
    return loader.load(path, path.read_bytes())


def test_standalone_files_get_synthetic_names(repo_builder: RepoBuilder, loader: ModuleLoader) -> None:
    repo_builder.write(
        {
            "src/calculator.py": """
            class Calculator:
                def add(self, a, b):
                    return a + b
            """
        }
    )
    path = repo_builder.path("src/calculator.py")

    module = _load(loader, path)

    assert module.__name__.startswith("adaptive_tests_loaded_calculator_")
    assert module.Calculator().add(2, 3) == 5
    assert sys.modules[module.__name__] is module
    assert str(path.resolve().parent) in sys.path


def test_same_content_is_executed_once(repo_builder: RepoBuilder, loader: ModuleLoader) -> None:
    repo_builder.write({"counter.py": "CALLS = []\nCALLS.append(1)\n"})
    path = repo_builder.path("counter.py")

    first = _load(loader, path)
    second = _load(loader, path)

    assert first is second
    assert first.CALLS == [1]
    assert loader.load_count == 1


def test_executes_the_bytes_it_was_given(repo_builder: RepoBuilder, loader: ModuleLoader) -> None:
    repo_builder.write({"checked.py": "raise RuntimeError('rewritten after the check')\n"})
    path = repo_builder.path("checked.py")

    module = loader.load(path, b"STATE = 'checked'\n")

    assert module.STATE == "checked"
    assert module.__file__ == str(path.resolve())
    assert module.__spec__.loader.get_source(module.__name__) == "STATE = 'checked'\n"


def test_changed_content_is_reloaded(repo_builder: RepoBuilder, loader: ModuleLoader) -> None:
    repo_builder.write({"version.py": "VALUE = 1\n"})
    path = repo_builder.path("version.py")
    assert _load(loader, path).VALUE == 1

    repo_builder.write({"version.py": "VALUE = 2\n"})

    assert _load(loader, path).VALUE == 2
    assert loader.load_count == 2


def test_package_modules_resolve_relative_imports(repo_builder: RepoBuilder, loader: ModuleLoader) -> None:
    repo_builder.write(
        {
            "loader_relpkg/__init__.py": "",
            "loader_relpkg/helpers.py": "def double(value):\n    return value * 2\n",
            "loader_relpkg/core.py": """
            from .helpers import double


            def quadruple(value):
                return double(double(value))
            """,
        }
    )
    path = repo_builder.path("loader_relpkg/core.py")

    try:
        module = _load(loader, path)
        assert module.__name__ == "loader_relpkg.core"
        assert module.quadruple(3) == 12
    finally:
        for name in [name for name in sys.modules if name.startswith("loader_relpkg")]:
            sys.modules.pop(name, None)


def test_import_failures_raise_load_error_and_leave_no_module(
    repo_builder: RepoBuilder, loader: ModuleLoader
) -> None:
    repo_builder.write({"broken.py": "raise RuntimeError('boom at import')\n", "quits.py": "raise SystemExit(3)\n"})

    with pytest.raises(LoadError) as excinfo:
        _load(loader, repo_builder.path("broken.py"))
    assert "boom at import" in str(excinfo.value)
    assert not any(name.startswith("adaptive_tests_loaded_broken_") for name in sys.modules)

    with pytest.raises(LoadError):
        _load(loader, repo_builder.path("quits.py"))
    assert loader.stats()["failures"] == 2


def test_forget_forces_re_execution(repo_builder: RepoBuilder, loader: ModuleLoader) -> None:
    repo_builder.write({"state.py": "VALUE = 1\n"})
    path = repo_builder.path("state.py")
    first = _load(loader, path)

    loader.forget(path)
    second = _load(loader, path)

    assert first is not second
    assert loader.load_count == 2


def test_clear_removes_modules_and_search_paths(repo_builder: RepoBuilder) -> None:
    repo_builder.write({"isolated/thing.py": "VALUE = 1\n"})
    path = repo_builder.path("isolated/thing.py")
    loader = ModuleLoader()
    module = _load(loader, path)

    loader.clear()

    assert module.__name__ not in sys.modules
    assert str(path.resolve().parent) not in sys.path
    assert loader.stats()["modules"] == 0


def test_package_root_and_module_names(repo_builder: RepoBuilder) -> None:
    repo_builder.write({"outer/__init__.py": "", "outer/inner/__init__.py": "", "outer/inner/mod.py": ""})
    path = repo_builder.path("outer/inner/mod.py")

    parts, directory = package_root(path)

    assert parts == ["outer", "inner"]
    assert directory == repo_builder.path()
    assert module_name_for(path, "0" * 64) == ("outer.inner.mod", str(repo_builder.path()))
    assert module_name_for(repo_builder.path("outer/inner/__init__.py"), "0" * 64)[0] == "outer.inner"
    loose = repo_builder.path("my-script.py")
    assert module_name_for(loose, "abcdef0123456789")[0] == "adaptive_tests_loaded_my_script_abcdef012345"
