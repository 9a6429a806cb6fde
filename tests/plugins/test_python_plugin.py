"""Tests for adaptive_tests.plugins.python."""

from __future__ import annotations

from pathlib import Path

import pytest

from adaptive_tests.config import LanguageConfig
from adaptive_tests.errors import ParseError, ValidationError
from adaptive_tests.evaluator import CandidateEvaluator
from adaptive_tests.loader import ModuleLoader
from adaptive_tests.models import AccessPath, Candidate, EntityInfo, ResolvedTarget
from adaptive_tests.plugins.base import ResolutionContext
from adaptive_tests.plugins.python import PythonPlugin
from adaptive_tests.signature import normalize_signature
from tests._fixtures.repo_builder import RepoBuilder

SOURCE = """
import os.path
from .helpers import tidy
from typing import Dict

__all__ = ["Calculator", "make_calculator", "DEFAULTS", "registry"]


class Calculator(BaseCalculator, object):
    precision: int = 2

    def __init__(self, start=0):
        self.total = start
        self._history = []

    @property
    def last(self):
        return self._history[-1]

    def add(self, value):
        self.total += value
        return self


def make_calculator():
    return Calculator()


async def _private_helper():
    return None


DEFAULTS = {"precision": 2, "round": lambda value: round(value)}
registry = Registry("calc")
VERSION = "1.0"
"""


def _by_name(metadata):
    return {entity.name: entity for entity in metadata.entities}


def test_parse_extracts_module_classes_functions_and_objects(tmp_path: Path) -> None:
    plugin = PythonPlugin()
    metadata = plugin.parse_source(tmp_path / "calculator.py", SOURCE)

    assert metadata.language == "python"
    assert metadata.module_name == "calculator"
    assert metadata.exports == ["Calculator", "make_calculator", "DEFAULTS", "registry"]
    assert metadata.imports == ["os.path", ".helpers", "typing"]

    module = metadata.entities[0]
    assert module.kind == "module"
    assert module.access == AccessPath("direct")
    assert set(module.methods) == {"make_calculator", "_private_helper"}
    assert {"Calculator", "DEFAULTS", "VERSION"} <= set(module.properties)

    entities = _by_name(metadata)
    calculator = entities["Calculator"]
    assert calculator.kind == "class"
    assert calculator.methods == ("add",)
    assert set(calculator.properties) == {"precision", "total", "_history", "last"}
    assert calculator.bases == ("BaseCalculator",)
    assert calculator.access == AccessPath("named", "Calculator")

    assert entities["make_calculator"].kind == "function"
    assert entities["_private_helper"].exported is False
    assert entities["DEFAULTS"].kind == "object"
    assert entities["DEFAULTS"].methods == ("round",)
    assert entities["DEFAULTS"].properties == ("precision",)
    assert entities["registry"].bases == ("Registry",)
    assert "VERSION" not in entities


def test_extract_candidates_respects_dunder_all(tmp_path: Path) -> None:
    plugin = PythonPlugin()
    metadata = plugin.parse_source(tmp_path / "calculator.py", SOURCE)

    names = [entity.name for entity in plugin.extract_candidates(metadata)]

    assert "_private_helper" not in names
    assert names[0] == "calculator"


def test_sole_dunder_all_entry_is_the_default_export(tmp_path: Path) -> None:
    metadata = PythonPlugin().parse_source(
        tmp_path / "service.py", "__all__ = ['Service']\n\nclass Service:\n    pass\n"
    )

    assert _by_name(metadata)["Service"].access == AccessPath("default", "Service")


def test_package_init_uses_package_name(repo_builder: RepoBuilder) -> None:
    repo_builder.write({"billing/__init__.py": "class Invoice:\n    pass\n"})
    path = repo_builder.path("billing/__init__.py")

    metadata = PythonPlugin().parse_or_raise(path)

    assert metadata.module_name == "billing"
    assert metadata.package == "billing"
    assert metadata.entities[0].name == "billing"


def test_syntax_errors_raise_parse_error_or_return_none(tmp_path: Path) -> None:
    path = tmp_path / "broken.py"
    path.write_text("def broken(:\n", encoding="utf-8")
    plugin = PythonPlugin()

    with pytest.raises(ParseError):
        plugin.parse_or_raise(path)
    assert plugin.parse_file(path) is None


@pytest.mark.parametrize("expression", ["1+" * 300_000 + "1", "-" * 200_000 + "1"])
def test_deeply_nested_sources_raise_parse_error(tmp_path: Path, expression: str) -> None:
    path = tmp_path / "deep.py"
    path.write_text(f"x = {expression}\n", encoding="utf-8")

    with pytest.raises(ParseError):
        PythonPlugin().parse_or_raise(path)


def test_parse_results_are_cached_by_content(tmp_path: Path) -> None:
    path = tmp_path / "cached.py"
    path.write_text("VALUE = {}\n", encoding="utf-8")
    plugin = PythonPlugin()

    first = plugin.parse_or_raise(path)
    second = plugin.parse_or_raise(path)
    path.write_text("VALUE = {'a': 1}\n", encoding="utf-8")
    third = plugin.parse_or_raise(path)

    assert first is second
    assert third is not first
    assert plugin.parse_cache_len() == 2
    plugin.clear_parse_cache()
    assert plugin.parse_cache_len() == 0


def test_should_scan_file_applies_skip_patterns_and_size(tmp_path: Path) -> None:
    plugin = PythonPlugin(LanguageConfig(max_file_size=10, skip_patterns=["*_pb2.py"]))
    small = tmp_path / "small.py"
    small.write_text("x = 1\n", encoding="utf-8")
    large = tmp_path / "large.py"
    large.write_text("x = 1\n" * 10, encoding="utf-8")
    generated = tmp_path / "api_pb2.py"
    generated.write_text("x = 1\n", encoding="utf-8")
    conftest = tmp_path / "conftest.py"
    conftest.write_text("x = 1\n", encoding="utf-8")

    assert plugin.should_scan_file(small)
    assert not plugin.should_scan_file(large)
    assert not plugin.should_scan_file(generated)
    assert not plugin.should_scan_file(conftest)
    assert not plugin.should_scan_file(tmp_path / "notes.txt")


def test_language_specific_scoring_rewards_name_and_kind(tmp_path: Path) -> None:
    plugin = PythonPlugin()
    metadata = plugin.parse_source(tmp_path / "calculator.py", SOURCE)
    entities = _by_name(metadata)
    signature = normalize_signature({"name": "Calculator", "type": "class", "methods": ["add"]})

    class_score = plugin.score_language_specific(entities["Calculator"], metadata, signature)
    module_score = plugin.score_language_specific(metadata.entities[0], metadata, signature)

    assert class_score == pytest.approx(20 + 10 + 8)
    assert class_score > module_score


def _candidate(plugin: PythonPlugin, path: Path, name: str) -> Candidate:
    metadata = plugin.parse_or_raise(path)
    entity = _by_name(metadata)[name]
    return Candidate(
        path=str(path),
        relative_path=path.name,
        file_name=path.stem,
        language="python",
        entity=entity,
        metadata=metadata,
    )


def test_resolve_target_loads_live_value(repo_builder: RepoBuilder) -> None:
    repo_builder.write(
        {
            "shapes.py": """
            class Shape:
                def area(self):
                    return 0


            class Square(Shape):
                def __init__(self, side):
                    self.side = side

                def area(self):
                    return self.side ** 2
            """
        }
    )
    path = repo_builder.path("shapes.py")
    plugin = PythonPlugin()
    loader = ModuleLoader()
    context = ResolutionContext(loader=loader, evaluator=CandidateEvaluator(), source=path.read_bytes())
    signature = normalize_signature({"name": "Square", "type": "class", "extends": "Shape", "properties": ["side"]})

    try:
        target = plugin.resolve_target(_candidate(plugin, path, "Square"), signature, context)
        assert target is not None
        assert target.kind == "class"
        assert target.value(3).area() == 9
        assert target.full_name.endswith(".Square")
        assert target.access == AccessPath("named", "Square")

        with pytest.raises(ValidationError):
            plugin.resolve_target(
                _candidate(plugin, path, "Shape"),
                normalize_signature({"name": "Shape", "extends": "Square"}),
                context,
            )
    finally:
        loader.clear()


def test_generate_test_content_emits_pytest_module(tmp_path: Path) -> None:
    target = ResolvedTarget(
        value=object,
        access=AccessPath("named", "Calculator"),
        full_name="calculator.Calculator",
        language="python",
        path=str(tmp_path / "calculator.py"),
        kind="class",
        metadata=EntityInfo(name="Calculator", kind="class", access=AccessPath("named", "Calculator"), methods=("add",)),
    )

    content = PythonPlugin().generate_test_content(target)

    assert "from adaptive_tests import discover" in content
    assert "def test_calculator_is_discoverable():" in content
    assert "def test_calculator_has_add():" in content
    compile(content, "generated_test.py", "exec")
