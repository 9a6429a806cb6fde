"""Tests for adaptive_tests.evaluator."""

from __future__ import annotations

import types

from adaptive_tests.config import SecurityConfig
from adaptive_tests.evaluator import CandidateEvaluator, reflect_members, target_kind
from adaptive_tests.models import (
    AccessPath,
    Candidate,
    EntityInfo,
    ForeignTarget,
    ModuleMetadata,
)
from adaptive_tests.signature import normalize_signature


class Base:
    def describe(self) -> str:
        return "base"


class Calculator(Base):
    precision = 2

    def __init__(self) -> None:
        raise AssertionError("reflection must not instantiate classes")

    def add(self, a: int, b: int) -> int:
        return a + b

    @staticmethod
    def identity(value: int) -> int:
        return value

    @property
    def total(self) -> int:
        return 0


def _entity(name: str, kind: str = "class", **kwargs) -> EntityInfo:
    return EntityInfo(name=name, kind=kind, access=AccessPath("named", name), **kwargs)


def _module(name: str, **members) -> types.ModuleType:
    module = types.ModuleType(name)
    for key, value in members.items():
        setattr(module, key, value)
    return module


def test_blocked_tokens_are_case_insensitive_per_language() -> None:
    evaluator = CandidateEvaluator()

    assert evaluator.blocked_token("import subprocess\n", "python") == "subprocess"
    assert evaluator.blocked_token("OS.SYSTEM('ls')", "python") == "os.system("
    assert evaluator.blocked_token("process.exit(1)", "typescript") == "process.exit("
    assert evaluator.blocked_token("Runtime.getRuntime().exec(cmd)", "java") is not None
    assert evaluator.blocked_token("class Calculator: pass", "python") is None
    assert evaluator.is_source_safe("class Calculator: pass", "python")


def test_configured_tokens_extend_every_language_and_unsafe_loads_bypass() -> None:
    evaluator = CandidateEvaluator(SecurityConfig(blocked_tokens=["eval("]))
    permissive = CandidateEvaluator(SecurityConfig(allow_unsafe_loads=True))

    assert evaluator.blocked_token("x = eval('1')", "python") == "eval("
    assert evaluator.blocked_token("EVAL(x)", "ruby") == "eval("
    assert permissive.blocked_token("import subprocess", "python") is None


def test_is_candidate_safe_rereads_the_file(tmp_path) -> None:
    path = tmp_path / "runner.py"
    path.write_text("def run():\n    return 1\n", encoding="utf-8")
    candidate = Candidate(
        path=str(path),
        relative_path="runner.py",
        file_name="runner",
        language="python",
        entity=_entity("run", "function"),
        metadata=ModuleMetadata(path=str(path), language="python", module_name="runner"),
    )
    evaluator = CandidateEvaluator()
    assert evaluator.is_candidate_safe(candidate)

    path.write_text("import os\nos.system('true')\n", encoding="utf-8")

    assert not evaluator.is_candidate_safe(candidate)
    assert not evaluator.is_candidate_safe(
        Candidate(**{**candidate.__dict__, "path": str(tmp_path / "gone.py")})
    )


def test_metadata_mismatch_checks_kind_name_and_members() -> None:
    evaluator = CandidateEvaluator()
    signature = normalize_signature({"name": "Calculator", "type": "class", "methods": ["add"]})

    assert evaluator.metadata_mismatch(_entity("Calculator", methods=("add",)), signature) is None
    assert "expected class" in evaluator.metadata_mismatch(_entity("Calculator", "function"), signature)
    assert "does not match" in evaluator.metadata_mismatch(_entity("Widget", methods=("add",)), signature)
    assert "missing methods add" in evaluator.metadata_mismatch(_entity("Calculator"), signature)


def test_metadata_mismatch_defers_inherited_members_to_runtime() -> None:
    evaluator = CandidateEvaluator()
    signature = normalize_signature({"name": "Calculator", "methods": ["describe"]})

    assert evaluator.metadata_mismatch(_entity("Calculator", bases=("Base",)), signature) is None


def test_select_export_from_metadata_prefers_exact_names_over_modules() -> None:
    evaluator = CandidateEvaluator()
    metadata = ModuleMetadata(
        path="/repo/calculator.py",
        language="python",
        module_name="calculator",
        entities=[
            EntityInfo(name="calculator", kind="module", access=AccessPath("direct")),
            _entity("Calculator", methods=("add",)),
            _entity("calculator_factory", "function"),
        ],
    )

    chosen = evaluator.select_export_from_metadata(metadata, normalize_signature("Calculator"))

    assert chosen is not None and chosen.name == "Calculator"


def test_reflect_members_never_instantiates_classes() -> None:
    members = reflect_members(Calculator, _entity("Calculator", properties=("history",)))

    assert {"add", "identity", "describe"} <= members.methods
    assert {"precision", "total", "history"} <= members.properties
    assert members.missing_methods(["add", "multiply"]) == ["multiply"]
    assert members.missing_properties(["add", "precision"]) == []


def test_reflect_members_on_modules_objects_and_foreign_targets() -> None:
    module = _module("calc", add=lambda a, b: a + b, VERSION="1.0")
    module_members = reflect_members(module)
    assert "add" in module_members.methods
    assert "VERSION" in module_members.properties

    mapping_members = reflect_members({"run": print, "name": "svc"})
    assert "run" in mapping_members.methods
    assert "name" in mapping_members.properties

    foreign = ForeignTarget(language="java", path="/Calc.java", name="Calc", kind="class", methods=("add",))
    assert reflect_members(foreign).methods == frozenset({"add"})


def test_target_kind() -> None:
    assert target_kind(Calculator) == "class"
    assert target_kind(_module("calc")) == "module"
    assert target_kind(len) == "function"
    assert target_kind({"a": 1}) == "object"


def test_extract_export_by_access_follows_recorded_paths() -> None:
    evaluator = CandidateEvaluator()
    module = _module("calc", Calculator=Calculator, __all__=["Calculator"])

    assert evaluator.extract_export_by_access(module, AccessPath("direct")) is module
    assert evaluator.extract_export_by_access(module, AccessPath("default")) is Calculator
    assert evaluator.extract_export_by_access(module, AccessPath("named", "Calculator")) is Calculator


def test_resolve_target_from_module_picks_best_export() -> None:
    evaluator = CandidateEvaluator()
    module = _module("calc")
    exec(
        "class Base:\n    pass\n\nclass Calculator(Base):\n    def add(self, a, b):\n        return a + b\n",
        module.__dict__,
    )

    found = evaluator.resolve_target_from_module(
        module, normalize_signature({"name": "Calculator", "type": "class"})
    )

    assert found is not None
    value, access = found
    assert value is module.Calculator
    assert access == AccessPath("named", "Calculator")


def test_validate_target_checks_inheritance() -> None:
    evaluator = CandidateEvaluator()

    assert evaluator.validate_target(Calculator, normalize_signature({"name": "Calculator", "extends": "Base"}))
    assert evaluator.validate_target(Calculator, normalize_signature({"name": "Calculator", "extends": Base}))
    assert not evaluator.validate_target(
        Calculator, normalize_signature({"name": "Calculator", "extends": "Calculator"})
    )
    assert evaluator.validate_target(
        Calculator, normalize_signature({"name": "Calculator", "instance_of": "Calculator"})
    )


def test_describe_mismatch_explains_failures() -> None:
    evaluator = CandidateEvaluator()

    assert evaluator.describe_mismatch(None, normalize_signature("x")) == "target is None"
    reason = evaluator.describe_mismatch(Calculator, normalize_signature({"name": "Calculator", "methods": ["divide"]}))
    assert reason == "Calculator is missing methods divide"
    reason = evaluator.describe_mismatch(Calculator, normalize_signature({"type": "function"}))
    assert reason == "Calculator is a class, expected function"


def test_foreign_targets_validate_against_extracted_bases() -> None:
    evaluator = CandidateEvaluator()
    foreign = ForeignTarget(
        language="typescript",
        path="/repo/src/calculator.ts",
        name="Calculator",
        kind="class",
        methods=("add",),
        bases=("BaseCalculator<number>",),
    )

    assert evaluator.validate_target(
        foreign, normalize_signature({"name": "Calculator", "extends": "BaseCalculator"})
    )
    assert not evaluator.validate_target(
        foreign, normalize_signature({"name": "Calculator", "extends": "Other"})
    )


def test_build_signature_suggestion_mirrors_the_candidate() -> None:
    evaluator = CandidateEvaluator()
    candidate = Candidate(
        path="/repo/src/calc.py",
        relative_path="src/calc.py",
        file_name="calc",
        language="python",
        entity=_entity("Calc", methods=("add", "sub"), bases=("Base",)),
        metadata=ModuleMetadata(path="/repo/src/calc.py", language="python", module_name="calc"),
    )

    assert evaluator.build_signature_suggestion(candidate) == {
        "name": "Calc",
        "type": "class",
        "methods": ["add", "sub"],
        "extends": "Base",
        "language": "python",
    }
