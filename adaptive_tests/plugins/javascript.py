"""JavaScript and TypeScript plugins backed by tree-sitter grammars."""

from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from ..config import LanguageConfig
from ..errors import LoadError
from ..models import AccessPath, Candidate, EntityInfo, ModuleMetadata, ResolvedTarget
from .tree_sitter import (
    TreeSitterPlugin,
    field_text,
    load_language,
    named_children,
    node_text,
    unique,
    walk,
)

_CLASS_NODES = {"class_declaration", "abstract_class_declaration", "class"}
_FUNCTION_NODES = {
    "function_declaration",
    "generator_function_declaration",
    "function_expression",
    "function",
    "generator_function",
    "arrow_function",
}
_METHOD_NODES = {"method_definition", "method_signature", "abstract_method_signature"}
_FIELD_NODES = {"field_definition", "public_field_definition", "property_signature"}

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


@dataclass
class _Declared:
    name: str
    kind: str
    line: int
    methods: List[str] = field(default_factory=list)
    properties: List[str] = field(default_factory=list)
    bases: List[str] = field(default_factory=list)


class _ModuleCollector:
    """Single pass over a program node collecting declarations and exports."""

    def __init__(self, data: bytes, stem: str) -> None:
        self.data = data
        self.stem = stem
        self.declared: Dict[str, _Declared] = {}
        self.named_exports: List[str] = []
        self.default_export: Optional[str] = None
        self.has_export_syntax = False
        self.imports: List[str] = []

    def text(self, node: Any) -> str:
        return node_text(node, self.data)

    def collect(self, root: Any) -> None:
        for node in named_children(root):
            self._statement(node)

    def _statement(self, node: Any, *, exported: bool = False, default: bool = False) -> None:
        kind = node.type
        if kind == "export_statement":
            self.has_export_syntax = True
            is_default = any(child.type == "default" for child in node.children)
            declaration = node.child_by_field_name("declaration")
            value = node.child_by_field_name("value")
            if declaration is not None:
                self._statement(declaration, exported=True, default=is_default)
            elif value is not None:
                self._default_value(value)
            for clause in named_children(node):
                if clause.type == "export_clause":
                    self._export_clause(clause)
            return
        if kind == "import_statement":
            source = node.child_by_field_name("source")
            if source is not None:
                self.imports.append(self.text(source).strip("'\""))
            return
        if kind in _CLASS_NODES or kind == "interface_declaration":
            declared = self._declare_class(node)
        elif kind in _FUNCTION_NODES:
            name = field_text(node, "name", self.data)
            declared = self._declare(name or self.stem, "function", node)
        elif kind in ("lexical_declaration", "variable_declaration"):
            for declarator in named_children(node):
                if declarator.type == "variable_declarator":
                    self._declarator(declarator, exported=exported)
            return
        elif kind == "expression_statement":
            for child in named_children(node):
                if child.type == "assignment_expression":
                    self._assignment(child)
            return
        else:
            return
        if exported and declared is not None:
            if default:
                self.default_export = declared.name
            else:
                self.named_exports.append(declared.name)

    def _declare(self, name: str, kind: str, node: Any) -> _Declared:
        declared = self.declared.get(name)
        if declared is None:
            declared = _Declared(name=name, kind=kind, line=node.start_point[0] + 1)
            self.declared[name] = declared
        return declared

    def _declare_class(self, node: Any, name: Optional[str] = None) -> _Declared:
        name = name or field_text(node, "name", self.data) or self.stem
        declared = self._declare(name, "class", node)
        for child in named_children(node):
            if child.type == "class_heritage":
                declared.bases.extend(self._heritage(child))
            elif child.type == "extends_type_clause":
                declared.bases.extend(self.text(item) for item in named_children(child))
        body = node.child_by_field_name("body")
        if body is not None:
            self._class_body(body, declared)
        return declared

    def _heritage(self, node: Any) -> List[str]:
        bases: List[str] = []
        for child in named_children(node):
            if child.type in ("extends_clause", "implements_clause"):
                value = child.child_by_field_name("value")
                items = [value] if value is not None else list(named_children(child))
                bases.extend(self.text(item) for item in items)
            else:
                bases.append(self.text(child))
        return [re.sub(r"<.*$", "", base).strip() for base in bases]

    def _class_body(self, body: Any, declared: _Declared) -> None:
        for member in named_children(body):
            if member.type in _METHOD_NODES:
                name = field_text(member, "name", self.data)
                if not name:
                    continue
                if name == "constructor":
                    declared.properties.extend(_this_assignments(member, self.data))
                    continue
                is_accessor = any(child.type in ("get", "set") for child in member.children)
                (declared.properties if is_accessor else declared.methods).append(name)
            elif member.type in _FIELD_NODES:
                name = field_text(member, "property", self.data) or field_text(member, "name", self.data)
                if not name:
                    continue
                value = member.child_by_field_name("value")
                if value is not None and value.type in _FUNCTION_NODES:
                    declared.methods.append(name)
                else:
                    declared.properties.append(name)

    def _declarator(self, node: Any, *, exported: bool) -> None:
        name = field_text(node, "name", self.data)
        value = node.child_by_field_name("value")
        if not name or value is None:
            return
        declared = self._value(name, value, node)
        if declared is not None and exported:
            self.named_exports.append(declared.name)

    def _value(self, name: str, value: Any, node: Any) -> Optional[_Declared]:
        if value.type in _CLASS_NODES:
            return self._declare_class(value, name)
        if value.type in _FUNCTION_NODES:
            return self._declare(name, "function", node)
        if value.type == "object":
            declared = self._declare(name, "object", node)
            self._object_members(value, declared)
            return declared
        if value.type == "new_expression":
            declared = self._declare(name, "object", node)
            constructor = value.child_by_field_name("constructor")
            if constructor is not None:
                declared.bases.append(self.text(constructor))
            return declared
        return None

    def _object_members(self, node: Any, declared: _Declared) -> List[str]:
        referenced: List[str] = []
        for member in named_children(node):
            if member.type == "pair":
                key = member.child_by_field_name("key")
                value = member.child_by_field_name("value")
                if key is None:
                    continue
                key_text = self.text(key).strip("'\"")
                if value is not None and value.type in _FUNCTION_NODES:
                    declared.methods.append(key_text)
                else:
                    declared.properties.append(key_text)
                if value is not None and value.type == "identifier":
                    referenced.append(self.text(value))
            elif member.type == "method_definition":
                name = field_text(member, "name", self.data)
                if name:
                    declared.methods.append(name)
            elif member.type == "shorthand_property_identifier":
                name = self.text(member)
                known = self.declared.get(name)
                if known is not None and known.kind in ("function", "class"):
                    declared.methods.append(name)
                else:
                    declared.properties.append(name)
                referenced.append(name)
        return referenced

    def _assignment(self, node: Any) -> None:
        left = node.child_by_field_name("left")
        right = node.child_by_field_name("right")
        if left is None or right is None:
            return
        target = self.text(left).replace(" ", "")
        if target == "module.exports":
            self.has_export_syntax = True
            self._default_value(right)
            return
        match = re.fullmatch(r"(?:module\.)?exports\.([A-Za-z_$][\w$]*)", target)
        if match:
            self.has_export_syntax = True
            name = match.group(1)
            if right.type == "identifier":
                self.named_exports.append(self.text(right))
                if self.text(right) != name:
                    self.named_exports.append(name)
                return
            declared = self._value(name, right, node)
            if declared is None:
                self._declare(name, "object", node)
            self.named_exports.append(name)

    def _default_value(self, value: Any) -> None:
        if value.type == "identifier":
            self.default_export = self.text(value)
            return
        if value.type == "object":
            declared = self._declare(self.stem, "object", value)
            for name in self._object_members(value, declared):
                self.named_exports.append(name)
            self.default_export = declared.name
            return
        if value.type in _CLASS_NODES:
            declared = self._declare_class(value)
        elif value.type in _FUNCTION_NODES:
            declared = self._declare(field_text(value, "name", self.data) or self.stem, "function", value)
        else:
            declared = self._value(self.stem, value, value)
        if declared is not None:
            self.default_export = declared.name

    def _export_clause(self, clause: Any) -> None:
        for specifier in named_children(clause):
            if specifier.type != "export_specifier":
                continue
            name = field_text(specifier, "name", self.data)
            alias = field_text(specifier, "alias", self.data)
            if alias == "default" and name:
                self.default_export = name
            elif name:
                self.named_exports.append(name)

    def entities(self) -> List[EntityInfo]:
        exported_names = set(self.named_exports)
        entities: List[EntityInfo] = []
        for declared in self.declared.values():
            is_default = declared.name == self.default_export
            exported = (not self.has_export_syntax) or is_default or declared.name in exported_names
            access = AccessPath("default" if is_default else "named", declared.name)
            entities.append(
                EntityInfo(
                    name=declared.name,
                    kind=declared.kind,
                    access=access,
                    methods=unique(declared.methods),
                    properties=tuple(
                        name for name in unique(declared.properties) if name not in declared.methods
                    ),
                    bases=unique(declared.bases),
                    exported=exported,
                    line=declared.line,
                )
            )
        return entities


def _this_assignments(node: Any, data: bytes) -> List[str]:
    names: List[str] = []
    for child in walk(node):
        if child.type != "assignment_expression":
            continue
        left = child.child_by_field_name("left")
        if left is None or left.type != "member_expression":
            continue
        obj = left.child_by_field_name("object")
        prop = left.child_by_field_name("property")
        if obj is not None and obj.type == "this" and prop is not None:
            names.append(node_text(prop, data))
    return names


def _default_runner(args: Sequence[str], *, timeout: float) -> "subprocess.CompletedProcess[str]":
    return subprocess.run(list(args), check=False, text=True, capture_output=True, timeout=timeout)


class JavaScriptPlugin(TreeSitterPlugin):
    """ES modules and CommonJS. Resolution never executes the file."""

    name = "javascript"
    extensions = (".js", ".mjs", ".cjs", ".jsx")
    skip_patterns = ("*.min.js", "*.bundle.js")
    grammar_module = "tree_sitter_javascript"

    def __init__(self, config: LanguageConfig | None = None, runner: Runner | None = None) -> None:
        super().__init__(config)
        self._runner = runner or _default_runner

    def build_metadata(self, path: Path, root: Any, data: bytes) -> ModuleMetadata:
        collector = _ModuleCollector(data, _stem(path))
        collector.collect(root)
        exports = None
        if collector.has_export_syntax:
            exports = list(dict.fromkeys(collector.named_exports))
            if collector.default_export:
                exports.append("default")
        return ModuleMetadata(
            path=str(path),
            language=self.name,
            module_name=_stem(path),
            entities=collector.entities(),
            imports=collector.imports,
            exports=exports,
        )

    def verify_candidate(self, candidate: Candidate) -> None:
        if not self.config.verify_with_toolchain:
            return
        command = ["node", "--check", candidate.path]
        try:
            completed = self._runner(command, timeout=self.config.parser_timeout)
        except subprocess.TimeoutExpired as exc:
            raise LoadError(candidate.path, f"node --check timed out after {exc.timeout}s", timed_out=True) from exc
        except OSError as exc:
            raise LoadError(candidate.path, f"cannot run node: {exc}") from exc
        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout or "").strip().splitlines()
            raise LoadError(candidate.path, detail[0] if detail else f"node exited {completed.returncode}")

    def generate_test_content(
        self, target: ResolvedTarget, options: Mapping[str, Any] | None = None
    ) -> str:
        options = dict(options or {})
        metadata = target.metadata
        name = metadata.name if metadata is not None else target.full_name
        methods = metadata.methods if metadata is not None else ()
        module = options.get("module", "adaptive-tests")
        lines = [
            f"const {{ discover }} = require('{module}');",
            "",
            f"describe('{name}', () => {{",
            "  let target;",
            "",
            "  beforeAll(async () => {",
            f"    target = await discover({{ name: '{name}', type: '{target.kind}' }});",
            "  });",
            "",
            "  it('is discoverable', () => {",
            "    expect(target).toBeDefined();",
            "  });",
        ]
        for method in methods:
            lines.extend(
                [
                    "",
                    f"  it('exposes {method}', () => {{",
                    f"    expect(typeof target.prototype.{method}).toBe('function');"
                    if target.kind == "class"
                    else f"    expect(typeof target.{method}).toBe('function');",
                    "  });",
                ]
            )
        lines.append("});")
        return "\n".join(lines) + "\n"


class TypeScriptPlugin(JavaScriptPlugin):
    """TypeScript and TSX; interfaces and abstract classes count as classes."""

    name = "typescript"
    extensions = (".ts", ".tsx")
    skip_patterns = ("*.d.ts",)
    grammar_module = "tree_sitter_typescript"
    grammar_factory = "language_typescript"

    def language_for(self, path: Path) -> Any:
        if path.suffix.lower() == ".tsx":
            return load_language(self.grammar_module, "language_tsx")
        return super().language_for(path)

    def verify_candidate(self, candidate: Candidate) -> None:
        return None


def _stem(path: Path) -> str:
    name = path.name
    for suffix in (".d.ts", ".tsx", ".ts", ".mjs", ".cjs", ".jsx", ".js"):
        if name.lower().endswith(suffix):
            return name[: -len(suffix)]
    return path.stem


__all__ = ["JavaScriptPlugin", "TypeScriptPlugin"]
