"""Python language plugin: ``ast`` parsing and importlib-based resolution."""

from __future__ import annotations

import ast
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..errors import ParseError, ValidationError
from ..evaluator import target_kind
from ..loader import package_root
from ..models import AccessPath, Candidate, EntityInfo, ModuleMetadata, ResolvedTarget, Signature
from .base import LanguagePlugin, ResolutionContext

_IGNORED_BASES = {"object"}
_PROPERTY_DECORATORS = {"property", "cached_property", "functools.cached_property"}


class PythonPlugin(LanguagePlugin):
    """Host-language plugin; resolution imports the module and returns live values."""

    name = "python"
    extensions = (".py",)
    skip_patterns = ("conftest.py", "setup.py")
    runtime = "host"

    def parse_source(self, path: Path, source: str) -> ModuleMetadata:
        try:
            tree = ast.parse(source, filename=str(path))
        except (SyntaxError, ValueError) as exc:
            raise ParseError(str(path), str(exc), language=self.name) from exc
        except (RecursionError, MemoryError) as exc:
            raise ParseError(str(path), f"source is too deeply nested: {exc}", language=self.name) from exc

        parts, _ = package_root(path)
        exports = _literal_all(tree)
        default_export = exports[0] if exports is not None and len(exports) == 1 else None

        def _access(name: str) -> AccessPath:
            return AccessPath("default" if name == default_export else "named", name)

        def _exported(name: str) -> bool:
            return exports is None or name in exports

        entities: List[EntityInfo] = []
        module_functions: List[str] = []
        module_names: List[str] = []
        imports: List[str] = []

        for node in tree.body:
            if isinstance(node, ast.ClassDef):
                methods, properties = _class_members(node)
                bases = tuple(
                    base for base in (_dotted(expr) for expr in node.bases) if base and base not in _IGNORED_BASES
                )
                entities.append(
                    EntityInfo(
                        name=node.name,
                        kind="class",
                        access=_access(node.name),
                        methods=methods,
                        properties=properties,
                        bases=bases,
                        exported=_exported(node.name),
                        line=node.lineno,
                    )
                )
                module_names.append(node.name)
            elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                entities.append(
                    EntityInfo(
                        name=node.name,
                        kind="function",
                        access=_access(node.name),
                        exported=_exported(node.name),
                        line=node.lineno,
                    )
                )
                module_functions.append(node.name)
            elif isinstance(node, (ast.Assign, ast.AnnAssign)):
                value = node.value
                for target in _assign_targets(node):
                    if target == "__all__":
                        continue
                    module_names.append(target)
                    if value is None:
                        continue
                    entity = _object_entity(target, value, _access(target), _exported(target), node.lineno)
                    if entity is not None:
                        entities.append(entity)
            elif isinstance(node, ast.Import):
                imports.extend(alias.name for alias in node.names)
            elif isinstance(node, ast.ImportFrom):
                prefix = "." * node.level
                imports.append(f"{prefix}{node.module or ''}")

        stem = path.stem
        module_name = ".".join(parts + [stem]) if parts and stem != "__init__" else (".".join(parts) or stem)
        module_label = parts[-1] if stem == "__init__" and parts else stem
        entities.insert(
            0,
            EntityInfo(
                name=module_label,
                kind="module",
                access=AccessPath("direct"),
                methods=tuple(module_functions),
                properties=tuple(name for name in module_names if name not in module_functions),
                exported=True,
                line=0,
            ),
        )
        return ModuleMetadata(
            path=str(path),
            language=self.name,
            module_name=module_name,
            package=".".join(parts) or None,
            entities=entities,
            imports=imports,
            exports=exports,
        )

    def resolve_target(
        self, candidate: Candidate, signature: Signature, context: ResolutionContext
    ) -> Optional[ResolvedTarget]:
        module = context.loader.load(Path(candidate.path), context.source)
        evaluator = context.evaluator
        entity = candidate.entity
        try:
            value = evaluator.extract_export_by_access(module, entity.access)
        except AttributeError:
            found = evaluator.resolve_target_from_module(
                module, signature, preferred=entity, metadata=candidate.metadata
            )
            if found is None:
                return None
            value, access = found
            label = access.name or module.__name__
            info = next((item for item in candidate.metadata.entities if item.name == access.name), None)
        else:
            access = entity.access
            label = entity.name
            info = entity
            name = None if entity.kind == "module" else entity.name
            reason = evaluator.describe_mismatch(value, signature, metadata=entity, name=name)
            if reason is not None:
                raise ValidationError(candidate.path, reason, entity=entity.name)

        full_name = module.__name__ if access.type == "direct" else f"{module.__name__}.{label}"
        return ResolvedTarget(
            value=value,
            access=access,
            full_name=full_name,
            language=self.name,
            path=candidate.path,
            kind=target_kind(value),
            metadata=info,
        )

    def generate_test_content(
        self, target: ResolvedTarget, options: Mapping[str, Any] | None = None
    ) -> str:
        options = dict(options or {})
        name = target.metadata.name if target.metadata is not None else target.full_name.rsplit(".", 1)[-1]
        signature: Dict[str, Any] = {"name": name, "type": target.kind}
        methods: Sequence[str] = target.metadata.methods if target.metadata is not None else ()
        if methods:
            signature["methods"] = list(methods)
        slug = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_") or "target"
        import_line = options.get("import_line", "from adaptive_tests import discover")

        lines = [
            f'"""Adaptive tests for {target.full_name}."""',
            "",
            import_line,
            "",
            f"SIGNATURE = {signature!r}",
            "",
            "",
            f"def test_{slug}_is_discoverable():",
            "    target = discover(SIGNATURE)",
            "    assert target is not None",
        ]
        for method in methods:
            method_slug = re.sub(r"[^a-z0-9]+", "_", method.lower()).strip("_") or "member"
            lines.extend(
                [
                    "",
                    "",
                    f"def test_{slug}_has_{method_slug}():",
                    "    target = discover(SIGNATURE)",
                    f"    assert callable(getattr(target, {method!r}))",
                ]
            )
        return "\n".join(lines) + "\n"


def _literal_all(tree: ast.Module) -> Optional[List[str]]:
    for node in tree.body:
        if not isinstance(node, (ast.Assign, ast.AnnAssign)):
            continue
        if "__all__" not in _assign_targets(node) or node.value is None:
            continue
        if isinstance(node.value, (ast.List, ast.Tuple)):
            names = [
                element.value
                for element in node.value.elts
                if isinstance(element, ast.Constant) and isinstance(element.value, str)
            ]
            return names
    return None


def _assign_targets(node: ast.AST) -> List[str]:
    if isinstance(node, ast.AnnAssign):
        return [node.target.id] if isinstance(node.target, ast.Name) else []
    if isinstance(node, ast.Assign):
        names: List[str] = []
        for target in node.targets:
            if isinstance(target, ast.Name):
                names.append(target.id)
        return names
    return []


def _dotted(node: ast.expr) -> Optional[str]:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        parent = _dotted(node.value)
        return f"{parent}.{node.attr}" if parent else node.attr
    if isinstance(node, ast.Subscript):
        return _dotted(node.value)
    return None


def _class_members(node: ast.ClassDef) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
    methods: Dict[str, None] = {}
    properties: Dict[str, None] = {}
    for item in node.body:
        if isinstance(item, (ast.FunctionDef, ast.AsyncFunctionDef)):
            decorators = {_dotted(decorator) for decorator in item.decorator_list}
            if decorators & _PROPERTY_DECORATORS:
                properties[item.name] = None
            elif not item.name.startswith("__"):
                methods[item.name] = None
            if item.name == "__init__":
                for name in _self_attributes(item):
                    properties.setdefault(name, None)
        elif isinstance(item, (ast.Assign, ast.AnnAssign)):
            for name in _assign_targets(item):
                properties.setdefault(name, None)
    return tuple(methods), tuple(name for name in properties if name not in methods)


def _self_attributes(function: ast.AST) -> List[str]:
    names: List[str] = []
    for node in ast.walk(function):
        targets: List[ast.expr] = []
        if isinstance(node, ast.Assign):
            targets = list(node.targets)
        elif isinstance(node, (ast.AnnAssign, ast.AugAssign)):
            targets = [node.target]
        for target in targets:
            if (
                isinstance(target, ast.Attribute)
                and isinstance(target.value, ast.Name)
                and target.value.id == "self"
                and target.attr not in names
            ):
                names.append(target.attr)
    return names


def _object_entity(
    name: str, value: ast.expr, access: AccessPath, exported: bool, line: int
) -> Optional[EntityInfo]:
    if isinstance(value, ast.Dict):
        methods: List[str] = []
        properties: List[str] = []
        for key, item in zip(value.keys, value.values):
            if isinstance(key, ast.Constant) and isinstance(key.value, str):
                (methods if isinstance(item, ast.Lambda) else properties).append(key.value)
        return EntityInfo(
            name=name,
            kind="object",
            access=access,
            methods=tuple(methods),
            properties=tuple(properties),
            exported=exported,
            line=line,
        )
    if isinstance(value, ast.Lambda):
        return EntityInfo(name=name, kind="function", access=access, exported=exported, line=line)
    if isinstance(value, ast.Call):
        callee = _dotted(value.func) or ""
        short = callee.rsplit(".", 1)[-1]
        if short[:1].isupper():
            # Instances of classes; members are only known after loading.
            return EntityInfo(
                name=name,
                kind="object",
                access=access,
                bases=(callee,),
                exported=exported,
                line=line,
            )
    return None


__all__ = ["PythonPlugin"]
