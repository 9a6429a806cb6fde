"""Java plugin backed by the tree-sitter Java grammar."""

from __future__ import annotations

from pathlib import Path
from typing import Any, List, Mapping, Optional

from ..models import AccessPath, EntityInfo, ModuleMetadata, ResolvedTarget
from .tree_sitter import TreeSitterPlugin, field_text, named_children, node_text, unique

_TYPE_NODES = {
    "class_declaration": "class",
    "interface_declaration": "class",
    "enum_declaration": "class",
    "record_declaration": "class",
}


class JavaPlugin(TreeSitterPlugin):
    """Extracts top-level types with their members; package feeds scoring."""

    name = "java"
    extensions = (".java",)
    skip_patterns = ("package-info.java", "module-info.java")
    grammar_module = "tree_sitter_java"

    def build_metadata(self, path: Path, root: Any, data: bytes) -> ModuleMetadata:
        package: Optional[str] = None
        imports: List[str] = []
        entities: List[EntityInfo] = []
        for node in named_children(root):
            if node.type == "package_declaration":
                for child in named_children(node):
                    if child.type in ("scoped_identifier", "identifier"):
                        package = node_text(child, data)
            elif node.type == "import_declaration":
                for child in named_children(node):
                    if child.type in ("scoped_identifier", "identifier"):
                        imports.append(node_text(child, data))
            elif node.type in _TYPE_NODES:
                entity = self._type_entity(node, data)
                if entity is not None:
                    entities.append(entity)
        return ModuleMetadata(
            path=str(path),
            language=self.name,
            module_name=f"{package}.{path.stem}" if package else path.stem,
            package=package,
            entities=entities,
            imports=imports,
        )

    def _type_entity(self, node: Any, data: bytes) -> Optional[EntityInfo]:
        name = field_text(node, "name", data)
        if not name:
            return None
        modifiers = _modifiers(node, data)
        bases: List[str] = []
        superclass = node.child_by_field_name("superclass")
        if superclass is not None:
            bases.extend(_type_names(superclass, data))
        interfaces = node.child_by_field_name("interfaces")
        if interfaces is not None:
            bases.extend(_type_names(interfaces, data))
        for child in named_children(node):
            if child.type == "extends_interfaces":
                bases.extend(_type_names(child, data))

        methods: List[str] = []
        properties: List[str] = []
        body = node.child_by_field_name("body")
        if body is not None:
            self._collect_members(body, data, methods, properties)
        return EntityInfo(
            name=name,
            kind=_TYPE_NODES[node.type],
            access=AccessPath("named", name),
            methods=unique(methods),
            properties=unique(properties),
            bases=unique(bases),
            exported="private" not in modifiers,
            line=node.start_point[0] + 1,
        )

    def _collect_members(self, body: Any, data: bytes, methods: List[str], properties: List[str]) -> None:
        for member in named_children(body):
            if member.type in ("method_declaration", "abstract_method_declaration"):
                name = field_text(member, "name", data)
                if name:
                    methods.append(name)
            elif member.type in ("field_declaration", "constant_declaration"):
                for declarator in named_children(member):
                    if declarator.type == "variable_declarator":
                        name = field_text(declarator, "name", data)
                        if name:
                            properties.append(name)
            elif member.type == "enum_constant":
                name = field_text(member, "name", data)
                if name:
                    properties.append(name)
            elif member.type == "enum_body_declarations":
                self._collect_members(member, data, methods, properties)

    def generate_test_content(
        self, target: ResolvedTarget, options: Mapping[str, Any] | None = None
    ) -> str:
        metadata = target.metadata
        name = metadata.name if metadata is not None else target.full_name.rsplit(".", 1)[-1]
        package = target.full_name.rsplit(".", 1)[0] if "." in target.full_name else None
        lines: List[str] = []
        if package:
            lines.extend([f"package {package};", ""])
        lines.extend(
            [
                "import static org.junit.jupiter.api.Assertions.assertNotNull;",
                "",
                "import org.junit.jupiter.api.Test;",
                "",
                f"class {name}Test {{",
                "",
                "    @Test",
                "    void isDiscoverable() {",
                f"        assertNotNull({name}.class);",
                "    }",
            ]
        )
        for method in metadata.methods if metadata is not None else ():
            lines.extend(
                [
                    "",
                    "    @Test",
                    f"    void exposes{method[:1].upper()}{method[1:]}() throws Exception {{",
                    f"        assertNotNull({name}.class.getMethod(\"{method}\"));",
                    "    }",
                ]
            )
        lines.append("}")
        return "\n".join(lines) + "\n"


def _modifiers(node: Any, data: bytes) -> List[str]:
    for child in node.children:
        if child.type == "modifiers":
            return node_text(child, data).split()
    return []


def _type_names(node: Any, data: bytes) -> List[str]:
    names: List[str] = []
    for child in named_children(node):
        if child.type in ("type_identifier", "scoped_type_identifier"):
            names.append(node_text(child, data))
        elif child.type == "generic_type":
            names.append(node_text(child, data).split("<", 1)[0])
        elif child.type == "type_list":
            names.extend(_type_names(child, data))
    return names


__all__ = ["JavaPlugin"]
