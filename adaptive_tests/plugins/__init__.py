"""Language plugins and the registry that dispatches files to them."""

from __future__ import annotations

from .base import LanguagePlugin, ResolutionContext
from .java import JavaPlugin
from .javascript import JavaScriptPlugin, TypeScriptPlugin
from .python import PythonPlugin
from .registry import ENTRY_POINT_GROUP, PluginRegistry
from .tree_sitter import TREE_SITTER_AVAILABLE, TreeSitterPlugin

__all__ = [
    "ENTRY_POINT_GROUP",
    "JavaPlugin",
    "JavaScriptPlugin",
    "LanguagePlugin",
    "PluginRegistry",
    "PythonPlugin",
    "ResolutionContext",
    "TREE_SITTER_AVAILABLE",
    "TreeSitterPlugin",
    "TypeScriptPlugin",
]
