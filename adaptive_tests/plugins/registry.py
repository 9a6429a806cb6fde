"""Registry mapping extensions and names to language plugin instances."""

from __future__ import annotations

from importlib import metadata
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..config import DiscoveryConfig
from ..errors import PluginRegistrationError
from ..logging import get_logger
from .base import LanguagePlugin
from .java import JavaPlugin
from .javascript import JavaScriptPlugin, TypeScriptPlugin
from .python import PythonPlugin

ENTRY_POINT_GROUP = "adaptive_tests.plugins"

REQUIRED_METHODS = ("get_file_extension", "parse_file", "extract_candidates", "generate_test_content")

_BUILTIN_PLUGINS: Dict[str, Callable[..., LanguagePlugin]] = {
    "python": PythonPlugin,
    "javascript": JavaScriptPlugin,
    "typescript": TypeScriptPlugin,
    "java": JavaPlugin,
}

logger = get_logger("plugins.registry")


class PluginRegistry:
    """Owns the plugin instances for one discovery engine.

    Built-ins are registered first, then plugins published under the
    ``adaptive_tests.plugins`` entry-point group; a later registration for the
    same extension replaces the earlier one.
    """

    def __init__(
        self,
        config: DiscoveryConfig | None = None,
        *,
        load_builtins: bool = True,
        load_entry_points: bool = True,
    ) -> None:
        self.config = config or DiscoveryConfig()
        self._load_builtins = load_builtins
        self._load_entry_points = load_entry_points
        self._by_name: Dict[str, Any] = {}
        self._by_extension: Dict[str, Any] = {}
        self._origins: Dict[str, Optional[str]] = {}
        self._rejected: List[str] = []
        self._skipped: List[str] = []
        self._populate()

    def _populate(self) -> None:
        if self._load_builtins:
            self.register_builtins()
        if self._load_entry_points:
            self.register_entry_points()

    def register_builtins(self) -> None:
        for name, factory in _BUILTIN_PLUGINS.items():
            available = getattr(factory, "is_available", None)
            if callable(available) and not available():
                logger.debug("Language plugin '%s' unavailable; grammar not installed", name)
                self._skipped.append(name)
                continue
            self.register_plugin(name, factory, origin_path=f"builtin:{name}")

    def register_entry_points(self) -> None:
        for entry in _iter_entry_points():
            try:
                loaded = entry.load()
            except Exception as exc:
                logger.warning("Failed to load language plugin entry point '%s': %s", entry.name, exc)
                self._rejected.append(entry.name)
                continue
            try:
                self.register_plugin(entry.name, loaded, origin_path=entry.value)
            except PluginRegistrationError as exc:
                logger.warning("%s", exc)

    def register_plugin(self, name: str, plugin: Any, origin_path: str | None = None) -> Optional[Any]:
        """Construct and validate a plugin; returns ``None`` if it is disabled.

        Raises :class:`PluginRegistrationError` when the instance does not
        expose the required methods. Rejected plugins are not registered.
        """
        key = name.lower()
        if self.is_plugin_disabled(key):
            logger.debug("Language plugin '%s' is disabled by configuration", key)
            self._skipped.append(key)
            return None

        instance = self._instantiate(key, plugin, origin_path)
        missing = [method for method in REQUIRED_METHODS if not callable(getattr(instance, method, None))]
        if missing:
            self._rejected.append(key)
            raise PluginRegistrationError(
                key, f"missing required methods: {', '.join(missing)}", origin=origin_path
            )

        previous = self._by_name.get(key)
        if previous is not None:
            for extension, owner in list(self._by_extension.items()):
                if owner is previous:
                    del self._by_extension[extension]
        self._by_name[key] = instance
        self._origins[key] = origin_path
        for extension in _extensions_of(instance):
            owner = self._by_extension.get(extension)
            if owner is not None and owner is not instance:
                logger.debug("Extension %s now handled by '%s'", extension, key)
            self._by_extension[extension] = instance
        return instance

    def _instantiate(self, name: str, plugin: Any, origin_path: str | None) -> Any:
        if isinstance(plugin, type):
            try:
                if issubclass(plugin, LanguagePlugin):
                    return plugin(self.config.language(name))
                return plugin()
            except Exception as exc:
                self._rejected.append(name)
                raise PluginRegistrationError(name, f"constructor failed: {exc}", origin=origin_path) from exc
        if callable(plugin) and not any(callable(getattr(plugin, m, None)) for m in REQUIRED_METHODS):
            try:
                return plugin()
            except Exception as exc:
                self._rejected.append(name)
                raise PluginRegistrationError(name, f"factory failed: {exc}", origin=origin_path) from exc
        return plugin

    def is_plugin_disabled(self, name: str) -> bool:
        key = name.lower()
        plugins = self.config.plugins
        if key in plugins.disabled:
            return True
        if plugins.enabled and key not in plugins.enabled:
            return True
        language = self.config.languages.get(key)
        return language is not None and not language.enabled

    def get_plugin(self, name: str) -> Optional[Any]:
        return self._by_name.get(name.lower())

    def get_plugin_for_extension(self, extension: str) -> Optional[Any]:
        extension = extension.lower()
        if not extension.startswith("."):
            extension = f".{extension}"
        return self._by_extension.get(extension)

    def get_plugin_for_path(self, path: Path) -> Optional[Any]:
        """Longest registered suffix wins (``.d.ts`` before ``.ts``)."""
        name = path.name.lower()
        best: Optional[str] = None
        for extension in self._by_extension:
            if name.endswith(extension) and (best is None or len(extension) > len(best)):
                best = extension
        return self._by_extension[best] if best is not None else None

    def plugins(self) -> List[Any]:
        return list(self._by_name.values())

    def names(self) -> List[str]:
        return list(self._by_name)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "plugins": len(self._by_name),
            "extensions": len(self._by_extension),
            "registered": sorted(self._by_name),
            "origins": dict(self._origins),
            "skipped": sorted(set(self._skipped)),
            "rejected": sorted(set(self._rejected)),
        }

    def reset_for_testing(self) -> None:
        """Drop every registration and rebuild from built-ins and entry points."""
        self._by_name.clear()
        self._by_extension.clear()
        self._origins.clear()
        self._rejected.clear()
        self._skipped.clear()
        self._populate()


def _extensions_of(instance: Any) -> List[str]:
    getter = getattr(instance, "get_extensions", None)
    extensions = list(getter()) if callable(getter) else [instance.get_file_extension()]
    return [ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in extensions if ext]


def _iter_entry_points() -> Iterable[metadata.EntryPoint]:
    try:
        return metadata.entry_points(group=ENTRY_POINT_GROUP)
    except Exception:  # pragma: no cover - defensive guard
        return []


__all__ = ["ENTRY_POINT_GROUP", "PluginRegistry", "REQUIRED_METHODS"]
