"""Executes Python candidate files through the import system."""

from __future__ import annotations

import importlib.abc
import importlib.util
import os
import sys
import threading
import types
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .concurrency import SingleFlight
from .errors import LoadError
from .logging import get_logger
from .scanner import hash_bytes

logger = get_logger("loader")

_SYNTHETIC_PREFIX = "adaptive_tests_loaded"


class _CheckedSourceLoader(importlib.abc.SourceLoader):
    """Serves the already safety-checked bytes instead of re-reading the file.

    No bytecode is read or written for these modules.
    """

    def __init__(self, fullname: str, path: str, source: bytes) -> None:
        self.name = fullname
        self.path = path
        self._source = source

    def get_filename(self, fullname: str) -> str:
        return self.path

    def get_data(self, path: str) -> bytes:
        if path != self.path:
            raise OSError(f"{path} is not served by this loader")
        return self._source

    def is_package(self, fullname: str) -> bool:
        return Path(self.path).stem == "__init__"


class ModuleLoader:
    """Loads each ``(path, content hash)`` at most once per process.

    Files that live inside a package (an ``__init__.py`` chain) are imported
    under their dotted name with the package root's parent on ``sys.path`` so
    relative imports resolve. Standalone files get a synthetic module name and
    their directory on ``sys.path`` for sibling imports. Loading executes the
    exact bytes handed in, which are the bytes the caller safety-checked.
    """

    def __init__(self) -> None:
        self._modules: Dict[Tuple[str, str], types.ModuleType] = {}
        self._flight = SingleFlight()
        self._lock = threading.Lock()
        self._load_count = 0
        self._failures = 0
        self._added_paths: List[str] = []

    @property
    def load_count(self) -> int:
        return self._load_count

    def load(self, path: Path, source: bytes) -> types.ModuleType:
        """Return the module for ``path`` built from ``source``. Raises :class:`LoadError`."""
        resolved = path.resolve()
        key = (str(resolved), hash_bytes(source))
        with self._lock:
            cached = self._modules.get(key)
        if cached is not None:
            return cached
        return self._flight.run(key, lambda: self._load(resolved, source, key))

    def _load(self, path: Path, source: bytes, key: Tuple[str, str]) -> types.ModuleType:
        with self._lock:
            cached = self._modules.get(key)
        if cached is not None:
            return cached

        name, search_path = module_name_for(path, key[1])
        existing = sys.modules.get(name)
        if existing is not None and existing not in self._modules.values() and _same_file(existing, path):
            logger.debug("Reusing already imported module %s", name)
            with self._lock:
                self._modules[key] = existing
            return existing

        loader = _CheckedSourceLoader(name, str(path), source)
        spec = importlib.util.spec_from_file_location(name, path, loader=loader)
        if spec is None:
            raise LoadError(str(path), "no import spec could be created")
        module = importlib.util.module_from_spec(spec)
        self._ensure_on_path(search_path)

        sys.modules[name] = module
        with self._lock:
            self._load_count += 1
        logger.debug("Loading %s as %s", path, name)
        try:
            spec.loader.exec_module(module)
        except (Exception, SystemExit) as exc:
            if existing is not None:
                sys.modules[name] = existing
            else:
                sys.modules.pop(name, None)
            with self._lock:
                self._failures += 1
            raise LoadError(str(path), f"{type(exc).__name__}: {exc}") from exc

        with self._lock:
            self._modules[key] = module
        return module

    def _ensure_on_path(self, entry: str) -> None:
        with self._lock:
            if entry in sys.path:
                return
            sys.path.insert(0, entry)
            self._added_paths.append(entry)

    def forget(self, path: Path) -> None:
        """Drop every cached module for ``path`` so the next load re-executes it."""
        target = str(path.resolve())
        with self._lock:
            for key in [key for key in self._modules if key[0] == target]:
                module = self._modules.pop(key)
                if sys.modules.get(module.__name__) is module:
                    sys.modules.pop(module.__name__, None)

    def clear(self) -> None:
        with self._lock:
            for module in self._modules.values():
                if sys.modules.get(module.__name__) is module:
                    sys.modules.pop(module.__name__, None)
            self._modules.clear()
            for entry in self._added_paths:
                if entry in sys.path:
                    sys.path.remove(entry)
            self._added_paths.clear()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "loads": self._load_count,
                "failures": self._failures,
                "modules": len(self._modules),
                "in_flight": self._flight.in_flight(),
            }


def package_root(path: Path) -> Tuple[List[str], Path]:
    """Return the ``__init__.py`` package chain above ``path`` and the directory holding it."""
    parts: List[str] = []
    directory = path.parent
    while (directory / "__init__.py").is_file() and directory.name.isidentifier():
        parts.insert(0, directory.name)
        if directory.parent == directory:
            break
        directory = directory.parent
    return parts, directory


def module_name_for(path: Path, digest: str) -> Tuple[str, str]:
    """Return ``(module name, sys.path entry)`` used to import ``path``."""
    parts, directory = package_root(path)
    stem = path.stem
    if parts and stem.isidentifier():
        dotted = ".".join(parts if stem == "__init__" else parts + [stem])
        return dotted, str(directory)

    safe_stem = "".join(ch if ch.isalnum() or ch == "_" else "_" for ch in stem)
    return f"{_SYNTHETIC_PREFIX}_{safe_stem}_{digest[:12]}", str(path.parent)


def _same_file(module: types.ModuleType, path: Path) -> bool:
    location: Optional[str] = getattr(module, "__file__", None)
    if not location:
        return False
    try:
        return os.path.samefile(location, path)
    except OSError:
        return False


__all__ = ["ModuleLoader", "module_name_for", "package_root"]
