"""Source tree walking, ignore rules and file fingerprints."""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence

from .concurrency import CancellationToken
from .models import Fingerprint

_EXCLUDED_FILES = {
    ".DS_Store",
    "Thumbs.db",
}


@dataclass
class IgnoreRule:
    """Represents an ignore rule parsed from .gitignore or ``exclude_paths``."""

    pattern: str
    directory_only: bool
    anchored: bool
    negate: bool
    has_slash: bool

    def matches(self, rel_path: str, is_dir: bool) -> bool:
        if not self.pattern:
            return False
        if self.directory_only and not is_dir:
            return False

        target = rel_path
        if self.anchored or self.has_slash:
            if fnmatchcase(target, self.pattern):
                return True
            if self.directory_only and target.startswith(f"{self.pattern}/"):
                return True
            return False

        for part in target.split("/"):
            if fnmatchcase(part, self.pattern):
                return True
        return False


def build_ignore_rule(pattern: str, negate: bool = False) -> IgnoreRule | None:
    pattern = pattern.strip()
    if not pattern:
        return None

    directory_only = pattern.endswith("/")
    if directory_only:
        pattern = pattern[:-1]

    anchored = pattern.startswith("/")
    if anchored:
        pattern = pattern[1:]

    has_slash = "/" in pattern
    return IgnoreRule(
        pattern=pattern,
        directory_only=directory_only,
        anchored=anchored,
        negate=negate,
        has_slash=has_slash,
    )


def _parse_gitignore(path: Path) -> List[IgnoreRule]:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return []

    rules: List[IgnoreRule] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        negate = line.startswith("!")
        if negate:
            line = line[1:]
        rule = build_ignore_rule(line, negate=negate)
        if rule is not None:
            rules.append(rule)
    return rules


def load_ignore_rules(root: Path, exclude_paths: Iterable[str] = ()) -> List[IgnoreRule]:
    """Combine the root ``.gitignore`` with configured exclusions."""
    rules = _parse_gitignore(root / ".gitignore")
    for pattern in exclude_paths:
        rule = build_ignore_rule(pattern)
        if rule is not None:
            rules.append(rule)
    return rules


def should_ignore(rel_path: str, is_dir: bool, rules: Sequence[IgnoreRule]) -> bool:
    ignored = False
    for rule in rules:
        if rule.matches(rel_path, is_dir):
            ignored = not rule.negate
    return ignored


def iter_source_files(
    root: Path,
    *,
    skip_directories: Iterable[str] = (),
    rules: Sequence[IgnoreRule] = (),
    max_depth: int | None = None,
    cancel: Optional[CancellationToken] = None,
) -> Iterator[Path]:
    """Yield files under ``root`` in deterministic (sorted) order.

    The cancellation token is checked once per directory visited.
    """
    skipped = set(skip_directories)
    for dirpath, dirnames, filenames in os.walk(root):
        if cancel is not None:
            cancel.raise_if_cancelled()
        current_dir = Path(dirpath)
        rel_dir = current_dir.relative_to(root).as_posix() if current_dir != root else ""
        depth = rel_dir.count("/") + 1 if rel_dir else 0

        filtered_dirs = []
        if max_depth is None or depth < max_depth:
            for name in sorted(dirnames):
                if name in skipped:
                    continue
                rel_path = f"{rel_dir}/{name}" if rel_dir else name
                if should_ignore(rel_path, True, rules):
                    continue
                filtered_dirs.append(name)
        dirnames[:] = filtered_dirs

        for filename in sorted(filenames):
            if filename in _EXCLUDED_FILES:
                continue
            rel_path = f"{rel_dir}/{filename}" if rel_dir else filename
            if should_ignore(rel_path, False, rules):
                continue
            yield current_dir / filename


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def fingerprint_file(path: Path, data: bytes | None = None) -> Fingerprint:
    """Return the fingerprint of ``path``; ``data`` avoids a second read."""
    stat_result = path.stat()
    if data is None:
        data = path.read_bytes()
    return Fingerprint(
        mtime_ns=stat_result.st_mtime_ns,
        size=stat_result.st_size,
        hash=hash_bytes(data),
    )


def file_stem(path: Path) -> str:
    """File name without its extension; ``.d.ts`` counts as one extension."""
    name = path.name
    if name.lower().endswith(".d.ts"):
        return name[:-5]
    return path.stem


def relative_posix(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


__all__ = [
    "IgnoreRule",
    "build_ignore_rule",
    "file_stem",
    "fingerprint_file",
    "hash_bytes",
    "iter_source_files",
    "load_ignore_rules",
    "relative_posix",
    "should_ignore",
]
