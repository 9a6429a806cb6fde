"""Top-level discovery orchestration."""

from __future__ import annotations

import dataclasses
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .assembler import ResultAssembler
from .concurrency import CancellationToken
from .config import DiscoveryConfig, load_config
from .errors import DiscoveryError, NoMatchError, ParseError
from .evaluator import CandidateEvaluator
from .loader import ModuleLoader
from .logging import get_logger
from .models import Candidate, CandidateReport, ResolvedTarget, Signature
from .plugins.registry import PluginRegistry
from .scanner import file_stem, iter_source_files, load_ignore_rules, relative_posix
from .scoring import ScoringEngine
from .signature import SignatureInput, normalize_signature

logger = get_logger("engine")

_FileResult = Tuple[List[Candidate], Optional[DiscoveryError]]


class DiscoveryEngine:
    """Walks a source tree, ranks candidates and resolves the best valid one.

    Collection is static: scanned files are parsed, never executed. Only
    resolution loads code, and it does so through :class:`ResultAssembler`.
    """

    def __init__(
        self,
        root: str | Path | None = None,
        config: DiscoveryConfig | None = None,
        *,
        registry: PluginRegistry | None = None,
        evaluator: CandidateEvaluator | None = None,
        loader: ModuleLoader | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if config is None:
            config = load_config(Path(root) if root is not None else Path.cwd())
        else:
            base = Path(root) if root is not None else config.root
            config = dataclasses.replace(config, root=base.resolve())
        self.config = config
        self.root = config.root
        self.registry = registry or PluginRegistry(config)
        self.scoring = ScoringEngine(config.scoring)
        self.evaluator = evaluator or CandidateEvaluator(config.security)
        self.loader = loader or ModuleLoader()
        self.assembler = ResultAssembler(
            config,
            registry=self.registry,
            evaluator=self.evaluator,
            loader=self.loader,
            clock=clock,
        )
        self._rules = load_ignore_rules(self.root, config.exclude_paths)
        self._errors_lock = threading.Lock()
        self.last_errors: List[DiscoveryError] = []

    # ------------------------------------------------------------------
    # Collection

    def collect_candidates(
        self,
        signature: SignatureInput,
        root_path: str | Path | None = None,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> List[Candidate]:
        """Return every scored candidate under ``root_path`` in rank order.

        Per-file parse failures are kept in :attr:`last_errors`.
        """
        normalized = normalize_signature(signature)
        candidates, errors = self._collect(normalized, root_path, cancel)
        with self._errors_lock:
            self.last_errors = errors
        return candidates

    def _collect(
        self,
        signature: Signature,
        root_path: str | Path | None,
        cancel: Optional[CancellationToken],
    ) -> Tuple[List[Candidate], List[DiscoveryError]]:
        root = Path(root_path).resolve() if root_path is not None else self.root
        rules = self._rules if root == self.root else load_ignore_rules(root, self.config.exclude_paths)

        work: List[Tuple[Path, Any]] = []
        for path in iter_source_files(
            root,
            skip_directories=self.config.skip_directories,
            rules=rules,
            max_depth=self.config.max_depth,
            cancel=cancel,
        ):
            plugin = self.registry.get_plugin_for_path(path)
            if plugin is None:
                continue
            if signature.language and _plugin_name(plugin) != signature.language:
                continue
            if not _should_scan(plugin, path):
                continue
            work.append((path, plugin))

        def _task(item: Tuple[Path, Any]) -> _FileResult:
            if cancel is not None:
                cancel.raise_if_cancelled()
            return self._candidates_for_file(item[0], item[1], signature, root)

        workers = max(1, min(self.config.concurrency, len(work)))
        if workers == 1:
            results = [_task(item) for item in work]
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="adaptive_tests") as pool:
                results = list(pool.map(_task, work))

        candidates: List[Candidate] = []
        errors: List[DiscoveryError] = []
        for file_candidates, error in results:
            candidates.extend(file_candidates)
            if error is not None:
                errors.append(error)
        candidates.sort(key=Candidate.sort_key)
        logger.debug(
            "Collected %d candidates from %d files under %s", len(candidates), len(work), root
        )
        return candidates, errors

    def _candidates_for_file(
        self, path: Path, plugin: Any, signature: Signature, root: Path
    ) -> _FileResult:
        language = _plugin_name(plugin)
        try:
            data = path.read_bytes()
        except OSError as exc:
            return [], ParseError(str(path), str(exc), language=language)

        try:
            return self._score_file(path, data, plugin, signature, root), None
        except ParseError as exc:
            logger.debug("%s", exc.message)
            return [], exc
        except Exception as exc:
            # Third-party plugins may raise anything; one file never aborts the walk.
            logger.debug("Plugin %s failed on %s: %r", language, path, exc)
            return [], ParseError(str(path), f"{type(exc).__name__}: {exc}", language=language)

    def _score_file(
        self, path: Path, data: bytes, plugin: Any, signature: Signature, root: Path
    ) -> List[Candidate]:
        language = _plugin_name(plugin)
        parse_or_raise = getattr(plugin, "parse_or_raise", None)
        if callable(parse_or_raise):
            metadata = parse_or_raise(path, data)
        else:
            metadata = plugin.parse_file(path)
            if metadata is None:
                raise ParseError(str(path), "plugin returned no metadata", language=language)

        content = data.decode("utf-8", errors="replace")
        relative = relative_posix(path, root)
        score_specific = getattr(plugin, "score_language_specific", None)
        candidates: List[Candidate] = []
        for entity in plugin.extract_candidates(metadata):
            candidate = Candidate(
                path=str(path),
                relative_path=relative,
                file_name=file_stem(path),
                language=language,
                entity=entity,
                metadata=metadata,
                content=content,
            )
            if callable(score_specific):
                candidate.language_adjustment = score_specific(entity, metadata, signature)
            breakdown = self.scoring.calculate_score_detailed(candidate, signature, content)
            if breakdown.loose_name and not self.config.scoring.allow_loose_name_match:
                continue
            candidate.breakdown = breakdown
            candidate.score = breakdown.total
            candidates.append(candidate)
        return candidates

    # ------------------------------------------------------------------
    # Resolution

    def discover_target(
        self, signature: SignatureInput, *, cancel: Optional[CancellationToken] = None
    ) -> Any:
        """Return the live value (or foreign descriptor) matching ``signature``."""
        return self.resolve(signature, cancel=cancel).value

    def resolve(
        self, signature: SignatureInput, *, cancel: Optional[CancellationToken] = None
    ) -> ResolvedTarget:
        """Resolve ``signature`` to a target plus the access path used to reach it.

        Raises :class:`NoMatchError` when no candidate validates, and
        :class:`DiscoveryCancelled` when ``cancel`` fires. Concurrent calls for
        the same signature share one resolution.
        """
        normalized = normalize_signature(signature)
        key = self.assembler.get_cache_key(normalized)
        if cancel is not None:
            cancel.raise_if_cancelled()
        return self.assembler.single_flight.run(key, lambda: self._resolve(normalized, key, cancel))

    def _resolve(
        self, signature: Signature, key: str, cancel: Optional[CancellationToken]
    ) -> ResolvedTarget:
        cached = self.assembler.try_get_cached_target(key, signature)
        if cached is not None:
            logger.debug("Cache hit for %s", cached.full_name)
            return cached

        candidates, parse_errors = self._collect(signature, None, cancel)
        with self._errors_lock:
            self.last_errors = parse_errors
        failures: List[DiscoveryError] = []
        threshold = self.config.scoring.min_candidate_score
        for candidate in candidates:
            if candidate.score <= threshold:
                break
            attempt = self.assembler.resolve_candidate(candidate, signature, cancel)
            if attempt.ok:
                self.assembler.store_resolution(key, attempt)
                logger.debug(
                    "Resolved %s from %s (score %.1f)",
                    attempt.target.full_name,
                    candidate.relative_path,
                    candidate.score,
                )
                return attempt.target
            if isinstance(attempt.error, DiscoveryError):
                failures.append(attempt.error)
        raise self._no_match(signature, candidates, failures + parse_errors)

    def _no_match(
        self,
        signature: Signature,
        candidates: Sequence[Candidate],
        failures: Sequence[DiscoveryError],
    ) -> NoMatchError:
        top = candidates[: self.config.report_limit]
        suggestion = self.evaluator.build_signature_suggestion(top[0]) if top else None
        return NoMatchError(
            signature.to_mapping(),
            [CandidateReport.from_candidate(candidate) for candidate in top],
            failures=failures,
            suggestion=suggestion,
            root=str(self.root),
        )

    def explain(self, signature: SignatureInput, limit: int | None = None) -> List[CandidateReport]:
        """Ranked candidate reports with score breakdowns, best first."""
        candidates = self.collect_candidates(signature)
        count = limit if limit is not None else self.config.report_limit
        return [CandidateReport.from_candidate(candidate) for candidate in candidates[:count]]

    def generate_test_content(
        self, target: ResolvedTarget, options: Mapping[str, Any] | None = None
    ) -> str:
        plugin = self.registry.get_plugin(target.language)
        if plugin is not None:
            try:
                return plugin.generate_test_content(target, options)
            except Exception as exc:
                logger.warning("Test scaffolding for %s failed: %s", target.full_name, exc)
        return f"# Adaptive test for {target.full_name} ({target.kind})\n"

    def clear_cache(self) -> None:
        self.assembler.clear()

    def stats(self) -> Dict[str, Any]:
        return {
            "root": str(self.root),
            "plugins": self.registry.get_stats(),
            "cache": self.assembler.stats(),
        }


def _plugin_name(plugin: Any) -> str:
    return str(getattr(plugin, "name", "") or type(plugin).__name__).lower()


def _should_scan(plugin: Any, path: Path) -> bool:
    should_scan = getattr(plugin, "should_scan_file", None)
    if callable(should_scan):
        return bool(should_scan(path))
    return path.name.lower().endswith(plugin.get_file_extension().lower())


_ENGINES: Dict[str, DiscoveryEngine] = {}
_ENGINES_LOCK = threading.Lock()


def get_discovery_engine(root: str | Path | None = None) -> DiscoveryEngine:
    """Return the shared engine for ``root``, creating it on first use."""
    resolved = Path(root or Path.cwd()).resolve()
    with _ENGINES_LOCK:
        engine = _ENGINES.get(str(resolved))
        if engine is None:
            engine = DiscoveryEngine(resolved)
            _ENGINES[str(resolved)] = engine
        return engine


def reset_discovery_engines() -> None:
    with _ENGINES_LOCK:
        _ENGINES.clear()


def discover(
    signature: SignatureInput,
    root_path: str | Path | None = None,
    config: DiscoveryConfig | None = None,
    *,
    cancel: Optional[CancellationToken] = None,
) -> Any:
    """Resolve ``signature`` under ``root_path`` (default: the working directory)."""
    if config is not None:
        engine = DiscoveryEngine(root_path, config)
    else:
        engine = get_discovery_engine(root_path)
    return engine.discover_target(signature, cancel=cancel)


__all__ = [
    "DiscoveryEngine",
    "discover",
    "get_discovery_engine",
    "reset_discovery_engines",
]
