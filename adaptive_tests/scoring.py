"""Pure, deterministic candidate scoring."""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable, List, Optional, Sequence

from .config import ScoringConfig
from .models import Candidate, ScoreBreakdown, Signature
from .signature import name_tokens, squash_name as _squash

_TYPE_MARKERS = {
    "class": re.compile(r"\b(class|interface|struct)\s+[A-Za-z_$]"),
    "function": re.compile(r"\b(def|function|func|fn)\b\s*[A-Za-z_$(]|=>"),
    "module": re.compile(r"^\s*(import|from|export|package|module\.exports)\b", re.MULTILINE),
    "object": re.compile(r"[=:]\s*\{|\bdict\(|\bnew\s+[A-Z]"),
}


@lru_cache(maxsize=512)
def _identifier_pattern(name: str) -> "re.Pattern[str]":
    return re.compile(rf"(?<![A-Za-z0-9_$]){re.escape(name)}(?![A-Za-z0-9_$])")


class ScoringEngine:
    """Turns a candidate's static features into a score and an explanation.

    Every ``score_*`` method is a pure function of its arguments and the
    weights captured at construction.
    """

    def __init__(self, config: ScoringConfig | None = None) -> None:
        self.config = config or ScoringConfig()

    def calculate_score(
        self, candidate: Candidate, signature: Signature, content: Optional[str] = None
    ) -> float:
        return self.calculate_score_detailed(candidate, signature, content).total

    def calculate_score_detailed(
        self, candidate: Candidate, signature: Signature, content: Optional[str] = None
    ) -> ScoreBreakdown:
        breakdown = ScoreBreakdown()
        details = breakdown.details

        breakdown.path = self.score_path(candidate.relative_path, details)
        breakdown.extension = self.score_extension(candidate.path)
        if breakdown.extension:
            details.append(f"extension {candidate.extension}: {breakdown.extension:+g}")

        breakdown.file_name = self.score_file_name(candidate.file_name, signature)
        if breakdown.file_name:
            details.append(f"file name {candidate.file_name!r}: {breakdown.file_name:+g}")

        text = content if content is not None else candidate.content
        breakdown.type_hints = self.score_type_hints(text, signature)
        if breakdown.type_hints:
            details.append(f"type hint {signature.type}: {breakdown.type_hints:+g}")

        members: Sequence[str] = candidate.entity.methods + candidate.entity.properties
        breakdown.methods = self.score_method_mentions(text, signature.methods, members)
        if breakdown.methods:
            details.append(f"method mentions: {breakdown.methods:+g}")
        breakdown.properties = self.score_property_mentions(text, signature.properties, members)
        if breakdown.properties:
            details.append(f"property mentions: {breakdown.properties:+g}")

        breakdown.language = candidate.language_adjustment
        if breakdown.language:
            details.append(f"{candidate.language} adjustments: {breakdown.language:+g}")

        breakdown.loose_name = self.score_loose_name(candidate, signature)
        if breakdown.loose_name:
            details.append(f"loose name match: {breakdown.loose_name:+g}")
        return breakdown

    def score_path(self, path: str, details: Optional[List[str]] = None) -> float:
        """First positive rule plus first negative rule; never cumulative within a list."""
        normalized = path.replace("\\", "/")
        if not normalized.startswith("/"):
            normalized = f"/{normalized}"
        lowered = normalized.lower()
        score = 0.0
        for rules in (self.config.paths.positive, self.config.paths.negative):
            for fragment, weight in rules.items():
                if fragment.lower() in lowered:
                    score += weight
                    if details is not None:
                        details.append(f"path contains {fragment}: {weight:+g}")
                    break
        return score

    def score_extension(self, path: str) -> float:
        dot = path.rfind(".")
        if dot <= max(path.rfind("/"), path.rfind("\\")):
            return 0.0
        return self.config.extensions.get(path[dot:].lower(), 0.0)

    def score_file_name(self, file_name: str, signature: Signature) -> float:
        weights = self.config.file_name
        pattern = signature.name_pattern
        if pattern is not None:
            return weights.regex_match if pattern.search(file_name) else 0.0
        name = signature.name_text
        if not name or not file_name:
            return 0.0
        if file_name == name:
            return weights.exact_match
        if file_name.lower() == name.lower() or _squash(file_name) == _squash(name):
            return weights.case_insensitive
        squashed_file, squashed_name = _squash(file_name), _squash(name)
        if squashed_file and squashed_name and (
            squashed_name in squashed_file or squashed_file in squashed_name
        ):
            return weights.partial_match
        return 0.0

    def score_type_hints(self, content: Optional[str], signature: Signature) -> float:
        if not content or not signature.type:
            return 0.0
        marker = _TYPE_MARKERS.get(signature.type)
        if marker is None or not marker.search(content):
            return 0.0
        return self.config.type_hints.get(signature.type, 0.0)

    def score_method_mentions(
        self,
        content: Optional[str],
        methods: Sequence[str],
        members: Iterable[str] = (),
    ) -> float:
        weights = self.config.methods
        return _mention_score(content, methods, members, weights.per_mention, weights.max_mentions)

    def score_property_mentions(
        self,
        content: Optional[str],
        properties: Sequence[str],
        members: Iterable[str] = (),
    ) -> float:
        weights = self.config.properties
        return _mention_score(content, properties, members, weights.per_mention, weights.max_mentions)

    def score_loose_name(self, candidate: Candidate, signature: Signature) -> float:
        """Penalty applied when neither the file nor the entity shares a name token."""
        if not self.quick_name_check(candidate, signature):
            return self.config.loose_name_penalty
        return 0.0

    def quick_name_check(self, candidate: Candidate, signature: Signature) -> bool:
        pattern = signature.name_pattern
        if pattern is not None:
            return bool(pattern.search(candidate.file_name) or pattern.search(candidate.entity.name))
        name = signature.name_text
        if not name and not signature.exports:
            return True
        haystacks = (_squash(candidate.file_name), _squash(candidate.entity.name))
        tokens = name_tokens(name) if name else []
        if signature.exports:
            tokens.append(_squash(signature.exports))
        return any(token and token in haystack for token in tokens for haystack in haystacks)


def _mention_score(
    content: Optional[str],
    names: Sequence[str],
    members: Iterable[str],
    per_mention: float,
    max_mentions: int,
) -> float:
    if not names:
        return 0.0
    known = set(members)
    matched = 0
    for name in names:
        if name in known or (content and _identifier_pattern(name).search(content)):
            matched += 1
    return min(matched, max_mentions) * per_mention


__all__ = ["ScoringEngine"]
