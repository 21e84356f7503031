"""YAML-driven content screening for candidate-supplied text.

Job descriptions and answers are screened before they are persisted or sent
to a provider. Each category in ``safety.yaml`` carries a severity and a set
of regexes; ``high`` and ``critical`` findings block the input. Allow lists
are keyed by the field being screened (``job_description``, ``answer``) so a
phrase can be legitimate in one field and rejected in another.
"""
from __future__ import annotations

import os
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import yaml

CONFIG_PATH = os.environ.get("SAFETY_CONFIG", str(Path(__file__).resolve().parent / "safety.yaml"))
BLOCKING_SEVERITIES = ("high", "critical")
EXCERPT_MARGIN = 20

DEFAULT_RULES: dict = {
    "version": 1,
    "precedence": ["injection", "repetition", "sensitive"],
    "categories": {
        "injection": {
            "severity": "high",
            "patterns": [
                r"ignore (all |any )?(previous|prior|above) (instructions|prompts)",
                r"disregard (the|your) (system|previous) (prompt|instructions)",
            ],
        },
        "repetition": {"severity": "high", "patterns": [r"(.{20,200})\1{3,}"]},
        "sensitive": {
            "severity": "low",
            "patterns": [r"credit card", r"social security", r"\bssn\b"],
        },
    },
    "allow_lists": {},
    "normalizers": ["strip_whitespace", "collapse_spaces", "to_lower"],
}


@dataclass
class ScreenHit:  # One pattern match inside the normalized text
    category: str
    pattern: str
    span: Tuple[int, int]
    excerpt: str


@dataclass
class ScreenResult:
    """Winning category (by precedence) and the hits that produced it."""

    category: Optional[str] = None
    severity: str = "info"
    hits: List[ScreenHit] = field(default_factory=list)
    allow_list_reason: Optional[str] = None

    @property
    def blocked(self) -> bool:
        return self.category is not None and self.severity in BLOCKING_SEVERITIES


@dataclass
class _Rules:
    precedence: List[str]
    severity: Dict[str, str]
    patterns: Dict[str, List[re.Pattern[str]]]
    allow_lists: Dict[str, set]
    normalizers: List[str]


class ContentScreen:  # Hot-reloading rule set read from YAML
    def __init__(self, path: str = CONFIG_PATH):
        self.path = path
        self._loaded_mtime = 0.0
        self._rules: Optional[_Rules] = None
        self.refresh(force=True)

    def refresh(self, force: bool = False) -> None:
        """Recompile the rules when the file on disk is newer than the loaded copy."""

        try:
            mtime = os.stat(self.path).st_mtime
        except FileNotFoundError:
            if self._rules is None or force:
                self._rules = self._compile(DEFAULT_RULES)
                self._loaded_mtime = time.time()
            return
        if not force and mtime <= self._loaded_mtime:
            return
        with open(self.path, "r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
        self._rules = self._compile(raw)
        self._loaded_mtime = mtime

    def _compile(self, raw: dict) -> _Rules:
        categories = raw.get("categories") or {}
        normalizers = list(raw.get("normalizers") or [])
        rules = _Rules(
            precedence=list(raw.get("precedence") or []),
            severity={name: (entry or {}).get("severity", "info") for name, entry in categories.items()},
            patterns={
                name: [re.compile(pattern, re.DOTALL) for pattern in (entry or {}).get("patterns", [])]
                for name, entry in categories.items()
            },
            allow_lists={},
            normalizers=normalizers,
        )
        rules.allow_lists = {
            tag: {_normalize(term, normalizers) for term in terms or []}
            for tag, terms in (raw.get("allow_lists") or {}).items()
        }
        return rules

    def _matches(self, sample: str) -> Iterator[Tuple[str, re.Match[str]]]:
        assert self._rules is not None
        for category, patterns in self._rules.patterns.items():
            for pattern in patterns:
                for match in pattern.finditer(sample):
                    yield category, match

    def _allowed_terms(self, fields: Sequence[str]) -> set:
        assert self._rules is not None
        terms: set = set()
        for tag in fields:
            terms |= self._rules.allow_lists.get(tag, set())
        return terms

    def screen(self, text: str, fields: Optional[Sequence[str]] = None) -> ScreenResult:
        self.refresh()
        assert self._rules is not None
        sample = _normalize(text or "", self._rules.normalizers)
        allowed_terms = self._allowed_terms(fields or [])

        hits: List[ScreenHit] = []
        waived: set = set()
        for category, match in self._matches(sample):
            token = match.group(0)
            if token in allowed_terms:
                waived.add(token)
                continue
            start, end = match.span()
            hits.append(
                ScreenHit(
                    category=category,
                    pattern=match.re.pattern,
                    span=(start, end),
                    excerpt=sample[max(0, start - EXCERPT_MARGIN) : end + EXCERPT_MARGIN],
                )
            )

        if not hits:
            reason = f"allow-listed: {', '.join(sorted(waived))}" if waived else None
            return ScreenResult(allow_list_reason=reason)

        rank = {name: index for index, name in enumerate(self._rules.precedence)}
        winner = min(hits, key=lambda hit: rank.get(hit.category, len(rank))).category
        return ScreenResult(
            category=winner,
            severity=self._rules.severity.get(winner, "info"),
            hits=[hit for hit in hits if hit.category == winner],
        )


def _normalize(text: str, ops: Sequence[str]) -> str:
    if "strip_whitespace" in ops:
        text = text.strip()
    if "collapse_spaces" in ops:
        text = re.sub(r"\s+", " ", text)
    if "to_lower" in ops:
        text = text.lower()
    return text


_screen: Optional[ContentScreen] = None


def content_screen() -> ContentScreen:
    global _screen
    if _screen is None:
        _screen = ContentScreen()
    return _screen


def screen_text(text: str, fields: Optional[Sequence[str]] = None) -> ScreenResult:
    """Screen ``text`` with the shared rule set."""

    return content_screen().screen(text, fields)


__all__ = [
    "BLOCKING_SEVERITIES",
    "ContentScreen",
    "ScreenHit",
    "ScreenResult",
    "content_screen",
    "screen_text",
]
