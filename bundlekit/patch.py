"""Ordered, capture-group aware regex rewriting that keeps position maps valid."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence
import re

from .errors import ConfigurationError, RewriteFailureError
from .position_map import Edit, PositionMap

Rewrite = Callable[..., str]

_FLAG_NAMES: Dict[str, int] = {
    "IGNORECASE": re.IGNORECASE,
    "MULTILINE": re.MULTILINE,
    "DOTALL": re.DOTALL,
    "VERBOSE": re.VERBOSE,
    "ASCII": re.ASCII,
}


def parse_flags(names: Iterable[str] | None) -> int:
    flags = 0
    for name in names or ():
        key = str(name).strip().upper()
        if key not in _FLAG_NAMES:
            raise ConfigurationError(f"Unknown regex flag '{name}'. Supported: {', '.join(sorted(_FLAG_NAMES))}")
        flags |= _FLAG_NAMES[key]
    return flags


@dataclass(slots=True)
class RewriteRule:
    """A named pattern plus a pure rewrite of its captured text.

    ``rewrite`` is either a callable receiving the whole match followed by each
    capture group (unmatched groups are ``None``), or a replacement template
    expanded like :meth:`re.Match.expand`.
    """

    name: str
    pattern: re.Pattern[str] | str
    rewrite: Rewrite | str
    flags: int = 0

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigurationError("Rewrite rules require a name")
        if isinstance(self.pattern, str):
            try:
                self.pattern = re.compile(self.pattern, self.flags)
            except re.error as exc:
                raise ConfigurationError(f"Rewrite rule '{self.name}' has an invalid pattern: {exc}") from exc
        elif self.flags:
            raise ConfigurationError(f"Rewrite rule '{self.name}': pass flags with a string pattern only")
        if self.pattern.search("") is not None:
            raise ConfigurationError(f"Rewrite rule '{self.name}' matches the empty string")
        if not callable(self.rewrite) and not isinstance(self.rewrite, str):
            raise ConfigurationError(f"Rewrite rule '{self.name}' needs a callable or a template string")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RewriteRule":
        name = data.get("name")
        pattern = data.get("pattern")
        replacement = data.get("replace", data.get("replacement"))
        if not name or not isinstance(name, str):
            raise ConfigurationError("Battery rules require a 'name'")
        if not pattern or not isinstance(pattern, str):
            raise ConfigurationError(f"Battery rule '{name}' requires a 'pattern' string")
        if not isinstance(replacement, str):
            raise ConfigurationError(f"Battery rule '{name}' requires a 'replace' string")
        raw_flags = data.get("flags")
        if isinstance(raw_flags, str):
            raw_flags = [raw_flags]
        return cls(name=name, pattern=pattern, rewrite=replacement, flags=parse_flags(raw_flags))

    def render(self, match: re.Match[str]) -> str:
        if isinstance(self.rewrite, str):
            return match.expand(self.rewrite)
        return self.rewrite(match.group(0), *match.groups())


@dataclass(frozen=True, slots=True)
class Battery:
    """An ordered, named set of rules written against one upstream output convention."""

    name: str
    rules: tuple[RewriteRule, ...]
    contract: str = ""

    def apply(self, text: str, *, position_map: PositionMap | None = None) -> "PatchResult":
        return apply(text, self.rules, position_map=position_map)

    def extended(self, rules: Iterable[RewriteRule], *, contract: str | None = None) -> "Battery":
        return Battery(name=self.name, rules=(*self.rules, *rules), contract=contract or self.contract)


@dataclass(slots=True)
class PatchResult:
    text: str
    position_map: PositionMap | None = None
    hits: Dict[str, int] = field(default_factory=dict)

    @property
    def total_hits(self) -> int:
        return sum(self.hits.values())

    def matched_rules(self) -> List[str]:
        return [name for name, count in self.hits.items() if count]


def _apply_rule(rule: RewriteRule, text: str) -> tuple[str, List[Edit], int]:
    pieces: List[str] = []
    edits: List[Edit] = []
    cursor = 0
    count = 0
    for match in rule.pattern.finditer(text):
        start, end = match.span()
        if start == end:
            raise RewriteFailureError(rule.name, match.group(0), start, "zero-width match")
        try:
            replacement = rule.render(match)
        except Exception as exc:
            raise RewriteFailureError(rule.name, match.group(0), start, str(exc) or type(exc).__name__) from exc
        if not isinstance(replacement, str):
            raise RewriteFailureError(
                rule.name, match.group(0), start, f"rewrite returned {type(replacement).__name__}, expected str"
            )
        count += 1
        pieces.append(text[cursor:start])
        pieces.append(replacement)
        cursor = end
        if replacement != match.group(0):
            edits.append(Edit(start=start, end=end, length=len(replacement)))
    if not count:
        return text, edits, 0
    pieces.append(text[cursor:])
    return "".join(pieces), edits, count


def apply(
    text: str,
    rules: Sequence[RewriteRule],
    *,
    position_map: PositionMap | None = None,
) -> PatchResult:
    """Apply ``rules`` in order; each rule sees the output of the previous ones."""

    current = text
    current_map = position_map
    hits: Dict[str, int] = {}
    for rule in rules:
        current, edits, count = _apply_rule(rule, current)
        hits[rule.name] = hits.get(rule.name, 0) + count
        if current_map is not None and edits:
            current_map = current_map.remap(edits)
    return PatchResult(text=current, position_map=current_map, hits=hits)


__all__ = [
    "Battery",
    "PatchResult",
    "Rewrite",
    "RewriteRule",
    "apply",
    "parse_flags",
]
