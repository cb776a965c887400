"""Placeholder resolution for tool arguments and configured paths."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping
import re


_PLACEHOLDER_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")
_SINGLE_PLACEHOLDER_PATTERN = re.compile(r"^\s*\{\{([^{}]+)\}\}\s*$")


class TemplateError(ValueError):
    """Raised when template resolution fails."""


@dataclass(slots=True)
class TemplateResolver:
    """Resolves ``{{dotted.path}}`` placeholders against a nested mapping context."""

    context: Mapping[str, Any]
    _cache: dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    def resolve(self, value: Any) -> Any:
        if isinstance(value, str):
            return self._resolve_string(value)
        if isinstance(value, list):
            return [self.resolve(item) for item in value]
        if isinstance(value, tuple):
            return tuple(self.resolve(item) for item in value)
        if isinstance(value, dict):
            return {key: self.resolve(val) for key, val in value.items()}
        return value

    def resolve_arguments(self, values: Iterable[Any]) -> List[str]:
        """Resolve an argument list, splicing placeholders that resolve to sequences."""

        arguments: List[str] = []
        for value in values:
            resolved = self.resolve(value)
            if isinstance(resolved, (list, tuple)):
                arguments.extend(str(item) for item in resolved)
            elif resolved is None:
                continue
            else:
                arguments.append(str(resolved))
        return arguments

    def _resolve_string(self, value: str) -> Any:
        single = _SINGLE_PLACEHOLDER_PATTERN.match(value)
        if single:
            return self._lookup(single.group(1).strip())
        if not _PLACEHOLDER_PATTERN.search(value):
            return value

        def replacement(match: re.Match[str]) -> str:
            result = self._lookup(match.group(1).strip())
            if isinstance(result, (list, tuple)):
                return ",".join(str(item) for item in result)
            return "" if result is None else str(result)

        return _PLACEHOLDER_PATTERN.sub(replacement, value)

    def _lookup(self, path: str) -> Any:
        if path in self._cache:
            return self._cache[path]
        current: Any = self.context
        for part in path.split("."):
            if isinstance(current, Mapping) and part in current:
                current = current[part]
                continue
            raise TemplateError(f"Cannot resolve path '{path}' in template context")
        self._cache[path] = current
        return current


def extract_placeholders(value: Any) -> set[str]:
    """Collect all template placeholder paths referenced within *value*."""

    placeholders: set[str] = set()

    def _collect(obj: Any) -> None:
        if isinstance(obj, str):
            for match in _PLACEHOLDER_PATTERN.finditer(obj):
                path = match.group(1).strip()
                if path:
                    placeholders.add(path)
            return
        if isinstance(obj, Mapping):
            for item in obj.values():
                _collect(item)
            return
        if isinstance(obj, (list, tuple)):
            for item in obj:
                _collect(item)

    _collect(value)
    return placeholders


__all__ = ["TemplateError", "TemplateResolver", "extract_placeholders"]
