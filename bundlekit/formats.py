"""Registry of the supported output formats."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator

from .errors import UnknownFormatError

ESM = "esm"
CJS = "cjs"
UMD = "umd"
IIFE = "iife"


@dataclass(frozen=True, slots=True)
class FormatSpec:
    """Static description of one output format.

    ``linked`` formats keep externals as import/require specifiers that must be
    resolved to real paths; bundled formats inline everything.
    """

    id: str
    extension: str
    linked: bool
    directory: str
    battery: str


class FormatRegistry:
    def __init__(self, specs: Iterable[FormatSpec]) -> None:
        self._specs: Dict[str, FormatSpec] = {}
        for spec in specs:
            if spec.id in self._specs:
                raise ValueError(f"Duplicate format id: {spec.id}")
            self._specs[spec.id] = spec

    def __contains__(self, format_id: object) -> bool:
        return format_id in self._specs

    def __iter__(self) -> Iterator[FormatSpec]:
        return iter(self._specs.values())

    def ids(self) -> tuple[str, ...]:
        return tuple(self._specs)

    def get(self, format_id: str | FormatSpec) -> FormatSpec:
        key = format_id.id if isinstance(format_id, FormatSpec) else str(format_id)
        spec = self._specs.get(key)
        if spec is None:
            raise UnknownFormatError(key, self.ids())
        return spec

    def extension_for(self, format_id: str | FormatSpec) -> str:
        return self.get(format_id).extension

    def is_linked(self, format_id: str | FormatSpec) -> bool:
        return self.get(format_id).linked


REGISTRY = FormatRegistry(
    [
        FormatSpec(id=ESM, extension=".js", linked=True, directory="module", battery="linked-module"),
        FormatSpec(id=CJS, extension=".cjs", linked=True, directory="dist", battery="linked-commonjs"),
        FormatSpec(id=UMD, extension=".js", linked=False, directory="dist", battery="bundled-global"),
        FormatSpec(id=IIFE, extension=".min.js", linked=False, directory="dist", battery="bundled-global"),
    ]
)


def get_format(format_id: str | FormatSpec) -> FormatSpec:
    return REGISTRY.get(format_id)


def extension_for(format_id: str | FormatSpec) -> str:
    return REGISTRY.extension_for(format_id)


def is_linked(format_id: str | FormatSpec) -> bool:
    return REGISTRY.is_linked(format_id)


__all__ = [
    "CJS",
    "ESM",
    "FormatRegistry",
    "FormatSpec",
    "IIFE",
    "REGISTRY",
    "UMD",
    "extension_for",
    "get_format",
    "is_linked",
]
