"""Cross-artifact import path resolution for linked formats."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterable, List
import posixpath

from .errors import ConfigurationError, UnresolvedDependencyError
from .formats import REGISTRY, FormatRegistry, FormatSpec

if TYPE_CHECKING:  # pragma: no cover
    from .matrix import BuildJob


def _split(path: str) -> tuple[bool, List[str]]:
    normalized = posixpath.normpath(path.replace("\\", "/"))
    absolute = normalized.startswith("/")
    parts = [part for part in normalized.split("/") if part and part != "."]
    return absolute, parts


def relative_import_path(from_output_path: str, target_output_path: str) -> str:
    """Return the specifier that imports ``target_output_path`` from ``from_output_path``.

    Same-directory and downward references get an explicit ``./`` prefix;
    upward references start with ``../`` and never carry a ``./`` in front.
    """

    from_absolute, from_parts = _split(from_output_path)
    target_absolute, target_parts = _split(target_output_path)
    if from_absolute != target_absolute:
        raise ValueError(
            f"Cannot relate '{from_output_path}' and '{target_output_path}': one is absolute, the other is not"
        )
    if not target_parts:
        raise ValueError(f"Target path '{target_output_path}' does not name a file")

    from_dir = from_parts[:-1]
    common = 0
    for left, right in zip(from_dir, target_parts[:-1]):
        if left != right:
            break
        common += 1

    remaining_dir = from_dir[common:]
    if ".." in remaining_dir:
        raise ValueError(f"Cannot compute a path out of '{from_output_path}': its directory climbs above the root")

    ups = [".."] * len(remaining_dir)
    relative = "/".join([*ups, *target_parts[common:]])
    if ups:
        return relative
    return f"./{relative}"


@dataclass(slots=True)
class OutputTable:
    """Read-only table of every job's output path keyed by (specifier, format id)."""

    paths: Dict[tuple[str, str], str] = field(default_factory=dict)

    @classmethod
    def from_jobs(cls, jobs: Iterable["BuildJob"]) -> "OutputTable":
        paths: Dict[tuple[str, str], str] = {}
        for job in jobs:
            key = (job.descriptor.specifier, job.format.id)
            existing = paths.get(key)
            if existing is not None and existing != job.output_path:
                raise ConfigurationError(
                    f"Specifier '{key[0]}' maps to both '{existing}' and '{job.output_path}' for format '{key[1]}'"
                )
            paths[key] = job.output_path
        return cls(paths=paths)

    def __len__(self) -> int:
        return len(self.paths)

    def lookup(self, identifier: str, format_id: str) -> str:
        try:
            return self.paths[(identifier, format_id)]
        except KeyError:
            raise UnresolvedDependencyError(identifier, format_id) from None


def resolve(
    from_output_path: str,
    dependency: str,
    table: OutputTable,
    format: str | FormatSpec,
    *,
    registry: FormatRegistry = REGISTRY,
) -> str:
    """Resolve ``dependency`` to the path the artifact at ``from_output_path`` must import."""

    spec = registry.get(format)
    if not spec.linked:
        raise ValueError(f"Format '{spec.id}' inlines its externals; nothing to resolve")
    try:
        target = table.lookup(dependency, spec.id)
    except UnresolvedDependencyError:
        raise UnresolvedDependencyError(dependency, spec.id, from_path=from_output_path) from None
    return relative_import_path(from_output_path, target)


__all__ = ["OutputTable", "relative_import_path", "resolve"]
