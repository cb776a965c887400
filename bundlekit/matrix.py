"""Expansion of package descriptors into per-format build jobs."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Sequence
import json
import posixpath

from .config_loader import PackageDescriptor
from .errors import ConfigurationError
from .formats import REGISTRY, FormatRegistry, FormatSpec
from .paths import OutputTable


@dataclass(frozen=True, slots=True)
class BuildJob:
    descriptor: PackageDescriptor
    format: FormatSpec
    input_path: str
    output_path: str
    externals: tuple[str, ...]

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def label(self) -> str:
        return f"{self.descriptor.name} [{self.format.id}]"

    @property
    def sourcemap(self) -> bool:
        return self.descriptor.sourcemap

    @property
    def bundler_externals(self) -> tuple[str, ...]:
        """Externals the bundler must leave as imports; bundled formats inline them."""

        return self.externals if self.format.linked else ()


@dataclass(slots=True)
class BuildMatrix:
    """Jobs in descriptor-major order plus every descriptor name encountered."""

    jobs: List[BuildJob] = field(default_factory=list)
    names: List[str] = field(default_factory=list)

    def __iter__(self):
        return iter(self.jobs)

    def __len__(self) -> int:
        return len(self.jobs)

    def select(self, names: Iterable[str]) -> List[BuildJob]:
        wanted = [name for name in names if name]
        if not wanted:
            return list(self.jobs)
        unknown = [name for name in wanted if name not in self.names]
        if unknown:
            available = ", ".join(self.names) or "<none>"
            raise ConfigurationError(f"Unknown bundle(s): {', '.join(unknown)}. Available bundles: {available}")
        selected = set(wanted)
        return [job for job in self.jobs if job.name in selected]

    def output_table(self) -> OutputTable:
        return OutputTable.from_jobs(self.jobs)

    def grouped(self) -> Dict[str, List[BuildJob]]:
        groups: Dict[str, List[BuildJob]] = {name: [] for name in self.names}
        for job in self.jobs:
            groups[job.name].append(job)
        return groups

    def serialize(self, jobs: Sequence[BuildJob] | None = None) -> str:
        data: List[Dict[str, Any]] = [
            {
                "name": job.name,
                "format": job.format.id,
                "linked": job.format.linked,
                "input": job.input_path,
                "output": job.output_path,
                "externals": list(job.externals),
            }
            for job in (self.jobs if jobs is None else jobs)
        ]
        return json.dumps(data, indent=2)


def output_path_for(descriptor: PackageDescriptor, format_spec: FormatSpec, *, output_root: str = ".") -> str:
    """Naming convention shared by every job: ``<root>/<format dir>/<dest>/<name><ext>``."""

    parts = [output_root or ".", format_spec.directory]
    if descriptor.dest:
        parts.append(descriptor.dest)
    parts.append(f"{descriptor.name}{format_spec.extension}")
    return posixpath.normpath(posixpath.join(*parts))


def _validate(descriptors: Sequence[PackageDescriptor], registry: FormatRegistry) -> None:
    names: set[str] = set()
    specifiers: Dict[str, str] = {}
    for descriptor in descriptors:
        if not descriptor.name or not descriptor.name.strip():
            raise ConfigurationError("Bundle descriptors require a non-empty name")
        if not descriptor.input or not descriptor.input.strip():
            raise ConfigurationError(f"Bundle '{descriptor.name}' has an empty input path")
        if descriptor.name in names:
            raise ConfigurationError(f"Duplicate bundle name '{descriptor.name}'")
        names.add(descriptor.name)
        owner = specifiers.get(descriptor.specifier)
        if owner is not None:
            raise ConfigurationError(
                f"Bundles '{owner}' and '{descriptor.name}' share the specifier '{descriptor.specifier}'"
            )
        specifiers[descriptor.specifier] = descriptor.name
        for format_id in descriptor.formats:
            spec = registry.get(format_id)
            if not spec.linked and not descriptor.global_name:
                raise ConfigurationError(
                    f"Bundle '{descriptor.name}' builds the bundled format '{spec.id}' but declares no global name"
                )


def expand(
    descriptors: Iterable[PackageDescriptor],
    *,
    registry: FormatRegistry = REGISTRY,
    output_root: str = ".",
) -> BuildMatrix:
    """Expand descriptors into jobs, descriptor by descriptor, formats in declared order.

    Every descriptor is validated before the first job is created. Externals are
    carried through untouched; resolving them needs the complete matrix.
    """

    descriptor_list = list(descriptors)
    _validate(descriptor_list, registry)

    matrix = BuildMatrix()
    outputs: Dict[str, str] = {}
    for descriptor in descriptor_list:
        matrix.names.append(descriptor.name)
        for format_id in descriptor.formats:
            spec = registry.get(format_id)
            output_path = output_path_for(descriptor, spec, output_root=output_root)
            owner = outputs.get(output_path)
            if owner is not None:
                raise ConfigurationError(
                    f"Output path '{output_path}' is produced by both {owner} and {descriptor.name} [{spec.id}]"
                )
            outputs[output_path] = f"{descriptor.name} [{spec.id}]"
            matrix.jobs.append(
                BuildJob(
                    descriptor=descriptor,
                    format=spec,
                    input_path=descriptor.input,
                    output_path=output_path,
                    externals=tuple(descriptor.externals),
                )
            )
    return matrix


__all__ = ["BuildJob", "BuildMatrix", "expand", "output_path_for"]
