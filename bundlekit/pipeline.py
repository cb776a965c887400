"""Post-processing of raw bundler output into final artifacts."""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Sequence
import json
import os
import re
import tempfile

from .batteries import BUILTIN_BATTERIES, battery_for, import_rewrite_rule
from .bundler import Bundler
from .console import Console
from .formats import REGISTRY, FormatRegistry
from .matrix import BuildJob
from .patch import Battery, apply
from .paths import OutputTable, resolve
from .position_map import PositionMap

_TRAILER = re.compile(r"\n?//# sourceMappingURL=(\S+)[ \t\r\n]*\Z")


def split_trailer(text: str) -> tuple[str, str | None]:
    """Split a trailing ``sourceMappingURL`` comment off ``text``."""

    match = _TRAILER.search(text)
    if match is None:
        return text, None
    return text[: match.start()], match.group(1)


def render(text: str, position_map: PositionMap | None, name: str) -> tuple[str, str | None]:
    """Return the final file text for artifact ``name`` and its serialized map, if any."""

    if position_map is None:
        return text, None
    payload = position_map.with_file(name).to_sourcemap(text)
    return f"{text}\n//# sourceMappingURL={name}.map\n", json.dumps(payload, separators=(",", ":"))


@dataclass(slots=True)
class Artifact:
    job: BuildJob
    output_path: str
    text: str
    position_map: PositionMap | None = None
    passes: List[str] = field(default_factory=list)

    @property
    def map_path(self) -> str | None:
        if self.position_map is None:
            return None
        return f"{self.output_path}.map"

    def render(self) -> tuple[str, str | None]:
        return render(self.text, self.position_map, Path(self.output_path).name)

    def write(self, workspace: Path) -> List[Path]:
        text, source_map = self.render()
        targets: List[tuple[Path, str]] = [(workspace / self.output_path, text)]
        if source_map is not None and self.map_path is not None:
            targets.append((workspace / self.map_path, source_map))
        return write_atomic(targets)


def write_atomic(targets: Sequence[tuple[Path, str]]) -> List[Path]:
    """Stage every file next to its destination, then move them into place.

    Targets move in reverse order, so the first one (the artifact) lands only
    after its companion files. A failed move may leave a companion in place,
    but never an artifact without its map.
    """

    staged: List[tuple[str, Path]] = []
    try:
        for path, content in targets:
            path.parent.mkdir(parents=True, exist_ok=True)
            handle = tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
            )
            with handle:
                handle.write(content)
            staged.append((handle.name, path))
        for temp_name, path in reversed(staged):
            os.replace(temp_name, path)
    except BaseException:
        for temp_name, _ in staged:
            if os.path.exists(temp_name):
                os.unlink(temp_name)
        raise
    return [path for _, path in staged]


@dataclass(slots=True)
class JobOutcome:
    job: BuildJob
    artifact: Artifact | None = None
    error: Exception | None = None
    written: List[Path] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    def describe_failure(self) -> str:
        return f"{self.job.name} [{self.job.format.id}]: {self.error}"


class PostProcessor:
    """Resolves cross-artifact imports and runs the format's cleanup battery.

    Needs the output table of the complete matrix; finalizing one job never
    reads another job's text.
    """

    def __init__(
        self,
        *,
        table: OutputTable,
        batteries: Mapping[str, Battery] | None = None,
        registry: FormatRegistry = REGISTRY,
        console: Console | None = None,
    ) -> None:
        self._table = table
        self._batteries: Mapping[str, Battery] = BUILTIN_BATTERIES if batteries is None else batteries
        self._registry = registry
        self._console = console or Console("none")

    def check(self, jobs: Sequence[BuildJob]) -> None:
        """Fail before any job runs if a job's format has no battery."""

        for job in jobs:
            battery_for(job.format, self._batteries)

    def finalize(self, job: BuildJob, raw_text: str, raw_position_map: PositionMap | None = None) -> Artifact:
        spec = self._registry.get(job.format)
        text = raw_text
        position_map = raw_position_map
        passes: List[str] = []

        if spec.linked and job.externals:
            targets = [
                (dependency, resolve(job.output_path, dependency, self._table, spec, registry=self._registry))
                for dependency in job.externals
            ]
            for dependency, target in targets:
                result = apply(text, [import_rewrite_rule(dependency, target)], position_map=position_map)
                if not result.total_hits:
                    self._console.debug(f"{job.label}: no import of '{dependency}' found")
                text, position_map = result.text, result.position_map
                passes.append(f"import:{dependency}")

        battery = battery_for(spec, self._batteries)
        result = battery.apply(text, position_map=position_map)
        matched = result.matched_rules()
        if matched:
            self._console.debug(f"{job.label}: {battery.name} rewrote {', '.join(matched)}")
        passes.append(f"battery:{battery.name}")

        return Artifact(
            job=job,
            output_path=job.output_path,
            text=result.text,
            position_map=result.position_map,
            passes=passes,
        )


def _process(
    job: BuildJob,
    *,
    bundler: Bundler,
    processor: PostProcessor,
    workspace: Path,
    write: bool,
) -> JobOutcome:
    try:
        raw = bundler.bundle(job)
        artifact = processor.finalize(job, raw.text, raw.position_map)
        written = artifact.write(workspace) if write else []
    except Exception as exc:
        # Whatever one job raises stays with that job's outcome.
        return JobOutcome(job=job, error=exc)
    return JobOutcome(job=job, artifact=artifact, written=written)


def run_jobs(
    jobs: Sequence[BuildJob],
    *,
    bundler: Bundler,
    processor: PostProcessor,
    workspace: Path,
    max_workers: int = 4,
    console: Console | None = None,
    write: bool = True,
) -> List[JobOutcome]:
    """Bundle, finalize and write every job on a bounded pool; outcomes keep job order."""

    console = console or Console("none")
    processor.check(jobs)
    if not jobs:
        return []

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(jobs)))) as executor:
        futures = [
            executor.submit(_process, job, bundler=bundler, processor=processor, workspace=workspace, write=write)
            for job in jobs
        ]
        outcomes = [future.result() for future in futures]

    for outcome in outcomes:
        if outcome.ok and outcome.artifact is not None:
            console.info(f"Built {outcome.job.label} -> {outcome.artifact.output_path}")
    return outcomes


@dataclass(slots=True)
class BuildSummary:
    succeeded: int = 0
    failed: int = 0
    bytes_written: int = 0
    failures: List[str] = field(default_factory=list)
    sizes: Dict[str, int] = field(default_factory=dict)


def summarize(outcomes: Sequence[JobOutcome]) -> BuildSummary:
    summary = BuildSummary()
    for outcome in outcomes:
        if not outcome.ok:
            summary.failed += 1
            summary.failures.append(outcome.describe_failure())
            continue
        summary.succeeded += 1
        if outcome.artifact is not None:
            size = len(outcome.artifact.text.encode("utf-8"))
            summary.sizes[outcome.job.label] = size
            summary.bytes_written += size
    return summary


__all__ = [
    "Artifact",
    "BuildSummary",
    "JobOutcome",
    "PostProcessor",
    "render",
    "run_jobs",
    "split_trailer",
    "summarize",
    "write_atomic",
]
