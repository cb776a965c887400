"""Bundler/minifier collaborator: rollup followed by terser, one scratch directory per job."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Protocol, Sequence
import json
import os
import tempfile

from .command_runner import CommandRunner
from .config_loader import BundlerSettings
from .errors import JobError
from .formats import ESM
from .matrix import BuildJob
from .position_map import PositionMap
from .template import TemplateResolver


@dataclass(slots=True)
class RawOutput:
    text: str
    position_map: PositionMap | None = None


class Bundler(Protocol):
    def bundle(self, job: BuildJob) -> RawOutput:
        ...


@dataclass(slots=True)
class BuildStep:
    description: str
    command: Sequence[str]
    cwd: Path
    output: Path


class CommandBundler:
    """Runs the configured rollup and terser commands for a job.

    Externals are passed to rollup only for linked formats, so the produced
    text still contains the literal specifiers the import rewrite looks for.
    """

    def __init__(
        self,
        *,
        settings: BundlerSettings,
        runner: CommandRunner,
        workspace: Path,
        scratch_root: Path | None = None,
    ) -> None:
        self._settings = settings
        self._runner = runner
        self._workspace = workspace
        self._scratch_root = scratch_root

    def _context(self, job: BuildJob) -> Dict[str, Any]:
        return {
            "workspace": str(self._workspace),
            "job": {
                "name": job.name,
                "input": job.input_path,
                "output": job.output_path,
                "specifier": job.descriptor.specifier,
                "global": job.descriptor.global_name or "",
            },
            "format": {
                "id": job.format.id,
                "extension": job.format.extension,
                "linked": job.format.linked,
            },
        }

    def plan(self, job: BuildJob, scratch_dir: Path) -> List[BuildStep]:
        resolver = TemplateResolver(self._context(job))
        extension = job.format.extension
        bundled = scratch_dir / f"{job.name}.bundle{extension}"
        steps: List[BuildStep] = []

        command: List[str] = [
            *self._settings.rollup,
            "--input",
            job.input_path,
            "--format",
            job.format.id,
            "--file",
            str(bundled),
        ]
        if job.sourcemap:
            command.append("--sourcemap")
        if not job.format.linked:
            if job.descriptor.global_name:
                command.extend(["--name", job.descriptor.global_name])
            if job.descriptor.extend:
                command.append("--extend")
        if job.bundler_externals:
            command.extend(["--external", ",".join(job.bundler_externals)])
        command.extend(resolver.resolve_arguments(self._settings.rollup_args))
        steps.append(BuildStep(description="Bundle", command=command, cwd=self._workspace, output=bundled))

        if self._settings.minify:
            minified = scratch_dir / f"{job.name}{extension}"
            command = [*self._settings.terser, str(bundled), "--compress", "--mangle"]
            if job.format.id == ESM:
                command.append("--module")
            command.extend(["--output", str(minified)])
            if job.sourcemap:
                url = f"{Path(job.output_path).name}.map"
                command.extend(["--source-map", f"content='{bundled}.map',url='{url}'"])
            command.extend(resolver.resolve_arguments(self._settings.terser_args))
            steps.append(BuildStep(description="Minify", command=command, cwd=self._workspace, output=minified))
        return steps

    def bundle(self, job: BuildJob) -> RawOutput:
        with tempfile.TemporaryDirectory(prefix="bundlekit-", dir=self._scratch_root) as tmp_dir:
            scratch_dir = Path(tmp_dir).resolve()
            steps = self.plan(job, scratch_dir)
            for step in steps:
                self._runner.run(step.command, cwd=step.cwd, note=f"{job.label} {step.description.lower()}")
            return self._read_output(job, steps[-1].output)

    def _read_output(self, job: BuildJob, output: Path) -> RawOutput:
        try:
            text = output.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise JobError(f"{job.label}: {output.name} is not valid UTF-8: {exc}") from exc
        if not job.sourcemap:
            return RawOutput(text=text)
        map_path = output.with_name(f"{output.name}.map")
        try:
            data = json.loads(map_path.read_text(encoding="utf-8"))
        except UnicodeDecodeError as exc:
            raise JobError(f"{job.label}: {map_path.name} is not valid UTF-8: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise JobError(f"{job.label}: invalid source map {map_path.name}: {exc}") from exc
        if not isinstance(data, Mapping):
            raise JobError(f"{job.label}: source map {map_path.name} is not an object")
        final_dir = (self._workspace / job.output_path).resolve().parent
        data = self._rebase_sources(data, from_dir=output.parent, to_dir=final_dir)
        try:
            position_map = PositionMap.from_sourcemap(data, text)
        except ValueError as exc:
            raise JobError(f"{job.label}: unusable source map {map_path.name}: {exc}") from exc
        return RawOutput(text=text, position_map=position_map.with_file(Path(job.output_path).name))

    @staticmethod
    def _rebase_sources(data: Mapping[str, Any], *, from_dir: Path, to_dir: Path) -> Dict[str, Any]:
        """Make ``sources`` relative to the final artifact instead of the scratch directory."""

        rebased = dict(data)
        source_root = str(rebased.pop("sourceRoot", "") or "")
        sources: List[str] = []
        for raw in data.get("sources", ()):
            source = str(raw)
            if source_root:
                source = f"{source_root}{raw}" if source_root.endswith("/") else f"{source_root}/{raw}"
            if "://" in source:
                sources.append(source)
                continue
            absolute = os.path.normpath(from_dir / source)
            sources.append(Path(os.path.relpath(absolute, to_dir)).as_posix())
        rebased["sources"] = sources
        return rebased


__all__ = ["BuildStep", "Bundler", "CommandBundler", "RawOutput"]
