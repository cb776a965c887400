"""Command line interface for bundlekit."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Iterable, List, Mapping
import json
import sys

from .batteries import BUILTIN_BATTERIES, battery_for
from .bundler import CommandBundler
from .command_runner import RecordingCommandRunner, SubprocessCommandRunner
from .config_loader import ConfigurationStore
from .console import Console
from .errors import BundleError, JobError, UnresolvedDependencyError
from .formats import REGISTRY, get_format
from .matrix import BuildJob, BuildMatrix, expand
from .patch import Battery
from .paths import OutputTable, resolve
from .pipeline import PostProcessor, render, run_jobs, split_trailer, summarize, write_atomic
from .position_map import PositionMap
from .template import TemplateError

_SCRATCH_PLACEHOLDER = Path("<scratch>")


def _emit_dry_run_output(runner: RecordingCommandRunner, *, workspace: Path) -> None:
    for line in runner.iter_formatted(workspace=workspace):
        print(line)


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="bundlekit", description="Bundle matrix compiler and output post-processor")
    parser.add_argument("--workspace", help="Workspace root holding config/ (default: current directory)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser("build", help="Bundle, post-process and write artifacts")
    build_parser.add_argument("names", nargs="*", help="Bundle names to build; omit to build all")
    build_parser.add_argument("--fixtures", action="store_true", help="Include fixture bundles")
    build_parser.add_argument("--jobs", type=int, help="Number of jobs to run in parallel")
    build_parser.add_argument("--dry-run", action="store_true", help="Print commands without executing them")
    verbosity = build_parser.add_mutually_exclusive_group()
    verbosity.add_argument("--verbose", action="store_true", help="Enable debug output")
    verbosity.add_argument("--quiet", action="store_true", help="Only print errors")

    list_parser = subparsers.add_parser("list", help="List the build matrix")
    list_parser.add_argument("names", nargs="*", help="Bundle names to list; omit to list all")
    list_parser.add_argument("--fixtures", action="store_true", help="Include fixture bundles")
    list_parser.add_argument("--json", action="store_true", help="Print the matrix as JSON")

    validate_parser = subparsers.add_parser("validate", help="Validate configuration files")
    validate_parser.add_argument("--fixtures", action="store_true", help="Include fixture bundles")

    patch_parser = subparsers.add_parser("patch", help="Run a format's cleanup battery over an existing file")
    patch_parser.add_argument("file", help="File to patch")
    patch_parser.add_argument("--format", required=True, choices=REGISTRY.ids(), help="Format of the file")
    patch_parser.add_argument("--map", help="Source map of the file, updated alongside it")
    patch_parser.add_argument("--output", help="Write the result here instead of patching in place")
    patch_parser.add_argument("--check", action="store_true", help="Report rules that still match; write nothing")

    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)
    workspace = Path(args.workspace).resolve() if args.workspace else Path.cwd()

    handlers = {
        "build": _handle_build,
        "list": _handle_list,
        "validate": _handle_validate,
        "patch": _handle_patch,
    }
    handler = handlers.get(args.command)
    if handler is None:
        raise ValueError(f"Unknown command: {args.command}")
    try:
        return handler(args, workspace)
    except JobError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except (BundleError, TemplateError, OSError, UnicodeDecodeError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


def _load_matrix(store: ConfigurationStore, *, include_fixtures: bool) -> BuildMatrix:
    return expand(
        store.descriptors(include_fixtures=include_fixtures),
        output_root=store.global_config.output_root,
    )


def _unresolved_links(jobs: Iterable[BuildJob], table: OutputTable) -> List[str]:
    problems: List[str] = []
    for job in jobs:
        if not job.format.linked:
            continue
        for dependency in job.externals:
            try:
                resolve(job.output_path, dependency, table, job.format)
            except (UnresolvedDependencyError, ValueError) as exc:
                problems.append(f"{job.label}: {exc}")
    return problems


def _handle_build(args: Namespace, workspace: Path) -> int:
    store = ConfigurationStore.from_directory(workspace)
    console = Console.from_settings(
        configured=store.global_config.log_level,
        verbose=args.verbose,
        quiet=args.quiet,
        dry_run=args.dry_run,
    )
    matrix = _load_matrix(store, include_fixtures=args.fixtures)
    # Built from every job, not just the selected ones: a filtered build still
    # links against its siblings' artifacts.
    table = matrix.output_table()
    jobs = matrix.select(args.names)
    processor = PostProcessor(table=table, batteries=store.batteries, console=console)

    runner: SubprocessCommandRunner | RecordingCommandRunner
    if args.dry_run:
        runner = RecordingCommandRunner()
    else:
        runner = SubprocessCommandRunner()
    bundler = CommandBundler(settings=store.bundler, runner=runner, workspace=workspace)

    if args.dry_run:
        processor.check(jobs)
        for job in jobs:
            for step in bundler.plan(job, _SCRATCH_PLACEHOLDER / job.format.id):
                runner.run(step.command, cwd=step.cwd, note=f"{job.label} {step.description.lower()}")
            console.dry(f"{job.label} -> {job.output_path}")
        _emit_dry_run_output(runner, workspace=workspace)
        problems = _unresolved_links(jobs, table)
        for problem in problems:
            print(problem, file=sys.stderr)
        return 1 if problems else 0

    console.debug(f"Building {len(jobs)} job(s) with up to {args.jobs or store.global_config.jobs} worker(s)")
    outcomes = run_jobs(
        jobs,
        bundler=bundler,
        processor=processor,
        workspace=workspace,
        max_workers=args.jobs or store.global_config.jobs,
        console=console,
    )
    summary = summarize(outcomes)
    for failure in summary.failures:
        print(failure, file=sys.stderr)
    console.info(f"{summary.succeeded} built, {summary.failed} failed, {summary.bytes_written} bytes")
    return 1 if summary.failed else 0


def _handle_list(args: Namespace, workspace: Path) -> int:
    store = ConfigurationStore.from_directory(workspace)
    matrix = _load_matrix(store, include_fixtures=args.fixtures)
    jobs = matrix.select(args.names)
    if args.json:
        print(matrix.serialize(jobs))
        return 0

    selected = {job.name for job in jobs}
    for name, group in matrix.grouped().items():
        if name not in selected:
            continue
        print(name)
        for job in group:
            print(f"  {job.format.id:<5} {job.output_path}")
            if job.format.linked and job.externals:
                print(f"        imports {', '.join(job.externals)}")
    return 0


def _handle_validate(args: Namespace, workspace: Path) -> int:
    store = ConfigurationStore.from_directory(workspace)
    matrix = _load_matrix(store, include_fixtures=args.fixtures)
    table = matrix.output_table()
    PostProcessor(table=table, batteries=store.batteries).check(matrix.jobs)
    problems = _unresolved_links(matrix.jobs, table)
    if problems:
        for problem in problems:
            print(problem, file=sys.stderr)
        return 1
    print("Validation successful")
    return 0


def _load_batteries(workspace: Path) -> Mapping[str, Battery]:
    if not (workspace / "config").exists():
        return BUILTIN_BATTERIES
    return ConfigurationStore.from_directory(workspace).batteries


def _handle_patch(args: Namespace, workspace: Path) -> int:
    battery = battery_for(get_format(args.format), _load_batteries(workspace))
    source = workspace / args.file
    body, _ = split_trailer(source.read_text(encoding="utf-8"))

    position_map: PositionMap | None = None
    map_source: Path | None = None
    if args.map:
        map_source = workspace / args.map
        try:
            position_map = PositionMap.from_sourcemap(json.loads(map_source.read_text(encoding="utf-8")), body)
        except ValueError as exc:
            raise JobError(f"{map_source}: unusable source map: {exc}") from exc

    result = battery.apply(body, position_map=position_map)
    if args.check:
        matched = result.matched_rules()
        for name in matched:
            print(f"{source}: {battery.name}: '{name}' matched {result.hits[name]} time(s)")
        if matched:
            return 1
        print(f"{source}: {battery.name} matches nothing")
        return 0

    output = workspace / args.output if args.output else source
    text, source_map = render(result.text, result.position_map, output.name)
    targets = [(output, text)]
    if source_map is not None and map_source is not None:
        targets.append((output.with_name(f"{output.name}.map"), source_map))
    write_atomic(targets)
    print(f"Patched {output} ({', '.join(result.matched_rules()) or 'no changes'})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
