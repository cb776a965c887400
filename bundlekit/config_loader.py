"""Configuration loading and validation logic."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Sequence
import json
import shlex
import tomllib

from .batteries import BUILTIN_BATTERIES
from .console import Console
from .errors import ConfigurationError
from .patch import Battery, RewriteRule
from .template import TemplateError, TemplateResolver, extract_placeholders

try:  # Optional dependency for YAML support
    import yaml
except ModuleNotFoundError:  # pragma: no cover - exercised when PyYAML absent
    yaml = None


ConfigLoader = Callable[[Any], Mapping[str, Any]]

# Placeholders available to bundler arguments; mirrors CommandBundler._context.
_ARGUMENT_CONTEXT_PATHS = frozenset(
    {
        "workspace",
        "job.name",
        "job.input",
        "job.output",
        "job.specifier",
        "job.global",
        "format.id",
        "format.extension",
        "format.linked",
    }
)


def _raise_yaml_missing() -> Mapping[str, Any]:
    raise RuntimeError("PyYAML is required to load YAML configuration files. Install with `pip install PyYAML`.")


_FILE_LOADERS: Dict[str, ConfigLoader] = {
    ".toml": lambda stream: tomllib.load(stream),
    ".json": lambda stream: json.load(stream),
    ".yaml": lambda stream: yaml.safe_load(stream) if yaml else _raise_yaml_missing(),
    ".yml": lambda stream: yaml.safe_load(stream) if yaml else _raise_yaml_missing(),
}


def load_config_file(path: Path) -> Mapping[str, Any]:
    suffix = path.suffix.lower()
    loader = _FILE_LOADERS.get(suffix)
    if loader is None:
        raise ConfigurationError(f"Unsupported configuration file extension: {suffix}")
    mode = "rb" if suffix == ".toml" else "r"
    kwargs: Dict[str, Any] = {}
    if mode == "r":
        kwargs["encoding"] = "utf-8"
    with path.open(mode, **kwargs) as handle:
        try:
            data = loader(handle)
        except (tomllib.TOMLDecodeError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Failed to parse '{path}': {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Configuration file '{path}' must contain a mapping at the root")
    return data


def collect_config_files(directory: Path) -> Dict[str, Path]:
    files: Dict[str, Path] = {}
    for path in sorted(directory.iterdir()):
        if not path.is_file():
            continue
        suffix = path.suffix.lower()
        if suffix not in _FILE_LOADERS:
            continue
        stem = path.stem
        if stem in files:
            other = files[stem]
            raise ConfigurationError(
                f"Multiple configuration files found for '{stem}': '{other.name}' and '{path.name}'. "
                "Only one format per configuration entry is allowed."
            )
        files[stem] = path
    return files


def _normalize_string_list(value: Any, *, field_name: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        text = str(value).strip()
        return [text] if text else []
    if isinstance(value, Sequence):
        result: List[str] = []
        for item in value:
            if isinstance(item, (str, bytes)):
                text = str(item).strip()
                if text:
                    result.append(text)
            else:
                raise ConfigurationError(f"{field_name} entries must be strings")
        return result
    raise ConfigurationError(f"{field_name} must be a string or sequence of strings")


def _normalize_command(value: Any, *, field_name: str, default: str) -> List[str]:
    if value is None:
        return [default]
    if isinstance(value, str):
        parts = shlex.split(value)
    else:
        parts = _normalize_string_list(value, field_name=field_name)
    if not parts:
        raise ConfigurationError(f"{field_name} cannot be empty")
    return parts


def _optional_bool(section: Mapping[str, Any], key: str, *, field_name: str) -> bool | None:
    value = section.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ConfigurationError(f"{field_name} must be a boolean")
    return value


def _unique(values: Sequence[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    ordered: List[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return tuple(ordered)


@dataclass(slots=True)
class GlobalConfig:
    output_root: str = "."
    scope: str | None = None
    log_level: str = "info"
    jobs: int = 4
    sourcemap: bool = True

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GlobalConfig":
        global_section = data.get("global", {}) if isinstance(data, Mapping) else {}
        if not isinstance(global_section, Mapping):
            raise ConfigurationError("[global] must be a table")
        jobs = global_section.get("jobs", 4)
        if isinstance(jobs, bool) or not isinstance(jobs, int) or jobs < 1:
            raise ConfigurationError("global.jobs must be a positive integer")
        sourcemap = _optional_bool(global_section, "sourcemap", field_name="global.sourcemap")
        scope = global_section.get("scope")
        log_level = str(global_section.get("log_level", "info")).lower()
        if log_level not in Console.LEVELS:
            raise ConfigurationError(
                f"global.log_level must be one of: {', '.join(Console.LEVELS)}"
            )
        return cls(
            output_root=str(global_section.get("output_root", ".")),
            scope=str(scope) if scope else None,
            log_level=log_level,
            jobs=jobs,
            sourcemap=True if sourcemap is None else sourcemap,
        )


@dataclass(slots=True)
class BundlerSettings:
    rollup: List[str] = field(default_factory=lambda: ["rollup"])
    terser: List[str] = field(default_factory=lambda: ["terser"])
    minify: bool = True
    rollup_args: List[str] = field(default_factory=list)
    terser_args: List[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "BundlerSettings":
        section = data.get("bundler", {}) if isinstance(data, Mapping) else {}
        if not isinstance(section, Mapping):
            raise ConfigurationError("[bundler] must be a table")
        minify = _optional_bool(section, "minify", field_name="bundler.minify")
        settings = cls(
            rollup=_normalize_command(section.get("rollup"), field_name="bundler.rollup", default="rollup"),
            terser=_normalize_command(section.get("terser"), field_name="bundler.terser", default="terser"),
            minify=True if minify is None else minify,
            rollup_args=_normalize_string_list(section.get("rollup_args"), field_name="bundler.rollup_args"),
            terser_args=_normalize_string_list(section.get("terser_args"), field_name="bundler.terser_args"),
        )
        for name, values in (("bundler.rollup_args", settings.rollup_args), ("bundler.terser_args", settings.terser_args)):
            for placeholder in sorted(extract_placeholders(values)):
                if placeholder not in _ARGUMENT_CONTEXT_PATHS:
                    raise ConfigurationError(
                        f"{name} references unknown placeholder '{{{{{placeholder}}}}}'. "
                        f"Available placeholders: {', '.join(sorted(_ARGUMENT_CONTEXT_PATHS))}"
                    )
        return settings


@dataclass(frozen=True, slots=True)
class PackageDescriptor:
    """One logical package to build. Immutable once declared."""

    name: str
    input: str
    externals: tuple[str, ...] = ()
    formats: tuple[str, ...] = ()
    global_name: str | None = None
    extend: bool = False
    sourcemap: bool = True
    dest: str = ""
    specifier: str = ""

    def __post_init__(self) -> None:
        if not self.specifier:
            object.__setattr__(self, "specifier", self.name)

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        *,
        scope: str | None = None,
        default_sourcemap: bool = True,
    ) -> "PackageDescriptor":
        if not isinstance(data, Mapping):
            raise ConfigurationError("Bundle entries must be tables")
        name = data.get("name")
        if not name or not str(name).strip():
            raise ConfigurationError("Bundle entries require a non-empty 'name'")
        name = str(name).strip()
        raw_input = data.get("input")
        if not raw_input or not str(raw_input).strip():
            raise ConfigurationError(f"Bundle '{name}' requires a non-empty 'input'")

        if "external" in data and "externals" in data:
            raise ConfigurationError(f"Bundle '{name}' declares both 'external' and 'externals'")
        externals = _normalize_string_list(
            data.get("externals", data.get("external")), field_name=f"{name}.externals"
        )
        formats = [item.lower() for item in _normalize_string_list(data.get("formats"), field_name=f"{name}.formats")]

        global_name = data.get("global")
        if global_name is not None and not isinstance(global_name, str):
            raise ConfigurationError(f"{name}.global must be a string")
        extend = _optional_bool(data, "extend", field_name=f"{name}.extend")
        sourcemap = _optional_bool(data, "sourcemap", field_name=f"{name}.sourcemap")
        dest = str(data.get("dest", "") or "").strip().strip("/")

        specifier = data.get("specifier")
        if specifier is None:
            if scope and name != scope:
                specifier = f"{scope}/{name}"
            else:
                specifier = name
        elif not isinstance(specifier, str) or not specifier.strip():
            raise ConfigurationError(f"{name}.specifier must be a non-empty string")

        return cls(
            name=name,
            input=str(raw_input).strip(),
            externals=_unique(externals),
            formats=_unique(formats),
            global_name=global_name or None,
            extend=bool(extend),
            sourcemap=default_sourcemap if sourcemap is None else sourcemap,
            dest=dest,
            specifier=str(specifier).strip(),
        )


def _load_descriptors(
    data: Mapping[str, Any],
    key: str,
    *,
    scope: str | None,
    default_sourcemap: bool,
) -> List[PackageDescriptor]:
    section = data.get(key, [])
    if not section:
        return []
    if not isinstance(section, Sequence) or isinstance(section, (str, bytes)):
        raise ConfigurationError(f"[[{key}]] must be an array of tables")
    return [
        PackageDescriptor.from_mapping(entry, scope=scope, default_sourcemap=default_sourcemap)
        for entry in section
    ]


def load_batteries(data: Mapping[str, Any]) -> Dict[str, Battery]:
    """Merge configured batteries over the built-in ones.

    A section named like a built-in battery replaces it, unless ``extend = true``
    in which case its rules run after the built-in rules.
    """

    batteries: Dict[str, Battery] = dict(BUILTIN_BATTERIES)
    for name, section in data.items():
        if not isinstance(section, Mapping):
            raise ConfigurationError(f"Battery '{name}' must be a table")
        raw_rules = section.get("rules", [])
        if not isinstance(raw_rules, Sequence) or isinstance(raw_rules, (str, bytes)):
            raise ConfigurationError(f"Battery '{name}' rules must be an array of tables")
        rules = [RewriteRule.from_mapping(rule) for rule in raw_rules]
        contract = section.get("contract")
        extend = _optional_bool(section, "extend", field_name=f"{name}.extend")
        base = batteries.get(str(name))
        if extend:
            if base is None:
                raise ConfigurationError(f"Battery '{name}' extends nothing: no built-in battery of that name")
            batteries[str(name)] = base.extended(rules, contract=str(contract) if contract else None)
        else:
            batteries[str(name)] = Battery(name=str(name), rules=tuple(rules), contract=str(contract or ""))
    return batteries


@dataclass(slots=True)
class ConfigurationStore:
    root: Path
    global_config: GlobalConfig
    bundler: BundlerSettings
    bundles: List[PackageDescriptor]
    fixtures: List[PackageDescriptor] = field(default_factory=list)
    batteries: Dict[str, Battery] = field(default_factory=lambda: dict(BUILTIN_BATTERIES))

    @classmethod
    def from_directory(cls, root: Path) -> "ConfigurationStore":
        config_dir = root / "config"
        if not config_dir.exists():
            raise FileNotFoundError(f"Configuration directory not found: {config_dir}")

        files = collect_config_files(config_dir)
        global_data: Mapping[str, Any] = {}
        global_path = files.get("config")
        if global_path is not None:
            global_data = load_config_file(global_path)
        global_config = GlobalConfig.from_mapping(global_data)
        try:
            global_config.output_root = str(
                TemplateResolver({"workspace": str(root)}).resolve(global_config.output_root)
            )
        except TemplateError as exc:
            raise ConfigurationError(f"global.output_root: {exc}") from exc
        bundler = BundlerSettings.from_mapping(global_data)

        bundles_path = files.get("bundles")
        if bundles_path is None:
            raise FileNotFoundError(f"No bundles configuration found in {config_dir}")
        bundles_data = load_config_file(bundles_path)
        bundles = _load_descriptors(
            bundles_data, "bundles", scope=global_config.scope, default_sourcemap=global_config.sourcemap
        )
        fixtures = _load_descriptors(
            bundles_data, "fixtures", scope=global_config.scope, default_sourcemap=global_config.sourcemap
        )

        batteries = dict(BUILTIN_BATTERIES)
        batteries_path = files.get("batteries")
        if batteries_path is not None:
            batteries = load_batteries(load_config_file(batteries_path))

        return cls(
            root=root,
            global_config=global_config,
            bundler=bundler,
            bundles=bundles,
            fixtures=fixtures,
            batteries=batteries,
        )

    def descriptors(self, *, include_fixtures: bool = False) -> List[PackageDescriptor]:
        if include_fixtures:
            return [*self.bundles, *self.fixtures]
        return list(self.bundles)


__all__ = [
    "BundlerSettings",
    "ConfigurationStore",
    "GlobalConfig",
    "PackageDescriptor",
    "collect_config_files",
    "load_batteries",
    "load_config_file",
]
