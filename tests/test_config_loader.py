from __future__ import annotations

from pathlib import Path
import tempfile
import textwrap
import unittest

from bundlekit.batteries import LINKED_MODULE
from bundlekit.config_loader import ConfigurationStore
from bundlekit.errors import ConfigurationError
from bundlekit.matrix import expand
from bundlekit.paths import resolve

try:  # PyYAML is optional
    import yaml  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - optional dependency absent
    yaml = None

REPO_ROOT = Path(__file__).resolve().parents[1]


class ConfigurationLoaderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.config_dir = self.root / "config"
        self.config_dir.mkdir()
        (self.config_dir / "config.toml").write_text(
            textwrap.dedent(
                """
                [global]
                scope = "sinuous"
                output_root = "{{workspace}}/packages/sinuous"
                jobs = 2

                [bundler]
                rollup = "npx rollup"
                minify = false
                rollup_args = ["--banner", "/* {{job.name}} */"]
                """
            )
        )

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _write_bundles(self, content: str, name: str = "bundles.toml") -> None:
        (self.config_dir / name).write_text(textwrap.dedent(content))

    def test_loads_global_bundler_and_descriptors(self) -> None:
        self._write_bundles(
            """
            [[bundles]]
            name = "htm"
            input = "packages/sinuous/htm/src/index.js"
            formats = ["ESM", "umd"]
            global = "htm"

            [[bundles]]
            name = "sinuous"
            input = "packages/sinuous/src/index.js"
            formats = ["esm"]
            external = "sinuous/htm"

            [[fixtures]]
            name = "sinuous-s"
            input = "fixtures/S/src/index.js"
            formats = ["umd"]
            global = "sinuousS"
            sourcemap = false
            """
        )
        store = ConfigurationStore.from_directory(self.root)
        self.assertEqual(store.global_config.output_root, f"{self.root}/packages/sinuous")
        self.assertEqual(store.global_config.jobs, 2)
        self.assertEqual(store.bundler.rollup, ["npx", "rollup"])
        self.assertEqual(store.bundler.terser, ["terser"])
        self.assertFalse(store.bundler.minify)

        htm, sinuous = store.bundles
        self.assertEqual(htm.formats, ("esm", "umd"))
        self.assertEqual(htm.specifier, "sinuous/htm")
        self.assertEqual(sinuous.specifier, "sinuous")
        self.assertEqual(sinuous.externals, ("sinuous/htm",))
        self.assertTrue(sinuous.sourcemap)

        self.assertEqual([d.name for d in store.descriptors()], ["htm", "sinuous"])
        fixtures = store.descriptors(include_fixtures=True)
        self.assertEqual([d.name for d in fixtures], ["htm", "sinuous", "sinuous-s"])
        self.assertFalse(fixtures[-1].sourcemap)

    def test_explicit_specifier_and_dest(self) -> None:
        self._write_bundles(
            """
            [[bundles]]
            name = "mini"
            input = "src/mini.js"
            formats = ["esm"]
            dest = "/map/"
            specifier = "sinuous/map/mini"
            """
        )
        (mini,) = ConfigurationStore.from_directory(self.root).bundles
        self.assertEqual(mini.dest, "map")
        self.assertEqual(mini.specifier, "sinuous/map/mini")

    def test_requires_bundles_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            ConfigurationStore.from_directory(self.root)

    def test_requires_config_directory(self) -> None:
        with self.assertRaises(FileNotFoundError):
            ConfigurationStore.from_directory(self.root / "missing")

    def test_rejects_both_external_spellings(self) -> None:
        self._write_bundles(
            """
            [[bundles]]
            name = "x"
            input = "x.js"
            formats = ["esm"]
            external = ["a"]
            externals = ["b"]
            """
        )
        with self.assertRaises(ConfigurationError):
            ConfigurationStore.from_directory(self.root)

    def test_rejects_wrong_types(self) -> None:
        self._write_bundles(
            """
            [[bundles]]
            name = "x"
            input = "x.js"
            formats = ["esm"]
            extend = "yes"
            """
        )
        with self.assertRaises(ConfigurationError) as ctx:
            ConfigurationStore.from_directory(self.root)
        self.assertIn("x.extend", str(ctx.exception))

    def test_rejects_invalid_log_level(self) -> None:
        (self.config_dir / "config.toml").write_text('[global]\nlog_level = "chatty"\n')
        self._write_bundles("")
        with self.assertRaises(ConfigurationError):
            ConfigurationStore.from_directory(self.root)

    def test_rejects_unknown_argument_placeholder(self) -> None:
        (self.config_dir / "config.toml").write_text('[bundler]\nterser_args = ["{{project.name}}"]\n')
        self._write_bundles("")
        with self.assertRaises(ConfigurationError):
            ConfigurationStore.from_directory(self.root)

    def test_rejects_unknown_argument_field(self) -> None:
        (self.config_dir / "config.toml").write_text('[bundler]\nrollup_args = ["{{job.nope}}"]\n')
        self._write_bundles("")
        with self.assertRaises(ConfigurationError) as ctx:
            ConfigurationStore.from_directory(self.root)
        self.assertIn("{{job.nope}}", str(ctx.exception))
        self.assertIn("job.specifier", str(ctx.exception))

    def test_accepts_every_argument_field(self) -> None:
        (self.config_dir / "config.toml").write_text(
            textwrap.dedent(
                """
                [bundler]
                rollup_args = ["{{job.name}}", "{{job.input}}", "{{job.output}}", "{{job.specifier}}"]
                terser_args = ["{{job.global}}", "{{format.id}}{{format.extension}}", "{{format.linked}}", "{{workspace}}"]
                """
            )
        )
        self._write_bundles("")
        store = ConfigurationStore.from_directory(self.root)
        self.assertEqual(len(store.bundler.terser_args), 4)

    def test_rejects_duplicate_stems(self) -> None:
        self._write_bundles("")
        (self.config_dir / "bundles.json").write_text("{}")
        with self.assertRaises(ConfigurationError):
            ConfigurationStore.from_directory(self.root)

    def test_reports_parse_errors(self) -> None:
        self._write_bundles("[[bundles]\n")
        with self.assertRaises(ConfigurationError):
            ConfigurationStore.from_directory(self.root)

    def test_supports_json_bundles(self) -> None:
        (self.config_dir / "bundles.json").write_text(
            '{"bundles": [{"name": "h", "input": "src/h.js", "formats": ["esm"]}]}'
        )
        store = ConfigurationStore.from_directory(self.root)
        self.assertEqual(store.bundles[0].specifier, "sinuous/h")

    @unittest.skipUnless(yaml is not None, "PyYAML is required for YAML config tests")
    def test_supports_yaml_bundles(self) -> None:
        self._write_bundles(
            """
            bundles:
              - name: h
                input: src/h.js
                formats: [esm, iife]
                global: h
            """,
            name="bundles.yaml",
        )
        store = ConfigurationStore.from_directory(self.root)
        self.assertEqual(store.bundles[0].formats, ("esm", "iife"))

    def test_batteries_extend_and_replace(self) -> None:
        self._write_bundles("")
        (self.config_dir / "batteries.toml").write_text(
            textwrap.dedent(
                """
                [linked-module]
                extend = true
                rules = [{ name = "drop-debugger", pattern = "debugger;", replace = "" }]

                [bundled-global]
                contract = "custom"
                rules = [{ name = "semi", pattern = ";;+", replace = ";" }]
                """
            )
        )
        store = ConfigurationStore.from_directory(self.root)
        module = store.batteries["linked-module"]
        self.assertEqual(len(module.rules), len(LINKED_MODULE.rules) + 1)
        self.assertEqual(module.rules[-1].name, "drop-debugger")
        self.assertEqual([rule.name for rule in store.batteries["bundled-global"].rules], ["semi"])
        self.assertEqual(store.batteries["bundled-global"].contract, "custom")
        self.assertIn("linked-commonjs", store.batteries)

    def test_extending_unknown_battery(self) -> None:
        self._write_bundles("")
        (self.config_dir / "batteries.toml").write_text('[nothing]\nextend = true\nrules = []\n')
        with self.assertRaises(ConfigurationError):
            ConfigurationStore.from_directory(self.root)


class ShippedConfigurationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = ConfigurationStore.from_directory(REPO_ROOT)
        self.matrix = expand(self.store.descriptors(), output_root=self.store.global_config.output_root)
        self.table = self.matrix.output_table()

    def test_expands(self) -> None:
        self.assertEqual(len(self.matrix.names), 14)
        self.assertEqual(len({job.output_path for job in self.matrix}), len(self.matrix))

    def test_every_linked_external_resolves(self) -> None:
        for job in self.matrix:
            if not job.format.linked:
                continue
            for dependency in job.externals:
                with self.subTest(job=job.label, dependency=dependency):
                    resolve(job.output_path, dependency, self.table, job.format)

    def test_mini_imports_sinuous_from_parent_directory(self) -> None:
        (job,) = [job for job in self.matrix.select(["mini"]) if job.format.id == "esm"]
        self.assertEqual(job.output_path, "packages/sinuous/module/map/mini.js")
        self.assertEqual(resolve(job.output_path, "sinuous", self.table, "esm"), "../sinuous.js")

    def test_fixtures_only_on_request(self) -> None:
        names = [d.name for d in self.store.descriptors(include_fixtures=True)]
        self.assertIn("sinuous-s", names)
        self.assertNotIn("sinuous-s", self.matrix.names)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
