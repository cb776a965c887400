"""Built-in cleanup batteries and the cross-artifact import rewrite rule.

Each battery is written against the output conventions named in its
``contract``. Re-run ``bundlekit patch --check`` on fresh tool output whenever
rollup or terser is upgraded.
"""
from __future__ import annotations

from typing import Dict, Mapping
import re

from .errors import ConfigurationError
from .formats import FormatSpec
from .patch import Battery, RewriteRule

ROLLUP_TERSER_CONTRACT = "rollup 4.x output minified by terser 5.x (compress + mangle, no comments)"


def import_rewrite_rule(specifier: str, resolved: str) -> RewriteRule:
    """Rewrite string literals importing ``specifier`` to ``resolved``.

    Matches ``from"x"``, ``import"x"``, ``import("x")`` and ``require("x")`` with
    either quote style. The literal must equal the specifier exactly, so
    ``sinuous`` never matches inside ``sinuous/htm``.
    """

    pattern = (
        r"""(\bfrom\s*|\bimport\s*\(\s*|\bimport\s*|\brequire\s*\(\s*)(["'])"""
        + re.escape(specifier)
        + r"\2"
    )

    def rewrite(_whole: str, prefix: str, quote: str) -> str:
        return f"{prefix}{quote}{resolved}{quote}"

    return RewriteRule(name=f"import:{specifier}", pattern=pattern, rewrite=rewrite)


def _collapse_specifiers(_whole: str, keyword: str, body: str) -> str:
    specifiers = re.sub(r"\s*,\s*", ",", body.strip())
    return f"{keyword}{{{specifiers}}}"


STRIP_SOURCEMAP_COMMENT = RewriteRule(
    name="strip-sourcemap-comment",
    pattern=r"\n?//# sourceMappingURL=\S*[ \t\r\n]*\Z",
    rewrite="",
)
STRIP_PURE_ANNOTATIONS = RewriteRule(
    name="strip-pure-annotations",
    pattern=r"/\*\s*[#@]__PURE__\s*\*/ ?",
    rewrite="",
)
COLLAPSE_USE_STRICT = RewriteRule(
    name="collapse-use-strict",
    pattern=r"""(["'])use strict\1;(?:\s*["']use strict["'];)+""",
    rewrite='"use strict";',
)
# ES modules are strict by definition.
STRIP_MODULE_USE_STRICT = RewriteRule(
    name="strip-module-use-strict",
    pattern=r"""\A\s*(["'])use strict\1;\s*""",
    rewrite="",
)
COLLAPSE_SPECIFIER_LISTS = RewriteRule(
    name="collapse-specifier-lists",
    pattern=r"\b(import|export)\s*\{\s+([^{}]*?)\s*\}",
    rewrite=_collapse_specifiers,
)
COLLAPSE_FROM_SPACING = RewriteRule(
    name="collapse-from-spacing",
    pattern=r"""\}(?:\s+from\s*|\s*from\s+)(?=["'])""",
    rewrite="}from",
)
COLLAPSE_REQUIRE_SPACING = RewriteRule(
    name="collapse-require-spacing",
    pattern=r"\brequire\s+\(",
    rewrite="require(",
)
# rollup's UMD wrapper probes globalThis before falling back to self; the
# wrapper is always invoked with the global object as ``this``.
DROP_GLOBALTHIS_PROBE = RewriteRule(
    name="drop-globalthis-probe",
    pattern=r"""([\w$]+)=["']undefined["']!=typeof globalThis\?globalThis:\1\|\|self""",
    rewrite=r"\1=\1||self",
)
DROP_ESMODULE_FLAG_TRAILING = RewriteRule(
    name="drop-esmodule-flag-trailing",
    pattern=r""",Object\.defineProperty\([\w$]+,["']__esModule["'],\{value:!0\}\)""",
    rewrite="",
)
DROP_ESMODULE_FLAG_LEADING = RewriteRule(
    name="drop-esmodule-flag-leading",
    pattern=r"""Object\.defineProperty\([\w$]+,["']__esModule["'],\{value:!0\}\)[,;]""",
    rewrite="",
)
STRIP_TRAILING_WHITESPACE = RewriteRule(
    name="strip-trailing-whitespace",
    pattern=r"[ \t\r\n]+\Z",
    rewrite="",
)


LINKED_MODULE = Battery(
    name="linked-module",
    contract=ROLLUP_TERSER_CONTRACT,
    rules=(
        STRIP_SOURCEMAP_COMMENT,
        STRIP_PURE_ANNOTATIONS,
        STRIP_MODULE_USE_STRICT,
        COLLAPSE_SPECIFIER_LISTS,
        COLLAPSE_FROM_SPACING,
        STRIP_TRAILING_WHITESPACE,
    ),
)

LINKED_COMMONJS = Battery(
    name="linked-commonjs",
    contract=ROLLUP_TERSER_CONTRACT,
    rules=(
        STRIP_SOURCEMAP_COMMENT,
        STRIP_PURE_ANNOTATIONS,
        COLLAPSE_USE_STRICT,
        COLLAPSE_REQUIRE_SPACING,
        STRIP_TRAILING_WHITESPACE,
    ),
)

BUNDLED_GLOBAL = Battery(
    name="bundled-global",
    contract=ROLLUP_TERSER_CONTRACT,
    rules=(
        STRIP_SOURCEMAP_COMMENT,
        STRIP_PURE_ANNOTATIONS,
        COLLAPSE_USE_STRICT,
        DROP_GLOBALTHIS_PROBE,
        DROP_ESMODULE_FLAG_TRAILING,
        DROP_ESMODULE_FLAG_LEADING,
        STRIP_TRAILING_WHITESPACE,
    ),
)

BUILTIN_BATTERIES: Dict[str, Battery] = {
    battery.name: battery for battery in (LINKED_MODULE, LINKED_COMMONJS, BUNDLED_GLOBAL)
}


def battery_for(format_spec: FormatSpec, batteries: Mapping[str, Battery] | None = None) -> Battery:
    available = BUILTIN_BATTERIES if batteries is None else batteries
    battery = available.get(format_spec.battery)
    if battery is None:
        raise ConfigurationError(
            f"No cleanup battery named '{format_spec.battery}' for format '{format_spec.id}'"
        )
    return battery


__all__ = [
    "BUILTIN_BATTERIES",
    "BUNDLED_GLOBAL",
    "LINKED_COMMONJS",
    "LINKED_MODULE",
    "ROLLUP_TERSER_CONTRACT",
    "battery_for",
    "import_rewrite_rule",
]
