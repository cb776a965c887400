from __future__ import annotations

import re
import unittest

from bundlekit.errors import ConfigurationError, RewriteFailureError
from bundlekit.patch import Battery, RewriteRule, apply, parse_flags
from bundlekit.position_map import PositionMap, Segment


class RewriteRuleTests(unittest.TestCase):
    def test_pattern_matching_empty_string_is_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            RewriteRule(name="empty", pattern=r"a*", rewrite="")

    def test_invalid_pattern(self) -> None:
        with self.assertRaises(ConfigurationError):
            RewriteRule(name="broken", pattern="(", rewrite="")

    def test_rewrite_must_be_callable_or_template(self) -> None:
        with self.assertRaises(ConfigurationError):
            RewriteRule(name="odd", pattern="a", rewrite=3)  # type: ignore[arg-type]

    def test_from_mapping(self) -> None:
        rule = RewriteRule.from_mapping(
            {"name": "semi", "pattern": ";;+", "replace": ";", "flags": ["ignorecase", "multiline"]}
        )
        self.assertEqual(rule.name, "semi")
        self.assertTrue(rule.pattern.flags & re.IGNORECASE)
        self.assertTrue(rule.pattern.flags & re.MULTILINE)

    def test_from_mapping_requires_replacement(self) -> None:
        with self.assertRaises(ConfigurationError):
            RewriteRule.from_mapping({"name": "semi", "pattern": ";;+"})

    def test_unknown_flag(self) -> None:
        with self.assertRaises(ConfigurationError):
            parse_flags(["UNICODE_PLEASE"])


class ApplyTests(unittest.TestCase):
    def test_rules_run_in_order_on_previous_output(self) -> None:
        rules = [RewriteRule(name="a-to-b", pattern="a", rewrite="b"), RewriteRule(name="b-to-c", pattern="b", rewrite="c")]
        result = apply("aab", rules)
        self.assertEqual(result.text, "ccc")
        self.assertEqual(result.hits, {"a-to-b": 2, "b-to-c": 3})
        self.assertEqual(result.total_hits, 5)

    def test_callable_receives_captures(self) -> None:
        seen = []

        def swap(whole: str, key: str, value: str) -> str:
            seen.append((whole, key, value))
            return f"{value}={key}"

        result = apply("a=1;b=2", [RewriteRule(name="swap", pattern=r"(\w)=(\d)", rewrite=swap)])
        self.assertEqual(result.text, "1=a;2=b")
        self.assertEqual(seen, [("a=1", "a", "1"), ("b=2", "b", "2")])

    def test_template_backreferences(self) -> None:
        result = apply("x12y3", [RewriteRule(name="wrap", pattern=r"(\d+)", rewrite=r"<\1>")])
        self.assertEqual(result.text, "x<12>y<3>")

    def test_no_match_keeps_text(self) -> None:
        result = apply("abc", [RewriteRule(name="zzz", pattern="z", rewrite="")])
        self.assertEqual(result.text, "abc")
        self.assertEqual(result.matched_rules(), [])

    def test_raising_rewrite_aborts(self) -> None:
        def explode(whole: str) -> str:
            raise KeyError(whole)

        with self.assertRaises(RewriteFailureError) as ctx:
            apply("abc", [RewriteRule(name="explode", pattern="b", rewrite=explode)])
        self.assertEqual(ctx.exception.rule, "explode")
        self.assertEqual(ctx.exception.match, "b")
        self.assertEqual(ctx.exception.offset, 1)
        self.assertIsInstance(ctx.exception.__cause__, KeyError)

    def test_non_string_rewrite_aborts(self) -> None:
        with self.assertRaises(RewriteFailureError):
            apply("abc", [RewriteRule(name="number", pattern="c", rewrite=lambda whole: 42)])

    def test_same_length_rewrite_keeps_position_map(self) -> None:
        text = "let q=1;let r=2;"
        position_map = PositionMap(entries=tuple(Segment(offset=offset, source=0) for offset in (0, 4, 8, 12)))
        result = apply(text, [RewriteRule(name="rename", pattern=r"\bq\b", rewrite="z")], position_map=position_map)
        self.assertEqual(result.text, "let z=1;let r=2;")
        self.assertEqual(result.position_map.entries, position_map.entries)

    def test_shrinking_rewrite_shifts_later_entries(self) -> None:
        text = "let   q=1;let r=2;"
        position_map = PositionMap(entries=tuple(Segment(offset=offset, source=0) for offset in (0, 6, 10, 14)))
        rule = RewriteRule(name="squeeze", pattern=r"let\s+", rewrite="let ")
        result = apply(text, [rule], position_map=position_map)
        self.assertEqual(result.text, "let q=1;let r=2;")
        self.assertEqual(result.position_map.offsets(), [0, 4, 8, 12])
        self.assertEqual(result.text[4], "q")
        self.assertEqual(result.text[12], "r")

    def test_battery_extended_appends_rules(self) -> None:
        battery = Battery(name="demo", rules=(RewriteRule(name="one", pattern="1", rewrite="one"),), contract="v1")
        extended = battery.extended([RewriteRule(name="two", pattern="2", rewrite="two")])
        self.assertEqual([rule.name for rule in extended.rules], ["one", "two"])
        self.assertEqual(extended.contract, "v1")
        self.assertEqual(extended.apply("12").text, "onetwo")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
