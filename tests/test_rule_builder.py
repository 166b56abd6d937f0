"""
Rule builder tests: token ordering and equality of RuleSpecs.

Author: antiscan Project
License: GNU GPL v3
"""

import unittest

from antiscan.core.rule_builder import (
    RuleBuilder,
    Target,
    drop_rule_for_set,
    jump_rule,
    log_rule_for_set,
)
from antiscan.models import RuleSpec


class TestRuleBuilder(unittest.TestCase):
    """Fluent builder produces canonical token sequences."""

    def test_drop_rule_tokens(self):
        rule = drop_rule_for_set("SCANNERS-BLOCK-V4")
        self.assertEqual(
            rule.args(),
            ["-m", "set", "--match-set", "SCANNERS-BLOCK-V4", "src", "-j", "DROP"],
        )

    def test_log_rule_tokens(self):
        rule = log_rule_for_set("SCANNERS-BLOCK-V4", "ANTISCAN-v4: ")
        self.assertEqual(
            rule.args(),
            ["-m", "set", "--match-set", "SCANNERS-BLOCK-V4", "src",
             "-m", "limit", "--limit", "10/min", "--limit-burst", "5",
             "-j", "LOG", "--log-prefix", "ANTISCAN-v4: ", "--log-level", "4"],
        )

    def test_match_options_follow_their_module(self):
        rule = (RuleBuilder()
                .protocol("tcp")
                .destination_port(22)
                .match_conntrack("NEW", "ESTABLISHED")
                .jump(Target.ACCEPT)
                .build())
        tokens = rule.args()
        index = tokens.index("conntrack")
        self.assertEqual(tokens[index - 1], "-m")
        self.assertEqual(tokens[index + 1:index + 3], ["--ctstate", "NEW,ESTABLISHED"])
        self.assertEqual(tokens[-2:], ["-j", "ACCEPT"])

    def test_all_predicates(self):
        rule = (RuleBuilder()
                .in_interface("eth0")
                .out_interface("eth1")
                .source("198.51.100.0/24")
                .destination("192.0.2.1")
                .protocol("udp")
                .source_port(53)
                .match_state("NEW")
                .comment("dns")
                .jump(Target.REJECT)
                .build())
        self.assertEqual(
            rule.args(),
            ["-i", "eth0", "-o", "eth1", "-s", "198.51.100.0/24", "-d", "192.0.2.1",
             "-p", "udp", "--sport", "53", "-m", "state", "--state", "NEW",
             "-m", "comment", "--comment", "dns", "-j", "REJECT"],
        )

    def test_limit_without_burst(self):
        rule = RuleBuilder().match_limit("1/s").jump(Target.RETURN).build()
        self.assertEqual(rule.args(), ["-m", "limit", "--limit", "1/s", "-j", "RETURN"])

    def test_equality_is_token_equality(self):
        self.assertEqual(drop_rule_for_set("A"), drop_rule_for_set("A"))
        self.assertNotEqual(drop_rule_for_set("A"), drop_rule_for_set("B"))
        self.assertEqual(jump_rule("SCANNERS-BLOCK"), RuleSpec(("-j", "SCANNERS-BLOCK")))

    def test_rule_is_immutable(self):
        rule = jump_rule("SCANNERS-BLOCK")
        tokens = rule.args()
        tokens.append("extra")
        self.assertEqual(len(rule), 2)

    def test_render_quotes_prefix_with_space(self):
        rule = log_rule_for_set("SCANNERS-BLOCK-V6", "ANTISCAN-v6: ")
        self.assertIn('--log-prefix "ANTISCAN-v6: "', rule.render())
        self.assertTrue(rule.render().startswith("-m set --match-set SCANNERS-BLOCK-V6 src"))


if __name__ == '__main__':
    unittest.main()
