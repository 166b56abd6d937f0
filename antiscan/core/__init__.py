"""
antiscan Core

Building blocks shared by every manager:

- CommandExecutor: logged vs. quiet external command execution
- RuleBuilder: canonical iptables rule token sequences
- Pipeline: ordered fatal/recoverable step runner used by the CLI

Author: antiscan Project
License: GNU GPL v3
"""

from .command import CommandExecutor
from .rule_builder import RuleBuilder, Target
from .pipeline import Pipeline, Step

__all__ = ['CommandExecutor', 'RuleBuilder', 'Target', 'Pipeline', 'Step']
