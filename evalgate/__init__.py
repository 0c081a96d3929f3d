"""evalgate - Enhancement validation engine for autonomous agents.

Proposes changes to an agent's tunable parameters, measures them against the
committed baseline on a shared scenario set, and commits only changes that pass
a conjunctive significance gate (p-value, relative improvement, effect size).
"""

__version__ = "0.1.0"
