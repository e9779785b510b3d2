"""
advisor-council -- multi-phase, multi-expert advisory sessions.

A user's request moves through Discovery, TeamAssembly, Collaboration,
Planning and Synthesis. Simulated domain experts collaborate in concurrent
rounds, each writes an implementation plan, and the plans are unified into
one recommendation plus build instructions.
"""

__version__ = "0.1.0"
