"""
Loop Forge
==========

Autonomous iteration loop: pick a task, run it in a clean context, notice
when attempts stop making progress, and reframe the problem from what failed.
"""

__version__ = "0.1.0"
