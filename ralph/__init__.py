"""Ralph workflow engine.

Phase gating, evidence-backed checkpoints, dependency scheduling and
bounded retry with rollback for multi-agent story pipelines.
"""

__version__ = "3.0.0"
