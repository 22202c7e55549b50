"""phaseflow: multi-phase workflow orchestration engine."""

__version__ = "0.3.0"
