"""Demo: scenario replay and main entry point."""

from .simulator import build_scenarios, main, run_main, run_simulation

__all__ = [
    "build_scenarios",
    "main",
    "run_main",
    "run_simulation",
]
