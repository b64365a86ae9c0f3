"""
Scenario simulation of a vault over in-memory venues.
"""

from .scenario import (
    SimulationEnvironment,
    build_simulated_vault,
    run_scenario,
    summarize_scenario,
)

__all__ = [
    "SimulationEnvironment",
    "build_simulated_vault",
    "run_scenario",
    "summarize_scenario",
]
