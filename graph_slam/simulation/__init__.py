"""
Synthetic scenarios for demos and end-to-end tests.
"""

from .synthetic import (
    LoopScenario,
    LoopScenarioConfig,
    generate_loop_scenario
)

__all__ = [
    'LoopScenario',
    'LoopScenarioConfig',
    'generate_loop_scenario'
]
