"""
CLI Module - Command-line interface for the cost-control engine.

Provides management commands for:
- Estimate synchronization
- Reset and recalculation
- Invariant verification
"""

from .cost_control_commands import cost_control, register_commands

__all__ = ['cost_control', 'register_commands']
