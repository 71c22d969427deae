"""
Orchestrator Package

Narrator orchestration - wires the mind, content, display and router together.
"""

from .orchestrator import Orchestrator, build_orchestrator

__all__ = ['Orchestrator', 'build_orchestrator']
