"""Agents package: orchestration over the memory engine."""

from agents.base_agent import BaseAgent
from agents.memory_manager_agent import MemoryManagerAgent, UpdateResult

__all__ = [
    "BaseAgent",
    "MemoryManagerAgent",
    "UpdateResult",
]
