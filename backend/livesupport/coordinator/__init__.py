"""
Coordinator package: waiting queue, agent registry and the coordinator that
applies intents to them.
"""
from .agent_registry import AgentRegistry
from .coordinator import Actor, MaintenanceReport, SupportCoordinator, SupportState
from .waiting_queue import WaitingQueue

__all__ = [
    'AgentRegistry',
    'WaitingQueue',
    'Actor',
    'MaintenanceReport',
    'SupportCoordinator',
    'SupportState',
]
