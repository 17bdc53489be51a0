"""
Queue, agent and statistics routes for dashboards.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends

from ...coordinator.coordinator import SupportCoordinator
from ..dependencies import get_coordinator

router = APIRouter()


@router.get("/queue")
async def get_queue(coordinator: SupportCoordinator = Depends(get_coordinator)) -> Dict[str, Any]:
    """Waiting sessions in service order."""
    sessions = await coordinator.queue_view()
    return {
        "sessions": sessions,
        "length": len(sessions),
        "breakdown": coordinator.queue.breakdown().to_wire(),
    }


@router.get("/agents")
async def get_agents(coordinator: SupportCoordinator = Depends(get_coordinator)) -> Dict[str, Any]:
    agents = await coordinator.agents.list_agents()
    return {"agents": [agent.to_wire() for agent in agents], "total": len(agents)}


@router.get("/stats")
async def get_stats(coordinator: SupportCoordinator = Depends(get_coordinator)) -> Dict[str, Any]:
    """Same payload as the ``stats:update`` event."""
    stats = await coordinator.get_stats()
    return stats.to_wire()
