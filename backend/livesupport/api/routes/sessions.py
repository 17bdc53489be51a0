"""
Session API routes: read-only views of live and archived sessions.
"""
import asyncio
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from ...coordinator.coordinator import SupportCoordinator
from ...exceptions import NotFound
from ..dependencies import get_coordinator

logger = logging.getLogger(__name__)

router = APIRouter()


async def _load(coordinator: SupportCoordinator, session_id: str) -> Dict[str, Any]:
    """Live session first, then the transcript archive."""
    try:
        session = await coordinator.sessions.get_session(session_id)
        return session.to_wire()
    except NotFound:
        if coordinator.archive is None:
            raise

    transcript = await asyncio.to_thread(coordinator.archive.get_transcript, session_id)
    if transcript is None:
        raise NotFound(f"Session {session_id} not found", session_id=session_id)
    return transcript


@router.get("/{session_id}")
async def get_session(
    session_id: str,
    coordinator: SupportCoordinator = Depends(get_coordinator)
) -> Dict[str, Any]:
    """
    Get a session with its messages.

    Closed sessions that already left memory are served from the archive.
    """
    return await _load(coordinator, session_id)


@router.get("/{session_id}/transcript")
async def get_transcript(
    session_id: str,
    coordinator: SupportCoordinator = Depends(get_coordinator)
) -> Dict[str, Any]:
    """Messages of a session in delivery order."""
    session = await _load(coordinator, session_id)
    return {
        "sessionId": session_id,
        "status": session["status"],
        "messages": session["messages"],
        "total": len(session["messages"]),
    }
