"""
FastAPI routes for execution sessions.

Read-only inspection of persisted sessions plus the two bookkeeping
operations that need no human input: retry (creates a new PENDING session)
and cancel. All routes are prefixed with /v1/sessions.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from planexec.api.schemas import (
    DeleteResponse,
    ErrorResponse,
    RetryRequest,
    SessionListResponse,
    SessionResponse,
    SessionSummaryResponse,
    StatsResponse,
)
from planexec.errors import InvalidSessionStateError, SessionNotFoundError
from planexec.session.manager import SessionManager
from planexec.session.models import SessionStatus
from planexec.storage.base import ListSessionsOptions, SessionStorage


router = APIRouter(prefix="/v1/sessions", tags=["Sessions"])


def get_storage(request: Request) -> SessionStorage:
    """Storage backend created by the application factory."""
    return request.app.state.storage


def get_manager(
    request: Request,
    storage: SessionStorage = Depends(get_storage),
) -> SessionManager:
    """Session manager over the app's storage; the provider is optional."""
    return SessionManager(storage, provider=getattr(request.app.state, "provider", None))


def _not_found(session_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Session not found: {session_id}",
    )


# ===================
# List Sessions
# ===================

@router.get(
    "",
    response_model=SessionListResponse,
)
async def list_sessions(
    plan_id: Optional[str] = None,
    base_plan_id: Optional[str] = None,
    status_filter: Optional[SessionStatus] = Query(default=None, alias="status"),
    platform: Optional[str] = None,
    limit: Optional[int] = Query(default=50, ge=0, le=500),
    offset: int = Query(default=0, ge=0),
    manager: SessionManager = Depends(get_manager),
):
    """
    List sessions, newest first.

    Filters combine with AND; pagination is applied after sorting.
    """
    sessions = await manager.list_sessions(
        ListSessionsOptions(
            plan_id=plan_id,
            base_plan_id=base_plan_id,
            status=status_filter,
            platform=platform,
            limit=limit,
            offset=offset,
        )
    )
    summaries = [SessionSummaryResponse.from_session(s) for s in sessions]
    return SessionListResponse(sessions=summaries, count=len(summaries))


# ===================
# Stats
# ===================

@router.get(
    "/stats/{plan_id}",
    response_model=StatsResponse,
)
async def get_stats(
    plan_id: str,
    manager: SessionManager = Depends(get_manager),
):
    """Execution statistics for a plan id or base plan id."""
    stats = await manager.get_execution_stats(plan_id)
    return StatsResponse(plan_id=plan_id, **stats.model_dump())


# ===================
# Get / Delete Session
# ===================

@router.get(
    "/{session_id}",
    response_model=SessionResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_session(
    session_id: str,
    manager: SessionManager = Depends(get_manager),
):
    """Get a session with its plan, step results and final result."""
    try:
        session = await manager.get_session(session_id)
    except SessionNotFoundError:
        raise _not_found(session_id)
    return SessionResponse.from_session(session)


@router.delete(
    "/{session_id}",
    response_model=DeleteResponse,
    responses={404: {"model": ErrorResponse}},
)
async def delete_session(
    session_id: str,
    storage: SessionStorage = Depends(get_storage),
):
    """Delete a stored session."""
    if await storage.load_session(session_id) is None:
        raise _not_found(session_id)

    await storage.delete_session(session_id)
    return DeleteResponse(success=True, session_id=session_id, message="Session deleted")


# ===================
# Retry / Cancel
# ===================

@router.post(
    "/{session_id}/retry",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def retry_session(
    session_id: str,
    body: Optional[RetryRequest] = None,
    manager: SessionManager = Depends(get_manager),
):
    """
    Create a new PENDING session that re-runs a finished one.

    Successful results of steps before from_step_id are carried over.
    The new session is not executed.
    """
    from_step_id = body.from_step_id if body else None
    try:
        session = await manager.retry_session(session_id, from_step_id=from_step_id)
    except SessionNotFoundError:
        raise _not_found(session_id)
    except InvalidSessionStateError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    return SessionResponse.from_session(session)


@router.post(
    "/{session_id}/cancel",
    response_model=SessionResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def cancel_session(
    session_id: str,
    manager: SessionManager = Depends(get_manager),
):
    """Mark an unfinished session as failed."""
    try:
        session = await manager.cancel_session(session_id)
    except SessionNotFoundError:
        raise _not_found(session_id)
    except InvalidSessionStateError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    return SessionResponse.from_session(session)
