from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import verify_api_key
from server.models.responses import SessionSummaryItem
from shared.models.session import Session

router = APIRouter(prefix="/history", tags=["history"], dependencies=[Depends(verify_api_key)])


@router.get("")
async def list_sessions(request: Request) -> list[SessionSummaryItem]:
    """Chat sessions, most recently updated first."""
    sessions = await request.app.state.query_service.do_list_sessions()
    return [SessionSummaryItem(**summary.model_dump()) for summary in sessions]


@router.post("")
async def new_session(request: Request) -> Session:
    """Start a new, empty chat."""
    return await request.app.state.query_service.do_new_session()


@router.get("/{session_id}")
async def get_session(request: Request, session_id: str) -> Session:
    return await request.app.state.query_service.do_get_session(session_id)


@router.delete("/{session_id}")
async def delete_session(request: Request, session_id: str) -> dict:
    await request.app.state.query_service.do_delete_session(session_id)
    return {"status": "deleted", "session_id": session_id}
