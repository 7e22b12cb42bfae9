"""HTTP API layer: analysis sessions fed by backend stream events."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from trace_assistant.agent.runtime.session_state import AnalysisSessionSnapshot
from trace_assistant.api.deps import get_container
from trace_assistant.core.container import AppContainer
from trace_assistant.infra.observability.logger import get_logger
from trace_assistant.protocol.messages import (
    AnalysisSessionDetailDto,
    AnalysisSessionSummaryDto,
    DispatchResponse,
    EventRequest,
    StartSessionRequest,
)

router = APIRouter(prefix="/api/v1/analysis", tags=["analysis"])
logger = get_logger(__name__)


def _to_summary(snapshot: AnalysisSessionSnapshot) -> AnalysisSessionSummaryDto:
    return AnalysisSessionSummaryDto(
        session_id=snapshot.session_id,
        flow_status=snapshot.flow_status,
        answer_status=snapshot.answer_status,
        message_count=len(snapshot.messages),
        created_at=snapshot.created_at,
        updated_at=snapshot.updated_at,
    )


def _to_detail(snapshot: AnalysisSessionSnapshot) -> AnalysisSessionDetailDto:
    return AnalysisSessionDetailDto(
        **_to_summary(snapshot).model_dump(),
        messages=snapshot.messages,
        conversation_lines=snapshot.conversation_lines,
        conversation_last_ordinal=snapshot.conversation_last_ordinal,
        conversation_pending_ordinals=snapshot.conversation_pending_ordinals,
        answer_content=snapshot.answer_content,
        intervention=snapshot.intervention.to_dto() if snapshot.intervention else None,
        pending_error_count=snapshot.pending_error_count,
    )


def _not_found(session_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"session '{session_id}' not found")


@router.post("/sessions", response_model=AnalysisSessionSummaryDto, status_code=status.HTTP_201_CREATED)
def start_session(
    request: StartSessionRequest | None = None,
    container: AppContainer = Depends(get_container),
) -> AnalysisSessionSummaryDto:
    snapshot = container.session_store.start(request.session_id if request else None)
    return _to_summary(snapshot)


@router.get("/sessions", response_model=list[AnalysisSessionSummaryDto])
def list_sessions(
    limit: int = Query(default=40, ge=1, le=200),
    container: AppContainer = Depends(get_container),
) -> list[AnalysisSessionSummaryDto]:
    return [_to_summary(snapshot) for snapshot in container.session_store.list_snapshots(limit=limit)]


@router.get("/sessions/{session_id}", response_model=AnalysisSessionDetailDto)
def get_session(
    session_id: str,
    container: AppContainer = Depends(get_container),
) -> AnalysisSessionDetailDto:
    snapshot = container.session_store.snapshot(session_id)
    if snapshot is None:
        raise _not_found(session_id)
    return _to_detail(snapshot)


@router.post("/sessions/{session_id}/events", response_model=DispatchResponse)
def post_event(
    session_id: str,
    event: EventRequest,
    container: AppContainer = Depends(get_container),
) -> DispatchResponse:
    logger.debug("api.event.request session_id=%s event=%s id=%s", session_id, event.type, event.id or "-")
    result = container.session_store.dispatch(session_id, event.type, event.raw_payload())
    if result is None:
        raise _not_found(session_id)
    return DispatchResponse(
        session_id=session_id,
        event_type=event.type,
        is_terminal=result.is_terminal,
        stop_loading=result.stop_loading,
        effects=result.effects,
    )


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_session(
    session_id: str,
    container: AppContainer = Depends(get_container),
) -> Response:
    if not container.session_store.delete(session_id):
        raise _not_found(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
