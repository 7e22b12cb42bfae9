"""In-memory analysis sessions: one reducer context and transcript per session id."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any
from uuid import uuid4

from trace_assistant.agent.reducer.dispatcher import DispatchResult, dispatch
from trace_assistant.agent.reducer.intervention import InterventionPoint
from trace_assistant.agent.reducer.pacing_config import PacingConfig
from trace_assistant.agent.reducer.session import AnalysisSession, Clock, IdFactory
from trace_assistant.agent.runtime.transcript import Transcript
from trace_assistant.infra.observability.logger import get_logger
from trace_assistant.protocol.messages import AnswerStatus, ChatMessage, FlowStatus

logger = get_logger(__name__)


def _utc_now_iso() -> str:
    """Generate UTC ISO8601 timestamp used by session snapshots."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


@dataclass
class AnalysisSessionRecord:
    """Reducer context plus the transcript its effects were applied to."""

    session: AnalysisSession
    transcript: Transcript = field(default_factory=Transcript)
    lock: Lock = field(default_factory=Lock)
    created_at: str = field(default_factory=_utc_now_iso)
    updated_at: str = field(default_factory=_utc_now_iso)


@dataclass(frozen=True)
class AnalysisSessionSnapshot:
    """Plain-data copy of one session taken under its lock."""

    session_id: str
    flow_status: FlowStatus
    answer_status: AnswerStatus
    created_at: str
    updated_at: str
    messages: list[ChatMessage]
    conversation_lines: list[str]
    conversation_last_ordinal: int
    conversation_pending_ordinals: list[int]
    answer_content: str
    intervention: InterventionPoint | None
    pending_error_count: int


class SessionStateStore:
    """Thread-safe, size-bounded session store keyed by session_id."""

    def __init__(
        self,
        *,
        pacing: PacingConfig,
        backend_url: str = "",
        limit: int = 64,
        clock: Clock | None = None,
        id_factory: IdFactory | None = None,
    ) -> None:
        self._lock = Lock()
        self._records: OrderedDict[str, AnalysisSessionRecord] = OrderedDict()
        self._pacing = pacing
        self._backend_url = backend_url
        self._limit = max(1, limit)
        self._clock = clock
        self._id_factory = id_factory

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def start(self, session_id: str | None = None) -> AnalysisSessionSnapshot:
        """Create a session, or replace an existing one wholesale."""
        resolved_id = (session_id or "").strip() or f"sess_{uuid4().hex[:12]}"
        record = AnalysisSessionRecord(
            session=AnalysisSession(
                resolved_id,
                pacing=self._pacing,
                backend_url=self._backend_url,
                clock=self._clock,
                id_factory=self._id_factory,
            )
        )
        with self._lock:
            restarted = self._records.pop(resolved_id, None) is not None
            self._records[resolved_id] = record
            evicted: list[str] = []
            while len(self._records) > self._limit:
                oldest_id, _ = self._records.popitem(last=False)
                evicted.append(oldest_id)
        logger.info(
            "session.start session_id=%s restarted=%s evicted=%s profile=%s",
            resolved_id,
            restarted,
            evicted or "-",
            self._pacing.profile_name,
        )
        return self._snapshot(record)

    def get(self, session_id: str) -> AnalysisSessionRecord | None:
        with self._lock:
            return self._records.get(session_id)

    def dispatch(self, session_id: str, event_type: str, payload: Any) -> DispatchResult | None:
        """Fold one event into a session; None when the session is unknown."""
        record = self.get(session_id)
        if record is None:
            return None
        with record.lock:
            result = dispatch(event_type, payload, record.session)
            record.transcript.apply(result.effects)
            record.updated_at = _utc_now_iso()
        return result

    def snapshot(self, session_id: str) -> AnalysisSessionSnapshot | None:
        record = self.get(session_id)
        if record is None:
            return None
        return self._snapshot(record)

    def list_snapshots(self, *, limit: int = 50) -> list[AnalysisSessionSnapshot]:
        """Return recent session snapshots sorted by updated_at desc."""
        safe_limit = max(1, min(limit, 200))
        with self._lock:
            records = list(self._records.values())
        snapshots = [self._snapshot(record) for record in records]
        snapshots.sort(key=lambda item: item.updated_at, reverse=True)
        return snapshots[:safe_limit]

    def delete(self, session_id: str) -> bool:
        """Delete one session by id; return True when it existed."""
        with self._lock:
            existed = session_id in self._records
            if existed:
                del self._records[session_id]
        if existed:
            logger.info("session.delete session_id=%s", session_id)
        return existed

    @staticmethod
    def _snapshot(record: AnalysisSessionRecord) -> AnalysisSessionSnapshot:
        with record.lock:
            session = record.session
            return AnalysisSessionSnapshot(
                session_id=session.session_id,
                flow_status=session.flow.status,
                answer_status=session.answer.status,
                created_at=record.created_at,
                updated_at=record.updated_at,
                messages=record.transcript.messages(),
                conversation_lines=list(session.flow.conversation_lines),
                conversation_last_ordinal=session.flow.conversation_last_ordinal,
                conversation_pending_ordinals=sorted(session.flow.conversation_pending_steps),
                answer_content=session.answer.content,
                intervention=session.intervention.active,
                pending_error_count=len(session.errors),
            )
