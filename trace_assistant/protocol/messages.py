"""Protocol layer: outbound message records, reducer effects and API DTOs."""

from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

MessageRole = Literal["user", "assistant", "system"]
FlowStatus = Literal["idle", "running", "completed", "failed"]
AnswerStatus = Literal["idle", "streaming", "completed", "failed"]


class ChatMessage(BaseModel):
    """One renderable chat bubble produced by the reducer."""

    id: str
    role: MessageRole
    content: str = ""
    timestamp: int = 0
    flow_tag: str | None = None
    report_url: str | None = None
    sql_result: dict[str, Any] | None = None
    chart_data: dict[str, Any] | None = None
    metric_data: dict[str, Any] | None = None


class AddMessageEffect(BaseModel):
    """Append a new message to the conversation."""

    kind: Literal["add"] = "add"
    message: ChatMessage


class UpdateMessageEffect(BaseModel):
    """Patch fields of a previously added message."""

    kind: Literal["update"] = "update"
    message_id: str
    changes: dict[str, Any] = Field(default_factory=dict)


MessageEffect = Union[AddMessageEffect, UpdateMessageEffect]


class EventRequest(BaseModel):
    """Inbound backend event posted for folding; extra top-level fields are kept."""

    model_config = ConfigDict(extra="allow")

    type: str = Field(..., min_length=1, max_length=64)
    id: str | None = None
    data: Any = None

    def raw_payload(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json")
        payload.pop("type", None)
        return payload


class StartSessionRequest(BaseModel):
    session_id: str | None = Field(default=None, max_length=128)


class DispatchResponse(BaseModel):
    """Result of folding one event into a session."""

    session_id: str
    event_type: str
    is_terminal: bool = False
    stop_loading: bool = False
    effects: list[MessageEffect] = Field(default_factory=list)


class InterventionOptionDto(BaseModel):
    id: str
    label: str
    description: str = ""
    action: str
    recommended: bool = False


class InterventionDto(BaseModel):
    intervention_id: str
    type: str
    options: list[InterventionOptionDto] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)
    timeout: int


class AnalysisSessionSummaryDto(BaseModel):
    """Session card for listing endpoints."""

    session_id: str
    flow_status: FlowStatus
    answer_status: AnswerStatus
    message_count: int
    created_at: str
    updated_at: str


class AnalysisSessionDetailDto(AnalysisSessionSummaryDto):
    """Full fold state snapshot of one session."""

    messages: list[ChatMessage] = Field(default_factory=list)
    conversation_lines: list[str] = Field(default_factory=list)
    conversation_last_ordinal: int = 0
    conversation_pending_ordinals: list[int] = Field(default_factory=list)
    answer_content: str = ""
    intervention: InterventionDto | None = None
    pending_error_count: int = 0
