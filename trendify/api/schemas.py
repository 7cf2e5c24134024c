from typing import Optional, List, Dict, Any
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from trendify.models import ErrorKind, RunMode, RunSnapshot, RunState, TaskResult, TaskStatus


class StyleResponse(BaseModel):
    """A selectable prompt template"""
    id: str
    name: str
    prompt: str
    images_per_task: int = Field(description="Images consumed by one batch task of this style")


class StyleListResponse(BaseModel):
    styles: List[StyleResponse]
    default_style_id: Optional[str] = None


class RateLimitStatus(BaseModel):
    """Local approximation of the upstream per-minute budget"""
    used: int
    remaining: int
    limit: int
    window_seconds: float
    cooldown_remaining: int


class RunCreatedResponse(BaseModel):
    """Response returned when a run has been accepted"""
    run_id: str
    mode: RunMode
    total: int = Field(description="Number of tasks in the run")


class TaskResultResponse(BaseModel):
    """One task's state, with the output rendered as a data URI"""
    task_id: int
    status: TaskStatus
    image_data_uri: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None

    @classmethod
    def from_result(cls, result: TaskResult) -> "TaskResultResponse":
        return cls(
            task_id=result.task_id,
            status=result.status,
            image_data_uri=result.output.to_data_uri() if result.output else None,
            error_kind=result.error_kind,
            error_message=result.error_message,
        )


class RunDetail(BaseModel):
    """Snapshot of a run for polling clients"""
    run_id: str
    mode: RunMode
    state: RunState
    completed: int
    total: int
    progress_percent: int
    error: Optional[str] = None
    results: List[TaskResultResponse] = Field(default_factory=list)

    @classmethod
    def from_snapshot(cls, snapshot: RunSnapshot) -> "RunDetail":
        return cls(
            run_id=snapshot.run_id,
            mode=snapshot.mode,
            state=snapshot.state,
            completed=snapshot.completed,
            total=snapshot.total,
            progress_percent=snapshot.progress_percent,
            error=snapshot.error,
            results=[TaskResultResponse.from_result(result) for _, result in sorted(snapshot.results.items())],
        )


class EnhanceResponse(BaseModel):
    quality: str
    image_data_uri: str


class TextToImageRequest(BaseModel):
    prompt: str = Field(min_length=1)


class PromptVariationsRequest(BaseModel):
    base_prompt: str = Field(min_length=1)
    count: int = Field(default=5, ge=1, le=60)


class PromptVariationsResponse(BaseModel):
    prompts: List[str]


class CredentialRequest(BaseModel):
    api_key: str


class CredentialStatus(BaseModel):
    has_user_credential: bool
    masked: Optional[str] = None
    default_available: bool


class ErrorDetail(BaseModel):
    """Classified failure returned by direct operations"""
    kind: ErrorKind
    message: str


class WSMessageType(str):
    RUN_STARTED = "run_started"
    TASK_UPDATE = "task_update"
    RUN_COMPLETE = "run_complete"
    RUN_ABORTED = "run_aborted"
    RUN_ERROR = "run_error"
    PING = "ping"


class WebSocketMessage(BaseModel):
    """WebSocket message structure"""
    type: str
    run_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Dict[str, Any] = Field(default_factory=dict)
