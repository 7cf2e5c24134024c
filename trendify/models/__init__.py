"""
Pydantic models for Trendify runs.

Task descriptors go into the runners, task results and run events come out,
and RunSnapshot folds the event stream into the state the UI reads.
"""

import base64
import binascii
import io
from enum import Enum
from typing import Dict, List, Optional, Tuple

from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from ..core.constants import DEFAULT_IMAGE_MIME_TYPE


class ErrorKind(str, Enum):
    """Closed set of failure kinds produced by the error classifier."""
    NO_CREDENTIAL = "no_credential"
    INVALID_CREDENTIAL = "invalid_credential"
    QUOTA_EXHAUSTED = "quota_exhausted"
    SAFETY_BLOCKED = "safety_blocked"
    MODEL_REFUSAL = "model_refusal"
    NETWORK_ERROR = "network_error"
    UNKNOWN = "unknown"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class RunState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class RunMode(str, Enum):
    SINGLE = "single"
    BATCH = "batch"
    VARIATIONS = "variations"


class RunEventType(str, Enum):
    STARTED = "started"
    TASK_UPDATE = "task_update"
    COMPLETED = "completed"
    ABORTED = "aborted"


def sniff_mime_type(data: bytes) -> str:
    """Detect the MIME type of encoded image bytes, defaulting to PNG."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return Image.MIME.get(img.format or "", DEFAULT_IMAGE_MIME_TYPE)
    except (UnidentifiedImageError, OSError):
        return DEFAULT_IMAGE_MIME_TYPE


class ImageArtifact(BaseModel):
    """An encoded image plus its MIME type."""
    model_config = ConfigDict(frozen=True)

    mime_type: str = DEFAULT_IMAGE_MIME_TYPE
    data: bytes

    @field_serializer("data", when_used="json")
    def _serialize_data(self, data: bytes) -> str:
        return base64.b64encode(data).decode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: Optional[str] = None) -> "ImageArtifact":
        return cls(mime_type=mime_type or sniff_mime_type(data), data=data)

    @classmethod
    def from_base64(cls, b64_data: str, mime_type: Optional[str] = None) -> "ImageArtifact":
        try:
            raw = base64.b64decode(b64_data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 image data: {e}")
        return cls(mime_type=mime_type or DEFAULT_IMAGE_MIME_TYPE, data=raw)

    @classmethod
    def from_data_uri(cls, data_uri: str) -> "ImageArtifact":
        """Parse a `data:<mime>;base64,<payload>` URI."""
        if not data_uri.startswith("data:") or "," not in data_uri:
            raise ValueError("Not a data URI")
        header, payload = data_uri.split(",", 1)
        mime_type = header[len("data:"):].split(";", 1)[0] or DEFAULT_IMAGE_MIME_TYPE
        return cls.from_base64(payload, mime_type)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")

    def to_data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"

    def to_inline_part(self) -> Dict[str, Dict[str, str]]:
        """Render as a Gemini `inlineData` content part."""
        return {"inlineData": {"data": self.to_base64(), "mimeType": self.mime_type}}


class TaskDescriptor(BaseModel):
    """One unit of generation work: an image set plus the prompt to apply."""
    model_config = ConfigDict(frozen=True)

    id: int
    images: Tuple[ImageArtifact, ...]
    prompt: str

    @field_validator("images")
    @classmethod
    def _images_not_empty(cls, value):
        if not value:
            raise ValueError("A task needs at least one image")
        return value

    @field_validator("prompt")
    @classmethod
    def _prompt_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("A task needs a non-empty prompt")
        return value


class ClassifiedError(BaseModel):
    """Outcome of classifying a raw failure: kind plus user-facing message."""
    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str

    @property
    def headline(self) -> str:
        """First paragraph of the message, used where space is tight."""
        return self.message.split("\n\n")[0]


class TaskResult(BaseModel):
    """Immutable snapshot of one task's state."""
    model_config = ConfigDict(frozen=True)

    task_id: int
    status: TaskStatus = TaskStatus.PENDING
    output: Optional[ImageArtifact] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.SUCCESS, TaskStatus.FAILED)

    def _transition(self, status: TaskStatus, **updates) -> "TaskResult":
        if self.is_terminal:
            raise ValueError(f"Task {self.task_id} is already {self.status.value}")
        return self.model_copy(update={"status": status, **updates})

    def mark_running(self) -> "TaskResult":
        return self._transition(TaskStatus.RUNNING)

    def mark_success(self, output: ImageArtifact) -> "TaskResult":
        return self._transition(TaskStatus.SUCCESS, output=output)

    def mark_failed(self, kind: ErrorKind, message: str) -> "TaskResult":
        return self._transition(TaskStatus.FAILED, error_kind=kind, error_message=message)


class RunEvent(BaseModel):
    """One update emitted by a runner."""
    model_config = ConfigDict(frozen=True)

    run_id: str
    type: RunEventType
    task_id: Optional[int] = None
    result: Optional[TaskResult] = None
    task_ids: List[int] = Field(default_factory=list)
    completed: int = 0
    total: int = 0
    error: Optional[str] = None

    @property
    def progress(self) -> float:
        return self.completed / self.total if self.total else 0.0


class RunSnapshot(BaseModel):
    """Read-only view of a run, built by folding its events."""
    run_id: str
    mode: RunMode
    state: RunState = RunState.NOT_STARTED
    results: Dict[int, TaskResult] = Field(default_factory=dict)
    completed: int = 0
    total: int = 0
    error: Optional[str] = None

    def apply(self, event: RunEvent) -> "RunSnapshot":
        """Fold one event into the snapshot and return it."""
        if event.run_id != self.run_id:
            raise ValueError(f"Event for run {event.run_id} applied to run {self.run_id}")

        if event.type == RunEventType.STARTED:
            self.state = RunState.RUNNING
            self.total = event.total
            self.completed = 0
            self.results = {task_id: TaskResult(task_id=task_id) for task_id in event.task_ids}
        elif event.type == RunEventType.TASK_UPDATE:
            if event.result is not None:
                self.results[event.result.task_id] = event.result
            self.completed = max(self.completed, event.completed)
        elif event.type == RunEventType.COMPLETED:
            self.state = RunState.COMPLETED
            self.completed = event.completed
        elif event.type == RunEventType.ABORTED:
            self.state = RunState.ABORTED
            self.results = {}
            self.error = event.error
        return self

    @property
    def progress_percent(self) -> int:
        return round(self.completed / self.total * 100) if self.total else 0

    def successful_outputs(self) -> List[ImageArtifact]:
        return [
            result.output for _, result in sorted(self.results.items())
            if result.status == TaskStatus.SUCCESS and result.output is not None
        ]
