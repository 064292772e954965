import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from reelpicks.core.exceptions import RunStateError
from reelpicks.models.candidate import SelectionResult
from reelpicks.models.library import Evidence
from reelpicks.models.media import MediaType


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RunType(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    GLOBAL = "global"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Run(BaseModel):
    """One execution of the pipeline, for a user or for the global pool (user_id is None)."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str | None = None
    media_type: MediaType
    run_type: RunType = RunType.SCHEDULED
    status: RunStatus = RunStatus.RUNNING
    candidates_fetched: int = 0
    candidates_filtered: int = 0
    candidates_scored: int = 0
    candidates_stored: int = 0
    selected_count: int = 0
    duration_ms: int | None = None
    error_message: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    finalized_at: datetime | None = None

    @property
    def is_finalized(self) -> bool:
        return self.status is not RunStatus.RUNNING

    def with_stats(self, **counts: int) -> "Run":
        return self.model_copy(update=counts)

    def finalize(self, status: RunStatus, error_message: str | None = None) -> "Run":
        if self.is_finalized:
            raise RunStateError(f"Run {self.id} already finalized as {self.status.value}")
        if status is RunStatus.RUNNING:
            raise RunStateError("A run cannot be finalized as running")
        now = _utcnow()
        duration_ms = int((now - self.created_at).total_seconds() * 1000)
        return self.model_copy(
            update={
                "status": status,
                "error_message": error_message,
                "finalized_at": now,
                "duration_ms": max(duration_ms, 0),
            }
        )


class PipelineResult(BaseModel):
    run: Run
    selection: SelectionResult = Field(default_factory=SelectionResult)
    evidence: dict[int, list[Evidence]] = Field(default_factory=dict)
    stored_rows: int = 0


class BatchSummary(BaseModel):
    success: int = 0
    failed: int = 0
    total_selected: int = 0
    failures: dict[str, str] = Field(default_factory=dict, description="user:media type → error message")
