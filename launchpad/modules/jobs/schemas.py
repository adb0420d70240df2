from datetime import datetime
from enum import Enum
from pydantic import Field
from typing import Optional, List, Any

from launchpad.core.schemas import CamelModel, utc_now


class JobState(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not JobState.IN_PROGRESS


class StatusUpdate(CamelModel):
    step: str
    message: str
    timestamp: datetime = Field(default_factory=utc_now)
    completed: bool = False


class JobStatus(CamelModel):
    job_id: str
    status: JobState = JobState.IN_PROGRESS
    updates: List[StatusUpdate] = Field(default_factory=list)
    result: Optional[Any] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None


class JobAccepted(CamelModel):
    job_id: str
