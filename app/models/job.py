from enum import Enum
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, Field
from app.errors import InputValidationError

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self):
        return self.value

class Criteria(str, Enum):
    MATERIALS = "materials"
    HISTORY = "history"
    SEISMIC = "seismic"

    @classmethod
    def _missing_(cls, value):
        # Accept the long form used by older clients, e.g. "materialsType"
        if isinstance(value, str) and value.endswith("Type"):
            short = value[: -len("Type")]
            for member in cls:
                if member.value == short:
                    return member
        return None

    def __str__(self):
        return self.value

class JobRecord(BaseModel):
    """State of one pipeline stage, addressed by its derived job key."""
    stage: str
    subject_id: str
    criteria: Criteria
    owner: Optional[str] = None
    status: JobStatus = JobStatus.QUEUED
    result: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def processing(self) -> bool:
        return self.status in (JobStatus.QUEUED, JobStatus.PROCESSING)

    def mark_completed(self, result: str) -> "JobRecord":
        return self.model_copy(update={
            "status": JobStatus.COMPLETED,
            "result": result,
            "error": None,
            "updated_at": _utcnow(),
        })

    def mark_failed(self, error: str) -> "JobRecord":
        return self.model_copy(update={
            "status": JobStatus.FAILED,
            "error": error,
            "updated_at": _utcnow(),
        })

def parse_criteria(value) -> Criteria:
    """Criteria from a request value; unknown values are a client error."""
    try:
        return Criteria(value)
    except ValueError:
        raise InputValidationError(f"Unknown criteria: {value!r}")
