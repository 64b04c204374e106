"""Error taxonomy for CASS pipeline runs.

Stage-local failures are recovered where they happen and recorded as
``PipelineIssue`` entries; only ``FatalPipelineError`` aborts a run.
Policy rejections are outcomes, not errors, and never appear here.
"""

from enum import Enum

from pydantic import BaseModel


class CassError(Exception):
    """Base class for CASS errors."""


class SourceFailure(CassError):
    """An external read (fetch, lookup, scorer) failed or timed out."""

    def __init__(self, source: str, operation: str, message: str, timed_out: bool = False):
        self.source = source
        self.operation = operation
        self.message = message
        self.timed_out = timed_out
        super().__init__(f"{operation} for {source} failed: {message}")


class UniqueConflictError(CassError):
    """Raised by write sinks when a uniqueness constraint collides."""


class WriteFailure(CassError):
    """A staging record could not be persisted after conflict fallback."""

    def __init__(self, category: str, key: str, message: str):
        self.category = category
        self.key = key
        self.message = message
        super().__init__(f"{category} {key}: {message}")


class FatalPipelineError(CassError):
    """An internal invariant was violated; the whole run is aborted."""


class IssueKind(str, Enum):
    """Kinds of recoverable problems recorded during a run."""

    SOURCE_FAILURE = "source_failure"
    WRITE_FAILURE = "write_failure"


class PipelineIssue(BaseModel):
    """A recoverable failure surfaced in ``RunResult.errors``."""

    kind: IssueKind
    stage: str
    source: str
    message: str
    timed_out: bool = False

    @classmethod
    def from_source_failure(cls, stage: str, failure: SourceFailure) -> "PipelineIssue":
        return cls(
            kind=IssueKind.SOURCE_FAILURE,
            stage=stage,
            source=failure.source,
            message=failure.message,
            timed_out=failure.timed_out,
        )

    @classmethod
    def from_write_failure(cls, failure: WriteFailure) -> "PipelineIssue":
        return cls(
            kind=IssueKind.WRITE_FAILURE,
            stage="staging",
            source=failure.category,
            message=f"{failure.key}: {failure.message}",
        )

    def __str__(self) -> str:
        suffix = " (timeout)" if self.timed_out else ""
        return f"[{self.stage}] {self.source}: {self.message}{suffix}"
