from enum import Enum
from typing import NamedTuple


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    CANCELED = "canceled"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.CANCELED, JobStatus.COMPLETED, JobStatus.ERROR)


class SegmentRef(NamedTuple):
    """A segment as listed in the playlist. The index is the only thing merging is ordered by."""
    index: int
    url: str


class SegmentArtifact(NamedTuple):
    index: int
    path: str
    skipped: bool = False
