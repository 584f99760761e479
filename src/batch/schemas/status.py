from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class StatusFlag(str, Enum):
    """
    Lifecycle of a batch request.

    - UNKNOWN: neither queued nor cached
    - PENDING: queued, processing not yet started
    - IN_PROGRESS: claimed by a worker
    - FAILED: the request could not be completed
    - COMPLETED: the result is available for download
    """

    UNKNOWN = "Unknown"
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    FAILED = "Failed"
    COMPLETED = "Completed"


class BatchStatus(BaseModel):
    """
    Status of a batch request.

    Cheap queries fill in only ``key`` and ``status``; full status queries add
    queue position and ETA (milliseconds) for pending and in-progress work.
    """

    model_config = ConfigDict(populate_by_name=True)

    key: str
    status: StatusFlag
    url: str | None = Field(default=None, description="Where the completed result can be fetched")
    started: int | None = Field(default=None, description="Epoch ms at which processing started")
    position_in_queue: int | None = Field(default=None, alias="positionInQueue")
    estimated_time: int | None = Field(
        default=None, alias="estimatedTime", description="Estimated processing time of this request (ms)"
    )
    eta: int | None = Field(default=None, description="Estimated time until completion (ms)")

    def as_json(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
