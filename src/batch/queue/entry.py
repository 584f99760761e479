from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import Any

from batch.request import BatchRequest
from batch.schemas.status import BatchStatus, StatusFlag


def current_millis() -> int:
    return time.time_ns() // 1_000_000


@dataclass(frozen=True, slots=True)
class QueueEntry:
    """
    Persisted form of a queued request.

    Holds enough to rebuild the original request plus lifecycle metadata.
    ``version`` is the optimistic-concurrency token: every conditional write
    stores ``version + 1`` and only succeeds if the stored copy still carries
    the version that was read.
    """

    key: str
    request_uri: str
    parameters: str
    estimated_duration: int | None
    sticky: bool
    created_at: int
    status: StatusFlag = StatusFlag.PENDING
    started_at: int | None = None
    finished_at: int | None = None
    version: int = 0

    @classmethod
    def from_request(cls, request: BatchRequest, created_at: int | None = None) -> QueueEntry:
        return cls(
            key=request.key,
            request_uri=request.request_uri,
            parameters=request.parameter_string,
            estimated_duration=request.estimated_duration,
            sticky=request.sticky,
            created_at=current_millis() if created_at is None else created_at,
        )

    @property
    def is_finished(self) -> bool:
        return self.status in (StatusFlag.COMPLETED, StatusFlag.FAILED)

    def started(self, now: int) -> QueueEntry:
        return replace(self, status=StatusFlag.IN_PROGRESS, started_at=now, version=self.version + 1)

    def reset(self) -> QueueEntry:
        return replace(self, status=StatusFlag.PENDING, started_at=None, version=self.version + 1)

    def finished(self, status: StatusFlag, now: int) -> QueueEntry:
        return replace(self, status=status, finished_at=now, version=self.version + 1)

    def to_status(self) -> BatchStatus:
        return BatchStatus(
            key=self.key,
            status=self.status,
            started=self.started_at,
            estimated_time=self.estimated_duration,
        )

    def to_request(self) -> BatchRequest:
        return BatchRequest(
            self.request_uri,
            self.parameters,
            sticky=self.sticky,
            estimated_duration=self.estimated_duration,
            key=self.key,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "request_uri": self.request_uri,
            "parameters": self.parameters,
            "estimated_duration": self.estimated_duration,
            "sticky": self.sticky,
            "created_at": self.created_at,
            "status": self.status.value,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> QueueEntry:
        estimated = payload.get("estimated_duration")
        started = payload.get("started_at")
        finished = payload.get("finished_at")
        return cls(
            key=str(payload["key"]),
            request_uri=str(payload["request_uri"]),
            parameters=str(payload.get("parameters") or ""),
            estimated_duration=None if estimated is None else int(estimated),
            sticky=bool(payload.get("sticky", False)),
            created_at=int(payload["created_at"]),
            status=StatusFlag(payload.get("status", StatusFlag.PENDING.value)),
            started_at=None if started is None else int(started),
            finished_at=None if finished is None else int(finished),
            version=int(payload.get("version", 0)),
        )
