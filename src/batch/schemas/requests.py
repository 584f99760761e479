from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from batch.request import BatchRequest


class SubmitRequest(BaseModel):
    request_uri: str = Field(..., min_length=1, description="URI of the computation being requested")
    parameters: dict[str, list[Optional[str]]] = Field(
        default_factory=dict, description="Parameter multimap; a null value is a parameter without a value"
    )
    sticky: bool = Field(default=False, description="Keep the result outside normal cache expiry")
    estimated_duration: int | None = Field(default=None, ge=0, description="Expected processing time (ms)")
    key: str | None = Field(default=None, description="Readable key to use instead of the computed fingerprint")

    def to_batch_request(self, default_estimate: int) -> BatchRequest:
        estimate = self.estimated_duration if self.estimated_duration is not None else default_estimate
        return BatchRequest(
            self.request_uri,
            self.parameters,
            sticky=self.sticky,
            estimated_duration=estimate,
            key=self.key,
        )


class RequestDescription(BaseModel):
    key: str
    request_uri: str
    parameters: dict[str, list[Optional[str]]]
    sticky: bool
    estimated_duration: int | None = None

    @classmethod
    def from_batch_request(cls, request: BatchRequest) -> RequestDescription:
        return cls(
            key=request.key,
            request_uri=request.request_uri,
            parameters=request.parameters,
            sticky=request.sticky,
            estimated_duration=request.estimated_duration,
        )
