"""Pydantic response schemas for the FaceMatch API."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated, Literal

from pydantic import BaseModel, Field

from facematch.core.matching import NoMatchReason

if TYPE_CHECKING:
    from facematch.core.matching import FaceRegion as CoreFaceRegion


class FaceRegion(BaseModel):
    """A detected face bounding box in source image pixels."""

    x: int = Field(ge=0)
    y: int = Field(ge=0)
    width: int = Field(ge=0)
    height: int = Field(ge=0)

    @classmethod
    def from_core(cls, region: CoreFaceRegion) -> FaceRegion:
        return cls(x=region.x, y=region.y, width=region.width, height=region.height)


class RegisteredFace(FaceRegion):
    """A registered face, returned without its feature vector."""

    label: str


class IdentifiedResponse(BaseModel):
    """A registered face matched the uploaded one."""

    identified: Literal[True] = True
    label: str | None
    x: int | None = None
    y: int | None = None
    width: int | None = None
    height: int | None = None
    score: float = Field(description="Similarity of the best match")


class NotIdentifiedResponse(BaseModel):
    """No registered face scored above the threshold."""

    identified: Literal[False] = False
    reason: NoMatchReason
    message: str = "No match found"


IdentifyResponse = Annotated[IdentifiedResponse | NotIdentifiedResponse, Field(discriminator="identified")]


class CompareResponse(BaseModel):
    similarity: float


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    detector: str
    registered_faces: int
    concurrent_requests: int
    queue_depth: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
