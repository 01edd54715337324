"""Pydantic response schemas for the FaceLens API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class FrameStats(BaseModel):
    """Frame throttling counters since startup."""

    accepted: int
    dropped: int
    conversion_failed: int
    detection_failed: int
    completed: int
    discarded: int


class HealthResponse(BaseModel):
    """Pipeline health."""

    status: str = Field(description="'ok' while streaming, 'unavailable' when no camera can be used")
    detail: str | None = None
    lens_facing: str | None
    camera_count: int
    busy: bool
    faces: int
    model: str
    frames: FrameStats


class TextLine(BaseModel):
    """One annotation line as plain text."""

    text: str


class ScreenFace(BaseModel):
    """A detected face mapped to render-surface coordinates."""

    left: float
    top: float
    right: float
    bottom: float
    landmarks: dict[str, tuple[float, float]]
    annotation: list[TextLine]


class FacesResponse(BaseModel):
    """Latest faces for a surface of the requested size."""

    width: int
    height: int
    lens_facing: str
    image_width: float | None
    image_height: float | None
    faces: list[ScreenFace]


class CameraResponse(BaseModel):
    """Active camera after a switch."""

    lens_facing: str | None
    streaming: bool
    detail: str | None = None


class ModelInfo(BaseModel):
    """Information about an available detector model."""

    name: str
    input_width: int
    input_height: int
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str
    runtime: str = Field(description="Inference runtime: 'onnx' or 'mediapipe'")


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
